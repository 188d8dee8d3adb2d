"""Failure taxonomy shared by both relay endpoints.

Each error carries the HTTP status the caller should see. The chat endpoint
answers with that bare status, the code completion endpoint wraps it in the
``data: [DONE]`` sentinel.
"""

from __future__ import annotations

from fastapi import status


class RelayError(Exception):
    """Base class for failures that end a relayed request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


class ClientReadError(RelayError):
    """The inbound body could not be read or is not a JSON object."""

    status_code = status.HTTP_400_BAD_REQUEST


class RequestBuildError(RelayError):
    """The outbound request could not be constructed."""


class UpstreamCancelled(RelayError):
    """The caller went away before the upstream answered."""

    status_code = status.HTTP_408_REQUEST_TIMEOUT


class UpstreamTransportError(RelayError):
    """Network or protocol failure while talking to the upstream."""


class UpstreamNonOK(RelayError):
    """The upstream answered with something other than 200."""

    def __init__(self, status_code: int, body: bytes) -> None:
        super().__init__(f"upstream answered {status_code}")
        self.status_code = status_code
        self.body = body
