"""Asynchronous forwarder that relays rewritten requests to the upstream APIs."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from .config import BackendCfg, RelayCfg
from .errors import RequestBuildError, UpstreamCancelled, UpstreamTransportError

logger = logging.getLogger(__name__)

_DISCONNECT_POLL_INTERVAL = 0.1


class InboundRequest(Protocol):
    async def is_disconnected(self) -> bool: ...


async def _wait_for_disconnect(inbound: InboundRequest) -> None:
    while not await inbound.is_disconnected():
        await asyncio.sleep(_DISCONNECT_POLL_INTERVAL)


def build_client(cfg: RelayCfg) -> httpx.AsyncClient:
    """Create the shared pooled client from the transport settings."""
    timeout = httpx.Timeout(cfg.timeout) if cfg.timeout else httpx.Timeout(None)
    return httpx.AsyncClient(
        http2=cfg.http2,
        proxy=cfg.proxy_url or None,
        timeout=timeout,
    )


class Forwarder:
    """Forwarder with shared :class:`httpx.AsyncClient`."""

    def __init__(self, cfg: RelayCfg, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = cfg
        self._client = client if client is not None else build_client(cfg)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------------------------------------------------------------------
    # Public helpers
    # ---------------------------------------------------------------------
    def build_request(self, backend: BackendCfg, body: bytes) -> httpx.Request:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {backend.api_key}",
        }
        if backend.organization:
            headers["OpenAI-Organization"] = backend.organization
        if backend.project:
            headers["OpenAI-Project"] = backend.project

        try:
            return self._client.build_request("POST", backend.completions_url, content=body, headers=headers)
        except httpx.InvalidURL as exc:
            raise RequestBuildError(f"invalid upstream url {backend.completions_url!r}: {exc}") from exc

    async def dispatch(self, request: httpx.Request, inbound: InboundRequest) -> httpx.Response:
        """Send *request* and return the streaming response.

        The send is abandoned with :class:`UpstreamCancelled` as soon as the
        inbound caller disconnects. Any other failure to get a response becomes
        :class:`UpstreamTransportError`. The caller owns the returned response and
        must close it.
        """

        send = asyncio.ensure_future(self._client.send(request, stream=True))
        watch = asyncio.ensure_future(_wait_for_disconnect(inbound))
        try:
            await asyncio.wait({send, watch}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watch.cancel()
            if not send.done():
                send.cancel()

        if not send.done() or send.cancelled():
            await asyncio.wait({send})
            if not send.cancelled() and send.exception() is None:
                await send.result().aclose()
            logger.info("caller went away before %s answered", request.url)
            raise UpstreamCancelled("caller disconnected")

        try:
            return send.result()
        except httpx.RequestError as exc:
            logger.error("request to %s failed: %r", request.url, exc)
            raise UpstreamTransportError(str(exc) or exc.__class__.__name__) from exc

    async def forward(self, backend: BackendCfg, body: bytes, inbound: InboundRequest) -> httpx.Response:
        request = self.build_request(backend, body)
        logger.info("Forwarding request to %s", request.url)
        return await self.dispatch(request, inbound)
