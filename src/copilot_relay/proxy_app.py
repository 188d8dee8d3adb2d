from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Dict, Type

import httpx
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from uvicorn.logging import DefaultFormatter

from .config import RelayCfg, load_config
from .document import DocumentError, JsonDocument
from .errors import ClientReadError, RelayError, UpstreamCancelled, UpstreamNonOK, UpstreamTransportError
from .forwarder import Forwarder
from .rewriter import rewrite_chat, rewrite_codex

_handler = logging.StreamHandler()
_handler.setFormatter(DefaultFormatter(fmt="%(levelprefix)s %(message)s", use_colors=True))
_root = logging.getLogger()
_root.handlers.clear()
_root.addHandler(_handler)
_root.setLevel(logging.INFO)

logger = logging.getLogger(__name__)

CODEX_THROTTLE_SECONDS = 0.1
SSE_DONE = "data: [DONE]\n"


def _pretty(data: bytes) -> str:
    """Return a prettified string representation of *data* if it's JSON."""
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return data.decode("utf-8", errors="replace")
    return json.dumps(obj, indent=2, ensure_ascii=False)


app = FastAPI(title="Copilot Relay", version="1.0.0")

_cfg: RelayCfg | None = None
_forwarder: Forwarder | None = None


@app.on_event("startup")
async def _startup() -> None:
    global _cfg, _forwarder  # noqa: PLW0603

    _cfg = load_config()
    _root.setLevel(_cfg.log_level)
    _forwarder = Forwarder(_cfg)


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _forwarder:
        await _forwarder.aclose()


async def _read_document(request: Request, on_disconnect: Type[RelayError] = ClientReadError) -> JsonDocument:
    try:
        raw = await request.body()
    except ClientDisconnect as exc:
        raise on_disconnect("client disconnected while sending the body") from exc
    try:
        return JsonDocument.loads(raw)
    except DocumentError as exc:
        raise ClientReadError(str(exc)) from exc


def _content_type(upstream: httpx.Response) -> Dict[str, str]:
    content_type = upstream.headers.get("content-type")
    return {"Content-Type": content_type} if content_type else {}


async def _drain(upstream: httpx.Response) -> bytes:
    """Read a complete upstream body and release the connection."""
    try:
        return await upstream.aread()
    except httpx.RequestError as exc:
        logger.error("reading upstream body failed: %r", exc)
        raise UpstreamTransportError(f"reading upstream body failed: {exc}") from exc
    finally:
        await upstream.aclose()


async def _iter_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_bytes():
            yield chunk
    except httpx.RequestError as exc:
        logger.error("relaying upstream body failed: %r", exc)
    finally:
        await upstream.aclose()


def _relay(upstream: httpx.Response) -> StreamingResponse:
    """Stream *upstream* back unchanged: status, content-type and body."""
    return StreamingResponse(
        _iter_body(upstream),
        status_code=upstream.status_code,
        headers=_content_type(upstream),
        background=BackgroundTask(upstream.aclose),
    )


def _abort_codex(status_code: int) -> Response:
    """End a code completion with an SSE terminator instead of an error body."""
    return Response(
        content=SSE_DONE,
        status_code=status_code,
        headers={"Content-Type": "text/event-stream"},
    )


def _state() -> tuple[RelayCfg, Forwarder]:
    assert _cfg is not None and _forwarder is not None
    return _cfg, _forwarder


@app.post("/v1/chat/completions")
async def chat_completions(request: Request) -> Response:
    cfg, forwarder = _state()

    try:
        doc = rewrite_chat(await _read_document(request), cfg)
        upstream = await forwarder.forward(cfg.chat_backend, doc.dumps(), request)
        if upstream.status_code != status.HTTP_200_OK:
            body = await _drain(upstream)
            logger.warning("request completions failed (%s):\n%s", upstream.status_code, _pretty(body))
            return Response(content=body, status_code=upstream.status_code, headers=_content_type(upstream))
    except RelayError as exc:
        return Response(status_code=exc.status_code)

    return _relay(upstream)


@app.post("/v1/engines/copilot-codex/completions")
async def code_completions(request: Request) -> Response:
    cfg, forwarder = _state()

    await asyncio.sleep(CODEX_THROTTLE_SECONDS)

    try:
        doc = rewrite_codex(await _read_document(request, on_disconnect=UpstreamCancelled))
        if await request.is_disconnected():
            raise UpstreamCancelled("caller disconnected")
        upstream = await forwarder.forward(cfg.codex_backend, doc.dumps(), request)
        if upstream.status_code != status.HTTP_200_OK:
            raise UpstreamNonOK(upstream.status_code, await _drain(upstream))
    except UpstreamNonOK as exc:
        logger.warning("request completions failed (%s):\n%s", exc.status_code, _pretty(exc.body))
        return _abort_codex(exc.status_code)
    except RelayError as exc:
        return _abort_codex(exc.status_code)

    return _relay(upstream)
