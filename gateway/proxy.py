# proxy.py
import asyncio
import logging
from typing import AsyncIterator, Dict, List, Tuple

import httpx
import websockets
from fastapi import Request, WebSocket, status
from fastapi.requests import HTTPConnection
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.websockets import WebSocketDisconnect, WebSocketState

from gateway.routes import RouteEntry

logger = logging.getLogger(__name__)

PROXY_ERROR_BODY = {"error": "Proxy error"}

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# handled by the websocket library on the upstream leg
WEBSOCKET_HANDSHAKE_HEADERS = {
    "host",
    "content-length",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
    "sec-websocket-accept",
}


def upstream_request_headers(headers: List[Tuple[bytes, bytes]]) -> List[Tuple[bytes, bytes]]:
    """Client headers minus hop-by-hop ones and Host, which httpx sets to the upstream origin."""
    return [
        (name, value) for name, value in headers
        if name.lower().decode("latin-1") not in HOP_BY_HOP_HEADERS | {"host"}
    ]


def downstream_response_headers(headers: List[Tuple[bytes, bytes]]) -> List[Tuple[bytes, bytes]]:
    return [
        (name.lower(), value) for name, value in headers
        if name.lower().decode("latin-1") not in HOP_BY_HOP_HEADERS
    ]


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


def raw_request_path(connection: HTTPConnection, route: RouteEntry) -> str:
    """
    The path as the client sent it, still percent-encoded, so ``%2F`` and
    ``%3F`` reach the upstream unchanged.

    Falls back to the decoded path when the server gives no ``raw_path`` or
    the prefix itself was sent encoded.
    """
    raw_path = connection.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
        if route.matches(path):
            return path
    return connection.url.path


def proxy_error_response() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=PROXY_ERROR_BODY)


async def _relay_body(upstream: httpx.Response, route: RouteEntry) -> AsyncIterator[bytes]:
    # Headers are already on the wire here, so a failure can only cut the stream short.
    # Closing the upstream is left to the response's background task, which
    # also runs when the client disconnects.
    try:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.StreamConsumed:
            # responses built with their body up front arrive already read
            yield upstream.content
    except httpx.HTTPError as exc:
        logger.error(f"Proxy error for {route.service} after response started: {exc!r}")


async def forward(request: Request, route: RouteEntry, client: httpx.AsyncClient):
    """
    Send ``request`` to the upstream of ``route`` and stream the answer back.

    Neither body is buffered: the inbound body is handed to httpx as a
    stream, and the upstream body is relayed chunk by chunk. Connection
    failures before the upstream answers become a 502.
    """
    target = route.upstream_target(raw_request_path(request, route), request.url.query)
    upstream_request = client.build_request(
        request.method,
        target,
        headers=upstream_request_headers(request.headers.raw),
        content=request.stream() if _has_body(request) else None,
    )

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.TransportError as exc:
        logger.error(f"Proxy error for {route.service} ({request.method} {target}): {exc!r}")
        return proxy_error_response()

    logger.debug(f"{request.method} {request.url.path} -> {target} ({upstream.status_code})")

    response = StreamingResponse(
        _relay_body(upstream, route),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    response.raw_headers = downstream_response_headers(upstream.headers.raw)
    return response


def websocket_upstream_headers(websocket: WebSocket) -> Dict[str, str]:
    skip = HOP_BY_HOP_HEADERS | WEBSOCKET_HANDSHAKE_HEADERS
    return {name: value for name, value in websocket.headers.items() if name.lower() not in skip}


async def _pump_client_to_upstream(websocket: WebSocket, upstream) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        if message.get("text") is not None:
            await upstream.send(message["text"])
        elif message.get("bytes") is not None:
            await upstream.send(message["bytes"])


async def _pump_upstream_to_client(websocket: WebSocket, upstream) -> None:
    async for message in upstream:
        if isinstance(message, str):
            await websocket.send_text(message)
        else:
            await websocket.send_bytes(message)


async def relay_websocket(websocket: WebSocket, route: RouteEntry, timeout: float) -> None:
    """
    Proxy a websocket upgrade to the route's upstream and pump frames both
    ways until one side goes away.
    """
    target = route.websocket_target(raw_request_path(websocket, route), websocket.url.query)
    subprotocols = websocket.scope.get("subprotocols") or None

    try:
        upstream = await websockets.connect(
            target,
            additional_headers=websocket_upstream_headers(websocket),
            subprotocols=subprotocols,
            open_timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
        logger.error(f"Proxy error for {route.service} websocket ({target}): {exc!r}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=PROXY_ERROR_BODY["error"])
        return

    try:
        await websocket.accept(subprotocol=upstream.subprotocol)
        tasks = [
            asyncio.create_task(_pump_client_to_upstream(websocket, upstream)),
            asyncio.create_task(_pump_upstream_to_client(websocket, upstream)),
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, (websockets.ConnectionClosed, WebSocketDisconnect)):
                logger.error(f"Websocket relay for {route.service} failed: {exc!r}")
    finally:
        await upstream.close()
        if websocket.client_state == WebSocketState.CONNECTED and websocket.application_state == WebSocketState.CONNECTED:
            await websocket.close()
