# gateway.py
import logging
import socket
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gateway.auth import AuthenticationError, authenticate, require_claims
from gateway.config import GatewayConfig
from gateway.proxy import forward, relay_websocket
from gateway.ratelimit import RateLimiter
from gateway.routes import RouteTable, default_routes

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
RATE_LIMIT_MESSAGE = "Too many requests, please try again later."
WS_ROUTE_NOT_FOUND = 4404


def _client_key(connection) -> str:
    return connection.client.host if connection.client else "unknown"


def create_app(
    config: GatewayConfig,
    routes: Optional[RouteTable] = None,
    rate_limiter: Optional[RateLimiter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the gateway application from an explicit configuration."""
    routes = routes or default_routes(config)
    limiter = rate_limiter or RateLimiter(config.rate_limit_max, config.rate_limit_window_seconds)
    http_client = httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(config.upstream_timeout),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Routing {len(routes)} prefixes: {', '.join(r.prefix for r in routes)}")
        yield
        await http_client.aclose()

    app = FastAPI(
        title="Delivery Gateway",
        description="Routes requests to the user, restaurant, order, payment and notification services",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.routes = routes
    app.state.rate_limiter = limiter
    app.state.http_client = http_client

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request: Request, exc: AuthenticationError):
        logger.info(f"401 {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Error encountered: {exc}", exc_info=exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        decision = limiter.hit(_client_key(request))
        limit_headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
        }
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {_client_key(request)}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": RATE_LIMIT_MESSAGE},
                headers={"Retry-After": str(decision.retry_after), **limit_headers},
            )
        response = await call_next(request)
        response.headers.update(limit_headers)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials="*" not in config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Gateway"])
    def health_check():
        return {"status": "ok", "gateway": "Delivery Gateway", "routes": [r.prefix for r in routes]}

    @app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy_request(request: Request):
        claims = authenticate(request, config.jwt_secret, config.jwt_algorithm)
        route = routes.match(request.url.path)
        if route is None:
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Route not found"})
        require_claims(route, claims)
        return await forward(request, route, http_client)

    @app.websocket("/{path:path}")
    async def proxy_websocket(websocket: WebSocket):
        if not limiter.hit(_client_key(websocket)).allowed:
            await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=RATE_LIMIT_MESSAGE)
            return

        # same order as proxy_request: a bad token is refused before routing
        try:
            claims = authenticate(websocket, config.jwt_secret, config.jwt_algorithm)
            route = routes.match(websocket.url.path)
            if route is None or not route.websocket:
                await websocket.close(code=WS_ROUTE_NOT_FOUND, reason="Route not found")
                return
            require_claims(route, claims)
        except AuthenticationError as exc:
            logger.info(f"Websocket rejected on {websocket.url.path}: {exc.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
            return

        await relay_websocket(websocket, route, config.upstream_timeout)

    return app


def main():
    config = GatewayConfig.from_env()
    logging.basicConfig(level=config.log_level)

    app = create_app(config)

    hostname = socket.gethostname()
    try:
        local_ip = socket.gethostbyname(hostname)
    except socket.gaierror:
        local_ip = "127.0.0.1"
    logging.info(f"✅ API Gateway running on http://{local_ip}:{config.port}")

    uvicorn.run(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
