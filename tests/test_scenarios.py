"""
End-to-end scenarios: the gateway in front of the real service apps.

Each upstream host is served in-process through httpx.ASGITransport.
"""

import uuid

import httpx
import pytest
from fastapi.testclient import TestClient

from delivery.order_service.main import app as order_app
from delivery.restaurant_service.main import app as restaurant_app
from delivery.user_service.main import app as user_app
from gateway.config import GatewayConfig
from gateway.gateway import create_app


class ServiceTransport(httpx.AsyncBaseTransport):
    """Dispatches upstream requests to in-process apps by host name."""

    def __init__(self, apps):
        self.transports = {host: httpx.ASGITransport(app=app) for host, app in apps.items()}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        transport = self.transports.get(request.url.host)
        if transport is None:
            raise httpx.ConnectError(f"No route to {request.url.host}", request=request)
        return await transport.handle_async_request(request)


@pytest.fixture
def gateway(jwt_secret):
    config = GatewayConfig(
        jwt_secret=jwt_secret,
        service_urls={
            "user": "http://user-service",
            "restaurant": "http://restaurant-service",
            "order": "http://order-service",
        },
    )
    transport = ServiceTransport({
        "user-service": user_app,
        "restaurant-service": restaurant_app,
        "order-service": order_app,
    })
    with TestClient(create_app(config, transport=transport)) as client:
        yield client


def login(gateway, email):
    gateway.post("/api/auth/register", json={"name": "A", "email": email, "password": "p"})
    response = gateway.post("/api/auth/login", json={"email": email, "password": "p"})
    return response.json()["token"]


def test_register_twice_through_gateway(gateway):
    payload = {"name": "A", "email": f"{uuid.uuid4().hex[:8]}@x.com", "password": "p"}

    first = gateway.post("/api/auth/register", json=payload)
    assert first.status_code == 200
    assert first.json() == {"message": "User registered"}

    second = gateway.post("/api/auth/register", json=payload)
    assert second.status_code == 400
    assert second.json() == {"message": "Email already exists"}


def test_login_token_opens_protected_routes(gateway):
    token = login(gateway, f"{uuid.uuid4().hex[:8]}@x.com")
    headers = {"Authorization": f"Bearer {token}"}

    created = gateway.post(
        "/api/restaurants",
        json={"name": "Warung", "address": "Jl. Mawar 1"},
        headers=headers,
    )
    assert created.status_code == 200
    restaurant_id = created.json()["restaurant"]["id"]

    order = gateway.post(
        "/api/orders",
        json={
            "userId": "u1",
            "restaurantId": restaurant_id,
            "items": [{"price": 10, "quantity": 2}, {"price": 5, "quantity": 3}],
            "totalPrice": 999,
        },
        headers=headers,
    )
    assert order.status_code == 200
    assert order.json()["order"]["totalPrice"] == 35


def test_protected_route_without_token_never_reaches_service(gateway):
    response = gateway.get("/api/restaurants")

    assert response.status_code == 401


def test_unimplemented_upstream_is_a_proxy_error(gateway):
    token = login(gateway, f"{uuid.uuid4().hex[:8]}@x.com")

    response = gateway.get("/api/payments", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 502
    assert response.json() == {"error": "Proxy error"}
    assert gateway.get("/health").status_code == 200
