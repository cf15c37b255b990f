"""
Tests for the order service
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from delivery.order_service.main import OrderItemSchema, app, calculate_total


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user_id():
    return uuid.uuid4().hex


def place_order(client, user_id, items, **extra):
    return client.post("/orders", json={"userId": user_id, "restaurantId": "r1", "items": items, **extra})


def test_calculate_total():
    items = [OrderItemSchema(price=10, quantity=2), OrderItemSchema(price=5, quantity=3)]

    assert calculate_total(items) == 35


def test_total_ignores_client_submitted_value(client, user_id):
    response = place_order(
        client, user_id,
        [{"name": "Sate", "price": 10, "quantity": 2}, {"name": "Teh", "price": 5, "quantity": 3}],
        totalPrice=1,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Order created"
    assert body["order"]["totalPrice"] == 35
    assert body["order"]["status"] == "pending"


def test_get_order(client, user_id):
    order = place_order(client, user_id, [{"price": 2, "quantity": 1}]).json()["order"]

    response = client.get(f"/orders/{order['id']}")

    assert response.status_code == 200
    assert response.json()["userId"] == user_id


def test_unknown_order(client):
    response = client.get("/orders/missing")

    assert response.status_code == 404
    assert response.json() == {"message": "Order not found"}


def test_user_order_history(client, user_id):
    place_order(client, user_id, [{"price": 1, "quantity": 1}])
    place_order(client, user_id, [{"price": 2, "quantity": 1}])

    history = client.get(f"/users/{user_id}/orders").json()
    alias = client.get(f"/orders/user/{user_id}").json()

    assert [o["totalPrice"] for o in history] == [1, 2]
    assert history == alias


@pytest.mark.parametrize("new_status", ["delivered", "preparing", "on-the-way", "pending"])
def test_any_status_transition_is_allowed(client, user_id, new_status):
    order = place_order(client, user_id, [{"price": 1, "quantity": 1}]).json()["order"]

    response = client.put(f"/orders/{order['id']}/status", json={"status": new_status})

    assert response.status_code == 200
    assert response.json()["message"] == "Status updated"
    assert response.json()["order"]["status"] == new_status


def test_unknown_status_is_rejected(client, user_id):
    order = place_order(client, user_id, [{"price": 1, "quantity": 1}]).json()["order"]

    response = client.put(f"/orders/{order['id']}/status", json={"status": "lost"})

    assert response.status_code == 422


def test_quantity_must_be_positive(client, user_id):
    response = place_order(client, user_id, [{"price": 1, "quantity": 0}])

    assert response.status_code == 422
