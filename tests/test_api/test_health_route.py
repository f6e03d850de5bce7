"""Tests for the health endpoint and service availability."""

from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from cosmic_relay.api.app import create_app


def test_healthy(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"] is True
    assert body["sources"] == 3
    assert body["enabled_sources"] == 2
    assert body["in_flight"] == 0
    assert body["subscribers"] == 0


def test_store_down_reports_unhealthy(client, store):
    store.health_check = AsyncMock(side_effect=ConnectionError("refused"))

    body = client.get("/health").json()

    assert body["status"] == "unhealthy"
    assert body["store"] is False


def test_subscribers_counted(client):
    with client.websocket_connect("/ws/sources/alpha") as ws:
        ws.receive_json()
        assert client.get("/health").json()["subscribers"] == 1


def test_unavailable_outside_lifespan():
    client = TestClient(create_app())
    response = client.get("/health")
    assert response.status_code == 503


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Cosmic Relay API"
