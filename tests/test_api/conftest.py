"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from cosmic_relay.api.app import create_app
from cosmic_relay.services.relay_service import RelayService
from tests.conftest import make_source


@pytest.fixture
def relay(store, extractor, test_settings, clock):
    """Relay service over the in-memory store with the tick loop left to the test."""
    return RelayService(
        sources=[make_source("alpha"), make_source("beta"), make_source("off", permitted=False)],
        store=store,
        extractor=extractor,
        settings=test_settings,
        clock=clock,
        background=False,
    )


@pytest.fixture
def client(relay):
    """FastAPI TestClient running the relay lifespan."""
    app = create_app(relay)
    with TestClient(app) as c:
        yield c
