"""Tests for the selector preview endpoint."""

from fastapi.testclient import TestClient

from cosmic_relay.api.app import create_app
from cosmic_relay.errors import ExtractionError
from cosmic_relay.extraction.base import PreviewResult, SelectorProbe
from cosmic_relay.services.relay_service import RelayService
from tests.conftest import make_source, source_definition


def test_preview_returns_probes(client, extractor):
    extractor.preview = PreviewResult(
        url="https://example.org/candidate",
        results=[SelectorProbe(field="value", matches=2, value="42")],
        warnings=["selector #value matched 2 elements"],
    )

    response = client.post("/api/preview", json=source_definition("candidate"))

    assert response.status_code == 200
    body = response.json()
    assert body["results"] == [{"field": "value", "matches": 2, "value": "42", "error": None}]
    assert body["warnings"] == ["selector #value matched 2 elements"]


def test_invalid_definition_is_400(client):
    response = client.post("/api/preview", json={"id": "x", "url": "ftp://nope"})
    assert response.status_code == 400


def test_page_failure_is_500(client, extractor):
    async def broken(*args, **kwargs):
        raise ExtractionError("navigation failed")

    extractor.inspect = broken

    response = client.post("/api/preview", json=source_definition("candidate"))

    assert response.status_code == 500
    assert response.json()["detail"] == "Preview failed"


def test_forbidden_in_production(store, extractor, test_settings, clock):
    relay = RelayService(
        sources=[make_source("alpha")],
        store=store,
        extractor=extractor,
        settings=test_settings.model_copy(update={"environment": "production"}),
        clock=clock,
        background=False,
    )

    with TestClient(create_app(relay)) as client:
        response = client.post("/api/preview", json=source_definition("candidate"))

    assert response.status_code == 403
    assert response.json()["detail"] == "Preview endpoint disabled in production"
