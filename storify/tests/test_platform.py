"""
Cross-cutting HTTP behavior: error envelope, request ids, health, metrics.
"""
import pytest

from storify.core.metrics import METRICS, listening_denied_total, normalize_path


def test_error_envelope_carries_request_id(client):
    response = client.get("/api/subscription/active")

    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "unauthorized"
    assert body["error"]["request_id"] == response.headers["x-request-id"]
    assert body["detail"] == body["message"] == body["error"]["message"]


def test_incoming_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"x-request-id": "rid-123"})
    assert response.status_code == 200
    assert response.headers["x-request-id"] == "rid-123"


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_readyz_reports_tables(client):
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_exposes_request_counter(client):
    client.get("/healthz")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "# TYPE http_requests_total counter" in response.text
    assert 'http_requests_total{method="GET",path="/healthz",status="200"} 1.0' in response.text


def test_normalize_path_collapses_ids():
    assert normalize_path("/api/payment/42") == "/api/payment/:id"
    assert normalize_path("/api/playback/7/") == "/api/playback/:id"
    assert normalize_path("/api/books") == "/api/books"


def test_malformed_request_id_is_replaced(client):
    response = client.get("/healthz", headers={"x-request-id": "bad id with spaces"})
    assert response.status_code == 200
    assert response.headers["x-request-id"] != "bad id with spaces"
    assert len(response.headers["x-request-id"]) == 36


def test_metrics_carry_help_and_reject_unknown_labels():
    listening_denied_total.inc(labels={"reason": "guest_limit"})
    text = METRICS.export_prometheus()
    assert "# HELP listening_denied_total Plays refused by the listening limit" in text
    assert 'listening_denied_total{reason="guest_limit"} 1.0' in text

    with pytest.raises(ValueError):
        listening_denied_total.inc(labels={"user": "u1"})
