from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from main import create_app
from services import metrics


def test_healthz_reports_store_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["db_ok"] is True
    assert body["db_error"] is None
    assert body["version"]


def test_healthz_stays_200_when_store_is_down(client, store):
    store.ping_error = RuntimeError("connection refused")
    r = client.get("/healthz")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["db_ok"] is False
    assert body["db_error"] == "RuntimeError: connection refused"


def test_lifespan_leaves_injected_store_alone(store):
    with TestClient(create_app(store=store)) as client:
        assert client.get("/healthz").status_code == 200
    assert store.opened is False
    assert store.closed is False


def test_metrics_endpoint_renders_prometheus_text(client):
    client.get("/healthz")
    r = client.get("/metrics")
    assert r.status_code == 200, r.text
    assert r.headers["content-type"].startswith("text/plain")
    assert r.headers["cache-control"] == "no-store"
    assert "# TYPE http_requests_total counter" in r.text
    assert 'http_requests_total{route="/healthz",status="200"} 1' in r.text


def test_render_prometheus_empty_and_labels():
    assert metrics.render_prometheus() == ""
    metrics.increment_payout_attempt("opennode", "submitted", 3)
    metrics.increment_webhook_event("opennode", signature_valid=True, applied=False)
    text = metrics.render_prometheus()
    assert 'payout_attempts_total{provider="opennode",result="submitted"} 3' in text
    assert 'webhook_events_total{applied="false",provider="opennode",signature_valid="true"} 1' in text


def test_request_id_added_when_missing(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200, resp.text
    assert resp.headers.get("X-Request-Id")


def test_request_id_echoed_when_present(client):
    resp = client.get("/healthz", headers={"X-Request-Id": "client-request-id"})
    assert resp.headers.get("X-Request-Id") == "client-request-id"


def test_request_log_line_includes_method_path_status(client, caplog):
    caplog.set_level(logging.INFO, logger="marketplace.http")
    resp = client.get("/healthz")
    assert resp.status_code == 200, resp.text
    assert any(
        "http_request" in record.message
        and "method=GET" in record.message
        and "path=/healthz" in record.message
        and "status=200" in record.message
        and "duration_ms=" in record.message
        for record in caplog.records
    )


def test_unhandled_error_returns_generic_500(store):
    app = create_app(store=store)

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret detail")

    client = TestClient(app, raise_server_exceptions=False)
    r = client.get("/boom")
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal server error"}
    assert "secret detail" not in r.text
