"""Tests for the dashboard and monitoring API endpoints."""

from __future__ import annotations

import json

import pytest

import satwatch.main as main_module

from conftest import http_failure, make_anomaly, make_sample


@pytest.fixture
async def loaded(gateway):
    """Start the server engine and wait for the first batch."""
    engine = main_module.get_engine()
    await engine.start()
    await engine.wait_for_batches()
    return engine


@pytest.mark.asyncio
async def test_health(client, loaded):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["engine_running"] is True
    assert data["upstream"] == {"status": "healthy"}
    assert "uptime_seconds" in data


@pytest.mark.asyncio
async def test_health_degraded_when_upstream_down(client, gateway):
    gateway.failures["health"] = http_failure("health", status=503)
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["upstream_ok"] is False


@pytest.mark.asyncio
async def test_stats_after_batch(client, loaded):
    resp = await client.get("/api/v1/stats")
    data = resp.json()
    assert data["batches"]["applied"] == 1
    assert data["generation"] == 1


@pytest.mark.asyncio
async def test_state_snapshot(client, loaded):
    resp = await client.get("/api/v1/state")
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["telemetry"]) == 2
    assert data["current_status"]["status"] == "NORMAL"
    assert set(data["aggregations"]) == {"avg", "min", "max"}
    assert data["aggregations"]["min"][0]["min_temperature"] == 27.0
    assert data["error"] is None
    assert data["window"]["bucket_size"] == "1 hour"


@pytest.mark.asyncio
async def test_state_shows_batch_error(client, gateway):
    gateway.failures["aggregations/max"] = http_failure("aggregations/max")
    engine = main_module.get_engine()
    await engine.start()
    await engine.wait_for_batches()

    data = (await client.get("/api/v1/state")).json()
    assert data["telemetry"] == []
    assert "aggregations/max" in data["error"]
    assert data["failed_resources"] == ["aggregations/max"]


@pytest.mark.asyncio
async def test_vitals(client, gateway, loaded):
    resp = await client.get("/api/v1/vitals")
    data = resp.json()
    assert data["status"] == "NORMAL"
    assert [m["name"] for m in data["metrics"]] == [
        "temperature", "battery", "altitude", "signal_strength",
    ]


@pytest.mark.asyncio
async def test_telemetry_view_search_and_paging(client, gateway):
    gateway.telemetry = [make_sample(i, packet_id=4200 + i if i % 2 else i) for i in range(1, 31)]
    engine = main_module.get_engine()
    await engine.start()
    await engine.wait_for_batches()

    resp = await client.get("/api/v1/views/telemetry", params={"search": "42", "page_size": 10, "page": 1})
    data = resp.json()
    assert data["total"] == 15
    assert data["page"] == 1
    assert data["page_count"] == 2
    assert len(data["rows"]) == 5

    resp = await client.get("/api/v1/views/telemetry", params={"page_size": 25})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_anomaly_view(client, gateway):
    gateway.anomalies = [make_anomaly(i, age_seconds=3600) for i in range(1, 13)]
    engine = main_module.get_engine()
    await engine.start()
    await engine.wait_for_batches()

    first = (await client.get("/api/v1/views/anomalies")).json()
    assert first["total"] == 12
    assert first["page_count"] == 2
    assert len(first["rows"]) == 10

    second = (await client.get("/api/v1/views/anomalies", params={"page": 1})).json()
    assert second["page"] == 1
    assert len(second["rows"]) == 2

    filtered = (await client.get("/api/v1/views/anomalies", params={"type": "LOW_BATTERY", "page": 1})).json()
    assert filtered["total"] == 0
    assert filtered["page"] == 0


@pytest.mark.asyncio
async def test_chart_view(client, loaded):
    data = (await client.get("/api/v1/views/charts")).json()
    assert len(data["telemetry"]) == 2
    assert len(data["aggregations"]["max"]) == 2


@pytest.mark.asyncio
async def test_csv_export(client, loaded):
    resp = await client.get("/api/v1/export/telemetry.csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.strip().split("\n")
    assert len(lines) == 3


@pytest.mark.asyncio
async def test_notifications(client, gateway):
    gateway.anomalies = [make_anomaly(1, age_seconds=10)]
    engine = main_module.get_engine()
    await engine.start()
    await engine.wait_for_batches()

    data = (await client.get("/api/v1/notifications")).json()
    assert data["total"] == 1
    assert data["notifications"][0]["title"] == "HIGH_TEMPERATURE"
    assert data["notifications"][0]["message"] == "temperature: 38.50 (Thr: 35.00)"


@pytest.mark.asyncio
async def test_manual_refresh(client, gateway, loaded):
    before = gateway.count("current")
    resp = await client.post("/api/v1/refresh")
    assert resp.json() == {"ok": True, "updated": True}
    assert gateway.count("current") == before + 1


@pytest.mark.asyncio
async def test_auto_refresh_toggle(client, loaded):
    resp = await client.put(
        "/api/v1/auto-refresh",
        content=json.dumps({"enabled": True, "interval_seconds": 30}),
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json()["auto_refresh"] is True
    assert loaded.polling

    resp = await client.put("/api/v1/auto-refresh", content=json.dumps({"enabled": False}))
    assert resp.json()["auto_refresh"] is False
    assert not loaded.polling


@pytest.mark.asyncio
async def test_auto_refresh_rejects_bad_body(client):
    resp = await client.put("/api/v1/auto-refresh", content=b"not json at all")
    assert resp.status_code == 400
    resp = await client.put("/api/v1/auto-refresh", content=json.dumps({"enabled": True, "interval_seconds": -1}))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_query_window_triggers_batch(client, gateway, loaded):
    body = {
        "start_time": "2025-03-01T10:00:00Z",
        "end_time": "2025-03-01T12:00:00Z",
        "bucket_size": "5 minutes",
    }
    resp = await client.put("/api/v1/query-window", content=json.dumps(body))
    assert resp.status_code == 200
    assert resp.json()["generation"] == 2

    await loaded.wait_for_batches()
    assert gateway.windows[-1].bucket_size == "5 minutes"
    assert loaded.state.window.bucket_size == "5 minutes"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"start_time": "2025-03-01T10:00:00Z", "end_time": "2025-03-01T12:00:00Z", "bucket_size": "2 hours"},
    {"start_time": "2025-03-01T12:00:00Z", "end_time": "2025-03-01T10:00:00Z"},
    {"start_time": "soon", "end_time": "2025-03-01T10:00:00Z"},
    {"end_time": "2025-03-01T10:00:00Z"},
])
async def test_query_window_rejects_invalid(client, body):
    resp = await client.put("/api/v1/query-window", content=json.dumps(body))
    assert resp.status_code == 400
    assert resp.json()["ok"] is False


@pytest.mark.asyncio
async def test_auto_refresh_reenable_after_polling_disabled(client, loaded):
    interval = loaded.poll_interval
    loaded.disable_polling()

    resp = await client.put("/api/v1/auto-refresh", content=json.dumps({"enabled": True}))
    assert resp.status_code == 200
    data = resp.json()
    assert data["auto_refresh"] is True
    assert data["interval_seconds"] == interval
    assert loaded.polling
