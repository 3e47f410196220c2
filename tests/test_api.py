import json

import httpx
from fastapi.testclient import TestClient

from fleet_console.config import Settings
from fleet_console.console import Console, build_registry_client
from fleet_console.db import Base, engine
from fleet_console.main import app
from fleet_console.metrics import metrics


POLLING_LINK = "http://registry.test/setup/tok-1/status"
VMS = [
    {
        "vmId": "vm-1",
        "vmName": "aws-production-01",
        "status": "running",
        "cpuUsedPct": 40,
        "diskUsedMB": 800,
        "diskTotalMB": 1000,
    },
    {"vmId": "vm-2", "vmName": "edge-02", "status": "STOPPED"},
]


class FakeClipboard:
    async def copy(self, text: str) -> bool:
        return True


def _registry(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/vm":
        return httpx.Response(200, json=VMS)
    if path == "/vm/vm-1":
        metrics_rows = [
            {"timestamp": "2026-01-01T00:02:00Z", "cpuUsedPct": 20, "ramUsedMB": 512},
            {"timestamp": "2026-01-01T00:01:00Z", "cpuUsedPct": 10, "ramUsedMB": 256},
        ]
        return httpx.Response(200, json={**VMS[0], "metrics": metrics_rows})
    if path == "/vm/create":
        name = json.loads(request.content)["vmName"]
        if name == "taken":
            return httpx.Response(400, json={"error": "name already exists"})
        return httpx.Response(
            200, json={"command": f"curl setup | bash -s {name}", "pollingLink": POLLING_LINK}
        )
    if path == "/setup/tok-1/status":
        return httpx.Response(200, json=0)
    return httpx.Response(404, json={"error": "unknown vm"})


def setup_function() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    settings = Settings(
        registry_url="http://registry.test",
        disable_background_loops=True,
        install_display_delay_sec=0,
    )
    app.state.console = Console(
        settings,
        registry=build_registry_client(settings, transport=httpx.MockTransport(_registry)),
        clipboard=FakeClipboard(),
    )


def test_healthz():
    with TestClient(app) as client:
        response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_fleet_snapshot_and_summary():
    with TestClient(app) as client:
        response = client.get("/v1/fleet")
    assert response.status_code == 200
    body = response.json()
    assert [vm["vm_id"] for vm in body["vms"]] == ["vm-1", "vm-2"]
    assert "vmId" not in body["vms"][0]
    assert body["vms"][0]["cpu_used_pct"] == 40.0
    assert body["vms"][0]["disk_total_mb"] == 1000.0
    assert body["vms"][1]["status"] == "stopped"
    assert not body["loading"]
    assert body["summary"]["running_count"] == 1
    assert body["summary"]["avg_cpu_pct"] == 40.0
    assert body["summary"]["disk_status"] == "WARNING"


def test_manual_fleet_refresh_is_accepted():
    with TestClient(app) as client:
        response = client.post("/v1/fleet/refresh")
    assert response.status_code == 202
    assert response.json()["refreshing"]


def test_vm_detail_view_and_close():
    with TestClient(app) as client:
        detail = client.get("/v1/vms/vm-1")
        assert detail.status_code == 200
        body = detail.json()
        assert body["vm"]["vm_name"] == "aws-production-01"
        assert "vmName" not in body["vm"]
        assert set(body["vm"]["metrics"][0]) == {
            "timestamp",
            "cpu_used_pct",
            "ram_used_mb",
            "disk_used_mb",
        }
        assert [m["cpu_used_pct"] for m in body["vm"]["metrics"]] == [10.0, 20.0]
        assert not body["unreachable"]

        assert client.delete("/v1/vms/vm-1/view").status_code == 200
        assert client.delete("/v1/vms/vm-1/view").status_code == 404


def test_vm_detail_unreachable():
    with TestClient(app) as client:
        body = client.get("/v1/vms/missing").json()
    assert body["vm"] is None
    assert body["unreachable"]
    assert body["error"] == "Instance metadata unreachable."


def test_submit_and_inspect_provisioning():
    with TestClient(app) as client:
        created = client.post("/v1/provisioning", json={"vm_name": "  web-01  "})
        assert created.status_code == 200
        assert created.json() == {
            "command": "curl setup | bash -s web-01",
            "polling_link": POLLING_LINK,
        }

        state = client.get("/v1/provisioning").json()
        assert state["state"] == "AWAITING_AGENT"
        assert state["vm_name"] == "web-01"
        assert state["visible"]

        second = client.post("/v1/provisioning", json={"vm_name": "web-02"})
        assert second.status_code == 409

        copied = client.post("/v1/provisioning/copy")
        assert copied.json() == {"copied": True}

        reset = client.delete("/v1/provisioning")
        assert reset.status_code == 200
        assert reset.json()["state"] == "IDLE"
        assert reset.json()["vm_name"] is None


def test_submit_rejects_blank_name():
    with TestClient(app) as client:
        response = client.post("/v1/provisioning", json={"vm_name": "   "})
        assert response.status_code == 422
        assert response.json()["detail"] == "Instance name is required"
        assert client.get("/v1/provisioning").json()["state"] == "IDLE"


def test_submit_surfaces_registry_error():
    with TestClient(app) as client:
        response = client.post("/v1/provisioning", json={"vm_name": "taken"})
        assert response.status_code == 400
        assert response.json()["detail"] == "name already exists"
        state = client.get("/v1/provisioning").json()
    assert state["state"] == "IDLE"
    assert state["error"] == "name already exists"


def test_copy_without_session_is_not_found():
    with TestClient(app) as client:
        assert client.post("/v1/provisioning/copy").status_code == 404


def test_metrics_count_fleet_refreshes():
    before = metrics.get("fleet_refresh_ok_total")
    with TestClient(app) as client:
        client.get("/v1/fleet")
        body = client.get("/metrics").json()
    assert body["fleet_refresh_ok_total"] == before + 1


def test_console_not_started_is_unavailable():
    app.state.console = None
    client = TestClient(app)
    assert client.get("/v1/fleet").status_code == 503


def test_detail_views_are_capped():
    settings = Settings(
        registry_url="http://registry.test", disable_background_loops=True, max_detail_views=1
    )
    console = Console(
        settings,
        registry=build_registry_client(settings, transport=httpx.MockTransport(_registry)),
        clipboard=FakeClipboard(),
    )
    app.state.console = console
    with TestClient(app) as client:
        client.get("/v1/vms/vm-1")
        client.get("/v1/vms/vm-2")
        assert list(console.details) == ["vm-2"]
        assert client.delete("/v1/vms/vm-1/view").status_code == 404
        assert client.get("/metrics").json()["detail_views_open"] == 1
