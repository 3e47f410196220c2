from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient

from fake_registry import app as fake_app


def setup_function() -> None:
    fake_app.reset_state()


def _token(polling_link: str) -> str:
    return polling_link.rstrip("/").split("/")[-2]


def test_fake_registry_onboarding_lifecycle() -> None:
    client = TestClient(fake_app.app)
    created = client.post("/vm/create", json={"vmName": "aws-production-01"})
    assert created.status_code == 200
    body = created.json()
    assert body["command"].endswith("--name 'aws-production-01'")
    token = _token(body["pollingLink"])

    assert client.get(f"/setup/{token}/status").json() == 0

    consumed = client.post(f"/setup/{token}/consume", json={"hostname": "web-1"})
    assert consumed.status_code == 200
    vm_id = consumed.json()["vmId"]

    assert client.get(f"/setup/{token}/status").json() == 1
    assert client.post(f"/setup/{token}/consume", json={}).status_code == 409

    vms = client.get("/vm").json()
    assert [vm["vmId"] for vm in vms] == [vm_id]
    assert vms[0]["status"] == "running"


def test_fake_registry_rejects_duplicate_and_blank_names() -> None:
    client = TestClient(fake_app.app)
    assert client.post("/vm/create", json={"vmName": "dup"}).status_code == 200
    duplicate = client.post("/vm/create", json={"vmName": "dup"})
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "name already exists"}
    blank = client.post("/vm/create", json={"vmName": "  "})
    assert blank.status_code == 400
    assert blank.json() == {"error": "vmName is required"}


def test_fake_registry_token_status_codes() -> None:
    client = TestClient(fake_app.app)
    assert client.get("/setup/never-issued/status").json() == -1

    token = _token(client.post("/vm/create", json={"vmName": "old"}).json()["pollingLink"])
    fake_app._tokens[token]["created_at"] = datetime.now(UTC) - timedelta(days=2)
    assert client.get(f"/setup/{token}/status").json() == -2
    assert client.post(f"/setup/{token}/consume", json={}).status_code == 410
    assert client.post("/vm/create", json={"vmName": "old"}).status_code == 200


def test_fake_registry_telemetry_is_newest_first() -> None:
    client = TestClient(fake_app.app)
    token = _token(client.post("/vm/create", json={"vmName": "t"}).json()["pollingLink"])
    vm_id = client.post(f"/setup/{token}/consume", json={}).json()["vmId"]
    for cpu in (10, 20, 30):
        assert client.post(f"/vm/{vm_id}/telemetry", json={"cpuUsedPct": cpu}).status_code == 200

    body = client.get(f"/vm/{vm_id}", params={"limit": 2}).json()
    assert [m["cpuUsedPct"] for m in body["metrics"]] == [30.0, 20.0]
    assert body["cpuUsedPct"] == 30.0
    assert client.get("/vm/unknown").status_code == 404
