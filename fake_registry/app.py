import secrets
import uuid
from datetime import UTC, datetime, timedelta
from threading import Lock

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from fake_registry.config import get_settings


app = FastAPI(title="Fake VM Registry")

_lock = Lock()
_vms: dict[str, dict] = {}
_samples: dict[str, list[dict]] = {}
_tokens: dict[str, dict] = {}

STATUS_INSTALLED = 1
STATUS_PENDING = 0
STATUS_INVALID = -1
STATUS_EXPIRED = -2


def _shell_single_quote(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _now() -> datetime:
    return datetime.now(UTC)


def reset_state() -> None:
    with _lock:
        _vms.clear()
        _samples.clear()
        _tokens.clear()


def _token_expired(row: dict) -> bool:
    ttl = timedelta(seconds=get_settings().token_ttl_sec)
    return _now() - row["created_at"] > ttl


def _name_taken(vm_name: str) -> bool:
    if any(vm["vmName"] == vm_name for vm in _vms.values()):
        return True
    return any(
        row["vm_name"] == vm_name
        and not row["consumed"]
        and not _token_expired(row)
        for row in _tokens.values()
    )


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok", "vms": len(_vms), "pending_tokens": len(_tokens)}


@app.get("/vm")
def list_vms() -> list[dict]:
    with _lock:
        return [dict(vm) for vm in _vms.values()]


@app.get("/vm/{vm_id}")
def get_vm(vm_id: str, limit: int = Query(default=50, ge=1, le=500)):
    with _lock:
        vm = _vms.get(vm_id)
        if vm is None:
            return _error(404, "unknown vm")
        newest_first = list(reversed(_samples.get(vm_id, [])))[:limit]
        return {**vm, "metrics": newest_first}


@app.post("/vm/create")
def create_vm(payload: dict):
    vm_name = str(payload.get("vmName") or "").strip()
    if not vm_name:
        return _error(400, "vmName is required")
    settings = get_settings()
    with _lock:
        if _name_taken(vm_name):
            return _error(400, "name already exists")
        token = secrets.token_urlsafe(24)
        _tokens[token] = {
            "vm_name": vm_name,
            "created_at": _now(),
            "consumed": False,
            "vm_id": None,
        }
    base = settings.public_url.rstrip("/")
    command = (
        f"curl -fsSL {base}/setup/{token}/install.sh | sudo bash -s -- "
        f"--name {_shell_single_quote(vm_name)}"
    )
    return {"command": command, "pollingLink": f"{base}/setup/{token}/status"}


@app.get("/setup/{token}/status")
def setup_status(token: str) -> int:
    with _lock:
        row = _tokens.get(token)
        if row is None:
            return STATUS_INVALID
        if row["consumed"]:
            return STATUS_INSTALLED
        if _token_expired(row):
            return STATUS_EXPIRED
        return STATUS_PENDING


@app.post("/setup/{token}/consume")
def consume_token(token: str, payload: dict | None = None):
    payload = payload or {}
    settings = get_settings()
    with _lock:
        row = _tokens.get(token)
        if row is None:
            return _error(404, "unknown token")
        if row["consumed"]:
            return _error(409, "token already used")
        if _token_expired(row):
            return _error(410, "token expired")
        vm_id = uuid.uuid4().hex
        _vms[vm_id] = {
            "vmId": vm_id,
            "vmName": row["vm_name"],
            "status": "running",
            "publicIp": payload.get("publicIp"),
            "hostname": payload.get("hostname"),
            "cpuUsedPct": 0.0,
            "ramUsedMB": 0,
            "ramTotalMB": payload.get("ramTotalMB", settings.default_ram_total_mb),
            "diskUsedMB": 0,
            "diskTotalMB": payload.get("diskTotalMB", settings.default_disk_total_mb),
            "timestamp": _now().isoformat(),
        }
        _samples[vm_id] = []
        row["consumed"] = True
        row["vm_id"] = vm_id
    return {"vmId": vm_id}


@app.post("/vm/{vm_id}/telemetry")
def report_telemetry(vm_id: str, payload: dict):
    settings = get_settings()
    now = _now().isoformat()
    with _lock:
        vm = _vms.get(vm_id)
        if vm is None:
            return _error(404, "unknown vm")
        sample = {
            "timestamp": now,
            "cpuUsedPct": float(payload.get("cpuUsedPct", 0.0)),
            "ramUsedMB": payload.get("ramUsedMB", 0),
            "diskUsedMB": payload.get("diskUsedMB", vm["diskUsedMB"]),
        }
        history = _samples.setdefault(vm_id, [])
        history.append(sample)
        del history[: max(len(history) - settings.max_samples, 0)]
        vm.update(
            {
                "status": payload.get("status", "running"),
                "cpuUsedPct": sample["cpuUsedPct"],
                "ramUsedMB": sample["ramUsedMB"],
                "diskUsedMB": sample["diskUsedMB"],
                "timestamp": now,
            }
        )
    return {"ok": True}
