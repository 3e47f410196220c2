from fastapi import APIRouter, Depends, HTTPException, Request

from fleet_console.console import Console, ensure_loaded
from fleet_console.errors import (
    ServiceError,
    SessionInProgress,
    UnreachableError,
    ValidationError,
)
from fleet_console.metrics import metrics
from fleet_console.schemas import (
    CopyResult,
    FleetSnapshot,
    ProvisioningSnapshot,
    SetupInstructionsRead,
    SubmitRequest,
    VMDetailSnapshot,
)


router = APIRouter()


def get_console(request: Request) -> Console:
    console = request.app.state.console
    if console is None:
        raise HTTPException(status_code=503, detail="console not started")
    return console


def _service_status(exc: ServiceError) -> int:
    if isinstance(exc, UnreachableError):
        return 503
    if exc.status_code is not None and 400 <= exc.status_code < 500:
        return exc.status_code
    return 502


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
def metrics_endpoint() -> dict[str, int | float]:
    return metrics.snapshot()


@router.get("/v1/fleet", response_model=FleetSnapshot, response_model_by_alias=False)
async def get_fleet(console: Console = Depends(get_console)) -> FleetSnapshot:
    await ensure_loaded(console.fleet)
    return console.fleet.snapshot()


@router.post(
    "/v1/fleet/refresh",
    response_model=FleetSnapshot,
    response_model_by_alias=False,
    status_code=202,
)
async def refresh_fleet(console: Console = Depends(get_console)) -> FleetSnapshot:
    console.fleet.request_refresh(manual=True)
    return console.fleet.snapshot()


@router.get(
    "/v1/vms/{vm_id}", response_model=VMDetailSnapshot, response_model_by_alias=False
)
async def get_vm_detail(
    vm_id: str, console: Console = Depends(get_console)
) -> VMDetailSnapshot:
    view = await console.open_detail(vm_id)
    await ensure_loaded(view)
    return view.snapshot()


@router.post(
    "/v1/vms/{vm_id}/refresh",
    response_model=VMDetailSnapshot,
    response_model_by_alias=False,
    status_code=202,
)
async def refresh_vm_detail(
    vm_id: str, console: Console = Depends(get_console)
) -> VMDetailSnapshot:
    view = await console.open_detail(vm_id)
    view.request_refresh(manual=True)
    return view.snapshot()


@router.delete("/v1/vms/{vm_id}/view")
async def close_vm_detail(
    vm_id: str, console: Console = Depends(get_console)
) -> dict[str, bool]:
    closed = await console.close_detail(vm_id)
    if not closed:
        raise HTTPException(status_code=404, detail="no open view for vm")
    return {"ok": True}


@router.get("/v1/provisioning", response_model=ProvisioningSnapshot)
async def get_provisioning(console: Console = Depends(get_console)) -> ProvisioningSnapshot:
    return console.provisioning.snapshot()


@router.post("/v1/provisioning", response_model=SetupInstructionsRead)
async def submit_provisioning(
    req: SubmitRequest, console: Console = Depends(get_console)
) -> SetupInstructionsRead:
    try:
        instructions = await console.provisioning.submit(req.vm_name)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SessionInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ServiceError as exc:
        raise HTTPException(status_code=_service_status(exc), detail=exc.message) from exc
    return SetupInstructionsRead(
        command=instructions.command, polling_link=instructions.polling_link
    )


@router.post("/v1/provisioning/copy", response_model=CopyResult)
async def copy_setup_command(console: Console = Depends(get_console)) -> CopyResult:
    if console.provisioning.session is None:
        raise HTTPException(status_code=404, detail="no setup command to copy")
    return CopyResult(copied=await console.provisioning.copy_command())


@router.delete("/v1/provisioning", response_model=ProvisioningSnapshot)
async def reset_provisioning(
    console: Console = Depends(get_console),
) -> ProvisioningSnapshot:
    await console.provisioning.reset()
    return console.provisioning.snapshot()
