import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from fleet_console.clients.registry import INSTANCE_UNREACHABLE_MESSAGE, RegistryClient
from fleet_console.errors import ConsoleError
from fleet_console.loops import IntervalTimer
from fleet_console.metrics import metrics
from fleet_console.schemas import (
    FleetSnapshot,
    FleetSummary,
    VMDetailSnapshot,
    VMRecord,
)


logger = logging.getLogger(__name__)

DISK_WARNING_PCT = 75.0
DISK_CRITICAL_PCT = 90.0


class TelemetryView:
    """Periodic plus on-demand refresh of data fetched from the registry.

    Every completed fetch replaces the held data in full, so when fetches
    overlap the one that completes last wins. A manual refresh keeps
    ``refreshing`` asserted until both ``min_visible_sec`` have elapsed and
    the fetch has finished.
    """

    metric_prefix = "telemetry"

    def __init__(
        self,
        name: str,
        *,
        interval_sec: float = 5.0,
        min_visible_sec: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.min_visible_sec = min_visible_sec
        self.clock = clock
        self.last_refreshed_at: datetime | None = None
        self._timer = IntervalTimer(name, interval_sec, self.refresh)
        self._tasks: set[asyncio.Task] = set()
        self._settled = False
        self._closed = False
        self._manual_inflight = 0
        self._refreshing_until = 0.0

    async def _fetch(self) -> object:
        raise NotImplementedError

    def _apply(self, result: object) -> None:
        raise NotImplementedError

    def _on_failure(self, exc: ConsoleError) -> None:
        raise NotImplementedError

    @property
    def active(self) -> bool:
        return self._timer.running

    @property
    def loading(self) -> bool:
        return not self._settled

    @property
    def refreshing(self) -> bool:
        return self._manual_inflight > 0 or self.clock() < self._refreshing_until

    def start(self) -> "TelemetryView":
        if self._closed:
            raise RuntimeError(f"{self.name} view already stopped")
        self._timer.start()
        logger.info("telemetry view started name=%s", self.name)
        return self

    async def stop(self) -> None:
        self._closed = True
        await self._timer.stop()
        pending = [task for task in self._tasks if task is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._manual_inflight = 0
        self._refreshing_until = 0.0
        logger.info("telemetry view stopped name=%s", self.name)

    def request_refresh(self, manual: bool = False) -> asyncio.Task | None:
        """Schedule a refresh without waiting for it; the indicator is raised now."""
        if self._closed:
            return None
        if manual:
            self._raise_indicator()
        task = asyncio.create_task(self._refresh(manual), name=f"{self.name}-refresh")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def refresh(self, manual: bool = False) -> bool:
        if self._closed:
            logger.debug("refresh skipped on stopped view name=%s", self.name)
            return False
        if manual:
            self._raise_indicator()
        return await self._refresh(manual)

    def _raise_indicator(self) -> None:
        self._manual_inflight += 1
        self._refreshing_until = max(
            self._refreshing_until, self.clock() + self.min_visible_sec
        )

    async def _refresh(self, manual: bool) -> bool:
        try:
            try:
                result = await self._fetch()
            except ConsoleError as exc:
                if self._closed:
                    return False
                self._settled = True
                metrics.inc(f"{self.metric_prefix}_refresh_failed_total")
                self._on_failure(exc)
                return False
            if self._closed:
                return False
            self._settled = True
            self._apply(result)
            self.last_refreshed_at = datetime.now(UTC)
            metrics.inc(f"{self.metric_prefix}_refresh_ok_total")
            return True
        finally:
            if manual and self._manual_inflight > 0:
                self._manual_inflight -= 1


class FleetStore(TelemetryView):
    """Process-wide holder of the latest record per VM; ``refresh`` is its only mutator."""

    metric_prefix = "fleet"

    def __init__(self, registry: RegistryClient, **kwargs):
        super().__init__("fleet-refresh", **kwargs)
        self.registry = registry
        self._vms: tuple[VMRecord, ...] = ()

    @property
    def vms(self) -> tuple[VMRecord, ...]:
        return self._vms

    def get(self, vm_id: str) -> VMRecord | None:
        for vm in self._vms:
            if vm.vm_id == vm_id:
                return vm
        return None

    async def _fetch(self) -> list[VMRecord]:
        return await self.registry.list_vms()

    def _apply(self, result: list[VMRecord]) -> None:
        self._vms = tuple(result)

    def _on_failure(self, exc: ConsoleError) -> None:
        # stale data stays; the next tick retries
        logger.warning("fleet refresh failed, keeping %s cached vms: %s", len(self._vms), exc)

    def summary(self) -> FleetSummary:
        return summarize_fleet(self._vms)

    def snapshot(self) -> FleetSnapshot:
        return FleetSnapshot(
            vms=[vm.model_copy(deep=True) for vm in self._vms],
            loading=self.loading,
            refreshing=self.refreshing,
            last_refreshed_at=self.last_refreshed_at,
            summary=self.summary(),
        )


class VMDetailView(TelemetryView):
    metric_prefix = "detail"

    def __init__(self, registry: RegistryClient, vm_id: str, limit: int = 50, **kwargs):
        super().__init__(f"vm-detail-{vm_id}", **kwargs)
        self.registry = registry
        self.vm_id = vm_id
        self.limit = limit
        self.vm: VMRecord | None = None
        self.error: str | None = None

    @property
    def unreachable(self) -> bool:
        return self._settled and self.vm is None

    async def _fetch(self) -> VMRecord:
        return await self.registry.get_vm(self.vm_id, limit=self.limit)

    def _apply(self, result: VMRecord) -> None:
        self.vm = result
        self.error = None

    def _on_failure(self, exc: ConsoleError) -> None:
        if self.vm is None:
            self.error = INSTANCE_UNREACHABLE_MESSAGE
            logger.warning("vm detail unreachable vm_id=%s: %s", self.vm_id, exc)
            return
        logger.warning("vm detail refresh failed, keeping stale data vm_id=%s: %s", self.vm_id, exc)

    def snapshot(self) -> VMDetailSnapshot:
        return VMDetailSnapshot(
            vm_id=self.vm_id,
            vm=self.vm.model_copy(deep=True) if self.vm else None,
            loading=self.loading,
            refreshing=self.refreshing,
            unreachable=self.unreachable,
            error=self.error,
            last_refreshed_at=self.last_refreshed_at,
        )


def summarize_fleet(vms: tuple[VMRecord, ...] | list[VMRecord]) -> FleetSummary:
    running = [vm for vm in vms if vm.status == "running"]
    count = len(running)
    avg_cpu = round(sum(vm.cpu_used_pct for vm in running) / count, 1) if count else 0.0
    disk_usages = [
        (vm.disk_used_mb / vm.disk_total_mb) * 100 if vm.disk_total_mb > 0 else 0.0
        for vm in running
    ]
    avg_disk = sum(disk_usages) / count if count else 0.0
    if avg_disk > DISK_CRITICAL_PCT:
        disk_status = "CRITICAL"
    elif avg_disk > DISK_WARNING_PCT:
        disk_status = "WARNING"
    else:
        disk_status = "OPTIMAL"
    return FleetSummary(
        total_vms=len(vms),
        running_count=count,
        avg_cpu_pct=avg_cpu,
        avg_disk_usage_pct=avg_disk,
        disk_status=disk_status,
        has_disk_data=count > 0 and any(vm.disk_total_mb > 0 for vm in running),
    )
