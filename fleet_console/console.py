import logging
import time
from collections.abc import Callable

import httpx

from fleet_console.clients.http import RetryPolicy
from fleet_console.clients.registry import RegistryClient
from fleet_console.clipboard import Clipboard
from fleet_console.config import Settings
from fleet_console.loops import IntervalTimer
from fleet_console.metrics import metrics
from fleet_console.services.provisioning import ProvisioningManager
from fleet_console.services.session_store import PendingSetupStore
from fleet_console.services.telemetry import FleetStore, TelemetryView, VMDetailView


logger = logging.getLogger(__name__)


def build_registry_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> RegistryClient:
    retry = RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec)
    return RegistryClient(
        base_url=settings.registry_url,
        retry=retry,
        timeout=settings.http_timeout_sec,
        transport=transport,
    )


class Console:
    """Owns the registry client, the fleet store, the provisioning manager and
    every mounted detail view, and starts/stops their timers together."""

    def __init__(
        self,
        settings: Settings,
        registry: RegistryClient | None = None,
        store: PendingSetupStore | None = None,
        clipboard: Clipboard | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.clock = clock
        self.registry = registry or build_registry_client(settings)
        self.loops_enabled = not settings.disable_background_loops
        self.fleet = FleetStore(
            self.registry,
            interval_sec=settings.refresh_interval_sec,
            min_visible_sec=settings.manual_refresh_min_visible_sec,
        )
        self.provisioning = ProvisioningManager(
            self.registry,
            store
            or PendingSetupStore(
                key=settings.setup_storage_key, ttl_sec=settings.setup_ttl_sec
            ),
            notify_installed=self.fleet.request_refresh,
            clipboard=clipboard
            or Clipboard(settings.clipboard_command, settings.clipboard_fallback_command),
            poll_interval_sec=settings.poll_interval_sec,
            display_delay_sec=settings.install_display_delay_sec,
            copied_indicator_sec=settings.copied_indicator_sec,
            auto_poll=self.loops_enabled,
        )
        self.details: dict[str, VMDetailView] = {}
        self._last_read: dict[str, float] = {}
        self._sweeper = IntervalTimer(
            "detail-sweep",
            settings.detail_view_idle_sec,
            self.prune_details,
            immediate=False,
        )

    async def start(self) -> None:
        if self.loops_enabled:
            self.fleet.start()
            self._sweeper.start()
        await self.provisioning.start()
        logger.info("console started loops_enabled=%s", self.loops_enabled)

    async def stop(self) -> None:
        await self._sweeper.stop()
        for vm_id in list(self.details):
            await self.close_detail(vm_id)
        await self.fleet.stop()
        await self.provisioning.stop()
        await self.registry.aclose()
        logger.info("console stopped")

    async def open_detail(self, vm_id: str) -> VMDetailView:
        """Return the mounted detail view for ``vm_id``, mounting it if needed.

        Every call counts as a read. Views nobody has read for
        ``detail_view_idle_sec`` are unmounted first, and the least recently
        read ones go when more than ``max_detail_views`` would be mounted.
        """
        await self.prune_details(keep=vm_id)
        self._last_read[vm_id] = self.clock()
        view = self.details.get(vm_id)
        if view is None:
            view = VMDetailView(
                self.registry,
                vm_id,
                limit=self.settings.metrics_limit,
                interval_sec=self.settings.refresh_interval_sec,
                min_visible_sec=self.settings.manual_refresh_min_visible_sec,
            )
            self.details[vm_id] = view
            if self.loops_enabled:
                view.start()
            metrics.set_gauge("detail_views_open", len(self.details))
        return view

    async def prune_details(self, keep: str | None = None) -> list[str]:
        cutoff = self.clock() - self.settings.detail_view_idle_sec
        expired = [
            vm_id
            for vm_id in self.details
            if vm_id != keep and self._last_read.get(vm_id, 0.0) <= cutoff
        ]
        by_age = sorted(
            (vm_id for vm_id in self.details if vm_id != keep and vm_id not in expired),
            key=lambda vm_id: self._last_read.get(vm_id, 0.0),
        )
        mounting = keep is not None and keep not in self.details
        room = self.settings.max_detail_views - (1 if mounting else 0)
        overflow = len(self.details) - len(expired) - room
        if overflow > 0:
            expired.extend(by_age[:overflow])
        for vm_id in expired:
            logger.info("unmounting idle detail view vm_id=%s", vm_id)
            metrics.inc("detail_views_evicted_total")
            await self.close_detail(vm_id)
        return expired

    async def close_detail(self, vm_id: str) -> bool:
        view = self.details.pop(vm_id, None)
        self._last_read.pop(vm_id, None)
        if view is None:
            return False
        await view.stop()
        metrics.set_gauge("detail_views_open", len(self.details))
        return True


async def ensure_loaded(view: TelemetryView) -> None:
    # Without a running timer nothing else would ever populate the view.
    if view.loading and not view.active:
        await view.refresh()
