import asyncio
import logging
from collections.abc import Callable

from fleet_console.clients.registry import RegistryClient, SetupInstructions
from fleet_console.clipboard import Clipboard
from fleet_console.errors import (
    ConsoleError,
    ServiceError,
    SessionInProgress,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from fleet_console.loops import IntervalTimer
from fleet_console.metrics import metrics
from fleet_console.schemas import ProvisioningSnapshot
from fleet_console.services.session_store import (
    PendingSetupStore,
    ProvisioningSession,
    now_ms,
)
from fleet_console.state_machine import PollOutcome, ProvisioningState, can_transition


logger = logging.getLogger(__name__)


class ProvisioningManager:
    """Drives one onboarding attempt from create request to agent check-in.

    The session is persisted once on creation and cleared on every terminal
    outcome or reset, so a restarted console resumes polling the same link as
    long as the record is younger than the store's TTL.
    """

    def __init__(
        self,
        registry: RegistryClient,
        store: PendingSetupStore,
        *,
        notify_installed: Callable[[], object] | None = None,
        clipboard: Clipboard | None = None,
        poll_interval_sec: float = 5.0,
        display_delay_sec: float = 3.0,
        copied_indicator_sec: float = 2.0,
        clock: Callable[[], int] = now_ms,
        auto_poll: bool = True,
    ):
        self.registry = registry
        self.store = store
        self.notify_installed = notify_installed
        self.clipboard = clipboard
        self.poll_interval_sec = poll_interval_sec
        self.display_delay_sec = display_delay_sec
        self.copied_indicator_sec = copied_indicator_sec
        self.clock = clock
        self.auto_poll = auto_poll

        self.state = ProvisioningState.IDLE
        self.session: ProvisioningSession | None = None
        self.error: str | None = None
        self.visible = False
        self.copied = False
        self.consecutive_poll_failures = 0

        self._poll_timer: IntervalTimer | None = None
        self._dismiss_task: asyncio.Task | None = None
        self._copied_task: asyncio.Task | None = None

    def _transition(self, target: ProvisioningState) -> None:
        if not can_transition(self.state.value, target.value):
            raise RuntimeError(
                f"invalid provisioning transition {self.state.value} -> {target.value}"
            )
        if self.state is not target:
            logger.info(
                "provisioning state %s -> %s vm_name=%s",
                self.state.value,
                target.value,
                self.session.vm_name if self.session else None,
            )
        self.state = target

    async def start(self) -> None:
        if self.state is ProvisioningState.IDLE and self.session is None:
            self.resume()
        if self.state is ProvisioningState.AWAITING_AGENT:
            self._start_polling()

    async def stop(self) -> None:
        await self._stop_polling()
        await _cancel(self._copied_task)
        self._copied_task = None
        if self._dismiss_task is not None:
            await _cancel(self._dismiss_task)
            self._dismiss_task = None
            self._finish_install()

    def resume(self) -> ProvisioningSession | None:
        session = self.store.load()
        if session is None:
            return None
        self.session = session
        self.visible = True
        self._transition(ProvisioningState.AWAITING_AGENT)
        logger.info(
            "resumed provisioning session vm_name=%s polling_link=%s",
            session.vm_name,
            session.polling_endpoint,
        )
        return session

    async def submit(self, vm_name: str) -> SetupInstructions:
        name = (vm_name or "").strip()
        if not name:
            raise ValidationError("Instance name is required")
        if self.state is not ProvisioningState.IDLE:
            raise SessionInProgress(
                f"a provisioning session is already {self.state.value.lower()}"
            )

        self._transition(ProvisioningState.SUBMITTING)
        self.error = None
        self.visible = True
        metrics.inc("provision_submitted_total")
        try:
            instructions = await self.registry.create_vm(name)
        except ServiceError as exc:
            metrics.inc("provision_create_failed_total")
            logger.warning("create request failed vm_name=%s: %s", name, exc)
            if self.state is ProvisioningState.SUBMITTING:
                self.error = exc.message
                self._transition(ProvisioningState.IDLE)
            raise
        except BaseException:
            # cancelled, or failed outside the registry error taxonomy
            if self.state is ProvisioningState.SUBMITTING:
                self._transition(ProvisioningState.IDLE)
            raise

        if self.state is not ProvisioningState.SUBMITTING:
            logger.info("submission reset before create returned vm_name=%s", name)
            return instructions

        session = ProvisioningSession(
            vm_name=name,
            setup_command=instructions.command,
            polling_endpoint=instructions.polling_link,
            created_at_ms=self.clock(),
        )
        try:
            self.store.save(session)
        except Exception as exc:
            metrics.inc("provision_create_failed_total")
            logger.exception("could not persist pending setup vm_name=%s", name)
            self.error = f"Could not save setup session: {exc}"
            self._transition(ProvisioningState.IDLE)
            raise
        self.session = session
        self._transition(ProvisioningState.AWAITING_AGENT)
        self._start_polling()
        return instructions

    async def poll(self) -> PollOutcome | None:
        session = self.session
        if self.state is not ProvisioningState.AWAITING_AGENT or session is None:
            return None
        metrics.inc("provision_poll_ticks_total")
        try:
            outcome = await self.registry.poll_setup(session.polling_endpoint)
        except ConsoleError as exc:
            self.consecutive_poll_failures += 1
            metrics.inc("provision_poll_failures_total")
            logger.warning(
                "poll failed vm_name=%s consecutive_failures=%s: %s",
                session.vm_name,
                self.consecutive_poll_failures,
                exc,
            )
            return None

        if self.session is not session or self.state is not ProvisioningState.AWAITING_AGENT:
            logger.debug("ignoring stale poll result vm_name=%s", session.vm_name)
            return None
        self.consecutive_poll_failures = 0

        if outcome is PollOutcome.INSTALLED:
            await self._handle_installed(session)
        elif outcome in (PollOutcome.EXPIRED, PollOutcome.INVALID):
            await self._handle_rejected(session, outcome)
        return outcome

    async def _handle_installed(self, session: ProvisioningSession) -> None:
        self._transition(ProvisioningState.INSTALLED)
        self.store.clear()
        metrics.inc("provision_installed_total")
        logger.info("agent checked in vm_name=%s", session.vm_name)
        if self.notify_installed is not None:
            try:
                self.notify_installed()
            except Exception as exc:  # noqa: BLE001
                logger.exception("fleet refresh notification failed: %s", exc)
        self._dismiss_task = asyncio.create_task(
            self._dismiss_after_delay(), name="provisioning-dismiss"
        )
        # a reset() during this await must find the dismiss task to cancel
        await self._stop_polling()

    async def _handle_rejected(
        self, session: ProvisioningSession, outcome: PollOutcome
    ) -> None:
        error = TokenExpired() if outcome is PollOutcome.EXPIRED else TokenInvalid()
        self.store.clear()
        self.session = None
        self._transition(ProvisioningState.IDLE)
        self.error = str(error)
        metrics.inc(f"provision_token_{outcome.value.lower()}_total")
        logger.warning("setup token rejected vm_name=%s outcome=%s", session.vm_name, outcome.value)
        await self._stop_polling()

    async def _dismiss_after_delay(self) -> None:
        await asyncio.sleep(self.display_delay_sec)
        self._dismiss_task = None
        self._finish_install()

    def _finish_install(self) -> None:
        if self.state is not ProvisioningState.INSTALLED:
            return
        self.visible = False
        self.session = None
        self.error = None
        self.copied = False
        self._transition(ProvisioningState.IDLE)

    async def copy_command(self) -> bool:
        if self.session is None or self.clipboard is None:
            return False
        try:
            copied = await self.clipboard.copy(self.session.setup_command)
        except Exception as exc:  # noqa: BLE001
            logger.error("copy failed: %s", exc)
            return False
        if copied:
            self.copied = True
            await _cancel(self._copied_task)
            self._copied_task = asyncio.create_task(self._clear_copied())
        return copied

    async def _clear_copied(self) -> None:
        await asyncio.sleep(self.copied_indicator_sec)
        self.copied = False

    async def reset(self) -> None:
        await self._stop_polling()
        await _cancel(self._dismiss_task)
        self._dismiss_task = None
        await _cancel(self._copied_task)
        self._copied_task = None
        self.store.clear()
        self.session = None
        self.error = None
        self.visible = False
        self.copied = False
        self.consecutive_poll_failures = 0
        self._transition(ProvisioningState.IDLE)

    def _start_polling(self) -> None:
        if not self.auto_poll:
            return
        if self._poll_timer is not None and self._poll_timer.running:
            return
        self._poll_timer = IntervalTimer(
            "provisioning-poll", self.poll_interval_sec, self.poll
        ).start()

    async def _stop_polling(self) -> None:
        timer, self._poll_timer = self._poll_timer, None
        if timer is not None:
            await timer.stop()

    def snapshot(self) -> ProvisioningSnapshot:
        session = self.session
        return ProvisioningSnapshot(
            state=self.state.value,
            visible=self.visible,
            vm_name=session.vm_name if session else None,
            command=session.setup_command if session else None,
            polling_link=session.polling_endpoint if session else None,
            created_at=session.created_at if session else None,
            error=self.error,
            copied=self.copied,
            consecutive_poll_failures=self.consecutive_poll_failures,
        )


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
