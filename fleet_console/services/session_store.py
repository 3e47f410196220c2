import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from fleet_console.db import session_scope
from fleet_console.repositories import get_item, remove_item, set_item


logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "pending_vm_setup_v2"
DEFAULT_TTL_SEC = 12 * 60 * 60


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ProvisioningSession:
    vm_name: str
    setup_command: str
    polling_endpoint: str
    created_at_ms: int

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.created_at_ms / 1000, tz=UTC)

    def age_ms(self, now: int) -> int:
        return now - self.created_at_ms

    def to_record(self) -> dict:
        return {
            "vmName": self.vm_name,
            "setupData": {
                "command": self.setup_command,
                "pollingLink": self.polling_endpoint,
            },
            "timestamp": self.created_at_ms,
        }

    @classmethod
    def from_record(cls, record: dict) -> "ProvisioningSession":
        setup = record["setupData"]
        return cls(
            vm_name=str(record["vmName"]),
            setup_command=str(setup["command"]),
            polling_endpoint=str(setup["pollingLink"]),
            created_at_ms=int(record["timestamp"]),
        )


class PendingSetupStore:
    """Durable single-slot store for the in-flight provisioning session.

    Written once when a session is created and cleared on any terminal
    outcome or reset. ``load()`` drops records older than the TTL before
    anyone gets a chance to poll them.
    """

    def __init__(
        self,
        key: str = DEFAULT_STORAGE_KEY,
        ttl_sec: int = DEFAULT_TTL_SEC,
        clock: Callable[[], int] = now_ms,
    ):
        self.key = key
        self.ttl_ms = ttl_sec * 1000
        self.clock = clock

    def save(self, session: ProvisioningSession) -> None:
        with session_scope() as db:
            set_item(db, self.key, session.to_record())
        logger.info("pending setup saved vm_name=%s", session.vm_name)

    def load(self) -> ProvisioningSession | None:
        with session_scope() as db:
            raw = get_item(db, self.key)
        if raw is None:
            return None
        try:
            session = ProvisioningSession.from_record(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("discarding unreadable pending setup key=%s: %s", self.key, exc)
            self.clear()
            return None
        if session.age_ms(self.clock()) > self.ttl_ms:
            logger.info(
                "discarding expired pending setup vm_name=%s age_ms=%s",
                session.vm_name,
                session.age_ms(self.clock()),
            )
            self.clear()
            return None
        return session

    def clear(self) -> None:
        with session_scope() as db:
            removed = remove_item(db, self.key)
        if removed:
            logger.info("pending setup cleared key=%s", self.key)
