import json
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from fleet_console.models import StoredItem


def now_utc() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def get_item(session: Session, key: str) -> str | None:
    item = session.get(StoredItem, key)
    return item.value_json if item else None


def set_item(session: Session, key: str, payload: dict) -> None:
    value_json = json.dumps(payload, sort_keys=True)
    item = session.get(StoredItem, key)
    if item is None:
        session.add(StoredItem(key=key, value_json=value_json, updated_at=now_utc()))
        return
    item.value_json = value_json
    item.updated_at = now_utc()


def remove_item(session: Session, key: str) -> bool:
    item = session.get(StoredItem, key)
    if item is None:
        return False
    session.delete(item)
    return True
