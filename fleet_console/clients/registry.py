import json
import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError as SchemaError

from fleet_console.clients.http import RequestFailure, RetryPolicy, request_with_retry
from fleet_console.errors import ServiceError, UnreachableError
from fleet_console.schemas import VMRecord, normalize_metrics
from fleet_console.state_machine import PollOutcome, decode_poll_status


logger = logging.getLogger(__name__)

CREATE_FAILED_MESSAGE = "Failed to create VM"
SERVER_UNREACHABLE_MESSAGE = "Server unreachable. Try again later."
INSTANCE_UNREACHABLE_MESSAGE = "Instance metadata unreachable."


@dataclass(frozen=True)
class SetupInstructions:
    command: str
    polling_link: str


def _error_message(failure: RequestFailure, fallback: str) -> str:
    if not failure.response_text:
        return fallback
    try:
        body = json.loads(failure.response_text)
    except ValueError:
        return fallback
    if isinstance(body, dict):
        message = body.get("error")
        if isinstance(message, str) and message:
            return message
    return fallback


class RegistryClient:
    """Async client for the VM registry/telemetry service."""

    def __init__(
        self,
        base_url: str,
        retry: RetryPolicy,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )
        self.retry = retry

    async def aclose(self) -> None:
        await self.client.aclose()

    async def list_vms(self, limit: int = 50) -> list[VMRecord]:
        try:
            response = await request_with_retry(self.client, "GET", "/vm", self.retry)
            payload = response.json()
        except RequestFailure as exc:
            raise _fetch_error(exc) from exc
        except ValueError as exc:
            raise ServiceError(f"malformed fleet response: {exc}") from exc

        if isinstance(payload, dict):
            payload = payload.get("vms", [])
        if not isinstance(payload, list):
            raise ServiceError("malformed fleet response: expected a list")

        records: list[VMRecord] = []
        for row in payload:
            try:
                record = VMRecord.model_validate(row)
            except SchemaError as exc:
                logger.warning("skipping malformed vm record: %s", exc.errors()[:1])
                continue
            record.metrics = normalize_metrics(record.metrics, limit)
            records.append(record)
        return records

    async def get_vm(self, vm_id: str, limit: int = 50) -> VMRecord:
        try:
            response = await request_with_retry(
                self.client, "GET", f"/vm/{vm_id}", self.retry, params={"limit": limit}
            )
            record = VMRecord.model_validate(response.json())
        except RequestFailure as exc:
            raise _fetch_error(exc) from exc
        except (ValueError, SchemaError) as exc:
            raise ServiceError(f"malformed vm response vm_id={vm_id}: {exc}") from exc
        record.metrics = normalize_metrics(record.metrics, limit)
        return record

    async def create_vm(self, vm_name: str) -> SetupInstructions:
        try:
            response = await request_with_retry(
                self.client, "POST", "/vm/create", self.retry, json={"vmName": vm_name}
            )
        except RequestFailure as exc:
            if exc.is_network_error:
                raise UnreachableError(SERVER_UNREACHABLE_MESSAGE) from exc
            raise ServiceError(
                _error_message(exc, CREATE_FAILED_MESSAGE), status_code=exc.status_code
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ServiceError(CREATE_FAILED_MESSAGE) from exc
        command = body.get("command") if isinstance(body, dict) else None
        polling_link = body.get("pollingLink") if isinstance(body, dict) else None
        if not isinstance(command, str) or not isinstance(polling_link, str):
            raise ServiceError(CREATE_FAILED_MESSAGE)
        return SetupInstructions(command=command, polling_link=polling_link)

    async def poll_setup(self, polling_link: str) -> PollOutcome:
        try:
            response = await request_with_retry(
                self.client, "GET", polling_link, self.retry
            )
            raw = response.json()
        except RequestFailure as exc:
            raise _fetch_error(exc) from exc
        except ValueError as exc:
            raise ServiceError(f"malformed polling response: {exc}") from exc
        return decode_poll_status(raw)


def _fetch_error(exc: RequestFailure) -> ServiceError:
    if exc.is_network_error:
        return UnreachableError(exc.detail)
    return ServiceError(exc.detail, status_code=exc.status_code)
