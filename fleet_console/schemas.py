from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


VMStatus = Literal["running", "stopped", "unknown"]


class MetricSample(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    timestamp: datetime
    cpu_used_pct: float = Field(default=0.0, alias="cpuUsedPct")
    ram_used_mb: float = Field(default=0.0, alias="ramUsedMB")
    disk_used_mb: float | None = Field(default=None, alias="diskUsedMB")


class VMRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    vm_id: str = Field(alias="vmId")
    vm_name: str = Field(default="", alias="vmName")
    status: VMStatus = "unknown"
    public_ip: str | None = Field(default=None, alias="publicIp")
    hostname: str | None = None
    cpu_used_pct: float = Field(default=0.0, alias="cpuUsedPct")
    ram_used_mb: float = Field(default=0.0, alias="ramUsedMB")
    ram_total_mb: float = Field(default=0.0, alias="ramTotalMB")
    disk_used_mb: float = Field(default=0.0, alias="diskUsedMB")
    disk_total_mb: float = Field(default=0.0, alias="diskTotalMB")
    timestamp: datetime | None = None
    metrics: list[MetricSample] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        if isinstance(value, str) and value.lower() in {"running", "stopped"}:
            return value.lower()
        return "unknown"

    @field_validator("cpu_used_pct")
    @classmethod
    def _clamp_cpu(cls, value: float) -> float:
        return min(max(value, 0.0), 100.0)


def normalize_metrics(samples: list[MetricSample], limit: int) -> list[MetricSample]:
    """Turn a newest-first sample list into at most ``limit`` samples, oldest first."""
    return list(reversed(samples[:limit]))


class FleetSummary(BaseModel):
    total_vms: int
    running_count: int
    avg_cpu_pct: float
    avg_disk_usage_pct: float
    disk_status: Literal["OPTIMAL", "WARNING", "CRITICAL"]
    has_disk_data: bool


class FleetSnapshot(BaseModel):
    vms: list[VMRecord]
    loading: bool
    refreshing: bool
    last_refreshed_at: datetime | None
    summary: FleetSummary


class VMDetailSnapshot(BaseModel):
    vm_id: str
    vm: VMRecord | None
    loading: bool
    refreshing: bool
    unreachable: bool
    error: str | None
    last_refreshed_at: datetime | None


class SubmitRequest(BaseModel):
    vm_name: str


class SetupInstructionsRead(BaseModel):
    command: str
    polling_link: str


class ProvisioningSnapshot(BaseModel):
    state: str
    visible: bool
    vm_name: str | None
    command: str | None
    polling_link: str | None
    created_at: datetime | None
    error: str | None
    copied: bool
    consecutive_poll_failures: int


class CopyResult(BaseModel):
    copied: bool
