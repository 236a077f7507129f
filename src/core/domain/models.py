"""Domain models (Pydantic v2).

These models describe *what* the tool reasons about (capacity snapshots,
batch outcomes, check reports, demo state), not *how* it is obtained from
`cf`/`bosh`/`om`. Adapters parse CLI output into them; services and exporters
only see these shapes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from core.domain.options import CheckStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


# ---------------------------------------------------------------------------
# Diego rep state (localhost:1800/state)
# ---------------------------------------------------------------------------


class RepResources(BaseModel):
    """A resource triple as reported by the Diego rep."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    memory_mb: int = Field(default=0, alias="MemoryMB", ge=0)
    disk_mb: int = Field(default=0, alias="DiskMB", ge=0)
    containers: int = Field(default=0, alias="Containers", ge=0)


class CellState(BaseModel):
    """Capacity view of a single Diego cell."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    instance: str = Field(default="", description="BOSH instance name (group/id).")
    available: RepResources = Field(default_factory=RepResources, alias="AvailableResources")
    total: RepResources | None = Field(default=None, alias="TotalResources")


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class MemoryCapacity(BaseModel):
    total: int = 0
    available: int = 0
    used: int = 0
    utilization_pct: int = Field(default=0, ge=0, le=100)


class ResourceCapacity(BaseModel):
    total: int = 0
    available: int = 0


class CapacitySnapshot(BaseModel):
    """Aggregated capacity of a segment's cells.

    `estimated` is true whenever a figure was extrapolated instead of summed
    from every cell's own report.
    """

    estimated: bool = False
    memory_mb: MemoryCapacity = Field(default_factory=MemoryCapacity)
    disk_mb: ResourceCapacity = Field(default_factory=ResourceCapacity)
    containers: ResourceCapacity = Field(default_factory=ResourceCapacity)


class AppsInfo(BaseModel):
    count: int = 0


class CellsInfo(BaseModel):
    count: int = 0
    reporting: int = Field(default=0, description="Cells whose rep state could be read.")


class SegmentMetrics(BaseModel):
    """Point-in-time metrics for an isolation segment (`monitor` output)."""

    segment: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)
    apps: AppsInfo = Field(default_factory=AppsInfo)
    cells: CellsInfo = Field(default_factory=CellsInfo)
    capacity: CapacitySnapshot = Field(default_factory=CapacitySnapshot)

    @property
    def timestamp_z(self) -> str:
        return self.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Batch restarts (migrate / rollback)
# ---------------------------------------------------------------------------


class BatchResult(BaseModel):
    """Outcome of a sequential restart loop.

    Invariant: `succeeded + failed == total`.
    """

    total: int = Field(default=0, ge=0)
    succeeded_apps: list[str] = Field(default_factory=list)
    failed_apps: list[str] = Field(default_factory=list)
    unverified_apps: list[str] = Field(
        default_factory=list,
        description="Restarted apps whose reported segment did not match the target.",
    )

    @property
    def succeeded(self) -> int:
        return len(self.succeeded_apps)

    @property
    def failed(self) -> int:
        return len(self.failed_apps)

    @property
    def ok(self) -> bool:
        return not self.failed_apps


# ---------------------------------------------------------------------------
# Checks (validate / doctor)
# ---------------------------------------------------------------------------


class CheckResult(BaseModel):
    section: str = Field(default="", description="Grouping label (e.g. 'CLI Tools').")
    name: str = Field(..., min_length=1)
    status: CheckStatus
    detail: str = ""


class CheckReport(BaseModel):
    """Ordered list of checks; fails when any check failed."""

    title: str = ""
    checks: list[CheckResult] = Field(default_factory=list)

    def add(self, name: str, status: CheckStatus, detail: str = "", *, section: str = "") -> CheckResult:
        result = CheckResult(section=section, name=name, status=status, detail=detail)
        self.checks.append(result)
        return result

    def count(self, status: CheckStatus) -> int:
        return sum(1 for c in self.checks if c.status is status)

    @property
    def ok(self) -> bool:
        return self.count(CheckStatus.FAIL) == 0


# ---------------------------------------------------------------------------
# Demo state
# ---------------------------------------------------------------------------


class StateSnapshot(BaseModel):
    """The four observation layers captured before and after a migration."""

    captured_at: datetime = Field(default_factory=utc_now)
    cf_cli: dict[str, Any] = Field(default_factory=dict)
    bosh: dict[str, Any] = Field(default_factory=dict)
    capacity: dict[str, Any] = Field(default_factory=dict)
    app_env: dict[str, Any] = Field(default_factory=dict)


class DemoStateFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    org: str = ""
    space: str = ""
    app: str = ""
    segment: str = ""
    before: StateSnapshot | None = None
    after: StateSnapshot | None = None


class FieldChange(BaseModel):
    layer: str
    field: str
    before: Any = None
    after: Any = None

    @property
    def changed(self) -> bool:
        return self.before != self.after


class DemoComparison(BaseModel):
    changes: list[FieldChange] = Field(default_factory=list)
    isolation_applied: bool = False
    placement_verified: bool | None = Field(
        default=None,
        description="True when every app host is a segment cell (None when BOSH was skipped).",
    )
    developer_impact: list[str] = Field(
        default_factory=list,
        description="Developer-facing fields that changed; empty means zero impact.",
    )
