"""Segment metrics: app count, Diego cells and aggregated cell capacity.

Capacity is the sum of every reporting cell's own rep state. When a cell
does not report, or reports no `TotalResources`, the figures are
extrapolated from the cells that did and flagged with `estimated=True`.
"""

from __future__ import annotations

import csv
import io
import json
import logging

from adapters.bosh_cli import instance_group
from adapters.json_exporter import metrics_payload
from adapters.shell import require_tools
from core.domain.models import (
    AppsInfo,
    CapacitySnapshot,
    CellsInfo,
    CellState,
    MemoryCapacity,
    ResourceCapacity,
    SegmentMetrics,
)
from core.errors import PreconditionError
from core.services.context import ServiceContext

logger = logging.getLogger(__name__)

CSV_HEADER = (
    "timestamp",
    "segment",
    "app_count",
    "cell_count",
    "memory_total_mb",
    "memory_available_mb",
    "memory_used_mb",
    "memory_utilization_pct",
)


def _scale(value: int, cell_count: int, reporting: int) -> int:
    return value * cell_count // reporting


def aggregate_capacity(states: list[CellState], cell_count: int) -> CapacitySnapshot:
    """Sum rep states across cells.

    A cell without `TotalResources` counts its available resources as its
    total (nothing known to be in use). Missing cells are extrapolated from
    the average of the reporting ones. Cells that exist but all stay silent
    leave zero figures flagged as estimated.
    """

    if not states:
        return CapacitySnapshot(estimated=cell_count > 0)

    estimated = False
    totals = {"memory_mb": 0, "disk_mb": 0, "containers": 0}
    available = {"memory_mb": 0, "disk_mb": 0, "containers": 0}
    for state in states:
        total = state.total
        if total is None:
            estimated = True
            total = state.available
        for key in totals:
            totals[key] += getattr(total, key)
            available[key] += getattr(state.available, key)

    reporting = len(states)
    if cell_count > reporting:
        estimated = True
        totals = {k: _scale(v, cell_count, reporting) for k, v in totals.items()}
        available = {k: _scale(v, cell_count, reporting) for k, v in available.items()}

    mem_total = totals["memory_mb"]
    mem_available = min(available["memory_mb"], mem_total) if mem_total else available["memory_mb"]
    mem_used = max(mem_total - mem_available, 0)
    utilization = mem_used * 100 // mem_total if mem_total else 0

    return CapacitySnapshot(
        estimated=estimated,
        memory_mb=MemoryCapacity(
            total=mem_total,
            available=mem_available,
            used=mem_used,
            utilization_pct=min(utilization, 100),
        ),
        disk_mb=ResourceCapacity(total=totals["disk_mb"], available=available["disk_mb"]),
        containers=ResourceCapacity(total=totals["containers"], available=available["containers"]),
    )


def ensure_segment(ctx: ServiceContext, segment: str) -> None:
    require_tools(ctx.runner, "cf")
    ctx.cf.validate_connection(ctx.settings)
    if not ctx.cf.segment_exists(segment):
        raise PreconditionError(f"Segment '{segment}' not found")


def gather_metrics(
    ctx: ServiceContext,
    segment: str,
    deployment: str | None = None,
    *,
    include_cells: bool = True,
) -> SegmentMetrics:
    deployment = deployment or segment
    require_tools(ctx.runner, "cf")
    logger.info("Gathering metrics for segment: %s", segment)

    apps = ctx.cf.segment_app_count(segment)

    cell_count = 0
    states: list[CellState] = []
    if include_cells and ctx.bosh.is_reachable():
        cells = ctx.bosh.diego_cells(deployment)
        cell_count = len(cells)
        groups = sorted({instance_group(str(c.get("instance", ""))) for c in cells})
        if groups:
            states = ctx.bosh.cell_states(deployment, groups)
        if cell_count and len(states) < cell_count:
            logger.warning("Only %d of %d cells reported capacity; figures are estimated", len(states), cell_count)
    else:
        logger.debug("BOSH not configured or unreachable; skipping cell metrics")

    return SegmentMetrics(
        segment=segment,
        apps=AppsInfo(count=apps),
        cells=CellsInfo(count=cell_count, reporting=min(len(states), cell_count)),
        capacity=aggregate_capacity(states, cell_count),
    )


def render_json(metrics: SegmentMetrics) -> str:
    return json.dumps(metrics_payload(metrics), indent=2)


def render_csv(metrics: SegmentMetrics, *, header: bool = True) -> str:
    memory = metrics.capacity.memory_mb
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    if header:
        writer.writerow(CSV_HEADER)
    writer.writerow(
        (
            metrics.timestamp_z,
            metrics.segment,
            metrics.apps.count,
            metrics.cells.count,
            memory.total,
            memory.available,
            memory.used,
            memory.utilization_pct,
        )
    )
    return buffer.getvalue()
