from __future__ import annotations

import json

import pytest

from conftest import FakeCell
from core.domain.models import CellState, RepResources
from core.errors import PreconditionError
from core.services import monitor


def _cell(available: int, total: int | None) -> CellState:
    return CellState(
        available=RepResources(memory_mb=available, disk_mb=1000, containers=100),
        total=None if total is None else RepResources(memory_mb=total, disk_mb=2000, containers=250),
    )


class TestAggregateCapacity:
    def test_sums_every_cell(self):
        snapshot = monitor.aggregate_capacity([_cell(16000, 64000), _cell(48000, 64000)], cell_count=2)
        memory = snapshot.memory_mb
        assert not snapshot.estimated
        assert (memory.total, memory.available, memory.used) == (128000, 64000, 64000)
        assert memory.utilization_pct == 50
        assert snapshot.disk_mb.total == 4000
        assert snapshot.containers.available == 200

    def test_used_is_never_negative(self):
        snapshot = monitor.aggregate_capacity([_cell(70000, 64000)], cell_count=1)
        assert snapshot.memory_mb.used == 0
        assert snapshot.memory_mb.available <= snapshot.memory_mb.total

    def test_missing_cells_are_extrapolated(self):
        snapshot = monitor.aggregate_capacity([_cell(32000, 64000)], cell_count=3)
        assert snapshot.estimated
        assert snapshot.memory_mb.total == 192000
        assert snapshot.memory_mb.utilization_pct == 50

    def test_missing_total_resources_is_estimated(self):
        snapshot = monitor.aggregate_capacity([_cell(32000, None)], cell_count=1)
        assert snapshot.estimated
        assert snapshot.memory_mb.total == 32000
        assert snapshot.memory_mb.utilization_pct == 0

    def test_no_reporting_cell_is_estimated(self):
        snapshot = monitor.aggregate_capacity([], cell_count=4)
        assert snapshot.estimated
        assert snapshot.memory_mb.total == 0
        assert snapshot.memory_mb.utilization_pct == 0

    def test_no_cells_is_exact(self):
        assert not monitor.aggregate_capacity([], cell_count=0).estimated


def test_gather_metrics(make_ctx, foundation):
    foundation.orgs["demo-org"]["dev-space"]["segment"] = "large-cell"
    metrics = monitor.gather_metrics(make_ctx(), "large-cell")

    assert metrics.apps.count == 3
    assert metrics.cells.count == 2
    assert metrics.cells.reporting == 2
    assert metrics.capacity.memory_mb.total == 131072
    assert metrics.capacity.memory_mb.utilization_pct == 50
    assert not metrics.capacity.estimated


def test_gather_metrics_with_silent_cell_is_estimated(make_ctx, foundation):
    foundation.deployments["large-cell"].append(FakeCell("isolated_diego_cell/ccc", "10.0.8.12", reports=False))
    metrics = monitor.gather_metrics(make_ctx(), "large-cell")

    assert metrics.cells.count == 3
    assert metrics.cells.reporting == 2
    assert metrics.capacity.estimated


def test_gather_metrics_with_every_cell_silent(make_ctx, foundation):
    for cell in foundation.deployments["large-cell"]:
        cell.reports = False
    metrics = monitor.gather_metrics(make_ctx(), "large-cell")

    assert metrics.cells.count == 2
    assert metrics.cells.reporting == 0
    assert metrics.capacity.estimated
    assert json.loads(monitor.render_json(metrics))["capacity"]["estimated"] is True


def test_gather_metrics_without_bosh(make_ctx):
    metrics = monitor.gather_metrics(make_ctx(bosh_environment=None), "large-cell")
    assert metrics.cells.count == 0
    assert metrics.capacity.memory_mb.total == 0


def test_ensure_segment_rejects_unknown(make_ctx):
    with pytest.raises(PreconditionError, match="Segment 'nope' not found"):
        monitor.ensure_segment(make_ctx(), "nope")


def test_render_json_schema(make_ctx):
    payload = json.loads(monitor.render_json(monitor.gather_metrics(make_ctx(), "large-cell")))

    assert set(payload) == {"segment", "timestamp", "apps", "cells", "capacity"}
    assert payload["timestamp"].endswith("Z")
    assert set(payload["capacity"]["memory_mb"]) == {"total", "available", "used", "utilization_pct"}
    assert payload["apps"]["count"] == 0


def test_render_csv_header_only_when_asked(make_ctx):
    metrics = monitor.gather_metrics(make_ctx(), "large-cell")

    with_header = monitor.render_csv(metrics).splitlines()
    assert with_header[0] == ",".join(monitor.CSV_HEADER)
    assert with_header[1].split(",")[1:4] == ["large-cell", "0", "2"]

    without_header = monitor.render_csv(metrics, header=False).splitlines()
    assert without_header == with_header[1:]
