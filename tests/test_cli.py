from __future__ import annotations

import httpx
import pytest
from typer.testing import CliRunner

from cli import common
from cli.main import app
from core.domain.models import DemoStateFile, StateSnapshot
from core.services import monitor

runner = CliRunner()


@pytest.fixture
def invoke(make_ctx, monkeypatch, tmp_path):
    monkeypatch.setattr(common, "build_context", lambda settings: make_ctx(dry_run=settings.dry_run))
    monkeypatch.setenv("DEMO_STATE_DIR", str(tmp_path))

    def _invoke(*args: str):
        return runner.invoke(app, ["--log-file", str(tmp_path / "isoseg.log"), *args])

    return _invoke


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "isoseg version" in result.output


def test_migrate_dry_run_lists_apps(invoke, foundation):
    result = invoke("--dry-run", "migrate", "--org", "demo-org", "--space", "dev-space", "--segment", "large-cell")

    assert result.exit_code == 0, result.output
    for name in ("spring-music", "orders", "billing"):
        assert name in result.output
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] is None


def test_migrate_failure_exits_1(invoke, foundation):
    foundation.failing_restarts.add("billing")
    result = invoke(
        "migrate", "--org", "demo-org", "--space", "dev-space", "--segment", "large-cell", "--delay", "0"
    )
    assert result.exit_code == 1


def test_migrate_unknown_org_exits_1(invoke):
    result = invoke("migrate", "--org", "nope", "--space", "dev-space", "--segment", "large-cell")
    assert result.exit_code == 1


def test_rollback_after_migrate(invoke, foundation):
    assert invoke(
        "migrate", "--org", "demo-org", "--space", "dev-space", "--segment", "large-cell", "--delay", "0"
    ).exit_code == 0
    result = invoke("rollback", "--org", "demo-org", "--space", "dev-space", "--delay", "0")

    assert result.exit_code == 0, result.output
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] is None


def test_validate_exit_codes(invoke, foundation):
    assert invoke("validate", "--segment", "large-cell").exit_code == 0
    assert invoke("validate", "--segment", "ghost").exit_code == 1

    foundation.placement_tags["large-cell"] = ["other"]
    result = invoke("validate", "--segment", "large-cell")
    assert result.exit_code == 1
    assert "Placement tag mismatch" in result.output


def test_monitor_json(invoke):
    result = invoke("monitor", "--segment", "large-cell", "--output", "json")
    assert result.exit_code == 0, result.output
    assert '"segment": "large-cell"' in result.output
    assert '"utilization_pct": 50' in result.output


def test_monitor_csv(invoke):
    result = invoke("monitor", "--segment", "large-cell", "--output", "csv")

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    header = lines.index(",".join(monitor.CSV_HEADER))
    row = lines[header + 1]
    assert row.split(",")[1:4] == ["large-cell", "0", "2"]


def test_monitor_watch_prints_csv_header_once(make_ctx, monkeypatch, tmp_path):
    waits: list[float] = []

    def sleep(seconds: float) -> None:
        waits.append(seconds)
        if len(waits) == 3:
            raise KeyboardInterrupt

    def build(settings):
        ctx = make_ctx()
        ctx.sleep = sleep
        return ctx

    monkeypatch.setattr(common, "build_context", build)
    result = runner.invoke(
        app,
        ["--log-file", str(tmp_path / "isoseg.log"), "monitor", "--segment", "large-cell", "--output", "csv", "--watch", "5"],
    )

    assert result.exit_code == 0, result.output
    assert waits == [5, 5, 5]
    rows = [line for line in result.output.splitlines() if line.count(",") == len(monitor.CSV_HEADER) - 1]
    assert len(rows) == 4
    assert rows[0] == ",".join(monitor.CSV_HEADER)
    assert result.output.count("timestamp,segment") == 1


def test_monitor_unknown_segment(invoke):
    assert invoke("monitor", "--segment", "ghost").exit_code == 1


def test_create_segment_rejects_bad_cell_size(invoke):
    result = invoke("create-segment", "--name", "gpu", "--cell-size", "big", "--count", "2")
    assert result.exit_code == 2


def test_create_segment_dry_run(invoke, tmp_path):
    result = invoke("--dry-run", "create-segment", "--name", "gpu", "--cell-size", "8/64", "--count", "2")
    assert result.exit_code == 0, result.output
    assert (tmp_path / "manifests" / "gpu-manifest.yml").is_file()


def test_download_tile_without_token(make_ctx, monkeypatch, tmp_path):
    monkeypatch.setattr(common, "build_context", lambda settings: make_ctx(pivnet_token=None))
    result = runner.invoke(
        app,
        ["--log-file", str(tmp_path / "isoseg.log"), "download-tile", "--version", "10.2", "--output-directory", str(tmp_path)],
    )
    assert result.exit_code == 1


def test_demo_notify():
    result = runner.invoke(app, ["demo", "notify", "--space", "web", "--segment", "gpu"])
    assert result.exit_code == 0
    assert "Isolation Segment Migration - Action Required" in result.output
    assert "'web'" in result.output


def test_demo_compare_json(tmp_path):
    state_file = tmp_path / "state.json"
    state = DemoStateFile(
        segment="large-cell",
        before=StateSnapshot(cf_cli={"space_isolation_segment": "shared"}, bosh={"skipped": True}),
        after=StateSnapshot(cf_cli={"space_isolation_segment": "large-cell"}, bosh={"skipped": True}),
    )
    state_file.write_text(state.model_dump_json(), encoding="utf-8")

    result = runner.invoke(app, ["demo", "compare", "--state-file", str(state_file), "--json"])

    assert result.exit_code == 0, result.output
    assert '"isolation_applied": true' in result.output


def test_demo_run_automated(invoke, foundation, monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="CF_INSTANCE_IP=10.0.8.10\n")

    monkeypatch.setattr("cli.demo.build_client", lambda settings: httpx.Client(transport=httpx.MockTransport(handler)))

    result = invoke(
        "demo",
        "run",
        "--mode",
        "automated",
        "--cleanup",
        "always",
        "--org",
        "demo-org",
        "--space",
        "dev-space",
        "--segment",
        "large-cell",
        "--app",
        "spring-music",
    )

    assert result.exit_code == 0, result.output
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] is None
    assert foundation.app_placement["spring-music"] is None


def test_doctor_run_fails_without_cf_login(invoke, foundation, tmp_path):
    foundation.logged_in = False
    result = invoke("doctor", "run", "--download-dir", str(tmp_path))
    assert result.exit_code == 1
    assert "Pre-Flight Checklist" in result.output


def test_split_csv():
    assert common.split_csv(" a, b,,c ") == ["a", "b", "c"]
    assert common.split_csv(None) == []


def test_demo_prepare_creates_validation_space(invoke, foundation):
    del foundation.orgs["demo-org"]["iso-validation"]

    result = invoke("demo", "prepare")

    assert result.exit_code == 0, result.output
    assert "iso-validation" in foundation.orgs["demo-org"]


def test_demo_prepare_dry_run_creates_nothing(invoke, foundation):
    del foundation.orgs["demo-org"]["iso-validation"]

    assert invoke("--dry-run", "demo", "prepare").exit_code == 0
    assert "iso-validation" not in foundation.orgs["demo-org"]
