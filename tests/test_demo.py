from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from adapters.json_exporter import load_demo_state
from core.config import DemoSettings
from core.domain.models import DemoStateFile, StateSnapshot
from core.domain.options import StatePhase
from core.errors import PreconditionError
from core.services import demo
from core.services.demo import RecordingParams


@pytest.fixture
def demo_settings(tmp_path: Path) -> DemoSettings:
    return DemoSettings(
        _env_file=None,
        org="demo-org",
        space="dev-space",
        segment="large-cell",
        app_name="spring-music",
        state_dir=tmp_path,
    )


@pytest.fixture
def env_client():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/env"
        return httpx.Response(200, text="CF_INSTANCE_IP=10.0.8.10\nCF_INSTANCE_INDEX=0\nPATH=/usr/bin\n")

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        yield client


def test_flatten_nested_dicts():
    data = {"a": {"b": 1, "c": {"d": [1, 2]}}, "e": {}, "f": "x"}
    assert demo.flatten(data) == {"a.b": 1, "a.c.d": [1, 2], "e": {}, "f": "x"}


def test_full_demo_flow_shows_isolation_without_developer_impact(make_ctx, demo_settings, env_client, tmp_path):
    ctx = make_ctx()
    state_file = demo.new_state_path(tmp_path)

    before = demo.capture_state(ctx, demo_settings, env_client)
    demo.record_phase(state_file, StatePhase.BEFORE, before, demo_settings)
    assert before.cf_cli["space_isolation_segment"] == "shared"
    assert before.bosh["on_segment_cells"] is False
    assert before.app_env["CF_INSTANCE_IP"] == "10.0.8.10"
    assert "PATH" not in before.app_env

    demo.migrate_demo_app(ctx, demo_settings)

    after = demo.capture_state(ctx, demo_settings, env_client)
    state = demo.record_phase(state_file, StatePhase.AFTER, after, demo_settings)
    assert state.before is not None

    comparison = demo.compare_states(load_demo_state(state_file))
    assert comparison.isolation_applied
    assert comparison.placement_verified is True
    assert comparison.developer_impact == []
    changed = {(c.layer, c.field) for c in comparison.changes if c.changed}
    assert ("cf_cli", "space_isolation_segment") in changed
    assert ("bosh", "app_hosts") in changed
    assert ("cf_cli", "routes") not in changed


def test_capture_with_bosh_skipped(make_ctx, demo_settings, env_client):
    snapshot = demo.capture_state(make_ctx(), demo_settings, env_client, skip_bosh=True)
    assert snapshot.bosh == {"skipped": True}
    assert snapshot.capacity["cells"]["count"] == 0


def test_capture_requires_target(make_ctx, demo_settings, env_client):
    settings = demo_settings.model_copy(update={"space": "missing"})
    with pytest.raises(PreconditionError, match="Cannot target"):
        demo.capture_state(make_ctx(), settings, env_client)


def test_capture_app_env_without_routes():
    assert demo.capture_app_env([], httpx.Client()) == {"error": "app has no route"}


def _snapshot(segment: str, routes: list[str], skipped: bool = False) -> StateSnapshot:
    return StateSnapshot(
        cf_cli={"space_isolation_segment": segment, "app_state": "started", "instances": "1/1", "routes": routes},
        bosh={"skipped": True} if skipped else {"on_segment_cells": segment != "shared"},
    )


def test_compare_flags_developer_impact():
    state = DemoStateFile(
        segment="large-cell",
        before=_snapshot("shared", ["a.example.com"]),
        after=_snapshot("large-cell", ["b.example.com"], skipped=True),
    )
    comparison = demo.compare_states(state)
    assert comparison.isolation_applied
    assert comparison.placement_verified is None
    assert comparison.developer_impact == ["routes"]


def test_compare_when_already_isolated():
    state = DemoStateFile(
        segment="large-cell",
        before=_snapshot("large-cell", []),
        after=_snapshot("large-cell", []),
    )
    assert not demo.compare_states(state).isolation_applied


def test_compare_needs_both_phases():
    with pytest.raises(PreconditionError, match="both"):
        demo.compare_states(DemoStateFile(before=_snapshot("shared", [])))


def test_restore_demo_app(make_ctx, foundation, demo_settings):
    ctx = make_ctx()
    demo.migrate_demo_app(ctx, demo_settings)
    assert ("demo-org", "large-cell") in foundation.entitlements

    assert demo.restore_demo_app(ctx, demo_settings)
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] is None
    assert foundation.app_placement["spring-music"] is None
    assert ("demo-org", "large-cell") not in foundation.entitlements
    assert "large-cell" in foundation.segments


def test_migrate_demo_app_registers_missing_segment(make_ctx, foundation, demo_settings):
    settings = demo_settings.model_copy(update={"segment": "fresh"})
    demo.migrate_demo_app(make_ctx(), settings)
    assert "fresh" in foundation.segments
    assert foundation.app_placement["spring-music"] == "fresh"


def test_migrate_demo_app_targets_the_demo_space_first(make_ctx, foundation, demo_settings):
    ctx = make_ctx()
    assert foundation.current_org is None

    demo.migrate_demo_app(ctx, demo_settings)

    assert ctx.runner.calls[0] == ("cf", "target", "-o", "demo-org", "-s", "dev-space")
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] == "large-cell"
    assert foundation.app_placement["spring-music"] == "large-cell"


def test_migrate_demo_app_unknown_space(make_ctx, demo_settings):
    settings = demo_settings.model_copy(update={"space": "nowhere"})
    with pytest.raises(PreconditionError, match="nowhere"):
        demo.migrate_demo_app(make_ctx(), settings)


def test_migrate_demo_app_can_restage(make_ctx, foundation, demo_settings):
    ctx = make_ctx()
    demo.migrate_demo_app(ctx, demo_settings.model_copy(update={"restage": True}))

    assert ctx.runner.executed("cf", "restage") == [("cf", "restage", "spring-music")]
    assert ctx.runner.executed("cf", "restart") == []
    assert foundation.app_placement["spring-music"] == "large-cell"


def test_restore_demo_app_unknown_space(make_ctx, foundation, demo_settings):
    foundation.orgs["demo-org"]["dev-space"]["segment"] = "large-cell"
    settings = demo_settings.model_copy(update={"space": "nowhere"})

    assert not demo.restore_demo_app(make_ctx(), settings)
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] == "large-cell"


def test_prepare_recording_creates_missing_spaces(make_ctx, foundation):
    del foundation.orgs["demo-org"]["iso-validation"]

    created = demo.prepare_recording(make_ctx(), RecordingParams())

    assert created == ["iso-validation"]
    assert "iso-validation" in foundation.orgs["demo-org"]
    assert demo.prepare_recording(make_ctx(), RecordingParams()) == []


def test_prepare_recording_unknown_org(make_ctx):
    with pytest.raises(PreconditionError, match="acme"):
        demo.prepare_recording(make_ctx(), RecordingParams(org="acme"))


class TestScenes:
    def test_eight_scenes_in_two_acts(self):
        scenes = demo.build_scenes(RecordingParams())
        assert [s.number for s in scenes] == ["1.1", "1.2", "1.3", "1.4", "2.1", "2.2", "2.3", "2.4"]
        assert {s.act for s in scenes} == {demo.ACT_OPERATOR, demo.ACT_DEVELOPER}

    def test_commands_use_recording_names(self):
        params = RecordingParams(org="acme", segment="gpu", dev_space="web")
        texts = [step.text for scene in demo.build_scenes(params) for step in scene.steps]
        assert "cf enable-org-isolation acme gpu" in texts
        assert "cf set-space-isolation-segment web gpu" in texts

    @pytest.mark.parametrize("start,first", [(None, "1.1"), ("a", "1.1"), ("1.3", "1.3"), ("5", "2.1")])
    def test_scenes_from(self, start, first):
        scenes = demo.build_scenes(RecordingParams())
        selected = demo.scenes_from(scenes, start)
        assert selected[0].number == first
        assert selected[-1].number == "2.4"

    def test_unknown_scene(self):
        with pytest.raises(PreconditionError, match="Unknown scene"):
            demo.scenes_from(demo.build_scenes(RecordingParams()), "9.9")


def test_notification_text():
    text = demo.notification_text("web", "gpu", "Monday", "ops@example.com")
    assert "Your space 'web' has been assigned to isolation segment 'gpu'" in text
    assert "by Monday" in text
    assert "Questions? Contact ops@example.com" in text


def test_cleanup_recording_is_best_effort(make_ctx, foundation, tmp_path):
    foundation.add_space("demo-org", "dev-space", apps=["spring-music"], segment="large-cell")
    params = RecordingParams(download_dir=tmp_path)
    params.replicated_tile.write_bytes(b"tile")

    failed = demo.cleanup_recording(make_ctx(), params)

    # cf-env-test was never pushed and iso-validation deletion is not scripted
    assert "Delete app cf-env-test" in failed
    assert foundation.orgs["demo-org"]["dev-space"]["segment"] is None
    assert "large-cell" not in foundation.segments
    assert not params.replicated_tile.exists()


def test_cleanup_recording_dry_run_keeps_everything(make_ctx, foundation, tmp_path):
    params = RecordingParams(download_dir=tmp_path)
    params.replicated_tile.write_bytes(b"tile")

    failed = demo.cleanup_recording(make_ctx(dry_run=True), params)

    assert failed == []
    assert "large-cell" in foundation.segments
    assert params.replicated_tile.exists()
