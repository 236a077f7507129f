"""Live migration demo: state capture, comparison, cleanup and recording script.

The demo moves one app from the shared Diego cells to an isolation segment
and shows, layer by layer, what changed (placement) and what did not
(everything a developer touches). Observations are stored in a state file
with `before`/`after` slots so each step can also be run on its own.

Nothing here prints; the CLI decides how (interactive pauses, plain logs).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from adapters.cf_cli import split_routes
from adapters.http_client import fetch_app_env
from adapters.json_exporter import export_demo_state, load_demo_state, metrics_payload
from core.config import DemoSettings
from core.domain.models import (
    DemoComparison,
    DemoStateFile,
    FieldChange,
    StateSnapshot,
    utc_now,
)
from core.domain.options import StatePhase
from core.errors import CommandFailedError, PreconditionError
from core.log import success
from core.services.context import ServiceContext
from core.services.monitor import gather_metrics

logger = logging.getLogger(__name__)

LAYERS = ("cf_cli", "bosh", "capacity", "app_env")
# cf_cli fields a developer would notice if they changed.
DEVELOPER_FIELDS = ("routes", "app_state", "instances")
SHARED_SEGMENT = "shared"


def new_state_path(state_dir: Path) -> Path:
    return state_dir / f"demo-state-{int(utc_now().timestamp())}.json"


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def _split_ips(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v]
    return [ip for ip in re.split(r"[\s,]+", str(value or "")) if ip]


def capture_cf_layer(ctx: ServiceContext, demo: DemoSettings) -> dict[str, Any]:
    details = ctx.cf.app_details(demo.app_name)
    return {
        "space_isolation_segment": ctx.cf.space_isolation_segment(demo.space) or SHARED_SEGMENT,
        "app_state": details.get("requested state"),
        "instances": details.get("instances"),
        "routes": split_routes(details.get("routes")),
    }


def capture_bosh_layer(ctx: ServiceContext, demo: DemoSettings, *, skip_bosh: bool) -> dict[str, Any]:
    if skip_bosh:
        return {"skipped": True}

    hosts = ctx.cf.app_hosts(demo.app_name)
    cell_ips: list[str] = []
    for row in ctx.bosh.diego_cells(demo.segment_deployment):
        cell_ips.extend(_split_ips(row.get("ips")))
    return {
        "app_hosts": hosts,
        "segment_cell_ips": cell_ips,
        "on_segment_cells": bool(hosts) and all(h in cell_ips for h in hosts),
    }


def capture_app_env(routes: list[str], client: httpx.Client) -> dict[str, Any]:
    if not routes:
        return {"error": "app has no route"}
    return fetch_app_env(routes[0], client)


def capture_state(
    ctx: ServiceContext,
    demo: DemoSettings,
    client: httpx.Client,
    *,
    skip_bosh: bool | None = None,
) -> StateSnapshot:
    """Observe the four layers for the demo app."""

    skip = demo.skip_bosh if skip_bosh is None else skip_bosh
    if not ctx.cf.target(demo.org, demo.space):
        raise PreconditionError(f"Cannot target org '{demo.org}' space '{demo.space}'")

    cf_layer = capture_cf_layer(ctx, demo)
    metrics = gather_metrics(ctx, demo.segment, demo.segment_deployment, include_cells=not skip)
    capacity = metrics_payload(metrics)
    capacity.pop("timestamp", None)

    return StateSnapshot(
        cf_cli=cf_layer,
        bosh=capture_bosh_layer(ctx, demo, skip_bosh=skip),
        capacity=capacity,
        app_env=capture_app_env(cf_layer["routes"], client),
    )


def record_phase(
    path: Path,
    phase: StatePhase,
    snapshot: StateSnapshot,
    demo: DemoSettings,
) -> DemoStateFile:
    """Store a snapshot in the `before`/`after` slot of the state file (created when missing)."""

    if path.exists():
        state = load_demo_state(path)
    else:
        state = DemoStateFile(org=demo.org, space=demo.space, app=demo.app_name, segment=demo.segment)
    setattr(state, phase.value, snapshot)
    export_demo_state(state=state, output_path=path)
    logger.debug("Wrote %s state to %s", phase.value, path)
    return state


# ---------------------------------------------------------------------------
# Compare
# ---------------------------------------------------------------------------


def flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """`{"a": {"b": 1}}` -> `{"a.b": 1}`; lists are kept as values."""

    flat: dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def compare_states(state: DemoStateFile) -> DemoComparison:
    if state.before is None or state.after is None:
        raise PreconditionError("State file needs both 'before' and 'after' captures")

    changes: list[FieldChange] = []
    for layer in LAYERS:
        before = flatten(getattr(state.before, layer))
        after = flatten(getattr(state.after, layer))
        for name in sorted(before.keys() | after.keys()):
            changes.append(FieldChange(layer=layer, field=name, before=before.get(name), after=after.get(name)))

    before_cf = state.before.cf_cli
    after_cf = state.after.cf_cli
    bosh_after = state.after.bosh

    return DemoComparison(
        changes=changes,
        isolation_applied=after_cf.get("space_isolation_segment") == state.segment
        and before_cf.get("space_isolation_segment") != state.segment,
        placement_verified=None if bosh_after.get("skipped") else bool(bosh_after.get("on_segment_cells")),
        developer_impact=[f for f in DEVELOPER_FIELDS if before_cf.get(f) != after_cf.get(f)],
    )


# ---------------------------------------------------------------------------
# Migrate / restore the demo app
# ---------------------------------------------------------------------------


def migrate_demo_app(ctx: ServiceContext, demo: DemoSettings) -> None:
    """Register (when missing), entitle, assign the space, restart (or restage) the app."""

    cf = ctx.cf
    if not cf.target(demo.org, demo.space):
        raise PreconditionError(f"Cannot target org '{demo.org}' space '{demo.space}'")
    if not cf.segment_exists(demo.segment):
        logger.info("Registering isolation segment %s...", demo.segment)
        if not cf.create_isolation_segment(demo.segment):
            raise CommandFailedError(f"Failed to register segment {demo.segment}")
        success(logger, "Segment %s registered", demo.segment)

    logger.info("Entitling org %s to segment %s...", demo.org, demo.segment)
    if not cf.enable_org_isolation(demo.org, demo.segment):
        raise CommandFailedError(f"Failed to entitle org {demo.org}")

    logger.info("Assigning space %s to segment %s...", demo.space, demo.segment)
    if not cf.set_space_isolation_segment(demo.space, demo.segment):
        raise CommandFailedError(f"Failed to assign space {demo.space}")

    if demo.restage:
        logger.info("Restaging %s so it lands on the isolated cells...", demo.app_name)
        if not cf.restage(demo.app_name):
            raise CommandFailedError(f"Failed to restage {demo.app_name}")
    else:
        logger.info("Restarting %s so it lands on the isolated cells...", demo.app_name)
        if not cf.restart(demo.app_name):
            raise CommandFailedError(f"Failed to restart {demo.app_name}")
    success(logger, "%s migrated to %s", demo.app_name, demo.segment)


def restore_demo_app(ctx: ServiceContext, demo: DemoSettings) -> bool:
    """Put the app back on shared cells. Best-effort: returns False if any step failed."""

    cf = ctx.cf
    if not cf.target(demo.org, demo.space):
        logger.warning("Cannot target %s/%s; nothing restored", demo.org, demo.space)
        return False
    ok = True
    logger.info("Resetting space %s to the shared segment...", demo.space)
    if not cf.reset_space_isolation_segment(demo.space):
        logger.warning("Could not reset space %s", demo.space)
        ok = False
    if not cf.restart(demo.app_name):
        logger.warning("Could not restart %s", demo.app_name)
        ok = False
    if not cf.disable_org_isolation(demo.org, demo.segment):
        logger.warning("Could not revoke org %s entitlement to %s", demo.org, demo.segment)
        ok = False
    if ok:
        success(logger, "Demo environment restored")
    return ok


# ---------------------------------------------------------------------------
# Recording environment cleanup
# ---------------------------------------------------------------------------


@dataclass
class RecordingParams:
    """Names used by the recording walkthrough, its preflight and its cleanup."""

    org: str = "demo-org"
    segment: str = "large-cell"
    dev_space: str = "dev-space"
    validation_space: str = "iso-validation"
    app: str = "spring-music"
    test_app: str = "cf-env-test"
    tile_version: str = "10.2.5"
    download_dir: Path = field(default_factory=lambda: Path.home() / "Downloads")
    deadline: str = "Friday, January 17, 2026"
    contact: str = "platform-team@example.com"

    @property
    def tile_product(self) -> str:
        return f"p-isolation-segment-{self.segment}"

    @property
    def replicated_tile(self) -> Path:
        return self.download_dir / f"{self.tile_product}-{self.tile_version}.pivotal"


def _product_names(products: list[dict[str, Any]]) -> set[str]:
    return {str(p.get("name") or p.get("installation_name") or "") for p in products}


def prepare_recording(ctx: ServiceContext, params: RecordingParams) -> list[str]:
    """Create the recording spaces that are missing; returns the ones created."""

    cf = ctx.cf
    if not cf.org_exists(params.org):
        raise PreconditionError(f"Organization '{params.org}' not found")

    created: list[str] = []
    for space in (params.dev_space, params.validation_space):
        if cf.space_exists(params.org, space):
            logger.info("Space %s already exists", space)
            continue
        logger.info("Creating space %s in %s...", space, params.org)
        if not cf.create_space(space, params.org):
            raise CommandFailedError(f"Failed to create space {space}")
        created.append(space)
    if created:
        success(logger, "Created spaces: %s", ", ".join(created))
    return created


def cleanup_recording(ctx: ServiceContext, params: RecordingParams, *, apply_changes: bool = False) -> list[str]:
    """Reset everything the recording touched; returns the steps that failed.

    Every step runs even when an earlier one failed.
    """

    cf = ctx.cf
    failed: list[str] = []

    def step(label: str, ok: bool) -> None:
        if ok:
            logger.info("%s: done", label)
        else:
            logger.warning("%s: failed (skipped)", label)
            failed.append(label)

    logger.info("Cleaning up CF resources...")
    step(f"Target {params.org}/{params.dev_space}", cf.target(params.org, params.dev_space))
    step(f"Delete app {params.test_app}", cf.delete_app(params.test_app))
    step(f"Reset space {params.dev_space}", cf.reset_space_isolation_segment(params.dev_space))
    step(f"Reset space {params.validation_space}", cf.reset_space_isolation_segment(params.validation_space))
    step(f"Delete space {params.validation_space}", cf.delete_space(params.validation_space, params.org))
    step(f"Disable org isolation {params.org}/{params.segment}", cf.disable_org_isolation(params.org, params.segment))
    step(f"Delete segment {params.segment}", cf.delete_isolation_segment(params.segment))

    tile = params.replicated_tile
    if tile.exists():
        if ctx.dry_run:
            logger.warning("DRY RUN: would remove %s", tile)
        else:
            try:
                tile.unlink()
            except OSError as exc:
                logger.warning("Could not remove %s: %s", tile, exc)
                failed.append(f"Remove {tile}")
            else:
                logger.info("Removed %s", tile)

    logger.info("Cleaning up Ops Manager...")
    product = params.tile_product
    if product in _product_names(ctx.om.staged_products()):
        step(f"Unstage {product}", ctx.om.unstage_product(product))
    if product in _product_names(ctx.om.deployed_products()):
        step(f"Delete {product}", ctx.om.delete_product(product, params.tile_version))
        if apply_changes:
            logger.info("Running Apply Changes (10-15 minutes)...")
            step(f"Apply changes {product}", ctx.om.apply_changes(product))
        else:
            logger.info("Tile marked for deletion. Finish with: om apply-changes --product-name %s", product)

    if not failed:
        success(logger, "Demo environment reset")
    return failed


# ---------------------------------------------------------------------------
# Developer notification
# ---------------------------------------------------------------------------

_RULE = "=" * 80


def notification_text(space: str, segment: str, deadline: str, contact: str) -> str:
    return "\n".join(
        [
            _RULE,
            "PLATFORM NOTIFICATION",
            "",
            "Subject: Isolation Segment Migration - Action Required",
            "",
            f"Your space '{space}' has been assigned to isolation segment '{segment}'",
            "for improved resource allocation and workload isolation.",
            "",
            "ACTION REQUIRED:",
            f"  Please restage your applications by {deadline} to",
            "  complete the migration.",
            "",
            "  Command: cf restage <app-name>",
            "",
            f"Questions? Contact {contact}",
            _RULE,
        ]
    )


# ---------------------------------------------------------------------------
# Recording script
# ---------------------------------------------------------------------------


@dataclass
class Step:
    """A command to type (or, when `marker` is set, an off-terminal cue)."""

    text: str
    note: str = ""
    marker: bool = False


@dataclass
class Scene:
    number: str
    act: str
    title: str
    steps: list[Step] = field(default_factory=list)

    @property
    def heading(self) -> str:
        return f"Scene {self.number}: {self.title}"


ACT_OPERATOR = "ACT 1: Platform Operator Experience"
ACT_DEVELOPER = "ACT 2: App Developer Experience"


def build_scenes(p: RecordingParams) -> list[Scene]:
    base_tile = p.download_dir / f"p-isolation-segment-{p.tile_version}.pivotal"
    stats = f"cf curl /v3/apps/$(cf app {p.app} --guid)/processes/web/stats"
    cells = f"bosh -d {p.tile_product} instances"

    return [
        Scene(
            "1.1",
            ACT_OPERATOR,
            "Tile Acquisition",
            [
                Step(
                    f"isoseg replicate-tile --source {base_tile} --name {p.segment} --output {p.replicated_tile}",
                    f"Create the {p.segment} replicated tile",
                ),
                Step(f"ls -lh {p.replicated_tile}", "Verify tile was created"),
            ],
        ),
        Scene(
            "1.2",
            ACT_OPERATOR,
            "Ops Manager Installation",
            [
                Step(f"om upload-product --product {p.replicated_tile}", "Upload tile to Ops Manager"),
                Step(
                    f"om stage-product --product-name {p.tile_product} --product-version {p.tile_version}",
                    "Stage the tile",
                ),
                Step("[BROWSER] Configure tile in Ops Manager UI", marker=True),
                Step("- Assign AZs and Networks", marker=True),
                Step("- Isolated Diego Cells: 1 cell", marker=True),
                Step("- Networking: 0 routers (shared routing)", marker=True),
                Step("[BROWSER] Review Pending Changes -> Apply Changes", marker=True),
                Step("[CUT] Stop recording - wait for Apply Changes (~10-15 min)", marker=True),
                Step("[RESUME] Show successful deployment in browser", marker=True),
            ],
        ),
        Scene(
            "1.3",
            ACT_OPERATOR,
            "Segment Registration",
            [
                Step(f"cf create-isolation-segment {p.segment}", "Register segment in Cloud Controller"),
                Step(f"cf enable-org-isolation {p.org} {p.segment}", "Enable for organization"),
                Step(f"cf create-space {p.validation_space} -o {p.org}", "Create validation space for operator testing"),
                Step(
                    f"cf set-space-isolation-segment {p.validation_space} {p.segment}",
                    "Assign validation space to segment",
                ),
                Step("cf isolation-segments", "Verify segment is registered"),
                Step(f"cf space {p.validation_space}", "Verify space assignment"),
            ],
        ),
        Scene(
            "1.4",
            ACT_OPERATOR,
            "Operator Validation",
            [
                Step(f"cf target -o {p.org} -s {p.validation_space}", "Target the validation space"),
                Step(f"cf push {p.test_app} -m 64M -k 128M", "Deploy test application"),
                Step(f"cf app {p.test_app}", "Verify app is running"),
                Step("[BROWSER] Open app URL to show it responds", marker=True),
                Step(f"cf space {p.validation_space}", "Verify space shows isolation segment"),
                Step(f"isoseg validate --segment {p.segment} --deployment {p.tile_product}", "Verify cells and placement"),
                Step(
                    f'echo "Isolation segment \'{p.segment}\' validated and ready for tenant workloads"',
                    "Declare segment ready",
                ),
            ],
        ),
        Scene(
            "2.1",
            ACT_DEVELOPER,
            "Before State",
            [
                Step(f"cf target -o {p.org} -s {p.dev_space}", "Developer targets their space"),
                Step("cf apps", "List apps in space"),
                Step(f"cf app {p.app}", f"Show {p.app} details"),
                Step(f"cf space {p.dev_space}", "Check current space config (no isolation segment)"),
                Step(f"[BROWSER] Open {p.app} URL to show it works", marker=True),
            ],
        ),
        Scene(
            "2.2",
            ACT_DEVELOPER,
            "Migration Notice",
            [
                Step(
                    f"isoseg demo notify --space {p.dev_space} --segment {p.segment}",
                    "Display migration notification",
                ),
            ],
        ),
        Scene(
            "2.3",
            ACT_DEVELOPER,
            "Developer Performs Restage",
            [
                Step(
                    f"cf set-space-isolation-segment {p.dev_space} {p.segment}",
                    "Platform operator assigns space to segment",
                ),
                Step(f"cf space {p.dev_space}", "Developer verifies space assignment"),
                Step(f"cf restage {p.app}", "Developer restages application (THE ONLY ACTION NEEDED)"),
            ],
        ),
        Scene(
            "2.4",
            ACT_DEVELOPER,
            "Developer Verification",
            [
                Step(f"cf space {p.dev_space}", "Confirm space shows isolation segment"),
                Step(f"cf app {p.app}", "Check app status"),
                Step(f"[BROWSER] Refresh {p.app} URL, click around", marker=True),
                Step(f'cf app {p.app} | grep -E "routes|memory|buildpack"', "Highlight zero changes required"),
                Step(f"{stats}\n{cells}", "Verify app running on isolated cell"),
                Step(
                    f'echo "Confirmed: {p.app} is running on the {p.segment} isolation segment"',
                    "Confirm isolation",
                ),
            ],
        ),
    ]


def scenes_from(scenes: list[Scene], start: str | None) -> list[Scene]:
    """Scenes from `start` (a scene number like "1.3" or a 1-based index) to the end."""

    if not start or start.lower() == "a":
        return list(scenes)
    for index, scene in enumerate(scenes):
        if scene.number == start or str(index + 1) == start:
            return scenes[index:]
    raise PreconditionError(f"Unknown scene: {start}")
