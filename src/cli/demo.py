"""Demo commands: live migration walkthrough, state capture/compare, recording driver."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console

from adapters.http_client import build_client, check_http
from adapters.json_exporter import load_demo_state
from adapters.shell import require_tools
from cli import common
from cli.ui_components import (
    build_comparison_table,
    build_verdict_panel,
    phase_header,
    render_step,
    scene_header,
    section_header,
)
from core.config import DemoSettings
from core.domain.options import CleanupPolicy, DemoMode, StatePhase
from core.log import success
from core.resources_loader import default_download_dir
from core.services import demo as demo_service
from core.services.context import ServiceContext
from core.services.demo import RecordingParams

logger = logging.getLogger("isoseg.demo")

app = typer.Typer(no_args_is_help=True, help="Live migration demo and recording helpers.")

_console = Console()


def _demo_settings(
    mode: DemoMode | None = None,
    segment: str | None = None,
    org: str | None = None,
    space: str | None = None,
    app_name: str | None = None,
    cleanup: CleanupPolicy | None = None,
    skip_bosh: bool | None = None,
    deployment: str | None = None,
    state_dir: Path | None = None,
    restage: bool | None = None,
) -> DemoSettings:
    """DEMO_* settings with explicit flags taking precedence."""

    overrides = {
        "mode": mode,
        "segment": segment,
        "org": org,
        "space": space,
        "app_name": app_name,
        "cleanup": cleanup,
        "skip_bosh": skip_bosh,
        "deployment": deployment,
        "state_dir": state_dir,
        "restage": restage,
    }
    return DemoSettings(**{k: v for k, v in overrides.items() if v is not None})


def _pause(mode: DemoMode, action: str) -> None:
    if mode.pauses:
        _console.input(f"\n[cyan]\\[Press Enter to {action}][/cyan]")


def _prerequisites(service: ServiceContext, demo: DemoSettings) -> bool:
    """Returns whether BOSH verification stays enabled."""

    skip_bosh = demo.skip_bosh
    require_tools(service.runner, "cf")
    if not skip_bosh:
        require_tools(service.runner, "bosh")

    success(logger, "CF CLI found (%s)", service.cf.version() or "unknown")
    if not skip_bosh:
        success(logger, "BOSH CLI found (%s)", service.bosh.version() or "unknown")

    service.cf.validate_connection(service.settings)
    endpoint = service.cf.api_endpoint()
    success(logger, "Connected to CF API: %s", endpoint or "unknown")
    if endpoint:
        with build_client(service.settings) as client:
            reachable, detail = check_http(endpoint, client)
        if not reachable:
            logger.warning("CF API %s not reachable over HTTPS from here (%s); app /env checks may fail", endpoint, detail)

    if not skip_bosh:
        logger.info("Validating BOSH connection...")
        if not service.bosh.is_reachable():
            logger.warning("Cannot connect to BOSH Director. BOSH verification will be limited.")
            logger.warning("Set DEMO_SKIP_BOSH=true to skip BOSH verification entirely.")
            skip_bosh = True
        else:
            success(logger, "Connected to BOSH: %s", service.bosh.env_name() or "unknown")
    return not skip_bosh


def _capture(
    service: ServiceContext,
    demo: DemoSettings,
    phase: StatePhase,
    state_file: Path,
    *,
    skip_bosh: bool,
) -> None:
    with build_client(service.settings) as client:
        snapshot = demo_service.capture_state(service, demo, client, skip_bosh=skip_bosh)
    demo_service.record_phase(state_file, phase, snapshot, demo)
    cf_layer = snapshot.cf_cli
    logger.info("Space segment: %s", cf_layer.get("space_isolation_segment"))
    logger.info("App state: %s (%s instances)", cf_layer.get("app_state"), cf_layer.get("instances"))
    if not snapshot.bosh.get("skipped"):
        logger.info("App hosts: %s", ", ".join(snapshot.bosh.get("app_hosts") or []) or "unknown")
    success(logger, "%s state captured in %s", phase.value.upper(), state_file)


def _show_comparison(state_file: Path) -> bool:
    state = load_demo_state(state_file)
    comparison = demo_service.compare_states(state)
    _console.print(build_comparison_table(comparison))
    _console.print(build_verdict_panel(comparison, state.segment))
    return comparison.isolation_applied


@app.command("run")
def run_demo(
    ctx: typer.Context,
    mode: DemoMode | None = typer.Option(None, "--mode", case_sensitive=False, help="interactive or automated."),
    segment: str | None = typer.Option(None, "--segment", help="Isolation segment (DEMO_SEGMENT)."),
    org: str | None = typer.Option(None, "--org", help="Organization (DEMO_ORG)."),
    space: str | None = typer.Option(None, "--space", help="Space (DEMO_SPACE)."),
    app_name: str | None = typer.Option(None, "--app", help="App to migrate (DEMO_APP_NAME)."),
    cleanup: CleanupPolicy | None = typer.Option(None, "--cleanup", case_sensitive=False, help="ask, always or never."),
    skip_bosh: bool | None = typer.Option(None, "--skip-bosh/--with-bosh", help="Skip BOSH verification."),
    deployment: str | None = typer.Option(None, "--deployment", help="BOSH deployment of the segment cells."),
    restage: bool | None = typer.Option(None, "--restage/--restart", help="Restage instead of restart (DEMO_RESTAGE)."),
) -> None:
    """Migrate one app to an isolation segment, showing before/after on every layer."""

    settings = common.get_settings(ctx)
    demo = _demo_settings(mode, segment, org, space, app_name, cleanup, skip_bosh, deployment, restage=restage)
    state_file = demo_service.new_state_path(demo.state_dir)

    with common.fatal_errors():
        service = common.build_context(settings)
        section_header(_console, demo.mode, "Isolation Segment Migration Demo")

        phase_header(_console, demo.mode, "Phase 1", "Prerequisites & Setup")
        bosh_enabled = _prerequisites(service, demo)
        logger.info("Demo configuration:")
        logger.info("  Mode: %s", demo.mode.value)
        logger.info("  Org: %s", demo.org)
        logger.info("  Space: %s", demo.space)
        logger.info("  Segment: %s", demo.segment)
        logger.info("  App: %s", demo.app_name)
        logger.info("  BOSH verification: %s", "enabled" if bosh_enabled else "disabled")
        _pause(demo.mode, "capture the current state")

        phase_header(_console, demo.mode, "Phase 2", "Before State")
        _capture(service, demo, StatePhase.BEFORE, state_file, skip_bosh=not bosh_enabled)
        _pause(demo.mode, "migrate the app")

        phase_header(_console, demo.mode, "Phase 3", "Migration")
        demo_service.migrate_demo_app(service, demo)
        _pause(demo.mode, "capture the new state")

        phase_header(_console, demo.mode, "Phase 4", "After State")
        _capture(service, demo, StatePhase.AFTER, state_file, skip_bosh=not bosh_enabled)
        _pause(demo.mode, "compare")

        phase_header(_console, demo.mode, "Phase 5", "Comparison")
        applied = _show_comparison(state_file)

        phase_header(_console, demo.mode, "Phase 6", "Cleanup")
        restore = demo.cleanup is CleanupPolicy.ALWAYS
        if demo.cleanup is CleanupPolicy.ASK and demo.mode.pauses:
            restore = typer.confirm(f"Move {demo.app_name} back to the shared segment?", default=False)
        if restore:
            demo_service.restore_demo_app(service, demo)
        else:
            logger.info("Leaving %s on segment %s", demo.app_name, demo.segment)

    logger.info("State file: %s", state_file)
    if not applied and not settings.dry_run:
        raise typer.Exit(code=1)


@app.command()
def capture(
    ctx: typer.Context,
    phase: StatePhase = typer.Option(..., "--phase", case_sensitive=False, help="before or after."),
    state_file: Path | None = typer.Option(None, "--state-file", help="State file (new file for 'before')."),
    segment: str | None = typer.Option(None, "--segment"),
    org: str | None = typer.Option(None, "--org"),
    space: str | None = typer.Option(None, "--space"),
    app_name: str | None = typer.Option(None, "--app"),
    skip_bosh: bool | None = typer.Option(None, "--skip-bosh/--with-bosh"),
    deployment: str | None = typer.Option(None, "--deployment"),
) -> None:
    """Capture one phase of the demo state; prints the state file path."""

    settings = common.get_settings(ctx)
    demo = _demo_settings(
        segment=segment,
        org=org,
        space=space,
        app_name=app_name,
        skip_bosh=skip_bosh,
        deployment=deployment,
    )
    if state_file is None:
        if phase is StatePhase.AFTER:
            raise typer.BadParameter("--state-file is required for the 'after' phase", param_hint="--state-file")
        state_file = demo_service.new_state_path(demo.state_dir)

    with common.fatal_errors():
        service = common.build_context(settings)
        require_tools(service.runner, "cf")
        service.cf.validate_connection(settings)
        bosh_enabled = not demo.skip_bosh and service.bosh.is_reachable()
        _capture(service, demo, phase, state_file, skip_bosh=not bosh_enabled)
    typer.echo(str(state_file))


@app.command()
def compare(
    state_file: Path = typer.Option(..., "--state-file", exists=True, dir_okay=False, help="Demo state file."),
    as_json: bool = typer.Option(False, "--json", help="Print the comparison as JSON."),
) -> None:
    """Compare the before/after captures of a state file."""

    with common.fatal_errors():
        if as_json:
            comparison = demo_service.compare_states(load_demo_state(state_file))
            typer.echo(comparison.model_dump_json(indent=2))
            return
        _show_comparison(state_file)


def _choose_start(scenes: list[demo_service.Scene]) -> str:
    _console.print("Select starting point:\n")
    act = None
    for index, scene in enumerate(scenes, start=1):
        if scene.act != act:
            act = scene.act
            _console.print(f"  {act}")
        _console.print(f"    {index}) {scene.heading}")
    _console.print("\n    a) Run ALL scenes from beginning\n    q) Quit\n")
    return _console.input("Choice: ").strip()


@app.command()
def script(
    start: str | None = typer.Option(None, "--start", help="Scene number (1.1-2.4), index (1-8) or 'a'."),
    org: str = typer.Option("demo-org", "--org"),
    segment: str = typer.Option("large-cell", "--segment"),
    dev_space: str = typer.Option("dev-space", "--dev-space"),
    validation_space: str = typer.Option("iso-validation", "--validation-space"),
    app_name: str = typer.Option("spring-music", "--app"),
    tile_version: str = typer.Option("10.2.5", "--tile-version"),
    download_dir: Path = typer.Option(default_download_dir(), "--download-dir"),
) -> None:
    """Recording driver: show the walkthrough commands one at a time.

    ENTER shows the next command, `s` skips the rest of the scene, `q` quits.
    """

    params = RecordingParams(
        org=org,
        segment=segment,
        dev_space=dev_space,
        validation_space=validation_space,
        app=app_name,
        tile_version=tile_version,
        download_dir=download_dir,
    )
    scenes = demo_service.build_scenes(params)

    section_header(_console, DemoMode.INTERACTIVE, "Isolation Segments Demo Recording Driver")
    choice = start or _choose_start(scenes)
    if choice.lower() == "q":
        return
    with common.fatal_errors():
        selected = demo_service.scenes_from(scenes, choice)

    number = 0
    for scene in selected:
        scene_header(_console, scene)
        for position, step in enumerate(scene.steps):
            if not step.marker:
                number += 1
            render_step(_console, number, step)
            following = scene.steps[position + 1] if position + 1 < len(scene.steps) else None
            if step.marker and following is not None and following.marker:
                continue
            answer = _console.input("[cyan]Press ENTER for next command (q to quit, s to skip scene)...[/cyan]")
            answer = answer.strip().lower()
            if answer == "q":
                _console.print("Exiting...")
                return
            if answer == "s":
                break

    _console.print("\n[bold green]END OF DEMO - Stop Recording[/bold green]\n")


@app.command()
def notify(
    space: str = typer.Option("dev-space", "--space"),
    segment: str = typer.Option("large-cell", "--segment"),
    deadline: str = typer.Option("Friday, January 17, 2026", "--deadline"),
    contact: str = typer.Option("platform-team@example.com", "--contact"),
) -> None:
    """Print the developer migration notification."""

    typer.echo("")
    typer.echo(demo_service.notification_text(space, segment, deadline, contact))
    typer.echo("")


@app.command()
def prepare(
    ctx: typer.Context,
    org: str = typer.Option("demo-org", "--org"),
    dev_space: str = typer.Option("dev-space", "--dev-space"),
    validation_space: str = typer.Option("iso-validation", "--validation-space"),
) -> None:
    """Create the spaces the recording walkthrough expects."""

    settings = common.get_settings(ctx)
    params = RecordingParams(org=org, dev_space=dev_space, validation_space=validation_space)
    with common.fatal_errors():
        service = common.build_context(settings)
        require_tools(service.runner, "cf")
        service.cf.validate_connection(settings)
        created = demo_service.prepare_recording(service, params)
    if not created:
        logger.info("Nothing to create")


@app.command("cleanup")
def cleanup_cmd(
    ctx: typer.Context,
    org: str = typer.Option("demo-org", "--org"),
    segment: str = typer.Option("large-cell", "--segment"),
    dev_space: str = typer.Option("dev-space", "--dev-space"),
    validation_space: str = typer.Option("iso-validation", "--validation-space"),
    test_app: str = typer.Option("cf-env-test", "--test-app"),
    tile_version: str = typer.Option("10.2.5", "--tile-version"),
    download_dir: Path = typer.Option(default_download_dir(), "--download-dir"),
    apply_changes: bool = typer.Option(False, "--apply-changes", help="Run Apply Changes after deleting the tile."),
) -> None:
    """Reset everything the recording walkthrough created (best-effort)."""

    settings = common.get_settings(ctx)
    params = RecordingParams(
        org=org,
        segment=segment,
        dev_space=dev_space,
        validation_space=validation_space,
        test_app=test_app,
        tile_version=tile_version,
        download_dir=download_dir.expanduser(),
    )
    with common.fatal_errors():
        service = common.build_context(settings)
        require_tools(service.runner, "cf", "om")
        failed = demo_service.cleanup_recording(service, params, apply_changes=apply_changes)
    if failed:
        logger.warning("%d cleanup step(s) failed: %s", len(failed), "; ".join(failed))
