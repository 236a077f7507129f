"""Typer application: global flags, segment/migration commands and tile commands.

Commands delegate to `core.services`; this module only parses flags, renders
results and maps outcomes to exit codes (1 for any failure).
"""

from __future__ import annotations

import logging
from importlib import metadata
from pathlib import Path

import typer
from rich.console import Console

from adapters.manifest_renderer import DEFAULT_AZS
from adapters.om_cli import ISOLATION_SEGMENT_SLUG
from cli import common
from cli.demo import app as demo_app
from cli.doctor import app as doctor_app
from cli.ui_components import build_check_table, build_metrics_panel
from core.config import AppSettings
from core.domain.options import OutputFormat
from core.log import configure_logging
from core.resources_loader import default_download_dir
from core.services import migration, monitor, segments, tiles

logger = logging.getLogger("isoseg")

app = typer.Typer(
    name="isoseg",
    add_completion=False,
    no_args_is_help=True,
    help="Isolation segment lifecycle for Cloud Foundry / TAS: create, migrate, monitor, rollback, validate.",
)
app.add_typer(doctor_app, name="doctor")
app.add_typer(demo_app, name="demo")

_console = Console()


def _version() -> str:
    try:
        return metadata.version("isoseg")
    except metadata.PackageNotFoundError:
        return "1.0.0"


def _version_callback(value: bool) -> None:
    if value:
        _console.print(f"isoseg version {_version()}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done without executing."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug output."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Log file path."),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Global flags override the environment (DRY_RUN, VERBOSE, LOG_FILE)."""

    overrides: dict[str, object] = {}
    if dry_run:
        overrides["dry_run"] = True
    if verbose:
        overrides["verbose"] = True
    if log_file is not None:
        overrides["log_file"] = log_file

    settings = AppSettings(**overrides)
    configure_logging(verbose=settings.verbose, log_file=settings.log_file)
    ctx.obj = settings


def _cell_size(value: str) -> str:
    try:
        segments.parse_cell_size(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return value


@app.command("create-segment")
def create_segment(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", help="Isolation segment name."),
    cell_size: str = typer.Option(..., "--cell-size", callback=_cell_size, help="vCPU/RAM in GB (e.g. 8/64)."),
    count: int = typer.Option(..., "--count", min=1, help="Number of Diego cells to deploy."),
    deployment: str | None = typer.Option(None, "--deployment", help="BOSH deployment name (default: segment name)."),
    az: str = typer.Option(",".join(DEFAULT_AZS), "--az", help="Availability zones (comma-separated)."),
    network: str = typer.Option("default", "--network", help="BOSH network name."),
    vm_type: str | None = typer.Option(None, "--vm-type", help="VM type (default: diego-cell-<V>cpu-<M>gb)."),
    register: bool = typer.Option(False, "--register", help="Register the segment in Cloud Controller."),
) -> None:
    """Deploy a pool of Diego cells tagged for a new isolation segment."""

    settings = common.get_settings(ctx)
    request = segments.CreateSegmentRequest(
        name=name,
        cell_size=cell_size,
        count=count,
        deployment=deployment,
        azs=common.split_csv(az) or list(DEFAULT_AZS),
        network=network,
        vm_type=vm_type,
        register=register,
    )
    with common.fatal_errors():
        segments.create_segment(common.build_context(settings), request)


@app.command()
def migrate(
    ctx: typer.Context,
    org: str = typer.Option(..., "--org", help="Organization name."),
    space: str = typer.Option(..., "--space", help="Space name."),
    segment: str = typer.Option(..., "--segment", help="Target isolation segment."),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Apps per batch (default: BATCH_SIZE or 10)."),
    delay: float | None = typer.Option(
        None, "--delay", min=0, help="Seconds between restarts (default: MIGRATION_DELAY or 30)."
    ),
    apps: str | None = typer.Option(None, "--apps", help="Only these apps (comma-separated)."),
    exclude: str | None = typer.Option(None, "--exclude", help="Skip these apps (comma-separated)."),
    entitle: bool = typer.Option(False, "--entitle", help="Entitle the org to the segment first."),
) -> None:
    """Assign a space to an isolation segment and restart its apps one by one."""

    settings = common.get_settings(ctx)
    request = migration.MigrationRequest(
        org=org,
        space=space,
        segment=segment,
        batch_size=batch_size or settings.batch_size,
        delay=settings.migration_delay if delay is None else delay,
        apps=common.split_csv(apps) or None,
        exclude=common.split_csv(exclude) or None,
        entitle=entitle,
    )
    with common.fatal_errors():
        outcome = migration.migrate(common.build_context(settings), request)

    if outcome.dry_run:
        for name in outcome.apps:
            typer.echo(name)
        return
    if not outcome.ok:
        logger.error("%d app(s) failed to migrate: %s", outcome.result.failed, ", ".join(outcome.result.failed_apps))
        logger.info("Rollback with: isoseg rollback --org %s --space %s", org, space)
        raise typer.Exit(code=1)


@app.command()
def rollback(
    ctx: typer.Context,
    org: str = typer.Option(..., "--org", help="Organization name."),
    space: str = typer.Option(..., "--space", help="Space name."),
    target_segment: str | None = typer.Option(
        None, "--target-segment", help="Move to this segment instead of the shared one."
    ),
    apps: str | None = typer.Option(None, "--apps", help="Only these apps (comma-separated)."),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Apps per batch."),
    delay: float | None = typer.Option(None, "--delay", min=0, help="Seconds between restarts."),
) -> None:
    """Move a space back to the shared segment (or another segment) and restart its apps."""

    settings = common.get_settings(ctx)
    request = migration.RollbackRequest(
        org=org,
        space=space,
        target_segment=target_segment,
        apps=common.split_csv(apps) or None,
        batch_size=batch_size or settings.batch_size,
        delay=settings.migration_delay if delay is None else delay,
    )
    with common.fatal_errors():
        outcome = migration.rollback(common.build_context(settings), request)

    if not outcome.ok:
        logger.error("%d app(s) failed to rollback: %s", outcome.result.failed, ", ".join(outcome.result.failed_apps))
        raise typer.Exit(code=1)


@app.command("monitor")
def monitor_cmd(
    ctx: typer.Context,
    segment: str = typer.Option(..., "--segment", help="Isolation segment name."),
    deployment: str | None = typer.Option(None, "--deployment", help="BOSH deployment (default: segment name)."),
    watch: int | None = typer.Option(None, "--watch", min=1, help="Refresh every N seconds."),
    output: OutputFormat = typer.Option(OutputFormat.TEXT, "--output", case_sensitive=False, help="text, json or csv."),
) -> None:
    """Show app count, Diego cells and capacity of a segment."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        service = common.build_context(settings)
        monitor.ensure_segment(service, segment)

        def show(first: bool) -> None:
            metrics = monitor.gather_metrics(service, segment, deployment)
            if output is OutputFormat.JSON:
                typer.echo(monitor.render_json(metrics))
            elif output is OutputFormat.CSV:
                typer.echo(monitor.render_csv(metrics, header=first), nl=False)
            else:
                _console.print(build_metrics_panel(metrics))

        if watch is None:
            show(True)
            return

        first = True
        try:
            while True:
                if output is OutputFormat.TEXT:
                    _console.clear()
                show(first)
                first = False
                service.sleep(watch)
        except KeyboardInterrupt:
            logger.info("Stopped watching %s", segment)


@app.command()
def validate(
    ctx: typer.Context,
    segment: str = typer.Option(..., "--segment", help="Isolation segment name."),
    deployment: str | None = typer.Option(None, "--deployment", help="BOSH deployment (default: segment name)."),
) -> None:
    """Check registration, Diego cells and placement tags of a segment."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        report = segments.validate_segment(common.build_context(settings), segment, deployment)
    _console.print(build_check_table(report))
    if not report.ok:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Tile lifecycle
# ---------------------------------------------------------------------------


@app.command("download-tile")
def download_tile(
    ctx: typer.Context,
    version: str = typer.Option(..., "--version", help="X.Y for the latest patch, or an exact version."),
    output_directory: Path = typer.Option(default_download_dir(), "--output-directory", help="Download location."),
) -> None:
    """Download the Isolation Segment tile from Broadcom Support (Pivnet)."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        tiles.download_tile(common.build_context(settings), version, output_directory.expanduser())


@app.command("download-replicator")
def download_replicator(
    ctx: typer.Context,
    version: str = typer.Option(..., "--version", help="Full release version (e.g. 10.2.5+LTS-T)."),
    output_directory: Path = typer.Option(Path("."), "--output-directory", help="Install location."),
) -> None:
    """Download the Replicator used to clone the tile for additional segments."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        tiles.download_replicator(common.build_context(settings), version, output_directory.expanduser())


@app.command("replicate-tile")
def replicate_tile(
    ctx: typer.Context,
    source: Path = typer.Option(..., "--source", help="Source isolation segment tile."),
    name: str = typer.Option(..., "--name", help="Unique name for the new segment."),
    output: Path | None = typer.Option(None, "--output", help="Output tile path or directory."),
    replicator: Path | None = typer.Option(None, "--replicator", help="Replicator binary."),
) -> None:
    """Create a tile copy for an additional isolation segment."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        tiles.replicate_tile(
            common.build_context(settings),
            source.expanduser(),
            name,
            output.expanduser() if output else None,
            replicator.expanduser() if replicator else None,
        )


@app.command("install-tile")
def install_tile(
    ctx: typer.Context,
    tile_path: Path = typer.Option(..., "--tile-path", help="Path to the .pivotal file."),
    product_name: str = typer.Option(ISOLATION_SEGMENT_SLUG, "--product-name", help="Product name to stage."),
) -> None:
    """Upload the tile to Ops Manager and stage it."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        staged = tiles.install_tile(common.build_context(settings), tile_path.expanduser(), product_name)
    if not staged:
        raise typer.Exit(code=1)


@app.command("configure-segment")
def configure_segment(
    ctx: typer.Context,
    product: str = typer.Option(..., "--product", help="Product name in Ops Manager."),
    vars_file: Path = typer.Option(..., "--vars-file", help="Segment vars file."),
    config_dir: Path | None = typer.Option(None, "--config-dir", help="Config template directory."),
    apply: bool = typer.Option(False, "--apply", help="Apply changes after configuration."),
) -> None:
    """Configure a staged Isolation Segment tile with om configure-product."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        ok = tiles.configure_segment(
            common.build_context(settings),
            product,
            vars_file.expanduser(),
            config_dir.expanduser() if config_dir else None,
            apply,
        )
    if not ok:
        raise typer.Exit(code=1)


@app.command("register-segment")
def register_segment(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", help="Segment name (must match the tile configuration)."),
) -> None:
    """Register a deployed segment in Cloud Controller."""

    settings = common.get_settings(ctx)
    with common.fatal_errors():
        tiles.register_segment(common.build_context(settings), name)


def run() -> None:
    app()

