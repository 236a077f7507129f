"""Isolation Segment tile lifecycle through Ops Manager.

Download (Pivnet via `om`), replicate (one tile per extra segment), install
(upload + stage), configure (`om configure-product` with the bundled
templates) and register the segment in Cloud Controller.

Dry-run stops each operation right after its inputs are validated and logs
what would have happened.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
import zipfile
from pathlib import Path

from adapters.om_cli import ISOLATION_SEGMENT_SLUG
from adapters.replicator import binary_name, detect_platform, installed_name, locate_replicator, run_replicator
from adapters.shell import require_tools
from core.errors import CommandFailedError, PreconditionError
from core.log import success
from core.resources_loader import default_config_dir, find_downloaded_tile, tile_version_from_name
from core.services.context import ServiceContext

logger = logging.getLogger(__name__)

_MAJOR_MINOR_RE = re.compile(r"^\d+\.\d+$")
_SEGMENT_NAME_RE = re.compile(r"^[A-Za-z0-9_ -]+$")

REPLICATOR_FILE_NAME = "Replicator"
COMPUTE_ISOLATION_OPS = Path("features") / "compute_isolation-enabled.yml"
ROUTING_SHARDING_OPS = Path("features") / "routing_table_sharding_mode-isolation_segment_list.yml"


def _require_token(ctx: ServiceContext) -> str:
    token = ctx.settings.pivnet_token
    if not token:
        raise PreconditionError("PIVNET_TOKEN environment variable not set")
    return token


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PreconditionError(f"Failed to create output directory: {path}") from exc


# ---------------------------------------------------------------------------
# download-tile
# ---------------------------------------------------------------------------


def tile_download_filters(version: str) -> tuple[str, str, str]:
    """(file glob, product version regex, description) for `om download-product`.

    `X.Y` selects the latest patch of that line, anything else is exact.
    """

    if _MAJOR_MINOR_RE.match(version):
        escaped = version.replace(".", r"\.")
        return (
            f"p-isolation-segment-{version}.[0-9]*.*",
            f"^{escaped}\\.[0-9]+.*",
            f"{version}.x (latest patch)",
        )
    return (
        f"p-isolation-segment-{version}*",
        f"^{re.escape(version)}.*",
        f"{version} (exact version)",
    )


def download_tile(ctx: ServiceContext, version: str, output_dir: Path) -> Path | None:
    """Download the tile; returns the `.pivotal` found afterwards (None in dry-run)."""

    token = _require_token(ctx)
    _ensure_dir(output_dir)
    file_glob, version_regex, description = tile_download_filters(version)

    logger.info("Downloading Isolation Segment tile from Pivnet")
    logger.info("  Version: %s", description)
    logger.info("  Output: %s", output_dir)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would download %s %s to %s", ISOLATION_SEGMENT_SLUG, description, output_dir)
        return None

    require_tools(ctx.runner, "om")
    logger.info("Downloading tile (this may take several minutes)...")
    if not ctx.om.download_product(
        slug=ISOLATION_SEGMENT_SLUG,
        file_glob=file_glob,
        version_regex=version_regex,
        output_dir=output_dir,
        pivnet_token=token,
    ):
        raise CommandFailedError("Failed to download tile. Check PIVNET_TOKEN and network connection.")
    success(logger, "Tile downloaded successfully")

    downloaded = find_downloaded_tile(output_dir, version)
    if downloaded is None:
        logger.warning("Tile downloaded but could not locate file in %s", output_dir)
        return None

    success(logger, "Downloaded: %s", downloaded)
    logger.info("Next step: Install the tile")
    logger.info('  isoseg install-tile --tile-path "%s"', downloaded)
    return downloaded


# ---------------------------------------------------------------------------
# download-replicator
# ---------------------------------------------------------------------------


def find_replicator_file_id(files: list[dict]) -> str | None:
    for item in files:
        if item.get("name") == REPLICATOR_FILE_NAME and item.get("id") is not None:
            return str(item["id"])
    return None


def extract_replicator(archive: Path, platform_name: str, target_dir: Path) -> Path:
    """Copy the platform binary out of the Replicator ZIP into `target_dir`."""

    wanted = binary_name(platform_name)
    with tempfile.TemporaryDirectory(prefix="isoseg-replicator-") as tmp:
        try:
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(tmp)
        except zipfile.BadZipFile as exc:
            raise PreconditionError(f"Failed to extract replicator ZIP file: {archive}") from exc

        candidates = sorted(Path(tmp).rglob(wanted))
        if not candidates:
            available = ", ".join(sorted(p.name for p in Path(tmp).rglob("*") if p.is_file()))
            raise PreconditionError(f"Binary '{wanted}' not found in ZIP archive (available: {available or 'none'})")

        target = target_dir / installed_name(platform_name)
        shutil.copyfile(candidates[0], target)
    target.chmod(0o755)
    return target


def download_replicator(
    ctx: ServiceContext,
    version: str,
    output_dir: Path,
    *,
    system: str | None = None,
) -> Path | None:
    """Fetch the Replicator for a tile release and install it as `<output_dir>/replicator`."""

    token = _require_token(ctx)
    _ensure_dir(output_dir)

    logger.info("Downloading Replicator tool from Pivnet")
    logger.info("  Release version: %s", version)
    logger.info("  Output: %s", output_dir)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would download Replicator for release %s to %s", version, output_dir)
        return None

    require_tools(ctx.runner, "pivnet")
    platform_name = detect_platform(system)
    logger.debug("Detected platform: %s", platform_name)

    logger.debug("Logging into Pivnet...")
    if not ctx.pivnet.login(token):
        raise PreconditionError("Failed to login to Pivnet. Check PIVNET_TOKEN.")

    logger.info("Finding Replicator file ID for release %s...", version)
    file_id = find_replicator_file_id(ctx.pivnet.product_files(ISOLATION_SEGMENT_SLUG, version))
    if not file_id:
        logger.error("Could not find Replicator file for release %s", version)
        logger.info("List available releases with:")
        logger.info("  pivnet releases --product-slug='%s'", ISOLATION_SEGMENT_SLUG)
        logger.info("Then check files for a specific release:")
        logger.info("  pivnet product-files --product-slug='%s' --release-version='VERSION'", ISOLATION_SEGMENT_SLUG)
        raise PreconditionError(f"Replicator not found in release {version}")
    logger.debug("Found Replicator file ID: %s", file_id)

    logger.info("Downloading Replicator (file ID: %s)...", file_id)
    with tempfile.TemporaryDirectory(prefix="isoseg-pivnet-") as tmp:
        workdir = Path(tmp)
        if not ctx.pivnet.download_product_files(ISOLATION_SEGMENT_SLUG, version, file_id, workdir):
            raise CommandFailedError("Failed to download Replicator")

        archives = sorted(workdir.glob("replicator*.zip"))
        if not archives:
            raise PreconditionError("Downloaded file not found or not a ZIP file")

        logger.info("Extracting %s...", archives[0].name)
        target = extract_replicator(archives[0], platform_name, output_dir)

    success(logger, "Installed: %s", target)
    logger.info("Replicator usage example:")
    logger.info('  isoseg replicate-tile --source /path/to/p-isolation-segment.pivotal --name "second-segment"')
    return target


# ---------------------------------------------------------------------------
# replicate-tile
# ---------------------------------------------------------------------------


def validate_replica_name(name: str) -> str:
    name = name.strip()
    if not name or not _SEGMENT_NAME_RE.match(name):
        raise PreconditionError(
            f"Invalid segment name: {name!r}. Permitted: letters, numbers, hyphens, underscores, spaces"
        )
    return name


def default_replica_path(source: Path, name: str) -> Path:
    """`<dir>/<name>-<X.Y.Z>.pivotal`, or `<dir>/<name>.pivotal` when the source has no version."""

    version = tile_version_from_name(source.name)
    if version:
        return source.parent / f"{name}-{version}.pivotal"
    return source.parent / f"{name}.pivotal"


def replicate_tile(
    ctx: ServiceContext,
    source: Path,
    name: str,
    output: Path | None = None,
    replicator: Path | None = None,
) -> Path:
    name = validate_replica_name(name)
    if not source.is_file():
        raise PreconditionError(f"Source tile not found: {source}")

    binary = locate_replicator(ctx.runner, replicator)
    if output is not None and output.is_dir():
        output = default_replica_path(output / source.name, name)
    output = output or default_replica_path(source, name)

    logger.info("Creating replicated tile")
    logger.info("  Source: %s", source)
    logger.info("  Segment name: %s", name)
    logger.info("  Output: %s", output)
    logger.info("  Replicator: %s", binary)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would create %s from %s", output, source)
        return output

    if output.exists():
        logger.warning("Output file already exists: %s", output)
        logger.warning("Overwriting...")

    if not run_replicator(ctx.runner, binary, name=name, source=source, output=output):
        raise CommandFailedError("Replicator failed to create tile")

    success(logger, "Created: %s", output)
    logger.info("Next step: Install the tile")
    logger.info('  isoseg install-tile --tile-path "%s"', output)
    return output


# ---------------------------------------------------------------------------
# install-tile
# ---------------------------------------------------------------------------


def _manual_stage_hint(product_name: str) -> None:
    logger.info(
        "Manually stage the tile: om stage-product --product-name %s --product-version VERSION",
        product_name,
    )


def install_tile(ctx: ServiceContext, tile_path: Path, product_name: str = ISOLATION_SEGMENT_SLUG) -> bool:
    """Upload and stage a tile. False when staging failed after a successful upload."""

    if not tile_path.is_file():
        raise PreconditionError(f"Tile file not found: {tile_path}")

    logger.info("Installing Isolation Segment tile from: %s", tile_path)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would install tile from %s", tile_path)
        return True

    require_tools(ctx.runner, "om")
    ctx.om.validate_connection()

    logger.info("Uploading tile to Ops Manager...")
    if not ctx.om.upload_product(tile_path):
        raise CommandFailedError("Failed to upload tile")
    success(logger, "Tile uploaded successfully")

    logger.info("Querying available product versions...")
    available = ctx.om.available_products()
    if not available:
        logger.warning("Could not query available product versions")
        _manual_stage_hint(product_name)
        logger.info("Or use Ops Manager UI: Installation Dashboard -> %s -> Stage", product_name)
        return True

    version = next((p.get("version") for p in available if p.get("name") == product_name and p.get("version")), None)
    if not version:
        logger.warning("Could not find %s in available products", product_name)
        _manual_stage_hint(product_name)
        return True

    logger.info("Staging tile version %s...", version)
    if not ctx.om.stage_product(product_name, version):
        logger.error("Failed to stage tile version %s", version)
        logger.info("Try staging manually via Ops Manager UI or:")
        logger.info("  om available-products  # to see all versions")
        _manual_stage_hint(product_name)
        return False

    success(logger, "Tile staged successfully")
    success(logger, "Tile installed and staged")
    logger.info("Next steps:")
    logger.info("  1. Configure the tile: isoseg configure-segment --product %s --vars-file VARS_FILE", product_name)
    logger.info("  2. Apply changes in Ops Manager")
    logger.info("  3. Register segment: isoseg register-segment --name SEGMENT_NAME")
    return True


# ---------------------------------------------------------------------------
# configure-segment
# ---------------------------------------------------------------------------


def render_product_config(template: str, product_name: str) -> str:
    """Replace the top-level `product-name:` line of an om product config."""

    rendered, count = re.subn(r"(?m)^product-name: .*$", f"product-name: {product_name}", template)
    if count == 0:
        rendered = f"product-name: {product_name}\n{rendered}"
    return rendered


def configure_segment(
    ctx: ServiceContext,
    product: str,
    vars_file: Path,
    config_dir: Path | None = None,
    apply: bool = False,
) -> bool:
    """`om configure-product` with the bundled templates. False when apply-changes failed."""

    config_dir = config_dir or default_config_dir()
    if not vars_file.is_file():
        raise PreconditionError(f"Vars file not found: {vars_file}")
    if not config_dir.is_dir():
        raise PreconditionError(f"Config directory not found: {config_dir}")

    product_yml = config_dir / "product.yml"
    default_vars = config_dir / "default-vars.yml"
    ops_files = [config_dir / COMPUTE_ISOLATION_OPS, config_dir / ROUTING_SHARDING_OPS]
    if not product_yml.is_file():
        raise PreconditionError(f"Product template not found: {product_yml}")
    if not default_vars.is_file():
        raise PreconditionError(f"Default vars not found: {default_vars}")
    for ops_file in ops_files:
        if not ops_file.is_file():
            raise PreconditionError(f"Ops file not found: {ops_file}")

    logger.info("Configuring Isolation Segment tile")
    logger.info("  Product: %s", product)
    logger.info("  Vars file: %s", vars_file)
    logger.info("  Config dir: %s", config_dir)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would configure product %s", product)
        logger.info("Command would be:")
        logger.info("  om configure-product \\")
        logger.info("    --config %s \\", product_yml)
        logger.info("    --vars-file %s \\", default_vars)
        logger.info("    --vars-file %s \\", vars_file)
        logger.info("    --ops-file %s \\", ops_files[0])
        logger.info("    --ops-file %s", ops_files[1])
        return True

    require_tools(ctx.runner, "om")
    ctx.om.validate_connection()

    logger.info("Running om configure-product...")
    with tempfile.TemporaryDirectory(prefix="isoseg-product-") as tmp:
        product_config = Path(tmp) / "product.yml"
        product_config.write_text(
            render_product_config(product_yml.read_text(encoding="utf-8"), product),
            encoding="utf-8",
        )
        configured = ctx.om.configure_product(
            config=product_config,
            vars_files=[default_vars, vars_file],
            ops_files=ops_files,
        )
    if not configured:
        raise CommandFailedError(f"Failed to configure product {product}")
    success(logger, "Product %s configured successfully", product)

    if not apply:
        logger.info("Next steps:")
        logger.info("  1. Review configuration in Ops Manager UI")
        logger.info("  2. Apply changes: om apply-changes --product-name %s", product)
        logger.info("  3. Register segment: isoseg register-segment --name SEGMENT_NAME")
        return True

    logger.info("Applying changes...")
    if not ctx.om.apply_changes(product):
        logger.error("Failed to apply changes")
        logger.info("You can retry with: om apply-changes --product-name %s", product)
        return False
    success(logger, "Changes applied successfully")
    return True


# ---------------------------------------------------------------------------
# register-segment
# ---------------------------------------------------------------------------


def register_segment(ctx: ServiceContext, name: str, *, fatal: bool = True) -> bool:
    """Create the segment in Cloud Controller (no-op when it already exists).

    With `fatal=False` a failed `cf create-isolation-segment` is logged and
    reported as False instead of raising.
    """

    logger.info("Registering isolation segment: %s", name)

    if ctx.dry_run:
        logger.warning("DRY RUN: Would register segment %s in Cloud Controller", name)
        return True

    require_tools(ctx.runner, "cf")
    ctx.cf.validate_connection(ctx.settings)

    if ctx.cf.segment_exists(name):
        logger.warning("Segment %s already registered in Cloud Controller", name)
        return True

    if not ctx.cf.create_isolation_segment(name):
        if fatal:
            raise CommandFailedError("Failed to register segment in Cloud Controller")
        logger.error("Failed to register segment %s in Cloud Controller", name)
        return False

    success(logger, "Segment %s registered successfully", name)
    logger.info("Segment %s is now ready for use", name)
    logger.info("Next steps to assign apps to this segment:")
    logger.info("  1. Entitle org: cf enable-org-isolation ORG_NAME %s", name)
    logger.info("  2. Set org default (optional): cf set-org-default-isolation-segment ORG_NAME %s", name)
    logger.info("  3. Assign space: cf set-space-isolation-segment SPACE_NAME %s", name)
    logger.info("  4. Restart apps: cf restart APP_NAME")
    return True
