"""BOSH manifest rendering.

Why it lives in adapters:
- YAML templating (Jinja2) is an infrastructure detail.
- The service layer only passes a `CellPoolSpec` and gets text/paths back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
_TEMPLATES_DIR_FALLBACK = Path(__file__).resolve().parents[1] / "templates"

MANIFEST_TEMPLATE = "diego-cell-manifest.yml.j2"
DEFAULT_AZS = ("z1", "z2", "z3")


@dataclass
class CellPoolSpec:
    """Everything the Diego cell manifest needs."""

    deployment: str
    segment: str
    instances: int
    vm_type: str
    network: str = "default"
    azs: list[str] = field(default_factory=lambda: list(DEFAULT_AZS))
    stemcell_os: str = "ubuntu-jammy"


def _get_env() -> Environment:
    templates_dir = _TEMPLATES_DIR if _TEMPLATES_DIR.is_dir() else _TEMPLATES_DIR_FALLBACK
    return Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_manifest(spec: CellPoolSpec) -> str:
    template = _get_env().get_template(MANIFEST_TEMPLATE)
    return template.render(spec=spec, azs=spec.azs or list(DEFAULT_AZS))


def manifest_path(manifest_dir: Path, deployment: str) -> Path:
    return manifest_dir / f"{deployment}-manifest.yml"


def write_manifest(spec: CellPoolSpec, manifest_dir: Path) -> Path:
    """Render and write `<manifest_dir>/<deployment>-manifest.yml`."""

    output_path = manifest_path(manifest_dir, spec.deployment)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_manifest(spec), encoding="utf-8")
    return output_path
