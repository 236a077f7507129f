"""JSON persistence of domain models.

Why JSON:
- Monitor snapshots and demo state feed other tooling (jq, dashboards, CI).
- The demo state file is written once per phase and read back for the
  comparison, so it must round-trip through the models.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel

from core.domain.models import DemoStateFile, SegmentMetrics


def dumps_model(model: BaseModel) -> str:
    """Stable, pretty JSON for a model."""

    payload = model.model_dump(mode="json")
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)


def metrics_payload(metrics: SegmentMetrics) -> dict:
    """Public `monitor --output json` schema (timestamp as `...Z`)."""

    payload = metrics.model_dump(mode="json")
    payload["timestamp"] = metrics.timestamp_z
    return payload


def export_demo_state(*, state: DemoStateFile, output_path: Path) -> Path:
    """Write the demo state file as UTF-8 JSON."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(dumps_model(state) + "\n", encoding="utf-8")
    return output_path


def load_demo_state(path: Path) -> DemoStateFile:
    raw = path.read_text(encoding="utf-8")
    return DemoStateFile.model_validate(json.loads(raw))
