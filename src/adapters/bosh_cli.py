"""Wrapper around the `bosh` CLI.

Reads deployments through `--json` table output and the deployed manifest
(YAML). Diego cell capacity comes from each rep's `localhost:1800/state`,
fetched with `bosh ssh`.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import yaml

from core.domain.models import CellState
from core.errors import PreconditionError
from core.interfaces.runner import CommandResult, CommandRunner
from core.log import success

logger = logging.getLogger(__name__)

REP_STATE_COMMAND = "curl -s localhost:1800/state"

_SSH_STDOUT_RE = re.compile(r"^(?P<instance>[\w.-]+/[\w.-]+): stdout \| ?(?P<text>.*)$")


def parse_table_rows(text: str) -> list[dict[str, Any]]:
    """Rows of the first table in `bosh ... --json` output."""

    try:
        payload = json.loads(text or "{}")
    except json.JSONDecodeError:
        return []
    tables = payload.get("Tables") or [] if isinstance(payload, dict) else []
    if not tables:
        return []
    rows = tables[0].get("Rows") or []
    return [r for r in rows if isinstance(r, dict)]


def instance_group(instance: str) -> str:
    """`diego_cell/3f1a...` -> `diego_cell`."""

    return instance.split("/", 1)[0]


def placement_tags(manifest_text: str) -> list[str]:
    """Placement tags set on `rep` jobs anywhere in a deployment manifest."""

    try:
        manifest = yaml.safe_load(manifest_text) or {}
    except yaml.YAMLError:
        return []
    if not isinstance(manifest, dict):
        return []

    tags: list[str] = []
    for group in manifest.get("instance_groups") or []:
        if not isinstance(group, dict):
            continue
        candidates = [group.get("properties") or {}]
        for job in group.get("jobs") or []:
            if isinstance(job, dict) and job.get("name") == "rep":
                candidates.append(job.get("properties") or {})
        for props in candidates:
            rep = ((props.get("diego") or {}).get("rep") or {}) if isinstance(props, dict) else {}
            for tag in rep.get("placement_tags") or []:
                if tag not in tags:
                    tags.append(str(tag))
    return tags


def parse_ssh_states(text: str) -> list[CellState]:
    """Rep state per instance from `bosh ssh <group> -c "curl ..."` output.

    Output lines look like `diego_cell/<id>: stdout | {...}`; stderr lines and
    the BOSH preamble are ignored. Instances whose stdout is not valid JSON
    are dropped.
    """

    chunks: dict[str, list[str]] = {}
    for raw_line in text.splitlines():
        match = _SSH_STDOUT_RE.match(raw_line.strip())
        if match:
            chunks.setdefault(match.group("instance"), []).append(match.group("text"))

    states: list[CellState] = []
    for instance, parts in chunks.items():
        body = "".join(parts).strip()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            logger.debug("Unreadable rep state from %s", instance)
            continue
        if isinstance(payload, dict):
            states.append(CellState.model_validate({**payload, "instance": instance}))
    return states


class BoshCLI:
    """Facade over `bosh -e <env> [-d <deployment>] ...`."""

    def __init__(self, runner: CommandRunner, environment: str | None) -> None:
        self._runner = runner
        self.environment = environment

    def _bosh(self, *args: str, deployment: str | None = None, mutating: bool = False) -> CommandResult:
        argv = ["bosh"]
        if self.environment:
            argv += ["-e", self.environment]
        if deployment:
            argv += ["-d", deployment]
        return self._runner.run((*argv, *args), mutating=mutating)

    @property
    def configured(self) -> bool:
        return bool(self.environment)

    def is_reachable(self) -> bool:
        return self.configured and self._bosh("env").ok

    def validate_connection(self) -> None:
        logger.info("Validating BOSH connection...")
        if not self.environment:
            raise PreconditionError("BOSH_ENVIRONMENT not set. Please set it to your BOSH Director URL.")
        if not self._bosh("env").ok:
            raise PreconditionError("Cannot connect to BOSH Director. Check BOSH_* environment variables.")
        success(logger, "BOSH connection validated")

    def env_name(self) -> str | None:
        rows = parse_table_rows(self._bosh("env", "--json").stdout)
        return rows[0].get("name") if rows else None

    def version(self) -> str | None:
        result = self._runner.run(("bosh", "--version"))
        lines = result.stdout.strip().splitlines()
        return lines[0] if result.ok and lines else None

    def deploy(self, deployment: str, manifest_path: str) -> bool:
        return self._bosh("deploy", manifest_path, "--non-interactive", deployment=deployment, mutating=True).ok

    def deployment_exists(self, deployment: str) -> bool:
        return self._bosh("deployment", deployment=deployment).ok

    def instances(self, deployment: str) -> list[dict[str, Any]]:
        result = self._bosh("instances", "--json", deployment=deployment)
        return parse_table_rows(result.stdout) if result.ok else []

    def diego_cells(self, deployment: str) -> list[dict[str, Any]]:
        """Instance rows of Diego cell groups (`diego_cell`, `isolated_diego_cell`, ...)."""

        return [r for r in self.instances(deployment) if "diego_cell" in instance_group(str(r.get("instance", "")))]

    def manifest(self, deployment: str) -> str:
        result = self._bosh("manifest", deployment=deployment)
        return result.stdout if result.ok else ""

    def placement_tags(self, deployment: str) -> list[str]:
        return placement_tags(self.manifest(deployment))

    def cell_states(self, deployment: str, groups: list[str]) -> list[CellState]:
        """Rep state of every reachable cell in the given instance groups."""

        states: list[CellState] = []
        for group in groups:
            result = self._bosh("ssh", group, "-c", REP_STATE_COMMAND, deployment=deployment)
            states.extend(parse_ssh_states(result.stdout))
        return states
