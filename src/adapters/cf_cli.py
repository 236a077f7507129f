"""Wrapper around the `cf` CLI.

The tool never talks to the Cloud Controller directly: it runs `cf` and reads
its tables, `key: value` blocks, or the JSON of `cf curl`. All parsing of `cf`
output lives here so services deal with names, booleans and dicts.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from core.config import AppSettings
from core.errors import PreconditionError
from core.interfaces.runner import CommandResult, CommandRunner
from core.log import success

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z ]*$")
# `cf` pads table columns with at least two spaces; names may hold single ones.
_COLUMN_GAP_RE = re.compile(r"\s{2,}|\t")


def parse_name_column(text: str) -> list[str]:
    """First column of every row following the `name ...` header of a `cf` table.

    Works for `cf apps`, `cf orgs`, `cf spaces` and `cf isolation-segments`;
    anything before the header (progress lines, `OK`) is ignored.
    """

    names: list[str] = []
    in_table = False
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not in_table:
            parts = line.split()
            if parts and parts[0] == "name":
                in_table = True
            continue
        if not line:
            continue
        names.append(_COLUMN_GAP_RE.split(line, maxsplit=1)[0])
    return names


def parse_key_values(text: str) -> dict[str, str]:
    """`key: value` pairs of `cf app`/`cf space`/`cf target` output (first occurrence wins)."""

    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        if ":" not in raw_line:
            continue
        key, value = raw_line.split(":", 1)
        key = key.strip()
        if not _KEY_RE.match(key):
            continue
        key = key.lower()
        if key not in data:
            data[key] = value.strip()
    return data


def split_routes(value: str | None) -> list[str]:
    if not value:
        return []
    return [r.strip() for r in value.split(",") if r.strip()]


class CloudFoundryCLI:
    """Thin, typed facade over `cf` sub-commands."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def _cf(self, *args: str, mutating: bool = False) -> CommandResult:
        return self._runner.run(("cf", *args), mutating=mutating)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def is_api_set(self) -> bool:
        result = self._cf("api")
        return result.ok and bool(parse_key_values(result.stdout).get("api endpoint"))

    def is_logged_in(self) -> bool:
        return self._cf("target").ok

    def api_endpoint(self) -> str | None:
        result = self._cf("api")
        if not result.ok:
            return None
        return parse_key_values(result.stdout).get("api endpoint") or None

    def target_info(self) -> dict[str, str]:
        result = self._cf("target")
        if not result.ok:
            return {}
        return parse_key_values(result.stdout)

    def version(self) -> str | None:
        result = self._cf("version")
        if not result.ok:
            return None
        lines = result.stdout.strip().splitlines()
        return lines[0] if lines else None

    def login_from_env(self, settings: AppSettings) -> bool:
        """`cf api` + `cf auth`; `cf auth` reads CF_USERNAME/CF_PASSWORD from the environment."""

        if not (settings.cf_api and settings.cf_username and settings.cf_password):
            return False
        logger.info("Logging in to %s as %s...", settings.cf_api, settings.cf_username)
        if not self._cf("api", settings.cf_api).ok:
            return False
        return self._cf("auth").ok

    def validate_connection(self, settings: AppSettings | None = None) -> None:
        logger.info("Validating Cloud Foundry connection...")

        if not self.is_api_set():
            if settings is None or not self.login_from_env(settings):
                raise PreconditionError(
                    "Not connected to Cloud Foundry. Run 'cf api' first or set CF_API environment variable."
                )

        if not self.is_logged_in():
            if settings is None or not self.login_from_env(settings) or not self.is_logged_in():
                raise PreconditionError(
                    "Not authenticated to Cloud Foundry. Run 'cf login' first or set CF_USERNAME and CF_PASSWORD."
                )

        success(logger, "Cloud Foundry connection validated")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def isolation_segments(self) -> list[str]:
        result = self._cf("isolation-segments")
        return parse_name_column(result.stdout) if result.ok else []

    def segment_exists(self, segment: str) -> bool:
        return segment in self.isolation_segments()

    def orgs(self) -> list[str]:
        result = self._cf("orgs")
        return parse_name_column(result.stdout) if result.ok else []

    def org_exists(self, org: str) -> bool:
        return org in self.orgs()

    def spaces(self) -> list[str]:
        result = self._cf("spaces")
        return parse_name_column(result.stdout) if result.ok else []

    def space_exists(self, org: str, space: str) -> bool:
        if not self.target(org):
            return False
        return space in self.spaces()

    def target(self, org: str, space: str | None = None) -> bool:
        args = ["target", "-o", org]
        if space:
            args += ["-s", space]
        return self._cf(*args).ok

    def list_apps(self) -> list[str]:
        """Apps of the currently targeted space, in `cf apps` order."""

        result = self._cf("apps")
        return parse_name_column(result.stdout) if result.ok else []

    def app_details(self, app: str) -> dict[str, str]:
        result = self._cf("app", app)
        return parse_key_values(result.stdout) if result.ok else {}

    def app_isolation_segment(self, app: str) -> str | None:
        return self.app_details(app).get("isolation segment") or None

    def space_details(self, space: str) -> dict[str, str]:
        result = self._cf("space", space)
        return parse_key_values(result.stdout) if result.ok else {}

    def space_isolation_segment(self, space: str) -> str | None:
        return self.space_details(space).get("isolation segment") or None

    def app_guid(self, app: str) -> str | None:
        result = self._cf("app", app, "--guid")
        guid = result.stdout.strip()
        return guid if result.ok and guid else None

    def curl(self, path: str) -> dict[str, Any] | None:
        """JSON body of `cf curl <path>`, or None when the call or the decoding fails."""

        result = self._cf("curl", path)
        if not result.ok:
            return None
        try:
            payload = json.loads(result.stdout or "null")
        except json.JSONDecodeError:
            logger.debug("cf curl %s returned non-JSON output", path)
            return None
        if not isinstance(payload, dict) or payload.get("errors"):
            return None
        return payload

    def isolation_segment_guid(self, segment: str) -> str | None:
        payload = self.curl(f"/v3/isolation_segments?names={segment}")
        resources = (payload or {}).get("resources") or []
        if not resources:
            return None
        return resources[0].get("guid")

    def segment_app_count(self, segment: str) -> int:
        """Apps living in spaces explicitly assigned to the segment."""

        guid = self.isolation_segment_guid(segment)
        if not guid:
            return 0
        spaces = self.curl(f"/v3/isolation_segments/{guid}/relationships/spaces")
        space_guids = [s.get("guid") for s in (spaces or {}).get("data") or [] if s.get("guid")]
        if not space_guids:
            return 0
        apps = self.curl(f"/v3/apps?space_guids={','.join(space_guids)}&per_page=1")
        pagination = (apps or {}).get("pagination") or {}
        try:
            return int(pagination.get("total_results") or 0)
        except (TypeError, ValueError):
            return 0

    def app_hosts(self, app: str) -> list[str]:
        """Cell IPs currently running the app's web instances."""

        guid = self.app_guid(app)
        if not guid:
            return []
        stats = self.curl(f"/v3/apps/{guid}/processes/web/stats")
        return [r["host"] for r in (stats or {}).get("resources") or [] if r.get("host")]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_isolation_segment(self, segment: str) -> bool:
        return self._cf("create-isolation-segment", segment, mutating=True).ok

    def delete_isolation_segment(self, segment: str) -> bool:
        return self._cf("delete-isolation-segment", segment, "-f", mutating=True).ok

    def enable_org_isolation(self, org: str, segment: str) -> bool:
        return self._cf("enable-org-isolation", org, segment, mutating=True).ok

    def disable_org_isolation(self, org: str, segment: str) -> bool:
        return self._cf("disable-org-isolation", org, segment, mutating=True).ok

    def set_space_isolation_segment(self, space: str, segment: str) -> bool:
        return self._cf("set-space-isolation-segment", space, segment, mutating=True).ok

    def reset_space_isolation_segment(self, space: str) -> bool:
        return self._cf("reset-space-isolation-segment", space, mutating=True).ok

    def delete_space(self, space: str, org: str) -> bool:
        return self._cf("delete-space", space, "-o", org, "-f", mutating=True).ok

    def create_space(self, space: str, org: str) -> bool:
        return self._cf("create-space", space, "-o", org, mutating=True).ok

    def delete_app(self, app: str) -> bool:
        return self._cf("delete", app, "-f", mutating=True).ok

    def restage(self, app: str) -> bool:
        return self._cf("restage", app, mutating=True).ok

    def restart(self, app: str) -> bool:
        """Rolling restart, falling back to a plain restart (older CLIs, single instance)."""

        if self._cf("restart", app, "--strategy", "rolling", mutating=True).ok:
            return True
        logger.debug("Rolling restart of %s failed; retrying with a plain restart", app)
        return self._cf("restart", app, mutating=True).ok

