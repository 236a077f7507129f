"""Shared fixtures: a scripted command runner and a fake foundation.

`FakeFoundation` answers `cf`, `bosh` and `om` invocations from in-memory
state (orgs, spaces, segments, apps, Diego cells), so services run end to end
without any real CLI installed.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from core.config import AppSettings
from core.interfaces.runner import CommandResult
from core.services.context import ServiceContext


class FakeRunner:
    """Records every command; delegates answers to `handler`."""

    def __init__(self, handler, *, dry_run: bool = False, missing: Sequence[str] = ()) -> None:
        self.handler = handler
        self.dry_run = dry_run
        self.missing = set(missing)
        self.calls: list[tuple[str, ...]] = []
        self.skipped: list[tuple[str, ...]] = []

    def run(self, args, *, mutating=False, cwd=None, secrets=()):
        argv = tuple(str(a) for a in args)
        if mutating and self.dry_run:
            self.skipped.append(argv)
            return CommandResult(args=argv, skipped=True)
        self.calls.append(argv)
        return self.handler(argv)

    def which(self, name: str) -> str | None:
        return None if name in self.missing else f"/usr/local/bin/{name}"

    def executed(self, *prefix: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[: len(prefix)] == prefix]


def _table(header: str, rows: list[str]) -> str:
    return "\n".join(["Getting things as admin...", "", header, *rows, ""])


def _ok(argv: tuple[str, ...], stdout: str = "") -> CommandResult:
    return CommandResult(args=argv, stdout=stdout)


def _fail(argv: tuple[str, ...], stderr: str = "FAILED") -> CommandResult:
    return CommandResult(args=argv, returncode=1, stderr=stderr)


@dataclass
class FakeCell:
    instance: str
    ip: str
    total_mb: int | None = 65536
    available_mb: int = 32768
    reports: bool = True


@dataclass
class FakeFoundation:
    """In-memory CF + BOSH + Ops Manager."""

    logged_in: bool = True
    segments: set[str] = field(default_factory=lambda: {"large-cell"})
    # org -> space -> {"segment": str | None, "apps": [names]}
    orgs: dict[str, dict[str, dict]] = field(default_factory=dict)
    # app -> segment the app is currently running on (None = shared)
    app_placement: dict[str, str | None] = field(default_factory=dict)
    failing_restarts: set[str] = field(default_factory=set)
    entitlements: set[tuple[str, str]] = field(default_factory=set)
    deployments: dict[str, list[FakeCell]] = field(default_factory=dict)
    placement_tags: dict[str, list[str]] = field(default_factory=dict)
    available_products: list[dict] = field(default_factory=list)
    fail_om: set[str] = field(default_factory=set)
    current_org: str | None = None
    current_space: str | None = None

    # ------------------------------------------------------------------

    def add_space(self, org: str, space: str, apps: Sequence[str] = (), segment: str | None = None) -> None:
        self.orgs.setdefault(org, {})[space] = {"segment": segment, "apps": list(apps)}
        for app in apps:
            self.app_placement.setdefault(app, segment)

    def space(self, name: str) -> dict | None:
        if self.current_org is None:
            return None
        return self.orgs.get(self.current_org, {}).get(name)

    def _space_of(self, app: str) -> dict | None:
        for spaces in self.orgs.values():
            for space in spaces.values():
                if app in space["apps"]:
                    return space
        return None

    def __call__(self, argv: tuple[str, ...]) -> CommandResult:
        tool = argv[0]
        if tool == "cf":
            return self._cf(argv, argv[1:])
        if tool == "bosh":
            return self._bosh(argv)
        if tool == "om":
            return self._om(argv, argv[1:])
        return _fail(argv, f"{tool}: unknown command")

    # ------------------------------------------------------------------
    # cf
    # ------------------------------------------------------------------

    def _cf(self, argv: tuple[str, ...], args: tuple[str, ...]) -> CommandResult:
        cmd = args[0]
        if cmd == "version":
            return _ok(argv, "cf version 8.7.10+5b7ce3c.2024-04-04\n")
        if cmd == "api":
            if not self.logged_in:
                return _fail(argv, "No API endpoint set.")
            return _ok(argv, "API endpoint:   https://api.sys.example.com\nAPI version:    3.180.0\n")
        if cmd == "auth":
            return _ok(argv)
        if not self.logged_in:
            return _fail(argv, "Not logged in. Use 'cf login' to log in.")

        if cmd == "target":
            if len(args) == 1:
                return _ok(
                    argv,
                    "API endpoint:   https://api.sys.example.com\n"
                    "user:           admin\n"
                    f"org:            {self.current_org or ''}\n"
                    f"space:          {self.current_space or ''}\n",
                )
            org = args[args.index("-o") + 1]
            space = args[args.index("-s") + 1] if "-s" in args else None
            if org not in self.orgs or (space is not None and space not in self.orgs[org]):
                return _fail(argv, "Organization or space not found")
            self.current_org, self.current_space = org, space
            return _ok(argv)
        if cmd == "orgs":
            return _ok(argv, _table("name", sorted(self.orgs)))
        if cmd == "spaces":
            return _ok(argv, _table("name", sorted(self.orgs.get(self.current_org or "", {}))))
        if cmd == "isolation-segments":
            rows = [f"{s}   {', '.join(o for o, seg in sorted(self.entitlements) if seg == s)}" for s in sorted(self.segments)]
            return _ok(argv, _table("name          orgs", ["shared", *rows]))
        if cmd == "apps":
            space = self.space(self.current_space or "")
            if space is None:
                return _fail(argv, "No space targeted")
            rows = [f"{a}   started   web:1/1   {a}.apps.example.com" for a in space["apps"]]
            return _ok(argv, _table("name   requested state   processes   routes", rows))
        if cmd == "app":
            return self._cf_app(argv, args)
        if cmd == "space":
            space = self.space(args[1])
            if space is None:
                return _fail(argv, f"Space '{args[1]}' not found.")
            return _ok(argv, f"name:   {args[1]}\norg:    {self.current_org}\nisolation segment:   {space['segment'] or ''}\n")
        if cmd in ("restart", "restage"):
            app = args[1]
            space = self._space_of(app)
            if space is None or app in self.failing_restarts:
                return _fail(argv, f"App '{app}' failed to restart")
            self.app_placement[app] = space["segment"]
            return _ok(argv)
        if cmd == "set-space-isolation-segment":
            space = self.space(args[1])
            if space is None or args[2] not in self.segments:
                return _fail(argv)
            space["segment"] = args[2]
            return _ok(argv)
        if cmd == "reset-space-isolation-segment":
            space = self.space(args[1])
            if space is None:
                return _fail(argv)
            space["segment"] = None
            return _ok(argv)
        if cmd == "create-space":
            org = args[args.index("-o") + 1]
            if org not in self.orgs:
                return _fail(argv, f"Organization '{org}' not found.")
            self.orgs[org].setdefault(args[1], {"segment": None, "apps": []})
            return _ok(argv)
        if cmd == "enable-org-isolation":
            self.entitlements.add((args[1], args[2]))
            return _ok(argv)
        if cmd == "disable-org-isolation":
            self.entitlements.discard((args[1], args[2]))
            return _ok(argv)
        if cmd == "create-isolation-segment":
            self.segments.add(args[1])
            return _ok(argv)
        if cmd == "delete-isolation-segment":
            self.segments.discard(args[1])
            return _ok(argv)
        if cmd == "curl":
            return self._cf_curl(argv, args[1])
        return _fail(argv, f"cf {cmd}: not scripted")

    def _cf_app(self, argv: tuple[str, ...], args: tuple[str, ...]) -> CommandResult:
        app = args[1]
        space = self.space(self.current_space or "")
        if space is None or app not in space["apps"]:
            return _fail(argv, f"App '{app}' not found")
        if "--guid" in args:
            return _ok(argv, f"guid-{app}\n")
        segment = self.app_placement.get(app)
        return _ok(
            argv,
            f"name:                {app}\n"
            "requested state:     started\n"
            f"isolation segment:   {segment or ''}\n"
            f"routes:              {app}.apps.example.com\n"
            "instances:           1/1\n",
        )

    def _cf_curl(self, argv: tuple[str, ...], path: str) -> CommandResult:
        if path.startswith("/v3/isolation_segments?names="):
            name = path.split("=", 1)[1]
            resources = [{"guid": f"seg-{name}", "name": name}] if name in self.segments else []
            return _ok(argv, json.dumps({"resources": resources}))
        if path.startswith("/v3/isolation_segments/") and path.endswith("/relationships/spaces"):
            name = path.split("/")[3].removeprefix("seg-")
            data = [
                {"guid": f"space-{org}-{space}"}
                for org, spaces in self.orgs.items()
                for space, info in spaces.items()
                if info["segment"] == name
            ]
            return _ok(argv, json.dumps({"data": data}))
        if path.startswith("/v3/apps?space_guids="):
            guids = path.split("=", 1)[1].split("&", 1)[0].split(",")
            total = sum(
                len(info["apps"])
                for org, spaces in self.orgs.items()
                for space, info in spaces.items()
                if f"space-{org}-{space}" in guids
            )
            return _ok(argv, json.dumps({"pagination": {"total_results": total}, "resources": []}))
        if path.startswith("/v3/apps/guid-") and path.endswith("/processes/web/stats"):
            app = path.split("/")[3].removeprefix("guid-")
            segment = self.app_placement.get(app)
            cells = self.deployments.get(segment or "", [])
            host = cells[0].ip if cells else "10.0.0.99"
            return _ok(argv, json.dumps({"resources": [{"index": 0, "state": "RUNNING", "host": host}]}))
        return _ok(argv, json.dumps({"errors": [{"detail": "Unknown request"}]}))

    # ------------------------------------------------------------------
    # bosh
    # ------------------------------------------------------------------

    def _bosh(self, argv: tuple[str, ...]) -> CommandResult:
        args = list(argv[1:])
        deployment = None
        if "-e" in args:
            i = args.index("-e")
            del args[i : i + 2]
        if "-d" in args:
            i = args.index("-d")
            deployment = args[i + 1]
            del args[i : i + 2]
        cmd = args[0]

        if cmd == "--version":
            return _ok(argv, "version 7.5.6-0bd5a8d-2024-01-24T21:33:59Z\n\nSucceeded\n")
        if cmd == "env":
            if "--json" in args:
                return _ok(argv, json.dumps({"Tables": [{"Rows": [{"name": "bosh-lab", "uuid": "abc"}]}]}))
            return _ok(argv)
        if cmd == "deploy":
            self.deployments.setdefault(deployment or "", [])
            return _ok(argv)
        if deployment not in self.deployments:
            return _fail(argv, f"Deployment '{deployment}' doesn't exist")
        cells = self.deployments[deployment]
        if cmd == "deployment":
            return _ok(argv)
        if cmd == "instances":
            rows = [{"instance": c.instance, "process_state": "running", "ips": c.ip} for c in cells]
            rows.append({"instance": "router/0a1b", "process_state": "running", "ips": "10.0.5.1"})
            return _ok(argv, json.dumps({"Tables": [{"Rows": rows}]}))
        if cmd == "manifest":
            tags = "\n".join(f"          - {t}" for t in self.placement_tags.get(deployment, []))
            body = (
                f"name: {deployment}\n"
                "instance_groups:\n"
                "- name: isolated_diego_cell\n"
                "  jobs:\n"
                "  - name: rep\n"
                "    properties:\n"
                "      diego:\n"
                "        rep:\n"
            )
            if tags:
                body += "          placement_tags:\n" + tags + "\n"
            else:
                body += "          evacuation_timeout_in_seconds: 600\n"
            return _ok(argv, body)
        if cmd == "ssh":
            group = args[1]
            lines = ["Using environment 'bosh-lab' as client 'admin'", ""]
            for cell in cells:
                if not cell.instance.startswith(f"{group}/"):
                    continue
                if not cell.reports:
                    lines.append(f"{cell.instance}: stderr | curl: (7) Failed to connect")
                    continue
                state: dict = {"AvailableResources": {"MemoryMB": cell.available_mb, "DiskMB": 100000, "Containers": 240}}
                if cell.total_mb is not None:
                    state["TotalResources"] = {"MemoryMB": cell.total_mb, "DiskMB": 200000, "Containers": 250}
                lines.append(f"{cell.instance}: stdout | {json.dumps(state)}")
            lines.append("Succeeded")
            return _ok(argv, "\n".join(lines))
        return _fail(argv, f"bosh {cmd}: not scripted")

    # ------------------------------------------------------------------
    # om
    # ------------------------------------------------------------------

    def _om(self, argv: tuple[str, ...], args: tuple[str, ...]) -> CommandResult:
        cmd = args[0]
        if cmd in self.fail_om:
            return _fail(argv, f"om {cmd} failed")
        if cmd == "curl":
            return _ok(argv, '{"info": {"version": "3.0.25"}}')
        if cmd == "version":
            return _ok(argv, "7.10.0\n")
        if cmd == "available-products":
            return _ok(argv, json.dumps(self.available_products))
        if cmd in ("staged-products", "deployed-products"):
            return _ok(argv, "[]")
        if cmd in ("upload-product", "stage-product", "configure-product", "apply-changes", "download-product"):
            return _ok(argv)
        return _fail(argv, f"om {cmd}: not scripted")


@pytest.fixture
def foundation() -> FakeFoundation:
    fnd = FakeFoundation()
    fnd.add_space("demo-org", "dev-space", apps=["spring-music", "orders", "billing"])
    fnd.add_space("demo-org", "iso-validation")
    fnd.deployments["large-cell"] = [
        FakeCell("isolated_diego_cell/aaa", "10.0.8.10"),
        FakeCell("isolated_diego_cell/bbb", "10.0.8.11"),
    ]
    fnd.placement_tags["large-cell"] = ["large-cell"]
    return fnd


def make_settings(tmp_path: Path, **overrides) -> AppSettings:
    values = {
        "_env_file": None,
        "cf_api": "https://api.sys.example.com",
        "cf_username": "admin",
        "cf_password": "secret",
        "bosh_environment": "https://10.0.0.6:25555",
        "om_target": "https://opsman.example.com",
        "om_username": "admin",
        "om_password": "secret",
        "pivnet_token": "pivnet-token",
        "log_file": None,
        "manifest_dir": tmp_path / "manifests",
    }
    values.update(overrides)
    return AppSettings(**values)


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return make_settings(tmp_path)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_ctx(foundation: FakeFoundation, tmp_path: Path, sleeps: list[float]):
    """Factory: `make_ctx(dry_run=False, missing=(), **settings_overrides)`."""

    def factory(*, dry_run: bool = False, missing: Sequence[str] = (), **overrides) -> ServiceContext:
        runner = FakeRunner(foundation, dry_run=dry_run, missing=missing)
        return ServiceContext(
            settings=make_settings(tmp_path, dry_run=dry_run, **overrides),
            runner=runner,
            sleep=sleeps.append,
        )

    return factory
