"""Wrappers around the `om` (Ops Manager) and `pivnet` CLIs.

`om` reads OM_TARGET / OM_USERNAME / OM_PASSWORD / OM_SKIP_SSL_VALIDATION from
the environment, so no credential ever appears on its command line. The
Pivnet API token is the exception; callers pass it via `secrets` so it is
masked in logs.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from core.errors import PreconditionError
from core.interfaces.runner import CommandResult, CommandRunner
from core.log import success

logger = logging.getLogger(__name__)

ISOLATION_SEGMENT_SLUG = "p-isolation-segment"


def _json_list(text: str) -> list[dict[str, Any]]:
    try:
        payload = json.loads(text or "[]")
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


class OpsManagerCLI:
    def __init__(self, runner: CommandRunner, target: str | None = None) -> None:
        self._runner = runner
        self.target = target

    def _om(self, *args: str, mutating: bool = False, secrets: tuple[str, ...] = ()) -> CommandResult:
        return self._runner.run(("om", *args), mutating=mutating, secrets=secrets)

    def is_reachable(self) -> bool:
        return self._om("curl", "--path", "/api/v0/info").ok

    def validate_connection(self) -> None:
        logger.info("Validating Ops Manager connection...")
        if not self.target:
            raise PreconditionError("OM_TARGET environment variable not set")
        if not self.is_reachable():
            raise PreconditionError(f"Cannot connect to Ops Manager at {self.target}. Check OM_* environment variables.")
        success(logger, "Ops Manager connection validated")

    def version(self) -> str | None:
        result = self._om("version")
        return result.stdout.strip() or None if result.ok else None

    def download_product(
        self,
        *,
        slug: str,
        file_glob: str,
        version_regex: str,
        output_dir: Path,
        pivnet_token: str,
    ) -> bool:
        return self._om(
            "download-product",
            f"--pivnet-product-slug={slug}",
            f"--file-glob={file_glob}",
            f"--product-version-regex={version_regex}",
            f"--output-directory={output_dir}",
            f"--pivnet-api-token={pivnet_token}",
            mutating=True,
            secrets=(pivnet_token,),
        ).ok

    def upload_product(self, tile_path: Path) -> bool:
        return self._om("upload-product", "--product", str(tile_path), mutating=True).ok

    def available_products(self) -> list[dict[str, Any]]:
        result = self._om("available-products", "--format", "json")
        return _json_list(result.stdout) if result.ok else []

    def staged_products(self) -> list[dict[str, Any]]:
        result = self._om("staged-products", "--format", "json")
        return _json_list(result.stdout) if result.ok else []

    def deployed_products(self) -> list[dict[str, Any]]:
        result = self._om("deployed-products", "--format", "json")
        return _json_list(result.stdout) if result.ok else []

    def stage_product(self, product_name: str, version: str) -> bool:
        return self._om(
            "stage-product",
            "--product-name",
            product_name,
            "--product-version",
            version,
            mutating=True,
        ).ok

    def unstage_product(self, product_name: str) -> bool:
        return self._om("unstage-product", "--product-name", product_name, mutating=True).ok

    def delete_product(self, product_name: str, version: str) -> bool:
        return self._om(
            "delete-product",
            "--product-name",
            product_name,
            "--product-version",
            version,
            mutating=True,
        ).ok

    def configure_product(self, *, config: Path, vars_files: list[Path], ops_files: list[Path]) -> bool:
        args = ["configure-product", "--config", str(config)]
        for path in vars_files:
            args += ["--vars-file", str(path)]
        for path in ops_files:
            args += ["--ops-file", str(path)]
        return self._om(*args, mutating=True).ok

    def apply_changes(self, product_name: str | None = None) -> bool:
        args = ["apply-changes"]
        if product_name:
            args += ["--product-name", product_name]
        return self._om(*args, mutating=True).ok


class PivnetCLI:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def version(self) -> str | None:
        result = self._runner.run(("pivnet", "--version"))
        return result.stdout.strip() or None if result.ok else None

    def login(self, token: str) -> bool:
        return self._runner.run(("pivnet", "login", f"--api-token={token}"), secrets=(token,)).ok

    def product_files(self, slug: str, release: str) -> list[dict[str, Any]]:
        result = self._runner.run(
            ("pivnet", "product-files", f"--product-slug={slug}", f"--release-version={release}", "--format=json")
        )
        return _json_list(result.stdout) if result.ok else []

    def download_product_files(self, slug: str, release: str, file_id: int | str, cwd: Path) -> bool:
        return self._runner.run(
            (
                "pivnet",
                "download-product-files",
                f"--product-slug={slug}",
                f"--release-version={release}",
                f"--product-file-id={file_id}",
                "--accept-eula",
            ),
            mutating=True,
            cwd=cwd,
        ).ok
