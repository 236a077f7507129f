"""httpx wrapper.

Why a wrapper:
- Standardizes timeouts, headers and TLS policy for the few direct HTTP
  probes the tool makes (app `/env` endpoints, API reachability).
- Eases testing: callers accept an injected `httpx.Client`
  (e.g. one built on `httpx.MockTransport`).
"""

from __future__ import annotations

from typing import Any

import httpx

from core.config import AppSettings

# Variables that identify where an app instance is running.
INSTANCE_VARIABLES = (
    "CF_INSTANCE_IP",
    "CF_INSTANCE_INDEX",
    "CF_INSTANCE_GUID",
    "CF_INSTANCE_ADDR",
    "INSTANCE_GUID",
)


def build_client(
    settings: AppSettings | None = None,
    *,
    verify: bool = True,
    extra_headers: dict[str, str] | None = None,
) -> httpx.Client:
    """Create an `httpx.Client` with safe defaults."""

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": "isoseg/1.0",
        "Accept": "text/plain, application/json;q=0.9, */*;q=0.8",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.Client(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        verify=verify,
    )


def parse_env_listing(text: str) -> dict[str, str]:
    """`KEY=VALUE` lines (cf-env style `/env` page) into a dict; other lines are skipped."""

    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or "=" not in line or line.startswith("="):
            continue
        key, value = line.split("=", 1)
        if key and " " not in key:
            data[key] = value
    return data


def fetch_app_env(route: str, client: httpx.Client) -> dict[str, Any]:
    """Instance identity of an app as reported by its own `/env` endpoint.

    Returns the `CF_INSTANCE_*` subset, or `{"error": ...}` when the app is
    unreachable or does not expose `/env`.
    """

    base = route if route.startswith(("http://", "https://")) else f"https://{route}"
    url = f"{base.rstrip('/')}/env"
    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        return {"url": url, "error": f"{type(exc).__name__}: {exc}"}

    if response.status_code != 200:
        return {"url": url, "error": f"HTTP {response.status_code}"}

    env = parse_env_listing(response.text)
    out: dict[str, Any] = {"url": url}
    out.update({k: env[k] for k in INSTANCE_VARIABLES if k in env})
    return out


def check_http(url: str, client: httpx.Client) -> tuple[bool, str]:
    """Best-effort reachability probe (any HTTP status counts as reachable)."""

    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        return False, str(exc)
    return True, f"HTTP {response.status_code}"
