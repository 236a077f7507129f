"""Helpers shared by the Typer apps (main, doctor, demo)."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import typer

from core.config import AppSettings
from core.errors import IsoSegError
from core.services.context import ServiceContext

logger = logging.getLogger("isoseg")


def get_settings(ctx: typer.Context) -> AppSettings:
    """Settings resolved by the root callback (global flags applied)."""

    settings = ctx.obj if isinstance(ctx.obj, AppSettings) else None
    if settings is None:
        settings = AppSettings()
        ctx.obj = settings
    return settings


def build_context(settings: AppSettings) -> ServiceContext:
    return ServiceContext.from_settings(settings)


@contextmanager
def fatal_errors() -> Iterator[None]:
    """Turn expected failures into an error line and exit status 1."""

    try:
        yield
    except IsoSegError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
