"""conduit status — report installation and login state per backend."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import click

from conduit.config.models import ConduitSettings
from conduit.config.parser import ConfigError, load_settings
from conduit.providers.registry import get_provider, provider_names


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
def status(config_file: str | None) -> None:
    """Print installation status for every backend as JSON."""
    try:
        settings = load_settings(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    report = asyncio.run(_collect(settings))
    click.echo(json.dumps(report, indent=2))


async def _collect(settings: ConduitSettings) -> dict[str, Any]:
    providers = [get_provider(name, settings) for name in provider_names()]
    statuses = await asyncio.gather(*(p.detect_installation() for p in providers))
    return {
        provider.name: result.model_dump()
        for provider, result in zip(providers, statuses, strict=True)
    }
