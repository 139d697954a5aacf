"""conduit run — execute one prompt and stream canonical messages."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from conduit.config.models import ConduitSettings
from conduit.config.parser import ConfigError, load_settings
from conduit.protocol.models import ConversationMessage, ExecuteOptions
from conduit.providers.base import BaseProvider
from conduit.providers.registry import (
    create_provider,
    get_provider,
    provider_for_model,
)


@click.command()
@click.argument("prompt")
@click.option("-p", "--provider", "provider_name", help="Backend to run on.")
@click.option(
    "-m",
    "--model",
    help="Model id, or 'provider/model' to pick the backend as well.",
)
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False),
    help="Working directory for the agent.",
)
@click.option("--system", "system_prompt", help="System prompt.")
@click.option("--tool", "tools", multiple=True, help="Allow a tool (repeatable).")
@click.option("--no-tools", is_flag=True, help="Explicitly allow no tools.")
@click.option("--max-turns", type=int, help="Turn limit for agentic backends.")
@click.option(
    "--history",
    "history_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with prior [{role, content}] turns.",
)
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def run(
    prompt: str,
    provider_name: str | None,
    model: str | None,
    cwd: str | None,
    system_prompt: str | None,
    tools: tuple[str, ...],
    no_tools: bool,
    max_turns: int | None,
    history_file: str | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """Run PROMPT on a backend and print one JSON message per line."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if tools and no_tools:
        msg = "--tool and --no-tools are mutually exclusive"
        raise click.UsageError(msg)

    try:
        settings = load_settings(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    try:
        provider, model = _pick_provider(settings, provider_name, model)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc

    allowed_tools: list[str] | None = None
    if no_tools:
        allowed_tools = []
    elif tools:
        allowed_tools = list(tools)

    options = ExecuteOptions(
        prompt=prompt,
        model=model,
        cwd=cwd,
        system_prompt=system_prompt,
        conversation_history=_load_history(history_file) if history_file else (),
        allowed_tools=allowed_tools,
        max_turns=max_turns,
    )

    if not asyncio.run(_stream(provider, options)):
        raise SystemExit(1)


def _pick_provider(
    settings: ConduitSettings,
    provider_name: str | None,
    model: str | None,
) -> tuple[BaseProvider, str | None]:
    if model and "/" in model and provider_name is None:
        return create_provider(model, settings)
    if provider_name is None and model:
        provider_name = provider_for_model(model)
    return get_provider(provider_name or settings.default_provider, settings), model


def _load_history(path: str) -> list[ConversationMessage]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise click.BadParameter(str(exc), param_hint="--history") from exc
    if not isinstance(raw, list):
        msg = "expected a JSON array of {role, content} objects"
        raise click.BadParameter(msg, param_hint="--history")
    try:
        return [ConversationMessage.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise click.BadParameter(str(exc), param_hint="--history") from exc


async def _stream(provider: BaseProvider, options: ExecuteOptions) -> bool:
    """Print messages as they arrive; False when the stream ended in error."""
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, options.cancel.cancel, "interrupted")

    failed = False
    try:
        async for message in provider.execute_query(options):
            click.echo(message.model_dump_json(exclude_none=True))
            if message.type == "error":
                failed = True
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)

    if options.cancel.cancelled:
        click.echo("Stopped.", err=True)
    return not failed
