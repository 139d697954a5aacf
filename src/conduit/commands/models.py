"""conduit models — list the model catalogs."""

from __future__ import annotations

import click

from conduit.providers.registry import all_models, resolve_provider_name


@click.command()
@click.option("-p", "--provider", "provider_name", help="Only this backend.")
@click.option("--json", "as_json", is_flag=True, help="Print JSON lines.")
def models(provider_name: str | None, as_json: bool) -> None:
    """List the models each backend can run."""
    catalog = all_models()
    if provider_name:
        try:
            key = resolve_provider_name(provider_name)
        except ValueError as exc:
            raise click.UsageError(str(exc)) from exc
        catalog = [m for m in catalog if m.provider == key]

    for model in catalog:
        if as_json:
            click.echo(model.model_dump_json())
            continue
        default = " (default)" if model.is_default else ""
        click.echo(
            f"{model.provider:<8} {model.id:<28} {model.tier:<9} "
            f"{model.display_name}{default}"
        )
