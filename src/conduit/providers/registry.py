"""Look up provider adapters by name, model string, or model id."""

from __future__ import annotations

from conduit.config.credentials import CredentialSnapshot
from conduit.config.models import ConduitSettings
from conduit.protocol.models import ModelDefinition
from conduit.providers.base import BaseProvider
from conduit.providers.claude import ClaudeProvider
from conduit.providers.codex import CodexProvider
from conduit.providers.cursor import CursorProvider

_PROVIDER_MAP: dict[str, type[BaseProvider]] = {
    "claude": ClaudeProvider,
    "codex": CodexProvider,
    "cursor": CursorProvider,
}

_ALIASES = {
    "anthropic": "claude",
    "openai": "codex",
    "openai-codex": "codex",
    "cursor-agent": "cursor",
}


def provider_names() -> list[str]:
    return sorted(_PROVIDER_MAP)


def resolve_provider_name(name: str) -> str:
    """Canonical provider name for *name* or an alias of it.

    Raises ``ValueError`` for unknown providers.
    """
    key = _ALIASES.get(name, name)
    if key not in _PROVIDER_MAP:
        known = ", ".join(provider_names())
        msg = f"Unknown provider {name!r} -- supported providers: {known}"
        raise ValueError(msg)
    return key


def get_provider(
    name: str,
    settings: ConduitSettings | None = None,
    credentials: CredentialSnapshot | None = None,
) -> BaseProvider:
    """Instantiate the adapter called *name* (aliases accepted).

    Raises ``ValueError`` for unknown providers.
    """
    key = resolve_provider_name(name)
    provider_cls = _PROVIDER_MAP[key]

    settings = settings or ConduitSettings()
    if credentials is None:
        credentials = CredentialSnapshot.from_env(credentials=settings.credentials)
    return provider_cls(getattr(settings, key), credentials)


def create_provider(
    model_string: str,
    settings: ConduitSettings | None = None,
    credentials: CredentialSnapshot | None = None,
) -> tuple[BaseProvider, str]:
    """Parse ``provider/model-name`` and return ``(provider, model_name)``.

    A bare model id is resolved through the model catalogs.  Raises
    ``ValueError`` when neither form identifies a provider.
    """
    if "/" in model_string:
        provider_name, model_name = model_string.split("/", 1)
    else:
        found = provider_for_model(model_string)
        if found is None:
            msg = (
                f"Invalid model string {model_string!r} -- "
                "expected format 'provider/model-name' or a known model id"
            )
            raise ValueError(msg)
        provider_name, model_name = found, model_string

    return get_provider(provider_name, settings, credentials), model_name


def provider_for_model(model_id: str) -> str | None:
    """Name of the provider whose catalog lists *model_id*, if any."""
    for name, provider_cls in _PROVIDER_MAP.items():
        if any(model.id == model_id for model in provider_cls.models):
            return name
    return None


def all_models() -> list[ModelDefinition]:
    return [model for cls in _PROVIDER_MAP.values() for model in cls.models]
