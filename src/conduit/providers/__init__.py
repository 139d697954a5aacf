"""Provider adapters that normalize each backend into canonical messages."""

from conduit.providers.base import BaseProvider, CorrelationMap
from conduit.providers.claude import ClaudeProvider
from conduit.providers.codex import CodexProvider
from conduit.providers.cursor import CursorProvider
from conduit.providers.registry import (
    all_models,
    create_provider,
    get_provider,
    provider_for_model,
)
from conduit.providers.selector import (
    BackendCapabilities,
    ExecutionStrategy,
    select_strategy,
)

__all__ = [
    "BackendCapabilities",
    "BaseProvider",
    "ClaudeProvider",
    "CodexProvider",
    "CorrelationMap",
    "CursorProvider",
    "ExecutionStrategy",
    "all_models",
    "create_provider",
    "get_provider",
    "provider_for_model",
    "select_strategy",
]
