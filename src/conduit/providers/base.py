"""Base class for provider adapters.

``BaseProvider.execute_query`` is the error boundary every adapter shares:
subclasses implement ``_execute`` and may raise freely, and the boundary
turns failures into exactly one terminal ``error`` message.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, ClassVar

from pydantic import BaseModel

from conduit.config.credentials import CredentialSnapshot
from conduit.errors import CLINotFoundError, classify_error
from conduit.protocol.cancellation import CancellationHandle
from conduit.protocol.models import (
    ErrorMessage,
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderMessage,
    is_terminal,
)
from conduit.providers.detection import CLIProbe
from conduit.providers.selector import BackendCapabilities

logger = logging.getLogger(__name__)


class CorrelationMap:
    """Native item id -> minted correlation id, for one execution call."""

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}

    @staticmethod
    def mint() -> str:
        return f"toolu_{uuid.uuid4().hex[:24]}"

    def open(self, native_id: Any, canonical_id: Any = None) -> str:
        """Mint an id for a tool that just started.

        A *canonical_id* supplied by the backend is adopted instead of minting.
        """
        minted = str(canonical_id) if canonical_id else self.mint()
        if native_id is not None:
            self._ids[str(native_id)] = minted
        return minted

    def close(self, native_id: Any) -> str | None:
        """Return (and forget) the id minted for *native_id*, if any."""
        if native_id is None:
            return None
        return self._ids.pop(str(native_id), None)

    def clear(self) -> None:
        self._ids.clear()

    def __len__(self) -> int:
        return len(self._ids)


_DONE = object()


async def iterate_cancellable(
    source: AsyncIterator[Any],
    cancel: CancellationHandle,
) -> AsyncIterator[Any]:
    """Yield from *source*, abandoning the pending read when *cancel* fires."""
    while True:
        item = await cancel.race(_next_or_done(source))
        if item is _DONE:
            return
        yield item


async def _next_or_done(source: AsyncIterator[Any]) -> Any:
    try:
        return await anext(source)
    except StopAsyncIteration:
        return _DONE


class BaseProvider(ABC):
    """Shared surface of every backend adapter."""

    name: ClassVar[str]
    settings_model: ClassVar[type[BaseModel]]
    capabilities: ClassVar[BackendCapabilities] = BackendCapabilities(
        direct=False, subprocess=True
    )
    features: ClassVar[frozenset[str]] = frozenset()
    models: ClassVar[tuple[ModelDefinition, ...]] = ()
    probe: ClassVar[CLIProbe | None] = None
    cli_path_field: ClassVar[str | None] = None
    cli_not_found_message: ClassVar[str] = "CLI not found."

    def __init__(
        self,
        settings: BaseModel | None = None,
        credentials: CredentialSnapshot | None = None,
    ) -> None:
        self.settings: Any = settings if settings is not None else self.settings_model()
        self.credentials = (
            credentials if credentials is not None else CredentialSnapshot.from_env()
        )

    async def execute_query(
        self, options: ExecuteOptions
    ) -> AsyncIterator[ProviderMessage]:
        """Run one request and yield canonical messages in arrival order.

        Never raises for backend failures: they end the stream with a single
        ``error`` message.  Cancellation ends the stream silently.  Anything
        the backend emits after a terminal message is dropped.
        """
        cancel = options.cancel
        terminal = False
        try:
            async with aclosing(self._execute(options)) as stream:
                async for message in stream:
                    if cancel.cancelled:
                        return
                    if terminal:
                        logger.debug(
                            "%s: dropping %s after terminal message",
                            self.name,
                            message.type,
                        )
                        continue
                    if is_terminal(message):
                        terminal = True
                    yield message
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            info = classify_error(exc, cancel=cancel)
            if info.is_cancellation:
                logger.info("%s: execution cancelled", self.name)
                return
            if terminal:
                logger.warning(
                    "%s: ignoring failure after terminal message: %s",
                    self.name,
                    info.message,
                )
                return
            logger.error("%s: %s", self.name, info.message)
            yield ErrorMessage(error=info.message, kind=info.kind)

    @abstractmethod
    def _execute(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        """Backend-specific execution; may raise."""

    @abstractmethod
    async def detect_installation(self) -> InstallationStatus: ...

    def get_available_models(self) -> list[ModelDefinition]:
        return list(self.models)

    def supports_feature(self, feature: str) -> bool:
        return feature in self.features

    # ------------------------------------------------------------------ #
    # Helpers for subclasses
    # ------------------------------------------------------------------ #

    def resolve_settings(self, options: ExecuteOptions) -> Any:
        """Merge per-call overrides over the configured settings.

        Nested ``backend_settings`` win over top-level options such as
        ``max_turns``, which win over the configured defaults.
        """
        fields = type(self.settings).model_fields
        overrides: dict[str, Any] = {}
        if options.max_turns is not None and "max_turns" in fields:
            overrides["max_turns"] = options.max_turns
        overrides.update(options.backend_settings)
        if not overrides:
            return self.settings
        merged = {**self.settings.model_dump(), **overrides}
        return type(self.settings).model_validate(merged)

    def resolve_model(self, options: ExecuteOptions, settings: Any) -> str:
        return options.model or settings.default_model

    def resolve_cli_path(self, settings: Any) -> str:
        """Settings path, then env override, then auto-detection.

        Raises:
            CLINotFoundError: Nothing was found.
        """
        if settings.cli_path:
            return str(settings.cli_path)
        if self.cli_path_field:
            override = getattr(self.credentials, self.cli_path_field, None)
            if override:
                return str(override)
        if self.probe is not None:
            found = self.probe.locate()
            if found:
                return found
        raise CLINotFoundError(self.cli_not_found_message)

    def has_cli_login(self) -> bool:
        return self.probe is not None and self.probe.has_auth_file()
