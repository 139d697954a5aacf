"""Exception hierarchy and deterministic failure classification."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conduit.protocol.cancellation import CancellationHandle
    from conduit.protocol.models import ErrorKind


class ConduitError(Exception):
    """Base class for every failure raised inside Conduit."""

    kind: ErrorKind = "execution"


class AuthenticationError(ConduitError):
    """A backend has no usable credential and no prior login."""

    kind: ErrorKind = "authentication"


class ExecutionError(ConduitError):
    """A backend ran but failed to produce a usable response."""


class CLINotFoundError(ExecutionError):
    """The backend's CLI executable could not be located or spawned."""


class StallTimeoutError(ExecutionError):
    """A subprocess was silent for longer than the stall threshold."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Subprocess produced no output for {timeout:g}s and was terminated"
        )


class ProcessExitError(ExecutionError):
    """A subprocess exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr_tail: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        msg = f"{command} exited with code {returncode}."
        preview = format_stderr_preview(stderr_tail)
        if preview:
            msg += f" Stderr:\n  {preview}"
        super().__init__(msg)


class ExecutionCancelled(ConduitError):
    """The caller raised the cancellation handle."""

    kind: ErrorKind = "cancellation"


# --------------------------------------------------------------------------- #
# Classification
# --------------------------------------------------------------------------- #

_AUTHENTICATION_PATTERNS: tuple[str, ...] = (
    "not authenticated",
    "unauthenticated",
    "unauthorized",
    "authentication",
    "invalid api key",
    "invalid x-api-key",
    "incorrect api key",
    "api key not found",
    "missing api key",
    "no api key",
    "oauth token",
    "please run 'codex login'",
    "please run 'claude login'",
    "login required",
    "not logged in",
    "401 unauthorized",
    "error code: 401",
    "status 401",
    "status code 401",
)

#: Pattern matching common API key formats to redact from error messages.
_API_KEY_RE = re.compile(
    r"(sk-[a-zA-Z0-9_-]{20,}|key-[a-zA-Z0-9]{20,}|AIza[a-zA-Z0-9_-]{30,})",
)


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Normalized classification of a failure cause."""

    kind: ErrorKind
    message: str

    @property
    def is_cancellation(self) -> bool:
        return self.kind == "cancellation"

    @property
    def is_authentication(self) -> bool:
        return self.kind == "authentication"


def redact_secrets(text: str) -> str:
    """Return *text* with anything that looks like an API key redacted."""
    return _API_KEY_RE.sub("[REDACTED]", text)


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


def classify_error(
    cause: BaseException | str | None,
    *,
    cancel: CancellationHandle | None = None,
) -> ErrorInfo:
    """Map an arbitrary failure cause onto the error taxonomy.

    Precedence: cancellation (raised handle or cancellation exception),
    then explicit ``ConduitError.kind``, then authentication phrases, then
    ``execution`` for anything with a message and ``unknown`` otherwise.
    """
    message = _message_of(cause)

    if (cancel is not None and cancel.cancelled) or isinstance(
        cause, ExecutionCancelled | asyncio.CancelledError
    ):
        reason = cancel.reason if cancel is not None and cancel.reason else None
        return ErrorInfo(kind="cancellation", message=reason or message or "cancelled")

    if isinstance(cause, ConduitError) and cause.kind == "authentication":
        return ErrorInfo(kind="authentication", message=message)

    if not message:
        return ErrorInfo(kind="unknown", message="Unknown error")

    if _first_match(message.lower(), _AUTHENTICATION_PATTERNS) is not None:
        return ErrorInfo(kind="authentication", message=message)

    return ErrorInfo(kind="execution", message=message)


def _message_of(cause: BaseException | str | None) -> str:
    if cause is None:
        return ""
    if isinstance(cause, str):
        return redact_secrets(cause.strip())
    return redact_secrets(str(cause).strip())


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
