"""Pick between a backend's direct API path and its CLI subprocess path."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum


class ExecutionStrategy(StrEnum):
    DIRECT = "direct"
    SUBPROCESS = "subprocess"


@dataclass(frozen=True, slots=True)
class BackendCapabilities:
    """Which execution paths a backend offers."""

    direct: bool
    subprocess: bool


def select_strategy(
    allowed_tools: Sequence[str] | None,
    *,
    has_credential: bool,
    capabilities: BackendCapabilities,
) -> ExecutionStrategy:
    """Choose the execution path for one request.

    The direct path cannot run tools, so it is only taken when the caller
    explicitly asked for no tools (``[]``, not ``None``) and a credential
    for the hosted API is available.  Backends with a single path always
    get that path.
    """
    if not capabilities.direct and not capabilities.subprocess:
        msg = "Backend offers neither a direct nor a subprocess path"
        raise ValueError(msg)
    if not capabilities.subprocess:
        return ExecutionStrategy.DIRECT
    if not capabilities.direct:
        return ExecutionStrategy.SUBPROCESS

    if allowed_tools is not None and len(allowed_tools) == 0 and has_credential:
        return ExecutionStrategy.DIRECT
    return ExecutionStrategy.SUBPROCESS
