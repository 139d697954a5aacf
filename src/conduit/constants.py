"""Shared constants for the Conduit runtime."""

from __future__ import annotations

#: Seconds of stdout silence before a CLI subprocess is considered stalled.
DEFAULT_STALL_TIMEOUT = 30.0

#: Seconds to wait after SIGTERM before escalating to SIGKILL.
TERMINATE_GRACE_PERIOD = 3.0

#: Maximum bytes per JSONL line from subprocess stdout (1 MB).
MAX_LINE_BYTES = 1_048_576

#: Number of trailing stderr lines kept for diagnostics.
STDERR_TAIL_LINES = 50

#: Separator placed between a system prompt and the user's request.
PROMPT_SEPARATOR = "\n\n---\n\n"

#: Provider used when no ``provider/`` prefix is given.
DEFAULT_PROVIDER = "claude"
