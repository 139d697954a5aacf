"""Subprocess supervision for CLI-driven backends."""

from conduit.process.supervisor import (
    SubprocessRecord,
    build_env,
    spawn_jsonl_process,
    terminate_process,
)

__all__ = [
    "SubprocessRecord",
    "build_env",
    "spawn_jsonl_process",
    "terminate_process",
]
