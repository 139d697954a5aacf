"""Subprocess stream supervisor: spawn a CLI and stream its JSONL stdout.

One call spawns exactly one child process.  A background reader task parses
stdout line by line into a single-slot queue, so the supervisor never reads
more than one record ahead of its consumer.  The child is terminated on
every exit path: normal completion, stall timeout, cancellation, errors and
early ``aclose()`` by the consumer.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from collections import deque
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from conduit.constants import (
    DEFAULT_STALL_TIMEOUT,
    MAX_LINE_BYTES,
    STDERR_TAIL_LINES,
    TERMINATE_GRACE_PERIOD,
)
from conduit.errors import (
    CLINotFoundError,
    ExecutionError,
    ProcessExitError,
    StallTimeoutError,
)
from conduit.protocol.cancellation import CancellationHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubprocessRecord:
    """One parsed JSON line plus its provenance."""

    data: Any
    seq: int
    stream: str = "stdout"


@dataclass(frozen=True, slots=True)
class _Exited:
    returncode: int


class _Stalled:
    pass


_STALLED = _Stalled()

_QueueItem = SubprocessRecord | _Exited | _Stalled


async def spawn_jsonl_process(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str | None] | None = None,
    cancel: CancellationHandle | None = None,
    stall_timeout: float = DEFAULT_STALL_TIMEOUT,
    stdin_data: str | None = None,
    grace_period: float = TERMINATE_GRACE_PERIOD,
) -> AsyncIterator[SubprocessRecord]:
    """Spawn *command* and yield one record per JSON line on its stdout.

    Lines that fail to parse are dropped.  Any line arriving on stdout
    resets the stall timer; if it fires first, the process is killed and
    ``StallTimeoutError`` is raised.  Raising *cancel* kills the process and
    ends the iteration without an error.  A non-zero exit raises
    ``ProcessExitError`` carrying the stderr tail; exit code 0 simply ends
    the iteration.

    Args:
        command: Executable path or bare name.
        args: Argument vector (without the executable).
        cwd: Working directory for the child.
        env: Overrides merged over the parent environment; ``None`` values
            remove the variable.
        cancel: Cancellation handle owned by the calling execution.
        stall_timeout: Maximum seconds of stdout silence.
        stdin_data: Text written to stdin before it is closed.  When omitted
            stdin is ``/dev/null``.
        grace_period: Seconds between SIGTERM and SIGKILL on termination.

    Raises:
        CLINotFoundError: The executable does not exist.
        StallTimeoutError: No stdout line arrived within *stall_timeout*.
        ProcessExitError: The process exited with a non-zero status.
    """
    cancel = cancel or CancellationHandle()
    if cancel.cancelled:
        return

    name = os.path.basename(command) or command
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=(
                asyncio.subprocess.PIPE
                if stdin_data is not None
                else asyncio.subprocess.DEVNULL
            ),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=build_env(env),
            limit=MAX_LINE_BYTES,
            **_session_kwargs(),
        )
    except FileNotFoundError as exc:
        msg = f"{name} not found. Make sure it is installed and on your PATH."
        raise CLINotFoundError(msg) from exc
    except OSError as exc:
        msg = f"Failed to spawn {name}: {exc}"
        raise ExecutionError(msg) from exc

    logger.debug("%s: spawned pid %d (%d args)", name, proc.pid, len(args))

    queue: asyncio.Queue[_QueueItem] = asyncio.Queue(maxsize=1)
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    tasks: list[asyncio.Task[None]] = [
        asyncio.create_task(_read_stdout(proc, queue, stall_timeout, name)),
        asyncio.create_task(_drain_stderr(proc, stderr_tail)),
    ]
    if stdin_data is not None:
        tasks.append(asyncio.create_task(_write_stdin(proc, stdin_data, name)))

    cancel_waiter = asyncio.ensure_future(cancel.wait())
    getter: asyncio.Future[_QueueItem] | None = None
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait(
                {getter, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if cancel_waiter in done:
                logger.info("%s: cancelled, terminating pid %d", name, proc.pid)
                return

            item = getter.result()
            getter = None

            if isinstance(item, SubprocessRecord):
                yield item
                continue

            if isinstance(item, _Stalled):
                logger.warning(
                    "%s: no output for %.1fs, terminating pid %d",
                    name,
                    stall_timeout,
                    proc.pid,
                )
                raise StallTimeoutError(stall_timeout)

            # _Exited
            if item.returncode != 0:
                # Let stderr finish draining so the tail is complete.
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(asyncio.shield(tasks[1]), timeout=1.0)
                raise ProcessExitError(name, item.returncode, "\n".join(stderr_tail))
            logger.debug("%s: exited cleanly", name)
            return
    finally:
        if getter is not None:
            getter.cancel()
        cancel_waiter.cancel()
        try:
            await terminate_process(proc, grace_period)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, cancel_waiter, return_exceptions=True)


async def terminate_process(
    proc: asyncio.subprocess.Process,
    grace_period: float = TERMINATE_GRACE_PERIOD,
) -> None:
    """SIGTERM the process group, wait *grace_period*, then SIGKILL."""
    if proc.returncode is not None:
        return
    try:
        _signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace_period)
        except TimeoutError:
            logger.warning("pid %d ignored SIGTERM, sending SIGKILL", proc.pid)
            _signal_group(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(proc.wait(), timeout=grace_period)
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        raise


def build_env(overrides: Mapping[str, str | None] | None) -> dict[str, str]:
    """Merge *overrides* over ``os.environ``; ``None`` removes a variable."""
    env = dict(os.environ)
    for key, value in (overrides or {}).items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return env


# ------------------------------------------------------------------ #
# Background tasks
# ------------------------------------------------------------------ #


async def _read_stdout(
    proc: asyncio.subprocess.Process,
    queue: asyncio.Queue[_QueueItem],
    stall_timeout: float,
    name: str,
) -> None:
    """Parse stdout into records; report exit or stall as the final item."""
    stdout = proc.stdout
    if stdout is None:
        await queue.put(_Exited(await proc.wait()))
        return

    seq = 0
    while True:
        try:
            line = await asyncio.wait_for(stdout.readline(), timeout=stall_timeout)
        except TimeoutError:
            await queue.put(_STALLED)
            return
        except ValueError:
            # Line exceeded the StreamReader limit; it has been discarded.
            logger.warning(
                "%s: stdout line exceeded %d bytes, skipping", name, MAX_LINE_BYTES
            )
            continue

        if not line:
            break

        text = line.decode(errors="replace").strip()
        if not text:
            continue

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("%s: malformed JSON on stdout: %s", name, text[:200])
            continue

        seq += 1
        await queue.put(SubprocessRecord(data=data, seq=seq))

    # stdout closed; a process that lingers silently counts as stalled.
    try:
        returncode = await asyncio.wait_for(proc.wait(), timeout=stall_timeout)
    except TimeoutError:
        await queue.put(_STALLED)
        return
    await queue.put(_Exited(returncode))


async def _drain_stderr(
    proc: asyncio.subprocess.Process,
    tail: deque[str],
) -> None:
    stderr = proc.stderr
    if stderr is None:
        return
    while True:
        try:
            line = await stderr.readline()
        except ValueError:
            continue
        if not line:
            return
        tail.append(line.decode(errors="replace").rstrip())


async def _write_stdin(
    proc: asyncio.subprocess.Process,
    data: str,
    name: str,
) -> None:
    stdin = proc.stdin
    if stdin is None:
        return
    try:
        stdin.write(data.encode())
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError) as exc:
        logger.debug("%s: stdin closed early: %s", name, exc)
    finally:
        stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()


# ------------------------------------------------------------------ #
# Platform helpers
# ------------------------------------------------------------------ #


def _session_kwargs() -> dict[str, Any]:
    """Put the child in its own process group so descendants die with it."""
    if sys.platform == "win32":
        import subprocess

        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    if sys.platform == "win32":
        with contextlib.suppress(ProcessLookupError):
            if sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        return
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        with contextlib.suppress(ProcessLookupError):
            proc.send_signal(sig)
