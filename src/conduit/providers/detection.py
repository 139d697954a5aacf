"""Installation and login probes for CLI backends."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

#: Seconds allowed for ``<cli> --version`` before giving up on the version.
_VERSION_TIMEOUT = 5.0

_VERSION_RE = re.compile(r"\d+\.\d+(?:\.\d+)?(?:[-+.][0-9A-Za-z.]+)?")

InstallMethod = Literal["cli", "npm", "brew", "none"]


@dataclass(frozen=True, slots=True)
class CLIDetection:
    installed: bool
    path: str | None = None
    version: str | None = None
    method: InstallMethod = "none"


@dataclass(frozen=True, slots=True)
class AuthCheck:
    authenticated: bool
    has_env_key: bool
    has_auth_file: bool


@dataclass(frozen=True)
class CLIProbe:
    """Describes how to find one CLI and tell whether it is logged in.

    Attributes:
        command: Bare executable name looked up on ``PATH``.
        env_path_var: Env var that may hold an explicit executable path.
        version_args: Arguments that make the CLI print its version.
        auth_files: Files whose presence indicates a prior CLI login.
        search_paths: Extra install locations checked after ``PATH``.
    """

    command: str
    env_path_var: str | None = None
    version_args: tuple[str, ...] = ("--version",)
    auth_files: tuple[str, ...] = ()
    search_paths: tuple[str, ...] = ()

    def locate(self, env: Mapping[str, str] | None = None) -> str | None:
        """Return the executable path, or None when the CLI is not found."""
        env = os.environ if env is None else env
        if self.env_path_var:
            override = env.get(self.env_path_var, "").strip()
            if override:
                return override

        found = shutil.which(self.command, path=env.get("PATH"))
        if found:
            return found

        for candidate in self.search_paths:
            path = Path(candidate).expanduser()
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
        return None

    async def detect(self, env: Mapping[str, str] | None = None) -> CLIDetection:
        path = self.locate(env)
        if path is None:
            return CLIDetection(installed=False)
        version = await probe_version(path, self.version_args)
        return CLIDetection(
            installed=True,
            path=path,
            version=version,
            method=_install_method(path),
        )

    def has_auth_file(self) -> bool:
        return any(Path(p).expanduser().is_file() for p in self.auth_files)

    def check_auth(self, *, has_env_key: bool) -> AuthCheck:
        has_file = self.has_auth_file()
        return AuthCheck(
            authenticated=has_env_key or has_file,
            has_env_key=has_env_key,
            has_auth_file=has_file,
        )


async def probe_version(
    path: str,
    args: tuple[str, ...] = ("--version",),
    timeout: float = _VERSION_TIMEOUT,
) -> str | None:
    """Run ``<path> --version`` and extract a version string.

    Any failure (missing binary, timeout, non-zero exit, unparseable
    output) yields None.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            path,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        logger.debug("version probe for %s failed to start: %s", path, exc)
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        logger.debug("version probe for %s timed out", path)
        proc.kill()
        await proc.wait()
        return None

    if proc.returncode != 0:
        logger.debug("version probe for %s exited with %s", path, proc.returncode)
        return None

    match = _VERSION_RE.search(stdout.decode(errors="replace"))
    return match.group(0) if match else None


def _install_method(path: str) -> InstallMethod:
    normalized = path.replace("\\", "/")
    if "/homebrew/" in normalized or "/Cellar/" in normalized:
        return "brew"
    if "node_modules" in normalized or "/.npm" in normalized or "/npm/" in normalized:
        return "npm"
    return "cli"


CLAUDE_PROBE = CLIProbe(
    command="claude",
    env_path_var="CLAUDE_CLI_PATH",
    auth_files=("~/.claude/.credentials.json", "~/.claude.json"),
    search_paths=("~/.claude/local/claude", "~/.local/bin/claude"),
)

CODEX_PROBE = CLIProbe(
    command="codex",
    env_path_var="CODEX_CLI_PATH",
    auth_files=("~/.codex/auth.json",),
    search_paths=("~/.local/bin/codex", "/opt/homebrew/bin/codex"),
)

CURSOR_PROBE = CLIProbe(
    command="cursor-agent",
    env_path_var="CURSOR_CLI_PATH",
    auth_files=("~/.cursor/cli-config.json",),
    search_paths=("~/.local/bin/cursor-agent",),
)
