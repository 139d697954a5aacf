"""Point-in-time snapshot of credential and CLI-path environment variables.

Providers take a snapshot once at construction time and consult it for
every execution, instead of reading ``os.environ`` inline.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

# provider -> default env var holding its API key
DEFAULT_KEY_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "cursor": "CURSOR_API_KEY",
}

# config aliases for the same credential slot
_ALIASES = {"claude": "anthropic", "codex": "openai"}


@dataclass(frozen=True)
class CredentialSnapshot:
    anthropic_api_key: str | None = None
    claude_oauth_token: str | None = None
    openai_api_key: str | None = None
    cursor_api_key: str | None = None
    claude_cli_path: str | None = None
    codex_cli_path: str | None = None
    cursor_cli_path: str | None = None

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        credentials: Mapping[str, str] | None = None,
    ) -> CredentialSnapshot:
        """Resolve credentials from *env* (default ``os.environ``).

        *credentials* maps a provider name to the env var holding its API
        key, overriding the defaults in ``DEFAULT_KEY_VARS``.
        """
        env = os.environ if env is None else env
        key_vars = dict(DEFAULT_KEY_VARS)
        for name, var in (credentials or {}).items():
            key_vars[_ALIASES.get(name, name)] = var

        def get(var: str) -> str | None:
            value = env.get(var, "").strip()
            return value or None

        return cls(
            anthropic_api_key=get(key_vars["anthropic"]),
            claude_oauth_token=get("CLAUDE_CODE_OAUTH_TOKEN"),
            openai_api_key=get(key_vars["openai"]),
            cursor_api_key=get(key_vars["cursor"]),
            claude_cli_path=get("CLAUDE_CLI_PATH"),
            codex_cli_path=get("CODEX_CLI_PATH"),
            cursor_cli_path=get("CURSOR_CLI_PATH"),
        )

    @property
    def has_anthropic_credential(self) -> bool:
        return bool(self.anthropic_api_key or self.claude_oauth_token)
