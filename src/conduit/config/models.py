"""Pydantic v2 models for conduit.yaml settings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from conduit.constants import DEFAULT_PROVIDER, DEFAULT_STALL_TIMEOUT

ProviderName = Literal["claude", "codex", "cursor"]


class _BackendSettings(BaseModel):
    """Settings shared by every backend section."""

    model_config = ConfigDict(extra="forbid")

    cli_path: str | None = Field(
        default=None,
        description="Explicit CLI executable path (skips auto-detection)",
    )
    stall_timeout: float = Field(
        default=DEFAULT_STALL_TIMEOUT,
        gt=0,
        description="Seconds of stdout silence before the CLI is killed",
    )


class ClaudeSettings(_BackendSettings):
    """Settings for the Claude backend (API and ``claude`` CLI)."""

    default_model: str = Field(default="claude-opus-4-5-20251101")
    permission_mode: Literal["default", "acceptEdits", "bypassPermissions", "plan"] = (
        Field(
            default="acceptEdits",
            description="CLI permission mode for tool use",
        )
    )
    dangerously_skip_permissions: bool = Field(
        default=False,
        description="Pass --dangerously-skip-permissions to the CLI",
    )
    max_turns: int | None = Field(default=20, ge=1)
    max_tokens: int = Field(
        default=8192,
        ge=1,
        description="Output token cap for direct API calls",
    )
    thinking_budget: int | None = Field(
        default=None,
        ge=1024,
        description="Extended-thinking token budget for direct API calls",
    )
    default_tools: list[str] = Field(
        default_factory=lambda: [
            "Read",
            "Write",
            "Edit",
            "Glob",
            "Grep",
            "Bash",
            "WebSearch",
            "WebFetch",
        ],
        description="Tools granted when a request leaves allowed_tools unset",
    )


class CodexSettings(_BackendSettings):
    """Settings for the Codex backend (API and ``codex`` CLI)."""

    default_model: str = Field(default="gpt-5.2")
    sandbox_mode: Literal["read-only", "workspace-write", "danger-full-access"] = (
        Field(default="workspace-write")
    )
    approval_policy: Literal["untrusted", "on-failure", "on-request", "never"] = (
        Field(default="on-request")
    )
    dangerously_bypass_approvals_and_sandbox: bool = Field(
        default=False,
        description="Pass --dangerously-bypass-approvals-and-sandbox to the CLI",
    )
    web_search: bool = Field(default=False)
    auto_load_agents: bool = Field(
        default=False,
        description="Prepend ~/.codex/AGENTS.md and <cwd>/.codex/AGENTS.md",
    )
    reasoning_effort: Literal["minimal", "low", "medium", "high"] | None = None
    config_overrides: dict[str, str | int | float | bool] = Field(
        default_factory=dict,
        description="Extra key=value pairs passed via --config",
    )


class CursorSettings(_BackendSettings):
    """Settings for the Cursor backend (``cursor-agent`` CLI)."""

    default_model: str = Field(default="auto")
    force: bool = Field(
        default=False,
        description="Pass --force so commands run without confirmation",
    )


class ConduitSettings(BaseModel):
    """Top-level conduit.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1", description="Config schema version")
    default_provider: ProviderName = Field(default=DEFAULT_PROVIDER)
    credentials: dict[str, str] | None = Field(
        default=None,
        description="Provider name -> env var holding its API key",
    )
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)
    codex: CodexSettings = Field(default_factory=CodexSettings)
    cursor: CursorSettings = Field(default_factory=CursorSettings)

    @field_validator("credentials")
    @classmethod
    def _known_credential_providers(
        cls, value: dict[str, str] | None
    ) -> dict[str, str] | None:
        if not value:
            return value
        unknown = sorted(set(value) - {"anthropic", "claude", "openai", "codex", "cursor"})
        if unknown:
            joined = ", ".join(f"'{n}'" for n in unknown)
            msg = f"Unknown credential providers: {joined}"
            raise ValueError(msg)
        return value
