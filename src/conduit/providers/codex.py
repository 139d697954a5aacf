"""Codex backend: OpenAI chat completions or the ``codex exec`` CLI."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from pathlib import Path
from typing import Any

from openai import AsyncOpenAI

from conduit.config.models import CodexSettings
from conduit.errors import AuthenticationError, classify_error
from conduit.history import build_text_prompt, to_openai_messages
from conduit.process import spawn_jsonl_process
from conduit.protocol.models import (
    ErrorMessage,
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderMessage,
    ToolResultBlock,
    ToolUseBlock,
    assistant_message,
    assistant_text,
    assistant_thinking,
    assistant_tool_result,
    assistant_tool_use,
    error_message,
    result_success,
)
from conduit.providers.base import BaseProvider, CorrelationMap
from conduit.providers.detection import CODEX_PROBE
from conduit.providers.mcp import codex_config_pairs, parse_servers
from conduit.providers.selector import (
    BackendCapabilities,
    ExecutionStrategy,
    select_strategy,
)

logger = logging.getLogger(__name__)

AUTH_ERROR = (
    "Codex CLI is not authenticated. Please run 'codex login' or set "
    "OPENAI_API_KEY environment variable."
)

NOT_FOUND_ERROR = (
    "Codex CLI not found. Please install it with: "
    "npm install -g @openai/codex@latest"
)

#: Path fragments of folders kept in sync by cloud storage clients.  The
#: codex sandbox cannot write through their file providers.
_CLOUD_STORAGE_MARKERS = (
    "/Dropbox",
    "/Google Drive",
    "/GoogleDrive",
    "/OneDrive",
    "/iCloud Drive",
    "/Mobile Documents",
    "/Library/CloudStorage",
)

CODEX_MODELS: tuple[ModelDefinition, ...] = (
    ModelDefinition(
        id="gpt-5.2",
        display_name="GPT-5.2 (Codex)",
        provider="codex",
        description="Latest Codex model for agentic code generation",
        context_window=256_000,
        max_output_tokens=32_768,
        supports_vision=True,
        supports_tools=True,
        tier="premium",
        is_default=True,
    ),
    ModelDefinition(
        id="gpt-5.1-codex-max",
        display_name="GPT-5.1 Codex Max",
        provider="codex",
        description="Maximum capability Codex model",
        context_window=256_000,
        max_output_tokens=32_768,
        supports_vision=True,
        supports_tools=True,
        tier="premium",
    ),
    ModelDefinition(
        id="gpt-5.1-codex",
        display_name="GPT-5.1 Codex",
        provider="codex",
        description="Standard Codex model",
        context_window=256_000,
        max_output_tokens=32_768,
        supports_vision=True,
        supports_tools=True,
        tier="standard",
    ),
    ModelDefinition(
        id="gpt-5.1-codex-mini",
        display_name="GPT-5.1 Codex Mini",
        provider="codex",
        description="Faster, lightweight Codex model",
        context_window=256_000,
        max_output_tokens=16_384,
        supports_vision=False,
        supports_tools=True,
        tier="basic",
    ),
    ModelDefinition(
        id="gpt-5.1",
        display_name="GPT-5.1",
        provider="codex",
        description="General-purpose GPT-5.1 model",
        context_window=256_000,
        max_output_tokens=32_768,
        supports_vision=True,
        supports_tools=True,
        tier="standard",
    ),
)


class CodexProvider(BaseProvider):
    """Hybrid adapter for OpenAI Codex.

    Requests that explicitly ask for no tools go straight to the chat
    completions API when an API key is available.  Everything else runs
    ``codex exec --json`` and converts its JSONL events.
    """

    name = "codex"
    settings_model = CodexSettings
    capabilities = BackendCapabilities(direct=True, subprocess=True)
    features = frozenset({"tools", "text", "mcp", "cli"})
    models = CODEX_MODELS
    probe = CODEX_PROBE
    cli_path_field = "codex_cli_path"
    cli_not_found_message = NOT_FOUND_ERROR

    async def _execute(
        self, options: ExecuteOptions
    ) -> AsyncIterator[ProviderMessage]:
        settings: CodexSettings = self.resolve_settings(options)
        model = self.resolve_model(options, settings)
        api_key = self.credentials.openai_api_key

        strategy = select_strategy(
            options.allowed_tools,
            has_credential=api_key is not None,
            capabilities=self.capabilities,
        )
        logger.debug("codex: %s path for model %s", strategy, model)

        if strategy is ExecutionStrategy.DIRECT:
            async for message in self._execute_direct(options, model):
                yield message
            return

        cli_path = self.resolve_cli_path(settings)
        if api_key is None and not self.has_cli_login():
            raise AuthenticationError(AUTH_ERROR)

        instructions = (
            load_agent_instructions(options.cwd) if settings.auto_load_agents else []
        )
        prompt = build_text_prompt(
            options.prompt,
            options.history(),
            options.system_prompt,
            instructions,
        )
        args = self.build_args(options, settings, model)
        env = {"OPENAI_API_KEY": api_key} if api_key else None

        converter = CodexEventConverter()
        stream = spawn_jsonl_process(
            cli_path,
            args,
            cwd=options.cwd,
            env=env,
            cancel=options.cancel,
            stall_timeout=settings.stall_timeout,
            stdin_data=prompt,
        )
        async with aclosing(stream) as records:
            async for record in records:
                message = converter.convert(record.data)
                if message is not None:
                    yield message

    async def _execute_direct(
        self, options: ExecuteOptions, model: str
    ) -> AsyncIterator[ProviderMessage]:
        client = AsyncOpenAI(api_key=self.credentials.openai_api_key)
        messages = to_openai_messages(
            options.prompt, options.history(), options.system_prompt
        )
        response = await options.cancel.race(
            client.chat.completions.create(model=model, messages=messages)
        )

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = None
        if response.usage:
            usage = {
                "input_tokens": response.usage.prompt_tokens or 0,
                "output_tokens": response.usage.completion_tokens or 0,
            }

        yield assistant_text(text)
        yield result_success(text, usage=usage)

    def build_args(
        self,
        options: ExecuteOptions,
        settings: CodexSettings,
        model: str,
    ) -> list[str]:
        """Argument vector for ``codex``; the prompt itself goes on stdin."""
        args = ["exec", "--model", model, "--json", "--skip-git-repo-check"]

        sandbox = settings.sandbox_mode
        if options.cwd and is_cloud_storage_path(options.cwd):
            logger.info("codex: %s is cloud-synced, disabling sandbox", options.cwd)
            sandbox = "danger-full-access"

        if settings.dangerously_bypass_approvals_and_sandbox:
            args.append("--dangerously-bypass-approvals-and-sandbox")
        else:
            args.append("--full-auto")
            if sandbox != "workspace-write":
                args.extend(["--sandbox", sandbox])

        for pair in self._config_pairs(options, settings):
            args.extend(["--config", pair])

        args.append("-")
        return args

    def _config_pairs(
        self, options: ExecuteOptions, settings: CodexSettings
    ) -> list[str]:
        approval = "never" if options.mcp_auto_approve_tools else settings.approval_policy
        pairs = [f"approval_policy={approval}"]

        tools = options.allowed_tools
        if settings.web_search or tools is None or "WebSearch" in tools:
            pairs.append("features.web_search_request=true")

        if settings.reasoning_effort:
            pairs.append(f"model_reasoning_effort={settings.reasoning_effort}")

        if options.mcp_servers:
            pairs.extend(codex_config_pairs(parse_servers(options.mcp_servers)))

        for key, value in settings.config_overrides.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            pairs.append(f"{key}={value}")
        return pairs

    async def detect_installation(self) -> InstallationStatus:
        detection = await CODEX_PROBE.detect()
        auth = CODEX_PROBE.check_auth(
            has_env_key=self.credentials.openai_api_key is not None
        )
        return InstallationStatus(
            installed=detection.installed,
            path=detection.path,
            version=detection.version,
            method=detection.method,
            has_credential=auth.has_env_key,
            authenticated=auth.authenticated,
        )


def is_cloud_storage_path(path: str) -> bool:
    normalized = str(Path(path).expanduser()).replace("\\", "/")
    return any(marker in normalized for marker in _CLOUD_STORAGE_MARKERS)


def load_agent_instructions(
    cwd: str | None,
    home: Path | None = None,
) -> list[str]:
    """Read the user-level and project-level ``AGENTS.md`` files.

    Missing files are skipped silently; unreadable ones are logged.
    """
    paths = [(home or Path.home()) / ".codex" / "AGENTS.md"]
    if cwd:
        paths.append(Path(cwd) / ".codex" / "AGENTS.md")

    instructions: list[str] = []
    for path in paths:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("codex: cannot read %s: %s", path, exc)
            continue
        if text.strip():
            instructions.append(text.strip())
    return instructions


# --------------------------------------------------------------------------- #
# Event conversion
# --------------------------------------------------------------------------- #


class CodexEventConverter:
    """Maps ``codex exec --json`` events to canonical messages.

    One converter instance lives for one execution call; it owns the
    correlation ids threading tool starts to their completions and the
    last agent message, which becomes the final result text.
    """

    def __init__(self) -> None:
        self.correlation = CorrelationMap()
        self.last_message = ""
        self.usage: dict[str, int] | None = None

    def convert(self, event: Any) -> ProviderMessage | None:
        if not isinstance(event, dict):
            return None

        event_type = event.get("type")
        item = event.get("item") or event.get("data")
        if not isinstance(item, dict):
            item = {}

        match event_type:
            case "thread.started" | "turn.started":
                return None
            case "turn.completed":
                self._record_usage(event.get("usage"))
                return None
            case "item.started":
                return self._item_started(item)
            case "item.updated":
                return self._item_updated(item)
            case "item.completed":
                return self._item_completed(item)
            case "thread.completed":
                self.correlation.clear()
                return result_success(self.last_message, usage=self.usage)
            case "turn.failed":
                error = event.get("error")
                text = error.get("message") if isinstance(error, dict) else error
                return _error(text, "Codex turn failed")
            case "error":
                return _error(
                    event.get("message") or item.get("message"),
                    "Unknown error from Codex CLI",
                )
            case _:
                text = _text_of(event)
                if text:
                    return assistant_text(text)
                logger.debug("codex: dropping event type %r", event_type)
                return None

    def _item_started(self, item: dict[str, Any]) -> ProviderMessage | None:
        match item.get("type"):
            case "command_execution":
                tool_id = self.correlation.open(item.get("id"))
                return assistant_tool_use(
                    tool_id, "Bash", {"command": str(item.get("command") or "")}
                )
            case "mcp_tool_call":
                tool_id = self.correlation.open(item.get("id"))
                return assistant_tool_use(tool_id, _mcp_tool_name(item), _mcp_args(item))
            case "web_search":
                tool_id = self.correlation.open(item.get("id"))
                return assistant_tool_use(
                    tool_id, "WebSearch", {"query": str(item.get("query") or "")}
                )
            case "todo_list":
                return assistant_text(f"**Todo List:**\n{_render_todos(item)}")
            case _:
                return None

    def _item_updated(self, item: dict[str, Any]) -> ProviderMessage | None:
        if item.get("type") == "todo_list":
            todos = _render_todos(item, checkboxes=True)
            return assistant_text(f"**Updated Todo List:**\n{todos}")
        return None

    def _item_completed(self, item: dict[str, Any]) -> ProviderMessage | None:
        match item.get("type") or item.get("item_type"):
            case "reasoning":
                return assistant_thinking(_text_of(item))
            case "agent_message" | "message":
                text = _text_of(item)
                if not text:
                    return None
                self.last_message = text
                return assistant_text(text)
            case "command_execution":
                output = item.get("aggregated_output") or item.get("output") or ""
                exit_code = item.get("exit_code")
                failed = item.get("status") == "failed" or exit_code not in (None, 0)
                return self._tool_result(
                    item,
                    "Bash",
                    {"command": str(item.get("command") or "")},
                    str(output),
                    is_error=failed,
                )
            case "mcp_tool_call":
                content, failed = _mcp_result(item)
                return self._tool_result(
                    item, _mcp_tool_name(item), _mcp_args(item), content, is_error=failed
                )
            case "web_search":
                query = str(item.get("query") or "")
                return self._tool_result(
                    item, "WebSearch", {"query": query}, f"Searched: {query}"
                )
            case "tool_use":
                tool_id = self.correlation.open(
                    item.get("tool_use_id") or item.get("id"), item.get("tool_use_id")
                )
                tool_input = item.get("input") or item.get("args")
                return assistant_tool_use(
                    tool_id,
                    str(item.get("tool") or item.get("command") or "unknown"),
                    tool_input if isinstance(tool_input, dict) else {},
                )
            case "tool_result":
                return self._native_tool_result(item)
            case "todo_list":
                return assistant_text(f"**Todo List:**\n{_render_todos(item)}")
            case "file_change":
                return assistant_text(f"**File Changes:**\n{_render_changes(item)}")
            case "error":
                text = str(item.get("message") or "")
                if text:
                    logger.warning("codex: item error: %s", text)
                    return assistant_text(f"Error: {text}")
                return None
            case _:
                text = _text_of(item)
                return assistant_text(text) if text else None

    def _native_tool_result(self, item: dict[str, Any]) -> ProviderMessage:
        output = item.get("output")
        if output is None:
            output = item.get("result")
        content = output if output is None or isinstance(output, str) else str(output)
        is_error = bool(item.get("is_error")) or item.get("status") == "failed"

        native_id = item.get("tool_use_id")
        if not native_id:
            return self._tool_result(item, "unknown", {}, content, is_error=is_error)
        tool_id = self.correlation.close(native_id) or str(native_id)
        return assistant_tool_result(tool_id, content, is_error=is_error)

    def _tool_result(
        self,
        item: dict[str, Any],
        name: str,
        tool_input: dict[str, Any],
        content: str | list[dict[str, Any]] | None,
        *,
        is_error: bool = False,
    ) -> ProviderMessage:
        tool_id = self.correlation.close(item.get("id"))
        if tool_id is not None:
            return assistant_tool_result(tool_id, content, is_error=is_error)
        # Completion without a start: emit both halves in one message.
        tool_id = CorrelationMap.mint()
        return assistant_message(
            ToolUseBlock(tool_use_id=tool_id, name=name, input=tool_input),
            ToolResultBlock(tool_use_id=tool_id, content=content, is_error=is_error),
        )

    def _record_usage(self, usage: Any) -> None:
        if isinstance(usage, dict):
            self.usage = {
                k: v
                for k, v in usage.items()
                if isinstance(v, int) and not isinstance(v, bool)
            }


def _error(text: Any, fallback: str) -> ErrorMessage:
    info = classify_error(str(text) if text else None)
    if info.kind == "unknown":
        return error_message(fallback)
    return error_message(info.message, kind=info.kind)


def _text_of(data: dict[str, Any]) -> str:
    for key in ("text", "content", "aggregated_output", "message"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _render_todos(item: dict[str, Any], *, checkboxes: bool = False) -> str:
    lines: list[str] = []
    for index, todo in enumerate(item.get("items") or [], start=1):
        if isinstance(todo, dict):
            text = str(todo.get("text") or "")
            done = todo.get("completed") is True or todo.get("status") == "completed"
        else:
            text, done = str(todo), False
        if checkboxes:
            lines.append(f"{index}. [{'✓' if done else ' '}] {text}")
        else:
            lines.append(f"{index}. {text}")
    return "\n".join(lines)


_CHANGE_LABELS = {"add": "Added", "delete": "Deleted", "update": "Modified"}


def _render_changes(item: dict[str, Any]) -> str:
    lines = []
    for change in item.get("changes") or []:
        if not isinstance(change, dict):
            continue
        label = _CHANGE_LABELS.get(str(change.get("kind")), "Modified")
        lines.append(f"- {label}: {change.get('path', '')}")
    return "\n".join(lines)


def _mcp_tool_name(item: dict[str, Any]) -> str:
    server = item.get("server")
    tool = item.get("tool") or "unknown"
    return f"mcp__{server}__{tool}" if server else str(tool)


def _mcp_args(item: dict[str, Any]) -> dict[str, Any]:
    arguments = item.get("arguments")
    return arguments if isinstance(arguments, dict) else {}


def _mcp_result(
    item: dict[str, Any],
) -> tuple[str | list[dict[str, Any]] | None, bool]:
    error = item.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else error
        return str(message), True
    result = item.get("result")
    if isinstance(result, dict):
        content: Sequence[Any] = result.get("content") or []
        blocks = [c for c in content if isinstance(c, dict)]
        return blocks, item.get("status") == "failed"
    if result is None:
        return None, item.get("status") == "failed"
    return str(result), item.get("status") == "failed"
