"""Claude backend: Anthropic Messages API or the ``claude`` CLI."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, aclosing
from typing import Any

from anthropic import AsyncAnthropic
from pydantic import ValidationError

from conduit.config.models import ClaudeSettings
from conduit.errors import AuthenticationError, classify_error
from conduit.history import (
    build_prompt_record,
    encode_jsonl,
    to_anthropic_messages,
)
from conduit.process import spawn_jsonl_process
from conduit.protocol.models import (
    AssistantMessage,
    ContentBlock,
    ExecuteOptions,
    ImageBlock,
    InstallationStatus,
    MessageBody,
    ModelDefinition,
    ProviderMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    assistant_text,
    assistant_thinking,
    error_message,
    result_success,
)
from conduit.providers.base import BaseProvider, iterate_cancellable
from conduit.providers.detection import CLAUDE_PROBE
from conduit.providers.mcp import claude_mcp_config, parse_servers
from conduit.providers.selector import (
    BackendCapabilities,
    ExecutionStrategy,
    select_strategy,
)

logger = logging.getLogger(__name__)

AUTH_ERROR = (
    "Claude is not authenticated. Please run 'claude login' or set "
    "ANTHROPIC_API_KEY or CLAUDE_CODE_OAUTH_TOKEN environment variable."
)

NOT_FOUND_ERROR = (
    "Claude CLI not found. Please install it with: "
    "npm install -g @anthropic-ai/claude-code"
)

#: Max V8 heap size (MB) for the Node.js-based CLI.
_NODE_HEAP_LIMIT_MB = 2048

CLAUDE_MODELS: tuple[ModelDefinition, ...] = (
    ModelDefinition(
        id="claude-opus-4-5-20251101",
        display_name="Claude Opus 4.5",
        provider="claude",
        description="Most capable Claude model",
        context_window=200_000,
        max_output_tokens=16_000,
        supports_vision=True,
        supports_tools=True,
        tier="premium",
        is_default=True,
    ),
    ModelDefinition(
        id="claude-sonnet-4-20250514",
        display_name="Claude Sonnet 4",
        provider="claude",
        description="Balanced performance and cost",
        context_window=200_000,
        max_output_tokens=16_000,
        supports_vision=True,
        supports_tools=True,
        tier="standard",
    ),
    ModelDefinition(
        id="claude-3-5-sonnet-20241022",
        display_name="Claude 3.5 Sonnet",
        provider="claude",
        description="Fast and capable",
        context_window=200_000,
        max_output_tokens=8_000,
        supports_vision=True,
        supports_tools=True,
        tier="standard",
    ),
    ModelDefinition(
        id="claude-3-5-haiku-20241022",
        display_name="Claude 3.5 Haiku",
        provider="claude",
        description="Fastest Claude model",
        context_window=200_000,
        max_output_tokens=8_000,
        supports_vision=True,
        supports_tools=True,
        tier="basic",
    ),
)


class ClaudeProvider(BaseProvider):
    """Hybrid adapter for Claude.

    The direct path streams from the Messages API and supports images and
    role-tagged history.  The CLI path runs ``claude -p`` in stream-json
    mode, whose events already follow the canonical vocabulary.
    """

    name = "claude"
    settings_model = ClaudeSettings
    capabilities = BackendCapabilities(direct=True, subprocess=True)
    features = frozenset({"tools", "text", "vision", "thinking", "mcp", "cli"})
    models = CLAUDE_MODELS
    probe = CLAUDE_PROBE
    cli_path_field = "claude_cli_path"
    cli_not_found_message = NOT_FOUND_ERROR

    async def _execute(
        self, options: ExecuteOptions
    ) -> AsyncIterator[ProviderMessage]:
        settings: ClaudeSettings = self.resolve_settings(options)
        model = self.resolve_model(options, settings)
        has_credential = self.credentials.has_anthropic_credential

        strategy = select_strategy(
            options.allowed_tools,
            has_credential=has_credential,
            capabilities=self.capabilities,
        )
        logger.debug("claude: %s path for model %s", strategy, model)

        if strategy is ExecutionStrategy.DIRECT:
            async for message in self._execute_direct(options, settings, model):
                yield message
            return

        cli_path = self.resolve_cli_path(settings)
        if not has_credential and not self.has_cli_login():
            raise AuthenticationError(AUTH_ERROR)

        prompt_record = build_prompt_record(options.prompt, options.history())
        stream = spawn_jsonl_process(
            cli_path,
            self.build_args(options, settings, model),
            cwd=options.cwd,
            env={"NODE_OPTIONS": _node_options(os.environ.get("NODE_OPTIONS", ""))},
            cancel=options.cancel,
            stall_timeout=settings.stall_timeout,
            stdin_data=encode_jsonl([prompt_record]),
        )
        async with aclosing(stream) as events:
            async for record in events:
                message = convert_claude_event(record.data)
                if message is not None:
                    yield message

    async def _execute_direct(
        self,
        options: ExecuteOptions,
        settings: ClaudeSettings,
        model: str,
    ) -> AsyncIterator[ProviderMessage]:
        client = self._client()
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": settings.max_tokens,
            "messages": to_anthropic_messages(options.prompt, options.history()),
        }
        if options.system_prompt:
            kwargs["system"] = options.system_prompt
        if settings.thinking_budget:
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": settings.thinking_budget,
            }
            # max_tokens must leave room beyond the thinking budget.
            kwargs["max_tokens"] = max(
                settings.max_tokens, settings.thinking_budget + 1024
            )

        text_parts: list[str] = []
        async with AsyncExitStack() as stack:
            stream = await options.cancel.race(
                stack.enter_async_context(client.messages.stream(**kwargs))
            )
            events = iterate_cancellable(aiter(stream), options.cancel)
            async for event in events:
                if event.type != "content_block_stop":
                    continue
                block = event.content_block
                if block.type == "text" and block.text:
                    text_parts.append(block.text)
                    yield assistant_text(block.text)
                elif block.type == "thinking" and block.thinking:
                    yield assistant_thinking(block.thinking)
            final = await options.cancel.race(stream.get_final_message())

        usage = {
            "input_tokens": final.usage.input_tokens,
            "output_tokens": final.usage.output_tokens,
        }
        yield result_success("".join(text_parts), usage=usage)

    def _client(self) -> AsyncAnthropic:
        if self.credentials.anthropic_api_key:
            return AsyncAnthropic(api_key=self.credentials.anthropic_api_key)
        return AsyncAnthropic(auth_token=self.credentials.claude_oauth_token)

    def build_args(
        self,
        options: ExecuteOptions,
        settings: ClaudeSettings,
        model: str,
    ) -> list[str]:
        args = [
            "-p",
            "--output-format",
            "stream-json",
            "--input-format",
            "stream-json",
            "--verbose",
            "--model",
            model,
            "--permission-mode",
            settings.permission_mode,
        ]
        if settings.max_turns:
            args.extend(["--max-turns", str(settings.max_turns)])

        tools = (
            options.allowed_tools
            if options.allowed_tools is not None
            else settings.default_tools
        )
        if tools:
            args.extend(["--allowedTools", ",".join(tools)])

        if options.system_prompt:
            args.extend(["--append-system-prompt", options.system_prompt])

        if options.mcp_servers:
            mcp_config = claude_mcp_config(parse_servers(options.mcp_servers))
            if mcp_config:
                args.extend(["--mcp-config", mcp_config])

        if settings.dangerously_skip_permissions:
            args.append("--dangerously-skip-permissions")
        return args

    async def detect_installation(self) -> InstallationStatus:
        detection = await CLAUDE_PROBE.detect()
        has_credential = self.credentials.has_anthropic_credential
        auth = CLAUDE_PROBE.check_auth(has_env_key=has_credential)

        if detection.installed:
            method = detection.method
        elif has_credential:
            method = "sdk"
        else:
            method = "none"

        return InstallationStatus(
            installed=detection.installed or has_credential,
            path=detection.path,
            version=detection.version,
            method=method,
            has_credential=has_credential,
            authenticated=auth.authenticated,
        )


def _node_options(current: str) -> str:
    """Append a V8 heap cap to NODE_OPTIONS unless one is already set."""
    if "--max-old-space-size" in current:
        return current
    heap_flag = f"--max-old-space-size={_NODE_HEAP_LIMIT_MB}"
    return f"{current} {heap_flag}" if current else heap_flag


# --------------------------------------------------------------------------- #
# Event conversion
# --------------------------------------------------------------------------- #

_ENVELOPE_KEYS = {"type", "subtype", "session_id"}


def convert_claude_event(event: Any) -> ProviderMessage | None:
    """Validate one ``claude --output-format stream-json`` event.

    The CLI already speaks the canonical vocabulary, so most events pass
    through; error subtypes of ``result`` become ``error`` messages.
    """
    if not isinstance(event, dict):
        return None

    session_id = event.get("session_id") or None
    match event.get("type"):
        case "system":
            data = {k: v for k, v in event.items() if k not in _ENVELOPE_KEYS}
            return SystemMessage(
                subtype=str(event.get("subtype") or "init"),
                session_id=session_id,
                data=data,
            )
        case "assistant" | "user" as role:
            blocks = _convert_blocks(event.get("message"))
            if not blocks:
                return None
            body = MessageBody(role=role, content=blocks)
            if role == "assistant":
                return AssistantMessage(message=body, session_id=session_id)
            return UserMessage(message=body, session_id=session_id)
        case "result":
            return _convert_result(event, session_id)
        case "error":
            info = classify_error(_error_text(event))
            if info.kind == "unknown":
                return error_message("Unknown error from Claude CLI")
            return error_message(info.message, kind=info.kind)
        case "stream_event":
            return None
        case other:
            text = event.get("text") or event.get("message")
            if isinstance(text, str) and text:
                return assistant_text(text)
            logger.debug("claude: dropping event type %r", other)
            return None


def _convert_result(event: dict[str, Any], session_id: str | None) -> ProviderMessage:
    subtype = event.get("subtype") or "success"
    if subtype == "success" and not event.get("is_error"):
        usage = event.get("usage")
        if isinstance(usage, dict):
            usage = {
                k: v
                for k, v in usage.items()
                if isinstance(v, int) and not isinstance(v, bool)
            }
        else:
            usage = None
        return result_success(
            str(event.get("result") or ""),
            session_id=session_id,
            usage=usage,
        )

    text = _error_text(event) or f"Claude CLI finished with {subtype}"
    info = classify_error(text)
    return error_message(info.message, kind=info.kind)


def _error_text(event: dict[str, Any]) -> str:
    errors = event.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(str(e) for e in errors)
    for key in ("error", "result", "message"):
        value = event.get(key)
        if isinstance(value, dict):
            value = value.get("message")
        if isinstance(value, str) and value:
            return value
    return ""


def _convert_blocks(message: Any) -> list[ContentBlock]:
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if isinstance(content, str):
        return [TextBlock(text=content)] if content else []
    if not isinstance(content, list):
        return []

    blocks: list[ContentBlock] = []
    for raw in content:
        if not isinstance(raw, dict):
            continue
        match raw.get("type"):
            case "text":
                blocks.append(TextBlock(text=str(raw.get("text") or "")))
            case "thinking":
                blocks.append(ThinkingBlock(thinking=str(raw.get("thinking") or "")))
            case "tool_use":
                tool_input = raw.get("input")
                blocks.append(
                    ToolUseBlock(
                        tool_use_id=str(raw.get("id") or raw.get("tool_use_id") or ""),
                        name=str(raw.get("name") or "unknown"),
                        input=tool_input if isinstance(tool_input, dict) else {},
                    )
                )
            case "tool_result":
                result = raw.get("content")
                if isinstance(result, list):
                    result = [c for c in result if isinstance(c, dict)]
                elif not isinstance(result, str):
                    result = None if result is None else str(result)
                blocks.append(
                    ToolResultBlock(
                        tool_use_id=str(raw.get("tool_use_id") or ""),
                        content=result,
                        is_error=bool(raw.get("is_error")),
                    )
                )
            case "image":
                try:
                    blocks.append(ImageBlock.model_validate({"source": raw.get("source")}))
                except ValidationError:
                    logger.debug("claude: dropping unsupported image source")
            case other:
                logger.debug("claude: dropping content block type %r", other)
    return blocks
