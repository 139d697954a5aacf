"""Cursor backend: the ``cursor-agent`` CLI in stream-json mode."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from conduit.config.models import CursorSettings
from conduit.errors import AuthenticationError, classify_error
from conduit.history import build_text_prompt
from conduit.process import spawn_jsonl_process
from conduit.protocol.models import (
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    assistant_message,
    assistant_tool_result,
    assistant_tool_use,
    error_message,
    result_success,
)
from conduit.providers.base import BaseProvider, CorrelationMap
from conduit.providers.detection import CURSOR_PROBE

logger = logging.getLogger(__name__)

AUTH_ERROR = (
    "Cursor CLI is not authenticated. Please run 'cursor-agent login' or set "
    "CURSOR_API_KEY environment variable."
)

NOT_FOUND_ERROR = (
    "Cursor CLI not found. Please install it with: "
    "curl https://cursor.com/install -fsS | bash"
)

CURSOR_MODELS: tuple[ModelDefinition, ...] = (
    ModelDefinition(
        id="auto",
        display_name="Auto",
        provider="cursor",
        description="Let Cursor pick the model per request",
        context_window=200_000,
        max_output_tokens=16_000,
        supports_vision=False,
        supports_tools=True,
        tier="standard",
        is_default=True,
    ),
    ModelDefinition(
        id="sonnet-4.5",
        display_name="Claude Sonnet 4.5 (Cursor)",
        provider="cursor",
        description="Claude Sonnet 4.5 through Cursor",
        context_window=200_000,
        max_output_tokens=16_000,
        supports_vision=False,
        supports_tools=True,
        tier="premium",
    ),
    ModelDefinition(
        id="gpt-5",
        display_name="GPT-5 (Cursor)",
        provider="cursor",
        description="GPT-5 through Cursor",
        context_window=256_000,
        max_output_tokens=32_768,
        supports_vision=False,
        supports_tools=True,
        tier="premium",
    ),
    ModelDefinition(
        id="cheetah",
        display_name="Cheetah",
        provider="cursor",
        description="Fast Cursor-hosted model",
        context_window=128_000,
        max_output_tokens=16_000,
        supports_vision=False,
        supports_tools=True,
        tier="basic",
    ),
)


class CursorProvider(BaseProvider):
    name = "cursor"
    settings_model = CursorSettings
    features = frozenset({"tools", "text", "cli"})
    models = CURSOR_MODELS
    probe = CURSOR_PROBE
    cli_path_field = "cursor_cli_path"
    cli_not_found_message = NOT_FOUND_ERROR

    async def _execute(
        self, options: ExecuteOptions
    ) -> AsyncIterator[ProviderMessage]:
        settings: CursorSettings = self.resolve_settings(options)
        model = self.resolve_model(options, settings)
        api_key = self.credentials.cursor_api_key

        cli_path = self.resolve_cli_path(settings)
        if api_key is None and not self.has_cli_login():
            raise AuthenticationError(AUTH_ERROR)

        prompt = build_text_prompt(
            options.prompt, options.history(), options.system_prompt
        )
        args = ["-p", "--output-format", "stream-json", "--model", model]
        if settings.force:
            args.append("--force")
        args.append(prompt)

        converter = CursorEventConverter()
        stream = spawn_jsonl_process(
            cli_path,
            args,
            cwd=options.cwd,
            env={"CURSOR_API_KEY": api_key} if api_key else None,
            cancel=options.cancel,
            stall_timeout=settings.stall_timeout,
        )
        async with aclosing(stream) as records:
            async for record in records:
                message = converter.convert(record.data)
                if message is not None:
                    yield message

    async def detect_installation(self) -> InstallationStatus:
        detection = await CURSOR_PROBE.detect()
        auth = CURSOR_PROBE.check_auth(
            has_env_key=self.credentials.cursor_api_key is not None
        )
        method = detection.method
        if detection.installed and auth.has_auth_file and not auth.has_env_key:
            method = "login"
        return InstallationStatus(
            installed=detection.installed,
            path=detection.path,
            version=detection.version,
            method=method,
            has_credential=auth.has_env_key,
            authenticated=auth.authenticated,
        )


class CursorEventConverter:
    """Maps ``cursor-agent`` stream-json events to canonical messages."""

    def __init__(self) -> None:
        self.correlation = CorrelationMap()

    def convert(self, event: Any) -> ProviderMessage | None:
        if not isinstance(event, dict):
            return None

        match event.get("type"):
            case "system" | "user":
                return None
            case "assistant":
                return _assistant(event)
            case "tool_call":
                return self._tool_call(event)
            case "result":
                self.correlation.clear()
                if event.get("subtype") == "error" or event.get("is_error"):
                    return _error(event.get("error") or event.get("result"))
                return result_success(
                    str(event.get("result") or ""),
                    session_id=event.get("session_id") or None,
                )
            case "error":
                return _error(event.get("error") or event.get("message"))
            case other:
                text = event.get("text") or event.get("message")
                if isinstance(text, str) and text:
                    return assistant_message(TextBlock(text=text))
                logger.debug("cursor: dropping event type %r", other)
                return None

    def _tool_call(self, event: dict[str, Any]) -> ProviderMessage | None:
        call = event.get("tool_call")
        if not isinstance(call, dict):
            return None
        name, tool_input = _describe_tool(call)
        call_id = event.get("call_id")

        if event.get("subtype") == "started":
            tool_id = self.correlation.open(call_id)
            return assistant_tool_use(tool_id, name, tool_input)

        if event.get("subtype") == "completed":
            content, failed = _tool_output(call)
            tool_id = self.correlation.close(call_id)
            if tool_id is not None:
                return assistant_tool_result(tool_id, content, is_error=failed)
            tool_id = CorrelationMap.mint()
            return assistant_message(
                ToolUseBlock(tool_use_id=tool_id, name=name, input=tool_input),
                ToolResultBlock(tool_use_id=tool_id, content=content, is_error=failed),
            )
        return None


def _assistant(event: dict[str, Any]) -> ProviderMessage | None:
    message = event.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        content = [{"type": "text", "text": content}]
    blocks = [
        TextBlock(text=str(block.get("text")))
        for block in content or []
        if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
    ]
    if not blocks:
        return None
    return assistant_message(*blocks, session_id=event.get("session_id") or None)


def _error(text: Any) -> ProviderMessage:
    info = classify_error(str(text) if text else None)
    if info.kind == "unknown":
        return error_message("Cursor agent reported an error")
    return error_message(info.message, kind=info.kind)


def _describe_tool(call: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Tool name and input from a ``tool_call`` payload."""
    function = call.get("function")
    if isinstance(function, dict):
        raw = function.get("arguments")
        try:
            arguments = json.loads(raw) if isinstance(raw, str) and raw else {}
        except json.JSONDecodeError:
            arguments = {"arguments": raw}
        if not isinstance(arguments, dict):
            arguments = {"arguments": arguments}
        return str(function.get("name") or "function"), arguments

    for key, value in call.items():
        if not key.endswith("ToolCall") or not isinstance(value, dict):
            continue
        args = value.get("args")
        tool_input = dict(args) if isinstance(args, dict) else {}
        tool_input.pop("toolCallId", None)
        base = key.removesuffix("ToolCall")
        return base[:1].upper() + base[1:], tool_input

    return "unknown", {}


def _tool_output(call: dict[str, Any]) -> tuple[str | None, bool]:
    """Result text of a completed tool call and whether it failed."""
    for key, value in call.items():
        if not isinstance(value, dict):
            continue
        result = value.get("result")
        if not isinstance(result, dict):
            continue
        if "error" in result:
            error = result["error"]
            if isinstance(error, dict):
                error = error.get("message") or error.get("error") or json.dumps(error)
            return str(error), True
        success = result.get("success")
        if isinstance(success, dict):
            if key == "readToolCall":
                return str(success.get("content") or ""), False
            if key == "writeToolCall":
                path = success.get("path") or ""
                lines = success.get("linesCreated")
                suffix = f" ({lines} lines)" if lines is not None else ""
                return f"Wrote {path}{suffix}", False
            if "content" in success:
                return str(success["content"]), False
            return json.dumps(success), False
        if success is not None:
            return str(success), False
    return None, False
