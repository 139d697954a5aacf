"""Tests for the Codex adapter: argument building, event mapping, paths."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conduit.config import CodexSettings, CredentialSnapshot
from conduit.errors import ProcessExitError, StallTimeoutError
from conduit.process import SubprocessRecord
from conduit.protocol import (
    ErrorMessage,
    ExecuteOptions,
    ResultMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from conduit.providers.codex import (
    CodexEventConverter,
    CodexProvider,
    is_cloud_storage_path,
    load_agent_instructions,
)
from conduit.providers.detection import CLIProbe

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _spawn(*events, fail: BaseException | None = None) -> MagicMock:
    """Stand-in for spawn_jsonl_process yielding *events* as records."""

    async def _records(*args, **kwargs):
        for seq, event in enumerate(events, start=1):
            yield SubprocessRecord(data=event, seq=seq)
        if fail is not None:
            raise fail

    return MagicMock(side_effect=_records)


async def _collect(provider: CodexProvider, **kwargs) -> list:
    kwargs.setdefault("prompt", "List files")
    options = ExecuteOptions(**kwargs)
    return [m async for m in provider.execute_query(options)]


def _args(spawn: MagicMock) -> list[str]:
    return spawn.call_args.args[1]


def _config_values(args: list[str]) -> list[str]:
    return [args[i + 1] for i, a in enumerate(args) if a == "--config"]


COMMAND_STARTED = {
    "type": "item.started",
    "item": {"id": "cmd-1", "type": "command_execution", "command": "ls"},
}
COMMAND_COMPLETED = {
    "type": "item.completed",
    "item": {
        "id": "cmd-1",
        "type": "command_execution",
        "command": "ls",
        "aggregated_output": "file1\nfile2",
        "exit_code": 0,
        "status": "completed",
    },
}


@pytest.fixture
def provider() -> CodexProvider:
    return CodexProvider(CodexSettings(cli_path="/usr/bin/codex"), CredentialSnapshot())


@pytest.fixture(autouse=True)
def _logged_in():
    with patch.object(CodexProvider, "has_cli_login", return_value=True):
        yield


# ------------------------------------------------------------------ #
# CLI path
# ------------------------------------------------------------------ #


class TestCliExecution:
    async def test_tool_pair_shares_correlation_id(
        self, provider: CodexProvider
    ) -> None:
        """A command start and completion share one tool id."""
        spawn = _spawn(COMMAND_STARTED, COMMAND_COMPLETED)
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            messages = await _collect(provider)

        assert len(messages) == 2
        use = messages[0].message.content[0]
        result = messages[1].message.content[0]
        assert isinstance(use, ToolUseBlock)
        assert use.name == "Bash"
        assert use.input == {"command": "ls"}
        assert isinstance(result, ToolResultBlock)
        assert result.tool_use_id == use.tool_use_id
        assert result.content == "file1\nfile2"
        assert result.is_error is False

    async def test_completion_without_start(self, provider: CodexProvider) -> None:
        """An orphan completion carries both use and result."""
        spawn = _spawn(COMMAND_COMPLETED)
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            messages = await _collect(provider)

        assert len(messages) == 1
        use, result = messages[0].message.content
        assert isinstance(use, ToolUseBlock)
        assert isinstance(result, ToolResultBlock)
        assert use.tool_use_id == result.tool_use_id

    async def test_base_args_and_stdin_prompt(self, provider: CodexProvider) -> None:
        """Base argument vector with the prompt on stdin."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(provider)

        assert spawn.call_args.args[0] == "/usr/bin/codex"
        args = _args(spawn)
        assert args[:5] == ["exec", "--model", "gpt-5.2", "--json", "--skip-git-repo-check"]
        assert "--full-auto" in args
        assert "--sandbox" not in args
        assert args[-1] == "-"
        assert spawn.call_args.kwargs["stdin_data"] == "List files"
        assert spawn.call_args.kwargs["env"] is None

    async def test_model_override(self, provider: CodexProvider) -> None:
        """The requested model is passed to --model."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(provider, model="gpt-5.1-codex")
        args = _args(spawn)
        assert args[args.index("--model") + 1] == "gpt-5.1-codex"

    async def test_bypass_flag(self, provider: CodexProvider) -> None:
        """The bypass setting replaces --full-auto."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(
                provider,
                backend_settings={"dangerously_bypass_approvals_and_sandbox": True},
            )
        args = _args(spawn)
        assert "--dangerously-bypass-approvals-and-sandbox" in args
        assert "--full-auto" not in args

    async def test_mcp_auto_approve(self, provider: CodexProvider) -> None:
        """MCP auto-approval forces approval_policy=never."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(
                provider,
                mcp_servers={"mock": {"type": "stdio", "command": "node"}},
                mcp_auto_approve_tools=True,
                backend_settings={"approval_policy": "untrusted"},
            )
        args = _args(spawn)
        first_config = args.index("--config")
        assert args[first_config + 1] == "approval_policy=never"
        assert first_config > args.index("exec")
        assert 'mcp_servers.mock.command="node"' in _config_values(args)

    async def test_approval_policy_from_settings(self, provider: CodexProvider) -> None:
        """The configured approval policy is passed through."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(provider, backend_settings={"approval_policy": "untrusted"})
        assert _config_values(_args(spawn))[0] == "approval_policy=untrusted"

    @pytest.mark.parametrize(
        ("allowed_tools", "web_search", "expected"),
        [
            (None, False, True),
            (["Read"], False, False),
            (["Read", "WebSearch"], False, True),
            (["Read"], True, True),
        ],
    )
    async def test_web_search_feature(
        self,
        provider: CodexProvider,
        allowed_tools: list[str] | None,
        web_search: bool,
        expected: bool,
    ) -> None:
        """Web search follows the setting and the tool list."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(
                provider,
                allowed_tools=allowed_tools,
                backend_settings={"web_search": web_search},
            )
        flag = "features.web_search_request=true"
        assert (flag in _config_values(_args(spawn))) is expected

    async def test_reasoning_and_overrides(self, provider: CodexProvider) -> None:
        """Reasoning effort and overrides become --config pairs."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(
                provider,
                backend_settings={
                    "reasoning_effort": "high",
                    "config_overrides": {"hide_agent_reasoning": True, "retries": 2},
                },
            )
        values = _config_values(_args(spawn))
        assert "model_reasoning_effort=high" in values
        assert "hide_agent_reasoning=true" in values
        assert "retries=2" in values

    async def test_cloud_storage_disables_sandbox(
        self, provider: CodexProvider
    ) -> None:
        """Cloud-synced folders force danger-full-access."""
        spawn = _spawn()
        cwd = str(Path.home() / "Dropbox" / "project")
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(provider, cwd=cwd)
        args = _args(spawn)
        assert args[args.index("--sandbox") + 1] == "danger-full-access"
        assert spawn.call_args.kwargs["cwd"] == cwd

    async def test_auto_load_agents(
        self,
        provider: CodexProvider,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """AGENTS.md files are prepended to the prompt."""
        home = tmp_path / "home"
        project = tmp_path / "project"
        (home / ".codex").mkdir(parents=True)
        (project / ".codex").mkdir(parents=True)
        (home / ".codex" / "AGENTS.md").write_text("User rules")
        (project / ".codex" / "AGENTS.md").write_text("Project rules")
        monkeypatch.setenv("HOME", str(home))

        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(
                provider,
                prompt="Hello",
                cwd=str(project),
                backend_settings={"auto_load_agents": True},
            )
        stdin = spawn.call_args.kwargs["stdin_data"]
        assert stdin.index("User rules") < stdin.index("Project rules")
        assert stdin.endswith("Hello")

    async def test_history_in_prompt(self, provider: CodexProvider) -> None:
        """History is flattened into the stdin prompt."""
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(
                provider,
                prompt="and double it?",
                conversation_history=[
                    {"role": "user", "content": "2+2?"},
                    {"role": "assistant", "content": "4"},
                ],
            )
        stdin = spawn.call_args.kwargs["stdin_data"]
        assert "User: 2+2?" in stdin
        assert "Assistant: 4" in stdin
        assert stdin.endswith("and double it?")

    async def test_api_key_forwarded_to_cli(self) -> None:
        """The API key is forwarded in the child environment."""
        provider = CodexProvider(
            CodexSettings(cli_path="/usr/bin/codex"),
            CredentialSnapshot(openai_api_key="sk-test"),
        )
        spawn = _spawn()
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            await _collect(provider, allowed_tools=["Read"])
        assert spawn.call_args.kwargs["env"] == {"OPENAI_API_KEY": "sk-test"}


# ------------------------------------------------------------------ #
# Failures
# ------------------------------------------------------------------ #


class TestFailures:
    async def test_not_authenticated(self, provider: CodexProvider) -> None:
        """No credential and no login fails before spawning."""
        spawn = _spawn()
        with (
            patch.object(CodexProvider, "has_cli_login", return_value=False),
            patch("conduit.providers.codex.spawn_jsonl_process", spawn),
        ):
            messages = await _collect(provider)

        assert len(messages) == 1
        assert isinstance(messages[0], ErrorMessage)
        assert "codex login" in messages[0].error
        assert messages[0].kind == "authentication"
        spawn.assert_not_called()

    async def test_cli_not_found(self) -> None:
        """A missing CLI yields one error without spawning."""
        provider = CodexProvider(CodexSettings(), CredentialSnapshot())
        spawn = _spawn()
        with (
            patch.object(CLIProbe, "locate", return_value=None),
            patch("conduit.providers.codex.spawn_jsonl_process", spawn),
        ):
            messages = await _collect(provider)

        assert len(messages) == 1
        assert "Codex CLI not found" in messages[0].error
        spawn.assert_not_called()

    async def test_process_exit_after_output(self, provider: CodexProvider) -> None:
        """A crash after output ends with an execution error."""
        agent = {
            "type": "item.completed",
            "item": {"id": "m1", "type": "agent_message", "text": "working"},
        }
        spawn = _spawn(agent, fail=ProcessExitError("codex", 2, "fatal: bad"))
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            messages = await _collect(provider)

        assert [m.type for m in messages] == ["assistant", "error"]
        assert "exited with code 2" in messages[1].error
        assert messages[1].kind == "execution"

    async def test_stall_ends_with_one_execution_error(
        self, provider: CodexProvider
    ) -> None:
        """A silent CLI ends the call with exactly one execution error."""
        spawn = _spawn(COMMAND_STARTED, fail=StallTimeoutError(0.1))
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            messages = await _collect(provider)

        assert [m.type for m in messages] == ["assistant", "error"]
        assert isinstance(messages[-1], ErrorMessage)
        assert messages[-1].kind == "execution"
        assert "no output for 0.1s" in messages[-1].error

    async def test_exit_failure_after_result_ignored(
        self, provider: CodexProvider
    ) -> None:
        """An exit failure after the result is not surfaced."""
        spawn = _spawn(
            {"type": "thread.completed"},
            fail=ProcessExitError("codex", 1),
        )
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            messages = await _collect(provider)
        assert [m.type for m in messages] == ["result"]

    async def test_events_after_result_dropped(self, provider: CodexProvider) -> None:
        """Events after the result are dropped."""
        late = {
            "type": "item.completed",
            "item": {"id": "m2", "type": "agent_message", "text": "late"},
        }
        spawn = _spawn({"type": "thread.completed"}, late)
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            messages = await _collect(provider)
        assert len(messages) == 1

    async def test_cancellation_mid_stream(self, provider: CodexProvider) -> None:
        """Cancelling mid-stream stops delivery without an error."""
        spawn = _spawn(COMMAND_STARTED, COMMAND_COMPLETED, {"type": "thread.completed"})
        options = ExecuteOptions(prompt="List files")
        seen = []
        with patch("conduit.providers.codex.spawn_jsonl_process", spawn):
            async for message in provider.execute_query(options):
                seen.append(message)
                options.cancel.cancel()
        assert len(seen) == 1
        assert not any(m.type == "error" for m in seen)


# ------------------------------------------------------------------ #
# Direct API path
# ------------------------------------------------------------------ #


class TestDirectPath:
    @staticmethod
    def _response(text: str) -> MagicMock:
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = text
        response.usage.prompt_tokens = 3
        response.usage.completion_tokens = 4
        return response

    async def test_no_tools_with_key_uses_api(self) -> None:
        """No tools plus an API key calls chat completions."""
        provider = CodexProvider(
            CodexSettings(cli_path="/usr/bin/codex"),
            CredentialSnapshot(openai_api_key="sk-test"),
        )
        spawn = _spawn()
        with (
            patch("conduit.providers.codex.AsyncOpenAI") as client_cls,
            patch("conduit.providers.codex.spawn_jsonl_process", spawn),
        ):
            create = AsyncMock(return_value=self._response("Hello from SDK"))
            client_cls.return_value.chat.completions.create = create
            messages = await _collect(provider, allowed_tools=[], system_prompt="sys")

        spawn.assert_not_called()
        client_cls.assert_called_once_with(api_key="sk-test")
        assert messages[0].message.content[0].text == "Hello from SDK"
        assert isinstance(messages[1], ResultMessage)
        assert messages[1].result == "Hello from SDK"
        assert messages[1].usage == {"input_tokens": 3, "output_tokens": 4}
        sent = create.call_args.kwargs
        assert sent["model"] == "gpt-5.2"
        assert sent["messages"][0] == {"role": "system", "content": "sys"}

    async def test_tools_with_key_use_cli(self) -> None:
        """Requesting tools always spawns the CLI."""
        provider = CodexProvider(
            CodexSettings(cli_path="/usr/bin/codex"),
            CredentialSnapshot(openai_api_key="sk-test"),
        )
        spawn = _spawn()
        with (
            patch("conduit.providers.codex.AsyncOpenAI") as client_cls,
            patch("conduit.providers.codex.spawn_jsonl_process", spawn),
        ):
            await _collect(provider, allowed_tools=["Bash"])
        spawn.assert_called_once()
        client_cls.assert_not_called()

    async def test_no_tools_without_key_uses_cli(self, provider: CodexProvider) -> None:
        """Without a key the CLI is used even with no tools."""
        spawn = _spawn()
        with (
            patch("conduit.providers.codex.AsyncOpenAI") as client_cls,
            patch("conduit.providers.codex.spawn_jsonl_process", spawn),
        ):
            await _collect(provider, allowed_tools=[])
        spawn.assert_called_once()
        client_cls.assert_not_called()

    async def test_api_failure_becomes_error(self) -> None:
        """An API exception becomes one error message."""
        provider = CodexProvider(
            CodexSettings(), CredentialSnapshot(openai_api_key="sk-test")
        )
        with patch("conduit.providers.codex.AsyncOpenAI") as client_cls:
            client_cls.return_value.chat.completions.create = AsyncMock(
                side_effect=RuntimeError("Incorrect API key provided")
            )
            messages = await _collect(provider, allowed_tools=[])
        assert len(messages) == 1
        assert messages[0].kind == "authentication"


# ------------------------------------------------------------------ #
# Event conversion
# ------------------------------------------------------------------ #


class TestEventConverter:
    def test_lifecycle_events_dropped(self) -> None:
        """Thread and turn lifecycle events produce nothing."""
        converter = CodexEventConverter()
        assert converter.convert({"type": "thread.started", "thread_id": "t"}) is None
        assert converter.convert({"type": "turn.started"}) is None
        assert converter.convert("not a dict") is None

    def test_result_carries_last_message_and_usage(self) -> None:
        """thread.completed carries the last message and usage."""
        converter = CodexEventConverter()
        converter.convert(
            {"type": "item.completed", "item": {"type": "agent_message", "text": "a"}}
        )
        converter.convert(
            {"type": "item.completed", "item": {"type": "agent_message", "text": "b"}}
        )
        assert (
            converter.convert(
                {"type": "turn.completed", "usage": {"input_tokens": 10, "output_tokens": 2}}
            )
            is None
        )
        result = converter.convert({"type": "thread.completed"})
        assert isinstance(result, ResultMessage)
        assert result.result == "b"
        assert result.usage == {"input_tokens": 10, "output_tokens": 2}

    def test_reasoning_becomes_thinking(self) -> None:
        """Reasoning items become thinking blocks."""
        msg = CodexEventConverter().convert(
            {"type": "item.completed", "item": {"type": "reasoning", "text": "hmm"}}
        )
        assert msg.message.content == [ThinkingBlock(thinking="hmm")]

    def test_empty_reasoning_still_thinking(self) -> None:
        """An empty reasoning item still yields a thinking block."""
        msg = CodexEventConverter().convert(
            {"type": "item.completed", "item": {"type": "reasoning"}}
        )
        assert msg.message.content == [ThinkingBlock(thinking="")]

    def test_tool_use_and_result_items_keep_native_id(self) -> None:
        """A tool_use_id on the item becomes the correlation id."""
        converter = CodexEventConverter()
        use = converter.convert(
            {
                "type": "item.completed",
                "item": {
                    "type": "tool_use",
                    "tool_use_id": "call_7",
                    "tool": "grep",
                    "input": {"pattern": "TODO"},
                },
            }
        ).message.content[0]
        result = converter.convert(
            {
                "type": "item.completed",
                "item": {"type": "tool_result", "tool_use_id": "call_7", "output": "a.py:3"},
            }
        ).message.content[0]

        assert isinstance(use, ToolUseBlock)
        assert use.tool_use_id == "call_7"
        assert use.name == "grep"
        assert use.input == {"pattern": "TODO"}
        assert isinstance(result, ToolResultBlock)
        assert result.tool_use_id == "call_7"
        assert result.content == "a.py:3"
        assert len(converter.correlation) == 0

    def test_tool_use_item_mints_id(self) -> None:
        """Without a tool_use_id an id is minted per item id."""
        converter = CodexEventConverter()
        use = converter.convert(
            {
                "type": "item.completed",
                "item": {"id": "t1", "type": "tool_use", "command": "ls", "args": "bad"},
            }
        ).message.content[0]
        result = converter.convert(
            {
                "type": "item.completed",
                "item": {"type": "tool_result", "tool_use_id": "t1", "result": 3},
            }
        ).message.content[0]

        assert use.tool_use_id.startswith("toolu_")
        assert use.name == "ls"
        assert use.input == {}
        assert result.tool_use_id == use.tool_use_id
        assert result.content == "3"

    def test_tool_result_item_without_any_id(self) -> None:
        """An anonymous tool result carries its own use block."""
        msg = CodexEventConverter().convert(
            {
                "type": "item.completed",
                "item": {"type": "tool_result", "output": "done", "status": "failed"},
            }
        )
        use, result = msg.message.content
        assert use.name == "unknown"
        assert result.tool_use_id == use.tool_use_id
        assert result.is_error is True

    def test_failed_command_is_error_result(self) -> None:
        """A non-zero exit code marks the result as an error."""
        converter = CodexEventConverter()
        converter.convert(COMMAND_STARTED)
        completed = {
            "type": "item.completed",
            "item": {
                "id": "cmd-1",
                "type": "command_execution",
                "aggregated_output": "no such file",
                "exit_code": 2,
            },
        }
        block = converter.convert(completed).message.content[0]
        assert isinstance(block, ToolResultBlock)
        assert block.is_error is True

    def test_mcp_tool_call(self) -> None:
        """MCP calls become namespaced tool pairs."""
        converter = CodexEventConverter()
        started = converter.convert(
            {
                "type": "item.started",
                "item": {
                    "id": "m1",
                    "type": "mcp_tool_call",
                    "server": "docs",
                    "tool": "search",
                    "arguments": {"q": "x"},
                },
            }
        )
        completed = converter.convert(
            {
                "type": "item.completed",
                "item": {
                    "id": "m1",
                    "type": "mcp_tool_call",
                    "server": "docs",
                    "tool": "search",
                    "result": {"content": [{"type": "text", "text": "hit"}]},
                    "status": "completed",
                },
            }
        )
        use = started.message.content[0]
        result = completed.message.content[0]
        assert use.name == "mcp__docs__search"
        assert use.input == {"q": "x"}
        assert result.tool_use_id == use.tool_use_id
        assert result.content == [{"type": "text", "text": "hit"}]

    def test_web_search(self) -> None:
        """Web searches become WebSearch tool pairs."""
        converter = CodexEventConverter()
        item = {"id": "w1", "type": "web_search", "query": "python"}
        use = converter.convert({"type": "item.started", "item": item})
        done = converter.convert({"type": "item.completed", "item": item})
        assert use.message.content[0].name == "WebSearch"
        assert done.message.content[0].content == "Searched: python"

    def test_todo_lists(self) -> None:
        """Todo lists render as numbered text."""
        converter = CodexEventConverter()
        todos = {
            "type": "todo_list",
            "items": [
                {"text": "write tests", "completed": True},
                {"text": "ship", "completed": False},
            ],
        }
        started = converter.convert({"type": "item.started", "item": todos})
        updated = converter.convert({"type": "item.updated", "item": todos})
        assert started.message.content[0].text == (
            "**Todo List:**\n1. write tests\n2. ship"
        )
        assert updated.message.content[0].text == (
            "**Updated Todo List:**\n1. [✓] write tests\n2. [ ] ship"
        )

    def test_file_changes(self) -> None:
        """File changes render as a summary."""
        msg = CodexEventConverter().convert(
            {
                "type": "item.completed",
                "item": {
                    "type": "file_change",
                    "changes": [
                        {"path": "a.py", "kind": "add"},
                        {"path": "b.py", "kind": "update"},
                        {"path": "c.py", "kind": "delete"},
                    ],
                },
            }
        )
        assert msg.message.content[0].text == (
            "**File Changes:**\n- Added: a.py\n- Modified: b.py\n- Deleted: c.py"
        )

    def test_item_error_is_text(self) -> None:
        """Item-level errors are informational text."""
        msg = CodexEventConverter().convert(
            {"type": "item.completed", "item": {"type": "error", "message": "retrying"}}
        )
        assert msg.message.content[0].text == "Error: retrying"

    def test_turn_failed(self) -> None:
        """turn.failed is a terminal error."""
        converter = CodexEventConverter()
        msg = converter.convert(
            {"type": "turn.failed", "error": {"message": "stream disconnected"}}
        )
        assert isinstance(msg, ErrorMessage)
        assert msg.error == "stream disconnected"
        assert converter.convert({"type": "turn.failed"}).error == "Codex turn failed"

    def test_error_events(self) -> None:
        """Error events are classified."""
        converter = CodexEventConverter()
        auth = converter.convert({"type": "error", "message": "401 Unauthorized"})
        assert auth.kind == "authentication"
        blank = converter.convert({"type": "error"})
        assert blank.error == "Unknown error from Codex CLI"

    def test_unknown_events(self) -> None:
        """Unknown events fall back to their text, if any."""
        converter = CodexEventConverter()
        text = converter.convert({"type": "progress", "text": "50%"})
        assert text.message.content == [TextBlock(text="50%")]
        assert converter.convert({"type": "progress"}) is None


class TestHelpers:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("~/Dropbox/project", True),
            ("/Users/u/Library/CloudStorage/OneDrive-Work/x", True),
            ("/Users/u/Library/Mobile Documents/com~apple~CloudDocs", True),
            ("/home/u/src/project", False),
        ],
    )
    def test_cloud_storage_detection(self, path: str, expected: bool) -> None:
        """Cloud-synced folders are recognised by path."""
        assert is_cloud_storage_path(path) is expected

    def test_agent_instructions_skip_missing_and_unreadable(
        self, tmp_path: Path
    ) -> None:
        """Missing and unreadable AGENTS.md files are skipped."""
        home = tmp_path / "home"
        project = tmp_path / "project"
        (home / ".codex" / "AGENTS.md").mkdir(parents=True)
        (project / ".codex").mkdir(parents=True)
        (project / ".codex" / "AGENTS.md").write_text("  Project rules\n")

        assert load_agent_instructions(str(project), home=home) == ["Project rules"]
        assert load_agent_instructions(None, home=tmp_path / "nobody") == []
