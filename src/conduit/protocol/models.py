"""Pydantic v2 models for the canonical provider message protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
)

from conduit.protocol.cancellation import CancellationHandle

if TYPE_CHECKING:
    from collections.abc import Sequence

# --------------------------------------------------------------------------- #
# Content blocks
# --------------------------------------------------------------------------- #


class _BlockBase(BaseModel):
    """Common configuration for every content block."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class TextBlock(_BlockBase):
    """Plain assistant or user text."""

    type: Literal["text"] = "text"
    text: str = Field(description="Text content")


class ThinkingBlock(_BlockBase):
    """Reasoning output the backend chose to expose."""

    type: Literal["thinking"] = "thinking"
    thinking: str = Field(description="Reasoning text")


class ToolUseBlock(_BlockBase):
    """A tool invocation; ``tool_use_id`` is the correlation id."""

    type: Literal["tool_use"] = "tool_use"
    tool_use_id: str = Field(description="Correlation id shared with the result")
    name: str = Field(description="Tool name")
    input: dict[str, Any] = Field(default_factory=dict, description="Tool input")


class ToolResultBlock(_BlockBase):
    """Outcome of a tool invocation, correlated by ``tool_use_id``."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = Field(description="Correlation id of the matching tool_use")
    content: str | list[dict[str, Any]] | None = Field(
        default=None,
        description="Tool output",
    )
    is_error: bool = Field(default=False, description="Whether the tool failed")


class ImageSource(_BlockBase):
    """Inline base64 image payload."""

    type: Literal["base64"] = "base64"
    media_type: str = Field(description="MIME type, e.g. image/png")
    data: str = Field(description="Base64-encoded image bytes")


class ImageBlock(_BlockBase):
    """An image attached to a prompt or produced by a backend."""

    type: Literal["image"] = "image"
    source: ImageSource


def _type_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


ContentBlock = Annotated[
    Annotated[TextBlock, Tag("text")]
    | Annotated[ThinkingBlock, Tag("thinking")]
    | Annotated[ToolUseBlock, Tag("tool_use")]
    | Annotated[ToolResultBlock, Tag("tool_result")]
    | Annotated[ImageBlock, Tag("image")],
    Discriminator(_type_discriminator),
]
"""Discriminated union of all content block types."""

# --------------------------------------------------------------------------- #
# Provider messages
# --------------------------------------------------------------------------- #


class _MessageBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class MessageBody(BaseModel):
    """Role-tagged content carried by ``user`` and ``assistant`` messages."""

    model_config = ConfigDict(extra="forbid")

    role: Literal["user", "assistant"]
    content: list[ContentBlock] = Field(default_factory=list)


class UserMessage(_MessageBase):
    """A user-authored turn echoed by the backend (e.g. tool results)."""

    type: Literal["user"] = "user"
    message: MessageBody
    session_id: str | None = None


class AssistantMessage(_MessageBase):
    """An assistant turn made of ordered content blocks."""

    type: Literal["assistant"] = "assistant"
    message: MessageBody
    session_id: str | None = None


class SystemMessage(_MessageBase):
    """Backend housekeeping, e.g. session initialisation."""

    type: Literal["system"] = "system"
    subtype: str = Field(default="init")
    session_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class ResultMessage(_MessageBase):
    """Terminal success marker with the final answer, if any."""

    type: Literal["result"] = "result"
    subtype: Literal["success"] = "success"
    result: str = Field(default="")
    session_id: str | None = None
    usage: dict[str, int] | None = None


ErrorKind = Literal["authentication", "cancellation", "execution", "unknown"]


class ErrorMessage(_MessageBase):
    """Terminal failure marker.

    ``kind`` is advisory metadata for in-process consumers and is not part
    of the serialized wire shape.
    """

    type: Literal["error"] = "error"
    error: str = Field(description="Human-readable failure description")
    kind: ErrorKind = Field(default="unknown", exclude=True)


ProviderMessage = Annotated[
    Annotated[UserMessage, Tag("user")]
    | Annotated[AssistantMessage, Tag("assistant")]
    | Annotated[SystemMessage, Tag("system")]
    | Annotated[ResultMessage, Tag("result")]
    | Annotated[ErrorMessage, Tag("error")],
    Discriminator(_type_discriminator),
]
"""Discriminated union of every message a provider may emit."""

_PROVIDER_MESSAGE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ProviderMessage)


def parse_provider_message(data: Any) -> ProviderMessage:
    """Validate a raw dict (or JSON-compatible value) as a ProviderMessage."""
    return _PROVIDER_MESSAGE_ADAPTER.validate_python(data)


def is_terminal(message: ProviderMessage) -> bool:
    """Return True for messages that end an execution (result / error)."""
    return message.type in ("result", "error")


def assistant_message(*blocks: Any, session_id: str | None = None) -> AssistantMessage:
    """Build an assistant message from content blocks."""
    return AssistantMessage(
        message=MessageBody(role="assistant", content=list(blocks)),
        session_id=session_id,
    )


def assistant_text(text: str) -> AssistantMessage:
    return assistant_message(TextBlock(text=text))


def assistant_thinking(thinking: str) -> AssistantMessage:
    return assistant_message(ThinkingBlock(thinking=thinking))


def assistant_tool_use(
    tool_use_id: str, name: str, tool_input: dict[str, Any] | None = None
) -> AssistantMessage:
    return assistant_message(
        ToolUseBlock(tool_use_id=tool_use_id, name=name, input=tool_input or {})
    )


def assistant_tool_result(
    tool_use_id: str,
    content: str | list[dict[str, Any]] | None,
    *,
    is_error: bool = False,
) -> AssistantMessage:
    return assistant_message(
        ToolResultBlock(tool_use_id=tool_use_id, content=content, is_error=is_error)
    )


def result_success(result: str = "", **kwargs: Any) -> ResultMessage:
    return ResultMessage(result=result, **kwargs)


def error_message(error: str, kind: ErrorKind = "execution") -> ErrorMessage:
    return ErrorMessage(error=error, kind=kind)


# --------------------------------------------------------------------------- #
# Requests and catalog entries
# --------------------------------------------------------------------------- #


class ConversationMessage(BaseModel):
    """One prior turn of caller-owned conversation history."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]


class McpServerConfig(BaseModel):
    """An auxiliary tool server a backend may be pointed at."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["stdio", "http", "sse"] = "stdio"
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


PromptInput = str | list[dict[str, Any]] | list[ContentBlock]


@dataclass
class ExecuteOptions:
    """A single execution request.

    ``allowed_tools`` distinguishes ``None`` (unset, backend defaults apply)
    from ``[]`` (explicitly no tools).  ``backend_settings`` holds per-call
    overrides for the target backend's settings section and takes precedence
    over the matching top-level options.
    """

    prompt: PromptInput
    model: str | None = None
    cwd: str | None = None
    system_prompt: str | None = None
    conversation_history: Sequence[ConversationMessage | dict[str, Any]] = ()
    allowed_tools: list[str] | None = None
    max_turns: int | None = None
    mcp_servers: dict[str, McpServerConfig | dict[str, Any]] = field(
        default_factory=dict
    )
    mcp_auto_approve_tools: bool = False
    backend_settings: dict[str, Any] = field(default_factory=dict)
    cancel: CancellationHandle = field(default_factory=CancellationHandle)

    def history(self) -> list[ConversationMessage]:
        """Return the conversation history as validated models."""
        return [
            m if isinstance(m, ConversationMessage)
            else ConversationMessage.model_validate(m)
            for m in self.conversation_history
        ]


class InstallationStatus(BaseModel):
    """Result of probing a backend's installation and credentials."""

    model_config = ConfigDict(frozen=True)

    installed: bool
    path: str | None = None
    version: str | None = None
    method: Literal["cli", "npm", "brew", "sdk", "login", "none"] = "none"
    has_credential: bool = False
    authenticated: bool = False
    error: str | None = None


class ModelDefinition(BaseModel):
    """Static catalog entry for a model a provider can run."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    provider: str
    description: str = ""
    context_window: int
    max_output_tokens: int
    supports_vision: bool
    supports_tools: bool
    tier: Literal["basic", "standard", "premium"]
    is_default: bool = False
