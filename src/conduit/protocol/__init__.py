"""Canonical message protocol shared by every provider."""

from conduit.protocol.cancellation import CancellationHandle
from conduit.protocol.models import (
    AssistantMessage,
    ContentBlock,
    ConversationMessage,
    ErrorKind,
    ErrorMessage,
    ExecuteOptions,
    ImageBlock,
    ImageSource,
    InstallationStatus,
    McpServerConfig,
    MessageBody,
    ModelDefinition,
    ProviderMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    assistant_message,
    assistant_text,
    assistant_thinking,
    assistant_tool_result,
    assistant_tool_use,
    error_message,
    is_terminal,
    parse_provider_message,
    result_success,
)

__all__ = [
    "AssistantMessage",
    "CancellationHandle",
    "ContentBlock",
    "ConversationMessage",
    "ErrorKind",
    "ErrorMessage",
    "ExecuteOptions",
    "ImageBlock",
    "ImageSource",
    "InstallationStatus",
    "McpServerConfig",
    "MessageBody",
    "ModelDefinition",
    "ProviderMessage",
    "ResultMessage",
    "SystemMessage",
    "TextBlock",
    "ThinkingBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "UserMessage",
    "assistant_message",
    "assistant_text",
    "assistant_thinking",
    "assistant_tool_result",
    "assistant_tool_use",
    "error_message",
    "is_terminal",
    "parse_provider_message",
    "result_success",
]
