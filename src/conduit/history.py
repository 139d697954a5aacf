"""Convert caller history + a new prompt into backend-specific input shapes."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from conduit.constants import PROMPT_SEPARATOR
from conduit.protocol.models import ConversationMessage, PromptInput

logger = logging.getLogger(__name__)


def normalize_content_blocks(content: PromptInput) -> list[dict[str, Any]]:
    """Return *content* as a list of plain block dicts, preserving order."""
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    blocks: list[dict[str, Any]] = []
    for block in content:
        if isinstance(block, BaseModel):
            blocks.append(block.model_dump(mode="json"))
        elif isinstance(block, dict):
            blocks.append(dict(block))
    return blocks


def extract_text(content: PromptInput) -> str:
    """Concatenate the text blocks of *content*; image blocks are dropped."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    dropped = 0
    for block in normalize_content_blocks(content):
        if block.get("type") == "text":
            parts.append(str(block.get("text") or ""))
        elif block.get("type") == "image":
            dropped += 1
    if dropped:
        logger.debug("dropped %d image block(s) for a text-only backend", dropped)
    return "\n".join(parts)


def format_history_as_text(history: Sequence[ConversationMessage]) -> str:
    """Render history as a ``User:`` / ``Assistant:`` transcript, newest last."""
    if not history:
        return ""
    turns = [
        f"{'User' if msg.role == 'user' else 'Assistant'}: {extract_text(msg.content)}"
        for msg in history
    ]
    return "Previous conversation:\n\n" + "\n\n".join(turns) + PROMPT_SEPARATOR


def build_text_prompt(
    prompt: PromptInput,
    history: Sequence[ConversationMessage] = (),
    system_prompt: str | None = None,
    instructions: Sequence[str] = (),
) -> str:
    """Build a single text blob for backends that take one prompt string.

    Layout: system prompt and instruction files, then the history
    transcript, then the new request.  The result always ends with the
    literal prompt text; with no history and no preamble it *is* the prompt.
    """
    text = extract_text(prompt)

    preamble = [p.strip() for p in (system_prompt, *instructions) if p and p.strip()]

    if history:
        text = f"{format_history_as_text(history)}Current request:\n{text}"
    if preamble:
        text = PROMPT_SEPARATOR.join([*preamble, text])
    return text


def build_prompt_record(
    prompt: PromptInput,
    history: Sequence[ConversationMessage] = (),
) -> dict[str, Any]:
    """Build the single stream-json user record for a new turn.

    Every user record on a stream-json stdin starts a turn of its own, so
    history travels inside the one record as a leading transcript block.
    Assistant turns survive as transcript text and prompt images are kept.
    """
    content = normalize_content_blocks(prompt)
    if history:
        transcript = f"{format_history_as_text(history)}Current request:"
        content.insert(0, {"type": "text", "text": transcript})
    return {
        "type": "user",
        "session_id": "",
        "message": {"role": "user", "content": content},
        "parent_tool_use_id": None,
    }


def encode_jsonl(records: Sequence[dict[str, Any]]) -> str:
    return "".join(json.dumps(record) + "\n" for record in records)


def to_anthropic_messages(
    prompt: PromptInput,
    history: Sequence[ConversationMessage] = (),
) -> list[dict[str, Any]]:
    """Role-tagged messages for the Anthropic Messages API.

    Consecutive turns from the same role are merged, and a leading
    assistant turn is dropped, because the API requires alternating roles
    starting with ``user``.
    """
    messages: list[dict[str, Any]] = []
    turns = [(m.role, m.content) for m in history]
    turns.append(("user", prompt))
    for role, content in turns:
        blocks = [_to_anthropic_block(b) for b in normalize_content_blocks(content)]
        blocks = [b for b in blocks if b is not None]
        if not blocks:
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})
    return messages


def _to_anthropic_block(block: dict[str, Any]) -> dict[str, Any] | None:
    match block.get("type"):
        case "text":
            return {"type": "text", "text": str(block.get("text") or "")}
        case "image":
            return {"type": "image", "source": block.get("source", {})}
        case _:
            return None


def to_openai_messages(
    prompt: PromptInput,
    history: Sequence[ConversationMessage] = (),
    system_prompt: str | None = None,
) -> list[dict[str, str]]:
    """Text-only chat messages for OpenAI-style chat completion APIs."""
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for msg in history:
        text = extract_text(msg.content)
        if text:
            messages.append({"role": msg.role, "content": text})
    messages.append({"role": "user", "content": extract_text(prompt)})
    return messages
