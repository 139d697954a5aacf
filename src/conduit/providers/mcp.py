"""Render auxiliary tool-server (MCP) definitions for each CLI.

Tool servers are optional.  A definition that cannot be validated or
rendered is logged and skipped; it never fails the execution.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from conduit.protocol.models import McpServerConfig

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def parse_servers(
    raw: Mapping[str, McpServerConfig | dict[str, Any]],
) -> dict[str, McpServerConfig]:
    """Validate tool-server definitions, dropping the invalid ones."""
    servers: dict[str, McpServerConfig] = {}
    for name, cfg in raw.items():
        if isinstance(cfg, McpServerConfig):
            servers[name] = cfg
            continue
        try:
            servers[name] = McpServerConfig.model_validate(cfg)
        except ValidationError as exc:
            logger.warning("skipping MCP server %r: %s", name, exc.errors()[0]["msg"])
    return servers


def codex_config_pairs(servers: Mapping[str, McpServerConfig]) -> list[str]:
    """``key=value`` pairs for ``codex exec --config`` (values are TOML)."""
    pairs: list[str] = []
    for name, cfg in servers.items():
        try:
            pairs.extend(_codex_server_pairs(name, cfg))
        except ValueError as exc:
            logger.warning("skipping MCP server %r for codex: %s", name, exc)
    return pairs


def _codex_server_pairs(name: str, cfg: McpServerConfig) -> list[str]:
    if not _SAFE_NAME_RE.match(name):
        msg = f"server name must match {_SAFE_NAME_RE.pattern}"
        raise ValueError(msg)
    prefix = f"mcp_servers.{name}"

    if cfg.type == "stdio":
        if not cfg.command:
            msg = "stdio server requires a command"
            raise ValueError(msg)
        pairs = [f"{prefix}.command={json.dumps(cfg.command)}"]
        if cfg.args:
            pairs.append(f"{prefix}.args={json.dumps(cfg.args)}")
        if cfg.env:
            pairs.append(f"{prefix}.env={_toml_inline_table(cfg.env)}")
        return pairs

    if cfg.type == "http":
        if not cfg.url:
            msg = "http server requires a url"
            raise ValueError(msg)
        pairs = [f"{prefix}.url={json.dumps(cfg.url)}"]
        if cfg.headers:
            pairs.append(f"{prefix}.http_headers={_toml_inline_table(cfg.headers)}")
        return pairs

    msg = f"codex does not support {cfg.type!r} servers"
    raise ValueError(msg)


def _toml_inline_table(values: Mapping[str, str]) -> str:
    items = ", ".join(f"{json.dumps(k)} = {json.dumps(v)}" for k, v in values.items())
    return "{" + items + "}"


def claude_mcp_config(servers: Mapping[str, McpServerConfig]) -> str | None:
    """JSON document for ``claude --mcp-config``, or None if nothing is valid."""
    rendered: dict[str, dict[str, Any]] = {}
    for name, cfg in servers.items():
        if cfg.type == "stdio":
            if not cfg.command:
                logger.warning("skipping MCP server %r for claude: no command", name)
                continue
            entry: dict[str, Any] = {"type": "stdio", "command": cfg.command}
            if cfg.args:
                entry["args"] = cfg.args
            if cfg.env:
                entry["env"] = cfg.env
        else:
            if not cfg.url:
                logger.warning("skipping MCP server %r for claude: no url", name)
                continue
            entry = {"type": cfg.type, "url": cfg.url}
            if cfg.headers:
                entry["headers"] = cfg.headers
        rendered[name] = entry

    if not rendered:
        return None
    return json.dumps({"mcpServers": rendered})
