from conduit.config.credentials import CredentialSnapshot
from conduit.config.models import (
    ClaudeSettings,
    CodexSettings,
    ConduitSettings,
    CursorSettings,
)
from conduit.config.parser import ConfigError, load_settings

__all__ = [
    "ClaudeSettings",
    "CodexSettings",
    "ConduitSettings",
    "ConfigError",
    "CredentialSnapshot",
    "CursorSettings",
    "load_settings",
]
