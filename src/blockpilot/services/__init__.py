"""Configuration and persistence services."""

from .session_store import SessionStore
from .settings import SecretVault, Settings, SettingsStore

__all__ = ["SecretVault", "SessionStore", "Settings", "SettingsStore"]
