from __future__ import annotations

from .config import RuntimeSecrets, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError
from .media import CanonicalMediaRecord, MediaQuery

__all__ = [
    "AppConfig",
    "CanonicalMediaRecord",
    "ConfigError",
    "MediaQuery",
    "RuntimeSecrets",
    "load_config",
    "resolve_runtime_secrets",
]
