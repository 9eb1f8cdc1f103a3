from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError

CONFIG_PATH_ENV = "REEL_GATEWAY_CONFIG"


@dataclass(frozen=True, repr=False)
class RuntimeSecrets:
    rapidapi_key: str
    apify_token: str | None = None
    generative_api_key: str | None = None

    def __repr__(self) -> str:
        # Keep secrets out of tracebacks and log lines.
        return (
            "RuntimeSecrets(rapidapi_key=***, "
            f"apify_token={'***' if self.apify_token else None}, "
            f"generative_api_key={'***' if self.generative_api_key else None})"
        )


def _read_mapping(p: Path) -> Mapping[str, Any]:
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")

    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {p}: {e.strerror or e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {p} is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {p} must contain a mapping at the top level")
    return data


def load_config(
    path: str | Path | None = None, *, environ: Mapping[str, str] | None = None
) -> AppConfig:
    """
    Load the YAML config into a validated AppConfig.

    With no path, `$REEL_GATEWAY_CONFIG` is used when set; otherwise every section
    takes its defaults. Problems are raised as ConfigError listing each bad key.
    """
    if path is None:
        env = os.environ if environ is None else environ
        path = (env.get(CONFIG_PATH_ENV) or "").strip() or None
    if path is None:
        return AppConfig()

    p = Path(path)
    data = _read_mapping(p)
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_describe_validation_error(e, p)) from e


def _env_value(env: Mapping[str, str], name: str) -> str | None:
    value = (env.get(name) or "").strip()
    return value or None


def resolve_runtime_secrets(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> RuntimeSecrets:
    """
    Read credentials from the environment.

    The RapidAPI key is required; there is no built-in fallback key. The Apify
    token and the generative-text key are optional and switch features on.
    """
    env = os.environ if environ is None else environ

    rapidapi_env = config.providers.rapidapi_key_env
    rapidapi_key = _env_value(env, rapidapi_env)
    if rapidapi_key is None:
        raise ConfigError(f"Missing required environment variables: {rapidapi_env}")

    return RuntimeSecrets(
        rapidapi_key=rapidapi_key,
        apify_token=_env_value(env, config.providers.apify_token_env),
        generative_api_key=_env_value(env, config.generative.api_key_env),
    )


def _describe_validation_error(err: ValidationError, path: Path) -> str:
    problems = sorted(
        {
            f"  {'.'.join(map(str, item.get('loc', ()))) or '(top level)'}: "
            f"{item.get('msg', 'invalid value')}"
            for item in err.errors()
        }
    )
    return "\n".join([f"Config file {path} has {len(problems)} problem(s):", *problems])
