from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _normalize_term_list(values: list[str], *, allow_empty: bool) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()

    for item in values:
        term = (item or "").strip()
        if not term:
            continue
        key = term.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(term)

    if not allow_empty and not out:
        raise ValueError("must contain at least one non-empty entry")
    return out


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
PositiveFloat = Annotated[float, Field(gt=0)]
NonNegativeFloat = Annotated[float, Field(ge=0)]


class ProvidersConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rapidapi_key_env: str = "RAPIDAPI_KEY"
    apify_token_env: str = "APIFY_TOKEN"
    apify_actor: str = "apify~instagram-scraper"
    timeout_seconds: PositiveFloat = 15.0

    @field_validator("rapidapi_key_env", "apify_token_env")
    @classmethod
    def _env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)


class TranslationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_chunk_chars: PositiveInt = 4500
    chunk_delay_seconds: NonNegativeFloat = 0.2
    default_target: str = "ru"
    public_endpoint: str = "https://translate.googleapis.com/translate_a/single"
    timeout_seconds: PositiveFloat = 20.0

    @field_validator("default_target")
    @classmethod
    def _target_must_be_non_empty(cls, v: str) -> str:
        lang = (v or "").strip()
        if not lang:
            raise ValueError("must be a non-empty language code")
        return lang


class GenerativeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api_key_env: str = "OPENROUTER_API_KEY"
    base_url: str = "https://openrouter.ai/api/v1"
    models: list[str] = Field(
        default_factory=lambda: [
            "google/gemini-2.5-flash",
            "google/gemini-3-flash-preview",
            "google/gemini-3-pro-preview",
        ]
    )
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    max_output_tokens: PositiveInt = 8192

    @field_validator("api_key_env")
    @classmethod
    def _api_key_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("models")
    @classmethod
    def _normalize_models(cls, v: list[str]) -> list[str]:
        return _normalize_term_list(v, allow_empty=False)


class RelayConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    allowed_hosts: list[str] = Field(
        default_factory=lambda: [
            "cdninstagram.com",
            "fbcdn.net",
            "scontent",
            "cdn.fbsbx.com",
        ]
    )
    user_agent: str = "Mozilla/5.0 (compatible; VideoProxy/1.0)"
    connect_timeout_seconds: PositiveFloat = 10.0

    @field_validator("allowed_hosts")
    @classmethod
    def _normalize_hosts(cls, v: list[str]) -> list[str]:
        return [h.casefold().strip(".") for h in _normalize_term_list(v, allow_empty=False)]


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str | None = None
    level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"


class CorsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    allow_origins: list[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)
    generative: GenerativeConfig = Field(default_factory=GenerativeConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
