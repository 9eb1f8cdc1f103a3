from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import httpx
from openai import AsyncOpenAI

from .config_schema import GenerativeConfig, TranslationConfig
from .errors import InvalidQueryError, TranslationError
from .event_log import EventLogger, truncate
from .openai_errors import extract_status_code, is_model_fallback_exception
from .segmenter import chunk_text

SleepFn = Callable[[float], Awaitable[None]]

AUTO_LANGUAGE = "auto"

_SYSTEM_INSTRUCTIONS = """\
You are a professional translator for short-form video scripts and captions.

Translate the user's text into the target language given below.
- Preserve meaning, tone, line breaks, emoji, @mentions and #hashtags.
- Do not add commentary, notes, quotes or a preamble.
- Output ONLY the translated text.
"""


class ChunkTranslator(Protocol):
    async def translate_chunk(
        self, text: str, *, source: str, target: str
    ) -> ChunkTranslation: ...


class _ChatCompletionsAPI(Protocol):
    async def create(self, **kwargs: Any) -> Any: ...


class _ChatAPI(Protocol):
    completions: _ChatCompletionsAPI


class _ChatClient(Protocol):
    chat: _ChatAPI


@dataclass(frozen=True)
class ChunkTranslation:
    text: str
    detected_source: str | None = None


@dataclass(frozen=True)
class TranslatedText:
    original: str
    translated: str
    source: str
    target: str
    backend: str
    chunk_count: int = 1
    failed_chunks: int = 0


def _extract_gtx_translation(data: Any) -> str:
    segments = data[0] if isinstance(data, list) and data else None
    if not isinstance(segments, list):
        return ""

    parts: list[str] = []
    for seg in segments:
        if isinstance(seg, list) and seg and isinstance(seg[0], str):
            parts.append(seg[0])
    return "".join(parts)


def _extract_gtx_language(data: Any) -> str | None:
    if isinstance(data, list) and len(data) > 2 and isinstance(data[2], str):
        lang = data[2].strip()
        return lang or None
    return None


class PublicTranslateClient:
    """
    Keyless public translation endpoint (the `client=gtx` web API).

    One HTTP call per chunk; the caller is responsible for size limits and pacing.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        endpoint: str,
        timeout_seconds: float,
    ) -> None:
        self._client = client
        self._endpoint = endpoint
        self._timeout = float(timeout_seconds)

    async def _call(self, text: str, *, source: str, target: str) -> Any:
        params = {"client": "gtx", "sl": source, "tl": target, "dt": "t"}
        try:
            response = await self._client.post(
                self._endpoint,
                params=params,
                data={"q": text},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise TranslationError(f"Translation request failed ({type(e).__name__})") from e

        if not response.is_success:
            raise TranslationError(
                f"Translation endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TranslationError("Translation endpoint returned invalid JSON") from e

    async def translate_chunk(
        self, text: str, *, source: str, target: str
    ) -> ChunkTranslation:
        data = await self._call(text, source=source, target=target)
        translated = _extract_gtx_translation(data)
        if not translated.strip():
            raise TranslationError("Translation endpoint returned no text")
        # With sl=auto the response carries the detected source language.
        return ChunkTranslation(translated, _extract_gtx_language(data))


def _extract_message_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    for choice in choices:
        message = getattr(choice, "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str) and content.strip():
            return content.strip()

    raise TranslationError("Generative response did not include message text")


class GenerativeTranslator:
    """
    Whole-text translation through an OpenAI-compatible chat endpoint.

    Models are tried in configured order; the next model is used only when the
    previous one failed transiently (rate limit, 5xx, timeout, connection).
    """

    def __init__(
        self,
        api_key: str,
        *,
        generative_cfg: GenerativeConfig,
        client: _ChatClient | None = None,
        logger: EventLogger | None = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ValueError("api_key must be a non-empty string")

        self._cfg = generative_cfg
        self._logger = logger
        self._client: _ChatClient = client or AsyncOpenAI(
            api_key=key,
            base_url=generative_cfg.base_url,
        )

    def _instructions(self, *, source: str, target: str) -> str:
        lines = [_SYSTEM_INSTRUCTIONS, f"Target language: {target}"]
        if source and source != AUTO_LANGUAGE:
            lines.append(f"Source language: {source}")
        return "\n".join(lines)

    async def translate(self, text: str, *, source: str, target: str) -> tuple[str, str]:
        """Return (translated_text, model_used)."""
        models = list(self._cfg.models)
        instructions = self._instructions(source=source, target=target)

        for idx, model in enumerate(models):
            try:
                response = await self._client.chat.completions.create(
                    model=model,
                    messages=[
                        {"role": "system", "content": instructions},
                        {"role": "user", "content": text},
                    ],
                    temperature=self._cfg.temperature,
                    max_tokens=self._cfg.max_output_tokens,
                )
            except Exception as e:
                advance, reason = is_model_fallback_exception(e)
                has_next = idx + 1 < len(models)
                if self._logger is not None:
                    self._logger.warning(
                        "generative_model_failed",
                        model=model,
                        reason=reason,
                        status_code=extract_status_code(e),
                        will_fallback=bool(advance and has_next),
                    )
                if advance and has_next:
                    continue
                raise TranslationError(
                    f"Generative call failed ({model}): {reason or type(e).__name__}",
                    status_code=extract_status_code(e),
                ) from e

            return _extract_message_text(response), model

        raise TranslationError("No generative models configured")


async def translate_text(
    text: str,
    target: str,
    *,
    translator: ChunkTranslator,
    translation_cfg: TranslationConfig,
    source: str = AUTO_LANGUAGE,
    generative: GenerativeTranslator | None = None,
    sleep_fn: SleepFn | None = None,
    logger: EventLogger | None = None,
) -> TranslatedText:
    """
    Translate `text` into `target`.

    With a generative backend the whole text goes out in one call and nothing
    is sent to the public endpoint. Otherwise the text is split into
    size-limited chunks that are translated one at a time, in order, with a
    fixed delay between calls. A chunk whose call fails keeps its original
    text; only when every chunk fails is the request an error.
    An `auto` source is reported as the language detected for the first
    translated chunk.
    """
    if not (text or "").strip():
        raise InvalidQueryError("text is required")

    tgt = (target or "").strip() or translation_cfg.default_target
    src = (source or "").strip() or AUTO_LANGUAGE
    sleeper = sleep_fn or asyncio.sleep

    if generative is not None:
        translated, model = await generative.translate(text, source=src, target=tgt)
        return TranslatedText(
            original=text,
            translated=translated,
            source=src,
            target=tgt,
            backend=f"generative:{model}",
        )

    chunks = chunk_text(text, translation_cfg.max_chunk_chars)
    parts: list[str] = []
    failed = 0
    detected: str | None = None

    for chunk in chunks:
        if chunk.index > 0 and translation_cfg.chunk_delay_seconds > 0:
            await sleeper(translation_cfg.chunk_delay_seconds)

        try:
            result = await translator.translate_chunk(chunk.text, source=src, target=tgt)
        except TranslationError as e:
            failed += 1
            parts.append(chunk.text)
            if logger is not None:
                logger.warning(
                    "translation_chunk_failed",
                    chunk_index=chunk.index,
                    chunk_count=len(chunks),
                    chunk_chars=len(chunk.text),
                    status_code=e.status_code,
                    detail=truncate(str(e), limit=300),
                )
            continue

        parts.append(result.text)
        if detected is None:
            detected = result.detected_source

    if failed == len(chunks):
        raise TranslationError(f"All {failed} translation calls failed")

    return TranslatedText(
        original=text,
        translated=" ".join(parts),
        source=(detected or src) if src == AUTO_LANGUAGE else src,
        target=tgt,
        backend="public",
        chunk_count=len(chunks),
        failed_chunks=failed,
    )
