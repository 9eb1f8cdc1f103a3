from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol, Sequence

import httpx

from .errors import ProviderError
from .event_log import EventLogger
from .media import CanonicalMediaRecord, MediaQuery
from .normalize import is_identifiable, normalize
from .providers import ProviderDescriptor

AcceptFn = Callable[[CanonicalMediaRecord], bool]
NormalizeFn = Callable[[Any], "CanonicalMediaRecord | None"]


class FetchStrategy(Protocol):
    name: str

    async def attempt(self, query: MediaQuery) -> CanonicalMediaRecord: ...


@dataclass(frozen=True)
class ProviderAttempt:
    provider: str
    reason: str | None
    status_code: int | None
    message: str


@dataclass(frozen=True)
class ResolutionFailure:
    """Terminal outcome when every provider failed; not an exception."""

    query: MediaQuery
    attempts: tuple[ProviderAttempt, ...]
    success: bool = False


def has_video_link(record: CanonicalMediaRecord) -> bool:
    return bool(record.source_url)


class HttpProviderStrategy:
    """
    One HTTP provider call described by a ProviderDescriptor.

    Every failure mode (transport, non-2xx, bad JSON, unrecognised schema) is
    raised as ProviderError so the resolver can move on.
    """

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        *,
        client: httpx.AsyncClient,
        timeout_seconds: float,
        accept: AcceptFn = is_identifiable,
        normalize_fn: NormalizeFn = normalize,
    ) -> None:
        self._descriptor = descriptor
        self._client = client
        self._timeout = float(timeout_seconds)
        self._accept = accept
        self._normalize = normalize_fn

    @property
    def name(self) -> str:
        return self._descriptor.name

    async def attempt(self, query: MediaQuery) -> CanonicalMediaRecord:
        d = self._descriptor
        body = d.build_body(query) if d.build_body is not None else None

        try:
            response = await self._client.request(
                d.method,
                d.build_url(query),
                headers=dict(d.auth_headers),
                json=body,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderError(d.name, "request timed out", reason="timeout") from e
        except httpx.HTTPError as e:
            raise ProviderError(
                d.name, f"request failed ({type(e).__name__})", reason="network_error"
            ) from e

        code = response.status_code
        if not response.is_success:
            raise ProviderError(d.name, f"HTTP {code}", status_code=code, reason=f"http_{code}")

        try:
            raw = response.json()
        except ValueError as e:
            raise ProviderError(
                d.name, "response body is not valid JSON", status_code=code, reason="malformed_body"
            ) from e

        record = self._normalize(raw)
        if record is None or not self._accept(record):
            raise ProviderError(
                d.name,
                "response did not contain a usable media item",
                status_code=code,
                reason="unrecognized_schema",
            )

        return replace(record, provider_used=d.name)


def build_strategies(
    descriptors: Sequence[ProviderDescriptor],
    *,
    client: httpx.AsyncClient,
    timeout_seconds: float,
    accept: AcceptFn = is_identifiable,
) -> list[HttpProviderStrategy]:
    return [
        HttpProviderStrategy(d, client=client, timeout_seconds=timeout_seconds, accept=accept)
        for d in descriptors
    ]


async def resolve(
    query: MediaQuery,
    strategies: Sequence[FetchStrategy],
    *,
    operation: str = "reel_metadata",
    logger: EventLogger | None = None,
) -> CanonicalMediaRecord | ResolutionFailure:
    """
    Try strategies strictly in order and return the first usable record.

    Calls are sequential; later strategies are never invoked once one succeeds,
    and a failed strategy is not retried.
    """
    if not strategies:
        raise ValueError("at least one provider strategy is required")

    attempts: list[ProviderAttempt] = []

    for strategy in strategies:
        try:
            record = await strategy.attempt(query)
        except ProviderError as e:
            attempts.append(
                ProviderAttempt(
                    provider=strategy.name,
                    reason=e.reason,
                    status_code=e.status_code,
                    message=str(e),
                )
            )
            if logger is not None:
                logger.warning(
                    "provider_attempt_failed",
                    operation=operation,
                    provider=strategy.name,
                    shortcode=query.shortcode,
                    status_code=e.status_code,
                    reason=e.reason,
                )
            continue

        if logger is not None:
            logger.info(
                "provider_succeeded",
                operation=operation,
                provider=strategy.name,
                shortcode=query.shortcode,
                failed_before=len(attempts),
            )
        return record

    if logger is not None:
        logger.warning(
            "resolution_exhausted",
            operation=operation,
            shortcode=query.shortcode,
            providers=[a.provider for a in attempts],
        )
    return ResolutionFailure(query=query, attempts=tuple(attempts))
