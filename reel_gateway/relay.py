from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Sequence
from urllib.parse import urlsplit

import httpx

from .config_schema import RelayConfig
from .errors import InvalidQueryError, OriginNotAllowedError, RelayError
from .event_log import EventLogger

DEFAULT_CONTENT_TYPE = "video/mp4"

_RANGE_RE = re.compile(r"^\s*(bytes)\s*=\s*(\d+)\s*-\s*(\d*)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class RangeSpec:
    """Parsed single byte range; informational only, the raw header is forwarded as-is."""

    unit: str
    start: int
    end: int | None = None


def parse_range_header(value: str | None) -> RangeSpec | None:
    """
    Parse `bytes=start-[end]`. Suffix ranges, multi-range and malformed values give
    None; they are still passed through to the origin unchanged.
    """
    match = _RANGE_RE.match(value or "")
    if match is None:
        return None

    start = int(match.group(2))
    end = int(match.group(3)) if match.group(3) else None
    if end is not None and end < start:
        return None
    return RangeSpec(unit=match.group(1).lower(), start=start, end=end)


def is_allowed_host(host: str, allowed_hosts: Sequence[str]) -> bool:
    """
    Dotted entries match the host or any subdomain of it; dotless entries
    (e.g. "scontent") match the start of the first host label.
    """
    h = (host or "").casefold().rstrip(".")
    if not h:
        return False

    first_label = h.split(".", 1)[0]
    for entry in allowed_hosts:
        e = (entry or "").casefold().strip(".")
        if not e:
            continue
        if "." in e:
            if h == e or h.endswith("." + e):
                return True
        elif first_label.startswith(e):
            return True
    return False


def check_origin_url(url: str | None, allowed_hosts: Sequence[str]) -> str:
    u = (url or "").strip()
    if not u:
        raise InvalidQueryError("url query param is required")

    try:
        parts = urlsplit(u)
        host = parts.hostname
    except ValueError as e:
        raise InvalidQueryError("Invalid url") from e

    if parts.scheme.lower() not in ("http", "https") or not host:
        raise InvalidQueryError("Invalid url")

    if not is_allowed_host(host, allowed_hosts):
        raise OriginNotAllowedError("URL not allowed")

    return u


def _forwarded_headers(response: httpx.Response) -> dict[str, str]:
    headers = {"Content-Type": response.headers.get("content-type") or DEFAULT_CONTENT_TYPE}
    for name in ("Content-Length", "Accept-Ranges", "Content-Range"):
        value = response.headers.get(name)
        if value:
            headers[name] = value
    return headers


@dataclass
class OriginStream:
    """
    An open origin response whose body has not been read yet.

    iter_bytes() pulls one chunk at a time, so a slow consumer slows the origin
    read; the origin connection is released when iteration ends for any reason.
    """

    status_code: int
    headers: dict[str, str]
    response: httpx.Response
    origin_host: str = ""
    logger: EventLogger | None = None
    bytes_sent: int = field(default=0, init=False)
    _closed: bool = field(default=False, init=False, repr=False)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_raw():
                self.bytes_sent += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            if self.logger is not None:
                self.logger.error(
                    "relay_stream_failed",
                    origin_host=self.origin_host,
                    bytes_sent=self.bytes_sent,
                    error_type=type(e).__name__,
                )
            raise
        except (asyncio.CancelledError, GeneratorExit):
            if self.logger is not None:
                self.logger.info(
                    "relay_client_disconnected",
                    origin_host=self.origin_host,
                    bytes_sent=self.bytes_sent,
                )
            raise
        finally:
            # Close in its own task so a cancelled request still releases the origin connection.
            await asyncio.shield(self.aclose())

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.response.aclose()


async def open_relay(
    origin_url: str | None,
    *,
    range_header: str | None,
    client: httpx.AsyncClient,
    relay_cfg: RelayConfig,
    logger: EventLogger | None = None,
) -> OriginStream:
    """
    Validate the origin against the allow-list and open a streamed GET to it.

    The allow-list check happens before any network I/O. A non-2xx origin status
    or a failed connection raises RelayError; nothing has been sent to the caller
    at that point.
    """
    try:
        url = check_origin_url(origin_url, relay_cfg.allowed_hosts)
    except (InvalidQueryError, OriginNotAllowedError) as e:
        if logger is not None:
            logger.warning(
                "relay_rejected", url=origin_url, status_code=e.status_code, reason=str(e)
            )
        raise

    origin_host = urlsplit(url).hostname or ""
    headers = {
        "User-Agent": relay_cfg.user_agent,
        # Relay bytes as stored so Content-Length/Content-Range stay accurate.
        "Accept-Encoding": "identity",
    }
    if range_header:
        headers["Range"] = range_header

    request = client.build_request(
        "GET",
        url,
        headers=headers,
        timeout=httpx.Timeout(None, connect=relay_cfg.connect_timeout_seconds),
    )

    try:
        # Redirect targets would bypass the allow-list check above.
        response = await client.send(request, stream=True, follow_redirects=False)
    except httpx.HTTPError as e:
        if logger is not None:
            logger.error(
                "relay_upstream_error",
                origin_host=origin_host,
                error_type=type(e).__name__,
            )
        raise RelayError("Proxy failed") from e

    if not response.is_success:
        await response.aclose()
        if logger is not None:
            logger.warning(
                "relay_upstream_error",
                origin_host=origin_host,
                status_code=response.status_code,
            )
        raise RelayError("Upstream error", status_code=response.status_code)

    if logger is not None:
        rng = parse_range_header(range_header)
        logger.info(
            "relay_started",
            url=url,
            origin_host=origin_host,
            status_code=response.status_code,
            range_start=rng.start if rng else None,
            range_end=rng.end if rng else None,
        )

    return OriginStream(
        status_code=response.status_code,
        headers=_forwarded_headers(response),
        response=response,
        origin_host=origin_host,
        logger=logger,
    )
