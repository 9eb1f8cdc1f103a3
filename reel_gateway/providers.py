from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping
from urllib.parse import quote

from .config import RuntimeSecrets
from .config_schema import ProvidersConfig
from .errors import InvalidQueryError
from .media import MediaQuery

_SHORTCODE_IN_URL_RE = re.compile(r"(?:^|/)(?:reels?|p|tv)/([A-Za-z0-9_-]+)")
_SHORTCODE_RE = re.compile(r"^[A-Za-z0-9_-]+$")

INSTAGRAM_SCRAPER_HOST = "instagram-scraper-20251.p.rapidapi.com"
INSTAGRAM_LOOTER_HOST = "instagram-looter2.p.rapidapi.com"
INSTAGRAM120_HOST = "instagram120.p.rapidapi.com"
APIFY_API_BASE = "https://api.apify.com/v2"


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    Immutable description of one upstream call.

    Carries no behavior beyond building the request URL (and body, for POST).
    """

    name: str
    build_url: Callable[[MediaQuery], str]
    method: Literal["GET", "POST"] = "GET"
    auth_headers: Mapping[str, str] = field(default_factory=dict)
    build_body: Callable[[MediaQuery], Any] | None = None


def canonical_post_url(shortcode: str) -> str:
    return f"https://www.instagram.com/reel/{shortcode}/"


def extract_shortcode(url: str) -> str | None:
    match = _SHORTCODE_IN_URL_RE.search(url or "")
    return match.group(1) if match else None


def parse_media_query(url: str | None = None, shortcode: str | None = None) -> MediaQuery:
    """
    Derive a provider-addressable key from a post URL and/or shortcode.

    Raises InvalidQueryError before any provider is contacted when neither yields a
    usable shortcode.
    """
    u = (url or "").strip()
    code = (shortcode or "").strip()

    if not u and not code:
        raise InvalidQueryError("url or shortcode is required")

    if code:
        if not _SHORTCODE_RE.fullmatch(code):
            raise InvalidQueryError("shortcode must contain only letters, digits, '_' or '-'")
    else:
        code = extract_shortcode(u) or ""
        if not code:
            raise InvalidQueryError("Could not extract shortcode from URL")

    return MediaQuery(shortcode=code, url=u or canonical_post_url(code))


def parse_video_query(url: str | None) -> MediaQuery:
    """Video-link lookups are keyed by the post URL; the shortcode is informational."""
    u = (url or "").strip()
    if not u:
        raise InvalidQueryError("url is required")
    return MediaQuery(shortcode=extract_shortcode(u) or "", url=u)


def _rapidapi_headers(host: str, key: str) -> dict[str, str]:
    return {"x-rapidapi-host": host, "x-rapidapi-key": key}


def reel_metadata_descriptors(
    secrets: RuntimeSecrets, *, providers: ProvidersConfig
) -> list[ProviderDescriptor]:
    """Metadata providers in priority order; the Apify actor is used only with a token."""
    out = [
        ProviderDescriptor(
            name="instagram-scraper-20251",
            build_url=lambda q: (
                f"https://{INSTAGRAM_SCRAPER_HOST}/postdetail/?code_or_url={quote(q.shortcode)}"
            ),
            auth_headers=_rapidapi_headers(INSTAGRAM_SCRAPER_HOST, secrets.rapidapi_key),
        ),
        ProviderDescriptor(
            name="instagram-looter2",
            build_url=lambda q: (
                f"https://{INSTAGRAM_LOOTER_HOST}/post?link={quote(q.url, safe='')}"
            ),
            auth_headers=_rapidapi_headers(INSTAGRAM_LOOTER_HOST, secrets.rapidapi_key),
        ),
        ProviderDescriptor(
            name="instagram120",
            build_url=lambda q: f"https://{INSTAGRAM120_HOST}/api/instagram/links",
            method="POST",
            auth_headers=_rapidapi_headers(INSTAGRAM120_HOST, secrets.rapidapi_key),
            build_body=lambda q: {"url": q.url},
        ),
    ]

    if secrets.apify_token:
        actor = providers.apify_actor
        out.append(
            ProviderDescriptor(
                name="apify-instagram-scraper",
                build_url=lambda q: f"{APIFY_API_BASE}/acts/{actor}/run-sync-get-dataset-items",
                method="POST",
                auth_headers={"Authorization": f"Bearer {secrets.apify_token}"},
                build_body=lambda q: {
                    "directUrls": [q.url],
                    "resultsType": "posts",
                    "resultsLimit": 1,
                },
            )
        )

    return out


def video_link_descriptors(secrets: RuntimeSecrets) -> list[ProviderDescriptor]:
    return [
        ProviderDescriptor(
            name="instagram120",
            build_url=lambda q: f"https://{INSTAGRAM120_HOST}/api/instagram/links",
            method="POST",
            auth_headers=_rapidapi_headers(INSTAGRAM120_HOST, secrets.rapidapi_key),
            build_body=lambda q: {"url": q.url},
        )
    ]
