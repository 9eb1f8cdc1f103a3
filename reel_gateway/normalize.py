from __future__ import annotations

import math
from typing import Any, Callable, Iterator, Mapping

from .media import CanonicalMediaRecord

Rule = Callable[[Mapping[str, Any]], Any]

# Nested objects that providers wrap the media item in, probed in this order
# before the object itself.
_ENVELOPE_PATHS: tuple[tuple[str, ...], ...] = (
    ("data",),
    ("graphql", "shortcode_media"),
    ("shortcode_media",),
    ("xdt_shortcode_media",),
    ("result",),
    ("media",),
    ("post",),
    ("items",),
)

_MAX_ENVELOPE_DEPTH = 4

_VIDEO_TYPENAMES = frozenset({"GraphVideo", "XDTGraphVideo"})
_VIDEO_PRODUCT_TYPES = frozenset({"clips", "igtv"})


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0:
            return None
        return int(value)
    if isinstance(value, str):
        digits = value.strip().replace(",", "").replace("_", "")
        if digits.isdigit():
            return int(digits)
    return None


def _coerce_timestamp(value: Any) -> int | str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and math.isfinite(value) and value >= 0:
        return int(value)
    s = _coerce_str(value)
    if s is None:
        return None
    return int(s) if s.isdigit() else s


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return None


def _dig(item: Any, keys: tuple[str | int, ...]) -> Any:
    cur = item
    for key in keys:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, Mapping):
                return None
            cur = cur.get(key)
        if cur is None:
            return None
    return cur


def _str_at(*keys: str | int) -> Rule:
    return lambda item: _coerce_str(_dig(item, keys))


def _count_at(*keys: str | int) -> Rule:
    return lambda item: _coerce_count(_dig(item, keys))


def _timestamp_at(*keys: str | int) -> Rule:
    return lambda item: _coerce_timestamp(_dig(item, keys))


def _preferred_link(field: str) -> Rule:
    """Pick the mp4/video entry from a list of link objects, else the first with a url."""

    def rule(item: Mapping[str, Any]) -> str | None:
        links = item.get(field)
        if not isinstance(links, list):
            return None

        first: str | None = None
        for link in links:
            if not isinstance(link, Mapping):
                continue
            url = _coerce_str(link.get("url"))
            if url is None:
                continue
            if first is None:
                first = url

            kind = (_coerce_str(link.get("type")) or "").casefold()
            ext = (_coerce_str(link.get("extension")) or "").casefold()
            name = (_coerce_str(link.get("name")) or "").casefold()
            if kind == "video" or ext == "mp4" or name == "mp4":
                return url
        return first

    return rule


def _media_type_is_video(item: Mapping[str, Any]) -> bool | None:
    value = _coerce_count(item.get("media_type"))
    if value is None:
        return None
    return value == 2


def _typename_is_video(item: Mapping[str, Any]) -> bool | None:
    typename = _coerce_str(item.get("__typename"))
    if typename is None:
        return None
    return typename in _VIDEO_TYPENAMES


def _product_type_is_video(item: Mapping[str, Any]) -> bool | None:
    product = (_coerce_str(item.get("product_type")) or "").casefold()
    if product in _VIDEO_PRODUCT_TYPES:
        return True
    return None


def _post_type_is_video(item: Mapping[str, Any]) -> bool | None:
    post_type = _coerce_str(item.get("type"))
    if post_type is None:
        return None
    return post_type.casefold() == "video"


# Ordered extraction rules per canonical field. The first rule yielding a
# non-None value wins; the order is part of the public contract.
FIELD_RULES: Mapping[str, tuple[Rule, ...]] = {
    "shortcode": (
        _str_at("code"),
        _str_at("shortcode"),
        _str_at("shortCode"),
        _str_at("short_code"),
    ),
    "source_url": (
        _str_at("video_url"),
        _str_at("download_url"),
        _str_at("video"),
        _str_at("videoUrl"),
        _preferred_link("urls"),
        _str_at("video_versions", 0, "url"),
    ),
    "thumbnail_url": (
        _str_at("image_versions2", "candidates", 0, "url"),
        _str_at("thumbnail_url"),
        _str_at("display_url"),
        _str_at("thumbnail_src"),
        _str_at("pictureUrl"),
        _str_at("pictureUrlWrapped"),
        _str_at("displayUrl"),
    ),
    "caption": (
        _str_at("caption", "text"),
        _str_at("edge_media_to_caption", "edges", 0, "node", "text"),
        _str_at("caption"),
        _str_at("caption_text"),
        _str_at("description"),
    ),
    "view_count": (
        _count_at("play_count"),
        _count_at("view_count"),
        _count_at("video_view_count"),
        _count_at("video_play_count"),
    ),
    "like_count": (
        _count_at("like_count"),
        _count_at("edge_media_preview_like", "count"),
        _count_at("edge_liked_by", "count"),
        _count_at("likesCount"),
    ),
    "comment_count": (
        _count_at("comment_count"),
        _count_at("edge_media_to_comment", "count"),
        _count_at("edge_media_to_parent_comment", "count"),
        _count_at("commentsCount"),
    ),
    "taken_at": (
        _timestamp_at("taken_at"),
        _timestamp_at("taken_at_timestamp"),
        _timestamp_at("timestamp"),
    ),
    "owner_username": (
        _str_at("user", "username"),
        _str_at("owner", "username"),
        _str_at("ownerUsername"),
        _str_at("username"),
    ),
    "owner_full_name": (
        _str_at("user", "full_name"),
        _str_at("owner", "full_name"),
        _str_at("ownerFullName"),
        _str_at("full_name"),
    ),
    "is_video": (
        _media_type_is_video,
        lambda item: _coerce_bool(item.get("is_video")),
        _typename_is_video,
        _product_type_is_video,
        _post_type_is_video,
    ),
}

_FIELD_DEFAULTS: Mapping[str, Any] = {
    "shortcode": "",
    "source_url": "",
    "thumbnail_url": "",
    "caption": "",
    "view_count": 0,
    "like_count": 0,
    "comment_count": 0,
    "taken_at": None,
    "owner_username": "",
    "owner_full_name": "",
    "is_video": False,
}


def extract_field(item: Mapping[str, Any], field: str) -> Any:
    """Apply the rules for `field` in priority order, falling back to the typed default."""
    for rule in FIELD_RULES[field]:
        value = rule(item)
        if value is not None:
            return value
    return _FIELD_DEFAULTS[field]


def _iter_candidates(raw: Any, depth: int = 0) -> Iterator[Mapping[str, Any]]:
    if depth > _MAX_ENVELOPE_DEPTH:
        return

    if isinstance(raw, list):
        if raw:
            yield from _iter_candidates(raw[0], depth + 1)
        return

    if not isinstance(raw, Mapping):
        return

    for path in _ENVELOPE_PATHS:
        nested = _dig(raw, path)
        if isinstance(nested, (Mapping, list)) and nested:
            yield from _iter_candidates(nested, depth + 1)

    yield raw


def record_from_item(item: Mapping[str, Any]) -> CanonicalMediaRecord:
    return CanonicalMediaRecord(**{field: extract_field(item, field) for field in FIELD_RULES})


def is_identifiable(record: CanonicalMediaRecord) -> bool:
    return bool(
        record.source_url
        or record.thumbnail_url
        or record.owner_username
        or record.view_count
        or record.like_count
    )


def normalize(raw: Any) -> CanonicalMediaRecord | None:
    """
    Locate the media item inside a provider response and map it to a canonical record.

    Envelopes are probed depth-first in a fixed order, then the object itself.
    Returns None when no candidate yields an identifiable item; never raises on
    malformed input.
    """
    for candidate in _iter_candidates(raw):
        record = record_from_item(candidate)
        if is_identifiable(record):
            return record
    return None
