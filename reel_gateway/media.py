from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MediaQuery:
    """A validated lookup key: the shortcode plus the post URL it came from."""

    shortcode: str
    url: str


@dataclass(frozen=True)
class CanonicalMediaRecord:
    """
    Provider-independent media metadata.

    Numbers default to 0 and strings to "" so callers always get primitives;
    only taken_at stays optional.
    """

    shortcode: str = ""
    source_url: str = ""
    thumbnail_url: str = ""
    caption: str = ""
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    taken_at: int | str | None = None
    owner_username: str = ""
    owner_full_name: str = ""
    is_video: bool = False
    provider_used: str = ""
