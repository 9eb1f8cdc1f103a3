from __future__ import annotations

import io
import json
import unittest

import httpx

from reel_gateway.config import RuntimeSecrets
from reel_gateway.config_schema import ProvidersConfig
from reel_gateway.errors import ProviderError
from reel_gateway.event_log import EventLogger
from reel_gateway.media import CanonicalMediaRecord, MediaQuery
from reel_gateway.providers import (
    INSTAGRAM120_HOST,
    INSTAGRAM_LOOTER_HOST,
    INSTAGRAM_SCRAPER_HOST,
    parse_media_query,
    reel_metadata_descriptors,
    video_link_descriptors,
)
from reel_gateway.resolver import (
    ResolutionFailure,
    build_strategies,
    has_video_link,
    resolve,
)

_SECRETS = RuntimeSecrets(rapidapi_key="test-key")
_QUERY = MediaQuery(shortcode="ABC123", url="https://www.instagram.com/reel/ABC123/")

_SCRAPER_BODY = {
    "data": {
        "code": "ABC123",
        "play_count": 12000,
        "like_count": 340,
        "comment_count": 12,
        "user": {"username": "coach", "full_name": "Coach K"},
        "image_versions2": {"candidates": [{"url": "https://scontent.cdninstagram.com/t.jpg"}]},
        "media_type": 2,
    }
}


class _FakeStrategy:
    def __init__(self, name: str, *, record: CanonicalMediaRecord | None = None) -> None:
        self.name = name
        self._record = record
        self.calls = 0

    async def attempt(self, query: MediaQuery) -> CanonicalMediaRecord:
        self.calls += 1
        if self._record is None:
            raise ProviderError(self.name, "HTTP 503", status_code=503, reason="http_503")
        return self._record


class TestResolve(unittest.IsolatedAsyncioTestCase):
    async def test_first_success_stops_the_chain(self) -> None:
        a = _FakeStrategy("a", record=CanonicalMediaRecord(like_count=1, provider_used="a"))
        b = _FakeStrategy("b", record=CanonicalMediaRecord(like_count=2, provider_used="b"))

        result = await resolve(_QUERY, [a, b])

        assert isinstance(result, CanonicalMediaRecord)
        self.assertEqual(result.provider_used, "a")
        self.assertEqual((a.calls, b.calls), (1, 0))

    async def test_failures_are_isolated_and_order_kept(self) -> None:
        a = _FakeStrategy("a")
        b = _FakeStrategy("b")
        c = _FakeStrategy("c", record=CanonicalMediaRecord(like_count=3, provider_used="c"))

        result = await resolve(_QUERY, [a, b, c])

        assert isinstance(result, CanonicalMediaRecord)
        self.assertEqual(result.provider_used, "c")
        self.assertEqual((a.calls, b.calls, c.calls), (1, 1, 1))

    async def test_exhaustion_is_a_value_not_an_exception(self) -> None:
        strategies = [_FakeStrategy("a"), _FakeStrategy("b")]
        buf = io.StringIO()

        result = await resolve(_QUERY, strategies, logger=EventLogger(buf))

        assert isinstance(result, ResolutionFailure)
        self.assertFalse(result.success)
        self.assertEqual([a.provider for a in result.attempts], ["a", "b"])
        self.assertEqual([a.status_code for a in result.attempts], [503, 503])
        self.assertEqual([s.calls for s in strategies], [1, 1])

        events = [json.loads(line)["event"] for line in buf.getvalue().splitlines()]
        self.assertEqual(
            events,
            ["provider_attempt_failed", "provider_attempt_failed", "resolution_exhausted"],
        )

    async def test_empty_strategy_list_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await resolve(_QUERY, [])


class TestHttpProviders(unittest.IsolatedAsyncioTestCase):
    async def test_second_provider_answers_after_first_returns_500(self) -> None:
        hosts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            self.assertEqual(request.headers["x-rapidapi-key"], "test-key")
            if request.url.host == INSTAGRAM_SCRAPER_HOST:
                return httpx.Response(500, json={"message": "boom"})
            if request.url.host == INSTAGRAM_LOOTER_HOST:
                return httpx.Response(200, json=_SCRAPER_BODY["data"])
            raise AssertionError(f"unexpected call to {request.url}")

        query = parse_media_query(url="https://www.instagram.com/reel/ABC123/")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            strategies = build_strategies(
                reel_metadata_descriptors(_SECRETS, providers=ProvidersConfig()),
                client=client,
                timeout_seconds=5,
            )
            result = await resolve(query, strategies)

        assert isinstance(result, CanonicalMediaRecord)
        self.assertEqual(hosts, [INSTAGRAM_SCRAPER_HOST, INSTAGRAM_LOOTER_HOST])
        self.assertEqual(result.provider_used, "instagram-looter2")
        self.assertEqual(result.view_count, 12000)
        self.assertEqual(result.owner_username, "coach")
        self.assertTrue(result.is_video)

    async def test_malformed_and_unrecognized_bodies_fall_through(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            if request.url.host == INSTAGRAM_SCRAPER_HOST:
                return httpx.Response(200, text="<html>not json</html>")
            if request.url.host == INSTAGRAM_LOOTER_HOST:
                return httpx.Response(200, json={"status": False, "message": "not found"})
            self.assertEqual(request.method, "POST")
            self.assertEqual(json.loads(request.content), {"url": _QUERY.url})
            return httpx.Response(200, json=_SCRAPER_BODY)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            strategies = build_strategies(
                reel_metadata_descriptors(_SECRETS, providers=ProvidersConfig()),
                client=client,
                timeout_seconds=5,
            )
            result = await resolve(_QUERY, strategies)

        assert isinstance(result, CanonicalMediaRecord)
        self.assertEqual(calls, [INSTAGRAM_SCRAPER_HOST, INSTAGRAM_LOOTER_HOST, INSTAGRAM120_HOST])
        self.assertEqual(result.provider_used, "instagram120")

    async def test_all_providers_failing_calls_each_once(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            return httpx.Response(429, json={"message": "quota"})

        secrets = RuntimeSecrets(rapidapi_key="test-key", apify_token="apify-token")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            strategies = build_strategies(
                reel_metadata_descriptors(secrets, providers=ProvidersConfig()),
                client=client,
                timeout_seconds=5,
            )
            result = await resolve(_QUERY, strategies)

        assert isinstance(result, ResolutionFailure)
        self.assertEqual(len(calls), 4)
        self.assertEqual(calls[-1], "api.apify.com")
        self.assertEqual([a.reason for a in result.attempts], ["http_429"] * 4)

    async def test_transport_error_is_a_provider_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            strategies = build_strategies(
                video_link_descriptors(_SECRETS),
                client=client,
                timeout_seconds=5,
                accept=has_video_link,
            )
            result = await resolve(_QUERY, strategies, operation="video_link")

        assert isinstance(result, ResolutionFailure)
        self.assertEqual(result.attempts[0].reason, "network_error")

    async def test_video_link_requires_a_video_url(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[{"thumbnail_url": "https://scontent.cdninstagram.com/only.jpg"}],
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            strategies = build_strategies(
                video_link_descriptors(_SECRETS),
                client=client,
                timeout_seconds=5,
                accept=has_video_link,
            )
            result = await resolve(_QUERY, strategies, operation="video_link")

        assert isinstance(result, ResolutionFailure)
        self.assertEqual(result.attempts[0].reason, "unrecognized_schema")

    async def test_video_link_prefers_mp4_entry(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[
                    {
                        "urls": [
                            {"url": "https://scontent.cdninstagram.com/a.jpg", "extension": "jpg"},
                            {"url": "https://scontent.cdninstagram.com/a.mp4", "extension": "mp4"},
                        ],
                        "pictureUrl": "https://scontent.cdninstagram.com/p.jpg",
                    }
                ],
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            strategies = build_strategies(
                video_link_descriptors(_SECRETS),
                client=client,
                timeout_seconds=5,
                accept=has_video_link,
            )
            result = await resolve(_QUERY, strategies, operation="video_link")

        assert isinstance(result, CanonicalMediaRecord)
        self.assertEqual(result.source_url, "https://scontent.cdninstagram.com/a.mp4")
        self.assertEqual(result.thumbnail_url, "https://scontent.cdninstagram.com/p.jpg")
        self.assertEqual(result.provider_used, "instagram120")


if __name__ == "__main__":
    unittest.main()
