"""
Preview image resolution: URL extraction, meta tag parsing and fetching.
"""

from collections import deque
from datetime import datetime, timedelta

import httpx
import pytest

from fontgarden.crawlers.open_graph import (
    PreviewImageResolver,
    extract_first_url,
    extract_meta_image,
)
from fontgarden.utils.rate_limiter import FetchRateLimiter

from conftest import og_page


class TestExtractFirstUrl:

    @pytest.mark.parametrize("text, expected", [
        ("see https://example.com for details", "https://example.com"),
        ("Built with http://www.site.io/work?id=3.", "http://www.site.io/work?id=3"),
        ("two links https://a.test/x and https://b.test", "https://a.test/x"),
        ("no link here", None),
        (None, None),
    ])
    def test_extract(self, text, expected):
        assert extract_first_url(text) == expected


class TestExtractMetaImage:

    def test_og_image(self):
        assert extract_meta_image(og_page("https://example.com/x.png")) == "https://example.com/x.png"

    def test_content_before_property(self):
        html = '<head><meta content="https://a.test/og.jpg" property="og:image"></head>'
        assert extract_meta_image(html) == "https://a.test/og.jpg"

    def test_twitter_fallback_by_name(self):
        html = '<head><meta name="twitter:image" content="https://a.test/tw.jpg"></head>'
        assert extract_meta_image(html) == "https://a.test/tw.jpg"

    def test_og_preferred_over_twitter(self):
        html = (
            '<head><meta name="twitter:image" content="https://a.test/tw.jpg">'
            '<meta property="og:image" content="https://a.test/og.jpg"></head>'
        )
        assert extract_meta_image(html) == "https://a.test/og.jpg"

    def test_meta_keys_match_case_insensitively(self):
        html = '<head><meta property="OG:Image" content="https://e.test/x.png"></head>'
        assert extract_meta_image(html) == "https://e.test/x.png"

    def test_no_image(self):
        assert extract_meta_image("<html><head><title>x</title></head></html>") is None
        assert extract_meta_image("") is None


def make_resolver(handler, **kwargs) -> PreviewImageResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PreviewImageResolver(client=client, **kwargs)


class TestPreviewImageResolver:

    async def test_images_win_regardless_of_description(self):
        calls = []
        resolver = make_resolver(lambda r: calls.append(r) or httpx.Response(500))

        image = await resolver.resolve(["img1.png"], None, "see https://example.com for details")

        assert image == "img1.png"
        assert calls == []

    async def test_existing_preview_is_kept(self):
        resolver = make_resolver(lambda r: httpx.Response(500))
        assert await resolver.resolve([], "https://stored.test/p.png", "https://example.com") == "https://stored.test/p.png"

    async def test_single_fetch_of_description_link(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text=og_page("https://example.com/x.png"))

        resolver = make_resolver(handler)
        image = await resolver.resolve([], None, "see https://example.com for details")

        assert image == "https://example.com/x.png"
        assert len(calls) == 1
        assert calls[0].url.host == "example.com"
        assert "FontGardenBot" in calls[0].headers["User-Agent"]

    async def test_non_success_resolves_to_none(self):
        resolver = make_resolver(lambda r: httpx.Response(503))
        assert await resolver.resolve([], None, "see https://example.com") is None

    async def test_network_error_resolves_to_none(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        resolver = make_resolver(handler)
        assert await resolver.fetch_image_for_url("https://example.com") is None

    async def test_proxies_tried_in_order(self):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            if request.url.host == "second.proxy":
                return httpx.Response(200, text=og_page("https://example.com/x.png"))
            return httpx.Response(502)

        resolver = make_resolver(
            handler,
            proxy_urls=["https://first.proxy/?url=", "https://second.proxy/raw?url="],
        )
        image = await resolver.fetch_image_for_url("https://example.com/page")

        assert image == "https://example.com/x.png"
        assert [httpx.URL(c).host for c in calls] == ["first.proxy", "second.proxy"]
        assert "https%3A%2F%2Fexample.com%2Fpage" in calls[1]

    async def test_unencodable_host_resolves_to_none(self):
        resolver = make_resolver(lambda r: httpx.Response(200, text=og_page("https://x.test/a.png")))
        assert await resolver.resolve([], None, "see https://xn--.com/ for details") is None

    async def test_bare_domain_gets_https(self):
        calls = []
        resolver = make_resolver(lambda r: calls.append(r) or httpx.Response(404))

        await resolver.fetch_image_for_url("example.com")

        assert str(calls[0].url).startswith("https://example.com")


class TestFetchRateLimiter:

    async def test_slot_releases_on_error(self):
        limiter = FetchRateLimiter(requests_per_minute=10, max_concurrent=1)

        with pytest.raises(ValueError):
            async with limiter.slot("https://a.test/x"):
                raise ValueError("boom")

        # A second slot is available again
        async with limiter.slot("https://a.test/y"):
            pass

    async def test_idle_domains_are_forgotten(self):
        limiter = FetchRateLimiter()
        limiter._domain_requests["old.test"] = deque([datetime.utcnow() - timedelta(seconds=120)])

        async with limiter.slot("https://new.test/page"):
            pass

        assert list(limiter._domain_requests) == ["new.test"]

    def test_domain_extraction(self):
        assert FetchRateLimiter._extract_domain("https://www.a.test/x?y=1") == "www.a.test"
