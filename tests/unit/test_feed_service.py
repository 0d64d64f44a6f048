"""订阅源服务单元测试。"""

import httpx
import pytest

from feedz.modules.feeds.application.services import FeedService
from feedz.modules.feeds.domain.entities import DiscoveryStage, FeedKind
from feedz.modules.feeds.domain.exceptions import (
    FeedFetchError,
    FeedFetchTimeoutError,
    FeedParseError,
    InvalidFeedUrlError,
)

pytestmark = pytest.mark.anyio

FEED_URL = "https://example.com/feed.xml"


def rss_with_items(count: int) -> str:
    items = "".join(
        f"<item><title>Item {i}</title><link>https://example.com/{i}</link></item>"
        for i in range(count)
    )
    return (
        '<rss version="2.0"><channel><title>Example</title>'
        "<description>About</description><link>https://example.com/</link>"
        f"{items}</channel></rss>"
    )


class TestFetchAndParse:
    """抓取并解析测试。"""

    async def test_parses_feed(self, test_settings, make_http_client):
        client, transport = make_http_client(
            lambda request: httpx.Response(
                200, text=rss_with_items(4), headers={"content-type": "application/rss+xml"}
            )
        )
        service = FeedService(test_settings, http_client=client)

        feed = await service.fetch_and_parse(FEED_URL)

        assert feed.kind == FeedKind.RSS
        assert [item.title for item in feed.items] == [f"Item {i}" for i in range(4)]
        assert transport.requests[0].headers["User-Agent"] == test_settings.USER_AGENT

    async def test_unexpected_content_type_still_parsed(self, test_settings, make_http_client):
        client, _ = make_http_client(
            lambda request: httpx.Response(
                200, text=rss_with_items(1), headers={"content-type": "text/html"}
            )
        )
        service = FeedService(test_settings, http_client=client)

        feed = await service.fetch_and_parse(FEED_URL)

        assert len(feed.items) == 1

    async def test_timeout(self, test_settings, make_http_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client, _ = make_http_client(handler)
        service = FeedService(test_settings, http_client=client)

        with pytest.raises(FeedFetchTimeoutError) as exc_info:
            await service.fetch_and_parse(FEED_URL)
        assert exc_info.value.error_code == "TIMEOUT"

    async def test_http_error_status(self, test_settings, make_http_client):
        client, _ = make_http_client(lambda request: httpx.Response(503))
        service = FeedService(test_settings, http_client=client)

        with pytest.raises(FeedFetchError, match="HTTP 503"):
            await service.fetch_and_parse(FEED_URL)

    async def test_connection_error(self, test_settings, make_http_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, _ = make_http_client(handler)
        service = FeedService(test_settings, http_client=client)

        with pytest.raises(FeedFetchError):
            await service.fetch_and_parse(FEED_URL)

    async def test_malformed_body(self, test_settings, make_http_client):
        client, _ = make_http_client(
            lambda request: httpx.Response(
                200, text="<rss><channel>", headers={"content-type": "application/xml"}
            )
        )
        service = FeedService(test_settings, http_client=client)

        with pytest.raises(FeedParseError):
            await service.fetch_and_parse(FEED_URL)

    async def test_invalid_url(self, test_settings, make_http_client):
        client, transport = make_http_client(lambda request: httpx.Response(200))
        service = FeedService(test_settings, http_client=client)

        with pytest.raises(InvalidFeedUrlError):
            await service.fetch_and_parse("file:///etc/passwd")
        assert transport.requests == []


class TestPreview:
    """预览测试。"""

    async def test_preview_latest_three(self, test_settings, make_http_client):
        client, _ = make_http_client(
            lambda request: httpx.Response(
                200, text=rss_with_items(5), headers={"content-type": "application/rss+xml"}
            )
        )
        service = FeedService(test_settings, http_client=client)

        preview = await service.preview(FEED_URL)

        assert preview.title == "Example"
        assert preview.description == "About"
        assert preview.url == "https://example.com/"
        assert preview.item_count == 5
        assert [item.title for item in preview.latest_items] == ["Item 0", "Item 1", "Item 2"]


class TestDiscover:
    """发现入口测试（视频频道分流）。"""

    async def test_youtube_channel_uses_official_feed(self, test_settings, make_http_client):
        client, transport = make_http_client(lambda request: httpx.Response(500))
        service = FeedService(test_settings, http_client=client)

        result = await service.discover("https://www.youtube.com/channel/UCxyz")

        assert result.found is True
        assert result.kind == FeedKind.ATOM
        assert result.feed_url == "https://www.youtube.com/feeds/videos.xml?channel_id=UCxyz"
        assert transport.requests == []

    async def test_rumble_channel_uses_bridge(self, test_settings, make_http_client):
        client, _ = make_http_client(lambda request: httpx.Response(500))
        service = FeedService(test_settings, http_client=client)

        result = await service.discover("https://rumble.com/c/Creator")

        assert result.found is True
        assert result.kind == FeedKind.RSS
        assert result.feed_url.startswith("https://openrss.org/rss?url=")

    async def test_video_page_goes_through_locator(self, test_settings, make_http_client):
        client, transport = make_http_client(lambda request: httpx.Response(404))
        service = FeedService(test_settings, http_client=client)

        result = await service.discover("https://www.youtube.com/watch?v=abc123")

        assert result.found is False
        assert transport.urls[0] == "https://www.youtube.com/watch?v=abc123"

    async def test_platform_pages_that_are_not_channels_go_through_locator(
        self, test_settings, make_http_client
    ):
        feed_url = "https://www.youtube.com/feeds/videos.xml?channel_id=UC123"
        client, transport = make_http_client(
            lambda request: httpx.Response(
                200, text=rss_with_items(1), headers={"content-type": "application/rss+xml"}
            )
        )
        service = FeedService(test_settings, http_client=client)

        result = await service.discover(feed_url)
        home = await service.discover("https://www.youtube.com/")

        assert result.found is True
        assert result.feed_url == feed_url
        assert home.feed_url == "https://www.youtube.com/"
        assert transport.urls == [feed_url, "https://www.youtube.com/"]

    async def test_regular_site_goes_through_locator(
        self, test_settings, make_http_client, monkeypatch
    ):
        stages = []

        def record(**kwargs):
            stages.append(kwargs["stage"])

        monkeypatch.setattr(
            "feedz.modules.feeds.infrastructure.locator.BusinessEvents.feed_discovered",
            record,
        )
        client, _ = make_http_client(
            lambda request: httpx.Response(
                200, text=rss_with_items(1), headers={"content-type": "application/rss+xml"}
            )
        )
        service = FeedService(test_settings, http_client=client)

        result = await service.discover(FEED_URL)

        assert result.found is True
        assert stages == [DiscoveryStage.DIRECT]
