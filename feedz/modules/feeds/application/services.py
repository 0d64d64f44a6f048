"""Feed application services."""

import httpx
from loguru import logger

from feedz.core.config import Settings
from feedz.core.infrastructure.http import FEED_ACCEPT, http_client_scope
from feedz.core.infrastructure.logging import BusinessEvents
from feedz.modules.feeds.domain.entities import (
    CanonicalFeed,
    DiscoveryStage,
    FeedKind,
    FeedPreview,
    LocatorResult,
)
from feedz.modules.feeds.domain.exceptions import (
    FeedFetchError,
    FeedFetchTimeoutError,
)
from feedz.modules.feeds.infrastructure.locator import FeedLocator, validate_feed_url
from feedz.modules.feeds.infrastructure.parsers import parse_feed
from feedz.modules.media.domain.video import (
    YOUTUBE_CHANNEL_FEED_URL,
    is_channel_url,
)
from feedz.modules.media.infrastructure.channel_resolver import ChannelFeedResolver

PREVIEW_ITEM_COUNT = 3

EXPECTED_CONTENT_TYPES = ("xml", "rss", "atom", "json")

_YOUTUBE_FEED_PREFIX = YOUTUBE_CHANNEL_FEED_URL.split("{", 1)[0]


class FeedService:
    """订阅源服务：发现、抓取解析、预览。"""

    def __init__(
        self,
        settings: Settings,
        locator: FeedLocator | None = None,
        channel_resolver: ChannelFeedResolver | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self._http_client = http_client
        self.locator = locator or FeedLocator(settings, http_client)
        self.channel_resolver = channel_resolver or ChannelFeedResolver(
            settings, http_client
        )

    async def discover(self, url: str) -> LocatorResult:
        """发现订阅源。

        视频平台频道页先走频道解析；首页、单个视频和已有 feed 地址走三段级联。

        Raises:
            InvalidFeedUrlError: URL 不是 http(s)
        """
        normalized = validate_feed_url(url)

        if is_channel_url(normalized):
            feed_url = await self.channel_resolver.resolve_channel_feed(normalized)
            if feed_url:
                kind = (
                    FeedKind.ATOM
                    if feed_url.startswith(_YOUTUBE_FEED_PREFIX)
                    else FeedKind.RSS
                )
                BusinessEvents.feed_discovered(
                    input_url=normalized,
                    feed_url=feed_url,
                    stage=DiscoveryStage.VIDEO_CHANNEL,
                    kind=kind,
                )
                return LocatorResult.success(feed_url, kind)

        return await self.locator.discover(normalized)

    async def fetch_and_parse(self, url: str) -> CanonicalFeed:
        """抓取并解析订阅源。

        Raises:
            InvalidFeedUrlError: URL 不是 http(s)
            FeedFetchTimeoutError: 请求超时
            FeedFetchError: 网络错误或非 2xx 响应
            FeedParseError: 内容为空或格式错误
        """
        feed_url = validate_feed_url(url)
        timeout = self.settings.FEED_FETCH_TIMEOUT_SEC

        try:
            async with http_client_scope(
                self._http_client, timeout=timeout, user_agent=self.settings.USER_AGENT
            ) as client:
                response = await client.get(
                    feed_url,
                    headers={
                        "User-Agent": self.settings.USER_AGENT,
                        "Accept": FEED_ACCEPT,
                    },
                    timeout=timeout,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Feed fetch timeout for {feed_url}: {e}")
            raise FeedFetchTimeoutError(feed_url, timeout) from e
        except httpx.HTTPError as e:
            logger.warning(f"Feed fetch error for {feed_url}: {e}")
            raise FeedFetchError(feed_url, str(e)) from e

        if not response.is_success:
            raise FeedFetchError(feed_url, f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if not any(marker in content_type.lower() for marker in EXPECTED_CONTENT_TYPES):
            logger.warning(
                f"Unexpected content type '{content_type}' for {feed_url}, parsing anyway"
            )

        feed = parse_feed(response.content, content_type)
        BusinessEvents.feed_parsed(
            kind=feed.kind or "unknown",
            item_count=len(feed.items),
            source_url=feed_url,
        )
        return feed

    async def preview(self, url: str) -> FeedPreview:
        """订阅前预览：标题、描述、条目数与最新三条。"""
        feed = await self.fetch_and_parse(url)
        return FeedPreview(
            title=feed.title,
            description=feed.description,
            url=feed.source_url or url.strip(),
            item_count=len(feed.items),
            latest_items=feed.items[:PREVIEW_ITEM_COUNT],
        )
