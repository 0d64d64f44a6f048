"""视频频道订阅地址解析。

YouTube /channel/<id> 直接映射官方 feed；/c/、/user/、/@handle 需要抓取一次
频道页面找回 channelId（5 秒超时），失败时退回第三方桥接地址。
Rumble 没有官方 feed，始终使用桥接地址。
"""

import re

import httpx
from loguru import logger

from feedz.core.config import Settings
from feedz.core.infrastructure.http import HTML_ACCEPT, http_client_scope
from feedz.core.infrastructure.logging import BusinessEvents
from feedz.modules.media.domain.video import (
    YOUTUBE_CHANNEL_FEED_URL,
    VideoPlatform,
    bridge_feed_url,
    detect_platform,
    youtube_channel_feed_url,
)

# 频道页中可能出现 channelId 的位置，按顺序尝试
CHANNEL_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'"channelId":"([^"]+)"'),
    re.compile(r'channel_id=([^"&]+)'),
    re.compile(
        r'<link[^>]+href="https://www\.youtube\.com/feeds/videos\.xml\?channel_id=([^"]+)"'
    ),
)


class ChannelFeedResolver:
    """视频频道 -> 订阅地址解析器。"""

    USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    async def resolve_channel_feed(self, channel_url: str) -> str | None:
        """解析频道订阅地址，非视频平台返回 None。"""
        platform = detect_platform(channel_url)

        if platform == VideoPlatform.YOUTUBE:
            feed_url = youtube_channel_feed_url(channel_url)
            if feed_url:
                return feed_url

            channel_id = await self.discover_youtube_channel_id(channel_url)
            if channel_id:
                return YOUTUBE_CHANNEL_FEED_URL.format(channel_id=channel_id)

            BusinessEvents.feature_degraded(
                feature="youtube_channel_feed",
                reason="channel id not found, using feed bridge",
                channel_url=channel_url,
            )
            return bridge_feed_url(channel_url, self.settings.FEED_BRIDGE_URL)

        if platform == VideoPlatform.RUMBLE:
            return bridge_feed_url(channel_url, self.settings.FEED_BRIDGE_URL)

        return None

    async def discover_youtube_channel_id(self, channel_url: str) -> str | None:
        """抓取频道页面，提取内嵌的 channelId。失败返回 None，不抛出。"""
        timeout = self.settings.CHANNEL_SCRAPE_TIMEOUT_SEC
        try:
            async with http_client_scope(
                self._client, timeout=timeout, user_agent=self.USER_AGENT
            ) as client:
                response = await client.get(
                    channel_url,
                    headers={"User-Agent": self.USER_AGENT, "Accept": HTML_ACCEPT},
                    timeout=timeout,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Channel page scrape timeout for {channel_url}: {e}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Channel page scrape failed for {channel_url}: {e}")
            return None

        if not response.is_success:
            logger.debug(
                f"Channel page scrape HTTP {response.status_code} for {channel_url}"
            )
            return None

        return self._extract_channel_id(response.text)

    @staticmethod
    def _extract_channel_id(html: str) -> str | None:
        for pattern in CHANNEL_ID_PATTERNS:
            match = pattern.search(html)
            if match:
                return match.group(1)
        return None
