"""订阅源发现（Feed Locator）。

三段级联，严格按顺序执行，任一阶段成功即返回：
1. check_if_feed: 直接把 URL 当作订阅源请求
2. find_feed_in_html: 抓取页面，查找 <link type="application/rss+xml"> 等声明
3. try_common_paths: 在站点根路径下依次尝试常见订阅地址

每个阶段的网络错误、超时、JSON 解析失败都只记录日志并视为未命中，
只有级联耗尽才以 found=False 返回给调用方。
"""

import json
import re
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from feedz.core.config import Settings
from feedz.core.infrastructure.http import FEED_ACCEPT, HTML_ACCEPT, http_client_scope
from feedz.core.infrastructure.logging import BusinessEvents
from feedz.modules.feeds.domain.entities import DiscoveryStage, FeedKind, LocatorResult
from feedz.modules.feeds.domain.exceptions import InvalidFeedUrlError
from feedz.modules.feeds.infrastructure.parsers.json_feed import is_json_feed

NOT_FOUND_MESSAGE = "No RSS or Atom feed found at this URL or domain"

ATOM_NAMESPACE_MARKER = 'xmlns="http://www.w3.org/2005/Atom"'

# 按顺序尝试，第一个验证通过的地址胜出
COMMON_FEED_PATHS: tuple[str, ...] = (
    "/feed",
    "/feed/",
    "/rss",
    "/rss.xml",
    "/atom.xml",
    "/feed.xml",
    "/index.xml",
    "/blog/feed",
    "/blog/rss",
    "/?feed=rss2",
    "/feeds/posts/default",  # Blogger
)

FEED_LINK_TYPES = frozenset(
    {
        "application/rss+xml",
        "application/atom+xml",
        "application/feed+json",
        "application/json",
    }
)

_RSS_TITLE_RE = re.compile(r"<title>([^<]+)</title>")
_ATOM_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>")


def validate_feed_url(url: str) -> str:
    """去除首尾空白并校验 http(s) 前缀。

    Raises:
        InvalidFeedUrlError: 不是 http:// 或 https:// 开头
    """
    normalized = url.strip()
    if not normalized.startswith(("http://", "https://")):
        raise InvalidFeedUrlError(url)
    return normalized


def classify_feed(
    url: str, content_type: str, text: str
) -> LocatorResult | None:
    """根据 content-type 与正文标记判断响应是否为订阅源。"""
    content_type = content_type.lower()

    if (
        "xml" in content_type
        or "rss" in content_type
        or "atom" in content_type
        or "<rss" in text
        or "<feed" in text
        or ATOM_NAMESPACE_MARKER in text
    ):
        title = None
        kind = FeedKind.RSS
        if "<rss" in text:
            match = _RSS_TITLE_RE.search(text)
            title = match.group(1) if match else None
        elif "<feed" in text or ATOM_NAMESPACE_MARKER in text:
            kind = FeedKind.ATOM
            match = _ATOM_TITLE_RE.search(text)
            title = match.group(1) if match else None
        return LocatorResult.success(url, kind, title)

    if "json" in content_type:
        try:
            document = json.loads(text)
        except ValueError as e:
            logger.debug(f"Invalid JSON at {url}: {e}")
            return None
        if is_json_feed(document):
            title = document.get("title")
            return LocatorResult.success(
                url, FeedKind.JSON, title if isinstance(title, str) else None
            )

    return None


class FeedLocator:
    """订阅源发现器。"""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    async def discover(self, url: str) -> LocatorResult:
        """把任意用户输入的 URL 解析为经过验证的订阅源地址。

        Raises:
            InvalidFeedUrlError: URL 不是 http(s)，此时不会发出任何请求
        """
        normalized = validate_feed_url(url)

        async with http_client_scope(
            self._client,
            timeout=self.settings.FEED_FETCH_TIMEOUT_SEC,
            user_agent=self.settings.USER_AGENT,
        ) as client:
            stages = (
                (DiscoveryStage.DIRECT, self.check_if_feed),
                (DiscoveryStage.HTML, self.find_feed_in_html),
                (DiscoveryStage.COMMON_PATHS, self.try_common_paths),
            )
            for stage, run_stage in stages:
                result = await run_stage(normalized, client)
                if result is not None:
                    BusinessEvents.feed_discovered(
                        input_url=normalized,
                        feed_url=result.feed_url or normalized,
                        stage=stage,
                        kind=result.kind,
                    )
                    return result
                logger.debug(f"Discovery stage {stage} found nothing for {normalized}")

        BusinessEvents.feed_discovery_failed(input_url=normalized, reason=NOT_FOUND_MESSAGE)
        return LocatorResult.not_found(NOT_FOUND_MESSAGE)

    async def check_if_feed(
        self, url: str, client: httpx.AsyncClient
    ) -> LocatorResult | None:
        """阶段 1：直接请求 URL，判断是否为订阅源。"""
        try:
            response = await client.get(
                url,
                headers={"User-Agent": self.settings.USER_AGENT, "Accept": FEED_ACCEPT},
                timeout=self.settings.FEED_FETCH_TIMEOUT_SEC,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Feed check timeout for {url}: {e}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Feed check failed for {url}: {e}")
            return None

        if not response.is_success:
            logger.debug(f"Feed check HTTP {response.status_code} for {url}")
            return None

        return classify_feed(
            url, response.headers.get("content-type", ""), response.text
        )

    async def find_feed_in_html(
        self, url: str, client: httpx.AsyncClient
    ) -> LocatorResult | None:
        """阶段 2：解析 HTML 中的订阅源 <link> 声明。

        只尝试第一个匹配的 link，验证失败即视为本阶段未命中。
        """
        try:
            response = await client.get(
                url,
                headers={"User-Agent": self.settings.USER_AGENT, "Accept": HTML_ACCEPT},
                timeout=self.settings.FEED_FETCH_TIMEOUT_SEC,
            )
        except httpx.HTTPError as e:
            logger.warning(f"HTML fetch failed for {url}: {e}")
            return None

        if not response.is_success:
            logger.debug(f"HTML fetch HTTP {response.status_code} for {url}")
            return None

        soup = BeautifulSoup(response.text, "html.parser")
        feed_link = None
        for link in soup.find_all("link"):
            link_type = (link.get("type") or "").strip().lower()
            if link_type in FEED_LINK_TYPES and link.get("href"):
                feed_link = link
                break

        if feed_link is None:
            return None

        feed_url = urljoin(str(response.url), feed_link["href"].strip())
        verification = await self.check_if_feed(feed_url, client)
        if verification is None:
            logger.debug(f"Declared feed link {feed_url} did not verify")
            return None

        return verification.model_copy(
            update={"title": feed_link.get("title") or verification.title}
        )

    async def try_common_paths(
        self, url: str, client: httpx.AsyncClient
    ) -> LocatorResult | None:
        """阶段 3：依次尝试站点根路径下的常见订阅地址。"""
        try:
            parts = urlsplit(url)
        except ValueError as e:
            logger.warning(f"Cannot derive origin from {url}: {e}")
            return None
        if not parts.netloc:
            return None

        origin = f"{parts.scheme}://{parts.netloc}"
        for path in COMMON_FEED_PATHS:
            result = await self.check_if_feed(f"{origin}{path}", client)
            if result is not None:
                return result
        return None
