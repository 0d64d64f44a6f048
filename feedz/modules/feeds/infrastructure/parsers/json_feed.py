"""JSON Feed (https://jsonfeed.org) 解析。"""

import json
from datetime import UTC, datetime
from typing import Any

import feedparser.datetimes
from loguru import logger

from feedz.modules.feeds.domain.entities import CanonicalFeed, CanonicalItem, FeedKind
from feedz.modules.feeds.domain.exceptions import FeedParseError, UnsupportedFormatError
from feedz.modules.feeds.infrastructure.parsers.xml_feed import (
    DEFAULT_FEED_TITLE,
    DEFAULT_ITEM_TITLE,
)
from feedz.modules.media.domain.video import get_video_metadata

JSON_FEED_VERSION_PREFIX = "https://jsonfeed.org/version/"


def is_json_feed(document: Any) -> bool:
    """判断已解码的 JSON 是否为 JSON Feed。"""
    if not isinstance(document, dict):
        return False
    version = document.get("version")
    return isinstance(version, str) and version.startswith(JSON_FEED_VERSION_PREFIX)


def parse_json_feed(raw: bytes | str) -> CanonicalFeed:
    """解析 JSON Feed 1.0 / 1.1 文档。

    Raises:
        FeedParseError: JSON 格式错误
        UnsupportedFormatError: 不是 JSON Feed
    """
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FeedParseError(f"Malformed JSON: {e}") from e

    if not is_json_feed(document):
        raise UnsupportedFormatError("json")

    raw_items = document.get("items") or []
    items = [_parse_item(item) for item in raw_items if isinstance(item, dict)]

    return CanonicalFeed(
        title=_string(document.get("title")) or DEFAULT_FEED_TITLE,
        description=_string(document.get("description")),
        source_url=_string(document.get("home_page_url")),
        kind=FeedKind.JSON,
        items=items,
    )


def _parse_item(item: dict[str, Any]) -> CanonicalItem:
    url = _string(item.get("url")) or _string(item.get("external_url"))
    video = get_video_metadata(url) if url else None

    content = (
        _string(item.get("content_html"))
        or _string(item.get("content_text"))
        or _string(item.get("summary"))
        or ""
    )

    date_str = _string(item.get("date_published")) or _string(item.get("date_modified"))

    thumbnail = video.thumbnail if video else None
    thumbnail = thumbnail or _string(item.get("image")) or _string(item.get("banner_image"))

    tags = [tag for tag in item.get("tags") or [] if isinstance(tag, str)]

    return CanonicalItem(
        title=_string(item.get("title")) or DEFAULT_ITEM_TITLE,
        content=content,
        author=_author_name(item),
        published_at=_parse_date(date_str),
        url=url,
        guid=_string(item.get("id")) or url,
        video_id=video.video_id if video else None,
        embed_url=video.embed_url if video else None,
        thumbnail=thumbnail,
        summary=_string(item.get("summary")),
        tags=tags,
    )


def _author_name(item: dict[str, Any]) -> str | None:
    # 1.1 使用 authors 列表，1.0 使用单个 author
    authors = item.get("authors")
    if isinstance(authors, list):
        for author in authors:
            if isinstance(author, dict) and _string(author.get("name")):
                return _string(author.get("name"))
    author = item.get("author")
    if isinstance(author, dict):
        return _string(author.get("name"))
    return None


def _string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _parse_date(date_str: str | None) -> datetime:
    """使用 feedparser 的日期解析，无法解析时取当前时间。"""
    if date_str:
        parsed = feedparser.datetimes._parse_date(date_str)
        if parsed:
            return datetime(*parsed[:6], tzinfo=UTC)
        logger.debug(f"Unparseable feed date '{date_str}', defaulting to now")
    return datetime.now(UTC)
