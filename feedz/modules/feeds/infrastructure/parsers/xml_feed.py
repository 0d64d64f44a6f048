"""RSS / Atom 解析。

由 feedparser 完成格式识别和字段提取，字段优先级：

RSS 条目：
- content: content:encoded > description
- author: author > dc:creator
- guid: guid > link

Atom 条目：
- content: content > summary
- link: 非 text/html 的 alternate > 第一个 alternate > 第一个带 href 的 link
- guid: id > link href
- 日期: published > updated

缩略图：视频解析结果 > media:thumbnail > media:content > media:group/media:thumbnail

feedparser 会把 author 与 dc:creator 合并、把 media:group 内外的缩略图合并，
这两处仍按条目元素直接读取。
"""

import io
import xml.etree.ElementTree as ET
from datetime import UTC, datetime
from typing import Any
from xml.sax import SAXException

import feedparser
from loguru import logger

from feedz.modules.feeds.domain.entities import CanonicalFeed, CanonicalItem, FeedKind
from feedz.modules.feeds.domain.exceptions import FeedParseError, UnsupportedFormatError
from feedz.modules.media.domain.video import get_video_metadata

DC_NS = "http://purl.org/dc/elements/1.1/"
MEDIA_NS = "http://search.yahoo.com/mrss/"

NAMESPACES = {
    "dc": DC_NS,
    "media": MEDIA_NS,
}

DEFAULT_ITEM_TITLE = "Untitled"
DEFAULT_FEED_TITLE = "Untitled Feed"


def parse_xml_feed(raw: bytes | str) -> CanonicalFeed:
    """解析 RSS 或 Atom 文档。

    Raises:
        FeedParseError: 文档为空、XML 格式错误或 RSS 缺少 channel
        UnsupportedFormatError: 既不是 RSS 也不是 Atom
    """
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    data = data.strip()
    if not data:
        raise FeedParseError("Empty feed document")

    # 传入文件对象，避免 feedparser 把字符串当作 URL 或文件名
    parsed = feedparser.parse(io.BytesIO(data))
    if parsed.bozo and isinstance(parsed.bozo_exception, SAXException):
        raise FeedParseError(f"Malformed XML: {parsed.bozo_exception}") from parsed.bozo_exception

    root = _element_tree(data)

    version = parsed.get("version") or ""
    if version.startswith("rss"):
        kind = FeedKind.RSS
    elif version.startswith("atom"):
        kind = FeedKind.ATOM
    else:
        raise UnsupportedFormatError(root.tag)

    if kind == FeedKind.RSS and not _descendants(root, "channel"):
        raise FeedParseError("RSS document has no <channel> element")

    elements = _entry_elements(root, kind, len(parsed.entries))
    if kind == FeedKind.RSS:
        items = [_rss_item(entry, elem) for entry, elem in zip(parsed.entries, elements)]
    else:
        items = [_atom_item(entry, elem) for entry, elem in zip(parsed.entries, elements)]

    return CanonicalFeed(
        title=parsed.feed.get("title") or DEFAULT_FEED_TITLE,
        description=parsed.feed.get("subtitle") or None,
        source_url=parsed.feed.get("link") or None,
        kind=kind,
        items=items,
    )


# ============================================
# 条目映射
# ============================================


def _rss_item(entry: Any, elem: ET.Element | None) -> CanonicalItem:
    link = entry.get("link") or None

    if elem is not None:
        author = _text(elem, "author") or _text(elem, "dc:creator")
    else:
        author = entry.get("author") or None

    return _canonical_item(entry, elem, link=link, author=author)


def _atom_item(entry: Any, elem: ET.Element | None) -> CanonicalItem:
    link = _select_atom_link(entry.get("links") or [])

    author_detail = entry.get("author_detail") or {}
    author = author_detail.get("name") or entry.get("author") or None

    return _canonical_item(entry, elem, link=link, author=author)


def _canonical_item(
    entry: Any, elem: ET.Element | None, *, link: str | None, author: str | None
) -> CanonicalItem:
    video = get_video_metadata(link) if link else None
    resolved_thumbnail = video.thumbnail if video else None

    return CanonicalItem(
        title=entry.get("title") or DEFAULT_ITEM_TITLE,
        content=_content(entry),
        author=author,
        published_at=_entry_date(entry),
        url=link,
        guid=entry.get("id") or link,
        video_id=video.video_id if video else None,
        embed_url=video.embed_url if video else None,
        thumbnail=resolved_thumbnail or _thumbnail(entry, elem),
        tags=[tag["term"] for tag in entry.get("tags") or [] if tag.get("term")],
    )


def _content(entry: Any) -> str:
    # feedparser 把 content:encoded 与 Atom <content> 放进 content，description 与 <summary> 放进 summary
    for content in entry.get("content") or []:
        if content.get("value"):
            return content["value"]
    return entry.get("summary") or ""


def _select_atom_link(links: list[Any]) -> str | None:
    """选择条目链接。

    feedparser 会给没有 rel 的 link 补上 alternate。
    """
    alternates = [
        link
        for link in links
        if link.get("rel", "alternate") == "alternate" and link.get("href")
    ]

    for link in alternates:
        if link.get("type") != "text/html":
            return link["href"]

    if alternates:
        return alternates[0]["href"]

    for link in links:
        if link.get("href"):
            return link["href"]

    return None


def _entry_date(entry: Any) -> datetime:
    """发布时间：published > updated，无法解析时取当前时间。"""
    for field in ("published_parsed", "updated_parsed"):
        parsed = entry.get(field)
        if parsed:
            return datetime(*parsed[:6], tzinfo=UTC)

    raw_date = entry.get("published") or entry.get("updated")
    if raw_date:
        logger.debug(f"Unparseable feed date '{raw_date}', defaulting to now")
    return datetime.now(UTC)


def _thumbnail(entry: Any, elem: ET.Element | None) -> str | None:
    if elem is not None:
        for path in ("media:thumbnail", "media:content", "media:group/media:thumbnail"):
            media = elem.find(path, NAMESPACES)
            if media is not None and media.get("url"):
                return media.get("url")
        return None

    for key in ("media_thumbnail", "media_content"):
        for media in entry.get(key) or []:
            if media.get("url"):
                return media["url"]
    return None


# ============================================
# 元素访问
# ============================================


def _element_tree(data: bytes) -> ET.Element:
    try:
        return ET.fromstring(data)
    except ET.ParseError as e:
        raise FeedParseError(f"Malformed XML: {e}") from e


def _entry_elements(
    root: ET.Element, kind: FeedKind, expected: int
) -> list[ET.Element | None]:
    """按文档顺序取出与 feedparser 条目一一对应的 item/entry 元素。"""
    elements: list[ET.Element | None] = list(
        _descendants(root, "item" if kind == FeedKind.RSS else "entry")
    )
    if len(elements) != expected:
        logger.debug(
            f"Feed has {len(elements)} item elements but {expected} parsed entries, "
            "using parsed fields only"
        )
        return [None] * expected
    return elements


def _descendants(root: ET.Element, local_name: str) -> list[ET.Element]:
    # RSS 1.0 的 item 带命名空间，Atom 也可能不带命名空间
    return [elem for elem in root.iter() if elem.tag.rsplit("}", 1)[-1] == local_name]


def _text(elem: ET.Element, path: str) -> str | None:
    """读取子元素文本，去除首尾空白，空字符串视为缺失。"""
    child = elem.find(path, NAMESPACES)
    if child is None or child.text is None:
        return None
    text = child.text.strip()
    return text or None
