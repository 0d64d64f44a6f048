"""订阅源格式解析模块。"""

from feedz.modules.feeds.domain.entities import CanonicalFeed
from feedz.modules.feeds.domain.exceptions import FeedParseError
from feedz.modules.feeds.infrastructure.parsers.json_feed import (
    is_json_feed,
    parse_json_feed,
)
from feedz.modules.feeds.infrastructure.parsers.nostr_events import (
    ImetaParser,
    TagKind,
    decode_tags,
    parse_long_form_event,
    parse_relay_events,
    parse_video_event,
)
from feedz.modules.feeds.infrastructure.parsers.xml_feed import parse_xml_feed


def parse_feed(raw: bytes | str, content_type: str | None = None) -> CanonicalFeed:
    """解析原始订阅源文档。

    content-type 含 json 或正文以 "{" 开头时按 JSON Feed 解析，其余按 XML 解析。

    Raises:
        FeedParseError: 文档为空或格式错误
        UnsupportedFormatError: 不是 RSS / Atom / JSON Feed
    """
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    data = data.strip()
    if not data:
        raise FeedParseError("Empty feed document")

    if (content_type and "json" in content_type.lower()) or data.startswith(b"{"):
        return parse_json_feed(data)
    return parse_xml_feed(data)


__all__ = [
    "ImetaParser",
    "TagKind",
    "decode_tags",
    "is_json_feed",
    "parse_feed",
    "parse_json_feed",
    "parse_long_form_event",
    "parse_relay_events",
    "parse_video_event",
    "parse_xml_feed",
]
