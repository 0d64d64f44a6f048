"""Relay 事件解析（长文 kind 30023，视频 kind 21/22）。

标签数组 [[name, value, ...], ...] 先按封闭的 TagKind 枚举解码，
无法识别的标签进入 ignored 列表并以 debug 级别记录。
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from loguru import logger

from feedz.modules.feeds.domain.entities import CanonicalFeed, CanonicalItem
from feedz.modules.relays.domain.entities import VIDEO_KINDS, EventKind, NostrEvent
from feedz.modules.relays.domain.exceptions import InvalidIdentifierError
from feedz.modules.relays.domain.identity import hex_to_npub

DEFAULT_LONG_FORM_TITLE = "Untitled"
DEFAULT_VIDEO_TITLE = "Untitled Video"

_LEADING_DIGITS_RE = re.compile(r"^\s*(\d+)")


class TagKind(StrEnum):
    """已知标签类型。"""

    TITLE = "title"
    SUMMARY = "summary"
    PUBLISHED_AT = "published_at"
    D = "d"
    T = "t"
    IMETA = "imeta"


@dataclass
class DecodedTag:
    kind: TagKind
    values: list[str]

    @property
    def value(self) -> str:
        return self.values[0] if self.values else ""


@dataclass
class DecodedTags:
    """标签解码结果。"""

    known: list[DecodedTag] = field(default_factory=list)
    ignored: list[list[str]] = field(default_factory=list)

    def of(self, kind: TagKind) -> list[DecodedTag]:
        return [tag for tag in self.known if tag.kind == kind]

    def last(self, kind: TagKind, *, skip_empty: bool = False) -> str | None:
        """同名标签多次出现时取最后一个的值（可能为空字符串）。

        skip_empty=True 时空值不覆盖之前的值。
        """
        result = None
        for tag in self.of(kind):
            if tag.value or not skip_empty:
                result = tag.value
        return result


def decode_tags(tags: Iterable[list[str]]) -> DecodedTags:
    decoded = DecodedTags()
    for tag in tags:
        if not tag:
            decoded.ignored.append(list(tag))
            continue
        try:
            kind = TagKind(tag[0])
        except ValueError:
            decoded.ignored.append(list(tag))
            continue
        decoded.known.append(DecodedTag(kind=kind, values=list(tag[1:])))

    if decoded.ignored:
        logger.debug(
            f"Ignored {len(decoded.ignored)} unrecognized tags: "
            f"{sorted({t[0] for t in decoded.ignored if t})}"
        )
    return decoded


# ============================================
# imeta
# ============================================


@dataclass
class MediaInfo:
    url: str | None = None
    image: str | None = None
    duration: str | None = None


class ImetaParser:
    """imeta 标签解析器。

    每个取值是 "key value" 形式的 token（key 后必须有空格）。url 与 duration
    取最后一次出现的值，即使为空；image 只保留第一个非空值。
    状态在同一事件的多个 imeta 标签之间累积。
    """

    FIRST_WINS = frozenset({"image"})
    KEYS = frozenset({"url", "image", "duration"})

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def feed(self, tokens: Iterable[str]) -> None:
        for token in tokens:
            key, separator, value = token.lstrip().partition(" ")
            if key not in self.KEYS or not separator:
                continue
            value = value.strip()
            if key in self.FIRST_WINS and (not value or self._values.get(key)):
                continue
            self._values[key] = value

    def result(self) -> MediaInfo:
        return MediaInfo(
            url=self._values.get("url") or None,
            image=self._values.get("image") or None,
            duration=self._values.get("duration") or None,
        )


def parse_imeta(tags: Iterable[DecodedTag]) -> MediaInfo:
    parser = ImetaParser()
    for tag in tags:
        parser.feed(tag.values)
    return parser.result()


# ============================================
# 事件 -> CanonicalItem
# ============================================


def _to_datetime(value: str | None, fallback: int) -> datetime:
    if value:
        match = _LEADING_DIGITS_RE.match(value)
        if match:
            try:
                return datetime.fromtimestamp(int(match.group(1)), UTC)
            except (OverflowError, OSError, ValueError):
                logger.debug(f"Out of range published_at '{value}'")
    return datetime.fromtimestamp(fallback, UTC)


def _parse_duration(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        match = re.match(r"^\s*(\d+(?:\.\d+)?)", value)
        return float(match.group(1)) if match else None


def _author(pubkey: str) -> str:
    try:
        return hex_to_npub(pubkey)
    except InvalidIdentifierError:
        return pubkey


def _topic_tags(decoded: DecodedTags) -> list[str]:
    return [tag.value for tag in decoded.of(TagKind.T) if tag.value]


def parse_long_form_event(event: NostrEvent) -> CanonicalItem:
    """长文事件（kind 30023）。d 标签（slug）同时作为 url。"""
    decoded = decode_tags(event.tags)

    return CanonicalItem(
        title=decoded.last(TagKind.TITLE) or DEFAULT_LONG_FORM_TITLE,
        content=event.content,
        author=_author(event.pubkey),
        published_at=_to_datetime(
            decoded.last(TagKind.PUBLISHED_AT, skip_empty=True), event.created_at
        ),
        url=decoded.last(TagKind.D, skip_empty=True),
        guid=event.id,
        summary=decoded.last(TagKind.SUMMARY) or None,
        tags=_topic_tags(decoded),
    )


def parse_video_event(event: NostrEvent) -> CanonicalItem:
    """视频事件（kind 21/22）。"""
    decoded = decode_tags(event.tags)
    media = parse_imeta(decoded.of(TagKind.IMETA))

    return CanonicalItem(
        title=decoded.last(TagKind.TITLE) or DEFAULT_VIDEO_TITLE,
        content=event.content,
        author=_author(event.pubkey),
        published_at=_to_datetime(
            decoded.last(TagKind.PUBLISHED_AT, skip_empty=True), event.created_at
        ),
        url=media.url,
        guid=event.id,
        embed_url=media.url,
        thumbnail=media.image,
        summary=decoded.last(TagKind.SUMMARY) or None,
        tags=_topic_tags(decoded),
        duration=_parse_duration(media.duration),
    )


def parse_relay_event(event: NostrEvent) -> CanonicalItem | None:
    if event.kind == EventKind.LONG_FORM:
        return parse_long_form_event(event)
    if event.kind in VIDEO_KINDS:
        return parse_video_event(event)
    logger.debug(f"Skipping event {event.id} with unsupported kind {event.kind}")
    return None


def parse_relay_events(
    events: Iterable[NostrEvent],
    title: str,
    description: str | None = None,
    source_url: str | None = None,
) -> CanonicalFeed:
    """将一组事件归一化为订阅源，按发布时间倒序。"""
    items = [item for item in map(parse_relay_event, events) if item is not None]
    items.sort(key=lambda item: item.published_at, reverse=True)
    return CanonicalFeed(
        title=title,
        description=description,
        source_url=source_url,
        items=items,
    )
