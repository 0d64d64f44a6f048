"""Video platform detection and embed URL synthesis.

纯函数集合：识别视频平台、提取视频 ID、生成 embed / 缩略图 / 频道订阅地址。
唯一的网络副作用（频道页抓取）在 infrastructure.channel_resolver 中实现。
"""

import re
from enum import StrEnum
from urllib.parse import parse_qs, quote, urlsplit

from pydantic import BaseModel, ConfigDict, Field


class VideoPlatform(StrEnum):
    """视频平台枚举。"""

    YOUTUBE = "youtube"
    RUMBLE = "rumble"
    UNKNOWN = "unknown"


class VideoMetadata(BaseModel):
    """视频元数据。"""

    model_config = ConfigDict(frozen=True)

    platform: VideoPlatform = Field(..., description="视频平台")
    video_id: str = Field(..., description="平台内视频ID")
    embed_url: str = Field(..., description="可嵌入播放地址")
    thumbnail: str | None = Field(default=None, description="缩略图地址")


# 主机名子串 -> 平台，按顺序匹配
PLATFORM_DOMAINS: tuple[tuple[str, VideoPlatform], ...] = (
    ("youtube.com", VideoPlatform.YOUTUBE),
    ("youtu.be", VideoPlatform.YOUTUBE),
    ("rumble.com", VideoPlatform.RUMBLE),
)

YOUTUBE_EMBED_URL = "https://www.youtube.com/embed/{video_id}"
YOUTUBE_THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"
YOUTUBE_CHANNEL_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
RUMBLE_EMBED_URL = "https://rumble.com/embed/{video_id}/"

_YOUTUBE_SHORTS_RE = re.compile(r"/shorts/([^/?]+)")
_YOUTUBE_EMBED_RE = re.compile(r"/(embed|v)/([^/?]+)")
_YOUTUBE_CHANNEL_RE = re.compile(r"/channel/([^/?]+)")
_RUMBLE_EMBED_RE = re.compile(r"/embed/([^/?]+)")
_RUMBLE_VIDEO_RE = re.compile(r"/(v[a-z0-9]+)", re.IGNORECASE)

_CHANNEL_PATH_PREFIXES = ("/channel/", "/c/", "/user/", "/@")


def _hostname(url: str) -> str:
    try:
        return (urlsplit(url.strip()).hostname or "").lower()
    except ValueError:
        return ""


def detect_platform(url: str) -> VideoPlatform:
    """根据主机名识别视频平台，无法识别时返回 UNKNOWN。"""
    hostname = _hostname(url)
    if not hostname:
        return VideoPlatform.UNKNOWN
    for domain, platform in PLATFORM_DOMAINS:
        if domain in hostname:
            return platform
    return VideoPlatform.UNKNOWN


def extract_youtube_video_id(url: str) -> str | None:
    """提取 YouTube 视频 ID。

    优先级：youtu.be 短链路径 > ?v= 参数 > /shorts/<id> > /embed|/v/<id>
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None

    hostname = (parts.hostname or "").lower()
    if "youtu.be" in hostname:
        return parts.path[1:].split("/")[0] or None

    query = parse_qs(parts.query, keep_blank_values=True)
    if "v" in query:
        return query["v"][0] or None

    shorts_match = _YOUTUBE_SHORTS_RE.search(parts.path)
    if shorts_match:
        return shorts_match.group(1) or None

    path_match = _YOUTUBE_EMBED_RE.search(parts.path)
    if path_match:
        return path_match.group(2) or None

    return None


def extract_rumble_video_id(url: str) -> str | None:
    """提取 Rumble 视频 ID：/embed/<id> 优先，其次 /v<id>-title.html。"""
    try:
        path = urlsplit(url.strip()).path
    except ValueError:
        return None

    embed_match = _RUMBLE_EMBED_RE.search(path)
    if embed_match:
        return embed_match.group(1) or None

    video_match = _RUMBLE_VIDEO_RE.search(path)
    if video_match:
        return video_match.group(1) or None

    return None


def extract_video_id(url: str, platform: VideoPlatform | None = None) -> str | None:
    """按平台规则提取视频 ID。"""
    platform = platform or detect_platform(url)
    if platform == VideoPlatform.YOUTUBE:
        return extract_youtube_video_id(url)
    if platform == VideoPlatform.RUMBLE:
        return extract_rumble_video_id(url)
    return None


def build_video_metadata(platform: VideoPlatform, video_id: str) -> VideoMetadata | None:
    """根据固定模板生成 embed 地址与缩略图。

    Rumble 没有稳定的缩略图模板，thumbnail 始终为空。
    """
    if platform == VideoPlatform.YOUTUBE:
        return VideoMetadata(
            platform=platform,
            video_id=video_id,
            embed_url=YOUTUBE_EMBED_URL.format(video_id=video_id),
            thumbnail=YOUTUBE_THUMBNAIL_URL.format(video_id=video_id),
        )
    if platform == VideoPlatform.RUMBLE:
        return VideoMetadata(
            platform=platform,
            video_id=video_id,
            embed_url=RUMBLE_EMBED_URL.format(video_id=video_id),
            thumbnail=None,
        )
    return None


def get_video_metadata(url: str) -> VideoMetadata | None:
    """识别平台并生成视频元数据，非视频链接返回 None。"""
    platform = detect_platform(url)
    if platform == VideoPlatform.UNKNOWN:
        return None
    video_id = extract_video_id(url, platform)
    if not video_id:
        return None
    return build_video_metadata(platform, video_id)


def youtube_channel_feed_url(channel_url: str) -> str | None:
    """/channel/<id> 形式的频道地址可直接映射为官方订阅地址。"""
    try:
        path = urlsplit(channel_url.strip()).path
    except ValueError:
        return None
    match = _YOUTUBE_CHANNEL_RE.search(path)
    if match:
        return YOUTUBE_CHANNEL_FEED_URL.format(channel_id=match.group(1))
    return None


def bridge_feed_url(channel_url: str, template: str) -> str:
    """第三方订阅桥接地址（频道地址按 encodeURIComponent 规则编码）。"""
    return template.format(url=quote(channel_url, safe="!~*'()"))


def is_channel_url(url: str) -> bool:
    """视频平台的频道页地址：/channel/、/c/、/user/ 或 /@handle。

    首页、单个视频以及已经是 feed 的地址都不算频道。
    """
    platform = detect_platform(url)
    if platform == VideoPlatform.UNKNOWN:
        return False
    try:
        path = urlsplit(url.strip()).path
    except ValueError:
        return False
    return path.startswith(_CHANNEL_PATH_PREFIXES)
