"""Feed domain entities."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class FeedKind(StrEnum):
    """订阅源格式。"""

    RSS = "rss"
    ATOM = "atom"
    JSON = "json"


class DiscoveryStage(StrEnum):
    """发现级联的阶段。"""

    DIRECT = "direct"
    HTML = "html"
    COMMON_PATHS = "common_paths"
    VIDEO_CHANNEL = "video_channel"


class LocatorResult(BaseModel):
    """一次订阅源发现的结果（临时对象，不持久化）。"""

    model_config = ConfigDict(frozen=True)

    found: bool = Field(..., description="是否找到可用订阅源")
    feed_url: str | None = Field(default=None, description="订阅源地址")
    title: str | None = Field(default=None, description="订阅源标题")
    kind: FeedKind | None = Field(default=None, description="订阅源格式")
    error: str | None = Field(default=None, description="失败原因")

    @classmethod
    def success(
        cls,
        feed_url: str,
        kind: FeedKind,
        title: str | None = None,
    ) -> "LocatorResult":
        return cls(found=True, feed_url=feed_url, title=title, kind=kind)

    @classmethod
    def not_found(cls, error: str | None = None) -> "LocatorResult":
        return cls(found=False, error=error)


class CanonicalItem(BaseModel):
    """归一化后的订阅条目，与来源协议无关。"""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="标题")
    content: str = Field(default="", description="正文（HTML 或 Markdown）")
    author: str | None = Field(default=None, description="作者")
    published_at: datetime = Field(..., description="发布时间")
    url: str | None = Field(default=None, description="原文URL")
    guid: str | None = Field(default=None, description="源内唯一标识")
    video_id: str | None = Field(default=None, description="视频ID")
    embed_url: str | None = Field(default=None, description="视频嵌入地址")
    thumbnail: str | None = Field(default=None, description="缩略图")
    summary: str | None = Field(default=None, description="摘要（relay 长文）")
    tags: list[str] = Field(default_factory=list, description="话题标签")
    duration: float | None = Field(default=None, description="视频时长（秒）")

    @property
    def dedup_key(self) -> str | None:
        """源内去重键：guid 优先，缺失时退回 url。"""
        return self.guid or self.url


class CanonicalFeed(BaseModel):
    """归一化后的订阅源。"""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="订阅源标题")
    description: str | None = Field(default=None, description="描述")
    source_url: str | None = Field(default=None, description="站点地址")
    kind: FeedKind | None = Field(default=None, description="来源格式")
    items: list[CanonicalItem] = Field(default_factory=list, description="条目")


class FeedPreview(BaseModel):
    """订阅前预览。"""

    title: str
    description: str | None = None
    url: str | None = None
    item_count: int = 0
    latest_items: list[CanonicalItem] = Field(default_factory=list)


class NostrProfile(BaseModel):
    """作者资料（kind 0 事件内容）。"""

    model_config = ConfigDict(frozen=True)

    npub: str
    name: str | None = None
    display_name: str | None = None
    about: str | None = None
    picture: str | None = None
    nip05: str | None = None


class NostrFeedValidation(BaseModel):
    """订阅 npub 前的校验结果。"""

    valid: bool
    profile: NostrProfile | None = None
    has_content: bool = False
    has_videos: bool = False
    error: str | None = None
