"""Relay domain entities.

NIP-01 事件、过滤器与端点状态。
"""

from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventKind(IntEnum):
    """本项目关心的事件类型。"""

    PROFILE = 0
    VIDEO = 21
    SHORT_VIDEO = 22
    LONG_FORM = 30023
    SUBSCRIPTION_LIST = 30404


VIDEO_KINDS: tuple[int, ...] = (EventKind.VIDEO, EventKind.SHORT_VIDEO)


class NostrEvent(BaseModel):
    """已签名事件。"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="事件ID（sha256 hex）")
    pubkey: str = Field(..., description="作者公钥（hex）")
    created_at: int = Field(..., description="Unix 时间戳（秒）")
    kind: int = Field(..., description="事件类型")
    tags: list[list[str]] = Field(default_factory=list, description="标签数组")
    content: str = Field(default="", description="内容")
    sig: str = Field(default="", description="签名")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class UnsignedEvent(BaseModel):
    """待签名事件，交给外部签名器。"""

    model_config = ConfigDict(frozen=True)

    pubkey: str = ""
    created_at: int
    kind: int
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""


class RelayFilter(BaseModel):
    """查询过滤器。

    tags 使用单字母标签名作为键，序列化时转为 "#d" 形式。
    """

    model_config = ConfigDict(frozen=True)

    ids: list[str] | None = None
    authors: list[str] | None = None
    kinds: list[int] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    tags: dict[str, list[str]] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        """序列化为 NIP-01 过滤器对象。"""
        wire: dict[str, Any] = self.model_dump(exclude={"tags"}, exclude_none=True)
        for name, values in self.tags.items():
            wire[f"#{name}"] = list(values)
        return wire


class RelayLiveness(StrEnum):
    """端点连接状态（仅在内存中）。"""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    UNREACHABLE = "unreachable"
    CLOSED = "closed"


@dataclass
class RelayEndpoint:
    """Relay 端点。"""

    address: str
    liveness: RelayLiveness = RelayLiveness.UNKNOWN


@dataclass
class PublishResult:
    """发布结果。"""

    success: bool
    event_id: str | None = None
    relay: str | None = None
    error: str | None = None
    accepted_by: list[str] | None = None

    @classmethod
    def accepted(cls, event_id: str, relay: str) -> "PublishResult":
        return cls(success=True, event_id=event_id, relay=relay, accepted_by=[relay])

    @classmethod
    def rejected(cls, event_id: str | None, error: str) -> "PublishResult":
        return cls(success=False, event_id=event_id, error=error)
