"""Subscription sync domain entities."""

import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from feedz.core.domain.exceptions import ParseError


class FeedType(StrEnum):
    """本地订阅类型。"""

    RSS = "RSS"
    NOSTR = "NOSTR"
    NOSTR_VIDEO = "NOSTR_VIDEO"

    @property
    def is_nostr(self) -> bool:
        return self in (FeedType.NOSTR, FeedType.NOSTR_VIDEO)


class SubscriptionPayloadError(ParseError):
    """Raised when a fetched subscription list payload cannot be decoded."""

    error_code = "INVALID_SUBSCRIPTION_PAYLOAD"


class LocalFeedEntry(BaseModel):
    """本地订阅条目（由调用方的持久化层提供，只读）。"""

    model_config = ConfigDict(frozen=True)

    type: FeedType
    url: str | None = None
    tags: list[str] = Field(default_factory=list)


class SyncEntry(BaseModel):
    """远端存在而本地缺失、需要导入的订阅。"""

    model_config = ConfigDict(frozen=True)

    type: FeedType
    url: str
    tags: list[str] | None = None


class MergeResult(BaseModel):
    """合并分类结果。只做分类，不修改任何输入。"""

    model_config = ConfigDict(frozen=True)

    to_add: list[SyncEntry] = Field(default_factory=list)
    local_only: list[LocalFeedEntry] = Field(default_factory=list)


class SubscriptionList(BaseModel):
    """订阅列表（可替换事件的内容）。

    线上格式：{"rss": [...], "nostr": [...], "tags": {...}, "lastUpdated": <unix 秒>}
    """

    model_config = ConfigDict(frozen=True)

    rss: list[str] = Field(default_factory=list, description="RSS 订阅地址")
    nostr: list[str] = Field(default_factory=list, description="npub 或原样保存的 Nostr 引用")
    tags: dict[str, list[str]] = Field(default_factory=dict, description="订阅 -> 标签")
    last_updated: int | None = Field(default=None, description="发布时间（unix 秒）")

    @classmethod
    def empty(cls) -> "SubscriptionList":
        return cls()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "rss": list(self.rss),
            "nostr": list(self.nostr),
            "tags": {key: list(values) for key, values in self.tags.items()},
        }
        if self.last_updated is not None:
            payload["lastUpdated"] = self.last_updated
        return payload

    def to_content(self) -> str:
        return json.dumps(self.to_payload())

    @classmethod
    def from_content(cls, content: str) -> "SubscriptionList":
        """从事件内容解码。

        Raises:
            SubscriptionPayloadError: 内容不是合法的订阅列表 JSON
        """
        try:
            payload = json.loads(content)
        except ValueError as e:
            raise SubscriptionPayloadError(f"Subscription list is not valid JSON: {e}") from e
        return cls.from_payload(payload)

    @classmethod
    def from_payload(cls, payload: Any) -> "SubscriptionList":
        if not isinstance(payload, dict):
            raise SubscriptionPayloadError("Subscription list payload must be a JSON object")

        rss = _string_list(payload.get("rss"), "rss")
        nostr = _string_list(payload.get("nostr"), "nostr")

        raw_tags = payload.get("tags") or {}
        if not isinstance(raw_tags, dict):
            raise SubscriptionPayloadError("'tags' must be an object")
        tags = {
            str(key): _string_list(values, f"tags[{key}]")
            for key, values in raw_tags.items()
        }

        last_updated = payload.get("lastUpdated")
        if not isinstance(last_updated, int) or isinstance(last_updated, bool):
            last_updated = None

        return cls(rss=rss, nostr=nostr, tags=tags, last_updated=last_updated)


def _string_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise SubscriptionPayloadError(f"'{field_name}' must be a list of strings")
    return list(value)


class PublishOutcome(BaseModel):
    """订阅列表发布结果。"""

    success: bool
    event_id: str | None = None
    created_at: int | None = None
    relay: str | None = None
    error: str | None = None


class FetchOutcome(BaseModel):
    """订阅列表拉取结果。

    未找到时 success=True 且 data 为空列表，与拉取失败（success=False）区分。
    """

    success: bool
    data: SubscriptionList | None = None
    event_id: str | None = None
    created_at: int | None = None
    error: str | None = None


class ReconcileReport(BaseModel):
    """拉取 + 合并的结果。失败时 merge 为空，调用方继续使用本地状态。"""

    success: bool
    merge: MergeResult | None = None
    remote: SubscriptionList | None = None
    remote_created_at: int | None = None
    error: str | None = None
