"""Application configuration."""

from functools import lru_cache
from typing import Annotated, Any, Literal, Self

from pydantic import BeforeValidator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_relays(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "nostr-feedz"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    USER_AGENT: str = "Mozilla/5.0 (compatible; NostrFeedz/1.0; +https://nostrfeedz.com)"

    # Timeouts（秒）
    FEED_FETCH_TIMEOUT_SEC: float = 10.0  # 订阅源 / HTML 抓取
    IDENTITY_FETCH_TIMEOUT_SEC: float = 5.0  # NIP-05 身份校验
    CHANNEL_SCRAPE_TIMEOUT_SEC: float = 5.0  # 视频频道页抓取

    # Relays
    DEFAULT_RELAYS: Annotated[list[str] | str, BeforeValidator(parse_relays)] = [
        "wss://relay.damus.io",
        "wss://nos.lol",
        "wss://relay.snort.social",
        "wss://relay.nostr.band",
        "wss://nostr-pub.wellorder.net",
    ]
    RELAY_CONNECT_TIMEOUT_SEC: float = 5.0
    RELAY_QUERY_WAIT_SEC: float = 5.0  # 查询等待窗口，超时的 relay 不计入结果
    RELAY_PUBLISH_TIMEOUT_SEC: float = 10.0

    # Subscription sync（可替换事件，按 author + d-tag 寻址）
    SUBSCRIPTION_LIST_KIND: int = 30404
    SUBSCRIPTION_LIST_SLUG: str = "nostr-feedz-subscriptions"
    CLIENT_TAG: str = "nostr-feedz"

    # Feeds
    FEED_BRIDGE_URL: str = "https://openrss.org/rss?url={url}"
    NOSTR_FETCH_LIMIT: int = 50

    @model_validator(mode="after")
    def _check_relays(self) -> Self:
        if not self.DEFAULT_RELAYS:
            raise ValueError("DEFAULT_RELAYS must contain at least one relay")
        for relay in self.DEFAULT_RELAYS:
            if not relay.startswith(("ws://", "wss://")):
                raise ValueError(f"Relay address must be a ws(s) URL: {relay}")
        return self

    @model_validator(mode="after")
    def _check_bridge_template(self) -> Self:
        if "{url}" not in self.FEED_BRIDGE_URL:
            raise ValueError("FEED_BRIDGE_URL must contain a {url} placeholder")
        return self


@lru_cache
def get_settings() -> Settings:
    """获取进程级配置（仅供入口脚本使用，组件应显式接收 Settings）。"""
    return Settings()
