"""订阅同步（Subscription Reconciler）。

订阅列表以可替换事件保存在 relay 上，按 (作者, 固定 slug) 寻址，
时间戳最大的版本为准。本模块负责：
- 由本地订阅构建订阅列表
- 发布（签名由调用方注入，本模块不接触私钥）
- 拉取（未找到返回空列表，与失败区分）
- 合并分类（纯函数，幂等，不修改输入）
"""

import time
from collections.abc import Awaitable, Callable, Iterable

from loguru import logger

from feedz.core.config import Settings
from feedz.core.infrastructure.logging import BusinessEvents
from feedz.modules.relays.application.client import RelayClient
from feedz.modules.relays.domain.entities import NostrEvent, RelayFilter, UnsignedEvent
from feedz.modules.relays.domain.exceptions import (
    AllRelaysFailedError,
    InvalidIdentifierError,
)
from feedz.modules.relays.domain.identity import to_hex_pubkey
from feedz.modules.sync.domain.entities import (
    FeedType,
    FetchOutcome,
    LocalFeedEntry,
    MergeResult,
    PublishOutcome,
    ReconcileReport,
    SubscriptionList,
    SubscriptionPayloadError,
    SyncEntry,
)
from feedz.modules.sync.domain.normalization import (
    extract_npub,
    normalize_identifier,
    normalize_url,
)

Signer = Callable[[UnsignedEvent], Awaitable[NostrEvent]]


def build_subscription_list(entries: Iterable[LocalFeedEntry]) -> SubscriptionList:
    """由本地订阅构建订阅列表。

    Nostr 订阅只保留其中的 npub（没有 npub 时原样保存）；
    按归一化键去重，保留第一次出现的条目。
    """
    rss: list[str] = []
    nostr: list[str] = []
    tags: dict[str, list[str]] = {}
    seen_rss: set[str] = set()
    seen_nostr: set[str] = set()

    for entry in entries:
        url = (entry.url or "").strip()
        if not url:
            continue

        if entry.type == FeedType.RSS:
            key = normalize_url(url)
            if key in seen_rss:
                continue
            seen_rss.add(key)
            rss.append(url)
        else:
            url = extract_npub(url) or url
            key = normalize_identifier(url)
            if key in seen_nostr:
                continue
            seen_nostr.add(key)
            nostr.append(url)

        if entry.tags:
            tags[url] = list(entry.tags)

    return SubscriptionList(rss=rss, nostr=nostr, tags=tags)


class SubscriptionReconciler:
    """订阅列表同步服务。"""

    def __init__(self, relay_client: RelayClient, settings: Settings):
        self.relay_client = relay_client
        self.settings = settings
        # 已发布或已拉取到的最大 created_at
        self._last_created_at = 0

    def _observe(self, created_at: int | None) -> None:
        if created_at is not None:
            self._last_created_at = max(self._last_created_at, created_at)

    def _next_timestamp(self) -> int:
        # 严格大于本实例已知的任何版本
        created_at = max(int(time.time()), self._last_created_at + 1)
        self._last_created_at = created_at
        return created_at

    def _list_filter(self, pubkey: str) -> RelayFilter:
        return RelayFilter(
            kinds=[self.settings.SUBSCRIPTION_LIST_KIND],
            authors=[pubkey],
            tags={"d": [self.settings.SUBSCRIPTION_LIST_SLUG]},
        )

    async def _observe_remote_head(
        self, author: str, endpoints: list[str] | None
    ) -> None:
        """查询远端当前版本的时间戳；查询失败不阻止发布。"""
        try:
            event = await self.relay_client.get_one(
                self._list_filter(to_hex_pubkey(author)), endpoints
            )
        except (AllRelaysFailedError, InvalidIdentifierError) as e:
            logger.warning(f"Could not look up current subscription list for {author}: {e}")
            return
        if event is not None:
            self._observe(event.created_at)

    def _unsigned_event(self, subscription_list: SubscriptionList) -> UnsignedEvent:
        created_at = self._next_timestamp()
        content = subscription_list.model_copy(
            update={"last_updated": created_at}
        ).to_content()
        return UnsignedEvent(
            created_at=created_at,
            kind=self.settings.SUBSCRIPTION_LIST_KIND,
            tags=[
                ["d", self.settings.SUBSCRIPTION_LIST_SLUG],
                ["client", self.settings.CLIENT_TAG],
            ],
            content=content,
        )

    async def publish(
        self,
        subscription_list: SubscriptionList,
        sign: Signer,
        endpoints: list[str] | None = None,
        *,
        author: str | None = None,
        previous_created_at: int | None = None,
    ) -> PublishOutcome:
        """签名并发布订阅列表。签名或发布失败都转换为 success=False。

        新版本的 created_at 严格大于本实例发布或拉取过的所有版本，
        以及 previous_created_at。传入 author 时先查询远端当前版本，
        新实例（例如重启后）也不会发布出比远端更旧的列表。
        """
        self._observe(previous_created_at)
        if author is not None:
            await self._observe_remote_head(author, endpoints)
        unsigned = self._unsigned_event(subscription_list)

        try:
            signed = await sign(unsigned)
        except Exception as e:
            logger.warning(f"Subscription list signing failed: {e}")
            BusinessEvents.subscription_list_published(
                event_id=None,
                rss_count=len(subscription_list.rss),
                nostr_count=len(subscription_list.nostr),
                success=False,
                error=str(e),
            )
            return PublishOutcome(success=False, error=f"Signing failed: {e}")

        result = await self.relay_client.publish(signed, endpoints)

        BusinessEvents.subscription_list_published(
            event_id=signed.id,
            rss_count=len(subscription_list.rss),
            nostr_count=len(subscription_list.nostr),
            success=result.success,
        )
        if not result.success:
            return PublishOutcome(
                success=False,
                event_id=signed.id,
                created_at=signed.created_at,
                error=result.error,
            )
        return PublishOutcome(
            success=True,
            event_id=signed.id,
            created_at=signed.created_at,
            relay=result.relay,
        )

    async def fetch(
        self,
        author: str,
        endpoints: list[str] | None = None,
    ) -> FetchOutcome:
        """拉取作者最新的订阅列表。

        author 可以是 npub 或 64 位 hex；非法标识直接失败，不发起网络请求。
        """
        try:
            pubkey = to_hex_pubkey(author)
        except InvalidIdentifierError as e:
            return FetchOutcome(success=False, error=e.message)

        relay_filter = self._list_filter(pubkey)

        try:
            event = await self.relay_client.get_one(relay_filter, endpoints)
        except AllRelaysFailedError as e:
            logger.warning(f"Subscription list fetch failed for {author}: {e}")
            return FetchOutcome(success=False, error=e.message)

        if event is None:
            BusinessEvents.subscription_list_fetched(author=author, found=False)
            return FetchOutcome(success=True, data=SubscriptionList.empty())

        self._observe(event.created_at)

        try:
            data = SubscriptionList.from_content(event.content)
        except SubscriptionPayloadError as e:
            logger.warning(f"Undecodable subscription list {event.id}: {e}")
            return FetchOutcome(
                success=False,
                event_id=event.id,
                created_at=event.created_at,
                error=e.message,
            )

        BusinessEvents.subscription_list_fetched(
            author=author, found=True, created_at=event.created_at
        )
        return FetchOutcome(
            success=True,
            data=data,
            event_id=event.id,
            created_at=event.created_at,
        )

    @staticmethod
    def merge(
        local_entries: Iterable[LocalFeedEntry],
        remote: SubscriptionList,
    ) -> MergeResult:
        """比较本地与远端订阅。

        to_add: 远端有、本地同类中没有的条目（每个归一化键只取第一次出现）。
        local_only: 本地有、远端没有的条目；URL 为空的本地条目始终归入此类。
        """
        local_entries = list(local_entries)

        local_rss = {
            normalize_url(e.url)
            for e in local_entries
            if e.type == FeedType.RSS and e.url and e.url.strip()
        }
        local_nostr = {
            normalize_identifier(e.url)
            for e in local_entries
            if e.type.is_nostr and e.url and e.url.strip()
        }
        remote_rss = {normalize_url(url) for url in remote.rss}
        remote_nostr = {normalize_identifier(ref) for ref in remote.nostr}

        to_add: list[SyncEntry] = []
        families = (
            (FeedType.RSS, remote.rss, local_rss, normalize_url),
            (FeedType.NOSTR, remote.nostr, local_nostr, normalize_identifier),
        )
        for feed_type, remote_values, local_keys, normalize in families:
            added: set[str] = set()
            for raw in remote_values:
                key = normalize(raw)
                if not key or key in local_keys or key in added:
                    continue
                added.add(key)
                tags = remote.tags.get(raw, remote.tags.get(key))
                to_add.append(SyncEntry(type=feed_type, url=raw, tags=tags))

        local_only: list[LocalFeedEntry] = []
        for entry in local_entries:
            if not entry.url or not entry.url.strip():
                local_only.append(entry)
            elif entry.type == FeedType.RSS:
                if normalize_url(entry.url) not in remote_rss:
                    local_only.append(entry)
            elif normalize_identifier(entry.url) not in remote_nostr:
                local_only.append(entry)

        return MergeResult(to_add=to_add, local_only=local_only)

    async def reconcile(
        self,
        author: str,
        local_entries: Iterable[LocalFeedEntry],
        endpoints: list[str] | None = None,
    ) -> ReconcileReport:
        """拉取远端订阅列表并与本地合并。

        拉取失败时返回 success=False 且不做分类，调用方继续使用本地状态。
        """
        fetched = await self.fetch(author, endpoints)
        if not fetched.success or fetched.data is None:
            return ReconcileReport(success=False, error=fetched.error)

        result = self.merge(local_entries, fetched.data)
        BusinessEvents.subscription_merge_completed(
            to_add=len(result.to_add),
            local_only=len(result.local_only),
        )
        return ReconcileReport(
            success=True,
            merge=result,
            remote=fetched.data,
            remote_created_at=fetched.created_at,
        )
