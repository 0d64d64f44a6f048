"""订阅同步单元测试。

测试覆盖：
- 订阅列表构建与线上格式
- 发布（时间戳严格大于已知版本、签名失败）
- 拉取（最新版本、未找到、非法标识、无法解码）
- 合并分类（纯函数、幂等、空 URL）
"""

import json
import time

import pytest

from feedz.core.config import Settings
from feedz.modules.sync.application.reconciler import (
    SubscriptionReconciler,
    build_subscription_list,
)
from feedz.modules.sync.domain.entities import (
    FeedType,
    LocalFeedEntry,
    SubscriptionList,
    SubscriptionPayloadError,
    SyncEntry,
)

pytestmark = pytest.mark.anyio

TEST_NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"
TEST_PUBKEY = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"
OTHER_NPUB = "npub180cvv07tjdrrgpa0j7j7tmnyl2yr6yr7l8j4s3evf6u64th6gkwsyjh6w6"

A = "wss://relay-a.test"
B = "wss://relay-b.test"
C = "wss://relay-c.test"


def rss(url: str | None, tags: list[str] | None = None) -> LocalFeedEntry:
    return LocalFeedEntry(type=FeedType.RSS, url=url, tags=tags or [])


def nostr(url: str | None, feed_type: FeedType = FeedType.NOSTR) -> LocalFeedEntry:
    return LocalFeedEntry(type=feed_type, url=url)


def list_event(make_event, content: str, created_at: int, settings: Settings):
    return make_event(
        kind=settings.SUBSCRIPTION_LIST_KIND,
        created_at=created_at,
        tags=[["d", settings.SUBSCRIPTION_LIST_SLUG], ["client", settings.CLIENT_TAG]],
        content=content,
    )


# ============================================
# 订阅列表
# ============================================


class TestSubscriptionList:
    """订阅列表构建与编解码测试。"""

    def test_build_dedupes_and_extracts_npub(self):
        entries = [
            rss("https://a.com/feed/", tags=["tech"]),
            rss("http://A.com/feed"),
            rss("https://b.com/rss"),
            nostr(f"https://njump.me/{TEST_NPUB}"),
            nostr(TEST_NPUB, FeedType.NOSTR_VIDEO),
            rss(None),
            rss("   "),
        ]

        result = build_subscription_list(entries)

        assert result.rss == ["https://a.com/feed/", "https://b.com/rss"]
        assert result.nostr == [TEST_NPUB]
        assert result.tags == {"https://a.com/feed/": ["tech"]}

    def test_payload_shape(self):
        subscription_list = SubscriptionList(
            rss=["https://a.com/feed"],
            nostr=[TEST_NPUB],
            tags={"https://a.com/feed": ["news"]},
            last_updated=1_700_000_000,
        )

        assert json.loads(subscription_list.to_content()) == {
            "rss": ["https://a.com/feed"],
            "nostr": [TEST_NPUB],
            "tags": {"https://a.com/feed": ["news"]},
            "lastUpdated": 1_700_000_000,
        }

    def test_decode_tolerates_missing_fields(self):
        decoded = SubscriptionList.from_content('{"rss": ["https://a.com/feed"]}')

        assert decoded.rss == ["https://a.com/feed"]
        assert decoded.nostr == []
        assert decoded.tags == {}
        assert decoded.last_updated is None

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            "[1, 2]",
            '{"rss": "https://a.com/feed"}',
            '{"nostr": [1, 2]}',
            '{"tags": ["x"]}',
            '{"tags": {"k": "v"}}',
        ],
    )
    def test_decode_rejects_malformed(self, content):
        with pytest.raises(SubscriptionPayloadError):
            SubscriptionList.from_content(content)


# ============================================
# 合并
# ============================================


class TestMerge:
    """合并分类测试。"""

    def test_remote_only_entry_is_added(self):
        result = SubscriptionReconciler.merge(
            [], SubscriptionList(rss=["https://a.com/feed"])
        )

        assert result.to_add == [SyncEntry(type=FeedType.RSS, url="https://a.com/feed")]
        assert result.local_only == []

    def test_trailing_slash_is_not_a_difference(self):
        result = SubscriptionReconciler.merge(
            [rss("https://a.com/feed/")], SubscriptionList(rss=["https://a.com/feed"])
        )

        assert result.to_add == []
        assert result.local_only == []

    def test_local_only(self):
        local = [rss("https://a.com/feed"), rss("https://b.com/feed"), nostr(TEST_NPUB)]

        result = SubscriptionReconciler.merge(local, SubscriptionList(rss=["https://a.com/feed"]))

        assert result.local_only == [local[1], local[2]]

    def test_nostr_refs_match_across_forms(self):
        local = [nostr(f"https://njump.me/{TEST_NPUB.upper()}", FeedType.NOSTR_VIDEO)]

        result = SubscriptionReconciler.merge(local, SubscriptionList(nostr=[TEST_NPUB]))

        assert result.to_add == []
        assert result.local_only == []

    def test_families_tracked_independently(self):
        # 同一个字符串作为 RSS 存在，不代表 Nostr 订阅存在
        local = [rss(TEST_NPUB)]

        result = SubscriptionReconciler.merge(local, SubscriptionList(nostr=[TEST_NPUB]))

        assert result.to_add == [SyncEntry(type=FeedType.NOSTR, url=TEST_NPUB)]
        assert result.local_only == local

    def test_tags_carried_over(self):
        remote = SubscriptionList(
            rss=["https://a.com/feed", "https://b.com/feed"],
            nostr=[OTHER_NPUB],
            tags={"https://a.com/feed": ["tech", "daily"], OTHER_NPUB: ["friends"]},
        )

        result = SubscriptionReconciler.merge([], remote)

        assert result.to_add == [
            SyncEntry(type=FeedType.RSS, url="https://a.com/feed", tags=["tech", "daily"]),
            SyncEntry(type=FeedType.RSS, url="https://b.com/feed", tags=None),
            SyncEntry(type=FeedType.NOSTR, url=OTHER_NPUB, tags=["friends"]),
        ]

    def test_remote_duplicates_added_once(self):
        remote = SubscriptionList(rss=["https://a.com/feed", "http://A.com/feed/"])

        result = SubscriptionReconciler.merge([], remote)

        assert [entry.url for entry in result.to_add] == ["https://a.com/feed"]

    def test_empty_url_is_always_local_only(self):
        local = [rss(None), nostr(""), rss("https://a.com/feed")]

        result = SubscriptionReconciler.merge(
            local, SubscriptionList(rss=["https://a.com/feed"], nostr=[""])
        )

        assert result.local_only == [local[0], local[1]]
        assert result.to_add == []

    def test_idempotent_and_non_mutating(self):
        local = [rss("https://a.com/feed"), nostr(TEST_NPUB)]
        remote = SubscriptionList(
            rss=["https://c.com/feed"], nostr=[OTHER_NPUB], tags={"https://c.com/feed": ["x"]}
        )
        local_before = [entry.model_copy() for entry in local]
        remote_before = remote.model_copy(deep=True)

        first = SubscriptionReconciler.merge(local, remote)
        second = SubscriptionReconciler.merge(local, remote)

        assert first == second
        assert local == local_before
        assert remote == remote_before

    def test_merge_of_own_list_is_empty(self):
        local = [rss("https://a.com/feed/", tags=["t"]), nostr(f"nostr:{TEST_NPUB}")]

        result = SubscriptionReconciler.merge(local, build_subscription_list(local))

        assert result.to_add == []
        assert result.local_only == []


# ============================================
# 发布与拉取
# ============================================


class TestPublishAndFetch:
    """发布与拉取测试（内存 relay）。"""

    async def test_later_publication_wins(
        self, relay_stack, fake_relay, signer, test_settings
    ):
        client, network = relay_stack(fake_relay(A), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        first = await reconciler.publish(SubscriptionList(rss=["https://a.com/feed"]), signer)
        second = await reconciler.publish(
            SubscriptionList(rss=["https://b.com/feed"], nostr=[OTHER_NPUB]), signer
        )

        assert first.success and second.success
        assert second.created_at > first.created_at
        assert first.relay in (A, B, C)

        fetched = await reconciler.fetch(TEST_NPUB)

        assert fetched.success is True
        assert fetched.event_id == second.event_id
        assert fetched.created_at == second.created_at
        assert fetched.data.rss == ["https://b.com/feed"]
        assert fetched.data.nostr == [OTHER_NPUB]
        assert fetched.data.last_updated == second.created_at

    async def test_publish_after_fetch_outdates_future_remote(
        self, relay_stack, fake_relay, make_event, signer, test_settings
    ):
        future = int(time.time()) + 100
        remote = list_event(make_event, '{"rss": ["https://a.com/feed"]}', future, test_settings)
        client, _ = relay_stack(fake_relay(A, [remote]), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        fetched = await reconciler.fetch(TEST_NPUB)
        outcome = await reconciler.publish(SubscriptionList(rss=["https://b.com/feed"]), signer)

        assert fetched.created_at == future
        assert outcome.success is True
        assert outcome.created_at > future

    async def test_fresh_reconciler_looks_up_remote_head(
        self, relay_stack, fake_relay, make_event, signer, test_settings
    ):
        future = int(time.time()) + 100
        remote = list_event(make_event, "{}", future, test_settings)
        client, network = relay_stack(fake_relay(A, [remote]), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        outcome = await reconciler.publish(SubscriptionList(), signer, author=TEST_NPUB)

        assert outcome.created_at > future
        assert network[A].frames("REQ")

        refetched = await SubscriptionReconciler(client, test_settings).fetch(TEST_NPUB)
        assert refetched.event_id == outcome.event_id

    async def test_previous_created_at_floor(
        self, relay_stack, fake_relay, signer, test_settings
    ):
        client, _ = relay_stack(fake_relay(A))
        reconciler = SubscriptionReconciler(client, test_settings)
        known = int(time.time()) + 50

        outcome = await reconciler.publish(
            SubscriptionList(), signer, endpoints=[A], previous_created_at=known
        )

        assert outcome.created_at == known + 1

    async def test_relay_outage_during_lookup_still_publishes(
        self, relay_stack, fake_relay, signer, test_settings
    ):
        client, _ = relay_stack(fake_relay(A, unreachable=True), fake_relay(B))
        reconciler = SubscriptionReconciler(client, test_settings)

        outcome = await reconciler.publish(
            SubscriptionList(), signer, endpoints=[A, B], author=TEST_NPUB
        )

        assert outcome.success is True
        assert outcome.relay == B

    async def test_published_event_shape(
        self, relay_stack, fake_relay, signer, test_settings
    ):
        client, network = relay_stack(fake_relay(A))
        reconciler = SubscriptionReconciler(client, test_settings)

        outcome = await reconciler.publish(
            SubscriptionList(rss=["https://a.com/feed"]), signer, endpoints=[A]
        )

        (frame,) = network[A].frames("EVENT")
        event = frame[1]
        assert event["id"] == outcome.event_id
        assert event["kind"] == 30404
        assert ["d", "nostr-feedz-subscriptions"] in event["tags"]
        assert ["client", "nostr-feedz"] in event["tags"]
        assert json.loads(event["content"])["lastUpdated"] == event["created_at"]

    async def test_fetch_newest_across_relays(
        self, relay_stack, fake_relay, make_event, test_settings
    ):
        old = list_event(make_event, '{"rss": ["https://old.com/feed"]}', 100, test_settings)
        new = list_event(make_event, '{"rss": ["https://new.com/feed"]}', 200, test_settings)
        client, _ = relay_stack(fake_relay(A, [old]), fake_relay(B, [new]), fake_relay(C, [old]))
        reconciler = SubscriptionReconciler(client, test_settings)

        fetched = await reconciler.fetch(TEST_PUBKEY)

        assert fetched.data.rss == ["https://new.com/feed"]
        assert fetched.created_at == 200

    async def test_fetch_not_found_is_empty_success(
        self, relay_stack, fake_relay, test_settings
    ):
        client, _ = relay_stack(fake_relay(A), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        fetched = await reconciler.fetch(TEST_NPUB)

        assert fetched.success is True
        assert fetched.data == SubscriptionList.empty()
        assert fetched.event_id is None

    async def test_fetch_invalid_identity_makes_no_request(
        self, relay_stack, fake_relay, test_settings
    ):
        client, network = relay_stack(fake_relay(A), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        fetched = await reconciler.fetch("npub1notvalid")

        assert fetched.success is False
        assert fetched.error
        assert network.sockets == []

    async def test_fetch_undecodable_payload(
        self, relay_stack, fake_relay, make_event, test_settings
    ):
        broken = list_event(make_event, '{"rss": "oops"}', 100, test_settings)
        client, _ = relay_stack(fake_relay(A, [broken]), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        fetched = await reconciler.fetch(TEST_NPUB)

        assert fetched.success is False
        assert fetched.event_id == broken.id
        assert "rss" in fetched.error

    async def test_fetch_all_relays_down(self, relay_stack, fake_relay, test_settings):
        client, _ = relay_stack(
            fake_relay(A, unreachable=True),
            fake_relay(B, unreachable=True),
            fake_relay(C, unreachable=True),
        )
        reconciler = SubscriptionReconciler(client, test_settings)

        fetched = await reconciler.fetch(TEST_NPUB)

        assert fetched.success is False
        assert fetched.data is None

    async def test_signer_failure(self, relay_stack, fake_relay, test_settings):
        client, network = relay_stack(fake_relay(A), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)

        async def failing_signer(unsigned):
            raise RuntimeError("user rejected signing")

        outcome = await reconciler.publish(SubscriptionList(), failing_signer)

        assert outcome.success is False
        assert "user rejected signing" in outcome.error
        assert network.sockets == []

    async def test_publish_rejected_everywhere(
        self, relay_stack, fake_relay, signer, test_settings
    ):
        client, _ = relay_stack(
            fake_relay(A, accept=False, ok_message="auth-required: sign in"),
            fake_relay(B, unreachable=True),
            fake_relay(C, accept=False, ok_message="blocked"),
        )
        reconciler = SubscriptionReconciler(client, test_settings)

        outcome = await reconciler.publish(SubscriptionList(), signer)

        assert outcome.success is False
        assert outcome.event_id is not None
        assert "auth-required" in outcome.error


# ============================================
# 拉取 + 合并
# ============================================


class TestReconcile:
    """reconcile 测试。"""

    async def test_reconcile(self, relay_stack, fake_relay, make_event, test_settings):
        remote = list_event(
            make_event,
            json.dumps(
                {
                    "rss": ["https://a.com/feed", "https://new.com/feed"],
                    "nostr": [OTHER_NPUB],
                    "tags": {"https://new.com/feed": ["fresh"]},
                    "lastUpdated": 300,
                }
            ),
            300,
            test_settings,
        )
        client, _ = relay_stack(fake_relay(A, [remote]), fake_relay(B), fake_relay(C))
        reconciler = SubscriptionReconciler(client, test_settings)
        local = [rss("https://a.com/feed/"), rss("https://gone.com/feed")]

        report = await reconciler.reconcile(TEST_NPUB, local)

        assert report.success is True
        assert report.remote_created_at == 300
        assert report.merge.to_add == [
            SyncEntry(type=FeedType.RSS, url="https://new.com/feed", tags=["fresh"]),
            SyncEntry(type=FeedType.NOSTR, url=OTHER_NPUB),
        ]
        assert report.merge.local_only == [local[1]]

    async def test_reconcile_failure_keeps_local_state(
        self, relay_stack, fake_relay, test_settings
    ):
        client, _ = relay_stack(
            fake_relay(A, unreachable=True),
            fake_relay(B, unreachable=True),
            fake_relay(C, unreachable=True),
        )
        reconciler = SubscriptionReconciler(client, test_settings)

        report = await reconciler.reconcile(TEST_NPUB, [rss("https://a.com/feed")])

        assert report.success is False
        assert report.merge is None
        assert report.error
