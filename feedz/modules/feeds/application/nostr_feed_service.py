"""Nostr 订阅源服务。

把 relay 上的长文（kind 30023）与视频（kind 21/22）事件归一化为 CanonicalFeed，
并提供订阅前的作者校验（资料、是否有内容、NIP-05）。
"""

import json
from datetime import datetime
from typing import Any

import httpx
from loguru import logger

from feedz.core.config import Settings
from feedz.core.infrastructure.http import http_client_scope
from feedz.core.infrastructure.logging import BusinessEvents
from feedz.modules.feeds.domain.entities import (
    CanonicalFeed,
    NostrFeedValidation,
    NostrProfile,
)
from feedz.modules.feeds.infrastructure.parsers.nostr_events import parse_relay_events
from feedz.modules.relays.application.client import RelayClient
from feedz.modules.relays.domain.entities import (
    VIDEO_KINDS,
    EventKind,
    NostrEvent,
    RelayFilter,
)
from feedz.modules.relays.domain.exceptions import (
    AllRelaysFailedError,
    InvalidIdentifierError,
)
from feedz.modules.relays.domain.identity import hex_to_npub, npub_to_hex, to_hex_pubkey


class NostrFeedService:
    """Nostr 订阅源服务。"""

    def __init__(
        self,
        relay_client: RelayClient,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.relay_client = relay_client
        self.settings = settings
        self._http_client = http_client

    # ============================================
    # 内容拉取
    # ============================================

    async def fetch_long_form_posts(
        self,
        npub: str,
        limit: int | None = None,
        since: datetime | None = None,
        endpoints: list[str] | None = None,
    ) -> CanonicalFeed:
        """拉取单个作者的长文，最新的在前。

        Raises:
            InvalidIdentifierError: npub 不合法
            AllRelaysFailedError: 没有任何 relay 响应
        """
        return await self.fetch_multiple_long_form_posts(
            [npub], limit=limit, since=since, endpoints=endpoints, title=npub
        )

    async def fetch_multiple_long_form_posts(
        self,
        npubs: list[str],
        limit: int | None = None,
        since: datetime | None = None,
        endpoints: list[str] | None = None,
        title: str | None = None,
    ) -> CanonicalFeed:
        """一次查询拉取多个作者的长文。"""
        authors = [npub_to_hex(npub) for npub in npubs]
        events = await self._query(
            [EventKind.LONG_FORM], authors, limit, since, endpoints
        )
        return self._to_feed(events, title or "Nostr long-form posts")

    async def fetch_video_events(
        self,
        npub: str,
        limit: int | None = None,
        since: datetime | None = None,
        endpoints: list[str] | None = None,
    ) -> CanonicalFeed:
        """拉取作者的视频事件（kind 21 普通视频，kind 22 竖屏短视频）。"""
        events = await self._query(
            list(VIDEO_KINDS), [npub_to_hex(npub)], limit, since, endpoints
        )
        return self._to_feed(events, npub)

    async def _query(
        self,
        kinds: list[int],
        authors: list[str],
        limit: int | None,
        since: datetime | None,
        endpoints: list[str] | None,
    ) -> list[NostrEvent]:
        relay_filter = RelayFilter(
            kinds=kinds,
            authors=authors,
            limit=limit or self.settings.NOSTR_FETCH_LIMIT,
            since=int(since.timestamp()) if since else None,
        )
        return await self.relay_client.query(relay_filter, endpoints)

    def _to_feed(self, events: list[NostrEvent], title: str) -> CanonicalFeed:
        feed = parse_relay_events(events, title=title)
        BusinessEvents.feed_parsed(kind="nostr", item_count=len(feed.items))
        return feed

    # ============================================
    # 作者资料与校验
    # ============================================

    async def get_profile(
        self, npub: str, endpoints: list[str] | None = None
    ) -> NostrProfile | None:
        """获取作者资料（最新的 kind 0 事件），任何失败都返回 None。"""
        try:
            pubkey = npub_to_hex(npub)
            event = await self.relay_client.get_one(
                RelayFilter(kinds=[EventKind.PROFILE], authors=[pubkey]),
                endpoints,
            )
        except (InvalidIdentifierError, AllRelaysFailedError) as e:
            logger.warning(f"Failed to fetch profile for {npub}: {e}")
            return None

        if event is None:
            return None
        return self._parse_profile(event)

    @staticmethod
    def _parse_profile(event: NostrEvent) -> NostrProfile | None:
        try:
            data = json.loads(event.content)
        except ValueError as e:
            logger.debug(f"Profile event {event.id} has invalid JSON: {e}")
            return None
        if not isinstance(data, dict):
            return None

        def text(key: str) -> str | None:
            value = data.get(key)
            return value if isinstance(value, str) and value else None

        try:
            npub = hex_to_npub(event.pubkey)
        except InvalidIdentifierError:
            npub = event.pubkey

        return NostrProfile(
            npub=npub,
            name=text("name") or text("display_name"),
            display_name=text("display_name"),
            about=text("about"),
            picture=text("picture"),
            nip05=text("nip05"),
        )

    async def validate_feed(
        self, npub: str, endpoints: list[str] | None = None
    ) -> NostrFeedValidation:
        """校验 npub 是否合法，以及作者是否发布过长文或视频。"""
        try:
            pubkey = npub_to_hex(npub)
        except InvalidIdentifierError as e:
            return NostrFeedValidation(valid=False, error=e.message)

        profile = await self.get_profile(npub, endpoints)

        try:
            long_form = await self.relay_client.get_one(
                RelayFilter(kinds=[EventKind.LONG_FORM], authors=[pubkey]),
                endpoints,
            )
            video = await self.relay_client.get_one(
                RelayFilter(kinds=list(VIDEO_KINDS), authors=[pubkey]),
                endpoints,
            )
        except AllRelaysFailedError as e:
            return NostrFeedValidation(valid=False, profile=profile, error=e.message)

        has_videos = video is not None
        return NostrFeedValidation(
            valid=True,
            profile=profile,
            has_content=long_form is not None or has_videos,
            has_videos=has_videos,
        )

    async def search_profiles(
        self,
        query: str,
        limit: int = 10,
        endpoints: list[str] | None = None,
    ) -> list[NostrProfile]:
        """在最近的资料事件中按名称、NIP-05、简介或 npub 搜索。

        名称或 NIP-05 完全匹配的排在前面。
        """
        needle = query.strip().lower()
        if not needle:
            return []

        try:
            events = await self.relay_client.query(
                RelayFilter(kinds=[EventKind.PROFILE], limit=limit * 3), endpoints
            )
        except AllRelaysFailedError as e:
            logger.warning(f"Profile search failed: {e}")
            return []

        matches: list[NostrProfile] = []
        for event in events:
            profile = self._parse_profile(event)
            if profile is None:
                continue
            haystack = (
                profile.name,
                profile.display_name,
                profile.nip05,
                profile.about,
                profile.npub,
            )
            if any(needle in value.lower() for value in haystack if value):
                matches.append(profile)

        def is_exact(profile: NostrProfile) -> bool:
            return needle in (
                (profile.name or "").lower(),
                (profile.nip05 or "").lower(),
            )

        matches.sort(key=is_exact, reverse=True)
        return matches[:limit]

    async def verify_nip05(self, nip05: str, pubkey: str) -> bool:
        """校验 NIP-05 地址（name@domain）是否指向给定公钥，任何失败都返回 False。"""
        name, sep, domain = nip05.strip().partition("@")
        if not sep or not name or not domain:
            return False

        try:
            expected = to_hex_pubkey(pubkey)
        except InvalidIdentifierError:
            return False

        timeout = self.settings.IDENTITY_FETCH_TIMEOUT_SEC
        url = f"https://{domain}/.well-known/nostr.json"
        try:
            async with http_client_scope(
                self._http_client, timeout=timeout, user_agent=self.settings.USER_AGENT
            ) as client:
                response = await client.get(
                    url,
                    params={"name": name},
                    headers={"Accept": "application/json"},
                    timeout=timeout,
                )
        except httpx.HTTPError as e:
            logger.warning(f"NIP-05 lookup failed for {nip05}: {e}")
            return False

        if not response.is_success:
            return False

        try:
            data: Any = response.json()
        except ValueError:
            return False

        names = data.get("names") if isinstance(data, dict) else None
        if not isinstance(names, dict):
            return False
        registered = names.get(name)
        return isinstance(registered, str) and registered.lower() == expected
