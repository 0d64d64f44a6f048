"""Relay 客户端。

对 N 个独立、不可靠的 relay 并行扇出查询与发布：
- query: 每个 relay 受等待窗口约束，超时或不可达的 relay 被排除，结果按事件 ID 去重
- get_one: limit=1 的 query，返回窗口内最新的事件
- publish: 任一 relay 接受即成功，其余尝试被取消

不做扇出之外的重试，只有"没有任何 relay 响应"才作为错误抛出。
"""

import asyncio
import time

from loguru import logger

from feedz.core.config import Settings
from feedz.core.infrastructure.logging import BusinessEvents
from feedz.modules.relays.domain.entities import NostrEvent, PublishResult, RelayFilter
from feedz.modules.relays.domain.exceptions import AllRelaysFailedError, RelayError
from feedz.modules.relays.infrastructure.pool import RelayPool


class RelayClient:
    """Relay 扇出客户端。"""

    def __init__(self, pool: RelayPool, settings: Settings):
        self.pool = pool
        self.settings = settings

    def resolve_endpoints(self, endpoints: list[str] | None = None) -> list[str]:
        """未指定端点时使用默认 relay 列表；去除空白并去重（保持顺序）。"""
        candidates = endpoints or self.settings.DEFAULT_RELAYS
        resolved: list[str] = []
        for address in candidates:
            address = address.strip()
            if address and address not in resolved:
                resolved.append(address)
        return resolved

    async def query(
        self,
        relay_filter: RelayFilter,
        endpoints: list[str] | None = None,
    ) -> list[NostrEvent]:
        """并行查询所有 relay，合并并去重结果。

        Raises:
            AllRelaysFailedError: 没有任何 relay 在窗口内响应
        """
        relays = self.resolve_endpoints(endpoints)
        start_time = time.time()

        results = await asyncio.gather(
            *(self._query_one(relay, relay_filter) for relay in relays)
        )

        responded = [events for events in results if events is not None]
        if not responded:
            raise AllRelaysFailedError("query", relays)

        unique: dict[str, NostrEvent] = {}
        for events in responded:
            for event in events:
                unique.setdefault(event.id, event)

        BusinessEvents.relay_query_completed(
            relays_total=len(relays),
            relays_responded=len(responded),
            event_count=len(unique),
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return list(unique.values())

    async def get_one(
        self,
        relay_filter: RelayFilter,
        endpoints: list[str] | None = None,
    ) -> NostrEvent | None:
        """查询单个事件（可替换事件查找），返回 created_at 最大的一个。

        Raises:
            AllRelaysFailedError: 没有任何 relay 在窗口内响应
        """
        events = await self.query(
            relay_filter.model_copy(update={"limit": 1}), endpoints
        )
        if not events:
            return None
        # max 在并列时返回第一个
        return max(events, key=lambda event: event.created_at)

    async def publish(
        self,
        event: NostrEvent,
        endpoints: list[str] | None = None,
    ) -> PublishResult:
        """并行发布，第一个 OK true 即返回成功。"""
        relays = self.resolve_endpoints(endpoints)
        tasks = [
            asyncio.create_task(self._publish_one(relay, event), name=f"publish:{relay}")
            for relay in relays
        ]

        errors: list[str] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                relay, accepted, message = await next_done
                if accepted:
                    BusinessEvents.relay_publish_completed(
                        event_id=event.id, success=True, relay=relay
                    )
                    return PublishResult.accepted(event.id, relay)
                errors.append(f"{relay}: {message}")
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        BusinessEvents.relay_publish_completed(
            event_id=event.id, success=False, errors=errors
        )
        return PublishResult.rejected(
            event.id, "; ".join(errors) or "No relay accepted the event"
        )

    async def close(self, endpoints: list[str] | None = None) -> None:
        """释放连接，可重复调用。"""
        addresses = self.resolve_endpoints(endpoints) if endpoints else None
        await self.pool.close(addresses)

    # ============================================
    # 单个 relay
    # ============================================

    async def _query_one(
        self, relay: str, relay_filter: RelayFilter
    ) -> list[NostrEvent] | None:
        try:
            async with asyncio.timeout(self.settings.RELAY_QUERY_WAIT_SEC):
                connection = await self.pool.get(relay)
                events = await connection.request(relay_filter)
        except TimeoutError:
            BusinessEvents.relay_endpoint_failed(
                relay=relay, operation="query", error="timeout"
            )
            return None
        except RelayError as e:
            BusinessEvents.relay_endpoint_failed(
                relay=relay, operation="query", error=str(e)
            )
            return None

        logger.debug(f"Relay {relay} returned {len(events)} events")
        return events

    async def _publish_one(
        self, relay: str, event: NostrEvent
    ) -> tuple[str, bool, str]:
        try:
            async with asyncio.timeout(self.settings.RELAY_PUBLISH_TIMEOUT_SEC):
                connection = await self.pool.get(relay)
                accepted, message = await connection.publish(event)
        except TimeoutError:
            BusinessEvents.relay_endpoint_failed(
                relay=relay, operation="publish", error="timeout"
            )
            return relay, False, "timeout"
        except RelayError as e:
            BusinessEvents.relay_endpoint_failed(
                relay=relay, operation="publish", error=str(e)
            )
            return relay, False, str(e)

        if not accepted:
            logger.debug(f"Relay {relay} rejected event {event.id}: {message}")
        return relay, accepted, message
