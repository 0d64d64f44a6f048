"""
pytest 配置和共享 fixtures。

测试分层：
- unit/: 单元测试（不依赖网络，HTTP 使用 httpx.MockTransport，relay 使用内存替身）

使用方法：
    # 运行所有测试
    uv run pytest

    # 只运行单元测试
    uv run pytest tests/unit/
"""

import asyncio
import hashlib
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

from feedz.core.config import Settings
from feedz.modules.relays.application.client import RelayClient
from feedz.modules.relays.domain.entities import NostrEvent, UnsignedEvent
from feedz.modules.relays.infrastructure.pool import RelayPool

# NIP-19 示例密钥
TEST_NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"
TEST_PUBKEY = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"

TEST_RELAYS = [
    "wss://relay-a.test",
    "wss://relay-b.test",
    "wss://relay-c.test",
]


# ============================================
# 配置 Fixtures
# ============================================


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    """测试环境配置（缩短所有等待窗口）。"""
    return Settings(
        ENVIRONMENT="local",
        LOG_LEVEL="DEBUG",
        DEFAULT_RELAYS=list(TEST_RELAYS),
        FEED_FETCH_TIMEOUT_SEC=1.0,
        IDENTITY_FETCH_TIMEOUT_SEC=1.0,
        CHANNEL_SCRAPE_TIMEOUT_SEC=1.0,
        RELAY_CONNECT_TIMEOUT_SEC=0.5,
        RELAY_QUERY_WAIT_SEC=0.3,
        RELAY_PUBLISH_TIMEOUT_SEC=0.3,
    )


# ============================================
# HTTP Fixtures
# ============================================


class RecordingTransport(httpx.MockTransport):
    """记录所有请求的 MockTransport。"""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    @property
    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]


@pytest.fixture
def make_http_client():
    """根据 handler 构建使用 MockTransport 的 AsyncClient。

    Usage:
        client, transport = make_http_client(handler)
    """
    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> tuple[httpx.AsyncClient, RecordingTransport]:
        transport = RecordingTransport(handler)
        return httpx.AsyncClient(transport=transport, follow_redirects=True), transport

    return factory


# ============================================
# Relay 替身
# ============================================


def _matches(event: dict[str, Any], wire_filter: dict[str, Any]) -> bool:
    if "ids" in wire_filter and event["id"] not in wire_filter["ids"]:
        return False
    if "authors" in wire_filter and event["pubkey"] not in wire_filter["authors"]:
        return False
    if "kinds" in wire_filter and event["kind"] not in wire_filter["kinds"]:
        return False
    if "since" in wire_filter and event["created_at"] < wire_filter["since"]:
        return False
    if "until" in wire_filter and event["created_at"] > wire_filter["until"]:
        return False
    for key, values in wire_filter.items():
        if key.startswith("#"):
            name = key[1:]
            tag_values = {t[1] for t in event["tags"] if len(t) > 1 and t[0] == name}
            if not tag_values.intersection(values):
                return False
    return True


class FakeRelay:
    """内存中的 relay。

    silent=True 时收到请求但从不回应（模拟慢 relay）；
    fail_sends=N 时前 N 次发送直接失败（模拟写入时断线）；
    prelude 中的帧在每次回应 REQ 之前先推送；
    unreachable=True 时连接直接失败。
    """

    def __init__(
        self,
        address: str,
        events: list[NostrEvent] | None = None,
        *,
        silent: bool = False,
        unreachable: bool = False,
        accept: bool = True,
        ok_message: str = "",
        fail_sends: int = 0,
        prelude: list[list[Any]] | None = None,
    ):
        self.address = address
        self.events: list[dict[str, Any]] = [e.to_wire() for e in events or []]
        self.silent = silent
        self.unreachable = unreachable
        self.accept = accept
        self.ok_message = ok_message
        self.fail_sends = fail_sends
        self.prelude = prelude or []
        self.received: list[list[Any]] = []
        self.connections = 0

    def handle(self, frame: list[Any]) -> list[list[Any]]:
        frame_type = frame[0]
        if frame_type == "REQ":
            subscription_id = frame[1]
            filters = frame[2:]
            matched = [e for e in self.events if any(_matches(e, f) for f in filters)]
            matched.sort(key=lambda e: e["created_at"], reverse=True)
            limits = [f["limit"] for f in filters if "limit" in f]
            if limits:
                matched = matched[: max(limits)]
            return self.prelude + [["EVENT", subscription_id, e] for e in matched] + [
                ["EOSE", subscription_id]
            ]
        if frame_type == "EVENT":
            event = frame[1]
            if self.accept:
                self.events.append(event)
            return [["OK", event["id"], self.accept, self.ok_message]]
        return []

    def frames(self, frame_type: str) -> list[list[Any]]:
        return [f for f in self.received if f[0] == frame_type]


class FakeWebSocket:
    """FakeRelay 的 websocket 端。"""

    def __init__(self, relay: FakeRelay):
        self.relay = relay
        self.closed = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        if self.relay.fail_sends > 0:
            self.relay.fail_sends -= 1
            raise OSError("Broken pipe")
        frame = json.loads(message)
        self.relay.received.append(frame)
        if self.relay.silent:
            return
        for response in self.relay.handle(frame):
            self._inbox.put_nowait(json.dumps(response))

    async def recv(self) -> str:
        message = await self._inbox.get()
        if message is None:
            raise ConnectionClosedOK(None, None)
        return message

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def drop(self) -> None:
        """模拟 relay 侧断开。"""
        self._inbox.put_nowait(None)


class FakeRelayNetwork:
    """一组 FakeRelay，connect 方法可作为 RelayPool 的 connector。"""

    def __init__(self, relays: list[FakeRelay]):
        self.relays = {relay.address: relay for relay in relays}
        self.sockets: list[FakeWebSocket] = []

    async def connect(self, address: str) -> FakeWebSocket:
        relay = self.relays.get(address)
        if relay is None or relay.unreachable:
            raise OSError(f"Connection refused: {address}")
        relay.connections += 1
        websocket = FakeWebSocket(relay)
        self.sockets.append(websocket)
        return websocket

    def __getitem__(self, address: str) -> FakeRelay:
        return self.relays[address]


def build_event(
    *,
    kind: int,
    created_at: int,
    tags: list[list[str]] | None = None,
    content: str = "",
    pubkey: str = TEST_PUBKEY,
) -> NostrEvent:
    """构建带确定性 ID 的测试事件（ID 按 NIP-01 序列化计算）。"""
    tags = tags or []
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return NostrEvent(
        id=hashlib.sha256(serialized.encode("utf-8")).hexdigest(),
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tags,
        content=content,
        sig="0" * 128,
    )


@pytest.fixture
def signer():
    """测试签名器：填充公钥并计算事件 ID，不做真实签名。"""

    async def sign(unsigned: UnsignedEvent) -> NostrEvent:
        return build_event(
            kind=unsigned.kind,
            created_at=unsigned.created_at,
            tags=unsigned.tags,
            content=unsigned.content,
        )

    return sign


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def fake_relay():
    return FakeRelay


@pytest.fixture
async def relay_stack(test_settings: Settings):
    """构建 (RelayClient, FakeRelayNetwork)，测试结束时关闭连接池。

    Usage:
        client, network = relay_stack(fake_relay("wss://a.test"), fake_relay("wss://b.test"))
    """
    pools: list[RelayPool] = []

    def build(*relays: FakeRelay) -> tuple[RelayClient, FakeRelayNetwork]:
        network = FakeRelayNetwork(list(relays))
        pool = RelayPool(test_settings, connector=network.connect)
        pools.append(pool)
        return RelayClient(pool, test_settings), network

    yield build

    for pool in pools:
        await pool.close()
