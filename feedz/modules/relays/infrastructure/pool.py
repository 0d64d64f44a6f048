"""Relay 连接池。

提供：
- 按地址延迟建立连接（首次使用时，每个地址一把锁）
- 显式关闭，可重复调用，关闭后可再次使用
- async with 作用域，退出时释放全部连接
"""

from __future__ import annotations

import asyncio

import websockets
from loguru import logger

from feedz.core.config import Settings
from feedz.modules.relays.domain.entities import RelayEndpoint, RelayLiveness
from feedz.modules.relays.domain.exceptions import RelayUnavailableError
from feedz.modules.relays.infrastructure.connection import (
    Connector,
    RelayConnection,
    WebSocketLike,
)


class RelayPool:
    """Relay 连接池，由调用方持有并负责关闭。"""

    def __init__(self, settings: Settings, connector: Connector | None = None):
        """初始化连接池。

        Args:
            settings: 配置（连接超时）
            connector: 建立 websocket 的协程函数，默认使用 websockets.connect
        """
        self.settings = settings
        self._connector = connector or self._connect
        self._connections: dict[str, RelayConnection] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._endpoints: dict[str, RelayEndpoint] = {}

    async def __aenter__(self) -> RelayPool:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _connect(self, address: str) -> WebSocketLike:
        return await websockets.connect(
            address,
            open_timeout=self.settings.RELAY_CONNECT_TIMEOUT_SEC,
            user_agent_header=self.settings.USER_AGENT,
        )

    async def get(self, address: str) -> RelayConnection:
        """获取（必要时建立）到指定 relay 的连接。

        Raises:
            RelayUnavailableError: 连接失败
        """
        connection = self._connections.get(address)
        if connection is not None and connection.is_open:
            return connection

        lock = self._locks.setdefault(address, asyncio.Lock())
        async with lock:
            connection = self._connections.get(address)
            if connection is not None and connection.is_open:
                return connection

            if connection is not None:
                # 已断开的旧连接：先释放 websocket 与读取任务再重连
                self._connections.pop(address, None)
                await connection.close()

            endpoint = self._endpoints.setdefault(address, RelayEndpoint(address))
            try:
                connection = await RelayConnection.open(
                    address,
                    self._connector,
                    self.settings.RELAY_CONNECT_TIMEOUT_SEC,
                )
            except RelayUnavailableError:
                endpoint.liveness = RelayLiveness.UNREACHABLE
                raise

            endpoint.liveness = RelayLiveness.CONNECTED
            self._connections[address] = connection
            return connection

    async def close(self, addresses: list[str] | None = None) -> None:
        """关闭连接。addresses 为空时关闭全部，未建立过的地址直接忽略。"""
        targets = list(self._connections) if addresses is None else list(addresses)

        connections: list[RelayConnection] = []
        for address in targets:
            connection = self._connections.pop(address, None)
            if connection is not None:
                connections.append(connection)
            endpoint = self._endpoints.get(address)
            if endpoint is not None:
                endpoint.liveness = RelayLiveness.CLOSED

        if connections:
            await asyncio.gather(*(c.close() for c in connections))
            logger.debug(f"Closed {len(connections)} relay connections")

    def endpoints(self) -> list[RelayEndpoint]:
        """当前已知端点及其状态的快照。"""
        return [
            RelayEndpoint(address=e.address, liveness=e.liveness)
            for e in self._endpoints.values()
        ]

    def is_connected(self, address: str) -> bool:
        connection = self._connections.get(address)
        return connection is not None and connection.is_open
