"""单个 relay 的 websocket 连接。

一个后台读取任务负责接收所有 NIP-01 帧，并按订阅 ID 分发到各自的队列，
按事件 ID 分发 OK 回执，因此同一连接上的并发调用互不干扰。
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any, Protocol
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from feedz.modules.relays.domain.entities import NostrEvent, RelayFilter
from feedz.modules.relays.domain.exceptions import RelayError, RelayUnavailableError


class WebSocketLike(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[WebSocketLike]]

# 读取任务结束时推送给所有订阅队列的哨兵帧
_DISCONNECTED = "DISCONNECTED"


class RelayConnection:
    """relay 连接。通过 open() 创建。"""

    def __init__(self, address: str, websocket: WebSocketLike):
        self.address = address
        self._ws = websocket
        self._subscriptions: dict[str, asyncio.Queue[tuple[str, Any]]] = {}
        self._pending_ok: dict[str, asyncio.Future[tuple[bool, str]]] = {}
        self._reader: asyncio.Task[None] | None = None
        # _closed: 不再接受新请求；_ws_closed: websocket 已关闭
        self._closed = False
        self._ws_closed = False

    @classmethod
    async def open(
        cls, address: str, connector: Connector, timeout: float
    ) -> "RelayConnection":
        """建立连接并启动读取任务。

        Raises:
            RelayUnavailableError: 连接超时或握手失败
        """
        try:
            async with asyncio.timeout(timeout):
                websocket = await connector(address)
        except TimeoutError as e:
            raise RelayUnavailableError(address, f"connect timeout after {timeout:g}s") from e
        except (OSError, WebSocketException) as e:
            raise RelayUnavailableError(address, f"connect failed: {e}") from e

        connection = cls(address, websocket)
        connection._reader = asyncio.create_task(
            connection._read_loop(), name=f"relay-reader:{address}"
        )
        logger.debug(f"Relay connected: {address}")
        return connection

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def request(
        self, relay_filter: RelayFilter, timeout: float | None = None
    ) -> list[NostrEvent]:
        """发送 REQ，收集 EVENT 直到 EOSE。

        Raises:
            TimeoutError: 在 timeout 内未收到 EOSE
            RelayError: relay 以 CLOSED 拒绝订阅
            RelayUnavailableError: 连接已断开
        """
        subscription_id = uuid4().hex[:16]
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._subscriptions[subscription_id] = queue
        events: list[NostrEvent] = []

        try:
            await self._send(["REQ", subscription_id, relay_filter.to_wire()])
            async with asyncio.timeout(timeout):
                while True:
                    frame_type, payload = await queue.get()
                    if frame_type == "EVENT":
                        event = self._parse_event(payload)
                        if event is not None:
                            events.append(event)
                    elif frame_type == "EOSE":
                        break
                    elif frame_type == "CLOSED":
                        raise RelayError(self.address, f"subscription closed: {payload}")
                    elif frame_type == _DISCONNECTED:
                        raise RelayUnavailableError(self.address, "connection lost")
        finally:
            self._subscriptions.pop(subscription_id, None)
            if not self._closed:
                with suppress(RelayUnavailableError):
                    await self._send(["CLOSE", subscription_id])

        return events

    async def publish(self, event: NostrEvent, timeout: float | None = None) -> tuple[bool, str]:
        """发送 EVENT 并等待 OK 回执，返回 (accepted, message)。

        Raises:
            TimeoutError: 在 timeout 内未收到 OK
            RelayUnavailableError: 连接已断开
        """
        future: asyncio.Future[tuple[bool, str]] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending_ok[event.id] = future
        try:
            await self._send(["EVENT", event.to_wire()])
            async with asyncio.timeout(timeout):
                return await future
        finally:
            self._pending_ok.pop(event.id, None)

    async def close(self) -> None:
        """关闭连接，可重复调用。websocket 只关闭一次，读取任务总会被回收。"""
        self._closed = True

        if not self._ws_closed:
            self._ws_closed = True
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error closing relay {self.address}: {e}")
            logger.debug(f"Relay closed: {self.address}")

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader
        self._notify_disconnected()

    # ============================================
    # 内部实现
    # ============================================

    async def _send(self, frame: list[Any]) -> None:
        if self._closed:
            raise RelayUnavailableError(self.address, "connection closed")
        try:
            await self._ws.send(json.dumps(frame))
        except (OSError, ConnectionClosed) as e:
            await self.close()
            raise RelayUnavailableError(self.address, f"send failed: {e}") from e

    async def _read_loop(self) -> None:
        try:
            while True:
                message = await self._ws.recv()
                self._dispatch(message)
        except ConnectionClosed as e:
            logger.debug(f"Relay {self.address} disconnected: {e}")
        except OSError as e:
            logger.warning(f"Relay {self.address} read error: {e}")
        except Exception:
            logger.exception(f"Relay {self.address} reader stopped unexpectedly")
        finally:
            self._closed = True
            self._notify_disconnected()

    def _dispatch(self, message: str | bytes) -> None:
        try:
            frame = json.loads(message)
        except ValueError:
            logger.debug(f"Relay {self.address} sent non-JSON frame")
            return

        if not isinstance(frame, list) or not frame:
            return

        frame_type = frame[0]
        if frame_type in ("EVENT", "EOSE", "CLOSED", "OK") and (
            len(frame) < 2 or not isinstance(frame[1], str)
        ):
            logger.debug(f"Relay {self.address} sent malformed {frame_type} frame")
            return

        if frame_type == "EVENT" and len(frame) >= 3:
            queue = self._subscriptions.get(frame[1])
            if queue is not None:
                queue.put_nowait(("EVENT", frame[2]))
        elif frame_type in ("EOSE", "CLOSED"):
            queue = self._subscriptions.get(frame[1])
            if queue is not None:
                queue.put_nowait((frame_type, frame[2] if len(frame) > 2 else ""))
        elif frame_type == "OK" and len(frame) >= 3:
            future = self._pending_ok.get(frame[1])
            if future is not None and not future.done():
                message_text = frame[3] if len(frame) > 3 else ""
                future.set_result((bool(frame[2]), str(message_text)))
        elif frame_type == "NOTICE":
            logger.debug(f"Relay {self.address} notice: {frame[1:] if len(frame) > 1 else ''}")
        else:
            logger.debug(f"Relay {self.address} sent unknown frame type {frame_type!r}")

    def _notify_disconnected(self) -> None:
        for queue in self._subscriptions.values():
            queue.put_nowait((_DISCONNECTED, None))
        for future in self._pending_ok.values():
            if not future.done():
                future.set_exception(RelayUnavailableError(self.address, "connection lost"))

    def _parse_event(self, payload: Any) -> NostrEvent | None:
        try:
            return NostrEvent.model_validate(payload)
        except ValidationError as e:
            logger.debug(f"Relay {self.address} sent malformed event: {e}")
            return None
