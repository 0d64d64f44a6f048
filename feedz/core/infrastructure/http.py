"""HTTP 客户端辅助。

所有外部 HTTP 调用都经由 httpx.AsyncClient 完成。调用方可以注入共享客户端
（测试或连接复用）；未注入时按调用打开一个客户端并在所有退出路径上关闭。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


@asynccontextmanager
async def http_client_scope(
    client: httpx.AsyncClient | None,
    *,
    timeout: float,
    user_agent: str,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """获取本次调用使用的 HTTP 客户端。

    Args:
        client: 外部注入的客户端，存在时直接复用且不负责关闭
        timeout: 自建客户端的默认超时（秒）
        user_agent: 自建客户端的 User-Agent
    """
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": user_agent},
    ) as owned:
        yield owned
