#!/usr/bin/env python3
"""订阅源调试脚本。

用于在命令行中验证订阅源发现、解析，以及 relay 上的内容与订阅列表。

使用方式：
    # 发现订阅源（三段级联 / 视频频道解析）
    python scripts/discover_feed.py discover https://example.com

    # 抓取并解析订阅源，输出预览
    python scripts/discover_feed.py preview https://example.com/feed.xml

    # 拉取作者的长文或视频
    python scripts/discover_feed.py nostr npub1... --videos --limit 10

    # 拉取作者保存在 relay 上的订阅列表
    python scripts/discover_feed.py subscriptions npub1... --relay wss://nos.lol

    # JSON 输出
    python scripts/discover_feed.py discover https://example.com --json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


async def run_discover(url: str) -> dict[str, Any]:
    from feedz.core.config import get_settings
    from feedz.modules.feeds.application.services import FeedService

    result = await FeedService(get_settings()).discover(url)
    return result.model_dump(mode="json")


async def run_preview(url: str) -> dict[str, Any]:
    from feedz.core.config import get_settings
    from feedz.modules.feeds.application.services import FeedService

    preview = await FeedService(get_settings()).preview(url)
    return preview.model_dump(mode="json")


async def run_nostr(
    npub: str, videos: bool, limit: int | None, relays: list[str] | None
) -> dict[str, Any]:
    from feedz.core.config import get_settings
    from feedz.modules.feeds.application.nostr_feed_service import NostrFeedService
    from feedz.modules.relays.application.client import RelayClient
    from feedz.modules.relays.infrastructure.pool import RelayPool

    settings = get_settings()
    async with RelayPool(settings) as pool:
        service = NostrFeedService(RelayClient(pool, settings), settings)
        if videos:
            feed = await service.fetch_video_events(npub, limit=limit, endpoints=relays)
        else:
            feed = await service.fetch_long_form_posts(npub, limit=limit, endpoints=relays)
    return feed.model_dump(mode="json")


async def run_subscriptions(author: str, relays: list[str] | None) -> dict[str, Any]:
    from feedz.core.config import get_settings
    from feedz.modules.relays.application.client import RelayClient
    from feedz.modules.relays.infrastructure.pool import RelayPool
    from feedz.modules.sync.application.reconciler import SubscriptionReconciler

    settings = get_settings()
    async with RelayPool(settings) as pool:
        reconciler = SubscriptionReconciler(RelayClient(pool, settings), settings)
        outcome = await reconciler.fetch(author, endpoints=relays)
    return outcome.model_dump(mode="json")


def print_text(command: str, result: dict[str, Any]) -> None:
    """以人类可读的格式输出结果。"""
    if command == "discover":
        if result["found"]:
            print(f"✅ Found {result['kind']} feed: {result['feed_url']}")
            if result.get("title"):
                print(f"   Title: {result['title']}")
        else:
            print(f"❌ {result.get('error')}")
        return

    if command == "subscriptions":
        if not result["success"]:
            print(f"❌ {result.get('error')}")
            return
        data = result.get("data") or {}
        print(f"RSS ({len(data.get('rss', []))}):")
        for url in data.get("rss", []):
            print(f"  - {url}")
        print(f"Nostr ({len(data.get('nostr', []))}):")
        for ref in data.get("nostr", []):
            print(f"  - {ref}")
        return

    items = result.get("latest_items") or result.get("items") or []
    print(f"{result.get('title')}")
    if result.get("description"):
        print(f"  {result['description']}")
    print(f"  {result.get('item_count', len(items))} items")
    for item in items:
        print(f"  - [{item['published_at']}] {item['title']}")
        if item.get("url"):
            print(f"    {item['url']}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Nostr Feedz 订阅源调试工具")
    parser.add_argument("--json", action="store_true", help="输出 JSON 格式")
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover = subparsers.add_parser("discover", help="发现订阅源")
    discover.add_argument("url")

    preview = subparsers.add_parser("preview", help="抓取并预览订阅源")
    preview.add_argument("url")

    nostr = subparsers.add_parser("nostr", help="拉取作者的长文或视频")
    nostr.add_argument("npub")
    nostr.add_argument("--videos", action="store_true", help="拉取视频事件")
    nostr.add_argument("--limit", type=int, default=None)
    nostr.add_argument("--relay", action="append", dest="relays", help="可重复指定")

    subscriptions = subparsers.add_parser("subscriptions", help="拉取订阅列表")
    subscriptions.add_argument("author", help="npub 或 hex 公钥")
    subscriptions.add_argument("--relay", action="append", dest="relays", help="可重复指定")

    args = parser.parse_args()

    from feedz.core.config import get_settings
    from feedz.core.domain.exceptions import DomainException
    from feedz.core.infrastructure.logging import setup_logging

    setup_logging(get_settings())

    if args.command == "discover":
        coro = run_discover(args.url)
    elif args.command == "preview":
        coro = run_preview(args.url)
    elif args.command == "nostr":
        coro = run_nostr(args.npub, args.videos, args.limit, args.relays)
    else:
        coro = run_subscriptions(args.author, args.relays)

    try:
        result = asyncio.run(coro)
    except DomainException as e:
        print(f"❌ [{e.error_code}] {e.message}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        print_text(args.command, result)


if __name__ == "__main__":
    main()
