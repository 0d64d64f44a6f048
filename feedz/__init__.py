"""nostr-feedz - 订阅源发现、格式归一化与 Nostr 订阅同步。"""

__version__ = "0.1.0"
