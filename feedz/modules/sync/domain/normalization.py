"""订阅比较键的归一化。

两个函数都是幂等的：normalize(normalize(x)) == normalize(x)。
"""

import re
from urllib.parse import parse_qsl, urlencode, urlsplit

_NPUB_RE = re.compile(r"npub1[a-zA-Z0-9]+", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """RSS 地址的比较键。

    主机名小写（保留端口），去掉路径末尾的斜杠，查询参数排序，
    丢弃协议与片段。无法解析时退回去除空白后的小写字符串。

    >>> normalize_url("https://EX.com/a/?b=2&a=1")
    'ex.com/a?a=1&b=2'
    """
    value = url.strip()
    if not value:
        return ""

    # 没有协议的输入（包括本函数自己的输出）补 "//" 以便按网络地址解析
    if "://" not in value:
        value = "//" + value.lstrip("/")

    try:
        parts = urlsplit(value)
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return url.strip().lower()

    netloc = f"{host}:{port}" if port else host
    path = parts.path.rstrip("/")

    key = netloc + path
    if parts.query:
        pairs = sorted(parse_qsl(parts.query, keep_blank_values=True))
        key = f"{key}?{urlencode(pairs)}"
    return key


def normalize_identifier(value: str) -> str:
    """Nostr 引用的比较键。

    无论是裸 npub 还是嵌在 URL 里的 npub，都提取出 npub 并转小写；
    找不到 npub 时退回去除空白后的小写字符串。
    """
    match = _NPUB_RE.search(value)
    if match:
        return match.group(0).lower()
    return value.strip().lower()


def extract_npub(value: str) -> str | None:
    """返回嵌在字符串中的 npub（保持原大小写），没有时返回 None。"""
    match = _NPUB_RE.search(value)
    return match.group(0) if match else None
