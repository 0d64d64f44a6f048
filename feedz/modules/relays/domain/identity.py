"""公钥标识转换（NIP-19 npub <-> hex）。"""

import re

from pynostr.key import PublicKey

from feedz.modules.relays.domain.exceptions import InvalidIdentifierError

NPUB_PREFIX = "npub1"

_HEX_PUBKEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def is_hex_pubkey(value: str) -> bool:
    return bool(_HEX_PUBKEY_RE.match(value))


def npub_to_hex(npub: str) -> str:
    """npub -> 64 位 hex 公钥。

    Raises:
        InvalidIdentifierError: 不是合法的 npub
    """
    value = npub.strip().lower()
    if not value.startswith(NPUB_PREFIX):
        raise InvalidIdentifierError(npub)
    try:
        raw = PublicKey.from_npub(value).raw_bytes
    except (TypeError, ValueError) as e:
        raise InvalidIdentifierError(npub) from e
    if len(raw) != 32:
        raise InvalidIdentifierError(npub)
    return raw.hex()


def hex_to_npub(pubkey: str) -> str:
    """64 位 hex 公钥 -> npub。"""
    value = pubkey.strip()
    if not is_hex_pubkey(value):
        raise InvalidIdentifierError(pubkey)
    return PublicKey(bytes.fromhex(value)).bech32()


def to_hex_pubkey(identity: str) -> str:
    """接受 npub 或 hex，统一返回小写 hex。"""
    value = identity.strip()
    if is_hex_pubkey(value):
        return value.lower()
    return npub_to_hex(value)
