# trustledger/core/codec.py
"""
Entry codec: the exact bytes the server builds entry-hash tree leaves from.

    direct:     key   = 0x00 || key
                value = 0x00 || value
    reference:  key   = 0x00 || reference_key
                value = 0x01 || u64be(referenced_tx) || 0x00 || referenced_key

    leaf digest = sha256(key || sha256(value))

The value is folded into a fixed-size hash, so the key/value boundary of a
digest preimage is never ambiguous.
"""
import hashlib
from dataclasses import dataclass
from typing import Callable, Optional

from trustledger.core.encoding import u64be
from trustledger.core.types import Entry, KVEntry, ReferenceEntry

SET_KEY_PREFIX = b"\x00"
PLAIN_VALUE_PREFIX = b"\x00"
REFERENCE_VALUE_PREFIX = b"\x01"

HashFn = Callable[[bytes], bytes]


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


@dataclass(frozen=True)
class EncodedKV:
    key: bytes
    value: bytes

    def digest(self, hash_fn: Optional[HashFn] = None) -> bytes:
        h = hash_fn or _sha256
        return h(self.key + h(self.value))


def encode_kv(key: bytes, value: bytes) -> EncodedKV:
    return EncodedKV(SET_KEY_PREFIX + key, PLAIN_VALUE_PREFIX + value)


def encode_reference(reference_key: bytes, referenced_key: bytes, referenced_tx: int) -> EncodedKV:
    return EncodedKV(
        SET_KEY_PREFIX + reference_key,
        REFERENCE_VALUE_PREFIX + u64be(referenced_tx) + SET_KEY_PREFIX + referenced_key,
    )


def encode_entry(entry: Entry) -> EncodedKV:
    if isinstance(entry, KVEntry):
        return encode_kv(entry.key, entry.value)
    if isinstance(entry, ReferenceEntry):
        return encode_reference(entry.reference_key, entry.referenced_key, entry.referenced_tx)
    raise TypeError(f"Cannot encode {type(entry).__name__}")


def entry_digest(entry: Entry, hash_fn: Optional[HashFn] = None) -> bytes:
    """Leaf digest the inclusion proof is computed over, SHA-256 unless hash_fn is given."""
    return encode_entry(entry).digest(hash_fn)
