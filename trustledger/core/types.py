# trustledger/core/types.py
import hashlib
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from trustledger.core.encoding import b64url_decode, b64url_encode, u32be, u64be

HASH_SIZE = 32
ZERO_HASH = bytes(HASH_SIZE)


@dataclass(frozen=True)
class TrustAnchor:
    """Last transaction this client has cryptographically confirmed for a server."""
    server_identity: str
    tx_id: int
    tx_hash: bytes                  # ALH of tx_id
    signature: bytes = b""          # server signature over the state, may be empty

    def __post_init__(self):
        if self.tx_id < 0:
            raise ValueError(f"tx_id must be non-negative, got {self.tx_id}")
        if len(self.tx_hash) != HASH_SIZE:
            raise ValueError(f"tx_hash must be {HASH_SIZE} bytes, got {len(self.tx_hash)}")

    @classmethod
    def genesis(cls, server_identity: str) -> "TrustAnchor":
        """Anchor meaning "nothing trusted yet"."""
        return cls(server_identity=server_identity, tx_id=0, tx_hash=ZERO_HASH)

    @property
    def is_genesis(self) -> bool:
        return self.tx_id == 0

    def to_record(self) -> dict:
        """Persisted / exported record shape."""
        return {
            "server_identity": self.server_identity,
            "tx_id": self.tx_id,
            "tx_hash": self.tx_hash.hex(),
            "signature": b64url_encode(self.signature),
        }

    @classmethod
    def from_record(cls, record: dict) -> "TrustAnchor":
        return cls(
            server_identity=record["server_identity"],
            tx_id=int(record["tx_id"]),
            tx_hash=bytes.fromhex(record["tx_hash"]),
            signature=b64url_decode(record.get("signature", "")),
        )


@dataclass(frozen=True)
class KVEntry:
    """Plain key/value leaf."""
    key: bytes
    value: bytes


@dataclass(frozen=True)
class ReferenceEntry:
    """Indirection leaf: reference_key points at referenced_key as of referenced_tx (0 = latest)."""
    reference_key: bytes
    referenced_key: bytes
    referenced_tx: int = 0


Entry = Union[KVEntry, ReferenceEntry]


@dataclass(frozen=True)
class InclusionProof:
    """Audit path for leaf index `leaf` in a tree of `width` leaves."""
    leaf: int
    width: int
    terms: Tuple[bytes, ...] = ()


@dataclass(frozen=True)
class TxMetadata:
    id: int
    prev_alh: bytes
    ts: int
    entries_count: int
    eh: bytes                       # entry-hash tree root
    bl_tx_id: int = 0
    bl_root: bytes = ZERO_HASH

    def inner_hash(self) -> bytes:
        payload = (
            u64be(self.ts)
            + u32be(self.entries_count)
            + self.eh
            + u64be(self.bl_tx_id)
            + self.bl_root
        )
        return hashlib.sha256(payload).digest()

    def alh(self) -> bytes:
        """Accumulated linear hash binding this tx to everything before it."""
        return hashlib.sha256(u64be(self.id) + self.prev_alh + self.inner_hash()).digest()


@dataclass(frozen=True)
class LinearProof:
    source_tx_id: int
    target_tx_id: int
    terms: Tuple[bytes, ...] = ()


@dataclass(frozen=True)
class DualProof:
    """Proves source_tx_metadata's ALH is a prefix of the history leading to target_tx_metadata."""
    source_tx_metadata: TxMetadata
    target_tx_metadata: TxMetadata
    linear_proof: LinearProof


@dataclass(frozen=True)
class VerifiedResult:
    """Entries confirmed against tx_id, plus the anchor that was stored for it."""
    tx_id: int
    entries: Tuple[Entry, ...]
    anchor: TrustAnchor
    metadata: Optional[TxMetadata] = field(default=None, compare=False)
    # value read through a reference; only the pointer itself is proved
    resolved_value: Optional[bytes] = None

    @property
    def entry(self) -> Entry:
        return self.entries[0]

    @property
    def value(self) -> Optional[bytes]:
        entry = self.entry
        return entry.value if isinstance(entry, KVEntry) else self.resolved_value
