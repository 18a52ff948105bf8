# tests/test_core.py
import hashlib

import pytest

from trustledger.core.canon import canonical_json, canonical_json_str
from trustledger.core.codec import EncodedKV, encode_entry, encode_kv, encode_reference, entry_digest
from trustledger.core.encoding import b64url_decode, b64url_encode, u32be, u64be
from trustledger.core.errors import (
    ConsistencyFailure,
    InclusionFailure,
    TransportFailure,
    UnexpectedShape,
    VerificationError,
)
from trustledger.core.types import ZERO_HASH, KVEntry, ReferenceEntry, TrustAnchor, TxMetadata


@pytest.fixture
def anchor() -> TrustAnchor:
    return TrustAnchor(
        server_identity="localhost:3322",
        tx_id=42,
        tx_hash=bytes(range(32)),
        signature=b"\x01\x02\x03",
    )


def test_anchor_immutable(anchor):
    with pytest.raises(AttributeError):
        anchor.tx_id = 99


def test_anchor_rejects_bad_hash_length():
    with pytest.raises(ValueError, match="32 bytes"):
        TrustAnchor("srv", 1, b"\x00" * 31)


def test_anchor_rejects_negative_tx():
    with pytest.raises(ValueError):
        TrustAnchor("srv", -1, ZERO_HASH)


def test_genesis_anchor():
    genesis = TrustAnchor.genesis("srv")
    assert genesis.is_genesis
    assert genesis.tx_id == 0
    assert genesis.tx_hash == ZERO_HASH
    assert genesis.signature == b""


def test_anchor_record(anchor):
    record = anchor.to_record()
    assert record["tx_id"] == 42
    assert record["tx_hash"] == bytes(range(32)).hex()
    assert "=" not in record["signature"]
    assert TrustAnchor.from_record(record) == anchor


def test_encode_kv_prefixes():
    assert encode_kv(b"k", b"v") == EncodedKV(b"\x00k", b"\x00v")


def test_encode_reference_layout():
    encoded = encode_reference(b"ref", b"target", 7)
    assert encoded.key == b"\x00ref"
    assert encoded.value == b"\x01" + b"\x00" * 7 + b"\x07" + b"\x00target"


def test_entry_digest_is_key_then_value_hash():
    expected = hashlib.sha256(b"\x00key" + hashlib.sha256(b"\x00value").digest()).digest()
    assert entry_digest(KVEntry(b"key", b"value")) == expected


def test_entry_digest_with_other_hash():
    blake = lambda data: hashlib.blake2b(data, digest_size=32).digest()
    expected = blake(b"\x00key" + blake(b"\x00value"))
    assert entry_digest(KVEntry(b"key", b"value"), blake) == expected


def test_key_value_boundary_is_unambiguous():
    # same concatenation, different split
    assert entry_digest(KVEntry(b"ab", b"c")) != entry_digest(KVEntry(b"a", b"bc"))


def test_reference_digest_covers_pointer_not_value():
    plain = entry_digest(KVEntry(b"ref", b"\x00" * 8 + b"\x00target"))
    ref = entry_digest(ReferenceEntry(b"ref", b"target", 0))
    assert plain != ref
    assert entry_digest(ReferenceEntry(b"ref", b"target", 1)) != ref


def test_encode_entry_rejects_unknown():
    with pytest.raises(TypeError):
        encode_entry(("k", "v"))


def test_tx_metadata_alh_layout():
    md = TxMetadata(id=3, prev_alh=b"\x11" * 32, ts=1000, entries_count=2, eh=b"\x22" * 32)
    inner = hashlib.sha256(u64be(1000) + u32be(2) + b"\x22" * 32 + u64be(0) + ZERO_HASH).digest()
    assert md.inner_hash() == inner
    assert md.alh() == hashlib.sha256(u64be(3) + b"\x11" * 32 + inner).digest()


def test_alh_depends_on_previous_alh():
    md = TxMetadata(id=3, prev_alh=b"\x11" * 32, ts=1000, entries_count=2, eh=b"\x22" * 32)
    other = TxMetadata(id=3, prev_alh=b"\x12" + b"\x11" * 31, ts=1000, entries_count=2, eh=b"\x22" * 32)
    assert md.alh() != other.alh()


def test_base64url_roundtrip():
    original = bytes(range(40))
    encoded = b64url_encode(original)
    assert b64url_decode(encoded) == original
    assert "=" not in encoded


def test_canonical_json_sorting(anchor):
    canon = canonical_json_str({"z": 1, "a": "hello", "nested": {"b": 2, "a": 1}})
    assert canon == '{"a":"hello","nested":{"a":1,"b":2},"z":1}'
    assert canonical_json(anchor.to_record()) == canonical_json(dict(reversed(list(anchor.to_record().items()))))


def test_error_taxonomy():
    assert TransportFailure.retryable is True
    for exc_type in (UnexpectedShape, InclusionFailure, ConsistencyFailure):
        assert issubclass(exc_type, VerificationError)
        assert exc_type.retryable is False
    err = InclusionFailure("bad", server_identity="srv", tx_id=4)
    assert err.category == "inclusion"
    assert err.tx_id == 4
