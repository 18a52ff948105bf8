# trustledger/crypto/hashing.py
"""
SHA-256 tree and hash-chain helpers (RFC 9162 style entry-hash trees,
linear ALH chains). Verification lives in primitives.py; the builders here
are for servers and tests that need to produce proofs.
"""
import hashlib
from typing import List, Sequence

from trustledger.core.encoding import u64be
from trustledger.core.types import InclusionProof, LinearProof, TxMetadata

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def leaf_hash(digest: bytes) -> bytes:
    return sha256(LEAF_PREFIX + digest)


def node_hash(left: bytes, right: bytes) -> bytes:
    return sha256(NODE_PREFIX + left + right)


def state_digest(tx_id: int, alh: bytes) -> bytes:
    """Message the server signs for its state at tx_id."""
    return sha256(u64be(tx_id) + alh)


def _split(n: int) -> int:
    # largest power of two strictly smaller than n
    k = 1
    while k << 1 < n:
        k <<= 1
    return k


def merkle_root(digests: Sequence[bytes]) -> bytes:
    """Root of the entry-hash tree over the given leaf digests."""
    if not digests:
        raise ValueError("Cannot build empty tree")
    if len(digests) == 1:
        return leaf_hash(digests[0])
    k = _split(len(digests))
    return node_hash(merkle_root(digests[:k]), merkle_root(digests[k:]))


def _audit_path(index: int, digests: Sequence[bytes]) -> List[bytes]:
    if len(digests) == 1:
        return []
    k = _split(len(digests))
    if index < k:
        return _audit_path(index, digests[:k]) + [merkle_root(digests[k:])]
    return _audit_path(index - k, digests[k:]) + [merkle_root(digests[:k])]


def inclusion_proof(digests: Sequence[bytes], index: int) -> InclusionProof:
    if index < 0 or index >= len(digests):
        raise IndexError(f"Leaf index {index} out of range")
    return InclusionProof(leaf=index, width=len(digests), terms=tuple(_audit_path(index, digests)))


def linear_proof(chain: Sequence[TxMetadata], source_tx_id: int, target_tx_id: int) -> LinearProof:
    """
    Linear proof from source to target over `chain`, where chain[i] is the
    metadata of transaction i + 1.
    """
    if not 1 <= source_tx_id <= target_tx_id <= len(chain):
        raise ValueError(f"Invalid linear proof range {source_tx_id}..{target_tx_id}")
    terms = [chain[source_tx_id - 1].alh()]
    for tx_id in range(source_tx_id + 1, target_tx_id + 1):
        terms.append(chain[tx_id - 1].inner_hash())
    return LinearProof(source_tx_id, target_tx_id, tuple(terms))
