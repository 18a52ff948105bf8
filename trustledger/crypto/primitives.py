# trustledger/crypto/primitives.py
"""
Proof primitives consumed by the verifier. Everything here is a pure function
of its inputs; the verifier only decides which inputs to pass.
"""
from abc import ABC, abstractmethod

from trustledger.core.encoding import u64be
from trustledger.core.types import DualProof, InclusionProof, LinearProof
from trustledger.crypto.hashing import leaf_hash, node_hash, sha256
from trustledger.crypto.keys import ServerKeyPair


class ProofPrimitives(ABC):
    """Capability interface for the hash-tree and signature math."""

    @abstractmethod
    def digest(self, data: bytes) -> bytes:
        pass

    @abstractmethod
    def verify_inclusion(self, proof: InclusionProof, leaf_digest: bytes, root: bytes) -> bool:
        pass

    @abstractmethod
    def verify_consistency(
        self,
        dual_proof: DualProof,
        source_id: int,
        target_id: int,
        source_alh: bytes,
        target_alh: bytes,
    ) -> bool:
        pass

    @abstractmethod
    def verify_signature(self, public_key: ServerKeyPair, message: bytes, signature: bytes) -> bool:
        pass


class Sha256Primitives(ProofPrimitives):
    """Default primitives: RFC 9162 inclusion, linear ALH chain consistency, Ed25519."""

    def digest(self, data: bytes) -> bytes:
        return sha256(data)

    def verify_inclusion(self, proof: InclusionProof, leaf_digest: bytes, root: bytes) -> bool:
        if proof is None or proof.width < 1 or not 0 <= proof.leaf < proof.width:
            return False

        fn = proof.leaf
        sn = proof.width - 1
        calc = leaf_hash(leaf_digest)

        for term in proof.terms:
            if sn == 0:
                return False
            if fn % 2 == 1 or fn == sn:
                calc = node_hash(term, calc)
                if fn % 2 == 0:
                    while fn % 2 == 0 and fn != 0:
                        fn >>= 1
                        sn >>= 1
            else:
                calc = node_hash(calc, term)
            fn >>= 1
            sn >>= 1

        return sn == 0 and calc == root

    def verify_linear(self, proof: LinearProof, source_id: int, target_id: int,
                      source_alh: bytes, target_alh: bytes) -> bool:
        if proof is None or source_id > target_id:
            return False
        if proof.source_tx_id != source_id or proof.target_tx_id != target_id:
            return False
        if len(proof.terms) != target_id - source_id + 1 or proof.terms[0] != source_alh:
            return False

        calc = proof.terms[0]
        for offset, term in enumerate(proof.terms[1:], start=1):
            calc = sha256(u64be(source_id + offset) + calc + term)

        return calc == target_alh

    def verify_consistency(
        self,
        dual_proof: DualProof,
        source_id: int,
        target_id: int,
        source_alh: bytes,
        target_alh: bytes,
    ) -> bool:
        # directional: a later ALH is derived from an earlier one, never the reverse
        if dual_proof is None or source_id > target_id:
            return False

        source_md = dual_proof.source_tx_metadata
        target_md = dual_proof.target_tx_metadata
        if source_md.id != source_id or target_md.id != target_id:
            return False
        if source_md.alh() != source_alh or target_md.alh() != target_alh:
            return False

        return self.verify_linear(dual_proof.linear_proof, source_id, target_id, source_alh, target_alh)

    def verify_signature(self, public_key: ServerKeyPair, message: bytes, signature: bytes) -> bool:
        if not signature:
            return False
        return public_key.verify_bytes(signature, message)
