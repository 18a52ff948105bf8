# trustledger/verify/verifier.py
from dataclasses import dataclass
from typing import List, Optional

from trustledger.core.codec import entry_digest
from trustledger.core.errors import FAILURE_TYPES, VerificationError
from trustledger.core.types import DualProof, Entry, InclusionProof, TrustAnchor, TxMetadata
from trustledger.crypto.primitives import ProofPrimitives, Sha256Primitives


@dataclass
class VerificationFailure:
    tx_id: int
    message: str
    category: str = "general"  # "inclusion", "consistency", "shape", "signature"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = None
    anchor: Optional[TrustAnchor] = None   # candidate to persist, only set when valid
    source_id: Optional[int] = None
    target_id: Optional[int] = None

    def __post_init__(self):
        if self.failures is None:
            self.failures = []

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def fail(self, tx_id: int, message: str, category: str) -> "VerificationResult":
        self.failures.append(VerificationFailure(tx_id, message, category))
        self.is_valid = False
        self.anchor = None
        self.message = f"Failed with {len(self.failures)} issues"
        return self

    def raise_for_failure(self, server_identity: Optional[str] = None) -> None:
        """Raise the exception matching the first failure's category."""
        failure = self.first_failure
        if self.is_valid or failure is None:
            return
        exc_type = FAILURE_TYPES.get(failure.category, VerificationError)
        raise exc_type(failure.message, server_identity=server_identity, tx_id=failure.tx_id)

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return f"Proofs are valid ✓ (tx {self.source_id} -> {self.target_id})"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [tx {f.tx_id}] {f.category}: {f.message}")
        return "\n".join(lines)


def is_complete(dual_proof: Optional[DualProof]) -> bool:
    """True when the dual proof carries both metadata sides and a linear proof."""
    return (
        dual_proof is not None
        and dual_proof.source_tx_metadata is not None
        and dual_proof.target_tx_metadata is not None
        and dual_proof.linear_proof is not None
    )


class ProofVerifier:
    """
    Checks one entry against a server's proof bundle and the current anchor.

    Inclusion: the entry's leaf digest is under eh_root, and eh_root is the
    entry-hash root recorded in the metadata of tx_id.
    Consistency: the dual proof links the lower of (anchor, tx_id) to the
    higher one. Source and target are always assigned by ascending tx id,
    whichever side is new, because the proof only works forwards.
    """

    def __init__(self, primitives: Optional[ProofPrimitives] = None):
        self.primitives = primitives or Sha256Primitives()

    @staticmethod
    def is_historical(tx_id: int, anchor: TrustAnchor) -> bool:
        """True when tx_id predates the anchor, i.e. the anchor is the consistency target."""
        return not anchor.is_genesis and tx_id < anchor.tx_id

    @classmethod
    def tx_metadata_for(cls, tx_id: int, dual_proof: DualProof, anchor: TrustAnchor) -> TxMetadata:
        """Side of the dual proof that describes tx_id."""
        if cls.is_historical(tx_id, anchor):
            return dual_proof.source_tx_metadata
        return dual_proof.target_tx_metadata

    def verify(
        self,
        entry: Entry,
        tx_id: int,
        eh_root: bytes,
        inclusion_proof: InclusionProof,
        dual_proof: DualProof,
        anchor: TrustAnchor,
        signature: bytes = b"",
    ) -> VerificationResult:
        result = VerificationResult(True)

        if not is_complete(dual_proof):
            return result.fail(tx_id, "Dual proof is missing or incomplete", "shape")

        # 1. Inclusion of the leaf under the claimed root
        digest = entry_digest(entry, self.primitives.digest)
        if not self.primitives.verify_inclusion(inclusion_proof, digest, eh_root):
            return result.fail(tx_id, "Inclusion proof does not lead to the entry hash root", "inclusion")

        # 2. Direction, ascending by tx id
        historical = self.is_historical(tx_id, anchor)
        tx_md = self.tx_metadata_for(tx_id, dual_proof, anchor)
        if historical:
            source_id, source_alh = tx_id, tx_md.alh()
            target_id, target_alh = anchor.tx_id, anchor.tx_hash
        else:
            source_id, source_alh = anchor.tx_id, anchor.tx_hash
            target_id, target_alh = tx_id, tx_md.alh()
        result.source_id, result.target_id = source_id, target_id

        # 3. The root must be the one the transaction committed to
        if tx_md.id != tx_id or tx_md.eh != eh_root:
            return result.fail(tx_id, f"Entry hash root is not the one recorded for tx {tx_id}", "inclusion")

        # 4. Consistency with everything already trusted (nothing to check at genesis)
        if not anchor.is_genesis:
            if not self.primitives.verify_consistency(dual_proof, source_id, target_id, source_alh, target_alh):
                return result.fail(
                    tx_id,
                    f"Dual proof does not link tx {source_id} to tx {target_id}",
                    "consistency",
                )

        # 5. Anchor candidate: the later of the two transactions
        if historical:
            result.anchor = anchor
        else:
            result.anchor = TrustAnchor(
                server_identity=anchor.server_identity,
                tx_id=target_id,
                tx_hash=target_alh,
                signature=signature if target_id != anchor.tx_id else (anchor.signature or signature),
            )
        result.message = "Valid proofs"
        return result
