# trustledger/client/session.py
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from trustledger.client.transport import (
    LedgerTransport,
    ReadRequest,
    ReadResponse,
    TamperReport,
    WriteRequest,
    WriteResponse,
)
from trustledger.config import ClientConfig
from trustledger.core.errors import (
    BootstrapRequired,
    ConsistencyFailure,
    InclusionFailure,
    LedgerError,
    SignatureFailure,
    TransportFailure,
    UnexpectedShape,
    VerificationError,
)
from trustledger.core.types import Entry, KVEntry, ReferenceEntry, TrustAnchor, TxMetadata, VerifiedResult
from trustledger.crypto.hashing import state_digest
from trustledger.crypto.keys import ServerKeyPair
from trustledger.crypto.primitives import ProofPrimitives
from trustledger.storage import TrustStateStore, create_storage
from trustledger.verify.verifier import ProofVerifier, is_complete

logger = logging.getLogger(__name__)

BytesLike = Union[str, bytes]


class OperationState(str, Enum):
    START = "start"
    ANCHOR_LOADED = "anchor_loaded"
    REQUEST_SENT = "request_sent"
    PROOF_RECEIVED = "proof_received"
    VERIFIED = "verified"
    REJECTED = "rejected"


_TRANSITIONS = {
    OperationState.START: {OperationState.ANCHOR_LOADED, OperationState.REJECTED},
    OperationState.ANCHOR_LOADED: {OperationState.REQUEST_SENT, OperationState.REJECTED},
    OperationState.REQUEST_SENT: {OperationState.PROOF_RECEIVED, OperationState.REJECTED},
    OperationState.PROOF_RECEIVED: {OperationState.VERIFIED, OperationState.REJECTED},
    OperationState.VERIFIED: set(),
    OperationState.REJECTED: set(),
}


@dataclass
class VerifiedOperation:
    """Lifecycle of a single verified read or write."""
    name: str
    server_identity: str
    state: OperationState = OperationState.START
    bootstrapped: bool = False
    key: Optional[bytes] = None
    history: List[OperationState] = field(default_factory=lambda: [OperationState.START])

    @property
    def finished(self) -> bool:
        return self.state in (OperationState.VERIFIED, OperationState.REJECTED)

    def advance(self, new_state: OperationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"{self.name}: illegal transition {self.state.value} -> {new_state.value}")
        logger.debug("%s [%s]: %s -> %s", self.name, self.server_identity, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def reject(self) -> None:
        if not self.finished:
            self.advance(OperationState.REJECTED)


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class VerifiedLedgerClient:
    """
    Verified reads and writes against one ledger server.

    Every operation runs load anchor -> request (proving since the anchor) ->
    verify -> persist anchor, holding the store's guard for this server
    identity throughout. A result is only returned after the advanced anchor
    is stored. Any failure leaves the stored anchor untouched.

    The transport is owned by the caller. The store is closed by close() only
    when this client created it from config.state_uri.
    """

    def __init__(
        self,
        transport: LedgerTransport,
        store: Optional[TrustStateStore] = None,
        config: Optional[ClientConfig] = None,
        primitives: Optional[ProofPrimitives] = None,
    ):
        self.config = config or ClientConfig()
        self.transport = transport
        self._owns_store = store is None
        self.store = store if store is not None else create_storage(self.config.state_uri)
        self.verifier = ProofVerifier(primitives)
        self._server_key = None
        if self.config.server_public_key:
            self._server_key = ServerKeyPair.from_public_b64url(self.config.server_public_key)

    @property
    def server_identity(self) -> str:
        return self.config.identity

    # ── trust state

    def current_anchor(self) -> Optional[TrustAnchor]:
        """Stored anchor for this server, None until the first verified operation."""
        return self.store.get(self.server_identity)

    def pin_anchor(self, anchor: TrustAnchor) -> None:
        """Trust a known-good state obtained out of band instead of trusting on first use."""
        if anchor.server_identity != self.server_identity:
            raise ValueError(
                f"Anchor is for '{anchor.server_identity}', client talks to '{self.server_identity}'"
            )
        with self.store.guard(self.server_identity):
            self.store.set(anchor)
        logger.info("Pinned trust anchor for %s at tx %d", anchor.server_identity, anchor.tx_id)

    def report_tamper(self, key: BytesLike, tx_id: int, signature: bytes = b"") -> TamperReport:
        """
        Tell the server's operator that `key` at `tx_id` failed verification.
        The report carries the last trusted state, which a failed operation
        never changes.
        """
        report = self._tamper_report(self.server_identity, _to_bytes(key), tx_id, signature)
        self._call(self.transport.report_tamper, report)
        logger.warning("Reported tampering of key %r at tx %d to %s", report.key, tx_id, report.server_identity)
        return report

    def _tamper_report(self, identity: str, key: bytes, tx_id: int, signature: bytes = b"") -> TamperReport:
        anchor = self.store.get(identity) or TrustAnchor.genesis(identity)
        return TamperReport(identity, key, tx_id, anchor.tx_id, anchor.tx_hash, signature)

    def _send_tamper_report(self, identity: str, key: bytes, tx_id: int) -> None:
        # best effort: the verification error is what the caller gets
        report = self._tamper_report(identity, key, tx_id)
        try:
            self._call(self.transport.report_tamper, report)
        except (LedgerError, NotImplementedError) as e:
            logger.warning("Could not report tampering to %s: %s", identity, e)
            return
        logger.warning("Reported tampering of key %r at tx %d to %s", key, tx_id, identity)

    # ── writes

    def verified_set(self, key: BytesLike, value: BytesLike) -> VerifiedResult:
        return self._verified_write("verified_set", (KVEntry(_to_bytes(key), _to_bytes(value)),))

    def verified_set_all(self, pairs: Iterable[Tuple[BytesLike, BytesLike]]) -> VerifiedResult:
        entries = tuple(KVEntry(_to_bytes(k), _to_bytes(v)) for k, v in pairs)
        return self._verified_write("verified_set_all", entries)

    def verified_set_reference(
        self,
        reference_key: BytesLike,
        referenced_key: BytesLike,
        at_tx: int = 0,
    ) -> VerifiedResult:
        entry = ReferenceEntry(_to_bytes(reference_key), _to_bytes(referenced_key), at_tx)
        return self._verified_write("verified_set_reference", (entry,))

    # ── reads

    def verified_get(self, key: BytesLike) -> VerifiedResult:
        return self._verified_read("verified_get", ReadRequest(_to_bytes(key)))

    def verified_get_at(self, key: BytesLike, tx_id: int) -> VerifiedResult:
        return self._verified_read("verified_get_at", ReadRequest(_to_bytes(key), at_tx=tx_id))

    def verified_get_since(self, key: BytesLike, tx_id: int) -> VerifiedResult:
        return self._verified_read("verified_get_since", ReadRequest(_to_bytes(key), since_tx=tx_id))

    # ── orchestration

    @contextmanager
    def _operation(self, name: str) -> Iterator[VerifiedOperation]:
        op = VerifiedOperation(name, self.server_identity)
        with self.store.guard(op.server_identity):
            try:
                yield op
            except VerificationError as e:
                op.reject()
                logger.error("%s against %s rejected, possible tampering: [%s] %s",
                             name, op.server_identity, e.category, e)
                if (self.config.report_tamper and op.key is not None
                        and isinstance(e, (InclusionFailure, ConsistencyFailure))):
                    self._send_tamper_report(op.server_identity, op.key, e.tx_id or 0)
                raise
            except TransportFailure as e:
                op.reject()
                logger.warning("%s against %s failed in transport: %s", name, op.server_identity, e)
                raise
            except BaseException:
                op.reject()
                raise

    def _call(self, fn, *args):
        try:
            return fn(*args)
        except LedgerError:
            raise
        except (OSError, TimeoutError) as e:
            raise TransportFailure(f"{getattr(fn, '__name__', 'request')} did not complete: {e}") from e

    def _load_anchor(self, op: VerifiedOperation) -> TrustAnchor:
        anchor = self.store.get(op.server_identity)
        if anchor is None:
            if not self.config.trust_on_first_use:
                raise BootstrapRequired(op.server_identity)

            state = self._call(self.transport.current_state)
            try:
                anchor = TrustAnchor(op.server_identity, state.tx_id, state.tx_hash, state.signature)
            except ValueError as e:
                raise UnexpectedShape(f"Server state is malformed: {e}", op.server_identity, state.tx_id) from e
            if not anchor.is_genesis:
                self._check_signature(anchor, state.signature)
            op.bootstrapped = True
            logger.warning(
                "No trust anchor for %s; trusting its unverified state at tx %d (trust-on-first-use)",
                op.server_identity, anchor.tx_id,
            )
        op.advance(OperationState.ANCHOR_LOADED)
        return anchor

    def _check_signature(self, candidate: TrustAnchor, signature: bytes) -> None:
        if self._server_key is None:
            return
        message = state_digest(candidate.tx_id, candidate.tx_hash)
        if not self.verifier.primitives.verify_signature(self._server_key, message, signature):
            raise SignatureFailure(
                f"State at tx {candidate.tx_id} is not signed by the configured server key",
                candidate.server_identity,
                candidate.tx_id,
            )

    def _commit(self, op: VerifiedOperation, anchor: TrustAnchor, candidate: TrustAnchor,
                result: VerifiedResult) -> VerifiedResult:
        if candidate.tx_id != anchor.tx_id:
            self._check_signature(candidate, candidate.signature)
        if op.bootstrapped or candidate != anchor:
            # must be durable before the result is handed out
            self.store.set(candidate)
            logger.info("Trust anchor for %s advanced from tx %d to tx %d",
                        op.server_identity, anchor.tx_id, candidate.tx_id)
        op.advance(OperationState.VERIFIED)
        return result

    def _verified_write(self, name: str, entries: Tuple[Entry, ...]) -> VerifiedResult:
        if not entries:
            raise ValueError("Nothing to write")

        with self._operation(name) as op:
            first = entries[0]
            op.key = first.key if isinstance(first, KVEntry) else first.reference_key
            anchor = self._load_anchor(op)
            request = WriteRequest(entries, prove_since_tx=anchor.tx_id)
            op.advance(OperationState.REQUEST_SENT)
            response = self._call(self.transport.verifiable_set, request)
            op.advance(OperationState.PROOF_RECEIVED)

            proved = self._check_write_shape(response, entries, anchor)
            tx = response.tx
            candidate = anchor
            for entry, proof in zip(entries, response.inclusion_proofs):
                check = self.verifier.verify(
                    entry, tx.id, tx.metadata.eh, proof, response.dual_proof, anchor, response.signature,
                )
                check.raise_for_failure(op.server_identity)
                candidate = check.anchor

            return self._commit(op, anchor, candidate, VerifiedResult(tx.id, entries, candidate, proved))

    def _check_write_shape(self, response: WriteResponse, entries: Tuple[Entry, ...],
                           anchor: TrustAnchor) -> TxMetadata:
        """Structural checks on a write response. Returns the metadata the dual proof covers."""
        identity = anchor.server_identity
        tx = response.tx if response is not None else None
        if (tx is None or tx.metadata is None or response.inclusion_proofs is None
                or not is_complete(response.dual_proof)):
            raise UnexpectedShape("Write response is missing its header or proofs", identity)
        if tx.id <= anchor.tx_id:
            raise UnexpectedShape(
                f"Write landed in tx {tx.id}, not after trusted tx {anchor.tx_id}", identity, tx.id,
            )
        if len(response.inclusion_proofs) != len(entries):
            raise UnexpectedShape(
                f"Got {len(response.inclusion_proofs)} inclusion proofs for {len(entries)} entries",
                identity, tx.id,
            )

        # the header is only a claim; the count must come from the metadata whose ALH gets proved
        proved = self.verifier.tx_metadata_for(tx.id, response.dual_proof, anchor)
        if proved.id != tx.id or tx.metadata != proved or tx.entries_count != proved.entries_count:
            raise UnexpectedShape(f"Header of tx {tx.id} disagrees with its proved metadata", identity, tx.id)
        expected = len(entries) + self.config.bookkeeping_entries
        if proved.entries_count != expected:
            raise UnexpectedShape(
                f"Tx {tx.id} holds {proved.entries_count} entries, expected {expected}", identity, tx.id,
            )
        return proved

    def _verified_read(self, name: str, request: ReadRequest) -> VerifiedResult:
        with self._operation(name) as op:
            op.key = request.key
            anchor = self._load_anchor(op)
            request = ReadRequest(request.key, request.at_tx, request.since_tx, prove_since_tx=anchor.tx_id)
            op.advance(OperationState.REQUEST_SENT)
            response = self._call(self.transport.verifiable_get, request)
            op.advance(OperationState.PROOF_RECEIVED)

            if (response is None or response.entry is None or response.inclusion_proof is None
                    or not is_complete(response.dual_proof)):
                raise UnexpectedShape(
                    f"Read response for key {request.key!r} is missing its entry or proofs", op.server_identity,
                )

            entry, tx_id, resolved_value = self._proved_entry(request, response, op.server_identity)
            tx_md = self.verifier.tx_metadata_for(tx_id, response.dual_proof, anchor)
            check = self.verifier.verify(
                entry, tx_id, tx_md.eh, response.inclusion_proof, response.dual_proof, anchor, response.signature,
            )
            check.raise_for_failure(op.server_identity)

            result = VerifiedResult(tx_id, (entry,), check.anchor, tx_md, resolved_value)
            return self._commit(op, anchor, check.anchor, result)

    @staticmethod
    def _proved_entry(request: ReadRequest, response: ReadResponse,
                      identity: str) -> Tuple[Entry, int, Optional[bytes]]:
        """The leaf the server's proof is about, its tx, and the value read through a reference."""
        read = response.entry
        ref = read.referenced_by

        if ref is None:
            if read.key != request.key:
                raise UnexpectedShape(f"Asked for key {request.key!r}, got {read.key!r}", identity, read.tx)
            entry, tx_id, resolved = KVEntry(read.key, read.value), read.tx, None
        else:
            if ref.key != request.key:
                raise UnexpectedShape(f"Asked for key {request.key!r}, got reference {ref.key!r}", identity, ref.tx)
            if ref.at_tx and read.tx != ref.at_tx:
                raise UnexpectedShape(
                    f"Reference pinned to tx {ref.at_tx} resolved at tx {read.tx}", identity, ref.tx,
                )
            entry, tx_id, resolved = ReferenceEntry(ref.key, read.key, ref.at_tx), ref.tx, read.value

        if request.at_tx is not None and tx_id != request.at_tx:
            raise UnexpectedShape(f"Asked for tx {request.at_tx}, got tx {tx_id}", identity, tx_id)
        if request.since_tx is not None and tx_id < request.since_tx:
            raise UnexpectedShape(f"Asked for tx >= {request.since_tx}, got tx {tx_id}", identity, tx_id)
        return entry, tx_id, resolved

    # ── lifecycle

    def close(self) -> None:
        if self._owns_store:
            self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
