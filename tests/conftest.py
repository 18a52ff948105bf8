# tests/conftest.py
import threading
from dataclasses import replace
from typing import List, Optional, Set, Tuple

import pytest

from trustledger.client.session import VerifiedLedgerClient
from trustledger.client.transport import (
    LedgerTransport,
    ReadEntry,
    ReadRequest,
    ReadResponse,
    Reference,
    ServerState,
    TamperReport,
    TxHeader,
    WriteRequest,
    WriteResponse,
)
from trustledger.config import ClientConfig
from trustledger.core.codec import entry_digest
from trustledger.core.encoding import u64be
from trustledger.core.errors import KeyNotFound
from trustledger.core.types import (
    ZERO_HASH,
    DualProof,
    Entry,
    InclusionProof,
    KVEntry,
    ReferenceEntry,
    TrustAnchor,
    TxMetadata,
)
from trustledger.crypto.hashing import inclusion_proof, linear_proof, merkle_root
from trustledger.crypto.keys import ServerKeyPair
from trustledger.storage import InMemoryStateStore

IDENTITY = "ledger.test:3322"


def flip(data: bytes) -> bytes:
    """Same bytes with the first one corrupted."""
    return bytes([data[0] ^ 0xFF]) + data[1:]


class FakeLedgerServer(LedgerTransport):
    """
    In-process ledger that answers with real proofs built by trustledger.crypto.hashing.
    Add names to `tamper` to make it lie:
        "eh_root"        corrupt the entry-hash root of the proved tx
        "linear_path"    corrupt one term of the linear proof
        "entries_count"  report one entry too many for writes
        "wrong_key"      answer reads with another key's entry
    """

    def __init__(self, keys: Optional[ServerKeyPair] = None, bookkeeping_entries: int = 1):
        self.keys = keys or ServerKeyPair.generate()
        self.bookkeeping_entries = bookkeeping_entries
        self.chain: List[TxMetadata] = []
        self.tx_entries: List[List[Entry]] = []
        self.tamper: Set[str] = set()
        self.fail_with: Optional[BaseException] = None
        self.requests: List[object] = []
        self.tamper_reports: List[TamperReport] = []
        self._lock = threading.Lock()

    # ── ledger

    def _metadata(self, tx_id: int, entries: List[Entry], prev_alh: bytes) -> TxMetadata:
        return TxMetadata(
            id=tx_id,
            prev_alh=prev_alh,
            ts=1_700_000_000 + tx_id,
            entries_count=len(entries),
            eh=merkle_root([entry_digest(e) for e in entries]),
        )

    def commit(self, entries) -> TxMetadata:
        with self._lock:
            return self._commit(list(entries))

    def _commit(self, entries: List[Entry]) -> TxMetadata:
        tx_id = len(self.chain) + 1
        bookkeeping = [KVEntry(b"\xfftx-meta-%d" % i, u64be(tx_id)) for i in range(self.bookkeeping_entries)]
        all_entries = entries + bookkeeping
        prev_alh = self.chain[-1].alh() if self.chain else ZERO_HASH
        md = self._metadata(tx_id, all_entries, prev_alh)
        self.chain.append(md)
        self.tx_entries.append(all_entries)
        return md

    def rewrite_tx(self, tx_id: int, entries) -> None:
        """Silently replace the user entries of a past tx and rebuild every later ALH."""
        with self._lock:
            bookkeeping = self.tx_entries[tx_id - 1][-self.bookkeeping_entries:] if self.bookkeeping_entries else []
            self.tx_entries[tx_id - 1] = list(entries) + bookkeeping
            prev_alh = self.chain[tx_id - 2].alh() if tx_id > 1 else ZERO_HASH
            for i in range(tx_id - 1, len(self.chain)):
                self.chain[i] = self._metadata(i + 1, self.tx_entries[i], prev_alh)
                prev_alh = self.chain[i].alh()

    def dual_proof(self, proved_tx: int, prove_since_tx: int = 0) -> DualProof:
        since = prove_since_tx or proved_tx
        source, target = min(since, proved_tx), max(since, proved_tx)
        return DualProof(
            source_tx_metadata=self.chain[source - 1],
            target_tx_metadata=self.chain[target - 1],
            linear_proof=linear_proof(self.chain, source, target),
        )

    def entry_proof(self, tx_id: int, index: int = 0) -> Tuple[Entry, InclusionProof]:
        entries = self.tx_entries[tx_id - 1]
        return entries[index], inclusion_proof([entry_digest(e) for e in entries], index)

    def anchor_at(self, tx_id: int, identity: str = IDENTITY) -> TrustAnchor:
        md = self.chain[tx_id - 1]
        return TrustAnchor(identity, tx_id, md.alh(), self.keys.sign_state(tx_id, md.alh()))

    def _tampered(self, dual: DualProof, proved_tx: int) -> DualProof:
        if "eh_root" in self.tamper:
            if dual.source_tx_metadata.id == proved_tx:
                dual = replace(dual, source_tx_metadata=replace(dual.source_tx_metadata, eh=flip(dual.source_tx_metadata.eh)))
            if dual.target_tx_metadata.id == proved_tx:
                dual = replace(dual, target_tx_metadata=replace(dual.target_tx_metadata, eh=flip(dual.target_tx_metadata.eh)))
        if "linear_path" in self.tamper:
            terms = list(dual.linear_proof.terms)
            i = 1 if len(terms) > 1 else 0
            terms[i] = flip(terms[i])
            dual = replace(dual, linear_proof=replace(dual.linear_proof, terms=tuple(terms)))
        return dual

    def _sign(self, dual: DualProof) -> bytes:
        target = dual.target_tx_metadata
        return self.keys.sign_state(target.id, target.alh())

    def _check_failure(self):
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    # ── LedgerTransport

    def current_state(self) -> ServerState:
        with self._lock:
            self._check_failure()
            if not self.chain:
                return ServerState(0, ZERO_HASH)
            md = self.chain[-1]
            return ServerState(md.id, md.alh(), self.keys.sign_state(md.id, md.alh()))

    def verifiable_set(self, request: WriteRequest) -> WriteResponse:
        with self._lock:
            self.requests.append(request)
            self._check_failure()
            md = self._commit(list(request.entries))
            digests = [entry_digest(e) for e in self.tx_entries[md.id - 1]]
            proofs = tuple(inclusion_proof(digests, i) for i in range(len(request.entries)))

            dual = self.dual_proof(md.id, request.prove_since_tx)
            signature = self._sign(dual)
            dual = self._tampered(dual, md.id)
            header_md = dual.target_tx_metadata
            count = md.entries_count + (1 if "entries_count" in self.tamper else 0)
            return WriteResponse(TxHeader(md.id, count, header_md), proofs, dual, signature)

    def _versions(self, key: bytes) -> List[Tuple[int, Entry]]:
        found = []
        for tx_index, entries in enumerate(self.tx_entries):
            for entry in entries:
                if isinstance(entry, KVEntry) and entry.key == key:
                    found.append((tx_index + 1, entry))
                elif isinstance(entry, ReferenceEntry) and entry.reference_key == key:
                    found.append((tx_index + 1, entry))
        return found

    def _lookup(self, key: bytes, at_tx: Optional[int] = None, since_tx: Optional[int] = None) -> Tuple[int, Entry]:
        versions = self._versions(key)
        if at_tx is not None:
            versions = [v for v in versions if v[0] == at_tx]
        if since_tx is not None:
            versions = [v for v in versions if v[0] >= since_tx]
        if not versions:
            raise KeyNotFound(f"key {key!r} not found")
        return versions[-1]

    def verifiable_get(self, request: ReadRequest) -> ReadResponse:
        with self._lock:
            self.requests.append(request)
            self._check_failure()
            key = request.key
            if "wrong_key" in self.tamper:
                key = next(e.key for entries in self.tx_entries for e in entries
                           if isinstance(e, KVEntry) and e.key != request.key)
            proved_tx, entry = self._lookup(key, request.at_tx, request.since_tx)

            if isinstance(entry, ReferenceEntry):
                target_tx, target = self._lookup(entry.referenced_key, at_tx=entry.referenced_tx or None)
                read = ReadEntry(target.key, target.value, target_tx,
                                 Reference(proved_tx, entry.reference_key, entry.referenced_tx))
            else:
                read = ReadEntry(entry.key, entry.value, proved_tx)

            entries = self.tx_entries[proved_tx - 1]
            digests = [entry_digest(e) for e in entries]
            proof = inclusion_proof(digests, entries.index(entry))

            dual = self.dual_proof(proved_tx, request.prove_since_tx)
            signature = self._sign(dual)
            return ReadResponse(read, proof, self._tampered(dual, proved_tx), signature)

    def report_tamper(self, report: TamperReport) -> None:
        with self._lock:
            self._check_failure()
            self.tamper_reports.append(report)


@pytest.fixture
def server() -> FakeLedgerServer:
    return FakeLedgerServer()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def config(server: FakeLedgerServer) -> ClientConfig:
    return ClientConfig(
        server_identity=IDENTITY,
        state_uri="memory:",
        server_public_key=server.keys.public_key_b64url(),
    )


@pytest.fixture
def client(server, store, config) -> VerifiedLedgerClient:
    return VerifiedLedgerClient(server, store=store, config=config)
