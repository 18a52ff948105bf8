# trustledger/client/transport.py
"""
Shapes exchanged with the transport collaborator. The transport (gRPC stub,
HTTP client, in-process fake) is owned by the caller; this package never opens
or closes channels on its own.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from trustledger.core.types import DualProof, Entry, InclusionProof, TxMetadata


@dataclass(frozen=True)
class ServerState:
    """Server's own claim about its latest transaction. Unverified."""
    tx_id: int
    tx_hash: bytes
    signature: bytes = b""


@dataclass(frozen=True)
class WriteRequest:
    entries: Tuple[Entry, ...]
    prove_since_tx: int = 0


@dataclass(frozen=True)
class TxHeader:
    id: int
    entries_count: int
    metadata: TxMetadata


@dataclass(frozen=True)
class WriteResponse:
    tx: TxHeader
    inclusion_proofs: Tuple[InclusionProof, ...]    # one per submitted entry, same order
    dual_proof: DualProof
    signature: bytes = b""


@dataclass(frozen=True)
class ReadRequest:
    key: bytes
    at_tx: Optional[int] = None
    since_tx: Optional[int] = None
    prove_since_tx: int = 0


@dataclass(frozen=True)
class Reference:
    """Set when the key read was a reference; the proof covers this pointer."""
    tx: int                 # tx that wrote the reference
    key: bytes              # the reference key that was requested
    at_tx: int = 0          # tx the reference is pinned to, 0 = latest


@dataclass(frozen=True)
class ReadEntry:
    key: bytes
    value: bytes
    tx: int
    referenced_by: Optional[Reference] = None


@dataclass(frozen=True)
class ReadResponse:
    entry: ReadEntry
    inclusion_proof: InclusionProof
    dual_proof: DualProof
    signature: bytes = b""


@dataclass(frozen=True)
class TamperReport:
    """Sent back to the server operator when a proof for `key` at `tx_id` fails."""
    server_identity: str
    key: bytes
    tx_id: int
    trusted_tx_id: int      # last state the client verified
    trusted_hash: bytes     # its ALH
    signature: bytes = b""  # optional client signature over the report


class LedgerTransport(ABC):
    """Unverified RPC surface of a ledger server."""

    @abstractmethod
    def current_state(self) -> ServerState:
        pass

    @abstractmethod
    def verifiable_set(self, request: WriteRequest) -> WriteResponse:
        pass

    @abstractmethod
    def verifiable_get(self, request: ReadRequest) -> ReadResponse:
        pass

    def report_tamper(self, report: TamperReport) -> None:
        """Optional. Transports whose server takes tamper reports override this."""
        raise NotImplementedError(f"{type(self).__name__} does not accept tamper reports")

    def close(self) -> None:
        pass
