# trustledger/__init__.py
"""
trustledger: client-side trust anchoring for tamper-evident key-value ledgers.
Verifies inclusion and consistency proofs returned by an untrusted server and
keeps the last verified transaction per server as a locally persisted anchor.
"""

from trustledger.client.session import VerifiedLedgerClient
from trustledger.config import ClientConfig
from trustledger.core.types import KVEntry, ReferenceEntry, TrustAnchor, VerifiedResult

__version__ = "0.1.0-dev"

__all__ = [
    "VerifiedLedgerClient",
    "ClientConfig",
    "KVEntry",
    "ReferenceEntry",
    "TrustAnchor",
    "VerifiedResult",
]
