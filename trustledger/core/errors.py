# trustledger/core/errors.py
"""
Error taxonomy.

Only TransportFailure is safe to retry. VerificationError and its subclasses
are tamper evidence: callers should halt rather than keep talking to a ledger
that produced one, and must not expect a retry against the same anchor to
succeed.
"""
from typing import Optional


class LedgerError(Exception):
    """Base for everything this package raises."""
    retryable = False


class TransportFailure(LedgerError):
    """The request never completed (network error, timeout, cancellation)."""
    retryable = True


class KeyNotFound(LedgerError):
    """Server says the key does not exist. Absence cannot be proved."""


class BootstrapRequired(LedgerError):
    """No anchor stored for this server and trust-on-first-use is disabled."""

    def __init__(self, server_identity: str):
        super().__init__(
            f"No trust anchor for '{server_identity}'; pin one or enable trust-on-first-use"
        )
        self.server_identity = server_identity


class TrustStoreError(LedgerError):
    pass


class StaleAnchorError(TrustStoreError):
    """Attempt to move an anchor to a lower transaction id."""


class VerificationError(LedgerError):
    category = "general"

    def __init__(self, message: str, server_identity: Optional[str] = None, tx_id: Optional[int] = None):
        super().__init__(message)
        self.server_identity = server_identity
        self.tx_id = tx_id


class UnexpectedShape(VerificationError):
    """Response breaks a structural invariant (e.g. wrong entry count)."""
    category = "shape"


class InclusionFailure(VerificationError):
    category = "inclusion"


class ConsistencyFailure(VerificationError):
    category = "consistency"


class SignatureFailure(VerificationError):
    category = "signature"


FAILURE_TYPES = {
    cls.category: cls
    for cls in (UnexpectedShape, InclusionFailure, ConsistencyFailure, SignatureFailure)
}
