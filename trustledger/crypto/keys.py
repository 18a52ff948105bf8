# trustledger/crypto/keys.py
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from trustledger.core.encoding import b64url_decode, b64url_encode
from trustledger.crypto.hashing import state_digest


class ServerKeyPair:
    """
    Ed25519 key of a ledger server. Clients normally hold only the public half
    (from_public_b64url); the private half exists for servers and tests.
    """

    def __init__(self, public_key: Ed25519PublicKey, private_key: Optional[Ed25519PrivateKey] = None):
        self._public = public_key
        self._private = private_key

    @classmethod
    def generate(cls) -> "ServerKeyPair":
        private = Ed25519PrivateKey.generate()
        return cls(private.public_key(), private)

    @classmethod
    def from_public_b64url(cls, value: str) -> "ServerKeyPair":
        return cls(Ed25519PublicKey.from_public_bytes(b64url_decode(value)))

    def public_key_bytes(self) -> bytes:
        return self._public.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def public_key_b64url(self) -> str:
        return b64url_encode(self.public_key_bytes())

    def sign_bytes(self, data: bytes) -> bytes:
        if self._private is None:
            raise ValueError("Cannot sign with a public-only key")
        return self._private.sign(data)

    def sign_state(self, tx_id: int, alh: bytes) -> bytes:
        return self.sign_bytes(state_digest(tx_id, alh))

    def verify_bytes(self, signature: bytes, data: bytes) -> bool:
        try:
            self._public.verify(signature, data)
            return True
        except InvalidSignature:
            return False
