# trustledger/config.py
import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_STATE_PATH = "~/.trustledger/state.db"
DEFAULT_STATE_URI = "sqlite://" + DEFAULT_STATE_PATH


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def default_state_uri() -> str:
    """
    Where trust anchors live unless told otherwise:
    1. TRUSTLEDGER_STATE_URI (sqlite://, file:// or memory:)
    2. TRUSTLEDGER_STATE_PATH (SQLite file)
    3. ~/.trustledger/state.db
    """
    uri = os.environ.get("TRUSTLEDGER_STATE_URI", "").strip()
    if uri:
        return uri
    path = os.environ.get("TRUSTLEDGER_STATE_PATH", "").strip()
    if path:
        return path
    return DEFAULT_STATE_URI


@dataclass
class ClientConfig:
    """
    Client settings. Connection fields (server_url, server_port, api_key,
    use_tls) are for whoever builds the transport; the verified client itself
    reads only the trust-related fields.
    """
    server_url: str = "localhost"
    server_port: int = 3322
    api_key: Optional[str] = None
    use_tls: bool = True
    # sqlite://<path>, file://<dir> or memory:
    state_uri: str = field(default_factory=default_state_uri)
    # key anchors are stored under; defaults to "host:port"
    server_identity: Optional[str] = None
    # accept the server's unverified current state when no anchor is stored
    trust_on_first_use: bool = True
    # base64url Ed25519 public key; when set every advancing state must be signed
    server_public_key: Optional[str] = None
    # entries the server adds to each write transaction on top of the user's
    bookkeeping_entries: int = 1
    # send a tamper report to the server when an inclusion or consistency proof fails
    report_tamper: bool = False

    @property
    def identity(self) -> str:
        return self.server_identity or f"{self.server_url}:{self.server_port}"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build from TRUSTLEDGER_* environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            server_url=os.environ.get("TRUSTLEDGER_SERVER_URL", defaults.server_url),
            server_port=int(os.environ.get("TRUSTLEDGER_SERVER_PORT", defaults.server_port)),
            api_key=os.environ.get("TRUSTLEDGER_API_KEY", defaults.api_key),
            use_tls=_env_bool("TRUSTLEDGER_USE_TLS", defaults.use_tls),
            state_uri=defaults.state_uri,
            server_identity=os.environ.get("TRUSTLEDGER_SERVER_IDENTITY", defaults.server_identity),
            trust_on_first_use=_env_bool("TRUSTLEDGER_TRUST_ON_FIRST_USE", defaults.trust_on_first_use),
            server_public_key=os.environ.get("TRUSTLEDGER_SERVER_PUBLIC_KEY", defaults.server_public_key),
            bookkeeping_entries=int(
                os.environ.get("TRUSTLEDGER_BOOKKEEPING_ENTRIES", defaults.bookkeeping_entries)
            ),
            report_tamper=_env_bool("TRUSTLEDGER_REPORT_TAMPER", defaults.report_tamper),
        )
