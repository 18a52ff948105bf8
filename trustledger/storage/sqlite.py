# trustledger/storage/sqlite.py
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from trustledger.config import DEFAULT_STATE_PATH
from trustledger.core.types import TrustAnchor
from . import TrustStateStore

logger = logging.getLogger(__name__)


class SQLiteStateStore(TrustStateStore):
    """SQLite persistent storage for trust anchors, one row per server identity."""

    def __init__(self, db_path: str | Path | None = None):
        super().__init__()
        if db_path is None:
            env_path = os.environ.get("TRUSTLEDGER_STATE_PATH")
            db_path = env_path if env_path else Path(DEFAULT_STATE_PATH).expanduser()

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        # one connection shared by every thread of the client, serialized here
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        conn_str = str(self.db_path)
        self._conn = sqlite3.connect(conn_str, isolation_level=None, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        # an anchor write must be on disk before set() returns
        self._conn.execute("PRAGMA synchronous=FULL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS trust_anchors (
                server_identity TEXT    PRIMARY KEY,
                tx_id           INTEGER NOT NULL,
                tx_hash         BLOB    NOT NULL,
                signature       BLOB    NOT NULL,
                updated_at      TEXT    NOT NULL
            )
        """)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def get(self, server_identity: str) -> Optional[TrustAnchor]:
        with self._lock:
            row = self.conn.execute(
                "SELECT tx_id, tx_hash, signature FROM trust_anchors WHERE server_identity = ?",
                (server_identity,),
            ).fetchone()
        if row is None:
            return None
        tx_id, tx_hash, signature = row
        return TrustAnchor(server_identity, tx_id, bytes(tx_hash), bytes(signature))

    def set(self, anchor: TrustAnchor) -> None:
        updated_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        with self._lock:
            # single upsert: the row is replaced whole or not at all
            cursor = self.conn.execute("""
                INSERT INTO trust_anchors (server_identity, tx_id, tx_hash, signature, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(server_identity) DO UPDATE SET
                    tx_id      = excluded.tx_id,
                    tx_hash    = excluded.tx_hash,
                    signature  = excluded.signature,
                    updated_at = excluded.updated_at
                WHERE excluded.tx_id >= trust_anchors.tx_id
            """, (
                anchor.server_identity, anchor.tx_id, anchor.tx_hash,
                anchor.signature, updated_at,
            ))
            applied = cursor.rowcount

        if applied == 0:
            self._check_monotonic(self.get(anchor.server_identity), anchor)
        logger.debug("Stored anchor for %s at tx %d", anchor.server_identity, anchor.tx_id)

    def delete(self, server_identity: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM trust_anchors WHERE server_identity = ?",
                (server_identity,),
            )
            return cursor.rowcount > 0

    def list_identities(self) -> List[str]:
        """Identities ordered by most recent anchor update."""
        with self._lock:
            cursor = self.conn.execute(
                "SELECT server_identity FROM trust_anchors ORDER BY updated_at DESC, server_identity"
            )
            return [row[0] for row in cursor.fetchall()]

    def get_updated_at(self, server_identity: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT updated_at FROM trust_anchors WHERE server_identity = ?",
                (server_identity,),
            ).fetchone()
        return row[0] if row else None

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
