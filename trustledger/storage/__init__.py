# trustledger/storage/__init__.py
"""
Trust state stores: the last verified anchor per server identity.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from trustledger.core.errors import StaleAnchorError
from trustledger.core.types import TrustAnchor


class TrustStateStore(ABC):
    """
    Abstract base for anchor persistence.

    `set` is a single atomic replace that is durable when it returns and never
    moves an identity to a lower tx_id. `guard` is the per-identity critical
    section callers hold across read anchor -> verify -> write anchor.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        # identity -> [lock, holders and waiters]; entries go away with their last user
        self._identity_locks: Dict[str, list] = {}

    @abstractmethod
    def get(self, server_identity: str) -> Optional[TrustAnchor]:
        pass

    @abstractmethod
    def set(self, anchor: TrustAnchor) -> None:
        pass

    @abstractmethod
    def delete(self, server_identity: str) -> bool:
        pass

    @abstractmethod
    def list_identities(self) -> List[str]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def get_updated_at(self, server_identity: str) -> Optional[str]:
        """When the anchor was last written, if the backend records it."""
        return None

    @contextmanager
    def guard(self, server_identity: str) -> Iterator[None]:
        with self._registry_lock:
            entry = self._identity_locks.setdefault(server_identity, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._identity_locks[server_identity]

    @staticmethod
    def _check_monotonic(current: Optional[TrustAnchor], anchor: TrustAnchor) -> None:
        if current is not None and anchor.tx_id < current.tx_id:
            raise StaleAnchorError(
                f"Refusing to move anchor for '{anchor.server_identity}' "
                f"back from tx {current.tx_id} to tx {anchor.tx_id}"
            )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def storage_location(uri: str) -> Tuple[str, Optional[Path]]:
    """Backend kind ("sqlite", "file", "memory") and on-disk location of a store URI."""
    if uri.startswith("sqlite://"):
        # sqlite:///abs/path.db, sqlite://relative.db, sqlite://~/state.db
        return "sqlite", Path(uri[len("sqlite://"):]).expanduser().resolve()

    elif uri.startswith("file://"):
        return "file", Path(uri[len("file://"):]).expanduser().resolve()

    elif uri in ("memory:", "memory://"):
        return "memory", None

    elif uri.strip() and "://" not in uri:
        # plain file path -> SQLite
        return "sqlite", Path(uri.strip()).expanduser().resolve()

    raise ValueError(f"Unsupported storage URI: {uri}")


def create_storage(uri: str) -> TrustStateStore:
    kind, path = storage_location(uri)
    if kind == "sqlite":
        from .sqlite import SQLiteStateStore
        return SQLiteStateStore(path)
    elif kind == "file":
        from .files import FileStateStore
        return FileStateStore(path)
    from .memory import InMemoryStateStore
    return InMemoryStateStore()


from .memory import InMemoryStateStore
from .files import FileStateStore
from .sqlite import SQLiteStateStore

__all__ = [
    "TrustStateStore",
    "create_storage",
    "storage_location",
    "InMemoryStateStore",
    "FileStateStore",
    "SQLiteStateStore",
]
