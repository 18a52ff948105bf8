# trustledger/storage/memory.py
import threading
from typing import Dict, List, Optional

from trustledger.core.types import TrustAnchor
from . import TrustStateStore


class InMemoryStateStore(TrustStateStore):
    """Process-local anchors. Nothing survives a restart, so every new process bootstraps again."""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._anchors: Dict[str, TrustAnchor] = {}

    def get(self, server_identity: str) -> Optional[TrustAnchor]:
        with self._lock:
            return self._anchors.get(server_identity)

    def set(self, anchor: TrustAnchor) -> None:
        with self._lock:
            self._check_monotonic(self._anchors.get(anchor.server_identity), anchor)
            self._anchors[anchor.server_identity] = anchor

    def delete(self, server_identity: str) -> bool:
        with self._lock:
            return self._anchors.pop(server_identity, None) is not None

    def list_identities(self) -> List[str]:
        with self._lock:
            return sorted(self._anchors)

    def close(self) -> None:
        pass
