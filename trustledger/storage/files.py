# trustledger/storage/files.py
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from trustledger.core.canon import canonical_json
from trustledger.core.encoding import b64url_decode, b64url_encode
from trustledger.core.errors import TrustStoreError
from trustledger.core.types import TrustAnchor
from . import TrustStateStore

logger = logging.getLogger(__name__)

SUFFIX = ".anchor.json"


class FileStateStore(TrustStateStore):
    """
    One canonical-JSON record per server identity inside a folder.
    Writes go to a temp file that is fsynced and then renamed over the old
    record, so a crash leaves either the previous anchor or the new one.
    """

    def __init__(self, folder: str | Path):
        super().__init__()
        self.folder = Path(folder).resolve()
        self.folder.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for(self, server_identity: str) -> Path:
        # identities like "host:port" are not safe file names
        return self.folder / (b64url_encode(server_identity.encode("utf-8")) + SUFFIX)

    def _read(self, path: Path) -> Optional[TrustAnchor]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return TrustAnchor.from_record(json.loads(raw))
        except (ValueError, KeyError) as e:
            raise TrustStoreError(f"Corrupt anchor record {path}: {e}") from e

    def get(self, server_identity: str) -> Optional[TrustAnchor]:
        with self._lock:
            return self._read(self._path_for(server_identity))

    def set(self, anchor: TrustAnchor) -> None:
        path = self._path_for(anchor.server_identity)
        payload = canonical_json(anchor.to_record())

        with self._lock:
            self._check_monotonic(self._read(path), anchor)

            fd, tmp_name = tempfile.mkstemp(dir=self.folder, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            self._fsync_folder()

        logger.debug("Stored anchor for %s at tx %d in %s", anchor.server_identity, anchor.tx_id, path)

    def _fsync_folder(self) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.folder, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def delete(self, server_identity: str) -> bool:
        with self._lock:
            try:
                self._path_for(server_identity).unlink()
                return True
            except FileNotFoundError:
                return False

    def list_identities(self) -> List[str]:
        with self._lock:
            names = [p.name[: -len(SUFFIX)] for p in self.folder.glob("*" + SUFFIX)]
        return sorted(b64url_decode(name).decode("utf-8") for name in names)

    def get_updated_at(self, server_identity: str) -> Optional[str]:
        try:
            mtime = self._path_for(server_identity).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, timezone.utc).isoformat(timespec="milliseconds")

    def close(self) -> None:
        pass
