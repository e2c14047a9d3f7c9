"""
Descriptor persistence.
"""

from typing import List, Optional, Protocol
import json
import logging
import os
import tempfile
import threading

from .base import ConnectionDescriptor
from ..exceptions import PolyDBError, StorageError

logger = logging.getLogger(__name__)


class DescriptorStore(Protocol):
    """Whole-collection load/replace of connection descriptors."""

    def load_descriptors(self) -> List[ConnectionDescriptor]:
        ...

    def save_descriptors(self, descriptors: List[ConnectionDescriptor]) -> None:
        ...


class MemoryDescriptorStore:
    """In-process store."""

    def __init__(self, descriptors: Optional[List[ConnectionDescriptor]] = None):
        self._descriptors = list(descriptors or [])
        self._lock = threading.Lock()

    def load_descriptors(self) -> List[ConnectionDescriptor]:
        with self._lock:
            return list(self._descriptors)

    def save_descriptors(self, descriptors: List[ConnectionDescriptor]) -> None:
        with self._lock:
            self._descriptors = list(descriptors)


class JsonDescriptorStore:
    """
    Descriptors kept in a pretty-printed JSON file.

    A missing or empty file holds no descriptors. Writes go through a
    temporary file in the same directory and are swapped in atomically.

    Usage:
        store = JsonDescriptorStore("/etc/polydb/connections.json")
        descriptors = store.load_descriptors()
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def load_descriptors(self) -> List[ConnectionDescriptor]:
        with self._lock:
            if not os.path.exists(self.path):
                return []
            try:
                with open(self.path, "r", encoding="utf-8") as fh:
                    raw = fh.read()
            except OSError as e:
                raise StorageError(f"cannot read {self.path}: {e}", path=self.path)
            if not raw.strip():
                return []
            try:
                items = json.loads(raw)
                if not isinstance(items, list):
                    raise TypeError("expected a JSON list of connections")
                return [ConnectionDescriptor.from_dict(item) for item in items]
            except (ValueError, TypeError, AttributeError, PolyDBError) as e:
                raise StorageError(f"malformed connections file {self.path}: {e}", path=self.path)

    def save_descriptors(self, descriptors: List[ConnectionDescriptor]) -> None:
        payload = json.dumps(
            [d.to_dict(reveal_password=True) for d in descriptors], indent=2
        )
        directory = os.path.dirname(os.path.abspath(self.path))
        with self._lock:
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".connections-", suffix=".json")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                    os.chmod(tmp_path, 0o600)
                    os.replace(tmp_path, self.path)
                except BaseException:
                    os.unlink(tmp_path)
                    raise
            except OSError as e:
                raise StorageError(f"cannot write {self.path}: {e}", path=self.path)
        logger.debug(f"Saved {len(descriptors)} descriptor(s) to {self.path}")
