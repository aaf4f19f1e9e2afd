import threading
from typing import Dict, Iterable, List, Optional

from shodan.storage.base import Storage
from shodan.storage.informers import StorageInformer


class MemoryStorage(Storage):
    """Local in-process storage for testing or single-run deployments"""

    def __init__(self, informers: Optional[Iterable[StorageInformer]] = None):
        super().__init__(informers)
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def _get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def _set(self, key: str, data: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(data)

    def _delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def _keys(self) -> List[str]:
        with self._lock:
            return list(self._data)
