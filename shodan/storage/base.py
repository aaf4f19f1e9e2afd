# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from shodan.storage.informers import StorageInformer

logger = logging.getLogger(__name__)


class StorageNotFoundError(KeyError):
    """Raised when nothing is stored under the requested key"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"key not found: {key}")

    def __str__(self) -> str:
        return self.args[0]


class Storage(ABC):
    """
    Byte oriented key/value store holding one serialized job per key.

    Every key operation is atomic on its own; there is no multi-key transaction.
    Successful mutations trigger all attached informers before returning.
    """

    def __init__(self, informers: Optional[Iterable[StorageInformer]] = None):
        self._informers: List[StorageInformer] = list(informers or [])

    def add_informer(self, informer: StorageInformer) -> None:
        self._informers.append(informer)

    def _trigger_informers(self) -> None:
        for informer in self._informers:
            informer.trigger()

    def get(self, key: str) -> bytes:
        """Return the payload stored under key, raising StorageNotFoundError if absent"""
        data = self._get(key)
        if data is None:
            raise StorageNotFoundError(key)
        return data

    def set(self, key: str, data: bytes) -> None:
        """Create or replace the payload stored under key"""
        self._set(key, data)
        self._trigger_informers()

    def delete(self, key: str) -> None:
        """Remove key, raising StorageNotFoundError if absent"""
        if not self._delete(key):
            raise StorageNotFoundError(key)
        self._trigger_informers()

    def list(self, prefix: str = "") -> List[str]:
        """Return all keys starting with prefix; an empty prefix matches every key"""
        return [key for key in self._keys() if key.startswith(prefix)]

    def close(self) -> None:
        pass

    @abstractmethod
    def _get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    def _set(self, key: str, data: bytes) -> None:
        pass

    @abstractmethod
    def _delete(self, key: str) -> bool:
        """Delete key and report whether it existed"""
        pass

    @abstractmethod
    def _keys(self) -> List[str]:
        pass
