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

"""
Synthetic change notification for storages without a watch API.

The storage triggers its informers after every successful mutation. Handlers receive a
content-free marker and must re-read the storage to find out what changed.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageChanged:
    """Marker passed to informer handlers, carries no payload"""


STORAGE_CHANGED = StorageChanged()

EventHandler = Callable[[StorageChanged], None]


class StorageInformer:
    """Registry of handlers notified whenever the storage is mutated"""

    def __init__(self, name: str = "jobs"):
        self.name = name
        self._handlers: List[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def has_synced(self) -> bool:
        # There is no backlog to replay, the informer is always in sync
        return True

    def trigger(self) -> None:
        """Invoke every subscribed handler exactly once, in subscription order"""
        with self._lock:
            handlers = list(self._handlers)
        logger.debug(f"Triggering {self.name} informer for {len(handlers)} handlers")
        for handler in handlers:
            handler(STORAGE_CHANGED)
