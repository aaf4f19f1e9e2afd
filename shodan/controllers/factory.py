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
Controller runtime harness.

A controller is a single sync coroutine driven by two sources of wake-ups: a fixed resync
period and change notifications coming from storage informers. Wake-ups are funnelled
through a WorkQueue with a single key, which coalesces them: while a sync is in flight any
number of wake-ups produce exactly one follow-up sync.

Informer handlers only enqueue, they never run a sync inline, so a storage mutation
performed from inside a sync cannot recurse into another sync.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Set

from shodan.storage.informers import StorageChanged, StorageInformer

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "key"


class QueueShutDown(Exception):
    """Raised by WorkQueue.get() once the queue was shut down"""


class WorkQueue:
    """
    Deduplicating work queue.

    A key is either queued, being processed, or both "processing" and "dirty" (wanted
    again once the current processing is done). Adding a key that is already dirty is a
    no-op, which bounds the work done under a storm of wake-ups.
    """

    def __init__(self):
        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._lock = threading.Lock()
        self._shutting_down = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._wakeup = asyncio.Event()
        with self._lock:
            if self._queue:
                self._wakeup.set()

    def add(self, key: str = DEFAULT_QUEUE_KEY) -> None:
        """Queue key; safe to call from any thread"""
        with self._lock:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
        self._notify()

    def _notify(self) -> None:
        if self._loop is None or self._wakeup is None or self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._wakeup.set()
        else:
            self._loop.call_soon_threadsafe(self._wakeup.set)

    async def get(self) -> str:
        """Wait for the next key and mark it as processing"""
        while True:
            with self._lock:
                if self._shutting_down:
                    raise QueueShutDown()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                self._wakeup.clear()
            await self._wakeup.wait()

    def done(self, key: str) -> None:
        """Mark key as processed, re-queueing it if it was added meanwhile"""
        with self._lock:
            self._processing.discard(key)
            if key not in self._dirty:
                return
            self._queue.append(key)
        self._notify()

    def shut_down(self) -> None:
        with self._lock:
            self._shutting_down = True
        self._notify()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)


class EventRecorder:
    """Records controller events to the log, mirroring Kubernetes event recorders"""

    def __init__(self, component: str):
        self.component = component

    def event(self, reason: str, message: str) -> None:
        logger.info(f"[{self.component}] {reason}: {message}")

    def warning(self, reason: str, message: str) -> None:
        logger.warning(f"[{self.component}] {reason}: {message}")

    def for_component(self, component: str) -> "EventRecorder":
        return type(self)(f"{self.component}/{component}")


class SyncContext:
    """Handed to every sync call"""

    def __init__(self, name: str, queue: WorkQueue, recorder: EventRecorder, queue_key: str = DEFAULT_QUEUE_KEY):
        self.name = name
        self.queue = queue
        self.recorder = recorder
        self.queue_key = queue_key

    def requeue(self) -> None:
        self.queue.add(self.queue_key)


SyncFunc = Callable[[SyncContext], Awaitable[None]]


class Controller:
    """Runs a sync coroutine on resync ticks and on informer notifications"""

    def __init__(
        self,
        name: str,
        sync: SyncFunc,
        resync_every: float,
        informers: Optional[List[StorageInformer]] = None,
        recorder: Optional[EventRecorder] = None,
    ):
        if resync_every <= 0:
            raise ValueError("resync interval must be positive")
        self.name = name
        self._sync = sync
        self.resync_every = resync_every
        self.queue = WorkQueue()
        self.recorder = (recorder or EventRecorder("shodan")).for_component(name)
        self.sync_context = SyncContext(name, self.queue, self.recorder)
        self._running = False
        for informer in informers or []:
            informer.subscribe(self._on_storage_changed)

    def _on_storage_changed(self, event: StorageChanged) -> None:
        self.enqueue()

    def enqueue(self) -> None:
        self.queue.add(DEFAULT_QUEUE_KEY)

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, workers: int = 1) -> None:
        """
        Run the controller until the calling task is cancelled.

        Cancellation is delivered to the in-flight sync, whose result is discarded, and no
        further sync is scheduled.
        """
        if workers < 1:
            raise ValueError("at least one worker is required")
        if self._running:
            raise RuntimeError(f"controller {self.name} is already running")
        self._running = True
        self.queue.bind(asyncio.get_running_loop())
        logger.info(f"Starting {self.name} (resync every {self.resync_every}s, {workers} workers)")

        tasks = [asyncio.create_task(self._resync_loop(), name=f"{self.name}-resync")]
        tasks.extend(asyncio.create_task(self._worker(), name=f"{self.name}-worker-{i}") for i in range(workers))
        try:
            await asyncio.gather(*tasks)
        finally:
            self.queue.shut_down()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._running = False
            logger.info(f"Shutting down {self.name}")

    async def _resync_loop(self) -> None:
        while True:
            self.enqueue()
            await asyncio.sleep(self.resync_every)

    async def _worker(self) -> None:
        while True:
            try:
                key = await self.queue.get()
            except QueueShutDown:
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: str = DEFAULT_QUEUE_KEY) -> bool:
        """Run one sync pass, reporting instead of raising its failure"""
        self.sync_context.queue_key = key
        try:
            await self._sync(self.sync_context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} reconciliation failed: {e}", exc_info=True)
            self.recorder.warning("SyncFailed", str(e))
            return False
        return True


class ControllerBuilder:
    """Fluent construction of controllers"""

    def __init__(self):
        self._sync: Optional[SyncFunc] = None
        self._resync_every: Optional[float] = None
        self._informers: List[StorageInformer] = []

    def resync_every(self, seconds: float) -> "ControllerBuilder":
        self._resync_every = seconds
        return self

    def with_sync(self, sync: SyncFunc) -> "ControllerBuilder":
        self._sync = sync
        return self

    def with_informers(self, *informers: StorageInformer) -> "ControllerBuilder":
        self._informers.extend(informers)
        return self

    def to_controller(self, name: str, recorder: Optional[EventRecorder] = None) -> Controller:
        if self._sync is None:
            raise ValueError(f"sync function must be provided for {name}")
        if self._resync_every is None:
            raise ValueError(f"resync interval must be provided for {name}")
        return Controller(name, self._sync, self._resync_every, self._informers, recorder)


def new_controller() -> ControllerBuilder:
    return ControllerBuilder()
