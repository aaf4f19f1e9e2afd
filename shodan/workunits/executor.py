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

import asyncio
import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

JOB_TYPE_LABEL = "shodan.io/type"


class WorkUnitPhase(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (WorkUnitPhase.SUCCEEDED, WorkUnitPhase.FAILED)


class WorkUnitSpec(BaseModel):
    """Description of an externally executed task, e.g. a container running the bump script"""

    name: str
    namespace: str = "shodan"
    labels: Dict[str, str] = Field(default_factory=dict)
    image: str = ""
    command: List[str] = Field(default_factory=list)
    args: List[str] = Field(default_factory=list)
    # Cap on the runtime of the unit in seconds
    active_deadline_seconds: int = 60 * 20


class WorkUnit(BaseModel):
    id: str
    labels: Dict[str, str] = Field(default_factory=dict)
    phase: WorkUnitPhase = WorkUnitPhase.PENDING
    termination_message: str = ""


class WorkUnitNotFoundError(LookupError):
    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"work unit {unit_id!r} not found")


class WorkUnitExistsError(Exception):
    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"work unit {unit_id!r} already exists")


class WorkUnitExecutor(ABC):
    """Abstract executor of work units (Kubernetes pods in production)"""

    @abstractmethod
    async def create_work_unit(self, spec: WorkUnitSpec) -> str:
        """
        Launch a work unit

        Returns:
            ID of the created unit

        Raises:
            WorkUnitExistsError: a unit with the same name already exists
        """
        pass

    @abstractmethod
    async def list_work_units(self, label_selector: Dict[str, str]) -> List[WorkUnit]:
        """List units whose labels contain every label of the selector"""
        pass

    @abstractmethod
    async def delete_work_unit(self, unit_id: str) -> None:
        """
        Delete a work unit

        Raises:
            WorkUnitNotFoundError: no such unit
        """
        pass


WorkUnitRunner = Callable[[WorkUnitSpec], Optional[str]]


class LocalWorkUnitExecutor(WorkUnitExecutor):
    """Local synchronous implementation for testing or single-machine deployments"""

    def __init__(self, runner: Optional[WorkUnitRunner] = None, background: bool = False):
        self._runner = runner
        # run units on a worker thread instead of inside create_work_unit
        self._background = background
        self._pending: Set[asyncio.Future] = set()
        self._units: Dict[str, WorkUnit] = {}
        self._specs: Dict[str, WorkUnitSpec] = {}
        self._lock = threading.Lock()

    async def create_work_unit(self, spec: WorkUnitSpec) -> str:
        with self._lock:
            if spec.name in self._units:
                raise WorkUnitExistsError(spec.name)
            unit = WorkUnit(id=spec.name, labels=dict(spec.labels), phase=WorkUnitPhase.RUNNING)
            self._units[spec.name] = unit
            self._specs[spec.name] = spec
        if self._runner is not None and self._background:
            future = asyncio.get_running_loop().run_in_executor(None, self._execute, unit, spec)
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)
        elif self._runner is not None:
            self._execute(unit, spec)
        logger.debug(f"Created local work unit {spec.name}")
        return unit.id

    def _execute(self, unit: WorkUnit, spec: WorkUnitSpec) -> None:
        """Run the unit synchronously, a raised exception fails the unit with its message"""
        try:
            phase, message = WorkUnitPhase.SUCCEEDED, self._runner(spec) or ""
        except Exception as e:
            phase, message = WorkUnitPhase.FAILED, str(e)
        try:
            self.complete(unit.id, phase, message)
        except WorkUnitNotFoundError:
            logger.warning(f"Work unit {unit.id} was deleted before it finished")

    def complete(self, unit_id: str, phase: WorkUnitPhase, termination_message: str = "") -> None:
        with self._lock:
            if unit_id not in self._units:
                raise WorkUnitNotFoundError(unit_id)
            unit = self._units[unit_id]
            self._units[unit_id] = unit.model_copy(update={"phase": phase, "termination_message": termination_message})

    def get_spec(self, unit_id: str) -> WorkUnitSpec:
        with self._lock:
            if unit_id not in self._specs:
                raise WorkUnitNotFoundError(unit_id)
            return self._specs[unit_id]

    async def list_work_units(self, label_selector: Dict[str, str]) -> List[WorkUnit]:
        with self._lock:
            return [
                unit
                for unit in self._units.values()
                if all(unit.labels.get(k) == v for k, v in label_selector.items())
            ]

    async def delete_work_unit(self, unit_id: str) -> None:
        with self._lock:
            if self._units.pop(unit_id, None) is None:
                raise WorkUnitNotFoundError(unit_id)
            self._specs.pop(unit_id, None)


def shell_runner(spec: WorkUnitSpec) -> str:
    """Run the unit command on this machine, failing with the tail of its output"""
    result = subprocess.run(
        spec.command + spec.args,
        capture_output=True,
        text=True,
        timeout=spec.active_deadline_seconds,
    )
    if result.returncode != 0:
        output = (result.stderr or result.stdout or "").strip()
        raise RuntimeError(output[-2048:])
    return (result.stdout or "").strip()[-2048:]
