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
from typing import List, Optional

from shodan.api.job import Job, JobState, JobStatus, JobType
from shodan.config import ShodanConfig
from shodan.controllers.bump_pod import job_name_from_work_unit
from shodan.controllers.factory import Controller, EventRecorder, SyncContext, new_controller
from shodan.errors import AggregateError
from shodan.storage.base import Storage, StorageNotFoundError
from shodan.storage.informers import StorageInformer
from shodan.storage.utils import get_job_by_name, update_jobs
from shodan.workunits.executor import (
    JOB_TYPE_LABEL,
    WorkUnit,
    WorkUnitExecutor,
    WorkUnitNotFoundError,
    WorkUnitPhase,
)

logger = logging.getLogger(__name__)

# git output of the bump script when the target repository did not change
NOTHING_TO_COMMIT = "nothing to commit, working tree clean"

UP_TO_DATE_MESSAGE = (
    "Human, it looks like the target repository is already up-to-date, after bumping there was no diff."
)
GENERIC_FAILURE_MESSAGE = "Human, something really bad happened and the bump failed."


def failure_message(termination_message: str) -> str:
    if not termination_message:
        return GENERIC_FAILURE_MESSAGE
    if NOTHING_TO_COMMIT in termination_message:
        return UP_TO_DATE_MESSAGE
    return f"Human, something terrible happened during bump:\n```\n{termination_message}\n```\n"


def success_message(job: Job) -> str:
    target = job.spec.params[0] if job.spec.params else "the target"
    return (
        f"Success! A bump pull request from me was opened inside {target} repository, "
        f"bumping {job.spec.owner}/{job.spec.repository}@{job.status.base_branch}."
    )


def finished_status(job: Job, unit: WorkUnit) -> JobStatus:
    if unit.phase == WorkUnitPhase.SUCCEEDED:
        message = success_message(job)
    else:
        message = failure_message(unit.termination_message)
    return job.status.model_copy(update={"state": JobState.FINISHED, "message": message})


class BumpPodStateController:
    """
    Observes terminated bump work units, finishes their jobs and deletes the units.

    Units are deleted in a best-effort pass that does not depend on the job updates.
    """

    def __init__(self, config: ShodanConfig, storage: Storage, executor: WorkUnitExecutor):
        self.config = config
        self.storage = storage
        self.executor = executor

    async def sync(self, ctx: SyncContext) -> None:
        units = await asyncio.wait_for(
            self.executor.list_work_units({JOB_TYPE_LABEL: JobType.BUMP.value}),
            timeout=self.config.executor_timeout,
        )

        jobs_to_update = []
        units_to_delete = []
        for unit in units:
            if not unit.phase.terminal:
                continue

            logger.info(f"Processing finished work unit {unit.id!r}")
            try:
                job = get_job_by_name(self.storage, job_name_from_work_unit(unit.id))
            except StorageNotFoundError as e:
                logger.warning(f"Unable to get job for work unit {unit.id!r}: {e}")
                continue
            units_to_delete.append(unit.id)

            if job.is_terminal():
                # outcome recorded by an earlier pass whose cleanup did not finish
                continue
            jobs_to_update.append(job.model_copy(update={"status": finished_status(job, unit)}))

        errors = []
        try:
            update_jobs(self.storage, jobs_to_update)
        except AggregateError as e:
            errors.extend(e.errors)

        for unit_id in units_to_delete:
            logger.info(f"Deleting work unit {unit_id!r} ...")
            try:
                await asyncio.wait_for(self.executor.delete_work_unit(unit_id), timeout=self.config.executor_timeout)
            except WorkUnitNotFoundError:
                pass
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Unable to delete work unit {unit_id!r}: {e}")

        if errors:
            raise AggregateError(errors)


def new_bump_pod_state_controller(
    config: ShodanConfig,
    storage: Storage,
    executor: WorkUnitExecutor,
    informers: List[StorageInformer],
    recorder: Optional[EventRecorder] = None,
) -> Controller:
    c = BumpPodStateController(config, storage, executor)
    return (
        new_controller()
        .resync_every(config.bump_pod_state_resync)
        .with_sync(c.sync)
        .with_informers(*informers)
        .to_controller("BumpPodStateController", recorder)
    )
