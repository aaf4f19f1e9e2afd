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
from dataclasses import astuple, dataclass
from typing import List, Optional

from shodan.api.job import Job, JobState, JobType
from shodan.config import ShodanConfig
from shodan.controllers.bump import parse_bump_target, set_job_invalid
from shodan.controllers.factory import Controller, EventRecorder, SyncContext, new_controller
from shodan.errors import AggregateError
from shodan.storage.base import Storage
from shodan.storage.informers import StorageInformer
from shodan.storage.utils import filter_by_base_branch, filter_by_state, filter_by_type, filter_jobs, update_jobs
from shodan.workunits.executor import JOB_TYPE_LABEL, WorkUnitExecutor, WorkUnitExistsError, WorkUnitSpec

logger = logging.getLogger(__name__)

WORK_UNIT_PREFIX = "job-"


@dataclass
class BumpParameters:
    """Positional arguments of the bump script, order matters"""

    fork_name: str
    repository_owner: str
    repository_name: str
    repository_branch: str
    go_module_name: str
    go_module_branch: str
    target_branch_name: str

    def as_args(self) -> List[str]:
        return list(astuple(self))


def work_unit_name(job: Job) -> str:
    return WORK_UNIT_PREFIX + job.name


def job_name_from_work_unit(unit_id: str) -> str:
    return unit_id[len(WORK_UNIT_PREFIX):] if unit_id.startswith(WORK_UNIT_PREFIX) else unit_id


def build_work_unit_spec(config: ShodanConfig, job: Job) -> WorkUnitSpec:
    owner, repo = parse_bump_target(job.spec.params)
    params = BumpParameters(
        fork_name=config.fork_name,
        repository_owner=owner,
        repository_name=repo,
        repository_branch=job.status.base_branch,
        go_module_name=f"github.com/{job.spec.owner}/{job.spec.repository}",
        go_module_branch=job.status.base_branch,
        target_branch_name=job.name,
    )
    return WorkUnitSpec(
        name=work_unit_name(job),
        namespace=config.work_unit_namespace,
        labels={JOB_TYPE_LABEL: JobType.BUMP.value},
        image=config.work_unit_image,
        command=["/usr/bin/bump-repo.sh"],
        args=params.as_args(),
    )


class BumpPodController:
    """Launches a bump work unit for every pending bump job with a known base branch"""

    def __init__(self, config: ShodanConfig, storage: Storage, executor: WorkUnitExecutor):
        self.config = config
        self.storage = storage
        self.executor = executor

    async def sync(self, ctx: SyncContext) -> None:
        jobs = filter_jobs(
            self.storage,
            filter_by_state(JobState.PENDING),
            filter_by_type(JobType.BUMP),
            filter_by_base_branch(),
        )
        if not jobs:
            logger.debug("There are no work units to be created")
            return

        jobs_to_update = []
        errors = []
        for job in jobs:
            try:
                spec = build_work_unit_spec(self.config, job)
            except ValueError as e:
                logger.warning(f"Invalid job parameters for bump {job.name!r}: {e}")
                jobs_to_update.append(set_job_invalid(job, str(e)))
                continue

            logger.info(f"Creating new work unit {spec.name!r}: {spec.model_dump_json()}")
            try:
                await asyncio.wait_for(self.executor.create_work_unit(spec), timeout=self.config.executor_timeout)
            except WorkUnitExistsError:
                logger.info(f"Work unit {spec.name!r} already exists")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Unable to create work unit {spec.name!r}: {e}")
                errors.append(e)
                continue

            ctx.recorder.event("WorkUnitCreated", f"Work unit {spec.name!r} created for job {job.name!r}")
            jobs_to_update.append(
                job.model_copy(update={"status": job.status.model_copy(update={"state": JobState.RUNNING})})
            )

        try:
            update_jobs(self.storage, jobs_to_update)
        except AggregateError as e:
            errors.extend(e.errors)
        if errors:
            raise AggregateError(errors)


def new_bump_pod_controller(
    config: ShodanConfig,
    storage: Storage,
    executor: WorkUnitExecutor,
    informers: List[StorageInformer],
    recorder: Optional[EventRecorder] = None,
) -> Controller:
    c = BumpPodController(config, storage, executor)
    return (
        new_controller()
        .resync_every(config.bump_pod_resync)
        .with_sync(c.sync)
        .with_informers(*informers)
        .to_controller("BumpPodController", recorder)
    )
