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

from shodan.api.job import Job, JobState, timestamp_from_job_name
from shodan.config import ShodanConfig
from shodan.controllers.factory import Controller, EventRecorder, SyncContext, new_controller
from shodan.errors import AggregateError
from shodan.github.client import MessageSink
from shodan.storage.base import Storage, StorageNotFoundError
from shodan.storage.informers import StorageInformer
from shodan.storage.utils import filter_by_state, filter_jobs, get_jobs_stats, update_jobs

logger = logging.getLogger(__name__)


def job_channel(job: Job) -> str:
    return f"{job.spec.owner}/{job.spec.repository}#{job.spec.issue_id}"


class ReportController:
    """
    Reports finished jobs back to the requester and removes them.

    A finished job is posted to the message sink and tombstoned in the delete state;
    tombstoned jobs are physically removed from storage.
    """

    def __init__(self, config: ShodanConfig, storage: Storage, sink: MessageSink):
        self.config = config
        self.storage = storage
        self.sink = sink

    async def sync(self, ctx: SyncContext) -> None:
        errors = []

        jobs_to_update = []
        for job in filter_jobs(self.storage, filter_by_state(JobState.FINISHED)):
            try:
                await asyncio.wait_for(
                    self.sink.post_message(job_channel(job), job.status.message),
                    timeout=self.config.github_timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Unable to report job {job.name!r}: {e}")
                errors.append(e)
                continue
            ctx.recorder.event("JobReported", f"Job {job.name!r} reported to {job_channel(job)}")
            jobs_to_update.append(
                job.model_copy(update={"status": job.status.model_copy(update={"state": JobState.DELETE})})
            )
        try:
            update_jobs(self.storage, jobs_to_update)
        except AggregateError as e:
            errors.extend(e.errors)

        # The newest key anchors the notification polling window, removing it would make
        # already handled notifications look new again
        last_seen, _ = get_jobs_stats(self.storage)
        for job in filter_jobs(self.storage, filter_by_state(JobState.DELETE)):
            if last_seen is None or timestamp_from_job_name(job.name) >= int(last_seen.timestamp()):
                continue
            logger.info(f"Deleting job {job.name!r}")
            try:
                self.storage.delete(job.name)
            except StorageNotFoundError:
                pass

        if errors:
            raise AggregateError(errors)


def new_report_controller(
    config: ShodanConfig,
    storage: Storage,
    sink: MessageSink,
    informers: List[StorageInformer],
    recorder: Optional[EventRecorder] = None,
) -> Controller:
    c = ReportController(config, storage, sink)
    return (
        new_controller()
        .resync_every(config.report_resync)
        .with_sync(c.sync)
        .with_informers(*informers)
        .to_controller("ReportController", recorder)
    )
