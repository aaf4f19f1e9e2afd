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
from typing import List, Optional, Tuple

from shodan.api.job import Job, JobState, JobStatus
from shodan.config import ShodanConfig
from shodan.controllers.factory import Controller, EventRecorder, SyncContext, new_controller
from shodan.errors import AggregateError
from shodan.github.client import GitHubClient
from shodan.storage.base import Storage
from shodan.storage.informers import StorageInformer
from shodan.storage.utils import get_pending_bump_jobs, update_jobs

logger = logging.getLogger(__name__)


def parse_bump_target(params: List[str]) -> Tuple[str, str]:
    """
    Return (owner, repository) of the repository to bump.

    Accepts "owner/repo" and "github.com/owner/repo".
    """
    if len(params) != 1:
        raise ValueError(f"Invalid job parameters {params!r}, expected exactly one repository name")
    target = params[0]
    if target.startswith("github.com/"):
        target = target[len("github.com/"):]
    parts = target.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid repository name {params[0]!r}, expected owner/repository")
    return parts[0], parts[1]


def set_job_base_branch(job: Job, branch: str) -> Tuple[bool, Job]:
    if job.status.base_branch == branch:
        return False, job
    return True, job.model_copy(update={"status": job.status.model_copy(update={"base_branch": branch})})


def set_job_invalid(job: Job, reason: str) -> Job:
    return job.model_copy(update={"status": JobStatus(state=JobState.FINISHED, message=reason)})


class BumpController:
    """
    Handles jobs of the "bump" type.

    For every pending bump job the controller watches the pull request the job was requested
    in. Once it is merged, the base branch of the pull request is stamped into the job
    status, which hands the job over to the bump pod controller.
    """

    def __init__(self, config: ShodanConfig, storage: Storage, github: GitHubClient):
        self.config = config
        self.storage = storage
        self.github = github

    async def sync(self, ctx: SyncContext) -> None:
        jobs = get_pending_bump_jobs(self.storage)
        logger.info(f"Found {len(jobs)} pending bump jobs ...")

        jobs_to_update = []
        errors = []
        for job in jobs:
            if job.status.base_branch:
                # already handed over to the bump pod controller
                continue

            try:
                parse_bump_target(job.spec.params)
            except ValueError as e:
                jobs_to_update.append(set_job_invalid(job, str(e)))
                continue

            try:
                merged, base_branch = await self.get_pull_request_status(
                    job.spec.owner, job.spec.repository, job.spec.issue_id
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Unable to get pull request status for job {job.name!r}: {e}")
                errors.append(e)
                continue

            changed, updated = set_job_base_branch(job, base_branch)
            if merged and changed:
                jobs_to_update.append(updated)
            else:
                logger.info(
                    f"Waiting for {job.spec.owner}/{job.spec.repository}#{job.spec.issue_id} to merge "
                    f"before bumping {job.spec.params[0]} ..."
                )

        try:
            update_jobs(self.storage, jobs_to_update)
        except AggregateError as e:
            errors.extend(e.errors)
        if errors:
            raise AggregateError(errors)

    async def get_pull_request_status(self, owner: str, repo: str, pull_id: str) -> Tuple[bool, str]:
        """Return whether the pull request is merged and its base branch"""
        number = int(pull_id)
        pull = await asyncio.wait_for(
            self.github.get_pull_request(owner, repo, number), timeout=self.config.github_timeout
        )
        return pull.merged, pull.base_branch


def new_bump_controller(
    config: ShodanConfig,
    storage: Storage,
    github: GitHubClient,
    informers: List[StorageInformer],
    recorder: Optional[EventRecorder] = None,
) -> Controller:
    c = BumpController(config, storage, github)
    return (
        new_controller()
        .resync_every(config.bump_resync)
        .with_sync(c.sync)
        .with_informers(*informers)
        .to_controller("BumpController", recorder)
    )
