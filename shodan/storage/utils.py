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
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from shodan.api.job import Job, JobState, JobType, can_transition, timestamp_from_job_name
from shodan.errors import AggregateError
from shodan.storage.base import Storage, StorageNotFoundError

logger = logging.getLogger(__name__)

FilterFunc = Callable[[Job], bool]


def get_jobs_stats(storage: Storage) -> Tuple[Optional[datetime], int]:
    """
    Return the time of the last seen notification and the number of stored jobs.

    The time is the largest timestamp suffix over all job keys, so the notification
    polling window survives restarts without a separate checkpoint. None means no job
    was ever stored.
    """
    names = storage.list("")
    last_timestamp: Optional[int] = None
    for name in names:
        try:
            timestamp = timestamp_from_job_name(name)
        except ValueError:
            logger.warning(f"invalid storage key found: {name!r}")
            continue
        if last_timestamp is None or timestamp > last_timestamp:
            last_timestamp = timestamp
    if last_timestamp is None:
        return None, len(names)
    return datetime.fromtimestamp(last_timestamp, tz=timezone.utc), len(names)


def filter_by_state(state: JobState) -> FilterFunc:
    return lambda job: job.status.state == state


def filter_by_type(job_type: JobType) -> FilterFunc:
    return lambda job: job.spec.type == job_type


def filter_by_base_branch() -> FilterFunc:
    """Match jobs whose pull request was merged and the base branch is known"""
    return lambda job: bool(job.status.base_branch)


def get_job_by_name(storage: Storage, name: str) -> Job:
    return Job.from_bytes(storage.get(name))


def filter_jobs(storage: Storage, *filters: FilterFunc) -> List[Job]:
    """Return all stored jobs matching every filter; the order is unspecified"""
    result = []
    for name in storage.list(""):
        try:
            job = get_job_by_name(storage, name)
        except StorageNotFoundError:
            # deleted between list and get
            continue
        if all(fn(job) for fn in filters):
            result.append(job)
    return result


def get_pending_bump_jobs(storage: Storage) -> List[Job]:
    return filter_jobs(storage, filter_by_state(JobState.PENDING), filter_by_type(JobType.BUMP))


def update_jobs(storage: Storage, jobs: Iterable[Job]) -> None:
    """
    Persist every job in jobs.

    Each job is compared with its stored copy right before the write: jobs removed
    meanwhile are not recreated and writes moving the state backwards are skipped.
    A failure on one job does not stop the others; the collected errors are raised as an
    AggregateError once the batch is done.
    """
    errors = []
    for job in jobs:
        try:
            current = get_job_by_name(storage, job.name)
        except StorageNotFoundError:
            logger.warning(f"Job {job.name!r} was removed, skipping update")
            continue
        except Exception as e:
            logger.error(f"Unable to read job {job.name!r}: {e}")
            errors.append(e)
            continue
        if not can_transition(current.status.state, job.status.state):
            logger.info(
                f"Skipping update of job {job.name!r}: stored state {current.status.state.value} "
                f"is ahead of {job.status.state.value}"
            )
            continue
        logger.info(f"Updating job {job.name!r}: {job.model_dump_json()}")
        try:
            storage.set(job.name, job.to_bytes())
        except Exception as e:
            logger.error(f"Unable to update job {job.name!r}: {e}")
            errors.append(e)
    if errors:
        raise AggregateError(errors)
