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

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class JobType(str, Enum):
    BUMP = "bump"


class JobState(str, Enum):
    # Accepted, waiting for pre-conditions (like the pull request being merged)
    PENDING = "pending"
    # A work unit was launched for the job
    RUNNING = "running"
    # Only the report controller may act on a finished job
    FINISHED = "finished"
    # Reported back to the requester, waiting for physical removal
    DELETE = "delete"


# Position of every state in the lifecycle, used to reject backward transitions
STATE_ORDER = {
    JobState.PENDING: 0,
    JobState.RUNNING: 1,
    JobState.FINISHED: 2,
    JobState.DELETE: 3,
}


class JobSpec(BaseModel):
    """Immutable description of the requested work, filled by the notification controller"""

    # None when the comment did not contain a recognized command
    type: Optional[JobType] = None
    # Words that followed the command in the comment, e.g. the target repository of a bump
    params: List[str] = Field(default_factory=list)

    repository: str = ""
    owner: str = ""
    issue_id: str = ""
    comment_id: str = ""


class JobStatus(BaseModel):
    state: JobState = JobState.PENDING
    # Branch the source pull request was merged into
    base_branch: str = ""
    # Human readable outcome reported back in the source issue
    message: str = ""


class Job(BaseModel):
    name: str
    spec: JobSpec
    status: JobStatus = Field(default_factory=JobStatus)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Job":
        return cls.model_validate_json(data)

    def is_terminal(self) -> bool:
        return self.status.state in (JobState.FINISHED, JobState.DELETE)


def job_name(owner: str, repository: str, issue_id: str, comment_id: str, updated_at: datetime) -> str:
    """
    Derive the storage key of a job.

    Duplicate notifications for the same comment produce the same key, and the trailing
    unix timestamp lets the notification controller recover its polling window from the
    keys alone.
    """
    return f"{owner}-{repository}-{issue_id}-{comment_id}-{int(updated_at.timestamp())}"


def timestamp_from_job_name(name: str) -> int:
    """Return the unix timestamp embedded in a job name, raising ValueError for foreign keys"""
    parts = name.split("-")
    if len(parts) < 5:
        raise ValueError(f"invalid job name {name!r}")
    return int(parts[-1])


def can_transition(current: JobState, desired: JobState) -> bool:
    return STATE_ORDER[desired] >= STATE_ORDER[current]
