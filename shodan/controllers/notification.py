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
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from shodan.api.job import Job, JobSpec, JobState, JobStatus, JobType, job_name
from shodan.config import ShodanConfig
from shodan.controllers.factory import Controller, EventRecorder, SyncContext, new_controller
from shodan.errors import AggregateError
from shodan.github.client import GitHubClient, Notification, NotificationSubject
from shodan.storage.base import Storage, StorageNotFoundError
from shodan.storage.informers import StorageInformer
from shodan.storage.utils import get_jobs_stats

logger = logging.getLogger(__name__)

UNRECOGNIZED_COMMAND_MESSAGE = "Sorry human, I don't recognize this command."


@dataclass
class ParsedNotification:
    repository: str
    owner: str
    issue_id: str
    comment_id: str
    message: str
    updated_at: datetime

    def to_job_name(self) -> str:
        return job_name(self.owner, self.repository, self.issue_id, self.comment_id, self.updated_at)


def _api_path_parts(url: str) -> List[str]:
    """Split an API URL like https://api.github.com/repos/owner/repo/issues/1 after /repos/"""
    _, sep, path = url.partition("/repos/")
    if not sep:
        return []
    return path.strip("/").split("/")


def parse_subject(subject: NotificationSubject, updated_at: datetime, message: str = "") -> ParsedNotification:
    comment_parts = _api_path_parts(subject.latest_comment_url)
    if len(comment_parts) != 5:
        raise ValueError(f"invalid last comment URL {subject.latest_comment_url!r}")
    issue_parts = _api_path_parts(subject.url)
    if len(issue_parts) != 4:
        raise ValueError(f"invalid issue URL {subject.url!r}")
    return ParsedNotification(
        repository=comment_parts[1],
        owner=comment_parts[0],
        issue_id=issue_parts[3],
        comment_id=comment_parts[4],
        message=message,
        updated_at=updated_at,
    )


def trim_comment_body(body: str) -> List[str]:
    """Split a comment into words, dropping the leading @mention of the bot"""
    words = body.strip().split()
    if words and words[0].startswith("@"):
        words = words[1:]
    return words


def determine_job_type(comment: str) -> Optional[JobType]:
    words = trim_comment_body(comment)
    if not words:
        return None
    if words[0] == JobType.BUMP.value:
        return JobType.BUMP
    return None


def parse_parameters(comment: str) -> List[str]:
    return trim_comment_body(comment)[1:]


def build_job(n: ParsedNotification) -> Job:
    job_type = determine_job_type(n.message)
    spec = JobSpec(
        type=job_type,
        params=parse_parameters(n.message),
        repository=n.repository,
        owner=n.owner,
        issue_id=n.issue_id,
        comment_id=n.comment_id,
    )
    if job_type is None:
        # The report controller delivers the failure back to the issue
        return Job(
            name=n.to_job_name(),
            spec=spec,
            status=JobStatus(state=JobState.FINISHED, message=UNRECOGNIZED_COMMAND_MESSAGE),
        )
    return Job(name=n.to_job_name(), spec=spec, status=JobStatus(state=JobState.PENDING))


class NotificationController:
    """
    Watches GitHub mentions and creates a job in storage for every new one.

    The polling window starts at the timestamp of the newest stored job, and the job name is
    derived from the notification, so repeated polls never create a job twice.
    """

    def __init__(self, config: ShodanConfig, storage: Storage, github: GitHubClient):
        self.config = config
        self.storage = storage
        self.github = github

    async def sync(self, ctx: SyncContext) -> None:
        last_seen, num_jobs = get_jobs_stats(self.storage)
        logger.info(f"Checking Github notifications since {last_seen} ({num_jobs} active jobs) ...")

        notifications = await asyncio.wait_for(
            self.github.list_unread_mentions_since(last_seen), timeout=self.config.github_timeout
        )

        errors = []
        for notification in notifications:
            try:
                await self._process(ctx, notification)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Skipping notification {notification.subject.url!r}: {e}")
                errors.append(e)
        if errors:
            raise AggregateError(errors)

    async def _process(self, ctx: SyncContext, notification: Notification) -> None:
        if notification.reason != "mention" or not notification.unread:
            return

        # Parse the URLs first so a malformed subject never costs an API call
        n = parse_subject(notification.subject, notification.updated_at)
        name = n.to_job_name()
        try:
            self.storage.get(name)
            return
        except StorageNotFoundError:
            pass

        n.message = await asyncio.wait_for(
            self.github.get_comment_body(notification.subject.latest_comment_url),
            timeout=self.config.github_timeout,
        )
        logger.info(f"Processing Github notification {name!r}")

        job = build_job(n)
        self.storage.set(name, job.to_bytes())
        ctx.recorder.event("JobCreated", f"Job {name!r} created: {job.model_dump_json()}")


def new_notification_controller(
    config: ShodanConfig,
    storage: Storage,
    github: GitHubClient,
    informers: List[StorageInformer],
    recorder: Optional[EventRecorder] = None,
) -> Controller:
    c = NotificationController(config, storage, github)
    return (
        new_controller()
        .resync_every(config.notification_resync)
        .with_sync(c.sync)
        .with_informers(*informers)
        .to_controller("NotificationController", recorder)
    )
