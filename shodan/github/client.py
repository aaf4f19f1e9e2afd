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
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GitHubError(Exception):
    """A call to the GitHub API failed"""


class NotificationSubject(BaseModel):
    title: str = ""
    # API URL of the issue or pull request
    url: str = ""
    # API URL of the comment that caused the notification
    latest_comment_url: str = ""
    type: str = ""


class Notification(BaseModel):
    subject: NotificationSubject
    updated_at: datetime
    reason: str = "mention"
    unread: bool = True


class PullRequest(BaseModel):
    merged: bool
    base_branch: str


class MessageSink(ABC):
    """Delivers human readable reports, e.g. the final status of a job"""

    @abstractmethod
    async def post_message(self, channel: str, text: str) -> None:
        pass


class GitHubClient(MessageSink):
    """Subset of the GitHub API the controllers depend on"""

    @abstractmethod
    async def list_unread_mentions_since(self, since: Optional[datetime]) -> List[Notification]:
        """Return unread notifications caused by a mention, updated after since"""
        pass

    @abstractmethod
    async def get_comment_body(self, url: str) -> str:
        pass

    @abstractmethod
    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        pass

    @abstractmethod
    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        pass

    async def post_message(self, channel: str, text: str) -> None:
        """Message sink contract; channel is "owner/repo#number" and the text becomes an issue comment"""
        repository, _, number = channel.partition("#")
        owner, _, repo = repository.partition("/")
        if not owner or not repo or not number.isdigit():
            raise ValueError(f"invalid channel {channel!r}, expected owner/repo#number")
        await self.create_issue_comment(owner, repo, int(number), text)


def _parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class HttpxGitHubClient(GitHubClient):
    """GitHub REST client built on httpx"""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GitHubError(f"{method} {url} returned {e.response.status_code}: {e.response.text}") from e
        except httpx.HTTPError as e:
            raise GitHubError(f"{method} {url} failed: {e}") from e
        if not response.content:
            return None
        return response.json()

    async def list_unread_mentions_since(self, since: Optional[datetime]) -> List[Notification]:
        params: Dict[str, str] = {"all": "false", "participating": "true"}
        if since is not None:
            params["since"] = _format_timestamp(since)
        items = await self._request("GET", "/notifications", params=params) or []
        notifications = []
        for item in items:
            if item.get("reason") != "mention" or not item.get("unread", False):
                continue
            subject = item.get("subject") or {}
            notifications.append(
                Notification(
                    subject=NotificationSubject(
                        title=subject.get("title") or "",
                        url=subject.get("url") or "",
                        latest_comment_url=subject.get("latest_comment_url") or "",
                        type=subject.get("type") or "",
                    ),
                    updated_at=_parse_timestamp(item["updated_at"]),
                    reason=item["reason"],
                    unread=item["unread"],
                )
            )
        return notifications

    async def get_comment_body(self, url: str) -> str:
        comment = await self._request("GET", url)
        return (comment or {}).get("body") or ""

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        pull = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return PullRequest(merged=bool(pull.get("merged")), base_branch=(pull.get("base") or {}).get("ref") or "")

    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        await self._request("POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body})
        logger.debug(f"Commented on {owner}/{repo}#{number}")

    async def aclose(self) -> None:
        await self._client.aclose()
