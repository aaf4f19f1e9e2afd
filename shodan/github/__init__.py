from shodan.github.client import (
    GitHubClient,
    GitHubError,
    HttpxGitHubClient,
    MessageSink,
    Notification,
    NotificationSubject,
    PullRequest,
)

__all__ = [
    "GitHubClient",
    "GitHubError",
    "HttpxGitHubClient",
    "MessageSink",
    "Notification",
    "NotificationSubject",
    "PullRequest",
]
