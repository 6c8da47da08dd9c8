"""GitHub integration: REST client and pull request publisher."""

from .client import GitHubClient
from .publisher import PublishResult, PullRequestPublisher

__all__ = ["GitHubClient", "PublishResult", "PullRequestPublisher"]
