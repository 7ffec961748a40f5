"""Connectors for remote registry content."""

from greater_cli.connectors.backoff import BackoffConfig, BackoffState, compute_backoff_delay
from greater_cli.connectors.github import (
    CachingFileProvider,
    GitHubRawClient,
    LocalRepoProvider,
    RemoteFileProvider,
    create_provider,
)

__all__ = [
    "BackoffConfig",
    "BackoffState",
    "CachingFileProvider",
    "GitHubRawClient",
    "LocalRepoProvider",
    "RemoteFileProvider",
    "compute_backoff_delay",
    "create_provider",
]
