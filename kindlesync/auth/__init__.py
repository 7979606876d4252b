"""GitHub identity provider integration."""

from kindlesync.auth.github import GitHubClient, ProviderProfile

__all__ = ["GitHubClient", "ProviderProfile"]
