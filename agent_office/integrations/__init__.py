from .github import GitHubClient, GitHubError, RepoFile


__all__ = ["GitHubClient", "GitHubError", "RepoFile"]
