"""Async GitHub REST client used by the pull-request lifecycle and the deploy monitor."""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..models import RemoteRunStatus, RepositoryRef, RunStatus

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"

# GitHub reports these while a run waits for a runner or an approval
_QUEUED_STATUSES = {"queued", "waiting", "requested", "pending"}
_SUCCESS_CONCLUSIONS = {"success"}


class GitHubError(Exception):
    """Raised when the GitHub API is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RepoFile:
    """A file in a repository; content is only set when fetched individually."""
    path: str
    sha: str
    content: Optional[str] = None


class GitHubClient:
    """GitHub API client for repository, pull-request and Actions operations."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as e:
            raise GitHubError(f"GitHub request {method} {url} failed: {e}") from e

        if not response.is_success:
            raise GitHubError(
                f"GitHub request {method} {url} failed: {response.status_code} - {_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    # Repository

    async def get_default_branch(self, repo: RepositoryRef) -> str:
        response = await self._request("GET", f"/repos/{repo.full_name}")
        return _object(response).get("default_branch") or "main"

    async def list_files(
        self,
        repo: RepositoryRef,
        path: str = "",
        ref: Optional[str] = None,
    ) -> List[RepoFile]:
        """
        List every file under a path, descending into directories.

        Args:
            repo: Target repository
            path: Directory to start from ("" = repository root)
            ref: Branch or commit (None = default branch)

        Returns:
            Files in listing order, directories excluded
        """
        params = {"ref": ref} if ref else None
        response = await self._request("GET", f"/repos/{repo.full_name}/contents/{path}", params=params)
        entries = _json(response)
        if isinstance(entries, dict):
            entries = [entries]
        if not isinstance(entries, list):
            raise GitHubError(f"Unexpected contents listing for {repo.full_name}/{path}", status_code=response.status_code)

        files: List[RepoFile] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if entry.get("type") == "dir":
                files.extend(await self.list_files(repo, _field(entry, "path"), ref))
            elif entry.get("type") == "file":
                files.append(RepoFile(path=_field(entry, "path"), sha=_field(entry, "sha")))
        return files

    async def get_file(
        self,
        repo: RepositoryRef,
        path: str,
        ref: Optional[str] = None,
    ) -> Optional[RepoFile]:
        """Fetch one file with decoded content; None when it does not exist."""
        params = {"ref": ref} if ref else None
        try:
            response = await self._request("GET", f"/repos/{repo.full_name}/contents/{path}", params=params)
        except GitHubError as e:
            if e.status_code == 404:
                return None
            raise

        data = _json(response)
        if not isinstance(data, dict) or data.get("type") != "file":
            return None

        content = None
        if data.get("content"):
            try:
                content = base64.b64decode(data["content"]).decode("utf-8", errors="replace")
            except (TypeError, ValueError) as e:
                raise GitHubError(f"Undecodable content for {path} in {repo.full_name}") from e
        return RepoFile(path=_field(data, "path"), sha=_field(data, "sha"), content=content)

    # Branches and commits

    async def create_branch(self, repo: RepositoryRef, name: str, base: str) -> str:
        """Create a branch from the head of base; returns the branch's starting SHA."""
        response = await self._request("GET", f"/repos/{repo.full_name}/git/ref/heads/{base}")
        sha = _field(_json(response), "object", "sha")
        if not isinstance(sha, str):
            raise GitHubError(f"GitHub returned no head SHA for {base} in {repo.full_name}")

        await self._request(
            "POST",
            f"/repos/{repo.full_name}/git/refs",
            json={"ref": f"refs/heads/{name}", "sha": sha},
        )
        logger.info(f"Created branch {name} from {base} ({sha[:7]}) in {repo.full_name}")
        return sha

    async def commit_file(
        self,
        repo: RepositoryRef,
        path: str,
        content: str,
        message: str,
        branch: str,
        sha: Optional[str] = None,
    ) -> str:
        """
        Create or update one file on a branch.

        Args:
            repo: Target repository
            path: File path
            content: Full new file content
            message: Commit message
            branch: Branch to commit to
            sha: Current blob SHA when updating an existing file

        Returns:
            SHA of the new commit
        """
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha

        response = await self._request("PUT", f"/repos/{repo.full_name}/contents/{path}", json=payload)
        return _field(_json(response), "commit", "sha")

    async def delete_file(
        self,
        repo: RepositoryRef,
        path: str,
        message: str,
        branch: str,
        sha: str,
    ) -> str:
        """Delete one file on a branch; returns the SHA of the new commit."""
        response = await self._request(
            "DELETE",
            f"/repos/{repo.full_name}/contents/{path}",
            json={"message": message, "sha": sha, "branch": branch},
        )
        return _field(_json(response), "commit", "sha")

    # Pull requests

    async def create_pull_request(
        self,
        repo: RepositoryRef,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> Dict[str, Any]:
        """Open a pull request; returns the API payload (number, html_url, ...)."""
        response = await self._request(
            "POST",
            f"/repos/{repo.full_name}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        return _object(response)

    async def merge_pull_request(
        self,
        repo: RepositoryRef,
        number: int,
        method: str = "squash",
    ) -> Dict[str, Any]:
        response = await self._request(
            "PUT",
            f"/repos/{repo.full_name}/pulls/{number}/merge",
            json={"merge_method": method},
        )
        return _object(response)

    # Actions

    async def list_workflow_runs(
        self,
        repo: RepositoryRef,
        branch: Optional[str] = None,
        created_since: Optional[datetime] = None,
        per_page: int = 20,
    ) -> List[RemoteRunStatus]:
        """
        List recent workflow runs, newest first.

        Args:
            repo: Target repository
            branch: Only runs for this head branch
            created_since: Only runs created at or after this time
            per_page: Page size

        Returns:
            Normalized run snapshots
        """
        params: Dict[str, Any] = {"per_page": per_page}
        if branch:
            params["branch"] = branch
        if created_since:
            if created_since.tzinfo is not None:
                created_since = created_since.astimezone(timezone.utc)
            params["created"] = f">={created_since.strftime('%Y-%m-%dT%H:%M:%SZ')}"

        response = await self._request("GET", f"/repos/{repo.full_name}/actions/runs", params=params)
        runs = _object(response).get("workflow_runs") or []
        if not isinstance(runs, list):
            raise GitHubError(f"Unexpected workflow runs listing for {repo.full_name}", status_code=response.status_code)
        return [_run_status(run) for run in runs]

    async def get_workflow_run(self, repo: RepositoryRef, run_id: int) -> RemoteRunStatus:
        response = await self._request("GET", f"/repos/{repo.full_name}/actions/runs/{run_id}")
        return _run_status(_object(response))

    async def dispatch_workflow(
        self,
        repo: RepositoryRef,
        workflow: str,
        ref: str,
        inputs: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Trigger a workflow_dispatch event.

        Args:
            repo: Target repository
            workflow: Workflow file name (e.g. "deploy.yml") or numeric id
            ref: Branch or tag to run on
            inputs: Workflow inputs
        """
        await self._request(
            "POST",
            f"/repos/{repo.full_name}/actions/workflows/{workflow}/dispatches",
            json={"ref": ref, "inputs": inputs or {}},
        )
        logger.info(f"Dispatched workflow {workflow} on {repo.full_name}@{ref}")

    async def test_connection(self) -> Dict[str, Any]:
        """Check the token by fetching the authenticated user."""
        try:
            response = await self._request("GET", "/user")
            login = _object(response).get("login")
        except GitHubError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": f"Connected as {login}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def to_run_status(run: Dict[str, Any]) -> RemoteRunStatus:
    """Normalize a workflow run payload into a RemoteRunStatus."""
    raw_status = run.get("status") or "queued"
    conclusion = run.get("conclusion")

    if raw_status == "completed":
        status = RunStatus.completed if conclusion in _SUCCESS_CONCLUSIONS else RunStatus.failure
    elif raw_status in _QUEUED_STATUSES:
        status = RunStatus.queued
    else:
        status = RunStatus.in_progress

    created_at = None
    if run.get("created_at"):
        created_at = datetime.fromisoformat(run["created_at"].replace("Z", "+00:00"))

    return RemoteRunStatus(
        id=run["id"],
        name=run.get("name") or "",
        status=status,
        conclusion=conclusion,
        url=run.get("html_url") or "",
        head_branch=run.get("head_branch"),
        created_at=created_at,
    )


def _run_status(run: Any) -> RemoteRunStatus:
    try:
        return to_run_status(run)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise GitHubError(f"Unexpected workflow run payload: {e}") from e


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        request = response.request
        raise GitHubError(
            f"GitHub request {request.method} {request.url.path} returned a non-JSON body",
            status_code=response.status_code,
        ) from e


def _object(response: httpx.Response) -> Dict[str, Any]:
    data = _json(response)
    if not isinstance(data, dict):
        raise GitHubError(f"Expected a JSON object from {response.request.url.path}", status_code=response.status_code)
    return data


def _field(data: Any, *keys: str) -> Any:
    """Walk nested keys of a payload, raising GitHubError when one is missing."""
    try:
        for key in keys:
            data = data[key]
    except (KeyError, IndexError, TypeError) as e:
        raise GitHubError(f"GitHub response is missing {'.'.join(keys)}") from e
    return data


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return body["message"]
    return response.reason_phrase
