"""
Pull-Request Lifecycle.

Stages, each gated on the previous one:

    fetch_context -> plan (analyze -> develop -> review) -> branch -> commit
    -> pull_request -> deploy -> merge

fetch_context is best-effort. Unrecoverable failures in plan, branch, commit
and pull_request raise StageError. A failed or timed-out deployment is
reported on the returned result and stops before merge; a failed merge is
reported without failing the deployment. Nothing is rolled back: a branch or
commit created before a failure stays in place.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..integrations.github import GitHubClient, GitHubError, RepoFile
from ..memory.progress_bus import ProgressBus
from ..models import (
    AgentRole,
    AgentTask,
    ChangeAction,
    CodeChange,
    DeploymentResult,
    ProgressStatus,
    RepositoryRef,
    RepositoryWorkflowResult,
    TaskResult,
    WorkflowProgress,
)
from .executor import TaskGraphExecutor
from .monitor import MonitorTimeoutError, RemoteJobMonitor
from .parsers import parse_code_changes


logger = logging.getLogger(__name__)

STAGE_FETCH_CONTEXT = "fetch_context"
STAGE_PLAN = "plan"
STAGE_DEVELOP = "develop"
STAGE_BRANCH = "branch"
STAGE_COMMIT = "commit"
STAGE_PULL_REQUEST = "pull_request"
STAGE_DEPLOY = "deploy"
STAGE_MERGE = "merge"

SYSTEM_AGENT_ID = "system"

# Context limits for the analyze and develop tasks
CONTEXT_FILE_PATHS = 10
CONTEXT_FILE_BODIES = 5
CONTEXT_FILE_CHARS = 1000

Now = Callable[[], datetime]


class StageError(Exception):
    """Unrecoverable failure of one lifecycle stage."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


def build_repository_tasks(
    repo_url: str,
    requirements: str,
    files: Sequence[RepoFile] = (),
) -> List[AgentTask]:
    """
    Build the analyze -> develop -> review graph.

    Args:
        repo_url: Repository URL as given by the caller
        requirements: What the change should achieve
        files: Existing files (bodies only needed for the first few)

    Returns:
        The three tasks in dependency order
    """
    ref = RepositoryRef.from_url(repo_url)

    analyze_context = f"Repository URL: {repo_url}\nRequirements: {requirements}"
    if files:
        paths = "\n".join(f"- {f.path}" for f in files[:CONTEXT_FILE_PATHS])
        analyze_context += f"\n\nExisting files:\n{paths}"

    develop_context = f"Repository to modify: {repo_url}"
    bodies = [f for f in files[:CONTEXT_FILE_BODIES] if f.content is not None]
    if bodies:
        snippets = "\n".join(
            f"\n=== {f.path} ===\n{f.content[:CONTEXT_FILE_CHARS]}..." for f in bodies
        )
        develop_context += f"\n\nReference content of existing files:\n{snippets}"

    return [
        AgentTask(
            id="analyze",
            agent_id="analyst-1",
            role=AgentRole.analyst,
            description=(
                f"Analyze the structure of the GitHub repository {ref.full_name}. "
                f"Based on the requirement \"{requirements}\", identify the key files "
                f"and code locations that need to change."
            ),
            context=analyze_context,
        ),
        AgentTask(
            id="develop",
            agent_id="dev-1",
            role=AgentRole.developer,
            description=(
                f"Based on the analysis, write the code changes for {ref.full_name} "
                f"that implement: \"{requirements}\". Provide complete file contents."
            ),
            dependencies=["analyze"],
            context=develop_context,
        ),
        AgentTask(
            id="review",
            agent_id="pm-1",
            role=AgentRole.pm,
            description=(
                f"Review the code changes, make sure they satisfy \"{requirements}\" "
                f"and write a short deployment plan summary."
            ),
            dependencies=["develop"],
            context="Review the code changes produced by the developer",
        ),
    ]


def commit_prefix(requirements: str) -> str:
    first_line = (requirements.strip().splitlines() or [""])[0]
    if len(first_line) > 72:
        first_line = first_line[:69] + "..."
    return f"AI Agent: {first_line}"


def pull_request_body(requirements: str, changes: Sequence[CodeChange], review: str = "") -> str:
    lines = ["## Requirements", "", requirements, "", "## Changes", ""]
    lines.extend(f"- {change.action.value}: {change.path}" for change in changes)
    if review:
        lines.extend(["", "## Review", "", review])
    lines.extend(["", "_Generated by the agent office._"])
    return "\n".join(lines)


class PullRequestLifecycle:
    """Drives one repository modification from context fetch to merge."""

    def __init__(
        self,
        executor: TaskGraphExecutor,
        bus: ProgressBus,
        github: Optional[GitHubClient] = None,
        monitor: Optional[RemoteJobMonitor] = None,
        *,
        base_branch: Optional[str] = None,
        merge_method: str = "squash",
        auto_merge: bool = True,
        deploy_workflow_name: Optional[str] = None,
        dispatch_workflow: Optional[str] = None,
        now: Now = lambda: datetime.now(timezone.utc),
    ):
        self.executor = executor
        self.bus = bus
        self.github = github
        self.monitor = monitor
        self.base_branch = base_branch
        self.merge_method = merge_method
        self.auto_merge = auto_merge
        self.deploy_workflow_name = deploy_workflow_name
        self.dispatch_workflow = dispatch_workflow
        self.now = now

    async def run(
        self,
        workflow_id: str,
        repo_url: str,
        requirements: str,
    ) -> RepositoryWorkflowResult:
        """
        Run every stage.

        Without a GitHub client only the plan stage runs and the parsed
        changes are returned as suggestions.

        Args:
            workflow_id: Id stamped on progress events
            repo_url: Target repository URL
            requirements: What the change should achieve

        Returns:
            RepositoryWorkflowResult; success reflects the deployment when one ran

        Raises:
            StageError: If plan, branch, commit or pull_request cannot complete
        """
        repo = RepositoryRef.from_url(repo_url)
        logger.info(f"Workflow {workflow_id}: modifying {repo.full_name} ({'live' if self.github else 'suggest-only'})")

        files = await self._fetch_context(workflow_id, repo)
        results = await self.executor.execute(
            workflow_id, build_repository_tasks(repo_url, requirements, files)
        )
        changes, summary = self._plan_outcome(results)

        if not changes:
            logger.warning(f"Workflow {workflow_id}: developer output contained no code changes")
            return RepositoryWorkflowResult(
                workflow_id=workflow_id,
                success=False,
                summary=summary,
                failed_stage=STAGE_DEVELOP,
                error="No code changes found in developer output",
            )

        if self.github is None:
            return RepositoryWorkflowResult(
                workflow_id=workflow_id,
                success=True,
                changes=changes,
                summary=summary,
            )

        since = self.now()
        base = await self._resolve_base(workflow_id, repo)
        branch = await self._create_branch(workflow_id, repo, base, since)
        await self._commit(workflow_id, repo, branch, changes, commit_prefix(requirements))
        pr = await self._open_pull_request(workflow_id, repo, branch, base, requirements, changes, summary)

        result = RepositoryWorkflowResult(
            workflow_id=workflow_id,
            success=True,
            changes=changes,
            summary=summary,
            branch=branch,
            pull_request_url=pr.get("html_url"),
            pull_request_number=pr.get("number"),
        )

        if self.monitor is None:
            return result

        deployment = await self._deploy(workflow_id, repo, branch, since, result.pull_request_url)
        if not deployment.success:
            return result.model_copy(update={
                "success": False,
                "deployment": deployment,
                "failed_stage": STAGE_DEPLOY,
                "error": deployment.error,
            })

        if self.auto_merge and result.pull_request_number is not None:
            deployment = await self._merge(workflow_id, repo, result.pull_request_number, deployment)

        return result.model_copy(update={"deployment": deployment})

    async def _fetch_context(self, workflow_id: str, repo: RepositoryRef) -> List[RepoFile]:
        if self.github is None:
            return []

        self._stage(workflow_id, STAGE_FETCH_CONTEXT, ProgressStatus.running, 0,
                    f"Fetching files from {repo.full_name}")
        try:
            files = await self.github.list_files(repo)
            detailed: List[RepoFile] = []
            for entry in files[:CONTEXT_FILE_BODIES]:
                detailed.append(await self.github.get_file(repo, entry.path) or entry)
            files = detailed + files[CONTEXT_FILE_BODIES:]
        except GitHubError as e:
            logger.warning(f"Workflow {workflow_id}: could not fetch repository files: {e}")
            self._stage(workflow_id, STAGE_FETCH_CONTEXT, ProgressStatus.failed, 0,
                        f"Fetching files failed: {e}")
            return []

        self._stage(workflow_id, STAGE_FETCH_CONTEXT, ProgressStatus.completed, 100,
                    f"Fetched {len(files)} files")
        return files

    def _plan_outcome(self, results: Dict[str, TaskResult]) -> tuple[List[CodeChange], str]:
        develop = results["develop"]
        if not develop.success:
            raise StageError(STAGE_DEVELOP, develop.error or "Developer task failed")

        review = results["review"]
        analyze = results["analyze"]
        if review.success and review.content:
            summary = review.content
        elif analyze.success:
            summary = analyze.content
        else:
            summary = ""
        return parse_code_changes(develop.content), summary

    async def _resolve_base(self, workflow_id: str, repo: RepositoryRef) -> str:
        if self.base_branch:
            return self.base_branch
        try:
            return await self.github.get_default_branch(repo)
        except GitHubError as e:
            self._stage(workflow_id, STAGE_BRANCH, ProgressStatus.failed, 0, str(e))
            raise StageError(STAGE_BRANCH, f"Cannot resolve default branch: {e}") from e

    async def _create_branch(
        self,
        workflow_id: str,
        repo: RepositoryRef,
        base: str,
        since: datetime,
    ) -> str:
        branch = f"ai-update-{int(since.timestamp() * 1000)}"
        self._stage(workflow_id, STAGE_BRANCH, ProgressStatus.running, 0, f"Creating branch {branch}")
        try:
            await self.github.create_branch(repo, branch, base)
        except GitHubError as e:
            self._stage(workflow_id, STAGE_BRANCH, ProgressStatus.failed, 0, str(e))
            raise StageError(STAGE_BRANCH, f"Cannot create branch {branch}: {e}") from e

        self._stage(workflow_id, STAGE_BRANCH, ProgressStatus.completed, 100, f"Created branch {branch}")
        return branch

    async def _commit(
        self,
        workflow_id: str,
        repo: RepositoryRef,
        branch: str,
        changes: Sequence[CodeChange],
        prefix: str,
    ) -> None:
        total = len(changes)
        self._stage(workflow_id, STAGE_COMMIT, ProgressStatus.running, 0, f"Committing {total} files to {branch}")

        # Sequential: every write must see the SHA left by the previous one
        for index, change in enumerate(changes, start=1):
            try:
                existing = await self.github.get_file(repo, change.path, ref=branch)
                if change.action == ChangeAction.delete:
                    if existing is None:
                        logger.info(f"Workflow {workflow_id}: {change.path} already absent, skipping delete")
                        continue
                    await self.github.delete_file(
                        repo, change.path, f"{prefix} - delete {change.path}", branch, existing.sha
                    )
                else:
                    action = "update" if existing is not None else "create"
                    await self.github.commit_file(
                        repo,
                        change.path,
                        change.content,
                        f"{prefix} - {action} {change.path}",
                        branch,
                        sha=existing.sha if existing is not None else None,
                    )
            except GitHubError as e:
                self._stage(workflow_id, STAGE_COMMIT, ProgressStatus.failed, (index - 1) * 100 // total,
                            f"Failed to commit {change.path}: {e}")
                raise StageError(STAGE_COMMIT, f"Failed to commit {change.path}: {e}") from e

            self._stage(workflow_id, STAGE_COMMIT, ProgressStatus.running, index * 100 // total,
                        f"Committed {change.path}")

        self._stage(workflow_id, STAGE_COMMIT, ProgressStatus.completed, 100, f"Committed {total} files")

    async def _open_pull_request(
        self,
        workflow_id: str,
        repo: RepositoryRef,
        branch: str,
        base: str,
        requirements: str,
        changes: Sequence[CodeChange],
        summary: str,
    ) -> dict:
        self._stage(workflow_id, STAGE_PULL_REQUEST, ProgressStatus.running, 0, f"Opening pull request {branch} -> {base}")
        try:
            pr = await self.github.create_pull_request(
                repo,
                title=commit_prefix(requirements),
                body=pull_request_body(requirements, changes, summary),
                head=branch,
                base=base,
            )
        except GitHubError as e:
            self._stage(workflow_id, STAGE_PULL_REQUEST, ProgressStatus.failed, 0, str(e))
            raise StageError(STAGE_PULL_REQUEST, f"Cannot open pull request: {e}") from e

        self._stage(workflow_id, STAGE_PULL_REQUEST, ProgressStatus.completed, 100,
                    f"Opened pull request #{pr.get('number')}", result={"url": pr.get("html_url")})
        return pr

    async def _deploy(
        self,
        workflow_id: str,
        repo: RepositoryRef,
        branch: str,
        since: datetime,
        pull_request_url: Optional[str],
    ) -> DeploymentResult:
        if self.dispatch_workflow:
            try:
                await self.github.dispatch_workflow(repo, self.dispatch_workflow, branch)
            except GitHubError as e:
                logger.warning(f"Workflow {workflow_id}: dispatching {self.dispatch_workflow} failed: {e}")

        try:
            deployment = await self.monitor.watch(
                workflow_id, repo, branch, since, name=self.deploy_workflow_name
            )
        except MonitorTimeoutError as e:
            self._stage(workflow_id, STAGE_DEPLOY, ProgressStatus.failed, 100, str(e))
            return DeploymentResult(
                success=False,
                run=e.last_run,
                duration_seconds=e.elapsed_seconds,
                pull_request_url=pull_request_url,
                logs_url=e.last_run.url if e.last_run else None,
                error=str(e),
            )

        return deployment.model_copy(update={"pull_request_url": pull_request_url})

    async def _merge(
        self,
        workflow_id: str,
        repo: RepositoryRef,
        number: int,
        deployment: DeploymentResult,
    ) -> DeploymentResult:
        self._stage(workflow_id, STAGE_MERGE, ProgressStatus.running, 0, f"Merging pull request #{number}")
        try:
            await self.github.merge_pull_request(repo, number, self.merge_method)
        except GitHubError as e:
            logger.warning(f"Workflow {workflow_id}: merge of #{number} failed: {e}")
            self._stage(workflow_id, STAGE_MERGE, ProgressStatus.failed, 0, str(e))
            return deployment.model_copy(update={"merged": False, "merge_error": str(e)})

        self._stage(workflow_id, STAGE_MERGE, ProgressStatus.completed, 100, f"Merged pull request #{number}")
        return deployment.model_copy(update={"merged": True})

    def _stage(
        self,
        workflow_id: str,
        stage: str,
        status: ProgressStatus,
        progress: int,
        message: str,
        result: Optional[dict] = None,
    ) -> None:
        logger.info(f"Workflow {workflow_id}: [{stage}] {message}")
        self.bus.publish(WorkflowProgress(
            workflow_id=workflow_id,
            step_id=stage,
            agent_id=SYSTEM_AGENT_ID,
            status=status,
            progress=progress,
            message=message,
            result=result,
        ))
