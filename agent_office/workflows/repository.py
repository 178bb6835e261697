"""Modify-repository workflow: pull-request lifecycle with a scripted fallback."""

import logging
from typing import Callable, Optional

from ..integrations.github import GitHubClient
from ..memory.progress_bus import ProgressBus
from ..models import RepositoryRef, RepositoryWorkflowResult, ResultSource
from .executor import TaskGraphExecutor
from .monitor import RemoteJobMonitor
from .pull_request import STAGE_PLAN, PullRequestLifecycle, StageError
from .simulation import (
    FALLBACK_REPOSITORY_SUMMARY,
    ExternalServiceError,
    ScriptedPlayback,
    ScriptedStep,
    fallback_changes,
    fallback_deployment,
)


logger = logging.getLogger(__name__)

GitHubFactory = Callable[[str], GitHubClient]
MonitorFactory = Callable[[GitHubClient], RemoteJobMonitor]


class RepositoryWorkflow:
    """Repository facade. Builds per-invocation GitHub collaborators from a token."""

    def __init__(
        self,
        executor: TaskGraphExecutor,
        bus: ProgressBus,
        playback: ScriptedPlayback,
        *,
        github_factory: GitHubFactory,
        monitor_factory: MonitorFactory,
        default_token: Optional[str] = None,
        base_branch: Optional[str] = None,
        merge_method: str = "squash",
        auto_merge: bool = True,
        deploy_workflow_name: Optional[str] = None,
        dispatch_workflow: Optional[str] = None,
    ):
        self.executor = executor
        self.bus = bus
        self.playback = playback
        self.github_factory = github_factory
        self.monitor_factory = monitor_factory
        self.default_token = default_token
        self.base_branch = base_branch
        self.merge_method = merge_method
        self.auto_merge = auto_merge
        self.deploy_workflow_name = deploy_workflow_name
        self.dispatch_workflow = dispatch_workflow

    async def run(
        self,
        workflow_id: str,
        repo_url: str,
        requirements: str,
        github_token: Optional[str] = None,
    ) -> RepositoryWorkflowResult:
        """
        Modify a repository according to the requirements.

        Args:
            workflow_id: Id stamped on progress events
            repo_url: GitHub repository URL
            requirements: What the change should achieve
            github_token: Overrides the configured token for this invocation

        Returns:
            RepositoryWorkflowResult; source is "fallback" when the scripted path was used
        """
        token = github_token or self.default_token
        github = self.github_factory(token) if token else None
        lifecycle = PullRequestLifecycle(
            self.executor,
            self.bus,
            github,
            self.monitor_factory(github) if github is not None else None,
            base_branch=self.base_branch,
            merge_method=self.merge_method,
            auto_merge=self.auto_merge,
            deploy_workflow_name=self.deploy_workflow_name,
            dispatch_workflow=self.dispatch_workflow,
        )

        try:
            if not self.executor.invoker.ready:
                raise ExternalServiceError("Completion endpoint not configured")
            return await lifecycle.run(workflow_id, repo_url, requirements)
        except StageError as e:
            return await self._run_scripted(workflow_id, repo_url, e.stage, e.message)
        except ExternalServiceError as e:
            return await self._run_scripted(workflow_id, repo_url, STAGE_PLAN, str(e))
        finally:
            if github is not None:
                await github.aclose()

    async def _run_scripted(
        self,
        workflow_id: str,
        repo_url: str,
        failed_stage: str,
        error: str,
    ) -> RepositoryWorkflowResult:
        self.playback.announce(workflow_id, f"{failed_stage}: {error}")
        repo = RepositoryRef.from_url(repo_url)
        changes = fallback_changes()
        await self.playback.play(workflow_id, [
            ScriptedStep("analyze", "analyst-1", f"Analyzed {repo.full_name}",
                         result="Python, Flask, HTML/CSS"),
            ScriptedStep("develop", "dev-1", f"Modified {len(changes)} files",
                         result=[change.path for change in changes]),
            ScriptedStep("review", "pm-1", "Changes reviewed", result=FALLBACK_REPOSITORY_SUMMARY),
        ])
        return RepositoryWorkflowResult(
            workflow_id=workflow_id,
            success=True,
            changes=changes,
            summary=FALLBACK_REPOSITORY_SUMMARY,
            deployment=fallback_deployment(),
            failed_stage=failed_stage,
            error=error,
            source=ResultSource.fallback,
        )
