"""
Remote Job Monitor.

Polls GitHub Actions for the run triggered by a push to a branch and waits
until it reaches a terminal status or the wall-clock bound passes. The
deadline is computed once at start; the clock and sleep are injectable so
tests can drive the loop without waiting.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional, Set, Tuple

from ..integrations.github import GitHubClient, GitHubError
from ..memory.progress_bus import ProgressBus
from ..middleware.metrics import track_monitor_poll
from ..models import (
    DeploymentResult,
    ProgressStatus,
    RemoteRunStatus,
    RepositoryRef,
    RunStatus,
    WorkflowProgress,
)


logger = logging.getLogger(__name__)

DEPLOY_STEP = "deploy"
DEPLOY_AGENT_ID = "github-actions"

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

_STEP_PROGRESS = {
    RunStatus.queued: 10,
    RunStatus.in_progress: 50,
    RunStatus.completed: 100,
    RunStatus.failure: 100,
}


class MonitorTimeoutError(Exception):
    """Raised when no terminal run status was observed within the bound."""

    def __init__(self, message: str, elapsed_seconds: float, last_run: Optional[RemoteRunStatus] = None):
        super().__init__(message)
        self.elapsed_seconds = elapsed_seconds
        self.last_run = last_run


class RemoteJobMonitor:
    """Bounded polling loop over the GitHub Actions runs listing."""

    def __init__(
        self,
        github: GitHubClient,
        bus: ProgressBus,
        *,
        poll_interval: float = 5.0,
        timeout: float = 600.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.github = github
        self.bus = bus
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep

    async def watch(
        self,
        workflow_id: str,
        repo: RepositoryRef,
        branch: str,
        since: datetime,
        name: Optional[str] = None,
    ) -> DeploymentResult:
        """
        Wait for the CI run of a branch to finish.

        Args:
            workflow_id: Id stamped on progress events
            repo: Repository the run belongs to
            branch: Head branch of the run
            since: Ignore runs created before this moment (timezone-aware)
            name: Only consider runs whose name contains this (case-insensitive)

        Returns:
            DeploymentResult with success set from the run's conclusion

        Raises:
            MonitorTimeoutError: If the run is not terminal before the deadline
        """
        start = self.clock()
        deadline = start + self.timeout
        # Run timestamps have second precision
        since = since.replace(microsecond=0)

        reported: Set[Tuple[int, RunStatus]] = set()
        run_id: Optional[int] = None
        last_run: Optional[RemoteRunStatus] = None

        logger.info(
            f"Workflow {workflow_id}: monitoring CI for {repo.full_name}@{branch} "
            f"(timeout {self.timeout:.0f}s, interval {self.poll_interval:.0f}s)"
        )

        while True:
            try:
                run = await self._poll(repo, branch, since, name, run_id)
            except GitHubError as e:
                # Transient API errors do not end monitoring; the deadline still applies
                logger.warning(f"Workflow {workflow_id}: CI poll failed: {e}")
                track_monitor_poll("error")
                run = None
            else:
                if run is None:
                    track_monitor_poll("waiting")

            if run is not None:
                run_id = run.id
                last_run = run
                key = (run.id, run.status)
                if key not in reported:
                    reported.add(key)
                    track_monitor_poll("changed")
                    logger.info(f"Workflow {workflow_id}: CI run {run.id} ({run.name}) is {run.status.value}")
                    self._emit(workflow_id, run)

                if run.is_terminal:
                    track_monitor_poll("terminal")
                    elapsed = self.clock() - start
                    success = run.succeeded
                    return DeploymentResult(
                        success=success,
                        run=run,
                        duration_seconds=elapsed,
                        logs_url=run.url,
                        error=None if success else f"CI run {run.name} concluded {run.conclusion or 'without success'}",
                    )

            if self.clock() >= deadline:
                elapsed = self.clock() - start
                logger.error(f"Workflow {workflow_id}: CI monitor timed out after {elapsed:.0f}s")
                raise MonitorTimeoutError(
                    f"No terminal CI status for {repo.full_name}@{branch} within {self.timeout:.0f}s",
                    elapsed_seconds=elapsed,
                    last_run=last_run,
                )

            await self.sleep(self.poll_interval)

    async def _poll(
        self,
        repo: RepositoryRef,
        branch: str,
        since: datetime,
        name: Optional[str],
        run_id: Optional[int],
    ) -> Optional[RemoteRunStatus]:
        if run_id is not None:
            return await self.github.get_workflow_run(repo, run_id)

        runs = await self.github.list_workflow_runs(repo, branch=branch, created_since=since)
        for run in runs:
            if run.head_branch is not None and run.head_branch != branch:
                continue
            if run.created_at is not None and run.created_at < since:
                continue
            if name and name.lower() not in run.name.lower():
                continue
            return run
        return None

    def _emit(self, workflow_id: str, run: RemoteRunStatus) -> None:
        if run.is_terminal:
            status = ProgressStatus.completed if run.succeeded else ProgressStatus.failed
        else:
            status = ProgressStatus.running

        self.bus.publish(WorkflowProgress(
            workflow_id=workflow_id,
            step_id=DEPLOY_STEP,
            agent_id=DEPLOY_AGENT_ID,
            status=status,
            progress=_STEP_PROGRESS[run.status],
            message=f"CI run {run.name} #{run.id}: {run.status.value}",
            result={
                "run_id": run.id,
                "url": run.url,
                "status": run.status.value,
                "conclusion": run.conclusion,
            },
        ))
