"""
Orchestrator: explicit wiring of the bus, executor and workflow facades.

One Orchestrator is built per application (or per test) by
build_orchestrator(settings); nothing here is a module-level singleton.
"""

import logging
import time
from typing import Optional
from uuid import uuid4

import httpx

from ..agents.invoker import AgentInvoker
from ..core.config import Settings
from ..integrations.github import GitHubClient
from ..llm_client import CompletionClient
from ..llm_providers import get_provider_config, validate_provider_config
from ..memory.progress_bus import ProgressBus
from ..middleware.metrics import track_workflow_finished, track_workflow_started
from ..models import GeneralWorkflowResult, NewsSummary, RepositoryWorkflowResult
from ..sources.rss import HeadlineSource
from .executor import TaskGraphExecutor
from .general import GeneralWorkflow
from .monitor import Clock, RemoteJobMonitor, Sleep
from .news import NewsWorkflow
from .repository import GitHubFactory, MonitorFactory, RepositoryWorkflow
from .simulation import ScriptedPlayback


logger = logging.getLogger(__name__)


def new_workflow_id(kind: str) -> str:
    return f"{kind}-{uuid4().hex[:12]}"


class Orchestrator:
    """Entry point for the three workflows."""

    def __init__(
        self,
        bus: ProgressBus,
        executor: TaskGraphExecutor,
        news: NewsWorkflow,
        repository: RepositoryWorkflow,
        general: GeneralWorkflow,
        completion_client: Optional[CompletionClient] = None,
        headlines: Optional[HeadlineSource] = None,
    ):
        self.bus = bus
        self.executor = executor
        self.news = news
        self.repository = repository
        self.general = general
        self.completion_client = completion_client
        self.headlines = headlines

    async def run_news(self, query: str, workflow_id: Optional[str] = None) -> NewsSummary:
        workflow_id = workflow_id or new_workflow_id("news")
        start = time.monotonic()
        track_workflow_started()
        logger.info(f"Workflow {workflow_id}: news about {query!r}")
        result: Optional[NewsSummary] = None
        try:
            result = await self.news.run(workflow_id, query)
            return result
        finally:
            self._finish("news", workflow_id, start, result.source.value if result else None, result is not None)

    async def run_repository(
        self,
        repo_url: str,
        requirements: str,
        github_token: Optional[str] = None,
        workflow_id: Optional[str] = None,
    ) -> RepositoryWorkflowResult:
        workflow_id = workflow_id or new_workflow_id("repository")
        start = time.monotonic()
        track_workflow_started()
        logger.info(f"Workflow {workflow_id}: modify {repo_url}")
        result: Optional[RepositoryWorkflowResult] = None
        try:
            result = await self.repository.run(workflow_id, repo_url, requirements, github_token)
            return result
        finally:
            self._finish(
                "repository", workflow_id, start,
                result.source.value if result else None,
                result is not None and result.success,
            )

    async def run_general(self, description: str, workflow_id: Optional[str] = None) -> GeneralWorkflowResult:
        workflow_id = workflow_id or new_workflow_id("general")
        start = time.monotonic()
        track_workflow_started()
        logger.info(f"Workflow {workflow_id}: general task")
        result: Optional[GeneralWorkflowResult] = None
        try:
            result = await self.general.run(workflow_id, description)
            return result
        finally:
            self._finish(
                "general", workflow_id, start,
                result.source.value if result else None,
                result is not None and result.success,
            )

    def _finish(self, kind: str, workflow_id: str, start: float, source: Optional[str], success: bool) -> None:
        duration = time.monotonic() - start
        outcome = "success" if success else "failure"
        track_workflow_finished(kind, source or "error", outcome, duration)
        logger.info(f"Workflow {workflow_id}: {kind} finished in {duration:.1f}s ({source or 'error'}, {outcome})")

    async def aclose(self) -> None:
        if self.completion_client is not None:
            await self.completion_client.aclose()
        if self.headlines is not None:
            await self.headlines.aclose()


def build_orchestrator(
    settings: Settings,
    *,
    bus: Optional[ProgressBus] = None,
    completion_client: Optional[CompletionClient] = None,
    github_factory: Optional[GitHubFactory] = None,
    monitor_factory: Optional[MonitorFactory] = None,
    completion_transport: Optional[httpx.AsyncBaseTransport] = None,
    github_transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
    sleep: Optional[Sleep] = None,
) -> Orchestrator:
    """
    Build an Orchestrator from settings.

    Any collaborator can be passed in to replace the one built from settings.

    Args:
        settings: Application settings
        bus: Progress bus to publish on (new one if omitted)
        completion_client: Completion client (built from the provider settings if omitted)
        github_factory: token -> GitHubClient
        monitor_factory: GitHubClient -> RemoteJobMonitor
        completion_transport: httpx transport for the built completion client
        github_transport: httpx transport for built GitHub clients
        clock: Monotonic clock for the deploy monitor
        sleep: Sleep used between deploy monitor polls

    Returns:
        A ready Orchestrator
    """
    bus = bus or ProgressBus()

    if completion_client is None:
        validation = validate_provider_config(settings.COMPLETION_PROVIDER, settings)
        if validation["valid"]:
            completion_client = CompletionClient(
                get_provider_config(cfg=settings),
                temperature=settings.COMPLETION_TEMPERATURE,
                max_tokens=settings.COMPLETION_MAX_TOKENS,
                timeout_seconds=settings.COMPLETION_TIMEOUT_SECONDS,
                transport=completion_transport,
            )
        else:
            logger.warning(
                f"Completion provider {settings.COMPLETION_PROVIDER} not configured "
                f"(missing {validation['missing']}); workflows will use scripted results"
            )

    if github_factory is None:
        def github_factory(token: str) -> GitHubClient:
            return GitHubClient(
                token,
                api_url=settings.GITHUB_API_URL,
                timeout_seconds=settings.GITHUB_TIMEOUT_SECONDS,
                transport=github_transport,
            )

    if monitor_factory is None:
        monitor_options = {}
        if clock is not None:
            monitor_options["clock"] = clock
        if sleep is not None:
            monitor_options["sleep"] = sleep

        def monitor_factory(github: GitHubClient) -> RemoteJobMonitor:
            return RemoteJobMonitor(
                github,
                bus,
                poll_interval=settings.DEPLOY_POLL_INTERVAL_SECONDS,
                timeout=settings.DEPLOY_TIMEOUT_SECONDS,
                **monitor_options,
            )

    headlines = None
    if settings.NEWS_RSS_ENABLED:
        headlines = HeadlineSource(
            settings.NEWS_OPML_URL,
            feed_sample=settings.NEWS_FEED_SAMPLE,
            cache_seconds=settings.NEWS_CACHE_SECONDS,
        )

    executor = TaskGraphExecutor(AgentInvoker(completion_client), bus)
    playback = ScriptedPlayback(bus)

    return Orchestrator(
        bus=bus,
        executor=executor,
        news=NewsWorkflow(executor, playback, headlines, settings.NEWS_HEADLINE_COUNT),
        repository=RepositoryWorkflow(
            executor,
            bus,
            playback,
            github_factory=github_factory,
            monitor_factory=monitor_factory,
            default_token=settings.GITHUB_TOKEN,
            base_branch=settings.GITHUB_BASE_BRANCH,
            merge_method=settings.GITHUB_MERGE_METHOD,
            auto_merge=settings.AUTO_MERGE,
            deploy_workflow_name=settings.DEPLOY_WORKFLOW_NAME,
            dispatch_workflow=settings.DEPLOY_DISPATCH_WORKFLOW,
        ),
        general=GeneralWorkflow(executor, playback),
        completion_client=completion_client,
        headlines=headlines,
    )
