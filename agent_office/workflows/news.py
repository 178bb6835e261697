"""Collect-and-translate workflow: research -> summarize -> translate."""

import logging
from typing import List, Optional, Sequence

import httpx

from ..models import AgentRole, AgentTask, NewsArticle, NewsSummary, ResultSource
from ..sources.rss import FeedError, HeadlineSource
from .executor import TaskGraphExecutor
from .parsers import parse_articles
from .simulation import (
    FALLBACK_SUMMARY,
    FALLBACK_TRANSLATION,
    ExternalServiceError,
    ScriptedPlayback,
    ScriptedStep,
    fallback_articles,
    placeholder_article,
)


logger = logging.getLogger(__name__)


def build_news_tasks(query: str, headlines: Sequence[NewsArticle] = ()) -> List[AgentTask]:
    """
    Build the research -> summarize -> translate graph.

    Args:
        query: Topic to collect news about
        headlines: Live headlines to ground the research task

    Returns:
        The three tasks in dependency order
    """
    research_context = f"The user wants to know about: {query}"
    if headlines:
        listing = "\n".join(
            f"- {h.title} ({h.source}) {h.url or ''}".rstrip() for h in headlines
        )
        research_context += f"\n\nRecent headlines:\n{listing}"

    return [
        AgentTask(
            id="research",
            agent_id="researcher-1",
            role=AgentRole.researcher,
            description=(
                f"Research and collect the latest news and information about \"{query}\". "
                f"Provide 3-5 relevant news items with title, summary and source."
            ),
            context=research_context,
        ),
        AgentTask(
            id="summarize",
            agent_id="writer-1",
            role=AgentRole.writer,
            description=(
                f"Based on the research, write a comprehensive summary report about \"{query}\". "
                f"Write it in Chinese, about 300 characters."
            ),
            dependencies=["research"],
            context="Write the summary from the research data",
        ),
        AgentTask(
            id="translate",
            agent_id="translator-1",
            role=AgentRole.translator,
            description=(
                "Translate the Chinese summary into fluent English, keeping technical terms accurate."
            ),
            dependencies=["summarize"],
            context="Translate the Chinese news summary into English",
        ),
    ]


class NewsWorkflow:
    """News facade with a scripted fallback."""

    def __init__(
        self,
        executor: TaskGraphExecutor,
        playback: ScriptedPlayback,
        headlines: Optional[HeadlineSource] = None,
        headline_count: int = 5,
    ):
        self.executor = executor
        self.playback = playback
        self.headlines = headlines
        self.headline_count = headline_count

    async def run(self, workflow_id: str, query: str) -> NewsSummary:
        """
        Collect, summarize and translate news about a topic.

        Args:
            workflow_id: Id stamped on progress events
            query: Topic

        Returns:
            NewsSummary; source is "fallback" when the scripted path was used
        """
        try:
            return await self._run_live(workflow_id, query)
        except ExternalServiceError as e:
            return await self._run_scripted(workflow_id, str(e))

    async def _run_live(self, workflow_id: str, query: str) -> NewsSummary:
        if not self.executor.invoker.ready:
            raise ExternalServiceError("Completion endpoint not configured")

        headlines = await self._fetch_headlines(workflow_id)
        results = await self.executor.execute(workflow_id, build_news_tasks(query, headlines))

        for step in ("summarize", "translate"):
            if not results[step].success:
                raise ExternalServiceError(f"{step} failed: {results[step].error}")

        research = results["research"]
        articles = parse_articles(research.content) if research.success else []
        if not articles:
            articles = list(headlines) or [placeholder_article()]

        return NewsSummary(
            workflow_id=workflow_id,
            original=results["summarize"].content,
            translated=results["translate"].content,
            articles=articles,
        )

    async def _fetch_headlines(self, workflow_id: str) -> List[NewsArticle]:
        if self.headlines is None:
            return []
        try:
            return await self.headlines.fetch_latest(self.headline_count)
        except (httpx.HTTPError, FeedError) as e:
            logger.warning(f"Workflow {workflow_id}: live headlines unavailable: {e}")
            return []

    async def _run_scripted(self, workflow_id: str, error: str) -> NewsSummary:
        self.playback.announce(workflow_id, error)
        articles = fallback_articles()
        await self.playback.play(workflow_id, [
            ScriptedStep("research", "researcher-1", f"Found {len(articles)} relevant articles",
                         result=[a.title for a in articles]),
            ScriptedStep("summarize", "writer-1", "Summary written", result=FALLBACK_SUMMARY),
            ScriptedStep("translate", "translator-1", "Summary translated", result=FALLBACK_TRANSLATION),
        ])
        return NewsSummary(
            workflow_id=workflow_id,
            original=FALLBACK_SUMMARY,
            translated=FALLBACK_TRANSLATION,
            articles=articles,
            source=ResultSource.fallback,
            error=error,
        )
