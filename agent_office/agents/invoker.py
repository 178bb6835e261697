"""
Agent Invoker: turns one task into exactly one completion call.

The invoker never raises into the task graph executor. Transport and endpoint
errors come back as a failed TaskResult so the executor can treat them as data.
"""

import logging
import time
from typing import Dict, List, Optional, Sequence

import httpx

from ..llm_client import CompletionClient, CompletionError
from ..models import AgentRole, TaskMetadata, TaskResult
from .personas import get_persona


logger = logging.getLogger(__name__)

PRIOR_RESULT_SEPARATOR = "\n---\n"


class AgentInvoker:
    """Executes agent tasks against the completion endpoint."""

    def __init__(self, client: Optional[CompletionClient] = None):
        self.client = client

    @property
    def ready(self) -> bool:
        return self.client is not None

    def build_messages(
        self,
        role: AgentRole,
        description: str,
        context: Optional[str] = None,
        prior_results: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, str]]:
        """
        Build the system + user message pair for one task.

        Args:
            role: Persona to use for the system message
            description: The task instruction
            context: Free-text context attached to the task
            prior_results: Content of the task's completed dependencies

        Returns:
            OpenAI-style message list
        """
        user_content = f"Task: {description}"
        if context:
            user_content += f"\n\nContext:\n{context}"
        if prior_results:
            user_content += f"\n\nResults from previous tasks:\n{PRIOR_RESULT_SEPARATOR.join(prior_results)}"

        return [
            {"role": "system", "content": get_persona(role).system_prompt()},
            {"role": "user", "content": user_content},
        ]

    async def execute(
        self,
        role: AgentRole,
        name: str,
        description: str,
        context: Optional[str] = None,
        prior_results: Optional[Sequence[str]] = None,
    ) -> TaskResult:
        """
        Run one agent task.

        Args:
            role: Agent persona
            name: Agent id, used for logging only
            description: Task instruction
            context: Optional task context
            prior_results: Content of completed dependencies

        Returns:
            TaskResult; failures are reported with success=False, never raised
        """
        if self.client is None:
            logger.warning(f"Completion endpoint not configured, {name} cannot run")
            return TaskResult.failure("Completion endpoint not configured")

        messages = self.build_messages(role, description, context, prior_results)
        start = time.monotonic()

        try:
            response = await self.client.complete(messages)
        except (CompletionError, httpx.HTTPError) as e:
            elapsed = (time.monotonic() - start) * 1000
            logger.error(f"Agent {name} ({role.value}) failed after {elapsed:.0f}ms: {e}", exc_info=True)
            return TaskResult.failure(
                str(e) or type(e).__name__,
                metadata=TaskMetadata(processing_time_ms=elapsed, model=self.client.model),
            )

        elapsed = (time.monotonic() - start) * 1000
        logger.info(f"Agent {name} ({role.value}) completed in {elapsed:.0f}ms")

        return TaskResult(
            success=True,
            content=response.content,
            metadata=TaskMetadata(
                processing_time_ms=elapsed,
                tokens_used=response.total_tokens,
                model=response.model,
            ),
        )
