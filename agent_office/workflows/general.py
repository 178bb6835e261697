"""General task workflow: plan, then research -> execute."""

import logging
from typing import List

from ..models import AgentRole, AgentTask, GeneralWorkflowResult, ResultSource
from .executor import TaskGraphExecutor
from .simulation import ScriptedPlayback, ScriptedStep, fallback_general_result


logger = logging.getLogger(__name__)

PLAN_TASK_ID = "plan"


def build_plan_task(description: str) -> AgentTask:
    return AgentTask(
        id=PLAN_TASK_ID,
        agent_id="pm-1",
        role=AgentRole.pm,
        description=(
            f"Analyze the following task and draw up an execution plan: \"{description}\". "
            f"Decide which kinds of agents are needed and list the execution steps."
        ),
    )


def build_general_tasks(description: str, plan: str) -> List[AgentTask]:
    return [
        AgentTask(
            id="research",
            agent_id="researcher-1",
            role=AgentRole.researcher,
            description=f"Research the following topic: \"{description}\". Collect relevant information and data.",
            dependencies=[PLAN_TASK_ID],
            context=plan,
        ),
        AgentTask(
            id="execute",
            agent_id="writer-1",
            role=AgentRole.writer,
            description=f"Based on the research, complete the following task: \"{description}\". Provide detailed output.",
            dependencies=["research"],
            context=f"The PM's plan: {plan}",
        ),
    ]


class GeneralWorkflow:
    """General facade. The planner runs alone and seeds the executor."""

    def __init__(self, executor: TaskGraphExecutor, playback: ScriptedPlayback):
        self.executor = executor
        self.playback = playback

    async def run(self, workflow_id: str, description: str) -> GeneralWorkflowResult:
        """
        Plan and carry out a free-form task.

        Args:
            workflow_id: Id stamped on progress events
            description: The task

        Returns:
            GeneralWorkflowResult; a planner failure returns success=False
        """
        if not self.executor.invoker.ready:
            return await self._run_scripted(workflow_id, description)

        plan_task = build_plan_task(description)
        # Run through the executor's single-task path so the plan gets its own events
        plan = await self.executor.run_single(workflow_id, plan_task)
        if not plan.success:
            logger.warning(f"Workflow {workflow_id}: planning failed: {plan.error}")
            return GeneralWorkflowResult(
                workflow_id=workflow_id,
                success=False,
                result=f"Task planning failed: {plan.error}",
                tasks_completed=0,
            )

        results = await self.executor.execute(
            workflow_id,
            build_general_tasks(description, plan.content),
            seed_results={PLAN_TASK_ID: plan},
        )
        execute = results["execute"]

        return GeneralWorkflowResult(
            workflow_id=workflow_id,
            success=execute.success,
            result=execute.content if execute.success else f"Task execution failed: {execute.error}",
            tasks_completed=sum(1 for result in results.values() if result.success),
        )

    async def _run_scripted(self, workflow_id: str, description: str) -> GeneralWorkflowResult:
        self.playback.announce(workflow_id, "Completion endpoint not configured")
        result = fallback_general_result(description)
        await self.playback.play(workflow_id, [
            ScriptedStep(PLAN_TASK_ID, "pm-1", "Plan drafted"),
            ScriptedStep("research", "researcher-1", "Research outlined"),
            ScriptedStep("execute", "writer-1", "Outline written", result=result),
        ])
        return GeneralWorkflowResult(
            workflow_id=workflow_id,
            success=True,
            result=result,
            tasks_completed=3,
            source=ResultSource.fallback,
        )
