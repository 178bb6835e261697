"""
Task Graph Executor.

Runs a set of AgentTasks level by level: every task whose dependencies all
have a stored result is dispatched in the same batch and the batch is awaited
as a whole before the next one is computed. A graph that stops making
progress (unknown dependency or a cycle) is resolved by failing whatever is
still pending, so the caller always gets a result for every task id.
"""

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence

from ..agents.invoker import AgentInvoker
from ..memory.progress_bus import ProgressBus
from ..middleware.metrics import track_agent_task
from ..models import (
    WORKFLOW_STEP,
    AgentTask,
    ProgressStatus,
    TaskResult,
    WorkflowProgress,
)


logger = logging.getLogger(__name__)

STALLED_ERROR = "dependency unmet or cyclic dependency"
AGGREGATE_AGENT_ID = "orchestrator"


class TaskGraphExecutor:
    """Dependency-ordered, batch-concurrent executor for agent task graphs."""

    def __init__(self, invoker: AgentInvoker, bus: ProgressBus):
        self.invoker = invoker
        self.bus = bus

    async def execute(
        self,
        workflow_id: str,
        tasks: Sequence[AgentTask],
        seed_results: Optional[Mapping[str, TaskResult]] = None,
    ) -> Dict[str, TaskResult]:
        """
        Execute a task graph.

        Args:
            workflow_id: Id stamped on every progress event
            tasks: The graph; ids must be unique
            seed_results: Results produced outside the graph that tasks may depend on

        Returns:
            Mapping of task id to TaskResult, one entry per task in the graph

        Raises:
            ValueError: If two tasks share an id
        """
        ids = [task.id for task in tasks]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate task ids in workflow {workflow_id}")

        total = len(tasks)
        seeds: Dict[str, TaskResult] = dict(seed_results or {})
        results: Dict[str, TaskResult] = {}
        pending: List[AgentTask] = list(tasks)

        logger.info(f"Workflow {workflow_id}: executing {total} tasks")

        iteration = 0
        while pending:
            iteration += 1
            completed_before = len(results)

            ready = [
                task for task in pending
                if all(dep in results or dep in seeds for dep in task.dependencies)
            ]
            ready_ids = {task.id for task in ready}
            pending = [task for task in pending if task.id not in ready_ids]

            if ready:
                logger.info(
                    f"Workflow {workflow_id}: batch {iteration} dispatching "
                    f"{[task.id for task in ready]}"
                )
                for task in ready:
                    self._emit(workflow_id, task.id, task.agent_id, ProgressStatus.running, 0,
                               message=f"{task.agent_id} started {task.id}")

                settled = await asyncio.gather(
                    *(self._run_task(workflow_id, task, {**seeds, **results}) for task in ready)
                )
                for task, result in zip(ready, settled):
                    results[task.id] = result

            if len(results) == completed_before:
                logger.warning(
                    f"Workflow {workflow_id}: stalled with {len(pending)} pending tasks "
                    f"{[task.id for task in pending]}"
                )
                for task in pending:
                    results[task.id] = TaskResult.failure(STALLED_ERROR)
                    track_agent_task(task.role.value, ProgressStatus.failed.value)
                    self._emit(workflow_id, task.id, task.agent_id, ProgressStatus.failed, 100,
                               message=STALLED_ERROR)
                pending = []
                break

            if pending:
                self._emit(
                    workflow_id,
                    WORKFLOW_STEP,
                    AGGREGATE_AGENT_ID,
                    ProgressStatus.running,
                    len(results) * 100 // total,
                    message=f"{len(results)}/{total} tasks completed",
                )

        failed = [task_id for task_id, result in results.items() if not result.success]
        status = ProgressStatus.failed if failed else ProgressStatus.completed
        self._emit(
            workflow_id,
            WORKFLOW_STEP,
            AGGREGATE_AGENT_ID,
            status,
            100,
            message=f"{total - len(failed)}/{total} tasks succeeded",
        )
        logger.info(f"Workflow {workflow_id}: finished, {len(failed)} of {total} tasks failed")

        return results

    async def run_single(
        self,
        workflow_id: str,
        task: AgentTask,
        available: Optional[Mapping[str, TaskResult]] = None,
    ) -> TaskResult:
        """
        Run one task outside a graph.

        Only the task's own running/settled events are published; no
        aggregate progress is reported.
        """
        available = dict(available or {})
        missing = [dep for dep in task.dependencies if dep not in available]
        if missing:
            result = TaskResult.failure(STALLED_ERROR)
            self._emit(workflow_id, task.id, task.agent_id, ProgressStatus.failed, 100, message=STALLED_ERROR)
            return result

        self._emit(workflow_id, task.id, task.agent_id, ProgressStatus.running, 0,
                   message=f"{task.agent_id} started {task.id}")
        return await self._run_task(workflow_id, task, available)

    async def _run_task(
        self,
        workflow_id: str,
        task: AgentTask,
        available: Mapping[str, TaskResult],
    ) -> TaskResult:
        prior = [
            available[dep].content
            for dep in task.dependencies
            if available[dep].success and available[dep].content
        ]

        try:
            result = await self.invoker.execute(
                task.role,
                task.agent_id,
                task.description,
                context=task.context,
                prior_results=prior,
            )
        except Exception as e:
            # The invoker reports failures as data; anything else is a bug in it
            logger.error(f"Workflow {workflow_id}: task {task.id} raised", exc_info=True)
            result = TaskResult.failure(str(e) or type(e).__name__)

        status = ProgressStatus.completed if result.success else ProgressStatus.failed
        track_agent_task(task.role.value, status.value)
        self._emit(
            workflow_id,
            task.id,
            task.agent_id,
            status,
            100,
            message=None if result.success else result.error,
            result=result.content if result.success else None,
        )
        return result

    def _emit(
        self,
        workflow_id: str,
        step_id: str,
        agent_id: str,
        status: ProgressStatus,
        progress: int,
        message: Optional[str] = None,
        result: Optional[str] = None,
    ) -> None:
        self.bus.publish(WorkflowProgress(
            workflow_id=workflow_id,
            step_id=step_id,
            agent_id=agent_id,
            status=status,
            progress=progress,
            message=message,
            result=result,
        ))
