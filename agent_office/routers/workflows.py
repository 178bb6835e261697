"""
Workflow API Routes: HTTP endpoints for the agent workflows.

Workflows run as background tasks. Their progress events are captured from
the progress bus into an in-process registry and replayed over SSE.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..memory.progress_bus import ProgressBus
from ..models import WORKFLOW_STEP, WorkflowProgress
from ..workflows.orchestrator import Orchestrator, new_workflow_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workflows", tags=["workflows"])

SSE_POLL_SECONDS = 0.5


# Request/Response Models

class WorkflowKind(str, Enum):
    news = "news"
    repository = "repository"
    general = "general"


class WorkflowState(str, Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


TERMINAL_STATES = {WorkflowState.completed, WorkflowState.failed}


class NewsRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)


class RepositoryRequest(BaseModel):
    repo_url: str = Field(..., min_length=1)
    requirements: str = Field(..., min_length=1, max_length=5000)
    github_token: Optional[str] = Field(default=None, description="Overrides GITHUB_TOKEN for this workflow")


class GeneralRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=5000)


class WorkflowResponse(BaseModel):
    workflow_id: str
    kind: WorkflowKind
    status: WorkflowState


class WorkflowStatus(BaseModel):
    workflow_id: str
    kind: WorkflowKind
    status: WorkflowState
    progress: int
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    events: int = 0
    started_at: datetime
    finished_at: Optional[datetime] = None


# In-memory workflow tracking (no persistence across restarts)

@dataclass
class WorkflowRecord:
    id: str
    kind: WorkflowKind
    status: WorkflowState = WorkflowState.queued
    progress: int = 0
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    dispose: Optional[Callable[[], None]] = None

    def to_status(self) -> WorkflowStatus:
        return WorkflowStatus(
            workflow_id=self.id,
            kind=self.kind,
            status=self.status,
            progress=self.progress,
            message=self.message,
            result=self.result,
            error=self.error,
            events=len(self.events),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class WorkflowRegistry:
    """Tracks workflows started through the API and records their events."""

    def __init__(self, bus: ProgressBus, max_records: int = 200):
        self.bus = bus
        self.max_records = max_records
        self._records: Dict[str, WorkflowRecord] = {}

    def create(self, kind: WorkflowKind) -> WorkflowRecord:
        record = WorkflowRecord(id=new_workflow_id(kind.value), kind=kind)

        def capture(progress: WorkflowProgress) -> None:
            record.events.append(progress.model_dump(mode="json"))
            if progress.step_id == WORKFLOW_STEP:
                record.progress = max(record.progress, progress.progress)
            if progress.message:
                record.message = progress.message

        record.dispose = self.bus.subscribe(capture, workflow_id=record.id)
        self._records[record.id] = record
        self._evict()
        return record

    def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        return self._records.get(workflow_id)

    def recent(self, limit: int = 10) -> List[WorkflowRecord]:
        return sorted(self._records.values(), key=lambda r: r.started_at, reverse=True)[:limit]

    def finish(self, record: WorkflowRecord, result: Dict[str, Any], success: bool) -> None:
        record.result = result
        record.status = WorkflowState.completed if success else WorkflowState.failed
        record.error = result.get("error")
        record.progress = 100
        self._close(record)

    def fail(self, record: WorkflowRecord, error: str) -> None:
        record.status = WorkflowState.failed
        record.error = error
        self._close(record)

    def _close(self, record: WorkflowRecord) -> None:
        record.finished_at = datetime.now(timezone.utc)
        if record.dispose is not None:
            record.dispose()
            record.dispose = None

    def _evict(self) -> None:
        if len(self._records) <= self.max_records:
            return
        finished = [r for r in self.recent(len(self._records)) if r.status in TERMINAL_STATES]
        for record in finished[::-1][: len(self._records) - self.max_records]:
            del self._records[record.id]


# Dependencies

def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_registry(request: Request) -> WorkflowRegistry:
    return request.app.state.registry


async def execute_workflow(
    registry: WorkflowRegistry,
    record: WorkflowRecord,
    run: Callable[[str], Awaitable[BaseModel]],
) -> None:
    """Run one workflow and store its result on the record."""
    record.status = WorkflowState.running
    try:
        result = await run(record.id)
        success = getattr(result, "success", True)
        registry.finish(record, result.model_dump(mode="json"), success)
    except Exception as e:
        logger.error(f"Workflow {record.id} failed: {e}", exc_info=True)
        registry.fail(record, str(e))


def _started(record: WorkflowRecord) -> WorkflowResponse:
    return WorkflowResponse(workflow_id=record.id, kind=record.kind, status=record.status)


@router.post("/news", response_model=WorkflowResponse, status_code=202)
async def start_news_workflow(
    body: NewsRequest,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    registry: WorkflowRegistry = Depends(get_registry),
):
    """Collect news about a topic, summarize it in Chinese and translate it to English."""
    record = registry.create(WorkflowKind.news)
    background_tasks.add_task(
        execute_workflow, registry, record,
        lambda workflow_id: orchestrator.run_news(body.query, workflow_id=workflow_id),
    )
    return _started(record)


@router.post("/repository", response_model=WorkflowResponse, status_code=202)
async def start_repository_workflow(
    body: RepositoryRequest,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    registry: WorkflowRegistry = Depends(get_registry),
):
    """
    Modify a GitHub repository.

    With a token: branch, commit, pull request, CI monitor and merge.
    Without one: the proposed changes are returned as suggestions only.
    """
    record = registry.create(WorkflowKind.repository)
    background_tasks.add_task(
        execute_workflow, registry, record,
        lambda workflow_id: orchestrator.run_repository(
            body.repo_url, body.requirements, body.github_token, workflow_id=workflow_id
        ),
    )
    return _started(record)


@router.post("/general", response_model=WorkflowResponse, status_code=202)
async def start_general_workflow(
    body: GeneralRequest,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    registry: WorkflowRegistry = Depends(get_registry),
):
    """Plan a free-form task, research it and carry it out."""
    record = registry.create(WorkflowKind.general)
    background_tasks.add_task(
        execute_workflow, registry, record,
        lambda workflow_id: orchestrator.run_general(body.description, workflow_id=workflow_id),
    )
    return _started(record)


@router.get("", response_model=List[WorkflowStatus])
async def list_workflows(limit: int = 10, registry: WorkflowRegistry = Depends(get_registry)):
    """List recent workflows."""
    return [record.to_status() for record in registry.recent(limit)]


@router.get("/{workflow_id}", response_model=WorkflowStatus)
async def get_workflow_status(workflow_id: str, registry: WorkflowRegistry = Depends(get_registry)):
    """Get workflow status."""
    record = registry.get(workflow_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return record.to_status()


async def sse_iter(registry: WorkflowRegistry, workflow_id: str) -> AsyncIterator[bytes]:
    record = registry.get(workflow_id)
    if record is None:
        yield b"event: error\n" + b"data: \"Workflow not found\"\n\n"
        return

    sent = 0
    while True:
        events = record.events[sent:]
        for event in events:
            yield b"event: progress\n" + f"data: {json.dumps(event)}\n\n".encode()
        sent += len(events)

        if record.status in TERMINAL_STATES and sent == len(record.events):
            payload = {"status": record.status.value, "result": record.result, "error": record.error}
            yield b"event: result\n" + f"data: {json.dumps(payload)}\n\n".encode()
            break
        await asyncio.sleep(SSE_POLL_SECONDS)


@router.get("/{workflow_id}/events")
async def get_workflow_events(workflow_id: str, registry: WorkflowRegistry = Depends(get_registry)):
    """Stream a workflow's progress events via SSE (replay, then live tail)."""
    if registry.get(workflow_id) is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(sse_iter(registry, workflow_id), media_type="text/event-stream", headers=headers)
