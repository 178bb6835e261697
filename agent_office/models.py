"""Pydantic models shared by the agents, the workflow core and the API."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# Sentinel step id for aggregate (whole-workflow) progress events
WORKFLOW_STEP = "workflow"


# Enums
class AgentRole(str, Enum):
    """Agent personas available to the invoker."""
    pm = "pm"
    researcher = "researcher"
    writer = "writer"
    translator = "translator"
    developer = "developer"
    analyst = "analyst"
    designer = "designer"


class ProgressStatus(str, Enum):
    """Status carried by a progress event."""
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class ChangeAction(str, Enum):
    """What to do with a file in a code change."""
    create = "create"
    update = "update"
    delete = "delete"


class RunStatus(str, Enum):
    """Normalized status of a remote CI run."""
    queued = "queued"
    in_progress = "in_progress"
    completed = "completed"
    failure = "failure"


class ResultSource(str, Enum):
    """Whether a workflow result came from real collaborators or the scripted path."""
    live = "live"
    fallback = "fallback"


# Task graph models
class AgentTask(BaseModel):
    """One unit of work in a task graph."""
    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    agent_id: str
    role: AgentRole
    description: str
    dependencies: List[str] = Field(default_factory=list)
    context: Optional[str] = None


class TaskMetadata(BaseModel):
    """Call statistics attached to a task result."""
    model_config = {"frozen": True}

    processing_time_ms: Optional[float] = None
    tokens_used: Optional[int] = None
    model: Optional[str] = None


class TaskResult(BaseModel):
    """Outcome of one task. Never mutated once stored."""
    model_config = {"frozen": True}

    success: bool
    content: str = ""
    error: Optional[str] = None
    metadata: Optional[TaskMetadata] = None

    @classmethod
    def failure(cls, error: str, metadata: Optional[TaskMetadata] = None) -> "TaskResult":
        return cls(success=False, content="", error=error, metadata=metadata)


class WorkflowProgress(BaseModel):
    """A single progress event published on the progress bus."""
    model_config = {"frozen": True}

    workflow_id: str
    step_id: str
    agent_id: str
    status: ProgressStatus
    progress: int = Field(..., ge=0, le=100)
    message: Optional[str] = None
    result: Optional[Any] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Workflow payload models
class CodeChange(BaseModel):
    """A single file change parsed from developer output."""
    path: str
    content: str
    action: ChangeAction = ChangeAction.update


class NewsArticle(BaseModel):
    """A news item parsed from researcher output or a feed."""
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    published_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    source: str = "AI Research"


class NewsSummary(BaseModel):
    """Result of the collect-and-translate workflow."""
    workflow_id: str
    original: str
    translated: str
    articles: List[NewsArticle] = Field(default_factory=list)
    source: ResultSource = ResultSource.live
    error: Optional[str] = None


class RemoteRunStatus(BaseModel):
    """Snapshot of a CI run as reported by the source-hosting API."""
    id: int
    name: str
    status: RunStatus
    conclusion: Optional[str] = None
    url: str
    head_branch: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.completed, RunStatus.failure)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.completed and self.conclusion == "success"


class DeploymentResult(BaseModel):
    """Outcome of the deploy-monitor and merge stages."""
    success: bool
    run: Optional[RemoteRunStatus] = None
    merged: bool = False
    duration_seconds: float = 0.0
    pull_request_url: Optional[str] = None
    logs_url: Optional[str] = None
    error: Optional[str] = None
    merge_error: Optional[str] = None


_REPO_URL_PATTERN = re.compile(r"github\.com[/:]([^/]+)/([^/\s]+)")


class RepositoryRef(BaseModel):
    """owner/repo pair of a hosted repository."""
    owner: str
    repo: str

    @classmethod
    def from_url(cls, url: str) -> "RepositoryRef":
        """Parse a GitHub URL; unparsable input yields unknown/unknown."""
        match = _REPO_URL_PATTERN.search(url or "")
        if not match:
            return cls(owner="unknown", repo="unknown")
        repo = match.group(2)
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        return cls(owner=match.group(1), repo=repo.rstrip("/"))

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class RepositoryWorkflowResult(BaseModel):
    """Result of the modify-repository workflow."""
    workflow_id: str
    success: bool
    changes: List[CodeChange] = Field(default_factory=list)
    summary: str = ""
    branch: Optional[str] = None
    pull_request_url: Optional[str] = None
    pull_request_number: Optional[int] = None
    deployment: Optional[DeploymentResult] = None
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    source: ResultSource = ResultSource.live


class GeneralWorkflowResult(BaseModel):
    """Result of the plan-research-execute workflow."""
    workflow_id: str
    success: bool
    result: str
    tasks_completed: int = 0
    source: ResultSource = ResultSource.live
