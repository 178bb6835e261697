import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agent_office.agents.invoker import AgentInvoker
from agent_office.core.config import Settings
from agent_office.integrations.github import GitHubError, RepoFile
from agent_office.llm_client import CompletionError, CompletionResponse
from agent_office.memory.progress_bus import ProgressBus
from agent_office.models import RemoteRunStatus, RunStatus, WorkflowProgress
from agent_office.workflows.executor import TaskGraphExecutor


DEVELOPER_OUTPUT = """Here are the changes.

File: app.py
```python
print("hello")
```

File: static/css/site.css
```css
body { margin: 0; }
```
"""

RESEARCH_OUTPUT = """1. OpenAI ships a new reasoning model
A faster model with better tool use.
https://example.com/openai
2. Zhipu releases GLM-4.5 weights
Open weights under a permissive license.
https://example.com/glm
"""

DEFAULT_RESPONSES = {
    "Research-Bot": RESEARCH_OUTPUT,
    "Writer-Bot": "中文摘要：人工智能持续发展。",
    "Translate-Bot": "English summary: AI keeps advancing.",
    "Dev-Bot": DEVELOPER_OUTPUT,
    "Data-Bot": "Key files: app.py",
    "PM-Bot": "Plan: 1. research 2. write",
}

Reply = Union[str, Exception]


class FakeCompletionClient:
    """Completion client double keyed by the persona in the system prompt."""

    model = "fake-model"

    def __init__(
        self,
        responses: Optional[Dict[str, Reply]] = None,
        delay: float = 0.0,
    ):
        self.responses = dict(DEFAULT_RESPONSES)
        self.responses.update(responses or {})
        self.delay = delay
        self.calls: List[List[Dict[str, str]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    def _reply(self, messages: List[Dict[str, str]]) -> Reply:
        system = messages[0]["content"]
        for key, reply in self.responses.items():
            if key in system:
                return reply
        return "ok"

    async def complete(self, messages):
        self.calls.append(messages)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self._reply(messages)
            if isinstance(reply, Exception):
                raise reply
            return CompletionResponse(content=reply, model=self.model, total_tokens=42)
        finally:
            self.in_flight -= 1

    async def test_connection(self):
        return {"success": True, "message": "Connected. Model: fake-model"}

    async def aclose(self):
        self.closed = True


def unreachable() -> CompletionError:
    return CompletionError("Completion request failed: connection refused")


class ManualClock:
    """Monotonic clock plus sleep that only advances when slept on."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_run(
    status: RunStatus,
    conclusion: Optional[str] = None,
    run_id: int = 101,
    name: str = "Deploy",
    branch: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> RemoteRunStatus:
    return RemoteRunStatus(
        id=run_id,
        name=name,
        status=status,
        conclusion=conclusion,
        url=f"https://github.com/acme/site/actions/runs/{run_id}",
        head_branch=branch,
        created_at=created_at or datetime.now(timezone.utc) + timedelta(minutes=1),
    )


class FakeGitHub:
    """In-memory stand-in for GitHubClient."""

    def __init__(
        self,
        files: Optional[Dict[str, str]] = None,
        run_states: Optional[List[RemoteRunStatus]] = None,
        fail: Optional[Dict[str, GitHubError]] = None,
        fail_commit_path: Optional[str] = None,
    ):
        self.files: Dict[str, Dict[str, str]] = {}
        for path, content in (files or {}).items():
            self.files[path] = {"content": content, "sha": f"sha-{path}"}
        self.branch_files: Dict[str, Dict[str, Dict[str, str]]] = {}
        self.run_states = list(run_states or [])
        self.fail = fail or {}
        self.fail_commit_path = fail_commit_path
        self.calls: List[str] = []
        self.commits: List[Dict[str, Optional[str]]] = []
        self.pull_requests: List[Dict[str, str]] = []
        self.merged: List[int] = []
        self.dispatched: List[str] = []
        self.polls = 0
        self.closed = False

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]

    def _tree(self, ref: Optional[str]) -> Dict[str, Dict[str, str]]:
        if ref and ref in self.branch_files:
            return self.branch_files[ref]
        return self.files

    async def get_default_branch(self, repo):
        self._check("get_default_branch")
        return "main"

    async def list_files(self, repo, path="", ref=None):
        self._check("list_files")
        return [RepoFile(path=p, sha=f["sha"]) for p, f in self._tree(ref).items()]

    async def get_file(self, repo, path, ref=None):
        self._check("get_file")
        entry = self._tree(ref).get(path)
        if entry is None:
            return None
        return RepoFile(path=path, sha=entry["sha"], content=entry["content"])

    async def create_branch(self, repo, name, base):
        self._check("create_branch")
        self.branch_files[name] = {p: dict(f) for p, f in self.files.items()}
        return "base-sha"

    async def commit_file(self, repo, path, content, message, branch, sha=None):
        self._check("commit_file")
        if path == self.fail_commit_path:
            raise GitHubError(f"Conflict on {path}", status_code=409)
        self.commits.append({"path": path, "message": message, "sha": sha, "branch": branch})
        self.branch_files.setdefault(branch, {})[path] = {"content": content, "sha": f"sha-{len(self.commits)}"}
        return f"commit-{len(self.commits)}"

    async def delete_file(self, repo, path, message, branch, sha):
        self._check("delete_file")
        self.commits.append({"path": path, "message": message, "sha": sha, "branch": branch})
        self.branch_files.get(branch, {}).pop(path, None)
        return f"commit-{len(self.commits)}"

    async def create_pull_request(self, repo, title, body, head, base):
        self._check("create_pull_request")
        number = len(self.pull_requests) + 7
        self.pull_requests.append({"title": title, "body": body, "head": head, "base": base})
        return {"number": number, "html_url": f"https://github.com/{repo.full_name}/pull/{number}"}

    async def merge_pull_request(self, repo, number, method="squash"):
        self._check("merge_pull_request")
        self.merged.append(number)
        return {"merged": True}

    def _next_run(self) -> Optional[RemoteRunStatus]:
        self.polls += 1
        if not self.run_states:
            return None
        if len(self.run_states) > 1:
            return self.run_states.pop(0)
        return self.run_states[0]

    async def list_workflow_runs(self, repo, branch=None, created_since=None, per_page=20):
        self._check("list_workflow_runs")
        run = self._next_run()
        if run is None:
            return []
        if run.head_branch is None:
            run = run.model_copy(update={"head_branch": branch})
        return [run]

    async def get_workflow_run(self, repo, run_id):
        self._check("get_workflow_run")
        run = self._next_run()
        if run is None:
            raise GitHubError("Not Found", status_code=404)
        return run

    async def dispatch_workflow(self, repo, workflow, ref, inputs=None):
        self._check("dispatch_workflow")
        self.dispatched.append(workflow)

    async def test_connection(self):
        return {"success": True, "message": "Connected as octocat"}

    async def aclose(self):
        self.closed = True


class EventLog:
    """Collects everything published on a bus."""

    def __init__(self, bus: ProgressBus):
        self.events: List[WorkflowProgress] = []
        self.dispose = bus.subscribe(self.events.append)

    def for_step(self, step_id: str) -> List[WorkflowProgress]:
        return [e for e in self.events if e.step_id == step_id]


@pytest.fixture
def bus():
    return ProgressBus()


@pytest.fixture
def events(bus):
    return EventLog(bus)


@pytest.fixture
def completion():
    return FakeCompletionClient()


@pytest.fixture
def executor(completion, bus):
    return TaskGraphExecutor(AgentInvoker(completion), bus)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ZHIPU_API_KEY="test-key",
        GITHUB_TOKEN=None,
        DEPLOY_POLL_INTERVAL_SECONDS=5.0,
        DEPLOY_TIMEOUT_SECONDS=60.0,
        NEWS_RSS_ENABLED=False,
    )


@pytest.fixture
def make_api_client():
    """Factory: build an API client around a given orchestrator."""
    def factory(orchestrator, cfg: Settings) -> AsyncClient:
        from agent_office.main import create_app

        app = create_app(cfg, orchestrator=orchestrator)
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")

    return factory


@pytest_asyncio.fixture
async def api_client(make_api_client, test_settings, bus, completion):
    from agent_office.workflows.orchestrator import build_orchestrator

    orchestrator = build_orchestrator(test_settings, bus=bus, completion_client=completion)
    async with make_api_client(orchestrator, test_settings) as client:
        yield client


def github_factory_for(fake: FakeGitHub) -> Callable[[str], FakeGitHub]:
    def factory(token: str) -> FakeGitHub:
        fake.token = token
        return fake
    return factory
