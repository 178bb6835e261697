"""
Workflow core: the task graph executor, the deploy monitor, the pull-request
lifecycle and the three workflow facades built on them.
"""

from .executor import STALLED_ERROR, TaskGraphExecutor
from .monitor import MonitorTimeoutError, RemoteJobMonitor
from .orchestrator import Orchestrator, build_orchestrator
from .parsers import parse_articles, parse_code_changes
from .pull_request import PullRequestLifecycle, StageError
from .simulation import ExternalServiceError


__all__ = [
    "STALLED_ERROR",
    "TaskGraphExecutor",
    "MonitorTimeoutError",
    "RemoteJobMonitor",
    "Orchestrator",
    "build_orchestrator",
    "parse_articles",
    "parse_code_changes",
    "PullRequestLifecycle",
    "StageError",
    "ExternalServiceError",
]
