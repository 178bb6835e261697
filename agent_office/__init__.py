"""Agent Office: multi-agent workflow orchestration service."""

__version__ = "0.4.0"
