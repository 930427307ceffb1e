"""Mock utilities for testing."""

from .worker_mocks import ScriptedWorker, WorkerCall, failing_issues

__all__ = [
    "ScriptedWorker",
    "WorkerCall",
    "failing_issues",
]
