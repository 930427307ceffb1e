"""Execution layer: worker pool, retry loops, phase scheduling, integration."""

from .integration import IntegrationStage
from .orchestrator import Orchestrator, RunStage, VALID_STAGE_TRANSITIONS
from .phase_scheduler import PhaseResult, PhaseScheduler
from .report import BuildReport, IntegrationReport, ModuleReport, PhaseReport, RunStatus
from .retry_loop import RetryDecision, RetryLoopController, decide
from .worker_pool import WorkerPool, WorkResult, WorkRole, WorkUnit

__all__ = [
    "BuildReport",
    "IntegrationReport",
    "IntegrationStage",
    "ModuleReport",
    "Orchestrator",
    "PhaseReport",
    "PhaseResult",
    "PhaseScheduler",
    "RetryDecision",
    "RetryLoopController",
    "RunStage",
    "RunStatus",
    "VALID_STAGE_TRANSITIONS",
    "WorkerPool",
    "WorkResult",
    "WorkRole",
    "WorkUnit",
    "decide",
]
