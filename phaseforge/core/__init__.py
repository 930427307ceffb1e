"""Core PhaseForge functionality."""

from .build_state import BuildState, FailureKind, ModuleOutcome
from .exceptions import (
    BuildCancelledError,
    ConfigurationError,
    ExecutionError,
    InfrastructureError,
    PhaseAbortedError,
    PhaseForgeError,
    PlanParseError,
    StatePersistenceError,
    StateTransitionError,
    ValidationExhaustedError,
    WorkerError,
    WorkerTimeoutError,
)
from .module_state import (
    MAX_ATTEMPTS,
    ModuleState,
    ModuleStateInfo,
    StateTransition,
    get_valid_next_states,
    is_terminal_state,
    is_valid_transition,
)
from .plan_model import ModuleSpec, Phase, Plan
from .plan_parser import PlanParser
from .plan_schema import (
    ModuleDocument,
    PhaseDocument,
    PlanDocument,
    load_plan_document,
    save_plan_document,
    validate_plan_document,
)
from .state_machine import ModuleStateMachine
from .state_persistence import StatePersistence
from .worker import (
    BuildOutput,
    BuildTarget,
    Iteration,
    Severity,
    ValidationIssue,
    ValidationResult,
    Worker,
)

__all__ = [
    # Exceptions
    "PhaseForgeError",
    "ConfigurationError",
    "PlanParseError",
    "ExecutionError",
    "StateTransitionError",
    "InfrastructureError",
    "WorkerError",
    "WorkerTimeoutError",
    "ValidationExhaustedError",
    "PhaseAbortedError",
    "BuildCancelledError",
    "StatePersistenceError",
    # Plan
    "Plan",
    "Phase",
    "ModuleSpec",
    "PlanParser",
    "PlanDocument",
    "PhaseDocument",
    "ModuleDocument",
    "load_plan_document",
    "save_plan_document",
    "validate_plan_document",
    # State management
    "MAX_ATTEMPTS",
    "ModuleState",
    "ModuleStateInfo",
    "StateTransition",
    "ModuleStateMachine",
    "StatePersistence",
    "is_valid_transition",
    "get_valid_next_states",
    "is_terminal_state",
    "BuildState",
    "FailureKind",
    "ModuleOutcome",
    # Worker capability
    "Worker",
    "BuildTarget",
    "BuildOutput",
    "Iteration",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
]
