"""PhaseForge exception classes."""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .worker import Iteration


class PhaseForgeError(Exception):
    """Base exception for all PhaseForge errors."""

    pass


class ConfigurationError(PhaseForgeError):
    """Raised when configuration is invalid."""

    pass


class PlanParseError(PhaseForgeError):
    """Raised when a plan document cannot be turned into a plan.

    The ``kind`` attribute identifies the structural problem so callers can
    react without matching on message text.
    """

    DANGLING_DEPENDENCY = "dangling_dependency"
    DUPLICATE_MODULE = "duplicate_module"
    EMPTY_PLAN = "empty_plan"
    INVALID_DOCUMENT = "invalid_document"

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(message)


class ExecutionError(PhaseForgeError):
    """Raised when plan execution fails."""

    pass


class StateTransitionError(ExecutionError):
    """Raised when an invalid state transition is attempted."""

    pass


class InfrastructureError(ExecutionError):
    """Raised when a worker cannot carry out a unit of work.

    Infrastructure errors are never retried: they point at the worker, not at
    the quality of the module being built.
    """

    pass


class WorkerError(InfrastructureError):
    """Raised when a worker call fails or crashes."""

    pass


class WorkerTimeoutError(InfrastructureError):
    """Raised when a worker call exceeds its timeout."""

    pass


class ValidationExhaustedError(ExecutionError):
    """Raised when a module still fails validation after its last attempt."""

    def __init__(self, module: str, iterations: List["Iteration"]):
        self.module = module
        self.iterations = list(iterations)
        issues = iterations[-1].validation_result.issues if iterations else []
        super().__init__(
            f"Module '{module}' failed validation after {len(iterations)} attempt(s) "
            f"with {len(issues)} open issue(s)"
        )


class PhaseAbortedError(ExecutionError):
    """Raised when a phase ends with at least one failed module."""

    def __init__(self, phase_index: int, failed_modules: List[str], message: Optional[str] = None):
        self.phase_index = phase_index
        self.failed_modules = list(failed_modules)
        super().__init__(
            message
            or f"Phase {phase_index} aborted: failed module(s): {', '.join(failed_modules)}"
        )


class BuildCancelledError(ExecutionError):
    """Raised when a module loop is cancelled by an operator abort."""

    pass


class StatePersistenceError(ExecutionError):
    """Raised when state persistence operations fail."""

    pass
