"""Orchestrator-wide build state.

``BuildState`` is written by one thread only (the orchestrator, between
phase barriers). Retry loops never touch it; they hand back a
:class:`ModuleOutcome` which the scheduler records once the phase has
resolved. The lock only makes concurrent reads safe.
"""

import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .exceptions import (
    BuildCancelledError,
    InfrastructureError,
    ValidationExhaustedError,
)
from .module_state import ModuleState, is_terminal_state
from .plan_model import Plan
from .worker import BuildOutput, Iteration, ValidationIssue


class FailureKind(str, Enum):
    """Why a module ended in FAILED."""

    INFRASTRUCTURE = "infrastructure"
    VALIDATION_EXHAUSTED = "validation_exhausted"
    CANCELLED = "cancelled"


class ModuleOutcome(BaseModel):
    """Result of one module's retry loop (or of a module that never ran)."""

    name: str
    final_state: ModuleState = ModuleState.PENDING
    attempts: int = 0
    iterations: List[Iteration] = Field(default_factory=list)
    output: Optional[BuildOutput] = None
    failure_kind: Optional[FailureKind] = None
    error_message: Optional[str] = None
    issues: List[ValidationIssue] = Field(default_factory=list)
    duration_seconds: float = 0.0
    resumed: bool = False

    @property
    def passed(self) -> bool:
        return self.final_state == ModuleState.PASSED

    @property
    def failed(self) -> bool:
        return self.final_state == ModuleState.FAILED

    def raise_for_failure(self) -> None:
        """Raise the error matching this outcome's failure kind, if any."""
        if not self.failed:
            return
        if self.failure_kind == FailureKind.VALIDATION_EXHAUSTED:
            raise ValidationExhaustedError(self.name, self.iterations)
        if self.failure_kind == FailureKind.CANCELLED:
            raise BuildCancelledError(self.error_message or f"Module '{self.name}' cancelled")
        raise InfrastructureError(self.error_message or f"Module '{self.name}' failed")


class BuildState:
    """Mutable view of a run: per-module outcomes, integration, phase cursor."""

    def __init__(self, plan: Plan):
        self.plan = plan
        self._lock = threading.RLock()
        self._modules: Dict[str, ModuleOutcome] = {
            name: ModuleOutcome(name=name) for name in plan.module_names
        }
        self._integration: Optional[ModuleOutcome] = None
        self.phase_cursor = 0

    # ------------------------------------------------------------------
    # Writer side (orchestrator thread only)
    # ------------------------------------------------------------------

    def record(self, outcome: ModuleOutcome) -> None:
        """Record the terminal outcome of a plan module.

        Raises:
            KeyError: If the module is not part of the plan
            ValueError: If the outcome is not terminal, or would overwrite a
                module that already passed
        """
        with self._lock:
            if outcome.name not in self._modules:
                raise KeyError(outcome.name)
            if not is_terminal_state(outcome.final_state):
                raise ValueError(
                    f"Cannot record non-terminal state {outcome.final_state.value} "
                    f"for module '{outcome.name}'"
                )
            current = self._modules[outcome.name]
            if current.passed and not outcome.passed:
                raise ValueError(f"Module '{outcome.name}' already passed")
            self._modules[outcome.name] = outcome

    def record_integration(self, outcome: ModuleOutcome) -> None:
        """Record the integration unit's outcome."""
        with self._lock:
            self._integration = outcome

    def advance_phase(self) -> int:
        """Move the phase cursor past the phase that just passed."""
        with self._lock:
            self.phase_cursor += 1
            return self.phase_cursor

    # ------------------------------------------------------------------
    # Reader side
    # ------------------------------------------------------------------

    def get(self, name: str) -> ModuleOutcome:
        with self._lock:
            return self._modules[name]

    @property
    def modules(self) -> Dict[str, ModuleOutcome]:
        with self._lock:
            return dict(self._modules)

    @property
    def integration(self) -> Optional[ModuleOutcome]:
        with self._lock:
            return self._integration

    @property
    def integration_state(self) -> ModuleState:
        with self._lock:
            if self._integration is None:
                return ModuleState.PENDING
            return self._integration.final_state

    def passed_outputs(self, names: Optional[Iterable[str]] = None) -> Dict[str, BuildOutput]:
        """Outputs of passed modules, optionally limited to ``names``."""
        with self._lock:
            wanted = self._modules.keys() if names is None else names
            return {
                name: self._modules[name].output
                for name in wanted
                if name in self._modules
                and self._modules[name].passed
                and self._modules[name].output is not None
            }

    def all_passed(self) -> bool:
        with self._lock:
            return all(outcome.passed for outcome in self._modules.values())

    def failed_modules(self) -> List[str]:
        with self._lock:
            return [name for name, outcome in self._modules.items() if outcome.failed]
