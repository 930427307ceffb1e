"""Bounded build -> validate -> fix loop for a single module.

A module gets exactly one build, at most ``MAX_ATTEMPTS`` validations and at
most ``MAX_ATTEMPTS - 1`` fixes. Infrastructure errors end the loop at once
and never consume the validation budget.
"""

import threading
import time
from enum import Enum
from typing import List, Optional

from ..core.build_state import FailureKind, ModuleOutcome
from ..core.exceptions import BuildCancelledError
from ..core.module_state import MAX_ATTEMPTS, ModuleState
from ..core.state_machine import ModuleStateMachine
from ..core.worker import BuildOutput, BuildTarget, Iteration, ValidationResult
from ..tracking.activity_logger import ActivityLogger
from .worker_pool import WorkerPool, WorkResult, WorkRole, WorkUnit


class RetryDecision(Enum):
    """What to do after a validation pass."""

    PASS = "pass"  # Validation passed, module is done
    FIX = "fix"  # Validation failed, budget left
    EXHAUSTED = "exhausted"  # Validation failed on the last attempt


def decide(validation_passed: bool, attempt: int) -> RetryDecision:
    """Decide the next step after validation attempt ``attempt`` (1-based)."""
    if validation_passed:
        return RetryDecision.PASS
    if attempt >= MAX_ATTEMPTS:
        return RetryDecision.EXHAUSTED
    return RetryDecision.FIX


class RetryLoopController:
    """Drives one module at a time through its retry loop.

    A single controller can serve many modules concurrently: all per-module
    data lives on the stack of ``run`` and in the module's own entry in the
    state machine.
    """

    def __init__(
        self,
        pool: WorkerPool,
        state_machine: Optional[ModuleStateMachine] = None,
        activity_logger: Optional[ActivityLogger] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize the controller.

        Args:
            pool: Pool the build/validate/fix units are submitted to
            state_machine: Lifecycle tracker (creates a private one if None)
            activity_logger: Optional activity log
            cancel_event: Shared abort signal, checked before every submission
        """
        self.pool = pool
        self.state_machine = state_machine or ModuleStateMachine()
        self.activity_logger = activity_logger
        self.cancel_event = cancel_event or threading.Event()

    def run(self, target: BuildTarget, phase_index: Optional[int] = None) -> ModuleOutcome:
        """Run the full loop for one module.

        Args:
            target: Module to build, with its dependency inputs filled in
            phase_index: Phase the module belongs to, for logging only

        Returns:
            Terminal ModuleOutcome (passed or failed)
        """
        start = time.monotonic()
        name = target.name
        iterations: List[Iteration] = []

        self.state_machine.register_module(
            name, metadata={"phase_index": phase_index, "is_integration": target.is_integration}
        )
        if self.activity_logger:
            self.activity_logger.log_module_start(name, phase_index=phase_index)

        def finish_failed(
            kind: FailureKind, message: str, output: Optional[BuildOutput] = None
        ) -> ModuleOutcome:
            self.state_machine.fail_module(name, message, metadata={"failure_kind": kind.value})
            info = self.state_machine.get_state(name)
            duration = time.monotonic() - start
            if self.activity_logger:
                self.activity_logger.log_module_fail(
                    name, kind.value, message, info.attempts, int(duration * 1000)
                )
            issues = iterations[-1].validation_result.issues if iterations else []
            return ModuleOutcome(
                name=name,
                final_state=ModuleState.FAILED,
                attempts=info.attempts,
                iterations=list(iterations),
                output=output,
                failure_kind=kind,
                error_message=message,
                issues=list(issues),
                duration_seconds=duration,
            )

        # Build
        result = self._submit(WorkUnit(role=WorkRole.BUILD, target=target), ModuleState.BUILDING)
        if not result.ok:
            return finish_failed(_failure_kind(result), str(result.error))
        output: BuildOutput = result.value

        attempt = 1
        while True:
            result = self._submit(
                WorkUnit(role=WorkRole.VALIDATE, target=target, output=output),
                ModuleState.VALIDATING,
            )
            if not result.ok:
                return finish_failed(_failure_kind(result), str(result.error), output)
            validation: ValidationResult = result.value

            iteration = Iteration(
                module_name=name,
                attempt_number=attempt,
                build_result=output,
                validation_result=validation,
            )
            iterations.append(iteration)
            if self.activity_logger:
                self.activity_logger.log_iteration(iteration)

            decision = decide(validation.passed, attempt)

            if decision == RetryDecision.PASS:
                info = self.state_machine.get_state(name)
                info.metadata["output"] = output.model_dump(mode="json")
                self.state_machine.transition(
                    name, ModuleState.PASSED, reason=f"Validation passed on attempt {attempt}"
                )
                duration = time.monotonic() - start
                if self.activity_logger:
                    self.activity_logger.log_module_complete(
                        name, info.attempts, int(duration * 1000)
                    )
                return ModuleOutcome(
                    name=name,
                    final_state=ModuleState.PASSED,
                    attempts=info.attempts,
                    iterations=list(iterations),
                    output=output,
                    issues=list(validation.issues),
                    duration_seconds=duration,
                )

            if decision == RetryDecision.EXHAUSTED:
                return finish_failed(
                    FailureKind.VALIDATION_EXHAUSTED,
                    f"Validation failed after {attempt} attempts "
                    f"({validation.error_count} error issue(s) open)",
                    output,
                )

            result = self._submit(
                WorkUnit(
                    role=WorkRole.FIX,
                    target=target,
                    output=output,
                    issues=tuple(validation.issues),
                ),
                ModuleState.FIXING,
                reason=f"Validation failed on attempt {attempt}",
            )
            if not result.ok:
                return finish_failed(_failure_kind(result), str(result.error), output)
            output = result.value
            attempt += 1

    def _submit(
        self, unit: WorkUnit, state: ModuleState, reason: Optional[str] = None
    ) -> WorkResult:
        """Move the module into ``state`` and run one unit of work."""
        if self.cancel_event.is_set():
            return WorkResult(
                unit=unit,
                error=BuildCancelledError(
                    f"Module '{unit.target.name}' cancelled before {unit.role.value}"
                ),
            )
        self.state_machine.transition(unit.target.name, state, reason=reason)
        return self.pool.run(unit, cancel_event=self.cancel_event)


def _failure_kind(result: WorkResult) -> FailureKind:
    if isinstance(result.error, BuildCancelledError):
        return FailureKind.CANCELLED
    return FailureKind.INFRASTRUCTURE
