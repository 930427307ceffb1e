"""Runs one phase: all module loops at once, then a barrier."""

import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.build_state import BuildState, FailureKind, ModuleOutcome
from ..core.exceptions import PhaseAbortedError
from ..core.module_state import ModuleState
from ..core.plan_model import Phase
from ..tracking.activity_logger import ActivityLogger
from .retry_loop import RetryLoopController


@dataclass
class PhaseResult:
    """Outcome of one phase."""

    phase_index: int
    success: bool
    outcomes: Dict[str, ModuleOutcome] = field(default_factory=dict)
    error: Optional[PhaseAbortedError] = None
    duration_seconds: float = 0.0

    @property
    def failed_modules(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.failed]


class PhaseScheduler:
    """Schedules the modules of a phase concurrently.

    The scheduler owns a thread pool for module loops, separate from the
    WorkerPool their units go to, so a loop blocked on a unit never holds
    the thread that unit needs.
    """

    def __init__(
        self,
        controller: RetryLoopController,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.controller = controller
        self.activity_logger = activity_logger

    def run_phase(self, phase: Phase, build_state: BuildState) -> PhaseResult:
        """Run every module of ``phase`` and record the outcomes.

        Modules that are already passed in ``build_state`` (seeded from a
        previous run) are kept as they are and not resubmitted.

        Args:
            phase: Phase to execute
            build_state: Run state; only written after the barrier

        Returns:
            PhaseResult; ``error`` is set when any module failed
        """
        start = time.monotonic()
        if self.activity_logger:
            self.activity_logger.log_phase_start(phase.index, phase.module_names)

        outcomes: Dict[str, ModuleOutcome] = {}
        to_run = []
        for module in phase.modules:
            existing = build_state.get(module.name)
            if existing.passed:
                outcomes[module.name] = existing
            else:
                to_run.append(module)

        if to_run:
            with ThreadPoolExecutor(
                max_workers=len(to_run), thread_name_prefix=f"phaseforge-phase{phase.index}"
            ) as executor:
                futures: Dict[Future, str] = {}
                # Fire all loops before waiting on any
                for module in to_run:
                    inputs = build_state.passed_outputs(module.dependencies)
                    target = module.to_target(inputs=inputs)
                    futures[executor.submit(self.controller.run, target, phase.index)] = module.name

                for future in as_completed(futures):
                    name = futures[future]
                    try:
                        outcomes[name] = future.result()
                    except Exception as e:
                        # A loop that crashes still ends its module, not its siblings
                        outcomes[name] = ModuleOutcome(
                            name=name,
                            final_state=ModuleState.FAILED,
                            failure_kind=FailureKind.INFRASTRUCTURE,
                            error_message=f"Module loop crashed: {type(e).__name__}: {e}",
                        )
                        if self.activity_logger:
                            self.activity_logger.log_error(str(e), module=name)

        # Barrier reached: single writer records every outcome
        for module in phase.modules:
            build_state.record(outcomes[module.name])

        ordered = {module.name: outcomes[module.name] for module in phase.modules}
        duration = time.monotonic() - start
        failed = [name for name, outcome in ordered.items() if outcome.failed]

        if failed:
            error = PhaseAbortedError(phase.index, failed)
            if self.activity_logger:
                self.activity_logger.log_phase_aborted(phase.index, failed, int(duration * 1000))
            return PhaseResult(
                phase_index=phase.index,
                success=False,
                outcomes=ordered,
                error=error,
                duration_seconds=duration,
            )

        build_state.advance_phase()
        if self.activity_logger:
            self.activity_logger.log_phase_complete(phase.index, int(duration * 1000))
        return PhaseResult(
            phase_index=phase.index,
            success=True,
            outcomes=ordered,
            duration_seconds=duration,
        )
