"""Top-level run driver: parse, run phases in order, integrate, report.

Stages of a run::

    parsing -> phase_executing -> integrating -> done
         \\            \\               \\
          +-------------+---------------+-> aborted
"""

import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config.models import PhaseForgeConfig
from ..core.build_state import BuildState, ModuleOutcome
from ..core.exceptions import PlanParseError, StateTransitionError
from ..core.module_state import ModuleState
from ..core.plan_model import Plan
from ..core.plan_parser import PlanParser
from ..core.plan_schema import PlanDocument
from ..core.state_machine import ModuleStateMachine
from ..core.state_persistence import StatePersistence
from ..core.worker import BuildOutput, Worker
from ..tracking.activity_logger import ActivityLogger
from .integration import IntegrationStage
from .phase_scheduler import PhaseResult, PhaseScheduler
from .report import BuildReport, RunStatus
from .retry_loop import RetryLoopController
from .worker_pool import WorkerPool, WorkRole

PlanSource = Union[str, Path, Dict[str, Any], PlanDocument]


class RunStage(str, Enum):
    """Stages of an orchestrator run."""

    PARSING = "parsing"
    PHASE_EXECUTING = "phase_executing"
    INTEGRATING = "integrating"
    DONE = "done"
    ABORTED = "aborted"


VALID_STAGE_TRANSITIONS: Dict[RunStage, List[RunStage]] = {
    RunStage.PARSING: [RunStage.PHASE_EXECUTING, RunStage.ABORTED],
    RunStage.PHASE_EXECUTING: [RunStage.INTEGRATING, RunStage.ABORTED],
    RunStage.INTEGRATING: [RunStage.DONE, RunStage.ABORTED],
    RunStage.DONE: [],  # Terminal state
    RunStage.ABORTED: [],  # Terminal state
}


class Orchestrator:
    """Drives a plan from document to report.

    Once cancelled, an orchestrator stays cancelled; use a new one for a new
    run.
    """

    def __init__(
        self,
        worker: Worker,
        config: Optional[PhaseForgeConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
        persistence: Optional[StatePersistence] = None,
        parser: Optional[PlanParser] = None,
    ):
        """Initialize the orchestrator.

        Args:
            worker: Capability that builds, validates and fixes modules
            config: Configuration (uses defaults if None)
            activity_logger: Optional activity log
            persistence: Optional module state store, needed for resume
            parser: Plan parser (creates default if None)
        """
        self.worker = worker
        self.config = config or PhaseForgeConfig()
        self.activity_logger = activity_logger
        self.persistence = persistence
        self.parser = parser or PlanParser()

        self.stage = RunStage.PARSING
        self.build_state: Optional[BuildState] = None
        self.state_machine: Optional[ModuleStateMachine] = None
        self.phase_results: List[PhaseResult] = []
        self.submission_counts: Dict[str, Dict[str, int]] = {}
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Abort the run: in-flight modules fail as cancelled, passed stay passed."""
        self._cancel_event.set()
        if self.activity_logger:
            self.activity_logger.log_info("Cancellation requested")

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(self, plan_source: PlanSource, resume: bool = False) -> BuildReport:
        """Run a plan.

        Args:
            plan_source: Path to a YAML/JSON plan, a mapping or a PlanDocument
            resume: Skip modules persisted as passed for the same plan id

        Returns:
            BuildReport; ``overall_status`` is ``done`` only when every
            phase and the integration unit passed
        """
        start = time.monotonic()
        self.stage = RunStage.PARSING

        try:
            plan = self._parse(plan_source)
        except PlanParseError as e:
            self._set_stage(RunStage.ABORTED)
            if self.activity_logger:
                self.activity_logger.log_error(str(e), kind=e.kind)
            return BuildReport(
                overall_status=RunStatus.ABORTED,
                error=str(e),
                error_kind=e.kind,
                integration={"name": self.config.integration.name},
                duration_seconds=time.monotonic() - start,
            )

        build_state = BuildState(plan)
        self.build_state = build_state
        self.state_machine = ModuleStateMachine(
            persistence_handler=self.persistence, plan_id=plan.id
        )

        if self.activity_logger:
            self.activity_logger.plan_id = plan.id
            self.state_machine.add_listener(self.activity_logger.log_transition)
            self.activity_logger.log_run_start(
                plan.id, len(plan.phases), len(plan.module_names)
            )

        if resume:
            self._seed_from_persisted(build_state)
        elif self.persistence is not None:
            self.persistence.clear_plan(plan.id)

        pool = WorkerPool(
            self.worker,
            max_workers=self.config.pool.max_workers,
            timeouts={
                role: float(self.config.pool.timeout_seconds(role.value)) for role in WorkRole
            },
        )
        try:
            controller = RetryLoopController(
                pool,
                state_machine=self.state_machine,
                activity_logger=self.activity_logger,
                cancel_event=self._cancel_event,
            )
            error, error_kind = self._execute(build_state, controller)
        finally:
            abandon = self.cancelled or pool.has_abandoned_work
            pool.shutdown(wait=not abandon, cancel_futures=abandon)
            self.submission_counts = pool.submission_counts()

        status = RunStatus.DONE if error is None else RunStatus.ABORTED
        self._set_stage(RunStage.DONE if error is None else RunStage.ABORTED)
        duration = time.monotonic() - start

        report = BuildReport.from_build_state(
            build_state,
            status,
            integration_name=self.config.integration.name,
            error=error,
            error_kind=error_kind,
            duration_seconds=duration,
        )

        if self.activity_logger:
            self.activity_logger.log_run_end(
                status.value,
                int(duration * 1000),
                passed=sum(1 for m in report.iter_modules() if m.final_state == ModuleState.PASSED),
                failed=len(build_state.failed_modules()),
            )
        return report

    def _parse(self, plan_source: PlanSource) -> Plan:
        """Parse the plan and check it leaves room for the integration unit."""
        if isinstance(plan_source, (str, Path)):
            try:
                plan = self.parser.parse_file(plan_source)
            except FileNotFoundError as e:
                raise PlanParseError(PlanParseError.INVALID_DOCUMENT, str(e)) from e
        else:
            plan = self.parser.parse(plan_source)

        integration_name = self.config.integration.name
        if integration_name in plan.module_names:
            raise PlanParseError(
                PlanParseError.DUPLICATE_MODULE,
                f"Module '{integration_name}' collides with the integration unit name",
            )
        return plan

    def _execute(self, build_state: BuildState, controller: RetryLoopController):
        """Run phases then integration; returns (error message, error kind)."""
        self._set_stage(RunStage.PHASE_EXECUTING)
        scheduler = PhaseScheduler(controller, activity_logger=self.activity_logger)
        self.phase_results = []

        for phase in build_state.plan.phases:
            if self.cancelled:
                return f"Run cancelled before phase {phase.index}", "cancelled"

            result = scheduler.run_phase(phase, build_state)
            self.phase_results.append(result)
            if not result.success:
                if self.cancelled:
                    return f"Run cancelled during phase {phase.index}: {result.error}", "cancelled"
                return str(result.error), "phase_aborted"

        self._set_stage(RunStage.INTEGRATING)
        if self.cancelled:
            return "Run cancelled before integration", "cancelled"

        stage = IntegrationStage(
            controller, config=self.config.integration, activity_logger=self.activity_logger
        )
        outcome = stage.run(build_state)
        if not outcome.passed and self.cancelled:
            return f"Run cancelled during integration: {outcome.error_message}", "cancelled"
        if not outcome.passed:
            return (
                f"Integration '{outcome.name}' failed: {outcome.error_message}",
                "integration_failed",
            )
        return None, None

    def _seed_from_persisted(self, build_state: BuildState) -> None:
        """Mark modules that passed in an earlier run of the same plan."""
        if self.persistence is None:
            return

        states = self.persistence.load_all_states(build_state.plan.id)
        for name, info in states.items():
            if name not in build_state.modules or info.current_state != ModuleState.PASSED:
                continue
            raw_output = info.metadata.get("output")
            if raw_output is None:
                continue
            build_state.record(
                ModuleOutcome(
                    name=name,
                    final_state=ModuleState.PASSED,
                    attempts=info.attempts,
                    output=BuildOutput.model_validate(raw_output),
                    resumed=True,
                )
            )
            if self.activity_logger:
                self.activity_logger.log_info(f"Resumed '{name}' as passed", module=name)

    def _set_stage(self, to_stage: RunStage) -> None:
        if to_stage not in VALID_STAGE_TRANSITIONS[self.stage]:
            raise StateTransitionError(
                f"Invalid run stage transition: {self.stage.value} -> {to_stage.value}"
            )
        self.stage = to_stage
