"""Final report of an orchestrator run."""

import json
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..core.build_state import BuildState
from ..core.module_state import ModuleState


class RunStatus(str, Enum):
    """Overall status of a run."""

    DONE = "done"
    ABORTED = "aborted"


class ModuleReport(BaseModel):
    """Terminal state of one module."""

    name: str
    final_state: ModuleState
    attempts: int = 0
    failure_kind: Optional[str] = None
    error: Optional[str] = None


class PhaseReport(BaseModel):
    """Modules of one phase, in plan order."""

    index: int
    name: Optional[str] = None
    modules: List[ModuleReport] = Field(default_factory=list)


class IntegrationReport(BaseModel):
    """Terminal state of the integration unit."""

    name: str = "integration"
    final_state: ModuleState = ModuleState.PENDING
    attempts: int = 0
    error: Optional[str] = None


class BuildReport(BaseModel):
    """What happened to every module of a run, even an aborted one."""

    plan_id: Optional[str] = None
    phases: List[PhaseReport] = Field(default_factory=list)
    integration: IntegrationReport = Field(default_factory=IntegrationReport)
    overall_status: RunStatus
    error: Optional[str] = None
    error_kind: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def from_build_state(
        cls,
        build_state: BuildState,
        overall_status: RunStatus,
        integration_name: str = "integration",
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        duration_seconds: float = 0.0,
    ) -> "BuildReport":
        """Snapshot a build state into a report."""
        phases = []
        for phase in build_state.plan.phases:
            modules = []
            for module in phase.modules:
                outcome = build_state.get(module.name)
                modules.append(
                    ModuleReport(
                        name=module.name,
                        final_state=outcome.final_state,
                        attempts=outcome.attempts,
                        failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
                        error=outcome.error_message,
                    )
                )
            phases.append(PhaseReport(index=phase.index, name=phase.name, modules=modules))

        integration = IntegrationReport(name=integration_name)
        outcome = build_state.integration
        if outcome is not None:
            integration = IntegrationReport(
                name=integration_name,
                final_state=outcome.final_state,
                attempts=outcome.attempts,
                error=outcome.error_message,
            )

        return cls(
            plan_id=build_state.plan.id,
            phases=phases,
            integration=integration,
            overall_status=overall_status,
            error=error,
            error_kind=error_kind,
            duration_seconds=duration_seconds,
        )

    def iter_modules(self):
        for phase in self.phases:
            yield from phase.modules

    @property
    def succeeded(self) -> bool:
        """True when the run is done and every terminal state is passed."""
        if self.overall_status != RunStatus.DONE:
            return False
        if self.integration.final_state != ModuleState.PASSED:
            return False
        return all(m.final_state == ModuleState.PASSED for m in self.iter_modules())

    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
