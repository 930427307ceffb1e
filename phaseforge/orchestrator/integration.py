"""Integration stage: a synthetic final module that depends on everything."""

from typing import Optional

from ..config.models import IntegrationConfig
from ..core.build_state import BuildState, ModuleOutcome
from ..core.exceptions import PhaseAbortedError
from ..core.plan_model import ModuleSpec
from ..tracking.activity_logger import ActivityLogger
from .retry_loop import RetryLoopController


class IntegrationStage:
    """Runs the integration unit through the regular retry loop."""

    def __init__(
        self,
        controller: RetryLoopController,
        config: Optional[IntegrationConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.controller = controller
        self.config = config or IntegrationConfig()
        self.activity_logger = activity_logger

    def build_spec(self, build_state: BuildState) -> ModuleSpec:
        """Describe the integration unit for the plan in ``build_state``."""
        artifacts = []
        for module in build_state.plan.iter_modules():
            for artifact in module.expected_artifacts:
                if artifact not in artifacts:
                    artifacts.append(artifact)

        return ModuleSpec(
            name=self.config.name,
            scope=self.config.scope,
            expected_artifacts=tuple(artifacts),
            dependencies=frozenset(build_state.plan.module_names),
        )

    def run(self, build_state: BuildState) -> ModuleOutcome:
        """Run integration and record its outcome.

        Raises:
            PhaseAbortedError: If any plan module has not passed
        """
        not_passed = [
            name for name, outcome in build_state.modules.items() if not outcome.passed
        ]
        if not_passed:
            raise PhaseAbortedError(
                build_state.phase_cursor,
                not_passed,
                message=(
                    "Integration requires every module to pass; not passed: "
                    + ", ".join(not_passed)
                ),
            )

        spec = self.build_spec(build_state)
        target = spec.to_target(
            inputs=build_state.passed_outputs(),
            is_integration=True,
        )
        if self.activity_logger:
            self.activity_logger.log_integration_start(spec.name, list(target.dependencies))

        outcome = self.controller.run(target)
        build_state.record_integration(outcome)
        return outcome
