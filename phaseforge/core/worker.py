"""Worker capability and the records exchanged with it.

A worker is whatever actually builds, validates and fixes a module: an
automated test runner, a remote agent, a person at a terminal. The
orchestrator only relies on the three methods of :class:`Worker`.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from .module_state import MAX_ATTEMPTS


class Severity(str, Enum):
    """Severity of a validation issue."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssue(BaseModel):
    """A single problem reported by validation."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = Severity.ERROR
    description: str
    location: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating one build output."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    issues: List[ValidationIssue] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == Severity.ERROR)


class BuildOutput(BaseModel):
    """Whatever a build or fix produced for a module."""

    model_config = ConfigDict(frozen=True)

    module: str
    artifacts: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class BuildTarget(BaseModel):
    """Everything a worker is told about the module it works on.

    ``inputs`` holds the outputs of the target's dependencies; only modules
    that already passed ever appear there.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    scope: str
    expected_artifacts: Tuple[str, ...] = ()
    dependencies: Tuple[str, ...] = ()
    inputs: Dict[str, BuildOutput] = Field(default_factory=dict)
    is_integration: bool = False


class Iteration(BaseModel):
    """One validate pass of a module's retry loop, kept for audit."""

    model_config = ConfigDict(frozen=True)

    module_name: str
    attempt_number: int = Field(ge=1, le=MAX_ATTEMPTS)
    build_result: BuildOutput
    validation_result: ValidationResult
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class Worker(Protocol):
    """Capability that performs build, validate and fix work.

    Raising from any method signals an infrastructure failure (the worker
    could not do the work), never a quality verdict.
    """

    def build(self, target: BuildTarget) -> BuildOutput:
        """Build the target from its scope and dependency inputs."""
        ...

    def validate(self, output: BuildOutput, target: BuildTarget) -> ValidationResult:
        """Validate a build output against the target's scope."""
        ...

    def fix(
        self, output: BuildOutput, issues: List[ValidationIssue], target: BuildTarget
    ) -> BuildOutput:
        """Produce a corrected output addressing the given issues."""
        ...
