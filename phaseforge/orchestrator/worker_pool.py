"""Thread pool that dispatches build/validate/fix work to a worker.

The pool is a transport and concurrency primitive only: it does not look at
what a unit of work means. Every submission resolves exactly once to a
:class:`WorkResult`, and any failure of the worker (an exception, a wrong
return type, a timeout) comes back as ``WorkResult.error`` instead of being
raised or dropped.
"""

import threading
import time
from collections import Counter
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import (
    BuildCancelledError,
    ExecutionError,
    WorkerError,
    WorkerTimeoutError,
)
from ..core.worker import (
    BuildOutput,
    BuildTarget,
    ValidationIssue,
    ValidationResult,
    Worker,
)

# How often a waiting caller checks for cancellation
_CANCEL_POLL_SECONDS = 0.05


class WorkRole(str, Enum):
    """Kind of work a unit asks the worker to do."""

    BUILD = "build"
    VALIDATE = "validate"
    FIX = "fix"


@dataclass(frozen=True)
class WorkUnit:
    """A single request to the worker."""

    role: WorkRole
    target: BuildTarget
    output: Optional[BuildOutput] = None
    issues: Tuple[ValidationIssue, ...] = ()
    timeout: Optional[float] = None


@dataclass
class WorkResult:
    """Result of a unit of work: a value or an error, never both."""

    unit: WorkUnit
    value: Any = None
    error: Optional[ExecutionError] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Submission:
    role: WorkRole
    target: str
    submitted_at: float = field(default_factory=time.monotonic)


class WorkerPool:
    """Dispatches units of work to a worker on a thread pool."""

    def __init__(
        self,
        worker: Worker,
        max_workers: int = 8,
        timeouts: Optional[Dict[WorkRole, float]] = None,
    ):
        """Initialize the pool.

        Args:
            worker: Capability that does the actual work
            max_workers: Number of worker threads
            timeouts: Default timeout in seconds per role, used when a unit
                does not carry its own
        """
        self.worker = worker
        self.max_workers = max_workers
        self.timeouts: Dict[WorkRole, Optional[float]] = {role: None for role in WorkRole}
        if timeouts:
            self.timeouts.update(timeouts)

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="phaseforge-worker"
        )
        self._lock = threading.Lock()
        self._submissions: List[_Submission] = []
        self._abandoned: List["Future[WorkResult]"] = []
        self._closed = False

    def submit(self, unit: WorkUnit) -> "Future[WorkResult]":
        """Submit a unit of work without waiting for it.

        Returns:
            Future resolving to the unit's WorkResult

        Raises:
            RuntimeError: If the pool has been shut down
        """
        if unit.timeout is None and self.timeouts.get(unit.role) is not None:
            unit = replace(unit, timeout=self.timeouts[unit.role])

        with self._lock:
            if self._closed:
                raise RuntimeError("WorkerPool has been shut down")
            self._submissions.append(_Submission(role=unit.role, target=unit.target.name))
            return self._executor.submit(self._execute, unit)

    def wait(
        self,
        future: "Future[WorkResult]",
        unit: WorkUnit,
        cancel_event: Optional[threading.Event] = None,
    ) -> WorkResult:
        """Wait for a submitted unit, enforcing its timeout.

        Args:
            future: Future returned by ``submit``
            unit: The unit that was submitted (for its timeout)
            cancel_event: When set while waiting, the wait is abandoned

        Returns:
            The unit's WorkResult; timeouts and cancellations are reported as
            errors on the result
        """
        timeout = unit.timeout if unit.timeout is not None else self.timeouts.get(unit.role)
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                return WorkResult(
                    unit=unit,
                    error=BuildCancelledError(
                        f"{unit.role.value} of '{unit.target.name}' cancelled"
                    ),
                )

            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                if not future.cancel():
                    # Python threads cannot be killed; the call runs on unobserved
                    with self._lock:
                        self._abandoned.append(future)
                return WorkResult(
                    unit=unit,
                    error=WorkerTimeoutError(
                        f"{unit.role.value} of '{unit.target.name}' timed out after {timeout}s"
                    ),
                )

            slice_seconds = remaining
            if cancel_event is not None:
                slice_seconds = (
                    _CANCEL_POLL_SECONDS
                    if remaining is None
                    else min(remaining, _CANCEL_POLL_SECONDS)
                )

            done, _ = wait_futures([future], timeout=slice_seconds)
            if done:
                try:
                    return future.result()
                except CancelledError:
                    return WorkResult(
                        unit=unit,
                        error=BuildCancelledError(
                            f"{unit.role.value} of '{unit.target.name}' cancelled"
                        ),
                    )

    def run(self, unit: WorkUnit, cancel_event: Optional[threading.Event] = None) -> WorkResult:
        """Submit a unit and wait for its result."""
        future = self.submit(unit)
        return self.wait(future, unit, cancel_event=cancel_event)

    def submission_count(
        self, role: Optional[WorkRole] = None, target: Optional[str] = None
    ) -> int:
        """Count submissions, optionally filtered by role and target name."""
        with self._lock:
            return sum(
                1
                for s in self._submissions
                if (role is None or s.role == role) and (target is None or s.target == target)
            )

    def submission_counts(self) -> Dict[str, Dict[str, int]]:
        """Submissions per target name, broken down by role."""
        with self._lock:
            counts: Dict[str, Counter] = {}
            for s in self._submissions:
                counts.setdefault(s.target, Counter())[s.role.value] += 1
            return {target: dict(counter) for target, counter in counts.items()}

    @property
    def has_abandoned_work(self) -> bool:
        """Whether a timed-out call is still running on a pool thread."""
        with self._lock:
            return any(not f.done() for f in self._abandoned)

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        """Stop accepting work and release the threads."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=exc_type is None, cancel_futures=exc_type is not None)

    def _execute(self, unit: WorkUnit) -> WorkResult:
        """Run one unit on a pool thread; never raises."""
        start = time.monotonic()
        try:
            value = self._dispatch(unit)
        except Exception as e:
            return WorkResult(
                unit=unit,
                error=WorkerError(
                    f"{unit.role.value} of '{unit.target.name}' failed: {type(e).__name__}: {e}"
                ),
                duration_seconds=time.monotonic() - start,
            )
        return WorkResult(unit=unit, value=value, duration_seconds=time.monotonic() - start)

    def _dispatch(self, unit: WorkUnit) -> Any:
        if unit.role == WorkRole.BUILD:
            value = self.worker.build(unit.target)
            expected: type = BuildOutput
        elif unit.role == WorkRole.VALIDATE:
            value = self.worker.validate(_require_output(unit), unit.target)
            expected = ValidationResult
        else:
            value = self.worker.fix(_require_output(unit), list(unit.issues), unit.target)
            expected = BuildOutput

        if not isinstance(value, expected):
            raise TypeError(
                f"worker returned {type(value).__name__}, expected {expected.__name__}"
            )
        return value


def _require_output(unit: WorkUnit) -> BuildOutput:
    if unit.output is None:
        raise ValueError(f"{unit.role.value} unit for '{unit.target.name}' carries no build output")
    return unit.output
