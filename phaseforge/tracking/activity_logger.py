"""Activity logging for PhaseForge runs."""

import json
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from phaseforge.core.module_state import ModuleState
from phaseforge.core.worker import Iteration


class EventType(str, Enum):
    """Types of events that can be logged."""

    RUN_START = "run_start"
    RUN_END = "run_end"
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    PHASE_ABORTED = "phase_aborted"
    MODULE_START = "module_start"
    MODULE_TRANSITION = "module_transition"
    ITERATION = "iteration"
    MODULE_COMPLETE = "module_complete"
    MODULE_FAIL = "module_fail"
    INTEGRATION_START = "integration_start"
    ERROR = "error"
    INFO = "info"
    DEBUG = "debug"


_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

_EVENT_LEVELS = {
    EventType.DEBUG: "DEBUG",
    EventType.MODULE_TRANSITION: "DEBUG",
    EventType.ERROR: "ERROR",
    EventType.MODULE_FAIL: "ERROR",
    EventType.PHASE_ABORTED: "ERROR",
}


def new_session_id() -> str:
    """Generate a sortable, unique session identifier."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{timestamp}-{uuid.uuid4().hex[:8]}"


class ActivityEvent(BaseModel):
    """Activity event model."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = Field(..., description="Type of event")
    session_id: str = Field(..., description="Session identifier")
    plan_id: Optional[str] = Field(None, description="Plan identifier")
    module: Optional[str] = Field(None, description="Module name")
    phase_index: Optional[int] = Field(None, description="Phase index")
    message: str = Field(..., description="Event message")

    data: Dict[str, Any] = Field(
        default_factory=dict, description="Additional event data"
    )

    duration_ms: Optional[int] = Field(None, description="Duration in milliseconds")


class ActivityLogger:
    """Thread-safe activity logger for PhaseForge runs."""

    def __init__(
        self,
        session_id: str,
        logs_dir: Path,
        level: str = "INFO",
        plan_id: Optional[str] = None,
    ):
        """Initialize activity logger.

        Args:
            session_id: Current session identifier
            logs_dir: Directory to store log files
            level: Minimum level written (DEBUG, INFO, WARN, ERROR)
            plan_id: Plan identifier stamped on every event
        """
        self.session_id = session_id
        self.logs_dir = Path(logs_dir)
        self.session_log_dir = self.logs_dir / "sessions" / session_id
        self.level = level.upper()
        self.plan_id = plan_id

        self.session_log_dir.mkdir(parents=True, exist_ok=True)

        self.main_log_file = self.session_log_dir / "activity.jsonl"

        # Thread lock for safe concurrent logging
        self._lock = threading.Lock()

    def is_enabled_for(self, event_type: EventType) -> bool:
        """Whether events of this type pass the configured level."""
        event_level = _EVENT_LEVELS.get(event_type, "INFO")
        return _LEVELS[event_level] >= _LEVELS.get(self.level, 20)

    def log_event(
        self,
        event_type: EventType,
        message: str,
        module: Optional[str] = None,
        phase_index: Optional[int] = None,
        duration_ms: Optional[int] = None,
        **data: Any,
    ) -> None:
        """Log a general activity event.

        Args:
            event_type: Type of event
            message: Event message
            module: Optional module name
            phase_index: Optional phase index
            duration_ms: Optional duration
            **data: Additional event data
        """
        if not self.is_enabled_for(event_type):
            return

        event = ActivityEvent(
            event_type=event_type,
            session_id=self.session_id,
            plan_id=self.plan_id,
            module=module,
            phase_index=phase_index,
            message=message,
            data=data,
            duration_ms=duration_ms,
        )
        self._write_event(self.main_log_file, event)

    def log_run_start(self, plan_id: str, phase_count: int, module_count: int) -> None:
        """Log the start of a plan run."""
        self.plan_id = plan_id
        self.log_event(
            EventType.RUN_START,
            f"Run started for plan {plan_id}: {phase_count} phase(s), {module_count} module(s)",
            phase_count=phase_count,
            module_count=module_count,
        )

    def log_run_end(self, status: str, duration_ms: int, **stats: Any) -> None:
        """Log the end of a plan run."""
        self.log_event(
            EventType.RUN_END,
            f"Run finished: {status}",
            duration_ms=duration_ms,
            status=status,
            **stats,
        )

    def log_phase_start(self, phase_index: int, modules: List[str]) -> None:
        """Log phase start event."""
        self.log_event(
            EventType.PHASE_START,
            f"Phase {phase_index} started with {len(modules)} module(s)",
            phase_index=phase_index,
            modules=modules,
        )

    def log_phase_complete(self, phase_index: int, duration_ms: int) -> None:
        """Log phase completion event."""
        self.log_event(
            EventType.PHASE_COMPLETE,
            f"Phase {phase_index} passed",
            phase_index=phase_index,
            duration_ms=duration_ms,
        )

    def log_phase_aborted(
        self, phase_index: int, failed_modules: List[str], duration_ms: int
    ) -> None:
        """Log phase abort event."""
        self.log_event(
            EventType.PHASE_ABORTED,
            f"Phase {phase_index} aborted: {', '.join(failed_modules)}",
            phase_index=phase_index,
            duration_ms=duration_ms,
            failed_modules=failed_modules,
        )

    def log_module_start(self, module: str, phase_index: Optional[int] = None) -> None:
        """Log module start event."""
        self.log_event(
            EventType.MODULE_START,
            f"Module started: {module}",
            module=module,
            phase_index=phase_index,
        )

    def log_transition(
        self, module: str, from_state: ModuleState, to_state: ModuleState
    ) -> None:
        """Log a module state transition (usable as a state machine listener)."""
        self.log_event(
            EventType.MODULE_TRANSITION,
            f"{module}: {from_state.value} -> {to_state.value}",
            module=module,
            from_state=from_state.value,
            to_state=to_state.value,
        )

    def log_iteration(self, iteration: Iteration) -> None:
        """Log one validate pass of a module."""
        result = iteration.validation_result
        verdict = "passed" if result.passed else f"failed with {len(result.issues)} issue(s)"
        self.log_event(
            EventType.ITERATION,
            f"{iteration.module_name} attempt {iteration.attempt_number}: {verdict}",
            module=iteration.module_name,
            attempt=iteration.attempt_number,
            passed=result.passed,
            issues=[issue.model_dump(mode="json") for issue in result.issues],
        )

    def log_module_complete(self, module: str, attempts: int, duration_ms: int) -> None:
        """Log module completion event."""
        self.log_event(
            EventType.MODULE_COMPLETE,
            f"Module passed: {module}",
            module=module,
            duration_ms=duration_ms,
            attempts=attempts,
        )

    def log_module_fail(
        self, module: str, kind: str, error: str, attempts: int, duration_ms: int
    ) -> None:
        """Log module failure event."""
        self.log_event(
            EventType.MODULE_FAIL,
            f"Module failed ({kind}): {error}",
            module=module,
            duration_ms=duration_ms,
            kind=kind,
            error=error,
            attempts=attempts,
        )

    def log_integration_start(self, module: str, dependencies: List[str]) -> None:
        """Log integration stage start."""
        self.log_event(
            EventType.INTEGRATION_START,
            f"Integration started over {len(dependencies)} module(s)",
            module=module,
            dependencies=dependencies,
        )

    def log_error(self, error: str, module: Optional[str] = None, **kwargs: Any) -> None:
        """Log error event."""
        self.log_event(EventType.ERROR, error, module=module, error=error, **kwargs)

    def log_info(self, message: str, module: Optional[str] = None, **kwargs: Any) -> None:
        """Log info event."""
        self.log_event(EventType.INFO, message, module=module, **kwargs)

    def log_debug(self, message: str, module: Optional[str] = None, **kwargs: Any) -> None:
        """Log debug event."""
        self.log_event(EventType.DEBUG, message, module=module, **kwargs)

    def get_module_events(self, module: str) -> List[ActivityEvent]:
        """Get all events for a specific module."""
        return [event for event in self._read_events() if event.module == module]

    def get_recent_events(self, limit: int = 100) -> List[ActivityEvent]:
        """Get the most recent events of the session."""
        return self._read_events()[-limit:]

    def _read_events(self) -> List[ActivityEvent]:
        events = []

        with self._lock:
            if not self.main_log_file.exists():
                return events

            with open(self.main_log_file, "r", encoding="utf-8") as f:
                lines = f.readlines()

        for line in lines:
            try:
                events.append(ActivityEvent(**json.loads(line.strip())))
            except (json.JSONDecodeError, ValueError):
                continue

        return events

    def _write_event(
        self,
        log_file: Path,
        event: Union[BaseModel, Dict[str, Any]],
    ) -> None:
        """Write event to log file in a thread-safe manner."""
        if isinstance(event, BaseModel):
            event_dict = event.model_dump(mode="json")
        else:
            event_dict = dict(event)

        if "timestamp" not in event_dict:
            event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

        with self._lock:
            with open(log_file, "a", encoding="utf-8") as f:
                json.dump(event_dict, f, default=str, separators=(",", ":"))
                f.write("\n")
