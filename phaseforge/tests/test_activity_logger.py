"""Tests for the activity logger."""

import json
import threading
from pathlib import Path

from phaseforge.core import BuildOutput, Iteration, ModuleState, ValidationIssue, ValidationResult
from phaseforge.tracking import ActivityLogger, EventType, new_session_id


class TestActivityLogger:
    """Test ActivityLogger."""

    def test_writes_jsonl_per_session(self, tmp_path: Path):
        """Events go to sessions/<id>/activity.jsonl, one JSON object per line."""
        logger = ActivityLogger("session-1", tmp_path, plan_id="plan-x")

        logger.log_run_start("plan-x", phase_count=2, module_count=3)
        logger.log_module_start("auth", phase_index=0)

        log_file = tmp_path / "sessions" / "session-1" / "activity.jsonl"
        assert log_file == logger.main_log_file
        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2

        first = json.loads(lines[0])
        assert first["event_type"] == "run_start"
        assert first["plan_id"] == "plan-x"
        assert first["data"] == {"phase_count": 2, "module_count": 3}

    def test_level_filtering(self, tmp_path: Path):
        """Debug events only appear at DEBUG level."""
        info_logger = ActivityLogger("info", tmp_path, level="INFO")
        debug_logger = ActivityLogger("debug", tmp_path, level="DEBUG")

        for logger in (info_logger, debug_logger):
            logger.log_transition("auth", ModuleState.PENDING, ModuleState.BUILDING)
            logger.log_debug("details")
            logger.log_info("hello")

        assert [e.event_type for e in info_logger.get_recent_events()] == [EventType.INFO]
        assert len(debug_logger.get_recent_events()) == 3

    def test_error_level_keeps_failures(self, tmp_path: Path):
        logger = ActivityLogger("errors", tmp_path, level="ERROR")

        logger.log_info("ignored")
        logger.log_module_fail("auth", "infrastructure", "worker gone", attempts=0, duration_ms=5)
        logger.log_phase_aborted(0, ["auth"], duration_ms=10)

        types = [e.event_type for e in logger.get_recent_events()]
        assert types == [EventType.MODULE_FAIL, EventType.PHASE_ABORTED]

    def test_iteration_event(self, activity_logger):
        """Iterations carry their attempt, verdict and issues."""
        iteration = Iteration(
            module_name="auth",
            attempt_number=2,
            build_result=BuildOutput(module="auth"),
            validation_result=ValidationResult(
                passed=False, issues=[ValidationIssue(description="missing tests")]
            ),
        )

        activity_logger.log_iteration(iteration)

        event = activity_logger.get_module_events("auth")[0]
        assert event.event_type == EventType.ITERATION
        assert event.data["attempt"] == 2
        assert event.data["passed"] is False
        assert event.data["issues"][0]["description"] == "missing tests"

    def test_module_filter_and_limit(self, activity_logger):
        for i in range(5):
            activity_logger.log_info(f"message {i}", module="a" if i % 2 else "b")

        assert len(activity_logger.get_module_events("a")) == 2
        recent = activity_logger.get_recent_events(limit=2)
        assert [e.message for e in recent] == ["message 3", "message 4"]

    def test_concurrent_writes(self, activity_logger):
        """Concurrent writers never interleave lines."""

        def write(n: int) -> None:
            for i in range(20):
                activity_logger.log_info(f"{n}-{i}", module=f"m{n}")

        threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(activity_logger.get_recent_events(limit=1000)) == 160

    def test_session_ids_are_unique(self):
        assert new_session_id() != new_session_id()
