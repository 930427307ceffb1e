"""Tests for the Orchestrator and BuildReport."""

import json
import threading
import time

import pytest

from phaseforge.config.models import PhaseForgeConfig
from phaseforge.core import (
    ModuleState,
    ModuleStateInfo,
    PlanDocument,
    PlanParseError,
    StatePersistence,
    StateTransitionError,
)
from phaseforge.orchestrator.orchestrator import Orchestrator, RunStage
from phaseforge.orchestrator.report import BuildReport, RunStatus
from phaseforge.tests.mocks import ScriptedWorker


def _states(report: BuildReport) -> dict:
    return {m.name: m.final_state for m in report.iter_modules()}


class TestOrchestratorRun:
    """Test full runs through the orchestrator."""

    def test_successful_run(self, two_phase_document, fast_config):
        """Every module and integration pass; the run is done."""
        worker = ScriptedWorker()
        orchestrator = Orchestrator(worker, config=fast_config)

        report = orchestrator.run(two_phase_document)

        assert report.overall_status == RunStatus.DONE
        assert report.plan_id == "two-phase"
        assert report.succeeded
        assert report.exit_code() == 0
        assert _states(report) == {
            "a": ModuleState.PASSED,
            "b": ModuleState.PASSED,
            "c": ModuleState.PASSED,
        }
        assert report.integration.final_state == ModuleState.PASSED
        assert report.integration.attempts == 1
        assert orchestrator.stage == RunStage.DONE
        assert orchestrator.submission_counts["integration"] == {"build": 1, "validate": 1}

    def test_accepts_path_and_document(self, plan_yaml_file, two_phase_document, fast_config):
        """Plans can be given as a file path or a PlanDocument."""
        by_path = Orchestrator(ScriptedWorker(), config=fast_config).run(plan_yaml_file)
        by_doc = Orchestrator(ScriptedWorker(), config=fast_config).run(
            PlanDocument.model_validate(two_phase_document)
        )

        assert by_path.succeeded and by_doc.succeeded
        assert by_path.plan_id == by_doc.plan_id

    def test_parse_error_aborts_before_execution(self, fast_config):
        """A rejected plan yields an aborted report with no phases."""
        worker = ScriptedWorker()
        document = {"phases": [{"modules": [{"name": "a"}, {"name": "b", "dependencies": ["a"]}]}]}

        report = Orchestrator(worker, config=fast_config).run(document)

        assert report.overall_status == RunStatus.ABORTED
        assert report.error_kind == PlanParseError.DANGLING_DEPENDENCY
        assert report.phases == []
        assert report.exit_code() == 1
        assert worker.call_count() == 0

    def test_missing_plan_file(self, tmp_path, fast_config):
        report = Orchestrator(ScriptedWorker(), config=fast_config).run(tmp_path / "missing.yaml")

        assert report.overall_status == RunStatus.ABORTED
        assert report.error_kind == PlanParseError.INVALID_DOCUMENT

    def test_integration_name_collision(self, fast_config):
        """A plan module named like the integration unit is a duplicate."""
        document = {"phases": [{"modules": [{"name": "integration"}]}]}

        report = Orchestrator(ScriptedWorker(), config=fast_config).run(document)

        assert report.error_kind == PlanParseError.DUPLICATE_MODULE

    def test_failed_phase_stops_the_run(self, three_phase_document, fast_config):
        """Later phases and integration are never submitted after a failure."""
        worker = ScriptedWorker(validations={"middle": [False]})
        orchestrator = Orchestrator(worker, config=fast_config)

        report = orchestrator.run(three_phase_document)

        assert report.overall_status == RunStatus.ABORTED
        assert "Phase 1 aborted" in report.error
        assert report.error_kind == "phase_aborted"
        assert _states(report) == {
            "base": ModuleState.PASSED,
            "middle": ModuleState.FAILED,
            "top": ModuleState.PENDING,
        }
        assert report.phases[1].modules[0].attempts == 3
        assert report.phases[1].modules[0].failure_kind == "validation_exhausted"
        assert report.integration.final_state == ModuleState.PENDING
        assert worker.call_count(module="top") == 0
        assert worker.call_count(module="integration") == 0
        assert "top" not in orchestrator.submission_counts

    def test_integration_failure_aborts(self, two_phase_document, fast_config):
        worker = ScriptedWorker(build_errors=["integration"])

        report = Orchestrator(worker, config=fast_config).run(two_phase_document)

        assert report.overall_status == RunStatus.ABORTED
        assert report.error_kind == "integration_failed"
        assert report.integration.final_state == ModuleState.FAILED
        assert all(state == ModuleState.PASSED for state in _states(report).values())
        assert not report.succeeded

    def test_report_serializes_to_json(self, two_phase_document, fast_config):
        report = Orchestrator(ScriptedWorker(), config=fast_config).run(two_phase_document)

        data = json.loads(report.to_json())

        assert data["overall_status"] == "done"
        assert data["phases"][0]["modules"][0] == {
            "name": "a",
            "final_state": "passed",
            "attempts": 1,
            "failure_kind": None,
            "error": None,
        }
        assert data["integration"]["final_state"] == "passed"

    def test_activity_log(self, two_phase_document, fast_config, activity_logger):
        """The run is logged from start to end, including transitions."""
        orchestrator = Orchestrator(
            ScriptedWorker(), config=fast_config, activity_logger=activity_logger
        )

        orchestrator.run(two_phase_document)

        events = activity_logger.get_recent_events(limit=1000)
        types = [e.event_type.value for e in events]
        assert types[0] == "run_start"
        assert types[-1] == "run_end"
        assert "integration_start" in types
        assert types.count("phase_complete") == 2
        assert "module_transition" in types
        assert all(e.plan_id == "two-phase" for e in events)

    def test_runs_with_default_config(self, two_phase_document):
        """No config means the built-in defaults, timeouts included."""
        orchestrator = Orchestrator(ScriptedWorker())

        report = orchestrator.run(two_phase_document)

        assert report.succeeded
        assert orchestrator.config.pool.timeout_seconds("validate") == 600

    def test_timed_out_call_does_not_hold_the_run(self, two_phase_document, sample_config_dict):
        """A worker call past its timeout fails the module and the run returns."""
        sample_config_dict["pool"]["build_timeout"] = "1s"
        config = PhaseForgeConfig(**sample_config_dict)
        release = threading.Event()
        worker = ScriptedWorker(block_builds={"a": release})

        start = time.monotonic()
        try:
            report = Orchestrator(worker, config=config).run(two_phase_document)
            elapsed = time.monotonic() - start
        finally:
            release.set()

        assert elapsed < 3
        assert report.overall_status == RunStatus.ABORTED
        assert report.error_kind == "phase_aborted"
        module_a, module_b = report.phases[0].modules
        assert module_a.final_state == ModuleState.FAILED
        assert module_a.failure_kind == "infrastructure"
        assert "timed out" in module_a.error
        assert module_b.final_state == ModuleState.PASSED
        assert worker.call_count(module="c") == 0

    def test_stage_transitions_are_checked(self, fast_config):
        orchestrator = Orchestrator(ScriptedWorker(), config=fast_config)

        with pytest.raises(StateTransitionError):
            orchestrator._set_stage(RunStage.DONE)


class TestCancellation:
    """Test operator cancellation."""

    def test_cancel_keeps_passed_modules(self, two_phase_document, fast_config):
        """Cancelling fails in-flight modules; passed ones stay passed."""
        release = threading.Event()
        worker = ScriptedWorker(block_builds={"b": release})
        orchestrator = Orchestrator(worker, config=fast_config)
        result = {}

        thread = threading.Thread(
            target=lambda: result.setdefault("report", orchestrator.run(two_phase_document))
        )
        thread.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                machine = orchestrator.state_machine
                if (
                    machine is not None
                    and machine.has_module("a")
                    and machine.get_state("a").current_state == ModuleState.PASSED
                ):
                    break
                time.sleep(0.01)

            orchestrator.cancel()
            thread.join(timeout=5)
        finally:
            release.set()

        report = result["report"]
        assert report.overall_status == RunStatus.ABORTED
        assert report.error_kind == "cancelled"
        assert _states(report) == {
            "a": ModuleState.PASSED,
            "b": ModuleState.FAILED,
            "c": ModuleState.PENDING,
        }
        assert report.phases[0].modules[1].failure_kind == "cancelled"
        assert worker.call_count(module="c") == 0
        assert orchestrator.cancelled

    def test_cancel_during_integration(self, two_phase_document, fast_config):
        """Cancelling while integrating is reported as a cancellation."""
        release = threading.Event()
        worker = ScriptedWorker(block_builds={"integration": release})
        orchestrator = Orchestrator(worker, config=fast_config)
        result = {}

        thread = threading.Thread(
            target=lambda: result.setdefault("report", orchestrator.run(two_phase_document))
        )
        thread.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if worker.call_count(role="build", module="integration") == 1:
                    break
                time.sleep(0.01)

            orchestrator.cancel()
            thread.join(timeout=5)
        finally:
            release.set()

        report = result["report"]
        assert report.overall_status == RunStatus.ABORTED
        assert report.error_kind == "cancelled"
        assert report.integration.final_state == ModuleState.FAILED
        assert all(state == ModuleState.PASSED for state in _states(report).values())


class TestResume:
    """Test resuming from persisted state."""

    def test_resume_skips_passed_modules(self, two_phase_document, fast_config, tmp_path):
        persistence = StatePersistence(tmp_path / "state")

        first_worker = ScriptedWorker(validations={"b": [False]})
        first = Orchestrator(first_worker, config=fast_config, persistence=persistence).run(
            two_phase_document
        )
        assert _states(first)["a"] == ModuleState.PASSED
        assert _states(first)["b"] == ModuleState.FAILED

        second_worker = ScriptedWorker()
        second = Orchestrator(second_worker, config=fast_config, persistence=persistence).run(
            two_phase_document, resume=True
        )

        assert second.succeeded
        assert second_worker.call_count(module="a") == 0
        assert second_worker.call_count(module="b") == 2
        assert second.phases[0].modules[0].attempts == 1
        build_c = second_worker.calls_for("c", role="build")[0]
        assert build_c.target.inputs["a"].summary == "built a"

    def test_without_resume_everything_reruns(self, two_phase_document, fast_config, tmp_path):
        persistence = StatePersistence(tmp_path / "state")
        Orchestrator(ScriptedWorker(), config=fast_config, persistence=persistence).run(
            two_phase_document
        )

        worker = ScriptedWorker()
        Orchestrator(worker, config=fast_config, persistence=persistence).run(two_phase_document)

        assert worker.call_count(module="a") == 2

    def test_fresh_run_discards_stale_states(self, two_phase_document, fast_config, tmp_path):
        """Without resume, states left by an earlier version of the plan are dropped."""
        persistence = StatePersistence(tmp_path / "state")
        persistence.save_state(ModuleStateInfo(module="removed", plan_id="two-phase"))

        Orchestrator(ScriptedWorker(), config=fast_config, persistence=persistence).run(
            two_phase_document
        )

        assert set(persistence.load_all_states("two-phase")) == {"a", "b", "c", "integration"}
