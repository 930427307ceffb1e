"""Shared pytest fixtures and utilities for PhaseForge tests."""

from pathlib import Path
from typing import Generator

import pytest
import yaml

from phaseforge.config.models import PhaseForgeConfig
from phaseforge.core import ModuleStateMachine, PlanParser, StatePersistence
from phaseforge.core.plan_model import Plan
from phaseforge.orchestrator.worker_pool import WorkerPool, WorkRole
from phaseforge.tracking.activity_logger import ActivityLogger
from phaseforge.tests.mocks import ScriptedWorker


# ============================================================================
# Plan Fixtures
# ============================================================================


@pytest.fixture
def two_phase_document() -> dict:
    """Two phases, three modules: a and b in phase 0, c (needs both) in phase 1."""
    return {
        "id": "two-phase",
        "phases": [
            {
                "name": "foundation",
                "modules": [
                    {"name": "a", "scope": "Build a", "expectedArtifacts": ["a.py"]},
                    {"name": "b", "scope": "Build b", "expectedArtifacts": ["b.py"]},
                ],
            },
            {
                "name": "service",
                "modules": [
                    {
                        "name": "c",
                        "scope": "Build c on a and b",
                        "dependencies": ["a", "b"],
                        "expectedArtifacts": ["c.py"],
                    }
                ],
            },
        ],
    }


@pytest.fixture
def three_phase_document() -> dict:
    """A chain of three single-module phases."""
    return {
        "id": "chain",
        "phases": [
            {"modules": [{"name": "base", "scope": "Base layer"}]},
            {"modules": [{"name": "middle", "scope": "Middle", "dependencies": ["base"]}]},
            {"modules": [{"name": "top", "scope": "Top", "dependencies": ["middle"]}]},
        ],
    }


@pytest.fixture
def two_phase_plan(two_phase_document: dict) -> Plan:
    """Parsed two-phase plan."""
    return PlanParser().parse(two_phase_document)


@pytest.fixture
def plan_yaml_file(tmp_path: Path, two_phase_document: dict) -> Generator[Path, None, None]:
    """Write the two-phase plan to a YAML file.

    Yields:
        Path to the plan file
    """
    plan_file = tmp_path / "plan.yaml"
    with open(plan_file, "w", encoding="utf-8") as f:
        yaml.dump(two_phase_document, f, default_flow_style=False)

    yield plan_file


# ============================================================================
# Worker and Pool Fixtures
# ============================================================================


@pytest.fixture
def scripted_worker() -> ScriptedWorker:
    """Worker that passes every module on the first validation."""
    return ScriptedWorker()


@pytest.fixture
def worker_pool(scripted_worker: ScriptedWorker) -> Generator[WorkerPool, None, None]:
    """Worker pool over the scripted worker with short timeouts.

    Yields:
        WorkerPool, shut down after the test
    """
    pool = WorkerPool(
        scripted_worker,
        max_workers=8,
        timeouts={role: 5.0 for role in WorkRole},
    )
    yield pool
    pool.shutdown()


# ============================================================================
# State and Logging Fixtures
# ============================================================================


@pytest.fixture
def state_machine() -> ModuleStateMachine:
    """Create a state machine without persistence."""
    return ModuleStateMachine(plan_id="test-plan")


@pytest.fixture
def state_persistence(tmp_path: Path) -> StatePersistence:
    """Create state persistence in a temporary directory."""
    return StatePersistence(state_dir=tmp_path / "state")


@pytest.fixture
def state_machine_with_persistence(state_persistence: StatePersistence) -> ModuleStateMachine:
    """Create a state machine that saves every transition."""
    return ModuleStateMachine(persistence_handler=state_persistence, plan_id="test-plan")


@pytest.fixture
def activity_logger(tmp_path: Path) -> ActivityLogger:
    """Activity logger writing under a temporary logs directory."""
    return ActivityLogger("test-session", tmp_path / "logs", level="DEBUG")


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_config_dict(tmp_path: Path) -> dict:
    """Sample configuration dictionary."""
    return {
        "pool": {
            "max_workers": 4,
            "build_timeout": "5s",
            "validate_timeout": "5s",
            "fix_timeout": "5s",
        },
        "integration": {"name": "integration", "scope": "Assemble everything"},
        "logging": {"enabled": True, "level": "INFO", "output_dir": str(tmp_path / "logs")},
        "state": {"persist": False, "state_dir": str(tmp_path / "state")},
    }


@pytest.fixture
def fast_config(sample_config_dict: dict) -> PhaseForgeConfig:
    """Configuration with short timeouts for orchestrator tests."""
    return PhaseForgeConfig(**sample_config_dict)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may be slower)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test (fast, isolated)"
    )
