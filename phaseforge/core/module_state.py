"""Module lifecycle states and transitions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModuleState(str, Enum):
    """Module lifecycle states."""

    PENDING = "pending"
    BUILDING = "building"
    VALIDATING = "validating"
    FIXING = "fixing"
    PASSED = "passed"
    FAILED = "failed"


class StateTransition(BaseModel):
    """Represents a state transition event."""

    from_state: ModuleState
    to_state: ModuleState
    timestamp: datetime = Field(default_factory=_utcnow)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ModuleStateInfo(BaseModel):
    """Complete state information for a module."""

    module: str
    current_state: ModuleState = ModuleState.PENDING
    plan_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    history: List[StateTransition] = Field(default_factory=list)
    error_message: Optional[str] = None
    attempts: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def add_transition(
        self,
        to_state: ModuleState,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Add a state transition to history."""
        transition = StateTransition(
            from_state=self.current_state,
            to_state=to_state,
            reason=reason,
            metadata=metadata or {},
        )
        self.history.append(transition)
        self.current_state = to_state
        self.updated_at = _utcnow()


# Hard ceiling on validate passes per module (two fixes in between)
MAX_ATTEMPTS = 3


# Valid state transitions
VALID_TRANSITIONS: Dict[ModuleState, List[ModuleState]] = {
    ModuleState.PENDING: [ModuleState.BUILDING, ModuleState.FAILED],
    ModuleState.BUILDING: [ModuleState.VALIDATING, ModuleState.FAILED],
    ModuleState.VALIDATING: [
        ModuleState.PASSED,
        ModuleState.FIXING,  # Validation failed, budget left
        ModuleState.FAILED,
    ],
    ModuleState.FIXING: [ModuleState.VALIDATING, ModuleState.FAILED],
    ModuleState.PASSED: [],  # Terminal state
    ModuleState.FAILED: [],  # Terminal state
}


def is_valid_transition(from_state: ModuleState, to_state: ModuleState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def get_valid_next_states(current_state: ModuleState) -> List[ModuleState]:
    """Get list of valid next states for a given state."""
    return VALID_TRANSITIONS.get(current_state, [])


def is_terminal_state(state: ModuleState) -> bool:
    """Check if a state is terminal (no further transitions allowed)."""
    return len(VALID_TRANSITIONS.get(state, [])) == 0
