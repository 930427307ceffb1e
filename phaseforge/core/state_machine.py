"""State machine for managing module lifecycle."""

import sys
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .exceptions import StateTransitionError
from .module_state import (
    ModuleState,
    ModuleStateInfo,
    get_valid_next_states,
    is_valid_transition,
)

if TYPE_CHECKING:
    from .state_persistence import StatePersistence


class ModuleStateMachine:
    """
    Manages module state transitions with validation and history tracking.

    This class provides:
    - Enforced valid state transitions
    - State history tracking
    - Event hooks for state changes
    - Thread-safe operations
    - State persistence integration

    Each module entry is written only by the retry loop that owns it; the
    machine's lock protects the registry, not cross-module coordination.
    """

    def __init__(
        self,
        persistence_handler: Optional["StatePersistence"] = None,
        plan_id: Optional[str] = None,
    ):
        """
        Initialize the state machine.

        Args:
            persistence_handler: Optional handler for state persistence
            plan_id: Plan identifier stamped on every registered module
        """
        self._states: Dict[str, ModuleStateInfo] = {}
        self._lock = threading.RLock()
        self._persistence = persistence_handler
        self._plan_id = plan_id
        self._listeners: List[Callable[[str, ModuleState, ModuleState], None]] = []

    def register_module(
        self,
        module: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ModuleStateInfo:
        """
        Register a module with the state machine in PENDING state.

        Args:
            module: Unique module name
            metadata: Optional metadata for the module

        Returns:
            ModuleStateInfo object for the new module

        Raises:
            ValueError: If module already exists
        """
        with self._lock:
            if module in self._states:
                raise ValueError(f"Module {module} is already registered")

            state_info = ModuleStateInfo(
                module=module,
                plan_id=self._plan_id,
                metadata=metadata or {},
            )

            self._states[module] = state_info

            # Persist if handler is available
            if self._persistence:
                self._persistence.save_state(state_info)

            return state_info

    def transition(
        self,
        module: str,
        to_state: ModuleState,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ModuleStateInfo:
        """
        Transition a module to a new state.

        Args:
            module: Module name
            to_state: Target state
            reason: Optional reason for the transition
            metadata: Optional metadata for the transition

        Returns:
            Updated ModuleStateInfo

        Raises:
            ValueError: If module doesn't exist
            StateTransitionError: If transition is invalid
        """
        with self._lock:
            if module not in self._states:
                raise ValueError(f"Module {module} not found")

            state_info = self._states[module]
            from_state = state_info.current_state

            # Check if transition is valid
            if not is_valid_transition(from_state, to_state):
                valid_states = get_valid_next_states(from_state)
                raise StateTransitionError(
                    f"Invalid transition for module {module}: "
                    f"{from_state.value} -> {to_state.value}. "
                    f"Valid next states: {[s.value for s in valid_states]}"
                )

            state_info.add_transition(to_state, reason=reason, metadata=metadata)

            # Every validation opens a new attempt
            if to_state == ModuleState.VALIDATING:
                state_info.attempts += 1

            if self._persistence:
                self._persistence.save_state(state_info)

            self._notify_listeners(module, from_state, to_state)

            return state_info

    def fail_module(
        self,
        module: str,
        error_message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ModuleStateInfo:
        """
        Mark a module as failed with an error message.

        Args:
            module: Module name
            error_message: Error message
            metadata: Optional metadata

        Returns:
            Updated ModuleStateInfo
        """
        with self._lock:
            if module not in self._states:
                raise ValueError(f"Module {module} not found")

            state_info = self._states[module]
            state_info.error_message = error_message

            return self.transition(
                module,
                ModuleState.FAILED,
                reason=error_message,
                metadata=metadata,
            )

    def get_state(self, module: str) -> ModuleStateInfo:
        """
        Get current state information for a module.

        Raises:
            ValueError: If module doesn't exist
        """
        with self._lock:
            if module not in self._states:
                raise ValueError(f"Module {module} not found")
            return self._states[module]

    def has_module(self, module: str) -> bool:
        """Check if a module is registered."""
        with self._lock:
            return module in self._states

    def add_listener(
        self, listener: Callable[[str, ModuleState, ModuleState], None]
    ) -> None:
        """
        Add a listener for state transitions.

        Args:
            listener: Callback function(module, from_state, to_state)
        """
        with self._lock:
            self._listeners.append(listener)

    def _notify_listeners(
        self, module: str, from_state: ModuleState, to_state: ModuleState
    ) -> None:
        """Notify all registered listeners of a state transition."""
        for listener in list(self._listeners):
            try:
                listener(module, from_state, to_state)
            except Exception as e:
                # Listener errors must not break the module's lifecycle
                print(f"Error in state transition listener: {e}", file=sys.stderr)
