"""State persistence layer for saving and loading module states."""

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from .exceptions import StatePersistenceError
from .module_state import ModuleStateInfo


class StatePersistence:
    """
    Handles persistence of module states to disk.

    States are stored as JSON files, one per module, grouped in a directory
    per plan id. This allows a resuming caller to skip modules that already
    passed in an earlier run.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        """
        Initialize state persistence.

        Args:
            state_dir: Directory for state files (default: .phaseforge/state)
        """
        if state_dir is None:
            state_dir = Path.cwd() / ".phaseforge" / "state"

        self.state_dir = Path(state_dir)
        self._lock = threading.Lock()
        self._ensure_dir(self.state_dir)

    def _ensure_dir(self, directory: Path) -> None:
        """Ensure a state directory exists."""
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StatePersistenceError(
                f"Failed to create state directory {directory}: {e}"
            ) from e

    def _plan_dir(self, plan_id: Optional[str]) -> Path:
        return self.state_dir / _safe_name(plan_id or "default")

    def _get_state_file(self, plan_id: Optional[str], module: str) -> Path:
        """Get the file path for a module's state."""
        return self._plan_dir(plan_id) / f"{_safe_name(module)}.json"

    def save_state(self, state_info: ModuleStateInfo) -> None:
        """
        Save module state to disk.

        Raises:
            StatePersistenceError: If save fails
        """
        with self._lock:
            state_file = self._get_state_file(state_info.plan_id, state_info.module)
            self._ensure_dir(state_file.parent)

            try:
                state_dict = state_info.model_dump(mode="json")

                # Write atomically by writing to temp file first
                temp_file = state_file.with_suffix(".tmp")
                with open(temp_file, "w", encoding="utf-8") as f:
                    json.dump(state_dict, f, indent=2, default=str)

                # Rename to final location (atomic on POSIX systems)
                temp_file.replace(state_file)

            except Exception as e:
                raise StatePersistenceError(
                    f"Failed to save state for module {state_info.module}: {e}"
                ) from e

    def load_state(self, plan_id: Optional[str], module: str) -> Optional[ModuleStateInfo]:
        """
        Load module state from disk.

        Returns:
            ModuleStateInfo if found, None otherwise

        Raises:
            StatePersistenceError: If load fails
        """
        with self._lock:
            state_file = self._get_state_file(plan_id, module)

            if not state_file.exists():
                return None

            try:
                with open(state_file, "r", encoding="utf-8") as f:
                    return ModuleStateInfo.model_validate(json.load(f))
            except Exception as e:
                raise StatePersistenceError(
                    f"Failed to load state for module {module}: {e}"
                ) from e

    def load_all_states(self, plan_id: Optional[str]) -> Dict[str, ModuleStateInfo]:
        """
        Load all module states persisted for a plan.

        Returns:
            Dictionary mapping module name to ModuleStateInfo

        Raises:
            StatePersistenceError: If a state file is unreadable
        """
        with self._lock:
            states: Dict[str, ModuleStateInfo] = {}
            plan_dir = self._plan_dir(plan_id)

            if not plan_dir.exists():
                return states

            for state_file in sorted(plan_dir.glob("*.json")):
                try:
                    with open(state_file, "r", encoding="utf-8") as f:
                        state_info = ModuleStateInfo.model_validate(json.load(f))
                except Exception as e:
                    raise StatePersistenceError(
                        f"Failed to load state from {state_file}: {e}"
                    ) from e
                states[state_info.module] = state_info

            return states

    def clear_plan(self, plan_id: Optional[str]) -> int:
        """
        Remove every persisted state of a plan.

        Returns:
            Number of states cleared
        """
        with self._lock:
            plan_dir = self._plan_dir(plan_id)
            if not plan_dir.exists():
                return 0

            try:
                count = 0
                for state_file in plan_dir.glob("*.json"):
                    state_file.unlink()
                    count += 1
                return count
            except Exception as e:
                raise StatePersistenceError(
                    f"Failed to clear states from {plan_dir}: {e}"
                ) from e


def _safe_name(name: str) -> str:
    return name.replace("/", "_").replace("\\", "_")
