"""
PhaseForge: Phased, dependency-aware build orchestration

Coordinates independent units of work ("modules") across sequential phases,
drives a bounded build/validate/fix loop for each one, and merges the
results through a final integration unit.
"""

__version__ = "0.1.0"

from phaseforge.core.exceptions import PhaseForgeError

__all__ = ["PhaseForgeError", "__version__"]
