"""PhaseForge test suite."""
