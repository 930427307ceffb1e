"""Command-line interface for PhaseForge."""
