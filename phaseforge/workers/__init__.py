"""Ready-made worker implementations."""

from .command_worker import CommandResult, CommandWorker
from .output_parser import OutputParser

__all__ = ["CommandResult", "CommandWorker", "OutputParser"]
