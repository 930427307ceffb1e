"""Worker that runs shell commands for build, validate and fix.

Each call runs one command with the target described in ``PHASEFORGE_*``
environment variables:

- ``PHASEFORGE_ROLE``: build, validate or fix
- ``PHASEFORGE_MODULE``, ``PHASEFORGE_SCOPE``
- ``PHASEFORGE_DEPENDENCIES``, ``PHASEFORGE_EXPECTED_ARTIFACTS`` (comma separated)
- ``PHASEFORGE_IS_INTEGRATION``: "1" or "0"
- ``PHASEFORGE_INPUTS``: JSON object of dependency outputs
- ``PHASEFORGE_OUTPUT``: JSON of the output under validation or fix
- ``PHASEFORGE_ISSUES``: JSON list of issues to fix
"""

import json
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..config.models import WorkerConfig
from ..core.exceptions import ConfigurationError, WorkerError, WorkerTimeoutError
from ..core.worker import BuildOutput, BuildTarget, ValidationIssue, ValidationResult
from .output_parser import OutputParser


@dataclass
class CommandResult:
    """Result of running one command."""

    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandWorker:
    """Execute build/validate/fix as shell commands."""

    def __init__(
        self,
        build_command: str,
        validate_command: str,
        fix_command: str,
        working_dir: Optional[Path] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the command worker.

        Args:
            build_command: Shell command that builds a module
            validate_command: Shell command that validates a build output
            fix_command: Shell command that fixes an output given issues
            working_dir: Working directory for commands (default: cwd)
            timeout: Per-command timeout in seconds (None waits forever;
                the worker pool enforces its own timeouts as well)
        """
        self.build_command = build_command
        self.validate_command = validate_command
        self.fix_command = fix_command
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: WorkerConfig, timeout: Optional[float] = None) -> "CommandWorker":
        """Create a worker from the ``worker`` config section.

        Raises:
            ConfigurationError: If any of the three commands is missing
        """
        if not config.is_configured:
            raise ConfigurationError(
                "worker.build_command, worker.validate_command and "
                "worker.fix_command must all be set to use the command worker"
            )
        return cls(
            build_command=config.build_command,
            validate_command=config.validate_command,
            fix_command=config.fix_command,
            working_dir=config.get_working_dir(),
            timeout=timeout,
        )

    def build(self, target: BuildTarget) -> BuildOutput:
        result = self._run_checked("build", self.build_command, target)
        return OutputParser.parse_build_output(
            target.name, result.stdout, list(target.expected_artifacts)
        )

    def validate(self, output: BuildOutput, target: BuildTarget) -> ValidationResult:
        result = self._run("validate", self.validate_command, target, output=output)
        return OutputParser.parse_validation(result.stdout, result.stderr, result.exit_code)

    def fix(
        self, output: BuildOutput, issues: List[ValidationIssue], target: BuildTarget
    ) -> BuildOutput:
        result = self._run_checked("fix", self.fix_command, target, output=output, issues=issues)
        return OutputParser.parse_build_output(target.name, result.stdout, output.artifacts)

    def _run_checked(
        self,
        role: str,
        command: str,
        target: BuildTarget,
        output: Optional[BuildOutput] = None,
        issues: Optional[List[ValidationIssue]] = None,
    ) -> CommandResult:
        """Run a command; a non-zero exit is a worker error."""
        result = self._run(role, command, target, output=output, issues=issues)
        if not result.success:
            message = f"{role} command for '{target.name}' exited with code {result.exit_code}"
            if result.stderr:
                message += f": {result.stderr.strip()[:500]}"
            raise WorkerError(message)
        return result

    def _run(
        self,
        role: str,
        command: str,
        target: BuildTarget,
        output: Optional[BuildOutput] = None,
        issues: Optional[List[ValidationIssue]] = None,
    ) -> CommandResult:
        """Run one command.

        Raises:
            WorkerTimeoutError: If the command exceeds the timeout
            WorkerError: If the command cannot be started
        """
        env = os.environ.copy()
        env.update(self._target_env(role, target, output, issues))

        start_time = time.time()
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(self.working_dir),
                env=env,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            raise WorkerError(f"Failed to start {role} command for '{target.name}': {e}") from e

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            _kill_process_group(process)
            process.communicate()
            raise WorkerTimeoutError(
                f"{role} command for '{target.name}' timed out after {self.timeout}s"
            ) from e

        return CommandResult(
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=process.returncode,
            duration_seconds=time.time() - start_time,
        )

    @staticmethod
    def _target_env(
        role: str,
        target: BuildTarget,
        output: Optional[BuildOutput],
        issues: Optional[List[ValidationIssue]],
    ) -> Dict[str, str]:
        env = {
            "PHASEFORGE_ROLE": role,
            "PHASEFORGE_MODULE": target.name,
            "PHASEFORGE_SCOPE": target.scope,
            "PHASEFORGE_DEPENDENCIES": ",".join(target.dependencies),
            "PHASEFORGE_EXPECTED_ARTIFACTS": ",".join(target.expected_artifacts),
            "PHASEFORGE_IS_INTEGRATION": "1" if target.is_integration else "0",
            "PHASEFORGE_INPUTS": json.dumps(
                {name: out.model_dump(mode="json") for name, out in target.inputs.items()}
            ),
        }
        if output is not None:
            env["PHASEFORGE_OUTPUT"] = output.model_dump_json()
        if issues is not None:
            env["PHASEFORGE_ISSUES"] = json.dumps([i.model_dump(mode="json") for i in issues])
        return env


def _kill_process_group(process: subprocess.Popen) -> None:
    """Kill the shell and everything it started."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        process.kill()
