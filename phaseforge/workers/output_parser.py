"""Extract structured results from a command's stdout.

Commands are free to print logs around their result, so the JSON object is
looked for inside markdown code blocks first and then between the outermost
braces.
"""

import json
import re
from typing import Any, Dict, List, Optional

from ..core.worker import BuildOutput, Severity, ValidationIssue, ValidationResult

_CODE_BLOCK_PATTERN = r"```(?:json)?\s*\n([\s\S]*?)\n```"


class OutputParser:
    """Parse command output into worker records."""

    @staticmethod
    def extract_json(output: str) -> Optional[Dict[str, Any]]:
        """Find a JSON object in the output.

        Args:
            output: Raw stdout of a command

        Returns:
            The parsed object, or None if the output holds no JSON object
        """
        if not output or not output.strip():
            return None

        # 1. JSON inside code blocks
        for match in re.findall(_CODE_BLOCK_PATTERN, output, re.MULTILINE):
            try:
                content = json.loads(match.strip())
            except json.JSONDecodeError:
                continue
            if isinstance(content, dict):
                return content

        # 2. Raw object between the first { and the last }
        obj_start = output.find("{")
        obj_end = output.rfind("}")
        if obj_start != -1 and obj_end > obj_start:
            try:
                content = json.loads(output[obj_start : obj_end + 1])
            except json.JSONDecodeError:
                return None
            if isinstance(content, dict):
                return content
        return None

    @staticmethod
    def parse_build_output(
        module: str, stdout: str, default_artifacts: List[str]
    ) -> BuildOutput:
        """Turn build/fix stdout into a BuildOutput.

        A JSON object with ``artifacts``/``summary``/``data`` keys is used as
        is; any other output becomes the summary.
        """
        parsed = OutputParser.extract_json(stdout)
        if parsed is not None and any(k in parsed for k in ("artifacts", "summary", "data")):
            return BuildOutput(
                module=module,
                artifacts=[str(a) for a in parsed.get("artifacts", default_artifacts)],
                summary=parsed.get("summary"),
                data=parsed.get("data") or {},
            )

        summary = stdout.strip()
        return BuildOutput(
            module=module,
            artifacts=list(default_artifacts),
            summary=summary[-2000:] if summary else None,
        )

    @staticmethod
    def parse_validation(stdout: str, stderr: str, exit_code: int) -> ValidationResult:
        """Turn validate output into a ValidationResult.

        A JSON object with a ``passed`` key overrides the exit code.
        """
        parsed = OutputParser.extract_json(stdout)
        if parsed is not None and "passed" in parsed:
            issues = [_to_issue(raw) for raw in parsed.get("issues") or []]
            return ValidationResult(passed=bool(parsed["passed"]), issues=issues)

        if exit_code == 0:
            return ValidationResult(passed=True)

        detail = (stderr or stdout).strip()
        description = detail[-2000:] if detail else f"Validation exited with code {exit_code}"
        return ValidationResult(
            passed=False,
            issues=[ValidationIssue(severity=Severity.ERROR, description=description)],
        )


def _to_issue(raw: Any) -> ValidationIssue:
    if isinstance(raw, dict):
        return ValidationIssue(
            severity=raw.get("severity", Severity.ERROR),
            description=str(raw.get("description", raw.get("message", ""))),
            location=raw.get("location"),
        )
    return ValidationIssue(description=str(raw))
