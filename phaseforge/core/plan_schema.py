"""Plan document schema and loading.

The plan document is the declarative input of a build: an ordered list of
phases, each listing the modules it builds. These models only check the
shape of the document; structural rules (dependency ordering, unique names)
belong to :mod:`phaseforge.core.plan_parser`.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import PlanParseError


class ModuleDocument(BaseModel):
    """A module entry as written in a plan document."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Unique module name")
    scope: str = Field(default="", description="Opaque description handed to workers")
    dependencies: List[str] = Field(
        default_factory=list, description="Names of modules from earlier phases"
    )
    expected_artifacts: List[str] = Field(
        default_factory=list,
        alias="expectedArtifacts",
        description="Identifiers of artifacts the module should produce",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate module name."""
        if not v.strip():
            raise ValueError("Module name cannot be empty")
        return v.strip()

    @field_validator("dependencies", "expected_artifacts")
    @classmethod
    def validate_identifiers(cls, v: List[str]) -> List[str]:
        """Strip identifiers and reject blank ones."""
        for item in v:
            if not item.strip():
                raise ValueError("Identifiers cannot be empty")
        return [item.strip() for item in v]


class PhaseDocument(BaseModel):
    """A phase entry as written in a plan document."""

    name: Optional[str] = Field(None, description="Optional display name")
    modules: List[ModuleDocument] = Field(..., description="Modules built in this phase")

    @field_validator("modules")
    @classmethod
    def validate_modules(cls, v: List[ModuleDocument]) -> List[ModuleDocument]:
        """A phase must build something."""
        if not v:
            raise ValueError("A phase must declare at least one module")
        return v


class PlanDocument(BaseModel):
    """Root of a plan document."""

    id: Optional[str] = Field(None, description="Plan identifier")
    phases: List[PhaseDocument] = Field(default_factory=list, description="Ordered phases")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Optional[str]) -> Optional[str]:
        """Validate plan ID."""
        if v is not None and not v.strip():
            raise ValueError("Plan id cannot be blank")
        return v.strip() if v is not None else v


def validate_plan_document(data: Any) -> PlanDocument:
    """Validate a plan document from a mapping.

    Raises:
        PlanParseError: With kind ``invalid_document`` when the shape is wrong
    """
    if isinstance(data, PlanDocument):
        return data

    if not isinstance(data, dict):
        raise PlanParseError(
            PlanParseError.INVALID_DOCUMENT,
            f"Plan document must be a mapping, got {type(data).__name__}",
        )

    try:
        return PlanDocument.model_validate(data)
    except ValidationError as e:
        raise PlanParseError(
            PlanParseError.INVALID_DOCUMENT, f"Invalid plan document: {e}"
        ) from e


def load_plan_document(file_path: Union[str, Path]) -> PlanDocument:
    """Load a plan document from a YAML or JSON file."""
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Plan file not found: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PlanParseError(
            PlanParseError.INVALID_DOCUMENT, f"Invalid YAML in {file_path}: {e}"
        ) from e

    if data is None:
        data = {}

    return validate_plan_document(data)


def save_plan_document(document: PlanDocument, file_path: Union[str, Path]) -> None:
    """Save a plan document to a YAML file."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    document_dict: Dict[str, Any] = document.model_dump(
        exclude_none=True, by_alias=True, mode="json"
    )

    with open(file_path, "w", encoding="utf-8") as f:
        yaml.dump(document_dict, f, default_flow_style=False, sort_keys=False, indent=2)
