"""In-memory plan model: phases of mutually independent modules."""

from typing import FrozenSet, Iterator, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .worker import BuildOutput, BuildTarget


class ModuleSpec(BaseModel):
    """The immutable description of a module.

    Lifecycle state is not part of a ModuleSpec; it is tracked per run by the
    retry loop that owns the module.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    scope: str = ""
    expected_artifacts: Tuple[str, ...] = ()
    dependencies: FrozenSet[str] = frozenset()

    def to_target(
        self,
        inputs: Optional[Mapping[str, BuildOutput]] = None,
        is_integration: bool = False,
    ) -> BuildTarget:
        """Describe this module to a worker."""
        return BuildTarget(
            name=self.name,
            scope=self.scope,
            expected_artifacts=self.expected_artifacts,
            dependencies=tuple(sorted(self.dependencies)),
            inputs=dict(inputs or {}),
            is_integration=is_integration,
        )


class Phase(BaseModel):
    """A barrier-synchronized group of mutually independent modules."""

    model_config = ConfigDict(frozen=True)

    index: int
    modules: Tuple[ModuleSpec, ...]
    name: Optional[str] = None

    @property
    def module_names(self) -> List[str]:
        return [module.name for module in self.modules]

    @property
    def label(self) -> str:
        return self.name or f"phase-{self.index}"


class Plan(BaseModel):
    """The parsed, ordered set of phases to execute."""

    model_config = ConfigDict(frozen=True)

    id: str
    phases: Tuple[Phase, ...]

    def iter_modules(self) -> Iterator[ModuleSpec]:
        """Yield every module in plan order."""
        for phase in self.phases:
            yield from phase.modules

    @property
    def module_names(self) -> List[str]:
        return [module.name for module in self.iter_modules()]
