"""Turn a plan document into a validated :class:`Plan`."""

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Union

from .exceptions import PlanParseError
from .plan_model import ModuleSpec, Phase, Plan
from .plan_schema import PlanDocument, load_plan_document, validate_plan_document


class PlanParser:
    """Validates plan structure and builds the immutable plan model.

    Parsing is a pure transform: the same document always yields an equal
    plan, including its id.
    """

    def parse(self, document: Union[PlanDocument, Dict[str, Any]]) -> Plan:
        """Parse a plan document.

        Args:
            document: A ``PlanDocument`` or a mapping with the same shape

        Returns:
            The parsed plan

        Raises:
            PlanParseError: ``empty_plan`` when there are no phases,
                ``duplicate_module`` when a name is declared twice,
                ``dangling_dependency`` when a dependency does not name a
                module of a strictly earlier phase, ``invalid_document`` when
                the document has the wrong shape
        """
        doc = validate_plan_document(document)

        if not doc.phases:
            raise PlanParseError(PlanParseError.EMPTY_PLAN, "Plan declares no phases")

        # Modules visible to the phase being parsed (strictly earlier phases)
        declared: Dict[str, int] = {}
        phases = []

        for index, phase_doc in enumerate(doc.phases):
            in_this_phase: Dict[str, int] = {}
            modules = []

            for module_doc in phase_doc.modules:
                name = module_doc.name
                if name in declared or name in in_this_phase:
                    first = declared.get(name, in_this_phase.get(name))
                    raise PlanParseError(
                        PlanParseError.DUPLICATE_MODULE,
                        f"Module '{name}' in phase {index} is already declared in phase {first}",
                    )
                in_this_phase[name] = index

                for dependency in module_doc.dependencies:
                    if dependency not in declared:
                        raise PlanParseError(
                            PlanParseError.DANGLING_DEPENDENCY,
                            _dangling_message(name, index, dependency, in_this_phase, doc),
                        )

                modules.append(
                    ModuleSpec(
                        name=name,
                        scope=module_doc.scope,
                        expected_artifacts=tuple(module_doc.expected_artifacts),
                        dependencies=frozenset(module_doc.dependencies),
                    )
                )

            declared.update(in_this_phase)
            phases.append(Phase(index=index, name=phase_doc.name, modules=tuple(modules)))

        return Plan(id=doc.id or _derive_plan_id(doc), phases=tuple(phases))

    def parse_file(self, file_path: Union[str, Path]) -> Plan:
        """Load a YAML/JSON plan file and parse it."""
        return self.parse(load_plan_document(file_path))


def _dangling_message(
    module: str,
    phase_index: int,
    dependency: str,
    in_this_phase: Dict[str, int],
    doc: PlanDocument,
) -> str:
    if dependency == module:
        return f"Module '{module}' depends on itself"
    if dependency in in_this_phase:
        return (
            f"Module '{module}' depends on '{dependency}' from the same phase "
            f"({phase_index}); dependencies must come from earlier phases"
        )
    later = [
        i
        for i, phase_doc in enumerate(doc.phases)
        if i > phase_index and any(m.name == dependency for m in phase_doc.modules)
    ]
    if later:
        return (
            f"Module '{module}' in phase {phase_index} depends on '{dependency}' "
            f"which is declared later, in phase {later[0]}"
        )
    return f"Module '{module}' depends on unknown module '{dependency}'"


def _derive_plan_id(doc: PlanDocument) -> str:
    """Stable id from the document content, so repeated parses agree."""
    canonical = json.dumps(
        doc.model_dump(mode="json", by_alias=True), sort_keys=True, separators=(",", ":")
    )
    return "plan-" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]
