"""Tests for plan document schema and plan parsing."""

import json
from pathlib import Path

import pytest
import yaml

from phaseforge.core import (
    PlanDocument,
    PlanParseError,
    PlanParser,
    load_plan_document,
    save_plan_document,
)


@pytest.fixture
def parser() -> PlanParser:
    return PlanParser()


class TestPlanDocument:
    """Test plan document schema."""

    def test_accepts_both_artifact_spellings(self):
        """expectedArtifacts and expected_artifacts mean the same thing."""
        doc = PlanDocument.model_validate(
            {
                "phases": [
                    {
                        "modules": [
                            {"name": "a", "expectedArtifacts": ["a.py"]},
                            {"name": "b", "expected_artifacts": ["b.py"]},
                        ]
                    }
                ]
            }
        )

        assert doc.phases[0].modules[0].expected_artifacts == ["a.py"]
        assert doc.phases[0].modules[1].expected_artifacts == ["b.py"]

    def test_save_and_load_round_trip(self, tmp_path: Path, two_phase_document):
        """Saved documents load back unchanged."""
        doc = PlanDocument.model_validate(two_phase_document)
        plan_file = tmp_path / "plans" / "plan.yaml"

        save_plan_document(doc, plan_file)
        loaded = load_plan_document(plan_file)

        assert loaded == doc
        with open(plan_file, "r", encoding="utf-8") as f:
            assert "expectedArtifacts" in f.read()

    def test_load_missing_file(self, tmp_path: Path):
        """Test loading a file that does not exist."""
        with pytest.raises(FileNotFoundError):
            load_plan_document(tmp_path / "missing.yaml")

    def test_load_invalid_yaml(self, tmp_path: Path):
        """Malformed YAML is an invalid document."""
        plan_file = tmp_path / "bad.yaml"
        plan_file.write_text("phases: [unclosed\n", encoding="utf-8")

        with pytest.raises(PlanParseError) as exc_info:
            load_plan_document(plan_file)
        assert exc_info.value.kind == PlanParseError.INVALID_DOCUMENT


class TestPlanParser:
    """Test PlanParser structural rules."""

    def test_parse_two_phase_plan(self, parser, two_phase_document):
        """Test parsing a valid plan."""
        plan = parser.parse(two_phase_document)

        assert plan.id == "two-phase"
        assert len(plan.phases) == 2
        assert plan.phases[0].module_names == ["a", "b"]
        assert plan.phases[0].label == "foundation"
        c_module = plan.phases[1].modules[0]
        assert c_module.dependencies == frozenset({"a", "b"})
        assert plan.phases[0].modules[0].expected_artifacts == ("a.py",)

    def test_parse_is_idempotent(self, parser, two_phase_document):
        """Parsing the same document twice gives equal plans."""
        assert parser.parse(two_phase_document) == parser.parse(two_phase_document)

    def test_derived_id_is_stable(self, parser, two_phase_document):
        """Without an id the plan id is derived from the content."""
        del two_phase_document["id"]

        first = parser.parse(two_phase_document)
        second = parser.parse(dict(two_phase_document))

        assert first.id.startswith("plan-")
        assert first.id == second.id

        two_phase_document["phases"][0]["modules"][0]["scope"] = "Something else"
        assert parser.parse(two_phase_document).id != first.id

    def test_single_module_plan(self, parser):
        """A one-phase, one-module plan needs no special casing."""
        plan = parser.parse({"phases": [{"modules": [{"name": "only"}]}]})

        assert plan.module_names == ["only"]
        assert plan.phases[0].label == "phase-0"

    def test_same_phase_dependency_is_dangling(self, parser):
        """Dependencies on a sibling in the same phase are rejected."""
        document = {
            "phases": [
                {
                    "modules": [
                        {"name": "a"},
                        {"name": "b", "dependencies": ["a"]},
                    ]
                }
            ]
        }

        with pytest.raises(PlanParseError) as exc_info:
            parser.parse(document)

        assert exc_info.value.kind == PlanParseError.DANGLING_DEPENDENCY
        assert "same phase" in str(exc_info.value)

    def test_forward_dependency_is_dangling(self, parser):
        """Dependencies on a later phase are rejected."""
        document = {
            "phases": [
                {"modules": [{"name": "a", "dependencies": ["b"]}]},
                {"modules": [{"name": "b"}]},
            ]
        }

        with pytest.raises(PlanParseError) as exc_info:
            parser.parse(document)

        assert exc_info.value.kind == PlanParseError.DANGLING_DEPENDENCY
        assert "later" in str(exc_info.value)

    def test_unknown_dependency_is_dangling(self, parser):
        """Dependencies on undeclared modules are rejected."""
        document = {"phases": [{"modules": [{"name": "a", "dependencies": ["ghost"]}]}]}

        with pytest.raises(PlanParseError) as exc_info:
            parser.parse(document)

        assert exc_info.value.kind == PlanParseError.DANGLING_DEPENDENCY
        assert "unknown module 'ghost'" in str(exc_info.value)

    def test_self_dependency_is_dangling(self, parser):
        """A module cannot depend on itself."""
        document = {"phases": [{"modules": [{"name": "a", "dependencies": ["a"]}]}]}

        with pytest.raises(PlanParseError) as exc_info:
            parser.parse(document)

        assert exc_info.value.kind == PlanParseError.DANGLING_DEPENDENCY
        assert "itself" in str(exc_info.value)

    @pytest.mark.parametrize(
        "phases",
        [
            [{"modules": [{"name": "a"}, {"name": "a"}]}],
            [{"modules": [{"name": "a"}]}, {"modules": [{"name": "a"}]}],
        ],
    )
    def test_duplicate_module(self, parser, phases):
        """Module names are unique across the whole plan."""
        with pytest.raises(PlanParseError) as exc_info:
            parser.parse({"phases": phases})

        assert exc_info.value.kind == PlanParseError.DUPLICATE_MODULE

    def test_empty_plan(self, parser):
        """A plan needs at least one phase."""
        with pytest.raises(PlanParseError) as exc_info:
            parser.parse({"phases": []})

        assert exc_info.value.kind == PlanParseError.EMPTY_PLAN

    @pytest.mark.parametrize(
        "document",
        [
            ["not", "a", "mapping"],
            {"phases": [{"modules": []}]},
            {"phases": [{"modules": [{"scope": "no name"}]}]},
            {"phases": [{"modules": [{"name": "  "}]}]},
            {"phases": "wrong type"},
        ],
    )
    def test_invalid_document(self, parser, document):
        """Wrongly shaped documents are rejected before structural checks."""
        with pytest.raises(PlanParseError) as exc_info:
            parser.parse(document)

        assert exc_info.value.kind == PlanParseError.INVALID_DOCUMENT

    def test_parse_yaml_and_json_files(self, parser, tmp_path: Path, two_phase_document):
        """YAML and JSON plan files parse to the same plan."""
        yaml_file = tmp_path / "plan.yaml"
        json_file = tmp_path / "plan.json"
        yaml_file.write_text(yaml.dump(two_phase_document), encoding="utf-8")
        json_file.write_text(json.dumps(two_phase_document), encoding="utf-8")

        assert parser.parse_file(yaml_file) == parser.parse_file(json_file)

    def test_empty_file_is_empty_plan(self, parser, tmp_path: Path):
        """An empty file holds no phases."""
        plan_file = tmp_path / "empty.yaml"
        plan_file.write_text("", encoding="utf-8")

        with pytest.raises(PlanParseError) as exc_info:
            parser.parse_file(plan_file)

        assert exc_info.value.kind == PlanParseError.EMPTY_PLAN
