"""Tests for case validation and prompt construction."""

import pytest
from pydantic import ValidationError

from vetddx.api.case_models import PatientCase
from vetddx.llm.prompt_builder import build_prompt, excluded_list, problem_list


def _make_case(**overrides) -> PatientCase:
    defaults = {
        "species": "Canine",
        "age": "4 months",
        "sex": "Male intact",
        "weight": "6 kg",
        "problems": ["Vomiting", "Haemorrhagic diarrhoea"],
    }
    defaults.update(overrides)
    return PatientCase(**defaults)


class TestPatientCase:
    def test_required_fields_stripped(self):
        case = _make_case(species="  Feline  ")
        assert case.species == "Feline"

    def test_numeric_weight_accepted(self):
        case = _make_case(weight=6.5)
        assert case.weight == "6.5"

    def test_blank_breed_is_none(self):
        assert _make_case(breed="   ").breed is None

    def test_blank_problems_dropped(self):
        case = _make_case(problems=["Vomiting", "", "  ", " Lethargy "])
        assert case.problems == ["Vomiting", "Lethargy"]

    def test_no_problems_rejected(self):
        with pytest.raises(ValidationError, match="At least one problem is required"):
            _make_case(problems=["", " "])

    def test_blank_species_rejected(self):
        with pytest.raises(ValidationError):
            _make_case(species="   ")

    def test_missing_weight_rejected(self):
        with pytest.raises(ValidationError):
            PatientCase(species="Canine", age="2y", sex="F", problems=["Cough"])


class TestPromptBuilder:
    def test_signalment_present(self):
        prompt = build_prompt(_make_case())
        assert "Species: Canine" in prompt
        assert "Age: 4 months" in prompt
        assert "Sex: Male intact" in prompt
        assert "Weight: 6 kg" in prompt
        assert "Problem list: Vomiting, Haemorrhagic diarrhoea" in prompt

    def test_breed_optional(self):
        assert "Breed:" not in build_prompt(_make_case())
        assert "Breed: Rottweiler" in build_prompt(_make_case(breed="Rottweiler"))

    def test_exclusions_omitted_when_empty(self):
        assert "EXCLUDED DIAGNOSES (do NOT" not in build_prompt(_make_case())

    def test_exclusions_listed(self):
        prompt = build_prompt(_make_case(excluded=["Parvovirus", "Giardiasis"]))
        assert (
            "EXCLUDED DIAGNOSES (do NOT include these - already ruled out by "
            "diagnostics): Parvovirus, Giardiasis"
        ) in prompt

    def test_restricts_sources(self):
        prompt = build_prompt(_make_case())
        assert "Merck Veterinary Manual" in prompt
        assert "BSAVA" in prompt

    def test_output_headings_requested(self):
        prompt = build_prompt(_make_case())
        for heading in (
            "## Ranked Differential Diagnoses",
            "## Suggested Diagnostic Steps",
            "## Red Flags",
            "## Treatment Recommendations",
        ):
            assert heading in prompt
        assert "CATEGORY:" in prompt

    def test_formulary_and_safety_sections(self):
        prompt = build_prompt(_make_case())
        assert "CRITICAL SAFETY INSTRUCTIONS - READ CAREFULLY:" in prompt
        assert "TREATMENT PROTOCOLS - USE THESE DRUGS" in prompt
        assert "Cefotaxime" in prompt
        assert "IMPORTANT CALCULATION INSTRUCTIONS:" in prompt

    def test_signalment_order(self):
        prompt = build_prompt(_make_case(breed="Beagle"))
        positions = [
            prompt.index(label)
            for label in ("Species:", "Age:", "Sex:", "Weight:", "Breed:", "Problem list:")
        ]
        assert positions == sorted(positions)

    def test_list_helpers(self):
        case = _make_case(excluded=["Parvovirus"])
        assert problem_list(case) == "Vomiting, Haemorrhagic diarrhoea"
        assert excluded_list(case) == "Parvovirus"
        assert excluded_list(_make_case()) == ""
