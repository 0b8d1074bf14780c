"""
Unit tests for pipeline data types: status machine, parsing and debug info.
"""

import pytest

from workers.biomarker_pipeline.models import (
    BiomarkerMatchDetail,
    DebugInfoFrozenError,
    ExtractedBiomarker,
    ExtractedLabData,
    ExtractionDebugInfo,
    LabUploadStatus,
    MergeStageDebug,
    Stage1Debug,
    Stage3Debug,
    can_transition,
)

pytestmark = pytest.mark.unit

S = LabUploadStatus


class TestStatusTransitions:
    """Tests for the forward-only upload state machine."""

    @pytest.mark.parametrize("current,target", [
        (S.PENDING, S.UPLOADING),
        (S.UPLOADING, S.FETCHING_PDF),
        (S.FETCHING_PDF, S.EXTRACTING_GEMINI),
        (S.EXTRACTING_GEMINI, S.VERIFYING_GPT),
        (S.EXTRACTING_GEMINI, S.MATCHING),
        (S.VERIFYING_GPT, S.MATCHING),
        (S.MATCHING, S.COMPLETE),
    ])
    def test_forward_transitions_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (S.MATCHING, S.EXTRACTING_GEMINI),
        (S.UPLOADING, S.MATCHING),
        (S.PENDING, S.COMPLETE),
        (S.COMPLETE, S.PENDING),
        (S.ERROR, S.UPLOADING),
    ])
    def test_other_transitions_rejected(self, current, target):
        assert not can_transition(current, target)

    @pytest.mark.parametrize("current", [s for s in S if not s.is_terminal])
    def test_error_reachable_from_any_active_state(self, current):
        assert can_transition(current, S.ERROR)

    def test_terminal_states_cannot_error(self):
        assert not can_transition(S.COMPLETE, S.ERROR)
        assert not can_transition(S.ERROR, S.ERROR)

    def test_accepts_plain_strings(self):
        assert can_transition("fetching_pdf", "extracting_gemini")


class TestExtractedBiomarker:
    """Tests for parsing model output entries."""

    def test_from_dict_camel_case(self):
        b = ExtractedBiomarker.from_dict({
            "name": " Glucose ",
            "value": "1,092.5",
            "unit": "mg/dL",
            "referenceMin": "70",
            "referenceMax": 100,
            "flag": "HIGH",
            "confidence": 0.9,
        }, page_number=2)

        assert b.name == "Glucose"
        assert b.value == 1092.5
        assert (b.reference_min, b.reference_max) == (70.0, 100.0)
        assert b.flag == "high"
        assert b.page_number == 2

    @pytest.mark.parametrize("entry", [
        {"value": 5},
        {"name": "", "value": 5},
        {"name": "Glucose", "value": "see note"},
        {"name": "Glucose", "value": None},
        {"name": "Glucose", "value": True},
    ])
    def test_invalid_entries_raise(self, entry):
        with pytest.raises(ValueError):
            ExtractedBiomarker.from_dict(entry)

    def test_to_dict_drops_missing_fields(self):
        b = ExtractedBiomarker(name="TSH", value=2.1, unit="mIU/L")
        assert b.to_dict() == {"name": "TSH", "value": 2.1, "unit": "mIU/L"}


class TestExtractedLabData:
    def test_bad_entries_skipped(self):
        data = ExtractedLabData.from_dict({
            "clientName": "John Doe",
            "biomarkers": [
                {"name": "Glucose", "value": 92, "unit": "mg/dL"},
                {"name": "Comment", "value": "n/a"},
                "not a dict",
            ],
        })

        assert [b.name for b in data.biomarkers] == ["Glucose"]
        assert data.client_name == "John Doe"

    def test_to_dict_round_trips_metadata(self):
        source = {"clientName": "Jane", "testDate": "2024-02-01", "biomarkers": []}
        assert ExtractedLabData.from_dict(source).to_dict() == source


class TestDebugInfo:
    """Tests for ExtractionDebugInfo."""

    def test_frozen_after_terminal(self):
        debug = ExtractionDebugInfo(pdf_size_bytes=100)
        debug.stage1 = Stage1Debug(model="m", thinking_level="high")
        debug.freeze()

        with pytest.raises(DebugInfoFrozenError):
            debug.stage2 = None
        with pytest.raises(DebugInfoFrozenError):
            debug.error_stage = "matching"

    def test_to_dict_omits_absent_stages(self):
        debug = ExtractionDebugInfo(pdf_size_bytes=2048, total_duration_ms=1234.4)
        debug.stage1 = Stage1Debug(model="m", thinking_level="high", duration_ms=10.6, biomarkers_extracted=3)

        data = debug.to_dict()

        assert data["totalDurationMs"] == 1234
        assert data["stage1"] == {
            "model": "m", "thinkingLevel": "high", "durationMs": 11, "biomarkersExtracted": 3,
        }
        assert "stage2" not in data
        assert "mergeStage" not in data
        assert "errorStage" not in data

    def test_merge_stage_serialized(self):
        debug = ExtractionDebugInfo(is_chunked=True, page_count=5)
        debug.merge_stage = MergeStageDebug(15, 10, 5, 0, policy="highest_confidence")

        data = debug.to_dict()

        assert data["pageCount"] == 5
        assert data["mergeStage"]["duplicatesRemoved"] == 5

    def test_stage3_counts_derived_from_details(self):
        stage3 = Stage3Debug(standards_count=10, user_gender="male", match_details=[
            BiomarkerMatchDetail(original_name="LDL", matched_code="ldl"),
            BiomarkerMatchDetail(original_name="Zinc"),
        ])

        assert stage3.matched_count == 1
        assert stage3.unmatched_count == 1
        assert stage3.to_dict()["matchDetails"][1]["matchedCode"] is None
