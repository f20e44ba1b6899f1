"""Tests for closeout data models and clinical helpers."""

import pytest

from closeout_src.clinical import anonymize_name, compute_bmi, patient_display_name
from closeout_src.models import (
    ClinicalResult,
    DraftEncounterClosure,
    Encounter,
    EncounterStatus,
    RegimenDraft,
    ResultDraft,
    TreatmentLine,
    TreatmentRegimen,
)


class TestEnums:
    """Test enum definitions."""

    def test_encounter_status_values(self):
        assert EncounterStatus.CHECKED_IN.value == "checked-in"
        assert EncounterStatus.RE_EXAMINATION.value == "re-examination"

    def test_status_parse(self):
        assert EncounterStatus.parse("completed") == EncounterStatus.COMPLETED
        assert EncounterStatus.parse("") is None
        assert EncounterStatus.parse(None) is None
        with pytest.raises(ValueError):
            EncounterStatus.parse("closed")

    def test_treatment_line_parse(self):
        assert TreatmentLine.parse("Second-line") == TreatmentLine.SECOND_LINE
        assert TreatmentLine.parse("second") is None


class TestEncounter:
    """Test Encounter conversion from booking documents."""

    def test_from_populated_booking(self):
        encounter = Encounter.from_dict({
            "_id": "bk-1",
            "status": "checked-in",
            "bookingCode": "BK0001",
            "customerName": "Nguyen Van An",
            "isAnonymous": True,
            "userId": {"_id": "user-9", "userName": "an"},
            "serviceId": {"_id": "svc-1", "serviceName": "Điều trị ARV", "isArvTest": True},
        })

        assert encounter.id == "bk-1"
        assert encounter.status == EncounterStatus.CHECKED_IN
        assert encounter.patient_id == "user-9"
        assert encounter.service.is_arv_test
        assert not encounter.service.is_lab_test

    def test_to_dict(self):
        encounter = Encounter(id="bk-2", status=EncounterStatus.PAID)
        data = encounter.to_dict()
        assert data["_id"] == "bk-2"
        assert data["status"] == "paid"
        assert data["serviceId"] is None


class TestTreatmentRegimen:
    """Test regimen documents."""

    def test_from_dict_splits_frequency(self):
        regimen = TreatmentRegimen.from_dict({
            "_id": "reg-1",
            "arvName": "TLD",
            "drugs": ["TDF", "3TC", "DTG"],
            "dosages": ["300mg", "300mg", "50mg"],
            "frequency": "1;1;1",
        })
        assert regimen.frequencies == ["1", "1", "1"]
        assert regimen.to_dict()["frequency"] == "1;1;1"

    def test_to_draft(self):
        regimen = TreatmentRegimen(id="reg-1", name="X", drugs=["A"])
        draft = regimen.to_draft()
        assert draft == RegimenDraft(name="X", drugs=("A",))

    def test_draft_accepts_frequency_list(self):
        draft = RegimenDraft.from_dict({"arvName": "X", "frequencies": ["2"]})
        assert draft.frequencies == ("2",)

    def test_draft_null_text_fields(self):
        """Explicit nulls in the document read as empty text."""
        draft = RegimenDraft.from_dict({
            "arvName": None,
            "regimenCode": None,
            "arvDescription": None,
            "drugs": ["A"],
        })
        assert draft.name == ""
        assert draft.code == ""
        assert draft.drugs == ("A",)


class TestResultDraft:
    """Test parsing of submitted result fields."""

    def test_numbers_parsed(self):
        draft = ResultDraft.from_dict({
            "resultName": "Khám",
            "weight": "70",
            "height": 175,
            "pulse": "72",
            "cd4Count": "",
        })
        assert draft.weight == 70.0
        assert draft.height == 175.0
        assert draft.pulse == 72
        assert draft.cd4_count is None

    def test_medication_time_string(self):
        draft = ResultDraft.from_dict({"medicationTime": "08:00;20:00"})
        assert draft.medication_times == ("08:00", "20:00")

    def test_null_text_fields(self):
        draft = ResultDraft.from_dict({"resultName": None, "cd4Reference": None, "medicationSlot": None})
        assert draft.result_name == ""
        assert draft.cd4_reference == ""
        assert draft.medication_slot == ""


class TestClinicalResult:
    """Test result documents."""

    def test_from_dict(self):
        result = ClinicalResult.from_dict({
            "_id": "res-1",
            "bookingId": {"_id": "bk-1"},
            "resultName": "Kết quả điều trị ARV",
            "arvregimenId": {"_id": "reg-1", "arvName": "TLD"},
            "medicationSlot": "Sáng và Tối",
            "medicationTime": "08:00;20:00",
            "testValue": 1200,
            "createdAt": "2024-05-01T09:30:00.000Z",
        })
        assert result.encounter_id == "bk-1"
        assert result.arv_regimen_id == "reg-1"
        assert result.medication_times == ["08:00", "20:00"]
        assert result.test_value == "1200"
        assert result.created_at.year == 2024

    def test_to_dict(self):
        result = ClinicalResult(
            id="res-2", encounter_id="bk-2", result_name="R",
            medication_times=["08:00"],
        )
        data = result.to_dict()
        assert data["bookingId"] == "bk-2"
        assert data["medicationTime"] == "08:00"
        assert data["coInfections"] == []


class TestDraftEncounterClosure:
    """Test closure documents read by the CLI."""

    def test_from_dict(self):
        closure = DraftEncounterClosure.from_dict({
            "encounter": {"_id": "bk-1", "status": "confirmed"},
            "result": {"resultName": "Khám"},
            "status": "re-examination",
            "userId": "doc-1",
        })
        assert closure.chosen_status == EncounterStatus.RE_EXAMINATION
        assert closure.regimen is None
        assert closure.original_regimen is None
        assert closure.regimen_section_active

    def test_is_immutable(self):
        closure = DraftEncounterClosure(
            encounter=Encounter(id="bk-1", status=EncounterStatus.CONFIRMED),
            result=ResultDraft(),
        )
        with pytest.raises(AttributeError):
            closure.note = "changed"


class TestClinicalHelpers:
    """Test BMI and name display helpers."""

    def test_bmi(self):
        assert compute_bmi(70, 175) == 22.86

    def test_bmi_missing_values(self):
        assert compute_bmi(None, 175) is None
        assert compute_bmi(70, 0) is None

    def test_anonymize_name(self):
        assert anonymize_name("Nguyen Van An") == "N***** A*"
        assert anonymize_name("An") == "A*"
        assert anonymize_name("  ") == "Không xác định"

    def test_patient_display_name(self):
        anonymous = Encounter(
            id="bk-1", status=EncounterStatus.CONFIRMED,
            customer_name="Tran Thi Binh", is_anonymous=True,
        )
        named = Encounter(
            id="bk-2", status=EncounterStatus.CONFIRMED, customer_name="Tran Thi Binh",
        )
        assert patient_display_name(anonymous) == "T*** B***"
        assert patient_display_name(named) == "Tran Thi Binh"
