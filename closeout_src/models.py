"""Data models for encounter closeout.

Remote documents use the clinic API's schema (camelCase keys, `_id`
identifiers, references that may arrive either populated or as bare ids).
Each model converts to and from that schema with to_dict/from_dict.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .config import config


class EncounterStatus(Enum):
    """Lifecycle status of a booking."""
    PENDING = "pending"                # Not yet confirmed, cannot be closed out
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    PAID = "paid"
    COMPLETED = "completed"            # Terminal: visit closed
    CANCELLED = "cancelled"
    RE_EXAMINATION = "re-examination"  # Terminal: visit closed, follow-up needed

    @classmethod
    def parse(cls, value: "EncounterStatus | str | None") -> "EncounterStatus | None":
        """Convert a raw status value, returning None for blanks."""
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        return cls(value)


TERMINAL_STATUSES = (EncounterStatus.COMPLETED, EncounterStatus.RE_EXAMINATION)


class TreatmentLine(Enum):
    """Antiretroviral treatment line."""
    FIRST_LINE = "First-line"
    SECOND_LINE = "Second-line"
    THIRD_LINE = "Third-line"

    @classmethod
    def parse(cls, value: str | None) -> "TreatmentLine | None":
        """Return the matching line, or None for blank/unknown values."""
        for line in cls:
            if line.value == value:
                return line
        return None


class ResultType(Enum):
    """Discriminator for how a lab test value is reported."""
    POSITIVE_NEGATIVE = "positive-negative"
    QUANTITATIVE = "quantitative"
    OTHER = "other"


class LabOutcome(Enum):
    """Qualitative lab test outcome."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    INVALID = "invalid"


class ViralLoadInterpretation(Enum):
    UNDETECTABLE = "undetectable"
    LOW = "low"
    HIGH = "high"


class Cd4Interpretation(Enum):
    NORMAL = "normal"
    LOW = "low"
    VERY_LOW = "very_low"


def _ref_id(value: Any) -> str | None:
    """Extract an id from a reference that may be populated or a bare id."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("_id") or value.get("id")
    return str(value)


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    number = _to_float(value)
    return int(number) if number is not None else None


def _split(value: Any, separator: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return str(value).split(separator)


@dataclass
class ServiceDefinition:
    """A bookable clinic service."""
    id: str
    name: str = ""
    is_lab_test: bool = False
    is_arv_test: bool = False
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict | str | None) -> "ServiceDefinition | None":
        if data is None:
            return None
        if isinstance(data, str):
            # Unpopulated reference: no capability flags available
            return cls(id=data)
        return cls(
            id=data.get("_id") or data.get("id") or "",
            name=data.get("serviceName") or "",
            is_lab_test=bool(data.get("isLabTest", False)),
            is_arv_test=bool(data.get("isArvTest", False)),
            description=data.get("serviceDescription"),
        )

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "serviceName": self.name,
            "isLabTest": self.is_lab_test,
            "isArvTest": self.is_arv_test,
            "serviceDescription": self.description,
        }


@dataclass
class Encounter:
    """A scheduled clinical visit (booking)."""
    id: str
    status: EncounterStatus
    service: ServiceDefinition | None = None
    booking_code: str | None = None
    patient_id: str | None = None
    customer_name: str = ""
    is_anonymous: bool = False
    booking_date: str | None = None  # YYYY-MM-DD
    start_time: str | None = None
    end_time: str | None = None
    doctor_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Encounter":
        return cls(
            id=data.get("_id") or data.get("id") or "",
            status=EncounterStatus(data.get("status") or "pending"),
            service=ServiceDefinition.from_dict(data.get("serviceId")),
            booking_code=data.get("bookingCode"),
            patient_id=_ref_id(data.get("userId")),
            customer_name=data.get("customerName") or "",
            is_anonymous=bool(data.get("isAnonymous", False)),
            booking_date=data.get("bookingDate"),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            doctor_name=data.get("doctorName"),
        )

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "status": self.status.value,
            "serviceId": self.service.to_dict() if self.service else None,
            "bookingCode": self.booking_code,
            "userId": self.patient_id,
            "customerName": self.customer_name,
            "isAnonymous": self.is_anonymous,
            "bookingDate": self.booking_date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "doctorName": self.doctor_name,
        }


@dataclass
class TreatmentRegimen:
    """A catalogued antiretroviral regimen.

    drugs, dosages and frequencies are index-aligned, one entry per drug.
    The remote schema stores frequencies as a single separator-joined string.
    """
    id: str
    name: str
    code: str | None = None
    treatment_line: str | None = None
    recommended_for: str | None = None
    description: str | None = None
    drugs: list[str] = field(default_factory=list)
    dosages: list[str] = field(default_factory=list)
    frequencies: list[str] = field(default_factory=list)
    contraindications: list[str] = field(default_factory=list)
    side_effects: list[str] = field(default_factory=list)
    created_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id": self.id,
            "arvName": self.name,
            "regimenCode": self.code,
            "treatmentLine": self.treatment_line,
            "recommendedFor": self.recommended_for,
            "arvDescription": self.description,
            "drugs": list(self.drugs),
            "dosages": list(self.dosages),
            "frequency": config.FREQUENCY_SEPARATOR.join(self.frequencies),
            "contraindications": list(self.contraindications),
            "sideEffects": list(self.side_effects),
            "userId": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TreatmentRegimen":
        return cls(
            id=data.get("_id") or data.get("id") or "",
            name=data.get("arvName") or "",
            code=data.get("regimenCode"),
            treatment_line=data.get("treatmentLine"),
            recommended_for=data.get("recommendedFor"),
            description=data.get("arvDescription"),
            drugs=list(data.get("drugs") or []),
            dosages=list(data.get("dosages") or []),
            frequencies=_split(data.get("frequency"), config.FREQUENCY_SEPARATOR),
            contraindications=list(data.get("contraindications") or []),
            side_effects=list(data.get("sideEffects") or []),
            created_by=_ref_id(data.get("userId")),
        )

    def to_draft(self) -> "RegimenDraft":
        """Field set as it appears in the form when this regimen is loaded."""
        return RegimenDraft(
            name=self.name,
            code=self.code or "",
            treatment_line=self.treatment_line or "",
            recommended_for=self.recommended_for or "",
            description=self.description or "",
            drugs=tuple(self.drugs),
            dosages=tuple(self.dosages),
            frequencies=tuple(self.frequencies),
            contraindications=tuple(self.contraindications),
            side_effects=tuple(self.side_effects),
        )


@dataclass(frozen=True)
class RegimenDraft:
    """The editable regimen field set of the closeout form."""
    name: str = ""
    code: str = ""
    treatment_line: str = ""
    recommended_for: str = ""
    description: str = ""
    drugs: tuple[str, ...] = ()
    dosages: tuple[str, ...] = ()
    frequencies: tuple[str, ...] = ()
    contraindications: tuple[str, ...] = ()
    side_effects: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "RegimenDraft":
        frequencies = data.get("frequencies")
        if frequencies is None:
            frequencies = _split(data.get("frequency"), config.FREQUENCY_SEPARATOR)
        return cls(
            name=data.get("arvName") or "",
            code=data.get("regimenCode") or "",
            treatment_line=data.get("treatmentLine") or "",
            recommended_for=data.get("recommendedFor") or "",
            description=data.get("arvDescription") or "",
            drugs=tuple(data.get("drugs") or ()),
            dosages=tuple(data.get("dosages") or ()),
            frequencies=tuple(frequencies),
            contraindications=tuple(data.get("contraindications") or ()),
            side_effects=tuple(data.get("sideEffects") or ()),
        )


# Optional clinical fields shared by ResultDraft and ClinicalResult:
# (attribute, remote key)
CLINICAL_FIELDS: tuple[tuple[str, str], ...] = (
    ("result_description", "resultDescription"),
    ("symptoms", "symptoms"),
    ("weight", "weight"),
    ("height", "height"),
    ("bmi", "bmi"),
    ("blood_pressure", "bloodPressure"),
    ("pulse", "pulse"),
    ("temperature", "temperature"),
    ("sample_type", "sampleType"),
    ("test_method", "testMethod"),
    ("result_type", "resultType"),
    ("test_result", "testResult"),
    ("test_value", "testValue"),
    ("unit", "unit"),
    ("reference_range", "referenceRange"),
    ("viral_load", "viralLoad"),
    ("viral_load_reference", "viralLoadReference"),
    ("viral_load_interpretation", "viralLoadInterpretation"),
    ("cd4_count", "cd4Count"),
    ("cd4_reference", "cd4Reference"),
    ("cd4_interpretation", "cd4Interpretation"),
    ("co_infections", "coInfections"),
    ("p24_antigen", "p24Antigen"),
    ("hiv_antibody", "hivAntibody"),
    ("interpretation_note", "interpretationNote"),
)

VITALS_FIELDS = ("weight", "height", "bmi", "blood_pressure", "pulse", "temperature", "symptoms")

LAB_FIELDS = (
    "sample_type", "test_method", "result_type", "test_result", "test_value",
    "unit", "reference_range", "viral_load", "viral_load_reference",
    "viral_load_interpretation", "cd4_count", "cd4_reference",
    "cd4_interpretation", "co_infections", "p24_antigen", "hiv_antibody",
    "interpretation_note",
)


@dataclass(frozen=True)
class ResultDraft:
    """Clinical result fields as entered by the clinician."""
    result_name: str = ""
    result_description: str = ""
    symptoms: str = ""

    # Vitals
    weight: float | None = None   # kg
    height: float | None = None   # cm
    bmi: float | None = None
    blood_pressure: str = ""
    pulse: int | None = None
    temperature: float | None = None

    # Lab test
    sample_type: str = ""
    test_method: str = ""
    result_type: str = ""  # ResultType value
    test_result: str = ""  # LabOutcome value, kept for positive-negative only
    test_value: str = ""   # kept for quantitative only
    unit: str = ""
    reference_range: str = ""
    viral_load: float | None = None
    viral_load_reference: str = ""
    viral_load_interpretation: str = ""
    cd4_count: int | None = None
    cd4_reference: str = ""
    cd4_interpretation: str = ""
    co_infections: tuple[str, ...] = ()
    p24_antigen: str = ""
    hiv_antibody: str = ""
    interpretation_note: str = ""

    # ARV schedule
    medication_slot: str = ""
    medication_times: tuple[str, ...] = ()
    re_examination_date: str = ""  # YYYY-MM-DD

    @classmethod
    def from_dict(cls, data: dict) -> "ResultDraft":
        times = data.get("medicationTimes")
        if times is None:
            times = _split(data.get("medicationTime"), config.MEDICATION_TIME_SEPARATOR)
        return cls(
            result_name=data.get("resultName") or "",
            result_description=data.get("resultDescription") or "",
            symptoms=data.get("symptoms") or "",
            weight=_to_float(data.get("weight")),
            height=_to_float(data.get("height")),
            bmi=_to_float(data.get("bmi")),
            blood_pressure=data.get("bloodPressure") or "",
            pulse=_to_int(data.get("pulse")),
            temperature=_to_float(data.get("temperature")),
            sample_type=data.get("sampleType") or "",
            test_method=data.get("testMethod") or "",
            result_type=data.get("resultType") or "",
            test_result=data.get("testResult") or "",
            test_value=str(data.get("testValue") or ""),
            unit=data.get("unit") or "",
            reference_range=data.get("referenceRange") or "",
            viral_load=_to_float(data.get("viralLoad")),
            viral_load_reference=data.get("viralLoadReference") or "",
            viral_load_interpretation=data.get("viralLoadInterpretation") or "",
            cd4_count=_to_int(data.get("cd4Count")),
            cd4_reference=data.get("cd4Reference") or "",
            cd4_interpretation=data.get("cd4Interpretation") or "",
            co_infections=tuple(data.get("coInfections") or ()),
            p24_antigen=str(data.get("p24Antigen") or ""),
            hiv_antibody=str(data.get("hivAntibody") or ""),
            interpretation_note=data.get("interpretationNote") or "",
            medication_slot=data.get("medicationSlot") or "",
            medication_times=tuple(times),
            re_examination_date=data.get("reExaminationDate") or "",
        )


@dataclass
class ClinicalResult:
    """The persisted record of a closed-out encounter."""
    id: str
    encounter_id: str
    result_name: str
    result_description: str | None = None
    notes: str | None = None
    symptoms: str | None = None
    weight: float | None = None
    height: float | None = None
    bmi: float | None = None
    blood_pressure: str | None = None
    pulse: int | None = None
    temperature: float | None = None
    sample_type: str | None = None
    test_method: str | None = None
    result_type: str | None = None
    test_result: str | None = None
    test_value: str | None = None
    unit: str | None = None
    reference_range: str | None = None
    viral_load: float | None = None
    viral_load_reference: str | None = None
    viral_load_interpretation: str | None = None
    cd4_count: int | None = None
    cd4_reference: str | None = None
    cd4_interpretation: str | None = None
    co_infections: list[str] = field(default_factory=list)
    p24_antigen: str | None = None
    hiv_antibody: str | None = None
    interpretation_note: str | None = None
    arv_regimen_id: str | None = None
    medication_slot: str | None = None
    medication_times: list[str] = field(default_factory=list)
    re_examination_date: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "_id": self.id,
            "bookingId": self.encounter_id,
            "resultName": self.result_name,
            "notes": self.notes,
        }
        for attr, key in CLINICAL_FIELDS:
            data[key] = getattr(self, attr)
        data["coInfections"] = list(self.co_infections)
        data["arvregimenId"] = self.arv_regimen_id
        data["medicationSlot"] = self.medication_slot
        data["medicationTime"] = (
            config.MEDICATION_TIME_SEPARATOR.join(self.medication_times)
            if self.medication_times else None
        )
        data["reExaminationDate"] = self.re_examination_date
        data["createdAt"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ClinicalResult":
        created_at = data.get("createdAt")
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                created_at = None

        values = {attr: data.get(key) for attr, key in CLINICAL_FIELDS}
        values["co_infections"] = list(data.get("coInfections") or [])
        if values["test_value"] is not None:
            values["test_value"] = str(values["test_value"])
        for attr in ("p24_antigen", "hiv_antibody"):
            if values[attr] is not None:
                values[attr] = str(values[attr])

        return cls(
            id=data.get("_id") or data.get("id") or "",
            encounter_id=_ref_id(data.get("bookingId")) or "",
            result_name=data.get("resultName") or "",
            notes=data.get("notes"),
            arv_regimen_id=_ref_id(data.get("arvregimenId")),
            medication_slot=data.get("medicationSlot"),
            medication_times=_split(
                data.get("medicationTime"), config.MEDICATION_TIME_SEPARATOR
            ),
            re_examination_date=data.get("reExaminationDate"),
            created_at=created_at,
            **values,
        )


@dataclass(frozen=True)
class DraftEncounterClosure:
    """Everything the clinician submitted to close out one encounter.

    Immutable: the pipeline never edits it, so a failed submission can be
    resubmitted with the same value.
    """
    encounter: Encounter
    result: ResultDraft
    regimen: RegimenDraft | None = None
    original_regimen: TreatmentRegimen | None = None
    chosen_status: EncounterStatus | None = None
    acting_user_id: str | None = None
    note: str = ""  # consultation note for the lab-test update path
    regimen_section_active: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "DraftEncounterClosure":
        regimen_data = data.get("regimen")
        original_data = data.get("originalRegimen")
        return cls(
            encounter=Encounter.from_dict(data["encounter"]),
            result=ResultDraft.from_dict(data.get("result") or {}),
            regimen=RegimenDraft.from_dict(regimen_data) if regimen_data else None,
            original_regimen=(
                TreatmentRegimen.from_dict(original_data) if original_data else None
            ),
            chosen_status=EncounterStatus.parse(data.get("status")),
            acting_user_id=data.get("userId"),
            note=data.get("note") or "",
            regimen_section_active=bool(data.get("regimenSectionActive", True)),
        )
