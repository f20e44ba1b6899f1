"""Encounter Closeout - clinical encounter resolution for an HIV-care clinic.

This module provides:
1. Medication schedule grammar (dosing slots and times)
2. Treatment regimen resolution (reuse or create a catalog regimen)
3. Encounter category classification
4. The result submission pipeline that closes out an encounter
"""

from .models import (
    EncounterStatus,
    TreatmentLine,
    ServiceDefinition,
    Encounter,
    TreatmentRegimen,
    RegimenDraft,
    ResultDraft,
    ClinicalResult,
    DraftEncounterClosure,
)
from .schedule import MedicationSlot, SubSlot, required_sub_slots, validate_times
from .regimen import is_regimen_modified, resolve_regimen, map_frequency_to_numeric
from .classifier import EncounterCategory, classify
from .closeout import CloseoutState, CloseoutOutcome, EncounterCloseout, closeout_encounter
from .db import ClinicDatabase, get_local_stores
from .api_client import ClinicApiClient, get_api_stores

__all__ = [
    # Models
    "EncounterStatus",
    "TreatmentLine",
    "ServiceDefinition",
    "Encounter",
    "TreatmentRegimen",
    "RegimenDraft",
    "ResultDraft",
    "ClinicalResult",
    "DraftEncounterClosure",
    # Schedule
    "MedicationSlot",
    "SubSlot",
    "required_sub_slots",
    "validate_times",
    # Regimens
    "is_regimen_modified",
    "resolve_regimen",
    "map_frequency_to_numeric",
    # Classification
    "EncounterCategory",
    "classify",
    # Closeout
    "CloseoutState",
    "CloseoutOutcome",
    "EncounterCloseout",
    "closeout_encounter",
    # Stores
    "ClinicDatabase",
    "get_local_stores",
    "ClinicApiClient",
    "get_api_stores",
]
