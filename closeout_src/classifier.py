"""Encounter category classification.

The service attached to a booking carries two capability flags, isLabTest
and isArvTest. The classifier turns them into a single tagged category,
checked once per closeout, and exposes which field groups that category
requires or allows.
"""

from dataclasses import dataclass
from enum import Enum

from .models import ServiceDefinition, EncounterStatus, TERMINAL_STATUSES


class EncounterCategory(Enum):
    """What kind of visit is being closed out."""
    GENERAL_EXAM = "general_exam"
    LAB_TEST = "lab_test"
    ARV_TEST = "arv_test"


@dataclass(frozen=True)
class CategoryRules:
    """Field groups and lifecycle handling for one category."""
    category: EncounterCategory
    offers_vitals: bool
    offers_lab_fields: bool
    requires_regimen: bool
    requires_status_selection: bool
    transitions_status: bool
    note_update_when_result_exists: bool
    allowed_statuses: tuple[EncounterStatus, ...] = ()

    @property
    def is_general_exam(self) -> bool:
        return self.category == EncounterCategory.GENERAL_EXAM


CATEGORY_RULES: dict[EncounterCategory, CategoryRules] = {
    EncounterCategory.GENERAL_EXAM: CategoryRules(
        category=EncounterCategory.GENERAL_EXAM,
        offers_vitals=True,
        offers_lab_fields=True,
        requires_regimen=False,
        requires_status_selection=True,
        transitions_status=True,
        note_update_when_result_exists=False,
        allowed_statuses=TERMINAL_STATUSES,
    ),
    EncounterCategory.LAB_TEST: CategoryRules(
        category=EncounterCategory.LAB_TEST,
        offers_vitals=True,
        offers_lab_fields=True,
        requires_regimen=False,
        requires_status_selection=False,
        transitions_status=False,
        note_update_when_result_exists=True,
    ),
    EncounterCategory.ARV_TEST: CategoryRules(
        category=EncounterCategory.ARV_TEST,
        offers_vitals=False,
        offers_lab_fields=False,
        requires_regimen=True,
        requires_status_selection=True,
        transitions_status=True,
        note_update_when_result_exists=False,
        allowed_statuses=TERMINAL_STATUSES,
    ),
}


def classify(service: ServiceDefinition | None) -> EncounterCategory:
    """Category of a service. isArvTest takes precedence over isLabTest."""
    if service is None:
        return EncounterCategory.GENERAL_EXAM
    if service.is_arv_test:
        return EncounterCategory.ARV_TEST
    if service.is_lab_test:
        return EncounterCategory.LAB_TEST
    return EncounterCategory.GENERAL_EXAM


def rules_for(category: EncounterCategory) -> CategoryRules:
    return CATEGORY_RULES[category]
