"""Result submission state machine for encounter closeout.

Closing out a visit is one sequential pipeline:

    DRAFT -> VALIDATING -> RESOLVING_REGIMEN -> PERSISTING
          -> TRANSITIONING_STATUS -> DONE

with FAILED reachable from every non-terminal state.

- VALIDATING checks the draft for the encounter's category before anything
  is written. A lab-test encounter that already has a result leaves the
  pipeline here: its notes are updated and the machine goes straight to DONE.
- RESOLVING_REGIMEN runs only for ARV visits with the regimen section active.
- TRANSITIONING_STATUS runs only for categories that select a terminal status.

Collaborator failures abort the pipeline. Effects already committed are not
compensated: a regimen created before a failed result write stays in the
catalog and is reported on the outcome as orphaned.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from .classifier import CategoryRules, EncounterCategory, classify, rules_for
from .clinical import compute_bmi
from .collaborators import EncounterStore, RegimenCatalog, ResultStore
from .config import config
from .errors import (
    ClosureError,
    CloseoutInProgressError,
    DuplicateResultError,
    InvalidEncounterStateError,
    MissingRequiredFieldError,
    MissingStatusSelectionError,
    ResultPersistenceError,
    ScheduleMismatchError,
    StatusTransitionError,
    ValidationError,
)
from .models import (
    ClinicalResult,
    DraftEncounterClosure,
    Encounter,
    EncounterStatus,
    RegimenDraft,
    ResultDraft,
    ResultType,
    TreatmentRegimen,
    VITALS_FIELDS,
    LAB_FIELDS,
    CLINICAL_FIELDS,
)
from .regimen import resolve_regimen
from .schedule import join_times, parse_slot, validate_times

logger = logging.getLogger(__name__)

# Encounters in these statuses cannot be closed out
NON_CLOSABLE_STATUSES = (EncounterStatus.PENDING, EncounterStatus.CANCELLED)


class CloseoutState(Enum):
    """Pipeline state of one closeout."""
    DRAFT = "draft"
    VALIDATING = "validating"
    RESOLVING_REGIMEN = "resolving_regimen"
    PERSISTING = "persisting"
    TRANSITIONING_STATUS = "transitioning_status"
    DONE = "done"
    FAILED = "failed"


@dataclass
class CloseoutOutcome:
    """What a closeout did, and where it stopped if it failed."""
    encounter_id: str
    category: EncounterCategory
    state: CloseoutState = CloseoutState.DRAFT
    history: list[CloseoutState] = field(default_factory=lambda: [CloseoutState.DRAFT])
    result: ClinicalResult | None = None
    regimen_id: str | None = None
    regimen_created: bool = False
    status_applied: EncounterStatus | None = None
    note_updated: bool = False
    error: ClosureError | None = None
    failed_step: CloseoutState | None = None

    @property
    def success(self) -> bool:
        return self.state == CloseoutState.DONE

    @property
    def orphaned_regimen_id(self) -> str | None:
        """Id of a regimen created by a closeout that later failed."""
        if self.state == CloseoutState.FAILED and self.regimen_created:
            return self.regimen_id
        return None

    def raise_for_error(self) -> None:
        """Raise the stored error if the closeout failed."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "encounter_id": self.encounter_id,
            "category": self.category.value,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "success": self.success,
            "result_id": self.result.id if self.result else None,
            "regimen_id": self.regimen_id,
            "regimen_created": self.regimen_created,
            "orphaned_regimen_id": self.orphaned_regimen_id,
            "status_applied": self.status_applied.value if self.status_applied else None,
            "note_updated": self.note_updated,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "error_field": self.error.field if self.error else None,
            "failed_step": self.failed_step.value if self.failed_step else None,
        }


class EncounterCloseout:
    """Close out encounters against a regimen catalog, result store and encounter store.

    One instance may serve many encounters. It remembers which encounters have
    a closeout running and rejects a second submission for the same one.
    """

    def __init__(
        self,
        regimen_catalog: RegimenCatalog,
        result_store: ResultStore,
        encounter_store: EncounterStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self.regimen_catalog = regimen_catalog
        self.result_store = result_store
        self.encounter_store = encounter_store
        self.clock = clock or datetime.now
        self._in_flight: set[str] = set()

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def closeout(self, closure: DraftEncounterClosure) -> CloseoutOutcome:
        """Run the closeout pipeline for one encounter.

        Never raises for closeout failures; inspect `outcome.error` or call
        `outcome.raise_for_error()`.
        """
        encounter = closure.encounter
        category = classify(encounter.service)
        outcome = CloseoutOutcome(encounter_id=encounter.id, category=category)

        if encounter.id in self._in_flight:
            self._fail(outcome, CloseoutInProgressError(encounter.id))
            return outcome

        self._in_flight.add(encounter.id)
        try:
            self._run(closure, rules_for(category), outcome)
        except ClosureError as e:
            self._fail(outcome, e)
        finally:
            self._in_flight.discard(encounter.id)

        if outcome.success:
            logger.info(
                f"Closed out encounter {encounter.id} ({category.value}): "
                f"{' -> '.join(s.value for s in outcome.history)}"
            )
        return outcome

    def _run(
        self,
        closure: DraftEncounterClosure,
        rules: CategoryRules,
        outcome: CloseoutOutcome,
    ) -> None:
        encounter = closure.encounter
        self._advance(outcome, CloseoutState.VALIDATING)
        self.check_encounter(encounter, closure.chosen_status, rules)

        if rules.note_update_when_result_exists:
            existing = self._find_existing_result(encounter.id)
            if existing is not None:
                outcome.result = self._append_note(existing, closure.note)
                outcome.note_updated = True
                self._advance(outcome, CloseoutState.DONE)
                return
            result_name = self.validate_draft(closure, rules)
        else:
            result_name = self.validate_draft(closure, rules)
            existing = self._find_existing_result(encounter.id)
            if existing is not None:
                raise DuplicateResultError(encounter.id, existing.id)

        if rules.requires_regimen and closure.regimen_section_active:
            self._advance(outcome, CloseoutState.RESOLVING_REGIMEN)
            resolution = resolve_regimen(
                closure.original_regimen,
                _regimen_draft(closure),
                self.regimen_catalog,
                acting_user_id=closure.acting_user_id,
                now=self.clock(),
            )
            outcome.regimen_id = resolution.regimen_id
            outcome.regimen_created = resolution.created
        else:
            logger.debug(f"Encounter {encounter.id}: no regimen to resolve")

        self._advance(outcome, CloseoutState.PERSISTING)
        payload = self.build_result_payload(closure, rules, result_name, outcome.regimen_id)
        try:
            outcome.result = self.result_store.create(payload)
        except Exception as e:
            raise ResultPersistenceError(
                f"Could not save result for encounter {encounter.id}", cause=e
            ) from e
        logger.info(f"Created result {outcome.result.id} for encounter {encounter.id}")

        if rules.transitions_status:
            self._advance(outcome, CloseoutState.TRANSITIONING_STATUS)
            try:
                self.encounter_store.set_status(encounter.id, closure.chosen_status)
            except Exception as e:
                raise StatusTransitionError(
                    f"Could not move encounter {encounter.id} to "
                    f"'{closure.chosen_status.value}'",
                    cause=e,
                ) from e
            outcome.status_applied = closure.chosen_status
            logger.info(f"Encounter {encounter.id} -> {closure.chosen_status.value}")

        self._advance(outcome, CloseoutState.DONE)

    def _advance(self, outcome: CloseoutOutcome, state: CloseoutState) -> None:
        outcome.state = state
        outcome.history.append(state)

    def _fail(self, outcome: CloseoutOutcome, error: ClosureError) -> None:
        outcome.failed_step = outcome.state
        outcome.error = error
        outcome.state = CloseoutState.FAILED
        outcome.history.append(CloseoutState.FAILED)

        if isinstance(error, ValidationError):
            logger.info(f"Closeout of encounter {outcome.encounter_id} rejected: {error}")
        else:
            logger.warning(
                f"Closeout of encounter {outcome.encounter_id} failed while "
                f"{outcome.failed_step.value}: {error}"
            )
        if outcome.orphaned_regimen_id:
            logger.warning(
                f"Regimen {outcome.orphaned_regimen_id} was created for encounter "
                f"{outcome.encounter_id} but no result references it"
            )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def check_encounter(
        self,
        encounter: Encounter,
        chosen_status: EncounterStatus | None,
        rules: CategoryRules,
    ) -> None:
        """Checks that need only the encounter and the chosen status."""
        if encounter.status in NON_CLOSABLE_STATUSES:
            raise InvalidEncounterStateError(encounter.id, encounter.status.value)
        # Lab tests keep their status, so a completed lab visit may still take notes
        if rules.transitions_status and encounter.status == EncounterStatus.COMPLETED:
            raise InvalidEncounterStateError(encounter.id, encounter.status.value)

        if rules.requires_status_selection:
            if chosen_status is None or chosen_status not in rules.allowed_statuses:
                raise MissingStatusSelectionError([s.value for s in rules.allowed_statuses])

    def validate_draft(self, closure: DraftEncounterClosure, rules: CategoryRules) -> str:
        """Validate the result fields for the category.

        Returns:
            The result name to store (auto-filled for ARV visits).
        """
        draft = closure.result
        result_name = draft.result_name.strip()
        if not result_name and rules.category == EncounterCategory.ARV_TEST:
            result_name = _default_arv_result_name(closure.encounter)
        if not result_name:
            raise MissingRequiredFieldError("result_name", "Diagnosis / result name is required")

        if rules.offers_lab_fields and draft.result_type:
            if draft.result_type not in {t.value for t in ResultType}:
                raise ValidationError(
                    f"Unknown result type '{draft.result_type}'", field="result_type"
                )

        if rules.requires_regimen and closure.regimen_section_active:
            self.validate_regimen_section(closure)

        return result_name

    def validate_regimen_section(self, closure: DraftEncounterClosure) -> None:
        """Regimen and medication schedule checks for ARV visits."""
        draft = closure.result
        regimen = closure.regimen
        if regimen is None and closure.original_regimen is None:
            raise MissingRequiredFieldError("regimen", "Select or enter an ARV regimen")
        regimen = _regimen_draft(closure)
        if closure.original_regimen is None and not regimen.name.strip():
            raise MissingRequiredFieldError("regimen", "Select or enter an ARV regimen")

        if parse_slot(draft.medication_slot) is None:
            raise MissingRequiredFieldError("medication_slot", "Select a dosing time slot")
        check = validate_times(draft.medication_slot, draft.medication_times)
        if not check.ok:
            raise ScheduleMismatchError(draft.medication_slot, check.missing_index, check.reason)

        if not draft.re_examination_date:
            raise MissingRequiredFieldError("re_examination_date", "Re-examination date is required")

        if not regimen.drugs or any(not d for d in regimen.drugs):
            raise MissingRequiredFieldError("drugs", "Every drug row needs a drug name")
        if len(regimen.dosages) != len(regimen.drugs) or any(not d for d in regimen.dosages):
            raise MissingRequiredFieldError("dosages", "Every drug needs a dosage")
        if len(regimen.frequencies) != len(regimen.drugs) or any(not f for f in regimen.frequencies):
            raise MissingRequiredFieldError("frequencies", "Every drug needs a frequency")

    # -------------------------------------------------------------------------
    # Persistence helpers
    # -------------------------------------------------------------------------

    def _find_existing_result(self, encounter_id: str) -> ClinicalResult | None:
        try:
            return self.result_store.find_by_encounter_id(encounter_id)
        except Exception as e:
            raise ResultPersistenceError(
                f"Could not look up results for encounter {encounter_id}", cause=e
            ) from e

    def _append_note(self, existing: ClinicalResult, note: str) -> ClinicalResult:
        """Append the consultation note to an existing lab result."""
        note = (note or "").strip()
        if not note:
            raise MissingRequiredFieldError("note", "Enter a note for the existing lab result")

        notes = existing.notes or ""
        if not notes.endswith(note):
            notes = f"{notes}\n{note}" if notes else note

        try:
            updated = self.result_store.update(existing.id, {"notes": notes})
        except Exception as e:
            raise ResultPersistenceError(
                f"Could not update notes of result {existing.id}", cause=e
            ) from e
        logger.info(f"Updated notes of lab result {existing.id} for encounter {existing.encounter_id}")
        return updated

    def build_result_payload(
        self,
        closure: DraftEncounterClosure,
        rules: CategoryRules,
        result_name: str,
        regimen_id: str | None,
    ) -> dict[str, Any]:
        """Create payload for the result store, shaped by category.

        Blank values are omitted. ARV visits carry no vitals or lab fields;
        other categories carry no regimen or schedule fields.
        """
        draft = closure.result
        values = _clinical_values(draft)

        if rules.offers_vitals and values.get("bmi") is None:
            values["bmi"] = compute_bmi(draft.weight, draft.height)
        if draft.result_type != ResultType.POSITIVE_NEGATIVE.value:
            values.pop("test_result", None)
        if draft.result_type != ResultType.QUANTITATIVE.value:
            values.pop("test_value", None)
        if not rules.offers_vitals:
            for attr in VITALS_FIELDS:
                values.pop(attr, None)
        if not rules.offers_lab_fields:
            for attr in LAB_FIELDS:
                values.pop(attr, None)

        payload: dict[str, Any] = {
            "resultName": result_name,
            "bookingId": closure.encounter.id,
        }
        for attr, key in CLINICAL_FIELDS:
            value = values.get(attr)
            if value is not None and value != "" and value != []:
                payload[key] = value

        if rules.requires_regimen and closure.regimen_section_active:
            payload["arvregimenId"] = regimen_id
            payload["medicationSlot"] = parse_slot(draft.medication_slot).value
            payload["medicationTime"] = join_times(draft.medication_times)
            payload["reExaminationDate"] = draft.re_examination_date

        if rules.note_update_when_result_exists and closure.note:
            payload["notes"] = closure.note

        return payload


def _regimen_draft(closure: DraftEncounterClosure) -> RegimenDraft:
    """Draft regimen; an untouched loaded regimen stands for itself."""
    if closure.regimen is not None:
        return closure.regimen
    return closure.original_regimen.to_draft()


def _default_arv_result_name(encounter: Encounter) -> str:
    if encounter.service and encounter.service.name:
        return f"{config.ARV_DEFAULT_RESULT_NAME} - {encounter.service.name}"
    return config.ARV_DEFAULT_RESULT_NAME


def _clinical_values(draft: ResultDraft) -> dict[str, Any]:
    values = {attr: getattr(draft, attr) for attr, _ in CLINICAL_FIELDS}
    values["co_infections"] = [c for c in draft.co_infections if c]
    return values


def closeout_encounter(
    encounter: Encounter,
    draft_result: ResultDraft,
    draft_regimen: RegimenDraft | None = None,
    chosen_status: EncounterStatus | None = None,
    *,
    regimen_catalog: RegimenCatalog,
    result_store: ResultStore,
    encounter_store: EncounterStore,
    original_regimen: TreatmentRegimen | None = None,
    acting_user_id: str | None = None,
    note: str = "",
) -> CloseoutOutcome:
    """Close out one encounter with a throwaway EncounterCloseout."""
    closure = DraftEncounterClosure(
        encounter=encounter,
        result=draft_result,
        regimen=draft_regimen,
        original_regimen=original_regimen,
        chosen_status=chosen_status,
        acting_user_id=acting_user_id,
        note=note,
    )
    engine = EncounterCloseout(regimen_catalog, result_store, encounter_store)
    return engine.closeout(closure)
