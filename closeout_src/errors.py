"""Exception taxonomy for encounter closeout.

Two families:
- Collaborator errors raised by regimen catalogs, result stores and
  encounter stores (NotFoundError, PersistenceError, ...).
- Closure errors surfaced by the closeout pipeline. Validation errors are
  raised before any remote mutation; step errors wrap the collaborator
  error that aborted the pipeline.
"""


# ============================================================================
# Collaborator errors
# ============================================================================

class CollaboratorError(Exception):
    """Base exception for failures reported by a remote collaborator."""


class NotFoundError(CollaboratorError):
    """Raised when an encounter, regimen or result reference is stale."""

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} '{resource_id}' not found")


class PersistenceError(CollaboratorError):
    """Raised when a store rejects or fails a write."""


class RegimenValidationError(PersistenceError):
    """Raised when the regimen catalog rejects a creation request."""


class InvalidTransitionError(CollaboratorError):
    """Raised when an encounter cannot move to the requested status."""

    def __init__(self, encounter_id: str, current: str | None, requested: str):
        self.encounter_id = encounter_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Encounter '{encounter_id}' cannot move from '{current}' to '{requested}'"
        )


# ============================================================================
# Closure errors
# ============================================================================

class ClosureError(Exception):
    """Base exception for all closeout failures."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        full_message = message
        if field:
            full_message = f"{message} [field={field}]"
        super().__init__(full_message)


class ValidationError(ClosureError):
    """Raised before any remote mutation when the draft is incomplete."""


class MissingRequiredFieldError(ValidationError):
    """Raised when a required field or field group is empty."""

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Missing required field '{field}'", field=field)


class MissingStatusSelectionError(ValidationError):
    """Raised when the category requires a terminal status and none was chosen."""

    def __init__(self, allowed: list[str]):
        self.allowed = allowed
        super().__init__(
            f"A terminal status must be selected (one of: {', '.join(allowed)})",
            field="status",
        )


class ScheduleMismatchError(ValidationError):
    """Raised when medication times do not satisfy the selected slot."""

    def __init__(self, slot: str, index: int, reason: str = ""):
        self.slot = slot
        self.index = index
        self.reason = reason
        msg = f"Missing medication time at index {index} for slot '{slot}'"
        if reason:
            msg += f" - {reason}"
        super().__init__(msg, field="medication_times")


class InvalidEncounterStateError(ValidationError):
    """Raised when the encounter's lifecycle status does not allow closeout."""

    def __init__(self, encounter_id: str, status: str):
        self.encounter_id = encounter_id
        self.status = status
        super().__init__(
            f"Encounter '{encounter_id}' in status '{status}' cannot be closed out",
            field="status",
        )


class DuplicateResultError(ValidationError):
    """Raised when a non-lab encounter already has a clinical result."""

    def __init__(self, encounter_id: str, result_id: str):
        self.encounter_id = encounter_id
        self.result_id = result_id
        super().__init__(
            f"Encounter '{encounter_id}' already has result '{result_id}'"
        )


class CloseoutInProgressError(ValidationError):
    """Raised when a closeout for the same encounter is already running."""

    def __init__(self, encounter_id: str):
        self.encounter_id = encounter_id
        super().__init__(f"Closeout already in progress for encounter '{encounter_id}'")


class StepError(ClosureError):
    """Base for errors raised when a collaborator call aborts the pipeline."""

    step = ""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class RegimenPersistenceError(StepError):
    """Raised when creating a new treatment regimen fails."""

    step = "resolving_regimen"


class ResultPersistenceError(StepError):
    """Raised when creating or updating the clinical result fails."""

    step = "persisting"


class StatusTransitionError(StepError):
    """Raised when the encounter status transition fails."""

    step = "transitioning_status"
