"""Collaborator contracts consumed by the closeout pipeline.

Implemented by the REST adapters in api_client.py and the SQLite store in
db.py. Implementations raise the errors from errors.py.
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import ClinicalResult, EncounterStatus, TreatmentRegimen


class RegimenCatalog(ABC):
    """Catalog of treatment regimens. Regimens are never updated here."""

    @abstractmethod
    def create(self, fields: dict[str, Any]) -> TreatmentRegimen:
        """Create a regimen from a creation request.

        Raises:
            RegimenValidationError: If the catalog rejects the request.
        """
        pass

    @abstractmethod
    def get_by_id(self, regimen_id: str) -> TreatmentRegimen:
        """Fetch a regimen.

        Raises:
            NotFoundError: If no regimen has this id.
        """
        pass


class ResultStore(ABC):
    """Store of clinical results, at most one per encounter."""

    @abstractmethod
    def create(self, payload: dict[str, Any]) -> ClinicalResult:
        """Persist a new result.

        Raises:
            PersistenceError: If the write fails.
        """
        pass

    @abstractmethod
    def update(self, result_id: str, fields: dict[str, Any]) -> ClinicalResult:
        """Apply a partial update to an existing result.

        Raises:
            NotFoundError: If no result has this id.
            PersistenceError: If the write fails.
        """
        pass

    @abstractmethod
    def find_by_encounter_id(self, encounter_id: str) -> ClinicalResult | None:
        """Return the result recorded for an encounter, if any."""
        pass


class EncounterStore(ABC):
    """Owner of encounter lifecycle status."""

    @abstractmethod
    def set_status(self, encounter_id: str, status: EncounterStatus) -> None:
        """Move an encounter to a new status.

        Raises:
            NotFoundError: If no encounter has this id.
            InvalidTransitionError: If the move is not allowed.
        """
        pass
