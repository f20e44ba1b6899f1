"""SQLite store implementing the closeout collaborator contracts.

Used for offline closeouts, demos and tests. Regimens and results are kept
as JSON documents in the clinic API's schema, so the same from_dict
converters read them back.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Generator

from .collaborators import EncounterStore, RegimenCatalog, ResultStore
from .config import config
from .errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    RegimenValidationError,
)
from .models import (
    ClinicalResult,
    Encounter,
    EncounterStatus,
    TERMINAL_STATUSES,
    TreatmentRegimen,
)

logger = logging.getLogger(__name__)

SCHEMA = """
-- Treatment regimen catalog; rows are never updated
CREATE TABLE IF NOT EXISTS regimens (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    document TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Clinical results, at most one per encounter
CREATE TABLE IF NOT EXISTS results (
    id TEXT PRIMARY KEY,
    encounter_id TEXT NOT NULL UNIQUE,
    document TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Encounters (bookings) and their lifecycle status
CREATE TABLE IF NOT EXISTS encounters (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    document TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_encounters_status ON encounters(status);
"""

# Statuses an encounter may be closed out from
CLOSABLE_FROM = (
    EncounterStatus.CONFIRMED,
    EncounterStatus.CHECKED_IN,
    EncounterStatus.PAID,
)


class ClinicDatabase:
    """SQLite database for regimens, results and encounters."""

    def __init__(self, db_path: str | None = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path or config.CLINIC_DB_PATH

        # Ensure directory exists
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Regimen catalog
    # -------------------------------------------------------------------------

    def create_regimen(self, fields: dict[str, Any]) -> TreatmentRegimen:
        """Create a regimen from a creation request."""
        name = (fields.get("arvName") or "").strip()
        if not name:
            raise RegimenValidationError("Regimen name (arvName) is required")
        if not fields.get("drugs"):
            raise RegimenValidationError("Regimen must list at least one drug")

        regimen_id = uuid.uuid4().hex
        document = {**fields, "_id": regimen_id}
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO regimens (id, name, document) VALUES (?, ?, ?)",
                    (regimen_id, name, json.dumps(document, ensure_ascii=False)),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not store regimen: {e}") from e

        logger.debug(f"Stored regimen {regimen_id} ('{name}')")
        return TreatmentRegimen.from_dict(document)

    def get_regimen(self, regimen_id: str) -> TreatmentRegimen:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM regimens WHERE id = ?", (regimen_id,)
            ).fetchone()
        if not row:
            raise NotFoundError("regimen", regimen_id)
        return TreatmentRegimen.from_dict(json.loads(row["document"]))

    def list_regimens(self) -> list[TreatmentRegimen]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT document FROM regimens ORDER BY created_at, name"
            ).fetchall()
        return [TreatmentRegimen.from_dict(json.loads(row["document"])) for row in rows]

    # -------------------------------------------------------------------------
    # Result store
    # -------------------------------------------------------------------------

    def create_result(self, payload: dict[str, Any]) -> ClinicalResult:
        """Persist a new result."""
        encounter_id = payload.get("bookingId")
        if not encounter_id:
            raise PersistenceError("Result payload has no bookingId")

        result_id = uuid.uuid4().hex
        document = {
            **payload,
            "_id": result_id,
            "createdAt": datetime.now().isoformat(),
        }
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO results (id, encounter_id, document) VALUES (?, ?, ?)",
                    (result_id, encounter_id, json.dumps(document, ensure_ascii=False)),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise PersistenceError(
                f"Encounter {encounter_id} already has a result"
            ) from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not store result: {e}") from e

        logger.debug(f"Stored result {result_id} for encounter {encounter_id}")
        return ClinicalResult.from_dict(document)

    def update_result(self, result_id: str, fields: dict[str, Any]) -> ClinicalResult:
        """Apply a partial update to a stored result."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM results WHERE id = ?", (result_id,)
            ).fetchone()
            if not row:
                raise NotFoundError("result", result_id)

            document = json.loads(row["document"])
            document.update(fields)
            document["_id"] = result_id
            try:
                conn.execute(
                    "UPDATE results SET document = ?, updated_at = ? WHERE id = ?",
                    (
                        json.dumps(document, ensure_ascii=False),
                        datetime.now().isoformat(),
                        result_id,
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"Could not update result {result_id}: {e}") from e

        return ClinicalResult.from_dict(document)

    def find_result_by_encounter(self, encounter_id: str) -> ClinicalResult | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM results WHERE encounter_id = ?", (encounter_id,)
            ).fetchone()
        if not row:
            return None
        return ClinicalResult.from_dict(json.loads(row["document"]))

    def get_result(self, result_id: str) -> ClinicalResult:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM results WHERE id = ?", (result_id,)
            ).fetchone()
        if not row:
            raise NotFoundError("result", result_id)
        return ClinicalResult.from_dict(json.loads(row["document"]))

    # -------------------------------------------------------------------------
    # Encounter store
    # -------------------------------------------------------------------------

    def save_encounter(self, encounter: Encounter) -> None:
        """Insert or replace an encounter."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO encounters (id, status, document, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    encounter.id,
                    encounter.status.value,
                    json.dumps(encounter.to_dict(), ensure_ascii=False),
                    datetime.now().isoformat(),
                ),
            )
            conn.commit()

    def get_encounter(self, encounter_id: str) -> Encounter:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT status, document FROM encounters WHERE id = ?", (encounter_id,)
            ).fetchone()
        if not row:
            raise NotFoundError("encounter", encounter_id)
        document = json.loads(row["document"])
        document["status"] = row["status"]
        return Encounter.from_dict(document)

    def set_encounter_status(self, encounter_id: str, status: EncounterStatus) -> None:
        """Move an encounter to a terminal status."""
        current = self.get_encounter(encounter_id).status
        if status not in TERMINAL_STATUSES or current not in CLOSABLE_FROM:
            raise InvalidTransitionError(encounter_id, current.value, status.value)

        with self._get_connection() as conn:
            conn.execute(
                "UPDATE encounters SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, datetime.now().isoformat(), encounter_id),
            )
            conn.commit()
        logger.debug(f"Encounter {encounter_id}: {current.value} -> {status.value}")


class LocalRegimenCatalog(RegimenCatalog):
    """Regimen catalog backed by a ClinicDatabase."""

    def __init__(self, db: ClinicDatabase):
        self.db = db

    def create(self, fields: dict[str, Any]) -> TreatmentRegimen:
        return self.db.create_regimen(fields)

    def get_by_id(self, regimen_id: str) -> TreatmentRegimen:
        return self.db.get_regimen(regimen_id)


class LocalResultStore(ResultStore):
    """Result store backed by a ClinicDatabase."""

    def __init__(self, db: ClinicDatabase):
        self.db = db

    def create(self, payload: dict[str, Any]) -> ClinicalResult:
        return self.db.create_result(payload)

    def update(self, result_id: str, fields: dict[str, Any]) -> ClinicalResult:
        return self.db.update_result(result_id, fields)

    def find_by_encounter_id(self, encounter_id: str) -> ClinicalResult | None:
        return self.db.find_result_by_encounter(encounter_id)


class LocalEncounterStore(EncounterStore):
    """Encounter store backed by a ClinicDatabase."""

    def __init__(self, db: ClinicDatabase):
        self.db = db

    def set_status(self, encounter_id: str, status: EncounterStatus) -> None:
        self.db.set_encounter_status(encounter_id, status)


def get_local_stores(
    db: ClinicDatabase | None = None,
) -> tuple[LocalRegimenCatalog, LocalResultStore, LocalEncounterStore]:
    """Factory function - the three local collaborators sharing one database."""
    db = db or ClinicDatabase()
    logger.info(f"Using local clinic database at {db.db_path}")
    return LocalRegimenCatalog(db), LocalResultStore(db), LocalEncounterStore(db)
