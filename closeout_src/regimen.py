"""Treatment regimen resolution.

When a clinician closes out an ARV visit, the regimen shown in the form was
either loaded from the catalog and left alone, or edited. An unedited regimen
is referenced by its catalog id. Any edit, or a regimen typed from scratch,
produces a brand-new catalog entry: catalogued regimens are never mutated,
because earlier results may already reference them.

Equality is field-by-field and order-sensitive for list fields, so
reordering the drugs of a loaded regimen counts as a modification.
"""

import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from .collaborators import RegimenCatalog
from .config import config
from .errors import RegimenPersistenceError
from .models import RegimenDraft, TreatmentLine, TreatmentRegimen

logger = logging.getLogger(__name__)

# Display phrases offered by the frequency picker, and their stored values
FREQUENCY_DISPLAY_TO_NUMERIC: dict[str, str] = {
    "Một lần/ngày": "1",
    "Hai lần/ngày": "2",
    "Ba lần/ngày": "3",
    "Khác": "0",
}


def map_frequency_to_numeric(freq: str | None) -> str:
    """Stored representation of one drug's frequency.

    Numeric "times per day" values are kept as-is, picker phrases map to
    their number, and any other free text passes through unchanged.
    """
    if freq is None:
        return "0"
    value = freq.strip()
    if not value:
        return "0"
    return FREQUENCY_DISPLAY_TO_NUMERIC.get(value, value)


def format_frequency(freq: str | None) -> str:
    """Display form of a stored frequency, e.g. "2" -> "2 lần/ngày"."""
    if not freq or not freq.strip():
        return "Chưa có"
    try:
        return f"{int(freq.strip())} lần/ngày"
    except ValueError:
        return freq


def join_frequencies(frequencies: list[str] | tuple[str, ...]) -> str:
    return config.FREQUENCY_SEPARATOR.join(map_frequency_to_numeric(f) for f in frequencies)


def is_regimen_modified(
    original: TreatmentRegimen | None,
    draft: RegimenDraft,
) -> bool:
    """True if the draft must be persisted as a new regimen.

    A draft with no loaded original is always new. Otherwise every field of
    the draft is compared against the original as it was loaded into the form.
    """
    if original is None:
        return True

    loaded = original.to_draft()
    for f in fields(RegimenDraft):
        before = getattr(loaded, f.name)
        after = getattr(draft, f.name)
        if isinstance(before, tuple):
            if list(before) != list(after or ()):
                logger.debug(f"Regimen {original.id} modified: {f.name}")
                return True
        elif (before or "") != (after or ""):
            logger.debug(f"Regimen {original.id} modified: {f.name}")
            return True
    return False


def custom_regimen_name(now: datetime | None = None) -> str:
    """Placeholder name for an unnamed custom regimen."""
    now = now or datetime.now()
    return f"{config.CUSTOM_REGIMEN_NAME_PREFIX} {now.isoformat()}"


def build_regimen_request(
    draft: RegimenDraft,
    acting_user_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Creation request for a new catalog regimen built from the draft."""
    request: dict[str, Any] = {
        "arvName": draft.name.strip() or custom_regimen_name(now),
        "drugs": list(draft.drugs),
        "dosages": list(draft.dosages),
        "frequency": join_frequencies(draft.frequencies),
        "contraindications": [c for c in draft.contraindications if c],
        "sideEffects": [s for s in draft.side_effects if s],
    }
    if draft.code:
        request["regimenCode"] = draft.code
    line = TreatmentLine.parse(draft.treatment_line)
    if line is not None:
        request["treatmentLine"] = line.value
    if draft.recommended_for:
        request["recommendedFor"] = draft.recommended_for
    if draft.description:
        request["arvDescription"] = draft.description
    if acting_user_id:
        request["userId"] = acting_user_id
    return request


@dataclass
class RegimenResolution:
    """The regimen a result should reference."""
    regimen_id: str
    created: bool
    regimen: TreatmentRegimen | None = None


def resolve_regimen(
    original: TreatmentRegimen | None,
    draft: RegimenDraft,
    catalog: RegimenCatalog,
    acting_user_id: str | None = None,
    now: datetime | None = None,
) -> RegimenResolution:
    """Reference the loaded regimen, or create a new one from the draft.

    Raises:
        RegimenPersistenceError: If the catalog fails to create the regimen.
            Nothing else has been written at that point.
    """
    if not is_regimen_modified(original, draft):
        logger.debug(f"Regimen {original.id} unchanged, referencing catalog entry")
        return RegimenResolution(regimen_id=original.id, created=False, regimen=original)

    request = build_regimen_request(draft, acting_user_id=acting_user_id, now=now)
    try:
        created = catalog.create(request)
    except Exception as e:
        raise RegimenPersistenceError("Could not create custom regimen", cause=e) from e

    if not created or not created.id:
        raise RegimenPersistenceError("Regimen catalog returned no id for the new regimen")

    if original is not None:
        logger.info(
            f"Created regimen {created.id} ('{created.name}') from edited regimen {original.id}"
        )
    else:
        logger.info(f"Created regimen {created.id} ('{created.name}')")
    return RegimenResolution(regimen_id=created.id, created=True, regimen=created)
