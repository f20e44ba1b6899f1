"""Medication schedule grammar.

A dosing slot is a coarse time-of-day selection (morning, noon, evening or
a combination). Each slot label expands to an ordered list of sub-slots,
and a regimen-bearing result must supply exactly one time-of-day per
sub-slot, in the same order.

Slot labels are stored in Vietnamese as the clinic's records hold them;
English aliases are accepted on input and normalized to the stored label.
"""

import re
from dataclasses import dataclass
from enum import Enum

from .config import config


class SubSlot(Enum):
    """A single time-of-day dosing window."""
    MORNING = "Sáng"
    NOON = "Trưa"
    EVENING = "Tối"


class MedicationSlot(Enum):
    """Selectable dosing slot labels."""
    MORNING = "Sáng"
    NOON = "Trưa"
    EVENING = "Tối"
    MORNING_NOON = "Sáng và Trưa"
    NOON_EVENING = "Trưa và Tối"
    MORNING_EVENING = "Sáng và Tối"
    MORNING_NOON_EVENING = "Sáng, Trưa và Tối"


SLOT_SUB_SLOTS: dict[MedicationSlot, tuple[SubSlot, ...]] = {
    MedicationSlot.MORNING: (SubSlot.MORNING,),
    MedicationSlot.NOON: (SubSlot.NOON,),
    MedicationSlot.EVENING: (SubSlot.EVENING,),
    MedicationSlot.MORNING_NOON: (SubSlot.MORNING, SubSlot.NOON),
    MedicationSlot.NOON_EVENING: (SubSlot.NOON, SubSlot.EVENING),
    MedicationSlot.MORNING_EVENING: (SubSlot.MORNING, SubSlot.EVENING),
    MedicationSlot.MORNING_NOON_EVENING: (SubSlot.MORNING, SubSlot.NOON, SubSlot.EVENING),
}

SLOT_ALIASES: dict[str, MedicationSlot] = {
    "Morning": MedicationSlot.MORNING,
    "Noon": MedicationSlot.NOON,
    "Evening": MedicationSlot.EVENING,
    "Morning+Noon": MedicationSlot.MORNING_NOON,
    "Noon+Evening": MedicationSlot.NOON_EVENING,
    "Morning+Evening": MedicationSlot.MORNING_EVENING,
    "Morning+Noon+Evening": MedicationSlot.MORNING_NOON_EVENING,
}

# 24-hour HH:MM, as produced by an <input type="time">
TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class ScheduleValidation:
    """Outcome of validating medication times against a slot."""
    ok: bool
    missing_index: int | None = None
    reason: str = ""

    @classmethod
    def valid(cls) -> "ScheduleValidation":
        return cls(ok=True)

    @classmethod
    def missing_at(cls, index: int, reason: str) -> "ScheduleValidation":
        return cls(ok=False, missing_index=index, reason=reason)


def parse_slot(label: "MedicationSlot | str | None") -> MedicationSlot | None:
    """Resolve a stored label or English alias to a slot; None if unknown."""
    if isinstance(label, MedicationSlot):
        return label
    if not label:
        return None
    label = label.strip()
    for slot in MedicationSlot:
        if slot.value == label:
            return slot
    return SLOT_ALIASES.get(label.replace(" ", ""))


def required_sub_slots(label: "MedicationSlot | str | None") -> list[SubSlot]:
    """Ordered sub-slots a slot label requires (empty for unknown labels)."""
    slot = parse_slot(label)
    if slot is None:
        return []
    return list(SLOT_SUB_SLOTS[slot])


def is_valid_time_of_day(value: str | None) -> bool:
    return bool(value) and TIME_OF_DAY_PATTERN.match(value.strip()) is not None


def validate_times(
    label: "MedicationSlot | str | None",
    times: list[str] | tuple[str, ...],
) -> ScheduleValidation:
    """Check that one valid time-of-day is supplied per required sub-slot.

    Returns the first offending index: an empty or malformed entry, the
    first missing position when too few times are given, or the first
    surplus position when too many are given.
    """
    sub_slots = required_sub_slots(label)
    if not sub_slots:
        return ScheduleValidation.missing_at(0, f"no dosing slot selected ('{label or ''}')")

    for index, value in enumerate(times[: len(sub_slots)]):
        if not value or not str(value).strip():
            return ScheduleValidation.missing_at(
                index, f"no time given for {sub_slots[index].value}"
            )
        if not is_valid_time_of_day(str(value)):
            return ScheduleValidation.missing_at(
                index, f"'{value}' is not a valid time of day"
            )

    if len(times) < len(sub_slots):
        index = len(times)
        return ScheduleValidation.missing_at(
            index, f"no time given for {sub_slots[index].value}"
        )
    if len(times) > len(sub_slots):
        return ScheduleValidation.missing_at(
            len(sub_slots),
            f"slot requires {len(sub_slots)} time(s), got {len(times)}",
        )

    return ScheduleValidation.valid()


def join_times(times: list[str] | tuple[str, ...]) -> str:
    """Stored representation of an ordered list of medication times."""
    return config.MEDICATION_TIME_SEPARATOR.join(t.strip() for t in times)


def split_times(stored: str | None) -> list[str]:
    if not stored:
        return []
    return [t for t in stored.split(config.MEDICATION_TIME_SEPARATOR) if t]


def format_medication_times(stored: str | None, label: str | None) -> str:
    """Display string such as "Sáng: 08:00, Tối: 20:00".

    Falls back to the raw stored value when the number of times does not
    match the slot.
    """
    if not stored or not label:
        return "Chưa có"
    times = split_times(stored)
    sub_slots = required_sub_slots(label)
    if len(times) != len(sub_slots):
        return stored
    return ", ".join(f"{sub.value}: {time}" for sub, time in zip(sub_slots, times))
