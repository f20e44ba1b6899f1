"""Clinical value helpers used when building and displaying results."""

from .models import Encounter


def compute_bmi(weight_kg: float | None, height_cm: float | None) -> float | None:
    """Body-mass index from weight in kg and height in cm, 2 decimals."""
    if not weight_kg or not height_cm:
        return None
    if weight_kg <= 0 or height_cm <= 0:
        return None
    height_m = height_cm / 100
    return round(weight_kg / (height_m * height_m), 2)


def anonymize_name(name: str | None) -> str:
    """Mask a patient name, keeping the initial of the first and last word.

    "Nguyen Van An" -> "N***** A*"
    """
    if not name or not name.strip():
        return "Không xác định"
    words = name.strip().split()

    def mask(word: str) -> str:
        return word[0] + "*" * (len(word) - 1)

    if len(words) == 1:
        return mask(words[0])
    return f"{mask(words[0])} {mask(words[-1])}"


def patient_display_name(encounter: Encounter) -> str:
    """Name to show for an encounter's patient, masked for anonymous bookings."""
    if encounter.is_anonymous:
        return anonymize_name(encounter.customer_name)
    return encounter.customer_name or "Không xác định"
