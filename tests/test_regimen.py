"""Tests for treatment regimen resolution."""

import pytest
from datetime import datetime
from unittest.mock import Mock

from closeout_src.collaborators import RegimenCatalog
from closeout_src.errors import PersistenceError, RegimenPersistenceError
from closeout_src.models import RegimenDraft, TreatmentRegimen
from closeout_src.regimen import (
    build_regimen_request,
    custom_regimen_name,
    format_frequency,
    is_regimen_modified,
    join_frequencies,
    map_frequency_to_numeric,
    resolve_regimen,
)


NOW = datetime(2024, 5, 1, 9, 30, 0)


def make_original() -> TreatmentRegimen:
    return TreatmentRegimen(
        id="reg-1",
        name="X",
        drugs=["A"],
        dosages=["1"],
        frequencies=["2"],
    )


def make_catalog(new_id: str = "reg-new") -> Mock:
    catalog = Mock(spec=RegimenCatalog)
    catalog.create.side_effect = lambda fields: TreatmentRegimen.from_dict(
        {**fields, "_id": new_id}
    )
    return catalog


class TestFrequencyMapping:
    """Test frequency display phrases and stored values."""

    def test_display_phrases(self):
        assert map_frequency_to_numeric("Một lần/ngày") == "1"
        assert map_frequency_to_numeric("Hai lần/ngày") == "2"
        assert map_frequency_to_numeric("Ba lần/ngày") == "3"
        assert map_frequency_to_numeric("Khác") == "0"

    def test_numeric_passthrough(self):
        assert map_frequency_to_numeric("2") == "2"
        assert map_frequency_to_numeric(" 3 ") == "3"

    def test_empty(self):
        assert map_frequency_to_numeric("") == "0"
        assert map_frequency_to_numeric(None) == "0"

    def test_join(self):
        assert join_frequencies(["Hai lần/ngày", "1"]) == "2;1"

    def test_format_frequency(self):
        assert format_frequency("2") == "2 lần/ngày"
        assert format_frequency("as needed") == "as needed"
        assert format_frequency("") == "Chưa có"


class TestIsRegimenModified:
    """Test order-sensitive regimen comparison."""

    def test_identical_draft(self):
        original = make_original()
        assert not is_regimen_modified(original, original.to_draft())

    def test_no_original(self):
        """A regimen typed from scratch is always new."""
        assert is_regimen_modified(None, RegimenDraft())

    def test_changed_drug_name(self):
        draft = RegimenDraft(name="X", drugs=("B",), dosages=("1",), frequencies=("2",))
        assert is_regimen_modified(make_original(), draft)

    def test_changed_name(self):
        draft = RegimenDraft(name="Y", drugs=("A",), dosages=("1",), frequencies=("2",))
        assert is_regimen_modified(make_original(), draft)

    def test_reordered_drugs(self):
        """Reordering counts as a modification."""
        original = TreatmentRegimen(
            id="reg-2", name="TDF+3TC", drugs=["TDF", "3TC"],
            dosages=["300mg", "300mg"], frequencies=["1", "1"],
        )
        draft = RegimenDraft(
            name="TDF+3TC", drugs=("3TC", "TDF"),
            dosages=("300mg", "300mg"), frequencies=("1", "1"),
        )
        assert is_regimen_modified(original, draft)

    def test_missing_optional_equals_empty(self):
        """An absent optional field equals an empty one."""
        original = make_original()
        draft = RegimenDraft(
            name="X", code="", description="",
            drugs=("A",), dosages=("1",), frequencies=("2",),
        )
        assert not is_regimen_modified(original, draft)


class TestBuildRegimenRequest:
    """Test creation requests for new regimens."""

    def test_placeholder_name(self):
        """An unnamed draft gets a timestamped custom name."""
        request = build_regimen_request(RegimenDraft(), now=NOW)
        assert request["arvName"] == "Custom Regimen 2024-05-01T09:30:00"
        assert request["drugs"] == []
        assert request["frequency"] == ""

    def test_custom_regimen_name(self):
        assert custom_regimen_name(NOW).startswith("Custom Regimen ")

    def test_optional_fields(self):
        """Optional fields are included only when set."""
        draft = RegimenDraft(
            name="TLD",
            code="TLD-01",
            treatment_line="First-line",
            drugs=("TDF", "3TC", "DTG"),
            dosages=("300mg", "300mg", "50mg"),
            frequencies=("Một lần/ngày", "1", "1"),
            contraindications=("", "Renal impairment"),
        )
        request = build_regimen_request(draft, acting_user_id="doc-7")
        assert request["regimenCode"] == "TLD-01"
        assert request["treatmentLine"] == "First-line"
        assert request["frequency"] == "1;1;1"
        assert request["contraindications"] == ["Renal impairment"]
        assert request["userId"] == "doc-7"
        assert "recommendedFor" not in request
        assert "arvDescription" not in request

    def test_unknown_treatment_line_dropped(self):
        request = build_regimen_request(RegimenDraft(name="R", treatment_line="Fourth-line"))
        assert "treatmentLine" not in request


class TestResolveRegimen:
    """Test regimen resolution against a catalog."""

    def test_unchanged_references_original(self):
        """An identical draft reuses the catalogued regimen."""
        catalog = make_catalog()
        original = make_original()
        draft = RegimenDraft(name="X", drugs=("A",), dosages=("1",), frequencies=("2",))

        resolution = resolve_regimen(original, draft, catalog)

        assert resolution.regimen_id == "reg-1"
        assert not resolution.created
        catalog.create.assert_not_called()

    def test_modified_creates_once(self):
        """A single changed field creates exactly one new regimen."""
        catalog = make_catalog("reg-new")
        draft = RegimenDraft(name="X", drugs=("A", "B"), dosages=("1", "1"), frequencies=("2", "2"))

        resolution = resolve_regimen(make_original(), draft, catalog)

        assert resolution.regimen_id == "reg-new"
        assert resolution.created
        assert catalog.create.call_count == 1
        request = catalog.create.call_args[0][0]
        assert request["drugs"] == ["A", "B"]

    def test_no_original_all_empty_draft(self):
        """Without an original, even an empty draft creates a placeholder-named regimen."""
        catalog = make_catalog()

        resolution = resolve_regimen(None, RegimenDraft(), catalog, now=NOW)

        assert resolution.created
        request = catalog.create.call_args[0][0]
        assert request["arvName"].startswith("Custom Regimen")

    def test_catalog_failure_wrapped(self):
        catalog = Mock(spec=RegimenCatalog)
        catalog.create.side_effect = PersistenceError("catalog unavailable")

        with pytest.raises(RegimenPersistenceError) as exc_info:
            resolve_regimen(None, RegimenDraft(name="R", drugs=("A",)), catalog)

        assert isinstance(exc_info.value.cause, PersistenceError)
        assert exc_info.value.step == "resolving_regimen"

    def test_catalog_returns_no_id(self):
        catalog = Mock(spec=RegimenCatalog)
        catalog.create.return_value = TreatmentRegimen(id="", name="R")

        with pytest.raises(RegimenPersistenceError):
            resolve_regimen(None, RegimenDraft(name="R"), catalog)
