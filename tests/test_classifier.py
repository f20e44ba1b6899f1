"""Tests for encounter category classification."""

from closeout_src.classifier import EncounterCategory, classify, rules_for
from closeout_src.models import EncounterStatus, ServiceDefinition


class TestClassify:
    """Test category derivation from service flags."""

    def test_general_exam(self):
        service = ServiceDefinition(id="svc-1", name="Khám tổng quát")
        assert classify(service) == EncounterCategory.GENERAL_EXAM

    def test_lab_test(self):
        service = ServiceDefinition(id="svc-2", name="Xét nghiệm HIV", is_lab_test=True)
        assert classify(service) == EncounterCategory.LAB_TEST

    def test_arv_test(self):
        service = ServiceDefinition(id="svc-3", name="Điều trị ARV", is_arv_test=True)
        assert classify(service) == EncounterCategory.ARV_TEST

    def test_arv_takes_precedence(self):
        """A service flagged as both is an ARV visit."""
        service = ServiceDefinition(id="svc-4", is_lab_test=True, is_arv_test=True)
        assert classify(service) == EncounterCategory.ARV_TEST

    def test_missing_service(self):
        assert classify(None) == EncounterCategory.GENERAL_EXAM

    def test_unpopulated_service_reference(self):
        """A bare service id carries no flags."""
        service = ServiceDefinition.from_dict("svc-5")
        assert classify(service) == EncounterCategory.GENERAL_EXAM


class TestCategoryRules:
    """Test the field groups each category requires or allows."""

    def test_general_exam_rules(self):
        rules = rules_for(EncounterCategory.GENERAL_EXAM)
        assert rules.is_general_exam
        assert rules.offers_vitals
        assert not rules.requires_regimen
        assert rules.requires_status_selection
        assert rules.transitions_status

    def test_lab_test_rules(self):
        """Lab tests keep their status and accept note updates."""
        rules = rules_for(EncounterCategory.LAB_TEST)
        assert rules.offers_lab_fields
        assert not rules.requires_status_selection
        assert not rules.transitions_status
        assert rules.note_update_when_result_exists

    def test_arv_test_rules(self):
        """ARV visits carry a regimen and no vitals or lab fields."""
        rules = rules_for(EncounterCategory.ARV_TEST)
        assert rules.requires_regimen
        assert not rules.offers_vitals
        assert not rules.offers_lab_fields
        assert rules.transitions_status

    def test_terminal_statuses(self):
        rules = rules_for(EncounterCategory.ARV_TEST)
        assert set(rules.allowed_statuses) == {
            EncounterStatus.COMPLETED,
            EncounterStatus.RE_EXAMINATION,
        }
