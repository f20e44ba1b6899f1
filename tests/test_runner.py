"""Tests for the command-line runner."""

import json
from unittest.mock import patch

from closeout_src.db import ClinicDatabase
from closeout_src.errors import PersistenceError
from closeout_src.models import EncounterStatus
from closeout_src.runner import main


def run(*argv) -> int:
    with patch("sys.argv", ["encounter-closeout", *argv]):
        return main()


class TestScheduleCommands:
    """Test the slot and time commands."""

    def test_slots(self, capsys):
        assert run("slots") == 0
        assert "Sáng, Trưa và Tối" in capsys.readouterr().out

    def test_check_times_ok(self, capsys):
        assert run("check-times", "Morning+Evening", "08:00", "20:00") == 0

    def test_check_times_missing(self, capsys):
        assert run("check-times", "Morning+Evening", "08:00") == 1
        assert "index 1" in capsys.readouterr().out


class TestCloseoutCommand:
    """Test closeouts from JSON closure files."""

    def write_closure(self, tmp_path, **overrides):
        closure = {
            "encounter": {
                "_id": "bk-1",
                "status": "checked-in",
                "serviceId": {"_id": "svc-arv", "serviceName": "Tái khám ARV", "isArvTest": True},
            },
            "result": {
                "medicationSlot": "Sáng và Tối",
                "medicationTimes": ["08:00", "20:00"],
                "reExaminationDate": "2024-06-01",
            },
            "regimen": {
                "arvName": "TLD",
                "drugs": ["TDF", "3TC", "DTG"],
                "dosages": ["300mg", "300mg", "50mg"],
                "frequencies": ["1", "1", "1"],
            },
            "status": "completed",
            "userId": "doc-1",
        }
        closure.update(overrides)
        path = tmp_path / "closure.json"
        path.write_text(json.dumps(closure, ensure_ascii=False), encoding="utf-8")
        return path

    def test_local_closeout(self, tmp_path, capsys):
        """A closure runs against the local store and prints the outcome."""
        db_path = tmp_path / "clinic.db"
        closure_path = self.write_closure(tmp_path)

        assert run("closeout", str(closure_path), "--db-path", str(db_path)) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["success"]
        assert output["regimen_created"]

        db = ClinicDatabase(str(db_path))
        assert db.get_encounter("bk-1").status == EncounterStatus.COMPLETED
        assert db.find_result_by_encounter("bk-1").arv_regimen_id == output["regimen_id"]

    def test_original_regimen_by_id(self, tmp_path, capsys):
        """A loaded regimen can be referenced by id."""
        db_path = tmp_path / "clinic.db"
        original = ClinicDatabase(str(db_path)).create_regimen({
            "arvName": "TLD",
            "drugs": ["TDF", "3TC", "DTG"],
            "dosages": ["300mg", "300mg", "50mg"],
            "frequency": "1;1;1",
        })
        closure_path = self.write_closure(tmp_path, originalRegimenId=original.id)

        assert run("closeout", str(closure_path), "--db-path", str(db_path)) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["regimen_id"] == original.id
        assert not output["regimen_created"]

    def test_validation_failure_exit_code(self, tmp_path, capsys):
        closure_path = self.write_closure(tmp_path, status=None)

        assert run("closeout", str(closure_path), "--db-path", str(tmp_path / "clinic.db")) == 1

        output = json.loads(capsys.readouterr().out)
        assert output["error_type"] == "MissingStatusSelectionError"
        assert output["failed_step"] == "validating"

    def test_unreadable_file(self, tmp_path):
        assert run("closeout", str(tmp_path / "missing.json"), "--local") == 2

    def test_regimen_lookup_failure_exit_code(self, tmp_path, capsys):
        """A store failure while loading the referenced regimen is reported, not raised."""
        closure_path = self.write_closure(tmp_path, originalRegimenId="reg-1")

        with patch(
            "closeout_src.db.LocalRegimenCatalog.get_by_id",
            side_effect=PersistenceError("database is locked"),
        ):
            code = run("closeout", str(closure_path), "--db-path", str(tmp_path / "clinic.db"))

        assert code == 1
        assert capsys.readouterr().out == ""
