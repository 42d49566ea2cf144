"""Tests for tracking codes and notification preferences."""

import re

import pytest

from projectledger.config import TrackingConfig
from projectledger.db.tables import tracking_codes
from projectledger.exceptions import ConflictError, NotFoundError, ValidationError
from projectledger.services import TrackingService
from projectledger.services.tracking_service import normalize_email


class TestGenerateCode:
    """Tests for code generation."""

    def test_format(self, tracking_service):
        """Codes are the prefix plus six unambiguous characters."""
        code = tracking_service.generate_code()
        assert re.fullmatch(r"TC-[ABCDEFGHJKMNPQRSTUVWXYZ23456789]{6}", code)

    def test_gives_up_after_bound(self, db, monkeypatch):
        """Every attempt colliding raises ConflictError."""
        service = TrackingService(db, TrackingConfig(max_generation_attempts=3))
        calls = []

        def always_taken(code):
            calls.append(code)
            return True

        monkeypatch.setattr(db, "tracking_code_exists", always_taken)

        with pytest.raises(ConflictError):
            service.generate_code()
        assert len(calls) == 3


class TestProjectCreation:
    """Tests for the first code issued with a project."""

    def test_project_gets_active_code(self, db, project):
        """A new project has exactly one active code."""
        codes = db.list_tracking_codes(project.id)
        assert len(codes) == 1
        assert codes[0].is_active is True


class TestRegenerate:
    """Tests for code rotation."""

    def test_single_active_after_two_rotations(self, db, tracking_service, project):
        """After two regenerations only the newest code is active."""
        original = db.get_active_code_for_project(project.id)

        second = tracking_service.regenerate(project.id)
        third = tracking_service.regenerate(project.id)

        codes = db.list_tracking_codes(project.id)
        assert len(codes) == 3
        assert [c.code for c in codes if c.is_active] == [third.code]
        assert db.get_active_tracking_code(original.code) is None
        assert db.get_active_tracking_code(second.code) is None
        assert tracking_service.resolve(original.code) is None
        assert tracking_service.resolve(third.code).project.id == project.id

    def test_missing_project(self, tracking_service):
        with pytest.raises(NotFoundError):
            tracking_service.regenerate(9999)

    def test_second_active_code_conflicts(self, db, project):
        """The store refuses two active codes for one project."""
        with pytest.raises(ConflictError):
            with db.engine.begin() as conn:
                db._insert(
                    conn,
                    tracking_codes,
                    {"project_id": project.id, "code": "TC-DUPLI1", "is_active": True},
                )
        assert len(db.list_tracking_codes(project.id)) == 1


class TestResolve:
    """Tests for the public lookup."""

    def test_unknown_code(self, tracking_service):
        assert tracking_service.resolve("TC-NOPE99") is None

    def test_tree(self, db, tracking_service, hierarchy_service, project):
        """The tree carries phases in order with their tasks."""
        design = hierarchy_service.create_phase(project.id, "Design")
        build = hierarchy_service.create_phase(project.id, "Build")
        hierarchy_service.create_task(design.id, "Sketch", completion_percentage=100)
        hierarchy_service.create_task(build.id, "Frame", completion_percentage=50)
        code = db.get_active_code_for_project(project.id)

        tree = tracking_service.resolve(f"  {code.code} ")

        assert tree.code == code.code
        assert [p.phase.name for p in tree.phases] == ["Design", "Build"]
        assert [p.completion_percentage for p in tree.phases] == [100, 50]
        assert tree.progress.completed_phases == 1
        assert tree.progress.completion_percentage == 50


class TestPreferences:
    """Tests for phase email opt-in."""

    def test_normalize_email(self):
        assert normalize_email("  Someone@Example.COM ") == "someone@example.com"

    @pytest.mark.parametrize("email", ["", "not-an-email", "a@b", "a b@c.com"])
    def test_invalid_email(self, email):
        with pytest.raises(ValidationError):
            normalize_email(email)

    def test_subscribe_upserts(self, db, tracking_service, project):
        """Opting out again updates the existing row."""
        code = db.get_active_code_for_project(project.id)

        tracking_service.subscribe(code.code, "fan@example.com")
        tracking_service.subscribe(code.code, "FAN@example.com", opted_in=False)

        prefs = tracking_service.list_preferences(code.id)
        assert len(prefs) == 1
        assert prefs[0].opted_in is False
        assert tracking_service.list_opted_in(code.id) == []

    def test_subscribe_revoked_code(self, db, tracking_service, project):
        """A revoked code cannot be subscribed to."""
        old = db.get_active_code_for_project(project.id)
        tracking_service.regenerate(project.id)

        with pytest.raises(NotFoundError):
            tracking_service.subscribe(old.code, "fan@example.com")
