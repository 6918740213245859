"""
Unit tests for SnapshotValidator.

Tests cover:
- Accepting a complete, unlocked snapshot
- Each failure reason and its precedence
- Non-raising check() outcomes
"""

import pytest

from deskmigrate.exceptions import (
    SnapshotErrorReason,
    SnapshotLockedError,
    SnapshotMalformedError,
    SnapshotMissingComponentsError,
    SnapshotNotFoundError,
)
from deskmigrate.models import Snapshot
from deskmigrate.validation import SnapshotValidator


@pytest.fixture
def validator() -> SnapshotValidator:
    return SnapshotValidator()


class TestValidate:
    """Tests for SnapshotValidator.validate()."""

    def test_complete_snapshot_passes(self, validator, snapshot):
        assert validator.validate(snapshot, ["groups", "ticket_fields", "macros"]) is snapshot

    def test_empty_requirement_passes(self, validator, snapshot):
        validator.validate(snapshot, [])

    def test_not_found(self, validator):
        with pytest.raises(SnapshotNotFoundError) as exc_info:
            validator.validate(None, ["groups"], snapshot_id="snap-404")

        assert exc_info.value.snapshot_id == "snap-404"
        assert exc_info.value.reason == SnapshotErrorReason.NOT_FOUND
        assert exc_info.value.error_code == "SNAPSHOT_NOT_FOUND"

    def test_missing_breakdown_is_malformed(self, validator):
        snapshot = Snapshot(id="snap-empty", name="Broken", breakdown=None)

        with pytest.raises(SnapshotMalformedError) as exc_info:
            validator.validate(snapshot, ["groups"])

        assert exc_info.value.reason == SnapshotErrorReason.MALFORMED

    def test_empty_breakdown_reports_missing_components(self, validator):
        snapshot = Snapshot(id="snap-empty", name="Empty", breakdown={})

        with pytest.raises(SnapshotMissingComponentsError) as exc_info:
            validator.validate(snapshot, ["ticket_forms"])

        assert exc_info.value.missing_components == ["ticket_forms"]
        assert "ticket_forms" in str(exc_info.value)

    def test_empty_breakdown_serves_empty_job(self, validator):
        snapshot = Snapshot(id="snap-empty", name="Empty", breakdown={})

        assert validator.validate(snapshot, []) is snapshot

    def test_missing_components_named(self, validator, snapshot_factory):
        snapshot = snapshot_factory(["groups", "ticket_fields"], snapshot_id="snap-partial")

        with pytest.raises(SnapshotMissingComponentsError) as exc_info:
            validator.validate(snapshot, ["groups", "ticket_forms", "macros"])

        assert exc_info.value.missing_components == ["ticket_forms", "macros"]
        assert "ticket_forms" in str(exc_info.value)
        assert "macros" in str(exc_info.value)

    def test_locked(self, validator, snapshot_factory):
        snapshot = snapshot_factory(snapshot_id="snap-locked", locked=True)

        with pytest.raises(SnapshotLockedError) as exc_info:
            validator.validate(snapshot, ["groups"])

        assert str(exc_info.value) == "Cannot use locked snapshot snap-locked for migration"

    def test_missing_components_reported_before_locked(self, validator, snapshot_factory):
        snapshot = snapshot_factory(["groups"], locked=True)

        with pytest.raises(SnapshotMissingComponentsError):
            validator.validate(snapshot, ["groups", "macros"])

    def test_idempotent(self, validator, snapshot_factory):
        snapshot = snapshot_factory(["groups"])

        first = validator.check(snapshot, ["macros"])
        second = validator.check(snapshot, ["macros"])

        assert type(first.error) is type(second.error)
        assert str(first.error) == str(second.error)


class TestCheck:
    """Tests for the non-raising variant."""

    def test_ok(self, validator, snapshot):
        outcome = validator.check(snapshot, ["groups"])

        assert outcome.ok is True
        assert outcome.error is None

    def test_failure_carries_error(self, validator):
        outcome = validator.check(None, ["groups"], snapshot_id="snap-404")

        assert outcome.ok is False
        assert isinstance(outcome.error, SnapshotNotFoundError)
