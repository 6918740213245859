"""
Snapshot validation.

A snapshot is usable as a migration source only if it exists, carries a
breakdown, covers every requested component and is not locked. The checks
run in that order and the first failing one is reported.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from deskmigrate.exceptions import (
    SnapshotError,
    SnapshotLockedError,
    SnapshotMalformedError,
    SnapshotMissingComponentsError,
    SnapshotNotFoundError,
)
from deskmigrate.models import Snapshot


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of a non-raising snapshot check."""

    ok: bool
    error: SnapshotError | None = None


class SnapshotValidator:
    """
    Decides whether a snapshot can serve a given component list.

    Stateless; ``validate`` and ``check`` are pure and idempotent.
    """

    def validate(
        self,
        snapshot: Snapshot | None,
        required_components: Iterable[str],
        *,
        snapshot_id: str | None = None,
    ) -> Snapshot:
        """
        Validate a snapshot against the components a job will migrate.

        Args:
            snapshot: The resolved snapshot, or None when the id did not resolve.
            required_components: Ordered component names the job will run.
            snapshot_id: Requested id, used in the error when ``snapshot`` is None.

        Returns:
            The snapshot, known to be usable.

        Raises:
            SnapshotNotFoundError: The snapshot does not exist.
            SnapshotMalformedError: The snapshot has no breakdown section.
            SnapshotMissingComponentsError: Some required components are absent.
            SnapshotLockedError: The snapshot is locked.
        """
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)

        if snapshot.breakdown is None:
            raise SnapshotMalformedError(snapshot.id)

        missing = [name for name in required_components if name not in snapshot.breakdown]
        if missing:
            raise SnapshotMissingComponentsError(snapshot.id, missing)

        if snapshot.locked:
            raise SnapshotLockedError(snapshot.id)

        return snapshot

    def check(
        self,
        snapshot: Snapshot | None,
        required_components: Iterable[str],
        *,
        snapshot_id: str | None = None,
    ) -> ValidationOutcome:
        try:
            self.validate(snapshot, required_components, snapshot_id=snapshot_id)
        except SnapshotError as e:
            return ValidationOutcome(ok=False, error=e)
        return ValidationOutcome(ok=True)


__all__ = ["SnapshotValidator", "ValidationOutcome"]
