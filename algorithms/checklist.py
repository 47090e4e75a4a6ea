import datetime
from typing import Mapping, Optional, Union

from session_models import ChecklistRow, LoggedSet, SessionExercise

LocalCheck = Union[datetime.datetime, bool, None]


class ChecklistReconciler:
    """Derive per-set checklist rows from logged sets plus local overrides.

    ``local_checks`` maps a 1-based set index to the instant the user ticked
    it, or to ``False`` when a logged set was explicitly unticked (used to
    edit an exercise that was already completed).
    """

    @staticmethod
    def persisted_by_index(exercise: SessionExercise) -> dict[int, LoggedSet]:
        """Return the first logged set for every set index."""
        by_index: dict[int, LoggedSet] = {}
        for logged in exercise.sets:
            if logged.set_index is None or logged.set_index in by_index:
                continue
            by_index[logged.set_index] = logged
        return by_index

    @staticmethod
    def local_timestamp(local_checks: Mapping[int, LocalCheck], set_index: int) -> Optional[datetime.datetime]:
        value = local_checks.get(set_index)
        return value if isinstance(value, datetime.datetime) else None

    @classmethod
    def build_rows(
        cls,
        exercise: SessionExercise,
        local_checks: Optional[Mapping[int, LocalCheck]] = None,
    ) -> list[ChecklistRow]:
        count = exercise.target_set_count
        if not count:
            return []
        local_checks = local_checks or {}
        persisted = cls.persisted_by_index(exercise)
        rows: list[ChecklistRow] = []
        for set_index in range(1, count + 1):
            logged = persisted.get(set_index)
            local_at = cls.local_timestamp(local_checks, set_index)
            overridden = set_index in local_checks
            forced_off = local_checks.get(set_index) is False
            locked = logged is not None
            if locked and not overridden:
                checked_at = logged.checked_at
            else:
                checked_at = local_at
            rows.append(
                ChecklistRow(
                    set_index=set_index,
                    checked=(locked and not forced_off) or local_at is not None,
                    locked=locked,
                    checked_at=checked_at,
                    persisted_set=logged,
                )
            )
        return rows

    @staticmethod
    def all_checked(rows: list[ChecklistRow]) -> bool:
        return bool(rows) and all(row.checked for row in rows)

    @classmethod
    def has_changes(
        cls, exercise: SessionExercise, local_checks: Optional[Mapping[int, LocalCheck]]
    ) -> bool:
        """Return True if local overrides change any row's checked state."""
        if not local_checks:
            return False
        baseline = cls.build_rows(exercise)
        current = cls.build_rows(exercise, local_checks)
        return any(a.checked != b.checked for a, b in zip(baseline, current))

    @staticmethod
    def checked_indexes(local_checks: Optional[Mapping[int, LocalCheck]]) -> set[int]:
        return {
            int(index)
            for index, value in (local_checks or {}).items()
            if isinstance(value, datetime.datetime)
        }
