from typing import Iterable, Optional

from session_models import SessionExercise


class SupersetPairing:
    """Lookup from an exercise key to its superset partner.

    Exercises pair only when exactly two of them share a group token and sit
    next to each other in position order.
    """

    def __init__(self, partners: Optional[dict[str, SessionExercise]] = None) -> None:
        self.partners = partners or {}

    @classmethod
    def build(cls, steps: Iterable) -> "SupersetPairing":
        ordered = sorted(
            (step for step in steps if isinstance(step, SessionExercise)),
            key=lambda exercise: exercise.position or 0,
        )
        groups: dict[str, list[int]] = {}
        for index, exercise in enumerate(ordered):
            if exercise.superset_group:
                groups.setdefault(exercise.superset_group, []).append(index)
        partners: dict[str, SessionExercise] = {}
        for indexes in groups.values():
            if len(indexes) != 2 or indexes[1] - indexes[0] != 1:
                continue
            first, second = ordered[indexes[0]], ordered[indexes[1]]
            partners[first.key] = second
            partners[second.key] = first
        return cls(partners)

    def partner_of(self, step) -> Optional[SessionExercise]:
        if step is None:
            return None
        return self.partners.get(step.key)

    def __contains__(self, key: str) -> bool:
        return key in self.partners

    def __len__(self) -> int:
        return len(self.partners)
