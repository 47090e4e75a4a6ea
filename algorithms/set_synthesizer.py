import datetime
import math
import re
from typing import Mapping, NamedTuple, Optional

from session_models import (
    EngineError,
    SessionExercise,
    SetPayload,
    coerce_number,
    is_band,
    is_bodyweight,
)
from algorithms.checklist import ChecklistReconciler, LocalCheck


class SynthesisPreconditionError(EngineError):
    """Sets are missing but their reps or weight cannot be resolved."""


class SetTargets(NamedTuple):
    reps: int
    weight: float
    band_label: Optional[str]


class MissingSetSynthesizer:
    """Build set-creation payloads for sets the user never logged one by one."""

    RANGE_STRICT = re.compile(r"^(\d+)\s*-\s*(\d+)$")
    RANGE_LOOSE = re.compile(r"(\d+)\D+(\d+)")

    @staticmethod
    def _round_half_up(value: float) -> int:
        return int(math.floor(value + 0.5))

    @classmethod
    def parse_range_min(cls, value: Optional[str]) -> Optional[int]:
        """Return the lower bound of a "min-max" rep range."""
        if not value:
            return None
        text = str(value).strip()
        match = cls.RANGE_STRICT.match(text) or cls.RANGE_LOOSE.search(text)
        if not match:
            return None
        return int(match.group(1))

    @classmethod
    def resolve_reps(cls, exercise: SessionExercise) -> Optional[int]:
        direct = coerce_number(exercise.target_reps)
        if direct is not None and direct > 0:
            return cls._round_half_up(direct)
        range_min = cls.parse_range_min(exercise.target_reps_range)
        if range_min is not None and range_min > 0:
            return range_min
        return None

    @staticmethod
    def resolve_weight(
        exercise: SessionExercise, default_band_label: Optional[str] = None
    ) -> Optional[tuple[float, Optional[str]]]:
        """Return ``(weight, band_label)`` or ``None`` when no usable weight exists.

        A configured target weight of exactly zero is treated the same as no
        target weight for loaded equipment.
        """
        if is_bodyweight(exercise.equipment):
            return 0.0, None
        if is_band(exercise.equipment):
            label = (exercise.target_band_label or default_band_label or "").strip()
            if not label:
                return None
            return 0.0, label
        weight = coerce_number(exercise.target_weight)
        if weight is None or weight <= 0:
            return None
        return weight, None

    @classmethod
    def resolve_targets(
        cls, exercise: SessionExercise, default_band_label: Optional[str] = None
    ) -> Optional[SetTargets]:
        reps = cls.resolve_reps(exercise)
        if reps is None:
            return None
        resolved = cls.resolve_weight(exercise, default_band_label)
        if resolved is None:
            return None
        weight, band_label = resolved
        return SetTargets(reps, weight, band_label)

    @classmethod
    def interpolate_timestamp(
        cls,
        set_index: int,
        target_set_count: Optional[int],
        started_at: Optional[datetime.datetime],
        finished_at: datetime.datetime,
    ) -> datetime.datetime:
        """Spread synthesized sets evenly between exercise start and finish."""
        start = finished_at if started_at is None else min(started_at, finished_at)
        if not target_set_count or target_set_count <= 1:
            return finished_at
        bounded = min(target_set_count, max(1, int(set_index or 1)))
        ratio = (bounded - 1) / (target_set_count - 1)
        span_ms = (finished_at - start).total_seconds() * 1000
        offset = cls._round_half_up(span_ms * ratio)
        return start + datetime.timedelta(milliseconds=offset)

    @staticmethod
    def missing_indices(
        exercise: SessionExercise,
        checked_at_by_index: Optional[Mapping[int, LocalCheck]] = None,
        include_unchecked: bool = False,
    ) -> list[int]:
        """Return target set indices that need a new set record."""
        count = exercise.target_set_count
        if not count:
            return []
        persisted = ChecklistReconciler.persisted_by_index(exercise)
        checks = checked_at_by_index or {}
        indices: list[int] = []
        for set_index in range(1, count + 1):
            if set_index in persisted:
                continue
            if ChecklistReconciler.local_timestamp(checks, set_index) is None and not include_unchecked:
                continue
            indices.append(set_index)
        return indices

    @classmethod
    def build_payloads(
        cls,
        exercise: SessionExercise,
        checked_at_by_index: Optional[Mapping[int, LocalCheck]] = None,
        started_at: Optional[datetime.datetime] = None,
        finished_at: Optional[datetime.datetime] = None,
        default_band_label: Optional[str] = None,
        include_unchecked: bool = False,
    ) -> list[SetPayload]:
        targets = cls.resolve_targets(exercise, default_band_label)
        if targets is None:
            return []
        finished_at = finished_at or datetime.datetime.now(datetime.timezone.utc)
        checks = checked_at_by_index or {}
        count = exercise.target_set_count
        payloads: list[SetPayload] = []
        for set_index in cls.missing_indices(exercise, checks, include_unchecked):
            completed_at = ChecklistReconciler.local_timestamp(checks, set_index)
            if completed_at is None:
                completed_at = cls.interpolate_timestamp(set_index, count, started_at, finished_at)
            payloads.append(
                SetPayload(
                    set_index=set_index,
                    reps=targets.reps,
                    weight=targets.weight,
                    band_label=targets.band_label,
                    started_at=completed_at,
                    completed_at=completed_at,
                )
            )
        return payloads

    @staticmethod
    def resolve_exercise_start(
        exercise: SessionExercise, fallback: datetime.datetime
    ) -> datetime.datetime:
        if exercise.started_at is not None:
            return exercise.started_at
        for logged in exercise.sets:
            stamp = logged.started_at or logged.completed_at or logged.created_at
            if stamp is not None:
                return stamp
        return fallback

    @classmethod
    def require_payloads(
        cls,
        exercise: SessionExercise,
        checked_at_by_index: Optional[Mapping[int, LocalCheck]] = None,
        started_at: Optional[datetime.datetime] = None,
        finished_at: Optional[datetime.datetime] = None,
        default_band_label: Optional[str] = None,
        include_unchecked: bool = False,
        rep_overrides: Optional[Mapping[int, int]] = None,
    ) -> list[SetPayload]:
        """Like :meth:`build_payloads` but raise when sets cannot be synthesized."""
        needed = cls.missing_indices(exercise, checked_at_by_index, include_unchecked)
        if not needed:
            return []
        if cls.resolve_targets(exercise, default_band_label) is None:
            raise SynthesisPreconditionError(
                f"Cannot log sets for {exercise.name}: reps or weight is not configured"
            )
        payloads = cls.build_payloads(
            exercise,
            checked_at_by_index,
            started_at,
            finished_at,
            default_band_label,
            include_unchecked,
        )
        return cls.apply_rep_overrides(exercise, payloads, rep_overrides)

    @staticmethod
    def apply_rep_overrides(
        exercise: SessionExercise,
        payloads: list[SetPayload],
        rep_overrides: Optional[Mapping[int, int]],
    ) -> list[SetPayload]:
        if not rep_overrides:
            return payloads
        result = []
        for payload in payloads:
            reps = rep_overrides.get(payload.set_index, payload.reps)
            if isinstance(reps, bool) or not isinstance(reps, int) or reps <= 0:
                raise SynthesisPreconditionError(
                    f"Invalid reps for {exercise.name} set {payload.set_index}"
                )
            result.append(payload.model_copy(update={"reps": reps}))
        return result
