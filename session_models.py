from __future__ import annotations

import datetime
import math
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

WARMUP_STEP_ID = "__warmup__"
WARMUP_STEP_NAME = "Warmup"
ROUTINE_TYPES = ("standard", "rehab")


class EngineError(Exception):
    """Base class for errors raised by the workout engine."""


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ExerciseStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


def coerce_number(value: Any) -> float | None:
    """Return ``value`` as a finite float or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def positive_int(value: Any) -> int | None:
    """Return ``value`` as a positive integer, or ``None`` if it is not one."""
    number = coerce_number(value)
    if number is None or number <= 0 or not number.is_integer():
        return None
    return int(number)


def normalize_equipment(value: Any) -> str:
    return str(value or "").strip().lower()


def is_bodyweight(equipment: Any) -> bool:
    return normalize_equipment(equipment) == "bodyweight"


def is_band(equipment: Any) -> bool:
    return normalize_equipment(equipment) == "band"


def normalize_routine_exercise_id(value: Any) -> int | None:
    number = coerce_number(value)
    if number is None or number <= 0:
        return None
    return int(number)


def normalize_superset_group(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_routine_type(value: Any, fallback: str = "standard") -> str:
    text = str(value or "").strip().lower()
    if not text:
        return fallback
    return text if text in ROUTINE_TYPES else fallback


def build_session_exercise_key(exercise_id: Any, routine_exercise_id: Any = None) -> str:
    """Composite identity of an exercise slot within a session."""
    base = f"exercise:{str(exercise_id).strip() or '0'}"
    slot = normalize_routine_exercise_id(routine_exercise_id)
    if slot is None:
        return base
    return f"{base}/routine:{slot}"


def build_target_weight_key(
    routine_id: Any, exercise_id: Any, equipment: Any, routine_exercise_id: Any = None
) -> str:
    routine = positive_int(routine_id)
    return ":".join(
        [
            str(routine) if routine is not None else "none",
            build_session_exercise_key(exercise_id, routine_exercise_id),
            normalize_equipment(equipment) or "unknown",
        ]
    )


WARMUP_STEP_KEY = build_session_exercise_key(WARMUP_STEP_ID)


class CamelModel(BaseModel):
    """Base model reading the backend's camelCase payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class LoggedSet(CamelModel):
    id: Optional[Union[int, str]] = None
    set_index: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    band_label: Optional[str] = None
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None
    routine_exercise_id: Optional[int] = None
    pending: bool = False

    @field_validator("set_index", mode="before")
    @classmethod
    def _set_index(cls, value: Any) -> int | None:
        return positive_int(value)

    @field_validator("routine_exercise_id", mode="before")
    @classmethod
    def _slot(cls, value: Any) -> int | None:
        return normalize_routine_exercise_id(value)

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def checked_at(self) -> datetime.datetime | None:
        return self.completed_at or self.created_at or self.started_at


class _TargetFields(CamelModel):
    name: str = "Exercise"
    equipment: Optional[str] = None
    target_sets: Optional[float] = None
    target_reps: Optional[float] = None
    target_reps_range: Optional[str] = None
    target_weight: Optional[float] = None
    target_band_label: Optional[str] = None
    target_rest_seconds: Optional[float] = None
    position: Optional[float] = None
    superset_group: Optional[str] = None
    notes: Optional[str] = None

    @field_validator(
        "target_sets",
        "target_reps",
        "target_weight",
        "target_rest_seconds",
        "position",
        mode="before",
    )
    @classmethod
    def _numbers(cls, value: Any) -> float | None:
        return coerce_number(value)

    @field_validator("target_reps_range", "target_band_label", mode="before")
    @classmethod
    def _blank_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("superset_group", mode="before")
    @classmethod
    def _group(cls, value: Any) -> str | None:
        return normalize_superset_group(value)


class SessionExercise(_TargetFields):
    """One exercise instance and its progress inside a session."""

    kind: Literal["exercise"] = "exercise"
    exercise_id: int
    routine_exercise_id: Optional[int] = None
    status: ExerciseStatus = ExerciseStatus.PENDING
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    duration_seconds: Optional[float] = None
    sets: list[LoggedSet] = Field(default_factory=list)

    @field_validator("routine_exercise_id", mode="before")
    @classmethod
    def _slot(cls, value: Any) -> int | None:
        return normalize_routine_exercise_id(value)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> ExerciseStatus:
        text = str(value or "").strip().lower()
        try:
            return ExerciseStatus(text)
        except ValueError:
            return ExerciseStatus.PENDING

    @property
    def key(self) -> str:
        return build_session_exercise_key(self.exercise_id, self.routine_exercise_id)

    @property
    def target_set_count(self) -> int | None:
        return positive_int(self.target_sets)


class WarmupStep(CamelModel):
    """Synthetic warmup entry shown before the first exercise."""

    kind: Literal["warmup"] = "warmup"
    name: str = WARMUP_STEP_NAME
    status: ExerciseStatus = ExerciseStatus.PENDING
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    position: float = -1

    @property
    def key(self) -> str:
        return WARMUP_STEP_KEY


SessionStep = Annotated[Union[SessionExercise, WarmupStep], Field(discriminator="kind")]


class ExerciseProgress(CamelModel):
    exercise_id: int
    routine_exercise_id: Optional[int] = None
    status: Optional[ExerciseStatus] = None
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    duration_seconds: Optional[float] = None
    pending: bool = False

    @field_validator("routine_exercise_id", mode="before")
    @classmethod
    def _slot(cls, value: Any) -> int | None:
        return normalize_routine_exercise_id(value)

    @property
    def key(self) -> str:
        return build_session_exercise_key(self.exercise_id, self.routine_exercise_id)


class RoutineExercise(_TargetFields):
    id: Optional[int] = None
    exercise_id: int


class Routine(CamelModel):
    id: int
    name: str = ""
    routine_type: str = "standard"
    exercises: list[RoutineExercise] = Field(default_factory=list)

    @field_validator("routine_type", mode="before")
    @classmethod
    def _routine_type(cls, value: Any) -> str:
        return normalize_routine_type(value)


class ActiveSession(CamelModel):
    id: int
    routine_id: Optional[int] = None
    routine_type: str = "standard"
    name: Optional[str] = None
    notes: Optional[str] = None
    started_at: Optional[datetime.datetime] = None
    ended_at: Optional[datetime.datetime] = None
    warmup_started_at: Optional[datetime.datetime] = None
    warmup_completed_at: Optional[datetime.datetime] = None
    exercises: list[SessionExercise] = Field(default_factory=list)

    @field_validator("routine_type", mode="before")
    @classmethod
    def _routine_type(cls, value: Any) -> str:
        return normalize_routine_type(value)


class SetPayload(BaseModel):
    """Arguments for one set-creation call produced by the synthesizer."""

    set_index: int
    reps: int
    weight: float
    band_label: Optional[str] = None
    started_at: datetime.datetime
    completed_at: datetime.datetime


class ChecklistRow(BaseModel):
    set_index: int
    checked: bool
    locked: bool
    checked_at: Optional[datetime.datetime] = None
    persisted_set: Optional[LoggedSet] = None
