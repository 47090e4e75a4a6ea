from __future__ import annotations

from typing import Iterable, Optional

from session_models import (
    ActiveSession,
    ExerciseStatus,
    LoggedSet,
    Routine,
    SessionExercise,
    SessionStep,
    WarmupStep,
    normalize_routine_type,
)

TRACKED_STATUSES = {ExerciseStatus.IN_PROGRESS, ExerciseStatus.COMPLETED}


def exercise_has_tracked_progress(exercise: SessionExercise) -> bool:
    return (
        exercise.status in TRACKED_STATUSES
        or exercise.started_at is not None
        or exercise.completed_at is not None
        or bool(exercise.sets)
    )


def session_has_tracked_progress(session: Optional[ActiveSession]) -> bool:
    """Return True if the session recorded anything worth keeping."""
    if session is None:
        return False
    if session.warmup_started_at or session.warmup_completed_at:
        return True
    return any(exercise_has_tracked_progress(exercise) for exercise in session.exercises)


class SessionNormalizer:
    """Turn a raw session (or its routine template) into ordered steps."""

    @staticmethod
    def dedupe_sets(sets: Iterable[LoggedSet]) -> list[LoggedSet]:
        seen: set[tuple] = set()
        unique: list[LoggedSet] = []
        for order, logged in enumerate(sets):
            if logged.id is not None:
                identity: tuple = ("id", str(logged.id))
            else:
                stamp = logged.created_at or logged.completed_at
                identity = ("index", logged.set_index, stamp.isoformat() if stamp else order)
            if identity in seen:
                continue
            seen.add(identity)
            unique.append(logged)
        return sorted(
            unique,
            key=lambda logged: (logged.set_index is None, logged.set_index or 0),
        )

    @staticmethod
    def find_routine(routine_id: Optional[int], routines: Iterable[Routine]) -> Optional[Routine]:
        if routine_id is None:
            return None
        for routine in routines:
            if routine.id == routine_id:
                return routine
        return None

    @staticmethod
    def from_routine(routine: Routine) -> list[SessionExercise]:
        exercises = []
        for entry in routine.exercises:
            data = entry.model_dump(exclude={"id"})
            exercises.append(
                SessionExercise(
                    **data,
                    routine_exercise_id=entry.id,
                    status=ExerciseStatus.PENDING,
                )
            )
        return exercises

    @staticmethod
    def build_warmup(session: ActiveSession, exercises: list[SessionExercise], session_sourced: bool) -> WarmupStep:
        started_at = session.warmup_started_at or session.started_at
        if session.warmup_completed_at is not None:
            return WarmupStep(
                status=ExerciseStatus.COMPLETED,
                started_at=started_at,
                completed_at=session.warmup_completed_at,
            )
        if session_sourced and any(exercise_has_tracked_progress(ex) for ex in exercises):
            return WarmupStep(
                status=ExerciseStatus.COMPLETED,
                started_at=started_at,
                completed_at=started_at,
            )
        if started_at is not None:
            return WarmupStep(status=ExerciseStatus.IN_PROGRESS, started_at=started_at)
        return WarmupStep()

    @classmethod
    def normalize(
        cls, session: Optional[ActiveSession], routines: Iterable[Routine] = ()
    ) -> list[SessionStep]:
        if session is None:
            return []
        routines = list(routines)
        session_sourced = bool(session.exercises)
        if session_sourced:
            source = list(session.exercises)
        else:
            routine = cls.find_routine(session.routine_id, routines)
            source = cls.from_routine(routine) if routine else []

        exercises: list[SessionExercise] = []
        for index, exercise in enumerate(source):
            update: dict = {"sets": cls.dedupe_sets(exercise.sets)}
            if exercise.position is None:
                update["position"] = float(index)
            exercises.append(exercise.model_copy(update=update))
        exercises.sort(key=lambda exercise: exercise.position)

        steps: list[SessionStep] = list(exercises)
        if normalize_routine_type(session.routine_type) == "standard":
            steps.insert(0, cls.build_warmup(session, exercises, session_sourced))
        return steps
