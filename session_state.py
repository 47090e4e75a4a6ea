"""Mutable state of the guided workout and the reducers that change it."""

from __future__ import annotations

import datetime
from typing import NamedTuple, Optional

from session_models import (
    ActiveSession,
    ExerciseProgress,
    ExerciseStatus,
    LoggedSet,
    Routine,
    SessionExercise,
    SessionStep,
    WarmupStep,
    build_session_exercise_key,
)
from session_normalizer import SessionNormalizer
from algorithms.checklist import LocalCheck


class DeletedSet(NamedTuple):
    """A set removed by the user, kept briefly so the deletion can be undone."""

    key: str
    exercise_name: str
    logged_set: LoggedSet


class SessionState:
    """Everything a UI needs to render the active workout."""

    def __init__(self) -> None:
        self.session: Optional[ActiveSession] = None
        self.routines: list[Routine] = []
        self.steps: list[SessionStep] = []
        self.selected_key: Optional[str] = None
        self.guided = False
        self.ended = False
        self.ended_with_progress: Optional[bool] = None
        self.end_confirmation_pending = False
        self.transition_in_flight = False
        self.recently_deleted_set: Optional[DeletedSet] = None
        self.local_checks: dict[str, dict[int, LocalCheck]] = {}
        self.rep_selections: dict[str, dict[int, int]] = {}
        self.target_weights: dict[str, float] = {}
        self.target_weight_drafts: dict[str, str] = {}
        self.target_weight_status: dict[str, str] = {}
        self.celebrating_sets: set[str] = set()
        self.celebrating_exercises: set[str] = set()
        self.notice: Optional[str] = None
        self.generation = 0

    @property
    def session_id(self) -> Optional[int]:
        return self.session.id if self.session else None

    @property
    def routine_id(self) -> Optional[int]:
        return self.session.routine_id if self.session else None

    def find(self, key: Optional[str]) -> Optional[SessionStep]:
        if key is None:
            return None
        for step in self.steps:
            if step.key == key:
                return step
        return None

    def exercises(self) -> list[SessionExercise]:
        return [step for step in self.steps if isinstance(step, SessionExercise)]

    def warmup(self) -> Optional[WarmupStep]:
        for step in self.steps:
            if isinstance(step, WarmupStep):
                return step
        return None


def apply_snapshot(state: SessionState, session: Optional[ActiveSession], routines: list[Routine]) -> None:
    state.session = session
    state.routines = list(routines)
    state.steps = SessionNormalizer.normalize(session, state.routines)
    state.ended = session is None or session.ended_at is not None
    keys = {step.key for step in state.steps}
    for store in (state.local_checks, state.rep_selections):
        for key in [key for key in store if key not in keys]:
            del store[key]
    if state.selected_key not in keys:
        state.selected_key = None
    if session is None:
        state.guided = False


def replace_step(state: SessionState, step: SessionStep) -> None:
    for index, existing in enumerate(state.steps):
        if existing.key == step.key:
            state.steps[index] = step
            return


def apply_progress(state: SessionState, progress: Optional[ExerciseProgress]) -> None:
    if progress is None:
        return
    step = state.find(progress.key)
    if not isinstance(step, SessionExercise):
        return
    update: dict = {}
    if progress.status is not None:
        update["status"] = progress.status
    if progress.started_at is not None:
        update["started_at"] = progress.started_at
    if progress.status == ExerciseStatus.IN_PROGRESS:
        update["completed_at"] = None
    elif progress.completed_at is not None:
        update["completed_at"] = progress.completed_at
    if progress.duration_seconds is not None:
        update["duration_seconds"] = progress.duration_seconds
    replace_step(state, step.model_copy(update=update))


def set_exercise_status(
    state: SessionState,
    key: str,
    status: ExerciseStatus,
    when: Optional[datetime.datetime] = None,
) -> None:
    step = state.find(key)
    if step is None:
        return
    update: dict = {"status": status}
    if status == ExerciseStatus.IN_PROGRESS:
        update["completed_at"] = None
        if step.started_at is None:
            update["started_at"] = when
    elif status in (ExerciseStatus.COMPLETED, ExerciseStatus.SKIPPED):
        update["completed_at"] = when
    replace_step(state, step.model_copy(update=update))


def add_logged_set(state: SessionState, key: str, logged: LoggedSet) -> None:
    step = state.find(key)
    if not isinstance(step, SessionExercise):
        return
    sets = SessionNormalizer.dedupe_sets([*step.sets, logged])
    replace_step(state, step.model_copy(update={"sets": sets}))


def remove_logged_set(state: SessionState, key: str, set_id) -> None:
    step = state.find(key)
    if not isinstance(step, SessionExercise):
        return
    sets = [logged for logged in step.sets if str(logged.id) != str(set_id)]
    replace_step(state, step.model_copy(update={"sets": sets}))


def set_local_check(state: SessionState, key: str, set_index: int, value: Optional[LocalCheck]) -> None:
    checks = state.local_checks.setdefault(key, {})
    if value is None:
        checks.pop(set_index, None)
    else:
        checks[set_index] = value
    if not checks:
        state.local_checks.pop(key, None)


def set_rep_selection(state: SessionState, key: str, set_index: int, reps: Optional[int]) -> None:
    selections = state.rep_selections.setdefault(key, {})
    if reps is None:
        selections.pop(set_index, None)
    else:
        selections[set_index] = reps
    if not selections:
        state.rep_selections.pop(key, None)


def clear_exercise_locals(state: SessionState, key: str) -> None:
    state.local_checks.pop(key, None)
    state.rep_selections.pop(key, None)


def write_routine_target(
    state: SessionState,
    routine_id: Optional[int],
    exercise_id: int,
    routine_exercise_id: Optional[int],
    equipment: Optional[str],
    target_weight: float,
) -> None:
    """Reflect a saved next-session target weight in the routine template."""
    key = build_session_exercise_key(exercise_id, routine_exercise_id)
    for routine in state.routines:
        if routine.id != routine_id:
            continue
        for entry in routine.exercises:
            entry_key = build_session_exercise_key(entry.exercise_id, entry.id)
            if routine_exercise_id is not None and entry_key != key:
                continue
            if routine_exercise_id is None and (
                entry.exercise_id != exercise_id or (entry.equipment or "") != (equipment or "")
            ):
                continue
            entry.target_weight = target_weight


def complete_warmup(state: SessionState, when: datetime.datetime) -> None:
    warmup = state.warmup()
    if warmup is None:
        return
    replace_step(
        state,
        warmup.model_copy(
            update={
                "status": ExerciseStatus.COMPLETED,
                "started_at": warmup.started_at or when,
                "completed_at": when,
            }
        ),
    )
    if state.session is not None:
        state.session = state.session.model_copy(
            update={
                "warmup_started_at": state.session.warmup_started_at or warmup.started_at or when,
                "warmup_completed_at": when,
            }
        )


def set_notice(state: SessionState, message: Optional[str]) -> None:
    state.notice = message


def update_logged_set(state: SessionState, set_id, fields: dict) -> None:
    """Merge backend-confirmed fields into whichever exercise holds ``set_id``."""
    for step in state.exercises():
        if not any(str(logged.id) == str(set_id) for logged in step.sets):
            continue
        sets = [
            logged.model_copy(update=fields) if str(logged.id) == str(set_id) else logged
            for logged in step.sets
        ]
        replace_step(state, step.model_copy(update={"sets": sets}))
        return


def reset_for_session(state: SessionState, session: Optional[ActiveSession]) -> None:
    """Drop per-session local state and load ``session`` in its place."""
    state.local_checks.clear()
    state.rep_selections.clear()
    state.selected_key = None
    state.guided = False
    state.end_confirmation_pending = False
    state.ended_with_progress = None
    state.recently_deleted_set = None
    apply_snapshot(state, session, state.routines)
