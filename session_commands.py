from __future__ import annotations

import datetime
from typing import Callable, Optional

from loguru import logger

from backend import CreatedSet, ProgressResult, SessionBackend, SessionUpdate, UpdatedSet
from session_models import (
    ExerciseStatus,
    LoggedSet,
    SessionExercise,
    SetPayload,
    utcnow,
)
from session_state import (
    SessionState,
    add_logged_set,
    apply_progress,
    remove_logged_set,
    reset_for_session,
    set_exercise_status,
    update_logged_set,
)


class SessionCommands:
    """Backend calls for the active session, applied to state on success.

    Results that arrive after :meth:`SessionState` was torn down (its
    generation moved on) are returned but never applied.
    """

    def __init__(
        self,
        state: SessionState,
        backend: SessionBackend,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.state = state
        self.backend = backend
        self.clock = clock

    def _stale(self, generation: int) -> bool:
        return generation != self.state.generation

    async def start_session(self, routine_id: int) -> SessionUpdate:
        generation = self.state.generation
        result = await self.backend.start_session(routine_id)
        if not self._stale(generation):
            reset_for_session(self.state, result.session)
        logger.info("Started session for routine {}", routine_id)
        return result

    async def cancel_session(self) -> None:
        session_id = self.state.session_id
        generation = self.state.generation
        await self.backend.cancel_session(session_id)
        if not self._stale(generation):
            reset_for_session(self.state, None)
        logger.info("Cancelled session {}", session_id)

    async def start_exercise(self, exercise: SessionExercise) -> ProgressResult:
        generation = self.state.generation
        result = await self.backend.start_exercise(
            self.state.session_id,
            exercise.exercise_id,
            exercise.routine_exercise_id,
            self.clock(),
        )
        if self._stale(generation):
            return result
        if result.exercise_progress is not None:
            apply_progress(self.state, result.exercise_progress)
        else:
            set_exercise_status(self.state, exercise.key, ExerciseStatus.IN_PROGRESS, self.clock())
        self.state.selected_key = exercise.key
        logger.debug("Started {}", exercise.key)
        return result

    async def complete_exercise(
        self,
        exercise: SessionExercise,
        completed_at: datetime.datetime,
        skipped: bool = False,
    ) -> ProgressResult:
        generation = self.state.generation
        result = await self.backend.complete_exercise(
            self.state.session_id,
            exercise.exercise_id,
            exercise.routine_exercise_id,
            completed_at,
            skipped=skipped,
        )
        if self._stale(generation):
            return result
        if result.exercise_progress is not None:
            apply_progress(self.state, result.exercise_progress)
        else:
            status = ExerciseStatus.SKIPPED if skipped else ExerciseStatus.COMPLETED
            set_exercise_status(self.state, exercise.key, status, completed_at)
        logger.debug("{} {}", "Skipped" if skipped else "Completed", exercise.key)
        return result

    async def create_set(self, exercise: SessionExercise, payload: SetPayload) -> CreatedSet:
        generation = self.state.generation
        result = await self.backend.create_set(
            self.state.session_id,
            exercise.exercise_id,
            exercise.routine_exercise_id,
            payload.reps,
            payload.weight,
            payload.band_label,
            payload.started_at,
            payload.completed_at,
            set_index=payload.set_index,
        )
        if self._stale(generation):
            return result
        logged = result.logged_set
        if logged.set_index is None:
            logged = logged.model_copy(update={"set_index": payload.set_index})
        add_logged_set(self.state, exercise.key, logged)
        apply_progress(self.state, result.exercise_progress)
        return result

    async def update_set(
        self,
        logged: LoggedSet,
        reps: int,
        weight: float,
        band_label: Optional[str] = None,
    ) -> UpdatedSet:
        generation = self.state.generation
        result = await self.backend.update_set(logged.id, reps, weight, band_label)
        if self._stale(generation):
            return result
        fields = {"reps": reps, "weight": weight, "band_label": band_label}
        if result.logged_set is not None:
            fields.update(result.logged_set.model_dump(exclude_unset=True, exclude={"id"}))
        update_logged_set(self.state, logged.id, fields)
        return result

    async def delete_set(self, exercise: SessionExercise, logged: LoggedSet) -> None:
        generation = self.state.generation
        await self.backend.delete_set(logged.id)
        if not self._stale(generation):
            remove_logged_set(self.state, exercise.key, logged.id)

    async def end_session(self, ended_at: Optional[datetime.datetime] = None) -> SessionUpdate:
        session = self.state.session
        generation = self.state.generation
        ended_at = ended_at or self.clock()
        result = await self.backend.end_session(
            session.id,
            ended_at,
            session.warmup_started_at,
            session.warmup_completed_at,
        )
        if not self._stale(generation):
            self.state.session = session.model_copy(update={"ended_at": ended_at})
            self.state.ended = True
            self.state.guided = False
            self.state.selected_key = None
        logger.info("Ended session {}", session.id)
        return result
