from __future__ import annotations

import datetime
from typing import Mapping, NamedTuple, Optional

from loguru import logger

from algorithms.checklist import LocalCheck
from algorithms.set_synthesizer import MissingSetSynthesizer
from session_commands import SessionCommands
from session_models import EngineError, LoggedSet, SessionExercise, SetPayload
from session_state import replace_step


class PairFinishError(EngineError):
    """Finishing one member of a superset failed and the action was rolled back."""

    def __init__(self, message: str, exercise_key: str) -> None:
        super().__init__(message)
        self.exercise_key = exercise_key


class FinishPlan(NamedTuple):
    exercise: SessionExercise
    payloads: list[SetPayload]


class PairFinishTransaction:
    """Finish (or skip) one exercise, or both members of a superset, as a unit.

    All payloads are planned before the first backend call. If any call
    fails, sets created by this transaction are deleted again, exercises
    it completed are re-started and every other member gets back the status
    it had when it was planned.
    """

    def __init__(
        self,
        commands: SessionCommands,
        finished_at: datetime.datetime,
        skipped: bool = False,
        default_band_label: Optional[str] = None,
    ) -> None:
        self.commands = commands
        self.generation = commands.state.generation
        self.finished_at = finished_at
        self.skipped = skipped
        self.default_band_label = default_band_label
        self.plans: list[FinishPlan] = []
        self.created: list[tuple[SessionExercise, LoggedSet]] = []
        self.completed: list[SessionExercise] = []

    def plan(
        self,
        exercise: SessionExercise,
        local_checks: Optional[Mapping[int, LocalCheck]] = None,
        rep_overrides: Optional[Mapping[int, int]] = None,
    ) -> FinishPlan:
        # Skipping logs only sets the user ticked; finishing back-fills the rest.
        payloads = MissingSetSynthesizer.require_payloads(
            exercise,
            local_checks,
            MissingSetSynthesizer.resolve_exercise_start(exercise, self.finished_at),
            self.finished_at,
            self.default_band_label,
            include_unchecked=not self.skipped,
            rep_overrides=rep_overrides,
        )
        plan = FinishPlan(exercise, payloads)
        self.plans.append(plan)
        return plan

    @property
    def keys(self) -> list[str]:
        return [plan.exercise.key for plan in self.plans]

    async def commit(self) -> None:
        for plan in self.plans:
            try:
                for payload in plan.payloads:
                    created = await self.commands.create_set(plan.exercise, payload)
                    self.created.append((plan.exercise, created.logged_set))
                await self.commands.complete_exercise(
                    plan.exercise, self.finished_at, skipped=self.skipped
                )
                self.completed.append(plan.exercise)
            except EngineError as exc:
                logger.warning("Finishing {} failed: {}", plan.exercise.key, exc)
                await self.rollback()
                raise PairFinishError(str(exc), plan.exercise.key) from exc

    async def rollback(self) -> None:
        for exercise, logged in reversed(self.created):
            if logged.id is None:
                continue
            try:
                await self.commands.delete_set(exercise, logged)
            except EngineError:
                logger.exception("Could not delete set {} during rollback", logged.id)
        reopened = {exercise.key for exercise in self.completed}
        for exercise in reversed(self.completed):
            try:
                await self.commands.start_exercise(exercise)
            except EngineError:
                logger.exception("Could not re-open {} during rollback", exercise.key)
        for plan in self.plans:
            if plan.exercise.key not in reopened:
                self._restore(plan.exercise)
        self.created.clear()
        self.completed.clear()
        if self.plans:
            self.commands.state.selected_key = self.plans[0].exercise.key

    def _restore(self, planned: SessionExercise) -> None:
        # Set creation reports progress, which can move a pending member forward.
        state = self.commands.state
        if state.generation != self.generation:
            return
        step = state.find(planned.key)
        if not isinstance(step, SessionExercise):
            return
        replace_step(
            state,
            step.model_copy(
                update={
                    "status": planned.status,
                    "started_at": planned.started_at,
                    "completed_at": planned.completed_at,
                }
            ),
        )
