from __future__ import annotations

from typing import Iterable, Optional

from loguru import logger

from algorithms.checklist import ChecklistReconciler
from algorithms.set_synthesizer import MissingSetSynthesizer
from algorithms.supersets import SupersetPairing
from session_commands import SessionCommands
from session_models import ExerciseStatus, SessionExercise, SessionStep, WarmupStep
from session_state import SessionState

DONE_STATUSES = {ExerciseStatus.COMPLETED, ExerciseStatus.SKIPPED}


class ExerciseResolver:
    """Pure selection rules over the normalized step list."""

    @staticmethod
    def is_completed(step: Optional[SessionStep]) -> bool:
        if step is None:
            return True
        if step.status in DONE_STATUSES:
            return True
        if isinstance(step, SessionExercise):
            target = step.target_set_count
            if target is not None:
                return len(step.sets) >= target
        return False

    @staticmethod
    def _position(step: SessionStep) -> float:
        return step.position if step.position is not None else 0

    @classmethod
    def resolve_current(
        cls, steps: list[SessionStep], selected_key: Optional[str] = None
    ) -> Optional[SessionStep]:
        if not steps:
            return None
        if selected_key is not None:
            for step in steps:
                if step.key == selected_key:
                    return step
        for step in steps:
            if step.status == ExerciseStatus.IN_PROGRESS:
                return step
        for step in sorted(steps, key=cls._position):
            if not cls.is_completed(step):
                return step
        return steps[0]

    @classmethod
    def navigable(cls, steps: Iterable[SessionStep]) -> list[SessionExercise]:
        return sorted(
            (step for step in steps if isinstance(step, SessionExercise)),
            key=cls._position,
        )

    @classmethod
    def resolve_next_pending(
        cls,
        steps: list[SessionStep],
        current: Optional[SessionStep],
        exclude_keys: Iterable[str] = (),
        pairing: Optional[SupersetPairing] = None,
    ) -> Optional[SessionExercise]:
        """Pick the exercise to start after ``current`` is done.

        The warmup is never a candidate.
        """
        if current is None:
            return None
        excluded = {current.key, *exclude_keys}
        pending = [
            step
            for step in cls.navigable(steps)
            if step.key not in excluded and not cls.is_completed(step)
        ]
        if not pending:
            return None
        pairing = pairing or SupersetPairing.build(steps)
        partner = pairing.partner_of(current)
        if partner is not None and any(step.key == partner.key for step in pending):
            return next(step for step in pending if step.key == partner.key)
        position = cls._position(current)
        for step in pending:
            if cls._position(step) > position:
                return step
        return pending[0]


class ExerciseNavigator:
    """Move focus between exercises, saving checklist edits on the way out."""

    def __init__(
        self,
        state: SessionState,
        commands: SessionCommands,
        default_band_label: Optional[str] = "Red",
    ) -> None:
        self.state = state
        self.commands = commands
        self.default_band_label = default_band_label

    def current(self) -> Optional[SessionStep]:
        return ExerciseResolver.resolve_current(self.state.steps, self.state.selected_key)

    async def reconcile_checklist(self, step: Optional[SessionStep]) -> None:
        """Commit unsaved checklist edits for ``step`` as set creations and deletions."""
        if step is None or isinstance(step, WarmupStep) or self.state.session is None:
            return
        key = step.key
        local = self.state.local_checks.get(key)
        if local is None:
            return
        if not ChecklistReconciler.has_changes(step, local):
            self.state.local_checks.pop(key, None)
            return

        was_completed = ExerciseResolver.is_completed(step)
        rows = ChecklistReconciler.build_rows(step, local)
        for row in rows:
            if row.persisted_set is not None and not row.checked:
                await self.commands.delete_set(step, row.persisted_set)

        refreshed = self.state.find(key) or step
        finished_at = self.commands.clock()
        payloads = MissingSetSynthesizer.require_payloads(
            refreshed,
            local,
            MissingSetSynthesizer.resolve_exercise_start(refreshed, finished_at),
            finished_at,
            self.default_band_label,
            include_unchecked=False,
            rep_overrides=self.state.rep_selections.get(key),
        )
        for payload in payloads:
            await self.commands.create_set(refreshed, payload)

        if was_completed and any(not row.checked for row in rows):
            await self.commands.start_exercise(self.state.find(key) or refreshed)
        self.state.local_checks.pop(key, None)
        logger.debug("Reconciled checklist for {}", key)

    async def navigate(self, offset: int) -> bool:
        """Move ``offset`` exercises forward or back. Returns True if focus moved."""
        if not offset:
            return False
        if not ExerciseResolver.navigable(self.state.steps):
            return False
        # Shared with finish and skip so a reconcile never overlaps a transition.
        if self.state.transition_in_flight:
            return False
        self.state.transition_in_flight = True
        try:
            current = self.current()
            await self.reconcile_checklist(current)
            keys = [step.key for step in ExerciseResolver.navigable(self.state.steps)]
            if current is None or current.key not in keys:
                self.state.selected_key = keys[0]
                return True
            index = keys.index(current.key) + offset
            if index < 0 or index >= len(keys):
                return False
            self.state.selected_key = keys[index]
            return True
        finally:
            self.state.transition_in_flight = False
