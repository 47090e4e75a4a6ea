"""Optimistic, per-key serialized saving of next-session target weights."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Iterable, Optional

from loguru import logger

from algorithms.weight_tools import TargetWeightTools
from backend import SessionBackend
from feedback_timers import FeedbackTimers
from localization import translator
from session_models import (
    EngineError,
    SessionExercise,
    build_target_weight_key,
    positive_int,
)
from session_state import SessionState, write_routine_target
from settings_schema import EngineSettings


class TargetWeightStatus(str, Enum):
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"
    QUEUED = "queued"
    FAILED = "failed"


STATUS_LABELS = {
    TargetWeightStatus.PENDING: "Save on finish",
    TargetWeightStatus.SAVING: "Saving",
    TargetWeightStatus.SAVED: "Saved",
    TargetWeightStatus.QUEUED: "Queued offline",
    TargetWeightStatus.FAILED: "Failed",
}


def status_label(status: Optional[str], translate: Callable[[str], str] = translator.gettext) -> Optional[str]:
    try:
        label = STATUS_LABELS[TargetWeightStatus(status)]
    except ValueError:
        return None
    return translate(label)


class TargetWeightEdit:
    """A displayed target weight that has not been confirmed by the backend."""

    def __init__(
        self,
        routine_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        equipment: str,
        target_weight: float,
        previous_weight: float,
    ) -> None:
        self.routine_id = routine_id
        self.exercise_id = exercise_id
        self.routine_exercise_id = routine_exercise_id
        self.equipment = equipment
        self.target_weight = target_weight
        self.previous_weight = previous_weight

    def __repr__(self) -> str:
        return (
            f"TargetWeightEdit({self.exercise_id}, {self.target_weight!r}, "
            f"previous={self.previous_weight!r})"
        )


class TargetWeightQueue:
    """Save target-weight edits one at a time per key, coalescing bursts."""

    STATUS_TIMER = "target-weight-status:"

    def __init__(
        self,
        state: SessionState,
        backend: SessionBackend,
        timers: Optional[FeedbackTimers] = None,
        settings: Optional[EngineSettings] = None,
        notify: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.state = state
        self.backend = backend
        self.timers = timers or FeedbackTimers()
        self.settings = settings or EngineSettings()
        self.notify = notify
        self._pending: dict[str, TargetWeightEdit] = {}
        self._tails: dict[str, asyncio.Future] = {}
        self._generation = 0

    # Keys and editability

    def context(self, exercise) -> Optional[tuple[str, int, str]]:
        """Return ``(key, routine_id, equipment)`` for an editable exercise."""
        if not TargetWeightTools.is_editable(exercise):
            return None
        routine_id = positive_int(self.state.routine_id)
        equipment = (exercise.equipment or "").strip()
        if routine_id is None or not equipment:
            return None
        key = build_target_weight_key(
            routine_id, exercise.exercise_id, equipment, exercise.routine_exercise_id
        )
        return key, routine_id, equipment

    def is_editable(self, exercise) -> bool:
        return self.context(exercise) is not None

    def key_for(self, exercise) -> Optional[str]:
        context = self.context(exercise)
        return context[0] if context else None

    def displayed(self, exercise: SessionExercise) -> Optional[float]:
        key = self.key_for(exercise)
        if key is not None and key in self.state.target_weights:
            return self.state.target_weights[key]
        return TargetWeightTools.round_weight(exercise.target_weight)

    def status(self, exercise: SessionExercise) -> Optional[str]:
        key = self.key_for(exercise)
        return self.state.target_weight_status.get(key) if key else None

    def pending(self, key: str) -> Optional[TargetWeightEdit]:
        return self._pending.get(key)

    # Edits

    def adjust(self, exercise: SessionExercise, direction: int) -> Optional[float]:
        context = self.context(exercise)
        if context is None:
            return None
        current = self.displayed(exercise)
        if current is None:
            return None
        step = TargetWeightTools.step_for(
            context[2],
            self.settings.target_weight_step_default,
            self.settings.target_weight_step_barbell,
        )
        return self._queue_edit(exercise, current + (-step if direction < 0 else step))

    def set_draft(self, exercise: SessionExercise, text: str) -> None:
        key = self.key_for(exercise)
        if key is not None:
            self.state.target_weight_drafts[key] = text

    def commit_text(self, exercise: SessionExercise, text: str) -> Optional[float]:
        key = self.key_for(exercise)
        if key is None:
            return None
        parsed = TargetWeightTools.parse_input(text)
        if parsed is None:
            self.state.target_weight_drafts.pop(key, None)
            return None
        return self._queue_edit(exercise, parsed)

    def _queue_edit(self, exercise: SessionExercise, value: float) -> Optional[float]:
        key, routine_id, equipment = self.context(exercise)
        current = self.displayed(exercise)
        target = TargetWeightTools.clamp(value, self.settings.target_weight_min)
        self.state.target_weight_drafts.pop(key, None)
        if target == current:
            return target

        self.state.target_weights[key] = target
        earlier = self._pending.get(key)
        self._pending[key] = TargetWeightEdit(
            routine_id,
            exercise.exercise_id,
            exercise.routine_exercise_id,
            equipment,
            target,
            earlier.previous_weight if earlier else current,
        )
        self._set_status(key, TargetWeightStatus.PENDING)
        self._enqueue(key)
        return target

    # Persistence

    def _enqueue(self, key: str) -> asyncio.Future:
        previous = self._tails.get(key)
        task = asyncio.ensure_future(self._save(key, previous))
        self._tails[key] = task

        def forget(done: asyncio.Future) -> None:
            if self._tails.get(key) is done:
                del self._tails[key]

        task.add_done_callback(forget)
        return task

    async def _save(self, key: str, previous: Optional[asyncio.Future]) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        generation = self._generation
        edit = self._pending.get(key)
        if edit is None:
            return
        self._set_status(key, TargetWeightStatus.SAVING)
        try:
            result = await self.backend.update_routine_target(
                edit.routine_id,
                edit.exercise_id,
                edit.routine_exercise_id,
                edit.equipment,
                edit.target_weight,
            )
        except EngineError as exc:
            if generation == self._generation:
                self._fail(key, edit, exc)
            return
        if generation != self._generation:
            return

        saved = edit.target_weight
        if result.target is not None and result.target.target_weight is not None:
            saved = TargetWeightTools.round_weight(result.target.target_weight)
        newer = self._pending.get(key)
        if newer is edit:
            del self._pending[key]
            self.state.target_weights[key] = saved
        elif newer is not None:
            newer.previous_weight = saved
        write_routine_target(
            self.state,
            edit.routine_id,
            edit.exercise_id,
            edit.routine_exercise_id,
            edit.equipment,
            saved,
        )
        if result.deferred:
            self._set_status(key, TargetWeightStatus.QUEUED)
        else:
            self._set_status(
                key,
                TargetWeightStatus.SAVED,
                self.settings.target_weight_status_clear_seconds,
            )
        logger.debug("Saved target weight {} for {}", saved, key)

    def _fail(self, key: str, edit: TargetWeightEdit, exc: Exception) -> None:
        logger.warning("Saving target weight for {} failed: {}", key, exc)
        newer = self._pending.get(key)
        if newer is edit:
            del self._pending[key]
            self.state.target_weights[key] = edit.previous_weight
        elif newer is not None:
            newer.previous_weight = edit.previous_weight
        self._set_status(
            key,
            TargetWeightStatus.FAILED,
            self.settings.target_weight_status_clear_seconds,
        )
        if self.notify is not None:
            self.notify(str(exc) or translator.gettext("Failed to save target weight."))

    def _set_status(
        self, key: str, status: TargetWeightStatus, clear_after: Optional[float] = None
    ) -> None:
        timer = self.STATUS_TIMER + key
        self.timers.cancel(timer)
        self.state.target_weight_status[key] = status.value
        if clear_after:
            self.timers.schedule(timer, clear_after, self._clear_status, key, status.value)

    def _clear_status(self, key: str, status: str) -> None:
        if self.state.target_weight_status.get(key) == status:
            del self.state.target_weight_status[key]

    async def wait(self, key: Optional[str]) -> None:
        """Wait until every queued save for ``key`` has settled."""
        task = self._tails.get(key) if key else None
        while task is not None:
            await asyncio.wait([task])
            newer = self._tails.get(key)
            task = newer if newer is not task else None

    async def persist_pending(self, exercise: SessionExercise) -> None:
        key = self.key_for(exercise)
        if key is None:
            return
        if key in self._pending and key not in self._tails:
            self._enqueue(key)
        await self.wait(key)

    def prune(self, valid_keys: Iterable[str]) -> None:
        valid = set(valid_keys)
        for store in (
            self._pending,
            self.state.target_weights,
            self.state.target_weight_drafts,
            self.state.target_weight_status,
        ):
            for key in [key for key in store if key not in valid]:
                store.pop(key, None)
                self.timers.cancel(self.STATUS_TIMER + key)

    def valid_keys(self) -> set[str]:
        keys = set()
        for step in self.state.exercises():
            key = self.key_for(step)
            if key is not None:
                keys.add(key)
        return keys

    def close(self) -> None:
        """Discard all state; saves still in flight become no-ops."""
        self._generation += 1
        self.timers.cancel_prefix(self.STATUS_TIMER)
        self._pending.clear()
        self._tails.clear()
        self.state.target_weights.clear()
        self.state.target_weight_drafts.clear()
        self.state.target_weight_status.clear()
