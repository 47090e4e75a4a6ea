from __future__ import annotations

import datetime
from typing import Callable, Optional

from loguru import logger

from algorithms.checklist import ChecklistReconciler
from algorithms.readiness import ReadinessReport, ReadinessValidator
from algorithms.supersets import SupersetPairing
from backend import SessionBackend
from feedback_timers import FeedbackTimers
from localization import translator
from navigator_service import ExerciseNavigator, ExerciseResolver
from offline_sync import OfflineSync
from session_commands import SessionCommands
from session_models import (
    ChecklistRow,
    EngineError,
    LoggedSet,
    SessionExercise,
    SessionStep,
    SetPayload,
    WarmupStep,
    normalize_routine_type,
    positive_int,
    utcnow,
)
from session_normalizer import session_has_tracked_progress
from session_state import (
    DeletedSet,
    SessionState,
    apply_snapshot,
    clear_exercise_locals,
    complete_warmup,
    set_local_check,
    set_notice,
    set_rep_selection,
)
from settings_schema import EngineSettings
from superset_service import FinishPlan, PairFinishTransaction
from target_weight_service import TargetWeightQueue


class WorkoutNotReadyError(EngineError):
    """Guided mode was refused because routine targets are incomplete."""

    def __init__(self, report: ReadinessReport, message: str) -> None:
        super().__init__(message)
        self.report = report


class GuidedWorkoutService:
    """Drives an active session through the guided workout flow."""

    NOTICE_TIMER = "notice"
    UNDO_TIMER = "undo-delete"

    def __init__(
        self,
        backend: SessionBackend,
        settings: Optional[EngineSettings] = None,
        state: Optional[SessionState] = None,
        timers: Optional[FeedbackTimers] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        translate: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or EngineSettings()
        self.state = state or SessionState()
        self.timers = timers or FeedbackTimers()
        if translate is None:
            translator.set_language(self.settings.language)
            translate = translator.gettext
        self.translate = translate
        self.offline: Optional[OfflineSync] = None
        self.commands = SessionCommands(self.state, backend, clock)
        self.navigator = ExerciseNavigator(
            self.state, self.commands, self.settings.default_band_label
        )
        self.target_weights = TargetWeightQueue(
            self.state, backend, self.timers, self.settings, notify=self._notify
        )

    @property
    def clock(self) -> Callable[[], datetime.datetime]:
        return self.commands.clock

    # Queries

    @property
    def steps(self) -> list[SessionStep]:
        return self.state.steps

    def current(self) -> Optional[SessionStep]:
        return ExerciseResolver.resolve_current(self.state.steps, self.state.selected_key)

    def pairing(self) -> SupersetPairing:
        return SupersetPairing.build(self.state.steps)

    def checklist(self, step: Optional[SessionStep]) -> list[ChecklistRow]:
        if not isinstance(step, SessionExercise):
            return []
        return ChecklistReconciler.build_rows(step, self.state.local_checks.get(step.key))

    # Feedback

    def _notify(self, message: Optional[str]) -> None:
        set_notice(self.state, message)
        self.timers.cancel(self.NOTICE_TIMER)
        if message:
            self.timers.schedule(
                self.NOTICE_TIMER,
                self.settings.notice_clear_seconds,
                self._clear_notice,
                message,
            )

    def _clear_notice(self, message: str) -> None:
        if self.state.notice == message:
            set_notice(self.state, None)

    def _fail(self, fallback: str, exc: Exception) -> None:
        logger.warning("{} {}", fallback, exc)
        self._notify(str(exc) or self.translate(fallback))

    def _celebrate(self, store: set, name: str) -> None:
        store.add(name)
        self.timers.schedule(name, self.settings.feedback_seconds, store.discard, name)

    def _celebrate_set(self, key: str, set_index: int) -> None:
        self._celebrate(self.state.celebrating_sets, f"set:{key}:{set_index}")

    def _clear_set_celebration(self, key: str, set_index: int) -> None:
        name = f"set:{key}:{set_index}"
        self.timers.cancel(name)
        self.state.celebrating_sets.discard(name)

    def _celebrate_exercise(self, key: str) -> None:
        self._celebrate(self.state.celebrating_exercises, f"exercise:{key}")

    # Lifecycle

    def connect(self, offline: OfflineSync) -> None:
        self.offline = offline
        offline.add_listener(self.handle_sync_complete)

    async def refresh(self) -> bool:
        generation = self.state.generation
        try:
            snapshot = await self.backend.fetch_active_session()
        except EngineError as exc:
            self._fail("Failed to refresh workout.", exc)
            return False
        if generation != self.state.generation:
            return False
        apply_snapshot(self.state, snapshot.session, snapshot.routines)
        self.target_weights.prune(self.target_weights.valid_keys())
        return True

    async def handle_sync_complete(self, applied: int = 0) -> None:
        logger.info("Offline sync applied {} change(s), refreshing", applied)
        await self.refresh()

    def begin_workout(self) -> Optional[SessionStep]:
        """Enter guided mode at the first unfinished step."""
        report = ReadinessValidator.validate(self.state.steps)
        if not report.valid:
            message = ReadinessValidator.format_message(report.issues, self.translate)
            raise WorkoutNotReadyError(report, message)
        first = next(
            (step for step in self.state.steps if not ExerciseResolver.is_completed(step)),
            None,
        )
        if first is None:
            return None
        self.state.selected_key = first.key
        self.state.guided = True
        return first

    def close(self) -> None:
        self.state.generation += 1
        if self.offline is not None:
            self.offline.remove_listener(self.handle_sync_complete)
            self.offline = None
        self.timers.cancel_all()
        self.target_weights.close()
        self.state.celebrating_sets.clear()
        self.state.celebrating_exercises.clear()

    async def start_session(self, routine_id) -> bool:
        """Open a new session for ``routine_id``, dropping any local checklist state."""
        value = positive_int(routine_id)
        if value is None:
            self._notify(self.translate("Select a routine before starting a workout."))
            return False
        try:
            await self.commands.start_session(value)
        except EngineError as exc:
            self._fail("Failed to start workout.", exc)
            return False
        self.timers.cancel(self.UNDO_TIMER)
        self.target_weights.prune(self.target_weights.valid_keys())
        return True

    async def cancel_session(self) -> bool:
        if self.state.session is None:
            return False
        try:
            await self.commands.cancel_session()
        except EngineError as exc:
            self._fail("Failed to cancel workout.", exc)
            return False
        self.timers.cancel(self.UNDO_TIMER)
        self.target_weights.prune(())
        return True

    def pending_exercises(self) -> list[SessionExercise]:
        return [step for step in self.state.exercises() if not ExerciseResolver.is_completed(step)]

    async def end_session(self, force: bool = False) -> bool:
        """End the active session.

        While exercises are still unfinished the call only raises
        ``end_confirmation_pending``; pass ``force`` to end anyway.
        """
        if self.state.session is None:
            return False
        if not force and self.pending_exercises():
            self.state.end_confirmation_pending = True
            return False
        try:
            await self._end_session()
        except EngineError as exc:
            self._fail("Failed to end workout.", exc)
            return False
        self.state.end_confirmation_pending = False
        return True

    # Exercise actions

    async def start_exercise(self, step: SessionStep) -> bool:
        if not isinstance(step, SessionExercise) or self.state.session is None:
            return False
        try:
            await self.commands.start_exercise(step)
        except EngineError as exc:
            self._fail("Failed to start exercise.", exc)
            return False
        return True

    def set_reps(self, key: str, set_index: int, reps) -> None:
        value = positive_int(reps)
        set_rep_selection(self.state, key, set_index, value)

    async def toggle_set(
        self, key: str, set_index: int, currently_checked: Optional[bool] = None
    ) -> bool:
        """Flip one checklist row. Returns True if the toggle finished the exercise."""
        step = self.state.find(key)
        if not isinstance(step, SessionExercise):
            return False
        rows = self.checklist(step)
        row = next((row for row in rows if row.set_index == set_index), None)
        if currently_checked is None:
            currently_checked = bool(row and row.checked)
        if currently_checked:
            # Logged sets need an explicit override; unlogged ones just drop the tick.
            locked = row is not None and row.locked
            set_local_check(self.state, key, set_index, False if locked else None)
            self._clear_set_celebration(key, set_index)
        else:
            set_local_check(self.state, key, set_index, self.clock())
            self._celebrate_set(key, set_index)

        current = self.current()
        if not isinstance(current, SessionExercise) or ExerciseResolver.is_completed(current):
            return False
        partner = self.pairing().partner_of(current)
        if key != current.key and (partner is None or key != partner.key):
            return False
        if not ChecklistReconciler.all_checked(self.checklist(current)):
            return False
        if partner is not None and not ExerciseResolver.is_completed(partner):
            if not ChecklistReconciler.all_checked(self.checklist(partner)):
                return False
        return await self.finish_exercise()

    def _partner_finishes_inline(
        self, current: SessionExercise, partner: Optional[SessionExercise], pairing: SupersetPairing
    ) -> bool:
        if partner is None or ExerciseResolver.is_completed(partner):
            return False
        last_pending = (
            ExerciseResolver.resolve_next_pending(
                self.state.steps, current, [partner.key], pairing
            )
            is None
        )
        return last_pending or ChecklistReconciler.all_checked(self.checklist(partner))

    def _plan(self, transaction: PairFinishTransaction, exercise: SessionExercise) -> FinishPlan:
        return transaction.plan(
            exercise,
            self.state.local_checks.get(exercise.key),
            self.state.rep_selections.get(exercise.key),
        )

    async def _after_transaction(
        self, transaction: PairFinishTransaction, next_exercise: Optional[SessionExercise]
    ) -> None:
        for plan in transaction.plans:
            await self.target_weights.persist_pending(plan.exercise)
            self._celebrate_exercise(plan.exercise.key)
            clear_exercise_locals(self.state, plan.exercise.key)
        if next_exercise is not None:
            await self.commands.start_exercise(next_exercise)
            return
        await self._end_session()

    async def _run_transition(self, skipped: bool) -> bool:
        current = self.current()
        pairing = self.pairing()
        partner = pairing.partner_of(current)
        if skipped:
            include_partner = partner is not None and not ExerciseResolver.is_completed(partner)
        else:
            include_partner = self._partner_finishes_inline(current, partner, pairing)

        transaction = PairFinishTransaction(
            self.commands,
            self.clock(),
            skipped=skipped,
            default_band_label=self.settings.default_band_label,
        )
        self._plan(transaction, current)
        if include_partner:
            self._plan(transaction, partner)
        next_exercise = ExerciseResolver.resolve_next_pending(
            self.state.steps, current, transaction.keys[1:], pairing
        )
        await transaction.commit()
        await self._after_transaction(transaction, next_exercise)
        return True

    async def finish_exercise(self) -> bool:
        current = self.current()
        if self.state.session is None or current is None:
            return False
        if isinstance(current, WarmupStep):
            return await self.complete_warmup()
        return await self._guarded_transition(False, "Failed to finish exercise.")

    async def skip_exercise(self) -> bool:
        current = self.current()
        if self.state.session is None or not isinstance(current, SessionExercise):
            return False
        return await self._guarded_transition(True, "Failed to skip exercise.")

    async def _guarded_transition(self, skipped: bool, fallback: str) -> bool:
        # Navigation holds the same flag while it reconciles the checklist.
        if self.state.transition_in_flight:
            return False
        self.state.transition_in_flight = True
        try:
            return await self._run_transition(skipped=skipped)
        except EngineError as exc:
            self._fail(fallback, exc)
            return False
        finally:
            self.state.transition_in_flight = False

    async def navigate(self, offset: int) -> bool:
        try:
            return await self.navigator.navigate(offset)
        except EngineError as exc:
            self._fail("Failed to save set changes.", exc)
            return False

    async def complete_warmup(self) -> bool:
        session = self.state.session
        if session is None or normalize_routine_type(session.routine_type) != "standard":
            return False
        warmup = self.state.warmup()
        if warmup is None:
            return False
        complete_warmup(self.state, self.clock())
        next_exercise = ExerciseResolver.resolve_next_pending(self.state.steps, warmup)
        try:
            if next_exercise is not None:
                await self.commands.start_exercise(next_exercise)
            else:
                await self._end_session()
        except EngineError as exc:
            self._fail("Failed to start exercise.", exc)
            return False
        return True

    async def _end_session(self) -> None:
        session_id = self.state.session_id
        await self.commands.end_session()
        try:
            detail = await self.backend.fetch_session_detail(session_id)
        except EngineError as exc:
            logger.warning("Could not reload ended session {}: {}", session_id, exc)
            detail = self.state.session
        self.state.ended_with_progress = session_has_tracked_progress(detail)
        if not self.state.ended_with_progress:
            logger.info("Session {} ended without tracked progress", session_id)

    # Logged sets

    def _find_logged(self, set_id) -> Optional[tuple[SessionExercise, LoggedSet]]:
        for step in self.state.exercises():
            for logged in step.sets:
                if str(logged.id) == str(set_id):
                    return step, logged
        return None

    async def update_set(self, set_id, reps, weight, band_label: Optional[str] = None) -> bool:
        found = self._find_logged(set_id)
        if self.state.session is None or found is None:
            return False
        try:
            await self.commands.update_set(found[1], reps, weight, band_label)
        except EngineError as exc:
            self._fail("Failed to update set.", exc)
            return False
        return True

    async def delete_set(self, set_id) -> bool:
        """Delete a logged set and keep it around for :meth:`undo_delete_set`."""
        found = self._find_logged(set_id)
        if self.state.session is None or found is None:
            return False
        exercise, logged = found
        try:
            await self.commands.delete_set(exercise, logged)
        except EngineError as exc:
            self._fail("Failed to delete set.", exc)
            return False
        deleted = DeletedSet(exercise.key, exercise.name, logged)
        self.state.recently_deleted_set = deleted
        self.timers.schedule(
            self.UNDO_TIMER, self.settings.undo_delete_seconds, self._expire_deleted_set, deleted
        )
        return True

    def _expire_deleted_set(self, deleted: DeletedSet) -> None:
        if self.state.recently_deleted_set is deleted:
            self.state.recently_deleted_set = None

    async def undo_delete_set(self) -> bool:
        deleted = self.state.recently_deleted_set
        if deleted is None or self.state.session is None:
            return False
        self.state.recently_deleted_set = None
        self.timers.cancel(self.UNDO_TIMER)
        exercise = self.state.find(deleted.key)
        if not isinstance(exercise, SessionExercise):
            return False
        logged = deleted.logged_set
        completed_at = logged.completed_at or logged.created_at or self.clock()
        payload = SetPayload(
            set_index=logged.set_index or len(exercise.sets) + 1,
            reps=logged.reps or 0,
            weight=logged.weight or 0,
            band_label=logged.band_label,
            started_at=logged.started_at or completed_at,
            completed_at=completed_at,
        )
        try:
            await self.commands.create_set(exercise, payload)
        except EngineError as exc:
            self._fail("Failed to restore set.", exc)
            return False
        return True
