import asyncio
import os
import sys
import unittest

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from navigator_service import ExerciseResolver
from session_models import ExerciseStatus, SessionExercise, WarmupStep
from session_normalizer import SessionNormalizer
from workout_service import GuidedWorkoutService
from fakes import at, exercise, logged, session


def steps_for(*exercises, **fields):
    return SessionNormalizer.normalize(session(*exercises, **fields), [])


def superset_session(**fields):
    return session(
        exercise(1, position=0, supersetGroup="S"),
        exercise(2, position=1, supersetGroup="S"),
        exercise(3, position=2),
        **fields,
    )


class ExerciseResolverTest(unittest.TestCase):
    def test_is_completed(self) -> None:
        self.assertTrue(ExerciseResolver.is_completed(None))
        done = SessionExercise.model_validate(exercise(1, status="skipped"))
        self.assertTrue(ExerciseResolver.is_completed(done))
        full = SessionExercise.model_validate(
            exercise(1, targetSets=2, sets=[logged(1, 1), logged(2, 2)])
        )
        self.assertTrue(ExerciseResolver.is_completed(full))
        open_ended = SessionExercise.model_validate(exercise(1, targetSets=None))
        self.assertFalse(ExerciseResolver.is_completed(open_ended))
        self.assertFalse(ExerciseResolver.is_completed(WarmupStep()))

    def test_current_priority(self) -> None:
        steps = steps_for(
            exercise(1, status="completed"),
            exercise(2, status="in_progress"),
            exercise(3),
            routineType="rehab",
        )
        self.assertIsNone(ExerciseResolver.resolve_current([]))
        self.assertEqual(ExerciseResolver.resolve_current(steps, steps[2].key), steps[2])
        self.assertEqual(ExerciseResolver.resolve_current(steps, "exercise:99"), steps[1])
        self.assertEqual(ExerciseResolver.resolve_current(steps), steps[1])

    def test_current_falls_back_to_first_unfinished_then_first(self) -> None:
        steps = steps_for(exercise(1, status="completed"), exercise(2), routineType="rehab")
        self.assertEqual(ExerciseResolver.resolve_current(steps), steps[1])
        steps = steps_for(exercise(1, status="completed"), routineType="rehab")
        self.assertEqual(ExerciseResolver.resolve_current(steps), steps[0])

    def test_next_pending_prefers_partner(self) -> None:
        steps = SessionNormalizer.normalize(superset_session(), [])
        first = steps[1]
        self.assertEqual(ExerciseResolver.resolve_next_pending(steps, first).exercise_id, 2)
        self.assertEqual(
            ExerciseResolver.resolve_next_pending(steps, first, [steps[2].key]).exercise_id, 3
        )

    def test_next_pending_wraps_and_skips_warmup(self) -> None:
        steps = steps_for(exercise(1), exercise(2, status="completed"), exercise(3))
        last = steps[3]
        self.assertEqual(ExerciseResolver.resolve_next_pending(steps, last).exercise_id, 1)
        self.assertIsNone(ExerciseResolver.resolve_next_pending(steps, last, [steps[1].key]))
        self.assertIsNone(ExerciseResolver.resolve_next_pending(steps, None))

    def test_navigable_excludes_warmup(self) -> None:
        steps = steps_for(exercise(1), exercise(2))
        self.assertEqual([s.exercise_id for s in ExerciseResolver.navigable(steps)], [1, 2])


async def load(backend, clock, active):
    backend.active = active
    service = GuidedWorkoutService(backend, clock=clock)
    await service.refresh()
    return service


@pytest.mark.asyncio
async def test_navigate_saves_checked_sets(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2), routineType="rehab"))
    first, second = service.steps
    service.state.selected_key = first.key
    assert await service.toggle_set(first.key, 2) is False
    clock.advance(3)

    assert await service.navigate(1) is True
    assert service.state.selected_key == second.key
    assert backend.named("create_set") == [("create_set", 1, 2, 8, 20.0, None)]
    saved = service.state.find(first.key)
    assert [s.set_index for s in saved.sets] == [2]
    assert saved.sets[0].completed_at == at(0)
    assert first.key not in service.state.local_checks


@pytest.mark.asyncio
async def test_navigate_unchecking_reopens_completed_exercise(backend, clock):
    done = exercise(
        1,
        status="completed",
        sets=[logged(11, 1, 1), logged(12, 2, 2), logged(13, 3, 3)],
    )
    service = await load(backend, clock, session(done, exercise(2), routineType="rehab"))
    first = service.steps[0]
    service.state.selected_key = first.key
    await service.toggle_set(first.key, 3)
    assert service.state.local_checks[first.key] == {3: False}

    assert await service.navigate(1) is True
    assert backend.named("delete_set") == [("delete_set", 13)]
    assert backend.named("create_set") == []
    assert backend.named("start_exercise") == [("start_exercise", 1, 10)]
    reopened = service.state.find(first.key)
    assert reopened.status == ExerciseStatus.IN_PROGRESS
    assert [s.id for s in reopened.sets] == [11, 12]
    assert service.state.recently_deleted_set is None


@pytest.mark.asyncio
async def test_navigate_bounds_and_guard(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2), routineType="rehab"))
    first = service.steps[0]
    service.state.selected_key = first.key
    assert await service.navigate(0) is False
    assert await service.navigate(-1) is False
    assert service.state.selected_key == first.key

    service.state.transition_in_flight = True
    assert await service.navigate(1) is False
    assert service.state.selected_key == first.key


@pytest.mark.asyncio
async def test_navigate_from_warmup_jumps_to_first_exercise(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2)))
    assert isinstance(service.current(), WarmupStep)
    assert await service.navigate(1) is True
    assert service.state.selected_key == service.steps[1].key


@pytest.mark.asyncio
async def test_navigate_failure_keeps_focus(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2), routineType="rehab"))
    first = service.steps[0]
    service.state.selected_key = first.key
    await service.toggle_set(first.key, 1)
    backend.fail("create_set", 1)

    assert await service.navigate(1) is False
    assert service.state.selected_key == first.key
    assert service.state.notice == "create_set failed"
    assert service.state.transition_in_flight is False


@pytest.mark.asyncio
async def test_finish_waits_out_navigation(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2), routineType="rehab"))
    first, second = service.steps
    service.state.selected_key = first.key
    await service.toggle_set(first.key, 1)

    finishing = asyncio.ensure_future(service.finish_exercise())
    assert await service.navigate(1) is True

    assert await finishing is False
    assert backend.named("create_set") == [("create_set", 1, 1, 8, 20.0, None)]
    assert backend.named("complete_exercise") == []
    assert service.state.selected_key == second.key
    assert service.state.transition_in_flight is False


@pytest.mark.asyncio
async def test_navigation_waits_out_finish(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2), routineType="rehab"))
    first, second = service.steps
    service.state.selected_key = first.key
    await service.toggle_set(first.key, 1)

    finishing = asyncio.ensure_future(service.finish_exercise())
    await asyncio.sleep(0)
    assert service.state.transition_in_flight is True
    assert await service.navigate(1) is False

    assert await finishing is True
    assert [call[2] for call in backend.named("create_set")] == [1, 2, 3]
    assert backend.named("complete_exercise") == [("complete_exercise", 1, 10, False)]
    assert service.state.selected_key == second.key
