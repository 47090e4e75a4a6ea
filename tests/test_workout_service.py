import asyncio
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import SyncOperationRepository
from offline_sync import OfflineSync
from session_models import ExerciseStatus, WarmupStep
from settings_schema import EngineSettings
from workout_service import GuidedWorkoutService, WorkoutNotReadyError
from fakes import T0, at, exercise, session


async def load(backend, clock, active, settings=None):
    backend.active = active
    service = GuidedWorkoutService(backend, settings, clock=clock)
    assert await service.refresh()
    return service


def rehab(*exercises):
    return session(*exercises, routineType="rehab")


def pair_session():
    return rehab(
        exercise(1, position=0, supersetGroup="S"),
        exercise(2, position=1, supersetGroup="S"),
        exercise(3, position=2),
    )


@pytest.mark.asyncio
async def test_begin_workout_refuses_incomplete_targets(backend, clock):
    service = await load(backend, clock, rehab(exercise(1, targetSets=None), exercise(2)))
    with pytest.raises(WorkoutNotReadyError) as info:
        service.begin_workout()
    assert "Exercise 1 (sets)" in str(info.value)
    assert not info.value.report.valid
    assert service.state.guided is False


@pytest.mark.asyncio
async def test_begin_workout_selects_first_unfinished(backend, clock):
    service = await load(
        backend, clock, rehab(exercise(1, status="completed"), exercise(2))
    )
    first = service.begin_workout()
    assert first.exercise_id == 2
    assert service.state.guided is True
    assert service.state.selected_key == first.key


@pytest.mark.asyncio
async def test_double_finish_completes_once(backend, clock):
    started = exercise(1, status="in_progress", startedAt=T0.isoformat())
    service = await load(backend, clock, rehab(started, exercise(2)))
    service.begin_workout()
    clock.advance(6)

    results = await asyncio.gather(service.finish_exercise(), service.finish_exercise())

    assert sorted(results) == [False, True]
    assert backend.named("complete_exercise") == [("complete_exercise", 1, 10, False)]
    assert [call[2] for call in backend.named("create_set")] == [1, 2, 3]
    assert backend.named("start_exercise") == [("start_exercise", 2, 20)]
    first = service.state.find(service.steps[0].key)
    assert first.status == ExerciseStatus.COMPLETED
    assert [s.completed_at for s in first.sets] == [T0, at(3), at(6)]
    assert service.state.selected_key == service.steps[1].key
    assert "exercise:" + first.key in service.state.celebrating_exercises


@pytest.mark.asyncio
async def test_toggle_last_set_finishes_exercise(backend, clock):
    service = await load(backend, clock, rehab(exercise(1, targetSets=2), exercise(2)))
    first = service.begin_workout()

    assert await service.toggle_set(first.key, 1) is False
    clock.advance(1)
    assert await service.toggle_set(first.key, 2) is True

    assert backend.named("complete_exercise") == [("complete_exercise", 1, 10, False)]
    done = service.state.find(first.key)
    assert [s.completed_at for s in done.sets] == [T0, at(1)]
    assert first.key not in service.state.local_checks
    assert service.state.selected_key == service.steps[1].key


@pytest.mark.asyncio
async def test_untoggle_clears_local_check(backend, clock):
    service = await load(backend, clock, rehab(exercise(1), exercise(2)))
    first = service.begin_workout()
    await service.toggle_set(first.key, 1)
    assert f"set:{first.key}:1" in service.state.celebrating_sets
    await service.toggle_set(first.key, 1)
    assert first.key not in service.state.local_checks
    assert f"set:{first.key}:1" not in service.state.celebrating_sets


@pytest.mark.asyncio
async def test_skip_logs_only_checked_sets(backend, clock):
    service = await load(backend, clock, rehab(exercise(1), exercise(2)))
    first = service.begin_workout()
    await service.toggle_set(first.key, 1)
    clock.advance(2)

    assert await service.skip_exercise() is True
    assert backend.named("create_set") == [("create_set", 1, 1, 8, 20.0, None)]
    assert backend.named("complete_exercise") == [("complete_exercise", 1, 10, True)]
    assert service.state.find(first.key).status == ExerciseStatus.SKIPPED
    assert backend.named("start_exercise") == [("start_exercise", 2, 20)]


@pytest.mark.asyncio
async def test_rep_selection_is_used(backend, clock):
    service = await load(backend, clock, rehab(exercise(1, targetSets=1), exercise(2)))
    first = service.begin_workout()
    service.set_reps(first.key, 1, "6")
    await service.finish_exercise()
    assert backend.named("create_set") == [("create_set", 1, 1, 6, 20.0, None)]
    assert first.key not in service.state.rep_selections


@pytest.mark.asyncio
async def test_superset_finishes_both_members(backend, clock):
    service = await load(backend, clock, pair_session())
    first = service.begin_workout()
    partner = service.steps[1]
    for index in (1, 2, 3):
        assert await service.toggle_set(partner.key, index) is False

    assert await service.finish_exercise() is True
    assert backend.named("complete_exercise") == [
        ("complete_exercise", 1, 10, False),
        ("complete_exercise", 2, 20, False),
    ]
    assert backend.named("start_exercise") == [("start_exercise", 3, 30)]
    assert service.state.find(first.key).status == ExerciseStatus.COMPLETED
    assert service.state.find(partner.key).status == ExerciseStatus.COMPLETED


@pytest.mark.asyncio
async def test_superset_without_partner_checks_moves_to_partner(backend, clock):
    service = await load(backend, clock, pair_session())
    service.begin_workout()

    assert await service.finish_exercise() is True
    assert backend.named("complete_exercise") == [("complete_exercise", 1, 10, False)]
    assert backend.named("start_exercise") == [("start_exercise", 2, 20)]


@pytest.mark.asyncio
async def test_superset_failure_rolls_back(backend, clock):
    service = await load(backend, clock, pair_session())
    first = service.begin_workout()
    partner = service.steps[1]
    for index in (1, 2, 3):
        await service.toggle_set(partner.key, index)
    backend.fail("complete_exercise", 2)

    assert await service.finish_exercise() is False
    assert [call[1] for call in backend.named("delete_set")] == [106, 105, 104, 103, 102, 101]
    assert backend.named("start_exercise") == [("start_exercise", 1, 10)]
    restored = service.state.find(first.key)
    assert restored.status == ExerciseStatus.IN_PROGRESS
    assert restored.sets == []
    assert service.state.find(partner.key).sets == []
    assert service.state.find(partner.key).status == ExerciseStatus.PENDING
    assert service.state.find(partner.key).started_at is None
    assert service.state.selected_key == first.key
    assert service.state.notice == "complete_exercise failed"
    assert service.state.transition_in_flight is False


@pytest.mark.asyncio
async def test_unresolvable_targets_block_finish(backend, clock):
    service = await load(backend, clock, rehab(exercise(1, targetWeight=0), exercise(2)))
    service.state.selected_key = service.steps[0].key

    assert await service.finish_exercise() is False
    assert backend.named("create_set") == []
    assert backend.named("complete_exercise") == []
    assert "reps or weight is not configured" in service.state.notice


@pytest.mark.asyncio
async def test_finishing_last_exercise_ends_session(backend, clock):
    service = await load(backend, clock, rehab(exercise(1)))
    service.begin_workout()
    assert await service.finish_exercise() is True
    assert backend.named("end_session") == [("end_session", 1)]
    assert service.state.ended is True
    assert service.state.guided is False
    assert service.state.session.ended_at == T0


@pytest.mark.asyncio
async def test_warmup_then_first_exercise(backend, clock):
    service = await load(backend, clock, session(exercise(1), exercise(2)))
    step = service.begin_workout()
    assert isinstance(step, WarmupStep)
    clock.advance(5)

    assert await service.finish_exercise() is True
    assert service.state.warmup().status == ExerciseStatus.COMPLETED
    assert service.state.session.warmup_completed_at == at(5)
    assert backend.named("start_exercise") == [("start_exercise", 1, 10)]
    assert service.state.selected_key == service.steps[1].key


@pytest.mark.asyncio
async def test_warmup_only_for_standard_routines(backend, clock):
    service = await load(backend, clock, rehab(exercise(1)))
    assert await service.complete_warmup() is False


@pytest.mark.asyncio
async def test_refresh_failure_sets_notice(backend, clock):
    service = await load(backend, clock, rehab(exercise(1)))
    backend.fail("fetch_active_session")
    assert await service.refresh() is False
    assert service.state.notice == "fetch_active_session failed"


@pytest.mark.asyncio
async def test_notice_clears_itself(backend, clock):
    settings = EngineSettings(notice_clear_seconds=0)
    service = await load(backend, clock, rehab(exercise(1)), settings)
    backend.fail("fetch_active_session")
    await service.refresh()
    await asyncio.sleep(0.01)
    assert service.state.notice is None


@pytest.mark.asyncio
async def test_sync_complete_refreshes(backend, clock):
    service = await load(backend, clock, rehab(exercise(1)))
    backend.active = rehab(exercise(1, status="completed"))
    await service.handle_sync_complete(3)
    assert len(backend.named("fetch_active_session")) == 2
    assert service.steps[0].status == ExerciseStatus.COMPLETED


@pytest.mark.asyncio
async def test_results_after_close_are_ignored(backend, clock):
    service = await load(backend, clock, rehab(exercise(1), exercise(2)))
    second = service.steps[1]
    task = asyncio.ensure_future(service.start_exercise(second))
    await asyncio.sleep(0)
    service.close()

    assert await task is True
    assert backend.named("start_exercise") == [("start_exercise", 2, 20)]
    assert service.state.find(second.key).status == ExerciseStatus.PENDING
    assert service.state.selected_key is None
    assert len(service.timers) == 0


@pytest.mark.asyncio
async def test_end_session(backend, clock):
    service = await load(backend, clock, rehab(exercise(1)))
    assert await service.end_session(force=True) is True
    assert service.state.ended is True
    assert service.state.ended_with_progress is False
    assert backend.named("fetch_session_detail") == [("fetch_session_detail", 1)]
    backend.fail("end_session")
    assert await service.end_session(force=True) is False
    assert service.state.notice == "end_session failed"


@pytest.mark.asyncio
async def test_sync_listener_is_removed_on_close(backend, clock, tmp_path):
    offline = OfflineSync(SyncOperationRepository(str(tmp_path / "queue.db")))
    service = await load(backend, clock, rehab(exercise(1)))
    service.connect(offline)
    await offline._emit_sync_complete(1)
    assert len(backend.named("fetch_active_session")) == 2

    service.close()
    await offline._emit_sync_complete(1)
    assert len(backend.named("fetch_active_session")) == 2
