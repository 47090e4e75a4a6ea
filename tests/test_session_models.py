import os
import sys
import unittest

from pydantic import TypeAdapter

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from session_models import (
    WARMUP_STEP_KEY,
    ExerciseStatus,
    LoggedSet,
    SessionExercise,
    SessionStep,
    WarmupStep,
    build_session_exercise_key,
    build_target_weight_key,
    normalize_routine_type,
)
from fakes import at


class IdentityKeyTest(unittest.TestCase):
    def test_session_exercise_key(self) -> None:
        self.assertEqual(build_session_exercise_key(5, 12), "exercise:5/routine:12")
        self.assertEqual(build_session_exercise_key(5), "exercise:5")
        self.assertEqual(build_session_exercise_key(5, 0), "exercise:5")
        self.assertEqual(build_session_exercise_key(5, "abc"), "exercise:5")

    def test_same_exercise_in_two_slots(self) -> None:
        first = SessionExercise(exercise_id=5, routine_exercise_id=1)
        second = SessionExercise(exercise_id=5, routine_exercise_id=2)
        self.assertNotEqual(first.key, second.key)

    def test_target_weight_key(self) -> None:
        self.assertEqual(
            build_target_weight_key(7, 5, " Barbell ", 12),
            "7:exercise:5/routine:12:barbell",
        )
        self.assertEqual(build_target_weight_key(None, 5, None), "none:exercise:5:unknown")

    def test_routine_type(self) -> None:
        self.assertEqual(normalize_routine_type("REHAB"), "rehab")
        self.assertEqual(normalize_routine_type("cardio"), "standard")
        self.assertEqual(normalize_routine_type(None), "standard")


class SessionExerciseParsingTest(unittest.TestCase):
    def test_camel_case_payload(self) -> None:
        exercise = SessionExercise.model_validate(
            {
                "exerciseId": 3,
                "routineExerciseId": "-3",
                "supersetGroup": "  ",
                "status": "weird",
                "targetSets": "3",
                "targetRepsRange": " ",
                "targetWeight": "62.5",
            }
        )
        self.assertIsNone(exercise.routine_exercise_id)
        self.assertIsNone(exercise.superset_group)
        self.assertIsNone(exercise.target_reps_range)
        self.assertEqual(exercise.status, ExerciseStatus.PENDING)
        self.assertEqual(exercise.target_set_count, 3)
        self.assertEqual(exercise.target_weight, 62.5)

    def test_fractional_target_sets_is_not_a_count(self) -> None:
        exercise = SessionExercise(exercise_id=1, target_sets=2.5)
        self.assertIsNone(exercise.target_set_count)
        self.assertIsNone(SessionExercise(exercise_id=1, target_sets=0).target_set_count)

    def test_logged_set_checked_at_preference(self) -> None:
        logged = LoggedSet(started_at=at(1), created_at=at(2))
        self.assertEqual(logged.checked_at, at(2))
        logged = LoggedSet(started_at=at(1), created_at=at(2), completed_at=at(3))
        self.assertEqual(logged.checked_at, at(3))
        self.assertFalse(logged.is_persisted)
        self.assertTrue(LoggedSet(id="offline-1").is_persisted)

    def test_step_union(self) -> None:
        adapter = TypeAdapter(SessionStep)
        warmup = adapter.validate_python({"kind": "warmup"})
        self.assertIsInstance(warmup, WarmupStep)
        self.assertEqual(warmup.key, WARMUP_STEP_KEY)
        step = adapter.validate_python({"kind": "exercise", "exerciseId": 4})
        self.assertIsInstance(step, SessionExercise)


if __name__ == "__main__":
    unittest.main()
