import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms.readiness import ReadinessValidator
from session_models import SessionExercise, WarmupStep
from fakes import exercise


def make(exercise_id: int = 1, **fields) -> SessionExercise:
    return SessionExercise.model_validate(exercise(exercise_id, **fields))


class ReadinessTest(unittest.TestCase):
    def test_missing_sets_only(self) -> None:
        squat = make(
            name="Squat",
            targetSets=None,
            targetReps=None,
            targetRepsRange="5-8",
            targetWeight=80,
            equipment="Barbell",
        )
        self.assertEqual(ReadinessValidator.missing_fields(squat), ["sets"])
        report = ReadinessValidator.validate([WarmupStep(), squat])
        self.assertFalse(report.valid)
        self.assertEqual(
            ReadinessValidator.format_message(report.issues),
            "Cannot begin workout. Update routine targets for: Squat (sets).",
        )

    def test_all_missing(self) -> None:
        bare = make(targetSets=2.5, targetReps=None, targetWeight=0)
        self.assertEqual(ReadinessValidator.missing_fields(bare), ["sets", "reps", "weight"])

    def test_bodyweight_and_band_need_no_weight(self) -> None:
        steps = [
            make(1, equipment="Bodyweight", targetWeight=None),
            make(2, equipment="Band", targetWeight=None),
        ]
        report = ReadinessValidator.validate(steps)
        self.assertTrue(report.valid)
        self.assertIsNone(ReadinessValidator.format_message(report.issues))

    def test_message_is_translated(self) -> None:
        report = ReadinessValidator.validate([make(name="Row", targetReps=None)])
        labels = {"reps": "repetitioner"}
        message = ReadinessValidator.format_message(report.issues, lambda text: labels.get(text, text))
        self.assertEqual(message, "Cannot begin workout. Update routine targets for: Row (repetitioner).")


if __name__ == "__main__":
    unittest.main()
