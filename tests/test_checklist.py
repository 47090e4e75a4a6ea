import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms.checklist import ChecklistReconciler
from session_models import SessionExercise
from fakes import at, exercise, logged


class ChecklistTest(unittest.TestCase):
    def test_rows_without_sets(self) -> None:
        rows = ChecklistReconciler.build_rows(SessionExercise.model_validate(exercise(1)))
        self.assertEqual([row.set_index for row in rows], [1, 2, 3])
        self.assertFalse(any(row.checked or row.locked for row in rows))
        self.assertFalse(ChecklistReconciler.all_checked(rows))

    def test_no_target_sets_no_rows(self) -> None:
        rows = ChecklistReconciler.build_rows(
            SessionExercise.model_validate(exercise(1, targetSets=None))
        )
        self.assertEqual(rows, [])
        self.assertFalse(ChecklistReconciler.all_checked(rows))

    def test_logged_and_local_rows(self) -> None:
        ex = SessionExercise.model_validate(exercise(1, sets=[logged(11, 1, 1)]))
        rows = ChecklistReconciler.build_rows(ex, {2: at(2)})
        self.assertTrue(rows[0].locked and rows[0].checked)
        self.assertEqual(rows[0].checked_at, at(1))
        self.assertEqual(rows[0].persisted_set.id, 11)
        self.assertTrue(rows[1].checked and not rows[1].locked)
        self.assertEqual(rows[1].checked_at, at(2))
        self.assertFalse(rows[2].checked)

    def test_force_uncheck_on_logged_row(self) -> None:
        ex = SessionExercise.model_validate(exercise(1, sets=[logged(11, 1, 1)]))
        row = ChecklistReconciler.build_rows(ex, {1: False})[0]
        self.assertTrue(row.locked)
        self.assertFalse(row.checked)
        self.assertIsNone(row.checked_at)
        self.assertTrue(ChecklistReconciler.has_changes(ex, {1: False}))

    def test_has_changes(self) -> None:
        ex = SessionExercise.model_validate(exercise(1, sets=[logged(11, 1, 1)]))
        self.assertFalse(ChecklistReconciler.has_changes(ex, None))
        self.assertFalse(ChecklistReconciler.has_changes(ex, {1: at(5)}))
        self.assertTrue(ChecklistReconciler.has_changes(ex, {3: at(5)}))

    def test_all_checked_and_indexes(self) -> None:
        ex = SessionExercise.model_validate(exercise(1, targetSets=2, sets=[logged(11, 1, 1)]))
        checks = {2: at(2)}
        self.assertTrue(ChecklistReconciler.all_checked(ChecklistReconciler.build_rows(ex, checks)))
        self.assertEqual(ChecklistReconciler.checked_indexes({1: False, 2: at(2)}), {2})


if __name__ == "__main__":
    unittest.main()
