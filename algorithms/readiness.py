from typing import Callable, Iterable, Optional

from pydantic import BaseModel

from session_models import SessionExercise, coerce_number, is_band, is_bodyweight
from algorithms.set_synthesizer import MissingSetSynthesizer


class ReadinessIssue(BaseModel):
    key: str
    exercise_id: int
    name: str
    missing: list[str]


class ReadinessReport(BaseModel):
    issues: list[ReadinessIssue] = []

    @property
    def valid(self) -> bool:
        return not self.issues


class ReadinessValidator:
    """Pre-flight check that every exercise has resolvable targets."""

    MESSAGE = "Cannot begin workout. Update routine targets for: {details}."

    @staticmethod
    def missing_fields(exercise: SessionExercise) -> list[str]:
        missing: list[str] = []
        if exercise.target_set_count is None:
            missing.append("sets")
        if MissingSetSynthesizer.resolve_reps(exercise) is None:
            missing.append("reps")
        if not (is_bodyweight(exercise.equipment) or is_band(exercise.equipment)):
            weight = coerce_number(exercise.target_weight)
            if weight is None or weight <= 0:
                missing.append("weight")
        return missing

    @classmethod
    def validate(cls, steps: Iterable) -> ReadinessReport:
        issues: list[ReadinessIssue] = []
        for step in steps:
            if not isinstance(step, SessionExercise):
                continue
            missing = cls.missing_fields(step)
            if missing:
                issues.append(
                    ReadinessIssue(
                        key=step.key,
                        exercise_id=step.exercise_id,
                        name=step.name or "Exercise",
                        missing=missing,
                    )
                )
        return ReadinessReport(issues=issues)

    @classmethod
    def format_message(
        cls,
        issues: list[ReadinessIssue],
        translate: Optional[Callable[[str], str]] = None,
    ) -> Optional[str]:
        if not issues:
            return None
        tr = translate or (lambda text: text)
        details = "; ".join(
            f"{issue.name} ({', '.join(tr(field) for field in issue.missing)})"
            for issue in issues
        )
        return tr(cls.MESSAGE).format(details=details)
