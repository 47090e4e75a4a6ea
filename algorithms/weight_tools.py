import math
from typing import Any, Optional

from session_models import SessionExercise, coerce_number, normalize_equipment


class TargetWeightTools:
    """Arithmetic for editing next-session target weights."""

    MIN_WEIGHT: float = 0.5
    STEP_DEFAULT: float = 1.0
    STEP_BARBELL: float = 2.5
    NON_EDITABLE_EQUIPMENT = {"bodyweight", "band", "ab wheel"}

    @staticmethod
    def round_weight(value: Any) -> Optional[float]:
        """Round to two decimals, halves away from zero for positive weights."""
        number = coerce_number(value)
        if number is None:
            return None
        return math.floor(number * 100 + 0.5) / 100

    @classmethod
    def parse_input(cls, text: Any) -> Optional[float]:
        """Parse user input, accepting a comma as decimal separator."""
        if text is None:
            return None
        cleaned = str(text).strip().replace(",", ".")
        if not cleaned:
            return None
        return cls.round_weight(cleaned)

    @staticmethod
    def format_input(value: Optional[float]) -> str:
        if value is None:
            return ""
        return f"{value:.2f}".rstrip("0").rstrip(".")

    @classmethod
    def step_for(
        cls,
        equipment: Any,
        default_step: Optional[float] = None,
        barbell_step: Optional[float] = None,
    ) -> float:
        if normalize_equipment(equipment) == "barbell":
            return barbell_step if barbell_step is not None else cls.STEP_BARBELL
        return default_step if default_step is not None else cls.STEP_DEFAULT

    @classmethod
    def clamp(cls, value: float, minimum: Optional[float] = None) -> float:
        floor = cls.MIN_WEIGHT if minimum is None else minimum
        return cls.round_weight(max(floor, value))

    @classmethod
    def is_editable(cls, step: Any) -> bool:
        if not isinstance(step, SessionExercise):
            return False
        if normalize_equipment(step.equipment) in cls.NON_EDITABLE_EQUIPMENT:
            return False
        weight = coerce_number(step.target_weight)
        return weight is not None and weight > 0
