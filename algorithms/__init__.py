from .checklist import ChecklistReconciler
from .readiness import ReadinessIssue, ReadinessReport, ReadinessValidator
from .set_synthesizer import MissingSetSynthesizer, SetTargets, SynthesisPreconditionError
from .supersets import SupersetPairing
from .weight_tools import TargetWeightTools

__all__ = [
    "ChecklistReconciler",
    "MissingSetSynthesizer",
    "ReadinessIssue",
    "ReadinessReport",
    "ReadinessValidator",
    "SetTargets",
    "SupersetPairing",
    "SynthesisPreconditionError",
    "TargetWeightTools",
]
