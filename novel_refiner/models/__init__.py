from .document import Section, Character, WorldEntry, Document
from .assessment import Severity, Weakness, WeaknessAssessment, Confidence, JudgeVerdict
from .strategy import (
    Category,
    Region,
    ImprovementType,
    StrategyType,
    EditAction,
    InsertAction,
    RegenerateAction,
    ImprovementStrategy,
    SectionRange,
    SectionSelector,
    filter_strategy,
)
from .results import (
    ActionResult,
    ActionFailure,
    ExecutionResult,
    ValidationOutcome,
    QualityMetrics,
    OptimizationResult,
    MultiCategoryResult,
)

__all__ = [
    "Section",
    "Character",
    "WorldEntry",
    "Document",
    "Severity",
    "Weakness",
    "WeaknessAssessment",
    "Confidence",
    "JudgeVerdict",
    "Category",
    "Region",
    "ImprovementType",
    "StrategyType",
    "EditAction",
    "InsertAction",
    "RegenerateAction",
    "ImprovementStrategy",
    "SectionRange",
    "SectionSelector",
    "filter_strategy",
    "ActionResult",
    "ActionFailure",
    "ExecutionResult",
    "ValidationOutcome",
    "QualityMetrics",
    "OptimizationResult",
    "MultiCategoryResult",
]
