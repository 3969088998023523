"""Result models returned by executors, the validator, the controller and coordinator."""

from typing import Optional

from pydantic import BaseModel, Field

from .assessment import JudgeVerdict
from .document import Document
from .strategy import Category


class ActionResult(BaseModel):
    action_id: str
    kind: str  # edit | insert | regenerate
    success: bool
    section_id: Optional[str] = None
    section_number: Optional[int] = None
    changes_applied: bool = False
    old_length: Optional[int] = None
    new_length: Optional[int] = None
    inserted_section_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class ActionFailure(BaseModel):
    action_id: str
    error: str
    section_number: Optional[int] = None


class ExecutionResult(BaseModel):
    """Best-effort outcome of applying one strategy.

    Partial failure is reported in-band through ``failures``; executors do
    not raise for it.
    """

    strategy_id: str
    category: Category
    updated_document: Document
    edits_applied: int = 0
    insertions_applied: int = 0
    regenerations_applied: int = 0
    action_results: list[ActionResult] = Field(default_factory=list)
    failures: list[ActionFailure] = Field(default_factory=list)

    @property
    def actions_succeeded(self) -> int:
        return sum(1 for r in self.action_results if r.success)

    @property
    def actions_failed(self) -> int:
        return len(self.failures)


class ValidationOutcome(BaseModel):
    new_score: float
    previous_score: float
    score_change: float
    sections_changed: int = 0
    word_change: int = 0
    judge: Optional[JudgeVerdict] = None


class QualityMetrics(BaseModel):
    sections_improved: int = 0
    sections_unchanged: int = 0
    sections_regressed: int = 0
    total_edits: int = 0
    total_insertions: int = 0
    total_regenerations: int = 0
    rollback_count: int = 0
    average_edit_size: float = 0.0


class OptimizationResult(BaseModel):
    document: Document
    category: Category
    final_score: float
    score_improvement: float
    iterations: int
    execution_results: list[ExecutionResult] = Field(default_factory=list)
    success: bool
    message: str
    metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    score_history: list[float] = Field(default_factory=list)
    snapshot_count: int = 0
    cancelled: bool = False
    reduced_context: bool = False


class MultiCategoryResult(BaseModel):
    results: dict[Category, OptimizationResult] = Field(default_factory=dict)
    order: list[Category] = Field(default_factory=list)
    combined_document: Document
    total_improvement: float = 0.0
    success: bool = False
    message: str = ""
    conflicts: list[str] = Field(default_factory=list)
