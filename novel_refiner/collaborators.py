"""Collaborator contracts consumed by the optimization core.

Implementations live outside the core: heuristic assessors in
``novel_refiner.assessment``, planners in ``novel_refiner.planning`` and
LLM-backed executors/judges in ``novel_refiner.agents``. Tests provide
scripted fakes.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from .models import (
    Category,
    Document,
    ExecutionResult,
    ImprovementStrategy,
    JudgeVerdict,
    WeaknessAssessment,
)

ProgressCallback = Callable[[str, float], None]


@runtime_checkable
class Assessor(Protocol):
    def assess(self, document: Document, category: Category) -> WeaknessAssessment:
        """Score ``document`` for ``category``; deterministic for unchanged input."""
        ...


@runtime_checkable
class Planner(Protocol):
    def plan(
        self,
        document: Document,
        category: Category,
        target_score: float,
        section_filter: Optional[set[int]] = None,
    ) -> Optional[ImprovementStrategy]:
        """Return a strategy, or None when no improvement is warranted."""
        ...


@runtime_checkable
class Executor(Protocol):
    def execute(self, document: Document, strategy: ImprovementStrategy) -> ExecutionResult:
        """Apply ``strategy`` to a copy of ``document``; never raises for per-action failure."""
        ...


@runtime_checkable
class SecondaryJudge(Protocol):
    def judge(self, previous: Document, current: Document, category: Category) -> JudgeVerdict:
        ...
