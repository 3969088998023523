"""Runs the optimization controller across several categories."""

import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Iterable, Optional

from loguru import logger
from pydantic import BaseModel

from .collaborators import Assessor, ProgressCallback
from .config import CoordinatorConfig
from .controller import CancellationToken, OptimizationController
from .models import Category, Document, MultiCategoryResult, OptimizationResult
from .utils.progress import notify as _notify, scaled as _scaled

DEFAULT_ANALYSIS_CATEGORIES = (
    Category.STRUCTURE,
    Category.ENGAGEMENT,
    Category.TENSION,
    Category.THEME,
    Category.CHARACTER,
    Category.LITERARY_DEVICES,
    Category.EXCELLENCE,
)


class PriorityOrder(str, Enum):
    SEQUENTIAL = "sequential"
    BY_SCORE = "by-score"
    PARALLEL = "parallel"


class CoordinatorOptions(BaseModel):
    priority_order: PriorityOrder = PriorityOrder.SEQUENTIAL
    stop_on_first_success: bool = False
    target_score: Optional[float] = None


class CategoryScore(BaseModel):
    score: float
    top_issues: list[str]


class MultiCategoryCoordinator:
    """Optimizes a document for several categories.

    * ``sequential`` feeds each category's output into the next category.
    * ``by-score`` does the same, weakest category first.
    * ``parallel`` runs every category on the same input concurrently and
      merges the results (see :func:`merge_results`).
    """

    def __init__(
        self,
        controller: OptimizationController,
        assessor: Optional[Assessor] = None,
        config: Optional[CoordinatorConfig] = None,
    ):
        self.controller = controller
        self.assessor = assessor or controller.assessor
        self.config = config or CoordinatorConfig()

    def run(
        self,
        document: Document,
        categories: Iterable,
        options: Optional[CoordinatorOptions] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MultiCategoryResult:
        options = options or CoordinatorOptions()
        ordered = list(dict.fromkeys(Category.normalize(c) for c in categories))
        _notify(progress, f"Starting multi-category optimization ({len(ordered)} categories)...", 0)

        try:
            if options.priority_order is PriorityOrder.BY_SCORE:
                ordered = self.order_by_score(document, ordered)
            if options.priority_order is PriorityOrder.PARALLEL:
                return self._run_parallel(document, ordered, options, progress, cancel_token)
            return self._run_sequential(document, ordered, options, progress, cancel_token)
        except Exception as e:
            logger.error(f"Multi-category optimization failed: {e}")
            return MultiCategoryResult(
                order=ordered,
                combined_document=document,
                success=False,
                message=f"Multi-category optimization failed: {e}",
            )

    def order_by_score(self, document: Document, categories: list[Category]) -> list[Category]:
        """Sort categories by current score, lowest first; ties keep their order."""
        scores = {c: self.assessor.assess(document, c).overall_score for c in categories}
        ordered = sorted(categories, key=lambda c: scores[c])
        logger.info(
            "Category order by score: {}",
            ", ".join(f"{c.value}={scores[c]:.1f}" for c in ordered),
        )
        return ordered

    def analyze_all(
        self,
        document: Document,
        categories: Optional[Iterable] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> dict[Category, CategoryScore]:
        return analyze_categories(self.assessor, document, categories, progress)

    # ------------------------------------------------------------------

    def _run_sequential(self, document, categories, options, progress, cancel_token):
        results: dict[Category, OptimizationResult] = {}
        current = document
        total_improvement = 0.0
        count = len(categories)

        for i, category in enumerate(categories):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info("Multi-category optimization cancelled before {}", category.value)
                break
            offset = i / count * 100
            _notify(progress, f"Optimizing {category.value} ({i + 1}/{count})...", offset)
            result = self.controller.optimize(
                current,
                category,
                options.target_score,
                _scaled(progress, offset, count),
                cancel_token,
            )
            results[category] = result

            if result.success:
                current = result.document
                total_improvement += result.score_improvement

            if (
                options.stop_on_first_success
                and result.success
                and result.score_improvement > self.config.early_stop_threshold
            ):
                _notify(progress, f"Significant improvement achieved in {category.value}, stopping early", 95)
                break

        return self._summarize(results, categories, current, total_improvement, progress)

    def _run_parallel(self, document, categories, options, progress, cancel_token):
        lock = threading.Lock()
        count = len(categories)

        def observe(category):
            def callback(message, percent):
                with lock:
                    _notify(progress, f"[{category.value}] {message}", percent / count)
            return callback

        workers = max(1, min(self.config.max_parallel_workers, count))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                category: pool.submit(
                    self.controller.optimize,
                    document,
                    category,
                    options.target_score,
                    observe(category),
                    cancel_token,
                )
                for category in categories
            }
            results = {category: futures[category].result() for category in categories}

        combined, conflicts = merge_results(document, [results[c] for c in categories])
        for conflict in conflicts:
            logger.warning(conflict)
        total_improvement = self._merged_improvement(combined, results)
        summary = self._summarize(results, categories, combined, total_improvement, progress)
        summary.conflicts = conflicts
        return summary

    def _merged_improvement(self, combined: Document, results: dict[Category, OptimizationResult]) -> float:
        """Re-score the merged document against each category's baseline.

        Changes dropped by the merge are not in ``combined``, so they earn nothing.
        """
        total = 0.0
        for category, result in results.items():
            if not result.success or not result.score_history:
                continue
            baseline = result.score_history[0]
            try:
                score = self.assessor.assess(combined, category).overall_score
            except Exception as e:
                logger.warning(f"Could not re-assess merged {category.value}: {e}")
                continue
            logger.info(
                "Merged {}: {:.1f} -> {:.1f} (run alone reported {:+.1f})",
                category.value,
                baseline,
                score,
                result.score_improvement,
            )
            total += score - baseline
        return total

    @staticmethod
    def _summarize(results, categories, combined, total_improvement, progress) -> MultiCategoryResult:
        success_count = sum(1 for r in results.values() if r.success)
        _notify(progress, "Multi-category optimization complete", 100)
        return MultiCategoryResult(
            results=results,
            order=list(categories),
            combined_document=combined,
            total_improvement=total_improvement,
            success=success_count > 0,
            message=(
                f"Optimized {success_count}/{len(categories)} categories. "
                f"Total improvement: +{total_improvement:.1f} points"
            ),
        )


def merge_results(
    document: Document, results: list[OptimizationResult]
) -> tuple[Document, list[str]]:
    """Merge independently optimized versions of ``document``.

    Results are applied in order and the first one to change a section owns
    it; later changes to that section are dropped and reported as conflicts.
    Inserted sections follow the original section they were inserted after.
    The merged document is renumbered 1..n.
    """
    base_ids = {s.id for s in document.sections}
    merged = {s.id: s for s in document.sections}
    owner: dict[str, Category] = {}
    inserted: dict[Optional[str], list] = {}
    conflicts = []

    for result in results:
        if not result.success or result.document is document:
            continue
        anchor = None
        for section in result.document.sections:
            if section.id not in base_ids:
                inserted.setdefault(anchor, []).append(section)
                continue
            anchor = section.id
            original = document.section_by_id(section.id)
            if section.content == original.content:
                continue
            if section.id in owner:
                conflicts.append(
                    f"Section {original.number} ({section.id}): {result.category.value} change "
                    f"dropped, already changed by {owner[section.id].value}"
                )
                continue
            owner[section.id] = result.category
            merged[section.id] = section.model_copy(update={"number": original.number})

    ordered = list(inserted.get(None, []))
    for section in document.sections:
        ordered.append(merged[section.id])
        ordered.extend(inserted.get(section.id, []))
    renumbered = [s.model_copy(update={"number": i}) for i, s in enumerate(ordered, start=1)]
    return document.with_sections(renumbered), conflicts


def analyze_categories(
    assessor: Assessor,
    document: Document,
    categories: Optional[Iterable] = None,
    progress: Optional[ProgressCallback] = None,
) -> dict[Category, CategoryScore]:
    """Score each category without optimizing; a failed assessment scores 0."""
    wanted = [Category.normalize(c) for c in (categories or DEFAULT_ANALYSIS_CATEGORIES)]
    results = {}
    for i, category in enumerate(wanted):
        _notify(progress, f"Analyzing {category.value}...", i / len(wanted) * 100)
        try:
            assessment = assessor.assess(document, category)
            worst_first = sorted(assessment.weaknesses, key=lambda w: w.severity.rank, reverse=True)
            results[category] = CategoryScore(
                score=assessment.overall_score,
                top_issues=[w.description for w in worst_first[:3]],
            )
        except Exception as e:
            logger.warning(f"Analysis of {category.value} failed: {e}")
            results[category] = CategoryScore(score=0.0, top_issues=["Analysis failed"])
    _notify(progress, "Analysis complete", 100)
    return results
