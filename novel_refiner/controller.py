"""Iterative assess, plan, execute and validate loop for one category."""

import threading
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from .budget import ContextBudgetManager
from .collaborators import Assessor, Executor, Planner, ProgressCallback
from .config import OptimizerConfig
from .errors import (
    AssessmentError,
    OptimizationCancelled,
    PlanningError,
    RefinerError,
    ResourceExceeded,
)
from .models import (
    Category,
    Document,
    ExecutionResult,
    ImprovementStrategy,
    OptimizationResult,
    QualityMetrics,
    SectionSelector,
    filter_strategy,
)
from .models.strategy import affected_sections_for, strategy_type_for
from .utils.progress import notify as _notify
from .validation import Validator, diff_documents

PROGRESS_START = 15
PROGRESS_PER_ITERATION = 25


class CancellationToken:
    """Thread-safe flag a caller sets to stop a running optimization."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OptimizationCancelled("Optimization cancelled")


class SnapshotArena:
    """Accepted document versions of one run, baseline first.

    Documents are immutable, so a snapshot is the document itself and
    rolling back only drops the newest entry.
    """

    def __init__(self, baseline: Document):
        self._versions = [baseline]

    def push(self, document: Document):
        self._versions.append(document)

    def rollback(self) -> Document:
        if len(self._versions) < 2:
            raise IndexError("Nothing to roll back past the baseline")
        self._versions.pop()
        return self._versions[-1]

    @property
    def latest(self) -> Document:
        return self._versions[-1]

    @property
    def baseline(self) -> Document:
        return self._versions[0]

    @property
    def snapshot_count(self) -> int:
        """Snapshots taken after the baseline."""
        return len(self._versions) - 1

    def __len__(self):
        return len(self._versions)


@dataclass
class OptimizationState:
    category: Category
    baseline_score: float
    target_score: float
    arena: SnapshotArena
    current_score: float = 0.0
    iteration: int = 0
    score_history: list[float] = field(default_factory=list)
    execution_results: list[ExecutionResult] = field(default_factory=list)
    metrics: QualityMetrics = field(default_factory=QualityMetrics)
    accepted_sections_changed: int = 0
    accepted_word_change: int = 0
    unvalidated: bool = False

    @property
    def document(self) -> Document:
        return self.arena.latest


@dataclass
class _Scope:
    """Section ids a targeted run is restricted to."""

    ids: set[str]
    original_ids: set[str]

    def view(self, document: Document) -> Document:
        # Sections inserted during the run belong to the targeted region.
        return document.with_sections(
            s for s in document.sections if s.id in self.ids or s.id not in self.original_ids
        )

    def numbers(self, document: Document) -> set[int]:
        return {s.number for s in document.sections if s.id in self.ids}


class OptimizationController:
    """Runs the refinement loop for a single category.

    Each iteration plans against the latest accepted version, executes the
    strategy, snapshots the result and validates it. A sharp score drop rolls
    the snapshot back. The run ends when the target is reached, when gains
    become marginal, when the planner has nothing left to do, or after
    ``max_iterations``.
    """

    def __init__(
        self,
        assessor: Assessor,
        planner: Planner,
        executor: Executor,
        validator: Optional[Validator] = None,
        budget: Optional[ContextBudgetManager] = None,
        config: Optional[OptimizerConfig] = None,
    ):
        self.assessor = assessor
        self.planner = planner
        self.executor = executor
        self.validator = validator or Validator(assessor)
        self.budget = budget or ContextBudgetManager()
        self.config = config or OptimizerConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def optimize(
        self,
        document: Document,
        category,
        target_score: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OptimizationResult:
        category = Category.normalize(category)
        return self._run_with_retry(document, category, target_score, progress, cancel_token)

    def optimize_sections(
        self,
        document: Document,
        category,
        selector: SectionSelector,
        target_score: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OptimizationResult:
        """Optimize only the sections picked by ``selector``.

        Assessment and validation look at the selected sections; execution
        works on the full document so neighbouring context stays intact.
        """
        category = Category.normalize(category)
        _notify(progress, "Preparing targeted section optimization...", 0)
        ids, numbers = selector.resolve(document)
        if not ids:
            return OptimizationResult(
                document=document,
                category=category,
                final_score=0.0,
                score_improvement=0.0,
                iterations=0,
                success=False,
                message="No sections matched the selector",
            )
        _notify(
            progress,
            f"Targeting {len(ids)} section(s): {', '.join(map(str, sorted(numbers)))}",
            5,
        )
        scope = _Scope(ids=ids, original_ids={s.id for s in document.sections})
        return self._run_with_retry(
            document, category, target_score, progress, cancel_token, scope
        )

    # ------------------------------------------------------------------
    # Run boundary
    # ------------------------------------------------------------------

    def _run_with_retry(self, document, category, target_score, progress, cancel_token, scope=None):
        try:
            return self._run(document, category, target_score, progress, cancel_token, scope)
        except ResourceExceeded as e:
            logger.warning(f"Context limit hit ({e}); retrying with minimal context")
            _notify(progress, "Context limit exceeded. Retrying with minimal context...", 95)
            try:
                result = self._run(
                    document, category, target_score, progress, cancel_token, scope, minimal=True
                )
            except Exception as retry_error:
                logger.error(f"Retry with minimal context failed: {retry_error}")
                return self._failure(
                    document, category, f"{retry_error} (context-related, tried minimal context)", progress
                )
            result.reduced_context = True
            return result
        except Exception as e:
            logger.error(f"Optimization of {category.value} failed: {e}")
            return self._failure(document, category, str(e), progress)

    def _failure(self, document, category, reason, progress) -> OptimizationResult:
        _notify(progress, f"Error during optimization: {reason}", 100)
        return OptimizationResult(
            document=document,
            category=category,
            final_score=0.0,
            score_improvement=0.0,
            iterations=0,
            success=False,
            message=f"Optimization failed: {reason}",
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(
        self,
        document: Document,
        category: Category,
        target_score: Optional[float],
        progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
        scope: Optional[_Scope] = None,
        minimal: bool = False,
    ) -> OptimizationResult:
        cfg = self.config
        state = None
        _notify(progress, "Initializing optimization...", 0)

        try:
            # Step 1: Baseline assessment
            _check(cancel_token)
            _notify(progress, f"Assessing current {category.value} score...", 10)
            baseline = self._assess(scope.view(document) if scope else document, category)
            if target_score is None:
                target_score = min(cfg.target_score_threshold, baseline + cfg.default_target_gain)

            state = OptimizationState(
                category=category,
                baseline_score=baseline,
                target_score=target_score,
                arena=SnapshotArena(document),
                current_score=baseline,
                score_history=[baseline],
            )
            _notify(progress, f"Current score: {baseline:.1f}/100, Target: {target_score:.1f}/100", 15)

            if baseline >= target_score:
                _notify(progress, "Already at target", 100)
                return self._result(
                    state,
                    f"Document already meets target score of {target_score:.1f}/100",
                    success=True,
                )

            attempts = 0
            while attempts < cfg.max_iterations:
                attempts += 1
                base = min(PROGRESS_START + (attempts - 1) * PROGRESS_PER_ITERATION, 90)
                _notify(progress, f"Optimization iteration {attempts}/{cfg.max_iterations}...", base)

                # Step 2: Plan
                _check(cancel_token)
                _notify(progress, "Generating optimization plan...", min(base + 5, 92))
                strategy = self._plan(state, attempts, scope, minimal)
                if strategy is None:
                    _notify(progress, "No improvements needed in this iteration", 95)
                    return self._result(
                        state,
                        f"No further improvements found: score {baseline:.1f} to "
                        f"{state.current_score:.1f}/100 after {state.iteration} iteration(s)",
                        success=True,
                    )
                _notify(
                    progress,
                    f"Plan generated: {len(strategy.edit_actions)} edits, "
                    f"{len(strategy.insert_actions)} insertions, "
                    f"{len(strategy.regenerate_actions)} regenerations",
                    min(base + 6, 92),
                )

                # Step 3: Execute and snapshot
                _check(cancel_token)
                _notify(progress, "Executing improvements...", min(base + 8, 92))
                previous = state.document
                execution = self._execute(previous, strategy)
                state.iteration += 1
                state.execution_results.append(execution)
                state.arena.push(execution.updated_document)
                state.unvalidated = True

                # Step 4: Validate
                _check(cancel_token)
                _notify(progress, "Validating improvements...", min(base + 20, 92))
                validation = self.validator.validate(
                    scope.view(previous) if scope else previous,
                    scope.view(state.document) if scope else state.document,
                    category,
                    state.current_score,
                )
                state.unvalidated = False
                state.metrics.total_edits += execution.edits_applied
                state.metrics.total_insertions += execution.insertions_applied
                state.metrics.total_regenerations += execution.regenerations_applied
                state.score_history.append(validation.new_score)
                change = validation.score_change
                _notify(
                    progress,
                    f"Score: {validation.previous_score:.1f} -> {validation.new_score:.1f} ({change:+.1f})",
                    min(base + 23, 92),
                )

                # Quality gate
                if change < -cfg.regression_threshold:
                    _notify(
                        progress,
                        f"Quality regression detected ({change:+.1f}). Rolling back...",
                        min(base + 24, 92),
                    )
                    state.arena.rollback()
                    state.score_history.pop()
                    state.metrics.rollback_count += 1
                    state.metrics.sections_regressed += validation.sections_changed
                    logger.info(
                        "Rolled back {} iteration {} (score change {:+.1f})",
                        category.value,
                        attempts,
                        change,
                    )
                    continue

                state.current_score = validation.new_score
                state.accepted_sections_changed += validation.sections_changed
                state.accepted_word_change += abs(validation.word_change)

                if validation.new_score >= state.target_score:
                    _notify(progress, "Target score achieved!", 95)
                    return self._result(
                        state,
                        f"Optimization complete: score improved from {baseline:.1f} to "
                        f"{validation.new_score:.1f}/100 in {state.iteration} iteration(s)",
                        success=True,
                    )

                if change < cfg.min_score_improvement and state.iteration > 1:
                    _notify(progress, "Improvement rate too low, stopping optimization", 95)
                    return self._result(
                        state,
                        f"Optimization complete: score improved from {baseline:.1f} to "
                        f"{validation.new_score:.1f}/100. Further improvements would be marginal.",
                        success=True,
                    )

                _notify(
                    progress,
                    "Preparing for next optimization pass...",
                    min(base + PROGRESS_PER_ITERATION - 1, 92),
                )

            _notify(progress, "Iteration limit reached", 95)
            return self._result(
                state,
                f"Optimization complete after {state.iteration} iteration(s): score improved from "
                f"{baseline:.1f} to {state.current_score:.1f}/100",
                success=True,
            )
        except OptimizationCancelled:
            logger.info("Optimization of {} cancelled", category.value)
            _notify(progress, "Optimization cancelled", 100)
            if state is None:
                return OptimizationResult(
                    document=document,
                    category=category,
                    final_score=0.0,
                    score_improvement=0.0,
                    iterations=0,
                    success=False,
                    message="Optimization cancelled",
                    cancelled=True,
                )
            if state.unvalidated:
                # Never hand back a version that was not validated.
                state.arena.rollback()
                state.execution_results.pop()
                state.iteration -= 1
            result = self._result(state, "Optimization cancelled", success=False)
            result.cancelled = True
            return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _assess(self, document: Document, category: Category) -> float:
        try:
            return self.assessor.assess(document, category).overall_score
        except (ResourceExceeded, AssessmentError):
            raise
        except Exception as e:
            raise AssessmentError(f"Failed to assess current state: {e}") from e

    def _plan(
        self, state: OptimizationState, attempt: int, scope: Optional[_Scope], minimal: bool
    ) -> Optional[ImprovementStrategy]:
        document = state.document
        view = self._planning_view(document, minimal)
        numbers = scope.numbers(document) if scope else None
        try:
            strategy = self.planner.plan(view, state.category, state.target_score, numbers)
        except (ResourceExceeded, PlanningError):
            raise
        except Exception as e:
            raise PlanningError(f"Failed to generate optimization plan: {e}") from e

        if strategy is None:
            return None
        if scope is not None:
            strategy = filter_strategy(strategy, numbers, scope.ids)
        if attempt > 1 and len(strategy.edit_actions) > self.config.later_iteration_edit_cap:
            strategy = _cap_edits(strategy, self.config.later_iteration_edit_cap)
        if strategy.is_empty:
            return None
        return strategy

    def _planning_view(self, document: Document, minimal: bool) -> Document:
        cfg = self.budget.config
        if minimal:
            reduced = self.budget.reduce(document, cfg.minimal_tokens)
        elif self.budget.estimate_size(document).total > cfg.target_tokens:
            reduced = self.budget.reduce(document, cfg.target_tokens)
        else:
            return document
        logger.info(
            "Planning on {} context ({} full sections, {} entities)",
            reduced.tier.value,
            len(reduced.full_sections),
            len(reduced.entities_included),
        )
        return reduced.document

    def _execute(self, document: Document, strategy: ImprovementStrategy) -> ExecutionResult:
        try:
            return self.executor.execute(document, strategy)
        except RefinerError:
            raise
        except Exception as e:
            raise RefinerError(f"Failed to execute transformations: {e}") from e

    # ------------------------------------------------------------------

    def _result(self, state: OptimizationState, message: str, success: bool) -> OptimizationResult:
        metrics = state.metrics
        final = state.document
        diff = diff_documents(state.arena.baseline, final)
        metrics.sections_improved = diff.sections_changed
        metrics.sections_unchanged = len(final.sections) - diff.sections_changed
        if state.accepted_sections_changed:
            metrics.average_edit_size = state.accepted_word_change / state.accepted_sections_changed

        return OptimizationResult(
            document=final,
            category=state.category,
            final_score=state.current_score,
            score_improvement=state.current_score - state.baseline_score,
            iterations=state.iteration,
            execution_results=state.execution_results,
            success=success,
            message=message,
            metrics=metrics,
            score_history=state.score_history,
            snapshot_count=state.arena.snapshot_count,
        )


def _cap_edits(strategy: ImprovementStrategy, cap: int) -> ImprovementStrategy:
    edits = strategy.edit_actions[:cap]
    inserts, regens = strategy.insert_actions, strategy.regenerate_actions
    return strategy.model_copy(
        update={
            "edit_actions": edits,
            "affected_sections": affected_sections_for(edits, inserts, regens),
            "strategy_type": strategy_type_for(edits, inserts, regens),
        }
    )


def _check(token: Optional[CancellationToken]):
    if token is not None:
        token.raise_if_cancelled()
