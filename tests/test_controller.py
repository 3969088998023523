"""Tests for the single-category optimization loop in novel_refiner.controller."""

import pytest
from unittest.mock import patch

from novel_refiner.agents import GenerationExecutor
from novel_refiner.budget import ContextBudgetManager
from novel_refiner.config import BudgetConfig, LLMConfig, OptimizerConfig
from novel_refiner.controller import CancellationToken, OptimizationController, SnapshotArena
from novel_refiner.errors import PlanningError, ResourceExceeded
from novel_refiner.models import Category, SectionSelector

from conftest import (
    CALM_TEXT,
    ScriptedAssessor,
    ScriptedExecutor,
    ScriptedPlanner,
    ScriptedValidator,
    edit_strategy,
    make_document,
    make_section,
)


def make_controller(scores=50.0, validations=(), planner=None, executor=None, **kwargs):
    return OptimizationController(
        assessor=ScriptedAssessor(scores),
        planner=planner or ScriptedPlanner(),
        executor=executor or ScriptedExecutor(),
        validator=ScriptedValidator(validations),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# SnapshotArena
# ---------------------------------------------------------------------------


class TestSnapshotArena:
    """Tests for the stack of accepted document versions."""

    def test_push_and_rollback(self):
        """Rolling back drops the newest version and exposes the one before it."""
        base, first, second = make_document(1), make_document(2), make_document(3)
        arena = SnapshotArena(base)
        arena.push(first)
        arena.push(second)
        assert arena.snapshot_count == 2
        assert arena.rollback() is first
        assert arena.latest is first
        assert arena.baseline is base

    def test_cannot_roll_back_past_baseline(self):
        """The baseline itself can never be rolled back."""
        arena = SnapshotArena(make_document(1))
        with pytest.raises(IndexError):
            arena.rollback()


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


class TestTermination:
    """Tests for the conditions that end a run."""

    def test_already_at_target_is_a_no_op(self):
        """A baseline at or above the target returns the input untouched."""
        document = make_document(3)
        controller = make_controller(scores=95.0)

        result = controller.optimize(document, "tension")

        assert result.success is True
        assert result.iterations == 0
        assert result.score_improvement == 0
        assert result.document is document
        assert result.snapshot_count == 0
        assert result.score_history == [95.0]
        assert controller.planner.calls == []

    def test_explicit_target_below_baseline(self):
        """An explicit target under the baseline counts as already met."""
        document = make_document(3)
        result = make_controller(scores=70.0).optimize(document, "tension", target_score=60)
        assert result.iterations == 0
        assert "already meets target" in result.message

    def test_single_edit_reaches_target(self):
        """One accepted iteration that reaches the target ends the run."""
        document = make_document(1)
        controller = make_controller(scores=50.0, validations=[65.0])

        result = controller.optimize(document, "tension", target_score=60)

        assert result.success is True
        assert result.iterations == 1
        assert result.final_score == 65.0
        assert result.score_improvement == 15.0
        assert result.document.sections[0].content.endswith("Revised.")
        assert document.sections[0].content == CALM_TEXT

    def test_default_target_is_baseline_plus_thirty(self):
        """Without a target the run aims thirty points above the baseline."""
        controller = make_controller(scores=50.0, validations=[79.0, 80.0])
        result = controller.optimize(make_document(2), "tension")
        assert result.iterations == 2
        assert "score improved from 50.0 to 80.0" in result.message

    def test_default_target_is_capped_at_ninety(self):
        """The default target never exceeds ninety."""
        controller = make_controller(scores=70.0, validations=[89.0, 90.0])
        result = controller.optimize(make_document(2), "tension")
        assert result.iterations == 2
        assert result.final_score == 90.0

    def test_iteration_cap(self):
        """Steady gains stop at max_iterations with the latest accepted score."""
        controller = make_controller(scores=50.0, validations=[53.0, 56.0, 59.0, 62.0])

        result = controller.optimize(make_document(2), "tension", target_score=90)

        assert result.success is True
        assert result.iterations == OptimizerConfig().max_iterations
        assert result.final_score == 59.0
        assert len(controller.executor.calls) == 3

    def test_marginal_gain_stops_after_second_iteration(self):
        """A gain under the minimum after the first iteration stops the run."""
        controller = make_controller(scores=50.0, validations=[55.0, 56.0, 70.0])

        result = controller.optimize(make_document(2), "tension", target_score=90)

        assert result.iterations == 2
        assert "marginal" in result.message

    def test_small_first_gain_does_not_stop(self):
        """The marginal rule does not apply to the first iteration."""
        controller = make_controller(scores=50.0, validations=[51.0, 55.0, 58.0])
        result = controller.optimize(make_document(2), "tension", target_score=90)
        assert result.iterations == 3

    def test_empty_plan_ends_successfully(self):
        """A planner with nothing to do ends the run before any execution."""
        controller = make_controller(planner=ScriptedPlanner(strategies=[]))

        result = controller.optimize(make_document(2), "tension", target_score=90)

        assert result.success is True
        assert result.iterations == 0
        assert "No further improvements" in result.message
        assert controller.executor.calls == []

    def test_plan_exhausted_after_one_iteration(self):
        """Running out of plans keeps the work already accepted."""
        planner = ScriptedPlanner(strategies=[edit_strategy("tension", 1)])
        controller = make_controller(validations=[60.0], planner=planner)

        result = controller.optimize(make_document(2), "tension", target_score=90)

        assert result.iterations == 1
        assert result.final_score == 60.0


# ---------------------------------------------------------------------------
# Quality gate
# ---------------------------------------------------------------------------


class TestRollback:
    """Tests for rolling back iterations whose score drops sharply."""

    def test_regression_restores_previous_snapshot(self):
        """A drop of more than five points restores the previous version."""
        controller = make_controller(
            scores=50.0, validations=[60.0, 40.0], config=OptimizerConfig(max_iterations=2)
        )

        result = controller.optimize(make_document(2), "tension", target_score=90)

        accepted = controller.executor.calls[1][0]
        assert result.document is accepted
        assert result.final_score == 60.0
        assert result.metrics.rollback_count == 1

    def test_next_iteration_plans_from_reverted_document(self):
        """The iteration after a rollback works on the restored version."""
        controller = make_controller(scores=50.0, validations=[60.0, 40.0, 63.0])

        result = controller.optimize(make_document(2), "tension", target_score=90)

        executed_on = [call[0] for call in controller.executor.calls]
        assert executed_on[2] is executed_on[1]
        assert result.metrics.rollback_count == 1
        assert result.final_score == 63.0

    def test_drop_of_exactly_five_is_kept(self):
        """A drop of exactly five points is still accepted."""
        controller = make_controller(
            scores=50.0, validations=[60.0, 55.0], config=OptimizerConfig(max_iterations=2)
        )
        result = controller.optimize(make_document(2), "tension", target_score=90)
        assert result.metrics.rollback_count == 0
        assert result.final_score == 55.0

    def test_snapshot_depth_invariants(self):
        """Snapshots equal iterations minus rollbacks; history has one more entry."""
        controller = make_controller(scores=50.0, validations=[55.0, 45.0, 58.0])

        result = controller.optimize(make_document(2), "tension", target_score=90)

        assert result.iterations == 3
        assert result.metrics.rollback_count == 1
        assert result.snapshot_count == result.iterations - result.metrics.rollback_count
        assert len(result.score_history) == result.snapshot_count + 1
        assert result.score_history == [50.0, 55.0, 58.0]

    def test_every_iteration_regresses(self):
        """When every iteration is rolled back the input comes back unchanged."""
        controller = make_controller(scores=50.0, validations=[40.0, 40.0, 40.0])
        document = make_document(2)

        result = controller.optimize(document, "tension", target_score=90)

        assert result.document is document
        assert result.snapshot_count == 0
        assert result.metrics.rollback_count == 3
        assert result.score_improvement == 0


# ---------------------------------------------------------------------------
# Strategy handling
# ---------------------------------------------------------------------------


class TestStrategyHandling:
    """Tests for how plans are capped, reduced and normalized."""

    def test_later_iterations_keep_five_edits(self):
        """After the first iteration at most five edits are executed."""
        planner = ScriptedPlanner(
            strategies=[edit_strategy("tension", *range(1, 9)), edit_strategy("tension", *range(1, 9))]
        )
        controller = make_controller(validations=[55.0, 60.0], planner=planner)

        controller.optimize(make_document(8), "tension", target_score=90)

        first, second = (call[1] for call in controller.executor.calls)
        assert len(first.edit_actions) == 8
        assert len(second.edit_actions) == 5
        assert second.affected_sections == (1, 2, 3, 4, 5)

    def test_large_document_is_planned_on_reduced_view(self):
        """An oversized document is planned on a reduced view but executed in full."""
        budget = ContextBudgetManager(BudgetConfig(target_tokens=500, instruction_overhead=0))
        document = make_document(12, content=CALM_TEXT * 10)
        controller = make_controller(validations=[90.0], budget=budget)

        result = controller.optimize(document, "tension", target_score=80)

        planned_on = controller.planner.calls[0][0]
        assert planned_on is not document
        assert planned_on.sections[0].content == "Chapter 1"
        # Execution always works on the full document.
        assert controller.executor.calls[0][0] is document
        assert result.document.sections[0].content.startswith(CALM_TEXT * 10)

    def test_category_aliases_are_normalized(self):
        """Category aliases resolve to their canonical category."""
        controller = make_controller(scores=95.0)
        result = controller.optimize(make_document(1), "themes")
        assert result.category is Category.THEME


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FlakyPlanner(ScriptedPlanner):
    """Raises ResourceExceeded for the first ``failures`` calls."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def plan(self, document, category, target_score, section_filter=None):
        if self.failures:
            self.failures -= 1
            self.calls.append((document, category, target_score, section_filter))
            raise ResourceExceeded(150000, 100000)
        return super().plan(document, category, target_score, section_filter)


class TestErrors:
    """Tests for collaborator failures and the minimal-context retry."""

    def test_planner_failure_returns_original_document(self):
        """A planner exception fails the run and returns the input."""
        document = make_document(2)
        controller = make_controller(planner=ScriptedPlanner(error=RuntimeError("boom")))

        result = controller.optimize(document, "tension", target_score=90)

        assert result.success is False
        assert result.document is document
        assert result.score_improvement == 0
        assert "boom" in result.message

    def test_planning_error_is_not_rewrapped(self):
        """A PlanningError message is reported as is."""
        controller = make_controller(planner=ScriptedPlanner(error=PlanningError("bad plan")))
        result = controller.optimize(make_document(2), "tension", target_score=90)
        assert result.message == "Optimization failed: bad plan"

    def test_assessment_failure(self):
        """A failing baseline assessment is reported as an assessment failure."""
        document = make_document(2)
        controller = make_controller(scores=[ValueError("scorer down")])

        result = controller.optimize(document, "tension")

        assert result.success is False
        assert result.document is document
        assert "Failed to assess" in result.message

    def test_executor_failure_after_progress_returns_original(self):
        """An executor exception discards accepted iterations and returns the input."""
        document = make_document(2)

        class BreaksSecondTime(ScriptedExecutor):
            def execute(self, document, strategy):
                if self.calls:
                    raise RuntimeError("generation service unavailable")
                return super().execute(document, strategy)

        controller = make_controller(validations=[60.0, 70.0], executor=BreaksSecondTime())
        result = controller.optimize(document, "tension", target_score=90)

        assert result.success is False
        assert result.document is document
        assert result.score_improvement == 0

    def test_oversized_section_edit_does_not_abort_run(self):
        """An edit over the context limit fails in-band and earlier work is kept."""
        document = make_document(1).with_sections(
            [make_section(1, CALM_TEXT), make_section(2, "lantern " * 5000)]
        )
        budget = ContextBudgetManager(BudgetConfig(max_safe_tokens=3000))
        executor = GenerationExecutor(LLMConfig(api_key="test-key", retry_delay=0), budget)
        planner = ScriptedPlanner(
            strategies=[edit_strategy("tension", 1), edit_strategy("tension", 1, 2)]
        )
        controller = OptimizationController(
            assessor=ScriptedAssessor(50.0),
            planner=planner,
            executor=executor,
            validator=ScriptedValidator([60.0, 64.0]),
            budget=budget,
        )

        with patch.object(
            GenerationExecutor, "call_gemini", side_effect=["First pass.", "Second pass."]
        ) as gemini:
            result = controller.optimize(document, "tension", target_score=64)

        assert result.success is True
        assert result.reduced_context is False
        assert result.iterations == 2
        assert result.final_score == 64.0
        assert gemini.call_count == 2
        second = result.execution_results[1]
        assert second.edits_applied == 1
        assert second.failures[0].action_id == "edit:s2:enhance_quality"
        assert "exceeds limit of 3,000" in second.failures[0].error
        assert result.document.section_by_id("s1").content == "Second pass."
        assert result.document.section_by_id("s2").content == document.section_by_id("s2").content

    def test_resource_exceeded_retries_with_minimal_view(self, sample_document):
        """A context-limit failure reruns once with the planner on the minimal view."""
        budget = ContextBudgetManager(BudgetConfig(minimal_tokens=50, instruction_overhead=0))
        planner = FlakyPlanner(failures=1)
        controller = make_controller(validations=[90.0], planner=planner, budget=budget)

        result = controller.optimize(sample_document, "tension", target_score=80)

        assert result.success is True
        assert result.reduced_context is True
        retry_view = planner.calls[1][0]
        assert retry_view.section_by_id("s1").content == "Mara leaves the village."
        # The returned document is never the reduced view.
        assert result.document.section_by_id("s1").content.startswith(
            sample_document.section_by_id("s1").content
        )

    def test_second_resource_exceeded_is_final(self):
        """A context-limit failure on the retry fails the run."""
        document = make_document(2)
        controller = make_controller(planner=FlakyPlanner(failures=2))

        result = controller.optimize(document, "tension", target_score=90)

        assert result.success is False
        assert result.document is document
        assert "minimal context" in result.message


# ---------------------------------------------------------------------------
# Cancellation and progress
# ---------------------------------------------------------------------------


class TestCancellation:
    """Tests for cooperative cancellation through CancellationToken."""

    def test_cancelled_before_start(self):
        """A token cancelled up front returns the input without assessing."""
        token = CancellationToken()
        token.cancel()
        document = make_document(2)

        result = make_controller().optimize(document, "tension", cancel_token=token)

        assert result.cancelled is True
        assert result.success is False
        assert result.document is document

    def test_cancel_at_iteration_start_skips_planning(self):
        """Cancelling as an iteration begins stops before its plan is made."""
        token = CancellationToken()

        def cancel_on_second_iteration(message, percent):
            if message.startswith("Optimization iteration 2/"):
                token.cancel()

        controller = make_controller(validations=[60.0, 70.0])
        result = controller.optimize(
            make_document(2),
            "tension",
            target_score=90,
            progress=cancel_on_second_iteration,
            cancel_token=token,
        )

        assert result.cancelled is True
        assert result.iterations == 1
        assert result.final_score == 60.0
        assert len(controller.planner.calls) == 1

    def test_cancel_during_execution_keeps_last_validated_version(self):
        """An executed but unvalidated iteration is undone on cancellation."""
        token = CancellationToken()

        class CancelsSecondTime(ScriptedExecutor):
            def execute(self, document, strategy):
                if self.calls:
                    token.cancel()
                return super().execute(document, strategy)

        controller = make_controller(validations=[60.0, 70.0], executor=CancelsSecondTime())
        result = controller.optimize(make_document(2), "tension", target_score=90, cancel_token=token)

        assert result.cancelled is True
        assert result.iterations == 1
        assert result.final_score == 60.0
        assert result.document is controller.executor.calls[1][0]
        assert result.snapshot_count == 1


class TestProgress:
    """Tests for progress reporting."""

    def test_progress_milestones(self, progress_log):
        """Progress starts at 0, 10 and 15 and never passes 95 before completion."""
        controller = make_controller(validations=[65.0])
        controller.optimize(make_document(1), "tension", target_score=60, progress=progress_log)

        percents = [p for _, p in progress_log.events]
        assert percents[:3] == [0, 10, 15]
        assert ("Optimization iteration 1/3...", 15) in progress_log.events
        assert ("Target score achieved!", 95) in progress_log.events
        assert all(p <= 95 for p in percents)

    def test_failing_callback_does_not_break_run(self):
        """Exceptions raised by the progress callback are ignored."""
        def broken(message, percent):
            raise RuntimeError("display closed")

        result = make_controller(validations=[65.0]).optimize(
            make_document(1), "tension", target_score=60, progress=broken
        )
        assert result.success is True


# ---------------------------------------------------------------------------
# Targeted sections
# ---------------------------------------------------------------------------


class TestOptimizeSections:
    """Tests for runs restricted to selected sections."""

    def test_strategy_is_filtered_to_selected_sections(self):
        """Actions outside the selection are dropped before execution."""
        planner = ScriptedPlanner(strategies=[edit_strategy("tension", 1, 5, 6)])
        controller = make_controller(validations=[90.0], planner=planner)
        document = make_document(10)

        result = controller.optimize_sections(
            document, "tension", SectionSelector.parse("5-7"), target_score=80
        )

        assert result.success is True
        assert planner.calls[0][3] == {5, 6, 7}
        executed_doc, strategy = controller.executor.calls[0]
        assert executed_doc is document
        assert strategy.affected_sections == (5, 6)
        assert [a.section_number for a in strategy.edit_actions] == [5, 6]

    def test_assessment_sees_only_selected_sections(self):
        """The baseline is scored on the selected sections alone."""
        controller = make_controller(scores=95.0)
        controller.optimize_sections(make_document(10), "tension", SectionSelector(numbers=[2, 4]))

        assessed = controller.assessor.calls[0][0]
        assert [s.number for s in assessed.sections] == [2, 4]

    def test_validation_sees_only_selected_sections(self):
        """Validation compares the selected sections before and after."""
        planner = ScriptedPlanner(strategies=[edit_strategy("tension", 3)])
        controller = make_controller(validations=[90.0], planner=planner)

        controller.optimize_sections(make_document(6), "tension", SectionSelector(ids=["s3"]), 80)

        previous, current, _ = controller.validator.calls[0]
        assert [s.id for s in previous.sections] == ["s3"]
        assert current.sections[0].content.endswith("Revised.")

    def test_no_matching_sections(self):
        """A selector that matches nothing fails without running."""
        document = make_document(3)
        result = make_controller().optimize_sections(document, "tension", SectionSelector(numbers=[42]))
        assert result.success is False
        assert result.document is document
        assert "No sections matched" in result.message
