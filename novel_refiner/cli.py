import click
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .agents import GenerationExecutor, LLMJudge
from .assessment import SUPPORTED_CATEGORIES, HeuristicAssessor
from .budget import ContextBudgetManager
from .config import Config
from .controller import OptimizationController
from .coordinator import (
    DEFAULT_ANALYSIS_CATEGORIES,
    CoordinatorOptions,
    MultiCategoryCoordinator,
    PriorityOrder,
    analyze_categories,
)
from .models import Category, Document, OptimizationResult, SectionSelector
from .planning import PlannerRegistry
from .utils.logger import setup_logger
from .utils.progress import RichProgress
from .validation import Validator

console = Console()

CATEGORY_CHOICE = click.Choice(
    [c.value for c in SUPPORTED_CATEGORIES] + ["themes", "psychology", "devices", "pacing"],
    case_sensitive=False,
)


def build_controller(config: Config, use_judge: bool = False) -> OptimizationController:
    """Wire the heuristic assessor, planners and LLM agents into a controller."""
    assessor = HeuristicAssessor()
    budget = ContextBudgetManager(config.budget)
    judge = LLMJudge(config.llm, budget) if use_judge else None
    return OptimizationController(
        assessor=assessor,
        planner=PlannerRegistry(assessor, config.planning),
        executor=GenerationExecutor(config.llm, budget),
        validator=Validator(assessor, judge, config.validation),
        budget=budget,
        config=config.optimizer,
    )


def _load(path: str) -> Document:
    return Document.from_file(Path(path))


def _report(result: OptimizationResult):
    status = "[green]success[/green]" if result.success else "[red]failed[/red]"
    console.print(f"{result.category.value}: {status} - {result.message}")
    console.print(
        f"  score {result.final_score:.1f} ({result.score_improvement:+.1f}), "
        f"{result.iterations} iteration(s), {result.metrics.rollback_count} rollback(s)"
    )


@click.group()
@click.option('--config', '-c', type=click.Path(), default='config.yaml',
              help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool):
    """Novel Refiner - iteratively improve a novel one quality category at a time."""
    ctx.ensure_object(dict)

    config_path = Path(config)
    if config_path.exists():
        ctx.obj['config'] = Config.from_yaml(config_path)
    else:
        ctx.obj['config'] = Config()

    log_level = "DEBUG" if verbose else ctx.obj['config'].log_level
    logger = setup_logger(log_level)
    ctx.obj['logger'] = logger

    if config_path.exists():
        logger.info(f"Config loaded from: {config_path}")


@cli.command()
@click.argument('document', type=click.Path(exists=True))
@click.option('--category', '-C', type=CATEGORY_CHOICE, required=True, help='Quality category')
@click.pass_context
def assess(ctx: click.Context, document: str, category: str):
    """Score a document for one category and list its weaknesses."""
    logger = ctx.obj['logger']

    try:
        result = HeuristicAssessor().assess(_load(document), Category.normalize(category))
    except Exception as e:
        logger.error(f"Assessment failed: {e}")
        raise click.ClickException(str(e))

    console.print(f"{result.category}: {result.overall_score:.1f}/100")
    table = Table("Severity", "Weakness", "Sections", "Fix")
    for w in result.weaknesses:
        sections = ", ".join(map(str, w.affected_sections or [])) or "-"
        table.add_row(w.severity.value, w.description, sections, w.fix)
    console.print(table)


@cli.command()
@click.argument('document', type=click.Path(exists=True))
@click.option('--category', '-C', type=CATEGORY_CHOICE, required=True, help='Quality category')
@click.option('--target', '-t', type=float, default=None, help='Target score (default: current + 30, max 90)')
@click.option('--sections', '-s', default=None, help='Only plan for sections, e.g. "3-7" or "1,4,9"')
@click.pass_context
def plan(ctx: click.Context, document: str, category: str, target: Optional[float], sections: Optional[str]):
    """Show the improvement strategy without executing it."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    try:
        doc = _load(document)
        cat = Category.normalize(category)
        assessor = HeuristicAssessor()
        if target is None:
            baseline = assessor.assess(doc, cat).overall_score
            target = min(config.optimizer.target_score_threshold, baseline + config.optimizer.default_target_gain)
        numbers = SectionSelector.parse(sections).resolve(doc)[1] if sections else None
        strategy = PlannerRegistry(assessor, config.planning).plan(doc, cat, target, numbers)
    except Exception as e:
        logger.error(f"Planning failed: {e}")
        raise click.ClickException(str(e))

    if strategy is None:
        click.echo("No improvements needed.")
        return

    click.echo(f"{strategy.description} ({strategy.strategy_type.value}, priority {strategy.priority.value})")
    click.echo(strategy.rationale)
    click.echo(f"Expected improvement: +{strategy.expected_improvement:.1f}")
    for a in strategy.edit_actions:
        click.echo(f"  edit       #{a.section_number} [{a.region.value}/{a.improvement_type.value}] {a.description}")
    for a in strategy.regenerate_actions:
        click.echo(f"  regenerate #{a.section_number} {a.reason}")
    for a in strategy.insert_actions:
        click.echo(f"  insert     after #{a.position} x{a.count} {a.purpose}")


@cli.command()
@click.argument('document', type=click.Path(exists=True))
@click.option('--budget', '-b', type=int, default=None, help='Token budget (default: budget.target_tokens)')
@click.pass_context
def budget(ctx: click.Context, document: str, budget: Optional[int]):
    """Estimate context size and show how the document would be reduced."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    try:
        doc = _load(document)
        manager = ContextBudgetManager(config.budget)
        estimate = manager.estimate_size(doc)
        reduced = manager.reduce(doc, budget)
    except Exception as e:
        logger.error(f"Budget estimate failed: {e}")
        raise click.ClickException(str(e))

    table = Table("Part", "Tokens")
    for part, tokens in estimate.breakdown.model_dump().items():
        table.add_row(part, f"{tokens:,}")
    table.add_row("total", f"{estimate.total:,}")
    console.print(table)

    safe, warning = manager.is_context_safe(estimate.total)
    if warning:
        console.print(f"[yellow]{warning}[/yellow]")
    console.print(
        f"Tier: {reduced.tier.value} ({reduced.estimate.total:,} tokens, "
        f"{len(reduced.full_sections)} full sections, {len(reduced.entities_included)} characters, "
        f"{reduced.world_entries_included} world entries) - "
        + ("fits" if reduced.fits else "[red]does not fit[/red]")
    )


@cli.command()
@click.argument('document', type=click.Path(exists=True))
@click.option('--category', '-C', type=CATEGORY_CHOICE, required=True, help='Quality category')
@click.option('--target', '-t', type=float, default=None, help='Target score')
@click.option('--sections', '-s', default=None, help='Only optimize sections, e.g. "3-7" or "1,4,9"')
@click.option('--output', '-o', type=click.Path(), required=True, help='Where to write the improved document')
@click.option('--judge', 'use_judge', is_flag=True, help='Blend in an LLM judge during validation')
@click.pass_context
def optimize(ctx: click.Context, document: str, category: str, target: Optional[float],
             sections: Optional[str], output: str, use_judge: bool):
    """Run the refinement loop for one category."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    try:
        doc = _load(document)
        controller = build_controller(config, use_judge)
        with RichProgress(f"Optimizing {category}") as bar:
            if sections:
                result = controller.optimize_sections(
                    doc, category, SectionSelector.parse(sections), target, progress=bar
                )
            else:
                result = controller.optimize(doc, category, target, progress=bar)
        result.document.to_yaml(Path(output))
    except Exception as e:
        logger.error(f"Optimization failed: {e}")
        raise click.ClickException(str(e))

    _report(result)
    if not result.success:
        raise click.ClickException(result.message)
    logger.success(f"Improved document saved to {output}")


@cli.command('optimize-all')
@click.argument('document', type=click.Path(exists=True))
@click.option('--category', '-C', 'categories', type=CATEGORY_CHOICE, multiple=True, required=True,
              help='Categories to optimize (repeatable)')
@click.option('--order', type=click.Choice([o.value for o in PriorityOrder]), default='sequential',
              help='Category ordering')
@click.option('--stop-on-first-success', is_flag=True, help='Stop after a strong improvement')
@click.option('--target', '-t', type=float, default=None, help='Target score for every category')
@click.option('--output', '-o', type=click.Path(), required=True, help='Where to write the improved document')
@click.option('--judge', 'use_judge', is_flag=True, help='Blend in an LLM judge during validation')
@click.pass_context
def optimize_all(ctx: click.Context, document: str, categories: tuple, order: str,
                 stop_on_first_success: bool, target: Optional[float], output: str, use_judge: bool):
    """Optimize several categories in turn."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    options = CoordinatorOptions(
        priority_order=PriorityOrder(order),
        stop_on_first_success=stop_on_first_success,
        target_score=target,
    )
    try:
        doc = _load(document)
        coordinator = MultiCategoryCoordinator(build_controller(config, use_judge), config=config.coordinator)
        with RichProgress("Optimizing") as bar:
            result = coordinator.run(doc, categories, options, progress=bar)
        result.combined_document.to_yaml(Path(output))
    except Exception as e:
        logger.error(f"Multi-category optimization failed: {e}")
        raise click.ClickException(str(e))

    for category in result.order:
        if category in result.results:
            _report(result.results[category])
    for conflict in result.conflicts:
        console.print(f"[yellow]{conflict}[/yellow]")
    click.echo(result.message)
    if not result.success:
        raise click.ClickException(result.message)


@cli.command()
@click.argument('document', type=click.Path(exists=True))
@click.option('--category', '-C', 'categories', type=CATEGORY_CHOICE, multiple=True,
              help='Categories to analyze (default: all common ones)')
@click.pass_context
def analyze(ctx: click.Context, document: str, categories: tuple):
    """Score every category without changing anything."""
    logger = ctx.obj['logger']

    assessor = HeuristicAssessor()
    wanted = categories or [c for c in DEFAULT_ANALYSIS_CATEGORIES if assessor.supports(c)]
    try:
        scores = analyze_categories(assessor, _load(document), wanted)
    except Exception as e:
        logger.error(f"Analysis failed: {e}")
        raise click.ClickException(str(e))

    table = Table("Category", "Score", "Top issues")
    for category, score in scores.items():
        table.add_row(category.value, f"{score.score:.1f}", "\n".join(score.top_issues) or "-")
    console.print(table)


def main():
    cli()


if __name__ == '__main__':
    main()
