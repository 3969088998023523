"""
Shared weakness-to-action mapping used by every category planner.

A planner assesses the document, keeps weaknesses at or above a severity
threshold and turns each into actions:

* weaknesses naming sections become edit actions on those sections, or
  regenerate actions when the weakness is critical and badly scored;
* document-level weaknesses become insert actions at a structural position
  (early, middle or climax of the book).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from ..collaborators import Assessor
from ..config import PlanningConfig
from ..errors import PlanningError
from ..models import (
    Category,
    Document,
    EditAction,
    ImprovementStrategy,
    ImprovementType,
    InsertAction,
    Region,
    RegenerateAction,
    Severity,
    Weakness,
    filter_strategy,
)
from ..models.strategy import affected_sections_for, strategy_type_for


class Phase(str, Enum):
    EARLY = "early"
    MIDDLE = "middle"
    CLIMAX = "climax"


# Fraction of the way through the document where inserted content belongs.
PHASE_RATIOS = {
    Phase.EARLY: (0.20, 0.30),
    Phase.MIDDLE: (0.45, 0.55),
    Phase.CLIMAX: (0.85, 0.95),
}


@dataclass(frozen=True)
class ActionTemplate:
    region: Region = Region.THROUGHOUT
    improvement_type: ImprovementType = ImprovementType.ENHANCE_QUALITY
    phase: Phase = Phase.MIDDLE


class CategoryPlanner:
    """Base planner; subclasses set ``category``, ``summary`` and ``templates``."""

    category: Category = Category.EXCELLENCE
    summary: str = "overall quality"
    templates: dict[str, ActionTemplate] = {}
    default_template = ActionTemplate()

    def __init__(self, assessor: Assessor, config: Optional[PlanningConfig] = None):
        self.assessor = assessor
        self.config = config or PlanningConfig()

    def plan(
        self,
        document: Document,
        category=None,
        target_score: float = 90.0,
        section_filter: Optional[set[int]] = None,
    ) -> Optional[ImprovementStrategy]:
        """Build a strategy for this planner's category, or None if nothing qualifies."""
        if category is not None and Category.normalize(category) is not self.category:
            raise PlanningError(
                f"{type(self).__name__} cannot plan for category '{category}'"
            )

        assessment = self.assessor.assess(document, self.category)
        threshold = Severity(self.config.min_severity).rank
        eligible = sorted(
            (w for w in assessment.weaknesses if w.severity.rank >= threshold),
            key=lambda w: w.severity.rank,
            reverse=True,
        )
        if not eligible:
            logger.info("No {} weakness above '{}' severity", self.category.value, self.config.min_severity)
            return None

        edits, inserts, regens = self._map_weaknesses(document, eligible)
        current = assessment.overall_score
        gap = max(0.0, target_score - current)
        expected = min(gap, max(10.0, 2.0 * len(edits) + 5.0 * len(inserts) + 4.0 * len(regens)))

        strategy = ImprovementStrategy(
            category=self.category,
            priority=eligible[0].severity,
            current_score=current,
            goal_score=target_score,
            strategy_type=strategy_type_for(edits, inserts, regens),
            edit_actions=tuple(edits),
            insert_actions=tuple(inserts),
            regenerate_actions=tuple(regens),
            affected_sections=affected_sections_for(edits, inserts, regens),
            expected_improvement=expected,
            description=f"Improve {self.summary}",
            rationale=f"Current {self.category.value} score is {current:.1f}/100. Target is {target_score:.1f}/100.",
        )
        if section_filter is not None:
            strategy = filter_strategy(strategy, section_filter)
        if strategy.is_empty:
            return None
        return strategy

    def template_for(self, weakness: Weakness) -> ActionTemplate:
        return self.templates.get(weakness.kind, self.default_template)

    def describe(self, weakness: Weakness) -> str:
        if weakness.fix:
            return f"{weakness.fix}. ({weakness.description})"
        return weakness.description

    def insert_position(self, document: Document, phase: Phase) -> int:
        sections = document.sections
        if not sections:
            return 0
        low, high = PHASE_RATIOS[phase]
        index = min(len(sections) - 1, int(len(sections) * (low + high) / 2))
        return sections[index].number

    def _map_weaknesses(self, document: Document, weaknesses: list[Weakness]):
        by_number = {s.number: s for s in document.sections}
        edits, inserts, regens = [], [], []
        queued_edits = set()
        regenerated = set()
        insert_positions = set()

        for weakness in weaknesses:
            template = self.template_for(weakness)
            if weakness.affected_sections:
                regenerate = (
                    weakness.severity is Severity.CRITICAL
                    and weakness.current_score < self.config.regenerate_below
                )
                for number in weakness.affected_sections[: self.config.max_actions_per_weakness]:
                    section = by_number.get(number)
                    if section is None or section.id in regenerated:
                        continue
                    if regenerate:
                        regenerated.add(section.id)
                        regens.append(
                            RegenerateAction(
                                section_id=section.id,
                                section_number=number,
                                reason=weakness.description,
                                improvements=tuple(filter(None, [weakness.fix])),
                            )
                        )
                        continue
                    key = (section.id, template.improvement_type)
                    if key in queued_edits:
                        continue
                    queued_edits.add(key)
                    edits.append(
                        EditAction(
                            section_id=section.id,
                            section_number=number,
                            region=template.region,
                            improvement_type=template.improvement_type,
                            description=self.describe(weakness),
                        )
                    )
            else:
                position = self.insert_position(document, template.phase)
                if position in insert_positions:
                    continue
                insert_positions.add(position)
                inserts.append(
                    InsertAction(position=position, count=1, purpose=self.describe(weakness))
                )

        # A regenerated section takes no edits.
        edits = [a for a in edits if a.section_id not in regenerated]
        return edits, inserts, regens
