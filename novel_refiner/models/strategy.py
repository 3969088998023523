"""Improvement strategy data model: categories, actions and section filtering."""

import uuid
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .assessment import Severity
from .document import Document


class Category(str, Enum):
    """Closed set of quality dimensions the optimizer can target."""

    EXCELLENCE = "excellence"
    STRUCTURE = "structure"
    ENGAGEMENT = "engagement"
    CHARACTER = "character"
    THEME = "theme"
    TENSION = "tension"
    PROSE = "prose"
    ORIGINALITY = "originality"
    VOICE = "voice"
    LITERARY_DEVICES = "literary_devices"
    MARKET_READINESS = "market_readiness"

    @classmethod
    def normalize(cls, value) -> "Category":
        """Resolve a category name or alias to a Category.

        Accepts enum members, canonical names and the aliases used by older
        callers (``themes``, ``psychology``, ``devices`` ...). Raises
        ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown improvement category: {value!r}") from None


_ALIASES = {
    "themes": "theme",
    "psychology": "character",
    "characters": "character",
    "devices": "literary_devices",
    "literary": "literary_devices",
    "market": "market_readiness",
    "pacing": "structure",
}


class Region(str, Enum):
    BEGINNING = "beginning"
    MIDDLE = "middle"
    END = "end"
    THROUGHOUT = "throughout"


class ImprovementType(str, Enum):
    ADD_CONTENT = "add_content"
    MODIFY_CONTENT = "modify_content"
    ENHANCE_QUALITY = "enhance_quality"
    FIX_ISSUE = "fix_issue"


class StrategyType(str, Enum):
    EDIT = "edit"
    INSERT = "insert"
    HYBRID = "hybrid"
    REGENERATE = "regenerate"


class EditAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_id: str
    section_number: int
    region: Region = Region.THROUGHOUT
    improvement_type: ImprovementType = ImprovementType.ENHANCE_QUALITY
    description: str = ""


class InsertAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: int = Field(ge=0)  # insert after this section number
    count: int = Field(default=1, ge=1)
    purpose: str = ""


class RegenerateAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_id: str
    section_number: int
    reason: str = ""
    improvements: tuple[str, ...] = ()


class ImprovementStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    category: Category
    priority: Severity = Severity.MEDIUM
    current_score: float = 0.0
    goal_score: float = 0.0
    strategy_type: StrategyType = StrategyType.EDIT
    edit_actions: tuple[EditAction, ...] = ()
    insert_actions: tuple[InsertAction, ...] = ()
    regenerate_actions: tuple[RegenerateAction, ...] = ()
    affected_sections: tuple[int, ...] = ()
    expected_improvement: float = 0.0
    description: str = ""
    rationale: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.edit_actions or self.insert_actions or self.regenerate_actions)

    @property
    def action_count(self) -> int:
        return len(self.edit_actions) + len(self.insert_actions) + len(self.regenerate_actions)


def strategy_type_for(
    edits: Iterable[EditAction],
    inserts: Iterable[InsertAction],
    regens: Iterable[RegenerateAction],
) -> StrategyType:
    kinds = [
        kind
        for kind, actions in (
            (StrategyType.EDIT, list(edits)),
            (StrategyType.INSERT, list(inserts)),
            (StrategyType.REGENERATE, list(regens)),
        )
        if actions
    ]
    if len(kinds) > 1:
        return StrategyType.HYBRID
    return kinds[0] if kinds else StrategyType.EDIT


def affected_sections_for(
    edits: Iterable[EditAction],
    inserts: Iterable[InsertAction],
    regens: Iterable[RegenerateAction],
) -> tuple[int, ...]:
    numbers = {a.section_number for a in edits}
    numbers.update(a.section_number for a in regens)
    numbers.update(a.position for a in inserts)
    return tuple(sorted(numbers))


def filter_strategy(
    strategy: ImprovementStrategy,
    section_numbers: Iterable[int],
    section_ids: Optional[Iterable[str]] = None,
) -> ImprovementStrategy:
    """Restrict a strategy to an allow-list of sections.

    Edit and regenerate actions survive when their section number or id is
    allowed. Insert actions survive when the insertion point is adjacent to an
    allowed section (the section before or after the new content).
    ``affected_sections`` is recomputed from the surviving actions and
    intersected with the allowed numbers.
    """
    numbers = set(section_numbers)
    ids = set(section_ids or ())

    def allowed(number: int, section_id: str) -> bool:
        return number in numbers or section_id in ids

    edits = tuple(a for a in strategy.edit_actions if allowed(a.section_number, a.section_id))
    regens = tuple(
        a for a in strategy.regenerate_actions if allowed(a.section_number, a.section_id)
    )
    inserts = tuple(
        a for a in strategy.insert_actions if a.position in numbers or a.position + 1 in numbers
    )
    affected = tuple(n for n in affected_sections_for(edits, inserts, regens) if n in numbers)

    return strategy.model_copy(
        update={
            "edit_actions": edits,
            "insert_actions": inserts,
            "regenerate_actions": regens,
            "affected_sections": affected,
            "strategy_type": strategy_type_for(edits, inserts, regens),
        }
    )


class SectionRange(BaseModel):
    start: int
    end: int

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise ValueError(f"Range end {self.end} is before start {self.start}")
        return self


class SectionSelector(BaseModel):
    """Selects sections by explicit ids, by numbers, or by a contiguous range.

    When several are given, ids win over numbers and numbers over the range.
    """

    ids: list[str] = Field(default_factory=list)
    numbers: list[int] = Field(default_factory=list)
    range: Optional[SectionRange] = None

    @classmethod
    def parse(cls, text: str) -> "SectionSelector":
        """Parse ``"3-7"`` as a range or ``"1,4,9"`` as a number list."""
        text = text.strip()
        if "-" in text and "," not in text:
            start, end = (int(part) for part in text.split("-", 1))
            return cls(range=SectionRange(start=start, end=end))
        return cls(numbers=[int(part) for part in text.split(",") if part.strip()])

    def resolve(self, document: Document) -> tuple[set[str], set[int]]:
        """Return the (ids, numbers) of the document's sections this selects."""
        if self.ids:
            chosen = [s for s in document.sections if s.id in set(self.ids)]
        elif self.numbers:
            chosen = [s for s in document.sections if s.number in set(self.numbers)]
        elif self.range is not None:
            chosen = [
                s for s in document.sections if self.range.start <= s.number <= self.range.end
            ]
        else:
            chosen = []
        return {s.id for s in chosen}, {s.number for s in chosen}
