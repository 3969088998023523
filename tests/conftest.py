"""Shared fixtures and scripted collaborators."""

import pytest

from novel_refiner.models import (
    Category,
    Character,
    Document,
    EditAction,
    ExecutionResult,
    ImprovementStrategy,
    InsertAction,
    Section,
    Severity,
    ValidationOutcome,
    Weakness,
    WeaknessAssessment,
    WorldEntry,
)


TENSE_TEXT = (
    "Mara confronted Dren at the gate. He argued that the threat was real, and she "
    "challenged every word. \"You betrayed us,\" she said, angry and afraid. The fight "
    "left them both shaking. "
)
CALM_TEXT = (
    "The morning was quiet. Mara walked along the river and watched the boats drift past "
    "the old mill. Bread was baking somewhere in the village and the air smelled of rain. "
)


def make_section(number: int, content: str = CALM_TEXT, **kwargs) -> Section:
    kwargs.setdefault("id", f"s{number}")
    kwargs.setdefault("title", f"Chapter {number}")
    return Section(number=number, content=content, **kwargs)


def make_document(count: int = 5, content: str = CALM_TEXT, **kwargs) -> Document:
    kwargs.setdefault("title", "The Salt Road")
    kwargs.setdefault("genre", "fantasy")
    return Document(
        sections=tuple(make_section(n, content) for n in range(1, count + 1)),
        **kwargs,
    )


@pytest.fixture
def sample_document():
    """Five chapters, two characters, three world entries."""
    return Document(
        title="The Salt Road",
        genre="fantasy",
        themes=("betrayal and loyalty",),
        sections=(
            make_section(1, CALM_TEXT * 3, summary="Mara leaves the village."),
            make_section(2, TENSE_TEXT * 3, summary="Mara and Dren quarrel."),
            make_section(3, CALM_TEXT * 2, summary="The river crossing."),
            make_section(4, TENSE_TEXT * 2 + CALM_TEXT, summary="The ambush."),
            make_section(5, CALM_TEXT + "Who had opened the gate?", summary="Arrival."),
        ),
        characters=(
            Character(id="c1", name="Mara", notes="Smuggler's daughter", is_primary=True),
            Character(id="c2", name="Dren", notes="Her brother"),
            Character(id="c3", name="Old Tomas", notes="Ferryman"),
        ),
        world_entries=(
            WorldEntry(id="w1", category="PowerLevels", title="Salt-binding", content="Three ranks."),
            WorldEntry(id="w2", category="Systems", title="Tithes", content="Paid at the gate."),
            WorldEntry(id="w3", category="Places", title="The Mill", content="Abandoned."),
        ),
    )


# ---------------------------------------------------------------------------
# Scripted collaborators
# ---------------------------------------------------------------------------


def assessment(category, score, weaknesses=()):
    return WeaknessAssessment(
        category=Category.normalize(category).value,
        overall_score=score,
        target_score=80,
        weaknesses=tuple(weaknesses),
    )


def weakness(kind, severity=Severity.HIGH, sections=None, score=40.0):
    return Weakness(
        id=f"test:{kind}",
        kind=kind,
        description=f"{kind} detected",
        severity=severity,
        current_score=score,
        target_score=70,
        affected_sections=sections,
        fix=f"Fix {kind}",
    )


class ScriptedAssessor:
    """Returns a fixed score per category, or successive scores from a list."""

    def __init__(self, scores, weaknesses=()):
        self.scores = scores
        self.weaknesses = weaknesses
        self.calls = []

    def assess(self, document, category):
        category = Category.normalize(category)
        self.calls.append((document, category))
        if isinstance(self.scores, dict):
            score = self.scores[category]
        elif isinstance(self.scores, list):
            score = self.scores.pop(0) if len(self.scores) > 1 else self.scores[0]
        else:
            score = self.scores
        if isinstance(score, Exception):
            raise score
        return assessment(category, score, self.weaknesses)


class ScriptedPlanner:
    """Plans one edit on the first section (or the given strategies in turn)."""

    def __init__(self, strategies=None, error=None):
        self.strategies = strategies
        self.error = error
        self.calls = []

    def plan(self, document, category, target_score, section_filter=None):
        self.calls.append((document, category, target_score, section_filter))
        if self.error is not None:
            raise self.error
        if self.strategies is not None:
            return self.strategies.pop(0) if self.strategies else None
        first = document.sections[0]
        return ImprovementStrategy(
            category=Category.normalize(category),
            edit_actions=(EditAction(section_id=first.id, section_number=first.number),),
            affected_sections=(first.number,),
        )


def edit_strategy(category, *numbers, inserts=()):
    return ImprovementStrategy(
        category=Category.normalize(category),
        edit_actions=tuple(EditAction(section_id=f"s{n}", section_number=n) for n in numbers),
        insert_actions=tuple(InsertAction(position=p) for p in inserts),
        affected_sections=tuple(sorted(set(numbers) | set(inserts))),
    )


class ScriptedExecutor:
    """Appends a marker to every edited section and inserts a stub per insert action."""

    def __init__(self, marker=" Revised.", error=None):
        self.marker = marker
        self.error = error
        self.calls = []
        self._inserted = 0

    def execute(self, document, strategy):
        self.calls.append((document, strategy))
        if self.error is not None:
            raise self.error
        updated = document
        for action in strategy.edit_actions:
            section = updated.section_by_id(action.section_id)
            updated = updated.replace_section_text(section.id, section.content + self.marker)
        for action in sorted(strategy.insert_actions, key=lambda a: a.position, reverse=True):
            self._inserted += 1
            new = Section(
                id=f"new-{strategy.category.value}-{self._inserted}",
                number=0,
                title="Inserted",
                content="An inserted chapter.",
            )
            updated = updated.insert_sections_after(action.position, [new])
        return ExecutionResult(
            strategy_id=strategy.id,
            category=strategy.category,
            updated_document=updated,
            edits_applied=len(strategy.edit_actions),
            insertions_applied=len(strategy.insert_actions),
        )


class ScriptedValidator:
    """Reports successive scores; ``None`` entries mean no change."""

    def __init__(self, scores):
        self.scores = list(scores)
        self.calls = []

    def validate(self, previous_document, current_document, category, previous_score):
        self.calls.append((previous_document, current_document, previous_score))
        score = self.scores.pop(0) if self.scores else previous_score
        if score is None:
            score = previous_score
        return ValidationOutcome(
            new_score=score,
            previous_score=previous_score,
            score_change=score - previous_score,
        )


@pytest.fixture
def progress_log():
    events = []

    def callback(message, percent):
        events.append((message, percent))

    callback.events = events
    return callback
