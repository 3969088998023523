"""
Deterministic keyword heuristics that score a document per category.

These are reference assessors so the optimizer can run without an external
scoring service. Each scorer returns a WeaknessAssessment whose weaknesses
either name the affected sections or, for document-level gaps, leave them
unset so planners can answer with inserted sections.
"""

import re
from statistics import mean, pstdev
from typing import Callable

from loguru import logger

from ..errors import UnsupportedCategory
from ..models import Category, Document, Severity, Weakness, WeaknessAssessment
from .metrics import (
    avg_sentence_length,
    has_dialogue,
    keyword_hits,
    repetition_rate,
    vocabulary_diversity,
    word_count,
)

DEFAULT_TARGET = 80.0

CONFLICT_WORDS = [
    "argued", "disagreed", "confronted", "challenged", "opposed", "tension",
    "strain", "hostile", "angry", "frustrated", "misunderstanding", "dispute",
    "quarrel", "clash", "threat", "danger", "fear", "attack", "betrayed", "fight",
]
FRICTION_WORDS = CONFLICT_WORDS[:14]
HOOK_WORDS = ["suddenly", "secret", "scream", "vanished", "but then", "too late", "never", "who"]


def _weakness(category, kind, description, severity, current, sections=None, fix="", target=70.0):
    return Weakness(
        id=f"{category.value}:{kind}",
        kind=kind,
        description=description,
        severity=severity,
        current_score=round(max(0.0, min(100.0, current)), 1),
        target_score=target,
        affected_sections=sections,
        fix=fix,
    )


def _assessment(category, score, weaknesses, recommendations=()):
    score = round(max(0.0, min(100.0, score)), 1)
    return WeaknessAssessment(
        category=category.value,
        overall_score=score,
        target_score=max(DEFAULT_TARGET, score),
        weaknesses=tuple(weaknesses),
        recommendations=tuple(recommendations),
    )


# ---------------------------------------------------------------------------
# Tension
# ---------------------------------------------------------------------------


def tension_level(text: str) -> float:
    words = word_count(text)
    if words == 0:
        return 0.0
    density = keyword_hits(text, CONFLICT_WORDS) / words
    return min(100.0, 20.0 + density * 4000)


def score_tension(document: Document) -> WeaknessAssessment:
    category = Category.TENSION
    levels = {s.number: tension_level(s.content) for s in document.sections}
    overall = mean(levels.values()) if levels else 0.0
    weaknesses = []

    low = [n for n, level in levels.items() if level < 40]
    if low:
        weaknesses.append(
            _weakness(
                category,
                "low_tension_sections",
                f"Low tension detected in {len(low)} section(s)",
                Severity.HIGH if len(low) > len(levels) * 0.2 else Severity.MEDIUM,
                mean(levels[n] for n in low),
                low,
                "Inject micro-tensions, conflicts, or external threats",
            )
        )

    friction_poor = [
        s.number
        for s in document.sections
        if s.word_count > 500 and keyword_hits(s.content, FRICTION_WORDS) / s.word_count < 0.002
    ]
    if friction_poor:
        weaknesses.append(
            _weakness(
                category,
                "low_friction",
                f"Low interpersonal friction in {len(friction_poor)} section(s)",
                Severity.MEDIUM,
                overall,
                friction_poor,
                "Add conflicts, disagreements, or misunderstandings between characters",
            )
        )

    if len(levels) >= 3 and pstdev(levels.values()) < 10:
        weaknesses.append(
            _weakness(
                category,
                "flat_tension_curve",
                "Tension barely varies across the novel; no climactic peak",
                Severity.HIGH,
                overall,
                fix="Build toward a climactic confrontation near the end",
            )
        )
    return _assessment(category, overall, weaknesses)


# ---------------------------------------------------------------------------
# Theme
# ---------------------------------------------------------------------------


def _theme_keywords(document: Document) -> list[str]:
    names = list(document.themes)
    names += [e.title for e in document.world_entries if e.category.lower() in ("theme", "themes")]
    return sorted({w for name in names for w in name.lower().split() if len(w) > 3})


def score_theme(document: Document) -> WeaknessAssessment:
    category = Category.THEME
    keywords = _theme_keywords(document)
    if not keywords:
        return _assessment(
            category,
            20.0,
            [
                _weakness(
                    category,
                    "no_primary_theme",
                    "No primary theme established",
                    Severity.CRITICAL,
                    0.0,
                    fix="Establish a central thematic question early in the novel",
                )
            ],
        )

    presence = {s.number: keyword_hits(s.content, keywords) for s in document.sections}
    weak = [
        s.number
        for s in document.sections
        if s.word_count > 200 and presence[s.number] / s.word_count < 0.001
    ]
    sections = list(document.sections)
    consistency = 100.0 * sum(1 for v in presence.values() if v) / len(presence) if presence else 0.0
    weaknesses = []
    if weak:
        weaknesses.append(
            _weakness(
                category,
                "weak_theme_presence",
                f"Weak theme presence in {len(weak)} section(s)",
                Severity.HIGH if len(weak) > len(sections) * 0.3 else Severity.MEDIUM,
                consistency,
                weak,
                "Weave motifs, symbolic language, or thematic dialogue into the section",
            )
        )

    tail = sections[int(len(sections) * 0.85):] if len(sections) >= 4 else []
    if tail and not any(presence[s.number] for s in tail):
        weaknesses.append(
            _weakness(
                category,
                "unresolved_theme",
                "Themes are not revisited in the closing sections",
                Severity.HIGH,
                consistency,
                fix="Resolve the central thematic question during the climax",
            )
        )
    return _assessment(category, consistency, weaknesses)


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


def score_structure(document: Document) -> WeaknessAssessment:
    category = Category.STRUCTURE
    sections = list(document.sections)
    if not sections:
        return _assessment(category, 0.0, [])

    sags = [s.number for s in sections if not s.audit and len(s.content) < 1000]
    score = 100.0 - 40.0 * len(sags) / len(sections)
    weaknesses = []
    if sags:
        weaknesses.append(
            _weakness(
                category,
                "pacing_sag",
                f"Pacing sags detected in sections: {', '.join(map(str, sags[:5]))}",
                Severity.HIGH if len(sags) > 3 else Severity.MEDIUM,
                score,
                sags,
                "Strengthen pacing and add structural beats",
            )
        )

    total_words = sum(s.word_count for s in sections) or 1
    if len(sections) >= 4:
        opening = sections[: max(1, len(sections) // 4)]
        if sum(s.word_count for s in opening) / total_words < 0.15:
            score -= 20
            weaknesses.append(
                _weakness(
                    category,
                    "short_setup",
                    "Act 1 is too short to establish characters and stakes",
                    Severity.HIGH,
                    score,
                    fix="Expand the setup with character and world establishment",
                )
            )
        closing = sections[int(len(sections) * 0.85):]
        if sum(s.word_count for s in closing) / total_words < 0.08:
            score -= 20
            weaknesses.append(
                _weakness(
                    category,
                    "compressed_climax",
                    "The climax and resolution are compressed",
                    Severity.HIGH,
                    score,
                    fix="Give the climax and resolution room to land",
                )
            )
    return _assessment(category, score, weaknesses)


# ---------------------------------------------------------------------------
# Engagement
# ---------------------------------------------------------------------------


def _has_hook(text: str) -> bool:
    stripped = text.rstrip().rstrip("\"”」")
    return stripped.endswith(("?", "!", "…", "...")) or keyword_hits(text, HOOK_WORDS) > 0


def score_engagement(document: Document) -> WeaknessAssessment:
    category = Category.ENGAGEMENT
    sections = list(document.sections)
    if not sections:
        return _assessment(category, 0.0, [])

    weak_endings = [s.number for s in sections if not _has_hook(s.content[-300:])]
    no_dialogue = [s.number for s in sections if s.word_count > 200 and not has_dialogue(s.content)]
    score = mean(
        60.0 * (s.number not in weak_endings) + 40.0 * has_dialogue(s.content) for s in sections
    )
    weaknesses = []
    if not _has_hook(sections[0].content[:300]):
        weaknesses.append(
            _weakness(
                category,
                "weak_opening",
                "The opening lacks a hook",
                Severity.HIGH,
                score,
                [sections[0].number],
                "Open on an intriguing question, conflict, or image",
            )
        )
    if weak_endings:
        weaknesses.append(
            _weakness(
                category,
                "weak_endings",
                f"{len(weak_endings)} section(s) end without a hook",
                Severity.HIGH if len(weak_endings) > len(sections) / 2 else Severity.MEDIUM,
                score,
                weak_endings,
                "End on a cliffhanger, revelation, or open question",
            )
        )
    if no_dialogue:
        weaknesses.append(
            _weakness(
                category,
                "low_dialogue",
                f"{len(no_dialogue)} long section(s) have no dialogue",
                Severity.MEDIUM,
                score,
                no_dialogue,
                "Break up narration with dialogue",
            )
        )
    return _assessment(category, score, weaknesses)


# ---------------------------------------------------------------------------
# Character
# ---------------------------------------------------------------------------


def score_character(document: Document) -> WeaknessAssessment:
    category = Category.CHARACTER
    sections = list(document.sections)
    characters = list(document.characters)
    if not sections or not characters:
        return _assessment(category, 50.0 if sections else 0.0, [])

    text = " ".join(s.content.lower() for s in sections)
    mentioned = [c for c in characters if c.name.lower() in text]
    primary = document.primary_character
    weaknesses = []

    if primary is None:
        primary_share = 0.0
        weaknesses.append(
            _weakness(
                category,
                "no_primary_character",
                "No primary character is designated",
                Severity.HIGH,
                0.0,
                fix="Anchor the story on a clear protagonist",
            )
        )
    else:
        absent = [s.number for s in sections if primary.name.lower() not in s.content.lower()]
        primary_share = 1.0 - len(absent) / len(sections)
        if absent:
            weaknesses.append(
                _weakness(
                    category,
                    "absent_protagonist",
                    f"{primary.name} does not appear in {len(absent)} section(s)",
                    Severity.MEDIUM,
                    100.0 * primary_share,
                    absent,
                    f"Ground the section in {primary.name}'s perspective or reactions",
                )
            )

    unused = [c.name for c in characters if c not in mentioned]
    if unused:
        weaknesses.append(
            _weakness(
                category,
                "unused_characters",
                f"Characters never appear: {', '.join(unused[:5])}",
                Severity.MEDIUM,
                100.0 * len(mentioned) / len(characters),
                fix="Introduce the missing characters on the page",
            )
        )
    score = 50.0 * len(mentioned) / len(characters) + 50.0 * primary_share
    return _assessment(category, score, weaknesses)


# ---------------------------------------------------------------------------
# Prose
# ---------------------------------------------------------------------------


def prose_quality(text: str) -> float:
    return 100.0 * (vocabulary_diversity(text) * 0.45 + (1.0 - repetition_rate(text)) * 0.55)


def score_prose(document: Document) -> WeaknessAssessment:
    category = Category.PROSE
    sections = [s for s in document.sections if s.content.strip()]
    if not sections:
        return _assessment(category, 0.0, [])

    score = mean(prose_quality(s.content) for s in sections)
    repetitive = [s.number for s in sections if repetition_rate(s.content) > 0.1]
    long_winded = [s.number for s in sections if avg_sentence_length(s.content) > 30]
    weaknesses = []
    if repetitive:
        weaknesses.append(
            _weakness(
                category,
                "repetition",
                f"Repeated phrasing in {len(repetitive)} section(s)",
                Severity.HIGH,
                score,
                repetitive,
                "Rephrase repeated word sequences",
            )
        )
    if long_winded:
        weaknesses.append(
            _weakness(
                category,
                "long_sentences",
                f"Overlong sentences in {len(long_winded)} section(s)",
                Severity.MEDIUM,
                score,
                long_winded,
                "Vary sentence length and split run-on sentences",
            )
        )
    return _assessment(category, score, weaknesses)


# ---------------------------------------------------------------------------
# Literary devices
# ---------------------------------------------------------------------------


DEVICE_PATTERNS = {
    "foreshadowing": re.compile(
        r"\blittle did\b|\bunbeknownst\b|\b(?:hint|clue|sign|omen)s? (?:of|at|to)\b"
        r"|\b(?:will|would|might) (?:later|soon|eventually)\b",
        re.IGNORECASE,
    ),
    "symbolism": re.compile(
        r"\b(?:represent(?:s|ed)?|signif(?:y|ies|ied)|stands? for|stood for"
        r"|embod(?:y|ies|ied)|symboli[sz](?:e|es|ed)|symbol of)\b",
        re.IGNORECASE,
    ),
    "metaphor": re.compile(r"\b(?:is|was|are|were) an? \w+ of\b", re.IGNORECASE),
    "simile": re.compile(r"\blike an? \w+|\bas \w+ as\b", re.IGNORECASE),
    "irony": re.compile(
        r"\birony\b|\bironic(?:ally)?\b|\bparadoxically\b|\b(?:but|however|yet),? (?:unexpectedly|surprisingly)\b",
        re.IGNORECASE,
    ),
    "imagery": re.compile(
        r"\b(?:glimpsed|smelled|tasted|scent|glint(?:ed)?|shimmer(?:ed|ing)?|echo(?:ed|es)?)\b",
        re.IGNORECASE,
    ),
    "personification": re.compile(
        r"\b(?:wind|river|house|sea|trees?|night|city|fire|sky|rain) "
        r"(?:whispered|sighed|breathed|groaned|wept|moaned|screamed|laughed)\b",
        re.IGNORECASE,
    ),
}
KEY_DEVICES = ["foreshadowing", "irony", "symbolism", "metaphor"]


def device_hits(text: str) -> dict[str, int]:
    return {name: len(pattern.findall(text)) for name, pattern in DEVICE_PATTERNS.items()}


def _device_effectiveness(rate: float) -> float:
    # Devices read best in a tenth to half of the sections.
    if 0.1 <= rate <= 0.5:
        return 70.0
    if rate < 0.05:
        return 40.0
    if rate > 0.8:
        return 35.0
    return 50.0


def score_devices(document: Document) -> WeaknessAssessment:
    category = Category.LITERARY_DEVICES
    sections = list(document.sections)
    if not sections:
        return _assessment(category, 0.0, [])

    hits = {s.number: device_hits(s.content) for s in sections}
    rates = {
        name: sum(1 for counts in hits.values() if counts[name]) / len(sections)
        for name in DEVICE_PATTERNS
    }
    used = {name: rate for name, rate in rates.items() if rate > 0}

    if used:
        effectiveness = [_device_effectiveness(rate) for rate in used.values()]
        overused = sum(1 for rate in used.values() if rate > 0.5)
        score = (
            mean(effectiveness)
            + min(20, 3 * len(used))
            - min(15, 2 * overused)
            + min(15, sum(1 for e in effectiveness if e >= 70))
        )
    else:
        score = 0.0

    everywhere = [s.number for s in sections]
    weaknesses = []
    if score < 60:
        weaknesses.append(
            _weakness(
                category,
                "low_device_usage",
                f"Overall literary device score is {round(min(score, 100.0))}/100",
                Severity.HIGH if score < 40 else Severity.MEDIUM,
                score,
                everywhere,
                "Increase use of literary devices throughout the novel",
            )
        )

    generic = [
        s.number
        for s in sections
        if s.word_count > 500 and sum(hits[s.number].values()) / s.word_count < 0.002
    ]
    if generic:
        weaknesses.append(
            _weakness(
                category,
                "generic_prose",
                f"Generic prose detected in {len(generic)} section(s)",
                Severity.HIGH,
                score,
                generic,
                "Replace generic prose with specific literary devices",
            )
        )

    missing = [name for name in KEY_DEVICES if name not in used]
    if missing:
        weaknesses.append(
            _weakness(
                category,
                "missing_devices",
                f"Missing key literary devices: {', '.join(missing)}",
                Severity.MEDIUM,
                score,
                everywhere,
                "Add foreshadowing, irony, symbolism or metaphor where the scene allows",
            )
        )
    return _assessment(category, score, weaknesses)


# ---------------------------------------------------------------------------


_SCORERS: dict[Category, Callable[[Document], WeaknessAssessment]] = {
    Category.TENSION: score_tension,
    Category.THEME: score_theme,
    Category.STRUCTURE: score_structure,
    Category.ENGAGEMENT: score_engagement,
    Category.CHARACTER: score_character,
    Category.PROSE: score_prose,
    Category.LITERARY_DEVICES: score_devices,
}

SUPPORTED_CATEGORIES = (*_SCORERS, Category.EXCELLENCE)


def score_excellence(document: Document) -> WeaknessAssessment:
    """Average of every other heuristic, keeping their serious weaknesses."""
    parts = [scorer(document) for scorer in _SCORERS.values()]
    weaknesses = [
        w for part in parts for w in part.weaknesses if w.severity.rank >= Severity.HIGH.rank
    ]
    return _assessment(Category.EXCELLENCE, mean(p.overall_score for p in parts), weaknesses)


class HeuristicAssessor:
    """WeaknessAssessor backed by the keyword heuristics above."""

    def supports(self, category) -> bool:
        category = Category.normalize(category)
        return category in SUPPORTED_CATEGORIES

    def assess(self, document: Document, category) -> WeaknessAssessment:
        category = Category.normalize(category)
        if category is Category.EXCELLENCE:
            result = score_excellence(document)
        elif category in _SCORERS:
            result = _SCORERS[category](document)
        else:
            raise UnsupportedCategory(category.value)
        logger.debug(
            "Assessed {}: {}/100 with {} weakness(es)",
            category.value,
            result.overall_score,
            len(result.weaknesses),
        )
        return result
