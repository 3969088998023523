"""Re-scoring of an updated document against the version it came from."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .collaborators import Assessor, SecondaryJudge
from .config import ValidationConfig
from .models import Category, Confidence, Document, ValidationOutcome


@dataclass
class DocumentDiff:
    sections_changed: int = 0
    word_change: int = 0

    @property
    def has_changes(self) -> bool:
        return self.sections_changed > 0 and self.word_change != 0

    @property
    def estimated_improvement(self) -> float:
        if not self.sections_changed:
            return 0.0
        estimate = min(10, self.sections_changed * 2)
        if self.word_change > 500:
            estimate += min(10, self.word_change // 200)
        return float(estimate)


def diff_documents(previous: Document, current: Document) -> DocumentDiff:
    """Count sections whose text changed (matched by id) and the net word delta.

    Sections that only exist in ``current`` count as changed.
    """
    before = {s.id: s for s in previous.sections}
    diff = DocumentDiff()
    for section in current.sections:
        old = before.get(section.id)
        if old is None:
            diff.sections_changed += 1
            diff.word_change += section.word_count
        elif old.content != section.content:
            diff.sections_changed += 1
            diff.word_change += section.word_count - old.word_count
    return diff


class Validator:
    """Scores the new document and reports the change from the previous score.

    Never raises: an internal failure is reported as no change.
    """

    def __init__(
        self,
        assessor: Assessor,
        judge: Optional[SecondaryJudge] = None,
        config: Optional[ValidationConfig] = None,
    ):
        self.assessor = assessor
        self.judge = judge
        self.config = config or ValidationConfig()

    def validate(
        self,
        previous_document: Document,
        current_document: Document,
        category: Category,
        previous_score: float,
    ) -> ValidationOutcome:
        try:
            diff = diff_documents(previous_document, current_document)
            score = self.assessor.assess(current_document, category).overall_score
            verdict = None

            if diff.has_changes:
                bonus = min(self.config.content_bonus_cap, diff.estimated_improvement)
                if score <= previous_score and bonus > 0:
                    logger.debug("Applying content bonus: {} + {}", score, bonus)
                    score = min(100.0, score + bonus)
                verdict = self._judge(previous_document, current_document, category)
                if verdict is not None:
                    weight = (
                        self.config.high_confidence_weight
                        if verdict.confidence is Confidence.HIGH
                        else self.config.medium_confidence_weight
                    )
                    score = round(verdict.score * weight + score * (1 - weight))
                    logger.debug("Judge score {} blended to {}", verdict.score, score)

            return ValidationOutcome(
                new_score=score,
                previous_score=previous_score,
                score_change=score - previous_score,
                sections_changed=diff.sections_changed,
                word_change=diff.word_change,
                judge=verdict,
            )
        except Exception as e:
            logger.error(f"Validation failed, keeping previous score: {e}")
            return ValidationOutcome(
                new_score=previous_score, previous_score=previous_score, score_change=0.0
            )

    def _judge(self, previous: Document, current: Document, category: Category):
        """Return a usable judge verdict, or None when absent, unsure or failing."""
        if self.judge is None:
            return None
        try:
            verdict = self.judge.judge(previous, current, category)
        except Exception as e:
            logger.warning(f"Secondary judge failed, using heuristic score: {e}")
            return None
        if verdict.confidence is Confidence.LOW:
            return None
        return verdict
