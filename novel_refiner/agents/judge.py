"""Judge agent: holistic before/after comparison of changed chapters."""

from typing import Optional

from .base import BaseAgent
from ..budget import ContextBudgetManager
from ..config import LLMConfig
from ..models import Category, Confidence, Document, JudgeVerdict
from ..utils.text import truncate_text

SYSTEM_EN = """You are a senior fiction editor judging whether a revision improved a novel. You compare original and revised chapters for one quality category and:

1. Score the revised novel for that category (0-100)
2. Report how confident you are in the score (high, medium or low)
3. List the concrete strengths the revision added

Be strict: rewording without substance is not an improvement."""

SAMPLE_SIZE = 3
EXCERPT_CHARS = 1500


class LLMJudge(BaseAgent):
    """SecondaryJudge backed by the configured LLM."""

    def __init__(self, llm_config: LLMConfig, budget: Optional[ContextBudgetManager] = None):
        super().__init__("Judge", llm_config, budget)

    def judge(self, previous: Document, current: Document, category: Category) -> JudgeVerdict:
        before = {s.id: s for s in previous.sections}
        changed = [
            (before.get(s.id), s)
            for s in current.sections
            if s.id not in before or before[s.id].content != s.content
        ]
        if not changed:
            return JudgeVerdict(
                score=50,
                confidence=Confidence.HIGH,
                summary="No changes were detected between the original and revised versions.",
            )

        comparisons = []
        for old, new in changed[:SAMPLE_SIZE]:
            original = truncate_text(old.content, EXCERPT_CHARS) if old else "(new chapter)"
            comparisons.append(
                f"### Chapter {new.number}: {new.title}\n"
                f"Original:\n{original}\n\n"
                f"Revised:\n{truncate_text(new.content, EXCERPT_CHARS)}"
            )
        prompt = (
            f"## Novel\n{current.title} ({current.genre})\n\n"
            f"## Category\n{category.value.replace('_', ' ')}\n\n"
            f"## Changed chapters ({len(changed)} total, {len(comparisons)} shown)\n\n"
            + "\n\n".join(comparisons)
        )
        system = SYSTEM_EN + (
            "\n\nReturn JSON with: score (0-100), confidence (high|medium|low), "
            "summary (string), strengths_added (list of strings)."
        )

        data = self.call_json(system, prompt, temperature=0.3)

        try:
            confidence = Confidence(str(data.get("confidence", "low")).lower())
        except ValueError:
            confidence = Confidence.LOW
        score = max(0.0, min(100.0, float(data.get("score", 50))))
        return JudgeVerdict(
            score=score,
            confidence=confidence,
            summary=data.get("summary", ""),
            strengths_added=list(data.get("strengths_added", [])),
        )
