"""Assessment models produced by weakness assessors and judges."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Higher is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Weakness(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    description: str
    severity: Severity
    current_score: float = Field(ge=0, le=100)
    target_score: float = Field(ge=0, le=100)
    affected_sections: Optional[list[int]] = None
    fix: str = ""


class WeaknessAssessment(BaseModel):
    """Scored diagnostic output for one category. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    category: str
    overall_score: float = Field(ge=0, le=100)
    target_score: float = Field(ge=0, le=100)
    weaknesses: tuple[Weakness, ...] = ()
    recommendations: tuple[str, ...] = ()


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class JudgeVerdict(BaseModel):
    """Holistic before/after judgement from a secondary (usually LLM) judge."""

    score: float = Field(ge=0, le=100)
    confidence: Confidence = Confidence.LOW
    summary: str = ""
    strengths_added: list[str] = Field(default_factory=list)
