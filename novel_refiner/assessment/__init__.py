from .heuristics import (
    SUPPORTED_CATEGORIES,
    HeuristicAssessor,
    device_hits,
    score_devices,
    tension_level,
    prose_quality,
)
from .metrics import repetition_rate, vocabulary_diversity, avg_sentence_length

__all__ = [
    "SUPPORTED_CATEGORIES",
    "HeuristicAssessor",
    "device_hits",
    "score_devices",
    "tension_level",
    "prose_quality",
    "repetition_rate",
    "vocabulary_diversity",
    "avg_sentence_length",
]
