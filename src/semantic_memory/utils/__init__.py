"""Shared helpers: scoring math, vector similarity, keyed locks, deadlines."""

from .deadline import run_with_deadline
from .locks import KeyedLock
from .scoring import ScoreBreakdown, ScoringWeights, compute_importance
from .similarity import cosine_similarities, cosine_similarity

__all__ = [
    "KeyedLock",
    "ScoreBreakdown",
    "ScoringWeights",
    "compute_importance",
    "cosine_similarities",
    "cosine_similarity",
    "run_with_deadline",
]
