"""
Importance scoring functions.

A memory's importance blends three usage signals:

1. Frequency: how often it was accessed within a sliding window,
   saturating at a fixed number of accesses.
2. Recency: exponential decay with a configurable half-life since the
   most recent access (Ebbinghaus-style forgetting curve).
3. Outcome: mean magnitude of finalized outcome scores. A memory that led
   to a strongly negative outcome is still informative, so magnitude is
   used rather than sign.

Credit from graph neighbours is kept separately (``propagated_importance``)
and added on top, so a memory's own recompute never erases what its
neighbours contributed.

All functions are pure and take the clock reading as an argument, which
makes a recompute with an unchanged event set reproduce the same score.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

SECONDS_PER_DAY = 86400.0

# Scores are rounded so repeated recomputes compare equal
SCORE_PRECISION = 6


@dataclass(frozen=True)
class ScoringWeights:
    """Weights and constants for importance scoring."""

    frequency_weight: float = 0.3
    recency_weight: float = 0.2
    outcome_weight: float = 0.5
    frequency_window_days: float = 30.0
    frequency_saturation: int = 10
    recency_half_life_days: float = 7.0
    neutral_outcome: float = 0.5
    baseline: float = 0.5


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component view of an importance computation."""

    frequency: float
    recency: float
    outcome: float
    own: float
    propagated: float
    score: float


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def frequency_component(timestamps: Iterable[float], now: float, window_days: float, saturation: int) -> float:
    """
    Fraction of the saturation count reached by accesses inside the window.

    Args:
        timestamps: Access timestamps (epoch seconds)
        now: Clock reading
        window_days: Sliding window length
        saturation: Access count at which frequency reaches 1.0

    Returns:
        ``min(1, count_in_window / saturation)``
    """
    cutoff = now - window_days * SECONDS_PER_DAY
    count = sum(1 for ts in timestamps if cutoff <= ts <= now)
    return min(1.0, count / saturation)


def recency_component(last_access: float | None, now: float, half_life_days: float) -> float:
    """
    Exponential decay since the last access: ``exp(-ln2 * days / half_life)``.

    Returns 0.0 when the memory has never been accessed. Future timestamps
    (clock skew) count as "just now".
    """
    if last_access is None:
        return 0.0
    days = max(0.0, now - last_access) / SECONDS_PER_DAY
    return math.exp(-math.log(2) * days / half_life_days)


def outcome_component(outcome_scores: Iterable[float], neutral: float = 0.5) -> float:
    """Mean absolute outcome over finalized events, or *neutral* when there are none."""
    scores = [abs(s) for s in outcome_scores]
    if not scores:
        return neutral
    return clamp(sum(scores) / len(scores), 0.0, 1.0)


def compute_importance(
    access_timestamps: list[float],
    outcome_scores: list[float],
    propagated: float,
    now: float,
    weights: ScoringWeights | None = None,
) -> ScoreBreakdown:
    """
    Compute a memory's importance from its access history.

    With no access events at all the memory keeps the baseline as its own
    importance; neighbour credit still applies on top.

    Args:
        access_timestamps: Timestamps of every recorded access event
        outcome_scores: Outcome scores of finalized events
        propagated: Accumulated neighbour credit in [-1, 1]
        now: Clock reading
        weights: Scoring constants (defaults match the engine defaults)

    Returns:
        ScoreBreakdown with the final clamped, rounded score
    """
    w = weights or ScoringWeights()

    if not access_timestamps:
        own = w.baseline
        frequency = recency = 0.0
        outcome = w.neutral_outcome
    else:
        frequency = frequency_component(access_timestamps, now, w.frequency_window_days, w.frequency_saturation)
        recency = recency_component(max(access_timestamps), now, w.recency_half_life_days)
        outcome = outcome_component(outcome_scores, w.neutral_outcome)
        own = w.frequency_weight * frequency + w.recency_weight * recency + w.outcome_weight * outcome

    score = round(clamp(own + propagated, 0.0, 1.0), SCORE_PRECISION)
    return ScoreBreakdown(
        frequency=frequency,
        recency=recency,
        outcome=outcome,
        own=round(own, SCORE_PRECISION),
        propagated=propagated,
        score=score,
    )


def propagation_delta(delta: float, strength: float, factor: float = 0.2) -> float:
    """
    Credit passed to a neighbour when a memory's score changes by *delta*.

    Formula: ``factor * strength * delta``. Negative deltas propagate too.
    """
    return factor * strength * delta


def apply_propagation(own: float, propagated: float, credit: float) -> tuple[float, float]:
    """
    Add *credit* to a neighbour's accumulated propagation and rescore it.

    Returns:
        (new_propagated, new_score) with propagated clamped to [-1, 1] and
        the score to [0, 1]
    """
    new_propagated = clamp(propagated + credit, -1.0, 1.0)
    new_score = round(clamp(own + new_propagated, 0.0, 1.0), SCORE_PRECISION)
    return new_propagated, new_score
