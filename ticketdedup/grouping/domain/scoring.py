"""
Match Scoring
==============

Pure functions and a stateless scorer for the recent-channel fallback.

Score = w_sem * clamp(1 - d/2, 0, 1) + w_cat * same_category
      + w_chan * same_channel + w_recent * (minutes <= 10)
      + w_overlap * (overlap >= 1), capped at 1.0
"""

import math
from typing import Iterable, Sequence

from ticketdedup.grouping.domain.entities import MatchScoreBreakdown
from ticketdedup.grouping.domain.normalization import canonical_signal
from ticketdedup.grouping.domain.value_objects import GroupingConfig

EPSILON = 1e-9
MIN_CONTAINMENT_LENGTH = 3


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine distance between two vectors, in [0, 2].

    A zero vector has no direction and is treated as unrelated (1.0).

    Raises:
        ValueError: If dimensions differ
    """
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0

    similarity = max(-1.0, min(1.0, dot / (norm_a * norm_b)))
    return 1.0 - similarity


def signal_overlap(left: Iterable[str], right: Iterable[str]) -> int:
    """
    Count signals of ``left`` that match some signal of ``right``.

    Both sides are prefix-stripped and synonym-normalized. Two tokens match
    when equal, or when one contains the other and the contained token has
    at least three characters.
    """
    left_tokens = {canonical_signal(s) for s in left} - {""}
    right_tokens = {canonical_signal(s) for s in right} - {""}

    count = 0
    for token in left_tokens:
        for other in right_tokens:
            if token == other:
                count += 1
                break
            shorter, longer = (token, other) if len(token) <= len(other) else (other, token)
            if len(shorter) >= MIN_CONTAINMENT_LENGTH and shorter in longer:
                count += 1
                break
    return count


class MatchScorer:
    """
    Scores a candidate ticket against a new message.

    Stateless apart from the config snapshot it was built with.
    """

    def __init__(self, config: GroupingConfig):
        self._config = config

    def score(
        self,
        distance: float,
        same_category: bool,
        same_channel: bool,
        minutes_since_update: float,
        overlap: int
    ) -> MatchScoreBreakdown:
        """
        Compute the weighted match score.

        Args:
            distance: Cosine distance between message and ticket embeddings
            same_category: Classification category equals ticket category
            same_channel: Candidate came from the message's channel
            minutes_since_update: Minutes since the ticket was last updated
            overlap: Signal overlap count

        Returns:
            MatchScoreBreakdown with every component and the capped total
        """
        weights = self._config.weights
        semantic = max(0.0, min(1.0, 1.0 - distance / 2.0))
        recent = minutes_since_update <= self._config.recent_update_minutes
        has_overlap = overlap >= 1

        total = (
            weights.semantic * semantic
            + weights.same_category * same_category
            + weights.same_channel * same_channel
            + weights.recent_update * recent
            + weights.signal_overlap * has_overlap
        )

        return MatchScoreBreakdown(
            semantic=semantic,
            same_category=same_category,
            same_channel=same_channel,
            recent_update=recent,
            signal_overlap=overlap,
            distance=distance,
            minutes_since_update=minutes_since_update,
            total=min(1.0, total),
        )

    def guardrail_blocks(
        self,
        distance: float,
        same_category: bool,
        same_channel: bool,
        minutes_since_update: float,
        overlap: int
    ) -> bool:
        """
        Block cross-category merges of semantically distant messages.

        A fresh same-channel follow-up sharing a signal overrides the block.
        """
        if same_category or distance <= self._config.guardrail_distance + EPSILON:
            return False

        override = (
            overlap >= self._config.guardrail_override_min_overlap
            and same_channel
            and minutes_since_update <= self._config.guardrail_override_minutes + EPSILON
        )
        return not override

    def should_attach(self, breakdown: MatchScoreBreakdown) -> bool:
        return breakdown.total >= self._config.merge_score_threshold - EPSILON

    def is_gray_zone(self, breakdown: MatchScoreBreakdown) -> bool:
        """Whether the score is too close to the threshold to decide alone."""
        gap = abs(breakdown.total - self._config.merge_score_threshold)
        if gap <= self._config.gray_zone_margin + EPSILON:
            return True

        in_band = (
            self._config.semantic_distance_threshold - EPSILON
            <= breakdown.distance
            <= self._config.guardrail_distance + EPSILON
        )
        return in_band and gap <= self._config.gray_zone_wide_margin + EPSILON
