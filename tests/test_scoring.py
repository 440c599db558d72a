"""Tests for cosine distance, signal overlap and the recent-channel scorer."""

import math

import pytest

from ticketdedup.grouping.domain import (
    GroupingConfig,
    MatchScoreBreakdown,
    MatchScorer,
    cosine_distance,
    signal_overlap,
)


def _breakdown(total: float, distance: float = 0.6) -> MatchScoreBreakdown:
    return MatchScoreBreakdown(
        semantic=0.5,
        same_category=True,
        same_channel=True,
        recent_update=True,
        signal_overlap=0,
        distance=distance,
        minutes_since_update=1.0,
        total=total,
    )


@pytest.fixture
def scorer() -> MatchScorer:
    return MatchScorer(GroupingConfig())


def test_cosine_distance_range():
    assert cosine_distance([1, 0], [1, 0]) == pytest.approx(0.0)
    assert cosine_distance([1, 0], [0, 1]) == pytest.approx(1.0)
    assert cosine_distance([1, 0], [-1, 0]) == pytest.approx(2.0)


def test_cosine_distance_zero_vector_is_unrelated():
    assert cosine_distance([0, 0], [1, 0]) == 1.0


def test_cosine_distance_rejects_dimension_mismatch():
    with pytest.raises(ValueError):
        cosine_distance([1, 0, 0], [1, 0])


def test_signal_overlap_uses_canonical_forms():
    assert signal_overlap({"feature_export", "csv"}, {"export"}) == 1
    assert signal_overlap({"dashboard"}, {"dashboards"}) == 1


def test_signal_overlap_ignores_short_containment():
    assert signal_overlap({"ui"}, {"build"}) == 0
    assert signal_overlap(set(), {"export"}) == 0


def test_score_components(scorer):
    breakdown = scorer.score(distance=1.0, same_category=True, same_channel=True,
                             minutes_since_update=3, overlap=0)
    assert breakdown.semantic == pytest.approx(0.5)
    assert breakdown.recent_update is True
    assert breakdown.total == pytest.approx(0.70)


def test_score_is_capped(scorer):
    breakdown = scorer.score(0.0, True, True, 0, 3)
    assert breakdown.total == pytest.approx(1.0)


def test_score_never_increases_with_distance(scorer):
    totals = [
        scorer.score(d / 10, False, True, 20, 0).total
        for d in range(0, 21)
    ]
    assert all(a >= b for a, b in zip(totals, totals[1:]))


def test_score_never_decreases_with_overlap(scorer):
    for distance in (0.0, 0.5, 1.2, 2.0):
        totals = [scorer.score(distance, False, True, 20, overlap).total for overlap in range(0, 4)]
        assert all(a <= b for a, b in zip(totals, totals[1:]))

    gained = scorer.score(0.5, False, True, 20, 1).total - scorer.score(0.5, False, True, 20, 0).total
    assert gained == pytest.approx(0.10)


def test_stale_ticket_loses_recency_weight(scorer):
    fresh = scorer.score(0.5, True, True, 10, 0)
    stale = scorer.score(0.5, True, True, 10.5, 0)
    assert fresh.total - stale.total == pytest.approx(0.15)


def test_guardrail_boundary(scorer):
    assert scorer.guardrail_blocks(0.30, False, True, 60, 0) is False
    assert scorer.guardrail_blocks(0.30 + 1e-6, False, True, 60, 0) is True


def test_guardrail_just_past_distance_without_overlap(scorer):
    assert scorer.guardrail_blocks(0.31, False, True, 60, 0) is True
    assert scorer.guardrail_blocks(0.31, False, True, 4, 0) is True


def test_guardrail_lets_fresh_same_channel_follow_up_through(scorer):
    assert scorer.guardrail_blocks(0.31, False, True, 4, 1) is False
    assert scorer.guardrail_blocks(1.0, False, True, 4, 1) is False


def test_guardrail_ignores_same_category(scorer):
    assert scorer.guardrail_blocks(1.5, True, True, 60, 0) is False


def test_guardrail_override_for_fresh_follow_up(scorer):
    assert scorer.guardrail_blocks(0.8, False, True, 5.0, 1) is False
    assert scorer.guardrail_blocks(0.8, False, True, 5.1, 1) is True
    assert scorer.guardrail_blocks(0.8, False, False, 1.0, 1) is True
    assert scorer.guardrail_blocks(0.8, False, True, 1.0, 0) is True


def test_should_attach_at_threshold(scorer):
    assert scorer.should_attach(_breakdown(0.65)) is True
    assert scorer.should_attach(_breakdown(0.649)) is False


def test_gray_zone_near_threshold(scorer):
    assert scorer.is_gray_zone(_breakdown(0.61)) is True
    assert scorer.is_gray_zone(_breakdown(0.69)) is True
    assert scorer.is_gray_zone(_breakdown(0.55)) is False


def test_wide_gray_zone_between_semantic_and_guardrail_distance(scorer):
    assert scorer.is_gray_zone(_breakdown(0.57, distance=0.2)) is True
    assert scorer.is_gray_zone(_breakdown(0.57, distance=0.5)) is False
    assert scorer.is_gray_zone(_breakdown(0.50, distance=0.2)) is False


def test_config_rejects_inverted_bands():
    with pytest.raises(ValueError):
        GroupingConfig(semantic_distance_threshold=0.4, guardrail_distance=0.3)
    with pytest.raises(ValueError):
        GroupingConfig(gray_zone_margin=0.2, gray_zone_wide_margin=0.1)


def test_config_is_frozen():
    config = GroupingConfig()
    with pytest.raises(Exception):
        config.merge_score_threshold = 0.9
    assert math.isclose(config.weights.semantic, 0.60)
