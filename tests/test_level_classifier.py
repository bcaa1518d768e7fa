"""
Risk Ledger
Tests — level classification matrices.
"""

import pytest

from riskledger.services.level_classifier import (
    HIGH,
    LEVELS,
    LOW,
    MODERATE,
    OPPORTUNITY_LEVEL_LABELS,
    LevelResult,
    clamp_score,
    classify_issue,
    classify_opportunity,
    classify_risk,
)

RISK_GRID = {
    # (likelihood, consequence): (level, rank)
    (1, 1): (LOW, 1), (1, 2): (LOW, 3), (1, 3): (LOW, 5), (1, 4): (MODERATE, 9), (1, 5): (MODERATE, 12),
    (2, 1): (LOW, 2), (2, 2): (LOW, 4), (2, 3): (MODERATE, 11), (2, 4): (MODERATE, 15), (2, 5): (HIGH, 17),
    (3, 1): (LOW, 6), (3, 2): (MODERATE, 10), (3, 3): (MODERATE, 14), (3, 4): (HIGH, 19), (3, 5): (HIGH, 21),
    (4, 1): (MODERATE, 7), (4, 2): (MODERATE, 13), (4, 3): (HIGH, 18), (4, 4): (HIGH, 22), (4, 5): (HIGH, 24),
    (5, 1): (MODERATE, 8), (5, 2): (HIGH, 16), (5, 3): (HIGH, 20), (5, 4): (HIGH, 23), (5, 5): (HIGH, 25),
}


class TestRiskMatrix:
    @pytest.mark.parametrize("cell,expected", sorted(RISK_GRID.items()))
    def test_every_cell(self, cell, expected):
        assert classify_risk(*cell) == LevelResult(*expected)

    def test_ranks_cover_one_to_twenty_five_exactly_once(self):
        ranks = [classify_risk(l, c).rank for l in range(1, 6) for c in range(1, 6)]
        assert sorted(ranks) == list(range(1, 26))

    def test_levels_are_ordered_bands(self):
        assert LEVELS == (LOW, MODERATE, HIGH)
        assert {classify_risk(l, c).level for l in range(1, 6) for c in range(1, 6)} == set(LEVELS)

    def test_rank_is_not_the_product(self):
        assert classify_risk(2, 3).rank == 11
        assert classify_risk(3, 2).rank == 10

    def test_out_of_range_inputs_are_clamped(self):
        assert classify_risk(0, 9) == classify_risk(1, 5)
        assert classify_risk(-4, -4) == classify_risk(1, 1)
        assert classify_risk(7, 3) == classify_risk(5, 3)


class TestOpportunityMatrix:
    def test_shares_rank_table_with_risk(self):
        for l in range(1, 6):
            for i in range(1, 6):
                assert classify_opportunity(l, i).rank == classify_risk(l, i).rank

    def test_bands(self):
        assert classify_opportunity(1, 1).level == LOW
        assert classify_opportunity(2, 3).level == MODERATE
        assert classify_opportunity(2, 5).level == HIGH
        assert classify_opportunity(5, 1).level == MODERATE

    def test_display_labels(self):
        assert OPPORTUNITY_LEVEL_LABELS[classify_opportunity(5, 5).level] == "Excellent"
        assert OPPORTUNITY_LEVEL_LABELS[classify_opportunity(1, 1).level] == "Good"


class TestIssueRow:
    @pytest.mark.parametrize("consequence,level,rank", [
        (1, LOW, 8), (2, LOW, 16), (3, LOW, 20), (4, MODERATE, 23), (5, MODERATE, 25),
    ])
    def test_consequence_only(self, consequence, level, rank):
        assert classify_issue(consequence) == LevelResult(level, rank)

    def test_issue_is_coarser_than_risk_row(self):
        # Risk (5, 3) is high; the same cell as an issue stays low.
        assert classify_risk(5, 3).level == HIGH
        assert classify_issue(3).level == LOW

    def test_clamped(self):
        assert classify_issue(11) == classify_issue(5)
        assert classify_issue(0) == classify_issue(1)


class TestClamp:
    def test_accepts_numeric_strings(self):
        assert clamp_score("4") == 4

    def test_bounds(self):
        assert clamp_score(0) == 1
        assert clamp_score(6) == 5

    def test_to_dict(self):
        assert classify_risk(3, 3).to_dict() == {"level": MODERATE, "rank": 14}
