"""
Tests for lead_scoring.py: bounded 0-100 lead-quality score.
Pure business logic tests. No database, no HTTP.
"""
import random
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from lead_scoring import (  # noqa: E402
    BudgetRange,
    LeadQuality,
    LeadScoreBreakdown,
    LeadScoreInputs,
    LeadScoringWeights,
    Timeframe,
    Urgency,
    build_lead_score_inputs,
    score_lead,
    score_lead_breakdown,
)
from proposal_errors import InvalidInput  # noqa: E402


def _best_lead(**overrides):
    fields = dict(
        budget_range=BudgetRange.OVER_10000,
        urgency=Urgency.IMMEDIATE,
        decision_maker=True,
        timeframe=Timeframe.IMMEDIATE,
        has_email=True,
        has_phone=True,
        lead_source="referral",
    )
    fields.update(overrides)
    return LeadScoreInputs(**fields)


# ---------------------------------------------------------------------------
# Factor points
# ---------------------------------------------------------------------------


class TestFactorPoints:
    @pytest.mark.parametrize(
        "budget, points",
        [("10000+", 25), ("5000-10000", 20), ("2000-5000", 15), ("1000-2000", 10), ("under-1000", 0), (None, 0)],
    )
    def test_budget(self, budget, points):
        assert score_lead(LeadScoreInputs(budget_range=budget)) == points

    @pytest.mark.parametrize(
        "urgency, points",
        [("immediate", 25), ("urgent", 20), ("moderate", 10), ("planning", 0), (None, 0)],
    )
    def test_urgency(self, urgency, points):
        assert score_lead(LeadScoreInputs(urgency=urgency)) == points

    @pytest.mark.parametrize(
        "timeframe, points",
        [("immediate", 20), ("1-month", 15), ("1-3months", 10), ("3-6months", 0), ("6months+", 0), (None, 0)],
    )
    def test_timeframe(self, timeframe, points):
        assert score_lead(LeadScoreInputs(timeframe=timeframe)) == points

    def test_decision_maker(self):
        assert score_lead(LeadScoreInputs(decision_maker=True)) == 15

    def test_contact_needs_email_and_phone(self):
        assert score_lead(LeadScoreInputs(has_email=True)) == 0
        assert score_lead(LeadScoreInputs(has_phone=True)) == 0
        assert score_lead(LeadScoreInputs(has_email=True, has_phone=True)) == 10

    @pytest.mark.parametrize("source, points", [("referral", 5), ("website", 5), ("Website ", 5), ("door_knock", 0), (None, 0)])
    def test_lead_source(self, source, points):
        assert score_lead(LeadScoreInputs(lead_source=source)) == points

    def test_configured_sources_are_case_insensitive(self):
        weights = LeadScoringWeights(high_quality_sources={"Referral", " Home Show "})
        assert weights.high_quality_sources == frozenset({"referral", "home show"})
        assert score_lead(LeadScoreInputs(lead_source="referral"), weights) == 5
        assert score_lead(LeadScoreInputs(lead_source="HOME SHOW"), weights) == 5
        assert score_lead(LeadScoreInputs(lead_source="website"), weights) == 0

    def test_empty_lead_scores_zero(self):
        assert score_lead(LeadScoreInputs()) == 0


# ---------------------------------------------------------------------------
# Bounds & scenarios
# ---------------------------------------------------------------------------


class TestBounds:
    def test_maximizing_lead_hits_maximum(self):
        assert score_lead(_best_lead()) == 100

    def test_raw_sum_above_100_is_clamped(self):
        weights = LeadScoringWeights(decision_maker_points=30, decision_maker_cap=30)
        assert score_lead(_best_lead(), weights) == 100

    def test_factor_cap_applies_before_sum(self):
        weights = LeadScoringWeights(decision_maker_points=40, decision_maker_cap=15)
        assert score_lead(LeadScoreInputs(decision_maker=True), weights) == 15

    def test_incomplete_contact_costs_exactly_the_bonus(self):
        complete = score_lead(_best_lead(budget_range=BudgetRange.FROM_2000))
        incomplete = score_lead(_best_lead(budget_range=BudgetRange.FROM_2000, has_email=False, has_phone=False))
        assert complete - incomplete == LeadScoringWeights().contact_complete_points

    @pytest.mark.parametrize("_", range(10))
    def test_random_inputs_stay_in_range(self, _):
        rng = random.Random(500 + _)
        inputs = LeadScoreInputs(
            budget_range=rng.choice([None, *BudgetRange]),
            urgency=rng.choice([None, *Urgency]),
            decision_maker=rng.random() < 0.5,
            timeframe=rng.choice([None, *Timeframe]),
            has_email=rng.random() < 0.5,
            has_phone=rng.random() < 0.5,
            lead_source=rng.choice([None, "referral", "website", "yard_sign", "other"]),
        )
        score = score_lead(inputs)
        assert 0 <= score <= 100
        assert score == score_lead(inputs)

    @pytest.mark.parametrize("field, value", [("budget_range", "50k"), ("urgency", "asap"), ("timeframe", "someday")])
    def test_unknown_bucket_rejected(self, field, value):
        with pytest.raises(InvalidInput) as exc_info:
            score_lead(LeadScoreInputs(**{field: value}))
        assert exc_info.value.field == field


# ---------------------------------------------------------------------------
# Breakdown & quality bands
# ---------------------------------------------------------------------------


class TestBreakdown:
    def test_parts_sum_to_total(self):
        breakdown = score_lead_breakdown(_best_lead(urgency=Urgency.MODERATE))
        assert breakdown.budget == 25
        assert breakdown.urgency == 10
        assert breakdown.total == 85
        assert breakdown.quality == LeadQuality.HIGH

    def test_high_band_from_80(self):
        assert LeadScoreBreakdown(budget=25, urgency=25, decision_maker=15, timeframe=15).quality == LeadQuality.HIGH

    def test_medium_band_60_to_79(self):
        breakdown = LeadScoreBreakdown(budget=25, urgency=20, decision_maker=15)
        assert breakdown.total == 60
        assert breakdown.quality == LeadQuality.MEDIUM

    def test_needs_nurturing_below_60(self):
        breakdown = LeadScoreBreakdown(budget=10, urgency=5)
        assert breakdown.quality == LeadQuality.NEEDS_NURTURING

    def test_to_dict(self):
        data = score_lead_breakdown(_best_lead()).to_dict()
        assert data["total"] == 100
        assert data["quality"] == "High Quality"


# ---------------------------------------------------------------------------
# Building inputs from a stored lead record
# ---------------------------------------------------------------------------


class TestBuildLeadScoreInputs:
    def test_reads_record(self):
        inputs = build_lead_score_inputs({
            "budget_range": "5000-10000",
            "urgency": "urgent",
            "decision_maker": True,
            "timeframe": "1-month",
            "email": "owner@example.com",
            "phone": "555-0100",
            "lead_source": "website",
        })
        assert inputs.budget_range is BudgetRange.FROM_5000
        assert inputs.has_email and inputs.has_phone
        assert score_lead(inputs) == 20 + 20 + 15 + 15 + 10 + 5

    def test_blank_strings_are_unspecified(self):
        inputs = build_lead_score_inputs({
            "budget_range": "",
            "urgency": "  ",
            "timeframe": "",
            "email": "owner@example.com",
            "phone": "",
        })
        assert inputs.budget_range is None
        assert inputs.urgency is None
        assert not inputs.has_phone
        assert score_lead(inputs) == 0

    def test_unknown_value_rejected(self):
        with pytest.raises(InvalidInput):
            build_lead_score_inputs({"urgency": "whenever"})

    @pytest.mark.parametrize("value", [False, 0, "false", "False", "0", "no", "", None])
    def test_decision_maker_false_values(self, value):
        assert build_lead_score_inputs({"decision_maker": value}).decision_maker is False

    @pytest.mark.parametrize("value", [True, 1, "true", "TRUE", "1", "yes", " y "])
    def test_decision_maker_true_values(self, value):
        assert build_lead_score_inputs({"decision_maker": value}).decision_maker is True

    @pytest.mark.parametrize("value", ["maybe", 2, 0.5, ["yes"]])
    def test_decision_maker_unreadable_value_rejected(self, value):
        with pytest.raises(InvalidInput) as exc_info:
            build_lead_score_inputs({"decision_maker": value})
        assert exc_info.value.field == "decision_maker"
