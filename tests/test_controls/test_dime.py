"""
DIME Calculator Tests.

Covers:
- Weighted dimension scores on the 0-3 scale
- Exclusion of not-applicable and unanswered sub-controls
- Critical "no" cap and cap details
- Evaluation constrained by the weakest of D, I and M
- Half-up rounding
- Persisted DIME row for a control instance
"""

import pytest

from riskgov.controls.dime import DimeCalculator, dime_service, round_half_up
from riskgov.controls.library import STANDARD_LAYOUT
from riskgov.controls.schemas import AttestationInput, AttestationStatus, Criticality, Dimension
from riskgov.db.repositories.controls import dime_score_repo


def _checklist(
    default: AttestationStatus = AttestationStatus.YES,
    **overrides: AttestationStatus,
) -> list[AttestationInput]:
    """The standard ten sub-controls, all ``default`` unless overridden by code."""
    return [
        AttestationInput(
            code=code,
            dimension=dim,
            criticality=crit,
            status=overrides.get(code, default),
            evidence_exists=True,
        )
        for code, dim, crit in STANDARD_LAYOUT
    ]


class TestDimeCalculator:
    def setup_method(self):
        self.calc = DimeCalculator()

    def test_all_yes_scores_three_everywhere(self):
        result = self.calc.compute(_checklist())
        assert (result.d_score, result.i_score, result.m_score) == (3.0, 3.0, 3.0)
        assert result.e_raw == 3.0
        assert result.e_final == 3.0
        assert result.cap_applied is False
        assert result.trace.constrained_effectiveness.constrained_by == "none"

    def test_all_unanswered_scores_zero(self):
        result = self.calc.compute(_checklist(default=AttestationStatus.UNANSWERED))
        assert (result.d_score, result.i_score, result.m_score, result.e_final) == (0.0, 0.0, 0.0, 0.0)
        assert all(not e.included for e in result.trace.entries)
        assert all(e.reason == "not yet attested" for e in result.trace.entries)

    def test_partial_and_no_weighting(self):
        """I1 critical partial (1.5) + I2 yes (2) + I3 no (0) over weight 7 → 1.5."""
        result = self.calc.compute(_checklist(I1=AttestationStatus.PARTIAL, I3=AttestationStatus.NO))
        assert result.i_score == 1.5
        dim = result.trace.dimensions["I"]
        assert dim.weighted_sum == 3.5
        assert dim.weight_total == 7
        assert dim.capped is False

    def test_not_applicable_excluded_from_weight(self):
        """D2 N/A leaves only D1 (critical yes) → full score, not diluted."""
        result = self.calc.compute(_checklist(D2=AttestationStatus.NOT_APPLICABLE))
        assert result.d_score == 3.0
        assert result.trace.dimensions["D"].weight_total == 3
        excluded = [e for e in result.trace.entries if not e.included]
        assert [e.code for e in excluded] == ["D2"]
        assert excluded[0].reason == "not applicable - excluded"

    def test_rounding_is_half_up(self):
        """M1 critical yes + M2 N/A + M3 optional partial: 3 × 3.5 / 4 = 2.625 → 2.63."""
        result = self.calc.compute(_checklist(
            M2=AttestationStatus.NOT_APPLICABLE,
            M3=AttestationStatus.PARTIAL,
        ))
        assert result.m_score == 2.63

    def test_round_half_up_helper(self):
        assert round_half_up(0.125) == 0.13
        assert round_half_up(2.675) == 2.68
        assert round_half_up(1.0) == 1.0


class TestCriticalCap:
    def setup_method(self):
        self.calc = DimeCalculator()

    def test_critical_no_caps_dimension_at_one(self):
        """D1 critical no + D2 yes: raw 3 × 2 / 5 = 1.2, capped to 1.0."""
        result = self.calc.compute(_checklist(D1=AttestationStatus.NO))
        assert result.trace.dimensions["D"].raw == 1.2
        assert result.d_score == 1.0
        assert result.cap_applied is True
        assert result.cap_details.d_capped is True
        assert result.cap_details.i_capped is False
        assert [(t.dimension, t.code) for t in result.cap_details.triggers] == [(Dimension.DESIGN, "D1")]

    def test_cap_flag_set_even_when_score_already_below_cap(self):
        result = self.calc.compute(_checklist(D1=AttestationStatus.NO, D2=AttestationStatus.NO))
        assert result.d_score == 0.0
        assert result.cap_applied is True
        assert result.cap_details.d_capped is True

    def test_important_no_does_not_cap(self):
        result = self.calc.compute(_checklist(D2=AttestationStatus.NO))
        assert result.cap_applied is False
        assert result.d_score == 1.8

    def test_evaluation_constrained_by_weakest_dimension(self):
        result = self.calc.compute(_checklist(I1=AttestationStatus.NO))
        assert result.i_score == 1.0
        assert result.e_raw == 3.0
        assert result.e_final == 1.0
        assert result.trace.constrained_effectiveness.constrained_by == "I"

    def test_unanswered_dimension_constrains_evaluation_to_zero(self):
        result = self.calc.compute(_checklist(
            M1=AttestationStatus.UNANSWERED,
            M2=AttestationStatus.UNANSWERED,
            M3=AttestationStatus.UNANSWERED,
        ))
        assert result.m_score == 0.0
        assert result.e_final == 0.0
        assert result.trace.constrained_effectiveness.constrained_by == "M"

    def test_evaluation_cap_applies_before_constraint(self):
        result = self.calc.compute(_checklist(E1=AttestationStatus.NO))
        assert result.e_raw == 1.0
        assert result.e_final == 1.0
        assert result.cap_details.e_capped is True
        assert result.trace.constrained_effectiveness.constrained_by == "none"

    def test_trace_lists_every_sub_control(self):
        atts = _checklist(D1=AttestationStatus.NO, E2=AttestationStatus.UNANSWERED)
        result = self.calc.compute(atts)
        assert len(result.trace.entries) == len(atts)
        d1 = next(e for e in result.trace.entries if e.code == "D1")
        assert d1.criticality == Criticality.CRITICAL
        assert d1.weight == 3
        assert d1.contribution == 0.0


# ── Persisted scores ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dime_row_written_for_new_instance(db, control_instance):
    """Creating an instance computes an all-zero DIME row."""
    row = await dime_score_repo.get(db, control_instance.id)
    assert row is not None
    assert float(row.e_final) == 0.0
    assert row.cap_applied is False


@pytest.mark.asyncio
async def test_dime_service_recompute_is_stable(db, control_instance):
    first = await dime_service.compute(db, control_instance.id)
    second = await dime_service.compute(db, control_instance.id)
    assert first.model_dump(exclude={"computed_at"}) == second.model_dump(exclude={"computed_at"})
    assert second.control_instance_id == control_instance.id
