"""
Property-based tests for the scoring and classification math.

Covers:
- DIME scores stay in [0, 3]; effectiveness never exceeds D, I or M
- A failed critical check caps its dimension
- Confidence stays in [0, 100] and weak critical status holds it at Low
- Maximum-type classification is monotone in the observed value
"""

from datetime import date, datetime, timedelta

from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from riskgov.controls.confidence import ConfidenceCalculator, label_for
from riskgov.controls.dime import DimeCalculator
from riskgov.controls.library import STANDARD_LAYOUT
from riskgov.controls.schemas import (
    AttestationInput,
    AttestationStatus,
    Criticality,
    Dimension,
    EvidenceRequestInput,
    EvidenceRequestStatus,
)
from riskgov.tolerance.classifier import ToleranceClassifier
from riskgov.tolerance.schemas import BandStatus, Bands, MetricType

NOW = datetime(2026, 6, 30, 12, 0)
EPS = 1e-9

_answers = st.tuples(
    st.sampled_from(list(AttestationStatus)),
    st.booleans(),
    st.integers(min_value=0, max_value=400),
)
checklists = st.lists(_answers, min_size=len(STANDARD_LAYOUT), max_size=len(STANDARD_LAYOUT))

requests = st.lists(
    st.builds(
        EvidenceRequestInput,
        due_date=st.dates(min_value=date(2025, 1, 1), max_value=date(2026, 12, 31)),
        status=st.sampled_from(list(EvidenceRequestStatus)),
        is_critical_scope=st.booleans(),
    ),
    max_size=8,
)


def _build(answers) -> list[AttestationInput]:
    out = []
    for (code, dim, crit), (status, evidence, days_ago) in zip(STANDARD_LAYOUT, answers):
        answered = status in (AttestationStatus.YES, AttestationStatus.PARTIAL, AttestationStatus.NO)
        out.append(AttestationInput(
            code=code,
            dimension=dim,
            criticality=crit,
            status=status,
            evidence_exists=evidence if answered else None,
            attested_at=NOW - timedelta(days=days_ago) if status != AttestationStatus.UNANSWERED else None,
        ))
    return out


class TestDimeProperties:
    @given(answers=checklists)
    @hyp_settings(max_examples=200)
    def test_scores_bounded(self, answers):
        result = DimeCalculator().compute(_build(answers))
        for score in (result.d_score, result.i_score, result.m_score, result.e_raw, result.e_final):
            assert 0.0 <= score <= 3.0

    @given(answers=checklists)
    @hyp_settings(max_examples=200)
    def test_effectiveness_constrained(self, answers):
        result = DimeCalculator().compute(_build(answers))
        assert result.e_final <= result.e_raw + EPS
        assert result.e_final <= result.d_score + EPS
        assert result.e_final <= result.i_score + EPS
        assert result.e_final <= result.m_score + EPS

    @given(answers=checklists)
    @hyp_settings(max_examples=200)
    def test_failed_critical_caps_dimension(self, answers):
        attestations = _build(answers)
        result = DimeCalculator().compute(attestations)
        scores = {
            Dimension.DESIGN: result.d_score,
            Dimension.IMPLEMENTATION: result.i_score,
            Dimension.MONITORING: result.m_score,
        }
        for att in attestations:
            if att.criticality == Criticality.CRITICAL and att.status == AttestationStatus.NO:
                assert result.cap_applied
                if att.dimension in scores:
                    assert scores[att.dimension] <= 1.0


class TestConfidenceProperties:
    @given(answers=checklists, evidence_requests=requests)
    @hyp_settings(max_examples=200)
    def test_score_bounded_and_labelled(self, answers, evidence_requests):
        result = ConfidenceCalculator().compute(_build(answers), evidence_requests, NOW)
        assert 0 <= result.score <= 100
        assert result.label == label_for(result.score)
        assert result.components.overdue_penalty >= -30

    @given(answers=checklists, evidence_requests=requests)
    @hyp_settings(max_examples=200)
    def test_weak_critical_status_caps_at_low(self, answers, evidence_requests):
        result = ConfidenceCalculator().compute(_build(answers), evidence_requests, NOW)
        if result.components.critical_status < 10:
            assert result.score <= 39


class TestClassifierProperties:
    @given(
        a=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
        b=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
    )
    @hyp_settings(max_examples=200)
    def test_maximum_is_monotone(self, a, b):
        order = {BandStatus.GREEN: 0, BandStatus.AMBER: 1, BandStatus.RED: 2}
        bands = Bands(amber_max=10, red_max=20)
        clf = ToleranceClassifier()
        low, high = sorted((a, b))
        assert order[clf.classify(MetricType.MAXIMUM, bands, low).status] <= order[
            clf.classify(MetricType.MAXIMUM, bands, high).status
        ]
