# =============================================================================
# Unit Tests — Summary Derivation
# =============================================================================

import pytest

from app.models.domain import Finding
from app.services.summary import (
    completeness,
    default_recommendations,
    generate_summary,
    overall_confidence,
    overall_risk,
    quick_summary,
    smart_recommendations,
)


def _finding(title="Issue", type="concern", severity="medium", confidence=0.7) -> Finding:
    return Finding(
        type=type, title=title, description="", severity=severity, confidence=confidence,
    )


class TestOverallRisk:
    @pytest.mark.parametrize(
        "severities, expected",
        [
            ([], "low"),
            (["low", "medium", "medium"], "low"),
            (["medium"] * 3, "medium"),
            (["high"], "medium"),
            (["high", "high"], "high"),
            (["critical"], "critical"),
        ],
    )
    def test_aggregation(self, severities, expected):
        assert overall_risk([_finding(severity=s) for s in severities]) == expected


class TestScores:
    def test_confidence_without_findings(self):
        assert overall_confidence([]) == 0.5

    def test_confidence_mean(self):
        findings = [_finding(confidence=0.8), _finding(confidence=0.65)]
        assert overall_confidence(findings) == 0.72

    @pytest.mark.parametrize("count, expected", [(0, 0.0), (2, 0.5), (4, 0.9), (7, 0.9)])
    def test_completeness(self, count, expected):
        assert completeness(count) == expected


class TestRecommendations:
    def test_defaults_by_severity(self):
        assert default_recommendations("red_flag", "low")[0] == (
            "Seek immediate professional legal advice"
        )
        assert default_recommendations("concern", "low") == [
            "Note for discussion during conveyancing process"
        ]

    def test_smart_recommendations_capped(self):
        findings = [
            _finding("Subsidence to rear wall", severity="high"),
            _finding("Boundary dispute with neighbour", severity="high"),
            _finding("Planning enforcement notice"),
        ]
        actions = smart_recommendations(findings, "high")
        assert len(actions) == 5
        assert actions[0].startswith("URGENT")
        assert "Obtain detailed structural survey from qualified surveyor" in actions
        assert "Discuss legal issues with conveyancing solicitor immediately" in actions

    def test_low_risk_gets_standard_actions(self):
        assert smart_recommendations([], "low") == [
            "Review all findings with qualified professionals",
            "Request additional documentation for unclear areas",
        ]


class TestGenerateSummary:
    def test_full_summary(self):
        findings = [
            _finding("Subsidence", severity="high"),
            _finding("Covenant", severity="high"),
            _finding("Old boiler"),
            _finding("Garden", type="positive", severity="low"),
        ]
        summary = generate_summary(findings, documents_analyzed=3, document_types=["SURVEY", "TITLE"])

        assert summary.overall_risk == "high"
        assert summary.key_findings == ["Subsidence", "Covenant", "Old boiler"]
        assert summary.risk_breakdown == {"high": 2, "medium": 1, "low": 1}
        assert summary.positive_aspects == ["Garden"]
        assert summary.completeness == 0.75
        assert summary.executive_summary.startswith(
            "Analysis of 3 property documents (SURVEY, TITLE) identifies HIGH RISK"
        )
        assert "2 high-priority issues identified." in summary.executive_summary


class TestQuickSummary:
    def test_partial_summary(self):
        findings = [_finding("Damp"), _finding("Roof"), _finding("Boiler")]
        summary = quick_summary(findings, documents_analyzed=2, total_documents=5)

        assert summary.overall_risk == "medium"
        assert summary.completeness == 0.4
        assert summary.recommended_actions[0] == (
            "Initial scan complete - detailed analysis in progress"
        )
        assert summary.executive_summary == (
            "Quick scan of 2 priority documents completed. 3 initial findings "
            "identified. Detailed analysis continuing in background."
        )

    def test_single_high_is_high(self):
        summary = quick_summary([_finding(severity="high")], 1, 1)
        assert summary.overall_risk == "high"
