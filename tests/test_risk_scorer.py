"""
Tests for the Risk Scorer
"""
import pytest

from exam_proctoring.models import LogEntry, ProctoringEvent, UnreadableEntry
from exam_proctoring.proctor.scoring import RiskScorer


def _events(**counts):
    events = []
    for event_type, count in counts.items():
        events.extend(ProctoringEvent(event_type=event_type.replace("_", "-"), details="x") for _ in range(count))
    return events


class TestRiskScore:
    """Score computation"""

    def test_empty_log_scores_zero(self):
        """No events means no risk"""
        analysis = RiskScorer().score([])

        assert analysis.risk_score == 0
        assert analysis.total_violations == 0

    def test_saturated_score(self):
        """3 tab switches, 2 absences, 1 multi-face, 4 mic: raw 2.0 capped to 100"""
        events = _events(tab_switch=3, face_not_visible=2, multiple_faces=1, mic_activity=4)

        analysis = RiskScorer().score(events)

        assert analysis.tab_switches == 3
        assert analysis.face_not_visible == 2
        assert analysis.multiple_faces == 1
        assert analysis.mic_activity == 4
        assert analysis.risk_score == 100
        assert analysis.total_violations == 10

    def test_partial_score(self):
        """One tab switch and one absence score 50"""
        analysis = RiskScorer().score(_events(tab_switch=1, face_not_visible=1))

        assert analysis.risk_score == 50
        assert analysis.total_violations == 2

    def test_cheating_detected_counts_as_multiple_faces(self):
        """cheating-detected is scored in the multiple-faces bucket"""
        analysis = RiskScorer().score(_events(cheating_detected=1))

        assert analysis.multiple_faces == 1
        assert analysis.risk_score == 40

    def test_unscored_types_are_ignored(self):
        """off-screen and screenshots do not contribute"""
        analysis = RiskScorer().score(_events(off_screen=5, screenshot_captured=2))

        assert analysis.risk_score == 0
        assert analysis.total_violations == 0

    def test_score_is_pure(self):
        """Scoring the same log twice gives identical results"""
        events = _events(tab_switch=2, mic_activity=1)
        scorer = RiskScorer()

        assert scorer.score(events) == scorer.score(events)

    def test_log_records_and_unreadable_entries(self):
        """Log records are accepted and unreadable records skipped"""
        records = [
            LogEntry(seq=1, event=ProctoringEvent(event_type="tab-switch", details="x")),
            UnreadableEntry(seq=2, reason="authentication tag mismatch"),
            LogEntry(seq=3, event=ProctoringEvent(event_type="mic-activity", details="x")),
        ]

        analysis = RiskScorer().score(records)

        assert analysis.tab_switches == 1
        assert analysis.mic_activity == 1
        assert analysis.risk_score == 30

    def test_to_dict_uses_camel_case(self):
        """Analytics keys match the reviewer API"""
        data = RiskScorer().score(_events(tab_switch=1)).to_dict()

        assert set(data) == {
            "tabSwitches", "faceNotVisible", "multipleFaces",
            "micActivity", "riskScore", "totalViolations",
        }


class TestRiskLevels:
    """Risk level bands and flagging"""

    @pytest.mark.parametrize("score,level", [
        (0, "low"), (29, "low"), (30, "medium"), (59, "medium"),
        (60, "high"), (84, "high"), (85, "critical"), (100, "critical"),
    ])
    def test_risk_level(self, score, level):
        """Level boundaries"""
        assert RiskScorer().risk_level(score) == level

    def test_is_flagged(self):
        """Any flagged type marks the session"""
        scorer = RiskScorer()

        assert scorer.is_flagged(_events(off_screen=1, tab_switch=1))
        assert not scorer.is_flagged(_events(off_screen=3))

    def test_screenshot_only_log(self):
        """A log of screenshots alone scores zero and is not flagged"""
        scorer = RiskScorer()
        events = _events(screenshot_captured=1)

        assert scorer.score(events).risk_score == 0
        assert not scorer.is_flagged(events)

    def test_single_tab_switch(self):
        """One tab switch scores 20 and flags the session"""
        scorer = RiskScorer()
        events = _events(tab_switch=1)

        analysis = scorer.score(events)

        assert analysis.risk_score == 20
        assert analysis.total_violations == 1
        assert scorer.is_flagged(events)

    def test_breakdown(self):
        """Breakdown reports per-category contribution"""
        breakdown = RiskScorer().compute_breakdown(_events(face_not_visible=2))

        assert breakdown["face_not_visible"]["count"] == 2
        assert breakdown["face_not_visible"]["contribution"] == 0.6
        assert breakdown["tab_switches"]["contribution"] == 0
