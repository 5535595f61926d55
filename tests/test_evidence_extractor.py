"""
Unit tests for evidence profile extraction
"""

import pytest

from schedule_resolver.evidence_extractor import EvidenceExtractor
from schedule_resolver.models import EvidenceProfile


class TestEvidenceExtractor:
    """Test cases for EvidenceExtractor"""

    def test_plain_command_has_no_evidence(self, evidence_extractor):
        profile = evidence_extractor.extract("cancel math course")
        assert profile == EvidenceProfile()

    def test_question_and_mood(self, evidence_extractor):
        profile = evidence_extractor.extract("Should I add a piano lesson?")

        assert profile.question_markers == {"?", "should"}
        assert "should i" in profile.mood_markers
        assert profile.has_mood_or_question

    def test_leading_interrogative_without_question_mark(self, evidence_extractor):
        profile = evidence_extractor.extract("what did Emma learn yesterday")

        assert profile.question_markers == {"what"}
        assert profile.temporal_clues == {"yesterday"}

    def test_relative_weekday_and_ambiguous_terms(self, evidence_extractor):
        profile = evidence_extractor.extract("move it to next friday")

        assert "next friday" in profile.temporal_clues
        assert {"move", "it"} <= profile.ambiguous_terms

    @pytest.mark.parametrize("text", [
        "cancel it",
        "can you reschedule it for friday",
        "remind me about it",
        "Emma loved it!",
    ])
    def test_object_it_is_ambiguous(self, evidence_extractor, text):
        assert "it" in evidence_extractor.extract(text).ambiguous_terms

    @pytest.mark.parametrize("text", [
        "it is piano at 4pm on Monday",
        "is it raining tomorrow",
        "Add piano lessons for Emma, it starts at 4pm",
        "edit Emma's piano time",
    ])
    def test_subject_it_is_not_ambiguous(self, evidence_extractor, text):
        assert "it" not in evidence_extractor.extract(text).ambiguous_terms

    def test_mood_marker_right_question(self, evidence_extractor):
        profile = evidence_extractor.extract("piano is on monday, right?")
        assert "right?" in profile.mood_markers

    def test_garbage_input_returns_empty_profile(self, evidence_extractor):
        assert evidence_extractor.extract("") == EvidenceProfile()
        assert evidence_extractor.extract("   ") == EvidenceProfile()
        assert evidence_extractor.extract(None) == EvidenceProfile()
        assert evidence_extractor.extract(12345) == EvidenceProfile()
        assert evidence_extractor.extract("%%% ###") == EvidenceProfile()

    def test_extraction_is_deterministic(self, evidence_extractor):
        text = "Maybe move Emma's piano lesson to tomorrow?"
        first = evidence_extractor.extract(text)
        for _ in range(5):
            assert evidence_extractor.extract(text) == first

    def test_without_rule_terms_only_pronouns_are_ambiguous(self):
        extractor = EvidenceExtractor()
        profile = extractor.extract("change that one")

        assert profile.ambiguous_terms == {"that one"}
