"""
Unit tests for the rule-table intent classifier
"""

import json

import pytest

from schedule_resolver.exceptions import RuleTableError
from schedule_resolver.intent_rules import DEFAULT_RULES, IntentRule, load_rules
from schedule_resolver.pattern_classifier import PatternClassifier, normalize_text

from conftest import make_settings


class TestPatternClassifier:
    """Test cases for PatternClassifier"""

    def test_cancel_math_course(self, pattern_classifier):
        result = pattern_classifier.classify("cancel math course")

        assert result.intent == "cancel_course"
        assert result.confidence == pytest.approx(0.95)
        assert result.entities["course"] == "math"
        assert result.temporal_blind is True
        assert result.source == "rule"

    def test_classification_is_deterministic(self, pattern_classifier):
        text = "Add piano lesson for Emma every Monday at 4pm"
        first = pattern_classifier.classify(text)

        for _ in range(5):
            assert pattern_classifier.classify(text) == first

    def test_exclusion_rejects_rule(self, pattern_classifier):
        result = pattern_classifier.classify("add then cancel the piano class")
        assert result.intent == "cancel_course"

    def test_required_keywords_gate(self, pattern_classifier):
        result = pattern_classifier.classify("piano lesson")
        assert result.intent == "unknown"
        assert result.confidence == 0.0

    def test_empty_text_is_unknown(self, pattern_classifier):
        assert pattern_classifier.classify("").is_unknown
        assert pattern_classifier.classify("   ").is_unknown

    def test_priority_beats_confidence(self):
        classifier = PatternClassifier([
            IntentRule(intent="low", keywords=["x", "y", "z"], priority=1),
            IntentRule(intent="high", keywords=["x"], priority=2),
        ])
        result = classifier.classify("x y z")

        assert result.intent == "high"
        assert result.confidence == pytest.approx(0.8)

    def test_tie_keeps_first_rule(self):
        classifier = PatternClassifier([
            IntentRule(intent="first", keywords=["alpha"]),
            IntentRule(intent="second", keywords=["alpha"]),
        ])
        assert classifier.classify("alpha").intent == "first"

    def test_confidence_capped_at_one(self):
        classifier = PatternClassifier([
            IntentRule(intent="many", keywords=["a", "b", "c", "d", "e"], patterns=[r"\ba\b"]),
        ])
        assert classifier.classify("a b c d e").confidence == 1.0

    def test_keywords_match_on_word_boundaries(self):
        classifier = PatternClassifier([IntentRule(intent="add", keywords=["add"])])
        assert classifier.classify("address book").is_unknown
        assert classifier.classify("please add it").intent == "add"

    def test_temporal_aware_rule_is_not_blind(self, pattern_classifier):
        result = pattern_classifier.classify("remind me about piano class")
        assert result.intent == "set_reminder"
        assert result.temporal_blind is False

    def test_ambiguous_terms_union(self, pattern_classifier):
        assert {"change", "move", "book"} <= pattern_classifier.ambiguous_terms

    def test_get_rule(self, pattern_classifier):
        assert pattern_classifier.get_rule("cancel_course").required_slots == ["student", "course"]
        assert pattern_classifier.get_rule("missing") is None

    def test_normalize_text(self):
        assert normalize_text("  Cancel\tMATH   course ") == "cancel math course"
        assert normalize_text(None) == ""


class TestRuleLoading:
    """Test cases for the rule table loader"""

    def test_defaults_without_path(self):
        assert load_rules(None) == DEFAULT_RULES

    def test_load_from_json(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"intent": "greet", "keywords": ["hello"], "priority": 2}]))

        rules = load_rules(str(path))

        assert len(rules) == 1
        assert rules[0].intent == "greet"
        assert rules[0].temporal_aware is False

    def test_malformed_file_raises(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")

        with pytest.raises(RuleTableError):
            load_rules(str(path))

    def test_schema_violation_raises(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"keywords": ["missing intent"]}]))

        with pytest.raises(RuleTableError):
            load_rules(str(path))

    def test_from_settings_falls_back_to_empty_table(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("[1, 2, 3]")

        classifier = PatternClassifier.from_settings(make_settings(rules_path=str(path)))

        assert classifier.rules == []
        result = classifier.classify("cancel math course")
        assert result.intent == "unknown"
        assert result.confidence == 0.0
