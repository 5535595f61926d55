"""Deterministic keyword/regex intent classification"""

import re
from typing import Dict, FrozenSet, List, Optional, Pattern, Tuple

import structlog

from .config import Settings
from .entity_extractor import EntityExtractor
from .exceptions import RuleTableError
from .intent_rules import IntentRule, load_rules
from .models import ClassificationResult

logger = structlog.get_logger(__name__)

BASE_CONFIDENCE = 0.8
KEYWORD_BONUS = 0.1
PATTERN_BONUS = 0.05


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace"""
    return " ".join((text or "").lower().split())


def _keyword_regex(keyword: str) -> Pattern:
    return re.compile(r"(?<!\w)" + re.escape(keyword.lower()) + r"(?!\w)")


class PatternClassifier:
    """Rule-table intent matcher"""

    def __init__(self, rules: List[IntentRule], entity_extractor: Optional[EntityExtractor] = None):
        self.rules = list(rules)
        self.entity_extractor = entity_extractor or EntityExtractor()
        self._compiled: Dict[str, Tuple[List[Pattern], List[Pattern], List[Pattern], List[Pattern]]] = {}

        for rule in self.rules:
            self._compiled[rule.intent] = (
                [_keyword_regex(k) for k in rule.keywords],
                [_keyword_regex(k) for k in rule.exclusions],
                [_keyword_regex(k) for k in rule.required_keywords],
                [re.compile(p, re.IGNORECASE) for p in rule.patterns],
            )

    @classmethod
    def from_settings(cls, settings: Settings, entity_extractor: Optional[EntityExtractor] = None) -> "PatternClassifier":
        """Build from configuration; a broken rule table yields an empty one"""
        try:
            rules = load_rules(settings.rules_path)
            return cls(rules, entity_extractor)
        except (RuleTableError, re.error) as e:
            logger.error("Invalid intent rule table, classifying everything as unknown",
                         path=settings.rules_path, error=str(e))
            return cls([], entity_extractor)

    @property
    def ambiguous_terms(self) -> FrozenSet[str]:
        return frozenset(term.lower() for rule in self.rules for term in rule.ambiguous_terms)

    def get_rule(self, intent: str) -> Optional[IntentRule]:
        for rule in self.rules:
            if rule.intent == intent:
                return rule
        return None

    def classify(self, text: str) -> ClassificationResult:
        """Classify text against the rule table"""
        normalized = normalize_text(text)
        if not normalized:
            return ClassificationResult.unknown()

        best: Optional[IntentRule] = None
        best_confidence = 0.0

        for rule in self.rules:
            confidence = self._score(rule, normalized)
            if confidence <= 0:
                continue
            if best is None or (rule.priority, confidence) > (best.priority, best_confidence):
                best = rule
                best_confidence = confidence

        if best is None:
            return ClassificationResult.unknown()

        return ClassificationResult(
            intent=best.intent,
            confidence=best_confidence,
            entities=self.entity_extractor.extract(text),
            source="rule",
            temporal_blind=not best.temporal_aware,
        )

    def _score(self, rule: IntentRule, normalized: str) -> float:
        keywords, exclusions, required, patterns = self._compiled[rule.intent]

        if any(p.search(normalized) for p in exclusions):
            return 0.0
        if required and not any(p.search(normalized) for p in required):
            return 0.0

        keyword_hits = sum(1 for p in keywords if p.search(normalized))
        pattern_hits = sum(1 for p in patterns if p.search(normalized))
        if keyword_hits == 0 and pattern_hits == 0:
            return 0.0

        confidence = BASE_CONFIDENCE
        confidence += KEYWORD_BONUS * max(0, keyword_hits - 1)
        confidence += PATTERN_BONUS * pattern_hits
        return round(min(confidence, 1.0), 4)
