"""Evidence profile extraction used to arbitrate between rule and model results"""

import re
from typing import FrozenSet, Iterable, List, Optional

import structlog

from .models import EvidenceProfile
from .pattern_classifier import normalize_text

logger = structlog.get_logger(__name__)

TEMPORAL_PHRASES = [
    "yesterday", "day before yesterday", "last time", "last week", "last month", "last year",
    "earlier", "ago", "just now", "the other day", "previously", "tomorrow", "tonight",
    "this week", "next week", "this weekend", "next time",
]

MOOD_PHRASES = [
    "how about", "what about", "maybe", "perhaps", "i think", "i guess", "i wonder",
    "probably", "might", "should i", "could we", "what if", "right?", "isn't it", "don't you think",
]

INTERROGATIVES = ["what", "when", "where", "who", "whom", "why", "how", "which"]
AUXILIARIES = ["did", "does", "do", "is", "are", "was", "were", "can", "could", "will",
               "would", "should", "has", "have", "had"]

PRONOUN_REFERENCES = ["that one", "this one", "that class", "that lesson", "the same", "them", "same time"]

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

# "it" only counts as a reference when it is the object of a verb or preposition, or ends the utterance
OBJECT_IT = re.compile(
    r"(?<!\w)(?:(?:cancel|move|change|delete|remove|reschedule|postpone|skip|book|add|modify|drop|keep|put|set"
    r"|about|for|to|with|on|of)\s+it(?![\w'])|it\W*$)"
)


def _phrase_regex(phrase: str) -> str:
    return r"(?<!\w)" + re.escape(phrase) + r"(?!\w)"


class EvidenceExtractor:
    """Runs independent marker detectors over normalized text"""

    def __init__(self, ambiguous_terms: Optional[Iterable[str]] = None):
        self.ambiguous_terms = sorted(set(t.lower() for t in (ambiguous_terms or [])) | set(PRONOUN_REFERENCES))
        self._relative_day = re.compile(r"\b(?:next|last|this)\s+(" + "|".join(WEEKDAYS) + r")\b")

    def extract(self, text: str) -> EvidenceProfile:
        """Build the evidence profile for text; garbage input yields empty sets"""
        if not isinstance(text, str):
            return EvidenceProfile()

        normalized = normalize_text(text)
        if not normalized:
            return EvidenceProfile()

        return EvidenceProfile(
            temporal_clues=self.detect_temporal(normalized),
            mood_markers=self.detect_mood(normalized),
            question_markers=self.detect_questions(normalized),
            ambiguous_terms=self.detect_ambiguous(normalized),
        )

    def detect_temporal(self, normalized: str) -> FrozenSet[str]:
        found = self._matches(normalized, TEMPORAL_PHRASES)
        found.extend(m.group(0) for m in self._relative_day.finditer(normalized))
        return frozenset(found)

    def detect_mood(self, normalized: str) -> FrozenSet[str]:
        found = [p for p in MOOD_PHRASES if p.endswith("?") and p in normalized]
        found.extend(self._matches(normalized, [p for p in MOOD_PHRASES if not p.endswith("?")]))
        return frozenset(found)

    def detect_questions(self, normalized: str) -> FrozenSet[str]:
        found = []
        if "?" in normalized:
            found.append("?")
        first_word = re.sub(r"[^\w']", "", normalized.split()[0])
        if first_word in INTERROGATIVES or first_word in AUXILIARIES:
            found.append(first_word)
        return frozenset(found)

    def detect_ambiguous(self, normalized: str) -> FrozenSet[str]:
        found = self._matches(normalized, self.ambiguous_terms)
        if "it" not in found and OBJECT_IT.search(normalized):
            found.append("it")
        return frozenset(found)

    @staticmethod
    def _matches(normalized: str, phrases: Iterable[str]) -> List[str]:
        return [p for p in phrases if re.search(_phrase_regex(p), normalized)]
