"""
Test configuration and shared fixtures for the schedule resolver tests
"""

import asyncio
from datetime import date
from typing import Optional

import pytest

from schedule_resolver.config import Settings
from schedule_resolver.context_store import ShortTermContextStore
from schedule_resolver.decision_engine import DecisionEngine
from schedule_resolver.document_store import InMemoryDocumentStore
from schedule_resolver.entity_extractor import EntityExtractor
from schedule_resolver.evidence_extractor import EvidenceExtractor
from schedule_resolver.intent_rules import DEFAULT_RULES
from schedule_resolver.memory_store import LongTermMemoryStore
from schedule_resolver.models import ClassificationResult
from schedule_resolver.orchestrator import build_orchestrator
from schedule_resolver.pattern_classifier import PatternClassifier

# A Monday
TODAY = date(2026, 10, 19)


class FakeClock:
    """Manually advanced epoch clock"""

    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeClassifier:
    """Stand-in for the external classification service"""

    def __init__(self, result: Optional[ClassificationResult] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def classify(self, text: str, user_id: str, hint: str = "") -> ClassificationResult:
        self.calls.append({"text": text, "user_id": user_id, "hint": hint})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_settings(**overrides) -> Settings:
    values = {"batch_update_enabled": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def pattern_classifier():
    return PatternClassifier(DEFAULT_RULES, EntityExtractor(today=lambda: TODAY))


@pytest.fixture
def evidence_extractor(pattern_classifier):
    return EvidenceExtractor(pattern_classifier.ambiguous_terms)


@pytest.fixture
def decision_engine(settings):
    return DecisionEngine(settings)


@pytest.fixture
def context_store(settings, clock):
    return ShortTermContextStore(settings, clock=clock)


@pytest.fixture
def memory_store(settings, document_store, clock):
    return LongTermMemoryStore(settings, document_store, clock=clock)


@pytest.fixture
def fake_classifier():
    return FakeClassifier(result=ClassificationResult(intent="query_schedule", confidence=0.4, source="model"))


@pytest.fixture
def orchestrator(settings, document_store, fake_classifier, clock):
    return build_orchestrator(settings, document_store, fake_classifier, clock=clock, today=lambda: TODAY)
