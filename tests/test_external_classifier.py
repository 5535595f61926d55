"""
Unit tests for the HTTP intent classifier client
"""

import json

import httpx
import pytest

from schedule_resolver.exceptions import CircuitOpenError, ExternalClassifierError
from schedule_resolver.external_classifier import HttpIntentClassifier, parse_classifier_response
from schedule_resolver.utils.http_client import HTTPClientPool

from conftest import FakeClock, make_settings


class ScriptedService:
    """MockTransport handler returning queued responses"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(status, json=body)


def make_classifier(service, clock=None, **overrides):
    settings = make_settings(intent_service_url="http://intent.test/", **overrides)
    pool = HTTPClientPool(timeout=1.0, transport=httpx.MockTransport(service))
    return HttpIntentClassifier(settings, pool, clock=clock or FakeClock())


OK = (200, {"intent": "cancel_course", "confidence": 0.82, "entities": {"course": "math"},
            "reasoning_chain": ["cancel verb", "course named", "no date"]})
ERROR = (500, {"detail": "model crashed"})


class TestParseClassifierResponse:
    """Test cases for response parsing"""

    def test_full_payload(self):
        result = parse_classifier_response(OK[1])

        assert result.intent == "cancel_course"
        assert result.confidence == 0.82
        assert result.entities == {"course": "math"}
        assert result.source == "model"
        assert result.reasoning_steps == 3

    def test_confidence_is_clamped(self):
        assert parse_classifier_response({"intent": "add_course", "confidence": 1.7}).confidence == 1.0
        assert parse_classifier_response({"intent": "add_course", "confidence": -2}).confidence == 0.0

    def test_entity_list_and_aliases(self):
        result = parse_classifier_response({
            "intent": "add_course",
            "confidence": 0.9,
            "entities": [{"label": "COURSE_NAME", "text": "piano"}, {"label": "student_name", "text": "Emma"},
                         {"text": "unlabelled"}],
            "reasoning_steps": "2",
        })

        assert result.entities == {"course": "piano", "student": "Emma"}
        assert result.reasoning_steps == 2

    @pytest.mark.parametrize("payload", [{}, {"confidence": 0.9}, ["add_course"], {"intent": "x", "confidence": "high"}])
    def test_malformed_payload(self, payload):
        with pytest.raises(ExternalClassifierError):
            parse_classifier_response(payload)


class TestHttpIntentClassifier:
    """Test cases for HttpIntentClassifier"""

    @pytest.mark.asyncio
    async def test_successful_call(self):
        service = ScriptedService(OK)
        classifier = make_classifier(service)

        result = await classifier.classify("cancel math course", "u1", hint="Emma: piano")

        assert result.intent == "cancel_course"
        request = service.requests[0]
        assert str(request.url) == "http://intent.test/classify"
        assert json.loads(request.content) == {"text": "cancel math course", "session_id": "u1",
                                               "context": "Emma: piano"}
        assert classifier.state == "closed"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        classifier = make_classifier(ScriptedService(ERROR))

        with pytest.raises(ExternalClassifierError):
            await classifier.classify("cancel math course", "u1")
        assert classifier.stats()["consecutive_failures"] == 1
        assert classifier.state == "closed"

    @pytest.mark.asyncio
    async def test_breaker_opens_after_threshold(self):
        service = ScriptedService(ERROR)
        classifier = make_classifier(service, circuit_breaker_threshold=3)

        for _ in range(3):
            with pytest.raises(ExternalClassifierError):
                await classifier.classify("hello", "u1")

        assert classifier.state == "open"
        with pytest.raises(CircuitOpenError):
            await classifier.classify("hello", "u1")
        assert len(service.requests) == 3

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(self):
        clock = FakeClock()
        service = ScriptedService(ERROR, ERROR, OK)
        classifier = make_classifier(service, clock=clock, circuit_breaker_threshold=2, circuit_breaker_reset=60)

        for _ in range(2):
            with pytest.raises(ExternalClassifierError):
                await classifier.classify("hello", "u1")

        clock.advance(61)
        result = await classifier.classify("cancel math course", "u1")

        assert result.intent == "cancel_course"
        assert classifier.state == "closed"
        assert classifier.stats()["consecutive_failures"] == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens(self):
        clock = FakeClock()
        classifier = make_classifier(ScriptedService(ERROR), clock=clock,
                                     circuit_breaker_threshold=2, circuit_breaker_reset=60)

        for _ in range(2):
            with pytest.raises(ExternalClassifierError):
                await classifier.classify("hello", "u1")

        clock.advance(30)
        with pytest.raises(CircuitOpenError):
            await classifier.classify("hello", "u1")

        clock.advance(31)
        with pytest.raises(ExternalClassifierError) as exc_info:
            await classifier.classify("hello", "u1")
        assert not isinstance(exc_info.value, CircuitOpenError)
        assert classifier.state == "open"

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        def handler(request):
            return httpx.Response(200, content=b"not json")

        classifier = make_classifier(handler)

        with pytest.raises(ExternalClassifierError):
            await classifier.classify("hello", "u1")
