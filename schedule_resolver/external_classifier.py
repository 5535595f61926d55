"""Client for the external natural-language intent classification service"""

import time
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx
import structlog

from .config import Settings
from .entity_extractor import normalize_entities
from .exceptions import CircuitOpenError, ExternalClassifierError
from .models import ClassificationResult
from .utils.http_client import HTTPClientPool

logger = structlog.get_logger(__name__)


class ExternalClassifier(Protocol):
    async def classify(self, text: str, user_id: str, hint: str = "") -> ClassificationResult: ...


def parse_classifier_response(payload: Dict[str, Any]) -> ClassificationResult:
    """Build a ClassificationResult from the service's JSON body"""
    if not isinstance(payload, dict) or not payload.get("intent"):
        raise ExternalClassifierError("Classifier response has no intent")

    try:
        confidence = float(payload.get("confidence", 0.0))
    except (TypeError, ValueError) as e:
        raise ExternalClassifierError(f"Invalid confidence: {payload.get('confidence')!r}") from e
    confidence = min(max(confidence, 0.0), 1.0)

    entities = payload.get("entities") or {}
    if isinstance(entities, list):
        # [{"label": "course", "text": "piano"}, ...]
        entities = {
            str(e.get("label", "")).lower(): e.get("text")
            for e in entities if isinstance(e, dict) and e.get("label")
        }

    chain = payload.get("reasoning_chain")
    if isinstance(chain, list):
        reasoning_steps = len(chain)
    else:
        try:
            reasoning_steps = int(payload.get("reasoning_steps") or 0)
        except (TypeError, ValueError):
            reasoning_steps = 0

    return ClassificationResult(
        intent=str(payload["intent"]),
        confidence=confidence,
        entities=normalize_entities(entities),
        source="model",
        reasoning_steps=reasoning_steps,
    )


class HttpIntentClassifier:
    """POSTs utterances to the classification service behind a circuit breaker"""

    def __init__(self, settings: Settings, http_pool: HTTPClientPool, clock: Callable[[], float] = time.time):
        self.url = f"{settings.intent_service_url.rstrip('/')}/classify"
        self.http_pool = http_pool
        self.failure_threshold = settings.circuit_breaker_threshold
        self.reset_timeout = settings.circuit_breaker_reset
        self._clock = clock

        self.circuit_breaker: Dict[str, Any] = {
            "failures": 0,
            "last_failure": None,
            "state": "closed"  # closed, open, half-open
        }
        self.response_times: List[float] = []

    async def classify(self, text: str, user_id: str, hint: str = "") -> ClassificationResult:
        """Classify text; raises ExternalClassifierError on any failure"""
        if not self._is_circuit_closed():
            raise CircuitOpenError("Circuit breaker open for intent service")

        start_time = self._clock()
        try:
            client = await self.http_pool.get_client()
            response = await client.post(self.url, json={
                "text": text,
                "session_id": user_id,
                "context": hint,
            })
            response.raise_for_status()
            result = parse_classifier_response(response.json())

        except (httpx.HTTPError, ValueError, ExternalClassifierError) as e:
            self._record_failure()
            logger.error("Intent service call failed", url=self.url, error=str(e))
            if isinstance(e, ExternalClassifierError):
                raise
            raise ExternalClassifierError(str(e)) from e

        self._record_success((self._clock() - start_time) * 1000)
        return result

    @property
    def state(self) -> str:
        return self.circuit_breaker["state"]

    def _is_circuit_closed(self) -> bool:
        """Check if circuit breaker is closed (allowing requests)"""
        breaker = self.circuit_breaker

        if breaker["state"] == "open":
            # Check if enough time has passed to try half-open
            if breaker["last_failure"] is not None and self._clock() - breaker["last_failure"] > self.reset_timeout:
                breaker["state"] = "half-open"
                return True
            return False
        return True

    def _record_success(self, response_time: float):
        self.circuit_breaker["failures"] = 0
        self.circuit_breaker["state"] = "closed"

        self.response_times.append(response_time)
        if len(self.response_times) > 100:  # Keep last 100 calls
            self.response_times = self.response_times[-100:]

    def _record_failure(self):
        breaker = self.circuit_breaker

        breaker["failures"] += 1
        breaker["last_failure"] = self._clock()

        # A failed half-open probe reopens immediately
        if breaker["failures"] >= self.failure_threshold or breaker["state"] == "half-open":
            if breaker["state"] != "open":
                logger.warning("Circuit breaker opened", url=self.url, failures=breaker["failures"])
            breaker["state"] = "open"

    def stats(self) -> Dict[str, Any]:
        times = self.response_times
        return {
            "circuit_state": self.circuit_breaker["state"],
            "consecutive_failures": self.circuit_breaker["failures"],
            "avg_response_time_ms": round(sum(times) / len(times), 2) if times else 0.0,
        }
