"""Per-utterance sequencing: bypass, memory load, classification, decision, write-back"""

import asyncio
import time
from datetime import date
from typing import Any, Callable, Dict, Optional

import structlog

from .config import Settings
from .context_store import ShortTermContextStore
from .decision_engine import CLARIFICATION_SUGGESTION, DecisionEngine
from .document_store import DocumentStore
from .entity_extractor import EntityExtractor
from .evidence_extractor import EvidenceExtractor
from .exceptions import ExternalClassifierError, MemoryValidationError
from .external_classifier import ExternalClassifier
from .memory_store import LongTermMemoryStore
from .metrics import record_classifier_failure, record_resolution
from .models import (
    ClassificationResult, Decision, DecisionSource, MemoryUpdate, ResolutionResult, RuleId,
    ShortTermContext, UserMemory,
)
from .pattern_classifier import PatternClassifier
from .query_router import QueryBypassRouter
from .schedule_repository import ScheduleRepository

logger = structlog.get_logger(__name__)

SCHEDULE_SLOTS = ("date", "time", "recurring", "day_of_week")


class IntentOrchestrator:
    """Resolves one utterance at a time against shared, per-user memory"""

    def __init__(
        self,
        settings: Settings,
        pattern_classifier: PatternClassifier,
        evidence_extractor: EvidenceExtractor,
        decision_engine: DecisionEngine,
        context_store: ShortTermContextStore,
        memory_store: LongTermMemoryStore,
        query_router: QueryBypassRouter,
        external_classifier: Optional[ExternalClassifier] = None,
    ):
        self.settings = settings
        self.pattern_classifier = pattern_classifier
        self.evidence_extractor = evidence_extractor
        self.decision_engine = decision_engine
        self.context_store = context_store
        self.memory_store = memory_store
        self.query_router = query_router
        self.external_classifier = external_classifier
        self.durable_intents = set(settings.durable_intents)
        self._stats = {"total": 0, "bypassed": 0, "model_calls": 0, "model_skipped": 0,
                       "model_failures": 0, "errors": 0}

    async def resolve(self, text: str, user_id: str) -> ResolutionResult:
        """Resolve an utterance; never raises"""
        start_time = time.perf_counter()
        self._stats["total"] += 1

        try:
            bypass = await self.query_router.handle(text, user_id)
            if bypass is not None:
                self._stats["bypassed"] += 1
                duration = time.perf_counter() - start_time
                record_resolution("bypass", duration)
                return ResolutionResult(user_id=user_id, text=text, bypass=True, query=bypass,
                                        execution_time_ms=duration * 1000)

            context, memory = await asyncio.gather(
                self._load_context(user_id),
                self.memory_store.get_user_memory(user_id),
            )

            rule = self.pattern_classifier.classify(text)
            evidence = self.evidence_extractor.extract(text)

            skip_model = False
            if rule.confidence >= self.settings.completion_threshold:
                rule = self._complete_entities(rule, context, memory)
                skip_model = self._is_complete(rule) and not self.decision_engine.requires_model(rule, evidence)

            model = None
            if skip_model:
                self._stats["model_skipped"] += 1
            else:
                model = await self._call_model(text, user_id, rule, memory)

            decision = self.decision_engine.decide(rule, model, evidence)
            await self._write_back(user_id, decision)

            duration = time.perf_counter() - start_time
            record_resolution(decision.source.value, duration, decision.rule_id.value,
                              decision.source.value, decision.confidence)
            logger.info("Utterance resolved", user_id=user_id, intent=decision.final_intent,
                        rule_id=decision.rule_id.value, source=decision.source.value,
                        confidence=decision.confidence, model_called=not skip_model)

            return ResolutionResult(
                user_id=user_id,
                text=text,
                decision=decision,
                predicted_next_intent=self.context_store.predict_next_intent(user_id, decision.final_intent),
                execution_time_ms=duration * 1000,
            )

        except Exception as e:
            self._stats["errors"] += 1
            duration = time.perf_counter() - start_time
            record_resolution("error", duration)
            logger.error("Resolution failed", user_id=user_id, error=str(e))
            return ResolutionResult(
                user_id=user_id,
                text=text,
                decision=Decision(
                    final_intent="unknown",
                    source=DecisionSource.FALLBACK,
                    rule_id=RuleId.FALLBACK,
                    confidence=0.0,
                    reason=f"Resolution failed: {e}",
                    suggestion=CLARIFICATION_SUGGESTION,
                ),
                execution_time_ms=duration * 1000,
            )

    async def _load_context(self, user_id: str) -> Optional[ShortTermContext]:
        return self.context_store.get(user_id)

    def _complete_entities(self, rule: ClassificationResult, context: Optional[ShortTermContext],
                           memory: UserMemory) -> ClassificationResult:
        """Fill missing student/course from context, then from memory when unambiguous"""
        entities = dict(rule.entities)
        filled = {}

        if not entities.get("student"):
            if context is not None and context.last_student:
                entities["student"] = filled["student"] = context.last_student
            else:
                students = self.memory_store.student_names(memory)
                if len(students) == 1:
                    entities["student"] = filled["student"] = students[0]

        if not entities.get("course"):
            if context is not None and context.last_course:
                entities["course"] = filled["course"] = context.last_course
            else:
                courses = self.memory_store.course_names(memory, entities.get("student"))
                if len(courses) == 1:
                    entities["course"] = filled["course"] = courses[0]

        if not filled:
            return rule

        logger.debug("Entities completed from memory", user_id=memory.user_id, **filled)
        return rule.model_copy(update={"entities": entities})

    def _is_complete(self, rule: ClassificationResult) -> bool:
        intent_rule = self.pattern_classifier.get_rule(rule.intent)
        if intent_rule is None:
            return False
        return all(rule.entities.get(slot) for slot in intent_rule.required_slots)

    async def _call_model(self, text: str, user_id: str, rule: ClassificationResult,
                          memory: UserMemory) -> Optional[ClassificationResult]:
        """External classification with a timeout; any failure yields no model result"""
        if self.external_classifier is None:
            return None

        hint = self.memory_store.generate_memory_summary(memory)
        if not rule.is_unknown:
            hint = f"{hint}\nRule match: {rule.intent} ({rule.confidence:.2f})".strip()

        self._stats["model_calls"] += 1
        try:
            return await asyncio.wait_for(
                self.external_classifier.classify(text, user_id, hint),
                timeout=self.settings.external_classifier_timeout,
            )
        except asyncio.TimeoutError:
            reason = "timeout"
            logger.warning("External classifier timed out, using rule result only",
                           user_id=user_id, timeout=self.settings.external_classifier_timeout)
        except ExternalClassifierError as e:
            reason = "error"
            logger.warning("External classifier failed, using rule result only", user_id=user_id, error=str(e))
        except Exception as e:
            reason = "unexpected"
            logger.error("External classifier raised unexpectedly", user_id=user_id, error=str(e))

        self._stats["model_failures"] += 1
        record_classifier_failure(reason)
        return None

    async def _write_back(self, user_id: str, decision: Decision):
        """Update short-term context and durable memory; failures are logged only"""
        intent = decision.final_intent
        entities = decision.entities

        try:
            if self.context_store.should_update(intent, entities):
                self.context_store.update(user_id, intent, entities, {
                    "rule_id": decision.rule_id.value,
                    "source": decision.source.value,
                    "confidence": decision.confidence,
                })
        except Exception as e:
            logger.error("Context update failed", user_id=user_id, error=str(e))

        if intent not in self.durable_intents or not entities.get("student") or not entities.get("course"):
            return

        try:
            update = MemoryUpdate(
                student=str(entities["student"]),
                course_name=str(entities["course"]),
                schedule={slot: entities[slot] for slot in SCHEDULE_SLOTS if entities.get(slot) is not None},
                teacher=entities.get("teacher"),
                location=entities.get("location"),
                notes=entities.get("notes"),
            )
            await self.memory_store.update_user_memory(user_id, update)
        except MemoryValidationError as e:
            logger.warning("Memory update rejected", user_id=user_id, intent=intent, errors=e.errors)
        except Exception as e:
            logger.error("Memory update failed", user_id=user_id, intent=intent, error=str(e))

    def stats(self) -> Dict[str, Any]:
        return {
            "orchestrator": dict(self._stats),
            "context": self.context_store.stats(),
            "memory": self.memory_store.stats(),
            "query_router": self.query_router.stats(),
        }

    def cleanup_expired(self) -> Dict[str, int]:
        """Drop expired short-term contexts and memory cache entries"""
        return {
            "contexts": self.context_store.clear_expired(),
            "cache_entries": self.memory_store.cache.purge_expired(),
        }

    async def close(self):
        await self.memory_store.close()


def build_orchestrator(
    settings: Settings,
    document_store: DocumentStore,
    external_classifier: Optional[ExternalClassifier] = None,
    clock: Callable[[], float] = time.time,
    today: Callable[[], date] = date.today,
) -> IntentOrchestrator:
    """Wire every component from configuration"""
    pattern_classifier = PatternClassifier.from_settings(settings, EntityExtractor(today=today))
    memory_store = LongTermMemoryStore(settings, document_store, clock=clock)
    return IntentOrchestrator(
        settings=settings,
        pattern_classifier=pattern_classifier,
        evidence_extractor=EvidenceExtractor(pattern_classifier.ambiguous_terms),
        decision_engine=DecisionEngine(settings),
        context_store=ShortTermContextStore(settings, clock=clock),
        memory_store=memory_store,
        query_router=QueryBypassRouter(ScheduleRepository(memory_store), today=today),
        external_classifier=external_classifier,
    )
