"""Short-term per-user conversation context with lazy TTL expiry"""

import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

import structlog

from .config import Settings
from .models import ShortTermContext

logger = structlog.get_logger(__name__)

SALIENT_ENTITIES = ("course", "student", "teacher")
MAX_INTENT_HISTORY = 10
MAX_RECENT_ENTITIES = 5


def _push_recent(values: List[str], value: Optional[str], limit: int) -> List[str]:
    if not value:
        return list(values)
    return ([value] + [v for v in values if v != value])[:limit]


class ShortTermContextStore:
    """Holds the last resolved intent and entities per user"""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.ttl = settings.context_ttl
        self.trigger_intents = set(settings.context_trigger_intents)
        self._clock = clock
        self._contexts: Dict[str, ShortTermContext] = {}

    def get(self, user_id: str) -> Optional[ShortTermContext]:
        """Return the context for a user, or None if absent or expired"""
        context = self._contexts.get(user_id)
        if context is None:
            return None
        if self._clock() > context.expires_at:
            del self._contexts[user_id]
            logger.debug("Context expired", user_id=user_id)
            return None
        return context

    def should_update(self, intent: str, entities: Optional[Dict[str, Any]]) -> bool:
        if intent not in self.trigger_intents:
            return False
        entities = entities or {}
        return any(entities.get(key) for key in SALIENT_ENTITIES)

    def update(self, user_id: str, intent: str, entities: Dict[str, Any],
               result: Optional[Dict[str, Any]] = None) -> ShortTermContext:
        """Replace the user's context, carrying forward salient fields the new entities omit"""
        previous = self.get(user_id)
        now = self._clock()

        def pick(key: str, field: str) -> Optional[str]:
            value = entities.get(key)
            if value:
                return str(value)
            return getattr(previous, field) if previous else None

        course = pick("course", "last_course")
        student = pick("student", "last_student")

        context = ShortTermContext(
            user_id=user_id,
            last_intent=intent,
            last_course=course,
            last_student=student,
            last_teacher=pick("teacher", "last_teacher"),
            last_time=entities.get("time") or None,
            last_date=entities.get("date") or None,
            last_location=pick("location", "last_location"),
            timestamp=now,
            expires_at=now + self.ttl,
            intent_history=([intent] + (previous.intent_history if previous else []))[:MAX_INTENT_HISTORY],
            recent_courses=_push_recent(previous.recent_courses if previous else [], entities.get("course"),
                                        MAX_RECENT_ENTITIES),
            recent_students=_push_recent(previous.recent_students if previous else [], entities.get("student"),
                                         MAX_RECENT_ENTITIES),
            interaction_count=(previous.interaction_count + 1) if previous else 1,
            execution_result=result,
        )
        self._contexts[user_id] = context

        logger.debug("Context updated", user_id=user_id, intent=intent,
                     course=context.last_course, student=context.last_student)
        return context

    def clear(self, user_id: str) -> bool:
        return self._contexts.pop(user_id, None) is not None

    def clear_expired(self) -> int:
        """Drop every expired context, returning how many were removed"""
        now = self._clock()
        expired = [user_id for user_id, ctx in self._contexts.items() if now > ctx.expires_at]
        for user_id in expired:
            del self._contexts[user_id]
        if expired:
            logger.info("Expired contexts cleared", count=len(expired))
        return len(expired)

    def predict_next_intent(self, user_id: str, current_intent: str) -> Optional[Dict[str, Any]]:
        """Most frequent follow-up of current_intent in the user's recent history"""
        context = self.get(user_id)
        if context is None or len(context.intent_history) < 2:
            return None

        # History is newest first, so the follow-up sits one index earlier
        history = context.intent_history
        transitions = Counter(
            history[i - 1] for i in range(1, len(history)) if history[i] == current_intent
        )
        if not transitions:
            return None

        intent, count = transitions.most_common(1)[0]
        return {
            "intent": intent,
            "confidence": round(count / sum(transitions.values()), 4),
            "observations": sum(transitions.values()),
        }

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        active = sum(1 for ctx in self._contexts.values() if now <= ctx.expires_at)
        return {
            "total_contexts": len(self._contexts),
            "active_contexts": active,
            "expired_contexts": len(self._contexts) - active,
            "ttl_seconds": self.ttl,
        }
