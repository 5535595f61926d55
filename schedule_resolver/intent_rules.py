"""Intent rule table for the deterministic pattern classifier"""

import json
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from .exceptions import RuleTableError

logger = structlog.get_logger(__name__)


class IntentRule(BaseModel):
    """One keyword/regex rule mapping text onto an intent"""
    model_config = ConfigDict(frozen=True)

    intent: str
    keywords: List[str] = []
    exclusions: List[str] = []
    required_keywords: List[str] = []
    patterns: List[str] = []
    priority: int = 1
    ambiguous_terms: List[str] = []
    temporal_aware: bool = False
    required_slots: List[str] = []


COURSE_WORDS = ["course", "class", "lesson"]

DEFAULT_RULES: List[IntentRule] = [
    IntentRule(
        intent="cancel_course",
        keywords=["cancel", "delete", "remove", "drop", "skip", "call off"] + COURSE_WORDS,
        required_keywords=["cancel", "delete", "remove", "drop", "skip", "call off"],
        exclusions=["reminder"],
        patterns=[r"\b(cancel|delete|remove|drop|skip)\b.*\b(course|class|lesson)s?\b"],
        priority=3,
        required_slots=["student", "course"],
    ),
    IntentRule(
        intent="modify_course",
        keywords=["change", "move", "reschedule", "update", "modify", "switch", "postpone"] + COURSE_WORDS,
        required_keywords=["change", "move", "reschedule", "update", "modify", "switch", "postpone"],
        exclusions=["cancel", "reminder"],
        patterns=[r"\b(change|move|reschedule|switch|postpone)\b.*\b(to|from)\b"],
        priority=3,
        ambiguous_terms=["change", "move"],
        required_slots=["student", "course"],
    ),
    IntentRule(
        intent="add_course",
        keywords=["add", "new", "book", "enroll", "register", "sign up", "set up", "every"] + COURSE_WORDS,
        required_keywords=["add", "new", "book", "enroll", "register", "sign up", "set up"],
        exclusions=["cancel", "delete", "remove", "reschedule", "how was", "what did"],
        patterns=[r"\b(add|book|enroll|register|set up)\b.*\b(course|class|lesson)s?\b"],
        priority=2,
        ambiguous_terms=["book"],
        temporal_aware=True,
        required_slots=["student", "course"],
    ),
    IntentRule(
        intent="record_lesson_content",
        keywords=["learned", "covered", "practiced", "worked on", "record", "notes"] + COURSE_WORDS,
        required_keywords=["learned", "covered", "practiced", "worked on", "record", "notes"],
        exclusions=["homework", "what did"],
        patterns=[r"\b(learned|covered|practiced|worked on)\b"],
        priority=2,
        required_slots=["student", "course"],
    ),
    IntentRule(
        intent="record_homework",
        keywords=["homework", "assignment", "assigned", "worksheet", "due"],
        required_keywords=["homework", "assignment", "worksheet"],
        patterns=[r"\b(homework|assignment)\b.*\bdue\b"],
        priority=2,
        required_slots=["course"],
    ),
    IntentRule(
        intent="set_reminder",
        keywords=["remind", "reminder", "alert", "notify", "before"],
        required_keywords=["remind", "reminder", "alert", "notify"],
        patterns=[r"\bremind me\b", r"\b\d+\s*(minutes?|hours?)\s+before\b"],
        priority=2,
        temporal_aware=True,
        required_slots=["course"],
    ),
    IntentRule(
        intent="query_course_content",
        keywords=["what did", "how was", "how did", "learn", "content"] + COURSE_WORDS,
        required_keywords=["what did", "how was", "how did"],
        patterns=[r"^(what|how) (did|was)\b"],
        priority=1,
        temporal_aware=True,
        required_slots=["course"],
    ),
    IntentRule(
        intent="query_schedule",
        keywords=["when", "what time", "schedule", "calendar", "next", "classes", "courses"],
        required_keywords=["when", "what time", "schedule", "calendar"],
        exclusions=["add", "cancel", "reschedule", "remind"],
        patterns=[r"\bwhen is\b", r"\bwhat time\b"],
        priority=1,
        temporal_aware=True,
    ),
]


def load_rules(path: Optional[str] = None) -> List[IntentRule]:
    """Load the rule table from a JSON file, or return the built-in defaults"""
    if not path:
        return list(DEFAULT_RULES)

    try:
        raw = Path(path).read_text(encoding="utf-8")
        rules = TypeAdapter(List[IntentRule]).validate_python(json.loads(raw))
    except (OSError, ValueError, ValidationError) as e:
        raise RuleTableError(f"Failed to load intent rules from {path}: {e}") from e

    logger.info("Intent rules loaded", path=path, count=len(rules))
    return rules
