"""Explicit read-only query detection that bypasses the decision engine"""

import re
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Pattern

import structlog

from .models import BypassResult, QueryType, TimeRange
from .pattern_classifier import normalize_text
from .schedule_repository import ScheduleRepository

logger = structlog.get_logger(__name__)

TIME_WORDS = r"(today|tomorrow|this week|next week)"
COURSE_NOUNS = r"(classes|courses|lessons)"
TEACHER_TITLE = r"(?:teacher |mr\.? |mrs\.? |ms\.? |miss |dr\.? )?"

DEFAULT_QUERY_PATTERNS: Dict[QueryType, List[str]] = {
    QueryType.SCHEDULE: [
        r"^what('s| is) on (the |my |our )?schedule\b",
        rf"^{TIME_WORDS}'s (schedule|{COURSE_NOUNS[1:-1]})\b",
        rf"^(show( me)? |what's |what is )?(the |my |our )?schedule (for )?{TIME_WORDS}\b",
        rf"^(show|list|what are)( me)? (the |my |our )?{COURSE_NOUNS} (for |on )?{TIME_WORDS}\b",
        rf"^what {COURSE_NOUNS} (are there |do we have |do i have )?{TIME_WORDS}\b",
    ],
    QueryType.COURSE_LIST: [
        rf"^(list|show)( me)? all (the |my |our )?{COURSE_NOUNS}\b",
        rf"^what {COURSE_NOUNS} do (we|i) have\b",
        r"^(show |list )?(me )?all (my |our )?courses\b",
    ],
    QueryType.TEACHER_COURSES: [
        rf"^(show |list )?(me )?(all )?(the |my |our )?{COURSE_NOUNS} (with|taught by) {TEACHER_TITLE}[a-z]+",
        rf"^(which|what) {COURSE_NOUNS} does {TEACHER_TITLE}[a-z]+ teach\b",
    ],
    QueryType.STUDENT_COURSES: [
        rf"^(show|list|what are)( me)? [a-z]+'s {COURSE_NOUNS}\b",
        rf"^what {COURSE_NOUNS} (does|is) [a-z]+ (have|taking)\b",
    ],
    QueryType.RECENT_ACTIVITIES: [
        r"^(any |show |list )?(me )?(the |my |our )?recent (activities|activity|changes|updates)\b",
        r"^what did (i|we) (add|change|update|record) recently\b",
        r"^what('s| has) changed recently\b",
    ],
}

# Imperative schedule changes never bypass, wherever they appear in the utterance
MUTATING_COMMAND = re.compile(
    r"(?<!did i )(?<!did we )\b(add|book|cancel|change|delete|drop|move|remove|reschedule|skip|update)\b"
)

DETECTION_ORDER = [
    QueryType.SCHEDULE,
    QueryType.COURSE_LIST,
    QueryType.TEACHER_COURSES,
    QueryType.STUDENT_COURSES,
    QueryType.RECENT_ACTIVITIES,
]


class QueryBypassRouter:
    """Answers unambiguous read-only queries straight from the schedule repository"""

    def __init__(self, repository: ScheduleRepository, today: Callable[[], date] = date.today):
        self.repository = repository
        self._today = today
        self.query_patterns: Dict[QueryType, List[Pattern]] = {
            query_type: [re.compile(p) for p in patterns]
            for query_type, patterns in DEFAULT_QUERY_PATTERNS.items()
        }
        self._stats: Dict[str, Any] = {
            "total_queries": 0,
            "bypassed": 0,
            "failures": 0,
            "by_type": {query_type.value: 0 for query_type in DETECTION_ORDER},
        }

    def is_explicit_query(self, text: str) -> bool:
        return self.detect_query_type(text) is not None

    def detect_query_type(self, text: str) -> Optional[QueryType]:
        """First matching query family in fixed priority order"""
        normalized = normalize_text(text)
        if not normalized or MUTATING_COMMAND.search(normalized):
            return None
        for query_type in DETECTION_ORDER:
            if any(p.search(normalized) for p in self.query_patterns[query_type]):
                return query_type
        return None

    def add_query_patterns(self, query_type: QueryType, patterns: List[str]):
        """Extend a query family at runtime"""
        compiled = [re.compile(p) for p in patterns]
        self.query_patterns[QueryType(query_type)].extend(compiled)
        logger.info("Query patterns added", query_type=QueryType(query_type).value, count=len(compiled))

    def parse_time_range(self, text: str) -> TimeRange:
        """today / tomorrow / this week / next week; today when nothing matches"""
        normalized = normalize_text(text)
        today = self._today()
        week_start = today - timedelta(days=today.weekday())

        if "next week" in normalized:
            start = week_start + timedelta(days=7)
            return TimeRange(start=start.isoformat(), end=(start + timedelta(days=6)).isoformat(),
                             description="next week")
        if "this week" in normalized:
            return TimeRange(start=week_start.isoformat(), end=(week_start + timedelta(days=6)).isoformat(),
                             description="this week")
        if "tomorrow" in normalized:
            tomorrow = (today + timedelta(days=1)).isoformat()
            return TimeRange(start=tomorrow, end=tomorrow, description="tomorrow")
        return TimeRange(start=today.isoformat(), end=today.isoformat(), description="today")

    def extract_teacher_name(self, text: str) -> Optional[str]:
        normalized = normalize_text(text)
        for pattern in (
            rf"\b(?:with|taught by) {TEACHER_TITLE}([a-z]+)",
            rf"\bdoes {TEACHER_TITLE}([a-z]+) teach\b",
        ):
            match = re.search(pattern, normalized)
            if match:
                return match.group(1).capitalize()
        return None

    def extract_student_name(self, text: str) -> Optional[str]:
        normalized = normalize_text(text)
        for pattern in (
            rf"\b([a-z]+)'s {COURSE_NOUNS}\b",
            r"\b(?:does|is) ([a-z]+) (?:have|taking)\b",
        ):
            match = re.search(pattern, normalized)
            if match:
                return match.group(1).capitalize()
        return None

    async def execute(self, query_type: QueryType, user_id: str, text: str) -> BypassResult:
        """Run a detected query against the repository"""
        query_type = QueryType(query_type)
        data: Dict[str, Any]

        if query_type == QueryType.SCHEDULE:
            time_range = self.parse_time_range(text)
            courses = await self.repository.get_schedule(user_id, time_range)
            data = {"time_range": time_range.model_dump(), "courses": courses}
        elif query_type == QueryType.COURSE_LIST:
            data = {"courses": await self.repository.get_all_courses(user_id)}
        elif query_type == QueryType.TEACHER_COURSES:
            teacher = self.extract_teacher_name(text)
            if not teacher:
                raise ValueError("No teacher name found in query")
            data = {"teacher": teacher, "courses": await self.repository.get_courses_by_teacher(user_id, teacher)}
        elif query_type == QueryType.STUDENT_COURSES:
            student = self.extract_student_name(text)
            if not student:
                raise ValueError("No student name found in query")
            data = {"student": student, "courses": await self.repository.get_courses_by_student(user_id, student)}
        else:
            data = {"activities": await self.repository.get_recent_activities(user_id)}

        data["count"] = len(data.get("courses", data.get("activities", [])))
        return BypassResult(query_type=query_type, user_id=user_id, data=data)

    async def handle(self, text: str, user_id: str) -> Optional[BypassResult]:
        """Detect and execute an explicit query; None when not applicable or on failure"""
        self._stats["total_queries"] += 1
        query_type = self.detect_query_type(text)
        if query_type is None:
            return None

        try:
            result = await self.execute(query_type, user_id, text)
        except Exception as e:
            self._stats["failures"] += 1
            logger.warning("Query bypass failed, falling through", query_type=query_type.value,
                           user_id=user_id, error=str(e))
            return None

        self._stats["bypassed"] += 1
        self._stats["by_type"][query_type.value] += 1
        logger.info("Query bypassed", query_type=query_type.value, user_id=user_id, count=result.data["count"])
        return result

    def stats(self) -> Dict[str, Any]:
        total = self._stats["total_queries"]
        return {
            **self._stats,
            "by_type": dict(self._stats["by_type"]),
            "bypass_rate": round(self._stats["bypassed"] / total, 4) if total else 0.0,
        }
