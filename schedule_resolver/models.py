"""Data models for the schedule intent resolver"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any, FrozenSet
from datetime import datetime, timezone
from enum import Enum


def utc_from_timestamp(ts: float) -> datetime:
    """Convert an epoch timestamp to an aware UTC datetime"""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class DecisionSource(str, Enum):
    """Which signal produced the final intent"""
    RULE = "rule"
    MODEL = "model"
    FALLBACK = "fallback"


class RuleId(str, Enum):
    """Cascade step that terminated a decision"""
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"
    P5 = "P5"
    FALLBACK = "FALLBACK"


class QueryType(str, Enum):
    """Explicit read-only query categories, in detection priority order"""
    SCHEDULE = "schedule"
    COURSE_LIST = "course_list"
    TEACHER_COURSES = "teacher_courses"
    STUDENT_COURSES = "student_courses"
    RECENT_ACTIVITIES = "recent_activities"


class ClassificationResult(BaseModel):
    """Intent guess from the rule matcher or the external classifier"""
    model_config = ConfigDict(frozen=True)

    intent: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    entities: Dict[str, Any] = {}
    source: str = "rule"
    temporal_blind: bool = False
    reasoning_steps: int = 0

    @classmethod
    def unknown(cls, source: str = "rule") -> "ClassificationResult":
        return cls(intent="unknown", confidence=0.0, entities={}, source=source)

    @property
    def is_unknown(self) -> bool:
        return self.intent == "unknown"


class EvidenceProfile(BaseModel):
    """Textual signals used to arbitrate between rule and model results"""
    model_config = ConfigDict(frozen=True)

    temporal_clues: FrozenSet[str] = frozenset()
    mood_markers: FrozenSet[str] = frozenset()
    question_markers: FrozenSet[str] = frozenset()
    ambiguous_terms: FrozenSet[str] = frozenset()

    @property
    def has_mood_or_question(self) -> bool:
        return bool(self.mood_markers or self.question_markers)


class Decision(BaseModel):
    """Terminal output of one resolution cycle"""
    final_intent: str
    source: DecisionSource
    rule_id: RuleId
    confidence: float
    entities: Dict[str, Any] = {}
    reason: str
    suggestion: Optional[str] = None
    decision_path: List[str] = []


class ShortTermContext(BaseModel):
    """Last resolved intent and salient entities for one user"""
    user_id: str
    last_intent: str
    last_course: Optional[str] = None
    last_student: Optional[str] = None
    last_teacher: Optional[str] = None
    last_time: Optional[str] = None
    last_date: Optional[str] = None
    last_location: Optional[str] = None
    timestamp: float
    expires_at: float
    intent_history: List[str] = []
    recent_courses: List[str] = []
    recent_students: List[str] = []
    interaction_count: int = 1
    execution_result: Optional[Dict[str, Any]] = None

    @property
    def last_entities(self) -> Dict[str, Any]:
        entities = {
            "course": self.last_course,
            "student": self.last_student,
            "teacher": self.last_teacher,
            "time": self.last_time,
            "date": self.last_date,
            "location": self.last_location,
        }
        return {k: v for k, v in entities.items() if v}


class ScheduleInfo(BaseModel):
    """When a course takes place"""
    date: Optional[str] = None
    time: Optional[str] = None
    recurring: str = "once"
    day_of_week: Optional[int] = None
    description: Optional[str] = None

    @property
    def is_recurring(self) -> bool:
        return self.recurring != "once"


class MemoryRecord(BaseModel):
    """One remembered course for one student"""
    course_name: str
    schedule: ScheduleInfo = Field(default_factory=ScheduleInfo)
    teacher: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    frequency: int = Field(default=1, ge=1)
    last_mentioned: datetime


class StudentMemory(BaseModel):
    """Courses and preferences remembered for one student"""
    courses: List[MemoryRecord] = []
    preferences: Dict[str, Any] = {}


class RecentActivity(BaseModel):
    """Create or modify event recorded on the memory blob"""
    activity_id: str
    activity_type: str
    student: str
    course_name: str
    timestamp: datetime
    metadata: Dict[str, Any] = {}


class RecurringPattern(BaseModel):
    """A course that repeats on a fixed cadence"""
    pattern_id: str
    student: str
    course_name: str
    pattern_type: str
    day_of_week: Optional[int] = None
    time: Optional[str] = None
    confidence: float
    created_at: datetime


class UserMemory(BaseModel):
    """Durable per-user memory blob"""
    user_id: str
    students: Dict[str, StudentMemory] = {}
    recent_activities: List[RecentActivity] = []
    recurring_patterns: List[RecurringPattern] = []
    last_updated: Optional[datetime] = None

    @property
    def total_records(self) -> int:
        return sum(len(student.courses) for student in self.students.values())


class MemoryUpdate(BaseModel):
    """Fields extracted from a resolved utterance that feed long-term memory"""
    student: Optional[str] = None
    course_name: Optional[str] = None
    schedule: Dict[str, Any] = {}
    teacher: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class MemoryOperationResult(BaseModel):
    """Outcome of a long-term memory update"""
    success: bool
    record_count: int
    method: str
    persisted: bool = False
    evicted: int = 0


class TimeRange(BaseModel):
    """Inclusive date range parsed from a query"""
    start: str
    end: str
    description: str


class BypassResult(BaseModel):
    """Answer to an explicit read-only query that skipped the decision engine"""
    bypass: bool = True
    query_type: QueryType
    user_id: str
    data: Dict[str, Any] = {}


class ResolveRequest(BaseModel):
    """Utterance resolution request"""
    text: str
    user_id: str


class ResolutionResult(BaseModel):
    """Orchestrator output for one utterance"""
    user_id: str
    text: str
    bypass: bool = False
    decision: Optional[Decision] = None
    query: Optional[BypassResult] = None
    predicted_next_intent: Optional[Dict[str, Any]] = None
    execution_time_ms: float = 0.0
