"""Long-term per-user memory with priority eviction, fronted by the memory cache"""

import asyncio
import re
import time
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from .config import Settings
from .document_store import DocumentStore
from .entity_extractor import WEEKDAYS
from .exceptions import MemoryStorageError, MemoryValidationError
from .memory_cache import MemoryCache, WriteBehindQueue
from .models import (
    MemoryOperationResult, MemoryRecord, MemoryUpdate, RecentActivity, RecurringPattern,
    ScheduleInfo, StudentMemory, UserMemory, utc_from_timestamp,
)

logger = structlog.get_logger(__name__)

USER_MEMORY_COLLECTION = "user_memory"
MAX_RECENT_ACTIVITIES = 10
RECURRING_VALUES = ("once", "daily", "weekly", "monthly")
TIME_FORMAT = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

FREQUENCY_WEIGHT = 4
RECENCY_WEIGHT = 3
RECENCY_WINDOW_DAYS = 10
RECURRING_BONUS = 8


def calculate_record_priority(record: MemoryRecord, now: datetime) -> float:
    """Eviction priority; the lowest scores are dropped first"""
    days = max(0, int((now - record.last_mentioned).total_seconds() // 86400))
    priority = record.frequency * FREQUENCY_WEIGHT
    priority += max(0, RECENCY_WINDOW_DAYS - days) * RECENCY_WEIGHT
    if record.schedule.is_recurring:
        priority += RECURRING_BONUS

    completeness = [
        record.teacher,
        record.location,
        record.schedule.time,
        record.schedule.date or record.schedule.day_of_week is not None,
    ]
    priority += sum(1 for field in completeness if field)
    return priority


def recurring_pattern_confidence(record: MemoryRecord) -> float:
    confidence = 0.5
    if record.frequency >= 5:
        confidence += 0.3
    elif record.frequency >= 3:
        confidence += 0.2
    elif record.frequency >= 2:
        confidence += 0.1
    if record.schedule.time and record.schedule.day_of_week is not None:
        confidence += 0.2
    return round(min(confidence, 1.0), 4)


def validate_update(update: MemoryUpdate):
    """Raise MemoryValidationError listing every problem with an update"""
    errors: List[str] = []
    if not update.student:
        errors.append("student is required")
    if not update.course_name:
        errors.append("course_name is required")

    schedule = update.schedule or {}
    time_value = schedule.get("time")
    if time_value is not None and not TIME_FORMAT.match(str(time_value)):
        errors.append(f"invalid time format: {time_value!r}, expected HH:MM")

    date_value = schedule.get("date")
    if date_value is not None:
        try:
            date.fromisoformat(str(date_value))
        except ValueError:
            errors.append(f"invalid date format: {date_value!r}, expected YYYY-MM-DD")

    recurring = schedule.get("recurring")
    if recurring is not None and recurring not in RECURRING_VALUES:
        errors.append(f"invalid recurring value: {recurring!r}")

    day_of_week = schedule.get("day_of_week")
    if day_of_week is not None and (not isinstance(day_of_week, int) or isinstance(day_of_week, bool)
                                    or not 0 <= day_of_week <= 6):
        errors.append(f"invalid day_of_week: {day_of_week!r}, expected 0..6")

    if errors:
        raise MemoryValidationError(errors)


def create_empty_memory(user_id: str) -> UserMemory:
    return UserMemory(user_id=user_id)


class LongTermMemoryStore:
    """Bounded per-user course memory persisted as one document per user"""

    def __init__(
        self,
        settings: Settings,
        document_store: DocumentStore,
        cache: Optional[MemoryCache] = None,
        write_queue: Optional[WriteBehindQueue] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.document_store = document_store
        self.max_records = settings.max_records
        self._clock = clock
        self.cache = cache or MemoryCache(
            capacity=settings.lru_cache_size,
            ttl=settings.cache_ttl,
            max_bytes=settings.max_cache_bytes,
            clock=clock,
        )
        if write_queue is None and settings.batch_update_enabled:
            write_queue = WriteBehindQueue(
                self._persist,
                interval=settings.batch_update_interval,
                max_delay=settings.batch_max_delay,
                clock=clock,
            )
        self.write_queue = write_queue
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._stats = {"reads": 0, "storage_reads": 0, "writes": 0, "storage_errors": 0, "validation_errors": 0}

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        """Per-user update lock, dropped once no holder or waiter remains"""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]

    def _now(self) -> datetime:
        return utc_from_timestamp(self._clock())

    async def load_user_memory(self, user_id: str) -> UserMemory:
        """
        Cached read that raises MemoryStorageError when storage cannot be read
        or holds a malformed document. A missing document is an empty memory.
        """
        self._stats["reads"] += 1

        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        # A snapshot still waiting in the write-behind queue is newer than storage
        if self.write_queue is not None:
            pending = self.write_queue.get_pending(user_id)
            if pending is not None:
                self.cache.put(user_id, pending)
                return pending

        self._stats["storage_reads"] += 1
        try:
            document = await self.document_store.get(USER_MEMORY_COLLECTION, user_id)
            memory = UserMemory.model_validate(document) if document else create_empty_memory(user_id)
        except ValidationError as e:
            self._stats["storage_errors"] += 1
            raise MemoryStorageError(f"Stored memory for {user_id} is malformed: {e}") from e
        except MemoryStorageError:
            self._stats["storage_errors"] += 1
            raise
        except Exception as e:
            self._stats["storage_errors"] += 1
            raise MemoryStorageError(f"Failed to load memory for {user_id}: {e}") from e

        self.cache.put(user_id, memory)
        return memory

    async def get_user_memory(self, user_id: str) -> UserMemory:
        """Cached read; storage failures degrade to an empty, uncached memory"""
        try:
            return await self.load_user_memory(user_id)
        except MemoryStorageError as e:
            logger.error("Failed to load user memory, using empty memory", user_id=user_id, error=str(e))
            return create_empty_memory(user_id)

    async def update_user_memory(self, user_id: str, update: MemoryUpdate) -> MemoryOperationResult:
        """Validate, merge or insert a course record, evict, then persist"""
        try:
            validate_update(update)
        except MemoryValidationError:
            self._stats["validation_errors"] += 1
            raise

        async with self._user_lock(user_id):
            try:
                memory = await self.load_user_memory(user_id)
            except MemoryStorageError as e:
                logger.error("Memory update aborted, stored memory unreadable", user_id=user_id,
                             course=update.course_name, error=str(e))
                raise
            now = self._now()

            student_name = self._match_student(memory, update.student)
            student = memory.students.setdefault(student_name, StudentMemory())
            record, method = self._merge_record(student, update, now)

            memory.recent_activities = ([
                RecentActivity(
                    activity_id=uuid.uuid4().hex,
                    activity_type="modify" if method == "merge" else "create",
                    student=student_name,
                    course_name=record.course_name,
                    timestamp=now,
                    metadata={"frequency": record.frequency},
                )
            ] + memory.recent_activities)[:MAX_RECENT_ACTIVITIES]

            evicted = self._enforce_capacity(memory, now)
            memory.recurring_patterns = self._build_recurring_patterns(memory, now)
            memory.last_updated = now

            self.cache.put(user_id, memory)
            persisted = await self._schedule_persist(user_id, memory)
            self._stats["writes"] += 1

        logger.info("User memory updated", user_id=user_id, student=student_name,
                    course=record.course_name, method=method, evicted=evicted,
                    record_count=memory.total_records)

        return MemoryOperationResult(
            success=True,
            record_count=memory.total_records,
            method=method,
            persisted=persisted,
            evicted=evicted,
        )

    @staticmethod
    def _match_student(memory: UserMemory, name: str) -> str:
        for existing in memory.students:
            if existing.lower() == name.lower():
                return existing
        return name

    def _merge_record(self, student: StudentMemory, update: MemoryUpdate, now: datetime) -> Tuple[MemoryRecord, str]:
        schedule_fields = {k: v for k, v in (update.schedule or {}).items() if v is not None}
        attributes = {
            k: v for k, v in {"teacher": update.teacher, "location": update.location, "notes": update.notes}.items()
            if v is not None
        }

        for index, existing in enumerate(student.courses):
            if existing.course_name.lower() == update.course_name.lower():
                merged = existing.model_copy(update={
                    "schedule": existing.schedule.model_copy(update=schedule_fields),
                    "frequency": existing.frequency + 1,
                    "last_mentioned": now,
                    **attributes,
                })
                student.courses[index] = merged
                return merged, "merge"

        record = MemoryRecord(
            course_name=update.course_name,
            schedule=ScheduleInfo(**schedule_fields),
            frequency=1,
            last_mentioned=now,
            **attributes,
        )
        student.courses.append(record)
        return record, "insert"

    def _enforce_capacity(self, memory: UserMemory, now: datetime) -> int:
        """Drop the lowest-priority records until within max_records"""
        overflow = memory.total_records - self.max_records
        if overflow <= 0:
            return 0

        ranked = sorted(
            ((calculate_record_priority(record, now), record.last_mentioned, name, record.course_name)
             for name, student in memory.students.items() for record in student.courses),
            key=lambda item: (item[0], item[1]),
        )
        victims = {(name, course) for _, _, name, course in ranked[:overflow]}

        for name in list(memory.students):
            student = memory.students[name]
            student.courses = [r for r in student.courses if (name, r.course_name) not in victims]
            if not student.courses and not student.preferences:
                del memory.students[name]

        logger.info("Memory records evicted", user_id=memory.user_id, evicted=overflow,
                    victims=sorted(course for _, course in victims))
        return overflow

    def _build_recurring_patterns(self, memory: UserMemory, now: datetime) -> List[RecurringPattern]:
        previous = {p.pattern_id: p for p in memory.recurring_patterns}
        patterns = []
        for name, student in memory.students.items():
            for record in student.courses:
                if not record.schedule.is_recurring:
                    continue
                pattern_id = f"{name}:{record.course_name}".lower()
                existing = previous.get(pattern_id)
                patterns.append(RecurringPattern(
                    pattern_id=pattern_id,
                    student=name,
                    course_name=record.course_name,
                    pattern_type=record.schedule.recurring,
                    day_of_week=record.schedule.day_of_week,
                    time=record.schedule.time,
                    confidence=recurring_pattern_confidence(record),
                    created_at=existing.created_at if existing else now,
                ))
        return patterns

    async def _schedule_persist(self, user_id: str, memory: UserMemory) -> bool:
        if self.write_queue is not None:
            self.write_queue.schedule(user_id, memory)
            return False
        try:
            await self._persist(user_id, memory)
            return True
        except Exception as e:
            self._stats["storage_errors"] += 1
            logger.error("Failed to persist user memory", user_id=user_id, error=str(e))
            return False

    async def _persist(self, user_id: str, memory: UserMemory):
        await self.document_store.create(USER_MEMORY_COLLECTION, user_id, memory.model_dump(mode="json"))

    @staticmethod
    def student_names(memory: UserMemory) -> List[str]:
        return list(memory.students)

    @staticmethod
    def course_names(memory: UserMemory, student: Optional[str] = None) -> List[str]:
        names: List[str] = []
        for name, student_memory in memory.students.items():
            if student and name.lower() != student.lower():
                continue
            for record in student_memory.courses:
                if record.course_name not in names:
                    names.append(record.course_name)
        return names

    def generate_memory_summary(self, memory: UserMemory) -> str:
        """Compact text description of a user's memory, used as a classifier hint"""
        if not memory.students:
            return ""

        lines = []
        for name, student in memory.students.items():
            courses = []
            for record in sorted(student.courses, key=lambda r: r.frequency, reverse=True):
                details = []
                if record.schedule.is_recurring:
                    details.append(record.schedule.recurring)
                if record.schedule.day_of_week is not None:
                    details.append(WEEKDAYS[record.schedule.day_of_week].capitalize())
                if record.schedule.date:
                    details.append(record.schedule.date)
                if record.schedule.time:
                    details.append(record.schedule.time)
                if record.teacher:
                    details.append(f"teacher {record.teacher}")
                if record.location:
                    details.append(f"at {record.location}")
                details.append(f"mentioned {record.frequency}x")
                courses.append(f"{record.course_name} ({', '.join(details)})")
            if courses:
                lines.append(f"{name}: {'; '.join(courses)}")

        if memory.recent_activities:
            recent = memory.recent_activities[:3]
            lines.append("Recent: " + "; ".join(
                f"{a.activity_type} {a.course_name} for {a.student}" for a in recent))

        return "\n".join(lines)

    async def flush(self) -> Dict[str, Any]:
        """Write out every pending batched snapshot"""
        if self.write_queue is None:
            return {"flushed": 0, "failed": 0, "errors": {}}
        return await self.write_queue.flush_all()

    async def close(self):
        report = await self.flush()
        logger.info("Long-term memory store closed", **{k: v for k, v in report.items() if k != "errors"})

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "max_records": self.max_records,
            "cache": self.cache.stats(),
            "write_queue": self.write_queue.stats() if self.write_queue is not None else None,
        }
