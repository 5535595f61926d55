"""Read-only schedule queries over stored user memory"""

from datetime import date, timedelta
from typing import Any, Dict, Iterator, List, Tuple

import structlog

from .memory_store import LongTermMemoryStore
from .models import MemoryRecord, TimeRange

logger = structlog.get_logger(__name__)


def _date_range(time_range: TimeRange) -> Iterator[date]:
    current = date.fromisoformat(time_range.start)
    end = date.fromisoformat(time_range.end)
    while current <= end:
        yield current
        current += timedelta(days=1)


def _occurrences(record: MemoryRecord, time_range: TimeRange) -> List[str]:
    """Dates within the range on which a course takes place"""
    schedule = record.schedule
    days = list(_date_range(time_range))

    if schedule.recurring == "daily":
        return [d.isoformat() for d in days]
    if schedule.recurring == "weekly" and schedule.day_of_week is not None:
        return [d.isoformat() for d in days if d.weekday() == schedule.day_of_week]
    if schedule.recurring == "monthly" and schedule.date:
        day_of_month = date.fromisoformat(schedule.date).day
        return [d.isoformat() for d in days if d.day == day_of_month]
    if schedule.date and time_range.start <= schedule.date <= time_range.end:
        return [schedule.date]
    return []


def _course_entry(student: str, record: MemoryRecord) -> Dict[str, Any]:
    return {
        "student": student,
        "course_name": record.course_name,
        "teacher": record.teacher,
        "location": record.location,
        "time": record.schedule.time,
        "date": record.schedule.date,
        "day_of_week": record.schedule.day_of_week,
        "recurring": record.schedule.recurring,
    }


class ScheduleRepository:
    """
    Query collaborator for the bypass router. Reads go through the long-term
    memory store so cached and batched, not yet persisted, updates are visible.
    Storage failures propagate as MemoryStorageError.
    """

    def __init__(self, memory_store: LongTermMemoryStore):
        self.memory_store = memory_store

    async def _records(self, user_id: str) -> List[Tuple[str, MemoryRecord]]:
        memory = await self.memory_store.load_user_memory(user_id)
        return [(name, record) for name, student in memory.students.items() for record in student.courses]

    async def get_schedule(self, user_id: str, time_range: TimeRange) -> List[Dict[str, Any]]:
        entries = []
        for student, record in await self._records(user_id):
            for occurrence in _occurrences(record, time_range):
                entry = _course_entry(student, record)
                entry["date"] = occurrence
                entries.append(entry)
        return sorted(entries, key=lambda e: (e["date"], e["time"] or ""))

    async def get_all_courses(self, user_id: str) -> List[Dict[str, Any]]:
        return [_course_entry(student, record) for student, record in await self._records(user_id)]

    async def get_courses_by_teacher(self, user_id: str, teacher: str) -> List[Dict[str, Any]]:
        wanted = teacher.lower()
        return [
            _course_entry(student, record)
            for student, record in await self._records(user_id)
            if record.teacher and wanted in record.teacher.lower()
        ]

    async def get_courses_by_student(self, user_id: str, student: str) -> List[Dict[str, Any]]:
        return [
            _course_entry(name, record)
            for name, record in await self._records(user_id)
            if name.lower() == student.lower()
        ]

    async def get_recent_activities(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        memory = await self.memory_store.load_user_memory(user_id)
        return [activity.model_dump(mode="json") for activity in memory.recent_activities[:limit]]
