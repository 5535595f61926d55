"""Regex slot extraction for scheduling utterances"""

import re
from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

KNOWN_COURSES = [
    "math", "english", "piano", "violin", "guitar", "swimming", "art", "drawing",
    "science", "music", "chinese", "ballet", "dance", "soccer", "tennis", "chess",
    "coding", "reading", "writing", "spanish", "french",
]

NAME_STOPWORDS = {
    "i", "what", "when", "how", "who", "did", "does", "do", "is", "was", "will", "can",
    "please", "cancel", "add", "book", "remind", "show", "list", "the", "my", "her", "his",
    "today", "tomorrow", "yesterday", "teacher", "mr", "mrs", "ms", "miss", "dr",
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december",
} | set(WEEKDAYS)

COURSE_STOPWORDS = {
    "a", "an", "the", "my", "her", "his", "their", "this", "that", "next", "last", "every",
    "new", "each", "one", "first", "today's", "tomorrow's", "weekly", "daily", "add", "cancel",
    "book", "remove", "drop", "skip", "move", "change", "all", "our", "your",
}

# Aliases emitted by external classifiers, mapped onto slot names
ENTITY_ALIASES = {
    "courseName": "course",
    "course_name": "course",
    "courseTitle": "course",
    "studentName": "student",
    "student_name": "student",
    "child": "student",
    "teacherName": "teacher",
    "teacher_name": "teacher",
    "dayOfWeek": "day_of_week",
    "recurrence": "recurring",
}


class EntityExtractor:
    """Slot extraction with regex patterns"""

    def __init__(self, today: Callable[[], date] = date.today):
        self._today = today

        # Slot patterns, evaluated in order; first hit wins per slot
        self.custom_patterns = {
            "course": [
                r"\b([A-Za-z][A-Za-z']*)\s+(?:course|class|lesson)s?\b",
            ],
            "student": [
                r"\bfor\s+([A-Z][a-z]+)\b",
                r"\b([A-Z][a-z]+)'s\b",
                r"\b(?:did|does|is|has|will|was)\s+([A-Z][a-z]+)\b",
                r"^([A-Z][a-z]+)\s+(?:has|had|learned|practiced|covered|worked|will|is|was)\b",
            ],
            "teacher": [
                r"\b((?:Mr|Mrs|Ms|Miss|Dr)\.?\s+[A-Z][a-z]+)\b",
                r"\bteacher\s+([A-Z][a-z]+)\b",
                r"\bwith\s+([A-Z][a-z]+)\b",
            ],
            "time": [
                r"\b(\d{1,2})(?::([0-5]\d))?\s*(am|pm)\b",
                r"\b([01]?\d|2[0-3]):([0-5]\d)\b",
            ],
            "location": [
                r"\b(?:at|in)\s+(?:the\s+)?((?:[\w']+\s+){0,3}(?:room|center|centre|school|studio|hall|gym|pool|library|academy)(?:\s+\d+)?)\b",
            ],
            "notes": [
                r"\b(?:learned|covered|practiced|worked on)\s+(.+?)(?:[.!?]|$)",
            ],
        }

    def extract(self, text: str) -> Dict[str, Any]:
        """Extract scheduling slots from text"""
        slots: Dict[str, Any] = {}
        if not text or not text.strip():
            return slots

        course = self._extract_course(text)
        if course:
            slots["course"] = course

        student = self._extract_name(text, "student")
        if student:
            slots["student"] = student

        teacher = self._extract_name(text, "teacher")
        if teacher and teacher != student:
            slots["teacher"] = teacher

        time_value = self._extract_time(text)
        if time_value:
            slots["time"] = time_value

        date_value = self._extract_date(text)
        if date_value:
            slots["date"] = date_value

        day_of_week = self._extract_day_of_week(text)
        if day_of_week is not None:
            slots["day_of_week"] = day_of_week

        recurring = self._extract_recurring(text)
        if recurring:
            slots["recurring"] = recurring

        for slot in ("location", "notes"):
            match = self._first_match(slot, text, re.IGNORECASE)
            if match:
                slots[slot] = match.group(1).strip()

        return slots

    def _first_match(self, slot: str, text: str, flags: int = 0) -> Optional[re.Match]:
        for pattern in self.custom_patterns[slot]:
            match = re.search(pattern, text, flags)
            if match:
                return match
        return None

    def _extract_course(self, text: str) -> Optional[str]:
        for match in re.finditer(self.custom_patterns["course"][0], text, re.IGNORECASE):
            word = match.group(1).lower()
            if word not in COURSE_STOPWORDS and not word.endswith("'s"):
                return word

        lowered = text.lower()
        for course in KNOWN_COURSES:
            if re.search(rf"\b{course}\b", lowered):
                return course
        return None

    def _extract_name(self, text: str, slot: str) -> Optional[str]:
        for pattern in self.custom_patterns[slot]:
            for match in re.finditer(pattern, text):
                name = match.group(1)
                if name.split()[0].rstrip(".").lower() in NAME_STOPWORDS and slot == "student":
                    continue
                if slot == "teacher" and name.lower() in NAME_STOPWORDS:
                    continue
                return name
        return None

    def _extract_time(self, text: str) -> Optional[str]:
        """Normalize the first clock time to 24-hour HH:MM"""
        match = re.search(self.custom_patterns["time"][0], text, re.IGNORECASE)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2) or 0)
            if not 1 <= hour <= 12:
                return None
            meridiem = match.group(3).lower()
            if meridiem == "pm" and hour != 12:
                hour += 12
            elif meridiem == "am" and hour == 12:
                hour = 0
            return f"{hour:02d}:{minute:02d}"

        match = re.search(self.custom_patterns["time"][1], text)
        if match:
            return f"{int(match.group(1)):02d}:{match.group(2)}"
        return None

    def _extract_date(self, text: str) -> Optional[str]:
        match = re.search(r"\b(\d{4}-\d{2}-\d{2})\b", text)
        if match:
            return match.group(1)

        lowered = text.lower()
        today = self._today()
        if re.search(r"\bday after tomorrow\b", lowered):
            return (today + timedelta(days=2)).isoformat()
        if re.search(r"\btomorrow\b", lowered):
            return (today + timedelta(days=1)).isoformat()
        if re.search(r"\btoday\b|\btonight\b", lowered):
            return today.isoformat()
        if re.search(r"\bday before yesterday\b", lowered):
            return (today - timedelta(days=2)).isoformat()
        if re.search(r"\byesterday\b", lowered):
            return (today - timedelta(days=1)).isoformat()
        return None

    def _extract_day_of_week(self, text: str) -> Optional[int]:
        """Weekday index, Monday is 0"""
        lowered = text.lower()
        for index, day in enumerate(WEEKDAYS):
            if re.search(rf"\b{day}s?\b", lowered):
                return index
        return None

    def _extract_recurring(self, text: str) -> Optional[str]:
        lowered = text.lower()
        if re.search(r"\b(every day|daily)\b", lowered):
            return "daily"
        if re.search(r"\b(every month|monthly)\b", lowered):
            return "monthly"
        if re.search(r"\b(every week|weekly)\b", lowered):
            return "weekly"
        if re.search(rf"\bevery\s+({'|'.join(WEEKDAYS)})\b", lowered):
            return "weekly"
        if re.search(rf"\b({'|'.join(WEEKDAYS)})s\b", lowered):
            return "weekly"
        return None


def normalize_entities(entities: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Rename classifier entity keys onto slot names and drop empty values"""
    normalized: Dict[str, Any] = {}
    for key, value in (entities or {}).items():
        if value is None or value == "" or value == [] or value == {}:
            continue
        slot = ENTITY_ALIASES.get(key, key)
        # Canonical keys win over aliases
        if slot in normalized and key != slot:
            continue
        normalized[slot] = value
    return normalized
