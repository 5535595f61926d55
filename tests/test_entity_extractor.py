"""
Unit tests for slot extraction and entity key normalization
"""

from schedule_resolver.entity_extractor import EntityExtractor, normalize_entities

from conftest import TODAY


class TestEntityExtractor:
    """Test cases for EntityExtractor"""

    def setup_method(self):
        self.extractor = EntityExtractor(today=lambda: TODAY)

    def test_full_add_utterance(self):
        slots = self.extractor.extract("Add piano lesson for Emma every Monday at 4pm with Ms. Lee")

        assert slots["course"] == "piano"
        assert slots["student"] == "Emma"
        assert slots["teacher"] == "Ms. Lee"
        assert slots["time"] == "16:00"
        assert slots["day_of_week"] == 0
        assert slots["recurring"] == "weekly"

    def test_relative_dates(self):
        assert self.extractor.extract("math class tomorrow")["date"] == "2026-10-20"
        assert self.extractor.extract("math class today")["date"] == "2026-10-19"
        assert self.extractor.extract("what did Leo learn yesterday")["date"] == "2026-10-18"

    def test_iso_date(self):
        assert self.extractor.extract("swimming class on 2026-11-02")["date"] == "2026-11-02"

    def test_time_normalization(self):
        assert self.extractor.extract("at 12am")["time"] == "00:00"
        assert self.extractor.extract("at 12:30 pm")["time"] == "12:30"
        assert self.extractor.extract("at 9:05am")["time"] == "09:05"
        assert self.extractor.extract("at 18:45")["time"] == "18:45"

    def test_possessive_student(self):
        slots = self.extractor.extract("Cancel Emma's violin class")
        assert slots["student"] == "Emma"
        assert slots["course"] == "violin"

    def test_known_course_without_noun(self):
        assert self.extractor.extract("Leo practiced chess")["course"] == "chess"

    def test_sentence_initial_word_is_not_a_student(self):
        assert "student" not in self.extractor.extract("Cancel math course")

    def test_location_and_notes(self):
        slots = self.extractor.extract("Emma learned scales at the Riverside Music Studio.")
        assert slots["notes"] == "scales at the Riverside Music Studio"
        assert slots["location"].lower() == "riverside music studio"

    def test_empty_text(self):
        assert self.extractor.extract("") == {}


class TestNormalizeEntities:
    """Test cases for entity key normalization"""

    def test_aliases_are_renamed(self):
        assert normalize_entities({"courseName": "piano", "studentName": "Emma"}) == {
            "course": "piano",
            "student": "Emma",
        }

    def test_empty_values_dropped(self):
        assert normalize_entities({"course": "math", "teacher": None, "time": ""}) == {"course": "math"}

    def test_canonical_key_wins(self):
        assert normalize_entities({"course": "math", "course_name": "piano"}) == {"course": "math"}
        assert normalize_entities({"course_name": "piano", "course": "math"}) == {"course": "math"}

    def test_none_input(self):
        assert normalize_entities(None) == {}
