"""Tests for the heuristic text interpreter."""

from datetime import datetime, timedelta, timezone

import pytest

from leara.memory.interpreter import (
    categorize,
    determine_priority,
    extract_due_date,
    extract_keywords,
    extract_tags,
    parse_task_input,
)

NOW = datetime(2024, 6, 28, 10, 0, tzinfo=timezone.utc)


class TestCategorize:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("remind me to call mom", "task"),
            ("don't forget the keys", "reminder"),
            ("refactor the repository layout", "project"),
            ("we had a long discussion", "conversation"),
            ("open a terminal window", "system"),
            ("dark mode setting", "preference"),
            ("the sky is blue", "general"),
        ],
    )
    def test_rules(self, text, expected):
        assert categorize(text) == expected

    def test_first_rule_wins(self):
        # Matches both the task rule ("deadline") and the project rule ("code").
        assert categorize("code deadline on friday") == "task"

    def test_system_rs_is_project_not_system(self):
        assert categorize("system.rs needs a fix") == "project"

    def test_case_insensitive(self):
        assert categorize("TODO: buy milk") == "task"

    def test_deterministic(self):
        text = "project chat about system config"
        assert {categorize(text) for _ in range(5)} == {categorize(text)}


class TestDeterminePriority:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("this is urgent", 5),
            ("do it asap", 5),
            ("finish soon", 4),
            ("by this week please", 4),
            ("later is fine", 3),
            ("sometime maybe", 2),
            ("no rush at all", 2),
            ("plain note", 3),
        ],
    )
    def test_levels(self, text, expected):
        assert determine_priority(text) == expected

    def test_highest_level_checked_first(self):
        assert determine_priority("urgent but do it sometime") == 5


class TestExtractKeywords:
    def test_filters_short_and_stop_words(self):
        assert extract_keywords("Fix the bug in system.rs for me") == ["fix", "bug", "system.rs"]

    def test_deduplicates_preserving_order(self):
        assert extract_keywords("cargo build cargo test") == ["cargo", "build", "test"]

    def test_empty(self):
        assert extract_keywords("") == []


class TestExtractDueDate:
    def test_today(self):
        assert extract_due_date("remind me today", NOW) == datetime(
            2024, 6, 28, 18, 0, tzinfo=timezone.utc
        )

    def test_tomorrow(self):
        assert extract_due_date("call the bank tomorrow", NOW) == datetime(
            2024, 6, 29, 18, 0, tzinfo=timezone.utc
        )

    def test_this_week(self):
        assert extract_due_date("ship it this week", NOW) == NOW + timedelta(days=7)

    def test_next_week(self):
        assert extract_due_date("review next week", NOW) == NOW + timedelta(days=14)

    def test_no_marker(self):
        assert extract_due_date("buy milk", NOW) is None

    def test_naive_now_treated_as_utc(self):
        naive = datetime(2024, 6, 28, 10, 0)
        assert extract_due_date("today", naive) == datetime(2024, 6, 28, 18, 0, tzinfo=timezone.utc)


class TestExtractTags:
    def test_multiple_tags_in_table_order(self):
        assert extract_tags("Cargo build for the leara project") == "rust,leara,project"

    def test_system_rs(self):
        assert extract_tags("patch system.rs") == "system"

    def test_none(self):
        assert extract_tags("buy milk") is None


class TestParseTaskInput:
    def test_strips_markers_from_title(self):
        parsed = parse_task_input("urgent fix the build today", NOW)
        assert parsed.title == "fix the build"
        assert parsed.priority == 5
        assert parsed.due_date == datetime(2024, 6, 28, 18, 0, tzinfo=timezone.utc)
        assert parsed.description is None

    def test_marker_inside_word_is_stripped(self):
        # "today" sets the due date, so it is removed from the title too.
        parsed = parse_task_input("update todays report", NOW)
        assert parsed.title == "update s report"
        assert parsed.due_date == datetime(2024, 6, 28, 18, 0, tzinfo=timezone.utc)

    def test_strip_is_case_insensitive(self):
        parsed = parse_task_input("URGENT call the bank Tomorrow", NOW)
        assert parsed.title == "call the bank"
        assert parsed.priority == 5
        assert parsed.due_date == datetime(2024, 6, 29, 18, 0, tzinfo=timezone.utc)

    def test_every_matched_marker_leaves_title(self):
        for text in ["asap: renew passport", "renew passport this week", "Critical renew passport"]:
            title = parse_task_input(text, NOW).title.lower()
            assert not any(w in title for w in ("asap", "this week", "critical"))

    def test_empty_title_falls_back_to_input(self):
        parsed = parse_task_input("urgent today", NOW)
        assert parsed.title == "urgent today"

    def test_defaults(self):
        parsed = parse_task_input("water the plants", NOW)
        assert parsed.title == "water the plants"
        assert parsed.priority == 3
        assert parsed.due_date is None
