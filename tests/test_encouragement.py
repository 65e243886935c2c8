"""Tests for completion messages."""

from __future__ import annotations

from doitapp import encouragement


class TestCompletionMessage:
    def test_on_time_message(self) -> None:
        assert encouragement.completion_message(True) in encouragement._ON_TIME

    def test_late_message(self) -> None:
        assert encouragement.completion_message(False) in encouragement._LATE

    def test_sections_loaded_from_markdown(self) -> None:
        assert "Keep up the great work!" in encouragement._ON_TIME
        assert encouragement._LATE
