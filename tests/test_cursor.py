"""Tests for SourceCursor."""

from reqfile.cursor import SourceCursor


class TestSourceCursor:
    def test_empty_input_is_at_end(self):
        for text in (None, ""):
            cursor = SourceCursor(text)
            assert cursor.at_end()
            assert cursor.current_line() is None
            assert cursor.consume_line() is None

    def test_line_numbers_are_one_based(self):
        cursor = SourceCursor("a\nb\nc")
        assert cursor.line_number() == 1
        assert cursor.consume_line() == "a"
        assert cursor.line_number() == 2

    def test_mixed_line_endings(self):
        cursor = SourceCursor("a\r\nb\rc\nd")
        lines = []
        while not cursor.at_end():
            lines.append(cursor.consume_line())
        assert lines == ["a", "b", "c", "d"]

    def test_current_line_is_trimmed(self):
        cursor = SourceCursor(" \t GET /x \t ")
        assert cursor.current_line() == "GET /x"
        assert cursor.raw_line() == " \t GET /x \t "

    def test_form_feed_and_vertical_tab_are_blank(self):
        cursor = SourceCursor("\f \v\nx")
        assert cursor.is_blank()
        assert not cursor.is_blank(1)

    def test_peek_does_not_advance(self):
        cursor = SourceCursor("a\nb")
        assert cursor.peek(1) == "b"
        assert cursor.peek(2) is None
        assert cursor.current_line() == "a"

    def test_consume_raw_keeps_whitespace(self):
        cursor = SourceCursor("  body  \nnext")
        assert cursor.consume_raw() == "  body  "
        assert cursor.current_line() == "next"
