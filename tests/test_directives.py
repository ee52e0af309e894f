"""Tests for meta-directives embedded in comments."""

import pytest

from reqfile.errors import ParseError
from reqfile.parser import MetaEntry, parse


def _request(*meta_lines):
    return parse("\n".join([*meta_lines, "GET https://example.com"]))[0]


# ── name ─────────────────────────────────────────────────────────────────


class TestName:
    def test_named_request(self):
        request = _request("// @name foo")
        assert request.name == "foo"
        assert request.meta["name"] == MetaEntry("foo", False)

    def test_hash_comment(self):
        assert _request("# @name foo").name == "foo"

    def test_only_a_single_name(self):
        with pytest.raises(ParseError) as exc:
            _request("// @name foo", "// @name bar")
        assert str(exc.value) == (
            '(line: 2) only a single "name" request variable is allowed per request'
        )

    def test_single_name_across_variable_lines(self):
        with pytest.raises(ParseError, match=r"^\(line: 3\) only a single"):
            _request("# @name foo", "@a=1", "# @name bar")

    def test_name_must_be_an_identifier(self):
        with pytest.raises(ParseError, match="invalid request name: 1abc"):
            _request("# @name 1abc")

    def test_names_are_per_block(self):
        text = "\n".join(["# @name a", "GET https://a", "###", "# @name b", "GET https://b"])
        assert [r.name for r in parse(text)] == ["a", "b"]


# ── Generic directives ───────────────────────────────────────────────────


class TestGenericDirectives:
    def test_last_occurrence_wins(self):
        request = _request("// @foo bar", "// @foo baz", "// @qux waldo")
        assert request.meta.value("foo") == "baz"
        assert request.meta.value("qux") == "waldo"

    def test_value_less_directive_is_true(self):
        assert _request("# @flag").meta.value("flag") is True

    def test_plain_comments_have_no_effect(self):
        request = _request("# mail admin@example.com", "// see @docs")
        assert not request.meta

    def test_global_marker(self):
        request = _request("# @@shared yes")
        assert request.meta["shared"] == MetaEntry("yes", True)

    def test_title(self):
        assert _request("# @title Fetch a todo").meta.value("title") == "Fetch a todo"

    def test_to_dict(self):
        request = _request("# @name foo", "# @ignore $.response.body.id")
        assert request.meta.to_dict() == {
            "name": {"value": "foo", "global": False},
            "ignore": {"value": ["$.response.body.id"]},
        }


# ── Assertions ───────────────────────────────────────────────────────────


class TestAssertionDirectives:
    def test_expect_accumulates(self):
        request = _request(
            "# @expect $.response.body.id 1",
            '# @expect $.response.body.name "Leanne Graham"',
            "# @expect $.response.body.tags []",
        )
        assert request.meta.value("expect") == [
            ("$.response.body.id", 1),
            ("$.response.body.name", "Leanne Graham"),
            ("$.response.body.tags", []),
        ]

    def test_expect_needs_json_value(self):
        with pytest.raises(ParseError, match="invalid JSON value"):
            _request("# @expect $.response.body.name Leanne")

    def test_expect_needs_two_parts(self):
        with pytest.raises(ParseError, match="query path and a JSON value"):
            _request("# @expect $.response.status")

    def test_status_expands_to_expectations(self):
        request = _request("# @status 404 Not Found", "# @expect $.response.body null")
        assert request.meta.value("status") == (404, "Not Found")
        assert request.expectations() == [
            ("$.response.body", None),
            ("$.response.status", 404),
            ("$.response.statusText", "Not Found"),
        ]

    def test_status_without_text(self):
        request = _request("# @status 204")
        assert request.expectations() == [("$.response.status", 204)]

    def test_invalid_status(self):
        with pytest.raises(ParseError, match="expected a status code"):
            _request("# @status ok")

    def test_ignore_accumulates(self):
        request = _request("# @ignore $.response.body.id", "# @ignore $..updatedAt")
        assert request.meta.value("ignore") == ["$.response.body.id", "$..updatedAt"]

    def test_ignore_headers_must_be_a_valid_regex(self):
        assert _request("# @ignoreHeaders ^x-").meta.value("ignoreHeaders") == "^x-"
        with pytest.raises(ParseError, match="invalid regular expression"):
            _request("# @ignoreHeaders (")


# ── Selection and throws ─────────────────────────────────────────────────


class TestFlags:
    def test_only_and_skip(self):
        assert _request("# @only").meta.value("only") is True
        assert _request("# @skip").meta.value("skip") is True
        assert _request("# @skip false").meta.value("skip") is False

    def test_invalid_flag(self):
        with pytest.raises(ParseError, match="expected a boolean"):
            _request("# @only maybe")

    def test_throws(self):
        assert _request("# @throws").meta.value("throws") is True
        assert _request("# @throws timed out").meta.value("throws") == "timed out"
