"""Tests for the field validation layer."""
import re

import pytest

from shelfnote.exceptions import ErrorCode, ValidationFailedError
from shelfnote.validation import (
    BatchValidator,
    FieldValidator,
    ValidationRules,
    Violation,
    batch_ids_validator,
    folder_validator,
    mark_validator,
    note_validator,
    tag_validator,
)


class TestFieldValidator:
    """Tests for the individual rules."""

    def test_required(self):
        assert not FieldValidator("name", None).required().is_valid()
        assert not FieldValidator("name", "").required().is_valid()
        assert FieldValidator("name", "x").required().is_valid()

    def test_not_empty_rejects_whitespace(self):
        validator = FieldValidator("name", "   ").not_empty()

        assert validator.violations == [Violation("name", "name cannot be blank")]

    def test_rules_skip_missing_values(self):
        validator = (
            FieldValidator("color", None)
            .not_empty()
            .string_length(1, 5)
            .pattern(r"x+")
            .number_range(0, 1)
            .url()
        )

        assert validator.is_valid()

    def test_string_length_bounds(self):
        assert not FieldValidator("t", "").string_length(min_length=1).is_valid()
        assert not FieldValidator("t", "abcdef").string_length(max_length=5).is_valid()
        assert FieldValidator("t", "abcde").string_length(1, 5).is_valid()

    def test_violations_accumulate(self):
        validator = FieldValidator("title", "").required().not_empty().string_length(1, 10)

        assert len(validator.violations) == 3
        assert all(v.field == "title" for v in validator.violations)

    def test_wrong_type_reported(self):
        validator = FieldValidator("name", 42).string_length(1, 10)

        assert validator.violations[0].message == "name must be a string"

    def test_array_length(self):
        assert not FieldValidator("ids", []).array_length(min_length=1).is_valid()
        assert not FieldValidator("ids", ["a", "b", "c"]).array_length(max_length=2).is_valid()
        assert not FieldValidator("ids", "abc").array_length(max_length=5).is_valid()
        assert FieldValidator("ids", ("a",)).array_length(1, 2).is_valid()

    def test_pattern_must_match_whole_value(self):
        hex_color = re.compile(r"#[0-9a-f]{6}")

        assert FieldValidator("c", "#a0b1c2").pattern(hex_color).is_valid()
        assert not FieldValidator("c", "#a0b1c2ff").pattern(hex_color).is_valid()
        assert not FieldValidator("c", "x#a0b1c2").pattern(r"#[0-9a-f]{6}").is_valid()

    def test_pattern_custom_message(self):
        validator = FieldValidator("c", "red").pattern(r"#\w+", "use a hex code")

        assert validator.violations == [Violation("c", "use a hex code")]

    def test_number_range(self):
        assert FieldValidator("n", 0).number_range(0, 10).is_valid()
        assert FieldValidator("n", 2.5).number_range(0, 10).is_valid()
        assert not FieldValidator("n", -1).number_range(min_value=0).is_valid()
        assert not FieldValidator("n", 11).number_range(max_value=10).is_valid()

    def test_number_range_rejects_bool(self):
        assert not FieldValidator("n", True).number_range(0, 10).is_valid()

    def test_url(self):
        assert FieldValidator("url", "https://example.com/a?b=1").url().is_valid()
        assert not FieldValidator("url", "not a url").url().is_valid()
        assert not FieldValidator("url", "/relative/path").url().is_valid()

    def test_custom_rule(self):
        assert FieldValidator("v", 4).custom(lambda v: v % 2 == 0).is_valid()

        failed = FieldValidator("v", 3).custom(lambda v: v % 2 == 0, "must be even")
        assert failed.violations == [Violation("v", "must be even")]

    def test_custom_rule_message_from_rule(self):
        validator = FieldValidator("v", 3).custom(lambda v: f"{v} is odd")

        assert validator.violations == [Violation("v", "3 is odd")]

    def test_custom_rule_skips_none(self):
        calls = []
        validator = FieldValidator("v", None).custom(lambda v: calls.append(v) or False)

        assert validator.is_valid()
        assert calls == []

    def test_validate_or_raise(self):
        FieldValidator("name", "ok").required().validate_or_raise()

        with pytest.raises(ValidationFailedError) as exc_info:
            FieldValidator("name", None).required().validate_or_raise()

        assert exc_info.value.code == ErrorCode.VALIDATION_FAILED
        assert exc_info.value.messages_for("name") == ["name is required"]


class TestBatchValidator:
    """Tests for BatchValidator."""

    def test_collects_every_field(self):
        batch = BatchValidator([
            FieldValidator("a", None).required(),
            FieldValidator("b", "ok").required(),
        ]).add(FieldValidator("c", "").required())

        assert not batch.is_valid()
        assert [v.field for v in batch.violations] == ["a", "c"]

    def test_single_error_for_all_violations(self):
        batch = BatchValidator().add_all([
            FieldValidator("a", None).required(),
            FieldValidator("b", None).required(),
        ])

        with pytest.raises(ValidationFailedError) as exc_info:
            batch.validate_or_raise()

        assert len(exc_info.value.violations) == 2
        assert exc_info.value.details["fields"] == ["a", "b"]

    def test_empty_batch_is_valid(self):
        batch = BatchValidator()

        assert batch.is_valid()
        batch.validate_or_raise()


class TestEntityValidators:
    """Tests for the per-entity validator factories."""

    def test_folder_name_limits(self):
        assert folder_validator({"name": "Work"}).is_valid()
        assert not folder_validator({"name": ""}).is_valid()
        assert not folder_validator({"name": "x" * (ValidationRules.FOLDER_NAME_MAX + 1)}).is_valid()
        assert not folder_validator({}).is_valid()

    def test_folder_partial_skips_missing_name(self):
        assert folder_validator({"sort_order": 3}, partial=True).is_valid()
        assert not folder_validator({"sort_order": -1}, partial=True).is_valid()
        assert not folder_validator({"icon": "x" * 11}, partial=True).is_valid()

    def test_note_title_and_tags(self):
        assert note_validator({"title": "Hello", "tag_ids": ["a"]}).is_valid()
        assert not note_validator({"title": "   "}).is_valid()
        assert not note_validator({"title": "x" * 201}).is_valid()

        too_many = [f"t{i}" for i in range(ValidationRules.NOTE_TAGS_MAX + 1)]
        assert not note_validator({"title": "t", "tag_ids": too_many}).is_valid()

    def test_note_blank_tag_id(self):
        batch = note_validator({"tag_ids": ["ok", " "]}, partial=True)

        assert [v.message for v in batch.violations] == ["tag_ids must not contain blank ids"]

    def test_tag_name_and_color(self):
        assert tag_validator({"name": "work", "color": "#A1b2C3"}).is_valid()
        assert not tag_validator({"name": "x" * 51}).is_valid()
        assert not tag_validator({"name": "work", "color": "red"}).is_valid()
        assert tag_validator({"color": "#000000"}, partial=True).is_valid()

    def test_mark_fields(self):
        assert mark_validator({"tag_id": "t", "type": "text"}).is_valid()
        assert not mark_validator({"type": "text"}).is_valid()
        assert not mark_validator({"tag_id": "t", "type": "text", "desc": "d" * 501}).is_valid()
        assert mark_validator({"url": "https://example.com"}, partial=True).is_valid()

    def test_batch_ids(self):
        assert batch_ids_validator(["a"]).is_valid()
        assert not batch_ids_validator([]).is_valid()
        assert not batch_ids_validator([str(i) for i in range(101)]).is_valid()
