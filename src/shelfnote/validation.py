"""Field validation applied before a mutation reaches a store.

Validators accumulate violations instead of stopping at the first failed
rule, so one call reports every problem with a field::

    FieldValidator("name", name).required().string_length(1, 100)

A ``BatchValidator`` collects several field validators and raises a single
ValidationFailedError carrying all of their violations.
"""
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Union

from pydantic import AnyUrl, TypeAdapter, ValidationError

from shelfnote.exceptions import ValidationFailedError

_url_adapter = TypeAdapter(AnyUrl)


@dataclass(frozen=True)
class Violation:
    """One failed rule on one field."""

    field: str
    message: str


# A custom rule returns True when the value is valid, False for a generic
# failure, or a string used as the violation message.
CustomRule = Callable[[Any], Union[bool, str]]


class FieldValidator:
    """Chainable rules for a single named value.

    Every rule except ``required`` and ``custom`` ignores a missing (None)
    value, so optional fields only need ``required()`` left out. A value of
    the wrong type for a rule is reported as a violation rather than raised.
    """

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        self._violations: List[Violation] = []

    def _add(self, message: str) -> None:
        self._violations.append(Violation(self.field, message))

    def required(self) -> "FieldValidator":
        """Value must be present and not an empty string."""
        if self.value is None or self.value == "":
            self._add(f"{self.field} is required")
        return self

    def not_empty(self) -> "FieldValidator":
        """String value must contain something other than whitespace."""
        if isinstance(self.value, str):
            if not self.value.strip():
                self._add(f"{self.field} cannot be blank")
        elif self.value is not None:
            self._add(f"{self.field} must be a string")
        return self

    def string_length(self, min_length: Optional[int] = None,
                      max_length: Optional[int] = None) -> "FieldValidator":
        """String length must fall within the given bounds."""
        if isinstance(self.value, str):
            if min_length is not None and len(self.value) < min_length:
                self._add(f"{self.field} must be at least {min_length} character(s)")
            if max_length is not None and len(self.value) > max_length:
                self._add(f"{self.field} must be at most {max_length} character(s)")
        elif self.value is not None:
            self._add(f"{self.field} must be a string")
        return self

    def array_length(self, min_length: Optional[int] = None,
                     max_length: Optional[int] = None) -> "FieldValidator":
        """List length must fall within the given bounds."""
        if isinstance(self.value, (list, tuple)):
            if min_length is not None and len(self.value) < min_length:
                self._add(f"{self.field} must have at least {min_length} item(s)")
            if max_length is not None and len(self.value) > max_length:
                self._add(f"{self.field} must have at most {max_length} item(s)")
        elif self.value is not None:
            self._add(f"{self.field} must be a list")
        return self

    def pattern(self, regex: Union[str, Pattern], message: Optional[str] = None) -> "FieldValidator":
        """String value must fully match a regular expression."""
        if isinstance(self.value, str):
            compiled = re.compile(regex) if isinstance(regex, str) else regex
            if not compiled.fullmatch(self.value):
                self._add(message or f"{self.field} has an invalid format")
        elif self.value is not None:
            self._add(f"{self.field} must be a string")
        return self

    def number_range(self, min_value: Optional[float] = None,
                     max_value: Optional[float] = None) -> "FieldValidator":
        """Numeric value must fall within the given bounds."""
        # bool is an int subclass but never a valid number here
        if isinstance(self.value, (int, float)) and not isinstance(self.value, bool):
            if min_value is not None and self.value < min_value:
                self._add(f"{self.field} must be at least {min_value}")
            if max_value is not None and self.value > max_value:
                self._add(f"{self.field} must be at most {max_value}")
        elif self.value is not None:
            self._add(f"{self.field} must be a number")
        return self

    def url(self) -> "FieldValidator":
        """String value must be an absolute URL."""
        if isinstance(self.value, str):
            try:
                _url_adapter.validate_python(self.value)
            except ValidationError:
                self._add(f"{self.field} must be a valid URL")
        elif self.value is not None:
            self._add(f"{self.field} must be a string")
        return self

    def custom(self, rule: CustomRule, message: Optional[str] = None) -> "FieldValidator":
        """Apply an arbitrary predicate to a present value."""
        if self.value is None:
            return self
        outcome = rule(self.value)
        if isinstance(outcome, str):
            self._add(outcome)
        elif not outcome:
            self._add(message or f"{self.field} is invalid")
        return self

    @property
    def violations(self) -> List[Violation]:
        return list(self._violations)

    def is_valid(self) -> bool:
        return not self._violations

    def validate_or_raise(self) -> None:
        """Raise ValidationFailedError if any rule failed."""
        if self._violations:
            raise ValidationFailedError(self._violations)


class BatchValidator:
    """Aggregates the violations of several field validators."""

    def __init__(self, validators: Optional[Iterable[FieldValidator]] = None):
        self._validators: List[FieldValidator] = list(validators or [])

    def add(self, validator: FieldValidator) -> "BatchValidator":
        self._validators.append(validator)
        return self

    def add_all(self, validators: Iterable[FieldValidator]) -> "BatchValidator":
        self._validators.extend(validators)
        return self

    @property
    def violations(self) -> List[Violation]:
        collected: List[Violation] = []
        for validator in self._validators:
            collected.extend(validator.violations)
        return collected

    def is_valid(self) -> bool:
        return all(v.is_valid() for v in self._validators)

    def validate_or_raise(self) -> None:
        """Raise one ValidationFailedError with every field's violations."""
        violations = self.violations
        if violations:
            raise ValidationFailedError(violations)


class ValidationRules:
    """Field limits for each entity."""

    FOLDER_NAME_MIN = 1
    FOLDER_NAME_MAX = 100
    FOLDER_COLOR_MAX = 20
    FOLDER_ICON_MAX = 10

    NOTE_TITLE_MIN = 1
    NOTE_TITLE_MAX = 200
    NOTE_CONTENT_MAX = 1_000_000
    NOTE_TAGS_MAX = 20

    TAG_NAME_MIN = 1
    TAG_NAME_MAX = 50
    TAG_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

    MARK_CONTENT_MAX = 1_000_000
    MARK_URL_MAX = 2000
    MARK_DESC_MAX = 500

    BATCH_MIN = 1
    BATCH_MAX = 100


def _present(data: Dict[str, Any], partial: bool, name: str) -> bool:
    return not partial or name in data


def folder_validator(data: Dict[str, Any], partial: bool = False) -> BatchValidator:
    """Validators for folder fields.

    Args:
        data: Field values keyed by name.
        partial: Only validate the fields present in ``data`` (updates).
    """
    batch = BatchValidator()
    if _present(data, partial, "name"):
        batch.add(
            FieldValidator("name", data.get("name"))
            .required()
            .not_empty()
            .string_length(ValidationRules.FOLDER_NAME_MIN, ValidationRules.FOLDER_NAME_MAX)
        )
    if data.get("color") is not None:
        batch.add(FieldValidator("color", data["color"]).string_length(1, ValidationRules.FOLDER_COLOR_MAX))
    if data.get("icon") is not None:
        batch.add(FieldValidator("icon", data["icon"]).string_length(1, ValidationRules.FOLDER_ICON_MAX))
    if data.get("sort_order") is not None:
        batch.add(FieldValidator("sort_order", data["sort_order"]).number_range(min_value=0))
    return batch


def note_validator(data: Dict[str, Any], partial: bool = False) -> BatchValidator:
    """Validators for note fields; see ``folder_validator`` for ``partial``."""
    batch = BatchValidator()
    if _present(data, partial, "title"):
        batch.add(
            FieldValidator("title", data.get("title"))
            .required()
            .not_empty()
            .string_length(ValidationRules.NOTE_TITLE_MIN, ValidationRules.NOTE_TITLE_MAX)
        )
    if "content" in data:
        batch.add(
            FieldValidator("content", data["content"])
            .string_length(max_length=ValidationRules.NOTE_CONTENT_MAX)
        )
    if "tag_ids" in data:
        batch.add(
            FieldValidator("tag_ids", data["tag_ids"])
            .array_length(max_length=ValidationRules.NOTE_TAGS_MAX)
            .custom(
                lambda ids: all(isinstance(i, str) and i.strip() for i in ids),
                "tag_ids must not contain blank ids",
            )
        )
    return batch


def tag_validator(data: Dict[str, Any], partial: bool = False) -> BatchValidator:
    """Validators for tag fields; see ``folder_validator`` for ``partial``."""
    batch = BatchValidator()
    if _present(data, partial, "name"):
        batch.add(
            FieldValidator("name", data.get("name"))
            .required()
            .not_empty()
            .string_length(ValidationRules.TAG_NAME_MIN, ValidationRules.TAG_NAME_MAX)
        )
    if data.get("color") is not None:
        batch.add(
            FieldValidator("color", data["color"]).pattern(
                ValidationRules.TAG_COLOR_PATTERN,
                "color must be a hex color such as #FF0000",
            )
        )
    return batch


def mark_validator(data: Dict[str, Any], partial: bool = False) -> BatchValidator:
    """Validators for mark fields; see ``folder_validator`` for ``partial``."""
    batch = BatchValidator()
    if _present(data, partial, "tag_id"):
        batch.add(FieldValidator("tag_id", data.get("tag_id")).required().not_empty())
    if _present(data, partial, "type"):
        batch.add(FieldValidator("type", data.get("type")).required())
    batch.add(
        FieldValidator("content", data.get("content"))
        .string_length(max_length=ValidationRules.MARK_CONTENT_MAX)
    )
    batch.add(FieldValidator("url", data.get("url")).string_length(max_length=ValidationRules.MARK_URL_MAX))
    batch.add(FieldValidator("desc", data.get("desc")).string_length(max_length=ValidationRules.MARK_DESC_MAX))
    return batch


def batch_ids_validator(ids: List[str]) -> BatchValidator:
    """Validators for the id list of a batch operation."""
    return BatchValidator([
        FieldValidator("ids", ids)
        .required()
        .array_length(ValidationRules.BATCH_MIN, ValidationRules.BATCH_MAX)
    ])
