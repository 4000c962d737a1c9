"""Split predicates: the boolean condition attached to every non-root tree node."""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Mapping
from typing import Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from treekit.exceptions import FieldsNotFoundError
from treekit.tree.models import FieldInfo

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type PredicateOp = Literal["<", "<=", "=", "!=", "/=", ">=", ">", "in"]

type RuleLabel = Literal["name", "slug"]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single condition on one input field, as serialized in a tree node.

    Represents comparisons such as `petal width <= 0.8`, membership tests
    (`"in"`), missing-value tests (a `None` value) and, for text and items
    fields, term occurrence counts (`term` set, `value` is the count compared
    against).

    Attributes:
        operator (PredicateOp): Comparison operator, without the trailing `*`
            of the serialized form.
        field (str): Id of the field the condition applies to, e.g. `"000003"`.
        value (JsonValue): Threshold, candidate list for `"in"`, or `None` for
            an "is missing" / "is not missing" test.
        term (str | None): Term whose occurrences are counted in text or items fields.
        missing (bool): Whether this branch also receives rows where the
            field is missing; serialized as an operator ending in `*`.

    Examples:
        >>> predicate = Predicate.from_serialized({"operator": "<=*", "field": "000003", "value": 0.8})
        >>> predicate.missing
        True
        >>> predicate.apply({}, {})
        True
    """

    model_config = ConfigDict(frozen=True)

    operator: PredicateOp = Field(description="Comparison operator.")
    field: str = Field(description="Id of the field the condition applies to.")
    value: JsonValue = Field(default=None, description="Threshold, candidate list, or None for missing tests.")
    term: str | None = Field(default=None, description="Term counted in text or items fields.")
    missing: bool = Field(default=False, description="Whether missing values also follow this branch.")

    @classmethod
    def from_serialized(cls, raw: Mapping[str, Any]) -> Predicate:
        """Parse a serialized predicate object.

        Args:
            raw (Mapping[str, Any]): Object with `operator`, `field`, `value`
                and optional `term` keys.

        Returns:
            Predicate: The parsed predicate.

        Raises:
            ValueError: If `operator` or `field` is absent.
        """
        missing_keys = [key for key in ("operator", "field") if key not in raw]
        if missing_keys:
            raise ValueError(f"Predicate is missing required keys: {missing_keys}")
        raw_operator = str(raw["operator"])
        missing = raw_operator.endswith("*")
        return cls(
            operator=raw_operator.removesuffix("*"),  # type: ignore[arg-type]
            field=raw["field"],
            value=raw.get("value"),
            term=raw.get("term"),
            missing=missing,
        )

    def apply(self, input_data: Mapping[str, Any], fields: Mapping[str, FieldInfo]) -> bool:
        """Evaluate this predicate against a row of input data keyed by field id.

        Args:
            input_data (Mapping[str, Any]): Field values keyed by field id;
                absent keys and `None` values are missing.
            fields (Mapping[str, FieldInfo]): Field metadata, needed for term matching.

        Returns:
            bool: `True` if the row satisfies the condition.
        """
        input_value = input_data.get(self.field)
        if self.value is None:
            if input_value is None:
                return self.operator == "="
            return self.operator in {"!=", "/="}
        if input_value is None:
            return self.missing
        if self.term is not None:
            matches = _term_matches(str(input_value), self.term, _lookup_field(fields, self.field))
            return _SCALAR_OPS[self.operator](matches, self.value)
        if self.operator == "in":
            return isinstance(self.value, list) and input_value in self.value
        return _SCALAR_OPS[self.operator](input_value, self.value)

    def to_rule(self, fields: Mapping[str, FieldInfo], label: RuleLabel = "name") -> str:
        """Render this predicate as a human-readable rule.

        Args:
            fields (Mapping[str, FieldInfo]): Field metadata used to name the field.
            label (RuleLabel): Use the field's display `"name"` or its `"slug"`.
                Falls back to the name when no slug has been assigned.

        Returns:
            str: The rule, e.g. `"petal width <= 0.8 or missing"`.

        Raises:
            FieldsNotFoundError: If the predicate's field is not in `fields`.
        """
        field = _lookup_field(fields, self.field)
        name = field.slug if label == "slug" and field.slug else field.name
        relation_missing = " or missing" if self.missing else ""
        if self.term is not None:
            return f"{name} {self._term_relation(field)}{relation_missing}"
        if self.value is None:
            return f"{name} {'is missing' if self.operator == '=' else 'is not missing'}"
        if isinstance(self.value, list):
            candidates = ", ".join(str(candidate) for candidate in self.value)
            return f"{name} {self.operator} {{{candidates}}}{relation_missing}"
        return f"{name} {self.operator} {self.value}{relation_missing}"

    def _term_relation(self, field: FieldInfo) -> str:
        """Describe a term-count condition, e.g. `"contains good more than 2 times"`.

        Args:
            field (FieldInfo): Metadata of the text or items field.

        Returns:
            str: The relation text following the field name.
        """
        full_term = _is_full_term(self.term or "", field)
        count = self.value
        if (self.operator == "<" and count <= 1) or (self.operator == "<=" and count == 0):  # type: ignore[operator]
            relation = "is not equal to" if full_term else "does not contain"
            return f"{relation} {self.term}"
        relation = "is equal to" if full_term else "contains"
        if full_term or (self.operator == ">" and count == 0):
            return f"{relation} {self.term}"
        times = "time" if count == 1 else "times"
        return f"{relation} {self.term} {_TERM_RELATIONS[self.operator].format(count=count, times=times)}"


class TruePredicate(BaseModel):
    """Predicate of the root node: accepts every row."""

    model_config = ConfigDict(frozen=True)

    def apply(self, input_data: Mapping[str, Any], fields: Mapping[str, FieldInfo]) -> bool:  # noqa: ARG002
        """Return `True` for any input."""
        return True

    def to_rule(self, fields: Mapping[str, FieldInfo], label: RuleLabel = "name") -> str:  # noqa: ARG002
        """Return the literal rule `"TRUE"`."""
        return "TRUE"


TRUE_PREDICATE: Final[TruePredicate] = TruePredicate()

type NodePredicate = Predicate | TruePredicate

# ---------------------------------------------------------------------------
# Private helpers -- operator evaluation
# ---------------------------------------------------------------------------

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
    "!=": operator.ne,
    "/=": operator.ne,
    ">=": operator.ge,
    ">": operator.gt,
}

_TERM_RELATIONS: dict[str, str] = {
    "<": "less than {count} {times}",
    "<=": "no more than {count} {times}",
    "=": "exactly {count} {times}",
    "!=": "not exactly {count} {times}",
    "/=": "not exactly {count} {times}",
    ">=": "at least {count} {times}",
    ">": "more than {count} {times}",
}

# ---------------------------------------------------------------------------
# Private helpers -- term matching
# ---------------------------------------------------------------------------

_TOKEN_MODE_FULL_TERMS: Final[str] = "full_terms_only"
_TOKEN_MODE_ALL: Final[str] = "all"
_TOKEN_MODE_TOKENS: Final[str] = "tokens_only"
_MULTI_WORD_PATTERN = re.compile(r"^.+\b.+$", re.UNICODE)


def _lookup_field(fields: Mapping[str, FieldInfo], field_id: str) -> FieldInfo:
    """Return the metadata of `field_id`, raising when it is unknown.

    Args:
        fields (Mapping[str, FieldInfo]): Field metadata keyed by id.
        field_id (str): The id to look up.

    Returns:
        FieldInfo: The field's metadata.

    Raises:
        FieldsNotFoundError: If `field_id` is not in `fields`.
    """
    try:
        return fields[field_id]
    except KeyError:
        raise FieldsNotFoundError(missing_fields=[field_id], available_fields=sorted(fields)) from None


def _is_full_term(term: str, field: FieldInfo) -> bool:
    """Return whether `term` must match the whole field value rather than a token.

    Args:
        term (str): The predicate's term.
        field (FieldInfo): Metadata of the text field.

    Returns:
        bool: `True` for full-term matching.
    """
    if field.optype == "items":
        return False
    token_mode = field.term_analysis.get("token_mode", _TOKEN_MODE_TOKENS)
    if token_mode == _TOKEN_MODE_FULL_TERMS:
        return True
    return token_mode == _TOKEN_MODE_ALL and _MULTI_WORD_PATTERN.match(term) is not None


def _term_matches(text: str, term: str, field: FieldInfo) -> int:
    """Count the occurrences of `term` (or its alternative forms) in `text`.

    Args:
        text (str): The input value of the text or items field.
        term (str): The predicate's term.
        field (FieldInfo): Metadata carrying the field's analysis options.

    Returns:
        int: Number of matches; full-term matching yields 0 or 1.
    """
    if field.optype == "items":
        separator = field.item_analysis.get("separator", " ")
        return sum(1 for item in text.split(separator) if item.strip() == term)

    case_sensitive = bool(field.term_analysis.get("case_sensitive", False))
    forms = [term, *field.term_forms.get(term, [])]
    if _is_full_term(term, field):
        if case_sensitive:
            return int(text in forms)
        return int(text.lower() in {form.lower() for form in forms})

    flags = re.UNICODE if case_sensitive else re.UNICODE | re.IGNORECASE
    alternatives = "|".join(re.escape(form) for form in forms)
    pattern = re.compile(rf"(?:\b|_)(?:{alternatives})(?:\b|_)", flags)
    return sum(1 for _ in pattern.finditer(text))
