"""Field metadata handling: parsing, name de-duplication and input preparation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger
from pydantic import ValidationError

from treekit.exceptions import ModelFormatError
from treekit.tree.models import FieldInfo


def parse_fields(raw_fields: Mapping[str, Any]) -> dict[str, FieldInfo]:
    """Parse a serialized `fields` table into field metadata keyed by id.

    Args:
        raw_fields (Mapping[str, Any]): Serialized field descriptions keyed by field id.

    Returns:
        dict[str, FieldInfo]: Parsed metadata keyed by field id.

    Raises:
        ModelFormatError: If an entry is not an object or lacks a valid `name`.
    """
    fields: dict[str, FieldInfo] = {}
    for field_id, raw in raw_fields.items():
        if not isinstance(raw, Mapping):
            raise ModelFormatError(f"Field {field_id!r} must be an object", key=f"fields.{field_id}")
        try:
            fields[field_id] = FieldInfo.from_serialized(raw)
        except ValidationError as exc:
            raise ModelFormatError(f"Field {field_id!r} is malformed: {exc}", key=f"fields.{field_id}") from exc
    return fields


def uniquify_field_names(fields: Mapping[str, FieldInfo], objective_id: str | None = None) -> dict[str, FieldInfo]:
    """Rename fields so that no two share a display name.

    The objective field keeps its name; the other fields are visited in
    ascending id order. A name already taken gets the field's column number
    appended and, if that is taken too, an underscore and the field id.

    Args:
        fields (Mapping[str, FieldInfo]): Field metadata keyed by id.
        objective_id (str | None): Id of the objective field, named first.

    Returns:
        dict[str, FieldInfo]: Field metadata keyed by id with unique names, in
            the key order of `fields`.

    Examples:
        >>> fields = {
        ...     "000001": FieldInfo(name="species", column_number=1),
        ...     "000004": FieldInfo(name="species", column_number=4, optype="categorical"),
        ... }
        >>> uniquify_field_names(fields, "000004")["000001"].name
        'species1'
    """
    order = sorted(fields)
    if objective_id in fields:
        order.remove(objective_id)
        order.insert(0, objective_id)

    used: set[str] = set()
    renamed: dict[str, FieldInfo] = {}
    for field_id in order:
        field = fields[field_id]
        name = field.name
        if name in used:
            name = f"{field.name}{field.column_number}"
            if name in used:
                name = f"{name}_{field_id}"
            logger.debug("Renamed duplicated field name", field_id=field_id, old_name=field.name, new_name=name)
            field = field.model_copy(update={"name": name})
        used.add(name)
        renamed[field_id] = field
    return {field_id: renamed[field_id] for field_id in fields}


def invert_field_names(fields: Mapping[str, FieldInfo]) -> dict[str, str]:
    """Return a field name to field id lookup table."""
    return {field.name: field_id for field_id, field in fields.items()}


def prepare_input(
    input_data: Mapping[str, Any],
    fields: Mapping[str, FieldInfo],
    *,
    objective_id: str | None = None,
    by_name: bool = True,
) -> dict[str, Any]:
    """Turn a user supplied row into field values keyed by field id.

    Keys that are not known fields are dropped with a warning, as is the
    objective field. `None` values are dropped silently since they mean the
    value is missing. Numeric fields given as strings are cast to float.

    Args:
        input_data (Mapping[str, Any]): The row, keyed by field name or id.
        fields (Mapping[str, FieldInfo]): Field metadata keyed by id.
        objective_id (str | None): Id of the objective field.
        by_name (bool): Whether `input_data` is keyed by field name rather than id.

    Returns:
        dict[str, Any]: Cleaned field values keyed by field id.

    Raises:
        ValueError: If a numeric field's string value cannot be read as a number.
    """
    lookup = invert_field_names(fields) if by_name else {field_id: field_id for field_id in fields}
    prepared: dict[str, Any] = {}
    dropped: list[str] = []
    for key, value in input_data.items():
        field_id = lookup.get(key)
        if field_id is None or field_id == objective_id:
            dropped.append(key)
            continue
        if value is None:
            continue
        prepared[field_id] = cast_input_value(value, fields[field_id])
    if dropped:
        logger.warning("Ignoring input fields that are not model inputs", fields=dropped)
    return prepared


def cast_input_value(value: Any, field: FieldInfo) -> Any:
    """Cast a string value of a numeric field to float; other values pass through.

    Args:
        value (Any): The input value.
        field (FieldInfo): Metadata of the field the value belongs to.

    Returns:
        Any: The value, as a float when the field is numeric and it was a string.

    Raises:
        ValueError: If the string cannot be parsed as a number.
    """
    if field.optype == "numeric" and isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Value {value!r} of numeric field {field.name!r} is not a number") from None
    return value
