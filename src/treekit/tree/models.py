"""Pydantic models and type aliases shared by the tree sub-package."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type MissingStrategy = Literal["last_prediction", "proportional"]

# "categorial" is the tag the proportional strategy gives merged classification distributions.
type DistributionUnit = Literal["bins", "counts", "categories", "categorial"]

type FieldOptype = Literal["numeric", "categorical", "text", "items", "datetime"]

type DistributionKey = float | str

type Distribution = tuple[tuple[DistributionKey, float], ...]

# ---------------------------------------------------------------------------
# Node outputs
# ---------------------------------------------------------------------------


class CategoryOutput(BaseModel):
    """Output of a node that predicts a category label.

    Attributes:
        kind (Literal["category"]): Discriminator field; always `"category"`.
        value (str): The predicted label.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["category"] = "category"
    value: str


class NumericOutput(BaseModel):
    """Output of a node that predicts a numeric value.

    Attributes:
        kind (Literal["numeric"]): Discriminator field; always `"numeric"`.
        value (float): The predicted value (the mean of the node's objective values).
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    value: float


# Pydantic selects the concrete model from the `kind` tag.
type NodeOutput = Annotated[CategoryOutput | NumericOutput, Field(discriminator="kind")]


def parse_output(raw: Any) -> CategoryOutput | NumericOutput | None:
    """Wrap a serialized node output in its tagged variant.

    Args:
        raw (Any): The `output` value of a serialized node.

    Returns:
        CategoryOutput | NumericOutput | None: The tagged output, or `None` when
            `raw` is neither a string nor a real number.
    """
    if isinstance(raw, str):
        return CategoryOutput(value=raw)
    # bool is an int subclass but never a valid regression output
    if isinstance(raw, int | float) and not isinstance(raw, bool):
        return NumericOutput(value=float(raw))
    return None


# ---------------------------------------------------------------------------
# Field metadata
# ---------------------------------------------------------------------------


class FieldInfo(BaseModel):
    """Metadata for one model field, as listed in the model's `fields` table.

    Attributes:
        name (str): Display name of the field, e.g. `"petal width"`.
        optype (FieldOptype): Kind of values the field holds.
        column_number (int): Position of the field in the source dataset.
        auto_generated (bool): Whether the field was derived from another field.
        parent_ids (list[str]): Ids of the fields an auto-generated field derives from.
        term_analysis (dict[str, Any]): Tokenization options of a text field
            (`case_sensitive`, `token_mode`).
        item_analysis (dict[str, Any]): Options of an items field (`separator`).
        term_forms (dict[str, list[str]]): Alternative forms of each term of a text field.
        slug (str | None): Normalized variable name; filled in only when rules
            are rendered.

    Examples:
        >>> field = FieldInfo(name="petal width", optype="numeric", column_number=3)
        >>> field.slug is None
        True
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(description="Display name of the field.")
    optype: FieldOptype = Field(default="numeric", description="Kind of values the field holds.")
    column_number: int = Field(default=0, ge=0, description="Position of the field in the source dataset.")
    auto_generated: bool = Field(default=False, description="Whether the field was derived from another field.")
    parent_ids: list[str] = Field(default_factory=list, description="Ids of the fields this one derives from.")
    term_analysis: dict[str, Any] = Field(default_factory=dict, description="Text tokenization options.")
    item_analysis: dict[str, Any] = Field(default_factory=dict, description="Items field options.")
    term_forms: dict[str, list[str]] = Field(default_factory=dict, description="Alternative forms of each term.")
    slug: str | None = Field(default=None, description="Normalized variable name used in rendered rules.")

    @classmethod
    def from_serialized(cls, raw: Mapping[str, Any]) -> FieldInfo:
        """Build a FieldInfo from one entry of a serialized `fields` table.

        Term forms are nested under the field's `summary` in the serialized
        format; every other attribute sits at the top level.

        Args:
            raw (Mapping[str, Any]): The serialized field description.

        Returns:
            FieldInfo: The parsed field metadata.
        """
        summary = raw.get("summary") or {}
        return cls.model_validate({**raw, "term_forms": summary.get("term_forms", {})})


# ---------------------------------------------------------------------------
# Prediction result
# ---------------------------------------------------------------------------


class Prediction(BaseModel):
    """Result of evaluating a decision tree against one row of input data.

    Attributes:
        prediction (str | float): Predicted category label or numeric value.
        path (list[str]): Rules satisfied along the way from the root, in order.
        confidence (float | None): Wilson score lower bound for
            classifications, or the regression error bound. `NaN` when the
            statistic is undefined for the backing distribution.
        distribution (list[tuple[str | float, float]]): Distribution backing
            the prediction, as `(value, instances)` pairs.
        count (float): Total instances in `distribution`.
        distribution_unit (DistributionUnit | None): Wire unit the distribution
            came from, or the unit assigned after merging.
        median (float | None): Median of the distribution; regression only.
        min (float | None): Smallest objective value reaching the prediction; regression only.
        max (float | None): Largest objective value reaching the prediction; regression only.

    Examples:
        >>> result = Prediction(
        ...     prediction="Iris-setosa",
        ...     path=["petal width <= 0.8"],
        ...     confidence=0.92,
        ...     distribution=[("Iris-setosa", 50.0)],
        ...     count=50.0,
        ...     distribution_unit="categories",
        ... )
        >>> result.median is None
        True
    """

    model_config = ConfigDict(frozen=True)

    prediction: str | float = Field(description="Predicted category label or numeric value.")
    path: list[str] = Field(default_factory=list, description="Rules satisfied from the root, in order.")
    confidence: float | None = Field(default=None, description="Confidence or error estimate; NaN when undefined.")
    distribution: list[tuple[str | float, float]] = Field(
        default_factory=list,
        description="Distribution backing the prediction as (value, instances) pairs.",
    )
    count: float = Field(default=0.0, ge=0.0, description="Total instances backing the prediction.")
    distribution_unit: DistributionUnit | None = Field(default=None, description="Unit of the distribution.")
    median: float | None = Field(default=None, description="Median of the distribution; regression only.")
    min: float | None = Field(default=None, description="Minimum objective value; regression only.")
    max: float | None = Field(default=None, description="Maximum objective value; regression only.")
