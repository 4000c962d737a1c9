"""Local model: predictions from a serialized decision-tree model without network calls.

`LocalModel` reads the model resource a training service returns (either the
API envelope with `resource` and `object` keys, or the bare object), builds an
immutable `DecisionTree` from it, and answers predictions for rows keyed by
field name or field id.

Examples:
    >>> resource = {
    ...     "resource": "model/1",
    ...     "object": {
    ...         "objective_fields": ["000001"],
    ...         "model": {
    ...             "fields": {
    ...                 "000000": {"name": "f", "optype": "numeric", "column_number": 0},
    ...                 "000001": {"name": "label", "optype": "categorical", "column_number": 1},
    ...             },
    ...             "root": {
    ...                 "output": "yes",
    ...                 "count": 4,
    ...                 "distribution": [["yes", 2], ["no", 2]],
    ...                 "children": [
    ...                     {
    ...                         "id": 1,
    ...                         "output": "yes",
    ...                         "count": 2,
    ...                         "distribution": [["yes", 2]],
    ...                         "predicate": {"operator": ">=", "field": "000000", "value": 5},
    ...                     },
    ...                     {
    ...                         "id": 2,
    ...                         "output": "no",
    ...                         "count": 2,
    ...                         "distribution": [["no", 2]],
    ...                         "predicate": {"operator": "<", "field": "000000", "value": 5},
    ...                     },
    ...                 ],
    ...             },
    ...         },
    ...     },
    ... }
    >>> model = LocalModel.from_resource(resource)
    >>> model.predict({"f": 7}).prediction
    'yes'
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, TextIO

import polars as pl
from loguru import logger

from treekit.config import TreekitSettings
from treekit.exceptions import InferenceExhaustedError, ModelFormatError
from treekit.fields import invert_field_names, parse_fields, prepare_input, uniquify_field_names
from treekit.logging import PREDICTION_LEVEL
from treekit.tree.models import FieldInfo, MissingStrategy, Prediction
from treekit.tree.node import DecisionTree
from treekit.tree.prediction import predict as predict_tree
from treekit.tree.rules import generate_rules, get_ids_path, write_rules

_PREDICTION_MSG = "Prediction requested: {resource_id}"
_PREDICTION_ERROR_MSG = "Prediction failed: {resource_id}"


class LocalModel:
    """A decision-tree model evaluated in-process.

    The underlying tree is immutable, so one instance can serve predictions
    from several threads at once.

    Attributes:
        tree (DecisionTree): The materialized tree.
        resource_id (str | None): Id of the model resource, e.g. `"model/5143a51a37203f2cf7000972"`.
        settings (TreekitSettings): Prediction and rendering settings.
    """

    def __init__(
        self,
        tree: DecisionTree,
        *,
        resource_id: str | None = None,
        settings: TreekitSettings | None = None,
    ) -> None:
        """Initialize the model around an already built tree.

        Args:
            tree (DecisionTree): The tree to evaluate.
            resource_id (str | None): Id of the model resource.
            settings (TreekitSettings | None): Settings to use. Loaded from the
                environment when `None`.
        """
        self.tree = tree
        self.resource_id = resource_id
        self.settings = settings if settings is not None else TreekitSettings()
        self._field_ids_by_name = invert_field_names(tree.fields)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any], *, settings: TreekitSettings | None = None) -> LocalModel:
        """Build a local model from a model resource.

        Args:
            resource (Mapping[str, Any]): The API envelope (`{"resource": ...,
                "object": {...}}`) or the bare model object.
            settings (TreekitSettings | None): Settings to use. Loaded from the
                environment when `None`.

        Returns:
            LocalModel: The ready-to-use model.

        Raises:
            ModelFormatError: If the resource lacks the model, its root node,
                its fields table or its objective field, or when its
                training distribution is not an object.
            TreeConstructionError: If a tree node is malformed.
            FieldsNotFoundError: If a predicate refers to an unknown field.
        """
        try:
            model_object, resource_id = _unwrap_resource(resource)
            model = _require_mapping(model_object.get("model"), key="model")
            root = _require_mapping(model.get("root"), key="model.root")
            raw_fields = model.get("fields") or model.get("model_fields")
            raw_fields = _require_mapping(raw_fields, key="model.fields")
            objective_id = _objective_id(model_object)
            fields = uniquify_field_names(parse_fields(raw_fields), objective_id)
            model_distribution = _require_mapping(model.get("distribution") or {}, key="model.distribution")
            root_distribution = model_distribution.get("training")
            if root_distribution is not None:
                root_distribution = _require_mapping(root_distribution, key="model.distribution.training")
            tree = DecisionTree.from_serialized(
                root,
                fields=fields,
                objective_id=objective_id,
                root_distribution=root_distribution,
            )
        except ValueError as exc:
            logger.warning("Model loading failed", error_type=type(exc).__name__, message=str(exc))
            raise

        logger.info(
            "Local model loaded",
            resource_id=resource_id,
            node_count=len(tree),
            regression=tree.regression,
            objective_id=objective_id,
        )
        return cls(tree, resource_id=resource_id, settings=settings)

    @classmethod
    def from_json_file(cls, path: str | Path, *, settings: TreekitSettings | None = None) -> LocalModel:
        """Build a local model from a model resource stored as JSON.

        Args:
            path (str | Path): Path to the stored resource.
            settings (TreekitSettings | None): Settings to use.

        Returns:
            LocalModel: The ready-to-use model.

        Raises:
            ModelFormatError: If the file is not valid JSON or not a model resource.
            OSError: If the file cannot be read.
        """
        text = Path(path).read_text(encoding="utf-8")
        try:
            resource = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Model file is not valid JSON", path=str(path), message=str(exc))
            raise ModelFormatError(f"{path} is not valid JSON: {exc}", key="") from exc
        return cls.from_resource(_require_mapping(resource, key=""), settings=settings)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def fields(self) -> Mapping[str, FieldInfo]:
        """Field metadata keyed by id, with de-duplicated names."""
        return self.tree.fields

    @property
    def objective_id(self) -> str | None:
        """Id of the objective field."""
        return self.tree.objective_id

    def __repr__(self) -> str:
        """Return a short description of the model."""
        return (
            f"{self.__class__.__name__}(resource_id={self.resource_id!r}, "
            f"nodes={len(self.tree)}, regression={self.tree.regression})"
        )

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def predict(
        self,
        input_data: Mapping[str, Any],
        *,
        missing_strategy: MissingStrategy | None = None,
        by_name: bool = True,
        strict: bool = False,
    ) -> Prediction:
        """Predict the objective value for one row.

        Args:
            input_data (Mapping[str, Any]): Field values keyed by field name
                (or by field id when `by_name` is false). Unknown fields and the
                objective field are ignored; `None` marks a missing value.
            missing_strategy (MissingStrategy | None): How to handle missing
                splitting fields. Defaults to the configured strategy.
            by_name (bool): Whether `input_data` is keyed by field name.
            strict (bool): With `"last_prediction"`, raise instead of answering
                from an internal node.

        Returns:
            Prediction: The prediction with its confidence, distribution and path.

        Raises:
            InferenceExhaustedError: If the traversal cannot reach an answer.
            ValueError: If a numeric field's value is not a number.

        Examples:
            >>> model = LocalModel.from_resource(
            ...     {"objective_field": "000000", "model": {"fields": {"000000": {"name": "y"}},
            ...      "root": {"output": 1.5, "count": 2, "distribution": [[1.0, 1], [2.0, 1]]}}}
            ... )
            >>> model.predict({}).prediction
            1.5
        """
        strategy = missing_strategy or self.settings.missing_strategy
        logger.log(
            PREDICTION_LEVEL,
            _PREDICTION_MSG.format(resource_id=self.resource_id),
            missing_strategy=strategy,
            field_count=len(input_data),
        )
        try:
            row = prepare_input(input_data, self.fields, objective_id=self.objective_id, by_name=by_name)
            result = predict_tree(
                self.tree,
                row,
                missing_strategy=strategy,
                strict=strict,
                bins_limit=self.settings.bins_limit,
                regression_z=self.settings.regression_z,
                wilson_z=self.settings.wilson_z,
            )
        except (InferenceExhaustedError, ValueError) as exc:
            logger.warning(
                _PREDICTION_ERROR_MSG.format(resource_id=self.resource_id),
                error_type=type(exc).__name__,
                message=str(exc),
            )
            raise
        logger.debug(
            "Prediction result",
            prediction=result.prediction,
            confidence=result.confidence,
            count=result.count,
            depth=len(result.path),
        )
        return result

    def predict_frame(
        self,
        df: pl.DataFrame,
        *,
        missing_strategy: MissingStrategy | None = None,
        strict: bool = False,
    ) -> pl.DataFrame:
        """Predict every row of a DataFrame whose columns are named after the fields.

        Columns that are not model inputs are ignored and null cells are
        treated as missing values.

        Args:
            df (pl.DataFrame): Rows to predict.
            missing_strategy (MissingStrategy | None): How to handle missing
                splitting fields. Defaults to the configured strategy.
            strict (bool): With `"last_prediction"`, raise instead of answering
                from an internal node.

        Returns:
            pl.DataFrame: One row per input row with `prediction`, `confidence`
                and `count` columns.
        """
        input_columns = [
            column
            for column in df.columns
            if column in self._field_ids_by_name and self._field_ids_by_name[column] != self.objective_id
        ]
        ignored = [column for column in df.columns if column not in input_columns]
        if ignored:
            logger.warning("Ignoring columns that are not model inputs", columns=ignored)

        results = [
            self.predict(
                {column: row[column] for column in input_columns},
                missing_strategy=missing_strategy,
                strict=strict,
            )
            for row in df.iter_rows(named=True)
        ]
        prediction_dtype = pl.Float64 if self.tree.regression else pl.String
        return pl.DataFrame(
            {
                "prediction": [result.prediction for result in results],
                "confidence": [result.confidence for result in results],
                "count": [result.count for result in results],
            },
            schema={"prediction": prediction_dtype, "confidence": pl.Float64, "count": pl.Float64},
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def rules(self, out: TextIO | None = None, *, filter_id: int | None = None, subtree: bool = True) -> str:
        """Render the tree as nested IF-THEN rules.

        Args:
            out (TextIO | None): Stream the rules are also written to.
            filter_id (int | None): Only render the branch leading to this node id.
            subtree (bool): Whether to render the children of nodes outside
                that branch.

        Returns:
            str: The rendered rules.

        Raises:
            KeyError: If `filter_id` is not the id of a node.
        """
        try:
            ids_path = get_ids_path(self.tree, filter_id)
        except KeyError:
            logger.warning("Rule filter refers to an unknown node", filter_id=filter_id)
            raise
        text = generate_rules(self.tree, ids_path=ids_path, subtree=subtree, indent=self.settings.rule_indent)
        if out is not None:
            write_rules(out, text)
        return text


# ---------------------------------------------------------------------------
# Private helpers -- resource parsing
# ---------------------------------------------------------------------------


def _unwrap_resource(resource: Mapping[str, Any]) -> tuple[Mapping[str, Any], str | None]:
    """Return the model object and resource id from an envelope or a bare object."""
    if isinstance(resource.get("object"), Mapping):
        return resource["object"], resource.get("resource") or resource["object"].get("resource")
    return resource, resource.get("resource")


def _require_mapping(value: Any, *, key: str) -> Mapping[str, Any]:
    """Return `value` when it is a JSON object, raising `ModelFormatError` otherwise."""
    if not isinstance(value, Mapping):
        raise ModelFormatError(f"Model resource has no valid {key or 'top-level'} object", key=key)
    return value


def _objective_id(model_object: Mapping[str, Any]) -> str:
    """Return the objective field id from `objective_fields[0]` or `objective_field`.

    Raises:
        ModelFormatError: If neither key holds a field id.
    """
    objective_fields = model_object.get("objective_fields")
    if isinstance(objective_fields, list) and objective_fields:
        return str(objective_fields[0])
    objective_field = model_object.get("objective_field")
    if isinstance(objective_field, str) and objective_field:
        return objective_field
    raise ModelFormatError("Model resource does not name its objective field", key="objective_fields")
