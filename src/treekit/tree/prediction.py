"""Prediction traversals over a decision tree.

Two strategies decide what happens when the field a node splits on is missing
from the input data:

- `"last_prediction"`: descend along the first child whose predicate accepts
  the row and, when none does, answer with the node where the walk stopped.
- `"proportional"`: when the split cannot be resolved, follow every branch and
  merge the distributions of all the leaves reached.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from operator import itemgetter
from typing import Any, Final

from loguru import logger

from treekit.exceptions import InferenceExhaustedError
from treekit.tree.distribution import merge_bins, merge_distributions
from treekit.tree.models import DistributionKey, MissingStrategy, Prediction
from treekit.tree.node import DecisionTree, TreeNode
from treekit.tree.predicate import Predicate
from treekit.tree.statistics import (
    DEFAULT_Z,
    dist_median,
    get_instances,
    mean,
    regression_error,
    unbiased_sample_variance,
    ws_confidence,
)

BINS_LIMIT: Final[int] = 32  # Maximum points kept in a merged regression distribution.


@dataclass(frozen=True, slots=True)
class _ProportionalOutcome:
    """Result of a proportional walk below one node.

    Attributes:
        distribution (dict[DistributionKey, float]): Merged instances per value.
        minimum (float | None): Smallest objective value among the leaves reached.
        maximum (float | None): Largest objective value among the leaves reached.
        last_node (TreeNode): Deepest node reached along a unique path.
    """

    distribution: dict[DistributionKey, float]
    minimum: float | None
    maximum: float | None
    last_node: TreeNode


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def predict(
    tree: DecisionTree,
    input_data: Mapping[str, Any],
    *,
    missing_strategy: MissingStrategy = "last_prediction",
    strict: bool = False,
    bins_limit: int = BINS_LIMIT,
    regression_z: float = DEFAULT_Z,
    wilson_z: float = DEFAULT_Z,
) -> Prediction:
    """Predict the objective value for one row of input data.

    Args:
        tree (DecisionTree): The tree to evaluate.
        input_data (Mapping[str, Any]): Field values keyed by field id. Absent
            keys and `None` values are treated as missing.
        missing_strategy (MissingStrategy): How to handle a missing splitting field.
        strict (bool): With `"last_prediction"`, raise instead of answering
            from an internal node when no child accepts the row.
        bins_limit (int): Maximum points kept in a merged regression distribution.
        regression_z (float): z value of the regression error bound.
        wilson_z (float): z value of the Wilson score confidence.

    Returns:
        Prediction: The prediction and its supporting statistics.

    Raises:
        InferenceExhaustedError: If the walk stops at an internal node and the
            strategy cannot recover from it.
        ValueError: If `missing_strategy` is not a known strategy.
    """
    match missing_strategy:
        case "last_prediction":
            return predict_last_prediction(tree, input_data, strict=strict)
        case "proportional":
            return predict_proportional(
                tree,
                input_data,
                bins_limit=bins_limit,
                regression_z=regression_z,
                wilson_z=wilson_z,
            )
        case _:
            raise ValueError(f"Unknown missing strategy: {missing_strategy!r}")


def predict_last_prediction(
    tree: DecisionTree,
    input_data: Mapping[str, Any],
    *,
    strict: bool = False,
) -> Prediction:
    """Follow a single path from the root and predict with the node it ends on.

    At each node the first child, in declaration order, whose predicate accepts
    the row is entered and its rule appended to the path.

    Args:
        tree (DecisionTree): The tree to evaluate.
        input_data (Mapping[str, Any]): Field values keyed by field id.
        strict (bool): Raise when the walk stops before reaching a leaf.

    Returns:
        Prediction: Statistics of the node where the walk ended.

    Raises:
        InferenceExhaustedError: If `strict` and no child of an internal node
            accepts the row.
    """
    node = tree.root
    path: list[str] = []
    while not node.is_leaf:
        child = _first_accepting_child(tree, node, input_data)
        if child is None:
            if strict:
                raise InferenceExhaustedError(node_id=node.id, path=path)
            logger.debug("Traversal stopped at internal node", node_id=node.id, depth=len(path))
            break
        path.append(child.predicate.to_rule(tree.fields))
        node = child
    return _node_prediction(node, path)


def predict_proportional(
    tree: DecisionTree,
    input_data: Mapping[str, Any],
    *,
    bins_limit: int = BINS_LIMIT,
    regression_z: float = DEFAULT_Z,
    wilson_z: float = DEFAULT_Z,
) -> Prediction:
    """Predict by merging every leaf reachable when splitting fields are missing.

    For regression the merged distribution is compacted to `bins_limit` points
    and summarized by its mean, median and error bound; a merge that ends on a
    single one-instance leaf returns that leaf's own statistics instead. For
    classification the lowest category key of the merged distribution is
    predicted, with its Wilson score as confidence.

    Args:
        tree (DecisionTree): The tree to evaluate.
        input_data (Mapping[str, Any]): Field values keyed by field id.
        bins_limit (int): Maximum points kept in a merged regression distribution.
        regression_z (float): z value of the regression error bound.
        wilson_z (float): z value of the Wilson score confidence.

    Returns:
        Prediction: The merged prediction.

    Raises:
        InferenceExhaustedError: If a split that can be resolved has no child
            accepting the row.
    """
    path: list[str] = []
    outcome = _walk_proportional(tree, tree.root, input_data, path, missing_found=False)
    if not outcome.distribution:
        return _node_prediction(outcome.last_node, path)
    if tree.root.is_regression:
        return _regression_prediction(outcome, path, bins_limit=bins_limit, regression_z=regression_z)
    return _classification_prediction(outcome, path, wilson_z=wilson_z)


# ---------------------------------------------------------------------------
# Private helpers -- traversal
# ---------------------------------------------------------------------------


def _first_accepting_child(tree: DecisionTree, node: TreeNode, input_data: Mapping[str, Any]) -> TreeNode | None:
    """Return the first child of `node` whose predicate accepts the row, if any."""
    for child in tree.children(node):
        if child.predicate.apply(input_data, tree.fields):
            return child
    return None


def _walk_proportional(
    tree: DecisionTree,
    node: TreeNode,
    input_data: Mapping[str, Any],
    path: list[str],
    *,
    missing_found: bool,
) -> _ProportionalOutcome:
    """Collect the merged distribution of the leaves reachable below `node`.

    Rules are appended to `path` only while the walk follows a unique branch.

    Args:
        tree (DecisionTree): The tree being evaluated.
        node (TreeNode): Node to walk from.
        input_data (Mapping[str, Any]): Field values keyed by field id.
        path (list[str]): Rules accumulated so far; appended to in place.
        missing_found (bool): Whether a missing split was fanned out above `node`.

    Returns:
        _ProportionalOutcome: Merged distribution, bounds and last unique node.
    """
    if node.is_leaf:
        return _ProportionalOutcome(
            distribution=merge_distributions({}, _as_mapping(node.distribution)),
            minimum=node.minimum,
            maximum=node.maximum,
            last_node=node,
        )

    children = tree.children(node)
    if _one_branch(children, input_data):
        child = _first_accepting_child(tree, node, input_data)
        if child is None:
            raise InferenceExhaustedError(node_id=node.id, path=path)
        rule = child.predicate.to_rule(tree.fields)
        if rule not in path and not missing_found:
            path.append(rule)
        return _walk_proportional(tree, child, input_data, path, missing_found=missing_found)

    logger.debug("Splitting field missing, following every branch", node_id=node.id, branches=len(children))
    merged: dict[DistributionKey, float] = {}
    minimums: list[float] = []
    maximums: list[float] = []
    for child in children:
        outcome = _walk_proportional(tree, child, input_data, path, missing_found=True)
        merged = merge_distributions(merged, outcome.distribution)
        if outcome.minimum is not None:
            minimums.append(outcome.minimum)
        if outcome.maximum is not None:
            maximums.append(outcome.maximum)
    return _ProportionalOutcome(
        distribution=merged,
        minimum=min(minimums, default=None),
        maximum=max(maximums, default=None),
        last_node=node,
    )


def _one_branch(children: Sequence[TreeNode], input_data: Mapping[str, Any]) -> bool:
    """Return whether a single branch below a node can be chosen for this row.

    That is the case when the children's common splitting field has a value,
    when one child is the designated branch for missing values, or when one
    child tests for a missing value itself.

    Args:
        children (Sequence[TreeNode]): The children of the node being split.
        input_data (Mapping[str, Any]): Field values keyed by field id.

    Returns:
        bool: `True` if only one branch has to be followed.
    """
    predicates = [child.predicate for child in children if isinstance(child.predicate, Predicate)]
    split_fields = {predicate.field for predicate in predicates}
    if len(split_fields) == 1 and input_data.get(next(iter(split_fields))) is not None:
        return True
    return any(predicate.missing for predicate in predicates) or any(
        predicate.value is None for predicate in predicates
    )


def _as_mapping(distribution: Sequence[tuple[DistributionKey, float]]) -> dict[DistributionKey, float]:
    """Convert `(value, instances)` pairs to instances per value, summing repeated values."""
    mapping: dict[DistributionKey, float] = {}
    for value, instances in distribution:
        mapping[value] = mapping.get(value, 0.0) + instances
    return mapping


# ---------------------------------------------------------------------------
# Private helpers -- result assembly
# ---------------------------------------------------------------------------


def _node_prediction(node: TreeNode, path: list[str]) -> Prediction:
    """Build a prediction from the statistics stored on a single node.

    The count is the number of instances in the node's distribution, or the
    node's own count when it carries no distribution.
    """
    return Prediction(
        prediction=node.output.value,
        path=path,
        confidence=node.confidence,
        distribution=list(node.distribution),
        count=get_instances(node.distribution) if node.distribution else node.count,
        distribution_unit=node.distribution_unit,
        median=node.median if node.is_regression else None,
        min=node.minimum if node.is_regression else None,
        max=node.maximum if node.is_regression else None,
    )


def _regression_prediction(
    outcome: _ProportionalOutcome,
    path: list[str],
    *,
    bins_limit: int,
    regression_z: float,
) -> Prediction:
    """Summarize a merged numeric distribution as a regression prediction.

    Args:
        outcome (_ProportionalOutcome): Result of the proportional walk.
        path (list[str]): Rules followed along the unique part of the walk.
        bins_limit (int): Maximum points kept after compaction.
        regression_z (float): z value of the error bound.

    Returns:
        Prediction: Mean, error bound, median and bounds of the merged distribution.
    """
    final_distribution = outcome.distribution
    if len(final_distribution) == 1 and next(iter(final_distribution.values())) == 1:
        # A single one-instance leaf keeps the statistics computed by the training service.
        last_node = outcome.last_node
        return Prediction(
            prediction=last_node.output.value,
            path=path,
            confidence=last_node.confidence,
            distribution=list(last_node.distribution),
            count=1.0,
            distribution_unit=last_node.distribution_unit,
            median=last_node.median,
            min=last_node.minimum,
            max=last_node.maximum,
        )

    points = sorted(((float(value), instances) for value, instances in final_distribution.items()), key=itemgetter(0))
    distribution_unit = "bins" if len(points) > bins_limit else "counts"
    points = merge_bins(points, bins_limit)
    prediction = mean(points)
    total_instances = get_instances(points)
    confidence = regression_error(unbiased_sample_variance(points, prediction), total_instances, regression_z)
    logger.debug(
        "Merged regression distribution",
        points=len(points),
        instances=total_instances,
        distribution_unit=distribution_unit,
    )
    return Prediction(
        prediction=prediction,
        path=path,
        confidence=confidence,
        distribution=points,
        count=total_instances,
        distribution_unit=distribution_unit,
        median=dist_median(points, total_instances),
        min=outcome.minimum,
        max=outcome.maximum,
    )


def _classification_prediction(
    outcome: _ProportionalOutcome,
    path: list[str],
    *,
    wilson_z: float,
) -> Prediction:
    """Summarize a merged categorical distribution as a classification prediction.

    The first category in ascending key order is predicted. This tie-break is
    deterministic but does not pick the most frequent category.

    Args:
        outcome (_ProportionalOutcome): Result of the proportional walk.
        path (list[str]): Rules followed along the unique part of the walk.
        wilson_z (float): z value of the Wilson score confidence.

    Returns:
        Prediction: The chosen category with its Wilson score confidence.
    """
    points = sorted(outcome.distribution.items(), key=lambda item: str(item[0]))
    prediction = points[0][0]
    return Prediction(
        prediction=prediction,
        path=path,
        confidence=ws_confidence(prediction, outcome.distribution, wilson_z),
        distribution=points,
        count=get_instances(points),
        distribution_unit="categorial",
    )
