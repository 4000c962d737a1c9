"""Tree nodes and their construction from a serialized decision tree.

A `DecisionTree` is an arena: every node lives in one tuple, in preorder with
the root at index 0, and refers to its parent and children by index. Nodes are
frozen once built, so a finished tree can be shared across threads and
predicted against concurrently.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from loguru import logger
from pydantic import ValidationError

from treekit.exceptions import FieldsNotFoundError, TreeConstructionError
from treekit.tree.distribution import distribution_from_summary, infer_unit, to_distribution
from treekit.tree.models import (
    Distribution,
    DistributionUnit,
    FieldInfo,
    NodeOutput,
    NumericOutput,
    parse_output,
)
from treekit.tree.predicate import TRUE_PREDICATE, NodePredicate, Predicate
from treekit.tree.statistics import dist_median, gini_impurity

_REQUIRED_NODE_KEYS: tuple[str, ...] = ("output", "count")


@dataclass(frozen=True, slots=True)
class TreeNode:
    """One node of a decision tree.

    Attributes:
        index (int): Position of the node in its tree's arena.
        id (int | None): Serialized node id, `None` when the node has none.
        parent_index (int | None): Arena index of the parent; `None` for the root.
        predicate (NodePredicate): Condition a row must satisfy to reach this node.
        child_indices (tuple[int, ...]): Arena indices of the children, in
            declaration order. Empty for a leaf.
        output (NodeOutput): Prediction this node gives on its own.
        count (float): Instances that reached the node during training.
        confidence (float | None): Confidence supplied by the training service.
        distribution (Distribution): `(value, instances)` pairs at the node.
        distribution_unit (DistributionUnit | None): Wire unit of `distribution`.
        is_regression (bool): Whether the subtree rooted here predicts numbers.
        median (float | None): Median of the distribution; regression only.
        minimum (float | None): Smallest objective value; regression only.
        maximum (float | None): Largest objective value; regression only.
        impurity (float | None): Halved Gini impurity; classification only.
    """

    index: int
    id: int | None
    parent_index: int | None
    predicate: NodePredicate
    child_indices: tuple[int, ...]
    output: NodeOutput
    count: float
    confidence: float | None
    distribution: Distribution
    distribution_unit: DistributionUnit | None
    is_regression: bool
    median: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    impurity: float | None = None

    @property
    def is_leaf(self) -> bool:
        """Whether the node has no children."""
        return not self.child_indices


@dataclass
class _BuildContext:
    """Accumulator threaded through the recursive construction of one tree.

    Attributes:
        fields (Mapping[str, FieldInfo]): Field metadata used to validate predicates.
        nodes (list[TreeNode | None]): Arena under construction; a slot holds
            `None` until its node is finished.
        ids (dict[int, int]): Serialized node id to arena index.
        regression (bool): Whether any node built so far is a regression node.
        max_bins (int): Largest distribution length seen on a regression node.
    """

    fields: Mapping[str, FieldInfo]
    nodes: list[TreeNode | None] = field(default_factory=list)
    ids: dict[int, int] = field(default_factory=dict)
    regression: bool = False
    max_bins: int = 0


class DecisionTree:
    """An immutable decision tree ready for local predictions.

    Attributes:
        fields (MappingProxyType[str, FieldInfo]): Read-only field metadata keyed by id.
        objective_id (str | None): Id of the objective field.
        regression (bool): Whether the tree predicts numeric values.
        max_bins (int): Largest distribution length found on any regression node.

    Examples:
        >>> tree = DecisionTree.from_serialized(
        ...     {"output": "yes", "count": 2, "distribution": [["yes", 2]]},
        ...     fields={},
        ...     objective_id=None,
        ... )
        >>> tree.root.output.value
        'yes'
    """

    def __init__(
        self,
        nodes: Sequence[TreeNode],
        *,
        fields: Mapping[str, FieldInfo],
        objective_id: str | None,
        regression: bool,
        max_bins: int,
    ) -> None:
        """Initialize the tree from an already built arena.

        Args:
            nodes (Sequence[TreeNode]): Nodes in preorder, root first.
            fields (Mapping[str, FieldInfo]): Field metadata keyed by id.
            objective_id (str | None): Id of the objective field.
            regression (bool): Whether the tree predicts numeric values.
            max_bins (int): Largest distribution length on a regression node.

        Raises:
            ValueError: If `nodes` is empty.
        """
        if not nodes:
            raise ValueError("A decision tree needs at least one node")
        self._nodes: tuple[TreeNode, ...] = tuple(nodes)
        self._ids: dict[int, int] = {node.id: node.index for node in self._nodes if node.id is not None}
        self.fields: MappingProxyType[str, FieldInfo] = MappingProxyType(dict(fields))
        self.objective_id = objective_id
        self.regression = regression
        self.max_bins = max_bins

    @classmethod
    def from_serialized(
        cls,
        root: Mapping[str, Any],
        *,
        fields: Mapping[str, FieldInfo],
        objective_id: str | None,
        root_distribution: Mapping[str, Any] | None = None,
    ) -> DecisionTree:
        """Materialize a tree from its serialized root node.

        Children are built before their parent's statistics, so a parent sees
        the outputs of its whole subtree when deciding whether it is a
        regression node.

        Args:
            root (Mapping[str, Any]): The serialized root node.
            fields (Mapping[str, FieldInfo]): Field metadata keyed by id.
            objective_id (str | None): Id of the objective field.
            root_distribution (Mapping[str, Any] | None): Objective summary of
                the training data, used when the root carries no distribution.

        Returns:
            DecisionTree: The finished tree.

        Raises:
            TreeConstructionError: If any node lacks `output` or `count`, has
                an output that is neither a label nor a number, or has a
                malformed predicate or distribution.
            FieldsNotFoundError: If a predicate refers to a field missing from `fields`.
        """
        context = _BuildContext(fields=fields)
        _build_node(root, context, parent_index=None, root_distribution=root_distribution)
        nodes = [node for node in context.nodes if node is not None]
        logger.debug(
            "Decision tree built",
            node_count=len(nodes),
            regression=context.regression,
            max_bins=context.max_bins,
        )
        return cls(
            nodes,
            fields=fields,
            objective_id=objective_id,
            regression=context.regression,
            max_bins=context.max_bins,
        )

    @property
    def root(self) -> TreeNode:
        """The root node."""
        return self._nodes[0]

    @property
    def nodes(self) -> tuple[TreeNode, ...]:
        """All nodes in preorder."""
        return self._nodes

    def __len__(self) -> int:
        """Return the number of nodes."""
        return len(self._nodes)

    def __iter__(self) -> Iterator[TreeNode]:
        """Iterate over the nodes in preorder."""
        return iter(self._nodes)

    def node(self, index: int) -> TreeNode:
        """Return the node stored at arena `index`."""
        return self._nodes[index]

    def children(self, node: TreeNode) -> tuple[TreeNode, ...]:
        """Return the children of `node` in declaration order."""
        return tuple(self._nodes[index] for index in node.child_indices)

    def parent(self, node: TreeNode) -> TreeNode | None:
        """Return the parent of `node`, or `None` for the root."""
        if node.parent_index is None:
            return None
        return self._nodes[node.parent_index]

    def node_by_id(self, node_id: int) -> TreeNode:
        """Return the node with serialized id `node_id`.

        Args:
            node_id (int): Serialized node id.

        Returns:
            TreeNode: The matching node.

        Raises:
            KeyError: If no node has that id.
        """
        return self._nodes[self._ids[node_id]]

    def ancestors(self, node: TreeNode) -> list[TreeNode]:
        """Return the ancestors of `node`, nearest first, ending with the root."""
        chain: list[TreeNode] = []
        current = self.parent(node)
        while current is not None:
            chain.append(current)
            current = self.parent(current)
        return chain


# ---------------------------------------------------------------------------
# Private helpers -- construction
# ---------------------------------------------------------------------------


def _build_node(
    serialized: Mapping[str, Any],
    context: _BuildContext,
    *,
    parent_index: int | None,
    root_distribution: Mapping[str, Any] | None,
) -> int:
    """Build one serialized node and its subtree into the context's arena.

    Args:
        serialized (Mapping[str, Any]): The serialized node.
        context (_BuildContext): Construction accumulator.
        parent_index (int | None): Arena index of the parent node.
        root_distribution (Mapping[str, Any] | None): Fallback objective
            summary; only ever passed for the root.

    Returns:
        int: Arena index of the built node.
    """
    node_id = serialized.get("id")
    missing_keys = [key for key in _REQUIRED_NODE_KEYS if key not in serialized]
    if missing_keys:
        raise TreeConstructionError(
            f"Tree node is missing required keys: {missing_keys}",
            missing_fields=missing_keys,
            node_id=node_id,
        )
    count = _required_float(serialized, "count", node_id=node_id)
    confidence = _optional_float(serialized, "confidence", node_id=node_id)
    output = parse_output(serialized["output"])
    if output is None:
        raise TreeConstructionError(
            f"Tree node output must be a label or a number, got {serialized['output']!r}",
            node_id=node_id,
        )

    # Reserve the slot so the arena stays in preorder.
    index = len(context.nodes)
    context.nodes.append(None)
    if node_id is not None:
        context.ids[node_id] = index

    predicate = _parse_predicate(serialized, context, parent_index=parent_index, node_id=node_id)
    child_indices = tuple(
        _build_node(child, context, parent_index=index, root_distribution=None)
        for child in serialized.get("children") or ()
    )
    children = [context.nodes[child_index] for child_index in child_indices]
    is_regression = isinstance(output, NumericOutput) and all(
        child is not None and child.is_regression for child in children
    )
    context.regression = context.regression or is_regression

    distribution, unit, summary = _select_distribution(serialized, root_distribution, node_id=node_id)
    statistics: dict[str, float | None] = {}
    if is_regression:
        context.max_bins = max(context.max_bins, len(distribution))
        statistics = _regression_statistics(distribution, count, summary, node_id=node_id)
    elif distribution:
        statistics = {"impurity": gini_impurity(distribution, count)}

    context.nodes[index] = TreeNode(
        index=index,
        id=node_id,
        parent_index=parent_index,
        predicate=predicate,
        child_indices=child_indices,
        output=output,
        count=count,
        confidence=confidence,
        distribution=distribution,
        distribution_unit=unit,
        is_regression=is_regression,
        **statistics,
    )
    return index


def _parse_predicate(
    serialized: Mapping[str, Any],
    context: _BuildContext,
    *,
    parent_index: int | None,
    node_id: int | None,
) -> NodePredicate:
    """Parse a node's predicate, checking that its field is known.

    The root accepts every row; its serialized predicate (usually the literal
    `true`) is ignored.

    Args:
        serialized (Mapping[str, Any]): The serialized node.
        context (_BuildContext): Construction accumulator holding the field metadata.
        parent_index (int | None): Arena index of the parent; `None` for the root.
        node_id (int | None): Serialized id, for error messages.

    Returns:
        NodePredicate: The parsed predicate.
    """
    raw_predicate = serialized.get("predicate")
    if parent_index is None:
        return TRUE_PREDICATE
    if not isinstance(raw_predicate, Mapping):
        raise TreeConstructionError(
            "Non-root tree node must carry a predicate object",
            missing_fields=["predicate"],
            node_id=node_id,
        )
    try:
        predicate = Predicate.from_serialized(raw_predicate)
    except (ValueError, ValidationError) as exc:
        raise TreeConstructionError(f"Invalid predicate: {exc}", node_id=node_id) from exc
    if predicate.field not in context.fields:
        raise FieldsNotFoundError(missing_fields=[predicate.field], available_fields=sorted(context.fields))
    return predicate


def _select_distribution(
    serialized: Mapping[str, Any],
    root_distribution: Mapping[str, Any] | None,
    *,
    node_id: int | None,
) -> tuple[Distribution, DistributionUnit | None, Mapping[str, Any] | None]:
    """Pick the node's distribution from the first available source.

    Sources in order: the node's own `distribution`, its `objective_summary`,
    then the inherited root summary.

    Args:
        serialized (Mapping[str, Any]): The serialized node.
        root_distribution (Mapping[str, Any] | None): Fallback objective summary.
        node_id (int | None): Serialized id, for error messages.

    Returns:
        tuple[Distribution, DistributionUnit | None, Mapping[str, Any] | None]:
            The distribution, its unit, and the summary it came from (`None`
            for an explicit distribution).
    """
    try:
        if "distribution" in serialized:
            distribution = to_distribution(serialized["distribution"])
            return distribution, infer_unit(distribution), None
        summary = serialized.get("objective_summary") or root_distribution
        parsed = distribution_from_summary(summary)
    except (TypeError, ValueError) as exc:
        raise TreeConstructionError(f"Invalid distribution: {exc}", node_id=node_id) from exc
    if parsed is None:
        return (), None, summary
    distribution, unit = parsed
    return distribution, unit, summary


def _regression_statistics(
    distribution: Distribution,
    count: float,
    summary: Mapping[str, Any] | None,
    *,
    node_id: int | None,
) -> dict[str, float | None]:
    """Compute median and bounds of a regression node.

    Summary values take precedence; otherwise they are derived from the
    distribution.

    Args:
        distribution (Distribution): Numeric `(value, instances)` pairs.
        count (float): Instances that reached the node.
        summary (Mapping[str, Any] | None): The objective summary the distribution came from.
        node_id (int | None): Serialized id, for error messages.

    Returns:
        dict[str, float | None]: `median`, `minimum` and `maximum` keyed for `TreeNode`.

    Raises:
        TreeConstructionError: If a distribution value or summary statistic is not a number.
    """
    labels = [value for value, _ in distribution if isinstance(value, str)]
    if labels:
        raise TreeConstructionError(
            f"Regression node distribution holds non-numeric values: {labels}",
            node_id=node_id,
        )
    summary = summary or {}
    points = sorted((float(value), instances) for value, instances in distribution)
    values = [value for value, _ in points]
    median = summary.get("median")
    if median is None:
        median = dist_median(points, count)
    minimum = summary.get("minimum", min(values, default=None))
    maximum = summary.get("maximum", max(values, default=None))
    try:
        return {
            "median": None if median is None else float(median),
            "minimum": None if minimum is None else float(minimum),
            "maximum": None if maximum is None else float(maximum),
        }
    except (TypeError, ValueError) as exc:
        raise TreeConstructionError(f"Invalid objective summary: {exc}", node_id=node_id) from exc


def _required_float(serialized: Mapping[str, Any], key: str, *, node_id: int | None) -> float:
    """Read a required numeric attribute of a serialized node.

    A `null` value counts as missing.

    Raises:
        TreeConstructionError: If the value is missing or not a number.
    """
    value = _optional_float(serialized, key, node_id=node_id)
    if value is None:
        raise TreeConstructionError(
            f"Tree node is missing required keys: {[key]}",
            missing_fields=[key],
            node_id=node_id,
        )
    return value


def _optional_float(serialized: Mapping[str, Any], key: str, *, node_id: int | None) -> float | None:
    """Read a nullable numeric attribute of a serialized node."""
    value = serialized.get(key)
    if value is None:
        return None
    # bool is an int subclass but never a valid count or confidence
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise TreeConstructionError(f"Tree node {key} must be a number, got {value!r}", node_id=node_id)
    try:
        return float(value)
    except ValueError as exc:
        raise TreeConstructionError(f"Tree node {key} must be a number, got {value!r}", node_id=node_id) from exc
