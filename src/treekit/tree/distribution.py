"""Merging and compaction of weighted distributions, and parsing of their wire formats."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from operator import itemgetter
from typing import Any, Final

import numpy as np

from treekit.tree.models import Distribution, DistributionKey, DistributionUnit

# Order in which an objective summary's distribution variants are looked up.
SUMMARY_UNITS: Final[tuple[DistributionUnit, ...]] = ("bins", "counts", "categories")


def merge_distributions(
    distribution: Mapping[DistributionKey, float],
    new_distribution: Mapping[DistributionKey, float],
) -> dict[DistributionKey, float]:
    """Add the instances of `new_distribution` to those of `distribution`, key by key.

    Neither input is modified. The result's key order is unspecified; sort it
    before computing order-dependent statistics.

    Args:
        distribution (Mapping[DistributionKey, float]): Instances per value.
        new_distribution (Mapping[DistributionKey, float]): Instances per value to add.

    Returns:
        dict[DistributionKey, float]: Instances per value of the union.

    Examples:
        >>> merge_distributions({"a": 1.0}, {"a": 2.0, "b": 1.0})
        {'a': 3.0, 'b': 1.0}
    """
    merged = dict(distribution)
    for value, instances in new_distribution.items():
        merged[value] = merged.get(value, 0.0) + instances
    return merged


def merge_bins(distribution: Sequence[tuple[float, float]], limit: int) -> list[tuple[float, float]]:
    """Reduce a numeric distribution to at most `limit` points.

    Points are sorted by value; while there are too many, the two adjacent
    points with the smallest gap are replaced by a single point at their
    instance-weighted mean, carrying their summed instances. Ties between
    equal gaps resolve to the leftmost pair. The total number of instances is
    preserved.

    Args:
        distribution (Sequence[tuple[float, float]]): `(value, instances)` pairs.
        limit (int): Maximum number of points in the result; values below 1
            are treated as 1.

    Returns:
        list[tuple[float, float]]: The compacted distribution, sorted by value.

    Examples:
        >>> merge_bins([(1.0, 1.0), (2.0, 1.0), (10.0, 1.0)], 2)
        [(1.5, 2.0), (10.0, 1.0)]
    """
    bins = sorted(((float(value), float(instances)) for value, instances in distribution), key=itemgetter(0))
    limit = max(limit, 1)
    while len(bins) > limit:
        values = np.fromiter((value for value, _ in bins), dtype=np.float64, count=len(bins))
        index = int(np.argmin(np.diff(values))) + 1
        (left_value, left_instances), (right_value, right_instances) = bins[index - 1], bins[index]
        instances = left_instances + right_instances
        if instances > 0:
            value = (left_value * left_instances + right_value * right_instances) / instances
        else:
            value = (left_value + right_value) / 2.0
        bins[index - 1 : index + 1] = [(value, instances)]
    return bins


def distribution_from_summary(summary: Mapping[str, Any] | None) -> tuple[Distribution, DistributionUnit] | None:
    """Extract the distribution held by an objective summary.

    Args:
        summary (Mapping[str, Any] | None): A serialized objective summary
            carrying one of `bins`, `counts` or `categories`.

    Returns:
        tuple[Distribution, DistributionUnit] | None: The `(value, instances)`
            pairs and the unit they were read from, or `None` when the summary
            carries no distribution.
    """
    if not summary:
        return None
    for unit in SUMMARY_UNITS:
        if unit in summary:
            return to_distribution(summary[unit]), unit
    return None


def infer_unit(distribution: Distribution) -> DistributionUnit:
    """Infer the wire unit of an explicit node distribution.

    Args:
        distribution (Distribution): `(value, instances)` pairs.

    Returns:
        DistributionUnit: `"categories"` when any value is a label, `"counts"` otherwise.
    """
    if any(isinstance(value, str) for value, _ in distribution):
        return "categories"
    return "counts"


def to_distribution(raw: Iterable[Sequence[Any]]) -> Distribution:
    """Normalize serialized `[value, instances]` pairs to an immutable distribution.

    Numeric values are converted to float so that equal points share one key
    when distributions are merged.

    Args:
        raw (Iterable[Sequence[Any]]): Serialized pairs.

    Returns:
        Distribution: Tuple of `(value, instances)` tuples.

    Raises:
        ValueError: If an entry is not a two-element pair.
    """
    pairs: list[tuple[DistributionKey, float]] = []
    for entry in raw:
        if len(entry) != 2:
            raise ValueError(f"Distribution entries must be [value, instances] pairs, got {entry!r}")
        value, instances = entry
        pairs.append((value if isinstance(value, str) else float(value), float(instances)))
    return tuple(pairs)
