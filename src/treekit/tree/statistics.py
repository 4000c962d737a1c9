"""Statistics over weighted distributions: moments, median, impurity and confidence bounds.

Every function takes a distribution as a sequence of `(value, instances)`
pairs. Statistics that are undefined for the given support (an empty
distribution, a single instance) return `NaN` rather than raising, so callers
must check with `math.isnan` before displaying them.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Final

from scipy.stats import chi2

from treekit.tree.models import DistributionKey

# Abramowitz and Stegun 7.1.26 coefficients
_ERF_A1: Final[float] = 0.254829592
_ERF_A2: Final[float] = -0.284496736
_ERF_A3: Final[float] = 1.421413741
_ERF_A4: Final[float] = -1.453152027
_ERF_A5: Final[float] = 1.061405429
_ERF_P: Final[float] = 0.3275911

DEFAULT_Z: Final[float] = 1.96  # two-sided 95% normal quantile


def get_instances(distribution: Sequence[tuple[DistributionKey, float]] | None) -> float:
    """Return the total number of instances in a distribution.

    Args:
        distribution (Sequence[tuple[DistributionKey, float]] | None): `(value, instances)` pairs.

    Returns:
        float: Sum of the instance counts; `0.0` for an empty or missing distribution.
    """
    if not distribution:
        return 0.0
    return float(sum(instances for _, instances in distribution))


def mean(distribution: Sequence[tuple[float, float]]) -> float:
    """Compute the weighted mean of a numeric distribution.

    Args:
        distribution (Sequence[tuple[float, float]]): `(value, instances)` pairs.

    Returns:
        float: The weighted mean, or `NaN` when the total weight is zero.

    Examples:
        >>> mean([(10.0, 3.0), (20.0, 1.0)])
        12.5
    """
    addition = 0.0
    count = 0.0
    for value, instances in distribution:
        addition += value * instances
        count += instances
    if count > 0:
        return addition / count
    return math.nan


def unbiased_sample_variance(
    distribution: Sequence[tuple[float, float]],
    distribution_mean: float | None = None,
) -> float:
    """Compute the unbiased sample variance of a numeric distribution.

    Args:
        distribution (Sequence[tuple[float, float]]): `(value, instances)` pairs.
        distribution_mean (float | None): Precomputed weighted mean. Computed
            from `distribution` when `None` or `NaN`.

    Returns:
        float: `Σ w·(v − mean)² / (N − 1)`, or `NaN` when `N ≤ 1`.
    """
    if distribution_mean is None or math.isnan(distribution_mean):
        distribution_mean = mean(distribution)
    addition = 0.0
    count = 0.0
    for value, instances in distribution:
        addition += (value - distribution_mean) ** 2 * instances
        count += instances
    if count > 1:
        return addition / (count - 1)
    return math.nan


def dist_median(distribution: Sequence[tuple[float, float]], count: float) -> float | None:
    """Return the median of a distribution sorted by ascending value.

    The median is the first value at which the cumulative instance count
    exceeds half of `count`. When the instances accumulated before that value
    are exactly half of `count`, the midpoint falls between two values and
    their average is returned.

    Args:
        distribution (Sequence[tuple[float, float]]): `(value, instances)` pairs,
            sorted by value.
        count (float): Total number of instances in the distribution.

    Returns:
        float | None: The median, or `None` for an empty distribution.

    Examples:
        >>> dist_median([(1.0, 1.0), (2.0, 1.0), (3.0, 1.0)], 3)
        2.0
        >>> dist_median([(1.0, 2.0), (3.0, 2.0)], 4)
        2.0
    """
    counter = 0.0
    previous_value: float | None = None
    half = count / 2.0
    for value, instances in distribution:
        counter += instances
        if counter > half:
            if counter - instances == half and previous_value is not None:
                return (value + previous_value) / 2.0
            return value
        previous_value = value
    return None


def gini_impurity(distribution: Sequence[tuple[DistributionKey, float]], count: float) -> float | None:
    """Return the halved Gini impurity of a categorical distribution.

    Args:
        distribution (Sequence[tuple[DistributionKey, float]]): `(category, instances)` pairs.
        count (float): Total instances reaching the node.

    Returns:
        float | None: `(1 − Σ p_i²) / 2`, which is 0 for a pure node and 0.5 at
            most; `None` for an empty distribution and `NaN` when `count ≤ 0`.

    Examples:
        >>> gini_impurity([("yes", 5.0), ("no", 5.0)], 10)
        0.25
    """
    if not distribution:
        return None
    if count <= 0:
        return math.nan
    purity = sum((instances / count) ** 2 for _, instances in distribution)
    return (1.0 - purity) / 2.0


def erf(x: float) -> float:
    """Approximate the Gauss error function (Abramowitz and Stegun 7.1.26).

    Maximum absolute error is about 1.5e-7, which is enough for the confidence
    bounds computed in this module.

    Args:
        x (float): Point at which to evaluate the function.

    Returns:
        float: Approximation of `erf(x)`.
    """
    if x == 0:
        return 0.0
    sign = -1.0 if x < 0 else 1.0
    x = abs(x)
    t = 1.0 / (1.0 + _ERF_P * x)
    y = 1.0 - (((((_ERF_A5 * t + _ERF_A4) * t) + _ERF_A3) * t + _ERF_A2) * t + _ERF_A1) * t * math.exp(-x * x)
    return sign * y


def regression_error(distribution_variance: float, population: float, r_z: float = DEFAULT_Z) -> float:
    """Compute the chi-square based confidence bound on a regression prediction.

    The percentile is the chi-square quantile with `population − 1` degrees of
    freedom whose upper tail holds `erf(r_z / √2)` of the mass, i.e. the
    lower-tail quantile at `1 − erf(r_z / √2)`.

    Args:
        distribution_variance (float): Unbiased sample variance of the distribution.
        population (float): Total instances in the distribution.
        r_z (float): Normal quantile of the bound. Defaults to 1.96.

    Returns:
        float: `sqrt(variance·(population − 1) / percentile · (√population + r_z)² / population)`,
            or `NaN` when the population is not positive or the percentile is 0.
    """
    if population <= 0:
        return math.nan
    ppf = _chi_square_percentile(erf(r_z / math.sqrt(2)), population - 1)
    if ppf == 0:
        return math.nan
    error = distribution_variance * (population - 1) / ppf
    error = error * (math.sqrt(population) + r_z) ** 2
    return math.sqrt(error / population)


def ws_confidence(
    prediction: DistributionKey,
    distribution: Mapping[DistributionKey, float],
    ws_z: float = DEFAULT_Z,
    ws_n: float | None = None,
) -> float:
    """Return the Wilson score interval lower bound for a category's proportion.

    Args:
        prediction (DistributionKey): The category whose proportion is bounded.
        distribution (Mapping[DistributionKey, float]): Instances per category.
        ws_z (float): Normal quantile of the interval. Defaults to 1.96.
        ws_n (float | None): Number of trials; the distribution total when `None`.

    Returns:
        float: The lower bound of the Wilson score interval, or `NaN` when the
            number of trials is not positive.

    Raises:
        ValueError: If the category has a negative instance count.

    Examples:
        >>> round(ws_confidence("a", {"a": 10.0}), 4)
        0.7225
    """
    ws_p = distribution.get(prediction, 0.0)
    if ws_p < 0:
        raise ValueError(f"Instance count for {prediction!r} must be non-negative, got {ws_p}")
    ws_norm = float(sum(distribution.values()))
    if ws_n is None:
        ws_n = ws_norm
    if ws_n <= 0 or ws_norm <= 0:
        return math.nan
    if ws_norm != 1.0:
        ws_p = ws_p / ws_norm
    ws_z2 = ws_z * ws_z
    ws_factor = ws_z2 / ws_n
    ws_sqrt = math.sqrt((ws_p * (1 - ws_p) + ws_factor / 4) / ws_n)
    return (ws_p + ws_factor / 2 - ws_z * ws_sqrt) / (1 + ws_factor)


def _chi_square_percentile(probability: float, degrees_of_freedom: float) -> float:
    """Return the chi-square value whose upper-tail probability is `probability`.

    Args:
        probability (float): Upper-tail probability.
        degrees_of_freedom (float): Degrees of freedom of the distribution.

    Returns:
        float: The percentile, or `0.0` when there are no degrees of freedom.
    """
    if degrees_of_freedom <= 0:
        return 0.0
    return float(chi2.ppf(1.0 - probability, degrees_of_freedom))
