"""Tests for distribution statistics: moments, median, impurity, erf and confidence bounds."""

from __future__ import annotations

import math

import pytest
from pytest_check import check
from scipy.stats import chi2

from treekit.tree.statistics import (
    DEFAULT_Z,
    dist_median,
    erf,
    get_instances,
    gini_impurity,
    mean,
    regression_error,
    unbiased_sample_variance,
    ws_confidence,
)


class TestGetInstances:
    """Tests for get_instances."""

    def test_sums_instance_counts(self) -> None:
        """Total instances should be the sum of the weights."""
        # Arrange
        distribution = [("yes", 3.0), ("no", 2.0)]

        # Act
        total = get_instances(distribution)

        # Assert
        assert total == 5.0

    @pytest.mark.parametrize("distribution", [None, []], ids=["none", "empty"])
    def test_missing_distribution_has_no_instances(self, distribution: list[tuple[str, float]] | None) -> None:
        """An absent or empty distribution should count zero instances.

        Args:
            distribution (list[tuple[str, float]] | None): Empty input to test.
        """
        # Act / Assert
        assert get_instances(distribution) == 0.0


class TestMoments:
    """Tests for mean and unbiased_sample_variance."""

    def test_mean_is_weighted(self) -> None:
        """Mean should weight each value by its instance count."""
        # Act
        result = mean([(10.0, 3.0), (20.0, 1.0)])

        # Assert
        assert result == 12.5

    def test_mean_lies_within_value_range(self) -> None:
        """Mean of a non-empty distribution should lie between its smallest and largest value."""
        # Arrange
        distribution = [(-4.0, 1.0), (0.5, 7.0), (12.0, 2.0), (30.0, 0.5)]

        # Act
        result = mean(distribution)

        # Assert
        with check:
            assert result >= -4.0
        with check:
            assert result <= 30.0

    @pytest.mark.parametrize(
        "distribution",
        [[], [(3.0, 0.0)]],
        ids=["empty", "zero-weight"],
    )
    def test_mean_without_weight_is_nan(self, distribution: list[tuple[float, float]]) -> None:
        """Mean should be NaN when the total weight is zero.

        Args:
            distribution (list[tuple[float, float]]): Distribution with no weight.
        """
        # Act / Assert
        assert math.isnan(mean(distribution))

    def test_variance_uses_n_minus_one_denominator(self) -> None:
        """Variance of two unit-weight points 1 and 3 should be 2."""
        # Act
        variance = unbiased_sample_variance([(1.0, 1.0), (3.0, 1.0)])

        # Assert
        assert variance == pytest.approx(2.0)

    def test_variance_accepts_precomputed_mean(self) -> None:
        """Passing the mean explicitly should give the same result as computing it."""
        # Arrange
        distribution = [(2.0, 2.0), (4.0, 1.0), (9.0, 3.0)]

        # Act
        computed = unbiased_sample_variance(distribution)
        given = unbiased_sample_variance(distribution, mean(distribution))

        # Assert
        with check:
            assert computed == pytest.approx(given)
        with check:
            assert computed >= 0.0

    @pytest.mark.parametrize(
        "distribution",
        [[], [(5.0, 1.0)], [(5.0, 0.5), (6.0, 0.5)]],
        ids=["empty", "single-instance", "fractional-unit-weight"],
    )
    def test_variance_undefined_for_one_or_fewer_instances(self, distribution: list[tuple[float, float]]) -> None:
        """Variance should be NaN when the total weight is at most 1.

        Args:
            distribution (list[tuple[float, float]]): Distribution with weight <= 1.
        """
        # Act / Assert
        assert math.isnan(unbiased_sample_variance(distribution))


class TestDistMedian:
    """Tests for dist_median."""

    def test_odd_count_returns_middle_value(self) -> None:
        """With three unit points the middle one is the median."""
        # Act / Assert
        assert dist_median([(1.0, 1.0), (2.0, 1.0), (3.0, 1.0)], 3) == 2.0

    def test_even_split_averages_neighbors(self) -> None:
        """When exactly half the instances precede a value, the neighbors are averaged."""
        # Act
        median_two_points = dist_median([(1.0, 1.0), (2.0, 1.0)], 2)
        median_weighted = dist_median([(1.0, 2.0), (3.0, 2.0)], 4)

        # Assert
        with check:
            assert median_two_points == 1.5
        with check:
            assert median_weighted == 2.0

    def test_heavy_point_holds_median(self) -> None:
        """A value holding more than half of the instances is the median."""
        # Act / Assert
        assert dist_median([(1.0, 1.0), (5.0, 6.0), (9.0, 1.0)], 8) == 5.0

    def test_empty_distribution_has_no_median(self) -> None:
        """An empty distribution should have no median."""
        # Act / Assert
        assert dist_median([], 0) is None


class TestGiniImpurity:
    """Tests for gini_impurity."""

    def test_single_category_is_pure(self) -> None:
        """A node holding a single category should have zero impurity."""
        # Act / Assert
        assert gini_impurity([("yes", 12.0)], 12) == 0.0

    def test_even_two_way_split(self) -> None:
        """An even two-way split should give (1 - 0.5) / 2."""
        # Act / Assert
        assert gini_impurity([("yes", 5.0), ("no", 5.0)], 10) == pytest.approx(0.25)

    @pytest.mark.parametrize(
        "distribution",
        [
            [("a", 1.0), ("b", 1.0), ("c", 1.0), ("d", 1.0)],
            [("a", 99.0), ("b", 1.0)],
            [("a", 3.0), ("b", 7.0), ("c", 11.0)],
        ],
        ids=["uniform-four", "skewed", "three-way"],
    )
    def test_impurity_is_bounded(self, distribution: list[tuple[str, float]]) -> None:
        """Impurity should stay within [0, 0.5].

        Args:
            distribution (list[tuple[str, float]]): Categorical distribution to test.
        """
        # Arrange
        count = sum(instances for _, instances in distribution)

        # Act
        impurity = gini_impurity(distribution, count)

        # Assert
        assert impurity is not None
        with check:
            assert impurity >= 0.0
        with check:
            assert impurity <= 0.5

    def test_empty_distribution_has_no_impurity(self) -> None:
        """No distribution means no impurity."""
        # Act / Assert
        assert gini_impurity([], 10) is None

    def test_zero_count_is_nan(self) -> None:
        """A non-positive count makes impurity undefined."""
        # Act
        impurity = gini_impurity([("yes", 1.0)], 0)

        # Assert
        assert impurity is not None and math.isnan(impurity)


class TestErf:
    """Tests for the erf approximation."""

    def test_zero_maps_to_zero(self) -> None:
        """erf(0) should be exactly zero."""
        # Act / Assert
        assert erf(0.0) == 0.0

    @pytest.mark.parametrize("x", [0.1, 0.5, 1.0, 1.96, 3.0])
    def test_is_odd(self, x: float) -> None:
        """erf(-x) should be exactly -erf(x).

        Args:
            x (float): Point at which to evaluate the function.
        """
        # Act / Assert
        assert erf(-x) == -erf(x)

    @pytest.mark.parametrize("x", [0.2, 0.7, 1.0, 1.5, 2.5])
    def test_matches_math_erf(self, x: float) -> None:
        """The approximation should stay within 1.5e-7 of the exact function.

        Args:
            x (float): Point at which to evaluate the function.
        """
        # Act / Assert
        assert erf(x) == pytest.approx(math.erf(x), abs=2e-7)


class TestRegressionError:
    """Tests for regression_error."""

    def test_matches_chi_square_formula(self) -> None:
        """The bound should follow the chi-square formula with population - 1 degrees of freedom."""
        # Arrange
        variance = 4.0
        population = 10.0
        percentile = chi2.ppf(1.0 - erf(DEFAULT_Z / math.sqrt(2)), population - 1)
        expected = math.sqrt(
            variance * (population - 1) / percentile * (math.sqrt(population) + DEFAULT_Z) ** 2 / population
        )

        # Act
        result = regression_error(variance, population)

        # Assert
        assert result == pytest.approx(expected)

    def test_larger_variance_gives_larger_error(self) -> None:
        """The bound grows with the variance for a fixed population."""
        # Act
        small = regression_error(1.0, 20)
        large = regression_error(9.0, 20)

        # Assert
        assert large > small > 0.0

    @pytest.mark.parametrize("population", [0.0, -3.0, 1.0], ids=["zero", "negative", "no-degrees-of-freedom"])
    def test_undefined_population_is_nan(self, population: float) -> None:
        """Empty support or a single instance should give NaN.

        Args:
            population (float): Population size to test.
        """
        # Act / Assert
        assert math.isnan(regression_error(1.0, population))


class TestWsConfidence:
    """Tests for the Wilson score lower bound."""

    def test_unanimous_distribution(self) -> None:
        """Ten out of ten should give 1 / (1 + z²/10)."""
        # Act
        result = ws_confidence("a", {"a": 10.0})

        # Assert
        assert result == pytest.approx(1.0 / (1.0 + DEFAULT_Z**2 / 10.0))

    def test_even_split(self) -> None:
        """Five out of ten should give the known Wilson lower bound."""
        # Act
        result = ws_confidence("yes", {"yes": 5.0, "no": 5.0})

        # Assert
        assert result == pytest.approx(0.23659, abs=1e-4)

    def test_bound_below_observed_proportion(self) -> None:
        """The lower bound should never exceed the observed proportion."""
        # Act
        result = ws_confidence("yes", {"yes": 30.0, "no": 10.0})

        # Assert
        with check:
            assert result < 0.75
        with check:
            assert result > 0.0

    def test_unknown_category_has_zero_successes(self) -> None:
        """A category absent from the distribution has a lower bound of zero."""
        # Act / Assert
        assert ws_confidence("maybe", {"yes": 3.0, "no": 1.0}) == pytest.approx(0.0, abs=1e-12)

    def test_empty_distribution_is_nan(self) -> None:
        """No trials makes the bound undefined."""
        # Act / Assert
        assert math.isnan(ws_confidence("yes", {}))

    def test_negative_weight_raises(self) -> None:
        """A negative instance count for the category is invalid."""
        # Act / Assert
        with pytest.raises(ValueError, match="non-negative"):
            ws_confidence("yes", {"yes": -1.0, "no": 3.0})
