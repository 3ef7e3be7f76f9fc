"""
Tests for reference path polynomial fitting and evaluation.
"""

import numpy as np
import pytest

from trajectory.polynomial import (
    DegreeTooHighError,
    FitError,
    polyeval,
    polyeval_derivative,
    polyfit,
)


class TestPolyfit:
    """Least-squares fit behavior."""

    def test_exact_interpolation_recovers_cubic(self):
        """d+1 exact samples of a degree-d polynomial give back its coefficients."""
        true_coeffs = [1.5, -2.0, 0.25, 0.03]
        xs = [0.0, 5.0, 10.0, 20.0]
        ys = [polyeval(true_coeffs, x) for x in xs]

        coeffs = polyfit(xs, ys, 3)

        assert len(coeffs) == 4
        np.testing.assert_allclose(coeffs, true_coeffs, rtol=1e-7, atol=1e-9)

    def test_recovers_polynomial_from_many_samples(self):
        true_coeffs = [-0.5, 0.1, -0.002, 1e-4]
        xs = np.linspace(-10, 60, 25)
        ys = [polyeval(true_coeffs, x) for x in xs]
        np.testing.assert_allclose(polyfit(xs, ys, 3), true_coeffs, rtol=1e-6, atol=1e-8)

    def test_least_squares_line_through_noisy_points(self):
        """Matches numpy's least-squares solution on an overdetermined system."""
        rng = np.random.default_rng(3)
        xs = np.linspace(0, 10, 30)
        ys = 2.0 * xs + 1.0 + rng.normal(scale=0.1, size=xs.size)

        coeffs = polyfit(xs, ys, 1)
        expected = np.linalg.lstsq(np.vander(xs, 2, increasing=True), ys, rcond=None)[0]
        np.testing.assert_allclose(coeffs, expected, rtol=1e-10)

    def test_degree_is_generic(self):
        xs = [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
        ys = [x ** 5 for x in xs]
        coeffs = polyfit(xs, ys, 5)
        np.testing.assert_allclose(coeffs, [0, 0, 0, 0, 0, 1], atol=1e-7)

    def test_too_few_samples_raises_degree_too_high(self):
        with pytest.raises(DegreeTooHighError):
            polyfit([1.0, 2.0, 3.0], [1.0, 2.0, 3.0], 3)

    def test_degree_too_high_is_a_fit_error(self):
        with pytest.raises(FitError):
            polyfit([], [], 3)

    def test_mismatched_lengths_raise_fit_error(self):
        with pytest.raises(FitError):
            polyfit([1.0, 2.0, 3.0, 4.0], [1.0, 2.0, 3.0], 1)

    def test_repeated_x_samples_raise_fit_error(self):
        """Four samples but only two distinct x values cannot determine a cubic."""
        with pytest.raises(FitError):
            polyfit([1.0, 1.0, 2.0, 2.0], [0.0, 1.0, 2.0, 3.0], 3)

    def test_non_finite_samples_raise_fit_error(self):
        with pytest.raises(FitError):
            polyfit([0.0, 1.0, 2.0, float("nan")], [0.0, 1.0, 2.0, 3.0], 3)


class TestPolyeval:
    """Direct polynomial evaluation."""

    def test_evaluates_ascending_powers(self):
        # 1 + 2x + 3x^2 + 4x^3 at x=2 -> 1 + 4 + 12 + 32
        assert polyeval([1.0, 2.0, 3.0, 4.0], 2.0) == 49.0

    def test_value_at_zero_is_constant_term(self):
        assert polyeval([0.75, 5.0, -3.0, 2.0], 0.0) == 0.75

    def test_linear_in_coefficients(self):
        rng = np.random.default_rng(11)
        for _ in range(10):
            c1 = rng.normal(size=4)
            c2 = rng.normal(size=4)
            x = float(rng.uniform(-5, 5))
            assert polyeval(c1 + c2, x) == pytest.approx(polyeval(c1, x) + polyeval(c2, x))

    def test_empty_coefficients_evaluate_to_zero(self):
        assert polyeval([], 3.0) == 0.0

    def test_derivative(self):
        # d/dx (1 + 2x + 3x^2 + 4x^3) = 2 + 6x + 12x^2
        assert polyeval_derivative([1.0, 2.0, 3.0, 4.0], 2.0) == 2.0 + 12.0 + 48.0
        assert polyeval_derivative([1.0, 2.0, 3.0, 4.0], 0.0) == 2.0

    def test_derivative_of_constant_is_zero(self):
        assert polyeval_derivative([5.0], 10.0) == 0.0
