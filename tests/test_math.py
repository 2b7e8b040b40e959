from __future__ import annotations

import unittest

import numpy as np

from markersel import scoring
from markersel.errors import ConfigurationError, DataError


class TestExpectedHeterozygosity(unittest.TestCase):
    def test_basic_values(self) -> None:
        p = np.array([0.0, 0.25, 0.5, 1.0])
        np.testing.assert_allclose(
            scoring.expected_heterozygosity(p), np.array([0.0, 0.375, 0.5, 0.0])
        )

    def test_scalar_returns_float(self) -> None:
        self.assertIsInstance(scoring.expected_heterozygosity(0.3), float)


class TestJostD(unittest.TestCase):
    def test_identical_frequencies_give_zero(self) -> None:
        for p in (0.0, 0.1, 0.5, 0.9, 1.0):
            self.assertEqual(scoring.jost_d(p, p), 0.0)

    def test_fixed_differences_give_one(self) -> None:
        self.assertAlmostEqual(scoring.jost_d(0.0, 1.0), 1.0)

    def test_matches_heterozygosity_decomposition(self) -> None:
        p_i, p_j = 0.2, 0.7
        hs = (2 * p_i * (1 - p_i) + 2 * p_j * (1 - p_j)) / 2.0
        pbar = (p_i + p_j) / 2.0
        ht = 2 * pbar * (1 - pbar)
        expected = 2.0 * (ht - hs) / (1.0 - hs)
        self.assertAlmostEqual(scoring.jost_d(p_i, p_j), expected, places=12)


class TestGeometricMean(unittest.TestCase):
    def test_any_zero_gives_zero(self) -> None:
        self.assertEqual(scoring.geometric_mean_zero_guard([0.5, 0.0, 0.3]), 0.0)

    def test_positive_values(self) -> None:
        self.assertAlmostEqual(scoring.geometric_mean_zero_guard([0.25, 1.0]), 0.5)

    def test_empty_raises(self) -> None:
        with self.assertRaises(DataError):
            scoring.geometric_mean_zero_guard([])


class TestObjective(unittest.TestCase):
    def test_combinations(self) -> None:
        self.assertAlmostEqual(scoring.Objective("product").combine(0.4, 0.5), 0.2)
        self.assertAlmostEqual(
            scoring.Objective("weighted", diversity_weight=0.25).combine(0.4, 0.8), 0.7
        )
        self.assertEqual(scoring.Objective("diversity").combine(0.4, 0.8), 0.4)
        self.assertEqual(scoring.Objective("differentiation").combine(0.4, 0.8), 0.8)

    def test_default_is_weighted(self) -> None:
        self.assertEqual(scoring.Objective(), scoring.Objective("weighted", diversity_weight=0.5))
        self.assertAlmostEqual(scoring.Objective().combine(0.5, 0.0), 0.25)

    def test_invalid_objective(self) -> None:
        with self.assertRaises(ConfigurationError):
            scoring.Objective("sum")
        with self.assertRaises(ConfigurationError):
            scoring.Objective("weighted", diversity_weight=1.5)
