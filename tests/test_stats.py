from __future__ import annotations

import random
import unittest

from fog.abtest.stats import (
    VariantData,
    bayesian_probability,
    multi_variant_probabilities,
    sample_beta,
)


class SampleBetaTestCase(unittest.TestCase):
    def test_always_within_unit_interval(self) -> None:
        rng = random.Random(7)
        for alpha, beta in [(1, 1), (1, 1001), (1001, 1), (0.5, 0.5), (50, 50)]:
            for _ in range(500):
                x = sample_beta(alpha, beta, rng)
                self.assertGreaterEqual(x, 0.0)
                self.assertLessEqual(x, 1.0)

    def test_mean_is_close_to_alpha_over_total(self) -> None:
        rng = random.Random(11)
        draws = [sample_beta(30, 70, rng) for _ in range(5000)]
        self.assertAlmostEqual(sum(draws) / len(draws), 0.3, delta=0.01)


class BayesianProbabilityTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.rng = random.Random(20240601)

    def test_bounds(self) -> None:
        p = bayesian_probability(50, 100, 60, 100, rng=self.rng)
        self.assertGreaterEqual(p, 0.0)
        self.assertLessEqual(p, 1.0)

    def test_clear_winner(self) -> None:
        self.assertGreater(bayesian_probability(10, 1000, 900, 1000, rng=self.rng), 0.95)

    def test_clear_loser(self) -> None:
        self.assertLess(bayesian_probability(1000, 1000, 10, 1000, rng=self.rng), 0.05)

    def test_even_match(self) -> None:
        p = bayesian_probability(500, 1000, 500, 1000, rng=self.rng)
        self.assertGreater(p, 0.3)
        self.assertLess(p, 0.7)

    def test_zero_data_is_uninformative(self) -> None:
        p = bayesian_probability(0, 0, 0, 0, rng=self.rng)
        self.assertGreater(p, 0.3)
        self.assertLess(p, 0.7)

    def test_invalid_inputs_are_clamped(self) -> None:
        # conversions > total 视为 total；负数视为 0
        p = bayesian_probability(-5, -10, 2000, 1000, rng=self.rng)
        self.assertGreaterEqual(p, 0.0)
        self.assertLessEqual(p, 1.0)
        self.assertGreater(p, 0.9)

    def test_seeded_rng_is_reproducible(self) -> None:
        a = bayesian_probability(40, 100, 50, 100, rng=random.Random(3))
        b = bayesian_probability(40, 100, 50, 100, rng=random.Random(3))
        self.assertEqual(a, b)


class MultiVariantProbabilitiesTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.rng = random.Random(99)

    def test_empty(self) -> None:
        self.assertEqual(multi_variant_probabilities([]), [])

    def test_control_only(self) -> None:
        self.assertEqual(multi_variant_probabilities([{"conversions": 10, "total": 100}]), [None])

    def test_two_variants(self) -> None:
        probs = multi_variant_probabilities(
            [VariantData(50, 100), VariantData(60, 100)], rng=self.rng
        )
        self.assertEqual(len(probs), 2)
        self.assertIsNone(probs[0])
        self.assertGreaterEqual(probs[1], 0.0)
        self.assertLessEqual(probs[1], 1.0)

    def test_each_variant_compared_against_control_only(self) -> None:
        probs = multi_variant_probabilities(
            [
                {"conversions": 100, "total": 1000},
                {"conversions": 200, "total": 1000},
                {"conversions": 105, "total": 1000},
                {"conversions": 10, "total": 1000},
            ],
            rng=self.rng,
        )
        self.assertEqual(len(probs), 4)
        self.assertIsNone(probs[0])
        self.assertGreater(probs[1], 0.95)
        self.assertGreater(probs[2], 0.3)
        self.assertLess(probs[2], 0.7)
        self.assertLess(probs[3], 0.05)


if __name__ == "__main__":
    unittest.main()
