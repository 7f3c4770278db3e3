"""
Unit tests for nucleotide substitution models.
"""

import math
import unittest

import numpy as np

from splitstree.models import F81, GTR, HKY85, K2P, JukesCantor, NucleotideModel, get_model
from splitstree.simulate import RandomGenerator


def jc_same(t, gamma=0.0):
    if gamma > 0:
        return 0.25 + 0.75 * (1.0 + 4.0 * t / (3.0 * gamma)) ** (-gamma)
    return 0.25 + 0.75 * math.exp(-4.0 * t / 3.0)


class TestJukesCantor(unittest.TestCase):

    def test_closed_form(self):
        model = JukesCantor()
        for t in (0.01, 0.1, 0.5, 2.0):
            with self.subTest(t=t):
                P = model.transition_matrix(t)
                self.assertAlmostEqual(P[0, 0], jc_same(t), places=10)
                self.assertAlmostEqual(P[0, 1], (1 - jc_same(t)) / 3.0, places=10)

    def test_identity_at_zero(self):
        np.testing.assert_allclose(JukesCantor().transition_matrix(0.0), np.eye(4), atol=1e-12)

    def test_gamma_rates(self):
        model = JukesCantor(gamma=0.5)
        self.assertAlmostEqual(model.get_p(1, 1, 0.3), jc_same(0.3, 0.5), places=10)

    def test_invariable_sites(self):
        model = JukesCantor(pinv=0.2)
        expected = 0.8 * jc_same(0.4) + 0.2
        self.assertAlmostEqual(model.get_p(2, 2, 0.4), expected, places=10)
        self.assertAlmostEqual(model.rate, 0.8)

    def test_rate_is_normalised(self):
        model = JukesCantor()
        self.assertAlmostEqual(-float(np.dot(model.freqs, np.diag(model.Q))), 1.0)
        self.assertAlmostEqual(model.get_q(0, 1), 1.0 / 3.0)


class TestGeneralModels(unittest.TestCase):

    def setUp(self):
        self.freqs = [0.1, 0.2, 0.3, 0.4]
        self.models = [
            K2P(kappa=4.0),
            F81(freqs=self.freqs),
            HKY85(kappa=3.0, freqs=self.freqs),
            GTR(rates=[1.0, 2.0, 0.5, 0.8, 3.0, 1.0], freqs=self.freqs),
        ]

    def test_rows_sum_to_one(self):
        for model in self.models:
            with self.subTest(model=model.name):
                P = model.transition_matrix(0.37)
                np.testing.assert_allclose(P.sum(axis=1), np.ones(4))
                self.assertTrue(np.all(P >= 0))

    def test_detailed_balance(self):
        for model in self.models:
            with self.subTest(model=model.name):
                for i in range(4):
                    for j in range(4):
                        self.assertAlmostEqual(model.get_x(i, j, 0.2), model.get_x(j, i, 0.2), places=10)

    def test_stationary(self):
        for model in self.models:
            with self.subTest(model=model.name):
                np.testing.assert_allclose(model.freqs @ model.transition_matrix(0.8), model.freqs, atol=1e-10)
                np.testing.assert_allclose(model.transition_matrix(200.0)[0], model.freqs, atol=1e-8)

    def test_k2p_transitions_more_likely(self):
        model = K2P(kappa=5.0)
        # A->G is a transition, A->C a transversion
        self.assertGreater(model.get_p(0, 2, 0.1), model.get_p(0, 1, 0.1))

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            K2P(kappa=0.0)
        with self.assertRaises(ValueError):
            F81(freqs=[0.5, 0.5, 0.5, 0.5])
        with self.assertRaises(ValueError):
            GTR(rates=[1.0] * 5)
        with self.assertRaises(ValueError):
            JukesCantor(pinv=1.0)

    def test_detailed_balance_violation(self):
        model = NucleotideModel()
        Q = np.ones((4, 4))
        Q[0, 1] = 2.0
        with self.assertRaises(ValueError):
            model.set_rate_matrix(Q, [0.25] * 4)


class TestRandomStates(unittest.TestCase):

    def test_random_pi_follows_frequencies(self):
        model = F81(freqs=[0.7, 0.1, 0.1, 0.1])
        rng = RandomGenerator(11)
        draws = [model.random_pi(rng) for _ in range(4000)]
        self.assertAlmostEqual(draws.count(0) / 4000, 0.7, delta=0.05)

    def test_random_end_state_short_branch(self):
        model = JukesCantor()
        rng = RandomGenerator(3)
        self.assertTrue(all(model.random_end_state(2, 0.0, rng) == 2 for _ in range(100)))


class TestGetModel(unittest.TestCase):

    def test_names(self):
        self.assertIsInstance(get_model("JC69"), JukesCantor)
        self.assertIsInstance(get_model("k80", kappa=2.0), K2P)
        self.assertIsInstance(get_model("HKY85", kappa=2.0, freqs=[0.25] * 4), HKY85)
        self.assertIsInstance(get_model("gtr"), GTR)
        self.assertEqual(get_model("jc", gamma=0.5).gamma, 0.5)

    def test_unknown(self):
        with self.assertRaises(ValueError):
            get_model("tn93")


if __name__ == '__main__':
    unittest.main()
