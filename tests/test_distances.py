"""
Unit tests for distances computed from character data.
"""

import math
import unittest

from splitstree.blocks import Characters, CharactersFormat
from splitstree.distances import (
    compute_distances,
    encode_states,
    hamming_distances,
    jukes_cantor_distances,
    k2p_distances,
)


class TestEncodeStates(unittest.TestCase):

    def test_codes(self):
        chars = Characters.from_sequences(["ACGT-?N"])
        self.assertEqual(list(encode_states(chars)[0]), [0, 1, 2, 3, -1, -1, -1])


class TestHamming(unittest.TestCase):

    def test_p_distance(self):
        chars = Characters.from_sequences(["ACGTACGTAC", "ACGTACGTAA", "TCGTACGTAA"])
        dist = hamming_distances(chars)
        self.assertAlmostEqual(dist.get(1, 2), 0.1)
        self.assertAlmostEqual(dist.get(1, 3), 0.2)
        self.assertAlmostEqual(dist.get(3, 2), 0.1)
        self.assertEqual(dist.get(1, 1), 0.0)

    def test_gaps_skipped_pairwise(self):
        chars = Characters.from_sequences(["AC-T", "AGGT"])
        self.assertAlmostEqual(hamming_distances(chars).get(1, 2), 1.0 / 3.0)

    def test_no_common_sites(self):
        chars = Characters.from_sequences(["AC--", "--GT"])
        with self.assertLogs('splitstree.distances', level='WARNING'):
            dist = hamming_distances(chars, max_distance=3.0)
        self.assertEqual(dist.get(1, 2), 3.0)


class TestJukesCantor(unittest.TestCase):

    def test_correction(self):
        chars = Characters.from_sequences(["ACGTACGTAC", "ACGTACGTAA"])
        expected = -0.75 * math.log(1.0 - 0.1 / 0.75)
        self.assertAlmostEqual(jukes_cantor_distances(chars).get(1, 2), expected)

    def test_saturation(self):
        chars = Characters.from_sequences(["AAAA", "CCCC"])
        with self.assertLogs('splitstree.distances', level='WARNING'):
            dist = jukes_cantor_distances(chars, max_distance=4.0)
        self.assertEqual(dist.get(1, 2), 4.0)

    def test_protein_states(self):
        fmt = CharactersFormat(datatype="protein")
        chars = Characters.from_sequences(["ARNDCQEGHI", "ARNDCQEGHL"], fmt)
        b = 19.0 / 20.0
        self.assertAlmostEqual(jukes_cantor_distances(chars).get(1, 2), -b * math.log(1.0 - 0.1 / b))


class TestK2P(unittest.TestCase):

    def test_transitions_and_transversions(self):
        # One transition (A->G) and one transversion (C->A) over 10 sites
        chars = Characters.from_sequences(["ACGTACGTAC", "GCGTACGTAA"])
        P, Q = 0.1, 0.1
        expected = -0.5 * math.log(1 - 2 * P - Q) - 0.25 * math.log(1 - 2 * Q)
        self.assertAlmostEqual(k2p_distances(chars).get(1, 2), expected)

    def test_requires_dna(self):
        chars = Characters.from_sequences(["ARND"], CharactersFormat(datatype="protein"))
        with self.assertRaises(ValueError):
            k2p_distances(chars)


class TestComputeDistances(unittest.TestCase):

    def test_dispatch(self):
        chars = Characters.from_sequences(["ACGTACGTAC", "ACGTACGTAA"])
        self.assertAlmostEqual(compute_distances(chars, "HAMMING").get(1, 2), 0.1)
        self.assertGreater(compute_distances(chars, "jc").get(1, 2), 0.1)
        self.assertGreater(compute_distances(chars, "k2p").get(1, 2), 0.1)

    def test_unknown_method(self):
        chars = Characters.from_sequences(["AC", "AG"])
        with self.assertRaises(ValueError):
            compute_distances(chars, "logdet")


if __name__ == '__main__':
    unittest.main()
