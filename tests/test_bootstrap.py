"""
Tests for bootstrap replicates, split support and confidence networks.

The alignment used here has two clearly separated groups of three taxa,
so the split between them is found in (nearly) every replicate.
"""

import unittest
from unittest.mock import patch

import numpy as np

from splitstree.blocks import Characters, CharactersFormat, Taxa
from splitstree.bootstrap import (
    BootstrapError,
    resample_characters,
    run_bootstrap,
    run_parametric_bootstrap,
)
from splitstree.config import get_default_config
from splitstree.models import JukesCantor
from splitstree.phylogenetics import build_tree
from splitstree.simulate import RandomGenerator
from splitstree.tree import parse_newick

SWAP = {"A": "G", "C": "T", "G": "A", "T": "C"}


def two_group_alignment():
    """Six taxa, 40 sites; taxa 4-6 differ from 1-3 at the first ten sites."""
    base = list("ACGT" * 10)
    sequences = []
    for i in range(6):
        seq = list(base)
        if i >= 3:
            for site in range(10):
                seq[site] = SWAP[seq[site]]
        # One private mutation per taxon
        site = 20 + 2 * i
        seq[site] = SWAP[seq[site]]
        sequences.append("".join(seq))
    taxa = Taxa([f"t{i}" for i in range(1, 7)])
    return taxa, Characters.from_sequences(sequences)


class TestResampleCharacters(unittest.TestCase):

    def test_columns_come_from_original(self):
        _, chars = two_group_alignment()
        replicate = resample_characters(chars, chars.nchar, RandomGenerator(3))
        self.assertEqual(replicate.nchar, 40)
        original_columns = {tuple(chars.column(s)) for s in range(1, 41)}
        for site in range(1, 41):
            self.assertIn(tuple(replicate.column(site)), original_columns)

    def test_other_length(self):
        _, chars = two_group_alignment()
        self.assertEqual(resample_characters(chars, 7, RandomGenerator(1)).nchar, 7)

    def test_diploid_loci_stay_together(self):
        fmt = CharactersFormat(diploid=True)
        chars = Characters.from_sequences(["ACGTAC", "CAGTTA"], fmt)
        replicate = resample_characters(chars, 6, RandomGenerator(2))
        pairs = {(tuple(chars.column(s)), tuple(chars.column(s + 1))) for s in (1, 3, 5)}
        for s in (1, 3, 5):
            self.assertIn((tuple(replicate.column(s)), tuple(replicate.column(s + 1))), pairs)
        with self.assertRaises(BootstrapError):
            resample_characters(chars, 5, RandomGenerator(2))

    def test_empty_matrix(self):
        with self.assertRaises(BootstrapError):
            resample_characters(Characters(2, 0), 0, RandomGenerator(1))


class TestRunBootstrap(unittest.TestCase):

    def setUp(self):
        self.taxa, self.chars = two_group_alignment()
        self.config = get_default_config().update(bootstrap__runs=30, bootstrap__seed=11)

    def test_support_of_tree_splits(self):
        result = run_bootstrap(self.taxa, self.chars, self.config)
        self.assertEqual(result.runs, 30)
        self.assertEqual(result.matrix.nblocks, 30)

        group = result.splits.find({4, 5, 6})
        self.assertNotEqual(group, -1)
        self.assertGreaterEqual(result.splits.get_confidence(group), 0.9)

        # A leaf edge has zero length in replicates that drop the taxon's
        # private site, so trivial splits are supported only where it is kept
        for taxon in range(1, 7):
            index = result.splits.find({taxon})
            row = result.matrix.find_split({taxon})
            self.assertEqual(result.splits.get_confidence(index), result.matrix.count(row) / 30)

        for i in range(1, result.splits.nsplits + 1):
            low, high = result.splits.get_interval(i)
            self.assertGreaterEqual(low, 0.0)
            self.assertLessEqual(low, high)

    def test_all_splits_and_network(self):
        result = run_bootstrap(self.taxa, self.chars, self.config)
        self.assertEqual(result.all_splits.nsplits, result.matrix.nsplits)
        for i in range(1, result.all_splits.nsplits + 1):
            self.assertTrue(0.0 <= result.all_splits.get_confidence(i) <= 1.0)
        self.assertGreater(result.all_splits.get_confidence(result.all_splits.find({4, 5, 6})), 0.0)

        network = result.network
        self.assertIsNotNone(network)
        self.assertLessEqual(network.nsplits, result.matrix.nsplits)
        self.assertNotEqual(network.find({4, 5, 6}), -1)
        self.assertIsNone(result.trees)

    def test_seed_reproducible(self):
        first = run_bootstrap(self.taxa, self.chars, self.config)
        second = run_bootstrap(self.taxa, self.chars, self.config)
        np.testing.assert_array_equal(first.matrix.to_array(), second.matrix.to_array())

    def test_options(self):
        config = self.config.update(
            bootstrap__runs=5,
            bootstrap__save_trees=True,
            bootstrap__confidence_network=False,
        )
        result = run_bootstrap(self.taxa, self.chars, config)
        self.assertEqual(result.trees.ntrees, 5)
        self.assertEqual(result.trees.get_name(1), "rep1")
        self.assertIsNone(result.network)

    def test_given_tree_is_not_rebuilt(self):
        tree = parse_newick(self.taxa, "((t1:1,t2:1,t3:1):2,t4:1,t5:1,t6:1);")
        config = self.config.update(bootstrap__runs=4)
        with patch('splitstree.bootstrap.build_tree', wraps=build_tree) as builder:
            result = run_bootstrap(self.taxa, self.chars, config, tree=tree)
        self.assertEqual(builder.call_count, 4)
        self.assertIs(result.tree, tree)
        self.assertEqual(result.splits.get_weight(result.splits.find({4, 5, 6})), 2.0)

    def test_taxa_mismatch(self):
        with self.assertRaises(BootstrapError):
            run_bootstrap(Taxa(["a", "b"]), self.chars, self.config)


class TestParametricBootstrap(unittest.TestCase):

    def test_reference_splits_from_tree(self):
        taxa = Taxa(["a", "b", "c", "d", "e"])
        tree = parse_newick(taxa, "((a:0.05,b:0.05):0.3,c:0.05,(d:0.05,e:0.05):0.3);")
        chars = Characters(5, 300)
        config = get_default_config().update(bootstrap__runs=10, bootstrap__seed=4)
        result = run_parametric_bootstrap(taxa, chars, tree, JukesCantor(), config)

        self.assertIs(result.tree, tree)
        self.assertEqual(result.matrix.nblocks, 10)
        for side in ({1, 2}, {4, 5}):
            index = result.splits.find(side)
            self.assertNotEqual(index, -1)
            self.assertEqual(result.splits.get_confidence(index), 1.0)


if __name__ == '__main__':
    unittest.main()
