"""
Unit tests for splits, split blocks and the split matrix.
"""

import unittest

import numpy as np

from splitstree.blocks import Taxa, Trees
from splitstree.splits import (
    SplitMatrix,
    Splits,
    SplitsError,
    are_compatible,
    complement,
    format_split,
    lento_data,
    normalize,
    split_size,
    tree_to_splits,
)
from splitstree.tree import parse_newick


class TestSplitHelpers(unittest.TestCase):

    def test_normalize(self):
        self.assertEqual(normalize(4, {1, 2}), frozenset({3, 4}))
        self.assertEqual(normalize(4, {3, 4}), frozenset({3, 4}))
        self.assertEqual(complement(4, {2}), frozenset({1, 3, 4}))

    def test_compatibility(self):
        self.assertTrue(are_compatible(4, {1, 2}, {1, 2, 3}))
        self.assertTrue(are_compatible(4, {1, 2}, {3, 4}))
        self.assertFalse(are_compatible(4, {1, 2}, {1, 3}))
        self.assertTrue(are_compatible(5, {1, 2}, {4, 5}))

    def test_size_and_format(self):
        self.assertEqual(split_size(5, {1, 2, 3}), 2)
        self.assertEqual(format_split({3, 1, 2}), "1 2 3")


class TestSplits(unittest.TestCase):

    def setUp(self):
        self.splits = Splits(4)

    def test_add_normalizes(self):
        index = self.splits.add({1, 2}, weight=0.5)
        self.assertEqual(index, 1)
        self.assertEqual(self.splits.get(1), frozenset({3, 4}))
        self.assertEqual(self.splits.find({1, 2}), 1)
        self.assertEqual(self.splits.find({3, 4}), 1)
        self.assertEqual(self.splits.find({1, 3}), -1)

    def test_add_rejects_trivial_sides(self):
        with self.assertRaises(SplitsError):
            self.splits.add(set())
        with self.assertRaises(SplitsError):
            self.splits.add({1, 2, 3, 4})
        with self.assertRaises(SplitsError):
            self.splits.add({0, 2})
        with self.assertRaises(SplitsError):
            self.splits.add({5})

    def test_attributes(self):
        self.splits.add({2}, weight=1.0, confidence=0.8, label="b")
        self.splits.set_weight(1, 2.0)
        self.splits.set_confidence(1, 0.9)
        self.assertFalse(self.splits.has_intervals())
        self.splits.set_interval(1, 1.5, 2.5)
        self.assertEqual(self.splits.get_weight(1), 2.0)
        self.assertEqual(self.splits.get_confidence(1), 0.9)
        self.assertEqual(self.splits.get_interval(1), (1.5, 2.5))
        self.assertEqual(self.splits.get_label(1), "b")
        self.assertTrue(self.splits.has_intervals())
        with self.assertRaises(IndexError):
            self.splits.get(2)

    def test_total_weight_and_compatibility(self):
        self.splits.add({1, 2}, weight=0.5)
        self.splits.add({2}, weight=0.25)
        self.assertEqual(self.splits.total_weight(), 0.75)
        self.assertTrue(self.splits.is_compatible())
        self.splits.add({1, 3}, weight=0.1)
        self.assertFalse(self.splits.is_compatible())

    def test_to_dataframe(self):
        self.splits.add({1, 2}, weight=0.5)
        self.splits.add({2}, weight=0.25)
        self.splits.set_interval(1, 0.4, 0.6)
        df = self.splits.to_dataframe()
        self.assertEqual(list(df.columns), ['split', 'size', 'weight', 'confidence', 'low', 'high', 'label', 'taxa'])
        self.assertEqual(df.loc[0, 'taxa'], "3 4")
        self.assertEqual(df.loc[1, 'size'], 1)
        self.assertTrue(np.isnan(df.loc[1, 'low']))


class TestTreeToSplits(unittest.TestCase):

    def test_merges_root_edges(self):
        taxa = Taxa(["a", "b", "c"])
        root = parse_newick(taxa, "((a:1,b:1):0.5,c:1.5);")
        splits = tree_to_splits(root, 3)
        self.assertEqual(splits.nsplits, 3)
        # The root edges of (a,b) and c define the same split
        self.assertEqual(splits.get_weight(splits.find({3})), 2.0)
        self.assertEqual(splits.get_weight(splits.find({1})), 1.0)
        self.assertTrue(splits.is_compatible())

    def test_unrooted_five_taxa(self):
        taxa = Taxa(["a", "b", "c", "d", "e"])
        root = parse_newick(taxa, "((a:1,b:1):0.3,c:1,(d:1,e:1):0.7);")
        splits = tree_to_splits(root, 5)
        # 5 trivial splits and 2 internal ones
        self.assertEqual(splits.nsplits, 7)
        self.assertAlmostEqual(splits.get_weight(splits.find({1, 2})), 0.3)
        self.assertAlmostEqual(splits.get_weight(splits.find({4, 5})), 0.7)


class TestSplitMatrix(unittest.TestCase):

    def setUp(self):
        self.first = Splits(4)
        self.first.add({1, 2}, weight=1.0)
        self.second = Splits(4)
        self.second.add({1, 2}, weight=3.0)
        self.second.add({1, 3}, weight=2.0)

    def test_add_blocks(self):
        matrix = SplitMatrix(4)
        self.assertEqual(matrix.add(self.first), 1)
        self.assertEqual(matrix.add(self.second), 2)
        self.assertEqual(matrix.nsplits, 2)
        self.assertEqual(matrix.nblocks, 2)
        row = matrix.find_split({3, 4})
        self.assertEqual(list(matrix.row(row)), [1.0, 3.0])
        self.assertEqual(matrix.get(matrix.find_split({1, 3}), 1), 0.0)
        self.assertEqual(matrix.count(matrix.find_split({1, 3})), 1)
        self.assertEqual(matrix.mean_weight(row), 2.0)
        np.testing.assert_array_equal(matrix.to_array(), [[1.0, 3.0], [0.0, 2.0]])
        np.testing.assert_array_equal(matrix.column(2), [3.0, 2.0])

    def test_seeded_rows(self):
        matrix = SplitMatrix(4, self.second)
        self.assertEqual(matrix.nsplits, 2)
        self.assertEqual(matrix.nblocks, 0)
        self.assertEqual(matrix.mean_weight(1), 0.0)
        with self.assertRaises(IndexError):
            matrix.get(1, 1)

    def test_set_and_get(self):
        matrix = SplitMatrix(4)
        matrix.add(self.first)
        matrix.set(1, 1, 0.0)
        self.assertEqual(matrix.get(1, 1), 0.0)
        self.assertEqual(matrix.count(1), 0)
        with self.assertRaises(IndexError):
            matrix.set(2, 1, 1.0)

    def test_splits_property(self):
        matrix = SplitMatrix(4)
        matrix.add(self.first)
        matrix.add(self.second)
        splits = matrix.splits
        self.assertEqual(splits.get_weight(splits.find({1, 2})), 2.0)
        self.assertEqual(splits.get_weight(splits.find({1, 3})), 1.0)

    def test_wrong_ntax(self):
        with self.assertRaises(SplitsError):
            SplitMatrix(5).add(self.first)

    def test_from_trees(self):
        taxa = Taxa(["a", "b", "c", "d"])
        trees = Trees(taxa)
        trees.add_tree("t1", parse_newick(taxa, "((a:1,b:1):1,(c:1,d:1):1);"))
        trees.add_tree("t2", parse_newick(taxa, "((a:1,c:1):1,(b:1,d:1):1);"))
        matrix = SplitMatrix.from_trees(trees)
        self.assertEqual(matrix.nblocks, 2)
        # 4 trivial splits plus ab|cd and ac|bd
        self.assertEqual(matrix.nsplits, 6)
        self.assertEqual(matrix.get(matrix.find_split({1, 2}), 1), 2.0)


class TestLentoData(unittest.TestCase):

    def test_support_and_conflict(self):
        splits = Splits(4)
        splits.add({1, 2}, weight=0.5)
        splits.add({1, 3}, weight=0.2)
        df = lento_data(splits)
        self.assertEqual(list(df['split']), [1, 2])
        self.assertEqual(list(df['conflict']), [0.2, 0.5])
        # The side without the last taxon is listed
        self.assertEqual(list(df['taxa']), ["1 2", "1 3"])

    def test_empty(self):
        self.assertTrue(lento_data(Splits(4)).empty)


if __name__ == '__main__':
    unittest.main()
