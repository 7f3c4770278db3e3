"""
Unit tests for the taxa, characters, distances and trees blocks.
"""

import unittest

import numpy as np

from splitstree.blocks import Characters, CharactersFormat, Distances, Taxa, Trees
from splitstree.tree import PaupNode


class TestTaxa(unittest.TestCase):

    def setUp(self):
        self.taxa = Taxa(["human", "chimp", "gorilla"])

    def test_lookup(self):
        self.assertEqual(self.taxa.ntax, 3)
        self.assertEqual(self.taxa.get_label(2), "chimp")
        self.assertEqual(self.taxa[3], "gorilla")
        self.assertEqual(self.taxa.index_of("human"), 1)
        self.assertIsNone(self.taxa.index_of("orangutan"))
        self.assertIn("chimp", self.taxa)
        self.assertEqual(list(self.taxa), ["human", "chimp", "gorilla"])

    def test_bad_index(self):
        with self.assertRaises(IndexError):
            self.taxa.get_label(0)
        with self.assertRaises(IndexError):
            self.taxa.get_label(4)

    def test_duplicate_and_empty_labels(self):
        with self.assertRaises(ValueError):
            Taxa(["a", "b", "a"])
        with self.assertRaises(ValueError):
            Taxa(["a", " "])

    def test_equality(self):
        self.assertEqual(self.taxa, Taxa(["human", "chimp", "gorilla"]))
        self.assertNotEqual(self.taxa, Taxa(["chimp", "human", "gorilla"]))


class TestCharacters(unittest.TestCase):

    def test_from_sequences(self):
        chars = Characters.from_sequences(["acgt", "AC-T"])
        self.assertEqual((chars.ntax, chars.nchar), (2, 4))
        self.assertEqual(chars.sequence(1), "ACGT")
        self.assertEqual(chars.get(2, 3), "-")
        self.assertTrue(chars.is_missing_or_gap("-"))
        self.assertEqual(list(chars.column(2)), ["C", "C"])

    def test_unequal_lengths(self):
        with self.assertRaises(ValueError):
            Characters.from_sequences(["ACGT", "ACG"])
        with self.assertRaises(ValueError):
            Characters.from_sequences([])

    def test_new_matrix_is_missing(self):
        chars = Characters(2, 3)
        self.assertEqual(chars.sequence(1), "???")

    def test_set_and_copy(self):
        chars = Characters.from_sequences(["AAAA", "CCCC"])
        copy = chars.copy()
        chars.set(1, 1, "g")
        self.assertEqual(chars.get(1, 1), "G")
        self.assertEqual(copy.get(1, 1), "A")
        with self.assertRaises(ValueError):
            chars.set(1, 1, "GG")
        with self.assertRaises(IndexError):
            chars.get(1, 5)

    def test_format_defaults(self):
        self.assertEqual(CharactersFormat().symbols, "ACGT")
        self.assertEqual(len(CharactersFormat(datatype="protein").symbols), 20)
        self.assertEqual(CharactersFormat(datatype="standard").symbols, "01")
        self.assertTrue(CharactersFormat().is_valid_state("a"))
        with self.assertRaises(ValueError):
            CharactersFormat(datatype="rna")
        with self.assertRaises(ValueError):
            CharactersFormat(missing="??")


class TestDistances(unittest.TestCase):

    def test_set_is_symmetric(self):
        dist = Distances(3)
        dist.set(1, 3, 0.5)
        self.assertEqual(dist.get(3, 1), 0.5)
        self.assertTrue(dist.is_symmetric())

    def test_from_array(self):
        arr = np.array([[0, 1, 2], [1, 0, 3], [2, 3, 0]])
        dist = Distances.from_array(arr)
        self.assertEqual(dist.get(2, 3), 3.0)
        arr[0, 1] = 99
        self.assertEqual(dist.get(1, 2), 1.0)

    def test_from_array_not_square(self):
        with self.assertRaises(ValueError):
            Distances.from_array(np.zeros((2, 3)))

    def test_as_array_is_a_copy(self):
        dist = Distances(2)
        arr = dist.as_array()
        arr[0, 1] = 5.0
        self.assertEqual(dist.get(1, 2), 0.0)

    def test_asymmetric(self):
        dist = Distances.from_array([[0, 1], [2, 0]])
        self.assertFalse(dist.is_symmetric())


class TestTrees(unittest.TestCase):

    def test_add_and_newick(self):
        taxa = Taxa(["a", "b"])
        root = PaupNode()
        PaupNode(2, 0.5).attach_as_first_child_of(root)
        PaupNode(1, 0.25).attach_as_first_child_of(root)
        trees = Trees(taxa)
        trees.add_tree("t1", root)

        self.assertEqual(trees.ntrees, 1)
        self.assertEqual(trees.get_name(1), "t1")
        self.assertIs(trees.get_tree(1), root)
        self.assertEqual(trees.to_newick(1), "(a:0.25,b:0.5);")
        self.assertEqual([name for name, _ in trees], ["t1"])
        with self.assertRaises(IndexError):
            trees.get_tree(2)


if __name__ == '__main__':
    unittest.main()
