"""
Tests for Nexus reading and writing.

Tests cover:
- Layout of the DISTANCES and SPLITS blocks written
- Round trips of a complete document through a file
- Reading lower triangular distances and labelled splits
- Malformed input
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from splitstree.blocks import Characters, Distances, Taxa, Trees
from splitstree.nexus import (
    NexusError,
    read_nexus,
    read_nexus_string,
    tokenize,
    write_distances_block,
    write_nexus,
    write_splits_block,
)
from splitstree.splits import Splits, tree_to_splits
from splitstree.tree import parse_newick


def small_document():
    taxa = Taxa(["a", "b", "c", "d"])
    characters = Characters.from_sequences(["ACGTAC", "ACGTTC", "AGGTTA", "AGCTTA"])
    distances = Distances(4)
    for (i, j), value in {(1, 2): 0.1, (1, 3): 0.4, (1, 4): 0.5,
                          (2, 3): 0.3, (2, 4): 0.4, (3, 4): 0.2}.items():
        distances.set(i, j, value)
    splits = Splits(4)
    splits.add({1, 2}, weight=0.25, confidence=0.9)
    splits.add({1}, weight=0.05, confidence=1.0)
    splits.set_interval(1, 0.1, 0.4)
    splits.set_interval(2, 0.0, 0.1)
    trees = Trees(taxa)
    trees.add_tree("nj", parse_newick(taxa, "((a:0.05,b:0.05):0.25,c:0.1,d:0.1);"))
    return taxa, characters, distances, splits, trees


class TestWriters(unittest.TestCase):

    def test_distances_block(self):
        taxa, _, distances, _, _ = small_document()
        text = write_distances_block(taxa, distances)
        self.assertIn("FORMAT labels=left diagonal triangle=both;", text)
        self.assertIn("[1] a 0.0 0.1 0.4 0.5", text)
        self.assertTrue(text.rstrip().endswith("END; [Distances]"))

    def test_splits_block(self):
        _, _, _, splits, _ = small_document()
        text = write_splits_block(splits)
        self.assertIn("DIMENSIONS ntax=4 nsplits=2;", text)
        self.assertIn("intervals=yes", text)
        self.assertIn("PROPERTIES compatible;", text)
        lines = text.splitlines()
        first = next(line for line in lines if line.startswith("[1,"))
        self.assertTrue(first.startswith("[1, size=2]"))
        # Side without taxon 1, comma terminated
        self.assertTrue(first.endswith("3 4,"))

    def test_tokenize(self):
        tokens = tokenize("TAXLABELS [comment] 'a b' \"c\" d;")
        self.assertEqual(tokens, ["TAXLABELS", "a b", "c", "d", ";"])
        self.assertEqual(tokenize("x='it''s'"), ["x", "=", "it's"])
        with self.assertRaises(NexusError):
            tokenize("'open")


class TestRoundTrip(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_complete_document(self):
        taxa, characters, distances, splits, trees = small_document()
        path = write_nexus(
            self.temp_dir / "doc.nex", taxa,
            characters=characters, distances=distances, splits=splits, trees=trees,
        )
        doc = read_nexus(path)

        self.assertEqual(doc.taxa, taxa)
        for i in range(1, 5):
            self.assertEqual(doc.characters.sequence(i), characters.sequence(i))
            for j in range(1, 5):
                self.assertAlmostEqual(doc.distances.get(i, j), distances.get(i, j))

        self.assertEqual(doc.splits.nsplits, 2)
        self.assertEqual(doc.splits.get(1), frozenset({3, 4}))
        self.assertAlmostEqual(doc.splits.get_weight(1), 0.25)
        self.assertAlmostEqual(doc.splits.get_confidence(1), 0.9)
        self.assertEqual(doc.splits.get_interval(1), (0.1, 0.4))

        self.assertEqual(doc.trees.ntrees, 1)
        original = tree_to_splits(trees.get_tree(1), 4)
        parsed = tree_to_splits(doc.trees.get_tree(1), 4)
        self.assertEqual(set(parsed), set(original))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            read_nexus(self.temp_dir / "absent.nex")


class TestReader(unittest.TestCase):

    def test_lower_triangle_without_diagonal(self):
        doc = read_nexus_string(
            "#NEXUS\n"
            "BEGIN Distances;\n"
            "DIMENSIONS ntax=3;\n"
            "FORMAT triangle=lower nodiagonal labels;\n"
            "MATRIX\n"
            "a\n"
            "b 1\n"
            "c 2 3\n"
            ";\n"
            "END;\n"
        )
        self.assertEqual(doc.taxa.labels, ["a", "b", "c"])
        self.assertEqual(doc.distances.get(1, 2), 1.0)
        self.assertEqual(doc.distances.get(3, 1), 2.0)
        self.assertEqual(doc.distances.get(2, 3), 3.0)

    def test_distances_follow_taxa_order(self):
        doc = read_nexus_string(
            "#NEXUS\n"
            "BEGIN Taxa; DIMENSIONS ntax=2; TAXLABELS x y; END;\n"
            "BEGIN Distances; FORMAT triangle=both;\n"
            "MATRIX y 0 7 x 7 0; END;\n"
        )
        self.assertEqual(doc.distances.get(1, 2), 7.0)

    def test_labelled_splits(self):
        doc = read_nexus_string(
            "#NEXUS\n"
            "BEGIN Taxa; DIMENSIONS ntax=4; TAXLABELS a b c d; END;\n"
            "BEGIN Splits; DIMENSIONS nsplits=2;\n"
            "FORMAT labels=left weights=yes confidences=no;\n"
            "MATRIX\n"
            "[1] s1 2.5 1 2,\n"
            "[2] s2 1.0 4,\n"
            ";\nEND;\n"
        )
        self.assertEqual(doc.splits.get_label(1), "s1")
        self.assertEqual(doc.splits.get_weight(1), 2.5)
        self.assertEqual(doc.splits.get(1), frozenset({3, 4}))
        self.assertEqual(doc.splits.get(2), frozenset({4}))

    def test_label_ending_in_end(self):
        doc = read_nexus_string(
            "#NEXUS\nBEGIN Taxa; DIMENSIONS ntax=2; TAXLABELS legend\n friend\n;\nEND;\n"
        )
        self.assertEqual(doc.taxa.labels, ["legend", "friend"])

    def test_unknown_blocks_are_skipped(self):
        doc = read_nexus_string(
            "#NEXUS\nBEGIN Assumptions; exset none; END;\n"
            "BEGIN Taxa; DIMENSIONS ntax=2; TAXLABELS a b; END;\n"
        )
        self.assertEqual(doc.taxa.ntax, 2)
        self.assertIsNone(doc.splits)

    def test_malformed_input(self):
        with self.assertRaises(NexusError):
            read_nexus_string("BEGIN Taxa; END;")
        with self.assertRaises(NexusError):
            read_nexus_string("#NEXUS\nBEGIN Taxa; DIMENSIONS ntax=3; TAXLABELS a b; END;")
        with self.assertRaises(NexusError):
            read_nexus_string(
                "#NEXUS\nBEGIN Taxa; DIMENSIONS ntax=2; TAXLABELS a b; END;\n"
                "BEGIN Splits; DIMENSIONS nsplits=2; MATRIX 1.0 2,; END;"
            )
        with self.assertRaises(NexusError):
            read_nexus_string(
                "#NEXUS\nBEGIN Taxa; DIMENSIONS ntax=2; TAXLABELS a b; END;\n"
                "BEGIN Distances; MATRIX a 0 x b 1 0; END;"
            )


if __name__ == '__main__':
    unittest.main()
