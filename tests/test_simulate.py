"""
Unit tests for random trees, tree rearrangements and sequence simulation.

All stochastic tests use seeded generators; assertions check structural
properties that hold for any seed.
"""

import unittest

import numpy as np

from splitstree.blocks import Characters, Taxa
from splitstree.models import JukesCantor
from splitstree.simulate import (
    GammaInvariantRates,
    RandomGenerator,
    SimulationError,
    additive_distances,
    alter_distances,
    pick_node_at_height,
    random_coalescent_tree,
    random_node,
    random_spr,
    random_subtree_swap,
    relax_clock_lognormal,
    relax_exponential,
    simulate_characters,
)
from splitstree.tree import (
    PaupNode,
    count_leaves,
    get_node_height,
    iter_leaves,
    iter_preorder,
    node_heights,
    parse_newick,
)


def leaf_depths(root):
    depths = {}
    for v in iter_preorder(root):
        depth = 0.0 if v is root else depths[id(v.parent)] + v.length
        depths[id(v)] = depth
    return [depths[id(v)] for v in iter_leaves(root)]


class TestRandomGenerator(unittest.TestCase):

    def test_seed_reproducible(self):
        a, b = RandomGenerator(5), RandomGenerator(5)
        self.assertEqual([a.next_double() for _ in range(5)], [b.next_double() for _ in range(5)])

    def test_ranges(self):
        rng = RandomGenerator(1)
        for _ in range(200):
            self.assertIn(rng.next_int(3), (0, 1, 2))
            self.assertIn(rng.next_sign(), (-1, 1))
            value = rng.next_uniform(2.0, 3.0)
            self.assertTrue(2.0 <= value < 3.0)
        subset = rng.next_bitset(10)
        self.assertTrue(subset <= frozenset(range(10)))

    def test_distribution_means(self):
        rng = RandomGenerator(2)
        n = 5000
        self.assertAlmostEqual(np.mean([rng.next_exponential(0.5) for _ in range(n)]), 0.5, delta=0.05)
        self.assertAlmostEqual(np.mean([rng.next_gamma(2.0, 1.5) for _ in range(n)]), 3.0, delta=0.15)
        self.assertAlmostEqual(np.var([rng.next_gaussian(1.0, 4.0) for _ in range(n)]), 4.0, delta=0.4)
        self.assertAlmostEqual(np.mean([rng.next_chi_squared(3.0, 2.0) for _ in range(n)]), 5.0, delta=0.3)

    def test_noncentral_chi_squared_needs_one_df(self):
        with self.assertRaises(ValueError):
            RandomGenerator(1).next_chi_squared(0.5, 1.0)


class TestGammaInvariantRates(unittest.TestCase):

    def test_mean_rate_is_one(self):
        rates = GammaInvariantRates(0.5, 0.25, RandomGenerator(4))
        draws = np.array([rates.next() for _ in range(20000)])
        self.assertAlmostEqual(draws.mean(), 1.0, delta=0.05)
        self.assertAlmostEqual(np.mean(draws == 0.0), 0.25, delta=0.02)

    def test_equal_rates(self):
        rates = GammaInvariantRates(0.0, 0.0, RandomGenerator(4))
        self.assertEqual({rates.next() for _ in range(10)}, {1.0})

    def test_bad_pinv(self):
        with self.assertRaises(ValueError):
            GammaInvariantRates(1.0, 1.0, RandomGenerator(4))


class TestCoalescentTree(unittest.TestCase):

    def setUp(self):
        self.taxa = Taxa([f"t{i}" for i in range(1, 9)])
        self.root = random_coalescent_tree(self.taxa, 0.3, RandomGenerator(8))

    def test_binary_with_all_taxa(self):
        self.assertEqual(sorted(v.id for v in iter_leaves(self.root)), list(range(1, 9)))
        for v in iter_preorder(self.root):
            if not v.is_leaf():
                self.assertEqual(v.n_children(), 2)

    def test_ultrametric_with_height(self):
        np.testing.assert_allclose(leaf_depths(self.root), 0.3)
        heights = node_heights(self.root)
        self.assertEqual(len(heights), 7)
        self.assertAlmostEqual(heights[-1], 0.3)
        self.assertEqual(self.root.length, 0.0)

    def test_single_taxon(self):
        root = random_coalescent_tree(Taxa(["a"]), 1.0, RandomGenerator(1))
        self.assertTrue(root.is_leaf())

    def test_relaxed_clocks_keep_topology(self):
        before = self.root.deep_copy().write_description().count("(")
        relax_clock_lognormal(self.root, 0.5, RandomGenerator(3))
        relax_exponential(self.root, 0.2, RandomGenerator(3))
        self.assertEqual(self.root.write_description().count("("), before)
        self.assertTrue(all(v.length > 0 for v in iter_preorder(self.root) if v is not self.root))


class TestRearrangements(unittest.TestCase):

    def setUp(self):
        self.taxa = Taxa([f"t{i}" for i in range(1, 11)])

    def test_random_node_needs_lengths(self):
        root = PaupNode()
        PaupNode(1).attach_as_first_child_of(root)
        with self.assertRaises(SimulationError):
            random_node(root, RandomGenerator(1))

    def test_subtree_swap_keeps_leaves(self):
        rng = RandomGenerator(12)
        root = random_coalescent_tree(self.taxa, 1.0, rng)
        for _ in range(20):
            random_subtree_swap(root, rng)
        self.assertEqual(sorted(v.id for v in iter_leaves(root)), list(range(1, 11)))

    def test_spr_keeps_binary_tree(self):
        rng = RandomGenerator(13)
        root = random_coalescent_tree(self.taxa, 1.0, rng)
        for _ in range(30):
            root = random_spr(root, rng)
            self.assertTrue(root.is_root())
            self.assertEqual(count_leaves(root), 10)
            for v in iter_preorder(root):
                if not v.is_leaf():
                    self.assertEqual(v.n_children(), 2)
            self.assertTrue(all(v.length >= 0 for v in iter_preorder(root)))

    def test_rearrangements_need_three_leaves(self):
        taxa = Taxa(["a", "b"])
        root = parse_newick(taxa, "(a:1,b:1);")
        with self.assertRaises(ValueError):
            random_spr(root, RandomGenerator(1))
        with self.assertRaises(ValueError):
            random_subtree_swap(root, RandomGenerator(1))

    def test_pick_node_at_height(self):
        rng = RandomGenerator(14)
        root = random_coalescent_tree(self.taxa, 1.0, rng)
        for height in (0.0, 0.2, 0.7):
            v = pick_node_at_height(root, height, rng)
            bottom = get_node_height(v)
            self.assertLessEqual(bottom, height + 1e-12)
            self.assertLess(height, bottom + v.length)
        with self.assertRaises(ValueError):
            pick_node_at_height(root, 5.0, rng)


class TestSimulateCharacters(unittest.TestCase):

    def setUp(self):
        self.taxa = Taxa(["a", "b", "c", "d"])
        self.root = parse_newick(self.taxa, "((a:0.1,b:0.1):0.1,(c:0.1,d:0.1):0.1);")

    def test_fills_matrix(self):
        chars = Characters(4, 200)
        simulate_characters(chars, self.root, JukesCantor(), rng=RandomGenerator(21))
        self.assertTrue(set("".join(chars.sequence(i) for i in range(1, 5))) <= set("ACGT"))
        self.assertNotEqual(chars.sequence(1), chars.sequence(3))

    def test_reproducible(self):
        first = Characters(4, 50)
        second = Characters(4, 50)
        simulate_characters(first, self.root, JukesCantor(), rng=RandomGenerator(9))
        simulate_characters(second, self.root, JukesCantor(), rng=RandomGenerator(9))
        self.assertEqual(first.sequence(2), second.sequence(2))

    def test_zero_length_tree_is_constant(self):
        root = parse_newick(self.taxa, "((a:0,b:0):0,(c:0,d:0):0);")
        chars = Characters(4, 30)
        simulate_characters(chars, root, JukesCantor(), rng=RandomGenerator(2))
        self.assertEqual(len({chars.sequence(i) for i in range(1, 5)}), 1)

    def test_discard_constant(self):
        chars = Characters(4, 40)
        rates = GammaInvariantRates(1.0, 0.5, RandomGenerator(5))
        simulate_characters(
            chars, self.root, JukesCantor(), site_rates=rates,
            discard_constant=True, rng=RandomGenerator(5),
        )
        for site in range(1, 41):
            self.assertGreater(len(set(chars.column(site))), 1)

    def test_taxa_outside_tree_are_missing(self):
        taxa = Taxa(["a", "b", "c", "d", "e"])
        root = parse_newick(taxa, "((a:0.1,b:0.1):0.1,(c:0.1,d:0.1):0.1);")
        chars = Characters(5, 10)
        simulate_characters(chars, root, JukesCantor(), rng=RandomGenerator(1))
        self.assertEqual(chars.sequence(5), "?" * 10)


class TestDistances(unittest.TestCase):

    def test_additive_distances(self):
        taxa = Taxa(["a", "b", "c"])
        root = parse_newick(taxa, "((a:1,b:2):0.5,c:3);")
        dist = additive_distances(taxa, root)
        self.assertAlmostEqual(dist.get(1, 2), 3.0)
        self.assertAlmostEqual(dist.get(1, 3), 4.5)
        self.assertAlmostEqual(dist.get(3, 2), 5.5)
        self.assertEqual(dist.get(2, 2), 0.0)

    def test_alter_distances(self):
        taxa = Taxa(["a", "b", "c"])
        root = parse_newick(taxa, "((a:1,b:2):0.5,c:3);")
        dist = additive_distances(taxa, root)
        unchanged = alter_distances(dist.copy(), 0.0, RandomGenerator(1))
        np.testing.assert_allclose(unchanged.as_array(), dist.as_array())
        noisy = alter_distances(dist.copy(), 0.2, RandomGenerator(1))
        self.assertTrue(noisy.is_symmetric())
        self.assertTrue(np.all(noisy.as_array() >= 0))


if __name__ == '__main__':
    unittest.main()
