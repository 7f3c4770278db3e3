"""
Simulation of Trees, Characters and Distances

Stochastic generators used to produce synthetic data with a known history,
for testing tree and network methods and for parametric bootstrapping.

Key Features:
- RandomGenerator: seeded random source with the distributions the
  simulations need (built on ``numpy.random.Generator``)
- GammaInvariantRates: gamma + invariable sites model of site rates
- Random trees: Kingman coalescent trees, relaxed clocks, random subtree
  swaps and SPR moves
- Sequence evolution: characters simulated down a tree under a
  nucleotide substitution model
- Distances: additive (path length) distances of a tree, with optional
  Gaussian noise

All generators take an explicit ``RandomGenerator`` so that a simulation
can be reproduced from its seed.

Example Usage:
    >>> from splitstree.blocks import Taxa, Characters
    >>> from splitstree.models import JukesCantor
    >>> from splitstree.simulate import RandomGenerator, random_coalescent_tree, simulate_characters
    >>> rng = RandomGenerator(seed=42)
    >>> taxa = Taxa([f"t{i}" for i in range(1, 11)])
    >>> tree = random_coalescent_tree(taxa, height=0.2, rng=rng)
    >>> chars = Characters(taxa.ntax, 500)
    >>> simulate_characters(chars, tree, JukesCantor(), rng=rng)
"""

from typing import Dict, FrozenSet, List, Optional
import logging
import math

import numpy as np

from .blocks import Characters, Distances, Taxa
from .tree import (
    PaupNode, count_leaves, iter_leaves, iter_preorder, scale_branch_lengths,
    update_fast_pre_post,
)

logger = logging.getLogger(__name__)

# Attempts before giving up on drawing a valid pair of nodes or a
# polymorphic site
MAX_ATTEMPTS = 10000


class SimulationError(Exception):
    """Error raised when a simulation cannot produce a valid result."""
    pass


# ============================================================================
# Random numbers
# ============================================================================

class RandomGenerator:
    """
    Random source for all simulations.

    Parameters
    ----------
    seed : int, optional
        Seed for reproducible runs. If None, fresh OS entropy is used
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    @property
    def generator(self) -> np.random.Generator:
        return self._rng

    def next_double(self) -> float:
        """Uniform on [0, 1)."""
        return float(self._rng.random())

    def next_int(self, n: int) -> int:
        """Uniform integer in 0..n-1."""
        return int(self._rng.integers(n))

    def next_boolean(self) -> bool:
        return bool(self._rng.random() < 0.5)

    def next_uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.next_double()

    def next_exponential(self, mean: float) -> float:
        return float(self._rng.exponential(mean))

    def next_gamma(self, alpha: float, beta: float = 1.0) -> float:
        """Gamma with shape ``alpha`` and scale ``beta``."""
        return float(self._rng.gamma(alpha, beta))

    def next_gaussian(self, mean: float = 0.0, variance: float = 1.0) -> float:
        """Normal with the given mean and variance (not standard deviation)."""
        return float(self._rng.normal(mean, math.sqrt(variance)))

    def next_sign(self) -> int:
        return 1 if self.next_boolean() else -1

    def next_chi_squared(self, df: float, noncentrality: Optional[float] = None) -> float:
        """
        Chi-squared variate, non-central when ``noncentrality`` is given.

        Raises
        ------
        ValueError
            For a non-central variate with fewer than one degree of freedom
        """
        if noncentrality is None:
            return float(self._rng.chisquare(df))
        if df < 1.0:
            raise ValueError("Chi-squared with degrees of freedom less than unity")
        a = (self._rng.standard_normal() + math.sqrt(noncentrality)) ** 2
        b = self.next_gamma((df - 1.0) / 2.0, 2.0) if df > 1.0 else 0.0
        return float(a + b)

    def next_bitset(self, n: int) -> FrozenSet[int]:
        """Random subset of 0..n-1, each element present with probability 1/2."""
        return frozenset(int(i) for i in np.flatnonzero(self._rng.random(n) < 0.5))


class GammaInvariantRates:
    """
    Site rates under the gamma + invariable sites model.

    A site is invariable (rate 0) with probability ``pinv``; otherwise its
    rate is drawn from a gamma distribution with mean one and the given
    shape, scaled by 1 / (1 - pinv) so the mean rate over all sites stays
    one. A shape <= 0 means equal rates for variable sites.
    """

    def __init__(self, shape: float, pinv: float, rng: RandomGenerator):
        if not 0.0 <= pinv < 1.0:
            raise ValueError(f"Proportion of invariable sites must be in [0, 1), got {pinv}")
        self.shape = shape
        self.pinv = pinv
        self.rng = rng

    def next(self) -> float:
        if self.pinv > 0.0 and self.rng.next_double() < self.pinv:
            return 0.0
        rate = 1.0
        if self.shape > 0.0:
            rate = self.rng.next_gamma(self.shape, 1.0 / self.shape)
        return rate / (1.0 - self.pinv)


# ============================================================================
# Random trees
# ============================================================================

def random_coalescent_tree(taxa: Taxa, height: float, rng: RandomGenerator) -> PaupNode:
    """
    Random binary tree under Kingman's coalescent.

    While k > 1 subtrees remain, an Exp(mean 1/k) waiting time is added to
    the root branch of every subtree, then two subtrees chosen uniformly
    at random are joined under a new node. Branch lengths are finally
    scaled so that the root-to-leaf height equals ``height``.

    Parameters
    ----------
    taxa : Taxa
        Leaves get ids 1..ntax
    height : float
        Height of the resulting (ultrametric) tree
    rng : RandomGenerator

    Returns
    -------
    PaupNode
        Root of the tree
    """
    ntax = taxa.ntax
    subtrees: List[PaupNode] = [PaupNode(id=i) for i in range(1, ntax + 1)]
    if ntax == 1:
        return subtrees[0]

    while len(subtrees) > 1:
        k = len(subtrees)
        waiting = rng.next_exponential(1.0 / k)
        for subtree in subtrees:
            subtree.length += waiting

        i = rng.next_int(k)
        j = rng.next_int(k - 1)
        if j >= i:
            j += 1
        first, second = min(i, j), max(i, j)

        joined = PaupNode()
        subtrees[second].attach_as_first_child_of(joined)
        subtrees[first].attach_as_first_child_of(joined)
        subtrees[first] = joined
        del subtrees[second]

    root = subtrees[0]
    tree_height = 0.0
    p = root.first_child
    while p is not None:
        tree_height += p.length
        p = p.first_child
    scale_branch_lengths(root, height / tree_height)
    root.length = 0.0
    update_fast_pre_post(root)
    logger.debug(f"Coalescent tree on {ntax} taxa with height {height}")
    return root


def relax_clock_lognormal(root: PaupNode, sigma: float, rng: RandomGenerator) -> None:
    """
    Apply an autocorrelated lognormal relaxed clock.

    The rate of a child is exp(N(log r, sigma^2 t)) where r is the rate of
    its parent and t its branch length; the branch is rescaled by the mean
    of both rates.
    """
    rates: Dict[int, float] = {id(root): 1.0}
    for v in iter_preorder(root):
        if v is root:
            continue
        parent_rate = rates[id(v.parent)]
        child_rate = math.exp(rng.next_gaussian(math.log(parent_rate), sigma * sigma * v.length))
        rates[id(v)] = child_rate
        v.length *= (parent_rate + child_rate) / 2.0


def relax_exponential(root: PaupNode, epsilon: float, rng: RandomGenerator) -> None:
    """Multiply every branch length by exp(U(-epsilon, epsilon))."""
    for v in iter_preorder(root):
        if v is not root:
            v.length *= math.exp(rng.next_uniform(-epsilon, epsilon))


def random_node(root: PaupNode, rng: RandomGenerator) -> PaupNode:
    """
    Pick a non-root node with probability proportional to its branch length.

    Raises
    ------
    SimulationError
        If the tree has no positive branch length
    """
    nodes = [v for v in iter_preorder(root) if v is not root]
    total = sum(v.length for v in nodes)
    if total <= 0.0:
        raise SimulationError("Tree has no positive branch lengths")
    r = rng.next_uniform(0.0, total)
    cumulative = 0.0
    for v in nodes:
        cumulative += v.length
        if cumulative > r:
            return v
    return nodes[-1]


def _is_ancestor(a: PaupNode, b: PaupNode) -> bool:
    x = b
    while x is not None:
        if x is a:
            return True
        x = x.parent
    return False


def _pick_unrelated_pair(root: PaupNode, rng: RandomGenerator):
    if count_leaves(root) <= 2:
        raise ValueError("Tree rearrangements need more than two leaves")
    for _ in range(MAX_ATTEMPTS):
        v = random_node(root, rng)
        w = random_node(root, rng)
        if _is_ancestor(v, w) or _is_ancestor(w, v) or v.parent is w.parent:
            continue
        return v, w
    raise SimulationError("Could not find two unrelated subtrees")


def random_subtree_swap(root: PaupNode, rng: RandomGenerator) -> None:
    """
    Exchange two random subtrees that are not nested and not siblings.

    Raises
    ------
    ValueError
        If the tree has two or fewer leaves
    """
    v, w = _pick_unrelated_pair(root, rng)
    v_parent = v.parent
    w_parent = w.parent
    v.detach_from_parent()
    w.detach_from_parent()
    w.attach_as_first_child_of(v_parent)
    v.attach_as_first_child_of(w_parent)
    update_fast_pre_post(root)


def random_spr(root: PaupNode, rng: RandomGenerator) -> PaupNode:
    """
    Random subtree prune and regraft.

    A random subtree v is removed and reattached at a uniformly chosen
    point on the branch above another random node w. A parent left with a
    single child is suppressed.

    Returns
    -------
    PaupNode
        The root of the modified tree, which changes if the old root was
        suppressed

    Raises
    ------
    ValueError
        If the tree has two or fewer leaves
    """
    v, w = _pick_unrelated_pair(root, rng)
    old_parent = v.parent

    new_parent = PaupNode()
    l1 = rng.next_uniform(0.0, w.length)
    new_parent.length = l1
    new_parent.attach_as_next_sibling_of(w)
    w.attach_as_first_child_of(new_parent, length=w.length - l1)
    v.attach_as_first_child_of(new_parent)

    if old_parent.n_children() == 1:
        only = old_parent.first_child
        if old_parent is root:
            only.detach_from_parent()
            only.length = 0.0
            root = only
        else:
            only.contract()
    update_fast_pre_post(root)
    return root


def pick_node_at_height(root: PaupNode, height: float, rng: RandomGenerator) -> PaupNode:
    """
    Pick uniformly among the nodes whose branch spans ``height`` (measured
    from the leaves of an ultrametric tree).

    Raises
    ------
    ValueError
        If no branch spans the height
    """
    candidates = []
    for leaf in iter_leaves(root):
        bottom = 0.0
        x = leaf
        # Walk up while x is a first child, so every node is seen once.
        while x is not None:
            top = bottom + x.length
            if bottom <= height < top and x is not root:
                candidates.append(x)
            if x.parent is None or x.parent.first_child is not x:
                break
            bottom = top
            x = x.parent
    if not candidates:
        raise ValueError(f"No branch spans height {height}")
    return candidates[rng.next_int(len(candidates))]


# ============================================================================
# Sequence evolution
# ============================================================================

def simulate_characters(
    characters: Characters,
    root: PaupNode,
    model,
    site_rates: Optional[GammaInvariantRates] = None,
    discard_constant: bool = False,
    rng: Optional[RandomGenerator] = None,
) -> Characters:
    """
    Fill ``characters`` with sequences evolved down the tree.

    For every site a root state is drawn from the model's base frequencies
    and passed down the tree; along a branch of length t the state changes
    according to P(t * r) where r is the site rate. Rate-zero sites are
    constant. Taxa that are not leaves of the tree are set to missing.

    Parameters
    ----------
    characters : Characters
        Matrix to fill; its format symbols map model states to characters
    root : PaupNode
        Tree whose leaf ids index the rows of the matrix
    model : NucleotideModel
        Substitution model
    site_rates : GammaInvariantRates, optional
        Source of site rates; all rates are one if None
    discard_constant : bool
        Redraw rate-zero and constant sites until every site is polymorphic
    rng : RandomGenerator, optional

    Returns
    -------
    Characters
        The filled matrix (same object)

    Raises
    ------
    SimulationError
        If a polymorphic site cannot be produced
    """
    if rng is None:
        rng = RandomGenerator()
    symbols = characters.format.symbols
    matrix = characters.matrix
    missing = characters.format.missing
    nodes = [v for v in iter_preorder(root) if v is not root]
    leaves = [v for v in nodes if v.is_leaf()]
    if root.is_leaf():
        leaves = [root]
    rows = [v.id - 1 for v in leaves]
    if discard_constant and len(rows) < 2:
        raise SimulationError("Cannot produce polymorphic sites with fewer than two taxa")

    tracker_step = max(characters.nchar // 10, 1)
    for site in range(characters.nchar):
        matrix[:, site] = missing

        rate = site_rates.next() if site_rates is not None else 1.0
        attempts = 0
        while discard_constant and rate == 0.0:
            rate = site_rates.next()
            attempts += 1
            if attempts > MAX_ATTEMPTS:
                raise SimulationError("Site rate model only produces invariable sites")

        for _ in range(MAX_ATTEMPTS):
            states = {id(root): model.random_pi(rng)}
            if rate == 0.0:
                for v in leaves:
                    states[id(v)] = states[id(root)]
            else:
                for v in nodes:
                    states[id(v)] = model.random_end_state(states[id(v.parent)], v.length * rate, rng)
            column = [symbols[states[id(v)]] for v in leaves]
            matrix[rows, site] = column
            if not discard_constant or len(set(column)) > 1:
                break
        else:
            raise SimulationError(f"Could not produce a polymorphic site at position {site + 1}")

        if (site + 1) % tracker_step == 0:
            logger.debug(f"Simulated {site + 1}/{characters.nchar} sites")

    logger.debug(f"Simulated {characters.nchar} sites for {len(rows)} taxa under {model.name}")
    return characters


# ============================================================================
# Distances
# ============================================================================

def additive_distances(taxa: Taxa, root: PaupNode) -> Distances:
    """Path length distances between all pairs of leaves of a tree."""
    distances = Distances(taxa.ntax)
    depth: Dict[int, float] = {}
    ancestors: Dict[int, List[PaupNode]] = {}
    for v in iter_preorder(root):
        if v is root:
            depth[id(v)] = 0.0
            ancestors[id(v)] = [v]
        else:
            depth[id(v)] = depth[id(v.parent)] + v.length
            ancestors[id(v)] = ancestors[id(v.parent)] + [v]

    leaves = list(iter_leaves(root))
    for a in range(len(leaves)):
        path_a = ancestors[id(leaves[a])]
        for b in range(a + 1, len(leaves)):
            path_b = ancestors[id(leaves[b])]
            k = 0
            while k < min(len(path_a), len(path_b)) and path_a[k] is path_b[k]:
                k += 1
            lca = path_a[k - 1]
            d = depth[id(leaves[a])] + depth[id(leaves[b])] - 2.0 * depth[id(lca)]
            distances.set(leaves[a].id, leaves[b].id, d)
    return distances


def alter_distances(distances: Distances, percent_var: float, rng: RandomGenerator) -> Distances:
    """
    Perturb distances in place with Gaussian noise.

    d_ij becomes |d_ij + N(0, d_ij * percent_var)|; the matrix stays
    symmetric.
    """
    n = distances.ntax
    for i in range(1, n + 1):
        for j in range(i + 1, n + 1):
            dij = distances.get(i, j)
            dij = abs(dij + rng.next_gaussian(0.0, dij * percent_var))
            distances.set(i, j, dij)
    return distances
