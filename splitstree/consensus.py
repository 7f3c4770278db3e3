"""
Consensus Networks and Consensus Trees

Summarises a collection of trees on the same taxa by the splits that occur
in more than a given fraction of them.

1. Consensus network: every split found in more than ``threshold`` of the
   trees, weighted by a statistic of its branch lengths. With a threshold
   below 0.5 the result is usually incompatible and drawn as a network.
2. Consensus tree: the majority rule (threshold 0.5) or strict (split in
   every tree) consensus. The result is always compatible and can be
   turned back into a tree with ``splits_to_tree``.

The confidence of each consensus split is the fraction of trees that
contain it.

Reference:
    Holland, B. and Moulton, V. (2003). Consensus networks: a method for
    visualising incompatibilities in collections of trees. WABI 2003,
    LNBI 2812, 165-176.

Example Usage:
    >>> from splitstree.consensus import consensus_network, consensus_tree, splits_to_tree
    >>> network = consensus_network(trees, threshold=0.2)
    >>> majority = consensus_tree(trees, method="majority")
    >>> print(splits_to_tree(majority).to_newick(trees.taxa))
"""

from typing import Dict, FrozenSet, List, Union
import logging

import numpy as np

from .blocks import Trees
from .splits import SplitMatrix, Splits, are_compatible, complement, tree_to_splits
from .tree import PaupNode

logger = logging.getLogger(__name__)

CONSENSUS_METHODS = ("majority", "strict")
EDGE_WEIGHTS = ("mean", "median", "count", "sum", "none")

# Threshold for the strict consensus: a split must be in every tree
STRICT_THRESHOLD = 0.99999999


class ConsensusError(Exception):
    """Error raised when a consensus cannot be computed."""
    pass


def _weights_from_trees(trees: Trees) -> Dict[FrozenSet[int], List[float]]:
    """Branch lengths of every split, one entry per tree that displays it."""
    ntax = trees.taxa.ntax
    weights: Dict[FrozenSet[int], List[float]] = {}
    for name, root in trees:
        splits = tree_to_splits(root, ntax)
        for i in range(1, splits.nsplits + 1):
            weights.setdefault(splits.get(i), []).append(splits.get_weight(i))
    return weights


def _weights_from_matrix(matrix: SplitMatrix) -> Dict[FrozenSet[int], List[float]]:
    """Positive weights of every row; a zero entry means the block lacks the split."""
    weights = {}
    for i in range(1, matrix.nsplits + 1):
        row = matrix.row(i)
        present = row[row > 0]
        if len(present):
            weights[matrix.get_split(i)] = [float(w) for w in present]
    return weights


def _edge_weight(values: List[float], edge_weights: str) -> float:
    if edge_weights == "mean":
        return float(np.mean(values))
    if edge_weights == "median":
        # Upper median, so the weight is one of the observed lengths
        return float(sorted(values)[len(values) // 2])
    if edge_weights == "count":
        return float(len(values))
    if edge_weights == "sum":
        return float(np.sum(values))
    return 1.0


def consensus_network(
    trees: Union[Trees, SplitMatrix],
    threshold: float = 0.33,
    edge_weights: str = "mean",
) -> Splits:
    """
    Splits contained in more than ``threshold`` of the trees.

    Parameters
    ----------
    trees : Trees or SplitMatrix
        The trees, or a split matrix with one block per tree (as built by
        a bootstrap run). In a matrix, a split is in a tree when its
        weight in that block is positive.
    threshold : float
        Minimum fraction of trees, exclusive (default: 0.33)
    edge_weights : str
        Weight of each split computed from its lengths in the trees that
        contain it: "mean", "median", "count", "sum" or "none" (weight 1)

    Returns
    -------
    Splits
        Consensus splits in order of decreasing frequency, confidences set
        to the fraction of trees containing them

    Raises
    ------
    ConsensusError
        If there are no trees or an option is invalid
    """
    if edge_weights not in EDGE_WEIGHTS:
        raise ConsensusError(f"Unknown edge weights '{edge_weights}'. Valid options: {EDGE_WEIGHTS}")
    if not 0.0 <= threshold < 1.0:
        raise ConsensusError(f"Threshold must be in [0, 1), got {threshold}")

    if isinstance(trees, SplitMatrix):
        ntax = trees.ntax
        ntrees = trees.nblocks
        weights = _weights_from_matrix(trees)
    else:
        ntax = trees.taxa.ntax
        ntrees = trees.ntrees
        weights = _weights_from_trees(trees)
    if ntrees == 0:
        raise ConsensusError("Consensus needs at least one tree")
    if ntrees == 1:
        logger.warning("Consensus of a single tree")

    result = Splits(ntax)
    ranked = sorted(weights.items(), key=lambda item: (-len(item[1]), sorted(item[0])))
    for side, values in ranked:
        fraction = len(values) / ntrees
        if fraction > threshold:
            result.add(side, weight=_edge_weight(values, edge_weights), confidence=fraction)

    logger.debug(
        f"Consensus network of {ntrees} trees: {result.nsplits} of {len(weights)} "
        f"splits above {threshold}"
    )
    return result


def consensus_tree(
    trees: Union[Trees, SplitMatrix],
    method: str = "majority",
    edge_weights: str = "mean",
) -> Splits:
    """
    Majority rule or strict consensus splits.

    Parameters
    ----------
    trees : Trees or SplitMatrix
        See ``consensus_network``
    method : str
        "majority" (splits in more than half of the trees) or "strict"
        (splits in every tree)
    edge_weights : str
        See ``consensus_network``

    Returns
    -------
    Splits
        A compatible set of splits
    """
    method = method.lower()
    if method == "majority":
        threshold = 0.5
    elif method == "strict":
        threshold = STRICT_THRESHOLD
    else:
        raise ConsensusError(f"Unknown consensus method '{method}'. Valid options: {CONSENSUS_METHODS}")
    return consensus_network(trees, threshold=threshold, edge_weights=edge_weights)


def splits_to_tree(splits: Splits) -> PaupNode:
    """
    Build the tree displaying a compatible set of splits.

    The tree is rooted at the node next to taxon 1. Each split becomes an
    edge whose length is the split weight; taxa without a trivial split
    get a zero-length leaf edge.

    Raises
    ------
    ConsensusError
        If two splits are incompatible
    """
    ntax = splits.ntax
    everyone_but_first = complement(ntax, {1})

    clusters = []
    leaf_lengths = {t: 0.0 for t in range(1, ntax + 1)}
    for i in range(1, splits.nsplits + 1):
        side = splits.get(i)
        if side == everyone_but_first:
            leaf_lengths[1] = splits.get_weight(i)
        elif len(side) == 1:
            leaf_lengths[next(iter(side))] = splits.get_weight(i)
        else:
            clusters.append((side, splits.get_weight(i)))

    for a in range(len(clusters)):
        for b in range(a + 1, len(clusters)):
            if not are_compatible(ntax, clusters[a][0], clusters[b][0]):
                raise ConsensusError(
                    f"Splits {sorted(clusters[a][0])} and {sorted(clusters[b][0])} are incompatible"
                )

    root = PaupNode()
    # Larger clusters first, so the parent of a cluster is already placed
    clusters.sort(key=lambda c: -len(c[0]))
    placed = []
    for side, weight in clusters:
        node = PaupNode(length=weight)
        parent = root
        for other, other_node in reversed(placed):
            if side <= other:
                parent = other_node
                break
        node.attach_as_first_child_of(parent)
        placed.append((side, node))

    for taxon in range(ntax, 0, -1):
        parent = root
        for other, other_node in reversed(placed):
            if taxon in other:
                parent = other_node
                break
        PaupNode(id=taxon).attach_as_first_child_of(parent, length=leaf_lengths[taxon])
    return root
