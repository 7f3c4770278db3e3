"""
Tree Building from Distances

This module builds ``PaupNode`` trees from a distance matrix. Trees are
used as point estimates for the bootstrap and are turned into splits with
``splitstree.splits.tree_to_splits``.

Tree Building Methods:

Method 1: Neighbor joining (default)
- Saitou & Nei (1987), through Biopython's ``DistanceTreeConstructor``
- No clock assumption
- Negative branch lengths, and round-off residue below 1e-12, are set
  to zero so that unresolved edges carry no split support
- The tree is rooted at the last join (a trifurcation for ntax >= 3)

Method 2: UPGMA
- Average linkage clustering through ``scipy.cluster.hierarchy.linkage``
- Assumes a molecular clock; the tree is ultrametric
- Branch lengths are differences of cluster heights (half the linkage
  distance)

Rooting:
- ``midpoint_root`` re-roots a tree at the midpoint of its longest
  leaf-to-leaf path

Example Usage:
    >>> from splitstree.phylogenetics import build_tree, midpoint_root
    >>> root = build_tree(taxa, distances, method="nj")
    >>> rooted = midpoint_root(root, taxa.ntax)
    >>> print(rooted.to_newick(taxa))
"""

from typing import Dict, List, Optional, Tuple
import logging

from Bio.Phylo.TreeConstruction import DistanceMatrix, DistanceTreeConstructor
from scipy.cluster.hierarchy import linkage
from scipy.spatial.distance import squareform

from .blocks import Distances, Taxa
from .tree import PaupNode, from_phylo, iter_leaves, iter_preorder, update_fast_pre_post

logger = logging.getLogger(__name__)

TREE_METHODS = ("nj", "upgma")

# Branch lengths below this are round-off from the NJ arithmetic
ZERO_LENGTH_TOLERANCE = 1e-12


def _two_taxon_tree(distances: Distances) -> PaupNode:
    root = PaupNode()
    half = distances.get(1, 2) / 2.0
    PaupNode(id=2).attach_as_first_child_of(root, length=half)
    PaupNode(id=1).attach_as_first_child_of(root, length=half)
    update_fast_pre_post(root)
    return root


def neighbor_joining(taxa: Taxa, distances: Distances) -> PaupNode:
    """
    Neighbor-joining tree.

    Parameters
    ----------
    taxa : Taxa
        Taxa block; labels name the leaves during construction
    distances : Distances
        Pairwise distances on the same taxa

    Returns
    -------
    PaupNode
        Root of the tree, with leaf ids 1..ntax

    Raises
    ------
    ValueError
        If taxa and distances disagree in size
    """
    ntax = taxa.ntax
    if distances.ntax != ntax:
        raise ValueError(f"Distances have {distances.ntax} taxa, expected {ntax}")
    if ntax == 1:
        return PaupNode(id=1)
    if ntax == 2:
        return _two_taxon_tree(distances)

    array = distances.as_array()
    lower = [[float(array[i, j]) for j in range(i + 1)] for i in range(ntax)]
    dm = DistanceMatrix(taxa.labels, lower)
    phylo_tree = DistanceTreeConstructor().nj(dm)

    # Biopython names internal clades "Inner<n>"
    for clade in phylo_tree.get_nonterminals():
        clade.name = None
        clade.confidence = None

    root = from_phylo(taxa, phylo_tree)
    clamped = 0
    for v in iter_preorder(root):
        if v.length < 0.0:
            v.length = 0.0
            clamped += 1
        elif v.length < ZERO_LENGTH_TOLERANCE:
            v.length = 0.0
    if clamped:
        logger.debug(f"Clamped {clamped} negative branch lengths to zero")
    return root


def upgma(taxa: Taxa, distances: Distances) -> PaupNode:
    """
    UPGMA (average linkage) tree.

    Raises
    ------
    ValueError
        If taxa and distances disagree in size
    """
    ntax = taxa.ntax
    if distances.ntax != ntax:
        raise ValueError(f"Distances have {distances.ntax} taxa, expected {ntax}")
    if ntax == 1:
        return PaupNode(id=1)

    condensed = squareform(distances.as_array(), checks=False)
    Z = linkage(condensed, method='average')

    nodes: List[PaupNode] = [PaupNode(id=i) for i in range(1, ntax + 1)]
    heights: List[float] = [0.0] * ntax
    for a, b, dist, _ in Z:
        a, b = int(a), int(b)
        height = dist / 2.0
        parent = PaupNode()
        nodes[b].attach_as_first_child_of(parent, length=max(height - heights[b], 0.0))
        nodes[a].attach_as_first_child_of(parent, length=max(height - heights[a], 0.0))
        nodes.append(parent)
        heights.append(height)

    root = nodes[-1]
    update_fast_pre_post(root)
    return root


# ============================================================================
# Midpoint rooting
# ============================================================================

def _adjacency(root: PaupNode) -> Dict[int, List[Tuple[PaupNode, float]]]:
    adj: Dict[int, List[Tuple[PaupNode, float]]] = {}
    for v in iter_preorder(root):
        adj.setdefault(id(v), [])
        if v.parent is not None:
            adj[id(v)].append((v.parent, v.length))
            adj[id(v.parent)].append((v, v.length))
    return adj


def _distances_from(start: PaupNode, adj) -> Dict[int, Tuple[float, Optional[PaupNode], PaupNode]]:
    """Path length, predecessor and node for every node reachable from start."""
    result = {id(start): (0.0, None, start)}
    stack = [start]
    while stack:
        v = stack.pop()
        dv = result[id(v)][0]
        for w, length in adj[id(v)]:
            if id(w) not in result:
                result[id(w)] = (dv + length, v, w)
                stack.append(w)
    return result


def _farthest_leaf(reach) -> PaupNode:
    best = None
    best_dist = -1.0
    for dist, _, node in reach.values():
        if node.is_leaf() and dist > best_dist:
            best, best_dist = node, dist
    return best


def midpoint_root(root: PaupNode, ntax: int) -> PaupNode:
    """
    Re-root a tree at the midpoint of its longest leaf-to-leaf path.

    The input tree is left unchanged. Nodes left with a single child after
    re-rooting are suppressed.

    Parameters
    ----------
    root : PaupNode
        Root of the input tree
    ntax : int
        Number of taxa (trees with fewer than three are copied as is)

    Returns
    -------
    PaupNode
        Root of the re-rooted copy
    """
    leaves = list(iter_leaves(root))
    if ntax < 3 or len(leaves) < 3:
        return root.deep_copy()

    copy = root.deep_copy()
    adj = _adjacency(copy)
    x = _farthest_leaf(_distances_from(next(iter_leaves(copy)), adj))
    reach = _distances_from(x, adj)
    y = _farthest_leaf(reach)
    half = reach[id(y)][0] / 2.0
    if half <= 0.0:
        return copy

    # Walk from y back towards x until the midpoint edge is found.
    v = y
    while reach[id(v)][0] > half:
        u = reach[id(v)][1]
        if reach[id(u)][0] <= half:
            break
        v = u
    u = reach[id(v)][1]

    mid = PaupNode()
    edge = reach[id(v)][0] - reach[id(u)][0]
    to_u = half - reach[id(u)][0]
    adj[id(u)] = [(w, l) for w, l in adj[id(u)] if w is not v] + [(mid, to_u)]
    adj[id(v)] = [(w, l) for w, l in adj[id(v)] if w is not u] + [(mid, edge - to_u)]
    adj[id(mid)] = [(u, to_u), (v, edge - to_u)]

    # Rebuild parent/child links outward from the midpoint.
    new_nodes = {id(mid): PaupNode()}
    visited = {id(mid)}
    stack = [mid]
    while stack:
        old = stack.pop()
        parent = new_nodes[id(old)]
        last = None
        for w, length in adj[id(old)]:
            if id(w) in visited:
                continue
            visited.add(id(w))
            child = PaupNode(id=w.id if w.is_leaf() else 0, length=length, data=w.data)
            if last is None:
                child.attach_as_first_child_of(parent)
            else:
                child.attach_as_next_sibling_of(last)
            last = child
            new_nodes[id(w)] = child
            stack.append(w)

    new_root = new_nodes[id(mid)]
    for v in list(iter_preorder(new_root)):
        if v is not new_root and not v.is_leaf() and v.n_children() == 1:
            v.first_child.contract()
    update_fast_pre_post(new_root)
    logger.debug(f"Midpoint rooted tree; longest path {2 * half:.6f}")
    return new_root


def build_tree(taxa: Taxa, distances: Distances, method: str = "nj") -> PaupNode:
    """
    Build a tree with the named method ("nj" or "upgma").

    Raises
    ------
    ValueError
        If the method is unknown
    """
    method = method.lower()
    if method == "nj":
        return neighbor_joining(taxa, distances)
    if method == "upgma":
        return upgma(taxa, distances)
    raise ValueError(f"Unknown tree method: {method}. Choose from: {', '.join(TREE_METHODS)}")
