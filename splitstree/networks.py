"""
Split Networks from Distances

This module computes weighted split systems directly from a distance
matrix. Unlike a tree, the result may contain incompatible splits and is
drawn as a split network.

Network Methods:

Method 1: NeighborNet (default)
- Bryant & Moulton (2004)
- Agglomerates clusters of up to two nodes, like neighbor joining, and
  expands them again into a circular ordering of the taxa
- Every split that cuts the circle in two places is a candidate; weights
  are fitted by non-negative least squares (``scipy.optimize.nnls``)
  and splits below ``threshold`` are dropped

Method 2: Split decomposition
- Bandelt & Dress (1992)
- Adds the taxa one at a time and keeps the splits with a positive
  isolation index
- Weakly compatible; for tree-like data the splits of the tree

``least_squares_fit`` reports how well a split system reproduces the
distances, as a percentage.

Example Usage:
    >>> from splitstree.networks import build_network, least_squares_fit
    >>> splits = build_network(taxa, distances, method="neighbornet")
    >>> print(f"fit {least_squares_fit(splits, distances):.1f}%")
"""

from typing import FrozenSet, List, Optional, Tuple
import logging

import numpy as np
from scipy.optimize import nnls

from .blocks import Distances, Taxa
from .splits import Splits

logger = logging.getLogger(__name__)

NETWORK_METHODS = ("neighbornet", "split_decomposition")

# Smallest NeighborNet split weight kept
DEFAULT_THRESHOLD = 1e-6

# Isolation indices at or below this count as zero
ISOLATION_TOLERANCE = 1e-7


class NetworkError(Exception):
    """Error raised when a split network cannot be computed."""
    pass


def _check_size(taxa: Taxa, distances: Distances) -> None:
    if taxa.ntax != distances.ntax:
        raise NetworkError(f"Taxa ({taxa.ntax}) and distances ({distances.ntax}) differ in size")


# ============================================================================
# NeighborNet ordering
# ============================================================================

class _NetNode:
    """
    Node of the NeighborNet agglomeration.

    Active nodes form a doubly linked list. ``nbr`` links the two nodes of
    a cluster; ``ch1`` and ``ch2`` are the nodes a new node replaces.
    """

    __slots__ = ("id", "nbr", "ch1", "ch2", "next", "prev", "rx", "sx")

    def __init__(self, id: int = 0):
        self.id = id
        self.nbr: Optional[_NetNode] = None
        self.ch1: Optional[_NetNode] = None
        self.ch2: Optional[_NetNode] = None
        self.next: Optional[_NetNode] = None
        self.prev: Optional[_NetNode] = None
        self.rx = 0.0
        self.sx = 0.0


def _active(head: _NetNode):
    p = head.next
    while p is not None:
        yield p
        p = p.next


def _cluster_distance(D: np.ndarray, p: _NetNode, q: _NetNode) -> float:
    """Average distance between the clusters of ``p`` and ``q``."""
    if p.nbr is None and q.nbr is None:
        return D[p.id, q.id]
    if q.nbr is None:
        return (D[p.id, q.id] + D[p.nbr.id, q.id]) / 2.0
    if p.nbr is None:
        return (D[p.id, q.id] + D[p.id, q.nbr.id]) / 2.0
    return (D[p.id, q.id] + D[p.id, q.nbr.id] + D[p.nbr.id, q.id] + D[p.nbr.id, q.nbr.id]) / 4.0


def _compute_rx(z: _NetNode, cx: _NetNode, cy: _NetNode, D: np.ndarray, head: _NetNode) -> float:
    rx = 0.0
    for p in _active(head):
        if p is cx or p is cx.nbr or p is cy or p is cy.nbr or p.nbr is None:
            rx += D[z.id, p.id]
        else:
            rx += D[z.id, p.id] / 2.0
    return rx


def _replace(old: _NetNode, new: _NetNode) -> None:
    new.next = old.next
    new.prev = old.prev
    if new.next is not None:
        new.next.prev = new
    if new.prev is not None:
        new.prev.next = new


def _agg3way(x: _NetNode, y: _NetNode, z: _NetNode, amalgs: list,
             D: np.ndarray, head: _NetNode, num_nodes: int) -> _NetNode:
    """
    Replace x, y and z by two new nodes u (for x, y) and v (for y, z).

    The caller adds 2 to ``num_nodes``. Returns u.
    """
    u = _NetNode(num_nodes + 1)
    u.ch1, u.ch2 = x, y
    v = _NetNode(num_nodes + 2)
    v.ch1, v.ch2 = y, z

    _replace(x, u)
    _replace(z, v)
    if y.next is not None:
        y.next.prev = y.prev
    if y.prev is not None:
        y.prev.next = y.next

    u.nbr = v
    v.nbr = u

    # Reduced distances
    for p in _active(head):
        D[u.id, p.id] = D[p.id, u.id] = (2.0 / 3.0) * D[x.id, p.id] + D[y.id, p.id] / 3.0
        D[v.id, p.id] = D[p.id, v.id] = (2.0 / 3.0) * D[z.id, p.id] + D[y.id, p.id] / 3.0
    D[u.id, u.id] = D[v.id, v.id] = 0.0

    amalgs.append(u)
    return u


def _agg4way(x2: _NetNode, x: _NetNode, y: _NetNode, y2: _NetNode, amalgs: list,
             D: np.ndarray, head: _NetNode, num_nodes: int) -> int:
    """Replace x2, x, y and y2 by two nodes with two 3-way amalgamations."""
    u = _agg3way(x2, x, y, amalgs, D, head, num_nodes)
    num_nodes += 2
    _agg3way(u, u.nbr, y2, amalgs, D, head, num_nodes)
    return num_nodes + 2


def _agglomerate(D: np.ndarray, head: _NetNode, num_nodes: int, amalgs: list) -> int:
    num_active = num_nodes
    num_clusters = num_nodes

    while num_active > 3:
        # Two clusters of two: Q would divide by zero
        if num_active == 4 and num_clusters == 2:
            p = head.next
            q = p.next if p.next is not p.nbr else p.next.next
            if D[p.id, q.id] + D[p.nbr.id, q.nbr.id] < D[p.id, q.nbr.id] + D[p.nbr.id, q.id]:
                _agg3way(p, q, q.nbr, amalgs, D, head, num_nodes)
            else:
                _agg3way(p, q.nbr, q, amalgs, D, head, num_nodes)
            num_nodes += 2
            break

        for p in _active(head):
            p.sx = 0.0
        for p in _active(head):
            if p.nbr is not None and p.nbr.id < p.id:
                continue
            q = p.next
            while q is not None:
                if q.nbr is None or (q.nbr.id > q.id and q.nbr is not p):
                    dpq = _cluster_distance(D, p, q)
                    p.sx += dpq
                    if p.nbr is not None:
                        p.nbr.sx += dpq
                    q.sx += dpq
                    if q.nbr is not None:
                        q.nbr.sx += dpq
                q = q.next

        # Closest pair of clusters: minimise (m - 2) D(Cx, Cy) - Sx - Sy
        cx = cy = None
        best = 0.0
        for p in _active(head):
            if p.nbr is not None and p.nbr.id < p.id:
                continue
            q = head.next
            while q is not p:
                if not (q.nbr is not None and q.nbr.id < q.id) and q.nbr is not p:
                    qpq = (num_clusters - 2.0) * _cluster_distance(D, p, q) - p.sx - q.sx
                    if cx is None or qpq < best:
                        cx, cy = p, q
                        best = qpq
                q = q.next

        # Closest pair of nodes within the two clusters
        x, y = cx, cy
        if cx.nbr is not None or cy.nbr is not None:
            cx.rx = _compute_rx(cx, cx, cy, D, head)
            if cx.nbr is not None:
                cx.nbr.rx = _compute_rx(cx.nbr, cx, cy, D, head)
            cy.rx = _compute_rx(cy, cx, cy, D, head)
            if cy.nbr is not None:
                cy.nbr.rx = _compute_rx(cy.nbr, cx, cy, D, head)

        m = num_clusters
        if cx.nbr is not None:
            m += 1
        if cy.nbr is not None:
            m += 1

        best = (m - 2.0) * D[cx.id, cy.id] - cx.rx - cy.rx
        if cx.nbr is not None:
            qpq = (m - 2.0) * D[cx.nbr.id, cy.id] - cx.nbr.rx - cy.rx
            if qpq < best:
                x, y, best = cx.nbr, cy, qpq
        if cy.nbr is not None:
            qpq = (m - 2.0) * D[cx.id, cy.nbr.id] - cx.rx - cy.nbr.rx
            if qpq < best:
                x, y, best = cx, cy.nbr, qpq
        if cx.nbr is not None and cy.nbr is not None:
            qpq = (m - 2.0) * D[cx.nbr.id, cy.nbr.id] - cx.nbr.rx - cy.nbr.rx
            if qpq < best:
                x, y = cx.nbr, cy.nbr

        if x.nbr is None and y.nbr is None:
            x.nbr = y
            y.nbr = x
            num_clusters -= 1
        elif x.nbr is None:
            _agg3way(x, y, y.nbr, amalgs, D, head, num_nodes)
            num_nodes += 2
            num_active -= 1
            num_clusters -= 1
        elif y.nbr is None or num_active == 4:
            _agg3way(y, x, x.nbr, amalgs, D, head, num_nodes)
            num_nodes += 2
            num_active -= 1
            num_clusters -= 1
        else:
            num_nodes = _agg4way(x.nbr, x, y, y.nbr, amalgs, D, head, num_nodes)
            num_active -= 2
            num_clusters -= 1

    return num_nodes


def _expand(head: _NetNode, amalgs: list) -> List[int]:
    # The last three active nodes form the initial circle
    x = head.next
    y = x.next
    z = y.next
    z.next = x
    x.prev = z

    while amalgs:
        u = amalgs.pop()
        v = u.nbr
        x, y, z = u.ch1, u.ch2, v.ch2
        if v is not u.next:
            u, v = v, u
            x, z = z, x
        x.prev = u.prev
        x.prev.next = x
        x.next = y
        y.prev = x
        y.next = z
        z.prev = y
        z.next = v.next
        z.next.prev = z

    while x.id != 1:
        x = x.next
    ordering = [x.id]
    a = x.next
    while a is not x:
        ordering.append(a.id)
        a = a.next
    return ordering


def neighbor_net_ordering(distances: Distances) -> List[int]:
    """
    Circular ordering of the taxa computed by the NeighborNet
    agglomeration.

    Parameters
    ----------
    distances : Distances
        Distance matrix on ntax taxa

    Returns
    -------
    List[int]
        The taxa 1..ntax in circular order, starting with taxon 1. For
        three or fewer taxa this is the identity.
    """
    ntax = distances.ntax
    if ntax <= 3:
        return list(range(1, ntax + 1))

    # Rows 1..ntax hold the taxa, later rows the nodes made by amalgamation
    D = np.zeros((3 * ntax, 3 * ntax))
    D[1:ntax + 1, 1:ntax + 1] = distances.as_array()

    head = _NetNode()
    last = head
    for i in range(1, ntax + 1):
        node = _NetNode(i)
        node.prev = last
        last.next = node
        last = node

    amalgs: list = []
    _agglomerate(D, head, ntax, amalgs)
    ordering = _expand(head, amalgs)
    logger.debug(f"NeighborNet ordering: {ordering}")
    return ordering


# ============================================================================
# Circular split weights
# ============================================================================

def circular_splits(ordering: List[int]) -> List[FrozenSet[int]]:
    """
    All splits compatible with a circular ordering that starts with taxon 1:
    the contiguous runs of ``ordering[1:]``.
    """
    n = len(ordering)
    return [frozenset(ordering[i:j + 1]) for i in range(1, n) for j in range(i, n)]


def _pairs(ntax: int) -> Tuple[np.ndarray, np.ndarray]:
    return np.triu_indices(ntax, k=1)


def _split_design(sides: List[FrozenSet[int]], ntax: int) -> np.ndarray:
    """(npairs x nsplits) 0/1 matrix: does split k separate pair (i, j)."""
    members = np.zeros((len(sides), ntax), dtype=bool)
    for k, side in enumerate(sides):
        members[k, [t - 1 for t in side]] = True
    first, second = _pairs(ntax)
    return (members[:, first] != members[:, second]).T.astype(float)


def neighbor_net(taxa: Taxa, distances: Distances, threshold: float = DEFAULT_THRESHOLD) -> Splits:
    """
    NeighborNet split network.

    Parameters
    ----------
    taxa : Taxa
        Taxa of the distance matrix
    distances : Distances
        Distance matrix
    threshold : float
        Splits with a fitted weight at or below this are dropped
        (default: 1e-6)

    Returns
    -------
    Splits
        Circular splits with positive least squares weights
    """
    _check_size(taxa, distances)
    ntax = taxa.ntax
    splits = Splits(ntax)
    if ntax < 2:
        return splits

    ordering = neighbor_net_ordering(distances)
    sides = circular_splits(ordering)
    first, second = _pairs(ntax)
    target = distances.as_array()[first, second]
    design = _split_design(sides, ntax)
    weights, _ = nnls(design, target, maxiter=10 * design.shape[1])

    for side, weight in zip(sides, weights):
        if weight > threshold:
            splits.add(side, weight=weight)
    logger.info(
        f"NeighborNet: {splits.nsplits} of {len(sides)} circular splits, "
        f"fit {least_squares_fit(splits, distances):.2f}%"
    )
    return splits


# ============================================================================
# Split decomposition
# ============================================================================

def _isolation_index(t: int, a: FrozenSet[int], b: FrozenSet[int], D: np.ndarray) -> float:
    """
    Isolation index of the split a | b on taxa 1..t, with t in a.

    Zero as soon as one quartet gives a value at or below the tolerance.
    """
    b_sorted = sorted(b)
    best = np.inf
    for i in sorted(a):
        for pos, j in enumerate(b_sorted):
            for k in b_sorted[pos:]:
                value = 0.5 * (max(D[t, j] + D[i, k], D[t, k] + D[i, j]) - D[t, i] - D[j, k])
                if value <= ISOLATION_TOLERANCE:
                    return 0.0
                best = min(best, value)
    return float(best)


def split_decomposition(taxa: Taxa, distances: Distances) -> Splits:
    """
    Bandelt-Dress split decomposition.

    Taxa are added in order. When taxon t is added, the candidate splits
    are {t} against the taxa so far, and A + {t} | B and A | B + {t} for
    every split A | B found for the first t - 1 taxa. A candidate is kept
    if its weight, the smaller of the isolation index and the weight of
    the split it extends, is positive.

    Returns
    -------
    Splits
        The d-splits, weighted by their isolation index
    """
    _check_size(taxa, distances)
    ntax = taxa.ntax
    D = np.zeros((ntax + 1, ntax + 1))
    D[1:, 1:] = distances.as_array()

    previous: List[Tuple[FrozenSet[int], float]] = []
    for t in range(2, ntax + 1):
        before = frozenset(range(1, t))
        current = []
        single = frozenset([t])
        weight = _isolation_index(t, single, before, D)
        if weight > 0:
            current.append((single, weight))
        for a, prev_weight in previous:
            b = before - a
            with_a = a | single
            weight = min(prev_weight, _isolation_index(t, with_a, b, D))
            if weight > 0:
                current.append((with_a, weight))
            with_b = b | single
            weight = min(prev_weight, _isolation_index(t, with_b, a, D))
            if weight > 0:
                current.append((with_b, weight))
        previous = current

    splits = Splits(ntax)
    for side, weight in previous:
        splits.add(side, weight=weight)
    logger.info(
        f"Split decomposition: {splits.nsplits} splits, "
        f"fit {least_squares_fit(splits, distances):.2f}%"
    )
    return splits


# ============================================================================
# Fit and dispatch
# ============================================================================

def least_squares_fit(splits: Splits, distances: Distances) -> float:
    """
    Percentage of the squared distances explained by the split weights:
    100 * (1 - sum (d - p)^2 / sum d^2), where p is the total weight of the
    splits separating a pair.
    """
    ntax = distances.ntax
    if ntax < 2:
        return 100.0
    first, second = _pairs(ntax)
    observed = distances.as_array()[first, second]
    total = float(np.sum(observed ** 2))
    if total == 0.0:
        return 100.0
    sides = list(splits)
    if sides:
        weights = np.array([splits.get_weight(i) for i in range(1, splits.nsplits + 1)])
        induced = _split_design(sides, ntax) @ weights
    else:
        induced = np.zeros_like(observed)
    return 100.0 * (1.0 - float(np.sum((observed - induced) ** 2)) / total)


def build_network(taxa: Taxa, distances: Distances, method: str = "neighbornet",
                  threshold: float = DEFAULT_THRESHOLD) -> Splits:
    """
    Build a split network with the named method ("neighbornet" or
    "split_decomposition").

    Raises
    ------
    ValueError
        If the method is unknown
    """
    method = method.lower()
    if method == "neighbornet":
        return neighbor_net(taxa, distances, threshold=threshold)
    if method == "split_decomposition":
        return split_decomposition(taxa, distances)
    raise ValueError(f"Unknown network method: {method}. Choose from: {', '.join(NETWORK_METHODS)}")
