"""
Bootstrap Support and Confidence Networks

Given a ``SplitMatrix`` holding the split weights of many replicates, this
module derives split confidences, percentage support values and
simultaneous confidence intervals for split weights.

Confidence networks use Beran's balanced B method: a confidence set is
computed jointly for all split weights, so that with probability ``level``
every true weight lies in its interval at the same time. The set of
splits whose interval upper bound is positive is the confidence network.

Reference:
    Beran, R. (1988). Balanced simultaneous confidence sets.
    Journal of the American Statistical Association 83, 679-686.

Example Usage:
    >>> from splitstree.confidence import confidence_network, eval_confidences
    >>> network = confidence_network(matrix, level=0.95)
    >>> for i in range(1, network.nsplits + 1):
    ...     print(network.get(i), network.get_interval(i))
"""

import logging
import math

import numpy as np

from .splits import SplitMatrix, Splits
from .utils import ProgressTracker

logger = logging.getLogger(__name__)


def _check_level(level: float) -> None:
    if not 0.0 < level <= 1.0:
        raise ValueError(f"Confidence level must be in (0, 1], got {level}")


def _cutoff_rank(max_ranks: np.ndarray, level: float) -> int:
    """The n-th smallest of ``max_ranks`` with n = ceil(level * nblocks)."""
    nblocks = len(max_ranks)
    # Guard against level * nblocks landing just above an integer.
    n = int(math.ceil(level * nblocks - 1e-9))
    n = min(max(n, 1), nblocks)
    return int(np.sort(max_ranks)[n - 1])


def eval_confidences(matrix: SplitMatrix, splits: Splits) -> Splits:
    """
    Set the confidence of every split to the fraction of blocks in which
    it has strictly positive weight.

    Splits that are not rows of the matrix get confidence 0. The splits
    are modified in place and returned.
    """
    nblocks = matrix.nblocks
    for i in range(1, splits.nsplits + 1):
        row = matrix.find_split(splits.get(i))
        if row == -1 or nblocks == 0:
            splits.set_confidence(i, 0.0)
        else:
            splits.set_confidence(i, matrix.count(row) / nblocks)
    return splits


def compute_percentages(splits: Splits) -> Splits:
    """
    Replace split weights by their confidence as a percentage, truncated
    to one decimal place (0.9876 becomes 98.7).
    """
    for i in range(1, splits.nsplits + 1):
        percent = math.floor(splits.get_confidence(i) * 1000 + 1e-9) / 10.0
        splits.set_weight(i, percent)
    return splits


def confidence_network(matrix: SplitMatrix, level: float = 0.95) -> Splits:
    """
    Compute a confidence network from a split matrix.

    For each split i with weights x_i1..x_iB over B blocks:

    1. m_i is the median weight over blocks
    2. R_ij = |x_ij - m_i| and H_ij = #{k : R_ik <= R_ij}
    3. maxH_j = max_i H_ij; the cutoff rank K is the n-th smallest maxH_j
       with n = ceil(level * B)
    4. c_i is the K-th smallest R_ij and the interval is m_i -/+ c_i

    Parameters
    ----------
    matrix : SplitMatrix
        Split weights, one block per replicate
    level : float
        Simultaneous confidence level in (0, 1] (default: 0.95)

    Returns
    -------
    Splits
        Every split whose interval upper bound is positive, weighted by its
        median, with the interval attached and the confidence set to the
        fraction of blocks containing it

    Raises
    ------
    ValueError
        If the matrix has no blocks or level is outside (0, 1]
    """
    _check_level(level)
    nblocks = matrix.nblocks
    if nblocks == 0:
        raise ValueError("Split matrix has no blocks")

    tracker = ProgressTracker(total=100, description="Confidence network")
    logger.info(f"Computing {level:.0%} confidence network from {matrix.nsplits} splits in {nblocks} blocks")

    network = Splits(matrix.ntax)
    if matrix.nsplits == 0:
        tracker.finish()
        return network

    weights = matrix.to_array()

    # Pass one: medians, roots and their within-split ranks.
    medians = np.median(weights, axis=1)
    roots = np.abs(weights - medians[:, np.newaxis])
    sorted_roots = np.sort(roots, axis=1)
    ranks = np.empty(roots.shape, dtype=int)
    for i in range(roots.shape[0]):
        ranks[i] = np.searchsorted(sorted_roots[i], roots[i], side='right')
    tracker.set_progress(60)

    # Pass two: simultaneous cutoff and intervals.
    max_ranks = ranks.max(axis=0)
    k = _cutoff_rank(max_ranks, level)
    logger.debug(f"Cutoff rank {k} of {nblocks}")
    cutoffs = sorted_roots[:, k - 1]

    for i in range(matrix.nsplits):
        low = medians[i] - cutoffs[i]
        high = medians[i] + cutoffs[i]
        if high > 0:
            index = network.add(
                matrix.get_split(i + 1),
                weight=float(medians[i]),
                confidence=matrix.count(i + 1) / nblocks,
            )
            network.set_interval(index, low, high)
    tracker.set_progress(100)
    tracker.finish()

    logger.info(f"Confidence network has {network.nsplits} splits")
    return network


def confidence_intervals(
    matrix: SplitMatrix,
    splits: Splits,
    level: float = 0.95,
) -> Splits:
    """
    Attach balanced simultaneous confidence intervals to ``splits``.

    Beran's B method with the signed root R_ij = x*_ij - x_i, where x_i is
    the weight of split i in ``splits`` and x*_ij its weight in block j:

    1. sort the roots of every split; for block j record the largest rank
       s_j at which one of its roots first occurs, and the smallest rank
       t_j at which one of its roots last occurs (ties share a rank);
    2. with B blocks, take the upper cutoff c = s sorted at position
       floor((1 + level) / 2 * B) and the lower cutoff b = t sorted at
       position ceil((1 - level) / 2 * B);
    3. the interval of split i is [x_i + R_i(b), x_i + R_i(c)], using the
       sorted roots of the split.

    Splits that never have positive weight in a block receive [0, 2 x_i].
    Bounds are clipped at 0. The splits are modified in place and
    returned.

    Reference:
        Beran, R. (1990). Refining bootstrap simultaneous confidence sets.
        Journal of the American Statistical Association 85, 417-426.

    Raises
    ------
    ValueError
        If the matrix has no blocks or level is outside (0, 1]
    """
    _check_level(level)
    nblocks = matrix.nblocks
    if nblocks == 0:
        raise ValueError("Split matrix has no blocks")

    first_ranks = np.zeros(nblocks, dtype=int)
    last_ranks = np.full(nblocks, nblocks - 1, dtype=int)
    sorted_roots = {}
    for i in range(1, splits.nsplits + 1):
        row = matrix.find_split(splits.get(i))
        if row == -1 or matrix.count(row) == 0:
            continue
        roots = matrix.row(row) - splits.get_weight(i)
        ordered = np.sort(roots)
        sorted_roots[i] = ordered
        first_ranks = np.maximum(first_ranks, np.searchsorted(ordered, roots, side='left'))
        last_ranks = np.minimum(last_ranks, np.searchsorted(ordered, roots, side='right') - 1)

    # Tolerances keep e.g. 0.975 * 100 from rounding the wrong way
    upper_pos = min(int(math.floor((1.0 + level) / 2.0 * nblocks + 1e-9)), nblocks - 1)
    lower_pos = min(int(math.ceil((1.0 - level) / 2.0 * nblocks - 1e-9)), nblocks - 1)
    upper = int(np.sort(first_ranks)[upper_pos])
    lower = int(np.sort(last_ranks)[lower_pos])
    logger.debug(f"Simultaneous interval ranks {lower}..{upper} of {nblocks}")

    for i in range(1, splits.nsplits + 1):
        x = splits.get_weight(i)
        ordered = sorted_roots.get(i)
        if ordered is None:
            splits.set_interval(i, 0.0, 2.0 * x)
            continue
        low = max(0.0, x + ordered[lower])
        high = max(0.0, x + ordered[upper])
        splits.set_interval(i, min(low, high), max(low, high))
    return splits
