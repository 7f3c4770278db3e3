"""
Splits, Split Blocks and the Split Matrix

A split is a bipartition of the taxa into two non-empty sides. Sides are
stored as frozensets of 1-based taxon ids and normalised to the side that
does not contain taxon 1, so two representations of the same bipartition
compare equal.

Contents:
1. Split helpers
   - complement, normalize, are_compatible, split_size, format_split
2. Splits
   - 1-indexed list of weighted splits with confidences and optional
     confidence intervals
3. tree_to_splits
   - the splits displayed by a ``PaupNode`` tree, weighted by branch length
4. SplitMatrix
   - sparse split x block matrix collecting the split weights of many
     replicates (bootstrap trees, simulated data sets, ...)
5. lento_data
   - support/conflict table for Lento plots

Example Usage:
    >>> from splitstree.splits import Splits, are_compatible
    >>> splits = Splits(4)
    >>> splits.add({1, 2}, weight=0.5)
    1
    >>> splits.get(1)
    frozenset({3, 4})
    >>> are_compatible(4, {1, 2}, {1, 2, 3})
    True
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from .tree import PaupNode, iter_postorder

logger = logging.getLogger(__name__)


class SplitsError(Exception):
    """Error raised for invalid splits or split blocks."""
    pass


# ============================================================================
# Split helpers
# ============================================================================

def complement(ntax: int, side: Iterable[int]) -> FrozenSet[int]:
    return frozenset(range(1, ntax + 1)).difference(side)


def normalize(ntax: int, side: Iterable[int]) -> FrozenSet[int]:
    """Return the side of the split that does not contain taxon 1."""
    side = frozenset(side)
    if 1 in side:
        return complement(ntax, side)
    return side


def are_compatible(ntax: int, a: Iterable[int], b: Iterable[int]) -> bool:
    """
    Two splits are compatible if one of the four side intersections is empty.

    Examples
    --------
    >>> are_compatible(4, {1, 2}, {1, 3})
    False
    """
    a = frozenset(a)
    b = frozenset(b)
    a_bar = complement(ntax, a)
    b_bar = complement(ntax, b)
    return (
        not (a & b)
        or not (a & b_bar)
        or not (a_bar & b)
        or not (a_bar & b_bar)
    )


def split_size(ntax: int, side: Iterable[int]) -> int:
    """Number of taxa on the smaller side."""
    n = len(frozenset(side))
    return min(n, ntax - n)


def format_split(side: Iterable[int]) -> str:
    """Space separated, sorted taxon ids of one side."""
    return " ".join(str(t) for t in sorted(side))


def _check_side(ntax: int, side: Iterable[int]) -> FrozenSet[int]:
    side = frozenset(int(t) for t in side)
    if any(t < 1 or t > ntax for t in side):
        raise SplitsError(f"Split {format_split(side)} has taxon ids outside 1..{ntax}")
    normalized = normalize(ntax, side)
    if not normalized:
        raise SplitsError("A split needs two non-empty sides")
    return normalized


# ============================================================================
# Splits
# ============================================================================

@dataclass
class _SplitEntry:
    side: FrozenSet[int]
    weight: float = 1.0
    confidence: float = 1.0
    interval: Optional[Tuple[float, float]] = None
    label: Optional[str] = None


class Splits:
    """
    Ordered, 1-indexed list of splits on ``ntax`` taxa.

    Each split has a weight, a confidence, an optional confidence interval
    (low, high) and an optional label. Sides are normalised on ``add``.
    """

    def __init__(self, ntax: int):
        if ntax < 1:
            raise ValueError("Splits need at least one taxon")
        self.ntax = ntax
        self._entries: List[_SplitEntry] = []
        self._index: Dict[FrozenSet[int], int] = {}

    @property
    def nsplits(self) -> int:
        return len(self._entries)

    def add(
        self,
        side: Iterable[int],
        weight: float = 1.0,
        confidence: float = 1.0,
        interval: Optional[Tuple[float, float]] = None,
        label: Optional[str] = None,
    ) -> int:
        """
        Append a split.

        Returns
        -------
        int
            The 1-based index of the new split

        Raises
        ------
        SplitsError
            If the side is empty, covers all taxa or holds invalid ids
        """
        normalized = _check_side(self.ntax, side)
        self._entries.append(_SplitEntry(normalized, float(weight), float(confidence), interval, label))
        index = len(self._entries)
        self._index.setdefault(normalized, index)
        return index

    def _entry(self, i: int) -> _SplitEntry:
        if not 1 <= i <= self.nsplits:
            raise IndexError(f"Split index {i} out of range 1..{self.nsplits}")
        return self._entries[i - 1]

    def get(self, i: int) -> FrozenSet[int]:
        return self._entry(i).side

    def get_weight(self, i: int) -> float:
        return self._entry(i).weight

    def set_weight(self, i: int, weight: float) -> None:
        self._entry(i).weight = float(weight)

    def get_confidence(self, i: int) -> float:
        return self._entry(i).confidence

    def set_confidence(self, i: int, confidence: float) -> None:
        self._entry(i).confidence = float(confidence)

    def get_interval(self, i: int) -> Optional[Tuple[float, float]]:
        return self._entry(i).interval

    def set_interval(self, i: int, low: float, high: float) -> None:
        self._entry(i).interval = (float(low), float(high))

    def get_label(self, i: int) -> Optional[str]:
        return self._entry(i).label

    def set_label(self, i: int, label: Optional[str]) -> None:
        self._entry(i).label = label

    def has_intervals(self) -> bool:
        return any(e.interval is not None for e in self._entries)

    def find(self, side: Iterable[int]) -> int:
        """Index of the split with the given side (either side), or -1."""
        return self._index.get(normalize(self.ntax, side), -1)

    def total_weight(self) -> float:
        return float(sum(e.weight for e in self._entries))

    def is_compatible(self) -> bool:
        """True if all splits are pairwise compatible (i.e. form a tree)."""
        for i in range(self.nsplits):
            for j in range(i + 1, self.nsplits):
                if not are_compatible(self.ntax, self._entries[i].side, self._entries[j].side):
                    return False
        return True

    def to_dataframe(self) -> pd.DataFrame:
        """
        One row per split: index, size, weight, confidence, interval
        bounds (NaN when absent), label and the formatted side.
        """
        rows = []
        for i, e in enumerate(self._entries, start=1):
            low, high = e.interval if e.interval is not None else (np.nan, np.nan)
            rows.append({
                'split': i,
                'size': split_size(self.ntax, e.side),
                'weight': e.weight,
                'confidence': e.confidence,
                'low': low,
                'high': high,
                'label': e.label,
                'taxa': format_split(e.side),
            })
        columns = ['split', 'size', 'weight', 'confidence', 'low', 'high', 'label', 'taxa']
        return pd.DataFrame(rows, columns=columns)

    def __len__(self) -> int:
        return self.nsplits

    def __iter__(self) -> Iterator[FrozenSet[int]]:
        return (e.side for e in self._entries)

    def __repr__(self) -> str:
        return f"Splits(ntax={self.ntax}, nsplits={self.nsplits})"


# ============================================================================
# Tree to splits
# ============================================================================

def tree_to_splits(root: PaupNode, ntax: int) -> Splits:
    """
    Splits displayed by a tree, weighted by branch lengths.

    Every non-root node defines the split "leaves below it | the rest".
    Edges that define the same split (the two edges at a bifurcating
    root, or a chain through a node with one child) are merged and their
    lengths added. Trivial splits are included.

    Parameters
    ----------
    root : PaupNode
        Root of the tree; leaf ids must lie in 1..ntax
    ntax : int
        Number of taxa

    Returns
    -------
    Splits
    """
    splits = Splits(ntax)
    below: Dict[int, FrozenSet[int]] = {}
    for v in iter_postorder(root):
        if v.is_leaf():
            side = frozenset([v.id])
        else:
            side = frozenset().union(*(below.pop(id(c)) for c in v.children()))
        below[id(v)] = side
        if v is root:
            continue
        normalized = normalize(ntax, side)
        if not normalized:
            continue
        index = splits.find(normalized)
        if index == -1:
            splits.add(normalized, weight=v.length)
        else:
            splits.set_weight(index, splits.get_weight(index) + v.length)
    return splits


# ============================================================================
# Split Matrix
# ============================================================================

class SplitMatrix:
    """
    Sparse matrix of split weights: one row per distinct split, one column
    per block (replicate).

    Rows and blocks are 1-indexed. Absent entries read as 0.0.

    Parameters
    ----------
    ntax : int
        Number of taxa
    splits : Splits, optional
        Splits to seed the rows with (no block is added)
    """

    def __init__(self, ntax: int, splits: Optional[Splits] = None):
        self._ntax = ntax
        self._sides: List[FrozenSet[int]] = []
        self._rows: Dict[FrozenSet[int], int] = {}
        self._entries: Dict[Tuple[int, int], float] = {}
        self._nblocks = 0
        if splits is not None:
            self.add_splits_without_block(splits)

    @property
    def ntax(self) -> int:
        return self._ntax

    @property
    def nsplits(self) -> int:
        return len(self._sides)

    @property
    def nblocks(self) -> int:
        return self._nblocks

    def _row_for(self, side: Iterable[int]) -> int:
        normalized = normalize(self._ntax, side)
        row = self._rows.get(normalized)
        if row is None:
            self._sides.append(normalized)
            row = len(self._sides)
            self._rows[normalized] = row
        return row

    def add(self, splits: Splits) -> int:
        """
        Append a block holding the weights of ``splits``.

        New splits get new rows. Returns the index of the new block.
        """
        if splits.ntax != self._ntax:
            raise SplitsError(f"Block has {splits.ntax} taxa, matrix has {self._ntax}")
        self._nblocks += 1
        for i in range(1, splits.nsplits + 1):
            row = self._row_for(splits.get(i))
            self._entries[(row, self._nblocks)] = splits.get_weight(i)
        return self._nblocks

    def add_splits_without_block(self, splits: Splits) -> None:
        """Make sure every split of ``splits`` has a row, without adding a block."""
        for side in splits:
            self._row_for(side)

    def find_split(self, side: Iterable[int]) -> int:
        """Row index of the split, or -1 if it is not in the matrix."""
        return self._rows.get(normalize(self._ntax, side), -1)

    def _check(self, i: int, j: int) -> None:
        if not 1 <= i <= self.nsplits:
            raise IndexError(f"Split index {i} out of range 1..{self.nsplits}")
        if not 1 <= j <= self._nblocks:
            raise IndexError(f"Block index {j} out of range 1..{self._nblocks}")

    def get(self, i: int, j: int) -> float:
        self._check(i, j)
        return self._entries.get((i, j), 0.0)

    def set(self, i: int, j: int, value: float) -> None:
        self._check(i, j)
        if value == 0.0:
            self._entries.pop((i, j), None)
        else:
            self._entries[(i, j)] = float(value)

    def get_split(self, i: int) -> FrozenSet[int]:
        if not 1 <= i <= self.nsplits:
            raise IndexError(f"Split index {i} out of range 1..{self.nsplits}")
        return self._sides[i - 1]

    @property
    def splits(self) -> Splits:
        """All rows as a ``Splits`` block, weighted by their mean weight."""
        result = Splits(self._ntax)
        for i, side in enumerate(self._sides, start=1):
            result.add(side, weight=self.mean_weight(i))
        return result

    def row(self, i: int) -> np.ndarray:
        if not 1 <= i <= self.nsplits:
            raise IndexError(f"Split index {i} out of range 1..{self.nsplits}")
        return np.array([self._entries.get((i, j), 0.0) for j in range(1, self._nblocks + 1)])

    def column(self, j: int) -> np.ndarray:
        if not 1 <= j <= self._nblocks:
            raise IndexError(f"Block index {j} out of range 1..{self._nblocks}")
        return np.array([self._entries.get((i, j), 0.0) for i in range(1, self.nsplits + 1)])

    def to_array(self) -> np.ndarray:
        """Dense (nsplits x nblocks) array; row/column 0 is split/block 1."""
        array = np.zeros((self.nsplits, self._nblocks))
        for (i, j), value in self._entries.items():
            array[i - 1, j - 1] = value
        return array

    def count(self, i: int) -> int:
        """Number of blocks in which split ``i`` has strictly positive weight."""
        return int(np.count_nonzero(self.row(i) > 0))

    def mean_weight(self, i: int) -> float:
        if self._nblocks == 0:
            return 0.0
        return float(self.row(i).mean())

    @classmethod
    def from_trees(cls, trees) -> "SplitMatrix":
        """One block per tree of a ``Trees`` block."""
        matrix = cls(trees.taxa.ntax)
        for name, root in trees:
            matrix.add(tree_to_splits(root, trees.taxa.ntax))
        logger.debug(f"Split matrix from {matrix.nblocks} trees: {matrix.nsplits} splits")
        return matrix

    def __repr__(self) -> str:
        return f"SplitMatrix(ntax={self._ntax}, nsplits={self.nsplits}, nblocks={self._nblocks})"


# ============================================================================
# Lento plot data
# ============================================================================

def lento_data(splits: Splits) -> pd.DataFrame:
    """
    Support and conflict of every split, for Lento plots.

    The conflict of a split is the summed weight of all splits
    incompatible with it. The side listed is the one not containing the
    last taxon.

    Returns
    -------
    pd.DataFrame
        Columns split, taxa, size, weight, conflict; sorted by conflict
        ascending, then weight descending
    """
    ntax = splits.ntax
    sides = list(splits)
    weights = [splits.get_weight(i) for i in range(1, splits.nsplits + 1)]
    rows = []
    for i, side in enumerate(sides):
        conflict = sum(
            weights[j] for j, other in enumerate(sides)
            if j != i and not are_compatible(ntax, side, other)
        )
        shown = complement(ntax, side) if ntax in side else side
        rows.append({
            'split': i + 1,
            'taxa': format_split(shown),
            'size': len(shown),
            'weight': weights[i],
            'conflict': conflict,
        })
    df = pd.DataFrame(rows, columns=['split', 'taxa', 'size', 'weight', 'conflict'])
    if not df.empty:
        df = df.sort_values(['conflict', 'weight'], ascending=[True, False], kind='mergesort')
        df = df.reset_index(drop=True)
    return df
