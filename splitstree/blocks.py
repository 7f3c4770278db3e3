"""
Data Blocks: Taxa, Characters, Distances and Trees

This module holds the containers that carry data between the algorithms of
the package. They mirror the blocks of a Nexus file:

- Taxa: the ordered, uniquely labelled set of taxa
- Characters: an aligned character matrix (DNA, protein or standard data)
- Distances: a symmetric pairwise distance matrix
- Trees: a list of named ``PaupNode`` trees on the taxa

All accessors are 1-indexed (taxon 1..ntax, site 1..nchar, tree 1..ntrees)
and bounds-checked; a bad index raises ``IndexError``. Storage is numpy
based so that algorithms can also work on whole rows, columns or matrices.

Example Usage:
    >>> from splitstree.blocks import Taxa, Distances
    >>> taxa = Taxa(["human", "chimp", "gorilla"])
    >>> dist = Distances(taxa.ntax)
    >>> dist.set(1, 2, 0.1)
    >>> dist.get(2, 1)
    0.1
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging

import numpy as np

logger = logging.getLogger(__name__)


DNA_SYMBOLS = "ACGT"
PROTEIN_SYMBOLS = "ARNDCQEGHILKMFPSTWYV"


def _check_index(index: int, upper: int, what: str) -> None:
    if not 1 <= index <= upper:
        raise IndexError(f"{what} index {index} out of range 1..{upper}")


# ============================================================================
# Taxa
# ============================================================================

class Taxa:
    """
    Ordered set of uniquely labelled taxa, indexed 1..ntax.

    Parameters
    ----------
    labels : Iterable[str]
        Taxon labels in order

    Raises
    ------
    ValueError
        If a label is empty or labels are not unique
    """

    def __init__(self, labels: Iterable[str]):
        self._labels: List[str] = [str(label) for label in labels]
        self._index: Dict[str, int] = {}
        for i, label in enumerate(self._labels, start=1):
            if not label.strip():
                raise ValueError(f"Taxon {i} has an empty label")
            if label in self._index:
                raise ValueError(f"Duplicate taxon label: {label}")
            self._index[label] = i

    @property
    def ntax(self) -> int:
        return len(self._labels)

    def get_label(self, i: int) -> str:
        _check_index(i, self.ntax, "Taxon")
        return self._labels[i - 1]

    def index_of(self, label: str) -> Optional[int]:
        """Return the 1-based id of ``label``, or None if it is not a taxon."""
        return self._index.get(label)

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    def __getitem__(self, i: int) -> str:
        return self.get_label(i)

    def __len__(self) -> int:
        return self.ntax

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __contains__(self, label: object) -> bool:
        return label in self._index

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Taxa) and self._labels == other._labels

    def __repr__(self) -> str:
        return f"Taxa(ntax={self.ntax})"


# ============================================================================
# Characters
# ============================================================================

@dataclass(frozen=True)
class CharactersFormat:
    """
    Format of a character matrix.

    Attributes
    ----------
    datatype : str
        "dna", "protein" or "standard" (default: "dna")
    missing : str
        Missing data symbol (default: "?")
    gap : str
        Gap symbol (default: "-")
    symbols : str
        Valid states, in state order. Defaults to ACGT for DNA and the 20
        amino acids for protein data
    diploid : bool
        Whether consecutive site pairs form one diploid locus (default: False)
    """
    datatype: str = "dna"
    missing: str = "?"
    gap: str = "-"
    symbols: str = ""
    diploid: bool = False

    def __post_init__(self):
        if self.datatype not in ("dna", "protein", "standard"):
            raise ValueError(f"Invalid datatype: {self.datatype}")
        if len(self.missing) != 1 or len(self.gap) != 1:
            raise ValueError("missing and gap must be single characters")
        if not self.symbols:
            default = {"dna": DNA_SYMBOLS, "protein": PROTEIN_SYMBOLS, "standard": "01"}
            object.__setattr__(self, 'symbols', default[self.datatype])

    def is_valid_state(self, ch: str) -> bool:
        return ch.upper() in self.symbols.upper()


class Characters:
    """
    Aligned character matrix with ``ntax`` rows and ``nchar`` sites.

    Cells start out as the missing symbol. States are single characters
    and are stored upper-case.
    """

    def __init__(self, ntax: int, nchar: int, fmt: Optional[CharactersFormat] = None):
        if ntax < 1 or nchar < 0:
            raise ValueError(f"Invalid character matrix size {ntax}x{nchar}")
        self.format = fmt if fmt is not None else CharactersFormat()
        self._matrix = np.full((ntax, nchar), self.format.missing, dtype='<U1')

    @classmethod
    def from_sequences(
        cls,
        sequences: Sequence[str],
        fmt: Optional[CharactersFormat] = None,
    ) -> "Characters":
        """
        Build a matrix from aligned sequences (one string per taxon).

        Raises
        ------
        ValueError
            If no sequences are given or the sequences differ in length
        """
        if not sequences:
            raise ValueError("No sequences given")
        nchar = len(sequences[0])
        if any(len(seq) != nchar for seq in sequences):
            raise ValueError("All sequences in alignment must have the same length")
        chars = cls(len(sequences), nchar, fmt)
        if nchar > 0:
            chars._matrix = np.array(
                [list(str(seq).upper()) for seq in sequences], dtype='<U1'
            )
        return chars

    @property
    def ntax(self) -> int:
        return self._matrix.shape[0]

    @property
    def nchar(self) -> int:
        return self._matrix.shape[1]

    @property
    def matrix(self) -> np.ndarray:
        """The underlying (ntax x nchar) array; rows and columns 0-indexed."""
        return self._matrix

    def get(self, i: int, site: int) -> str:
        _check_index(i, self.ntax, "Taxon")
        _check_index(site, self.nchar, "Site")
        return str(self._matrix[i - 1, site - 1])

    def set(self, i: int, site: int, ch: str) -> None:
        _check_index(i, self.ntax, "Taxon")
        _check_index(site, self.nchar, "Site")
        if len(ch) != 1:
            raise ValueError(f"Character state must be a single character, got {ch!r}")
        self._matrix[i - 1, site - 1] = ch.upper()

    def row(self, i: int) -> np.ndarray:
        _check_index(i, self.ntax, "Taxon")
        return self._matrix[i - 1].copy()

    def sequence(self, i: int) -> str:
        _check_index(i, self.ntax, "Taxon")
        return "".join(self._matrix[i - 1])

    def column(self, site: int) -> np.ndarray:
        _check_index(site, self.nchar, "Site")
        return self._matrix[:, site - 1].copy()

    def is_missing_or_gap(self, ch: str) -> bool:
        return ch in (self.format.missing, self.format.gap)

    def copy(self) -> "Characters":
        other = Characters(self.ntax, self.nchar, self.format)
        other._matrix = self._matrix.copy()
        return other

    def __repr__(self) -> str:
        return f"Characters(ntax={self.ntax}, nchar={self.nchar}, datatype={self.format.datatype})"


# ============================================================================
# Distances
# ============================================================================

class Distances:
    """
    Symmetric pairwise distance matrix on ``ntax`` taxa.

    ``set(i, j, v)`` writes both triangles so the matrix stays symmetric.
    """

    def __init__(self, ntax: int):
        if ntax < 1:
            raise ValueError("Distances need at least one taxon")
        self._matrix = np.zeros((ntax, ntax), dtype=float)

    @classmethod
    def from_array(cls, array) -> "Distances":
        """
        Build a distance block from a square array.

        Raises
        ------
        ValueError
            If the array is not square
        """
        arr = np.asarray(array, dtype=float)
        if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            raise ValueError(f"Distance matrix must be square, got shape {arr.shape}")
        dist = cls(arr.shape[0])
        dist._matrix = arr.copy()
        return dist

    @property
    def ntax(self) -> int:
        return self._matrix.shape[0]

    def get(self, i: int, j: int) -> float:
        _check_index(i, self.ntax, "Taxon")
        _check_index(j, self.ntax, "Taxon")
        return float(self._matrix[i - 1, j - 1])

    def set(self, i: int, j: int, value: float) -> None:
        _check_index(i, self.ntax, "Taxon")
        _check_index(j, self.ntax, "Taxon")
        self._matrix[i - 1, j - 1] = value
        self._matrix[j - 1, i - 1] = value

    def as_array(self) -> np.ndarray:
        return self._matrix.copy()

    def is_symmetric(self, tol: float = 1e-9) -> bool:
        return bool(np.allclose(self._matrix, self._matrix.T, atol=tol))

    def copy(self) -> "Distances":
        return Distances.from_array(self._matrix)

    def __repr__(self) -> str:
        return f"Distances(ntax={self.ntax})"


# ============================================================================
# Trees
# ============================================================================

class Trees:
    """
    Named ``PaupNode`` trees on a common taxa set, indexed 1..ntrees.
    """

    def __init__(self, taxa: Taxa):
        self.taxa = taxa
        self._trees: List[Tuple[str, object]] = []

    @property
    def ntrees(self) -> int:
        return len(self._trees)

    def add_tree(self, name: str, root) -> None:
        self._trees.append((name, root))

    def get_tree(self, i: int):
        _check_index(i, self.ntrees, "Tree")
        return self._trees[i - 1][1]

    def get_name(self, i: int) -> str:
        _check_index(i, self.ntrees, "Tree")
        return self._trees[i - 1][0]

    def to_newick(self, i: int, branch_lengths: bool = True) -> str:
        return self.get_tree(i).to_newick(self.taxa, branch_lengths) + ";"

    def __iter__(self):
        return iter(self._trees)

    def __len__(self) -> int:
        return self.ntrees
