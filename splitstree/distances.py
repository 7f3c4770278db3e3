"""
Pairwise Distances from Character Data

Computes evolutionary distances between the sequences of an alignment:

- hamming: uncorrected p-distance
- jc: Jukes-Cantor correction, d = -b ln(1 - p/b) with b = (s-1)/s for
  s states (b = 3/4 for DNA)
- k2p: Kimura two-parameter correction from the proportions of
  transitions (P) and transversions (Q), d = -1/2 ln(1-2P-Q) - 1/4 ln(1-2Q)

Only sites where both sequences carry a valid state are compared; gaps,
missing data and ambiguity codes are skipped pairwise.

Saturation Handling:
Pairs that are too divergent for a correction (the log argument is not
positive), and pairs without a single comparable site, are assigned
``max_distance`` instead of infinity. Each occurrence is logged as a
warning so that unexpected saturation is visible.

Example Usage:
    >>> from splitstree.blocks import Characters
    >>> from splitstree.distances import compute_distances
    >>> chars = Characters.from_sequences(["ACGTACGT", "ACGTACGA", "ACTTACGA"])
    >>> dist = compute_distances(chars, method="jc")
"""

from typing import Tuple
import logging

import numpy as np

from .blocks import Characters, Distances

logger = logging.getLogger(__name__)

DISTANCE_METHODS = ("hamming", "jc", "k2p")

# Distance assigned to saturated pairs
DEFAULT_MAX_DISTANCE = 5.0


def encode_states(characters: Characters) -> np.ndarray:
    """Map the matrix to state indices of the format symbols; -1 for anything else."""
    symbols = characters.format.symbols.upper()
    codes = np.full(characters.matrix.shape, -1, dtype=int)
    for index, symbol in enumerate(symbols):
        codes[characters.matrix == symbol] = index
    return codes


def _pair_counts(codes: np.ndarray, i: int, j: int) -> Tuple[int, np.ndarray, np.ndarray]:
    valid = (codes[i] >= 0) & (codes[j] >= 0)
    return int(valid.sum()), codes[i][valid], codes[j][valid]


def hamming_distances(characters: Characters, max_distance: float = DEFAULT_MAX_DISTANCE) -> Distances:
    """Uncorrected p-distances (proportion of differing comparable sites)."""
    codes = encode_states(characters)
    ntax = characters.ntax
    dist = Distances(ntax)
    for i in range(ntax):
        for j in range(i + 1, ntax):
            n, a, b = _pair_counts(codes, i, j)
            if n == 0:
                logger.warning(f"Taxa {i + 1} and {j + 1} share no comparable sites; distance set to {max_distance}")
                dist.set(i + 1, j + 1, max_distance)
                continue
            dist.set(i + 1, j + 1, float(np.count_nonzero(a != b)) / n)
    return dist


def jukes_cantor_distances(characters: Characters, max_distance: float = DEFAULT_MAX_DISTANCE) -> Distances:
    """Jukes-Cantor corrected distances for any number of states."""
    p_dist = hamming_distances(characters, max_distance)
    nstates = len(characters.format.symbols)
    b = (nstates - 1) / nstates
    codes = encode_states(characters)
    ntax = characters.ntax
    dist = Distances(ntax)
    for i in range(1, ntax + 1):
        for j in range(i + 1, ntax + 1):
            n, _, _ = _pair_counts(codes, i - 1, j - 1)
            p = p_dist.get(i, j)
            if n == 0 or 1.0 - p / b <= 0.0:
                if n > 0:
                    logger.warning(f"Jukes-Cantor distance saturated for taxa {i} and {j} (p={p:.4f}); set to {max_distance}")
                dist.set(i, j, max_distance)
            else:
                dist.set(i, j, min(-b * np.log(1.0 - p / b), max_distance))
    return dist


def k2p_distances(characters: Characters, max_distance: float = DEFAULT_MAX_DISTANCE) -> Distances:
    """
    Kimura two-parameter distances (DNA only).

    Raises
    ------
    ValueError
        If the characters are not DNA
    """
    if characters.format.datatype != "dna":
        raise ValueError("K2P distances require DNA characters")
    codes = encode_states(characters)
    ntax = characters.ntax
    dist = Distances(ntax)
    for i in range(ntax):
        for j in range(i + 1, ntax):
            n, a, b = _pair_counts(codes, i, j)
            if n == 0:
                logger.warning(f"Taxa {i + 1} and {j + 1} share no comparable sites; distance set to {max_distance}")
                dist.set(i + 1, j + 1, max_distance)
                continue
            differ = a != b
            # A=0, C=1, G=2, T=3: transitions are A<->G and C<->T, i.e. same parity
            transitions = np.count_nonzero(differ & ((a % 2) == (b % 2)))
            transversions = np.count_nonzero(differ) - transitions
            P = transitions / n
            Q = transversions / n
            arg1 = 1.0 - 2.0 * P - Q
            arg2 = 1.0 - 2.0 * Q
            if arg1 <= 0.0 or arg2 <= 0.0:
                logger.warning(
                    f"K2P distance saturated for taxa {i + 1} and {j + 1} (P={P:.4f}, Q={Q:.4f}); set to {max_distance}"
                )
                dist.set(i + 1, j + 1, max_distance)
            else:
                d = -0.5 * np.log(arg1) - 0.25 * np.log(arg2)
                dist.set(i + 1, j + 1, min(float(d), max_distance))
    return dist


def compute_distances(
    characters: Characters,
    method: str = "hamming",
    max_distance: float = DEFAULT_MAX_DISTANCE,
) -> Distances:
    """
    Compute pairwise distances with the named method.

    Parameters
    ----------
    characters : Characters
        Aligned characters
    method : str
        One of "hamming", "jc", "k2p" (default: "hamming")
    max_distance : float
        Value used for saturated pairs

    Returns
    -------
    Distances

    Raises
    ------
    ValueError
        If the method is unknown
    """
    method = method.lower()
    logger.debug(f"Computing {method} distances for {characters.ntax} taxa over {characters.nchar} sites")
    if method == "hamming":
        return hamming_distances(characters, max_distance)
    if method == "jc":
        return jukes_cantor_distances(characters, max_distance)
    if method == "k2p":
        return k2p_distances(characters, max_distance)
    raise ValueError(f"Unknown distance method: {method}. Choose from: {', '.join(DISTANCE_METHODS)}")
