"""
Summary Statistics for Characters, Distances and Splits

Descriptive statistics reported alongside an analysis:

- nucleotide_diversity: average pairwise difference per site with its
  sampling variance, eqns (10.5) and (10.9) of Nei (1987)
- proportion_polymorphic: fraction of sites showing more than one state
- distance_stats: range and mean of a distance matrix and the number of
  triangle inequality violations
- splits_stats: size, total weight and compatibility of a split block
- phylogenetic_diversity: total weight of the splits separating a set of
  taxa (Faith's PD)

Reference:
    Nei, M. (1987). Molecular Evolutionary Genetics. Columbia University Press.
"""

from typing import Any, Dict, Iterable
import logging
import math

import numpy as np

from .blocks import Characters, Distances
from .distances import encode_states, hamming_distances
from .splits import Splits, split_size

logger = logging.getLogger(__name__)


def nucleotide_diversity(characters: Characters) -> Dict[str, Any]:
    """
    Nucleotide diversity of an alignment.

    Returns
    -------
    Dict[str, Any]
        pi (uncorrected), pi_jc (Jukes-Cantor corrected, None when a pair
        is saturated), variance and sd of pi, and the number of
        haplotypes (distinct sequences)

    Raises
    ------
    ValueError
        For fewer than two sequences or non-DNA data
    """
    if characters.format.datatype != "dna":
        raise ValueError("Nucleotide diversity requires DNA characters")
    n = characters.ntax
    if n < 2:
        raise ValueError("Nucleotide diversity needs at least two sequences")

    p = hamming_distances(characters).as_array()
    with np.errstate(divide='ignore', invalid='ignore'):
        arg = 1.0 - 4.0 * p / 3.0
        jc = np.where(arg > 0, -0.75 * np.log(np.where(arg > 0, arg, 1.0)), np.nan)

    off_diagonal = ~np.eye(n, dtype=bool)
    pi = float(p[off_diagonal].sum()) / (n * n)
    pi_jc = None
    if not np.isnan(jc[off_diagonal]).any():
        pi_jc = float(jc[off_diagonal].sum()) / (n * n)

    codes = encode_states(characters)
    mean_sites = float((codes >= 0).sum(axis=1).mean())
    variance = None
    if mean_sites > 0:
        c1 = (n + 1.0) / (3.0 * (n - 1.0)) / mean_sites
        c2 = 2.0 * (n * n + n + 3.0) / (9.0 * n * (n - 1.0))
        variance = c1 * pi + c2 * pi * pi

    haplotypes = len({characters.sequence(i) for i in range(1, n + 1)})
    return {
        'pi': pi,
        'pi_jc': pi_jc,
        'variance': variance,
        'sd': math.sqrt(variance) if variance is not None else None,
        'haplotypes': haplotypes,
    }


def proportion_polymorphic(characters: Characters) -> float:
    """Fraction of sites with at least two different valid states."""
    if characters.nchar == 0:
        return 0.0
    codes = encode_states(characters)
    polymorphic = 0
    for site in range(characters.nchar):
        states = codes[:, site]
        if len(np.unique(states[states >= 0])) > 1:
            polymorphic += 1
    return polymorphic / characters.nchar


def distance_stats(distances: Distances, tol: float = 1e-9) -> Dict[str, Any]:
    """
    Mean, minimum and maximum off-diagonal distance and the number of
    triples (i, j, k) with d_ik > d_ij + d_jk.
    """
    d = distances.as_array()
    n = distances.ntax
    upper = d[np.triu_indices(n, k=1)]
    violations = 0
    for j in range(n):
        # d[i, k] > d[i, j] + d[j, k] for all i < k, with i, k != j
        bound = d[:, j][:, np.newaxis] + d[j, :][np.newaxis, :]
        bad = np.triu(d > bound + tol, k=1)
        bad[j, :] = False
        bad[:, j] = False
        violations += int(bad.sum())
    return {
        'ntax': n,
        'mean': float(upper.mean()) if upper.size else 0.0,
        'min': float(upper.min()) if upper.size else 0.0,
        'max': float(upper.max()) if upper.size else 0.0,
        'triangle_violations': violations,
        'symmetric': distances.is_symmetric(),
    }


def splits_stats(splits: Splits) -> Dict[str, Any]:
    nontrivial = sum(1 for side in splits if split_size(splits.ntax, side) > 1)
    return {
        'nsplits': splits.nsplits,
        'nontrivial': nontrivial,
        'total_weight': splits.total_weight(),
        'compatible': splits.is_compatible(),
    }


def phylogenetic_diversity(splits: Splits, taxon_ids: Iterable[int]) -> float:
    """
    Phylogenetic diversity of a taxon subset: the summed weight of all
    splits that separate at least two of the taxa.
    """
    subset = frozenset(taxon_ids)
    if not subset:
        return 0.0
    total = 0.0
    for i in range(1, splits.nsplits + 1):
        side = splits.get(i)
        if subset & side and subset - side:
            total += splits.get_weight(i)
    return total
