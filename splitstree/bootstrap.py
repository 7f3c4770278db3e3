"""
Bootstrap Replicates and Split Support

This module generates bootstrap replicates of a character matrix, builds a
tree for every replicate and collects the replicate splits in a
``SplitMatrix``. From the matrix it derives:

- support of the original splits (fraction of replicates containing them)
- support of every split seen in any replicate
- simultaneous confidence intervals for the original split weights
- the confidence network (see ``splitstree.confidence``)

Two kinds of replicates are supported:

1. Non-parametric: sites (or diploid loci) are resampled with replacement
2. Parametric: sequences are simulated on a fixed tree under a
   substitution model, with the dimensions of the original data

Example Usage:
    >>> from splitstree.bootstrap import run_bootstrap
    >>> from splitstree.config import get_default_config
    >>> config = get_default_config().update(bootstrap__runs=200, bootstrap__seed=1)
    >>> result = run_bootstrap(taxa, characters, config)
    >>> print(result.splits.to_dataframe())
"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging

import numpy as np

from .blocks import Characters, Taxa, Trees
from .confidence import confidence_intervals, confidence_network, eval_confidences
from .config import PipelineConfig
from .distances import compute_distances
from .phylogenetics import build_tree
from .simulate import RandomGenerator, simulate_characters
from .splits import SplitMatrix, Splits, tree_to_splits
from .tree import PaupNode
from .utils import ProgressTracker, log_function_call

logger = logging.getLogger(__name__)


class BootstrapError(Exception):
    """Error raised when bootstrap replicates cannot be generated or analysed."""
    pass


@dataclass
class BootstrapResult:
    """
    Outcome of a bootstrap run.

    Attributes
    ----------
    tree : PaupNode
        Point-estimate tree (non-parametric) or the simulation tree
        (parametric)
    splits : Splits
        Splits of ``tree`` with confidences and simultaneous intervals
    all_splits : Splits
        Every split seen in a replicate, weighted by its mean weight, with
        confidences
    matrix : SplitMatrix
        Replicate split weights, one block per replicate
    network : Splits or None
        Confidence network, if requested
    trees : Trees or None
        Replicate trees, if requested
    runs : int
        Number of replicates
    """
    tree: PaupNode
    splits: Splits
    all_splits: Splits
    matrix: SplitMatrix
    network: Optional[Splits]
    trees: Optional[Trees]
    runs: int


def resample_characters(characters: Characters, length: int, rng: RandomGenerator) -> Characters:
    """
    Column bootstrap: draw ``length`` sites with replacement.

    For diploid data consecutive site pairs form a locus and loci are drawn
    instead of single sites.

    Raises
    ------
    BootstrapError
        If diploid data or the requested length are not of even length
    """
    nchar = characters.nchar
    if nchar == 0:
        raise BootstrapError("Cannot resample an empty character matrix")
    if characters.format.diploid:
        if nchar % 2 != 0 or length % 2 != 0:
            raise BootstrapError("Diploid characters need an even number of sites")
        loci = rng.generator.integers(nchar // 2, size=length // 2)
        columns = np.empty(length, dtype=int)
        columns[0::2] = 2 * loci
        columns[1::2] = 2 * loci + 1
    else:
        columns = rng.generator.integers(nchar, size=length)

    replicate = Characters(characters.ntax, length, characters.format)
    replicate.matrix[:, :] = characters.matrix[:, columns]
    return replicate


def _estimate_splits(taxa: Taxa, characters: Characters, config: PipelineConfig):
    distances = compute_distances(characters, config.distance.method, config.distance.max_distance)
    root = build_tree(taxa, distances, config.tree.method)
    return root, tree_to_splits(root, taxa.ntax)


def _collect(
    taxa: Taxa,
    tree: PaupNode,
    original: Splits,
    make_replicate: Callable[[], Characters],
    config: PipelineConfig,
    description: str,
) -> BootstrapResult:
    runs = config.bootstrap.runs
    matrix = SplitMatrix(taxa.ntax, original)
    trees = Trees(taxa) if config.bootstrap.save_trees else None

    tracker = ProgressTracker(total=runs, description=description)
    for run in range(1, runs + 1):
        replicate = make_replicate()
        try:
            root, splits = _estimate_splits(taxa, replicate, config)
        except (ValueError, ArithmeticError) as e:
            logger.error(f"Replicate {run} failed: {e}")
            raise BootstrapError(f"Replicate {run} failed: {e}") from e
        matrix.add(splits)
        if trees is not None:
            trees.add_tree(f"rep{run}", root)
        tracker.update()
    tracker.finish()

    eval_confidences(matrix, original)
    confidence_intervals(matrix, original, config.bootstrap.level)

    all_splits = matrix.splits
    eval_confidences(matrix, all_splits)

    network = None
    if config.bootstrap.confidence_network:
        network = confidence_network(matrix, config.bootstrap.level)

    logger.info(
        f"{description}: {matrix.nsplits} distinct splits over {runs} replicates, "
        f"{original.nsplits} splits in the reference tree"
    )
    return BootstrapResult(tree, original, all_splits, matrix, network, trees, runs)


def run_bootstrap(
    taxa: Taxa,
    characters: Characters,
    config: PipelineConfig,
    tree: Optional[PaupNode] = None,
) -> BootstrapResult:
    """
    Non-parametric bootstrap of the distance tree.

    Parameters
    ----------
    taxa : Taxa
        Taxa of the alignment
    characters : Characters
        Aligned characters; replicates keep the same number of sites
    config : PipelineConfig
        Uses the distance, tree and bootstrap sections
    tree : PaupNode, optional
        Point-estimate tree already built from ``characters``. Built with
        the configured distance and tree method when omitted.

    Returns
    -------
    BootstrapResult

    Raises
    ------
    BootstrapError
        If a replicate cannot be generated or analysed
    """
    log_function_call("run_bootstrap", runs=config.bootstrap.runs, level=config.bootstrap.level)
    if characters.ntax != taxa.ntax:
        raise BootstrapError(f"Characters have {characters.ntax} taxa, expected {taxa.ntax}")

    rng = RandomGenerator(config.bootstrap.seed)
    if tree is None:
        tree, original = _estimate_splits(taxa, characters, config)
    else:
        original = tree_to_splits(tree, taxa.ntax)
    logger.info(f"Bootstrapping {characters.nchar} sites with {config.bootstrap.runs} replicates")
    return _collect(
        taxa, tree, original,
        lambda: resample_characters(characters, characters.nchar, rng),
        config, "Bootstrap",
    )


def run_parametric_bootstrap(
    taxa: Taxa,
    characters: Characters,
    tree: PaupNode,
    model,
    config: PipelineConfig,
) -> BootstrapResult:
    """
    Parametric bootstrap: replicates are simulated on ``tree`` under ``model``.

    Each replicate has the dimensions and format of ``characters``. The
    reference splits are those of ``tree``.
    """
    log_function_call("run_parametric_bootstrap", runs=config.bootstrap.runs, model=model.name)
    rng = RandomGenerator(config.bootstrap.seed)
    original = tree_to_splits(tree, taxa.ntax)

    def make_replicate() -> Characters:
        replicate = Characters(characters.ntax, characters.nchar, characters.format)
        return simulate_characters(replicate, tree, model, rng=rng)

    logger.info(f"Parametric bootstrap under {model.name} with {config.bootstrap.runs} replicates")
    return _collect(taxa, tree, original, make_replicate, config, "Parametric bootstrap")
