"""
Figures for Splits, Confidence Intervals and Trees

Static matplotlib figures summarising an analysis. Each function writes a
single file; the format follows the file extension, and PNG output uses
the requested resolution.

Figure Types:
1. Lento Plot
   - One column per split, sorted by conflict then support
   - Bar above the axis: split weight (support)
   - Bar below the axis: summed weight of incompatible splits (conflict)
   - Taxon membership matrix underneath

2. Confidence Intervals
   - Median split weight with its simultaneous confidence interval
   - Splits ordered by weight, labelled by the side listed

3. Tree
   - Rectangular phylogram drawn with ``Bio.Phylo.draw``
   - Tip labels from the taxa block

4. Distance Heatmap
   - Seaborn heatmap of the pairwise distance matrix

Colors:
- Support uses the first reference color, conflict the second
- Output formats: PNG (300 DPI) and PDF/SVG (vector)

Example Usage:
    >>> from splitstree.visualization import plot_lento, plot_tree
    >>> plot_lento(splits, taxa, "primates_lento.png")
    >>> plot_tree(taxa, root, "primates_tree.pdf")
"""

from io import StringIO
from pathlib import Path
from typing import Optional, Tuple, Union
import logging

import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

from .blocks import Distances, Taxa
from .splits import Splits, lento_data
from .tree import PaupNode, count_leaves

logger = logging.getLogger(__name__)

# Support, conflict, interval
REFERENCE_COLORS = ['#5AB4AC', '#9D7ABE', '#F2CC8F']


def _save(out: Path, dpi: int) -> None:
    plt.tight_layout()
    if out.suffix.lower() == ".png":
        plt.savefig(out, dpi=dpi, bbox_inches="tight")
    else:
        plt.savefig(out, bbox_inches="tight")
    plt.close()


def plot_lento(
    splits: Splits,
    taxa: Taxa,
    output_path: Union[str, Path],
    max_splits: int = 50,
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 300,
) -> Optional[Path]:
    """
    Draw a Lento plot of split support and conflict.

    Parameters
    ----------
    splits : Splits
        Weighted splits
    taxa : Taxa
        Taxa the splits refer to
    output_path : str or Path
        Path for output figure
    max_splits : int, optional
        Number of best supported splits shown (default: 50)
    figsize : Tuple[float, float], optional
        Figure size in inches; scales with the number of splits if None
    dpi : int, optional
        Resolution for PNG output

    Returns
    -------
    Path or None
        The written file, or None if there are no splits
    """
    df = lento_data(splits)
    if df.empty:
        logger.warning("No splits; skipping Lento plot.")
        return None
    df = df.head(max_splits)
    n = len(df)

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    if figsize is None:
        figsize = (max(6.0, min(20.0, n * 0.35)), 6.0 + taxa.ntax * 0.15)

    fig, (ax, ax_members) = plt.subplots(
        2, 1, figsize=figsize, sharex=True,
        gridspec_kw={'height_ratios': [2, max(1, taxa.ntax * 0.1)]},
    )
    x = np.arange(n)
    ax.bar(x, df['weight'], color=REFERENCE_COLORS[0], edgecolor='black', linewidth=0.5, label='Support')
    ax.bar(x, -df['conflict'], color=REFERENCE_COLORS[1], edgecolor='black', linewidth=0.5, label='Conflict')
    ax.axhline(0, color='black', linewidth=0.8)
    ax.set_ylabel('Weight', fontsize=12)
    ax.set_title('Lento Plot', fontsize=14, fontweight='bold')
    ax.legend(frameon=False, fontsize=10)
    ax.grid(True, axis='y', linestyle='--', alpha=0.3)

    # Membership matrix: filled cell where the taxon is on the listed side
    for col, members in enumerate(df['taxa']):
        ids = [int(t) for t in members.split()]
        ax_members.scatter([col] * len(ids), ids, s=12, color='black', marker='s')
    ax_members.set_ylim(taxa.ntax + 0.5, 0.5)
    ax_members.set_yticks(range(1, taxa.ntax + 1))
    ax_members.set_yticklabels(taxa.labels, fontsize=7)
    ax_members.set_xticks(x)
    ax_members.set_xticklabels(df['split'], fontsize=7, rotation=90)
    ax_members.set_xlabel('Split', fontsize=12)

    _save(out, dpi)
    logger.info(f"Saved Lento plot: {out}")
    return out


def plot_confidence_intervals(
    splits: Splits,
    output_path: Union[str, Path],
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 300,
) -> Optional[Path]:
    """
    Plot split weights with their confidence intervals.

    Splits without an interval are drawn as points only. Returns None when
    there is nothing to plot.
    """
    df = splits.to_dataframe()
    if df.empty:
        logger.warning("No splits; skipping confidence interval plot.")
        return None
    df = df.sort_values('weight', ascending=False, kind='mergesort').reset_index(drop=True)
    n = len(df)

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    if figsize is None:
        figsize = (8.0, max(4.0, min(40.0, n * 0.25)))

    fig, ax = plt.subplots(figsize=figsize)
    y = np.arange(n)
    has_interval = df['low'].notna().to_numpy()
    if has_interval.any():
        lower = (df['weight'] - df['low']).clip(lower=0)[has_interval]
        upper = (df['high'] - df['weight']).clip(lower=0)[has_interval]
        ax.errorbar(
            df['weight'][has_interval], y[has_interval],
            xerr=[lower, upper], fmt='none', ecolor=REFERENCE_COLORS[1], elinewidth=2, capsize=3,
        )
    ax.scatter(df['weight'], y, color=REFERENCE_COLORS[0], edgecolor='black', zorder=3)
    ax.set_yticks(y)
    ax.set_yticklabels(df['taxa'], fontsize=7)
    ax.invert_yaxis()
    ax.set_xlabel('Split weight', fontsize=12)
    ax.set_title('Split Weights with Confidence Intervals', fontsize=14, fontweight='bold')
    ax.grid(True, axis='x', linestyle='--', alpha=0.3)

    _save(out, dpi)
    logger.info(f"Saved confidence interval plot: {out}")
    return out


def plot_tree(
    taxa: Taxa,
    root: PaupNode,
    output_path: Union[str, Path],
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 300,
) -> Path:
    """
    Draw a tree as a rectangular phylogram.

    Parameters
    ----------
    taxa : Taxa
        Taxa providing the tip labels
    root : PaupNode
        Root of the tree
    output_path : str or Path
        Path for output figure
    figsize : Tuple[float, float], optional
        Figure size in inches. If None, scales with the number of tips:
        height = max(4, n_tips * 0.3), at most 50
    dpi : int, optional
        Resolution for PNG output
    """
    from Bio import Phylo

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    tree = Phylo.read(StringIO(root.to_newick(taxa) + ";"), "newick")

    if figsize is None:
        n_tips = count_leaves(root)
        figsize = (8, max(4, min(50, n_tips * 0.3)))
        logger.debug(f"Auto-scaled tree figure size to {figsize} for {n_tips} tips")

    fig = plt.figure(figsize=figsize)
    ax = fig.add_subplot(1, 1, 1)
    Phylo.draw(tree, do_show=False, axes=ax)

    _save(out, dpi)
    logger.info(f"Saved tree figure: {out}")
    return out


def plot_distances(
    taxa: Taxa,
    distances: Distances,
    output_path: Union[str, Path],
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 300,
) -> Path:
    """
    Draw the pairwise distance matrix as a heatmap.

    Rows and columns follow taxon order. Cell annotations are only shown
    for small matrices (at most 15 taxa).
    """
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    n = taxa.ntax
    if figsize is None:
        side = max(5.0, min(30.0, n * 0.4 + 2.0))
        figsize = (side + 1.0, side)

    cmap = sns.light_palette(REFERENCE_COLORS[0], as_cmap=True)
    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        distances.as_array(),
        ax=ax,
        cmap=cmap,
        square=True,
        annot=n <= 15,
        fmt=".3f",
        xticklabels=taxa.labels,
        yticklabels=taxa.labels,
        cbar_kws={'label': 'Distance'},
    )
    ax.set_title('Pairwise Distances', fontsize=14, fontweight='bold')
    ax.tick_params(labelsize=7)

    _save(out, dpi)
    logger.info(f"Saved distance heatmap: {out}")
    return out
