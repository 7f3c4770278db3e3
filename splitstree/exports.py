"""
Exporters for Sequences, Distances, Trees and Splits

Writes the blocks of an analysis in the text formats understood by other
phylogenetics tools.

Supported Formats:
- FastA sequences (Biopython ``SeqIO``)
- Phylip sequences, relaxed names (Biopython ``AlignIO``)
- Phylip distance matrices, with 10-character padded names or full names
- Newick trees, one per line
- GML graph of a tree
- Lento plot data (tab separated, via pandas)
- Tabbed text distance matrix (via pandas)

Phylip Name Handling:
Padded Phylip names are the first ten characters of the taxon label.
Clashing names are made unique by replacing their tail with a counter,
"name[:7] + 00n", "0nn" or "nnn"; more than 999 clashes are an error.
The mapping from Phylip name to taxon label is returned so results can
be translated back.

Example Usage:
    >>> from splitstree.exports import export_phylip_distances
    >>> mapping = export_phylip_distances("dist.phy", taxa, distances)
"""

from pathlib import Path
from typing import Dict, List, Union
import logging

import pandas as pd
from Bio import AlignIO, SeqIO
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .blocks import Characters, Distances, Taxa, Trees
from .splits import Splits, lento_data
from .tree import PaupNode, iter_preorder
from .utils import format_float

logger = logging.getLogger(__name__)

PHYLIP_NAME_LENGTH = 10


def _prepare(path: Union[str, Path]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    return out


def _records(taxa: Taxa, characters: Characters) -> List[SeqRecord]:
    return [
        SeqRecord(Seq(characters.sequence(i)), id=taxa.get_label(i), description="")
        for i in range(1, taxa.ntax + 1)
    ]


def export_fasta(path: Union[str, Path], taxa: Taxa, characters: Characters) -> Path:
    out = _prepare(path)
    with open(out, 'w') as handle:
        SeqIO.write(_records(taxa, characters), handle, "fasta")
    logger.info(f"Wrote {taxa.ntax} sequences to {out}")
    return out


def export_phylip_sequences(path: Union[str, Path], taxa: Taxa, characters: Characters) -> Path:
    """Write a relaxed (long name) sequential Phylip alignment."""
    out = _prepare(path)
    alignment = MultipleSeqAlignment(_records(taxa, characters))
    with open(out, 'w') as handle:
        AlignIO.write(alignment, handle, "phylip-relaxed")
    logger.info(f"Wrote Phylip alignment to {out}")
    return out


def phylip_names(taxa: Taxa, full_names: bool = False) -> List[str]:
    """
    Phylip names for all taxa, in taxon order.

    Raises
    ------
    ValueError
        If more than 999 taxa clash on the same padded name
    """
    names: List[str] = []
    used = set()
    for label in taxa:
        name = label
        if not full_names:
            name = label[:PHYLIP_NAME_LENGTH]
            n = 1
            while name in used:
                if n >= 1000:
                    raise ValueError(f"Can't resolve Phylip name conflicts for {label}")
                name = label[:7] + f"{n:03d}"
                n += 1
        used.add(name)
        names.append(name)
    return names


def export_phylip_distances(
    path: Union[str, Path],
    taxa: Taxa,
    distances: Distances,
    full_names: bool = False,
) -> Dict[str, str]:
    """
    Write a square Phylip distance matrix.

    Returns
    -------
    Dict[str, str]
        Mapping from Phylip name to taxon label
    """
    names = phylip_names(taxa, full_names)
    out = _prepare(path)
    lines = [f" {taxa.ntax}"]
    for i, name in enumerate(names, start=1):
        label = name if full_names else name.ljust(PHYLIP_NAME_LENGTH)
        values = " ".join(format_float(distances.get(i, j)) for j in range(1, taxa.ntax + 1))
        lines.append(f"{label} {values}" if full_names else f"{label}{values}")
    out.write_text("\n".join(lines) + "\n", encoding='utf-8')
    logger.info(f"Wrote Phylip distances to {out}")
    return dict(zip(names, taxa.labels))


def export_newick(
    path: Union[str, Path],
    trees: Trees,
    branch_lengths: bool = True,
) -> Path:
    out = _prepare(path)
    lines = [trees.to_newick(i, branch_lengths) for i in range(1, trees.ntrees + 1)]
    out.write_text("\n".join(lines) + "\n", encoding='utf-8')
    logger.info(f"Wrote {trees.ntrees} tree(s) to {out}")
    return out


def _gml_string(text: str) -> str:
    return '"' + text.replace('"', "'") + '"'


def export_gml(path: Union[str, Path], taxa: Taxa, root: PaupNode) -> Path:
    """
    Write a tree as a directed GML graph.

    Leaves are labelled with their taxon, edges with their branch length.
    """
    nodes = list(iter_preorder(root))
    index = {id(v): i for i, v in enumerate(nodes, start=1)}
    lines = ["graph [", "  comment \"Tree exported from splitstree\"", "  directed 1"]
    for v in nodes:
        lines += ["  node [", f"    id {index[id(v)]}"]
        if v.is_leaf():
            lines.append(f"    label {_gml_string(taxa.get_label(v.id))}")
        lines.append("  ]")
    for v in nodes:
        if v.parent is not None:
            lines += [
                "  edge [",
                f"    source {index[id(v.parent)]}",
                f"    target {index[id(v)]}",
                f"    label {_gml_string(format_float(v.length))}",
                "  ]",
            ]
    lines.append("]")
    out = _prepare(path)
    out.write_text("\n".join(lines) + "\n", encoding='utf-8')
    logger.info(f"Wrote GML graph to {out}")
    return out


def export_lento(path: Union[str, Path], taxa: Taxa, splits: Splits) -> Path:
    """Write Lento plot data as a TSV, with taxon labels for each split."""
    df = lento_data(splits)
    df['labels'] = [
        ",".join(taxa.get_label(int(t)) for t in row.split())
        for row in df['taxa']
    ]
    out = _prepare(path)
    df.to_csv(out, sep='\t', index=False)
    logger.info(f"Wrote Lento data for {len(df)} splits to {out}")
    return out


def export_tabbed_distances(path: Union[str, Path], taxa: Taxa, distances: Distances) -> Path:
    """Write the distance matrix as tab separated text with a header row."""
    df = pd.DataFrame(distances.as_array(), index=taxa.labels, columns=taxa.labels)
    out = _prepare(path)
    df.to_csv(out, sep='\t', index_label='taxa', float_format='%.10g')
    logger.info(f"Wrote distance table to {out}")
    return out
