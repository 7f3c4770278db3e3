"""
Importers for Alignments, Distance Matrices and Trees

Alignments are read with Biopython's ``AlignIO`` and distance matrices with
a Phylip reader; trees are parsed with ``Bio.Phylo`` and converted to
``PaupNode`` trees.

Alignment formats are chosen from the file extension unless given:

- .fasta .fa .fas .fna .fst  -> fasta
- .phy .phylip               -> phylip-relaxed
- .nex .nexus .nxs           -> nexus
- .aln .clustal              -> clustal

The data type is guessed from the symbols: an alignment consisting of
nucleotide codes, ambiguity codes, gaps and missing data is DNA, anything
else is protein.
"""

from pathlib import Path
from typing import List, Optional, Tuple, Union
import logging

from Bio import AlignIO, Phylo

from .blocks import Characters, CharactersFormat, Distances, Taxa, Trees
from .tree import PaupTreeError, from_phylo

logger = logging.getLogger(__name__)

ALIGNMENT_FORMATS = {
    '.fasta': 'fasta', '.fa': 'fasta', '.fas': 'fasta', '.fna': 'fasta', '.fst': 'fasta',
    '.phy': 'phylip-relaxed', '.phylip': 'phylip-relaxed',
    '.nex': 'nexus', '.nexus': 'nexus', '.nxs': 'nexus',
    '.aln': 'clustal', '.clustal': 'clustal',
}

_DNA_CODES = set("ACGTUNRYKMSWBDHV-?.")

PHYLIP_NAME_LENGTH = 10


def guess_datatype(sequences: List[str]) -> str:
    symbols = set("".join(sequences).upper())
    return "dna" if symbols <= _DNA_CODES else "protein"


def import_alignment(path: Union[str, Path], fmt: Optional[str] = None) -> Tuple[Taxa, Characters]:
    """
    Read an aligned sequence file.

    Parameters
    ----------
    path : Union[str, Path]
        Alignment file
    fmt : str, optional
        Biopython format name; detected from the extension if None

    Returns
    -------
    Tuple[Taxa, Characters]

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the format cannot be determined or the file cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")
    if fmt is None:
        fmt = ALIGNMENT_FORMATS.get(path.suffix.lower())
        if fmt is None:
            raise ValueError(f"Cannot determine alignment format from extension: {path.suffix}")

    try:
        alignment = AlignIO.read(str(path), fmt)
    except Exception as e:
        logger.error(f"Failed to read alignment {path}: {e}")
        raise ValueError(f"Failed to read alignment {path}: {e}") from e

    labels = [record.id for record in alignment]
    sequences = [str(record.seq).upper() for record in alignment]
    datatype = guess_datatype(sequences)
    if datatype == "dna":
        # Dots and Ns carry no state information.
        sequences = [seq.replace("U", "T").replace(".", "-").replace("N", "?") for seq in sequences]
    taxa = Taxa(labels)
    characters = Characters.from_sequences(sequences, CharactersFormat(datatype=datatype))
    logger.info(f"Read {taxa.ntax} {datatype.upper()} sequences of length {characters.nchar} from {path}")
    return taxa, characters


def _split_row(line: str, expected: int) -> Tuple[str, List[float]]:
    """
    Split a matrix row into its name and values.

    Relaxed rows separate the name by whitespace; strict rows use a padded
    10-character name that may run directly into the first value.
    """
    tokens = line.split()
    if len(tokens) == expected + 1:
        try:
            return tokens[0], [float(t) for t in tokens[1:]]
        except ValueError:
            pass
    name = line[:PHYLIP_NAME_LENGTH].strip()
    values = [float(t) for t in line[PHYLIP_NAME_LENGTH:].split()]
    if len(values) != expected:
        raise ValueError(f"Expected {expected} values in row for {name}, found {len(values)}")
    return name, values


def import_phylip_distances(path: Union[str, Path]) -> Tuple[Taxa, Distances]:
    """
    Read a Phylip distance matrix (square or lower triangular), one row
    per line.

    Both strict (10-character padded) and relaxed (whitespace separated)
    names are accepted.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the matrix is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Distance file not found: {path}")
    lines = [line.rstrip("\n") for line in path.read_text(encoding='utf-8').splitlines() if line.strip()]
    if not lines:
        raise ValueError(f"Empty distance file: {path}")
    try:
        ntax = int(lines[0].split()[0])
    except (ValueError, IndexError) as e:
        raise ValueError(f"First line of {path} must hold the number of taxa") from e
    rows = lines[1:]
    if len(rows) != ntax:
        raise ValueError(f"Distance file {path} has {len(rows)} rows, expected {ntax}")

    # Lower triangular files have no value in the first row.
    triangular = ntax > 1 and len(rows[0].split()) == 1

    labels = []
    distances = Distances(ntax)
    for i, line in enumerate(rows, start=1):
        name, values = _split_row(line, i - 1 if triangular else ntax)
        labels.append(name)
        for j, value in enumerate(values, start=1):
            if triangular or j > i:
                distances.set(i, j, value)
            elif j < i and abs(distances.get(i, j) - value) > 1e-9:
                logger.warning(f"Asymmetric distances between {i} and {j}; using the upper triangle")

    try:
        taxa = Taxa(labels)
    except ValueError as e:
        raise ValueError(f"Invalid taxon names in {path}: {e}") from e
    logger.info(f"Read {ntax}x{ntax} distance matrix from {path}")
    return taxa, distances


def import_newick(path: Union[str, Path], taxa: Optional[Taxa] = None) -> Tuple[Taxa, Trees]:
    """
    Read all Newick trees of a file.

    Taxa are taken from the leaf names (in order of first appearance)
    unless given.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If a tree cannot be parsed or converted
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tree file not found: {path}")
    try:
        phylo_trees = list(Phylo.parse(str(path), "newick"))
    except Exception as e:
        raise ValueError(f"Failed to parse Newick file {path}: {e}") from e

    if taxa is None:
        labels: List[str] = []
        for phylo_tree in phylo_trees:
            for leaf in phylo_tree.get_terminals():
                if leaf.name not in labels:
                    labels.append(leaf.name)
        taxa = Taxa(labels)

    trees = Trees(taxa)
    for i, phylo_tree in enumerate(phylo_trees, start=1):
        try:
            trees.add_tree(phylo_tree.name or f"tree{i}", from_phylo(taxa, phylo_tree))
        except PaupTreeError as e:
            raise ValueError(f"Tree {i} in {path}: {e}") from e
    logger.info(f"Read {trees.ntrees} tree(s) from {path}")
    return taxa, trees
