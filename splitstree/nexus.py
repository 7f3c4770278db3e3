"""
Nexus Input and Output

Reads and writes Nexus documents holding the blocks of an analysis:
TAXA, CHARACTERS (or DATA), DISTANCES, SPLITS and TREES.

Reading:
- CHARACTERS/DATA blocks are parsed by Biopython (``Bio.AlignIO``)
- TREES blocks are parsed by Biopython (``Bio.Phylo``) and converted to
  ``PaupNode`` trees
- TAXA, DISTANCES and SPLITS blocks are parsed by a small tokenizer
- Unknown blocks are skipped with a debug message

Writing follows the layout of SplitsTree 4 files:
- DISTANCES: ``FORMAT labels=left diagonal triangle=both``
- SPLITS: ``FORMAT labels=.. weights=yes confidences=.. intervals=..``,
  one row per split prefixed by ``[i, size=k]`` and listing the 1-based
  taxon ids of one side, terminated by a comma

Example Usage:
    >>> from splitstree.nexus import read_nexus, write_nexus
    >>> doc = read_nexus("primates.nex")
    >>> write_nexus("copy.nex", doc.taxa, characters=doc.characters, splits=doc.splits)
"""

from dataclasses import dataclass
from io import StringIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
import logging
import re

import numpy as np
from Bio import AlignIO, Phylo

from .blocks import Characters, CharactersFormat, Distances, Taxa, Trees
from .splits import Splits, SplitsError, split_size
from .tree import PaupTreeError, from_phylo, quote_label
from .utils import format_float

logger = logging.getLogger(__name__)


class NexusError(Exception):
    """Error raised for malformed or inconsistent Nexus input."""
    pass


@dataclass
class NexusDocument:
    """Blocks read from a Nexus file; absent blocks are None."""
    taxa: Optional[Taxa] = None
    characters: Optional[Characters] = None
    distances: Optional[Distances] = None
    splits: Optional[Splits] = None
    trees: Optional[Trees] = None


# ============================================================================
# Writers
# ============================================================================

def write_taxa_block(taxa: Taxa) -> str:
    lines = ["BEGIN Taxa;", f"DIMENSIONS ntax={taxa.ntax};", "TAXLABELS"]
    for i, label in enumerate(taxa, start=1):
        lines.append(f"[{i}] {quote_label(label)}")
    lines += [";", "END; [Taxa]"]
    return "\n".join(lines) + "\n"


def write_characters_block(taxa: Taxa, characters: Characters) -> str:
    fmt = characters.format
    format_line = f"FORMAT datatype={fmt.datatype.upper()} missing={fmt.missing} gap={fmt.gap}"
    if fmt.datatype == "standard":
        format_line += f' symbols="{fmt.symbols}"'
    lines = [
        "BEGIN Characters;",
        f"DIMENSIONS ntax={characters.ntax} nchar={characters.nchar};",
        format_line + ";",
        "MATRIX",
    ]
    labels = [quote_label(label) for label in taxa]
    width = max(len(label) for label in labels)
    for i, label in enumerate(labels, start=1):
        lines.append(f"{label.ljust(width)} {characters.sequence(i)}")
    lines += [";", "END; [Characters]"]
    return "\n".join(lines) + "\n"


def write_distances_block(taxa: Taxa, distances: Distances) -> str:
    lines = [
        "BEGIN Distances;",
        f"DIMENSIONS ntax={distances.ntax};",
        "FORMAT labels=left diagonal triangle=both;",
        "MATRIX",
    ]
    for i in range(1, distances.ntax + 1):
        values = " ".join(format_float(distances.get(i, j)) for j in range(1, distances.ntax + 1))
        lines.append(f"[{i}] {quote_label(taxa.get_label(i))} {values}")
    lines += [";", "END; [Distances]"]
    return "\n".join(lines) + "\n"


def write_splits_block(splits: Splits) -> str:
    has_labels = any(splits.get_label(i) for i in range(1, splits.nsplits + 1))
    has_intervals = splits.has_intervals()
    flags = [
        f"labels={'left' if has_labels else 'no'}",
        "weights=yes",
        "confidences=yes",
        f"intervals={'yes' if has_intervals else 'no'}",
    ]
    lines = [
        "BEGIN Splits;",
        f"DIMENSIONS ntax={splits.ntax} nsplits={splits.nsplits};",
        "FORMAT " + " ".join(flags) + ";",
    ]
    if splits.nsplits > 0 and splits.is_compatible():
        lines.append("PROPERTIES compatible;")
    lines.append("MATRIX")
    for i in range(1, splits.nsplits + 1):
        side = splits.get(i)
        fields = [f"[{i}, size={split_size(splits.ntax, side)}]"]
        if has_labels:
            fields.append(quote_label(splits.get_label(i) or f"s{i}"))
        fields.append(format_float(splits.get_weight(i)))
        fields.append(format_float(splits.get_confidence(i)))
        if has_intervals:
            low, high = splits.get_interval(i) or (0.0, 0.0)
            fields.append(f"{format_float(low)} {format_float(high)}")
        fields.append(" ".join(str(t) for t in sorted(side)) + ",")
        lines.append(" \t".join(fields))
    lines += [";", "END; [Splits]"]
    return "\n".join(lines) + "\n"


def _tree_name(name: str, index: int) -> str:
    safe = re.sub(r"\W", "_", name or "")
    return safe or f"tree{index}"


def write_trees_block(trees: Trees) -> str:
    lines = ["BEGIN Trees;"]
    for i, (name, root) in enumerate(trees, start=1):
        lines.append(f"[{i}] TREE {_tree_name(name, i)} = {root.to_newick(trees.taxa)};")
    lines.append("END; [Trees]")
    return "\n".join(lines) + "\n"


def write_nexus(
    path: Union[str, Path],
    taxa: Taxa,
    characters: Optional[Characters] = None,
    distances: Optional[Distances] = None,
    splits: Optional[Splits] = None,
    trees: Optional[Trees] = None,
) -> Path:
    """
    Write a Nexus document with a TAXA block and any of the other blocks.

    Returns
    -------
    Path
        The written file
    """
    parts = ["#NEXUS\n", write_taxa_block(taxa)]
    if characters is not None:
        parts.append(write_characters_block(taxa, characters))
    if distances is not None:
        parts.append(write_distances_block(taxa, distances))
    if splits is not None:
        parts.append(write_splits_block(splits))
    if trees is not None and trees.ntrees > 0:
        parts.append(write_trees_block(trees))

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text("\n".join(parts), encoding='utf-8')
    logger.info(f"Wrote Nexus file: {out}")
    return out


# ============================================================================
# Tokenizer
# ============================================================================

_PUNCTUATION = ";=,"


def tokenize(text: str) -> List[str]:
    """
    Split Nexus text into tokens.

    Comments in square brackets are dropped, quoted words keep their
    content without quotes, and ``;``, ``=`` and ``,`` are single tokens.
    """
    tokens = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
        elif ch == "[":
            depth = 1
            i += 1
            while i < n and depth > 0:
                if text[i] == "[":
                    depth += 1
                elif text[i] == "]":
                    depth -= 1
                i += 1
        elif ch in "'\"":
            quote = ch
            i += 1
            buf = []
            while True:
                if i >= n:
                    raise NexusError("Unterminated quoted token")
                if text[i] == quote:
                    if i + 1 < n and text[i + 1] == quote:
                        buf.append(quote)
                        i += 2
                        continue
                    i += 1
                    break
                buf.append(text[i])
                i += 1
            tokens.append("".join(buf))
        elif ch in _PUNCTUATION:
            tokens.append(ch)
            i += 1
        else:
            start = i
            while i < n and not text[i].isspace() and text[i] not in _PUNCTUATION + "['\"":
                i += 1
            tokens.append(text[start:i])
    return tokens


def _commands(body: str) -> List[List[str]]:
    commands = []
    current: List[str] = []
    for token in tokenize(body):
        if token == ";":
            if current:
                commands.append(current)
            current = []
        else:
            current.append(token)
    if current:
        commands.append(current)
    return commands


def _options(tokens: List[str]) -> Dict[str, Union[str, bool]]:
    """Parse ``key=value`` and bare ``key`` options (keys lower-cased)."""
    options: Dict[str, Union[str, bool]] = {}
    i = 0
    while i < len(tokens):
        key = tokens[i].lower()
        if i + 1 < len(tokens) and tokens[i + 1] == "=":
            if i + 2 >= len(tokens):
                raise NexusError(f"Missing value for option {key}")
            options[key] = tokens[i + 2]
            i += 3
        else:
            options[key] = True
            i += 1
    return options


def _int_option(options, key: str, block: str) -> int:
    try:
        return int(options[key])
    except KeyError as e:
        raise NexusError(f"{block} block: missing {key}") from e
    except (TypeError, ValueError) as e:
        raise NexusError(f"{block} block: invalid {key}={options[key]}") from e


def _float(token: str, block: str) -> float:
    try:
        return float(token)
    except ValueError as e:
        raise NexusError(f"{block} block: expected a number, got {token!r}") from e


def _yes(value: Union[str, bool, None], default: bool) -> bool:
    if value is None:
        return default
    if value is True:
        return True
    return str(value).lower() not in ("no", "false", "0")


# ============================================================================
# Block parsers
# ============================================================================

_BLOCK_RE = re.compile(r"\bBEGIN\s+(\w+)\s*;(.*?)\bEND(?:BLOCK)?\s*;", re.IGNORECASE | re.DOTALL)


def _parse_taxa(body: str) -> Taxa:
    ntax = None
    labels: List[str] = []
    for cmd in _commands(body):
        name = cmd[0].upper()
        if name == "DIMENSIONS":
            ntax = _int_option(_options(cmd[1:]), "ntax", "TAXA")
        elif name == "TAXLABELS":
            labels = cmd[1:]
    if ntax is not None and ntax != len(labels):
        raise NexusError(f"TAXA block: ntax={ntax} but {len(labels)} labels")
    try:
        return Taxa(labels)
    except ValueError as e:
        raise NexusError(f"TAXA block: {e}") from e


def _parse_characters(body: str, taxa: Optional[Taxa]) -> Tuple[Taxa, Characters]:
    fmt_options: Dict[str, Union[str, bool]] = {}
    header = re.split(r"\bMATRIX\b", body, maxsplit=1, flags=re.IGNORECASE)[0]
    for cmd in _commands(header):
        if cmd[0].upper() == "FORMAT":
            fmt_options = _options(cmd[1:])

    # Biopython needs ntax in the DIMENSIONS command of a stand-alone block.
    if taxa is not None and not re.search(r"ntax\s*=", body, re.IGNORECASE):
        body = re.sub(r"DIMENSIONS", f"DIMENSIONS ntax={taxa.ntax}", body, count=1, flags=re.IGNORECASE)
    text = f"#NEXUS\nBEGIN DATA;{body}END;\n"
    try:
        alignment = AlignIO.read(StringIO(text), "nexus")
    except Exception as e:
        raise NexusError(f"Failed to parse CHARACTERS block: {e}") from e

    datatype = str(fmt_options.get("datatype", "dna")).lower()
    if datatype in ("nucleotide", "rna"):
        datatype = "dna"
    if datatype not in ("dna", "protein", "standard"):
        raise NexusError(f"CHARACTERS block: unsupported datatype {datatype}")
    fmt = CharactersFormat(
        datatype=datatype,
        missing=str(fmt_options.get("missing", "?")),
        gap=str(fmt_options.get("gap", "-")),
        symbols=str(fmt_options["symbols"]).replace(" ", "") if "symbols" in fmt_options else "",
    )

    records = {record.id: str(record.seq) for record in alignment}
    if taxa is None:
        taxa = Taxa([record.id for record in alignment])
    missing = [label for label in taxa if label not in records]
    if missing:
        raise NexusError(f"CHARACTERS block: no sequence for taxa {', '.join(missing)}")
    characters = Characters.from_sequences([records[label] for label in taxa], fmt)
    return taxa, characters


def _parse_distances(body: str, taxa: Optional[Taxa]) -> Tuple[Taxa, Distances]:
    ntax = taxa.ntax if taxa is not None else None
    triangle = "both"
    has_labels = True
    diagonal = True
    matrix_tokens: Optional[List[str]] = None
    for cmd in _commands(body):
        name = cmd[0].upper()
        if name == "DIMENSIONS":
            ntax = _int_option(_options(cmd[1:]), "ntax", "DISTANCES")
        elif name == "FORMAT":
            options = _options(cmd[1:])
            triangle = str(options.get("triangle", triangle)).lower()
            if "nolabels" in options:
                has_labels = False
            elif "labels" in options:
                has_labels = str(options["labels"]).lower() not in ("no", "false")
            if "nodiagonal" in options:
                diagonal = False
            elif "diagonal" in options:
                diagonal = _yes(options["diagonal"], True)
        elif name == "MATRIX":
            matrix_tokens = cmd[1:]
    if ntax is None:
        raise NexusError("DISTANCES block: ntax unknown")
    if taxa is not None and ntax != taxa.ntax:
        raise NexusError(f"DISTANCES block: ntax={ntax} but {taxa.ntax} taxa")
    if matrix_tokens is None:
        raise NexusError("DISTANCES block: no MATRIX")
    if triangle not in ("both", "lower", "upper"):
        raise NexusError(f"DISTANCES block: invalid triangle={triangle}")
    if not has_labels and taxa is None:
        raise NexusError("DISTANCES block without labels needs a TAXA block")

    values = [[0.0] * ntax for _ in range(ntax)]
    labels = []
    pos = 0
    for i in range(ntax):
        if has_labels:
            if pos >= len(matrix_tokens):
                raise NexusError("DISTANCES block: matrix too short")
            labels.append(matrix_tokens[pos])
            pos += 1
        if triangle == "both":
            columns = [j for j in range(ntax) if diagonal or j != i]
        elif triangle == "lower":
            columns = list(range(i + 1 if diagonal else i))
        else:
            columns = list(range(i if diagonal else i + 1, ntax))
        for j in columns:
            if pos >= len(matrix_tokens):
                raise NexusError("DISTANCES block: matrix too short")
            values[i][j] = _float(matrix_tokens[pos], "DISTANCES")
            pos += 1
    if pos != len(matrix_tokens):
        raise NexusError("DISTANCES block: unexpected tokens after matrix")

    # Mirror the triangle that was read.
    for i in range(ntax):
        for j in range(i + 1, ntax):
            if triangle == "lower":
                values[i][j] = values[j][i]
            elif triangle == "upper":
                values[j][i] = values[i][j]

    if taxa is None:
        try:
            taxa = Taxa(labels)
        except ValueError as e:
            raise NexusError(f"DISTANCES block: {e}") from e
    order = list(range(ntax))
    if has_labels:
        order = []
        for label in labels:
            index = taxa.index_of(label)
            if index is None:
                raise NexusError(f"DISTANCES block: unknown taxon {label}")
            order.append(index - 1)
    array = np.zeros((ntax, ntax))
    array[np.ix_(order, order)] = values
    distances = Distances.from_array(array)
    if not distances.is_symmetric():
        logger.warning("DISTANCES block: matrix is not symmetric")
    return taxa, distances


def _parse_splits(body: str, taxa: Optional[Taxa]) -> Splits:
    ntax = taxa.ntax if taxa is not None else None
    nsplits = None
    has_labels = False
    has_weights = True
    has_confidences = False
    has_intervals = False
    matrix_tokens: Optional[List[str]] = None
    for cmd in _commands(body):
        name = cmd[0].upper()
        if name == "DIMENSIONS":
            options = _options(cmd[1:])
            if "ntax" in options:
                ntax = _int_option(options, "ntax", "SPLITS")
            if "nsplits" in options:
                nsplits = _int_option(options, "nsplits", "SPLITS")
        elif name == "FORMAT":
            options = _options(cmd[1:])
            has_labels = _yes(options.get("labels"), False)
            has_weights = _yes(options.get("weights"), True)
            has_confidences = _yes(options.get("confidences"), False)
            has_intervals = _yes(options.get("intervals"), False)
        elif name == "MATRIX":
            matrix_tokens = cmd[1:]
    if ntax is None:
        raise NexusError("SPLITS block: ntax unknown")
    if matrix_tokens is None:
        raise NexusError("SPLITS block: no MATRIX")

    rows: List[List[str]] = [[]]
    for token in matrix_tokens:
        if token == ",":
            rows.append([])
        else:
            rows[-1].append(token)
    rows = [row for row in rows if row]

    splits = Splits(ntax)
    for row in rows:
        pos = 0
        label = None
        weight, confidence, interval = 1.0, 1.0, None
        try:
            if has_labels:
                label = row[pos]
                pos += 1
            if has_weights:
                weight = _float(row[pos], "SPLITS")
                pos += 1
            if has_confidences:
                confidence = _float(row[pos], "SPLITS")
                pos += 1
            if has_intervals:
                interval = (_float(row[pos], "SPLITS"), _float(row[pos + 1], "SPLITS"))
                pos += 2
            side = [int(t) for t in row[pos:]]
        except (IndexError, ValueError) as e:
            raise NexusError(f"SPLITS block: malformed row {' '.join(row)}") from e
        try:
            splits.add(side, weight=weight, confidence=confidence, interval=interval, label=label)
        except SplitsError as e:
            raise NexusError(f"SPLITS block: {e}") from e
    if nsplits is not None and nsplits != splits.nsplits:
        raise NexusError(f"SPLITS block: nsplits={nsplits} but {splits.nsplits} rows")
    return splits


def _parse_trees(body: str, taxa: Optional[Taxa]) -> Tuple[Taxa, Trees]:
    text = f"#NEXUS\nBEGIN TREES;{body}END;\n"
    try:
        phylo_trees = list(Phylo.parse(StringIO(text), "nexus"))
    except Exception as e:
        raise NexusError(f"Failed to parse TREES block: {e}") from e
    if taxa is None:
        labels: List[str] = []
        for phylo_tree in phylo_trees:
            for leaf in phylo_tree.get_terminals():
                if leaf.name not in labels:
                    labels.append(leaf.name)
        taxa = Taxa(labels)
    trees = Trees(taxa)
    for i, phylo_tree in enumerate(phylo_trees, start=1):
        for clade in phylo_tree.get_nonterminals():
            clade.name = None
        try:
            trees.add_tree(phylo_tree.name or f"tree{i}", from_phylo(taxa, phylo_tree))
        except PaupTreeError as e:
            raise NexusError(f"TREES block: tree {i}: {e}") from e
    return taxa, trees


def read_nexus_string(text: str) -> NexusDocument:
    """
    Parse Nexus text.

    Raises
    ------
    NexusError
        If the text is not a Nexus document or a block is malformed
    """
    if not text.lstrip().upper().startswith("#NEXUS"):
        raise NexusError("Not a Nexus file: missing #NEXUS header")

    doc = NexusDocument()
    for match in _BLOCK_RE.finditer(text):
        name = match.group(1).upper()
        body = match.group(2)
        if name == "TAXA":
            doc.taxa = _parse_taxa(body)
        elif name in ("CHARACTERS", "DATA"):
            doc.taxa, doc.characters = _parse_characters(body, doc.taxa)
        elif name == "DISTANCES":
            doc.taxa, doc.distances = _parse_distances(body, doc.taxa)
        elif name == "SPLITS":
            doc.splits = _parse_splits(body, doc.taxa)
        elif name == "TREES":
            doc.taxa, doc.trees = _parse_trees(body, doc.taxa)
        else:
            logger.debug(f"Skipping unsupported Nexus block: {name}")
    return doc


def read_nexus(path: Union[str, Path]) -> NexusDocument:
    """
    Read a Nexus file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    NexusError
        If the file is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Nexus file not found: {path}")
    doc = read_nexus_string(path.read_text(encoding='utf-8'))
    logger.info(f"Read Nexus file: {path}")
    return doc
