"""
Rooted Trees and Traversals

This module provides ``PaupNode``, the light-weight rooted tree used by the
simulation, bootstrap and tree building code, together with iterative
pre-order and post-order walks and a handful of whole-tree utilities.

Tree Representation:
- Every node links to its parent, its first child and its next sibling.
  Children are therefore an ordered singly linked list.
- Leaves carry the (1-based) id of their taxon in ``id``; internal nodes may
  use ``id`` as a free index.
- ``length`` is the length of the branch above the node. The root length is
  ignored by most algorithms.
- Links can only be changed through the manipulators
  (``detach_from_parent``, ``attach_as_first_child_of``,
  ``attach_as_next_sibling_of``, ``contract``), so sibling lists always
  stay consistent.

Traversals:
- ``next_pre`` and ``next_post`` step through a tree without recursion or
  auxiliary memory. ``iter_preorder`` and ``iter_postorder`` wrap them as
  generators.
- ``update_fast_pre_post`` caches both successors in ``fast_next_pre`` and
  ``fast_next_post``. The cache is stale as soon as the tree is edited.

Newick Input:
- ``parse_newick`` validates a Newick string (balanced parentheses, comma
  placement, comments) and parses it with Biopython's ``Bio.Phylo``.
- ``from_phylo`` converts a ``Bio.Phylo`` tree into ``PaupNode`` form,
  resolving leaf names against a ``Taxa`` block.

Example Usage:
    >>> from splitstree.blocks import Taxa
    >>> from splitstree.tree import parse_newick, iter_postorder
    >>> taxa = Taxa(["a", "b", "c"])
    >>> root = parse_newick(taxa, "((a:1,b:1):0.5,c:1.5);")
    >>> [v.id for v in iter_postorder(root) if v.is_leaf()]
    [1, 2, 3]
    >>> root.to_newick(taxa)
    '((a:1.0,b:1.0):0.5,c:1.5)'
"""

from io import StringIO
from typing import Any, Iterator, List, Optional
import logging
import re

from Bio import Phylo

logger = logging.getLogger(__name__)


class PaupTreeError(Exception):
    """Error raised for malformed trees or trees that cannot be converted."""
    pass


# ============================================================================
# PaupNode
# ============================================================================

class PaupNode:
    """
    Node of a rooted tree with parent / first-child / next-sibling links.

    Attributes
    ----------
    id : int
        Taxon id for a leaf (1..ntax), otherwise a free index
    length : float
        Length of the branch above this node
    data : Any
        Free slot used by algorithms, copied by reference in ``deep_copy``
    fast_next_pre, fast_next_post : Optional[PaupNode]
        Cached traversal successors, see ``update_fast_pre_post``
    """

    __slots__ = (
        "_parent", "_first_child", "_next_sibling",
        "id", "length", "data", "fast_next_pre", "fast_next_post",
    )

    def __init__(self, id: int = 0, length: float = 0.0, data: Any = None):
        self._parent: Optional[PaupNode] = None
        self._first_child: Optional[PaupNode] = None
        self._next_sibling: Optional[PaupNode] = None
        self.id = id
        self.length = length
        self.data = data
        self.fast_next_pre: Optional[PaupNode] = None
        self.fast_next_post: Optional[PaupNode] = None

    # ------------------------------------------------------------------
    # Links (read only)
    # ------------------------------------------------------------------

    @property
    def parent(self) -> Optional["PaupNode"]:
        return self._parent

    @property
    def first_child(self) -> Optional["PaupNode"]:
        return self._first_child

    @property
    def next_sibling(self) -> Optional["PaupNode"]:
        return self._next_sibling

    def is_leaf(self) -> bool:
        return self._first_child is None

    def is_root(self) -> bool:
        return self._parent is None

    # ------------------------------------------------------------------
    # Manipulators
    # ------------------------------------------------------------------

    def detach_from_parent(self) -> None:
        """
        Remove this node (and its subtree) from its parent's child list.

        Sibling links are patched so the remaining children stay in order.
        Does nothing for a root.
        """
        par = self._parent
        if par is None:
            return
        if par._first_child is self:
            par._first_child = self._next_sibling
        else:
            left = par._first_child
            while left._next_sibling is not self:
                left = left._next_sibling
            left._next_sibling = self._next_sibling
        self._parent = None
        self._next_sibling = None

    def attach_as_first_child_of(self, new_parent: "PaupNode", length: Optional[float] = None) -> None:
        """
        Move this node so it becomes the first child of ``new_parent``.

        Parameters
        ----------
        new_parent : PaupNode
            The new parent. Nothing happens if it is this node itself.
        length : float, optional
            New branch length for this node
        """
        if new_parent is self:
            return
        self.detach_from_parent()
        self._parent = new_parent
        self._next_sibling = new_parent._first_child
        new_parent._first_child = self
        if length is not None:
            self.length = length

    def attach_as_next_sibling_of(self, sibling: "PaupNode") -> None:
        """Move this node so it directly follows ``sibling`` in its parent's child list."""
        if sibling is self:
            return
        self.detach_from_parent()
        self._parent = sibling._parent
        self._next_sibling = sibling._next_sibling
        sibling._next_sibling = self

    def contract(self) -> None:
        """
        Contract the branch above this node.

        The node replaces its parent: siblings to its left become its first
        children, siblings to its right follow its own children, and the
        parent's branch length is added to this node's length. Contracting
        a child of the root makes this node the new root. Nothing happens
        at the root.
        """
        par = self._parent
        if par is None:
            return

        # Left siblings become the first children, in their original order.
        if par._first_child is not self:
            p = par._first_child
            p.attach_as_first_child_of(self)
            while par._first_child is not self:
                q = par._first_child
                q.attach_as_next_sibling_of(p)
                p = q

        p = self.last_child()
        # Right siblings go after the existing children.
        while self._next_sibling is not None:
            q = self._next_sibling
            if p is not None:
                q.attach_as_next_sibling_of(p)
            else:
                q.attach_as_first_child_of(self)
            p = q

        # The parent now has this node as its only child.
        self.length += par.length
        if par._parent is None:
            self.detach_from_parent()
        else:
            self.attach_as_next_sibling_of(par)
            par.detach_from_parent()

    def deep_copy(self) -> "PaupNode":
        """
        Return a copy of this node and all of its descendants.

        ``data`` is copied by reference. The fast traversal pointers of the
        copy are recomputed.
        """
        copy = self._copy_recurse()
        update_fast_pre_post(copy)
        return copy

    def _copy_recurse(self) -> "PaupNode":
        new_node = PaupNode(self.id, self.length, self.data)
        last = None
        for child in self.children():
            new_child = child._copy_recurse()
            if last is None:
                new_child.attach_as_first_child_of(new_node)
            else:
                new_child.attach_as_next_sibling_of(last)
            last = new_child
        return new_node

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def leftmost_leaf(self) -> "PaupNode":
        p = self
        while p._first_child is not None:
            p = p._first_child
        return p

    def next_post(self) -> Optional["PaupNode"]:
        """Next node of a post-order traversal (children before parents), or None."""
        if self._next_sibling is not None:
            return self._next_sibling.leftmost_leaf()
        return self._parent

    def next_pre(self, root: Optional["PaupNode"] = None) -> Optional["PaupNode"]:
        """
        Next node of a pre-order traversal (parents before children).

        Parameters
        ----------
        root : PaupNode, optional
            Restrict the traversal to the subtree below (and including) root

        Returns
        -------
        Optional[PaupNode]
            The next node, or None once the (sub)tree is exhausted
        """
        if self._first_child is not None:
            return self._first_child
        p = self
        while p is not root and p._next_sibling is None:
            p = p._parent
            if p is None:
                return None
        if p is root:
            return None
        return p._next_sibling

    def last_child(self) -> Optional["PaupNode"]:
        p = self._first_child
        if p is None:
            return None
        while p._next_sibling is not None:
            p = p._next_sibling
        return p

    def previous_sibling(self) -> Optional["PaupNode"]:
        par = self._parent
        if par is None or par._first_child is self:
            return None
        p = par._first_child
        while p._next_sibling is not self:
            p = p._next_sibling
        return p

    def children(self) -> Iterator["PaupNode"]:
        child = self._first_child
        while child is not None:
            # Read the link first so the caller may detach the child.
            following = child._next_sibling
            yield child
            child = following

    def n_children(self) -> int:
        return sum(1 for _ in self.children())

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def to_newick(self, labels=None, branch_lengths: bool = True) -> str:
        """
        Newick representation of the subtree below this node.

        Parameters
        ----------
        labels : Taxa or sequence, optional
            Source of leaf labels. A ``Taxa`` block (``get_label``), a
            mapping/sequence indexed by id, or None to print ids
        branch_lengths : bool
            Print ``:length`` after every node except the root

        Returns
        -------
        str
            Newick string without the terminating semicolon
        """
        if self.is_leaf():
            text = quote_label(_leaf_label(labels, self.id))
        else:
            text = "(" + ",".join(
                child.to_newick(labels, branch_lengths) for child in self.children()
            ) + ")"
        if branch_lengths and self._parent is not None:
            text += ":" + repr(float(self.length))
        return text

    def write_description(self) -> str:
        """
        Serialise the subtree with leaf ids and full precision lengths.

        Examples
        --------
        >>> PaupNode.read_description("(1:0.5,2:0.25)").write_description()
        '(1:0.5,2:0.25)'
        """
        if self.is_leaf():
            text = str(self.id)
        else:
            text = "(" + ",".join(child.write_description() for child in self.children()) + ")"
        if self._parent is not None:
            text += ":" + repr(float(self.length))
        return text

    @classmethod
    def read_description(cls, text: str) -> "PaupNode":
        """
        Rebuild a tree written by ``write_description``.

        Raises
        ------
        PaupTreeError
            If the description is malformed
        """
        reader = _DescriptionReader(re.sub(r"\s+", "", text).rstrip(";"))
        root = reader.read_node()
        if reader.has_next():
            raise PaupTreeError(f"Unexpected trailing text at position {reader.index}")
        update_fast_pre_post(root)
        return root

    def __repr__(self) -> str:
        kind = "leaf" if self.is_leaf() else "node"
        return f"PaupNode({kind}, id={self.id}, length={self.length})"


class _DescriptionReader:
    """Recursive descent reader for id-based tree descriptions."""

    _NUMBER_CHARS = set("0123456789.eE+-")

    def __init__(self, text: str):
        self.text = text
        self.index = 0

    def has_next(self) -> bool:
        return self.index < len(self.text)

    def peek(self) -> str:
        if not self.has_next():
            raise PaupTreeError("Unexpected end of tree description")
        return self.text[self.index]

    def next(self) -> str:
        ch = self.peek()
        self.index += 1
        return ch

    def read_number(self) -> str:
        start = self.index
        while self.has_next() and self.text[self.index] in self._NUMBER_CHARS:
            self.index += 1
        if start == self.index:
            raise PaupTreeError(f"Expected a number at position {start}")
        return self.text[start:self.index]

    def read_node(self) -> PaupNode:
        node = PaupNode()
        if self.peek() == "(":
            self.next()
            last = None
            while True:
                child = self.read_node()
                if last is None:
                    child.attach_as_first_child_of(node)
                else:
                    child.attach_as_next_sibling_of(last)
                last = child
                ch = self.next()
                if ch == ")":
                    break
                if ch != ",":
                    raise PaupTreeError(f"Expected ',' or ')' at position {self.index - 1}")
        else:
            try:
                node.id = int(self.read_number())
            except ValueError as e:
                raise PaupTreeError(f"Invalid leaf id near position {self.index}") from e
        if self.has_next() and self.peek() == ":":
            self.next()
            try:
                node.length = float(self.read_number())
            except ValueError as e:
                raise PaupTreeError(f"Invalid branch length near position {self.index}") from e
        return node


def _leaf_label(labels, taxon_id: int) -> str:
    if labels is None:
        return str(taxon_id)
    if hasattr(labels, "get_label"):
        return labels.get_label(taxon_id)
    return str(labels[taxon_id])


_NEEDS_QUOTES = re.compile(r"[\s()\[\]':;,]")


def quote_label(label: str) -> str:
    """Quote a label for Newick/Nexus output when it contains special characters."""
    if _NEEDS_QUOTES.search(label):
        return "'" + label.replace("'", "''") + "'"
    return label


# ============================================================================
# Traversal helpers
# ============================================================================

def iter_preorder(root: PaupNode) -> Iterator[PaupNode]:
    """Yield the nodes of the subtree below ``root`` in pre-order."""
    v = root
    while v is not None:
        yield v
        v = v.next_pre(root)


def iter_postorder(root: PaupNode) -> Iterator[PaupNode]:
    """Yield the nodes of the subtree below ``root`` in post-order."""
    v = root.leftmost_leaf()
    while v is not None:
        yield v
        if v is root:
            break
        v = v.next_post()


def iter_leaves(root: PaupNode) -> Iterator[PaupNode]:
    return (v for v in iter_postorder(root) if v.is_leaf())


def count_leaves(root: PaupNode) -> int:
    return sum(1 for _ in iter_leaves(root))


def update_fast_pre_post(root: PaupNode) -> None:
    """
    Fill in ``fast_next_pre`` and ``fast_next_post`` for every node.

    The cached pointers become invalid once the tree is changed.
    """
    prev = None
    for v in iter_postorder(root):
        if prev is not None:
            prev.fast_next_post = v
        prev = v
    if prev is not None:
        prev.fast_next_post = None

    prev = None
    for v in iter_preorder(root):
        if prev is not None:
            prev.fast_next_pre = v
        prev = v
    if prev is not None:
        prev.fast_next_pre = None


def scale_branch_lengths(root: PaupNode, scale: float) -> None:
    """Multiply every branch length at and below ``root`` by ``scale``."""
    for v in iter_preorder(root):
        v.length *= scale


def get_max_id(root: PaupNode) -> int:
    """Largest leaf id in the tree (0 for a tree without leaves ids)."""
    return max((v.id for v in iter_leaves(root)), default=0)


def get_node_height(v: PaupNode) -> float:
    """Length of the path from ``v`` down to its leftmost leaf."""
    height = 0.0
    x = v
    while not x.is_leaf():
        x = x.first_child
        height += x.length
    return height


def node_heights(root: PaupNode) -> List[float]:
    """
    Sorted heights of the internal nodes of an ultrametric tree.

    Each internal node is reached once, along the path from its leftmost
    leaf, so the heights are the coalescence times of the tree.
    """
    heights = []
    for v in iter_leaves(root):
        height = 0.0
        x = v
        while x.parent is not None and x.parent.first_child is x:
            height += x.length
            heights.append(height)
            x = x.parent
    heights.sort()
    return heights


def find_leaf(root: PaupNode, taxon_id: int) -> Optional[PaupNode]:
    for v in iter_leaves(root):
        if v.id == taxon_id:
            return v
    return None


# ============================================================================
# Newick validation and conversion
# ============================================================================

def remove_white_space(text: str) -> str:
    return re.sub(r"[ \t\r\n]", "", text)


def remove_comments(text: str) -> str:
    """
    Remove bracketed comments, keeping ``[&&NHX...]`` annotations.

    Nested brackets inside a comment are removed with it.
    """
    out = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "[" and not text.startswith("[&&NHX", i):
            depth = 1
            j = i + 1
            while j < n and depth > 0:
                if text[j] == "[":
                    depth += 1
                elif text[j] == "]":
                    depth -= 1
                j += 1
            i = j
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def count_and_check_parentheses(text: str) -> int:
    """
    Count opening parentheses.

    Returns
    -------
    int
        Number of '(' if they balance the number of ')', otherwise -1
    """
    opened = text.count("(")
    closed = text.count(")")
    if opened != closed:
        return -1
    return opened


def check_commas(text: str) -> bool:
    """
    Check comma and parenthesis placement in a whitespace-free Newick string.

    Rejects "()", "(" preceded by anything other than "(" or ",", ",,",
    "(," and ",)".
    """
    for a, b in zip(text, text[1:]):
        if (
            (a == "(" and b == ")")
            or (a not in ",(" and b == "(")
            or (a == "," and b == ",")
            or (a == "(" and b == ",")
            or (a == "," and b == ")")
        ):
            return False
    return True


def parse_newick(taxa, text: str) -> PaupNode:
    """
    Parse a Newick string into a ``PaupNode`` tree on ``taxa``.

    Parameters
    ----------
    taxa : Taxa
        Taxa block used to resolve leaf labels
    text : str
        Newick string, with or without the terminating semicolon

    Returns
    -------
    PaupNode
        Root of the tree

    Raises
    ------
    PaupTreeError
        If the string is malformed, a leaf label is not a taxon, or an
        internal node carries a label
    """
    cleaned = remove_comments(text.strip())
    compact = remove_white_space(cleaned)
    if not compact.rstrip(";"):
        raise PaupTreeError("Empty tree")
    if count_and_check_parentheses(compact) < 0:
        raise PaupTreeError("Error in Newick format: open parentheses != close parentheses")
    if not check_commas(compact.rstrip(";")):
        raise PaupTreeError("Error in Newick format: commas not properly set")
    if not cleaned.endswith(";"):
        cleaned += ";"

    try:
        phylo_tree = Phylo.read(StringIO(cleaned), "newick")
    except Exception as e:
        raise PaupTreeError(f"Failed to parse Newick tree: {e}") from e

    return from_phylo(taxa, phylo_tree)


def from_phylo(taxa, phylo_tree) -> PaupNode:
    """
    Convert a ``Bio.Phylo`` tree into a ``PaupNode`` tree.

    Child order follows the Biopython tree. Numeric internal labels parsed
    as confidences are ignored; named internal nodes are rejected.

    Raises
    ------
    PaupTreeError
        If a leaf name is not a taxon or an internal node is named
    """
    root_clade = phylo_tree.root if hasattr(phylo_tree, "root") else phylo_tree
    root = _convert_clade(taxa, root_clade)
    root.length = 0.0
    update_fast_pre_post(root)
    logger.debug(f"Converted tree with {count_leaves(root)} leaves")
    return root


def _convert_clade(taxa, clade) -> PaupNode:
    node = PaupNode()
    node.length = float(clade.branch_length) if clade.branch_length is not None else 0.0
    if not clade.clades:
        if not clade.name:
            raise PaupTreeError("Leaf without a taxon label")
        taxon_id = taxa.index_of(clade.name)
        if taxon_id is None:
            raise PaupTreeError(f"Couldn't find taxon {clade.name}")
        node.id = taxon_id
        return node

    if clade.name:
        raise PaupTreeError(f"Labels on internal nodes are not supported: {clade.name}")
    last = None
    for sub in clade.clades:
        child = _convert_clade(taxa, sub)
        if last is None:
            child.attach_as_first_child_of(node)
        else:
            child.attach_as_next_sibling_of(last)
        last = child
    return node
