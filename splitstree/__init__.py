"""
splitstree: Phylogenetic Trees, Splits and Bootstrap Confidence Networks

splitstree is a Python package for working with phylogenetic trees and
splits. It estimates distance trees from aligned sequences, bootstraps
them, and summarises the bootstrap replicates as a confidence network:
the smallest set of splits that, with the requested confidence, contains
all splits of the true tree (Beran's B-method).

Core functionality includes:
- Rooted trees with first-child/next-sibling links and fast traversals
- Taxa, characters, distances, splits and trees data blocks
- Distance trees (neighbor joining, UPGMA) and midpoint rooting
- Non-parametric and parametric bootstrap with split support
- Simultaneous confidence intervals and the confidence network
- Consensus networks and majority rule or strict consensus trees
- NeighborNet and split decomposition networks from distances
- Coalescent trees and sequence simulation under GTR-family models
- Nexus, Phylip, FastA, Newick and GML input/output
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import analysis
from . import blocks
from . import bootstrap
from . import confidence
from . import consensus
from . import core
from . import distances
from . import exports
from . import imports
from . import models
from . import networks
from . import nexus
from . import phylogenetics
from . import simulate
from . import splits
from . import tree
from . import utils
from . import visualization

__all__ = [
    "analysis",
    "blocks",
    "bootstrap",
    "confidence",
    "consensus",
    "core",
    "distances",
    "exports",
    "imports",
    "models",
    "networks",
    "nexus",
    "phylogenetics",
    "simulate",
    "splits",
    "tree",
    "utils",
    "visualization",
]
