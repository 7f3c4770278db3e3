"""
Configuration Management for splitstree

This module provides the configuration system for analyses and simulations,
using frozen dataclasses for clean parameter management. The configuration
system supports:

1. Default parameter values suitable for exploratory analyses
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation and type checking
5. Hierarchical configuration with component-specific settings

Configuration Structure:
- DistanceConfig: Distance method and saturation handling
- TreeConfig: Tree building method and rooting
- BootstrapConfig: Replicates, confidence level and seeding
- NetworkConfig: Distance networks and the consensus of replicate trees
- SimulationConfig: Coalescent tree and sequence simulation parameters
- OutputConfig: Output files and figure settings
- PipelineConfig: Master configuration combining all components

Example Usage:
    >>> from splitstree.config import get_default_config, load_config_from_file
    >>>
    >>> # Use defaults
    >>> config = get_default_config()
    >>> print(config.bootstrap.level)
    0.95
    >>>
    >>> # Load from file
    >>> config = load_config_from_file("my_analysis.yaml")
    >>>
    >>> # Update specific parameters
    >>> custom_config = config.update(
    ...     bootstrap__runs=1000,
    ...     distance__method="k2p"
    ... )
"""

from dataclasses import dataclass, field, fields, asdict, is_dataclass, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Union
import os
import json
import logging

import yaml

logger = logging.getLogger(__name__)

DISTANCE_METHODS = ["hamming", "jc", "k2p"]
TREE_METHODS = ["nj", "upgma"]
NETWORK_METHODS = ["neighbornet", "split_decomposition", "none"]
CONSENSUS_METHODS = ["majority", "strict", "none"]
EDGE_WEIGHTS = ["mean", "median", "count", "sum", "none"]
MODELS = ["JC69", "K2P", "F81", "HKY85", "GTR"]


# ============================================================================
# Distance Configuration
# ============================================================================

@dataclass(frozen=True)
class DistanceConfig:
    """
    Configuration for distance computation.

    Attributes
    ----------
    method : str
        Distance method (default: "hamming")
        Options: "hamming", "jc", "k2p"

    max_distance : float
        Distance assigned to saturated pairs and to pairs without
        comparable sites (default: 5.0)
    """
    method: str = "hamming"
    max_distance: float = 5.0

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.method not in DISTANCE_METHODS:
            raise ValueError(f"Invalid distance method: {self.method}")
        if self.max_distance <= 0:
            raise ValueError("max_distance must be positive")


# ============================================================================
# Tree Configuration
# ============================================================================

@dataclass(frozen=True)
class TreeConfig:
    """
    Configuration for tree building.

    Attributes
    ----------
    method : str
        Tree building method (default: "nj")
        Options: "nj", "upgma"

    midpoint_root : bool
        Midpoint root the point-estimate tree before output (default: False)
    """
    method: str = "nj"
    midpoint_root: bool = False

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.method not in TREE_METHODS:
            raise ValueError(f"Invalid tree method: {self.method}")


# ============================================================================
# Bootstrap Configuration
# ============================================================================

@dataclass(frozen=True)
class BootstrapConfig:
    """
    Configuration for bootstrapping and confidence networks.

    Attributes
    ----------
    runs : int
        Number of bootstrap replicates (default: 100)

    level : float
        Simultaneous confidence level for intervals and the confidence
        network (default: 0.95)

    seed : Optional[int]
        Random seed; None for a fresh seed on every run (default: None)

    save_trees : bool
        Keep the replicate trees in the result (default: False)

    confidence_network : bool
        Compute the confidence network from the replicates (default: True)

    Notes
    -----
    Interval estimates at level 0.95 need enough replicates to resolve the
    tails; a few hundred runs are a reasonable minimum for published
    results.
    """
    runs: int = 100
    level: float = 0.95
    seed: Optional[int] = None
    save_trees: bool = False
    confidence_network: bool = True

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.runs < 1:
            raise ValueError("runs must be at least 1")
        if not 0.0 < self.level <= 1.0:
            raise ValueError("level must be in (0, 1]")


# ============================================================================
# Network Configuration
# ============================================================================

@dataclass(frozen=True)
class NetworkConfig:
    """
    Configuration for split networks from distances and replicate trees.

    Attributes
    ----------
    method : str
        Network computed from the distances (default: "neighbornet")
        Options: "neighbornet", "split_decomposition", "none"

    threshold : float
        Smallest NeighborNet split weight kept (default: 1e-6)

    consensus : str
        Consensus tree of the bootstrap replicates (default: "majority")
        Options: "majority", "strict", "none"

    edge_weights : str
        Consensus edge weights (default: "mean")
        Options: "mean", "median", "count", "sum", "none"
    """
    method: str = "neighbornet"
    threshold: float = 1e-6
    consensus: str = "majority"
    edge_weights: str = "mean"

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.method not in NETWORK_METHODS:
            raise ValueError(f"Invalid network method: {self.method}")
        if self.threshold < 0:
            raise ValueError("threshold must be non-negative")
        if self.consensus not in CONSENSUS_METHODS:
            raise ValueError(f"Invalid consensus method: {self.consensus}")
        if self.edge_weights not in EDGE_WEIGHTS:
            raise ValueError(f"Invalid edge_weights: {self.edge_weights}")


# ============================================================================
# Simulation Configuration
# ============================================================================

@dataclass(frozen=True)
class SimulationConfig:
    """
    Configuration for coalescent tree and sequence simulation.

    Attributes
    ----------
    ntax : int
        Number of taxa (default: 10)

    nchar : int
        Number of sites (default: 1000)

    height : float
        Root-to-leaf height of the coalescent tree, in expected
        substitutions per site (default: 0.1)

    model : str
        Substitution model (default: "JC69")
        Options: "JC69", "K2P", "F81", "HKY85", "GTR"

    kappa : float
        Transition/transversion ratio for K2P and HKY85 (default: 2.0)

    freqs : List[float]
        Base frequencies of A, C, G, T for F81, HKY85 and GTR
        (default: equal)

    rates : List[float]
        GTR exchangeabilities AC, AG, AT, CG, CT, GT (default: all 1)

    gamma : float
        Gamma shape for rate variation across sites; <= 0 for equal rates
        (default: 0.0)

    pinv : float
        Proportion of invariable sites (default: 0.0)

    discard_constant : bool
        Redraw constant sites until every site is polymorphic
        (default: False)

    relax_sigma : float
        Sigma of a lognormal relaxed clock applied to the tree; 0 keeps a
        strict clock (default: 0.0)

    seed : Optional[int]
        Random seed (default: None)
    """
    ntax: int = 10
    nchar: int = 1000
    height: float = 0.1
    model: str = "JC69"
    kappa: float = 2.0
    freqs: List[float] = field(default_factory=lambda: [0.25, 0.25, 0.25, 0.25])
    rates: List[float] = field(default_factory=lambda: [1.0] * 6)
    gamma: float = 0.0
    pinv: float = 0.0
    discard_constant: bool = False
    relax_sigma: float = 0.0
    seed: Optional[int] = None

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.ntax < 2:
            raise ValueError("ntax must be at least 2")
        if self.nchar < 1:
            raise ValueError("nchar must be at least 1")
        if self.height <= 0:
            raise ValueError("height must be positive")
        if self.model.upper() not in MODELS:
            raise ValueError(f"Invalid model: {self.model}")
        if not 0.0 <= self.pinv < 1.0:
            raise ValueError("pinv must be in [0, 1)")
        if len(self.freqs) != 4 or len(self.rates) != 6:
            raise ValueError("freqs needs 4 values and rates needs 6 values")
        if self.relax_sigma < 0:
            raise ValueError("relax_sigma must be non-negative")

    def model_params(self) -> Dict[str, Any]:
        """Keyword arguments for ``splitstree.models.get_model``."""
        params: Dict[str, Any] = {'pinv': self.pinv, 'gamma': self.gamma}
        model = self.model.upper()
        if model in ("K2P", "HKY85"):
            params['kappa'] = self.kappa
        if model in ("F81", "HKY85", "GTR"):
            params['freqs'] = list(self.freqs)
        if model == "GTR":
            params['rates'] = list(self.rates)
        return params


# ============================================================================
# Output Configuration
# ============================================================================

@dataclass(frozen=True)
class OutputConfig:
    """
    Configuration for output files and figures.

    Attributes
    ----------
    write_nexus : bool
        Write a Nexus document with all blocks (default: True)

    write_figures : bool
        Generate Lento and interval plots and a tree figure (default: True)

    figure_format : str
        Output format for figures (default: "png")
        Options: "png", "pdf", "svg"

    figure_dpi : int
        Resolution for raster figures (default: 300)

    phylip_full_names : bool
        Write full taxon names in Phylip distance files instead of padded
        10-character names (default: False)
    """
    write_nexus: bool = True
    write_figures: bool = True
    figure_format: str = "png"
    figure_dpi: int = 300
    phylip_full_names: bool = False

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.figure_format not in ["png", "pdf", "svg"]:
            raise ValueError(f"Invalid figure_format: {self.figure_format}")
        if self.figure_dpi < 72:
            raise ValueError("figure_dpi must be at least 72")


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for analyses and simulations.

    Attributes
    ----------
    distance : DistanceConfig
        Distance computation configuration

    tree : TreeConfig
        Tree building configuration

    bootstrap : BootstrapConfig
        Bootstrap and confidence network configuration

    network : NetworkConfig
        Distance network and consensus tree configuration

    simulation : SimulationConfig
        Simulation configuration

    output : OutputConfig
        Output configuration

    log_level : str
        Logging level (default: "INFO")

    output_dir : Path
        Base output directory (default: "results")
    """
    distance: DistanceConfig = field(default_factory=DistanceConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    log_level: str = "INFO"
    output_dir: Path = field(default_factory=lambda: Path("results"))

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.output_dir, str):
            object.__setattr__(self, 'output_dir', Path(self.output_dir))

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Create a new configuration with updated values.

        Supports nested updates using double underscore notation:
        config.update(bootstrap__runs=1000)

        Parameters
        ----------
        **kwargs
            Configuration parameters to update. Use double underscore
            for nested parameters (e.g., distance__method)

        Returns
        -------
        PipelineConfig
            New configuration object with updates

        Examples
        --------
        >>> config = get_default_config()
        >>> new_config = config.update(
        ...     log_level="DEBUG",
        ...     bootstrap__runs=500,
        ...     output__figure_dpi=600
        ... )
        """
        top_level = {}
        nested: Dict[str, Dict[str, Any]] = {}

        for key, value in kwargs.items():
            if '__' in key:
                component, param = key.split('__', 1)
                nested.setdefault(component, {})[param] = value
            else:
                top_level[key] = value

        for component, updates in nested.items():
            current = getattr(self, component)
            top_level[component] = replace(current, **updates)

        return replace(self, **top_level)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Returns
        -------
        Dict[str, Any]
            Configuration as nested dictionary
        """
        return asdict(self)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to YAML file.

        Parameters
        ----------
        output_path : Union[str, Path]
            Output file path
        """
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {path}")

    def to_json(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to JSON file.

        Parameters
        ----------
        output_path : Union[str, Path]
            Output file path
        """
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to {path}")


# ============================================================================
# Helper Functions
# ============================================================================

def get_default_config() -> PipelineConfig:
    """
    Get default pipeline configuration.

    Examples
    --------
    >>> config = get_default_config()
    >>> print(config.bootstrap.runs)
    100
    """
    return PipelineConfig()


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Automatically detects file format based on extension.

    Parameters
    ----------
    config_path : Union[str, Path]
        Path to configuration file (.yaml, .yml, or .json)

    Returns
    -------
    PipelineConfig
        Loaded configuration

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ValueError
        If file format is not supported
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
    elif suffix == '.json':
        with open(path, 'r') as f:
            config_dict = json.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}")

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict)


_SECTIONS = {
    'distance': DistanceConfig,
    'tree': TreeConfig,
    'bootstrap': BootstrapConfig,
    'network': NetworkConfig,
    'simulation': SimulationConfig,
    'output': OutputConfig,
}


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """Convert a (possibly partial) nested dictionary to a PipelineConfig."""
    config_dict = dict(config_dict)
    nested_configs = {}
    for name, section in _SECTIONS.items():
        if name in config_dict:
            nested_configs[name] = section(**(config_dict.pop(name) or {}))
    return PipelineConfig(**nested_configs, **config_dict)


def _convert_paths_to_strings(obj: Any) -> Any:
    """Recursively convert Path objects to strings for serialization."""
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _convert_paths_to_strings(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_paths_to_strings(item) for item in obj]
    elif isinstance(obj, tuple):
        return tuple(_convert_paths_to_strings(item) for item in obj)
    else:
        return obj


def _known_config_keys() -> set:
    """Keys accepted by ``PipelineConfig.update``: top-level and section__field."""
    keys = set()
    defaults = PipelineConfig()
    for top in fields(defaults):
        section = getattr(defaults, top.name)
        if is_dataclass(section):
            keys.update(f"{top.name}__{sub.name}" for sub in fields(section))
        else:
            keys.add(top.name)
    return keys


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Environment variables should be prefixed with SPLITSTREE_
    and use double underscores for nesting:

    SPLITSTREE_BOOTSTRAP__RUNS=1000
    SPLITSTREE_LOG_LEVEL=DEBUG

    Variables that do not name a configuration field (for example
    SPLITSTREE_HOME) are ignored.

    Returns
    -------
    Dict[str, Any]
        Configuration overrides, ready for ``PipelineConfig.update``
    """
    prefix = "SPLITSTREE_"
    known = _known_config_keys()
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            if config_key not in known:
                logger.debug(f"Ignoring environment variable {key}: not a configuration field")
                continue
            overrides[config_key] = _parse_env_value(value)

    if overrides:
        logger.debug(f"Loaded {len(overrides)} configuration overrides from environment")

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ['true', 'yes']:
        return True
    if value.lower() in ['false', 'no']:
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Checks for settings that are legal but likely to give poor results.

    Examples
    --------
    >>> for warning in validate_config(get_default_config()):
    ...     print(f"Warning: {warning}")
    """
    warnings = []

    bootstrap = config.bootstrap
    if bootstrap.runs < 100:
        warnings.append(
            f"Only {bootstrap.runs} bootstrap runs; support values and intervals "
            "will be coarse."
        )
    if bootstrap.runs * (1.0 - bootstrap.level) < 1.0:
        warnings.append(
            f"{bootstrap.runs} runs cannot resolve the tail of a {bootstrap.level} "
            "confidence level; intervals will span the full replicate range."
        )

    if config.distance.method == "hamming" and config.tree.method == "upgma":
        warnings.append(
            "UPGMA on uncorrected distances assumes a clock and no saturation."
        )

    if config.network.consensus == "strict" and bootstrap.runs >= 100:
        warnings.append(
            "A strict consensus of many bootstrap trees is usually close to a star tree."
        )

    sim = config.simulation
    if sim.model.upper() == "JC69" and sim.freqs != [0.25, 0.25, 0.25, 0.25]:
        warnings.append("JC69 ignores the configured base frequencies.")
    if sim.height > 2.0:
        warnings.append(
            f"Tree height {sim.height} is large; simulated sequences may be saturated."
        )

    return warnings


# ============================================================================
# Configuration Templates
# ============================================================================

def create_config_template(output_path: Union[str, Path], format: str = "yaml") -> None:
    """
    Create a configuration template file holding all default values.

    Parameters
    ----------
    output_path : Union[str, Path]
        Output file path
    format : str
        File format: "yaml" or "json" (default: "yaml")
    """
    config = get_default_config()

    if format.lower() == "yaml":
        config.to_yaml(output_path)
    elif format.lower() == "json":
        config.to_json(output_path)
    else:
        raise ValueError(f"Unsupported format: {format}")

    logger.info(f"Created configuration template: {output_path}")
