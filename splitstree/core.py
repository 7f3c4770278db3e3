"""
Core Pipeline Orchestration for splitstree

This module coordinates complete analyses from an alignment file through
written results, and complete simulations from a configuration.

The analysis pipeline integrates all steps:
1. Alignment input and validation
2. Distance computation, the point-estimate tree and a distance network
   (NeighborNet or split decomposition)
3. Bootstrap replicates, split support and confidence intervals
4. The confidence network and the consensus tree of the bootstrap splits
5. Output of all blocks (Nexus, Phylip, Newick, TSV tables)
6. Figures (Lento plot, confidence intervals, tree)

The simulation pipeline draws a coalescent tree, optionally relaxes the
clock, evolves sequences down the tree and writes the tree, the alignment
and the additive distances.

Example Usage:
    >>> from splitstree.core import run_pipeline
    >>> from splitstree.config import get_default_config
    >>> config = get_default_config().update(bootstrap__runs=200, bootstrap__seed=7)
    >>> results = run_pipeline("primates.fasta", "results/primates", config)
    >>> print(results['n_network_splits'])
"""

from typing import Any, Dict, Optional
from pathlib import Path
import logging
import time

from . import (
    analysis, bootstrap, consensus, exports, networks, nexus, phylogenetics, simulate, utils,
    visualization,
)
from .blocks import Characters, CharactersFormat, Taxa, Trees
from .config import PipelineConfig, get_default_config, validate_config
from .distances import compute_distances
from .imports import import_alignment
from .models import get_model

# Configure logging
logger = logging.getLogger(__name__)


def run_pipeline(
    alignment_path: str,
    output_dir: str,
    config: Optional[PipelineConfig] = None,
    dataset_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run the complete bootstrap and confidence network analysis.

    Pipeline Phases:
    1. Alignment loading
    2. Distances, point-estimate tree and distance network
    3. Bootstrap, confidence network and consensus tree
    4. Output files
    5. Figures

    Parameters
    ----------
    alignment_path : str
        Aligned sequences (FastA, Phylip, Nexus or Clustal)
    output_dir : str
        Directory for output files (created if it doesn't exist)
    config : PipelineConfig, optional
        Analysis configuration (default: ``get_default_config()``)
    dataset_name : str, optional
        Prefix of output file names (default: derived from the alignment
        file name)

    Returns
    -------
    Dict[str, Any]
        Dictionary containing:
        - 'success': bool - Whether the pipeline completed
        - 'output_dir': Path - Output directory path
        - 'dataset': str - Dataset name
        - 'ntax': int - Number of taxa
        - 'nchar': int - Number of sites
        - 'n_tree_splits': int - Splits of the point-estimate tree
        - 'n_bootstrap_splits': int - Distinct splits over all replicates
        - 'n_network_splits': int - Splits in the confidence network
        - 'n_distance_network_splits': int - Splits in the distance network
        - 'n_consensus_splits': int - Splits in the bootstrap consensus tree
        - 'statistics': Dict[str, Any] - Summary statistics
        - 'files': Dict[str, Path] - Paths to output files
        - 'errors': List[str] - Non-critical errors encountered

    Raises
    ------
    FileNotFoundError
        If the alignment does not exist
    ValueError
        If the alignment cannot be read or has fewer than two taxa
    splitstree.bootstrap.BootstrapError
        If a bootstrap replicate fails
    """
    results: Dict[str, Any] = {
        'success': False,
        'output_dir': Path(output_dir),
        'errors': [],
        'files': {},
    }
    cfg = config if config is not None else get_default_config()
    start = time.time()

    try:
        # =====================================================================
        # Setup and Validation
        # =====================================================================

        input_path = Path(alignment_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Alignment not found: {alignment_path}")

        if dataset_name is None:
            dataset_name = utils.dataset_name_from_path(input_path)
        results['dataset'] = dataset_name

        output_path = utils.create_output_directory(output_dir)
        dirs = _setup_directories(output_path)

        log_file = output_path / f"{dataset_name}_pipeline.log"
        utils.setup_logging(log_level=cfg.log_level, log_file=str(log_file))

        for warning in validate_config(cfg):
            logger.warning(f"Configuration: {warning}")

        logger.info("=" * 80)
        logger.info(f"splitstree analysis - {dataset_name}")
        logger.info("=" * 80)
        logger.info(f"Input: {alignment_path}")
        logger.info(f"Output: {output_dir}")
        logger.info(f"Distance: {cfg.distance.method}, tree: {cfg.tree.method}")
        logger.info(f"Bootstrap: {cfg.bootstrap.runs} runs, level {cfg.bootstrap.level}")
        logger.info("")

        # =====================================================================
        # Phase 1: Alignment
        # =====================================================================

        logger.info("PHASE 1: Loading Alignment")
        logger.info("-" * 80)
        taxa, characters = import_alignment(input_path)
        if taxa.ntax < 2:
            raise ValueError(f"Need at least two taxa, found {taxa.ntax}")
        results['ntax'] = taxa.ntax
        results['nchar'] = characters.nchar
        logger.info(f"  ✓ Loaded {taxa.ntax} taxa, {characters.nchar} sites")

        # =====================================================================
        # Phase 2: Distances and Tree
        # =====================================================================

        logger.info("")
        logger.info("PHASE 2: Distances and Tree")
        logger.info("-" * 80)
        distances = compute_distances(characters, cfg.distance.method, cfg.distance.max_distance)
        tree = phylogenetics.build_tree(taxa, distances, cfg.tree.method)
        if cfg.tree.midpoint_root:
            tree = phylogenetics.midpoint_root(tree, taxa.ntax)
        logger.info(f"  ✓ Built {cfg.tree.method.upper()} tree from {cfg.distance.method} distances")

        distance_network = None
        if cfg.network.method != "none":
            distance_network = networks.build_network(
                taxa, distances, cfg.network.method, threshold=cfg.network.threshold
            )
            logger.info(f"  ✓ {cfg.network.method} network with {distance_network.nsplits} splits")
        results['n_distance_network_splits'] = (
            distance_network.nsplits if distance_network is not None else 0
        )

        # =====================================================================
        # Phase 3: Bootstrap and Confidence Network
        # =====================================================================

        logger.info("")
        logger.info("PHASE 3: Bootstrap and Confidence Network")
        logger.info("-" * 80)
        boot = bootstrap.run_bootstrap(taxa, characters, cfg, tree=tree)
        results['n_tree_splits'] = boot.splits.nsplits
        results['n_bootstrap_splits'] = boot.all_splits.nsplits
        results['n_network_splits'] = boot.network.nsplits if boot.network is not None else 0
        logger.info(f"  ✓ {boot.all_splits.nsplits} distinct splits in {boot.runs} replicates")
        if boot.network is not None:
            logger.info(f"  ✓ Confidence network with {boot.network.nsplits} splits")

        consensus_splits = None
        if cfg.network.consensus != "none":
            consensus_splits = consensus.consensus_tree(
                boot.matrix, cfg.network.consensus, cfg.network.edge_weights
            )
            logger.info(f"  ✓ {cfg.network.consensus.capitalize()} consensus with {consensus_splits.nsplits} splits")
        results['n_consensus_splits'] = consensus_splits.nsplits if consensus_splits is not None else 0

        results['statistics'] = {
            'distances': analysis.distance_stats(distances),
            'tree_splits': analysis.splits_stats(boot.splits),
            'proportion_polymorphic': analysis.proportion_polymorphic(characters),
        }
        if boot.network is not None:
            results['statistics']['network'] = analysis.splits_stats(boot.network)
        if distance_network is not None:
            results['statistics']['distance_network'] = analysis.splits_stats(distance_network)
            results['statistics']['distance_network']['fit'] = networks.least_squares_fit(
                distance_network, distances
            )
        if characters.format.datatype == "dna":
            results['statistics']['diversity'] = analysis.nucleotide_diversity(characters)

        # =====================================================================
        # Phase 4: Output Files
        # =====================================================================

        logger.info("")
        logger.info("PHASE 4: Writing Results")
        logger.info("-" * 80)
        files = results['files']

        trees = Trees(taxa)
        trees.add_tree(cfg.tree.method, tree)

        newick_path = dirs['trees'] / f"{dataset_name}_tree.nwk"
        files['tree'] = exports.export_newick(newick_path, trees)
        if boot.trees is not None:
            files['bootstrap_trees'] = exports.export_newick(
                dirs['trees'] / f"{dataset_name}_bootstrap_trees.nwk", boot.trees
            )

        distances_path = dirs['distances'] / f"{dataset_name}_distances.phy"
        exports.export_phylip_distances(
            distances_path, taxa, distances, full_names=cfg.output.phylip_full_names
        )
        files['distances'] = distances_path

        splits_path = dirs['splits'] / f"{dataset_name}_tree_splits.tsv"
        _write_splits_table(boot.splits, taxa, splits_path)
        files['tree_splits'] = splits_path

        all_path = dirs['splits'] / f"{dataset_name}_bootstrap_splits.tsv"
        _write_splits_table(boot.all_splits, taxa, all_path)
        files['bootstrap_splits'] = all_path

        files['lento'] = exports.export_lento(
            dirs['splits'] / f"{dataset_name}_lento.tsv", taxa, boot.all_splits
        )

        if boot.network is not None:
            network_path = dirs['splits'] / f"{dataset_name}_confidence_network.tsv"
            _write_splits_table(boot.network, taxa, network_path)
            files['confidence_network'] = network_path

        if distance_network is not None:
            distance_network_path = dirs['splits'] / f"{dataset_name}_{cfg.network.method}.tsv"
            _write_splits_table(distance_network, taxa, distance_network_path)
            files['distance_network'] = distance_network_path

        if consensus_splits is not None:
            consensus_table = dirs['splits'] / f"{dataset_name}_consensus_splits.tsv"
            _write_splits_table(consensus_splits, taxa, consensus_table)
            files['consensus_splits'] = consensus_table
            consensus_trees = Trees(taxa)
            consensus_trees.add_tree(cfg.network.consensus, consensus.splits_to_tree(consensus_splits))
            files['consensus_tree'] = exports.export_newick(
                dirs['trees'] / f"{dataset_name}_consensus_tree.nwk", consensus_trees
            )

        if cfg.output.write_nexus:
            nexus_path = output_path / f"{dataset_name}.nex"
            nexus.write_nexus(
                nexus_path, taxa,
                characters=characters,
                distances=distances,
                splits=boot.network if boot.network is not None else boot.splits,
                trees=trees,
            )
            files['nexus'] = nexus_path

        params_path = output_path / f"{dataset_name}_parameters.json"
        cfg.to_json(params_path)
        files['parameters'] = params_path
        logger.info(f"  ✓ Wrote {len(files)} result files")

        # =====================================================================
        # Phase 5: Figures
        # =====================================================================

        if cfg.output.write_figures:
            logger.info("")
            logger.info("PHASE 5: Generating Figures")
            logger.info("-" * 80)
            fmt = cfg.output.figure_format
            dpi = cfg.output.figure_dpi
            try:
                lento_plot = visualization.plot_lento(
                    boot.all_splits, taxa, dirs['figures'] / f"{dataset_name}_lento.{fmt}", dpi=dpi
                )
                if lento_plot is not None:
                    files['lento_plot'] = lento_plot
                interval_plot = visualization.plot_confidence_intervals(
                    boot.splits, dirs['figures'] / f"{dataset_name}_intervals.{fmt}", dpi=dpi
                )
                if interval_plot is not None:
                    files['interval_plot'] = interval_plot
                files['tree_plot'] = visualization.plot_tree(
                    taxa, tree, dirs['figures'] / f"{dataset_name}_tree.{fmt}", dpi=dpi
                )
                files['distance_plot'] = visualization.plot_distances(
                    taxa, distances, dirs['figures'] / f"{dataset_name}_distances.{fmt}", dpi=dpi
                )
                logger.info("  ✓ Generated figures")
            except Exception as e:
                logger.warning(f"  ⚠ Figure generation had errors: {e}")
                results['errors'].append(f"Figure errors: {e}")

        # =====================================================================
        # Pipeline Complete
        # =====================================================================

        results['success'] = True
        logger.info("")
        logger.info("=" * 80)
        logger.info(f"✓ Analysis completed for {dataset_name} in {utils.format_elapsed_time(time.time() - start)}")
        logger.info(f"  Taxa: {taxa.ntax}, sites: {characters.nchar}")
        logger.info(f"  Network splits: {results['n_network_splits']}")
        logger.info(f"  Distance network splits: {results['n_distance_network_splits']}")
        logger.info(f"  Output: {output_dir}")
        logger.info("=" * 80)
        return results

    except Exception as e:
        logger.error(f"Pipeline failed with error: {e}", exc_info=True)
        results['success'] = False
        results['errors'].append(str(e))
        raise


def run_simulation(
    output_dir: str,
    config: Optional[PipelineConfig] = None,
    dataset_name: str = "simulated",
) -> Dict[str, Any]:
    """
    Simulate a coalescent tree and an alignment evolved along it.

    Taxa are named t1..tn. Rate variation across sites (gamma shape and
    invariable sites) is applied per site, so the substitution model
    itself is built with equal rates.

    Parameters
    ----------
    output_dir : str
        Directory for output files
    config : PipelineConfig, optional
        Uses the simulation and output sections
    dataset_name : str, optional
        Prefix of output file names (default: "simulated")

    Returns
    -------
    Dict[str, Any]
        'success', 'ntax', 'nchar', 'model', 'tree' (Newick string),
        'files' and 'errors'
    """
    cfg = config if config is not None else get_default_config()
    sim = cfg.simulation
    results: Dict[str, Any] = {
        'success': False,
        'output_dir': Path(output_dir),
        'errors': [],
        'files': {},
    }

    try:
        output_path = utils.create_output_directory(output_dir)
        utils.setup_logging(log_level=cfg.log_level, log_file=str(output_path / f"{dataset_name}_simulation.log"))
        utils.log_function_call("run_simulation", ntax=sim.ntax, nchar=sim.nchar, model=sim.model, seed=sim.seed)

        rng = simulate.RandomGenerator(sim.seed)
        taxa = Taxa([f"t{i}" for i in range(1, sim.ntax + 1)])

        tree = simulate.random_coalescent_tree(taxa, sim.height, rng)
        if sim.relax_sigma > 0:
            simulate.relax_clock_lognormal(tree, sim.relax_sigma, rng)
        logger.info(f"Simulated coalescent tree with {sim.ntax} taxa, height {sim.height}")

        params = sim.model_params()
        params.pop('gamma')
        params.pop('pinv')
        model = get_model(sim.model, **params)
        site_rates = None
        if sim.gamma > 0 or sim.pinv > 0:
            site_rates = simulate.GammaInvariantRates(sim.gamma, sim.pinv, rng)

        characters = Characters(sim.ntax, sim.nchar, CharactersFormat(datatype="dna"))
        simulate.simulate_characters(
            characters, tree, model, site_rates=site_rates,
            discard_constant=sim.discard_constant, rng=rng,
        )
        logger.info(f"Simulated {sim.nchar} sites under {model.name}")

        trees = Trees(taxa)
        trees.add_tree("coalescent", tree)
        distances = simulate.additive_distances(taxa, tree)

        files = results['files']
        files['tree'] = exports.export_newick(output_path / f"{dataset_name}_tree.nwk", trees)
        files['alignment'] = exports.export_fasta(output_path / f"{dataset_name}.fasta", taxa, characters)
        if cfg.output.write_nexus:
            nexus_path = output_path / f"{dataset_name}.nex"
            nexus.write_nexus(nexus_path, taxa, characters=characters, distances=distances, trees=trees)
            files['nexus'] = nexus_path
        params_path = output_path / f"{dataset_name}_parameters.json"
        cfg.to_json(params_path)
        files['parameters'] = params_path

        results.update({
            'success': True,
            'ntax': sim.ntax,
            'nchar': sim.nchar,
            'model': model.name,
            'tree': trees.to_newick(1),
        })
        logger.info(f"✓ Simulation written to {output_path}")
        return results

    except Exception as e:
        logger.error(f"Simulation failed with error: {e}", exc_info=True)
        results['errors'].append(str(e))
        raise


def _write_splits_table(splits, taxa: Taxa, path: Path) -> Path:
    """Write a split summary with taxon labels for each split."""
    df = splits.to_dataframe()
    df['labels'] = [
        ",".join(taxa.get_label(int(t)) for t in row.split())
        for row in df['taxa']
    ]
    df.to_csv(path, sep='\t', index=False, float_format='%.10g')
    logger.debug(f"Wrote {len(df)} splits to {path}")
    return path


def _setup_directories(base_output: Path) -> Dict[str, Path]:
    """
    Create organized output directory structure.

    Parameters
    ----------
    base_output : Path
        Base output directory

    Returns
    -------
    Dict[str, Path]
        Dictionary mapping directory names to paths
    """
    dirs = {
        'base': base_output,
        'trees': base_output / 'trees',
        'distances': base_output / 'distances',
        'splits': base_output / 'splits',
        'figures': base_output / 'figures',
    }

    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)

    return dirs
