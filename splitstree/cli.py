#!/usr/bin/env python3
"""
splitstree Command-Line Interface

Bootstrap confidence networks from aligned sequences, and simulation of
coalescent trees and sequence alignments.
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__, config, core, utils
from .config import CONSENSUS_METHODS, NETWORK_METHODS
from .distances import DISTANCE_METHODS
from .phylogenetics import TREE_METHODS

logger = logging.getLogger(__name__)

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']
MODEL_CHOICES = ['JC69', 'K2P', 'F81', 'HKY85', 'GTR']


def _base_config(config_file: Optional[Path]) -> config.PipelineConfig:
    """Defaults, then the config file, then SPLITSTREE_ environment overrides."""
    if config_file is not None:
        cfg = config.load_config_from_file(config_file)
    else:
        cfg = config.get_default_config()
    overrides = config.load_config_from_env()
    if overrides:
        cfg = cfg.update(**overrides)
    return cfg


def _overrides(args: argparse.Namespace, mapping: dict) -> dict:
    """Keep only the options given on the command line."""
    return {key: getattr(args, dest) for dest, key in mapping.items() if getattr(args, dest) is not None}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='splitstree',
        description='splitstree: bootstrap confidence networks and phylogenetic simulation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Bootstrap analysis with defaults (100 replicates, 95% confidence network)
  splitstree analyze data/primates.fasta

  # More replicates, a 90% network and a fixed seed
  splitstree analyze data/primates.fasta --runs 1000 --level 0.9 --seed 42

  # Kimura 2-parameter distances and UPGMA trees
  splitstree analyze data/primates.fasta --distance k2p --tree-method upgma

  # Simulate 20 taxa and 500 sites under HKY85 with gamma rates
  splitstree simulate --ntax 20 --nchar 500 --model HKY85 --gamma 0.5 --seed 1

Notes:
  - Settings are read from --config (YAML or JSON), then SPLITSTREE_*
    environment variables, then command-line options
        """
    )
    parser.add_argument('--version', action='version', version=f'splitstree {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    analyze = subparsers.add_parser('analyze', help='Bootstrap an alignment and build the confidence network')
    analyze.add_argument('alignment', type=Path, help='Aligned sequences (FastA, Phylip, Nexus, Clustal)')
    analyze.add_argument(
        '--output', '--output-dir', type=Path, default=None,
        help='Output directory (default: {dataset}_output in current directory)',
    )
    analyze.add_argument('--runs', type=int, default=None, help='Number of bootstrap replicates (default: 100)')
    analyze.add_argument(
        '--level', type=float, default=None,
        help='Confidence level of the network and intervals (default: 0.95)',
    )
    analyze.add_argument('--distance', choices=DISTANCE_METHODS, default=None, help='Distance method (default: hamming)')
    analyze.add_argument('--tree-method', choices=TREE_METHODS, default=None, help='Tree method (default: nj)')
    analyze.add_argument(
        '--network', choices=NETWORK_METHODS, default=None,
        help='Network from the distances (default: neighbornet)'
    )
    analyze.add_argument(
        '--consensus', choices=CONSENSUS_METHODS, default=None,
        help='Consensus tree of the bootstrap replicates (default: majority)'
    )
    analyze.add_argument('--seed', type=int, default=None, help='Random seed for resampling')
    analyze.add_argument('--save-trees', action='store_true', help='Write all replicate trees')
    analyze.add_argument('--no-figures', action='store_true', help='Skip figure generation')
    analyze.add_argument('--config', type=Path, default=None, help='Configuration file (YAML or JSON)')
    analyze.add_argument('--log-level', choices=LOG_LEVELS, default=None, help='Logging verbosity (default: INFO)')

    simulate = subparsers.add_parser('simulate', help='Simulate a coalescent tree and an alignment')
    simulate.add_argument('--ntax', type=int, default=None, help='Number of taxa (default: 10)')
    simulate.add_argument('--nchar', type=int, default=None, help='Number of sites (default: 1000)')
    simulate.add_argument('--height', type=float, default=None, help='Tree height (default: 0.1)')
    simulate.add_argument('--model', choices=MODEL_CHOICES, default=None, help='Substitution model (default: JC69)')
    simulate.add_argument('--gamma', type=float, default=None, help='Gamma shape; <= 0 for equal rates')
    simulate.add_argument('--pinv', type=float, default=None, help='Proportion of invariable sites')
    simulate.add_argument('--seed', type=int, default=None, help='Random seed')
    simulate.add_argument(
        '--output', '--output-dir', type=Path, default=Path('simulation_output'),
        help='Output directory (default: simulation_output)',
    )
    simulate.add_argument('--config', type=Path, default=None, help='Configuration file (YAML or JSON)')
    simulate.add_argument('--log-level', choices=LOG_LEVELS, default=None, help='Logging verbosity (default: INFO)')

    return parser


def run_analyze(args: argparse.Namespace) -> int:
    if not args.alignment.exists():
        print(f"Error: Alignment file not found: {args.alignment}", file=sys.stderr)
        return 1

    dataset = utils.dataset_name_from_path(args.alignment)
    output_dir = (args.output if args.output else Path(f"{dataset}_output")).resolve()

    cfg = _base_config(args.config)
    overrides = _overrides(args, {
        'runs': 'bootstrap__runs',
        'level': 'bootstrap__level',
        'seed': 'bootstrap__seed',
        'distance': 'distance__method',
        'tree_method': 'tree__method',
        'network': 'network__method',
        'consensus': 'network__consensus',
        'log_level': 'log_level',
    })
    if args.save_trees:
        overrides['bootstrap__save_trees'] = True
    if args.no_figures:
        overrides['output__write_figures'] = False
    cfg = cfg.update(output_dir=output_dir, **overrides)

    print("=" * 80)
    print("splitstree analysis")
    print("=" * 80)
    print(f"Dataset: {dataset}")
    print(f"Input: {args.alignment}")
    print(f"Output: {output_dir}")
    print()
    print("Parameters:")
    print(f"  Distance: {cfg.distance.method}")
    print(f"  Tree method: {cfg.tree.method}")
    print(f"  Bootstrap runs: {cfg.bootstrap.runs}")
    print(f"  Confidence level: {cfg.bootstrap.level} ({cfg.bootstrap.level*100:.0f}%)")
    print("=" * 80)
    print()

    results = core.run_pipeline(str(args.alignment), str(output_dir), cfg, dataset_name=dataset)
    if results['errors']:
        print(f"Completed with {len(results['errors'])} warning(s); see {output_dir}")
    return 0 if results['success'] else 1


def run_simulate(args: argparse.Namespace) -> int:
    cfg = _base_config(args.config)
    overrides = _overrides(args, {
        'ntax': 'simulation__ntax',
        'nchar': 'simulation__nchar',
        'height': 'simulation__height',
        'model': 'simulation__model',
        'gamma': 'simulation__gamma',
        'pinv': 'simulation__pinv',
        'seed': 'simulation__seed',
        'log_level': 'log_level',
    })
    output_dir = args.output.resolve()
    cfg = cfg.update(output_dir=output_dir, **overrides)

    results = core.run_simulation(str(output_dir), cfg)
    if results['success']:
        print(results['tree'])
        print(f"Wrote {len(results['files'])} files to {output_dir}")
    return 0 if results['success'] else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == 'analyze':
            return run_analyze(args)
        return run_simulate(args)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"{args.command} failed with error: {e}", exc_info=True)
        print(f"\nError: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
