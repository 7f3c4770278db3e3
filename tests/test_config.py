"""
Unit tests for configuration management.

Tests cover:
- Default values and validation of every section
- Nested updates with double underscore notation
- YAML/JSON round trips and partial files
- Environment variable overrides
- Configuration warnings
"""

import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from splitstree.config import (
    BootstrapConfig,
    DistanceConfig,
    NetworkConfig,
    OutputConfig,
    PipelineConfig,
    SimulationConfig,
    TreeConfig,
    create_config_template,
    get_default_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)


class TestDefaults(unittest.TestCase):

    def test_default_values(self):
        config = get_default_config()
        self.assertEqual(config.distance.method, "hamming")
        self.assertEqual(config.distance.max_distance, 5.0)
        self.assertEqual(config.tree.method, "nj")
        self.assertEqual(config.bootstrap.runs, 100)
        self.assertEqual(config.bootstrap.level, 0.95)
        self.assertIsNone(config.bootstrap.seed)
        self.assertTrue(config.bootstrap.confidence_network)
        self.assertEqual(config.network.method, "neighbornet")
        self.assertEqual(config.network.consensus, "majority")
        self.assertEqual(config.network.edge_weights, "mean")
        self.assertEqual(config.simulation.model, "JC69")
        self.assertEqual(config.output_dir, Path("results"))

    def test_output_dir_string_converted(self):
        self.assertEqual(PipelineConfig(output_dir="out").output_dir, Path("out"))


class TestValidation(unittest.TestCase):

    def test_invalid_sections(self):
        cases = [
            (DistanceConfig, {'method': 'logdet'}),
            (DistanceConfig, {'max_distance': 0.0}),
            (TreeConfig, {'method': 'ml'}),
            (BootstrapConfig, {'runs': 0}),
            (BootstrapConfig, {'level': 0.0}),
            (BootstrapConfig, {'level': 1.2}),
            (NetworkConfig, {'method': 'median'}),
            (NetworkConfig, {'threshold': -1.0}),
            (NetworkConfig, {'consensus': 'greedy'}),
            (NetworkConfig, {'edge_weights': 'max'}),
            (SimulationConfig, {'ntax': 1}),
            (SimulationConfig, {'height': -1.0}),
            (SimulationConfig, {'model': 'TN93'}),
            (SimulationConfig, {'pinv': 1.0}),
            (SimulationConfig, {'freqs': [0.5, 0.5]}),
            (OutputConfig, {'figure_format': 'tiff'}),
            (OutputConfig, {'figure_dpi': 10}),
            (PipelineConfig, {'log_level': 'LOUD'}),
        ]
        for section, kwargs in cases:
            with self.subTest(section=section.__name__, **kwargs):
                with self.assertRaises(ValueError):
                    section(**kwargs)

    def test_model_params(self):
        params = SimulationConfig(model="HKY85", kappa=4.0, gamma=0.5).model_params()
        self.assertEqual(params['kappa'], 4.0)
        self.assertEqual(params['gamma'], 0.5)
        self.assertIn('freqs', params)
        self.assertNotIn('rates', params)
        self.assertEqual(set(SimulationConfig().model_params()), {'pinv', 'gamma'})


class TestUpdate(unittest.TestCase):

    def test_nested_update(self):
        config = get_default_config()
        updated = config.update(bootstrap__runs=500, distance__method="k2p", log_level="DEBUG")
        self.assertEqual(updated.bootstrap.runs, 500)
        self.assertEqual(updated.distance.method, "k2p")
        self.assertEqual(updated.log_level, "DEBUG")
        # Original is unchanged
        self.assertEqual(config.bootstrap.runs, 100)

    def test_update_validates(self):
        with self.assertRaises(ValueError):
            get_default_config().update(bootstrap__level=2.0)


class TestFiles(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_yaml_round_trip(self):
        config = get_default_config().update(
            bootstrap__runs=250, simulation__model="GTR", network__method="split_decomposition"
        )
        path = self.temp_dir / "config.yaml"
        config.to_yaml(path)
        loaded = load_config_from_file(path)
        self.assertEqual(loaded, config)

    def test_json_round_trip(self):
        config = get_default_config().update(tree__method="upgma", output__figure_format="pdf")
        path = self.temp_dir / "config.json"
        config.to_json(path)
        self.assertEqual(json.loads(path.read_text())['tree']['method'], "upgma")
        self.assertEqual(load_config_from_file(path), config)

    def test_partial_file(self):
        path = self.temp_dir / "partial.yml"
        path.write_text(yaml.safe_dump({'bootstrap': {'runs': 42}}))
        config = load_config_from_file(path)
        self.assertEqual(config.bootstrap.runs, 42)
        self.assertEqual(config.bootstrap.level, 0.95)

    def test_empty_yaml(self):
        path = self.temp_dir / "empty.yaml"
        path.write_text("")
        self.assertEqual(load_config_from_file(path), get_default_config())

    def test_missing_and_unsupported(self):
        with self.assertRaises(FileNotFoundError):
            load_config_from_file(self.temp_dir / "missing.yaml")
        path = self.temp_dir / "config.toml"
        path.write_text("")
        with self.assertRaises(ValueError):
            load_config_from_file(path)

    def test_template(self):
        path = self.temp_dir / "template.yaml"
        create_config_template(path)
        self.assertEqual(load_config_from_file(path), get_default_config())
        with self.assertRaises(ValueError):
            create_config_template(self.temp_dir / "template.ini", format="ini")


class TestEnvironment(unittest.TestCase):

    def test_overrides(self):
        env = {
            'SPLITSTREE_BOOTSTRAP__RUNS': '1000',
            'SPLITSTREE_BOOTSTRAP__LEVEL': '0.9',
            'SPLITSTREE_TREE__MIDPOINT_ROOT': 'true',
            'SPLITSTREE_DISTANCE__METHOD': 'jc',
        }
        with patch.dict(os.environ, env, clear=True):
            overrides = load_config_from_env()
        self.assertEqual(overrides, {
            'bootstrap__runs': 1000,
            'bootstrap__level': 0.9,
            'tree__midpoint_root': True,
            'distance__method': 'jc',
        })
        config = get_default_config().update(**overrides)
        self.assertTrue(config.tree.midpoint_root)

    def test_no_overrides(self):
        with patch.dict(os.environ, {'PATH': '/bin'}, clear=True):
            self.assertEqual(load_config_from_env(), {})

    def test_unrelated_variables_ignored(self):
        env = {
            'SPLITSTREE_HOME': '/opt/splitstree',
            'SPLITSTREE_BOOTSTRAP__COLOR': 'red',
            'SPLITSTREE_NOSUCH__RUNS': '3',
            'SPLITSTREE_LOG_LEVEL': 'DEBUG',
        }
        with patch.dict(os.environ, env, clear=True):
            overrides = load_config_from_env()
        self.assertEqual(overrides, {'log_level': 'DEBUG'})
        self.assertEqual(get_default_config().update(**overrides).log_level, 'DEBUG')


class TestWarnings(unittest.TestCase):

    def test_defaults_are_quiet(self):
        self.assertEqual(validate_config(get_default_config()), [])

    def test_warnings(self):
        config = get_default_config().update(
            bootstrap__runs=10,
            tree__method="upgma",
            simulation__height=3.0,
        )
        warnings = validate_config(config)
        self.assertEqual(len(warnings), 4)
        self.assertTrue(any("UPGMA" in w for w in warnings))

    def test_strict_consensus_warning(self):
        warnings = validate_config(get_default_config().update(network__consensus="strict"))
        self.assertEqual(len(warnings), 1)
        self.assertIn("strict consensus", warnings[0])


if __name__ == '__main__':
    unittest.main()
