"""
Configuration loaders for YAML and JSON files.

This module provides functions to load and validate simulation configurations
from YAML/JSON files. Files may group fields into sections::

    simulation:
      n_particles: 1024
      dt: 0.001
    domain:
      bin_size: 0.85
      bin_count: 32
      boundary: wrap
    physics:
      cutoff: 0.85
      species:
        - {name: argon, mass: 39.948, sigma: 0.3405, epsilon: 0.996, size: 0.3405}
    initial_conditions:
      temperature: 10.0

which are flattened onto SimulationConfig fields.
"""

from typing import Dict, Any, Union
from pathlib import Path
import yaml
import json

from lj_sim.core.simulation import SimulationConfig


# Field mapping for nested sections
FIELD_MAPPINGS = {
    'simulation': {
        'n_particles': 'n_particles',
        'particles': 'n_particles',
        'dt': 'dt',
        'iterations_per_frame': 'iterations_per_frame',
        'readback_interval': 'readback_interval',
    },
    'domain': {
        'bin_size': 'bin_size',
        'bin_count': 'bin_count',
        'bin_capacity': 'bin_capacity',
        'box_size': 'box_size',
        'boundary': 'boundary',
    },
    'physics': {
        'neighbourhood_size': 'neighbourhood_size',
        'cutoff': 'neighbourhood_size',
        'max_force': 'max_force',
        'friction': 'friction',
        'species': 'species',
        'energy_unit_conversion': 'energy_unit_conversion',
    },
    'initial_conditions': {
        'temperature': 'init_temperature',
        'init_temperature': 'init_temperature',
        'random_seed': 'random_seed',
    },
    'misc': {
        'precision': 'precision',
        'verbose': 'verbose',
    },
}


def load_config(filename: Union[str, Path], **overrides) -> SimulationConfig:
    """
    Load simulation configuration from YAML or JSON file.

    Parameters
    ----------
    filename : str or Path
        Path to configuration file (.yaml, .yml, or .json)
    **overrides : keyword arguments
        Override specific config values (e.g., n_particles=100, boundary="wrap")

    Returns
    -------
    config : SimulationConfig
        Validated simulation configuration

    Raises
    ------
    FileNotFoundError
        If configuration file does not exist
    ValueError
        If file format is unsupported or config is invalid

    Examples
    --------
    >>> config = load_config("argon_gas.yaml")
    >>> config = load_config("config.yaml", n_particles=4096)
    """
    filepath = Path(filename)

    if not filepath.exists():
        raise FileNotFoundError(f"Configuration file not found: {filepath}")

    # Determine file type and load
    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        config_dict = load_yaml(filepath)
    elif suffix == '.json':
        config_dict = load_json(filepath)
    else:
        raise ValueError(
            f"Unsupported config file format: {suffix}. "
            "Use .yaml, .yml, or .json"
        )

    # Flatten nested dictionaries
    flat_config = flatten_config(config_dict)

    # Apply overrides
    flat_config.update(overrides)

    # Create and validate config
    try:
        config = SimulationConfig(**flat_config)
    except ValueError as e:
        raise ValueError(
            f"Configuration validation failed for {filepath}: {e}"
        ) from e

    return config


def load_yaml(filepath: Path) -> Dict[str, Any]:
    """Load YAML configuration file."""
    with open(filepath, 'r') as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        config_dict = {}
    if not isinstance(config_dict, dict):
        raise ValueError(f"Top level of {filepath} must be a mapping")

    return config_dict


def load_json(filepath: Path) -> Dict[str, Any]:
    """Load JSON configuration file."""
    with open(filepath, 'r') as f:
        config_dict = json.load(f)

    if not isinstance(config_dict, dict):
        raise ValueError(f"Top level of {filepath} must be an object")

    return config_dict


def flatten_config(config_dict: Dict[str, Any], parent_key: str = '') -> Dict[str, Any]:
    """
    Flatten nested configuration dictionary.

    Converts nested structures like:
        {'domain': {'bin_count': 32}, 'initial_conditions': {'temperature': 10.0}}
    to:
        {'bin_count': 32, 'init_temperature': 10.0}

    Lists (such as the species table) are passed through unchanged.

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Nested configuration dictionary
    parent_key : str
        Parent key for recursion

    Returns
    -------
    flat_dict : Dict[str, Any]
        Flattened configuration dictionary
    """
    flat = {}

    for key, value in config_dict.items():
        # Check if this is a nested section with mappings
        if key in FIELD_MAPPINGS and isinstance(value, dict):
            for subkey, subvalue in value.items():
                if subkey in FIELD_MAPPINGS[key]:
                    mapped_key = FIELD_MAPPINGS[key][subkey]
                    flat[mapped_key] = subvalue
                else:
                    # Pass through unmapped keys
                    flat[subkey] = subvalue
        elif isinstance(value, dict):
            # Recursively flatten nested dicts without explicit mappings
            nested = flatten_config(value, parent_key=key)
            flat.update(nested)
        else:
            # Direct assignment
            flat[key] = value

    return flat


def organize_config(config: SimulationConfig) -> Dict[str, Any]:
    """Group a configuration into the sectioned layout read by ``flatten_config``."""
    config_dict = config.model_dump(mode='json')

    return {
        'simulation': {
            'n_particles': config_dict['n_particles'],
            'dt': config_dict['dt'],
            'iterations_per_frame': config_dict['iterations_per_frame'],
            'readback_interval': config_dict['readback_interval'],
        },
        'domain': {
            'bin_size': config_dict['bin_size'],
            'bin_count': config_dict['bin_count'],
            'bin_capacity': config_dict['bin_capacity'],
            'box_size': config_dict['box_size'],
            'boundary': config_dict['boundary'],
        },
        'physics': {
            'neighbourhood_size': config_dict['neighbourhood_size'],
            'max_force': config_dict['max_force'],
            'friction': config_dict['friction'],
            'energy_unit_conversion': config_dict['energy_unit_conversion'],
            'species': config_dict['species'],
        },
        'initial_conditions': {
            'temperature': config_dict['init_temperature'],
            'random_seed': config_dict['random_seed'],
        },
        'misc': {
            'precision': config_dict['precision'],
            'verbose': config_dict['verbose'],
        },
    }


def save_config(config: SimulationConfig, filename: Union[str, Path]) -> None:
    """
    Save SimulationConfig to a YAML or JSON file.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to save
    filename : str or Path
        Output file path (.yaml, .yml or .json)
    """
    filepath = Path(filename)
    organized = organize_config(config)

    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        with open(filepath, 'w') as f:
            yaml.dump(organized, f, default_flow_style=False, sort_keys=False)
    elif suffix == '.json':
        with open(filepath, 'w') as f:
            json.dump(organized, f, indent=2)
    else:
        raise ValueError(f"Unsupported output format: {suffix}. Use .yaml or .json")


def config_from_dict(config_dict: Dict[str, Any]) -> SimulationConfig:
    """
    Create SimulationConfig from dictionary (helper for programmatic use).

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Configuration dictionary, flat or sectioned

    Returns
    -------
    config : SimulationConfig
        Validated configuration
    """
    flat = flatten_config(config_dict)
    return SimulationConfig(**flat)
