#!/usr/bin/env python3
"""
Configuration Management for Layout Annealing

This module provides structured configuration loading, validation,
and management for the layout scoring and annealing optimizer.
It handles the character alphabet, grid shape and finger map,
file paths, search parameters and the statistic definitions.

Features:
- YAML-based configuration with comprehensive validation
- Declarative statistic definitions (see stat_tables.py)
- Automatic creation of output directories
- Clear error messages for configuration issues

"""

import yaml
import os
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from stat_tables import parse_stat_definitions


@dataclass
class LanguageConfig:
    """Alphabet whose characters are placed on the grid."""
    characters: str

    @property
    def lang_length(self) -> int:
        return len(self.characters)


@dataclass
class GridConfig:
    """Grid shape and optional finger assignment (per column or per key)."""
    rows: int = 3
    cols: int = 10
    fingers: Optional[List] = None

    @property
    def dim1(self) -> int:
        return self.rows * self.cols


@dataclass
class PathConfig:
    """File paths for input and output."""
    corpus_file: str = "corpus/corpus.txt"
    layouts_folder: str = "layouts"
    results_folder: str = "output/results"


@dataclass
class SearchConfig:
    """Annealing and hill-climb parameters."""
    mode: str = "anneal"
    threads: int = 4
    iterations: int = 10000
    repetitions: int = 1
    swaps_per_round: int = 1
    start_temperature: float = 1.0
    final_temperature: float = 0.001
    seed: Optional[int] = None


@dataclass
class VisualizationConfig:
    """Visualization and display settings."""
    print_layout: bool = True
    verbose_output: bool = False
    top_results: int = 10


@dataclass
class Config:
    """Complete configuration container."""
    language: LanguageConfig
    grid: GridConfig
    paths: PathConfig
    search: SearchConfig
    visualization: VisualizationConfig
    statistics: List[Dict[str, Any]] = field(default_factory=list)

    # Internal tracking
    _config_path: str = "config.yaml"


def load_config(config_path: str = "config.yaml") -> Config:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Validated Config object with all settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If configuration is invalid
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML configuration: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")

    config = config_from_dict(raw_config, config_path)

    os.makedirs(config.paths.results_folder, exist_ok=True)

    return config


def config_from_dict(raw_config: Dict[str, Any], config_path: str = "config.yaml") -> Config:
    """Build and validate a Config from an already-parsed dictionary."""
    required_sections = ['language', 'statistics']
    missing_sections = [section for section in required_sections if section not in raw_config]
    if missing_sections:
        raise ValueError(f"Missing required configuration sections: {missing_sections}")

    try:
        language = LanguageConfig(**raw_config['language'])
    except (KeyError, TypeError) as e:
        raise ValueError(f"Error parsing language configuration: {e}")

    sections = {}
    for name, cls in [('grid', GridConfig), ('paths', PathConfig),
                      ('search', SearchConfig), ('visualization', VisualizationConfig)]:
        try:
            sections[name] = cls(**(raw_config.get(name) or {}))
        except TypeError as e:
            raise ValueError(f"Error parsing {name} configuration: {e}")

    config = Config(
        language=language,
        grid=sections['grid'],
        paths=sections['paths'],
        search=sections['search'],
        visualization=sections['visualization'],
        statistics=raw_config['statistics'] or [],
        _config_path=config_path,
    )

    validate_config(config)

    return config


def validate_config(config: Config) -> None:
    """
    Perform comprehensive validation of configuration.

    Args:
        config: Configuration object to validate

    Raises:
        ValueError: If any validation check fails
    """
    characters = config.language.characters
    if not characters:
        raise ValueError("language.characters cannot be empty")
    if len(set(characters)) != len(characters):
        duplicates = sorted(char for char in set(characters) if characters.count(char) > 1)
        raise ValueError(f"Duplicate characters in alphabet: {duplicates}")
    if '_' in characters or any(c.isspace() for c in characters):
        raise ValueError("Alphabet cannot contain '_' or whitespace (used by layout files)")

    grid = config.grid
    if grid.rows <= 0 or grid.cols <= 0:
        raise ValueError(f"Grid shape must be positive, got {grid.rows}x{grid.cols}")
    if grid.dim1 < 2:
        raise ValueError("Need at least 2 keys for meaningful optimization")

    search = config.search
    if search.mode not in ('anneal', 'improve'):
        raise ValueError(f"search.mode must be 'anneal' or 'improve', got '{search.mode}'")
    if search.threads < 1:
        raise ValueError("search.threads must be at least 1")
    if search.iterations < 0:
        raise ValueError("search.iterations cannot be negative")
    if search.repetitions < 1:
        raise ValueError("search.repetitions must be at least 1")
    if search.swaps_per_round < 1:
        raise ValueError("search.swaps_per_round must be at least 1")
    if search.start_temperature <= 0 or search.final_temperature <= 0:
        raise ValueError("Temperatures must be positive")
    if search.final_temperature > search.start_temperature:
        raise ValueError("final_temperature must not exceed start_temperature")

    # Raises ValueError on malformed statistics
    parse_stat_definitions(config.statistics)


def print_config_summary(config: Config) -> None:
    """Print human-readable configuration summary."""
    search = config.search

    print(f"\nConfiguration Summary:")
    print(f"  Config file: {config._config_path}")
    print(f"  Alphabet ({config.language.lang_length}): {config.language.characters}")
    print(f"  Grid: {config.grid.rows}x{config.grid.cols} ({config.grid.dim1} keys)")
    print(f"  Statistics: {len(config.statistics)} defined")
    print(f"  Search: mode={search.mode}, threads={search.threads}, iterations={search.iterations}, "
          f"repetitions={search.repetitions}")
    print(f"  Temperature: {search.start_temperature} -> {search.final_temperature}")
    print(f"  Visualization: layout={config.visualization.print_layout}, "
          f"verbose={config.visualization.verbose_output}")


DEFAULT_STATISTICS = [
    {'name': 'Left Hand', 'category': 'mono', 'rule': 'hand', 'params': {'hand': 'left'}, 'weight': 0.0},
    {'name': 'Right Hand', 'category': 'mono', 'rule': 'hand', 'params': {'hand': 'right'}, 'weight': 0.0},
    {'name': 'Top Row', 'category': 'mono', 'rule': 'row', 'params': {'row': 0}, 'weight': -0.2},
    {'name': 'Home Row', 'category': 'mono', 'rule': 'row', 'params': {'row': 1}, 'weight': 0.5},
    {'name': 'Bottom Row', 'category': 'mono', 'rule': 'row', 'params': {'row': 2}, 'weight': -0.5},
    {'name': 'Left Pinky', 'category': 'mono', 'rule': 'finger', 'params': {'finger': 'left_pinky'}, 'weight': -0.3},
    {'name': 'Right Pinky', 'category': 'mono', 'rule': 'finger', 'params': {'finger': 'right_pinky'}, 'weight': -0.3},
    {'name': 'Same Finger Bigram', 'category': 'bi', 'rule': 'same_finger', 'weight': -5.0},
    {'name': 'Inward Roll', 'category': 'bi', 'rule': 'inward_roll', 'weight': 0.5},
    {'name': 'Outward Roll', 'category': 'bi', 'rule': 'outward_roll', 'weight': 0.2},
    {'name': 'Scissor', 'category': 'bi', 'rule': 'scissor', 'weight': -2.0},
    {'name': 'Alternation', 'category': 'tri', 'rule': 'alternation', 'weight': 0.3},
    {'name': 'Roll', 'category': 'tri', 'rule': 'roll', 'weight': 0.3},
    {'name': 'Redirect', 'category': 'tri', 'rule': 'redirect', 'weight': -1.0},
    {'name': 'Same Finger Skipgram', 'category': 'skip', 'rule': 'same_finger',
     'weight': [-2.0, -1.0, -0.5, -0.25, -0.12, -0.06, -0.03, -0.015, -0.008]},
    {'name': 'Hand Imbalance', 'category': 'meta', 'weight': -0.5, 'absolute': True,
     'components': [
         {'category': 'mono', 'name': 'Left Hand', 'coefficient': 1.0},
         {'category': 'mono', 'name': 'Right Hand', 'coefficient': -1.0},
     ]},
]


def create_default_config(output_path: str = "config.yaml") -> None:
    """
    Create a default configuration file with common settings.

    Args:
        output_path: Path where to save the default config
    """
    default_config = {
        'language': {
            'characters': "abcdefghijklmnopqrstuvwxyz,./;",
        },
        'grid': {
            'rows': 3,
            'cols': 10,
            'fingers': [0, 1, 2, 3, 3, 6, 6, 7, 8, 9],
        },
        'paths': {
            'corpus_file': 'corpus/corpus.txt',
            'layouts_folder': 'layouts',
            'results_folder': 'output/results',
        },
        'search': {
            'mode': 'anneal',
            'threads': 4,
            'iterations': 10000,
            'repetitions': 1,
            'swaps_per_round': 1,
            'start_temperature': 1.0,
            'final_temperature': 0.001,
            'seed': None,
        },
        'visualization': {
            'print_layout': True,
            'verbose_output': False,
            'top_results': 10,
        },
        'statistics': DEFAULT_STATISTICS,
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        yaml.dump(default_config, f, default_flow_style=False, indent=2, sort_keys=False)

    print(f"Default configuration saved to: {output_path}")


def validate_files_exist(config: Config, corpus_file: Optional[str] = None) -> None:
    """
    Validate that the corpus file and layouts folder exist.

    Args:
        config: Configuration object
        corpus_file: Corpus path overriding the configured one
    """
    corpus_path = corpus_file or config.paths.corpus_file
    if not os.path.exists(corpus_path):
        raise FileNotFoundError(f"Corpus file not found: {corpus_path}")

    if not os.path.isdir(config.paths.layouts_folder):
        print(f"Warning: Layouts folder not found: {config.paths.layouts_folder}")


if __name__ == "__main__":
    print("Configuration Management for Layout Annealing")

    try:
        if not os.path.exists("config.yaml"):
            print("Creating default configuration...")
            create_default_config()

        print("Loading configuration...")
        config = load_config()

        print_config_summary(config)

        print(f"\nValidating external files...")
        validate_files_exist(config)

        print(f"\nConfiguration validation successful!")

    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}")
        print(f"\nTo create a default configuration, run:")
        print(f"python config.py")
