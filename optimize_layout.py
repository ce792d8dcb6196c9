# optimize_layout.py
"""
Layout annealing optimizer

Scores keyboard layouts against corpus statistics and searches the space
of key assignments with parallel simulated annealing (or greedy hill
climbing). Every candidate is scored as a weighted sum of monogram,
bigram, trigram, quadgram, skipgram and meta statistics defined in the
configuration file.

Usage:
    # Simulated annealing from random starting layouts (default)
    python optimize_layout.py --config config.yaml --corpus corpus/english.txt

    # Greedy improvement of an existing layout
    python optimize_layout.py --mode improve --layout layouts/qwerty.txt

    # Statistic breakdown of one layout
    python optimize_layout.py --mode analyze --layout layouts/qwerty.txt --verbose

    # Difference between two layouts
    python optimize_layout.py --mode compare --layout layouts/qwerty.txt --layout2 layouts/dvorak.txt

    # Rank every layout in the layouts folder
    python optimize_layout.py --mode rank

"""

import argparse
import os
import sys
import time
import numpy as np
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from tqdm import tqdm

from config import Config, load_config, print_config_summary, validate_files_exist
from corpus import FrequencyTables, count_corpus_file, normalize_corpus
from errors import fatal_error_handler
from evaluator import LayoutEvaluator
from indexing import IndexCodec
from layout import (Layout, alloc_layout, alloc_layout_like, copy_layout, get_layout_diff,
                    read_layout, shuffle_layout, write_layout)
from annealing import AnnealingEngine, run_annealing
from ranking import RankingLedger
from stat_tables import FingerMap, StatTables, build_stat_tables
from display import (TeeLogger, print_diff_report, print_layout_report, print_optimization_header,
                     print_ranking, print_search_space_info, save_ranking_to_csv, save_stats_to_csv,
                     visualize_layout)

#-----------------------------------------------------------------------------
# Setup
#-----------------------------------------------------------------------------
class ScoringEnvironment:
    """Everything needed to evaluate layouts for one configuration and corpus."""

    def __init__(self, config: Config, tables: StatTables, freqs: FrequencyTables,
                 codec: IndexCodec):
        self.config = config
        self.tables = tables
        self.freqs = freqs
        self.codec = codec
        self.evaluator = LayoutEvaluator(tables, freqs, codec)

    def read_layout(self, path: str) -> Layout:
        grid = self.config.grid
        return read_layout(path, self.tables, self.config.language.characters, grid.rows, grid.cols)

    def new_layout(self, name: str = "") -> Layout:
        """Layout holding the first DIM1 alphabet characters in order."""
        grid = self.config.grid
        layout = alloc_layout(self.tables, grid.rows, grid.cols, name)
        n_chars = min(self.config.language.lang_length, grid.dim1)
        layout.matrix.reshape(-1)[:n_chars] = np.arange(n_chars)
        return layout


def load_environment(config: Config, corpus_file: Optional[str] = None) -> ScoringEnvironment:
    """Build statistic tables and normalized corpus frequencies."""
    grid = config.grid
    characters = config.language.characters

    codec = IndexCodec(grid.rows, grid.cols)
    fingermap = FingerMap(grid.rows, grid.cols, grid.fingers)

    print("\nBuilding statistic tables...")
    tables = build_stat_tables(config.statistics, codec, fingermap)
    print(f"  mono={tables.mono_end}, bi={tables.bi_end}, tri={tables.tri_end}, "
          f"quad={tables.quad_end}, skip={tables.skip_end}, meta={tables.meta_end}")

    corpus_path = corpus_file or config.paths.corpus_file
    print(f"Counting corpus: {corpus_path}")
    start_time = time.time()
    counts = count_corpus_file(corpus_path, characters)
    freqs = normalize_corpus(counts, FrequencyTables.zeros(len(characters)))
    print(f"  {int(counts.mono.sum()):,} characters counted in {time.time() - start_time:.2f}s")

    return ScoringEnvironment(config, tables, freqs, codec)

#-----------------------------------------------------------------------------
# Modes
#-----------------------------------------------------------------------------
def starting_layouts(env: ScoringEnvironment, threads: int, rng: np.random.Generator,
                     start: Optional[Layout] = None, shuffle: bool = True) -> List[Layout]:
    """One candidate per worker, copied from start (or the alphabet) and optionally shuffled."""
    template = start if start is not None else env.new_layout("start")
    layouts = []
    for _ in range(threads):
        layout = alloc_layout_like(template)
        copy_layout(layout, template)
        if shuffle:
            shuffle_layout(layout, rng)
        layouts.append(layout)
    return layouts

def run_search(env: ScoringEnvironment, mode: str, start_file: Optional[str] = None,
               show_progress: bool = True) -> RankingLedger:
    """
    Run repeated annealing (or hill-climb) searches and rank their results.

    Args:
        env: Scoring environment
        mode: 'anneal' or 'improve'
        start_file: Optional layout file to start from instead of random layouts
        show_progress: Whether to show a progress bar per repetition

    Returns:
        Ledger of the best layout of each repetition
    """
    config = env.config
    search = config.search
    characters = config.language.characters

    print_optimization_header(mode, config)
    print_config_summary(config)
    print_search_space_info(config)

    start = env.read_layout(start_file) if start_file else None
    # Greedy improvement of a given layout keeps its arrangement
    shuffle = not (start is not None and mode == 'improve')

    ledger = RankingLedger()
    best_layouts: Dict[str, Layout] = {}
    rng = np.random.default_rng(search.seed)
    start_time = time.time()

    for rep in range(search.repetitions):
        seed = None if search.seed is None else search.seed + rep
        layouts = starting_layouts(env, search.threads, rng, start, shuffle)

        with AnnealingEngine(env.evaluator.evaluate, search.threads, search.swaps_per_round,
                             seed, ledger) as engine:
            initial_score = engine.start(layouts)

            with tqdm(total=search.iterations, desc=f"{mode} {rep + 1}/{search.repetitions}",
                      disable=not show_progress) as pbar:
                def on_round(i, temperature, result):
                    pbar.update(1)
                    if i % 100 == 0:
                        pbar.set_postfix(best=f"{result.best_score:.4f}", T=f"{temperature:.4g}")

                run_annealing(engine, search.iterations, search.start_temperature,
                              search.final_temperature, mode, on_round)

            name = f"{mode}-{rep + 1}"
            engine.record_best(name)
            best = alloc_layout_like(engine.best, name)
            copy_layout(best, engine.best)
            best_layouts[name] = best

        print(f"  {name}: {initial_score:.6f} -> {best.score:.6f}")
        write_layout(best, os.path.join(config.paths.results_folder, f"{name}.txt"), characters)

    elapsed_time = time.time() - start_time

    print_ranking(ledger, config.visualization.top_results)
    if ledger:
        top = best_layouts[ledger.head.name]
        print(f"\nBest layout: {top.name}")
        print_layout_report(top, env.tables, characters,
                            verbose=config.visualization.verbose_output,
                            show_layout=config.visualization.print_layout)
        csv_path = save_ranking_to_csv(ledger, best_layouts, config)
        print(f"\nResults saved to: {csv_path}")

    print(f"\nSearch Summary:")
    print(f"  Repetitions: {search.repetitions}")
    print(f"  Rounds per repetition: {search.iterations:,}")
    print(f"  Total time: {elapsed_time:.2f}s")
    return ledger

def run_analysis(env: ScoringEnvironment, layout_file: str, verbose: bool = False) -> Layout:
    """Evaluate one layout and print its statistic breakdown."""
    layout = env.read_layout(layout_file)
    env.evaluator.evaluate(layout)
    print_layout_report(layout, env.tables, env.config.language.characters, verbose=verbose,
                        show_layout=env.config.visualization.print_layout)

    output_path = os.path.join(env.config.paths.results_folder, f"stats_{layout.name}.csv")
    save_stats_to_csv(layout, env.tables, output_path)
    print(f"\nStatistics saved to: {output_path}")
    return layout

def run_comparison(env: ScoringEnvironment, first_file: str, second_file: str,
                   verbose: bool = False) -> Layout:
    """Evaluate two layouts and print their difference."""
    first = env.read_layout(first_file)
    second = env.read_layout(second_file)
    env.evaluator.evaluate(first)
    env.evaluator.evaluate(second)

    characters = env.config.language.characters
    if env.config.visualization.print_layout:
        visualize_layout(first, characters)
        visualize_layout(second, characters)

    diff = get_layout_diff(first, second)
    print_diff_report(diff, env.tables, characters, verbose=verbose)
    return diff

def run_ranking(env: ScoringEnvironment) -> RankingLedger:
    """Evaluate every layout file in the layouts folder and rank them."""
    folder = Path(env.config.paths.layouts_folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Layouts folder not found: {folder}")

    ledger = RankingLedger()
    layouts = {}
    for path in tqdm(sorted(folder.iterdir()), desc="Scoring layouts"):
        if not path.is_file() or path.name.startswith('.'):
            continue
        try:
            layout = env.read_layout(str(path))
        except ValueError as e:
            print(f"  Skipping {path.name}: {e}")
            continue
        env.evaluator.evaluate(layout)
        ledger.insert(layout.name, layout.score)
        layouts[layout.name] = layout

    print_ranking(ledger, len(ledger))
    if ledger:
        csv_path = save_ranking_to_csv(ledger, layouts, env.config)
        print(f"\nResults saved to: {csv_path}")
    return ledger

#-----------------------------------------------------------------------------
# Command-line interface
#-----------------------------------------------------------------------------
def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Score and optimize keyboard layouts with corpus statistics.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Simulated annealing with 8 worker threads
  python optimize_layout.py --config config.yaml --threads 8 --iterations 50000

  # Hill-climb from an existing layout
  python optimize_layout.py --mode improve --layout layouts/qwerty.txt

  # Analyze or compare layouts
  python optimize_layout.py --mode analyze --layout layouts/qwerty.txt
  python optimize_layout.py --mode compare --layout layouts/qwerty.txt --layout2 layouts/colemak.txt
        """
    )

    parser.add_argument('--config', type=str, default='config.yaml',
                       help='Path to configuration file (default: config.yaml)')
    parser.add_argument('--mode', choices=['anneal', 'improve', 'analyze', 'compare', 'rank'],
                       default=None, help='Operation to run (default: search.mode from config)')
    parser.add_argument('--corpus', type=str, default=None,
                       help='Corpus text file (overrides paths.corpus_file)')
    parser.add_argument('--layout', type=str, default=None,
                       help='Layout file to analyze, compare or start from')
    parser.add_argument('--layout2', type=str, default=None,
                       help='Second layout file for --mode compare')

    # Search overrides
    parser.add_argument('--iterations', type=int, default=None,
                       help='Rounds per repetition')
    parser.add_argument('--repetitions', type=int, default=None,
                       help='Number of independent searches')
    parser.add_argument('--threads', type=int, default=None,
                       help='Worker threads (one candidate layout each)')
    parser.add_argument('--seed', type=int, default=None,
                       help='Random seed for reproducible searches')

    # Output options
    parser.add_argument('--verbose', action='store_true',
                       help='Show every statistic, including all skip distances')
    parser.add_argument('--no-progress', action='store_true',
                       help='Hide progress bars')
    parser.add_argument('--log', action='store_true',
                       help='Also write console output to a log file in the results folder')

    return parser.parse_args(argv)

def apply_overrides(config: Config, args) -> None:
    """Copy command-line overrides into the configuration."""
    search = config.search
    if args.iterations is not None:
        search.iterations = args.iterations
    if args.repetitions is not None:
        search.repetitions = args.repetitions
    if args.threads is not None:
        search.threads = args.threads
    if args.seed is not None:
        search.seed = args.seed
    if args.verbose:
        config.visualization.verbose_output = True

def run(args) -> None:
    config = load_config(args.config)
    apply_overrides(config, args)
    validate_files_exist(config, args.corpus)

    mode = args.mode or config.search.mode
    if mode in ('analyze', 'compare') and not args.layout:
        raise ValueError(f"--mode {mode} requires --layout")
    if mode == 'compare' and not args.layout2:
        raise ValueError("--mode compare requires --layout2")

    env = load_environment(config, args.corpus)

    if mode in ('anneal', 'improve'):
        run_search(env, mode, args.layout, show_progress=not args.no_progress)
    elif mode == 'analyze':
        run_analysis(env, args.layout, config.visualization.verbose_output)
    elif mode == 'compare':
        run_comparison(env, args.layout, args.layout2, config.visualization.verbose_output)
    else:
        run_ranking(env)

def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    logger = None
    try:
        if args.log:
            results_folder = load_config(args.config).paths.results_folder
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            logger = TeeLogger(os.path.join(results_folder, f"optimize_log_{timestamp}.txt"))
            sys.stdout = logger

        with fatal_error_handler():
            run(args)

    except FileNotFoundError as e:
        print(f"Error: {e}")
        print("Please check that the configuration file and input files exist.")
        return 1
    except ValueError as e:
        print(f"Input Error: {e}")
        return 1
    finally:
        if logger is not None:
            sys.stdout = logger.terminal
            logger.close()
    return 0

if __name__ == "__main__":
    sys.exit(main())
