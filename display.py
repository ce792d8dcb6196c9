# display.py
"""
Display, visualization, and output formatting for layout optimization.
"""

import csv
import os
import sys
from datetime import datetime
from io import StringIO
from typing import Dict, Optional
import pandas as pd

from config import Config
from indexing import MAX_SKIP
from layout import Layout, layout_to_string
from ranking import RankingLedger
from stat_tables import StatTables

#-----------------------------------------------------------------------------
# Logging
#-----------------------------------------------------------------------------
class TeeLogger:
    """
    Class to capture stdout and write to both console and a file.
    """
    def __init__(self, filename):
        self.terminal = sys.stdout
        self.log = open(filename, 'w', encoding='utf-8')
        self.buffer = StringIO()

    def write(self, message):
        self.terminal.write(message)
        self.log.write(message)
        self.buffer.write(message)

    def flush(self):
        self.terminal.flush()
        self.log.flush()
        self.buffer.flush()

    def get_log_contents(self):
        return self.buffer.getvalue()

    def close(self):
        self.log.close()

#-----------------------------------------------------------------------------
# Layout visualization
#-----------------------------------------------------------------------------
def visualize_layout(layout: Layout, characters: str, title: Optional[str] = None) -> None:
    """
    Print ASCII visual representation of a layout grid.

    Mismatched or empty keys (-1) are shown as '·'.
    """
    rows, cols = layout.shape
    title = title if title is not None else layout.name
    width = cols * 6 - 1

    def cell(code):
        return characters[code].upper() if code >= 0 else '·'

    separator = "─────"
    print("╭" + "─" * width + "╮")
    print(f"│ {('Layout: ' + title)[:width - 2]:<{width - 2}} │")
    print("├" + "┬".join([separator] * cols) + "┤")
    for r in range(rows):
        print("│" + "│".join(f" {cell(code):^3} " for code in layout.matrix[r]) + "│")
        if r < rows - 1:
            print("├" + "┼".join([separator] * cols) + "┤")
    print("╰" + "┴".join([separator] * cols) + "╯")

def print_optimization_header(mode: str, config: Config) -> None:
    """Print header for optimization run."""
    print(f"\n" + "="*60)
    if mode == "anneal":
        print("SIMULATED ANNEALING")
    elif mode == "improve":
        print("HILL-CLIMB IMPROVEMENT")
    else:
        print(f"{mode.upper()}")
    print("="*60)

def print_search_space_info(config: Config) -> None:
    """Print information about the search space size."""
    from math import factorial as fact

    n_keys = config.grid.dim1
    n_chars = min(config.language.lang_length, n_keys)
    total_perms = fact(n_keys) // fact(n_keys - n_chars)

    print("\nSearch Space Analysis:")
    print(f"  {n_chars} characters on {n_keys} keys: {total_perms:.3e} arrangements")

#-----------------------------------------------------------------------------
# Statistic reports
#-----------------------------------------------------------------------------
def stats_dataframe(layout: Layout, tables: StatTables) -> pd.DataFrame:
    """
    Per-statistic scores, weights and weighted contributions of a layout.

    Skip statistics get one row per distance.
    """
    records = []
    for category in ('mono', 'bi', 'tri', 'quad', 'meta'):
        scores = getattr(layout, f"{category}_score")
        weights = tables.weights(category)
        for i, name in enumerate(tables.names[category]):
            records.append({
                'category': category, 'name': name, 'distance': None,
                'score': scores[i], 'weight': weights[i],
                'contribution': scores[i] * weights[i],
            })
    for j, name in enumerate(tables.names['skip']):
        for d in range(MAX_SKIP):
            records.append({
                'category': 'skip', 'name': name, 'distance': d + 1,
                'score': layout.skip_score[d, j], 'weight': tables.weight_skip[j, d],
                'contribution': layout.skip_score[d, j] * tables.weight_skip[j, d],
            })
    return pd.DataFrame.from_records(
        records, columns=['category', 'name', 'distance', 'score', 'weight', 'contribution'])

def print_layout_report(layout: Layout, tables: StatTables, characters: str,
                        verbose: bool = False, show_layout: bool = True) -> None:
    """Print a layout, its total score and its statistic breakdown."""
    if show_layout:
        visualize_layout(layout, characters)
    print(f"\nScore: {layout.score:.6f}")

    df = stats_dataframe(layout, tables)
    if not verbose:
        df = df[(df['distance'].isna()) | (df['distance'] == 1)]

    with pd.option_context('display.max_rows', None, 'display.width', 120,
                           'display.float_format', '{:.4f}'.format):
        for category, group in df.groupby('category', sort=False):
            print(f"\n{category.upper()}")
            print(group.drop(columns=['category']).to_string(index=False))

def print_diff_report(diff: Layout, tables: StatTables, characters: str,
                      verbose: bool = False) -> None:
    """Print a diff layout: shared keys and per-statistic deltas."""
    visualize_layout(diff, characters)
    print(f"\nScore difference: {diff.score:+.6f}")

    df = stats_dataframe(diff, tables).rename(columns={'score': 'delta'})
    df = df.drop(columns=['weight', 'contribution'])
    if not verbose:
        df = df[df['delta'] != 0]

    with pd.option_context('display.max_rows', None, 'display.width', 120,
                           'display.float_format', '{:+.4f}'.format):
        print(df.to_string(index=False) if len(df) else "  No statistic differences")

def print_ranking(ledger: RankingLedger, top_n: int = 10) -> None:
    """Print the best entries of a ranking ledger."""
    print(f"\nRanking: {len(ledger)} layouts")
    print(f"  {'Rank':<4} | {'Score':>12} | Name")
    print(f"  {'-'*4}-+-{'-'*12}-+-{'-'*30}")
    for rank, (name, score) in enumerate(ledger.top(top_n), 1):
        print(f"  {rank:<4} | {score:>12.6f} | {name}")

#-----------------------------------------------------------------------------
# CSV output
#-----------------------------------------------------------------------------
def save_ranking_to_csv(ledger: RankingLedger, layouts: Dict[str, Layout],
                        config: Config) -> str:
    """
    Save ranked results to CSV file.

    Args:
        ledger: Ranking of (name, score) entries
        layouts: Layouts by name, used for the key strings
        config: Configuration object

    Returns:
        Path to saved CSV file
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    config_name = os.path.basename(config._config_path).replace('.yaml', '')
    filename = f"ranking_{config_name}_{timestamp}.csv"
    output_path = os.path.join(config.paths.results_folder, filename)
    os.makedirs(config.paths.results_folder, exist_ok=True)

    characters = config.language.characters
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)

        writer.writerow(['Layout Ranking'])
        writer.writerow(['Alphabet', characters])
        writer.writerow(['Grid', f"{config.grid.rows}x{config.grid.cols}"])
        writer.writerow([])

        writer.writerow(['Rank', 'Name', 'Score', 'Keys'])
        for rank, node in enumerate(ledger, 1):
            layout = layouts.get(node.name)
            keys = layout_to_string(layout, characters).replace("\n", " / ") if layout else ""
            writer.writerow([rank, node.name, f"{node.score:.9f}", keys])

    return output_path

def save_stats_to_csv(layout: Layout, tables: StatTables, output_path: str) -> str:
    """Save the statistic breakdown of a layout."""
    stats_dataframe(layout, tables).to_csv(output_path, index=False)
    return output_path
