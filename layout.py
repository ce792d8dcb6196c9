# layout.py
"""
Layout value object, lifecycle operations and score aggregation.

A Layout is a ROW x COL grid of character codes plus one score container
per statistic category. Score arrays are sized by the materialized
StatTables and are filled by the evaluator; get_score() reduces them to a
single weighted total and get_layout_diff() reports per-statistic deltas
between two layouts.
"""

import numpy as np
from numba import jit
from pathlib import Path
from typing import Optional, Tuple

from errors import FatalError
from indexing import MAX_SKIP
from stat_tables import StatTables

LAYOUT_NAME_LENGTH = 48
DIFF_SEPARATOR = " - "
# Longest possible diff name: two truncated names joined by the separator
NAME_BUFFER_LENGTH = 2 * LAYOUT_NAME_LENGTH + len(DIFF_SEPARATOR)

EMPTY_KEY = -1
EMPTY_KEY_TOKEN = '_'

SCORE_ARRAYS = ('mono_score', 'bi_score', 'tri_score', 'quad_score', 'skip_score', 'meta_score')

#-----------------------------------------------------------------------------
# Names
#-----------------------------------------------------------------------------
def truncate_name(name: str, length: int = LAYOUT_NAME_LENGTH) -> str:
    return name[:length]

def diff_name(first: str, second: str) -> str:
    """Truncate both names to LAYOUT_NAME_LENGTH, then join them."""
    return truncate_name(first) + DIFF_SEPARATOR + truncate_name(second)

#-----------------------------------------------------------------------------
# Layout
#-----------------------------------------------------------------------------
class Layout:
    """
    Key assignment grid with per-category statistic scores.

    Attributes:
        name: Layout name (at most NAME_BUFFER_LENGTH characters)
        matrix: Character codes, shape (rows, cols); -1 marks an empty or mismatched key
        score: Weighted total written by get_score()
        mono_score, bi_score, tri_score, quad_score, meta_score: Shape (n_stats,)
        skip_score: Shape (9, n_skip_stats), row d-1 holds skip distance d
    """

    def __init__(self, name: str, matrix: np.ndarray,
                 mono_score: np.ndarray, bi_score: np.ndarray,
                 tri_score: np.ndarray, quad_score: np.ndarray,
                 skip_score: np.ndarray, meta_score: np.ndarray,
                 score: float = 0.0):
        self._name = ""
        self.name = name
        self.matrix = matrix
        self.mono_score = mono_score
        self.bi_score = bi_score
        self.tri_score = tri_score
        self.quad_score = quad_score
        self.skip_score = skip_score
        self.meta_score = meta_score
        self.score = score

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._name = truncate_name(value, NAME_BUFFER_LENGTH)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.matrix.shape

    @property
    def dim1(self) -> int:
        return self.matrix.size

    def is_allocated(self) -> bool:
        return self.matrix is not None and all(
            getattr(self, attr) is not None for attr in SCORE_ARRAYS
        )

    def score_arrays(self) -> Tuple[np.ndarray, ...]:
        return tuple(getattr(self, attr) for attr in SCORE_ARRAYS)

    def __repr__(self) -> str:
        return f"Layout(name={self.name!r}, shape={self.shape}, score={self.score:.6f})"

#-----------------------------------------------------------------------------
# Lifecycle
#-----------------------------------------------------------------------------
def alloc_layout(tables: StatTables, rows: int, cols: int, name: str = "") -> Layout:
    """
    Allocate a layout with zero-filled score arrays sized to the weight tables
    and an empty grid.

    Raises:
        FatalError: If memory for the buffers cannot be obtained
    """
    try:
        return Layout(
            name=truncate_name(name),
            matrix=np.full((rows, cols), EMPTY_KEY, dtype=np.int64),
            mono_score=np.zeros(tables.mono_end, dtype=np.float64),
            bi_score=np.zeros(tables.bi_end, dtype=np.float64),
            tri_score=np.zeros(tables.tri_end, dtype=np.float64),
            quad_score=np.zeros(tables.quad_end, dtype=np.float64),
            skip_score=np.zeros((MAX_SKIP, tables.skip_end), dtype=np.float64),
            meta_score=np.zeros(tables.meta_end, dtype=np.float64),
        )
    except MemoryError:
        raise FatalError("failed to allocate layout")

def alloc_layout_like(layout: Layout, name: str = "") -> Layout:
    """Allocate a zero-filled layout with the same shapes as an existing one."""
    try:
        return Layout(
            name=name,
            matrix=np.full(layout.matrix.shape, EMPTY_KEY, dtype=np.int64),
            **{attr: np.zeros_like(getattr(layout, attr)) for attr in SCORE_ARRAYS},
        )
    except MemoryError:
        raise FatalError("failed to allocate layout")

def free_layout(layout: Layout) -> None:
    """Release every buffer; the layout must not be used afterwards."""
    for attr in SCORE_ARRAYS:
        setattr(layout, attr, None)
    layout.matrix = None

def copy_scores(dest: Layout, src: Layout) -> None:
    """Copy the total and every score array without allocating."""
    dest.score = src.score
    for attr in SCORE_ARRAYS:
        np.copyto(getattr(dest, attr), getattr(src, attr))

def copy_layout(dest: Layout, src: Layout) -> None:
    """Deep-copy name, grid and scores into a pre-allocated layout of matching shape."""
    dest.name = src.name
    np.copyto(dest.matrix, src.matrix)
    copy_scores(dest, src)

def shuffle_layout(layout: Layout, rng: Optional[np.random.Generator] = None) -> None:
    """
    In-place Fisher-Yates shuffle over the flattened grid.

    Performs exactly DIM1 - 1 swap steps, so a single-key grid is untouched.
    """
    if rng is None:
        rng = np.random.default_rng()
    flat = layout.matrix.reshape(-1)
    for i in range(flat.size - 1, 0, -1):
        j = int(rng.integers(i + 1))
        flat[i], flat[j] = flat[j], flat[i]

#-----------------------------------------------------------------------------
# Aggregation
#-----------------------------------------------------------------------------
@jit(nopython=True)
def _weighted_sum_jit(scores: np.ndarray, weights: np.ndarray) -> float:
    total = 0.0
    for i in range(len(scores)):
        total += scores[i] * weights[i]
    return total

def category_contributions(layout: Layout, tables: StatTables) -> dict:
    """Weighted contribution of each category to the total score."""
    skip_weights = np.ascontiguousarray(tables.weight_skip.T).ravel()
    return {
        'mono': _weighted_sum_jit(layout.mono_score, tables.weight_mono),
        'bi': _weighted_sum_jit(layout.bi_score, tables.weight_bi),
        'tri': _weighted_sum_jit(layout.tri_score, tables.weight_tri),
        'quad': _weighted_sum_jit(layout.quad_score, tables.weight_quad),
        'skip': _weighted_sum_jit(np.ascontiguousarray(layout.skip_score).ravel(), skip_weights),
        'meta': _weighted_sum_jit(layout.meta_score, tables.weight_meta),
    }

def get_score(layout: Layout, tables: StatTables) -> float:
    """
    Compute the weighted total of every statistic score.

    Only layout.score is written; weights are read-only.

    Returns:
        The new total score
    """
    contributions = category_contributions(layout, tables)
    layout.score = float(sum(contributions[c] for c in ('mono', 'bi', 'tri', 'quad', 'skip', 'meta')))
    return layout.score

def get_layout_diff(first: Layout, second: Layout, diff: Optional[Layout] = None) -> Layout:
    """
    Element-wise difference between two layouts (first minus second).

    Grid cells where both layouts agree keep the shared character; others
    become -1. Score arrays hold raw deltas for every category and every skip
    distance, and score is the plain difference of totals.

    Args:
        first, second: Layouts of identical shape
        diff: Optional pre-allocated destination

    Returns:
        The diff layout
    """
    if diff is None:
        diff = alloc_layout_like(first)

    diff.name = diff_name(first.name, second.name)
    np.copyto(diff.matrix, np.where(first.matrix == second.matrix, first.matrix, EMPTY_KEY))
    diff.score = first.score - second.score
    for attr in SCORE_ARRAYS:
        np.subtract(getattr(first, attr), getattr(second, attr), out=getattr(diff, attr))
    return diff

#-----------------------------------------------------------------------------
# Text representation
#-----------------------------------------------------------------------------
def parse_layout_grid(text: str, characters: str, rows: int, cols: int) -> np.ndarray:
    """
    Parse a whitespace-separated grid of characters into character codes.

    Lines starting with '#' are comments. '_' marks an empty key.

    Raises:
        ValueError: If the grid shape or a character is invalid
    """
    lookup = {c: i for i, c in enumerate(characters)}
    lines = [line.split() for line in text.splitlines()
             if line.strip() and not line.lstrip().startswith('#')]

    if len(lines) != rows:
        raise ValueError(f"Layout has {len(lines)} rows, expected {rows}")

    matrix = np.full((rows, cols), EMPTY_KEY, dtype=np.int64)
    seen = set()
    for r, tokens in enumerate(lines):
        if len(tokens) != cols:
            raise ValueError(f"Layout row {r + 1} has {len(tokens)} keys, expected {cols}")
        for c, token in enumerate(tokens):
            if token == EMPTY_KEY_TOKEN:
                continue
            if token not in lookup:
                raise ValueError(f"Character '{token}' at row {r + 1}, column {c + 1} is not in the alphabet")
            if token in seen:
                raise ValueError(f"Character '{token}' appears more than once")
            seen.add(token)
            matrix[r, c] = lookup[token]
    return matrix

def layout_to_string(layout: Layout, characters: str) -> str:
    rows = []
    for row in layout.matrix:
        rows.append(" ".join(characters[code] if code >= 0 else EMPTY_KEY_TOKEN for code in row))
    return "\n".join(rows)

def layout_from_string(name: str, text: str, tables: StatTables, characters: str,
                       rows: int, cols: int) -> Layout:
    layout = alloc_layout(tables, rows, cols, name)
    layout.matrix[:] = parse_layout_grid(text, characters, rows, cols)
    return layout

def read_layout(path: str, tables: StatTables, characters: str, rows: int, cols: int) -> Layout:
    """Read a layout file; the file stem becomes the layout name."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Layout file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        return layout_from_string(path.stem, f.read(), tables, characters, rows, cols)

def write_layout(layout: Layout, path: str, characters: str) -> None:
    with open(path, 'w', encoding='utf-8') as f:
        f.write(f"# {layout.name}  score={layout.score:.6f}\n")
        f.write(layout_to_string(layout, characters) + "\n")
