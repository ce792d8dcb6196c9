# indexing.py
"""
Flattened index codec for key-position tuples.

Statistics over a ROW x COL grid are stored in flat arrays. A key position
(row, col) is first folded into a key ordinal (row * COL + col); tuples of
1-4 ordinals are then packed most-significant-key-first with radix DIM1,
so that for a quadgram

    index = o0 * DIM3 + o1 * DIM2 + o2 * DIM1 + o3

Skip statistics add the skip distance (1-9) as the most significant digit
on top of a bigram index. The same mixed-radix helpers are used for the
character-level frequency tables, with the alphabet length as radix.
"""

import numpy as np
from numba import jit
from typing import Tuple

MAX_ORDER = 4
MAX_SKIP = 9

Position = Tuple[int, int]

#-----------------------------------------------------------------------------
# JIT-compiled mixed-radix helpers
#-----------------------------------------------------------------------------
@jit(nopython=True)
def _flatten_ordinals_jit(ordinals: np.ndarray, radix: int) -> int:
    index = 0
    for k in range(len(ordinals)):
        index = index * radix + ordinals[k]
    return index

@jit(nopython=True)
def _unflatten_ordinals_jit(index: int, order: int, radix: int) -> np.ndarray:
    ordinals = np.empty(order, dtype=np.int64)
    for k in range(order - 1, -1, -1):
        ordinals[k] = index % radix
        index //= radix
    return ordinals

@jit(nopython=True)
def _ordinal_tuples_jit(order: int, radix: int) -> np.ndarray:
    """Every ordinal tuple of the given order, row i being flat index i."""
    total = radix ** order
    tuples = np.empty((total, order), dtype=np.int64)
    for i in range(total):
        rest = i
        for k in range(order - 1, -1, -1):
            tuples[i, k] = rest % radix
            rest //= radix
    return tuples

def flatten_ordinals(ordinals, radix: int) -> int:
    """Pack a sequence of ordinals (most significant first) into one index."""
    return int(_flatten_ordinals_jit(np.asarray(ordinals, dtype=np.int64), radix))

def unflatten_ordinals(index: int, order: int, radix: int) -> Tuple[int, ...]:
    """Exact inverse of flatten_ordinals."""
    return tuple(int(o) for o in _unflatten_ordinals_jit(index, order, radix))

#-----------------------------------------------------------------------------
# Position codec
#-----------------------------------------------------------------------------
class IndexCodec:
    """
    Bidirectional mapping between key-position tuples and flat indices
    for a fixed grid shape.
    """

    def __init__(self, rows: int, cols: int):
        if rows <= 0 or cols <= 0:
            raise ValueError(f"Grid shape must be positive, got {rows}x{cols}")
        self.rows = rows
        self.cols = cols
        self.dim1 = rows * cols
        self.dim2 = self.dim1 ** 2
        self.dim3 = self.dim1 ** 3
        self.dim4 = self.dim1 ** 4

    def __repr__(self) -> str:
        return f"IndexCodec(rows={self.rows}, cols={self.cols})"

    def dim(self, order: int) -> int:
        """Number of distinct tuples of the given order."""
        self._check_order(order)
        return self.dim1 ** order

    def _check_order(self, order: int) -> None:
        if not 1 <= order <= MAX_ORDER:
            raise ValueError(f"Order must be between 1 and {MAX_ORDER}, got {order}")

    # Key ordinals
    def ordinal(self, row: int, col: int) -> int:
        return row * self.cols + col

    def position(self, ordinal: int) -> Position:
        return ordinal // self.cols, ordinal % self.cols

    # Generic tuple codec
    def flatten(self, *positions: Position) -> int:
        """Flatten 1-4 (row, col) positions into a single index."""
        self._check_order(len(positions))
        ordinals = [self.ordinal(row, col) for row, col in positions]
        return flatten_ordinals(ordinals, self.dim1)

    def unflatten(self, index: int, order: int) -> Tuple[Position, ...]:
        """Recover the (row, col) positions of a flat index."""
        self._check_order(order)
        ordinals = unflatten_ordinals(index, order, self.dim1)
        return tuple(self.position(o) for o in ordinals)

    def ordinal_tuples(self, order: int) -> np.ndarray:
        """Array of shape (DIM1**order, order); row i unflattens index i."""
        self._check_order(order)
        return _ordinal_tuples_jit(order, self.dim1)

    # Named helpers per arity
    def flat_mono(self, row0, col0) -> int:
        return row0 * self.cols + col0

    def unflat_mono(self, i: int) -> Position:
        return i // self.cols, i % self.cols

    def flat_bi(self, row0, col0, row1, col1) -> int:
        return self.flatten((row0, col0), (row1, col1))

    def unflat_bi(self, i: int) -> Tuple[Position, Position]:
        return self.unflatten(i, 2)

    def flat_tri(self, row0, col0, row1, col1, row2, col2) -> int:
        return self.flatten((row0, col0), (row1, col1), (row2, col2))

    def unflat_tri(self, i: int) -> Tuple[Position, Position, Position]:
        return self.unflatten(i, 3)

    def flat_quad(self, row0, col0, row1, col1, row2, col2, row3, col3) -> int:
        return self.flatten((row0, col0), (row1, col1), (row2, col2), (row3, col3))

    def unflat_quad(self, i: int) -> Tuple[Position, Position, Position, Position]:
        return self.unflatten(i, 4)

    # Skip codec
    def flatten_skip(self, distance: int, key_i: Position, key_j: Position) -> int:
        """Index into a (9 * DIM2) skip table, distance-major."""
        if not 1 <= distance <= MAX_SKIP:
            raise ValueError(f"Skip distance must be between 1 and {MAX_SKIP}, got {distance}")
        return (distance - 1) * self.dim2 + self.flatten(key_i, key_j)

    def unflatten_skip(self, index: int) -> Tuple[int, Position, Position]:
        distance = index // self.dim2 + 1
        if not 1 <= distance <= MAX_SKIP:
            raise ValueError(f"Skip index {index} out of range")
        key_i, key_j = self.unflatten(index % self.dim2, 2)
        return distance, key_i, key_j
