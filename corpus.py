# corpus.py
"""
Corpus n-gram counting and normalization.

Raw counts are kept as dense integer arrays indexed by character code
(position in the configured alphabet). Normalization turns each category
into percentage-of-total frequencies stored as flat float arrays, laid out
with the same mixed-radix order as indexing.flatten_ordinals:

    linear_bi[i * L + j]                      bigram (i, j)
    linear_skip[(d - 1) * L * L + i * L + j]  skipgram (i, j) at distance d

Usage:
    counts = count_corpus_file("corpus/english.txt", "abcdefghijklmnopqrstuvwxyz")
    tables = FrequencyTables.zeros(counts.lang_length)
    normalize_corpus(counts, tables)
"""

import numpy as np
from dataclasses import dataclass
from typing import Iterable

from indexing import MAX_SKIP

#-----------------------------------------------------------------------------
# Data structures
#-----------------------------------------------------------------------------
@dataclass
class CorpusCounts:
    """Raw n-gram counts over an alphabet of lang_length characters."""
    mono: np.ndarray    # Shape: (L,)
    bi: np.ndarray      # Shape: (L, L)
    tri: np.ndarray     # Shape: (L, L, L)
    quad: np.ndarray    # Shape: (L, L, L, L)
    skip: np.ndarray    # Shape: (9, L, L), row d-1 holds distance d

    @classmethod
    def zeros(cls, lang_length: int) -> "CorpusCounts":
        L = lang_length
        return cls(
            mono=np.zeros(L, dtype=np.int64),
            bi=np.zeros((L, L), dtype=np.int64),
            tri=np.zeros((L, L, L), dtype=np.int64),
            quad=np.zeros((L, L, L, L), dtype=np.int64),
            skip=np.zeros((MAX_SKIP, L, L), dtype=np.int64),
        )

    @property
    def lang_length(self) -> int:
        return len(self.mono)


@dataclass
class FrequencyTables:
    """Normalized (0-100) flattened frequency tables."""
    linear_mono: np.ndarray
    linear_bi: np.ndarray
    linear_tri: np.ndarray
    linear_quad: np.ndarray
    linear_skip: np.ndarray
    lang_length: int

    @classmethod
    def zeros(cls, lang_length: int) -> "FrequencyTables":
        L = lang_length
        return cls(
            linear_mono=np.zeros(L, dtype=np.float64),
            linear_bi=np.zeros(L ** 2, dtype=np.float64),
            linear_tri=np.zeros(L ** 3, dtype=np.float64),
            linear_quad=np.zeros(L ** 4, dtype=np.float64),
            linear_skip=np.zeros(MAX_SKIP * L ** 2, dtype=np.float64),
            lang_length=L,
        )

    def skip_table(self, distance: int) -> np.ndarray:
        """View of the flattened bigram-shaped table for one skip distance."""
        size = self.lang_length ** 2
        return self.linear_skip[(distance - 1) * size:distance * size]

#-----------------------------------------------------------------------------
# Counting
#-----------------------------------------------------------------------------
def encode_text(text: str, characters: str) -> np.ndarray:
    """Map text to character codes; characters outside the alphabet become -1."""
    lookup = {c: i for i, c in enumerate(characters)}
    if characters == characters.lower():
        text = text.lower()
    return np.fromiter((lookup.get(c, -1) for c in text), dtype=np.int64)

def _window_indices(codes: np.ndarray, offsets: Iterable[int], span: int, radix: int) -> np.ndarray:
    """
    Flat indices of the characters at the given offsets for every window of
    length span + 1 that lies entirely inside a run of valid codes.
    """
    n_windows = len(codes) - span
    if n_windows <= 0:
        return np.zeros(0, dtype=np.int64)

    invalid = np.concatenate(([0], np.cumsum(codes < 0)))
    valid = (invalid[span + 1:] - invalid[:n_windows]) == 0

    index = np.zeros(n_windows, dtype=np.int64)
    for offset in offsets:
        index = index * radix + codes[offset:offset + n_windows]
    return index[valid]

def add_counts(counts: CorpusCounts, codes: np.ndarray) -> None:
    """Accumulate n-gram counts of an encoded text into counts."""
    L = counts.lang_length

    for order, table in ((1, counts.mono), (2, counts.bi), (3, counts.tri), (4, counts.quad)):
        index = _window_indices(codes, range(order), order - 1, L)
        table += np.bincount(index, minlength=L ** order).reshape(table.shape)

    for distance in range(1, MAX_SKIP + 1):
        index = _window_indices(codes, (0, distance + 1), distance + 1, L)
        counts.skip[distance - 1] += np.bincount(index, minlength=L ** 2).reshape(L, L)

def count_text(text: str, characters: str) -> CorpusCounts:
    """Count every n-gram category of a text over the given alphabet."""
    counts = CorpusCounts.zeros(len(characters))
    add_counts(counts, encode_text(text, characters))
    return counts

def count_corpus_file(path: str, characters: str, encoding: str = "utf-8") -> CorpusCounts:
    """Count a corpus file line by line so that newlines break n-gram runs."""
    counts = CorpusCounts.zeros(len(characters))
    with open(path, 'r', encoding=encoding, errors='replace') as f:
        for line in f:
            add_counts(counts, encode_text(line, characters))
    return counts

#-----------------------------------------------------------------------------
# Normalization
#-----------------------------------------------------------------------------
def _normalize_into(target: np.ndarray, raw: np.ndarray, total) -> None:
    if total == 0:
        return
    target[:] = 100.0 * raw.ravel().astype(np.float64) / float(total)

def normalize_corpus(counts: CorpusCounts, tables: FrequencyTables) -> FrequencyTables:
    """
    Convert raw counts into percentage-of-total frequencies.

    Each category (and each skip distance) is normalized independently.
    A category whose total is zero is skipped and keeps its previous
    content, so an empty corpus leaves zero-initialized tables untouched.

    Args:
        counts: Raw n-gram counts
        tables: Output tables, written in place

    Returns:
        The same tables object
    """
    if counts.lang_length != tables.lang_length:
        raise ValueError(
            f"Alphabet size mismatch: counts have {counts.lang_length}, "
            f"tables have {tables.lang_length}"
        )

    mono_total = counts.mono.sum()
    bi_total = counts.bi.sum()
    tri_total = counts.tri.sum()
    quad_total = counts.quad.sum()
    skip_totals = [counts.skip[d].sum() for d in range(MAX_SKIP)]

    _normalize_into(tables.linear_mono, counts.mono, mono_total)
    _normalize_into(tables.linear_bi, counts.bi, bi_total)
    _normalize_into(tables.linear_tri, counts.tri, tri_total)
    _normalize_into(tables.linear_quad, counts.quad, quad_total)
    for d in range(MAX_SKIP):
        _normalize_into(tables.skip_table(d + 1), counts.skip[d], skip_totals[d])

    return tables
