# evaluator.py
"""
Layout evaluator: fills a layout's statistic scores from corpus frequencies.

For every key-position tuple the evaluator looks up the normalized
frequency of the character tuple assigned there, producing per-layout
position-frequency arrays in IndexCodec order. A statistic's score is the
sum of those frequencies over its qualifying tuples. Meta statistics are
then derived from the other scores, and get_score() computes the total.

The evaluator only reads the shared frequency and weight tables, so one
instance can be used from several worker threads at once.
"""

import numpy as np
from typing import Dict

from corpus import FrequencyTables
from indexing import IndexCodec, MAX_SKIP
from layout import Layout, get_score
from stat_tables import StatTables


def _pad_table(table: np.ndarray, lang_length: int, order: int) -> np.ndarray:
    """Add a zero-frequency code L so empty keys (-1) can be looked up directly."""
    padded = np.zeros((lang_length + 1,) * order, dtype=np.float64)
    padded[(slice(0, lang_length),) * order] = table.reshape((lang_length,) * order)
    return padded


class LayoutEvaluator:
    """Evaluates layouts against fixed frequency and statistic tables."""

    def __init__(self, tables: StatTables, freqs: FrequencyTables, codec: IndexCodec):
        self.tables = tables
        self.freqs = freqs
        self.codec = codec
        L = freqs.lang_length
        self.lang_length = L

        # Only pad the tables that some statistic actually uses
        self.mono = _pad_table(freqs.linear_mono, L, 1)
        self.bi = _pad_table(freqs.linear_bi, L, 2) if tables.bi_end else None
        self.tri = _pad_table(freqs.linear_tri, L, 3) if tables.tri_end else None
        self.quad = _pad_table(freqs.linear_quad, L, 4) if tables.quad_end else None
        if tables.skip_end:
            self.skip = np.stack([_pad_table(freqs.skip_table(d), L, 2)
                                  for d in range(1, MAX_SKIP + 1)])
        else:
            self.skip = None

    def _codes(self, layout: Layout) -> np.ndarray:
        codes = layout.matrix.reshape(-1)
        if codes.size != self.codec.dim1:
            raise ValueError(
                f"Layout has {codes.size} keys but the codec expects {self.codec.dim1}"
            )
        return np.where(codes >= 0, codes, self.lang_length)

    def position_frequencies(self, layout: Layout) -> Dict[str, np.ndarray]:
        """
        Frequencies per key-position tuple for the layout's assignment.

        Returns:
            Dict with 'mono' (DIM1,), 'bi' (DIM2,), 'tri' (DIM3,), 'quad' (DIM4,)
            and 'skip' (9, DIM2); categories without statistics are omitted.
        """
        s = self._codes(layout)
        freqs = {'mono': self.mono[s]}
        if self.bi is not None:
            freqs['bi'] = self.bi[np.ix_(s, s)].ravel()
        if self.tri is not None:
            freqs['tri'] = self.tri[np.ix_(s, s, s)].ravel()
        if self.quad is not None:
            freqs['quad'] = self.quad[np.ix_(s, s, s, s)].ravel()
        if self.skip is not None:
            freqs['skip'] = self.skip[:, s[:, None], s[None, :]].reshape(MAX_SKIP, -1)
        return freqs

    def get_stats(self, layout: Layout) -> None:
        """Fill every score array of the layout (but not the total)."""
        freqs = self.position_frequencies(layout)
        ngrams = self.tables.ngrams

        for category in ('mono', 'bi', 'tri', 'quad'):
            scores = getattr(layout, f"{category}_score")
            for i, indices in enumerate(ngrams[category]):
                scores[i] = freqs[category][indices].sum()

        for j, indices in enumerate(ngrams['skip']):
            layout.skip_score[:, j] = freqs['skip'][:, indices].sum(axis=1)

        self.get_meta_stats(layout)

    def get_meta_stats(self, layout: Layout) -> None:
        """Derive meta statistics as linear combinations of other scores."""
        for m, components in enumerate(self.tables.meta_components):
            value = 0.0
            for category, index, coefficient, distance in components:
                if category == 'skip':
                    value += coefficient * layout.skip_score[distance - 1, index]
                else:
                    value += coefficient * getattr(layout, f"{category}_score")[index]
            layout.meta_score[m] = abs(value) if self.tables.meta_absolute[m] else value

    def evaluate(self, layout: Layout) -> float:
        """Recompute all statistics and the total score of a layout."""
        self.get_stats(layout)
        return get_score(layout, self.tables)
