#!/usr/bin/env python3
"""
Tests for layout lifecycle, score aggregation, diffs and layout files.

Usage:
    python test_layout.py
"""

import os
import sys
import tempfile
import numpy as np
import pytest

import layout as layout_module
from errors import FatalError
from indexing import IndexCodec, MAX_SKIP
from layout import (LAYOUT_NAME_LENGTH, NAME_BUFFER_LENGTH, alloc_layout, alloc_layout_like,
                    category_contributions, copy_layout, diff_name, free_layout, get_layout_diff, get_score,
                    layout_from_string, layout_to_string, parse_layout_grid, read_layout,
                    shuffle_layout, write_layout)
from stat_tables import FingerMap, build_stat_tables

CHARACTERS = "abcdef"

STATISTICS = [
    {'name': 'All', 'category': 'mono', 'rule': 'all', 'weight': 1.0},
    {'name': 'Top Row', 'category': 'mono', 'rule': 'row', 'params': {'row': 0}, 'weight': 2.0},
    {'name': 'Alternation', 'category': 'bi', 'rule': 'alternation', 'weight': 0.5},
    {'name': 'Same Hand', 'category': 'tri', 'rule': 'same_hand', 'weight': -1.0},
    {'name': 'Alternation', 'category': 'quad', 'rule': 'alternation', 'weight': 0.25},
    {'name': 'Same Hand', 'category': 'skip', 'rule': 'same_hand', 'weight': [1, 2, 3, 4, 5, 6, 7, 8, 9]},
    {'name': 'Top Minus All', 'category': 'meta', 'weight': 3.0,
     'components': [{'category': 'mono', 'name': 'Top Row', 'coefficient': 1.0},
                    {'category': 'mono', 'name': 'All', 'coefficient': -1.0}]},
]


def make_tables():
    return build_stat_tables(STATISTICS, IndexCodec(2, 3), FingerMap(2, 3, [0, 1, 9]))

def filled_layout(tables, name="test", seed=0):
    layout = alloc_layout(tables, 2, 3, name)
    layout.matrix[:] = np.arange(6).reshape(2, 3)
    rng = np.random.default_rng(seed)
    for scores in layout.score_arrays():
        scores[...] = rng.random(scores.shape)
    return layout

def test_alloc_sizes_score_arrays_to_tables():
    tables = make_tables()
    layout = alloc_layout(tables, 2, 3)
    assert layout.mono_score.shape == (tables.mono_end,)
    assert layout.bi_score.shape == (1,)
    assert layout.skip_score.shape == (MAX_SKIP, 1)
    assert layout.meta_score.shape == (1,)
    assert (layout.matrix == -1).all()
    assert layout.score == 0.0
    assert layout.is_allocated()

def test_alloc_truncates_name():
    layout = alloc_layout(make_tables(), 2, 3, "x" * 200)
    assert len(layout.name) == LAYOUT_NAME_LENGTH

def test_alloc_failure_is_fatal(monkeypatch):
    def no_memory(*args, **kwargs):
        raise MemoryError()
    tables = make_tables()
    monkeypatch.setattr(layout_module.np, "full", no_memory)
    with pytest.raises(FatalError):
        alloc_layout(tables, 2, 3)

def test_free_layout_releases_buffers():
    layout = alloc_layout(make_tables(), 2, 3)
    free_layout(layout)
    assert not layout.is_allocated()

def test_copy_layout_is_deep():
    tables = make_tables()
    src = filled_layout(tables, "source")
    get_score(src, tables)
    dest = alloc_layout_like(src)
    copy_layout(dest, src)
    assert dest.name == "source" and dest.score == src.score
    src.matrix[0, 0] = 5
    src.mono_score[0] = 99.0
    assert dest.matrix[0, 0] == 0
    assert dest.mono_score[0] != 99.0

def test_shuffle_is_a_permutation():
    layout = alloc_layout(make_tables(), 2, 3)
    layout.matrix[:] = np.arange(6).reshape(2, 3)
    rng = np.random.default_rng(42)
    for _ in range(20):
        shuffle_layout(layout, rng)
        assert sorted(layout.matrix.ravel().tolist()) == list(range(6))

def test_shuffle_single_key_is_noop():
    tables = build_stat_tables([], IndexCodec(1, 1), FingerMap(1, 1, [0]))
    layout = alloc_layout(tables, 1, 1)
    layout.matrix[0, 0] = 3
    shuffle_layout(layout, np.random.default_rng(0))
    assert layout.matrix[0, 0] == 3

def test_get_score_is_weighted_sum():
    tables = make_tables()
    layout = filled_layout(tables)
    expected = (
        layout.mono_score @ tables.weight_mono
        + layout.bi_score @ tables.weight_bi
        + layout.tri_score @ tables.weight_tri
        + layout.quad_score @ tables.weight_quad
        + sum(layout.skip_score[d, j] * tables.weight_skip[j, d]
              for j in range(tables.skip_end) for d in range(MAX_SKIP))
        + layout.meta_score @ tables.weight_meta
    )
    assert get_score(layout, tables) == pytest.approx(expected)
    assert layout.score == pytest.approx(expected)

def test_get_score_is_linear():
    tables = make_tables()
    first = filled_layout(tables, seed=1)
    second = filled_layout(tables, seed=2)
    combined = alloc_layout_like(first)
    for attr in layout_module.SCORE_ARRAYS:
        getattr(combined, attr)[...] = 2.0 * getattr(first, attr) + getattr(second, attr)
    assert get_score(combined, tables) == pytest.approx(
        2.0 * get_score(first, tables) + get_score(second, tables))

def test_scaling_category_weights_scales_contribution():
    tables = make_tables()
    layout = filled_layout(tables, seed=5)
    total = get_score(layout, tables)
    before = category_contributions(layout, tables)
    tables.weight_tri *= 3.0
    after = category_contributions(layout, tables)
    assert after["tri"] == pytest.approx(3.0 * before["tri"])
    assert after["mono"] == pytest.approx(before["mono"])
    assert get_score(layout, tables) == pytest.approx(total + 2.0 * before["tri"])

def test_zero_scores_give_zero_total():
    tables = make_tables()
    layout = alloc_layout(tables, 2, 3)
    assert get_score(layout, tables) == 0.0

def test_self_diff_is_zero():
    tables = make_tables()
    layout = filled_layout(tables, "same")
    get_score(layout, tables)
    diff = get_layout_diff(layout, layout)
    np.testing.assert_array_equal(diff.matrix, layout.matrix)
    assert diff.score == 0.0
    for scores in diff.score_arrays():
        assert not scores.any()

def test_diff_is_antisymmetric():
    tables = make_tables()
    first = filled_layout(tables, "first", seed=1)
    second = filled_layout(tables, "second", seed=2)
    second.matrix[0, :2] = [1, 0]
    get_score(first, tables)
    get_score(second, tables)

    forward = get_layout_diff(first, second)
    backward = get_layout_diff(second, first)
    assert forward.score == pytest.approx(-backward.score)
    for a, b in zip(forward.score_arrays(), backward.score_arrays()):
        np.testing.assert_allclose(a, -b)
    # Differing keys are blanked, shared keys are kept
    np.testing.assert_array_equal(forward.matrix, [[-1, -1, 2], [3, 4, 5]])
    assert forward.name == "first - second"

def test_diff_name_length_is_bounded():
    name = diff_name("a" * 80, "b" * 80)
    assert len(name) == NAME_BUFFER_LENGTH == 99
    assert name == "a" * 48 + " - " + "b" * 48

def test_diff_into_preallocated_layout():
    tables = make_tables()
    first = filled_layout(tables, "first", seed=3)
    second = filled_layout(tables, "second", seed=4)
    target = alloc_layout_like(first)
    assert get_layout_diff(first, second, target) is target

def test_parse_layout_grid():
    matrix = parse_layout_grid("# comment\na b c\n_ e f\n", CHARACTERS, 2, 3)
    np.testing.assert_array_equal(matrix, [[0, 1, 2], [-1, 4, 5]])

@pytest.mark.parametrize("text", [
    "a b c\n",                 # too few rows
    "a b c\nd e\n",            # too few keys
    "a b c\nd e z\n",          # not in alphabet
    "a b c\nd e a\n",          # duplicate
])
def test_parse_layout_grid_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_layout_grid(text, CHARACTERS, 2, 3)

def test_layout_text_round_trip():
    tables = make_tables()
    text = "f e d\n_ b a"
    layout = layout_from_string("rev", text, tables, CHARACTERS, 2, 3)
    assert layout_to_string(layout, CHARACTERS) == text

def test_write_then_read_layout():
    tables = make_tables()
    layout = filled_layout(tables, "written")
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "mine.txt")
        write_layout(layout, path, CHARACTERS)
        loaded = read_layout(path, tables, CHARACTERS, 2, 3)
    assert loaded.name == "mine"
    np.testing.assert_array_equal(loaded.matrix, layout.matrix)

def test_read_missing_layout_raises():
    with pytest.raises(FileNotFoundError):
        read_layout("does/not/exist.txt", make_tables(), CHARACTERS, 2, 3)


if __name__ == "__main__":
    from result_tally import run_module_tests
    sys.exit(run_module_tests("LAYOUT TESTS", globals()))
