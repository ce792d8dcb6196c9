#!/usr/bin/env python3
"""
Tests for swap generation, acceptance and the annealing engine.

The engine tests use a toy objective (negative displacement of every
character from its home key) so that the optimum is known.

Usage:
    python test_annealing.py
"""

import sys
import numpy as np
import pytest

from annealing import (AnnealingEngine, accept_swap, decide_swapbacks, gen_swap, gen_swap_back,
                       imp_swap, new_swap_buffer, random_swap, run_annealing, temperature_schedule)
from indexing import IndexCodec
from layout import alloc_layout, alloc_layout_like, copy_layout, shuffle_layout
from ranking import RankingLedger
from stat_tables import FingerMap, build_stat_tables

ROWS, COLS = 2, 4


def displacement_score(layout):
    flat = layout.matrix.reshape(-1)
    layout.score = float(-np.abs(flat - np.arange(flat.size)).sum())
    return layout.score

def make_layouts(count, seed=0):
    tables = build_stat_tables([], IndexCodec(ROWS, COLS), FingerMap(ROWS, COLS, [0, 1, 8, 9]))
    rng = np.random.default_rng(seed)
    layouts = []
    for i in range(count):
        layout = alloc_layout(tables, ROWS, COLS, f"start-{i}")
        layout.matrix[:] = np.arange(ROWS * COLS).reshape(ROWS, COLS)
        shuffle_layout(layout, rng)
        layouts.append(layout)
    return layouts

def is_permutation(layout):
    return sorted(layout.matrix.ravel().tolist()) == list(range(ROWS * COLS))

def alloc_copy(layout):
    copy = alloc_layout_like(layout)
    copy_layout(copy, layout)
    return copy

#-----------------------------------------------------------------------------
# Swaps and acceptance
#-----------------------------------------------------------------------------
def test_random_swap_picks_distinct_keys():
    layout = make_layouts(1)[0]
    rng = np.random.default_rng(1)
    for _ in range(100):
        a, b = random_swap(layout, rng)
        assert a != b
        assert 0 <= a < ROWS * COLS and 0 <= b < ROWS * COLS
    assert is_permutation(layout)

def test_random_swap_needs_two_keys():
    tables = build_stat_tables([], IndexCodec(1, 1), FingerMap(1, 1, [0]))
    layout = alloc_layout(tables, 1, 1)
    with pytest.raises(ValueError):
        random_swap(layout, np.random.default_rng(0))

def test_swap_back_restores_grid_exactly():
    layouts = make_layouts(3)
    originals = [layout.matrix.copy() for layout in layouts]
    rngs = [np.random.default_rng(i) for i in range(3)]
    swaps = new_swap_buffer(3, 5)
    gen_swap(swaps, 5, layouts, rngs)
    gen_swap_back(swaps, np.array([True, False, True]), layouts)
    np.testing.assert_array_equal(layouts[0].matrix, originals[0])
    np.testing.assert_array_equal(layouts[2].matrix, originals[2])
    assert is_permutation(layouts[1])

def test_accept_swap_limits():
    rng = np.random.default_rng(0)
    assert accept_swap(0.0, 1e-9, rng)
    assert accept_swap(3.0, 0.0, rng)
    assert not accept_swap(-1.0, 0.0, rng)
    assert not any(accept_swap(-100.0, 1e-3, rng) for _ in range(100))
    assert all(accept_swap(-1e-9, 1e9, rng) for _ in range(100))

def test_acceptance_rate_follows_metropolis():
    rng = np.random.default_rng(7)
    accepted = sum(accept_swap(-1.0, 1.0, rng) for _ in range(20000))
    assert accepted / 20000 == pytest.approx(np.exp(-1.0), abs=0.02)

def test_decide_swapbacks_marks_rejected_candidates():
    layouts = make_layouts(2)
    layouts[0].score, layouts[1].score = 5.0, -5.0
    prev_scores = np.array([1.0, 1.0])
    swap_back = np.zeros(2, dtype=bool)
    rngs = [np.random.default_rng(0), np.random.default_rng(1)]
    decide_swapbacks(swap_back, prev_scores, layouts, 1e-6, 2, rngs)
    np.testing.assert_array_equal(swap_back, [False, True])
    np.testing.assert_array_equal(prev_scores, [5.0, 1.0])

def test_imp_swap_never_decreases():
    layouts = make_layouts(4, seed=3)
    snapshots = [alloc_layout_like(layout) for layout in layouts]
    rngs = [np.random.default_rng(i) for i in range(4)]
    swaps = new_swap_buffer(4, 1)
    scores = [displacement_score(layout) for layout in layouts]
    for _ in range(50):
        kept = imp_swap(swaps, 1, layouts, displacement_score, rngs, snapshots)
        for i, layout in enumerate(layouts):
            assert layout.score >= scores[i]
            assert layout.score == displacement_score(layout)
            assert kept[i] == (layout.score > scores[i])
            scores[i] = layout.score

def test_temperature_schedule():
    temperatures = list(temperature_schedule(1.0, 0.01, 10))
    assert len(temperatures) == 10
    assert temperatures[0] == pytest.approx(1.0)
    assert temperatures[-1] == pytest.approx(0.01)
    assert all(a >= b for a, b in zip(temperatures, temperatures[1:]))
    with pytest.raises(ValueError):
        list(temperature_schedule(0.0, 0.01, 10))
    with pytest.raises(ValueError):
        list(temperature_schedule(0.1, 1.0, 10))

#-----------------------------------------------------------------------------
# Engine
#-----------------------------------------------------------------------------
def test_engine_rejects_wrong_population():
    with AnnealingEngine(displacement_score, threads=2) as engine:
        with pytest.raises(ValueError):
            engine.start(make_layouts(3))

def test_engine_rejects_bad_parameters():
    with pytest.raises(ValueError):
        AnnealingEngine(displacement_score, threads=0)
    with pytest.raises(ValueError):
        AnnealingEngine(displacement_score, reps=0)

def test_anneal_keeps_permutations_and_consistent_scores():
    layouts = make_layouts(4)
    with AnnealingEngine(displacement_score, threads=4, reps=2, seed=11) as engine:
        engine.start(layouts)
        best_scores = []
        for temperature in temperature_schedule(5.0, 0.01, 200):
            result = engine.anneal_round(temperature)
            assert result.accepted + result.rejected == 4
            best_scores.append(result.best_score)
            for layout in layouts:
                assert is_permutation(layout)
                assert layout.score == displacement_score(alloc_copy(layout))
        assert all(a <= b for a, b in zip(best_scores, best_scores[1:]))
        assert engine.best.score == max(best_scores)

def test_improve_mode_never_decreases_candidates():
    layouts = make_layouts(3, seed=5)
    with AnnealingEngine(displacement_score, threads=3, seed=2) as engine:
        start = engine.start(layouts)
        previous = [layout.score for layout in layouts]
        for _ in range(100):
            engine.improve_round()
            current = [layout.score for layout in layouts]
            assert all(c >= p for c, p in zip(current, previous))
            previous = current
        assert engine.best.score >= start

def test_run_annealing_reaches_optimum_and_records_best():
    ledger = RankingLedger()
    layouts = make_layouts(4, seed=9)
    rounds = []
    with AnnealingEngine(displacement_score, threads=4, seed=3, ledger=ledger) as engine:
        engine.start(layouts)
        best = run_annealing(engine, 3000, 2.0, 0.01, 'anneal',
                             on_round=lambda i, t, r: rounds.append(i))
        engine.record_best("toy-1")
    assert len(rounds) == 3000
    assert best.score == 0.0
    np.testing.assert_array_equal(best.matrix.ravel(), np.arange(ROWS * COLS))
    assert ledger.top(1) == [("toy-1", 0.0)]

def test_seeded_runs_are_reproducible():
    results = []
    for _ in range(2):
        layouts = make_layouts(2, seed=4)
        with AnnealingEngine(displacement_score, threads=2, seed=123) as engine:
            engine.start(layouts)
            best = run_annealing(engine, 100, 1.0, 0.1)
            results.append((best.score, [layout.matrix.copy() for layout in layouts]))
    assert results[0][0] == results[1][0]
    for first, second in zip(results[0][1], results[1][1]):
        np.testing.assert_array_equal(first, second)

def test_run_annealing_rejects_unknown_mode():
    with AnnealingEngine(displacement_score, threads=1) as engine:
        engine.start(make_layouts(1))
        with pytest.raises(ValueError):
            run_annealing(engine, 10, 1.0, 0.1, mode='exhaustive')


if __name__ == "__main__":
    from result_tally import run_module_tests
    sys.exit(run_module_tests("ANNEALING TESTS", globals()))
