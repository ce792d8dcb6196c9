#!/usr/bin/env python3
"""
Tests for statistic definitions and the build -> trim -> clean -> materialize pipeline.

Usage:
    python test_stat_tables.py
"""

import sys
import numpy as np
import pytest

from indexing import IndexCodec, MAX_SKIP
from stat_tables import (FingerMap, LEFT, RIGHT, build_stat_tables, default_fingers,
                         parse_stat_definitions)


def two_by_two():
    """2x2 grid: left column on the left pinky, right column on the right pinky."""
    return IndexCodec(2, 2), FingerMap(2, 2, [0, 9])

def test_default_fingers_for_ten_columns():
    assert default_fingers(10) == [0, 1, 2, 3, 3, 6, 6, 7, 8, 9]

def test_finger_map_lookups():
    fm = FingerMap(3, 10)
    assert fm.hand[0] == LEFT and fm.hand[9] == RIGHT
    assert fm.row[25] == 2 and fm.col[25] == 5
    assert fm.finger[14] == 3

def test_finger_map_accepts_per_key_fingers():
    fm = FingerMap(2, 2, [[0, 9], [1, 8]])
    np.testing.assert_array_equal(fm.finger, [0, 9, 1, 8])

def test_finger_map_rejects_bad_shape():
    with pytest.raises(ValueError):
        FingerMap(2, 3, [0, 9])
    with pytest.raises(ValueError):
        FingerMap(1, 2, [0, 12])

def test_same_finger_bigram_tuples():
    codec, fm = two_by_two()
    tables = build_stat_tables(
        [{'name': 'SFB', 'category': 'bi', 'rule': 'same_finger', 'weight': -1.0}], codec, fm)
    # Key pairs (0, 2), (1, 3), (2, 0), (3, 1)
    np.testing.assert_array_equal(tables.ngrams['bi'][0], [2, 7, 8, 13])
    np.testing.assert_array_equal(tables.weight_bi, [-1.0])

def test_hand_rule_on_monograms():
    codec, fm = two_by_two()
    tables = build_stat_tables(
        [{'name': 'Left', 'category': 'mono', 'rule': 'hand', 'params': {'hand': 'left'}, 'weight': 1.0}],
        codec, fm)
    np.testing.assert_array_equal(tables.ngrams['mono'][0], [0, 2])

def test_zero_weight_and_empty_statistics_are_cleaned():
    codec = IndexCodec(1, 2)
    fm = FingerMap(1, 2, [0, 9])
    tables = build_stat_tables([
        {'name': 'Unweighted', 'category': 'mono', 'rule': 'all', 'weight': 0.0},
        {'name': 'Never', 'category': 'bi', 'rule': 'same_finger', 'weight': -1.0},
        {'name': 'Kept', 'category': 'bi', 'rule': 'alternation', 'weight': 1.0},
    ], codec, fm)
    assert tables.mono_end == 0
    assert tables.names['bi'] == ['Kept']

def test_meta_components_survive_cleaning():
    codec, fm = two_by_two()
    tables = build_stat_tables([
        {'name': 'Left', 'category': 'mono', 'rule': 'hand', 'params': {'hand': 'left'}, 'weight': 0.0},
        {'name': 'Right', 'category': 'mono', 'rule': 'hand', 'params': {'hand': 'right'}, 'weight': 0.0},
        {'name': 'Imbalance', 'category': 'meta', 'weight': -1.0, 'absolute': True,
         'components': [{'category': 'mono', 'name': 'Left', 'coefficient': 1.0},
                        {'category': 'mono', 'name': 'Right', 'coefficient': -1.0}]},
    ], codec, fm)
    assert tables.names['mono'] == ['Left', 'Right']
    assert tables.meta_components[0] == [('mono', 0, 1.0, 1), ('mono', 1, -1.0, 1)]
    assert tables.meta_absolute[0]

def test_unweighted_meta_is_dropped_with_its_components():
    codec, fm = two_by_two()
    tables = build_stat_tables([
        {'name': 'Left', 'category': 'mono', 'rule': 'hand', 'params': {'hand': 'left'}, 'weight': 0.0},
        {'name': 'Copy', 'category': 'meta', 'weight': 0.0,
         'components': [{'category': 'mono', 'name': 'Left'}]},
    ], codec, fm)
    assert tables.mono_end == 0 and tables.meta_end == 0

def test_skip_weights_are_broadcast():
    codec, fm = two_by_two()
    tables = build_stat_tables(
        [{'name': 'SFS', 'category': 'skip', 'rule': 'same_finger', 'weight': -0.5}], codec, fm)
    assert tables.weight_skip.shape == (1, MAX_SKIP)
    np.testing.assert_array_equal(tables.weight_skip[0], [-0.5] * MAX_SKIP)

def test_index_of_and_weights():
    codec, fm = two_by_two()
    tables = build_stat_tables([
        {'name': 'A', 'category': 'mono', 'rule': 'all', 'weight': 2.0},
        {'name': 'B', 'category': 'mono', 'rule': 'row', 'params': {'row': 0}, 'weight': 3.0},
    ], codec, fm)
    assert tables.index_of('mono', 'B') == 1
    np.testing.assert_array_equal(tables.weights('mono'), [2.0, 3.0])
    with pytest.raises(KeyError):
        tables.index_of('mono', 'C')

MALFORMED_STATISTICS = [
    [{'name': 'X', 'category': 'penta', 'rule': 'all', 'weight': 1.0}],
    [{'name': 'X', 'category': 'mono', 'rule': 'same_finger', 'weight': 1.0}],
    [{'name': 'X', 'category': 'mono', 'rule': 'all', 'weight': [1.0, 2.0]}],
    [{'name': 'X', 'category': 'skip', 'rule': 'same_finger', 'weight': [1.0, 2.0]}],
    [{'name': 'X', 'category': 'meta', 'weight': 1.0}],
    [{'name': 'X', 'category': 'meta', 'weight': 1.0, 'components': [{'category': 'meta', 'name': 'Y'}]}],
    [{'name': 'X', 'category': 'mono', 'rule': 'all', 'weight': 1.0, 'colour': 'red'}],
    [{'name': 'X', 'category': 'mono', 'rule': 'all', 'weight': 1.0},
     {'name': 'X', 'category': 'mono', 'rule': 'all', 'weight': 2.0}],
]

def test_malformed_statistics_raise():
    for raw in MALFORMED_STATISTICS:
        with pytest.raises(ValueError):
            parse_stat_definitions(raw)

def test_meta_with_unknown_component_raises():
    codec, fm = two_by_two()
    with pytest.raises(ValueError):
        build_stat_tables([{'name': 'M', 'category': 'meta', 'weight': 1.0,
                            'components': [{'category': 'mono', 'name': 'Missing'}]}], codec, fm)


if __name__ == "__main__":
    from result_tally import run_module_tests
    sys.exit(run_module_tests("STATISTIC TABLE TESTS", globals()))
