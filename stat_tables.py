# stat_tables.py
"""
Statistic definitions and weight tables.

A statistic is a named, weighted rule selecting which key-position tuples
qualify (for example "same finger bigram"). Statistics are declared in the
configuration file and turned into contiguous per-category arrays by a
four-step pipeline:

1. build:        evaluate each rule over every position tuple of its arity
2. trim:         compact the qualifying tuples into flat-index arrays
3. clean:        drop statistics with no qualifying tuples or zero weight
                 (unless a meta statistic refers to them)
4. materialize:  produce StatTables with per-category weight arrays

Meta statistics are linear combinations of other statistics' scores.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from indexing import IndexCodec, MAX_SKIP

CATEGORIES = ('mono', 'bi', 'tri', 'quad', 'skip', 'meta')
CATEGORY_ORDER = {'mono': 1, 'bi': 2, 'tri': 3, 'quad': 4, 'skip': 2}

FINGER_NAMES = [
    'left_pinky', 'left_ring', 'left_middle', 'left_index', 'left_thumb',
    'right_thumb', 'right_index', 'right_middle', 'right_ring', 'right_pinky',
]
LEFT, RIGHT = 0, 1

#-----------------------------------------------------------------------------
# Finger map
#-----------------------------------------------------------------------------
def default_fingers(cols: int) -> List[int]:
    """
    Column-to-finger assignment for a row-staggered board: outer columns
    go to pinky/ring/middle, the inner columns of each half to the index.
    """
    half = cols // 2
    fingers = []
    for c in range(cols):
        if c < half:
            fingers.append(min(c, 3))
        else:
            fingers.append(max(9 - (cols - 1 - c), 6))
    return fingers


class FingerMap:
    """Per-key finger, hand, row and column lookup arrays indexed by key ordinal."""

    def __init__(self, rows: int, cols: int, fingers: Optional[List] = None):
        if fingers is None:
            fingers = default_fingers(cols)

        grid = np.asarray(fingers, dtype=np.int64)
        if grid.ndim == 1:
            grid = np.tile(grid, (rows, 1))
        if grid.shape != (rows, cols):
            raise ValueError(
                f"Finger map shape {grid.shape} does not match grid {rows}x{cols}"
            )
        if grid.min() < 0 or grid.max() > 9:
            raise ValueError("Finger ids must be between 0 and 9")

        self.rows = rows
        self.cols = cols
        self.finger = grid.ravel()
        self.hand = np.where(self.finger < 5, LEFT, RIGHT)
        self.row = np.repeat(np.arange(rows), cols)
        self.col = np.tile(np.arange(cols), rows)
        # Larger means closer to the thumbs on either hand
        self.inwardness = np.where(self.hand == LEFT, self.finger, 9 - self.finger)

#-----------------------------------------------------------------------------
# Rules
#-----------------------------------------------------------------------------
def _finger_param(value) -> int:
    if isinstance(value, str):
        if value not in FINGER_NAMES:
            raise ValueError(f"Unknown finger '{value}'. Available: {FINGER_NAMES}")
        return FINGER_NAMES.index(value)
    return int(value)

def _hand_param(value) -> int:
    if value in ('left', LEFT):
        return LEFT
    if value in ('right', RIGHT):
        return RIGHT
    raise ValueError(f"Unknown hand '{value}', expected 'left' or 'right'")

def _monotone(values: np.ndarray) -> np.ndarray:
    steps = np.diff(values, axis=1)
    return np.all(steps > 0, axis=1) | np.all(steps < 0, axis=1)

def _all_same(values: np.ndarray) -> np.ndarray:
    return np.all(values == values[:, :1], axis=1)

def _distinct_neighbours(values: np.ndarray) -> np.ndarray:
    return np.all(values[:, 1:] != values[:, :-1], axis=1)

# Order 1
def _rule_all(fm, t, params):
    return np.ones(len(t), dtype=bool)

def _rule_hand(fm, t, params):
    return fm.hand[t[:, 0]] == _hand_param(params['hand'])

def _rule_finger(fm, t, params):
    return fm.finger[t[:, 0]] == _finger_param(params['finger'])

def _rule_row(fm, t, params):
    return fm.row[t[:, 0]] == int(params['row'])

def _rule_column(fm, t, params):
    return fm.col[t[:, 0]] == int(params['column'])

# Order 2 (also used for skipgrams)
def _rule_same_finger(fm, t, params):
    f = fm.finger[t]
    return (f[:, 0] == f[:, 1]) & (t[:, 0] != t[:, 1])

def _rule_same_hand(fm, t, params):
    return _all_same(fm.hand[t])

def _rule_alternation(fm, t, params):
    return _distinct_neighbours(fm.hand[t])

def _rule_inward_roll(fm, t, params):
    inward = fm.inwardness[t]
    return _rule_same_hand(fm, t, params) & (inward[:, 1] > inward[:, 0])

def _rule_outward_roll(fm, t, params):
    inward = fm.inwardness[t]
    return _rule_same_hand(fm, t, params) & (inward[:, 1] < inward[:, 0])

def _rule_scissor(fm, t, params):
    f = fm.finger[t]
    r = fm.row[t]
    return (_rule_same_hand(fm, t, params) & (f[:, 0] != f[:, 1])
            & (np.abs(r[:, 0] - r[:, 1]) >= int(params.get('rows', 2))))

# Order 3
def _rule_tri_same_finger(fm, t, params):
    f = fm.finger[t]
    first = (f[:, 0] == f[:, 1]) & (t[:, 0] != t[:, 1])
    second = (f[:, 1] == f[:, 2]) & (t[:, 1] != t[:, 2])
    return first | second

def _rule_tri_roll(fm, t, params):
    h = fm.hand[t]
    f = fm.finger[t]
    leading = (h[:, 0] == h[:, 1]) & (h[:, 1] != h[:, 2]) & (f[:, 0] != f[:, 1])
    trailing = (h[:, 0] != h[:, 1]) & (h[:, 1] == h[:, 2]) & (f[:, 1] != f[:, 2])
    return leading | trailing

def _rule_one_hand(fm, t, params):
    return _all_same(fm.hand[t]) & _monotone(fm.inwardness[t])

def _rule_redirect(fm, t, params):
    f = fm.finger[t]
    return (_all_same(fm.hand[t]) & _distinct_neighbours(f)
            & ~_monotone(fm.inwardness[t]))

# Order 4
def _rule_quad_roll(fm, t, params):
    h = fm.hand[t]
    f = fm.finger[t]
    return ((h[:, 0] == h[:, 1]) & (h[:, 2] == h[:, 3]) & (h[:, 1] != h[:, 2])
            & (f[:, 0] != f[:, 1]) & (f[:, 2] != f[:, 3]))


RuleFunction = Callable[[FingerMap, np.ndarray, Dict[str, Any]], np.ndarray]

RULES: Dict[int, Dict[str, RuleFunction]] = {
    1: {
        'all': _rule_all,
        'hand': _rule_hand,
        'finger': _rule_finger,
        'row': _rule_row,
        'column': _rule_column,
    },
    2: {
        'same_finger': _rule_same_finger,
        'same_hand': _rule_same_hand,
        'alternation': _rule_alternation,
        'inward_roll': _rule_inward_roll,
        'outward_roll': _rule_outward_roll,
        'scissor': _rule_scissor,
    },
    3: {
        'same_finger': _rule_tri_same_finger,
        'alternation': _rule_alternation,
        'roll': _rule_tri_roll,
        'one_hand': _rule_one_hand,
        'redirect': _rule_redirect,
        'same_hand': _rule_same_hand,
    },
    4: {
        'alternation': _rule_alternation,
        'one_hand': _rule_one_hand,
        'roll': _rule_quad_roll,
        'same_hand': _rule_same_hand,
    },
}

#-----------------------------------------------------------------------------
# Definitions
#-----------------------------------------------------------------------------
@dataclass
class StatDefinition:
    """Declarative statistic as read from the configuration file."""
    name: str
    category: str
    rule: str = ""
    weight: Union[float, List[float]] = 0.0
    params: Dict[str, Any] = field(default_factory=dict)
    components: List[Dict[str, Any]] = field(default_factory=list)
    absolute: bool = False
    ngrams: Optional[np.ndarray] = None

    @property
    def is_meta(self) -> bool:
        return self.category == 'meta'

    @property
    def has_weight(self) -> bool:
        return bool(np.any(np.asarray(self.weight, dtype=np.float64) != 0))


def parse_stat_definitions(raw_stats: List[Dict[str, Any]]) -> List[StatDefinition]:
    """
    Validate raw statistic dictionaries and convert them to StatDefinitions.

    Raises:
        ValueError: If a statistic is malformed
    """
    definitions = []
    seen = set()

    for i, raw in enumerate(raw_stats or []):
        try:
            definition = StatDefinition(**raw)
        except TypeError as e:
            raise ValueError(f"Error parsing statistic #{i + 1}: {e}")

        if definition.category not in CATEGORIES:
            raise ValueError(
                f"Statistic '{definition.name}' has unknown category '{definition.category}'. "
                f"Must be one of: {list(CATEGORIES)}"
            )

        key = (definition.category, definition.name)
        if key in seen:
            raise ValueError(f"Duplicate {definition.category} statistic '{definition.name}'")
        seen.add(key)

        if definition.category == 'skip':
            weights = np.atleast_1d(np.asarray(definition.weight, dtype=np.float64))
            if len(weights) == 1:
                weights = np.repeat(weights, MAX_SKIP)
            if len(weights) != MAX_SKIP:
                raise ValueError(
                    f"Skip statistic '{definition.name}' needs {MAX_SKIP} weights, got {len(weights)}"
                )
            definition.weight = weights.tolist()
        else:
            try:
                definition.weight = float(definition.weight)
            except (TypeError, ValueError):
                raise ValueError(
                    f"Statistic '{definition.name}' needs a single numeric weight, got {definition.weight!r}"
                )

        if definition.is_meta:
            if not definition.components:
                raise ValueError(f"Meta statistic '{definition.name}' has no components")
            for component in definition.components:
                if component.get('category') not in CATEGORY_ORDER:
                    raise ValueError(
                        f"Meta statistic '{definition.name}' has a component with invalid "
                        f"category '{component.get('category')}'"
                    )
                if 'name' not in component:
                    raise ValueError(f"Meta statistic '{definition.name}' has a component without name")
        else:
            order = CATEGORY_ORDER[definition.category]
            if definition.rule not in RULES[order]:
                raise ValueError(
                    f"Statistic '{definition.name}' uses unknown {definition.category} rule "
                    f"'{definition.rule}'. Available: {sorted(RULES[order])}"
                )

        definitions.append(definition)

    return definitions

#-----------------------------------------------------------------------------
# Pipeline
#-----------------------------------------------------------------------------
def build_stats(definitions: List[StatDefinition], codec: IndexCodec,
                fingermap: FingerMap) -> List[StatDefinition]:
    """Evaluate every rule over all position tuples; ngrams becomes a boolean mask."""
    tuples_by_order = {}
    for definition in definitions:
        if definition.is_meta:
            continue
        order = CATEGORY_ORDER[definition.category]
        if order not in tuples_by_order:
            tuples_by_order[order] = codec.ordinal_tuples(order)
        rule = RULES[order][definition.rule]
        definition.ngrams = np.asarray(rule(fingermap, tuples_by_order[order], definition.params), dtype=bool)
    return definitions

def trim_stats(definitions: List[StatDefinition]) -> List[StatDefinition]:
    """Compact each boolean mask into a contiguous array of flat indices."""
    for definition in definitions:
        if definition.ngrams is not None and definition.ngrams.dtype == bool:
            definition.ngrams = np.flatnonzero(definition.ngrams).astype(np.int64)
    return definitions

def _meta_references(definitions: List[StatDefinition]) -> set:
    return {
        (component['category'], component['name'])
        for definition in definitions if definition.is_meta
        for component in definition.components
    }

def clean_stats(definitions: List[StatDefinition]) -> List[StatDefinition]:
    """Drop statistics that can never contribute to a score."""
    referenced = _meta_references([d for d in definitions if d.is_meta and d.has_weight])
    kept = []
    for definition in definitions:
        if definition.is_meta:
            if definition.has_weight:
                kept.append(definition)
            continue
        if (definition.category, definition.name) in referenced:
            kept.append(definition)
        elif definition.has_weight and definition.ngrams is not None and len(definition.ngrams) > 0:
            kept.append(definition)
    return kept


@dataclass
class StatTables:
    """Materialized per-category statistic tables."""
    names: Dict[str, List[str]]
    ngrams: Dict[str, List[np.ndarray]]
    weight_mono: np.ndarray
    weight_bi: np.ndarray
    weight_tri: np.ndarray
    weight_quad: np.ndarray
    weight_skip: np.ndarray   # Shape: (SKIP_END, 9), column d-1 is distance d
    weight_meta: np.ndarray
    meta_components: List[List[Tuple[str, int, float, int]]]
    meta_absolute: np.ndarray

    @property
    def mono_end(self) -> int:
        return len(self.weight_mono)

    @property
    def bi_end(self) -> int:
        return len(self.weight_bi)

    @property
    def tri_end(self) -> int:
        return len(self.weight_tri)

    @property
    def quad_end(self) -> int:
        return len(self.weight_quad)

    @property
    def skip_end(self) -> int:
        return len(self.weight_skip)

    @property
    def meta_end(self) -> int:
        return len(self.weight_meta)

    def index_of(self, category: str, name: str) -> int:
        try:
            return self.names[category].index(name)
        except ValueError:
            raise KeyError(f"No {category} statistic named '{name}'")

    def weights(self, category: str) -> np.ndarray:
        return getattr(self, f"weight_{category}")


def materialize_stats(definitions: List[StatDefinition]) -> StatTables:
    """Convert cleaned definitions into contiguous per-category arrays."""
    by_category = {category: [d for d in definitions if d.category == category]
                   for category in CATEGORIES}
    names = {category: [d.name for d in stats] for category, stats in by_category.items()}
    ngrams = {category: [d.ngrams for d in by_category[category]]
              for category in CATEGORY_ORDER}

    def weights_of(category):
        return np.array([d.weight for d in by_category[category]], dtype=np.float64)

    weight_skip = np.array([d.weight for d in by_category['skip']], dtype=np.float64)
    weight_skip = weight_skip.reshape(len(by_category['skip']), MAX_SKIP)

    meta_components = []
    for definition in by_category['meta']:
        resolved = []
        for component in definition.components:
            category = component['category']
            try:
                index = names[category].index(component['name'])
            except ValueError:
                raise ValueError(
                    f"Meta statistic '{definition.name}' refers to unknown "
                    f"{category} statistic '{component['name']}'"
                )
            distance = int(component.get('distance', 1))
            if category == 'skip' and not 1 <= distance <= MAX_SKIP:
                raise ValueError(f"Meta statistic '{definition.name}' has invalid skip distance {distance}")
            resolved.append((category, index, float(component.get('coefficient', 1.0)), distance))
        meta_components.append(resolved)

    return StatTables(
        names=names,
        ngrams=ngrams,
        weight_mono=weights_of('mono'),
        weight_bi=weights_of('bi'),
        weight_tri=weights_of('tri'),
        weight_quad=weights_of('quad'),
        weight_skip=weight_skip,
        weight_meta=weights_of('meta'),
        meta_components=meta_components,
        meta_absolute=np.array([d.absolute for d in by_category['meta']], dtype=bool),
    )

def build_stat_tables(raw_stats: List[Dict[str, Any]], codec: IndexCodec,
                      fingermap: FingerMap) -> StatTables:
    """Run the full build -> trim -> clean -> materialize pipeline."""
    definitions = parse_stat_definitions(raw_stats)
    definitions = build_stats(definitions, codec, fingermap)
    definitions = trim_stats(definitions)
    definitions = clean_stats(definitions)
    return materialize_stats(definitions)
