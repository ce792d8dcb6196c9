# annealing.py
"""
Simulated-annealing search over key assignments.

A population of candidate layouts, one per worker thread, is advanced in
rounds:

1. Propose:   each candidate swaps `reps` pairs of distinct keys
2. Evaluate:  each candidate is re-scored (in parallel; the executor map
              is the barrier before the next phase)
3. Decide:    improving or equal scores are kept; a decrease of delta is
              kept with probability exp(delta / temperature)
4. Revert:    rejected candidates re-apply their swaps in reverse order and
              get their previous scores back

imp_swap() is the greedy alternative that only keeps strictly improving
swaps. The caller owns the temperature schedule and the stopping
condition; see run_annealing().
"""

import math
import threading
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

from layout import Layout, alloc_layout_like, copy_layout, copy_scores
from ranking import RankingLedger

Evaluate = Callable[[Layout], float]

#-----------------------------------------------------------------------------
# Per-candidate operations
#-----------------------------------------------------------------------------
def _swap_slots(matrix: np.ndarray, a: int, b: int) -> None:
    flat = matrix.reshape(-1)
    flat[a], flat[b] = flat[b], flat[a]

def random_swap(layout: Layout, rng: np.random.Generator):
    """Exchange the characters of two distinct, uniformly chosen keys."""
    dim1 = layout.dim1
    if dim1 < 2:
        raise ValueError("Need at least 2 keys to swap")
    a = int(rng.integers(dim1))
    b = int(rng.integers(dim1 - 1))
    if b >= a:
        b += 1
    _swap_slots(layout.matrix, a, b)
    return a, b

def _gen_candidate_swap(swaps: np.ndarray, reps: int, layout: Layout,
                        rng: np.random.Generator, i: int) -> None:
    for r in range(reps):
        swaps[i, r] = random_swap(layout, rng)

def _swap_back_candidate(swaps: np.ndarray, i: int, layout: Layout) -> None:
    for r in range(swaps.shape[1] - 1, -1, -1):
        a, b = swaps[i, r]
        _swap_slots(layout.matrix, int(a), int(b))

def _improve_candidate(swaps: np.ndarray, reps: int, layout: Layout, evaluate: Evaluate,
                       rng: np.random.Generator, snapshot: Layout, i: int) -> bool:
    copy_scores(snapshot, layout)
    _gen_candidate_swap(swaps, reps, layout, rng, i)
    evaluate(layout)
    if layout.score > snapshot.score:
        return True
    _swap_back_candidate(swaps, i, layout)
    copy_scores(layout, snapshot)
    return False

#-----------------------------------------------------------------------------
# Round-stepping operations
#-----------------------------------------------------------------------------
def new_swap_buffer(threads: int, reps: int) -> np.ndarray:
    """Swap record of shape (threads, reps, 2) holding flat key slots."""
    return np.zeros((threads, reps, 2), dtype=np.int64)

def gen_swap(swaps: np.ndarray, reps: int, layouts: Sequence[Layout],
             rngs: Sequence[np.random.Generator]) -> None:
    """Apply `reps` independent random swaps to every candidate, recording them."""
    for i, layout in enumerate(layouts):
        _gen_candidate_swap(swaps, reps, layout, rngs[i], i)

def accept_swap(delta: float, temperature: float, rng: np.random.Generator) -> bool:
    """
    Metropolis acceptance: keep any delta >= 0; keep a decrease with
    probability exp(delta / temperature). A non-positive temperature
    rejects every decrease.
    """
    if delta >= 0:
        return True
    if temperature <= 0:
        return False
    return rng.random() < math.exp(delta / temperature)

def decide_swapbacks(swap_back: np.ndarray, prev_scores: np.ndarray,
                     layouts: Sequence[Layout], temperature: float, threads: int,
                     rngs: Sequence[np.random.Generator]) -> None:
    """
    Mark candidates whose swap is rejected.

    Accepted candidates have prev_scores[i] updated to their new score.
    """
    for i in range(threads):
        delta = layouts[i].score - prev_scores[i]
        if accept_swap(delta, temperature, rngs[i]):
            swap_back[i] = False
            prev_scores[i] = layouts[i].score
        else:
            swap_back[i] = True

def gen_swap_back(swaps: np.ndarray, swap_back: np.ndarray, layouts: Sequence[Layout]) -> None:
    """Undo the recorded swaps of every marked candidate, restoring its grid exactly."""
    for i, layout in enumerate(layouts):
        if swap_back[i]:
            _swap_back_candidate(swaps, i, layout)

def imp_swap(swaps: np.ndarray, reps: int, layouts: Sequence[Layout], evaluate: Evaluate,
             rngs: Sequence[np.random.Generator], snapshots: Sequence[Layout]) -> np.ndarray:
    """
    Greedy hill-climb step: keep each candidate's swap only if it strictly
    improves the score, otherwise undo it.

    Returns:
        Boolean array, True where the swap was kept
    """
    kept = np.zeros(len(layouts), dtype=bool)
    for i, layout in enumerate(layouts):
        kept[i] = _improve_candidate(swaps, reps, layout, evaluate, rngs[i], snapshots[i], i)
    return kept

#-----------------------------------------------------------------------------
# Engine
#-----------------------------------------------------------------------------
@dataclass
class RoundResult:
    """Outcome of one search round."""
    accepted: int
    rejected: int
    best_score: float
    improved: bool


class AnnealingEngine:
    """
    Parallel annealing over one candidate layout per worker thread.

    Candidates and their snapshots are owned by a single worker during a
    round. The best layout and the ranking ledger are shared and only
    touched under the engine's lock.
    """

    def __init__(self, evaluate: Evaluate, threads: int = 1, reps: int = 1,
                 seed: Optional[int] = None, ledger: Optional[RankingLedger] = None):
        if threads < 1:
            raise ValueError("threads must be at least 1")
        if reps < 1:
            raise ValueError("reps must be at least 1")

        self.evaluate = evaluate
        self.threads = threads
        self.reps = reps
        self.ledger = ledger

        self.rngs = [np.random.default_rng(s) for s in np.random.SeedSequence(seed).spawn(threads)]
        self.swaps = new_swap_buffer(threads, reps)
        self.swap_back = np.zeros(threads, dtype=bool)
        self.prev_scores = np.zeros(threads, dtype=np.float64)

        self.layouts: List[Layout] = []
        self.snapshots: List[Layout] = []
        self.best: Optional[Layout] = None

        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=threads)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _map(self, func: Callable[[int], object]) -> list:
        """Run func for every worker index and wait for all of them."""
        return list(self._executor.map(func, range(self.threads)))

    def _offer_best(self, i: int) -> bool:
        layout = self.layouts[i]
        with self._lock:
            if layout.score > self.best.score:
                copy_layout(self.best, layout)
                return True
        return False

    def start(self, layouts: List[Layout]) -> float:
        """
        Take ownership of the starting population and evaluate it.

        Returns:
            Best starting score
        """
        if len(layouts) != self.threads:
            raise ValueError(f"Expected {self.threads} layouts, got {len(layouts)}")

        self.layouts = layouts
        self._map(lambda i: self.evaluate(self.layouts[i]))

        self.snapshots = []
        for layout in layouts:
            snapshot = alloc_layout_like(layout, layout.name)
            copy_layout(snapshot, layout)
            self.snapshots.append(snapshot)
        self.prev_scores[:] = [layout.score for layout in layouts]

        best_index = int(np.argmax(self.prev_scores))
        self.best = alloc_layout_like(layouts[best_index])
        copy_layout(self.best, layouts[best_index])
        return self.best.score

    def anneal_round(self, temperature: float) -> RoundResult:
        """One Propose -> Evaluate -> Decide -> Revert round."""
        def propose_and_evaluate(i):
            _gen_candidate_swap(self.swaps, self.reps, self.layouts[i], self.rngs[i], i)
            self.evaluate(self.layouts[i])

        self._map(propose_and_evaluate)

        decide_swapbacks(self.swap_back, self.prev_scores, self.layouts,
                         temperature, self.threads, self.rngs)

        def commit_or_revert(i):
            if self.swap_back[i]:
                _swap_back_candidate(self.swaps, i, self.layouts[i])
                copy_scores(self.layouts[i], self.snapshots[i])
                return False
            copy_scores(self.snapshots[i], self.layouts[i])
            return self._offer_best(i)

        improved = self._map(commit_or_revert)
        rejected = int(self.swap_back.sum())
        return RoundResult(self.threads - rejected, rejected, self.best.score, any(improved))

    def improve_round(self) -> RoundResult:
        """One greedy round: every candidate keeps only a strictly improving swap."""
        def improve(i):
            kept = _improve_candidate(self.swaps, self.reps, self.layouts[i], self.evaluate,
                                      self.rngs[i], self.snapshots[i], i)
            return kept, kept and self._offer_best(i)

        outcomes = self._map(improve)
        kept = sum(1 for k, _ in outcomes if k)
        self.prev_scores[:] = [layout.score for layout in self.layouts]
        return RoundResult(kept, self.threads - kept, self.best.score, any(b for _, b in outcomes))

    def record_best(self, name: str) -> None:
        """Insert the best layout found so far into the ledger."""
        with self._lock:
            self.best.name = name
            if self.ledger is not None:
                self.ledger.insert(name, self.best.score)

#-----------------------------------------------------------------------------
# Schedule and driver loop
#-----------------------------------------------------------------------------
def temperature_schedule(start_temperature: float, final_temperature: float,
                         iterations: int) -> Iterator[float]:
    """Geometric cooling from start_temperature towards final_temperature."""
    if start_temperature <= 0 or final_temperature <= 0:
        raise ValueError("Temperatures must be positive")
    if final_temperature > start_temperature:
        raise ValueError("final_temperature must not exceed start_temperature")
    ratio = final_temperature / start_temperature
    for i in range(iterations):
        temperature = start_temperature * ratio ** (i / max(1, iterations - 1))
        yield max(temperature, final_temperature)

def run_annealing(engine: AnnealingEngine, iterations: int, start_temperature: float,
                  final_temperature: float, mode: str = 'anneal',
                  on_round: Optional[Callable[[int, float, RoundResult], None]] = None) -> Layout:
    """
    Advance an engine until the iteration budget is used or the temperature
    falls below the floor. Stopping is only checked between rounds.

    Args:
        engine: Started AnnealingEngine
        iterations: Maximum number of rounds
        start_temperature: Initial temperature
        final_temperature: Temperature floor
        mode: 'anneal' for Metropolis acceptance, 'improve' for greedy hill-climbing
        on_round: Optional callback (round index, temperature, result)

    Returns:
        The engine's best layout
    """
    if mode not in ('anneal', 'improve'):
        raise ValueError(f"Invalid mode '{mode}'. Must be 'anneal' or 'improve'")

    schedule = temperature_schedule(start_temperature, final_temperature, iterations)
    for i, temperature in enumerate(schedule):
        if temperature < final_temperature:
            break
        if mode == 'anneal':
            result = engine.anneal_round(temperature)
        else:
            result = engine.improve_round()
        if on_round is not None:
            on_round(i, temperature, result)
    return engine.best
