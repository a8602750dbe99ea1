"""Greedy chord sequencing.

Walks the thread from peg to peg, each time picking the chord whose pixels
still need the most weighted darkness:

    score(c) = sum over p in c of max(0, ink[p] - target[p]) * (importance[p] + bias)

where ink is the simulated canvas (starts white, 255) and target the
working luminance. The per-pixel term is kept in a gain buffer and
refreshed only on the pixels of the chord just drawn, so scoring a
candidate is a gather + sum over its cached footprint.

Candidate rule per step (current peg c, previous peg p):
    - pegs on the stride grid range(0, N, stride), stride = max(1, N // max_candidates)
    - minus c, minus pegs with ring distance < min_loop_separation
      (relaxed to "minus c" when min_loop_separation > N // 2)
    - stop ("no_candidates") when fewer than 2 remain, then minus p
    - best score wins, ties go to the lowest peg index
    - stop ("converged") when the best score is below SCORE_EPSILON

Drivers:
    - steps(): generator, yields each accepted Chord
    - run(): synchronous
    - run_async(): awaits asyncio.sleep(0) every yield_every chords
Both drivers produce identical chord sequences.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..utils.errors import InvalidParameterError
from ..utils.profiler import TimerAccumulator
from ..utils.validators import SynthesisParameters
from .pegs import Peg, ring_distance
from .raster import ChordCache

logger = logging.getLogger(__name__)

SCORE_EPSILON = 1e-6

STOP_MAX_CHORDS = "max_chords"
STOP_CONVERGED = "converged"
STOP_NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True, slots=True)
class Chord:
    """One thread segment, in winding order."""
    from_peg: int
    to_peg: int

    def to_dict(self) -> Dict[str, int]:
        return {"from": self.from_peg, "to": self.to_peg}


ProgressCallback = Callable[[int, int, Tuple[Chord, ...]], None]


def candidate_stride(peg_count: int, max_candidates: int) -> int:
    """Spacing of the candidate grid: max(1, N // max_candidates)."""
    return max(1, peg_count // max_candidates)


class GreedySequencer:
    """Greedy chord selection over one working image.

    Owns the simulated ink buffer; one instance per run, single use.

    Parameters
    ----------
    working : np.ndarray
        float32 (S, S) target luminance, 0=black..255=white
    importance : np.ndarray
        float32 (S, S) per-pixel weight in [0, 1]
    pegs : Sequence[Peg]
        Peg layout of the run
    params : SynthesisParameters
        Validated run settings
    cache : ChordCache, optional
        Footprint cache; a fresh one is created when omitted
    """

    def __init__(
        self,
        working: np.ndarray,
        importance: np.ndarray,
        pegs: Sequence[Peg],
        params: SynthesisParameters,
        cache: Optional[ChordCache] = None,
    ):
        size = params.working_size
        if working.shape != (size, size) or importance.shape != (size, size):
            raise InvalidParameterError(
                f"Working/importance shape {working.shape}/{importance.shape} "
                f"does not match working_size={size}"
            )
        if len(pegs) != params.peg_count:
            raise InvalidParameterError(
                f"Got {len(pegs)} pegs for peg_count={params.peg_count}"
            )

        self.params = params
        self.pegs = tuple(pegs)
        self.cache = cache if cache is not None else ChordCache(self.pegs, size)

        self._target = np.asarray(working, dtype=np.float32).ravel()
        self._weight = (np.asarray(importance, dtype=np.float32).ravel()
                        + np.float32(params.importance_bias))
        self._ink = np.full(size * size, 255.0, dtype=np.float32)
        self._gain = np.maximum(self._ink - self._target, 0.0) * self._weight

        n = len(self.pegs)
        self.stride = candidate_stride(n, params.max_candidates)
        self._grid = np.arange(0, n, self.stride, dtype=np.int64)
        self.separation_relaxed = params.min_loop_separation > n // 2

        self.chords: List[Chord] = []
        self.current = 0
        self.previous: Optional[int] = None
        self.stop_reason: Optional[str] = None
        self._started = False
        self._select_timer = TimerAccumulator("chord_select")

        if self.separation_relaxed:
            logger.warning(
                f"min_loop_separation={params.min_loop_separation} cannot be met with "
                f"{n} pegs; only the current peg is excluded"
            )

    # ------------------------------------------------------------------
    # State views
    # ------------------------------------------------------------------

    @property
    def ink(self) -> np.ndarray:
        """Read-only (S, S) view of the simulated canvas."""
        view = self._ink.reshape(self.params.working_size, self.params.working_size).view()
        view.setflags(write=False)
        return view

    @property
    def done(self) -> bool:
        return self.stop_reason is not None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def candidates(self) -> np.ndarray:
        """Eligible next pegs from the current peg (previous peg not yet removed)."""
        grid = self._grid
        keep = grid != self.current
        if not self.separation_relaxed:
            ring = ring_distance(grid, self.current, len(self.pegs))
            keep &= ring >= self.params.min_loop_separation
        return grid[keep]

    def score(self, a: int, b: int) -> float:
        """Weighted remaining darkness along chord (a, b)."""
        return float(self._gain[self.cache.get(a, b)].sum(dtype=np.float64))

    def _select(self) -> Optional[int]:
        """Best next peg, or None (stop_reason set) when the walk must end."""
        cands = self.candidates()
        if len(cands) < 2:
            self.stop_reason = STOP_NO_CANDIDATES
            return None
        if self.previous is not None:
            cands = cands[cands != self.previous]

        scores = np.fromiter(
            (self.score(self.current, int(c)) for c in cands),
            dtype=np.float64,
            count=len(cands),
        )
        # argmax returns the first maximum; cands ascend so ties go to the lowest index
        best = int(np.argmax(scores))
        if scores[best] < SCORE_EPSILON:
            self.stop_reason = STOP_CONVERGED
            return None
        return int(cands[best])

    def _apply(self, target_peg: int) -> Chord:
        pixels = self.cache.get(self.current, target_peg)
        ink = np.maximum(self._ink[pixels] - np.float32(self.params.ink_weight_per_chord), 0.0)
        assert ink.min(initial=0.0) >= 0.0 and ink.max(initial=0.0) <= 255.0
        self._ink[pixels] = ink
        self._gain[pixels] = np.maximum(ink - self._target[pixels], 0.0) * self._weight[pixels]

        chord = Chord(self.current, target_peg)
        assert chord.from_peg != chord.to_peg
        self.chords.append(chord)
        self.previous, self.current = self.current, target_peg
        return chord

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def steps(self) -> Iterator[Chord]:
        """Yield accepted chords until the budget is spent or no chord helps."""
        if self._started:
            raise RuntimeError("GreedySequencer is single-use; create a new instance per run")
        self._started = True

        while len(self.chords) < self.params.max_chords:
            with self._select_timer.measure():
                best = self._select()
            if best is None:
                break
            yield self._apply(best)
        else:
            self.stop_reason = STOP_MAX_CHORDS

        assert len(self.chords) <= self.params.max_chords
        logger.debug(
            f"Sequencing stopped ({self.stop_reason}) after {len(self.chords)} chords; "
            f"{self._select_timer.mean() * 1e3:.3f} ms per selection"
        )

    def _notify(self, on_progress: Optional[ProgressCallback], final: bool = False) -> None:
        if on_progress is None:
            return
        drawn = len(self.chords)
        if final or drawn % self.params.progress_every == 0:
            on_progress(drawn, self.params.max_chords, tuple(self.chords))

    def run(self, on_progress: Optional[ProgressCallback] = None) -> Tuple[Chord, ...]:
        """Run to completion synchronously."""
        for _ in self.steps():
            self._notify(on_progress)
        self._notify(on_progress, final=True)
        return tuple(self.chords)

    async def run_async(
        self,
        on_progress: Optional[ProgressCallback] = None,
        yield_every: int = 30,
    ) -> Tuple[Chord, ...]:
        """Run to completion, yielding to the event loop every `yield_every` chords."""
        if yield_every < 1:
            raise InvalidParameterError(f"yield_every must be >= 1, got {yield_every}")
        for _ in self.steps():
            self._notify(on_progress)
            if len(self.chords) % yield_every == 0:
                await asyncio.sleep(0)
        self._notify(on_progress, final=True)
        return tuple(self.chords)
