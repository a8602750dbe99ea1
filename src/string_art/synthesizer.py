"""Synthesis entry points and the result type.

Pipeline for one run:
    1. Validate parameters (InvalidParameterError, before any decoding)
    2. Decode the source if given as path/bytes (ImageDecodeError)
    3. Preprocess → working + importance fields
    4. Generate pegs, create a run-scoped ChordCache
    5. Greedy sequencing (sync or async driver)
    6. Freeze everything into a SynthesisResult (with the SHA-256 of an
       encoded source, kept out of the fingerprint)

The result carries no timing data, so identical inputs produce identical
fingerprints. Stage timings are logged under the "run=<id>" log context.

Usage:
    from src.string_art import synthesize, build_parameters

    result = synthesize("portrait.jpg", build_parameters(peg_count=250))
    print(result.stats.chords_drawn, result.fingerprint())
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from PIL import Image

from ..data_pipeline.preprocess import PreprocessedImage, load_image, preprocess_for
from ..utils import hashing
from ..utils.errors import InvalidParameterError
from ..utils.logging_config import log_context
from ..utils.profiler import log_sink, timer
from ..utils.validators import ImageLimits, SynthesisParameters, ensure_parameters
from .pegs import Peg, generate_pegs
from .raster import ChordCache
from .sequencer import Chord, GreedySequencer, ProgressCallback

logger = logging.getLogger(__name__)

ImageInput = Union[np.ndarray, Image.Image, str, Path, bytes]


@dataclass(frozen=True)
class SynthesisStats:
    """Run summary (deterministic, no timings)."""
    chords_requested: int
    chords_drawn: int
    stop_reason: str
    separation_relaxed: bool
    candidate_stride: int
    cache_entries: int
    rasterizations: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SynthesisResult:
    """Peg layout plus the ordered chord list, with the settings that made it."""
    pegs: Tuple[Peg, ...]
    chords: Tuple[Chord, ...]
    parameters: SynthesisParameters
    stats: SynthesisStats
    source_sha256: Optional[str] = field(default=None, compare=False)

    @property
    def peg_sequence(self) -> Tuple[int, ...]:
        """Pegs visited in winding order (first chord's start, then every end)."""
        if not self.chords:
            return ()
        return (self.chords[0].from_peg,) + tuple(c.to_peg for c in self.chords)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pegs": [p.to_dict() for p in self.pegs],
            "chords": [c.to_dict() for c in self.chords],
            "parameters": self.parameters.to_dict(),
            "stats": self.stats.to_dict(),
        }

    def fingerprint(self) -> str:
        """SHA-256 of the canonical dict form."""
        return hashing.hash_dict(self.to_dict())


class _Run:
    """Prepared state of one synthesis run (shared by the sync/async drivers)."""

    def __init__(
        self,
        image: ImageInput,
        params: Union[SynthesisParameters, Dict[str, Any], None],
        limits: Optional[ImageLimits],
        fit: str,
    ):
        self.params = ensure_parameters(params)
        self.sink = log_sink(logger)
        self.source_sha256: Optional[str] = None

        if not isinstance(image, (np.ndarray, Image.Image)):
            limits = limits or ImageLimits()
            with timer("decode", sink=self.sink):
                source = image
                image = load_image(
                    source,
                    max_bytes=limits.max_bytes,
                    allowed_formats=limits.allowed_formats,
                    min_dimension_px=limits.min_dimension_px,
                )
            if isinstance(source, bytes):
                self.source_sha256 = hashing.sha256_bytes(source)
            elif isinstance(source, (str, Path)):
                self.source_sha256 = hashing.sha256_file(source)

        with timer("preprocess", sink=self.sink):
            self.prepared: PreprocessedImage = preprocess_for(image, self.params, fit=fit)

        self.run_id = hashing.hash_dict({
            "image": hashing.sha256_array(self.prepared.working),
            "parameters": self.params.to_dict(),
        })[:12]

        with timer("pegs", sink=self.sink):
            self.pegs = generate_pegs(
                self.params.peg_count,
                self.params.working_size,
                self.params.frame_shape,
                inset=self.params.peg_inset_px,
            )
        self.cache = ChordCache(self.pegs, self.params.working_size)
        self.sequencer = GreedySequencer(
            self.prepared.working,
            self.prepared.importance,
            self.pegs,
            self.params,
            self.cache,
        )

    def result(self) -> SynthesisResult:
        seq = self.sequencer
        stats = SynthesisStats(
            chords_requested=self.params.max_chords,
            chords_drawn=len(seq.chords),
            stop_reason=seq.stop_reason or "",
            separation_relaxed=seq.separation_relaxed,
            candidate_stride=seq.stride,
            cache_entries=len(self.cache),
            rasterizations=self.cache.rasterizations,
        )
        assert stats.cache_entries == stats.rasterizations <= self.cache.capacity
        logger.info(
            f"Drew {stats.chords_drawn}/{stats.chords_requested} chords "
            f"(stop={stats.stop_reason}, stride={stats.candidate_stride}, "
            f"cached chords={stats.cache_entries})"
        )
        return SynthesisResult(
            pegs=self.pegs,
            chords=tuple(seq.chords),
            parameters=self.params,
            stats=stats,
            source_sha256=self.source_sha256,
        )


def synthesize(
    image: ImageInput,
    params: Union[SynthesisParameters, Dict[str, Any], None] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    limits: Optional[ImageLimits] = None,
    fit: str = "cover",
) -> SynthesisResult:
    """Compute a string-art pattern for an image.

    Parameters
    ----------
    image : np.ndarray | PIL.Image | str | Path | bytes
        Decoded bitmap, or an encoded file/buffer decoded with `limits`
    params : SynthesisParameters | dict | None
        Run settings; None uses the defaults
    on_progress : callable, optional
        on_progress(chords_drawn, max_chords, chords) every
        params.progress_every chords and once at the end
    limits : ImageLimits, optional
        Decoding limits for encoded inputs
    fit : str
        "cover" (default) or "contain"

    Returns
    -------
    SynthesisResult

    Raises
    ------
    InvalidParameterError
        Parameters out of bounds (raised before decoding)
    ImageDecodeError
        Source cannot be decoded (raised before any peg work)
    """
    params = ensure_parameters(params)
    with timer("synthesize", sink=log_sink(logger, logging.INFO)):
        run = _Run(image, params, limits, fit)
        with log_context(run=run.run_id):
            logger.info(
                f"Synthesizing {params.peg_count} pegs / {params.max_chords} chords "
                f"({params.frame_shape}, S={params.working_size})"
            )
            with timer("sequence", sink=run.sink):
                run.sequencer.run(on_progress)
            return run.result()


async def synthesize_async(
    image: ImageInput,
    params: Union[SynthesisParameters, Dict[str, Any], None] = None,
    on_progress: Optional[ProgressCallback] = None,
    yield_every: int = 30,
    *,
    limits: Optional[ImageLimits] = None,
    fit: str = "cover",
) -> SynthesisResult:
    """Async variant of synthesize(); yields to the loop every `yield_every` chords.

    Preprocessing runs inline before the first yield. Cancelling the task
    discards all partial state. The result equals synthesize() for the same
    inputs.
    """
    params = ensure_parameters(params)
    if yield_every < 1:
        raise InvalidParameterError(f"yield_every must be >= 1, got {yield_every}")
    with timer("synthesize_async", sink=log_sink(logger, logging.INFO)):
        run = _Run(image, params, limits, fit)
        with log_context(run=run.run_id):
            logger.info(
                f"Synthesizing (async) {params.peg_count} pegs / {params.max_chords} chords "
                f"({params.frame_shape}, S={params.working_size})"
            )
            with timer("sequence", sink=run.sink):
                await run.sequencer.run_async(on_progress, yield_every=yield_every)
            return run.result()
