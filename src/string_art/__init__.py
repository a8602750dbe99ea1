"""String-art pattern synthesis.

Turns a photo into an ordered list of chords between pegs on a circular or
square frame; winding one thread along that list reproduces the image.

Modules:
    - pegs: peg layout on the frame perimeter
    - raster: chord footprints and the per-run chord cache
    - sequencer: greedy chord selection (sync/async drivers)
    - synthesizer: synthesize(), synthesize_async(), SynthesisResult
    - export: preview PNG, text/PDF instructions, pattern YAML

Usage:
    from src.string_art import synthesize, build_parameters, export_pattern

    result = synthesize("photo.jpg", build_parameters(peg_count=200, max_chords=3000))
    export_pattern(result, "out", name="photo")
"""

from ..utils.errors import ImageDecodeError, InvalidParameterError, StringArtError
from ..utils.validators import SynthesisParameters, build_parameters, load_synthesis_config
from .export import export_pattern, format_instructions, render_preview, write_instructions_pdf
from .pegs import Peg, generate_pegs
from .raster import ChordCache, rasterize_line
from .sequencer import Chord, GreedySequencer
from .synthesizer import SynthesisResult, SynthesisStats, synthesize, synthesize_async

__all__ = [
    "StringArtError",
    "ImageDecodeError",
    "InvalidParameterError",
    "SynthesisParameters",
    "build_parameters",
    "load_synthesis_config",
    "Peg",
    "generate_pegs",
    "ChordCache",
    "rasterize_line",
    "Chord",
    "GreedySequencer",
    "SynthesisResult",
    "SynthesisStats",
    "synthesize",
    "synthesize_async",
    "render_preview",
    "format_instructions",
    "write_instructions_pdf",
    "export_pattern",
]
