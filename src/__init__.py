"""String Art Synthesizer: photo → ordered peg-to-peg thread pattern.

This package turns a raster photo into a string-art pattern: an ordered
list of chords between pegs on a circular or rectangular frame whose
superposition, drawn as semi-transparent thread, approximates the photo.

Architecture layers (strict one-way dependency):
    scripts/ → src/string_art/ → src/data_pipeline/ → src/utils/

Key invariants:
    - Working image is a square luminance field, 0=black..255=white
    - Peg coordinates and chord pixels live in working-image pixel space
    - One synthesis run owns its ink buffer and chord cache; nothing is shared
    - Fixed chord budget with greedy selection (deterministic tie-breaking)
    - YAML-only configs, validated with pydantic
"""

__version__ = "1.0.0"
