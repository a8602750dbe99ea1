"""Peg layout around the working square.

Coordinates are in working-image pixels, origin top-left, y pointing down.
Peg i and i+1 are neighbours along the frame perimeter, so ring distance
between peg indices approximates distance along the frame.

Shapes:
    - circle: angle 2*pi*i/N on radius S/2 - inset around (S/2, S/2);
      peg 0 is the rightmost point, indices increase clockwise on screen
    - rectangle: the inset square walked top (left→right), right
      (top→bottom), bottom (right→left), left (bottom→top); N // 4 pegs per
      edge, the remainder one each to the first edges
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

import numpy as np

from ..utils.errors import InvalidParameterError

logger = logging.getLogger(__name__)

MIN_PEGS = 3


@dataclass(frozen=True, slots=True)
class Peg:
    """Fixed anchor point on the frame.

    Attributes
    ----------
    index : int
        Position along the perimeter (0..N-1)
    x : float
        Horizontal position (px)
    y : float
        Vertical position (px, down)
    """
    index: int
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"index": self.index, "x": self.x, "y": self.y}

    @property
    def pixel(self) -> Tuple[int, int]:
        """Nearest pixel (half-up rounding)."""
        return int(math.floor(self.x + 0.5)), int(math.floor(self.y + 0.5))


def ring_distance(
    a: Union[int, np.ndarray],
    b: int,
    count: int,
) -> Union[int, np.ndarray]:
    """Index distance around the closed frame: min(|a-b|, N-|a-b|).

    `a` may be an array of peg indices; the result is then elementwise.
    """
    d = np.abs(np.asarray(a, dtype=np.int64) - b) % count
    ring = np.minimum(d, count - d)
    return int(ring) if ring.ndim == 0 else ring


def _circle_pegs(count: int, size: int, inset: float) -> List[Peg]:
    center = size / 2.0
    radius = size / 2.0 - inset
    pegs = []
    for i in range(count):
        angle = 2.0 * math.pi * i / count
        pegs.append(Peg(i, center + radius * math.cos(angle), center + radius * math.sin(angle)))
    return pegs


def _rectangle_pegs(count: int, size: int, inset: float) -> List[Peg]:
    lo = float(inset)
    hi = float(size - inset)
    # Edges as (start corner, end corner), walked clockwise from top-left
    edges = [
        ((lo, lo), (hi, lo)),  # top
        ((hi, lo), (hi, hi)),  # right
        ((hi, hi), (lo, hi)),  # bottom
        ((lo, hi), (lo, lo)),  # left
    ]
    base, extra = divmod(count, 4)

    pegs: List[Peg] = []
    for edge_idx, ((x0, y0), (x1, y1)) in enumerate(edges):
        k = base + (1 if edge_idx < extra else 0)
        for j in range(k):
            t = j / k
            pegs.append(Peg(len(pegs), x0 + t * (x1 - x0), y0 + t * (y1 - y0)))
    return pegs


def generate_pegs(
    count: int,
    working_size: int,
    shape: str = "circle",
    inset: float = 10.0,
) -> Tuple[Peg, ...]:
    """Place `count` pegs on the frame perimeter.

    Parameters
    ----------
    count : int
        Number of pegs (>= 3)
    working_size : int
        Side S of the working square
    shape : str
        "circle" or "rectangle"
    inset : float
        Distance of the frame from the working square edge

    Returns
    -------
    Tuple[Peg, ...]
        Pegs ordered by index

    Raises
    ------
    InvalidParameterError
        count < 3, unknown shape or inset too large
    """
    if count < MIN_PEGS:
        raise InvalidParameterError(f"peg_count must be >= {MIN_PEGS}, got {count}")
    if inset < 0 or inset >= working_size / 2.0:
        raise InvalidParameterError(
            f"inset must be in [0, {working_size / 2.0}), got {inset}"
        )

    if shape == "circle":
        pegs = _circle_pegs(count, working_size, inset)
    elif shape == "rectangle":
        pegs = _rectangle_pegs(count, working_size, inset)
    else:
        raise InvalidParameterError(f"Unknown frame shape: {shape}. Use 'circle' or 'rectangle'.")

    logger.debug(f"Placed {count} pegs on {shape} frame (S={working_size}, inset={inset})")
    return tuple(pegs)
