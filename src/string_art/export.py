"""Preview rendering and printable instructions for a finished pattern.

Consumes SynthesisResult only through its public fields (pegs, chords,
parameters, stats); chord footprints are re-rasterized here with the same
line algorithm the sequencer used.

Outputs (export_pattern):
    <name>_pattern.yaml       pegs, chords, parameters, stats, fingerprint
    <name>_instructions.txt   header, materials, tips, one line per step
    <name>_instructions.pdf   same content paginated (Pillow), "Page x of y"
    <name>_preview.png        simulated thread rendering

All files are written atomically via src.utils.fs.
"""

from __future__ import annotations

import io
import logging
import math
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from ..utils import fs
from ..utils.errors import InvalidParameterError
from ..utils.profiler import log_sink, timer
from ..utils.validators import ExportSettings
from .pegs import Peg
from .raster import ChordCache
from .synthesizer import SynthesisResult

logger = logging.getLogger(__name__)

PATTERN_SCHEMA = "string_art_pattern.v1"

PEG_COLOR = (200, 40, 40)  # RGB

MATERIALS = (
    "Pre-cut wooden frame with numbered pegs",
    "Cotton or polyester string (black)",
    "Scissors",
    "Tape or pins to secure string ends",
    "Pattern reference (this document)",
)

TIPS = (
    "Start at the first peg listed and follow the sequence exactly",
    "Keep string tension consistent throughout",
    "Tick off steps as you go; the list is long",
    "Take breaks to avoid eye strain",
    "Small mistakes barely show once the full pattern is wound",
)

# PDF page geometry (A4 at 150 dpi)
PAGE_SIZE = (1240, 1754)
PAGE_MARGIN = 100
PDF_RESOLUTION = 150.0


# ============================================================================
# PREVIEW
# ============================================================================

def render_preview(
    result: SynthesisResult,
    line_alpha: float = 0.2,
    peg_radius: int = 2,
    scale: int = 1,
) -> np.ndarray:
    """Simulate the wound pattern on a white canvas.

    Every chord multiplies the pixels on its rasterized path by
    (1 - line_alpha), in chord order, so crossings darken multiplicatively.

    Parameters
    ----------
    result : SynthesisResult
        Finished pattern
    line_alpha : float
        Opacity of one thread pass, (0, 1]
    peg_radius : int
        Peg dot radius in working pixels (0 hides pegs)
    scale : int
        Integer upscaling of the canvas (thread stays 1 px wide)

    Returns
    -------
    np.ndarray
        RGB uint8 array (S*scale, S*scale, 3)
    """
    if not 0.0 < line_alpha <= 1.0:
        raise InvalidParameterError(f"line_alpha must be in (0, 1], got {line_alpha}")
    if scale < 1:
        raise InvalidParameterError(f"scale must be >= 1, got {scale}")

    size = result.parameters.working_size * scale
    if scale == 1:
        pegs: Tuple[Peg, ...] = tuple(result.pegs)
    else:
        pegs = tuple(Peg(p.index, p.x * scale, p.y * scale) for p in result.pegs)

    cache = ChordCache(pegs, size)
    canvas = np.full(size * size, 255.0, dtype=np.float32)
    keep = np.float32(1.0 - line_alpha)
    for chord in result.chords:
        canvas[cache.get(chord.from_peg, chord.to_peg)] *= keep

    gray = np.clip(np.rint(canvas), 0, 255).astype(np.uint8).reshape(size, size)
    rgb = np.ascontiguousarray(np.repeat(gray[..., None], 3, axis=2))

    if peg_radius > 0:
        for peg in pegs:
            cv2.circle(rgb, peg.pixel, peg_radius * scale, PEG_COLOR, -1, lineType=cv2.LINE_AA)

    return rgb


# ============================================================================
# INSTRUCTIONS
# ============================================================================

def _frame_label(result: SynthesisResult) -> str:
    return "Circular" if result.parameters.frame_shape == "circle" else "Square"


def instruction_header(result: SynthesisResult, tier: Optional[str] = None) -> List[str]:
    """Header lines: kit, frame, peg count, total lines, ink weight."""
    params = result.parameters
    lines = ["STRING ART INSTRUCTIONS", "=" * 23, ""]
    if tier:
        lines.append(f"Kit: {tier.upper()}")
    lines.extend([
        f"Frame: {_frame_label(result)}",
        f"Number of pegs: {params.peg_count} (numbered 0 to {params.peg_count - 1})",
        f"Total lines: {len(result.chords)}",
        f"Ink weight per line: {params.ink_weight_per_chord:g}",
    ])
    return lines


def step_lines(result: SynthesisResult) -> List[str]:
    """One "Step i: connect peg a to peg b" line per chord (1-based)."""
    return [
        f"Step {i}: connect peg {c.from_peg} to peg {c.to_peg}"
        for i, c in enumerate(result.chords, start=1)
    ]


def format_instructions(
    result: SynthesisResult,
    header: bool = True,
    tier: Optional[str] = None,
) -> str:
    """Plain-text winding instructions.

    With header=False only the step lines are returned (one per line).
    """
    steps = step_lines(result)
    if not header:
        return "\n".join(steps) + ("\n" if steps else "")

    out = instruction_header(result, tier)
    out += ["", "MATERIALS NEEDED:"]
    out += [f"- {m}" for m in MATERIALS]
    out += ["", "TIPS FOR SUCCESS:"]
    out += [f"- {t}" for t in TIPS]
    out += ["", "STEP-BY-STEP GUIDE:", ""]
    out += steps
    if not steps:
        out.append("(no lines: the image is too light to need any thread)")
    return "\n".join(out) + "\n"


def _font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def _new_page() -> Tuple[Image.Image, ImageDraw.ImageDraw]:
    page = Image.new("RGB", PAGE_SIZE, "white")
    return page, ImageDraw.Draw(page)


def render_instruction_pages(
    result: SynthesisResult,
    steps_per_page: int = 60,
    tier: Optional[str] = None,
) -> List[Image.Image]:
    """Lay the instruction sheet out as Pillow pages.

    Page 1 holds the header, materials and tips; the steps follow,
    `steps_per_page` per page. Every page gets a "Page x of y" footer.
    """
    if steps_per_page < 1:
        raise InvalidParameterError(f"steps_per_page must be >= 1, got {steps_per_page}")

    title_font = _font(44)
    section_font = _font(30)
    body_font = _font(24)
    footer_font = _font(20)

    steps = step_lines(result)
    step_pages = max(1, math.ceil(len(steps) / steps_per_page)) if steps else 0
    total_pages = 1 + step_pages

    line_height = (PAGE_SIZE[1] - 2 * PAGE_MARGIN - 60) // steps_per_page
    line_height = max(12, min(line_height, 40))

    pages: List[Image.Image] = []

    # Cover page
    page, draw = _new_page()
    y = PAGE_MARGIN
    header = instruction_header(result, tier)
    draw.text((PAGE_MARGIN, y), header[0].title(), fill=(124, 58, 237), font=title_font)
    y += 90
    for line in header[3:]:
        draw.text((PAGE_MARGIN, y), line, fill="black", font=body_font)
        y += 40
    for title, items in (("Materials needed", MATERIALS), ("Tips for success", TIPS)):
        y += 40
        draw.text((PAGE_MARGIN, y), title, fill=(124, 58, 237), font=section_font)
        y += 50
        for item in items:
            draw.text((PAGE_MARGIN + 20, y), f"- {item}", fill="black", font=body_font)
            y += 38
    pages.append(page)

    # Step pages
    for page_idx in range(step_pages):
        page, draw = _new_page()
        chunk = steps[page_idx * steps_per_page:(page_idx + 1) * steps_per_page]
        y = PAGE_MARGIN
        for line in chunk:
            draw.text((PAGE_MARGIN, y), line, fill="black", font=body_font)
            y += line_height
        pages.append(page)

    for number, page in enumerate(pages, start=1):
        draw = ImageDraw.Draw(page)
        draw.text(
            (PAGE_SIZE[0] - PAGE_MARGIN - 160, PAGE_SIZE[1] - PAGE_MARGIN // 2 - 20),
            f"Page {number} of {total_pages}",
            fill=(107, 114, 128),
            font=footer_font,
        )
    return pages


def write_instructions_pdf(
    result: SynthesisResult,
    path: Union[str, Path],
    steps_per_page: int = 60,
    tier: Optional[str] = None,
) -> Path:
    """Render the paginated instruction sheet to a PDF file (atomic write)."""
    pages = render_instruction_pages(result, steps_per_page=steps_per_page, tier=tier)
    buf = io.BytesIO()
    pages[0].save(
        buf,
        format="PDF",
        save_all=True,
        append_images=pages[1:],
        resolution=PDF_RESOLUTION,
    )
    path = Path(path)
    fs.atomic_write_bytes(path, buf.getvalue())
    logger.debug(f"Wrote {len(pages)}-page instruction PDF to {path}")
    return path


# ============================================================================
# PATTERN FILE
# ============================================================================

def pattern_document(result: SynthesisResult) -> Dict[str, object]:
    """YAML-ready document of the pattern."""
    doc: Dict[str, object] = {"schema": PATTERN_SCHEMA, "fingerprint": result.fingerprint()}
    if result.source_sha256 is not None:
        doc["source_sha256"] = result.source_sha256
    doc.update(result.to_dict())
    return doc


def export_pattern(
    result: SynthesisResult,
    out_dir: Union[str, Path],
    name: str = "pattern",
    settings: Optional[ExportSettings] = None,
    tier: Optional[str] = None,
) -> Dict[str, Path]:
    """Write pattern YAML, instructions (txt/pdf) and preview PNG.

    Returns
    -------
    Dict[str, Path]
        Mapping of artifact kind ("pattern", "instructions", "pdf",
        "preview") to written path; "pdf" is absent when disabled
    """
    settings = settings or ExportSettings()
    out_dir = fs.ensure_dir(out_dir)
    sink = log_sink(logger)
    paths: Dict[str, Path] = {}

    with timer("export", sink=sink):
        paths["pattern"] = out_dir / f"{name}_pattern.yaml"
        fs.atomic_yaml_dump(pattern_document(result), paths["pattern"])

        paths["instructions"] = out_dir / f"{name}_instructions.txt"
        fs.atomic_write_text(paths["instructions"], format_instructions(result, tier=tier))

        if settings.write_pdf:
            paths["pdf"] = write_instructions_pdf(
                result,
                out_dir / f"{name}_instructions.pdf",
                steps_per_page=settings.steps_per_page,
                tier=tier,
            )

        paths["preview"] = out_dir / f"{name}_preview.png"
        preview = render_preview(
            result,
            line_alpha=settings.line_alpha,
            peg_radius=settings.peg_radius_px,
            scale=settings.preview_scale,
        )
        fs.atomic_save_image(preview, paths["preview"])

    logger.info(f"Exported {len(paths)} files to {out_dir}")
    return paths
