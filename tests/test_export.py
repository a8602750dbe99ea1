"""Tests for preview rendering and instruction export.

Verifies:
    - Preview multiplies (1 - alpha) per chord pass, pegs drawn as dots
    - Text instructions: header, materials, tips, one line per step
    - PDF pagination with "Page x of y"
    - export_pattern writes every artifact atomically and the YAML reloads

Run: pytest tests/test_export.py -v
"""
import dataclasses

import numpy as np
import pytest

from src.string_art.export import (
    export_pattern,
    format_instructions,
    render_instruction_pages,
    render_preview,
    write_instructions_pdf,
)
from src.string_art.pegs import generate_pegs
from src.string_art.sequencer import Chord
from src.string_art.synthesizer import SynthesisResult, SynthesisStats
from src.utils import fs
from src.utils.errors import InvalidParameterError
from src.utils.validators import ExportSettings, build_parameters


def _result(chords, peg_count=8, size=100) -> SynthesisResult:
    params = build_parameters(peg_count=peg_count, working_size=size, max_chords=max(1, len(chords)))
    stats = SynthesisStats(
        chords_requested=params.max_chords,
        chords_drawn=len(chords),
        stop_reason="max_chords",
        separation_relaxed=False,
        candidate_stride=1,
        cache_entries=0,
        rasterizations=0,
    )
    return SynthesisResult(
        pegs=generate_pegs(peg_count, size, "circle", inset=10.0),
        chords=tuple(chords),
        parameters=params,
        stats=stats,
    )


@pytest.fixture
def two_pass_result():
    """Peg 0 (90, 50) ↔ peg 4 (10, 50): horizontal chord through the center, twice."""
    return _result([Chord(0, 4), Chord(4, 0)])


class TestRenderPreview:

    def test_alpha_compounds_per_pass(self, two_pass_result):
        img = render_preview(two_pass_result, line_alpha=0.2, peg_radius=0)
        assert img.shape == (100, 100, 3)
        assert img.dtype == np.uint8
        assert tuple(img[50, 50]) == (163, 163, 163)  # 255 * 0.8^2
        assert tuple(img[20, 50]) == (255, 255, 255)

    def test_pegs_drawn(self, two_pass_result):
        img = render_preview(two_pass_result, peg_radius=2)
        # Peg 2 sits at (50, 90), away from the chord
        assert tuple(img[90, 50]) != (255, 255, 255)
        assert img[90, 50, 0] > img[90, 50, 1]

    def test_scale(self, two_pass_result):
        img = render_preview(two_pass_result, scale=2)
        assert img.shape == (200, 200, 3)

    def test_empty_pattern_is_white(self):
        img = render_preview(_result([]), peg_radius=0)
        assert np.all(img == 255)

    def test_invalid_alpha(self, two_pass_result):
        with pytest.raises(InvalidParameterError):
            render_preview(two_pass_result, line_alpha=0.0)


class TestInstructions:

    def test_text_content(self, two_pass_result):
        text = format_instructions(two_pass_result, tier="standard")
        assert "Kit: STANDARD" in text
        assert "Frame: Circular" in text
        assert "Total lines: 2" in text
        assert "MATERIALS NEEDED:" in text
        assert "TIPS FOR SUCCESS:" in text
        assert "Step 1: connect peg 0 to peg 4" in text
        assert "Step 2: connect peg 4 to peg 0" in text

    def test_steps_only(self, two_pass_result):
        lines = format_instructions(two_pass_result, header=False).splitlines()
        assert lines == ["Step 1: connect peg 0 to peg 4", "Step 2: connect peg 4 to peg 0"]

    def test_square_frame_label(self):
        params = build_parameters(peg_count=8, working_size=100, frame_shape="rectangle")
        result = _result([Chord(0, 4)])
        result = SynthesisResult(result.pegs, result.chords, params, result.stats)
        assert "Frame: Square" in format_instructions(result)

    def test_pdf_pagination(self):
        chords = [Chord(0, 4) if i % 2 == 0 else Chord(4, 0) for i in range(130)]
        pages = render_instruction_pages(_result(chords), steps_per_page=60)
        assert len(pages) == 1 + 3

    def test_pdf_file(self, tmp_path, two_pass_result):
        path = write_instructions_pdf(two_pass_result, tmp_path / "sheet.pdf")
        data = path.read_bytes()
        assert data.startswith(b"%PDF")
        assert not (tmp_path / "sheet.pdf.tmp").exists()


class TestExportPattern:

    def test_writes_all_artifacts(self, tmp_path, two_pass_result):
        paths = export_pattern(two_pass_result, tmp_path / "out", name="demo")
        assert set(paths) == {"pattern", "instructions", "pdf", "preview"}
        assert paths["pattern"].name == "demo_pattern.yaml"
        assert paths["instructions"].name == "demo_instructions.txt"
        assert paths["pdf"].name == "demo_instructions.pdf"
        assert paths["preview"].name == "demo_preview.png"
        for p in paths.values():
            assert p.exists() and p.stat().st_size > 0

    def test_pattern_yaml_roundtrip(self, tmp_path, two_pass_result):
        paths = export_pattern(two_pass_result, tmp_path, name="demo")
        doc = fs.load_yaml(paths["pattern"])
        assert doc["schema"] == "string_art_pattern.v1"
        assert doc["fingerprint"] == two_pass_result.fingerprint()
        assert doc["chords"] == [{"from": 0, "to": 4}, {"from": 4, "to": 0}]
        assert len(doc["pegs"]) == 8

    def test_pdf_disabled(self, tmp_path, two_pass_result):
        paths = export_pattern(two_pass_result, tmp_path, settings=ExportSettings(write_pdf=False))
        assert "pdf" not in paths
        assert not (tmp_path / "pattern_instructions.pdf").exists()

    def test_source_hash_in_document(self, tmp_path, two_pass_result):
        assert "source_sha256" not in fs.load_yaml(export_pattern(two_pass_result, tmp_path)["pattern"])
        hashed = dataclasses.replace(two_pass_result, source_sha256="ab" * 32)
        doc = fs.load_yaml(export_pattern(hashed, tmp_path, name="hashed")["pattern"])
        assert doc["source_sha256"] == "ab" * 32
        assert doc["fingerprint"] == two_pass_result.fingerprint()
