"""End-to-end tests for synthesize() / synthesize_async().

Verifies:
    - Determinism (identical fingerprints and dicts across runs)
    - Async driver and progress callback do not change the result
    - Parameter errors raised before decoding, decode errors before peg work
    - Single dark dot: chords concentrate around the dot
    - Result serialization and stats

Run: pytest tests/test_synthesizer.py -v
"""
import asyncio
import io

import cv2
import numpy as np
import pytest
from PIL import Image

from src.string_art import (
    ImageDecodeError,
    InvalidParameterError,
    SynthesisResult,
    build_parameters,
    synthesize,
    synthesize_async,
)
from src.string_art.pegs import generate_pegs, ring_distance
from src.string_art.raster import ChordCache
from src.utils import hashing
from src.utils.validators import ImageLimits


@pytest.fixture(scope="module")
def portrait():
    """Synthetic 'face': dark disk and bar on a light background."""
    img = np.full((160, 120, 3), 230, dtype=np.uint8)
    cv2.circle(img, (60, 70), 35, (40, 40, 40), -1)
    cv2.rectangle(img, (20, 120), (100, 140), (90, 90, 90), -1)
    cv2.line(img, (0, 0), (119, 159), (0, 0, 0), 3)
    return img


@pytest.fixture(scope="module")
def small_params():
    return build_parameters(peg_count=60, max_chords=150, working_size=120,
                            max_candidates=60, progress_every=25)


class TestDeterminism:

    def test_repeat_runs_identical(self, portrait, small_params):
        a = synthesize(portrait, small_params)
        b = synthesize(portrait, small_params)
        assert a.fingerprint() == b.fingerprint()
        assert a.to_dict() == b.to_dict()
        assert a == b

    def test_async_identical(self, portrait, small_params):
        sync = synthesize(portrait, small_params)
        async_result = asyncio.run(synthesize_async(portrait, small_params, yield_every=11))
        assert async_result.fingerprint() == sync.fingerprint()

    def test_progress_does_not_change_result(self, portrait, small_params):
        seen = []
        with_cb = synthesize(portrait, small_params,
                             on_progress=lambda s, t, chords: seen.append((s, t)))
        without = synthesize(portrait, small_params)
        assert with_cb.fingerprint() == without.fingerprint()
        drawn = with_cb.stats.chords_drawn
        expected = [(s, 150) for s in range(25, drawn + 1, 25)] + [(drawn, 150)]
        assert seen == expected

    def test_async_progress(self, portrait, small_params):
        seen = []
        asyncio.run(synthesize_async(portrait, small_params,
                                     on_progress=lambda s, t, c: seen.append(s)))
        assert seen[-1] <= 150
        assert seen[:-1] == list(range(25, 25 * len(seen[:-1]) + 1, 25))


class TestResult:

    @pytest.fixture(scope="class")
    def result(self, portrait, small_params) -> SynthesisResult:
        return synthesize(portrait, small_params)

    def test_bounds(self, result):
        assert 0 < len(result.chords) <= 150
        for c in result.chords:
            assert c.from_peg != c.to_peg
            assert 0 <= c.from_peg < 60 and 0 <= c.to_peg < 60
            assert ring_distance(c.from_peg, c.to_peg, 60) >= result.parameters.min_loop_separation

    def test_stats(self, result):
        stats = result.stats
        assert stats.chords_requested == 150
        assert stats.chords_drawn == len(result.chords)
        assert stats.stop_reason in ("max_chords", "converged", "no_candidates")
        assert stats.candidate_stride == 1
        assert stats.cache_entries == stats.rasterizations <= 60 * 59 // 2
        assert not stats.separation_relaxed

    def test_pegs_match_layout(self, result):
        assert result.pegs == generate_pegs(60, 120, "circle", inset=10.0)

    def test_to_dict_shape(self, result):
        d = result.to_dict()
        assert set(d) == {"pegs", "chords", "parameters", "stats"}
        assert d["pegs"][0] == {"index": 0, "x": result.pegs[0].x, "y": result.pegs[0].y}
        assert d["chords"][0] == {"from": result.chords[0].from_peg, "to": result.chords[0].to_peg}
        assert d["parameters"]["peg_count"] == 60
        assert len(result.fingerprint()) == 64

    def test_peg_sequence(self, result):
        seq = result.peg_sequence
        assert len(seq) == len(result.chords) + 1
        assert seq[0] == 0


class TestScenarios:

    def test_all_white_yields_no_chords(self):
        img = np.full((200, 200, 3), 255, dtype=np.uint8)
        result = synthesize(img, build_parameters(peg_count=50, max_chords=500, working_size=200))
        assert result.chords == ()
        assert result.stats.stop_reason == "converged"

    def test_single_dark_dot(self):
        size, n = 200, 60
        img = np.full((size, size, 3), 255, dtype=np.uint8)
        cv2.circle(img, (100, 100), 6, (0, 0, 0), -1)
        params = build_parameters(peg_count=n, max_chords=25, working_size=size,
                                  max_candidates=n, min_loop_separation=5)
        result = synthesize(img, params)
        assert len(result.chords) > 0

        ys, xs = np.mgrid[92:109, 92:109]
        box = set((ys * size + xs).ravel().tolist())

        def hits(cache, a, b):
            return not box.isdisjoint(cache.get(a, b).tolist())

        cache = ChordCache(result.pegs, size)
        chosen = np.mean([hits(cache, c.from_peg, c.to_peg) for c in result.chords])
        baseline = np.mean([hits(cache, a, b) for a in range(n) for b in range(a + 1, n)])
        assert chosen > 0.5
        assert chosen > baseline

    def test_rectangle_frame(self, portrait):
        params = build_parameters(peg_count=80, max_chords=60, working_size=120,
                                  frame_shape="square")
        result = synthesize(portrait, params)
        assert result.parameters.frame_shape == "rectangle"
        assert len(result.pegs) == 80
        assert len(result.chords) > 0


class TestErrors:

    def test_invalid_parameters_before_decoding(self):
        with pytest.raises(InvalidParameterError, match="peg_count"):
            synthesize(b"not an image", {"peg_count": 2})

    def test_decode_error(self):
        with pytest.raises(ImageDecodeError):
            synthesize(b"not an image", {"peg_count": 20, "working_size": 100})

    def test_encoded_input_with_limits(self):
        buf = io.BytesIO()
        Image.new("RGB", (64, 64), (0, 0, 0)).save(buf, format="PNG")
        params = build_parameters(peg_count=20, max_chords=5, working_size=100)
        result = synthesize(buf.getvalue(), params)
        assert len(result.chords) == 5
        with pytest.raises(ImageDecodeError):
            synthesize(buf.getvalue(), params, limits=ImageLimits(allowed_formats=["JPEG"]))

    def test_source_hash_recorded(self, tmp_path, portrait):
        buf = io.BytesIO()
        Image.fromarray(portrait).save(buf, format="PNG")
        path = tmp_path / "portrait.png"
        path.write_bytes(buf.getvalue())
        params = build_parameters(peg_count=20, max_chords=5, working_size=100)

        from_path = synthesize(path, params)
        from_bytes = synthesize(buf.getvalue(), params)
        from_array = synthesize(portrait, params)
        assert from_path.source_sha256 == hashing.sha256_file(path)
        assert from_bytes.source_sha256 == from_path.source_sha256
        assert from_array.source_sha256 is None
        # Provenance stays out of the pattern fingerprint
        assert from_path.fingerprint() == from_array.fingerprint()

    def test_bad_yield_every(self, portrait):
        with pytest.raises(InvalidParameterError):
            asyncio.run(synthesize_async(portrait, None, yield_every=0))

    def test_unknown_keyword_parameter(self, portrait):
        with pytest.raises(InvalidParameterError):
            synthesize(portrait, {"pegs": 100})
