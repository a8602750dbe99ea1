"""Test parameter schema validation and config loading.

Tests for src.utils.validators:
    - SynthesisParameters defaults, derived separation, aliases, bounds
    - Errors re-raised as InvalidParameterError naming the offending field
    - string_art.v1 config: bundled file, tiers, overrides, bad files

Run:
    pytest tests/test_schemas.py -v
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from src.utils import validators
from src.utils.errors import InvalidParameterError, StringArtError

PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_PATH = PROJECT_ROOT / "configs" / "string_art_v1.yaml"


class TestSynthesisParameters:

    def test_defaults(self):
        params = validators.build_parameters()
        assert params.peg_count == 200
        assert params.max_chords == 3000
        assert params.min_loop_separation == 16
        assert params.ink_weight_per_chord == 20.0
        assert params.frame_shape == "circle"
        assert params.working_size == 500

    def test_separation_derived_from_peg_count(self):
        assert validators.build_parameters(peg_count=150).min_loop_separation == 12
        assert validators.build_parameters(peg_count=5).min_loop_separation == 1

    def test_explicit_separation_kept(self):
        assert validators.build_parameters(peg_count=150, min_loop_separation=30).min_loop_separation == 30

    @pytest.mark.parametrize("peg_count", ["240", 240.0])
    def test_separation_derived_from_coerced_peg_count(self, peg_count):
        params = validators.build_parameters(peg_count=peg_count)
        assert params.peg_count == 240
        assert params.min_loop_separation == 20

    def test_separation_derived_from_dict_input(self):
        params = validators.ensure_parameters({"peg_count": "96", "min_loop_separation": None})
        assert params.min_loop_separation == 8

    @pytest.mark.parametrize("alias,expected", [
        ("square", "rectangle"), ("Rectangle", "rectangle"), ("round", "circle"), (" circle ", "circle"),
    ])
    def test_shape_aliases(self, alias, expected):
        assert validators.build_parameters(frame_shape=alias).frame_shape == expected

    @pytest.mark.parametrize("field,value", [
        ("peg_count", 2),
        ("max_chords", 0),
        ("working_size", 50),
        ("frame_shape", "triangle"),
        ("ink_weight_per_chord", 0.0),
        ("ink_weight_per_chord", 300.0),
        ("max_candidates", 1),
    ])
    def test_out_of_bounds(self, field, value):
        with pytest.raises(InvalidParameterError, match=field):
            validators.build_parameters(**{field: value})

    def test_inset_must_leave_a_frame(self):
        with pytest.raises(InvalidParameterError, match="peg_inset_px"):
            validators.build_parameters(working_size=100, peg_inset_px=49.5)

    def test_none_values_ignored(self):
        assert validators.build_parameters(peg_count=None).peg_count == 200

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidParameterError):
            validators.build_parameters(pegs=100)

    def test_frozen(self):
        params = validators.build_parameters()
        with pytest.raises(ValidationError):
            params.peg_count = 10

    def test_to_dict_is_plain(self):
        d = validators.build_parameters(frame_shape="square").to_dict()
        assert d["frame_shape"] == "rectangle"
        assert isinstance(d["ink_weight_per_chord"], float)

    def test_ensure_parameters(self):
        params = validators.build_parameters(peg_count=120)
        assert validators.ensure_parameters(params) is params
        assert validators.ensure_parameters({"peg_count": 120}) == params
        assert validators.ensure_parameters(None).peg_count == 200
        with pytest.raises(InvalidParameterError):
            validators.ensure_parameters(42)

    def test_error_hierarchy(self):
        assert issubclass(InvalidParameterError, ValueError)
        assert issubclass(InvalidParameterError, StringArtError)


class TestConfigFile:

    @pytest.fixture
    def cfg(self):
        return validators.load_synthesis_config(CONFIG_PATH)

    def test_bundled_config_loads(self, cfg):
        assert cfg.schema_version == "string_art.v1"
        assert set(cfg.tiers) == {"starter", "standard", "premium"}
        assert cfg.image.allowed_formats == ["JPEG", "PNG", "WEBP"]
        assert cfg.export.steps_per_page == 60

    @pytest.mark.parametrize("tier,pegs,chords", [
        ("starter", 150, 2000), ("standard", 200, 3000), ("premium", 250, 4000),
    ])
    def test_tiers(self, cfg, tier, pegs, chords):
        params = cfg.parameters_for(tier=tier)
        assert (params.peg_count, params.max_chords) == (pegs, chords)
        assert params.min_loop_separation == pegs // 12

    def test_overrides_win(self, cfg):
        params = cfg.parameters_for(tier="premium", frame_shape="square", max_chords=100,
                                    min_loop_separation=7, working_size=None)
        assert params.peg_count == 250
        assert params.max_chords == 100
        assert params.frame_shape == "rectangle"
        assert params.min_loop_separation == 7
        assert params.working_size == 500

    def test_unknown_tier(self, cfg):
        with pytest.raises(InvalidParameterError, match="Unknown tier"):
            cfg.parameters_for(tier="deluxe")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            validators.load_synthesis_config(tmp_path / "missing.yaml")

    def test_wrong_schema(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("schema: string_art.v2\n")
        with pytest.raises(InvalidParameterError, match="schema"):
            validators.load_synthesis_config(path)

    def test_invalid_defaults(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("schema: string_art.v1\ndefaults:\n  peg_count: 1\n")
        with pytest.raises(InvalidParameterError, match="peg_count"):
            validators.load_synthesis_config(path)

    def test_invalid_tier(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("schema: string_art.v1\ntiers:\n  tiny:\n    peg_count: 100\n")
        with pytest.raises(InvalidParameterError, match="max_chords"):
            validators.load_synthesis_config(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("schema: [unclosed\n")
        with pytest.raises(InvalidParameterError):
            validators.load_synthesis_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(InvalidParameterError, match="mapping"):
            validators.load_synthesis_config(path)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("")
        cfg = validators.load_synthesis_config(path)
        assert cfg.parameters_for().peg_count == 200

    def test_peg_override_rederives_default_separation(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("schema: string_art.v1\ndefaults:\n  peg_count: 120\n  min_loop_separation: 30\n")
        cfg = validators.load_synthesis_config(path)
        assert cfg.parameters_for().min_loop_separation == 30
        assert cfg.parameters_for(peg_count=240).min_loop_separation == 20
        assert cfg.parameters_for(peg_count=240, min_loop_separation=5).min_loop_separation == 5
