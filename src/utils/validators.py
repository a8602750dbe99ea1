"""Synthesis parameter schema and YAML config loading.

Provides centralized validation using pydantic:
    - SynthesisParameters: the per-run settings (pegs, chord budget, ink, frame)
    - ImageLimits: upload decoding limits (formats, size)
    - ExportSettings: preview / instruction sheet rendering options
    - StringArtConfigV1 (string_art.v1.yaml): defaults + named product tiers

Every entry point builds its parameters through this module so that bad
values fail fast, before any image decoding, with the offending field named
in the message.

Units:
    - Geometry: working-image pixels
    - Ink: 8-bit intensity (0..255) removed from white per chord

Usage:
    from src.utils import validators

    params = validators.build_parameters(peg_count=250, max_chords=4000)
    cfg = validators.load_synthesis_config("configs/string_art_v1.yaml")
    params = cfg.parameters_for(tier="premium", frame_shape="rectangle")
"""

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .errors import InvalidParameterError

FrameShape = Literal["circle", "rectangle"]

# Older kit configs and the storefront call the rectangular frame "square"
_SHAPE_ALIASES = {"square": "rectangle", "rect": "rectangle", "round": "circle"}

MIN_WORKING_SIZE = 100


def default_min_loop_separation(peg_count: int) -> int:
    """Default minimum ring distance between consecutive pegs (peg_count / 12)."""
    return max(1, peg_count // 12)


def _format_validation_error(e: ValidationError) -> str:
    """Condense pydantic errors into "field: message" pairs."""
    parts = []
    for err in e.errors():
        loc = '.'.join(str(p) for p in err.get('loc', ())) or '<root>'
        parts.append(f"{loc}: {err.get('msg')}")
    return '; '.join(parts)


# ============================================================================
# SYNTHESIS PARAMETERS
# ============================================================================

class SynthesisParameters(BaseModel):
    """Effective settings of one synthesis run (immutable).

    Only the first six fields are product-facing; the rest are tuning knobs
    with stable defaults.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    peg_count: int = Field(200, ge=3, le=2000, description="Number of pegs on the frame")
    max_chords: int = Field(3000, gt=0, le=100_000, description="Chord budget")
    min_loop_separation: int = Field(
        None, ge=0, validate_default=True,
        description="Minimum ring distance between chord ends (default peg_count // 12)",
    )
    ink_weight_per_chord: float = Field(20.0, gt=0.0, le=255.0, description="Darkening per chord (0..255)")
    frame_shape: FrameShape = Field("circle", description="Peg frame shape")
    working_size: int = Field(500, ge=MIN_WORKING_SIZE, le=4000, description="Working square side (px)")

    peg_inset_px: float = Field(10.0, ge=0.0, description="Distance of pegs from the working square edge")
    edge_weight: float = Field(0.75, ge=0.0, le=4.0, description="Importance weight of edge strength")
    darkness_weight: float = Field(0.5, ge=0.0, le=4.0, description="Importance weight of darkness")
    importance_bias: float = Field(0.05, gt=0.0, le=1.0, description="Added to importance when scoring")
    contrast_boost: float = Field(0.35, ge=0.0, le=1.0, description="S-curve strength (0 disables)")
    max_candidates: int = Field(320, ge=2, description="Candidate pegs evaluated per step before striding")
    progress_every: int = Field(30, ge=1, description="Chords between progress callbacks")

    @field_validator('min_loop_separation', mode='before')
    @classmethod
    def derive_min_loop_separation(cls, v: Any, info: ValidationInfo) -> Any:
        """Fill min_loop_separation from the validated peg_count when omitted."""
        if v is None and 'peg_count' in info.data:
            return default_min_loop_separation(info.data['peg_count'])
        return v

    @field_validator('frame_shape', mode='before')
    @classmethod
    def normalize_frame_shape(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return _SHAPE_ALIASES.get(v, v)
        return v

    @model_validator(mode='after')
    def validate_inset(self) -> 'SynthesisParameters':
        """Pegs must stay inside the working square."""
        if self.peg_inset_px >= self.working_size / 2 - 1:
            raise ValueError(
                f"peg_inset_px={self.peg_inset_px} leaves no frame inside working_size={self.working_size}"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict (JSON/YAML-safe) of every effective setting."""
        return self.model_dump(mode='json')


def build_parameters(**values: Any) -> SynthesisParameters:
    """Validate keyword values into SynthesisParameters.

    None values are dropped so callers can forward optional CLI flags.

    Raises
    ------
    InvalidParameterError
        If any value is out of bounds (message names the field)
    """
    cleaned = {k: v for k, v in values.items() if v is not None}
    try:
        return SynthesisParameters(**cleaned)
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid synthesis parameters: {_format_validation_error(e)}") from e


def ensure_parameters(params: Union[SynthesisParameters, Dict[str, Any], None]) -> SynthesisParameters:
    """Accept a model, a dict or None (defaults) and return validated parameters."""
    if params is None:
        return build_parameters()
    if isinstance(params, SynthesisParameters):
        return params
    if isinstance(params, dict):
        return build_parameters(**params)
    raise InvalidParameterError(f"Expected SynthesisParameters or dict, got {type(params).__name__}")


# ============================================================================
# CONFIG FILE SCHEMA V1
# ============================================================================

class TierPreset(BaseModel):
    """Named product tier (matches a physical kit)."""
    model_config = ConfigDict(extra='forbid')

    peg_count: int = Field(..., ge=3, le=2000)
    max_chords: int = Field(..., gt=0, le=100_000)
    frame_shape: Optional[FrameShape] = None
    description: str = Field("", description="Human-readable kit name")

    @field_validator('frame_shape', mode='before')
    @classmethod
    def normalize_frame_shape(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return _SHAPE_ALIASES.get(v, v)
        return v


class ImageLimits(BaseModel):
    """Upload decoding limits."""
    max_bytes: int = Field(10 * 1024 * 1024, gt=0, description="Maximum encoded file size")
    allowed_formats: List[str] = Field(["JPEG", "PNG", "WEBP"], description="Pillow format names")
    min_dimension_px: int = Field(1, ge=1, description="Minimum source width and height")

    @field_validator('allowed_formats')
    @classmethod
    def upper_formats(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("allowed_formats must not be empty")
        return [fmt.upper() for fmt in v]


class ExportSettings(BaseModel):
    """Preview and instruction sheet rendering options."""
    line_alpha: float = Field(0.2, gt=0.0, le=1.0, description="Opacity of one chord in the preview")
    peg_radius_px: int = Field(2, ge=0, le=20, description="Peg marker radius (0 hides pegs)")
    preview_scale: int = Field(1, ge=1, le=8, description="Preview upscaling factor")
    steps_per_page: int = Field(60, ge=10, le=200, description="Instruction steps per PDF page")
    write_pdf: bool = Field(True, description="Also write the PDF instruction sheet")


class StringArtConfigV1(BaseModel):
    """string_art.v1 config file."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field("string_art.v1", alias="schema")
    defaults: Dict[str, Any] = Field(default_factory=dict)
    tiers: Dict[str, TierPreset] = Field(default_factory=dict)
    image: ImageLimits = Field(default_factory=ImageLimits)
    export: ExportSettings = Field(default_factory=ExportSettings)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "string_art.v1":
            raise ValueError(f"Expected schema 'string_art.v1', got '{v}'")
        return v

    @model_validator(mode='after')
    def validate_defaults(self) -> 'StringArtConfigV1':
        """Defaults must be valid parameters on their own."""
        build_parameters(**self.defaults)
        return self

    def parameters_for(self, tier: Optional[str] = None, **overrides: Any) -> SynthesisParameters:
        """Merge defaults ← tier preset ← overrides into validated parameters.

        Raises
        ------
        InvalidParameterError
            Unknown tier or invalid merged values
        """
        merged: Dict[str, Any] = dict(self.defaults)
        if tier is not None:
            if tier not in self.tiers:
                raise InvalidParameterError(
                    f"Unknown tier '{tier}'. Available: {sorted(self.tiers)}"
                )
            preset = self.tiers[tier].model_dump(exclude={'description'}, exclude_none=True)
            merged.update(preset)
        # Separation scales with a tier or overridden peg count unless set explicitly
        if overrides.get('min_loop_separation') is None and (
            tier is not None or overrides.get('peg_count') is not None
        ):
            merged.pop('min_loop_separation', None)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return build_parameters(**merged)


# ============================================================================
# PUBLIC API
# ============================================================================

def load_synthesis_config(path: Union[str, Path]) -> StringArtConfigV1:
    """Load and validate a string_art.v1 config from YAML.

    Parameters
    ----------
    path : Union[str, Path]
        Path to the YAML file

    Returns
    -------
    StringArtConfigV1
        Validated configuration

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    InvalidParameterError
        If validation fails (with actionable error message)
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"String art config not found: {path}")

    try:
        data = fs.load_yaml(path) or {}
    except yaml.YAMLError as e:
        raise InvalidParameterError(str(e)) from e
    if not isinstance(data, dict):
        raise InvalidParameterError(f"String art config {path} must be a mapping, got {type(data).__name__}")

    try:
        return StringArtConfigV1(**data)
    except ValidationError as e:
        raise InvalidParameterError(
            f"String art config validation failed at {path}: {_format_validation_error(e)}"
        ) from e