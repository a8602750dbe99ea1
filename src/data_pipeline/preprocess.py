"""Source image decoding and working-image preparation.

Converts an uploaded photo into the two fields the sequencer scores against:
    1. Decode (Pillow) with format / size limits, EXIF orientation applied
    2. Composite any alpha channel onto white
    3. Scale to cover the working square (aspect preserved), center-crop;
       uncovered area stays white
    4. Rec. 709 luminance, optional S-curve contrast boost (endpoints fixed)
    5. Circular frames: force pixels outside the peg circle to white
    6. Importance = clip(w_edge * Sobel magnitude / max + w_dark * (1 - L/255), 0, 1)

Public API:
    load_image(source, max_bytes=10 MB, allowed_formats=("JPEG", "PNG", "WEBP"))
        → np.ndarray uint8 (H, W, 3) or (H, W, 4)
    preprocess(image, working_size, frame_shape, ...) → PreprocessedImage
    preprocess_for(image, params) → PreprocessedImage

Outputs:
    - working: float32 (S, S), 0=black..255=white, read-only
    - importance: float32 (S, S), [0, 1], read-only

Errors:
    - ImageDecodeError: unreadable/oversized/disallowed source, bad array shape
    - InvalidParameterError: working_size below MIN_WORKING_SIZE, unknown frame
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Union

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from ..utils.errors import ImageDecodeError, InvalidParameterError
from ..utils.validators import MIN_WORKING_SIZE, SynthesisParameters

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_FORMATS = ("JPEG", "PNG", "WEBP")

# Rec. 709 luma coefficients
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float32)

ImageSource = Union[str, Path, bytes, bytearray, BinaryIO, Image.Image]


@dataclass(frozen=True)
class PreprocessedImage:
    """Working luminance field and importance field of one run.

    Attributes
    ----------
    working : np.ndarray
        float32 (S, S), 0=black..255=white
    importance : np.ndarray
        float32 (S, S), [0, 1]
    frame_mask : np.ndarray
        bool (S, S), True where pixels take part in scoring
    """
    working: np.ndarray
    importance: np.ndarray
    frame_mask: np.ndarray

    @property
    def size(self) -> int:
        return int(self.working.shape[0])


# ============================================================================
# DECODING
# ============================================================================

def _read_source_bytes(source: ImageSource, max_bytes: int) -> bytes:
    """Read raw bytes from a path, buffer or file object, enforcing max_bytes."""
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise ImageDecodeError(f"Image file not found: {path}")
        size = path.stat().st_size
        if size > max_bytes:
            raise ImageDecodeError(
                f"Image file too large: {size} bytes (limit {max_bytes})"
            )
        return path.read_bytes()

    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    elif hasattr(source, 'read'):
        data = source.read(max_bytes + 1)
    else:
        raise ImageDecodeError(f"Unsupported image source type: {type(source).__name__}")

    if len(data) > max_bytes:
        raise ImageDecodeError(f"Image data too large: more than {max_bytes} bytes")
    if not data:
        raise ImageDecodeError("Image data is empty")
    return data


def _pil_to_array(img: Image.Image) -> np.ndarray:
    """PIL image → uint8 RGB or RGBA array (alpha kept only when present)."""
    has_alpha = 'A' in img.getbands() or 'transparency' in img.info
    return np.asarray(img.convert('RGBA' if has_alpha else 'RGB'), dtype=np.uint8)


def load_image(
    source: ImageSource,
    max_bytes: int = DEFAULT_MAX_BYTES,
    allowed_formats: Iterable[str] = DEFAULT_FORMATS,
    min_dimension_px: int = 1,
) -> np.ndarray:
    """Decode an image file or buffer into a uint8 array.

    Parameters
    ----------
    source : str | Path | bytes | file object | PIL.Image
        Encoded image; PIL images are converted without format checks
    max_bytes : int
        Maximum encoded size, default 10 MB
    allowed_formats : Iterable[str]
        Pillow format names accepted, default JPEG/PNG/WEBP
    min_dimension_px : int
        Minimum width and height of the decoded image

    Returns
    -------
    np.ndarray
        uint8 (H, W, 3), or (H, W, 4) when the source carries alpha

    Raises
    ------
    ImageDecodeError
        Missing/empty/oversized source, disallowed format, corrupt data,
        or dimensions below min_dimension_px
    """
    if isinstance(source, Image.Image):
        img = source
    else:
        data = _read_source_bytes(source, max_bytes)
        allowed = {fmt.upper() for fmt in allowed_formats}
        try:
            img = Image.open(io.BytesIO(data))
            if img.format is None or img.format.upper() not in allowed:
                raise ImageDecodeError(
                    f"Unsupported image format {img.format!r}; expected one of {sorted(allowed)}"
                )
            img.load()
            img = ImageOps.exif_transpose(img)
        except (UnidentifiedImageError, Image.DecompressionBombError, SyntaxError) as e:
            raise ImageDecodeError(f"Failed to decode image: {e}") from e
        except OSError as e:
            raise ImageDecodeError(f"Failed to decode image (truncated or corrupt): {e}") from e

    width, height = img.size
    if width < min_dimension_px or height < min_dimension_px:
        raise ImageDecodeError(
            f"Image too small: {width}x{height} (minimum {min_dimension_px}x{min_dimension_px})"
        )

    arr = _pil_to_array(img)
    logger.debug(f"Decoded {width}x{height} image ({arr.shape[2]} channels)")
    return arr


def to_rgb_on_white(image: Union[np.ndarray, Image.Image]) -> np.ndarray:
    """Normalize a decoded bitmap to float32 (H, W, 3) RGB in [0, 255].

    Grayscale is expanded to three channels; RGBA is composited onto white.

    Raises
    ------
    ImageDecodeError
        Empty array or unsupported shape/dtype
    """
    if isinstance(image, Image.Image):
        image = _pil_to_array(image)

    arr = np.asarray(image)
    if arr.size == 0 or arr.ndim not in (2, 3):
        raise ImageDecodeError(f"Expected (H, W), (H, W, 3) or (H, W, 4) bitmap, got shape {arr.shape}")
    if not (np.issubdtype(arr.dtype, np.integer) or np.issubdtype(arr.dtype, np.floating)):
        raise ImageDecodeError(f"Unsupported bitmap dtype {arr.dtype}")

    arr = arr.astype(np.float32)
    if not np.all(np.isfinite(arr)):
        raise ImageDecodeError("Bitmap contains non-finite values")
    arr = np.clip(arr, 0.0, 255.0)

    if arr.ndim == 2:
        return np.repeat(arr[..., None], 3, axis=2)

    channels = arr.shape[2]
    if channels == 1:
        return np.repeat(arr, 3, axis=2)
    if channels == 3:
        return arr
    if channels == 4:
        alpha = arr[..., 3:4] / 255.0
        return arr[..., :3] * alpha + 255.0 * (1.0 - alpha)
    raise ImageDecodeError(f"Unsupported channel count {channels}")


# ============================================================================
# GEOMETRY
# ============================================================================

def fit_to_square(rgb: np.ndarray, size: int, fit: str = "cover") -> np.ndarray:
    """Scale (aspect preserved) and center an RGB image on a white square.

    Parameters
    ----------
    rgb : np.ndarray
        float32 (H, W, 3) in [0, 255]
    size : int
        Output side length
    fit : str
        "cover" (scale = max(S/W, S/H), overflow cropped) or
        "contain" (scale = min(S/W, S/H), letterboxed on white)

    Returns
    -------
    np.ndarray
        float32 (size, size, 3)
    """
    h, w = rgb.shape[:2]
    if fit == "cover":
        scale = max(size / w, size / h)
    elif fit == "contain":
        scale = min(size / w, size / h)
    else:
        raise InvalidParameterError(f"Unknown fit mode: {fit}. Use 'cover' or 'contain'.")

    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    interp = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(rgb, (new_w, new_h), interpolation=interp)
    if resized.ndim == 2:
        resized = resized[..., None]

    canvas = np.full((size, size, 3), 255.0, dtype=np.float32)

    # Centered placement; negative offsets crop the overflow
    off_x = (size - new_w) // 2
    off_y = (size - new_h) // 2
    dst_x0, dst_y0 = max(0, off_x), max(0, off_y)
    src_x0, src_y0 = max(0, -off_x), max(0, -off_y)
    copy_w = min(size - dst_x0, new_w - src_x0)
    copy_h = min(size - dst_y0, new_h - src_y0)
    canvas[dst_y0:dst_y0 + copy_h, dst_x0:dst_x0 + copy_w] = \
        resized[src_y0:src_y0 + copy_h, src_x0:src_x0 + copy_w]
    return canvas


def circle_mask(size: int, inset: float) -> np.ndarray:
    """Boolean mask of pixels on or inside the peg circle (radius S/2 - inset)."""
    center = size / 2.0
    radius = size / 2.0 - inset
    ys, xs = np.mgrid[0:size, 0:size].astype(np.float32)
    return (xs - center) ** 2 + (ys - center) ** 2 <= (radius + 0.5) ** 2


# ============================================================================
# TONE & IMPORTANCE
# ============================================================================

def luminance(rgb: np.ndarray) -> np.ndarray:
    """Rec. 709 luminance of an (H, W, 3) array, same value range.

    Rounded to 1e-3 so that pure white maps to exactly 255.
    """
    return np.round(rgb @ LUMA_WEIGHTS, 3).astype(np.float32)


def apply_contrast_curve(lum: np.ndarray, strength: float) -> np.ndarray:
    """Blend luminance towards a smoothstep S-curve.

    L' = 255 * ((1 - k) * t + k * t^2 (3 - 2t)), t = L / 255.
    Black and white are fixed points; midtones are pushed apart.
    """
    if strength <= 0.0:
        return lum.astype(np.float32)
    t = np.clip(lum / 255.0, 0.0, 1.0)
    curve = t * t * (3.0 - 2.0 * t)
    # t + k * (curve - t) keeps 0 and 1 exact
    return (255.0 * (t + strength * (curve - t))).astype(np.float32)


def gradient_magnitude(lum: np.ndarray) -> np.ndarray:
    """Sobel 3x3 gradient magnitude normalized to [0, 1] by its maximum."""
    gx = cv2.Sobel(lum, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(lum, cv2.CV_32F, 0, 1, ksize=3)
    mag = np.hypot(gx, gy)
    peak = float(mag.max())
    if peak <= 0.0:
        return np.zeros_like(lum, dtype=np.float32)
    return (mag / peak).astype(np.float32)


def importance_field(
    lum: np.ndarray,
    edge_weight: float = 0.75,
    darkness_weight: float = 0.5,
) -> np.ndarray:
    """Combine edge strength and darkness into a [0, 1] weight per pixel."""
    edges = gradient_magnitude(lum)
    darkness = 1.0 - lum / 255.0
    return np.clip(edge_weight * edges + darkness_weight * darkness, 0.0, 1.0).astype(np.float32)


# ============================================================================
# PUBLIC API
# ============================================================================

def preprocess(
    image: Union[np.ndarray, Image.Image],
    working_size: int,
    frame_shape: str,
    *,
    inset: float = 10.0,
    contrast_boost: float = 0.35,
    edge_weight: float = 0.75,
    darkness_weight: float = 0.5,
    fit: str = "cover",
) -> PreprocessedImage:
    """Build the working luminance field and the importance field.

    Parameters
    ----------
    image : np.ndarray | PIL.Image
        Decoded bitmap (grayscale, RGB or RGBA)
    working_size : int
        Side of the square working buffer (detail level knob)
    frame_shape : str
        "circle" or "rectangle"
    inset : float
        Peg inset; the circular frame mask uses radius S/2 - inset
    contrast_boost : float
        S-curve strength in [0, 1]
    edge_weight, darkness_weight : float
        Importance weights (sum may exceed 1, result is clipped)
    fit : str
        "cover" or "contain"

    Returns
    -------
    PreprocessedImage
        Read-only working and importance fields

    Raises
    ------
    ImageDecodeError
        If the bitmap is empty or malformed
    InvalidParameterError
        If working_size < MIN_WORKING_SIZE or frame_shape is unknown
    """
    if working_size < MIN_WORKING_SIZE:
        raise InvalidParameterError(
            f"working_size must be >= {MIN_WORKING_SIZE}, got {working_size}"
        )
    if frame_shape not in ("circle", "rectangle"):
        raise InvalidParameterError(f"Unknown frame shape: {frame_shape}")

    rgb = to_rgb_on_white(image)
    square = fit_to_square(rgb, working_size, fit=fit)
    lum = apply_contrast_curve(luminance(square), contrast_boost)

    importance = importance_field(lum, edge_weight, darkness_weight)

    if frame_shape == "circle":
        mask = circle_mask(working_size, inset)
        lum = np.where(mask, lum, 255.0).astype(np.float32)
        importance = np.where(mask, importance, 0.0).astype(np.float32)
    else:
        mask = np.ones((working_size, working_size), dtype=bool)

    for arr in (lum, importance, mask):
        arr.setflags(write=False)

    logger.debug(
        f"Preprocessed {rgb.shape[1]}x{rgb.shape[0]} → {working_size}x{working_size} "
        f"({frame_shape}), mean L={lum.mean():.1f}, mean importance={importance.mean():.3f}"
    )
    return PreprocessedImage(working=lum, importance=importance, frame_mask=mask)


def preprocess_for(
    image: Union[np.ndarray, Image.Image],
    params: SynthesisParameters,
    fit: str = "cover",
) -> PreprocessedImage:
    """Run preprocess() with the settings carried by SynthesisParameters."""
    return preprocess(
        image,
        params.working_size,
        params.frame_shape,
        inset=params.peg_inset_px,
        contrast_boost=params.contrast_boost,
        edge_weight=params.edge_weight,
        darkness_weight=params.darkness_weight,
        fit=fit,
    )
