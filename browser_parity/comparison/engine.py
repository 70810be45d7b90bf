"""Comparison engine — deterministic, maskable pixel diff of two screenshots.

``compare`` is a pure function of its inputs. Pillow decodes the images and
numpy does the per-channel arithmetic; nothing here touches a browser.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image
from pydantic import BaseModel, Field

from browser_parity.errors import DimensionMismatch
from browser_parity.models.capture import Rect
from browser_parity.models.parity import DiffResult

logger = logging.getLogger(__name__)

ImageInput = Union[Image.Image, bytes, bytearray, str, Path]

# Masked pixels are forced to this value in both images before comparison.
NEUTRAL = (128, 128, 128, 255)

# Diff image palette
MASK_COLOR = (72, 84, 112, 255)
DIFF_COLOR = (255, 0, 0, 255)
REFERENCE_ONLY_COLOR = (255, 140, 0, 255)
CANDIDATE_ONLY_COLOR = (0, 176, 64, 255)
_FADE = 0.25


class CompareOptions(BaseModel):
    masked_regions: list[Rect] = Field(default_factory=list)
    fuzz_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    max_allowed_diff_pixels: int = Field(default=0, ge=0)
    # A candidate pixel of this colour (or fully transparent) counts as blanked content
    blank_color: tuple[int, int, int] = (255, 255, 255)


def load_image(source: ImageInput) -> Image.Image:
    """Decode any supported input to an RGBA image."""
    if isinstance(source, Image.Image):
        image = source
    elif isinstance(source, (bytes, bytearray)):
        image = Image.open(io.BytesIO(source))
    else:
        image = Image.open(source)
    return image.convert("RGBA")


def _mask_array(width: int, height: int, regions: list[Rect]) -> np.ndarray:
    mask = np.zeros((height, width), dtype=bool)
    for rect in regions:
        x0, y0, x1, y1 = rect.clip(width, height)
        mask[y0:y1, x0:x1] = True
    return mask


def _blank(pixels: np.ndarray, blank_color: tuple[int, int, int]) -> np.ndarray:
    transparent = pixels[..., 3] == 0
    solid = np.all(pixels[..., :3] == np.array(blank_color, dtype=pixels.dtype), axis=2)
    return transparent | solid


def _render_diff(
    reference: np.ndarray,
    mask: np.ndarray,
    differing: np.ndarray,
    reference_only: np.ndarray,
    candidate_only: np.ndarray,
) -> bytes:
    # Identical pixels: a faded greyscale of the reference, for context.
    rgb = reference[..., :3].astype(np.float32)
    luminance = rgb @ np.array([0.299, 0.587, 0.114], dtype=np.float32)
    faded = 255.0 - (255.0 - luminance) * _FADE
    out = np.empty(reference.shape[:2] + (4,), dtype=np.uint8)
    out[..., 0] = out[..., 1] = out[..., 2] = faded.astype(np.uint8)
    out[..., 3] = 255

    out[mask] = MASK_COLOR
    out[differing] = DIFF_COLOR
    out[reference_only] = REFERENCE_ONLY_COLOR
    out[candidate_only] = CANDIDATE_ONLY_COLOR

    buffer = io.BytesIO()
    Image.fromarray(out, "RGBA").save(buffer, format="PNG")
    return buffer.getvalue()


def compare(
    reference: ImageInput,
    candidate: ImageInput,
    options: CompareOptions | None = None,
) -> DiffResult:
    """Compare two same-sized images.

    A pixel differs when any RGBA channel differs by at least
    ``fuzz_percent`` of the channel range (by anything at all when fuzz is 0). The absolute error count (AE) of
    differing pixels is the pass/fail signal; RMSE is reported for trending.
    Raises DimensionMismatch rather than cropping or scaling.
    """
    options = options or CompareOptions()
    ref_image = load_image(reference)
    cand_image = load_image(candidate)
    if ref_image.size != cand_image.size:
        raise DimensionMismatch(ref_image.size, cand_image.size)

    width, height = ref_image.size
    original = np.asarray(ref_image, dtype=np.int16)
    ref = original.copy()
    cand = np.asarray(cand_image, dtype=np.int16).copy()

    mask = _mask_array(width, height, options.masked_regions)
    ref[mask] = NEUTRAL
    cand[mask] = NEUTRAL

    delta = np.abs(ref - cand)
    if options.fuzz_percent > 0:
        # Deltas strictly below the threshold count as equal
        threshold = options.fuzz_percent * 255.0 / 100.0
        differing = np.any(delta >= threshold, axis=2)
    else:
        differing = np.any(delta > 0, axis=2)
    ae = int(np.count_nonzero(differing))
    rmse = float(np.sqrt(np.mean((delta.astype(np.float64) / 255.0) ** 2))) if delta.size else 0.0

    ref_blank = _blank(ref, options.blank_color)
    cand_blank = _blank(cand, options.blank_color)
    reference_only = differing & cand_blank & ~ref_blank
    candidate_only = differing & ref_blank & ~cand_blank

    passed = ae <= options.max_allowed_diff_pixels
    logger.debug("Compared %dx%d images: AE=%d RMSE=%.5f masked=%d passed=%s",
                 width, height, ae, rmse, int(np.count_nonzero(mask)), passed)

    return DiffResult(
        metric="AE",
        score=float(ae),
        absolute_error_count=ae,
        rmse=round(rmse, 6),
        passed=passed,
        diff_image=_render_diff(original, mask, differing, reference_only, candidate_only),
        masked_regions=list(options.masked_regions),
        reference_only_pixels=int(np.count_nonzero(reference_only)),
        candidate_only_pixels=int(np.count_nonzero(candidate_only)),
    )


def write_diff_image(result: DiffResult, path: Path) -> DiffResult:
    """Persist the diff PNG and return a copy of the result pointing at it."""
    if result.diff_image is None:
        return result
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(result.diff_image)
    return result.model_copy(update={"diff_image_path": str(path)})
