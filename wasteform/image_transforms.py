"""
Waste Form image transforms -- the named derivations the recovery passes OCR.

  load_image              EXIF-upright RGB PIL image (ImageInputError if unreadable or oversized)
  mask_regions            black out rectangles on a copy
  expose_regions          black canvas with only the given rectangles copied in
  upscale                 bicubic resize by a uniform factor
  verify_uniform_scale    measured per-axis scale between source and derived image
  sharpen                 3x3 handwriting sharpen kernel (minimal-filtering Pass 2)
  unsharp                 GaussianBlur + addWeighted unsharp mask on grayscale

Rectangles are (x0, y0, x1, y1) in pixel space and are clipped to the image.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Iterable, Tuple, Union

import cv2
import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageOps, UnidentifiedImageError
from PIL.Image import DecompressionBombError

from .errors import ImageInputError

log = logging.getLogger(__name__)

Rect = Tuple[int, int, int, int]

SHARPEN_KERNEL = np.array(
    [
        [0.0, -1.5, 0.0],
        [-1.5, 7.0, -1.5],
        [0.0, -1.5, 0.0],
    ],
    dtype=np.float32,
)


# =============================
# Load / convert
# =============================

def apply_exif_orientation(img: Image.Image) -> Image.Image:
    """
    Rotate pixels according to EXIF Orientation, then strip EXIF so a
    later consumer can't rotate again. Returns RGB.
    """
    fixed = ImageOps.exif_transpose(img)
    buf = io.BytesIO()
    fixed.save(buf, format="PNG")
    buf.seek(0)
    return Image.open(buf).convert("RGB")


def load_image(source: Union[str, Path, bytes]) -> Image.Image:
    try:
        if isinstance(source, (bytes, bytearray)):
            img = Image.open(io.BytesIO(source))
        else:
            img = Image.open(str(source))
        img.load()
    except (UnidentifiedImageError, DecompressionBombError, OSError, ValueError) as e:
        raise ImageInputError(f"Unreadable image: {e}") from e
    return apply_exif_orientation(img)


def pil_to_cv(img: Image.Image) -> NDArray:
    arr = np.array(img)
    if arr.ndim == 2:
        return cv2.cvtColor(arr, cv2.COLOR_GRAY2BGR)
    if arr.shape[2] == 4:
        return cv2.cvtColor(arr, cv2.COLOR_RGBA2BGR)
    return cv2.cvtColor(arr, cv2.COLOR_RGB2BGR)


def cv_to_pil(arr: NDArray) -> Image.Image:
    rgb = cv2.cvtColor(arr, cv2.COLOR_BGR2RGB)
    return Image.fromarray(rgb)


# =============================
# Masking
# =============================

def _clip(rect: Rect, width: int, height: int) -> Rect:
    x0, y0, x1, y1 = rect
    return (
        max(0, min(width, int(x0))),
        max(0, min(height, int(y0))),
        max(0, min(width, int(x1))),
        max(0, min(height, int(y1))),
    )


def mask_regions(img: Image.Image, rects: Iterable[Rect]) -> Image.Image:
    mat = pil_to_cv(img)
    h, w = mat.shape[:2]
    for rect in rects:
        x0, y0, x1, y1 = _clip(rect, w, h)
        if x1 > x0 and y1 > y0:
            mat[y0:y1, x0:x1] = 0
    return cv_to_pil(mat)


def expose_regions(img: Image.Image, rects: Iterable[Rect]) -> Image.Image:
    src = pil_to_cv(img)
    h, w = src.shape[:2]
    out = np.zeros_like(src)
    for rect in rects:
        x0, y0, x1, y1 = _clip(rect, w, h)
        if x1 > x0 and y1 > y0:
            out[y0:y1, x0:x1] = src[y0:y1, x0:x1]
    return cv_to_pil(out)


# =============================
# Scale / filters
# =============================

def upscale(img: Image.Image, factor: float) -> Image.Image:
    """Bicubic resize by a uniform factor (output size rounded per axis)."""
    if factor <= 0:
        raise ValueError(f"upscale factor must be positive, got {factor}")
    w, h = img.size
    new_w, new_h = max(1, int(round(w * factor))), max(1, int(round(h * factor)))
    mat = cv2.resize(pil_to_cv(img), (new_w, new_h), interpolation=cv2.INTER_CUBIC)
    return cv_to_pil(mat)


def verify_uniform_scale(original: Image.Image, derived: Image.Image, factor: float) -> Tuple[float, float]:
    """
    Per-axis scale between two images that must differ only by a uniform
    resize. A derived image that was cropped or padded shows up as a size
    that is not round(original * factor); log it and return what was measured.
    """
    ow, oh = original.size
    dw, dh = derived.size
    if (dw, dh) != (int(round(ow * factor)), int(round(oh * factor))):
        log.warning(
            "Derived image %dx%d is not a %.2fx scale of %dx%d; using measured scale",
            dw, dh, factor, ow, oh,
        )
    return dw / ow, dh / oh


def sharpen(img: Image.Image) -> Image.Image:
    mat = pil_to_cv(img)
    out = cv2.filter2D(mat, -1, SHARPEN_KERNEL)
    return cv_to_pil(out)


def unsharp(img: Image.Image, amount: float = 1.2, radius: int = 3) -> Image.Image:
    gray = cv2.cvtColor(pil_to_cv(img), cv2.COLOR_BGR2GRAY)
    blur = cv2.GaussianBlur(gray, (0, 0), radius)
    sharp = cv2.addWeighted(gray, 1 + amount, blur, -amount, 0)
    return cv_to_pil(cv2.cvtColor(sharp, cv2.COLOR_GRAY2BGR))


__all__ = [
    "Rect",
    "SHARPEN_KERNEL",
    "apply_exif_orientation",
    "load_image",
    "pil_to_cv",
    "cv_to_pil",
    "mask_regions",
    "expose_regions",
    "upscale",
    "verify_uniform_scale",
    "sharpen",
    "unsharp",
]
