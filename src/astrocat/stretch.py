# astrocat/stretch.py
"""
Adaptive Display Function (ADF) auto-stretch.

This is the "Display Function" and "Adaptive Display Function Algorithm"
from the PixInsight XISF 1.0 specification (sections 8.5.6 and 8.5.7),
applied per channel to a planar pixel buffer:

    Display(x; m, s, h, l, r) = Expand(MTF(Clip(x; s, h); m); l, r)

The scalar functions below are the reference definitions. The stretcher
uses vectorised equivalents so a 60 MP frame does not go through Python
one sample at a time.
"""
import logging
from typing import List, Optional

import attrs
import numpy as np

logger = logging.getLogger(__name__)

# Target midtones balance of the stretched background.
TARGET_BACKGROUND = 0.25
# Shadows clipping point, in units of the normalized MAD.
SHADOWS_CLIP = -2.8
# Scales the median absolute deviation to a standard-deviation estimate.
MAD_TO_SIGMA = 1.4826


@attrs.define(slots=True, frozen=True)
class StretchParams:
    """Per-channel ADF parameters."""
    A: int
    B: float
    C: float
    S: float
    H: float
    M: float


# --- Reference scalar functions on [0, 1] ---
def clip(x: float, s: float, h: float) -> float:
    if x < s:
        return 0.0
    if x > h:
        return 1.0
    if h == s:
        raise ValueError(f"Clipping range is empty (s == h == {s})")
    return (x - s) / (h - s)


def mtf(x: float, m: float) -> float:
    """Midtones transfer function."""
    if x == 0.0:
        return 0.0
    if x == 1.0:
        return 1.0
    if x == m:
        return 0.5
    denominator = (2 * m - 1) * x - m
    if denominator == 0:
        raise ValueError(f"MTF is undefined for x={x}, m={m}")
    return (m - 1) * x / denominator


def expand(x: float, l: float, r: float) -> float:
    if r == l:
        raise ValueError(f"Expansion range is empty (l == r == {l})")
    return (x - l) / (r - l)


def display(x: float, m: float, s: float, h: float, l: float = 0.0, r: float = 1.0) -> float:
    return expand(mtf(clip(x, s, h), m), l, r)


# --- Vectorised equivalents ---
def clip_array(x: np.ndarray, s: float, h: float) -> np.ndarray:
    if h == s:
        # Degenerate range: a hard threshold.
        return np.where(x > h, 1.0, 0.0).astype(x.dtype, copy=False)
    return np.clip((x - s) / (h - s), 0.0, 1.0)


def mtf_array(x: np.ndarray, m: float) -> np.ndarray:
    denominator = (2 * m - 1) * x - m
    safe = np.where(denominator == 0, 1.0, denominator)
    out = np.where(denominator == 0, 0.0, (m - 1) * x / safe)
    out = np.where(x == m, 0.5, out)
    out = np.where(x == 0.0, 0.0, out)
    out = np.where(x == 1.0, 1.0, out)
    return out


def display_array(x: np.ndarray, m: float, s: float, h: float, l: float = 0.0, r: float = 1.0) -> np.ndarray:
    y = mtf_array(clip_array(x, s, h), m)
    if l == 0.0 and r == 1.0:
        return y
    if r == l:
        raise ValueError(f"Expansion range is empty (l == r == {l})")
    return (y - l) / (r - l)


def _select_median(values: np.ndarray) -> float:
    """Upper median by selection (no full sort)."""
    flat = values.ravel()
    if flat.size == 0:
        return 0.0
    mid = flat.size // 2
    return float(np.partition(flat, mid)[mid])


def compute_channel_params(x: np.ndarray) -> StretchParams:
    """ADF parameters for one channel of normalized samples."""
    median = _select_median(x)
    mad = _select_median(np.abs(x - np.float32(median)))
    n = MAD_TO_SIGMA * mad

    B = TARGET_BACKGROUND
    C = SHADOWS_CLIP
    A = 1 if median > 0.5 else 0

    if A == 1 or n == 0:
        S = 0.0
    else:
        S = min(1.0, max(0.0, median + C * n))

    if A == 0 or n == 0:
        H = 1.0
    else:
        H = min(1.0, max(0.0, median - C * n))

    if A == 0:
        M = mtf(median - S, B)
    else:
        M = mtf(B, H - median)
    return StretchParams(A=A, B=B, C=C, S=S, H=H, M=M)


class AutoStretcher:
    """
    Computes ADF parameters for a planar buffer and stretches it.

    The buffer holds ``channels`` planes of ``height * width`` samples each
    (any integer or float dtype). ``stretch`` returns the display image as
    an unsigned integer array shaped (channels, height, width) and writes
    the same values back into the source buffer.
    """

    def __init__(self, width: int, height: int, channels: int, output_max: int = 255):
        if channels < 1:
            raise ValueError("An image needs at least one channel")
        self.width = width
        self.height = height
        self.channels = channels
        self.output_max = output_max
        self.data: Optional[np.ndarray] = None
        self.normalized: Optional[np.ndarray] = None
        self.range_min = 0.0
        self.range_max = 0.0
        self.params: List[StretchParams] = []

    def set_data(self, data: np.ndarray) -> None:
        expected = self.width * self.height * self.channels
        if data.size != expected:
            raise ValueError(f"Buffer holds {data.size} samples, expected {expected}")
        self.data = data
        self._normalize()

    def _normalize(self) -> None:
        planes = self.data.reshape(self.channels, self.height, self.width)
        self.range_min = float(planes.min())
        self.range_max = float(planes.max())
        value_range = self.range_max - self.range_min
        if value_range == 0:
            logger.debug("Flat image (all samples equal %s); stretching to black", self.range_min)
            self.normalized = np.zeros(planes.shape, dtype=np.float32)
        else:
            self.normalized = planes.astype(np.float32) / np.float32(value_range)

    def calculate_params(self) -> List[StretchParams]:
        if self.normalized is None:
            raise RuntimeError("set_data() must be called before calculate_params()")
        self.params = [compute_channel_params(self.normalized[k]) for k in range(self.channels)]
        return self.params

    def stretch(self) -> np.ndarray:
        if not self.params:
            self.calculate_params()

        dtype = np.uint8 if self.output_max <= np.iinfo(np.uint8).max else np.uint16
        out = np.empty(self.normalized.shape, dtype=dtype)
        for k, p in enumerate(self.params):
            stretched = display_array(self.normalized[k], p.M, p.S, p.H, 0.0, 1.0)
            scaled = np.clip(stretched * self.output_max, 0, self.output_max)
            out[k] = scaled.astype(dtype)

        if self.data.flags.writeable:
            np.copyto(self.data.reshape(out.shape), out, casting="unsafe")
        return out


def auto_stretch(planes: np.ndarray, output_max: int = 255) -> np.ndarray:
    """Convenience wrapper: stretch a (channels, height, width) array."""
    if planes.ndim == 2:
        planes = planes[np.newaxis, ...]
    channels, height, width = planes.shape
    stretcher = AutoStretcher(width, height, channels, output_max)
    stretcher.set_data(planes)
    stretcher.calculate_params()
    return stretcher.stretch()
