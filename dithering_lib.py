"""
A Python library providing the dithering engine: the RGBA pixel buffer model,
threshold matrices, Floyd-Steinberg error diffusion and ordered (Bayer 8x8 and
4x4 pattern) dithering onto the palettes in palettes.py.
Use this as a standalone library or import it from your application.
"""

import logging
import numbers
from enum import Enum
from functools import partial
from multiprocessing import Pool
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image

from dither_errors import (
    DitherError,
    InvalidInputError,
    InvalidPaletteColorError,
    ProcessingFailureError,
    DitherCancelledError,
)
from palettes import PaletteId, DEFAULT_THRESHOLD, build_resolver, parse_palette_id

__all__ = [
    'DitherAlgorithm',
    'PixelBuffer',
    'DitherUtils',
    'floyd_steinberg',
    'ordered_dither',
    'bayer_dither',
    'pattern_dither',
    'DITHER_FUNCTIONS',
    'parse_algorithm',
    'apply_dithering',
    'ImageDitherer',
    # re-exported errors
    'DitherError',
    'InvalidInputError',
    'InvalidPaletteColorError',
    'ProcessingFailureError',
    'DitherCancelledError',
]

logger = logging.getLogger('retro_dither.dithering')

Resolver = Callable[[float, float, float], Tuple[int, int, int]]
ProgressCallback = Callable[[float, str], None]


# -------------------- Enumerations --------------------

class DitherAlgorithm(Enum):
    FLOYD_STEINBERG = "floyd-steinberg"
    BAYER = "bayer"
    ORDERED = "ordered"


def parse_algorithm(value) -> DitherAlgorithm:
    if isinstance(value, DitherAlgorithm):
        return value
    try:
        return DitherAlgorithm(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(a.value for a in DitherAlgorithm)
        raise InvalidInputError(f"Unknown dithering algorithm '{value}'. Must be one of: {valid}")


# -------------------- Pixel Buffer --------------------

def _is_dimension(value) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool) and value >= 0


class PixelBuffer:
    """
    Width, height and row-major RGBA bytes. Channel c of pixel (x, y) lives at
    (y * width + x) * 4 + c.

    The bytes are copied on construction and kept read-only, so a buffer can be
    handed to any number of passes without one seeing another's writes.
    Values that are not uint8 already are rounded and clamped to [0, 255].
    """

    def __init__(self, width: int, height: int, pixels):
        if not _is_dimension(width) or not _is_dimension(height):
            raise InvalidInputError(f"Invalid buffer dimensions: {width!r}x{height!r}")
        if pixels is None:
            raise InvalidInputError("Pixel data is missing")

        try:
            if isinstance(pixels, (bytes, bytearray, memoryview)):
                arr = np.frombuffer(pixels, dtype=np.uint8)
            else:
                arr = np.asarray(pixels)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Pixel data is not a numeric sequence: {e}")

        if arr.dtype == np.uint8:
            data = arr.reshape(-1).copy()
        elif arr.dtype.kind in 'biuf':
            values = arr.reshape(-1).astype(np.float64)
            if np.isnan(values).any():
                raise InvalidInputError("Pixel data contains NaN")
            data = np.clip(np.rint(values), 0, 255).astype(np.uint8)
        else:
            raise InvalidInputError(f"Pixel data is not a numeric sequence (dtype {arr.dtype})")

        expected = width * height * 4
        if data.size != expected:
            raise InvalidInputError(
                f"Pixel data has {data.size} values, expected {expected} for {width}x{height} RGBA")

        data.flags.writeable = False
        self._width = width
        self._height = height
        self._pixels = data

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def pixels(self) -> np.ndarray:
        """Flat, read-only uint8 array of length width * height * 4."""
        return self._pixels

    def as_array(self) -> np.ndarray:
        """Read-only (height, width, 4) view of the pixels."""
        return self._pixels.reshape((self._height, self._width, 4))

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        idx = (y * self._width + x) * 4
        return tuple(int(v) for v in self._pixels[idx:idx + 4])

    def tobytes(self) -> bytes:
        return self._pixels.tobytes()

    @classmethod
    def from_array(cls, arr: np.ndarray) -> 'PixelBuffer':
        arr = np.asarray(arr)
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise InvalidInputError(f"Expected an array of shape (height, width, 4), got {arr.shape}")
        h, w, _ = arr.shape
        return cls(w, h, arr)

    @classmethod
    def blank(cls, width: int, height: int) -> 'PixelBuffer':
        return cls(width, height, np.zeros(width * height * 4, dtype=np.uint8))

    @classmethod
    def from_image(cls, image: Image.Image) -> 'PixelBuffer':
        return cls.from_array(np.array(image.convert('RGBA'), dtype=np.uint8))

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self.as_array()))

    def __eq__(self, other):
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return (self._width == other._width and self._height == other._height
                and np.array_equal(self._pixels, other._pixels))

    __hash__ = None

    def __repr__(self):
        return f"PixelBuffer(width={self._width}, height={self._height})"


# -------------------- Dither Utils --------------------

def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def _normalize_matrix(matrix: np.ndarray) -> np.ndarray:
    """Map an N x N matrix of 0..N²-1 onto offsets in [-0.5, 0.5)."""
    return _frozen((matrix.astype(np.float64) + 0.5) / matrix.size - 0.5)


class DitherUtils:
    """
    Threshold matrices for the ordered variants, raw and normalized.
    """

    BAYER8x8 = _frozen(np.array([
        [0, 48, 12, 60, 3, 51, 15, 63],
        [32, 16, 44, 28, 35, 19, 47, 31],
        [8, 56, 4, 52, 11, 59, 7, 55],
        [40, 24, 36, 20, 43, 27, 39, 23],
        [2, 50, 14, 62, 1, 49, 13, 61],
        [34, 18, 46, 30, 33, 17, 45, 29],
        [10, 58, 6, 54, 9, 57, 5, 53],
        [42, 26, 38, 22, 41, 25, 37, 21]
    ], dtype=np.int32))

    PATTERN4x4 = _frozen(np.array([
        [0, 8, 2, 10],
        [12, 4, 14, 6],
        [3, 11, 1, 9],
        [15, 7, 13, 5]
    ], dtype=np.int32))

    BAYER8x8_NORMALIZED = _normalize_matrix(BAYER8x8)
    PATTERN4x4_NORMALIZED = _normalize_matrix(PATTERN4x4)

    @staticmethod
    def get_threshold_matrix(algorithm: DitherAlgorithm) -> np.ndarray:
        algorithm = parse_algorithm(algorithm)
        if algorithm == DitherAlgorithm.BAYER:
            return DitherUtils.BAYER8x8_NORMALIZED
        elif algorithm == DitherAlgorithm.ORDERED:
            return DitherUtils.PATTERN4x4_NORMALIZED
        else:
            raise InvalidInputError(f"Unsupported matrix mode: {algorithm}")


# -------------------- Shared pass helpers --------------------

def _check_inputs(source, resolve, name: str):
    if not isinstance(source, PixelBuffer):
        raise InvalidInputError(f"Invalid parameters for {name}: expected a PixelBuffer, got {type(source).__name__}")
    if resolve is None or not callable(resolve):
        raise InvalidInputError(f"Invalid parameters for {name}: a color resolver is required")


def _checked_color(color, x: int, y: int) -> Tuple[int, int, int]:
    try:
        channels = tuple(color)
    except TypeError:
        raise ProcessingFailureError(f"Invalid color returned from palette at ({x}, {y}): {color!r}")
    if len(channels) != 3 or not all(
            isinstance(c, numbers.Real) and not isinstance(c, bool) and 0 <= c <= 255
            for c in channels):
        raise ProcessingFailureError(f"Invalid color returned from palette at ({x}, {y}): {color!r}")
    return tuple(int(round(c)) for c in channels)


def _row_boundary(y: int, height: int, label: str,
                  should_cancel: Optional[Callable[[], bool]],
                  progress_callback: Optional[ProgressCallback]):
    if should_cancel is not None and should_cancel():
        raise DitherCancelledError(f"{label} cancelled at row {y} of {height}")
    if progress_callback is not None:
        progress_callback(y / height, f"{label}: row {y + 1}/{height}")


def _finish(label: str, progress_callback: Optional[ProgressCallback]):
    if progress_callback is not None:
        progress_callback(1.0, f"{label} complete")


def _new_output(src: np.ndarray) -> np.ndarray:
    output = np.zeros_like(src)
    output[:, :, 3] = src[:, :, 3]
    return output


# -------------------- Floyd-Steinberg Error Diffusion --------------------

# (dx, dy, weight) for the not-yet-visited neighbours
FS_WEIGHTS = (
    (1, 0, 7 / 16),
    (-1, 1, 3 / 16),
    (0, 1, 5 / 16),
    (1, 1, 1 / 16),
)


def floyd_steinberg(source: PixelBuffer, resolve: Resolver,
                    should_cancel: Optional[Callable[[], bool]] = None,
                    progress_callback: Optional[ProgressCallback] = None) -> PixelBuffer:
    """
    Floyd-Steinberg error diffusion.

    Pixels are visited row by row, left to right, and each one reads the value
    left in the working buffer by the pixels before it. The working buffer
    holds 8-bit integers: every share of error is added, rounded half to even
    and clamped to [0, 255] as it is stored, so precision is lost at each step.
    Error aimed past the image edge is dropped.

    Args:
        source: Image to dither. Not modified.
        resolve: resolve(r, g, b) -> (r, g, b) mapping a pixel onto the palette.
        should_cancel: Checked at the start of every row; True stops the pass.
        progress_callback: Called with (fraction, message) once per row.

    Returns:
        A new PixelBuffer with the source's dimensions and alpha.
    """
    _check_inputs(source, resolve, "Floyd-Steinberg dithering")
    w, h = source.width, source.height
    logger.debug(f"Floyd-Steinberg on {w}x{h}")

    src = source.as_array()
    # rows of [r, g, b] python ints; round() on a float is half to even like np.rint
    working = src[:, :, :3].astype(np.int64).tolist()
    output = _new_output(src)

    for y in range(h):
        _row_boundary(y, h, "Floyd-Steinberg", should_cancel, progress_callback)
        row_colors = []
        for x in range(w):
            current = working[y][x]
            chosen = _checked_color(resolve(current[0], current[1], current[2]), x, y)
            row_colors.append(chosen)

            error = [current[c] - chosen[c] for c in range(3)]
            for dx, dy, weight in FS_WEIGHTS:
                nx, ny = x + dx, y + dy
                if 0 <= nx < w and ny < h:
                    target = working[ny][nx]
                    for c in range(3):
                        target[c] = min(255, max(0, round(target[c] + error[c] * weight)))
        if row_colors:
            output[y, :, :3] = row_colors

    _finish("Floyd-Steinberg", progress_callback)
    return PixelBuffer.from_array(output)


# -------------------- Ordered Dithering (Bayer / Pattern) --------------------

def _adjusted_channels(src: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Offset every RGB channel by the matrix entry tiled over the pixel's
    position, times 255, clamped to [0, 255].
    """
    h, w = src.shape[:2]
    th_h, th_w = matrix.shape
    tiled = np.tile(matrix, ((h + th_h - 1)//th_h, (w + th_w - 1)//th_w))
    offsets = tiled[:h, :w] * 255
    return np.clip(src[:, :, :3].astype(np.float64) + offsets[:, :, np.newaxis], 0, 255)


def _resolve_row(row: Tuple[int, np.ndarray], resolve: Resolver) -> np.ndarray:
    """
    Resolve one row of adjusted pixels. Top-level so a Pool can pickle it.
    """
    y, adjusted = row
    out = np.empty((adjusted.shape[0], 3), dtype=np.uint8)
    for x in range(adjusted.shape[0]):
        r, g, b = adjusted[x]
        out[x] = _checked_color(resolve(float(r), float(g), float(b)), x, y)
    return out


def _check_matrix(matrix) -> np.ndarray:
    try:
        matrix = np.asarray(matrix, dtype=np.float64)
    except (TypeError, ValueError):
        raise InvalidInputError("Threshold matrix must be numeric")
    if matrix.ndim != 2 or matrix.size == 0:
        raise InvalidInputError(f"Threshold matrix must be a non-empty 2D grid, got shape {matrix.shape}")
    return matrix


def ordered_dither(source: PixelBuffer, resolve: Resolver, matrix: np.ndarray,
                   should_cancel: Optional[Callable[[], bool]] = None,
                   progress_callback: Optional[ProgressCallback] = None,
                   num_workers: int = 1,
                   label: str = "Ordered dithering") -> PixelBuffer:
    """
    Ordered dithering with a normalized threshold matrix.

    Each output pixel depends only on its own source value and its position
    modulo the matrix size, so rows can be resolved in any order. With
    num_workers > 1 rows are spread over a multiprocessing Pool; the resolver
    must then be picklable (build_resolver() results are).

    Args:
        source: Image to dither. Not modified.
        resolve: resolve(r, g, b) -> (r, g, b).
        matrix: Normalized offsets in [-0.5, 0.5), see DitherUtils.
        should_cancel: Checked at every row boundary.
        progress_callback: Called with (fraction, message) once per row.
        num_workers: Worker processes for row-parallel resolution.

    Returns:
        A new PixelBuffer with the source's dimensions and alpha.
    """
    _check_inputs(source, resolve, label)
    matrix = _check_matrix(matrix)
    if not isinstance(num_workers, numbers.Integral) or isinstance(num_workers, bool) or num_workers < 1:
        raise InvalidInputError(f"num_workers must be a positive integer, got {num_workers!r}")

    w, h = source.width, source.height
    logger.debug(f"{label} on {w}x{h} with a {matrix.shape[0]}x{matrix.shape[1]} matrix, "
                 f"{num_workers} worker(s)")

    src = source.as_array()
    adjusted = _adjusted_channels(src, matrix)
    output = _new_output(src)
    rows = ((y, adjusted[y]) for y in range(h))
    resolve_row = partial(_resolve_row, resolve=resolve)

    if num_workers > 1 and h > 1:
        with Pool(processes=min(num_workers, h)) as pool:
            for y, resolved in enumerate(pool.imap(resolve_row, rows)):
                _row_boundary(y, h, label, should_cancel, progress_callback)
                output[y, :, :3] = resolved
    else:
        for y, row in enumerate(rows):
            _row_boundary(y, h, label, should_cancel, progress_callback)
            output[y, :, :3] = resolve_row(row)

    _finish(label, progress_callback)
    return PixelBuffer.from_array(output)


def bayer_dither(source: PixelBuffer, resolve: Resolver, **kwargs) -> PixelBuffer:
    """Ordered dithering with the 8x8 Bayer matrix."""
    return ordered_dither(source, resolve, DitherUtils.BAYER8x8_NORMALIZED,
                          label="Bayer dithering", **kwargs)


def pattern_dither(source: PixelBuffer, resolve: Resolver, **kwargs) -> PixelBuffer:
    """Ordered dithering with the 4x4 pattern matrix."""
    return ordered_dither(source, resolve, DitherUtils.PATTERN4x4_NORMALIZED,
                          label="Ordered dithering", **kwargs)


DITHER_FUNCTIONS = {
    DitherAlgorithm.FLOYD_STEINBERG: floyd_steinberg,
    DitherAlgorithm.BAYER: bayer_dither,
    DitherAlgorithm.ORDERED: pattern_dither,
}

# algorithms whose rows are independent and may use worker processes
PARALLEL_ALGORITHMS = frozenset({DitherAlgorithm.BAYER, DitherAlgorithm.ORDERED})


# -------------------- Entry Points --------------------

def apply_dithering(source: PixelBuffer,
                    algorithm=DitherAlgorithm.FLOYD_STEINBERG,
                    palette_id=PaletteId.MONOCHROME,
                    threshold=DEFAULT_THRESHOLD,
                    should_cancel: Optional[Callable[[], bool]] = None,
                    progress_callback: Optional[ProgressCallback] = None,
                    num_workers: int = 1) -> PixelBuffer:
    """
    Dither a buffer with the selected algorithm onto the selected palette.
    threshold only matters for the monochrome palette.
    """
    algorithm = parse_algorithm(algorithm)
    resolve = build_resolver(palette_id, threshold)

    hooks = {'should_cancel': should_cancel, 'progress_callback': progress_callback}
    if algorithm in PARALLEL_ALGORITHMS:
        hooks['num_workers'] = num_workers
    elif num_workers != 1:
        logger.debug(f"{algorithm.value} is sequential, ignoring num_workers={num_workers}")

    return DITHER_FUNCTIONS[algorithm](source, resolve, **hooks)


class ImageDitherer:
    """
    Applies one algorithm/palette/threshold selection to Pillow images.
    """
    def __init__(self,
                 algorithm=DitherAlgorithm.FLOYD_STEINBERG,
                 palette_id=PaletteId.MONOCHROME,
                 threshold=DEFAULT_THRESHOLD,
                 num_workers: int = 1):
        self.algorithm = parse_algorithm(algorithm)
        self.palette_id = parse_palette_id(palette_id)
        self.threshold = threshold
        self.num_workers = num_workers

    def apply_dithering(self, image: Image.Image,
                        should_cancel: Optional[Callable[[], bool]] = None,
                        progress_callback: Optional[ProgressCallback] = None) -> Image.Image:
        buffer = PixelBuffer.from_image(image)
        result = apply_dithering(buffer, self.algorithm, self.palette_id, self.threshold,
                                 should_cancel=should_cancel,
                                 progress_callback=progress_callback,
                                 num_workers=self.num_workers)
        return result.to_image()
