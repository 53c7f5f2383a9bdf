"""
Palette catalog: the fixed palettes supported by the ditherer and the two ways
a pixel is mapped onto them (luminance threshold for monochrome, nearest color
for everything else).
"""

import math
import logging
import numbers
from enum import Enum
from functools import partial
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from dither_errors import InvalidInputError, InvalidPaletteColorError

__all__ = [
    'PaletteId',
    'Color',
    'Palette',
    'BLACK',
    'WHITE',
    'DEFAULT_THRESHOLD',
    'monochrome',
    'cga',
    'web_safe',
    'luminance',
    'resolve_monochrome',
    'nearest_color',
    'get_palette',
    'parse_palette_id',
    'build_resolver',
]

logger = logging.getLogger('retro_dither.palettes')

Color = Tuple[int, int, int]
Palette = Tuple[Color, ...]

BLACK: Color = (0, 0, 0)
WHITE: Color = (255, 255, 255)
DEFAULT_THRESHOLD = 128


class PaletteId(Enum):
    MONOCHROME = "1bit"
    CGA = "cga"
    WEB_SAFE = "websafe"


# -------------------- Palette construction --------------------

_MONOCHROME: Palette = (BLACK, WHITE)

_CGA: Palette = (
    BLACK,
    (85, 255, 255),   # cyan
    (255, 85, 255),   # magenta
    WHITE,
)


def _generate_web_safe() -> Palette:
    colors = []
    for r in range(6):
        for g in range(6):
            for b in range(6):
                colors.append((round(r * 51), round(g * 51), round(b * 51)))
    return tuple(colors)


_WEB_SAFE: Palette = _generate_web_safe()


def monochrome() -> Palette:
    """
    Black and white, for display. Pixels are mapped onto it with
    resolve_monochrome(), not by nearest-color search.
    """
    return _MONOCHROME


def cga() -> Palette:
    return _CGA


def web_safe() -> Palette:
    """
    The 216 color web-safe cube. Channel values step through
    0, 51, 102, 153, 204, 255 with red outermost and blue innermost.
    """
    return _WEB_SAFE


_PALETTES = {
    PaletteId.MONOCHROME: monochrome,
    PaletteId.CGA: cga,
    PaletteId.WEB_SAFE: web_safe,
}


def parse_palette_id(value) -> PaletteId:
    if isinstance(value, PaletteId):
        return value
    try:
        return PaletteId(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(p.value for p in PaletteId)
        raise InvalidInputError(f"Unknown palette '{value}'. Must be one of: {valid}")


def get_palette(palette_id) -> Palette:
    return _PALETTES[parse_palette_id(palette_id)]()


# -------------------- Monochrome threshold --------------------

def luminance(r: float, g: float, b: float) -> float:
    """
    Rec. 601 luma, 0.299r + 0.587g + 0.114b.
    Summed in thousandths so a gray pixel's luminance equals its channel value.
    """
    return (299 * r + 587 * g + 114 * b) / 1000


def _valid_threshold(threshold) -> float:
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        return DEFAULT_THRESHOLD
    if math.isnan(value):
        return DEFAULT_THRESHOLD
    return value


def resolve_monochrome(r: float, g: float, b: float, threshold=DEFAULT_THRESHOLD) -> Color:
    """
    Black when the pixel's luminance is below threshold, white otherwise.
    Channels that are not numbers resolve to black.
    """
    try:
        level = luminance(r, g, b)
    except (TypeError, ValueError) as e:
        logger.debug(f"Cannot take luminance of ({r!r}, {g!r}, {b!r}): {e}")
        return BLACK
    if level < _valid_threshold(threshold):
        return BLACK
    return WHITE


# -------------------- Nearest color --------------------

def _is_channel_value(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _validate_entry(entry) -> Color:
    try:
        channels = tuple(entry)
    except TypeError:
        raise InvalidPaletteColorError(f"Palette entry {entry!r} is not a sequence")
    if len(channels) != 3:
        raise InvalidPaletteColorError(
            f"Palette entry {entry!r} has {len(channels)} channels, expected 3")
    if not all(_is_channel_value(c) for c in channels):
        raise InvalidPaletteColorError(f"Palette entry {entry!r} has non-numeric channels")
    return channels


def _build_table(palette) -> Tuple[Tuple[Color, ...], Optional[np.ndarray]]:
    try:
        entries = list(palette)
    except TypeError:
        return (), None

    colors = []
    for entry in entries:
        try:
            colors.append(_validate_entry(entry))
        except InvalidPaletteColorError as e:
            logger.debug(f"Skipping palette entry: {e}")
    if not colors:
        return (), None
    return tuple(colors), np.array(colors, dtype=np.float64)


# keyed by id(): only the catalog's own constants are prebuilt
_PREBUILT_TABLES = {id(p): (p, _build_table(p)) for p in (_MONOCHROME, _CGA, _WEB_SAFE)}


def _palette_table(palette):
    prebuilt = _PREBUILT_TABLES.get(id(palette))
    if prebuilt is not None and prebuilt[0] is palette:
        return prebuilt[1]
    return _build_table(palette)


def nearest_color(r: float, g: float, b: float, palette: Sequence) -> Color:
    """
    Find the palette entry closest to (r, g, b) by squared Euclidean distance.

    Ties go to the entry that comes first in the palette. Entries that are not
    three numeric channels are skipped; if nothing usable is left the result
    is black rather than an error.
    """
    if palette is None:
        logger.debug("No palette given to nearest_color, using black")
        return BLACK

    colors, table = _palette_table(palette)
    if table is None:
        logger.debug("Palette has no usable entries, using black")
        return BLACK

    diff = table - np.array((r, g, b), dtype=np.float64)
    distances = (diff**2).sum(axis=1)
    return colors[int(np.argmin(distances))]


# -------------------- Resolver factory --------------------

def build_resolver(palette_id, threshold=DEFAULT_THRESHOLD) -> Callable[[float, float, float], Color]:
    """
    Bind a palette (and, for monochrome, a threshold) into a resolve(r, g, b)
    function for the dithering engine. The result is a partial over a module
    level function, so it can be shipped to worker processes.
    """
    palette_id = parse_palette_id(palette_id)
    if palette_id == PaletteId.MONOCHROME:
        return partial(resolve_monochrome, threshold=threshold)
    return partial(nearest_color, palette=get_palette(palette_id))
