import numpy as np
import pytest

from dithering_lib import PixelBuffer


def uniform_buffer(width, height, rgba):
    """A width x height buffer filled with one RGBA value."""
    return PixelBuffer(width, height, list(rgba) * (width * height))


def gradient_buffer(width, height):
    """Red ramps along x, green along y, blue fixed, alpha varies per pixel."""
    arr = np.zeros((height, width, 4), dtype=np.uint8)
    for y in range(height):
        for x in range(width):
            arr[y, x] = (int(x * 255 / max(1, width - 1)),
                         int(y * 255 / max(1, height - 1)),
                         128,
                         (x * 37 + y * 11) % 256)
    return PixelBuffer.from_array(arr)


class RecordingResolver:
    """Wraps a resolver and remembers every (r, g, b) it was asked about."""

    def __init__(self, resolve):
        self.resolve = resolve
        self.calls = []

    def __call__(self, r, g, b):
        self.calls.append((r, g, b))
        return self.resolve(r, g, b)


@pytest.fixture
def gradient():
    return gradient_buffer(10, 10)
