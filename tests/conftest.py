import math

import numpy as np
import pytest

from donut_renderer import BACKGROUND, FrameRenderer


@pytest.fixture
def coarse_renderer():
    """Reference geometry with sampling coarse enough for per-sample checks."""
    return FrameRenderer(theta_spacing=0.05, phi_spacing=0.02)


@pytest.fixture(scope="session")
def renderer():
    return FrameRenderer()


@pytest.fixture(scope="session")
def rest_frame(renderer):
    buffer = renderer.new_buffer()
    renderer.render_frame(0.0, 0.0, buffer)
    return buffer


def sequential_frame(renderer, a, b):
    """
    Draw a frame one sample at a time, in visiting order.

    Returns:
        tuple[np.ndarray, np.ndarray]:
            Output buffer and depth buffer, both shaped (H, W).
    """
    width, height = renderer.screen_width, renderer.screen_height
    depth = np.zeros(width * height)
    output = np.full(width * height, BACKGROUND, dtype=np.uint32)
    last = len(renderer.gradient) - 1

    for cols, rows, ooz, luminance in renderer.iter_samples(a, b):
        for col, row, o, l in zip(cols.tolist(), rows.tolist(), ooz.tolist(), luminance.tolist()):
            if l <= 0 or o <= 0:
                continue
            if not (0 <= col < width and 0 <= row < height):
                continue
            i = row * width + col
            if o > depth[i]:
                depth[i] = o
                output[i] = renderer.gradient[min(max(math.floor(l * 8), 0), last)]

    return output.reshape(height, width), depth.reshape(height, width)


@pytest.fixture
def sequential():
    return sequential_frame
