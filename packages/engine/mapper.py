"""Screen-to-world projection for taps on the camera view.

No camera pose is available here, so :class:`HeuristicScreenMapper` uses a
fixed mapping: the screen covers a patch of ground in front of a phone held
at arm's length.  It is an estimate, and every point it returns says so
(``confidence=0.7``, ``sensor_accuracy="medium"``).  A pose-driven mapper can
replace it by implementing :class:`ScreenMapper`.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol

import numpy as np

from packages.core.types import ARPoint, SensorAccuracy

logger = logging.getLogger(__name__)

LATERAL_SCALE = 1.5   # metres per normalised unit; full width spans 3 m
DEPTH_SCALE = 2.0     # metres per normalised unit along -z (forward)
CAMERA_HEIGHT = 1.5   # metres above the ground plane
ESTIMATE_CONFIDENCE = 0.7


class ScreenMapper(Protocol):
    def screen_to_world(
        self, screen_x: float, screen_y: float, screen_width: float, screen_height: float,
    ) -> ARPoint: ...

    def camera_ray(
        self, screen_x: float, screen_y: float, screen_width: float, screen_height: float,
    ) -> tuple[np.ndarray, np.ndarray]: ...


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _normalise_axis(value: float, extent: float) -> float:
    """Map ``value`` in ``[0, extent]`` to ``[-1, 1]``.

    Bad extents collapse to the centre; bad values fall back to the centre;
    out-of-range values are clamped to the nearest edge.
    """
    if not math.isfinite(extent) or extent <= 0:
        return 0.0
    if not math.isfinite(value):
        value = extent / 2
    value = min(max(value, 0.0), extent)
    return (value / extent) * 2.0 - 1.0


class HeuristicScreenMapper:
    """Ground-plane projection with fixed scale factors."""

    def __init__(
        self,
        lateral_scale: float = LATERAL_SCALE,
        depth_scale: float = DEPTH_SCALE,
        camera_height: float = CAMERA_HEIGHT,
    ):
        self.lateral_scale = lateral_scale
        self.depth_scale = depth_scale
        self.camera_height = camera_height

    def screen_to_world(
        self,
        screen_x: float,
        screen_y: float,
        screen_width: float,
        screen_height: float,
    ) -> ARPoint:
        """Project a screen coordinate onto the ground plane (y = 0)."""
        nx = _normalise_axis(_as_float(screen_x), _as_float(screen_width))
        ny = _normalise_axis(_as_float(screen_y), _as_float(screen_height))
        return ARPoint(
            x=nx * self.lateral_scale,
            y=0.0,
            z=ny * self.depth_scale,
            confidence=ESTIMATE_CONFIDENCE,
            sensor_accuracy=SensorAccuracy.MEDIUM,
        )

    def camera_ray(
        self,
        screen_x: float,
        screen_y: float,
        screen_width: float,
        screen_height: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(origin, direction)`` of the ray behind a tap.

        The virtual camera sits ``camera_height`` above the world origin and
        looks at the tap's ground point.
        """
        target = self.screen_to_world(screen_x, screen_y, screen_width, screen_height)
        origin = np.array([0.0, self.camera_height, 0.0])
        direction = np.array([target.x, target.y, target.z]) - origin
        return origin, direction


_default_mapper = HeuristicScreenMapper()


def convert_screen_to_world(
    screen_x: float,
    screen_y: float,
    screen_width: float,
    screen_height: float,
) -> ARPoint:
    """Shortcut for :meth:`HeuristicScreenMapper.screen_to_world`."""
    return _default_mapper.screen_to_world(screen_x, screen_y, screen_width, screen_height)
