"""Shared test fixtures – synthetic roof planes and sessions."""

from __future__ import annotations

import math

import pytest

from packages.core.types import ARPoint, DetectionConfig, PlaneType, RoofPlane, SensorAccuracy, Vec3
from packages.engine.session import RoofSession


def _pt(x: float, y: float, z: float, confidence: float = 0.9) -> ARPoint:
    return ARPoint(x=x, y=y, z=z, confidence=confidence, sensor_accuracy=SensorAccuracy.HIGH)


def _square_plane(
    plane_id: str | None,
    area: float,
    *,
    confidence: float = 0.9,
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
    pitch: float = 30.0,
    azimuth: float = 180.0,
) -> RoofPlane:
    """A flat square outline of *area* m² at height ``origin[1]``.

    Orientation fields are set independently of the outline, the way a
    sensor reports them.
    """
    side = math.sqrt(area)
    ox, oy, oz = origin
    return RoofPlane(
        id=plane_id,
        boundaries=[
            _pt(ox, oy, oz, confidence),
            _pt(ox + side, oy, oz, confidence),
            _pt(ox + side, oy, oz + side, confidence),
            _pt(ox, oy, oz + side, confidence),
        ],
        normal=Vec3(x=0.0, y=1.0, z=0.0),
        pitch_angle=pitch,
        azimuth_angle=azimuth,
        area=area,
        projected_area=area * math.cos(math.radians(pitch)),
        type=PlaneType.PRIMARY,
        confidence=confidence,
        material="shingle",
    )


@pytest.fixture()
def point():
    """Factory for high-accuracy ARPoints."""
    return _pt


@pytest.fixture()
def square_plane():
    """Factory for square roof planes of a given area."""
    return _square_plane


@pytest.fixture()
def config() -> DetectionConfig:
    return DetectionConfig(sensitivity="medium")


@pytest.fixture()
def session(config: DetectionConfig) -> RoofSession:
    return RoofSession(config)
