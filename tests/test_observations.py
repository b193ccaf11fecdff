"""Tests for converting raw sensor observations into roof planes."""

from __future__ import annotations

import math

import pytest

from packages.core.types import DetectionConfig, PlaneType, TrackingState, Vec3
from packages.engine.observations import (
    PointObservation,
    SurfaceObservation,
    TrackingObservation,
    classify_plane_type,
    observation_list_adapter,
    plane_from_observation,
    screen_surface,
)


@pytest.fixture()
def south_slope(point):
    """2 m × 5 m surface rising 4 m over 3 m towards north (-z)."""
    return SurfaceObservation(
        id="slope",
        boundaries=[point(0, 0, 0), point(2, 0, 0), point(2, 4, -3), point(0, 4, -3)],
        confidence=0.9,
    )


class TestPlaneFromObservation:
    def test_derived_geometry(self, south_slope):
        plane = plane_from_observation(south_slope)
        assert plane.id == "slope"
        assert plane.area == pytest.approx(10.0)
        assert plane.pitch_angle == pytest.approx(math.degrees(math.acos(0.6)))
        assert plane.projected_area == pytest.approx(6.0)
        assert plane.azimuth_angle == pytest.approx(180.0)
        assert (plane.normal.x, plane.normal.y, plane.normal.z) == pytest.approx((0.0, 0.6, 0.8))

    def test_sensor_normal_is_turned_up(self, point):
        obs = SurfaceObservation(
            boundaries=[point(0, 0, 0), point(4, 0, 0), point(4, 0, 4), point(0, 0, 4)],
            normal=Vec3(x=0.0, y=-2.0, z=0.0),
            confidence=0.8,
        )
        plane = plane_from_observation(obs)
        assert plane.normal == Vec3(x=0.0, y=1.0, z=0.0)
        assert plane.pitch_angle == pytest.approx(0.0)
        assert plane.area == pytest.approx(16.0)
        assert plane.projected_area == pytest.approx(16.0)
        assert plane.type == PlaneType.SECONDARY

    def test_explicit_type_wins(self, south_slope):
        obs = south_slope.model_copy(update={"type": PlaneType.DORMER, "material": "tile"})
        plane = plane_from_observation(obs)
        assert plane.type == PlaneType.DORMER
        assert plane.material == "tile"

    @pytest.mark.parametrize(
        "area, expected",
        [(80.0, PlaneType.PRIMARY), (20.0, PlaneType.SECONDARY), (10.0, PlaneType.OTHER)],
    )
    def test_classify_plane_type(self, area, expected):
        assert classify_plane_type(area) == expected


class TestScreenSurface:
    def test_distance_filter(self, south_slope):
        obs = south_slope.model_copy(update={"distance": 80.0})
        reason = screen_surface(obs, plane_from_observation(obs), DetectionConfig())
        assert reason is not None and "max distance" in reason

    def test_orientation_filters(self, point):
        wall = SurfaceObservation(
            boundaries=[point(0, 0, 0), point(2, 0, 0), point(2, 2, 0), point(0, 2, 0)],
            confidence=0.9,
        )
        plane = plane_from_observation(wall)
        assert plane.pitch_angle == pytest.approx(90.0)
        assert screen_surface(wall, plane, DetectionConfig(detect_vertical_planes=False)) is not None
        assert screen_surface(wall, plane, DetectionConfig(detect_horizontal_planes=False)) is None

    def test_passes(self, south_slope):
        assert screen_surface(south_slope, plane_from_observation(south_slope), DetectionConfig()) is None


class TestObservationParsing:
    def test_discriminated_list(self):
        raw = [
            {"kind": "tracking", "state": "limited"},
            {"kind": "point", "point": {"x": 1, "y": 2, "z": 3}},
            {
                "kind": "surface",
                "confidence": 0.9,
                "boundaries": [
                    {"x": 0, "y": 0, "z": 0},
                    {"x": 1, "y": 0, "z": 0},
                    {"x": 1, "y": 0, "z": 1},
                ],
            },
        ]
        parsed = observation_list_adapter.validate_python(raw)
        assert isinstance(parsed[0], TrackingObservation)
        assert parsed[0].state == TrackingState.LIMITED
        assert isinstance(parsed[1], PointObservation)
        assert isinstance(parsed[2], SurfaceObservation)
        assert len(parsed[2].boundaries) == 3
