"""Tests for plane admission checks."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from packages.core.errors import PlaneValidationError, ValidationReason
from packages.core.types import DetectionConfig, RoofPlane
from packages.engine.validation import effective_min_area, ensure_valid, is_valid, validate_plane


class TestValidatePlane:
    def test_valid_plane(self, square_plane, config):
        assert validate_plane(square_plane("a", 10.0), config) is None
        assert is_valid(square_plane("a", 10.0), config)

    def test_insufficient_vertices(self, square_plane, config):
        plane = square_plane("a", 10.0)
        plane = plane.model_copy(update={"boundaries": plane.boundaries[:2]})
        assert validate_plane(plane, config) == ValidationReason.INSUFFICIENT_VERTICES

    def test_area_uses_outline_not_reported_area(self, square_plane, config):
        plane = square_plane("a", 0.25).model_copy(update={"area": 100.0, "projected_area": 50.0})
        assert validate_plane(plane, config) == ValidationReason.AREA_TOO_SMALL

    def test_low_confidence(self, square_plane, config):
        assert validate_plane(square_plane("a", 10.0, confidence=0.3), config) == ValidationReason.LOW_CONFIDENCE

    def test_degenerate_geometry(self, point):
        line = RoofPlane(
            id="line",
            boundaries=[point(0, 0, 0), point(1, 0, 0), point(2, 0, 0)],
            confidence=0.9,
        )
        cfg = DetectionConfig(min_plane_area=0.0)
        assert validate_plane(line, cfg) == ValidationReason.DEGENERATE_GEOMETRY

    def test_checks_run_in_order(self, point):
        # collinear, low confidence and tiny: the area check reports first
        line = RoofPlane(
            boundaries=[point(0, 0, 0), point(1, 0, 0), point(2, 0, 0)],
            confidence=0.1,
        )
        assert validate_plane(line, DetectionConfig(sensitivity="medium")) == ValidationReason.AREA_TOO_SMALL

    def test_ensure_valid_raises(self, square_plane, config):
        with pytest.raises(PlaneValidationError) as excinfo:
            ensure_valid(square_plane("a", 10.0, confidence=0.1), config)
        assert excinfo.value.reason == ValidationReason.LOW_CONFIDENCE


class TestSensitivity:
    def test_area_factor(self):
        assert effective_min_area(DetectionConfig(sensitivity="high")) == pytest.approx(0.5)
        assert effective_min_area(DetectionConfig(sensitivity="medium")) == pytest.approx(1.0)
        assert effective_min_area(DetectionConfig(sensitivity="low")) == pytest.approx(1.5)

    def test_high_sensitivity_accepts_small_triangle(self, point):
        triangle = RoofPlane(
            boundaries=[point(0, 0, 0), point(1.6, 0, 0), point(1.6, 0, 1)],
            area=0.8,
            projected_area=0.8,
            confidence=0.9,
        )
        assert is_valid(triangle, DetectionConfig())
        assert not is_valid(triangle, DetectionConfig(sensitivity="medium"))


class TestDetectionConfig:
    def test_defaults(self):
        cfg = DetectionConfig()
        assert cfg.min_plane_area == 1.0
        assert cfg.min_confidence == 0.5
        assert cfg.strict_validation is False

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            DetectionConfig(merge_distance=1.0)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            DetectionConfig(min_confidence=1.5)
        with pytest.raises(ValidationError):
            DetectionConfig(detect_horizontal_planes=False, detect_vertical_planes=False)

    def test_frozen(self):
        cfg = DetectionConfig()
        with pytest.raises(ValidationError):
            cfg.min_plane_area = 3.0


class TestRoofPlaneModel:
    def test_projected_area_cannot_exceed_area(self):
        with pytest.raises(ValidationError):
            RoofPlane(area=1.0, projected_area=2.0)

    def test_confidence_range(self):
        with pytest.raises(ValidationError):
            RoofPlane(confidence=1.2)
