"""Pydantic models for the roof geometry engine.

These describe what the engine stores and hands back to callers: sampled
points, detected roof planes, the session configuration, tracking state and
the derived quality metrics.  Everything returned from a session is a copy of
one of these models, never a live reference into the store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ── tiny helpers ──────────────────────────────────────────────────────
class Vec3(BaseModel):
    """A 3-component vector (x, y, z) in metres."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    z: float


class SensorAccuracy(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ARPoint(BaseModel):
    """A single 3D sample in the right-handed world frame (y is up)."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    z: float
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sensor_accuracy: SensorAccuracy = SensorAccuracy.HIGH


# ── plane / surface types ────────────────────────────────────────────
class PlaneType(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DORMER = "dormer"
    HIP = "hip"
    CHIMNEY = "chimney"
    OTHER = "other"
    CUSTOM = "custom"


class RoofPlane(BaseModel):
    """A detected or user-confirmed roof surface.

    ``boundaries`` is the polygon footprint in winding order.  The minimum
    vertex count is checked by the validator rather than here, so planes
    that fail validation can still be stored and flagged.
    """

    id: Optional[str] = None
    boundaries: list[ARPoint] = Field(default_factory=list)
    normal: Vec3 = Vec3(x=0.0, y=1.0, z=0.0)
    pitch_angle: float = Field(default=0.0, ge=0.0, le=90.0)
    azimuth_angle: float = Field(default=0.0, ge=0.0, le=360.0)
    area: float = Field(default=0.0, ge=0.0, description="True surface area in m²")
    projected_area: float = Field(
        default=0.0, ge=0.0, description="Footprint area seen from above: area · cos(pitch)"
    )
    type: PlaneType = PlaneType.OTHER
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    material: Optional[str] = None

    @model_validator(mode="after")
    def _projected_not_larger(self) -> "RoofPlane":
        if self.projected_area > self.area + 1e-9:
            raise ValueError(
                f"projected_area ({self.projected_area}) exceeds area ({self.area})"
            )
        return self


# ── session configuration ────────────────────────────────────────────
class Sensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DetectionConfig(BaseModel):
    """Session-scoped detection settings, checked once at construction."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_plane_area: float = Field(default=1.0, ge=0.0, description="m²")
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    sensitivity: Sensitivity = Sensitivity.HIGH
    max_distance: float = Field(default=50.0, gt=0.0, description="Sensor range in metres")
    detect_horizontal_planes: bool = True
    detect_vertical_planes: bool = True
    merge_threshold: float = Field(default=0.5, ge=0.0, description="Merge gap in metres")
    strict_validation: bool = False
    target_vertex_count: int = Field(default=32, gt=0)
    probe_timeout: float = Field(default=5.0, gt=0.0, description="Seconds")

    @model_validator(mode="after")
    def _some_orientation_enabled(self) -> "DetectionConfig":
        if not (self.detect_horizontal_planes or self.detect_vertical_planes):
            raise ValueError("at least one of horizontal/vertical detection must be enabled")
        return self


# ── session state ────────────────────────────────────────────────────
class TrackingState(str, Enum):
    NOT_AVAILABLE = "notAvailable"
    INITIALIZING = "initializing"
    TRACKING = "tracking"
    LIMITED = "limited"
    RELOCALIZING = "relocalizing"


class QualityMetrics(BaseModel):
    """Derived session scores, all normalised to [0, 1]."""

    overall_score: float = 0.0
    tracking_stability: float = 0.0
    point_density: float = 0.0
    duration: float = Field(default=0.0, description="Seconds since tracking began")
    tracking_interruptions: int = 0
    validated_planes: int = 0
    unvalidated_planes: int = 0
    observed_points: int = 0


class SessionState(BaseModel):
    """Read-only snapshot of a :class:`~packages.engine.session.RoofSession`."""

    planes: list[RoofPlane] = Field(default_factory=list)
    tracking_state: TrackingState = TrackingState.NOT_AVAILABLE
    is_active: bool = False
    is_supported: bool = False
    is_detecting: bool = False
    error: Optional[str] = None
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics)


class RoofSummary(BaseModel):
    """Totals over the stored planes, for downstream measurement consumers."""

    plane_count: int = 0
    total_area: float = 0.0
    total_projected_area: float = 0.0
    total_perimeter: float = 0.0
