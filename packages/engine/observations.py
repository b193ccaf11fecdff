"""Sensor observations pushed into a session, and their conversion to planes.

The tracking subsystem delivers three kinds of events:

* ``surface`` – a raw candidate roof surface (outline + confidence);
* ``point``   – a single sampled feature point;
* ``tracking`` – a change of the tracking state.

They are parsed with :data:`observation_list_adapter` (JSON arrays) or
constructed directly, then handed to ``RoofSession.ingest``.
"""

from __future__ import annotations

import logging
import math
from typing import Annotated, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, Field, TypeAdapter

from packages.core.types import ARPoint, DetectionConfig, PlaneType, RoofPlane, TrackingState, Vec3
from packages.engine.geometry import (
    EPSILON,
    azimuth_from_normal,
    canonical_normal,
    estimate_normal,
    pitch_from_normal,
    polygon_area_3d,
    to_vec3,
    xyz,
)

logger = logging.getLogger(__name__)

VERTICAL_PITCH = 75.0  # degrees; steeper surfaces count as vertical


class SurfaceObservation(BaseModel):
    """A candidate surface as reported by the sensor, before validation."""

    kind: Literal["surface"] = "surface"
    id: Optional[str] = None
    boundaries: list[ARPoint]
    normal: Optional[Vec3] = None
    confidence: float = Field(ge=0.0, le=1.0)
    distance: Optional[float] = Field(default=None, description="Metres from the camera")
    type: Optional[PlaneType] = None
    material: Optional[str] = None


class PointObservation(BaseModel):
    kind: Literal["point"] = "point"
    point: ARPoint


class TrackingObservation(BaseModel):
    kind: Literal["tracking"] = "tracking"
    state: TrackingState


Observation = Annotated[
    Union[SurfaceObservation, PointObservation, TrackingObservation],
    Field(discriminator="kind"),
]
observation_list_adapter: TypeAdapter = TypeAdapter(list[Observation])


def classify_plane_type(area: float) -> PlaneType:
    """Size-based guess at a surface's role on the roof."""
    if area > 50:
        return PlaneType.PRIMARY
    if area > 10:
        return PlaneType.SECONDARY
    return PlaneType.OTHER


def plane_from_observation(obs: SurfaceObservation) -> RoofPlane:
    """Derive a full :class:`RoofPlane` from a raw surface observation.

    The normal is taken from the sensor when it is usable, otherwise
    estimated from the outline; either way it is turned to face up.  Area,
    pitch, azimuth and projected area are computed from the geometry.
    """
    n = xyz(obs.normal) if obs.normal is not None else np.zeros(3)
    mag = float(np.linalg.norm(n))
    if mag < EPSILON or not math.isfinite(mag):
        n = xyz(estimate_normal(obs.boundaries))
    else:
        n = n / mag
    normal = to_vec3(canonical_normal(n))

    area = abs(polygon_area_3d(obs.boundaries, normal))
    pitch = pitch_from_normal(normal)
    projected = min(area, max(0.0, area * math.cos(math.radians(pitch))))
    return RoofPlane(
        id=obs.id,
        boundaries=list(obs.boundaries),
        normal=normal,
        pitch_angle=pitch,
        azimuth_angle=azimuth_from_normal(normal),
        area=area,
        projected_area=projected,
        type=obs.type or classify_plane_type(area),
        confidence=obs.confidence,
        material=obs.material,
    )


def screen_surface(obs: SurfaceObservation, plane: RoofPlane, config: DetectionConfig) -> str | None:
    """Range and orientation filters applied before validation.

    Returns a short reason when the surface should be dropped.
    """
    if obs.distance is not None and obs.distance > config.max_distance:
        return f"beyond max distance ({obs.distance:.1f} m > {config.max_distance:.1f} m)"
    vertical = plane.pitch_angle >= VERTICAL_PITCH
    if vertical and not config.detect_vertical_planes:
        return "vertical planes disabled"
    if not vertical and not config.detect_horizontal_planes:
        return "horizontal planes disabled"
    return None
