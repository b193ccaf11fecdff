"""Admission checks for candidate roof planes."""

from __future__ import annotations

import logging

import numpy as np

from packages.core.errors import PlaneValidationError, ValidationReason
from packages.core.types import DetectionConfig, RoofPlane, Sensitivity
from packages.engine.geometry import EPSILON, newell_vector, polygon_area_3d

logger = logging.getLogger(__name__)

# Multiplier on ``min_plane_area``: a more sensitive session accepts smaller surfaces.
_AREA_FACTOR = {
    Sensitivity.LOW: 1.5,
    Sensitivity.MEDIUM: 1.0,
    Sensitivity.HIGH: 0.5,
}


def effective_min_area(config: DetectionConfig) -> float:
    """The area threshold after applying the sensitivity factor."""
    return config.min_plane_area * _AREA_FACTOR[config.sensitivity]


def validate_plane(candidate: RoofPlane, config: DetectionConfig) -> ValidationReason | None:
    """Return the first failed check for *candidate*, or ``None`` if it passes.

    Checks run in order:

    1. fewer than three boundary vertices → ``InsufficientVertices``
    2. area computed from the outline below the (sensitivity-scaled)
       minimum → ``AreaTooSmall``
    3. confidence below ``min_confidence`` → ``LowConfidence``
    4. Newell normal magnitude below epsilon → ``DegenerateGeometry``
    """
    if len(candidate.boundaries) < 3:
        return ValidationReason.INSUFFICIENT_VERTICES
    if abs(polygon_area_3d(candidate.boundaries)) < effective_min_area(config):
        return ValidationReason.AREA_TOO_SMALL
    if candidate.confidence < config.min_confidence:
        return ValidationReason.LOW_CONFIDENCE
    if float(np.linalg.norm(newell_vector(candidate.boundaries))) < EPSILON:
        return ValidationReason.DEGENERATE_GEOMETRY
    return None


def is_valid(candidate: RoofPlane, config: DetectionConfig) -> bool:
    return validate_plane(candidate, config) is None


def ensure_valid(candidate: RoofPlane, config: DetectionConfig) -> None:
    """Raise :class:`PlaneValidationError` if *candidate* fails a check."""
    reason = validate_plane(candidate, config)
    if reason is not None:
        raise PlaneValidationError(reason, f"plane {candidate.id or '<new>'}")
