"""Exception types raised by the roof geometry engine."""

from __future__ import annotations

from enum import Enum


class ValidationReason(str, Enum):
    INSUFFICIENT_VERTICES = "InsufficientVertices"
    AREA_TOO_SMALL = "AreaTooSmall"
    LOW_CONFIDENCE = "LowConfidence"
    DEGENERATE_GEOMETRY = "DegenerateGeometry"


class RoofEngineError(Exception):
    """Base class for engine errors."""


class PlaneValidationError(RoofEngineError):
    """A candidate plane failed one of the admission checks."""

    def __init__(self, reason: ValidationReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        msg = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(msg)


class MergeRequiresMultiplePlanes(RoofEngineError):
    """Fewer than two known planes were passed to a merge."""

    def __init__(self, resolved: int):
        self.resolved = resolved
        super().__init__(f"merge needs at least 2 stored planes, found {resolved}")


class CapabilityProbeFailure(RoofEngineError):
    """The platform capability probe failed, timed out, or said no."""
