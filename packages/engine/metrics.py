"""Session quality scores and plane totals."""

from __future__ import annotations

from typing import Iterable

from packages.core.types import QualityMetrics, RoofPlane, RoofSummary, TrackingState
from packages.engine.geometry import polygon_perimeter

STABILITY_BY_STATE = {
    TrackingState.TRACKING: 1.0,
    TrackingState.LIMITED: 0.5,
    TrackingState.RELOCALIZING: 0.25,
    TrackingState.INITIALIZING: 0.1,
    TrackingState.NOT_AVAILABLE: 0.0,
}
STABILITY_WEIGHT = 0.6
DENSITY_WEIGHT = 0.4


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def compute_quality_metrics(
    tracking_state: TrackingState,
    *,
    validated_vertices: int,
    target_vertex_count: int,
    validated_planes: int = 0,
    unvalidated_planes: int = 0,
    duration: float = 0.0,
    tracking_interruptions: int = 0,
    observed_points: int = 0,
) -> QualityMetrics:
    """Score a session.

    ``point_density`` counts boundary vertices of validated planes only;
    planes stored without passing validation do not raise the score.
    ``overall_score`` is 60 % tracking stability and 40 % point density.
    """
    stability = _clamp01(STABILITY_BY_STATE[tracking_state])
    density = _clamp01(validated_vertices / target_vertex_count) if target_vertex_count > 0 else 0.0
    return QualityMetrics(
        overall_score=STABILITY_WEIGHT * stability + DENSITY_WEIGHT * density,
        tracking_stability=stability,
        point_density=density,
        duration=max(0.0, duration),
        tracking_interruptions=tracking_interruptions,
        validated_planes=validated_planes,
        unvalidated_planes=unvalidated_planes,
        observed_points=observed_points,
    )


def summarize_planes(planes: Iterable[RoofPlane]) -> RoofSummary:
    """Area and perimeter totals for a set of planes."""
    summary = RoofSummary()
    for plane in planes:
        summary.plane_count += 1
        summary.total_area += plane.area
        summary.total_projected_area += plane.projected_area
        summary.total_perimeter += polygon_perimeter(plane.boundaries)
    return summary
