"""Polygon and ray geometry for roof planes.

Every function here is total: degenerate input (too few vertices, collinear
points, zero-length vectors) produces a well-defined degenerate result such as
a zero area or the default up-normal instead of raising.

Conventions
-----------
* World frame is right-handed with **y up**.
* Compass headings treat **-z as north** and **+x as east**.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Sequence

import numpy as np
from scipy.spatial import ConvexHull, QhullError

from packages.core.types import ARPoint, RoofPlane, SensorAccuracy, Vec3

logger = logging.getLogger(__name__)

EPSILON = 1e-9
UP = Vec3(x=0.0, y=1.0, z=0.0)


# ── conversions ──────────────────────────────────────────────────────

def xyz(p) -> np.ndarray:
    """Return ``p`` (ARPoint, Vec3, sequence or array) as a float (3,) array."""
    if isinstance(p, (ARPoint, Vec3)):
        return np.array([p.x, p.y, p.z], dtype=np.float64)
    return np.asarray(p, dtype=np.float64).reshape(3)


def points_array(boundaries: Sequence[ARPoint]) -> np.ndarray:
    """Stack boundary points into an (N, 3) array."""
    if len(boundaries) == 0:
        return np.empty((0, 3), dtype=np.float64)
    return np.array([[p.x, p.y, p.z] for p in boundaries], dtype=np.float64)


def to_vec3(a: np.ndarray) -> Vec3:
    return Vec3(x=float(a[0]), y=float(a[1]), z=float(a[2]))


def accuracy_for(confidence: float) -> SensorAccuracy:
    """Bucket a confidence score into a sensor accuracy tag."""
    if confidence >= 0.8:
        return SensorAccuracy.HIGH
    if confidence >= 0.5:
        return SensorAccuracy.MEDIUM
    return SensorAccuracy.LOW


# ── normals ──────────────────────────────────────────────────────────

def newell_vector(boundaries: Sequence[ARPoint]) -> np.ndarray:
    """Unnormalised polygon normal by Newell's method.

    Its length is twice the polygon area for planar input, and it stays
    well-behaved for slightly non-planar (noisy) outlines.
    """
    pts = points_array(boundaries)
    if len(pts) < 3:
        return np.zeros(3)
    nxt = np.roll(pts, -1, axis=0)
    return np.array([
        np.sum((pts[:, 1] - nxt[:, 1]) * (pts[:, 2] + nxt[:, 2])),
        np.sum((pts[:, 2] - nxt[:, 2]) * (pts[:, 0] + nxt[:, 0])),
        np.sum((pts[:, 0] - nxt[:, 0]) * (pts[:, 1] + nxt[:, 1])),
    ])


def is_degenerate(boundaries: Sequence[ARPoint]) -> bool:
    """True when the outline has no usable normal (too few or collinear points)."""
    return float(np.linalg.norm(newell_vector(boundaries))) < EPSILON


def estimate_normal(boundaries: Sequence[ARPoint]) -> Vec3:
    """Unit normal of the outline; falls back to :data:`UP` when degenerate."""
    n = newell_vector(boundaries)
    mag = float(np.linalg.norm(n))
    if mag < EPSILON:
        return UP
    return to_vec3(n / mag)


def canonical_normal(n: np.ndarray) -> np.ndarray:
    """Flip a unit normal into the upper hemisphere.

    Vertical normals (y == 0) are oriented so their first non-zero component
    is positive.
    """
    if n[1] < -EPSILON:
        return -n
    if abs(n[1]) <= EPSILON:
        for c in (n[0], n[2]):
            if abs(c) > EPSILON:
                return n if c > 0 else -n
    return n


def plane_basis(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return orthonormal in-plane axes ``(u, v)`` with ``u × v == normal``."""
    helper = np.array([1.0, 0.0, 0.0]) if abs(normal[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(normal, helper)
    u /= np.linalg.norm(u)
    v = np.cross(normal, u)
    return u, v


def _unit_or_none(v: np.ndarray) -> np.ndarray | None:
    mag = float(np.linalg.norm(v))
    if not math.isfinite(mag) or mag < EPSILON:
        return None
    return v / mag


def _reference_normal(boundaries: Sequence[ARPoint], normal: Vec3 | None) -> np.ndarray | None:
    if normal is not None:
        n = _unit_or_none(xyz(normal))
        if n is not None:
            return n
    n = _unit_or_none(newell_vector(boundaries))
    return canonical_normal(n) if n is not None else None


# ── measurements ─────────────────────────────────────────────────────

def polygon_area_3d(boundaries: Sequence[ARPoint], normal: Vec3 | None = None) -> float:
    """Signed area of a 3D polygon on its own plane.

    The outline is projected onto the 2D basis of *normal* (or of the Newell
    normal, turned to face up) and measured with the shoelace formula.  The
    result is positive for counter-clockwise winding around the reference
    normal and negative for clockwise; cyclic rotation of the vertex list does
    not change it.  Degenerate outlines give ``0.0``.
    """
    pts = points_array(boundaries)
    if len(pts) < 3:
        return 0.0
    n = _reference_normal(boundaries, normal)
    if n is None:
        return 0.0
    u, v = plane_basis(n)
    local = pts - pts.mean(axis=0)
    xs = local @ u
    ys = local @ v
    return float(0.5 * np.sum(xs * np.roll(ys, -1) - np.roll(xs, -1) * ys))


def polygon_perimeter(boundaries: Sequence[ARPoint]) -> float:
    """Length of the closed outline in metres."""
    pts = points_array(boundaries)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1).sum())


def pitch_from_normal(normal: Vec3) -> float:
    """Angle in degrees between the normal and vertical (0 flat … 90 vertical)."""
    n = _unit_or_none(xyz(normal))
    if n is None:
        return 0.0
    return math.degrees(math.acos(min(1.0, abs(float(n[1])))))


def azimuth_from_normal(normal: Vec3) -> float:
    """Compass heading in degrees [0, 360) of the surface's downslope direction.

    The horizontal component of an upward-facing normal points downslope.
    Flat surfaces have no heading and report ``0.0``.
    """
    n = _unit_or_none(xyz(normal))
    if n is None:
        return 0.0
    if n[1] < 0:
        n = -n
    if math.hypot(n[0], n[2]) < 1e-6:
        return 0.0
    return math.degrees(math.atan2(n[0], -n[2])) % 360.0


def plane_bounds(boundaries: Sequence[ARPoint]) -> tuple[np.ndarray, np.ndarray] | None:
    """Axis-aligned ``(min, max)`` corners of the outline, or None if empty."""
    pts = points_array(boundaries)
    if len(pts) == 0:
        return None
    return pts.min(axis=0), pts.max(axis=0)


# ── containment / intersection ───────────────────────────────────────

def point_in_polygon(point, boundaries: Sequence[ARPoint], normal: Vec3 | None = None) -> bool:
    """Even-odd crossing test in the polygon's local 2D basis.

    Both *point* and the outline are projected onto the plane, so a point
    slightly off the surface still counts if its footprint is inside.
    """
    pts = points_array(boundaries)
    if len(pts) < 3:
        return False
    n = _reference_normal(boundaries, normal)
    if n is None:
        return False
    u, v = plane_basis(n)
    origin = pts[0]
    poly = np.column_stack(((pts - origin) @ u, (pts - origin) @ v))
    q = xyz(point) - origin
    px, py = float(q @ u), float(q @ v)

    inside = False
    j = len(poly) - 1
    for i in range(len(poly)):
        xi, yi = poly[i]
        xj, yj = poly[j]
        if (yi > py) != (yj > py):
            x_cross = (xj - xi) * (py - yi) / (yj - yi) + xi
            if px < x_cross:
                inside = not inside
        j = i
    return inside


def ray_plane_intersect(origin, direction, plane: RoofPlane) -> ARPoint | None:
    """Intersect a ray with a roof plane's polygon.

    Returns the hit as an :class:`ARPoint` carrying the plane's confidence,
    or ``None`` when the ray is parallel, the hit lies behind the origin
    (``t <= 0``), or the hit falls outside the outline.
    """
    if len(plane.boundaries) < 3:
        return None
    o = xyz(origin)
    d = xyz(direction)
    if _unit_or_none(d) is None:
        return None
    n = _reference_normal(plane.boundaries, plane.normal)
    if n is None:
        return None

    denom = float(n @ d)
    if abs(denom) < EPSILON:
        return None
    anchor = points_array(plane.boundaries).mean(axis=0)
    t = float(n @ (anchor - o)) / denom
    if t <= EPSILON:
        return None

    hit = o + t * d
    if not point_in_polygon(hit, plane.boundaries, to_vec3(n)):
        return None
    return ARPoint(
        x=float(hit[0]),
        y=float(hit[1]),
        z=float(hit[2]),
        confidence=plane.confidence,
        sensor_accuracy=accuracy_for(plane.confidence),
    )


# ── merging ──────────────────────────────────────────────────────────

def union_approximate(boundary_sets: Iterable[Sequence[ARPoint]]) -> list[ARPoint]:
    """Approximate the union of several outlines by their convex hull.

    All vertices are projected onto their best-fit plane (SVD) and hulled in
    2D; the input 3D points are returned in counter-clockwise order around
    the upward-facing fit normal.  When fewer than three distinct points
    remain, or they are collinear, the distinct points are returned as-is.
    """
    unique: dict[tuple[float, float, float], ARPoint] = {}
    for boundaries in boundary_sets:
        for p in boundaries:
            key = (round(p.x, 9), round(p.y, 9), round(p.z, 9))
            unique.setdefault(key, p)
    points = list(unique.values())
    if len(points) < 3:
        return points

    pts = points_array(points)
    centred = pts - pts.mean(axis=0)
    _, s, vt = np.linalg.svd(centred)
    if s[1] < EPSILON:
        return points

    n = canonical_normal(vt[-1] / np.linalg.norm(vt[-1]))
    u, v = plane_basis(n)
    coords = np.column_stack((centred @ u, centred @ v))
    try:
        hull = ConvexHull(coords)
    except QhullError:
        logger.debug("Convex hull failed for %d points; keeping raw vertices", len(points))
        return points
    return [points[i] for i in hull.vertices]
