"""Plane store: the ordered collection of roof planes owned by a session.

Planes go in as copies and come out as copies, so nothing outside the store
can change a stored plane without going through :class:`PlaneStore`.
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import Iterable, Iterator

import numpy as np

from packages.core.errors import MergeRequiresMultiplePlanes, ValidationReason
from packages.core.types import DetectionConfig, RoofPlane, Sensitivity
from packages.engine.geometry import (
    EPSILON,
    UP,
    plane_bounds,
    points_array,
    to_vec3,
    union_approximate,
    xyz,
)
from packages.engine.validation import ensure_valid, validate_plane

logger = logging.getLogger(__name__)

# Merge-suggestion tolerances per sensitivity: (min normal dot, gap/offset factor)
_MERGE_TOLERANCE = {
    Sensitivity.LOW: (0.99, 0.5),
    Sensitivity.MEDIUM: (0.97, 1.0),
    Sensitivity.HIGH: (0.95, 1.5),
}
_OFFSET_THRESHOLD = 0.15  # metres between parallel planes


def new_plane_id(prefix: str = "plane") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class PlaneStore:
    """Insertion-ordered mapping of plane id → :class:`RoofPlane`.

    Every plane is run through the validator on the way in.  The outcome is
    recorded but only enforced when ``config.strict_validation`` is set;
    otherwise invalid planes are kept and flagged as unvalidated.
    """

    def __init__(self, config: DetectionConfig | None = None):
        self.config = config or DetectionConfig()
        self._planes: dict[str, RoofPlane] = {}
        self._validation: dict[str, ValidationReason | None] = {}

    def __len__(self) -> int:
        return len(self._planes)

    def __contains__(self, plane_id: object) -> bool:
        return plane_id in self._planes

    def __iter__(self) -> Iterator[RoofPlane]:
        return iter(self.planes())

    def ids(self) -> list[str]:
        return list(self._planes)

    def planes(self) -> list[RoofPlane]:
        """Copies of all stored planes, oldest first."""
        return [p.model_copy(deep=True) for p in self._planes.values()]

    def get(self, plane_id: str) -> RoofPlane | None:
        plane = self._planes.get(plane_id)
        return plane.model_copy(deep=True) if plane is not None else None

    def validation_result(self, plane_id: str) -> ValidationReason | None:
        return self._validation.get(plane_id)

    def is_validated(self, plane_id: str) -> bool:
        return plane_id in self._planes and self._validation.get(plane_id) is None

    def validated_vertex_count(self) -> int:
        return sum(
            len(p.boundaries) for pid, p in self._planes.items() if self._validation[pid] is None
        )

    def validation_counts(self) -> tuple[int, int]:
        """``(validated, unvalidated)`` plane counts."""
        bad = sum(1 for r in self._validation.values() if r is not None)
        return len(self._planes) - bad, bad

    # ── mutation ─────────────────────────────────────────────────────

    def add(self, plane: RoofPlane) -> str:
        """Store a copy of *plane* and return its id.

        A missing id is generated.  An existing id is replaced in place.
        """
        plane_id = plane.id or new_plane_id()
        stored = plane.model_copy(update={"id": plane_id}, deep=True)

        if self.config.strict_validation:
            ensure_valid(stored, self.config)
        reason = validate_plane(stored, self.config)
        if reason is not None:
            logger.warning("Plane %s stored unvalidated: %s", plane_id, reason.value)

        if plane_id in self._planes:
            logger.warning("Replacing existing plane %s", plane_id)
        self._planes[plane_id] = stored
        self._validation[plane_id] = reason
        logger.debug("Stored plane %s (%d vertices)", plane_id, len(stored.boundaries))
        return plane_id

    def remove(self, plane_id: str) -> bool:
        if plane_id not in self._planes:
            return False
        del self._planes[plane_id]
        del self._validation[plane_id]
        logger.debug("Removed plane %s", plane_id)
        return True

    def reset(self) -> None:
        self._planes.clear()
        self._validation.clear()

    def revalidate(self) -> int:
        """Re-run the validator over every stored plane under ``self.config``.

        Planes are never evicted here, even in strict mode; only their
        flags change.  Returns how many planes changed status.
        """
        changed = 0
        for plane_id, plane in self._planes.items():
            reason = validate_plane(plane, self.config)
            if (reason is None) != (self._validation[plane_id] is None):
                changed += 1
            self._validation[plane_id] = reason
        if changed:
            logger.info("Revalidated %d planes: %d changed status", len(self._planes), changed)
        return changed

    def merge(self, plane_ids: Iterable[str]) -> str:
        """Merge the stored planes named in *plane_ids* into one new plane.

        Unknown ids are skipped.  If fewer than two planes resolve,
        :class:`MergeRequiresMultiplePlanes` is raised and nothing changes.

        * outline: convex hull of all constituent vertices
        * area / projected area: sums of the constituents
        * normal: area-weighted mean direction
        * pitch: area-weighted mean; azimuth: area-weighted circular mean
        * confidence: the lowest constituent confidence
        * type / material: taken from the largest constituent
        """
        wanted = list(dict.fromkeys(plane_ids))
        resolved = [self._planes[pid] for pid in wanted if pid in self._planes]
        if len(resolved) < 2:
            raise MergeRequiresMultiplePlanes(len(resolved))

        areas = np.array([p.area for p in resolved], dtype=np.float64)
        weights = areas if areas.sum() > EPSILON else np.ones(len(resolved))

        normal_sum = sum(w * xyz(p.normal) for w, p in zip(weights, resolved))
        mag = float(np.linalg.norm(normal_sum))
        normal = to_vec3(normal_sum / mag) if mag > EPSILON else UP

        pitch = float(np.dot(weights, [p.pitch_angle for p in resolved]) / weights.sum())
        rad = np.radians([p.azimuth_angle for p in resolved])
        s, c = float(np.dot(weights, np.sin(rad))), float(np.dot(weights, np.cos(rad)))
        azimuth = math.degrees(math.atan2(s, c)) % 360.0 if math.hypot(s, c) > EPSILON else 0.0

        largest = max(resolved, key=lambda p: p.area)
        merged = RoofPlane(
            id=new_plane_id("merged"),
            boundaries=union_approximate(p.boundaries for p in resolved),
            normal=normal,
            pitch_angle=min(90.0, max(0.0, pitch)),
            azimuth_angle=azimuth,
            area=float(areas.sum()),
            projected_area=float(sum(p.projected_area for p in resolved)),
            type=largest.type,
            confidence=min(p.confidence for p in resolved),
            material=largest.material,
        )

        if self.config.strict_validation:
            ensure_valid(merged, self.config)

        for p in resolved:
            self.remove(p.id)
        merged_id = self.add(merged)
        logger.info(
            f"🔗 Merged {len(resolved)} planes into {merged_id} "
            f"({merged.area:.2f} m², {len(merged.boundaries)} hull vertices)"
        )
        return merged_id

    # ── merge suggestions ────────────────────────────────────────────

    def _should_merge(self, a: RoofPlane, b: RoofPlane) -> bool:
        """True if *a* and *b* are nearly coplanar and spatially close."""
        min_dot, factor = _MERGE_TOLERANCE[self.config.sensitivity]
        na, nb = xyz(a.normal), xyz(b.normal)
        if np.linalg.norm(na) < EPSILON or np.linalg.norm(nb) < EPSILON:
            return False
        na, nb = na / np.linalg.norm(na), nb / np.linalg.norm(nb)

        dot = float(np.dot(na, nb))
        if abs(dot) < min_dot:
            return False

        ba, bb = plane_bounds(a.boundaries), plane_bounds(b.boundaries)
        if ba is None or bb is None:
            return False

        offset_a = float(na @ points_array(a.boundaries).mean(axis=0))
        offset_b = float(nb @ points_array(b.boundaries).mean(axis=0))
        plane_dist = abs(offset_a + offset_b) if dot < 0 else abs(offset_a - offset_b)
        if plane_dist > _OFFSET_THRESHOLD * factor:
            return False

        gap = np.maximum(0.0, np.maximum(ba[0], bb[0]) - np.minimum(ba[1], bb[1]))
        return float(gap.max()) <= self.config.merge_threshold * factor

    def merge_candidates(self) -> list[list[str]]:
        """Groups of stored plane ids that look like one surface.

        Grouping is transitive.  Nothing is merged; callers pass a group to
        :meth:`merge` if they agree.
        """
        groups = [[pid] for pid in self._planes]
        changed = True
        while changed:
            changed = False
            i = 0
            while i < len(groups):
                j = i + 1
                while j < len(groups):
                    if any(
                        self._should_merge(self._planes[x], self._planes[y])
                        for x in groups[i]
                        for y in groups[j]
                    ):
                        groups[i].extend(groups.pop(j))
                        changed = True
                    else:
                        j += 1
                i += 1
        return [g for g in groups if len(g) > 1]
