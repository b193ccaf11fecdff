"""Ray casting from a screen tap against the stored roof planes."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
from pydantic import BaseModel

from packages.core.types import ARPoint, RoofPlane
from packages.engine.geometry import ray_plane_intersect, xyz
from packages.engine.mapper import HeuristicScreenMapper, ScreenMapper

logger = logging.getLogger(__name__)


class PlaneHit(BaseModel):
    """One ray/plane intersection."""

    plane_id: str | None
    point: ARPoint
    distance: float


def hit_test_planes(
    screen_x: float,
    screen_y: float,
    screen_width: float,
    screen_height: float,
    planes: Iterable[RoofPlane],
    mapper: ScreenMapper | None = None,
) -> list[PlaneHit]:
    """Every plane the tap's ray passes through, nearest first."""
    mapper = mapper or HeuristicScreenMapper()
    origin, direction = mapper.camera_ray(screen_x, screen_y, screen_width, screen_height)

    hits: list[PlaneHit] = []
    for plane in planes:
        point = ray_plane_intersect(origin, direction, plane)
        if point is None:
            continue
        hits.append(
            PlaneHit(
                plane_id=plane.id,
                point=point,
                distance=float(np.linalg.norm(xyz(point) - origin)),
            )
        )
    hits.sort(key=lambda h: h.distance)
    return hits


def perform_hit_test(
    screen_x: float,
    screen_y: float,
    screen_width: float,
    screen_height: float,
    planes: Iterable[RoofPlane],
    mapper: ScreenMapper | None = None,
) -> list[ARPoint]:
    """World points under a tap, nearest first.

    Never empty: with no plane hit, the mapper's ground-plane estimate is
    returned as the only element.
    """
    mapper = mapper or HeuristicScreenMapper()
    hits = hit_test_planes(screen_x, screen_y, screen_width, screen_height, planes, mapper)
    if not hits:
        logger.debug("Hit test at (%s, %s) missed all planes; using ground estimate", screen_x, screen_y)
        return [mapper.screen_to_world(screen_x, screen_y, screen_width, screen_height)]
    return [h.point for h in hits]
