"""Write roof plane outlines to PLY meshes.

Each plane becomes a triangle fan over its boundary vertices, so any mesh
viewer can show the measured surfaces.  Per-vertex ``confidence`` is kept as
an extra property.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import numpy as np
from plyfile import PlyData, PlyElement

from packages.core.types import RoofPlane

logger = logging.getLogger(__name__)


def planes_to_ply(planes: Iterable[RoofPlane], *, text: bool = False) -> PlyData:
    """Build a :class:`PlyData` with ``vertex`` and ``face`` elements.

    Planes with fewer than three vertices contribute no faces.
    """
    vertices: list[tuple[float, float, float, float]] = []
    faces: list[tuple[list[int], int]] = []

    for plane_index, plane in enumerate(planes):
        base = len(vertices)
        vertices.extend((p.x, p.y, p.z, p.confidence) for p in plane.boundaries)
        n = len(plane.boundaries)
        for k in range(1, n - 1):
            faces.append(([base, base + k, base + k + 1], plane_index))

    vertex_data = np.array(
        vertices,
        dtype=[("x", "f4"), ("y", "f4"), ("z", "f4"), ("confidence", "f4")],
    )
    face_data = np.empty(len(faces), dtype=[("vertex_indices", "i4", (3,)), ("plane", "i4")])
    for i, (indices, plane_index) in enumerate(faces):
        face_data[i] = (indices, plane_index)

    return PlyData(
        [
            PlyElement.describe(vertex_data, "vertex"),
            PlyElement.describe(face_data, "face"),
        ],
        text=text,
    )


def export_planes_ply(planes: Iterable[RoofPlane], path: str | Path, *, text: bool = False) -> Path:
    """Write *planes* to a PLY file and return its path."""
    planes = list(planes)
    path = Path(path)
    ply = planes_to_ply(planes, text=text)
    ply.write(str(path))
    logger.info(
        f"💾 Wrote {len(planes)} planes ({ply['vertex'].count} vertices, "
        f"{ply['face'].count} faces) → {path}"
    )
    return path
