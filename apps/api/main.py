"""FastAPI application exposing a roof plane detection session.

The UI collaborators talk to one in-process :class:`RoofSession`: they start
and stop detection, push sensor observations, edit planes and turn screen taps
into world points.
"""

from __future__ import annotations

import io
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel as PydanticBaseModel

from packages.core.errors import MergeRequiresMultiplePlanes, PlaneValidationError
from packages.core.types import ARPoint, DetectionConfig, RoofPlane, RoofSummary, SessionState
from packages.engine.export import planes_to_ply
from packages.engine.hit_test import PlaneHit
from packages.engine.observations import Observation
from packages.engine.session import RoofSession

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Roof Plane Detection API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # permissive for local development; tighten for production
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── In-memory session (one per process) ──────────────────────────────
_state: dict = {
    "session": RoofSession(),
}


def _session() -> RoofSession:
    return _state["session"]


@app.get("/health")
def health():
    return {"status": "ok"}


# ── session lifecycle ────────────────────────────────────────────────

class StartRequest(PydanticBaseModel):
    """Body for starting detection; all fields optional."""
    config: Optional[DetectionConfig] = None
    platform: Optional[str] = None


@app.post("/session/start", response_model=SessionState)
async def start_session(req: Optional[StartRequest] = None):
    session = _session()
    if req is not None and req.platform:
        session.platform = req.platform
    logger.info(f"📡 Start requested (platform={session.platform})")
    await session.start_detection(req.config if req is not None else None)
    return session.state


@app.post("/session/stop", response_model=SessionState)
def stop_session():
    session = _session()
    session.stop_detection()
    return session.state


@app.get("/session", response_model=SessionState)
def get_session():
    return _session().state


# ── planes ───────────────────────────────────────────────────────────

@app.post("/planes")
def add_plane(plane: RoofPlane):
    session = _session()
    try:
        plane_id = session.add_plane(plane)
    except PlaneValidationError as e:
        raise HTTPException(400, f"Plane rejected: {e}")
    return {"id": plane_id, "validated": session.is_plane_validated(plane_id)}


@app.get("/planes", response_model=list[RoofPlane])
def list_planes():
    return _session().planes()


@app.get("/planes/merge-candidates")
def merge_candidates():
    return {"groups": _session().merge_candidates()}


@app.get("/planes/{plane_id}", response_model=RoofPlane)
def get_plane(plane_id: str):
    plane = _session().get_plane(plane_id)
    if plane is None:
        raise HTTPException(404, f"Unknown plane '{plane_id}'")
    return plane


@app.delete("/planes/{plane_id}")
def delete_plane(plane_id: str):
    session = _session()
    if not session.remove_plane(plane_id):
        raise HTTPException(404, f"Unknown plane '{plane_id}'")
    logger.info(f"🗑️  Deleted plane {plane_id} — {len(session.planes())} planes remaining")
    return {"deleted": plane_id}


class MergeRequest(PydanticBaseModel):
    """Body for the merge endpoint."""
    ids: list[str]


@app.post("/planes/merge")
def merge_planes(req: MergeRequest):
    try:
        merged_id = _session().merge_planes(req.ids)
    except MergeRequiresMultiplePlanes as e:
        raise HTTPException(400, str(e))
    except PlaneValidationError as e:
        raise HTTPException(400, f"Merged plane rejected: {e}")
    return {"id": merged_id}


@app.post("/planes/reset", response_model=SessionState)
def reset_planes():
    session = _session()
    session.reset_planes()
    return session.state


@app.post("/planes/validate")
def validate_plane(plane: RoofPlane):
    reason = _session().validation_reason(plane)
    return {"valid": reason is None, "reason": reason.value if reason else None}


# ── sensor stream ────────────────────────────────────────────────────

@app.post("/observations")
def push_observation(observation: Observation):
    applied = _session().ingest(observation)
    return {"applied": applied}


# ── screen interaction ───────────────────────────────────────────────

class ScreenPoint(PydanticBaseModel):
    """A tap on the camera view, in screen pixels."""
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None


@app.post("/screen-to-world", response_model=ARPoint)
def screen_to_world(req: ScreenPoint):
    return _session().convert_screen_to_world(req.x, req.y, req.width, req.height)


@app.post("/hit-test")
def hit_test(req: ScreenPoint):
    session = _session()
    size = (req.width, req.height) if req.width and req.height else None
    hits: list[PlaneHit] = session.hit_test(req.x, req.y, screen_size=size)
    points = session.perform_hit_test(req.x, req.y, screen_size=size)
    return {
        "points": [p.model_dump(mode="json") for p in points],
        "planes": [h.plane_id for h in hits],
    }


# ── downstream consumers ─────────────────────────────────────────────

@app.get("/summary", response_model=RoofSummary)
def summary():
    return _session().summary()


@app.get("/export.ply")
def export_ply():
    planes = _session().planes()
    buf = io.BytesIO()
    planes_to_ply(planes).write(buf)
    logger.info(f"💾 Exporting {len(planes)} planes as PLY")
    return Response(content=buf.getvalue(), media_type="application/octet-stream")
