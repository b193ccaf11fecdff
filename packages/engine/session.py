"""Detection session: tracking state machine and the only writer of the plane store.

Tracking states move as follows::

    notAvailable → initializing → tracking ⇄ limited
    tracking / limited → relocalizing → tracking
    any state → notAvailable        (stop, or capability lost)

A session is driven from a single event loop.  ``start_detection`` awaits
the platform capability probe; everything else is synchronous, so each
observation is fully processed (validate → store → metrics) before the next
one is looked at.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional, Union

from packages.core.errors import CapabilityProbeFailure, ValidationReason
from packages.core.types import (
    ARPoint,
    DetectionConfig,
    QualityMetrics,
    RoofPlane,
    RoofSummary,
    SessionState,
    TrackingState,
)
from packages.engine.hit_test import PlaneHit, hit_test_planes, perform_hit_test
from packages.engine.mapper import HeuristicScreenMapper, ScreenMapper
from packages.engine.metrics import compute_quality_metrics, summarize_planes
from packages.engine.observations import (
    PointObservation,
    SurfaceObservation,
    TrackingObservation,
    plane_from_observation,
    screen_surface,
)
from packages.engine.store import PlaneStore
from packages.engine.validation import is_valid, validate_plane

logger = logging.getLogger(__name__)

CapabilityProbe = Callable[[str], Union[bool, Awaitable[bool]]]

DEFAULT_SCREEN_SIZE = (375.0, 812.0)

# Transitions accepted from tracking events while a session is active.
_TRACKING_TRANSITIONS: dict[TrackingState, set[TrackingState]] = {
    TrackingState.TRACKING: {
        TrackingState.LIMITED, TrackingState.RELOCALIZING, TrackingState.NOT_AVAILABLE,
    },
    TrackingState.LIMITED: {
        TrackingState.TRACKING, TrackingState.RELOCALIZING, TrackingState.NOT_AVAILABLE,
    },
    TrackingState.RELOCALIZING: {TrackingState.TRACKING, TrackingState.NOT_AVAILABLE},
}


class StaticCapabilityProbe:
    """Reports support for a fixed set of platform names."""

    def __init__(self, supported_platforms: Iterable[str] = ("ios", "android")):
        self.supported_platforms = {p.lower() for p in supported_platforms}

    def __call__(self, platform: str) -> bool:
        return platform.lower() in self.supported_platforms


class RoofSession:
    """One plane-detection session and the planes it has collected.

    Callers read :attr:`state` for a snapshot and change things only through
    the methods below; the plane store itself is never handed out.
    """

    def __init__(
        self,
        config: DetectionConfig | None = None,
        *,
        probe: CapabilityProbe | None = None,
        platform: str = "ios",
        mapper: ScreenMapper | None = None,
        screen_size: tuple[float, float] = DEFAULT_SCREEN_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or DetectionConfig()
        self.platform = platform
        self.mapper = mapper or HeuristicScreenMapper()
        self.screen_size = screen_size
        self._probe = probe or StaticCapabilityProbe()
        self._clock = clock
        self._store = PlaneStore(self.config)

        self._tracking_state = TrackingState.NOT_AVAILABLE
        self._is_active = False
        self._is_supported = False
        self._pending = False
        self._error: Optional[str] = None
        self._generation = 0
        self._started_at: Optional[float] = None
        self._interruptions = 0
        self._observed_points = 0
        self._metrics = QualityMetrics()
        self.recompute_quality_metrics()

    # ── read access ──────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return SessionState(
            planes=self._store.planes(),
            tracking_state=self._tracking_state,
            is_active=self._is_active,
            is_supported=self._is_supported,
            is_detecting=self._pending,
            error=self._error,
            quality_metrics=self._metrics.model_copy(),
        )

    @property
    def tracking_state(self) -> TrackingState:
        return self._tracking_state

    @property
    def quality_metrics(self) -> QualityMetrics:
        return self._metrics.model_copy()

    def planes(self) -> list[RoofPlane]:
        return self._store.planes()

    def get_plane(self, plane_id: str) -> RoofPlane | None:
        return self._store.get(plane_id)

    def is_plane_validated(self, plane_id: str) -> bool:
        return self._store.is_validated(plane_id)

    def validate_plane(self, plane: RoofPlane) -> bool:
        return is_valid(plane, self.config)

    def validation_reason(self, plane: RoofPlane) -> ValidationReason | None:
        return validate_plane(plane, self.config)

    def merge_candidates(self) -> list[list[str]]:
        return self._store.merge_candidates()

    def summary(self) -> RoofSummary:
        return summarize_planes(self._store.planes())

    # ── lifecycle ────────────────────────────────────────────────────

    def _set_tracking_state(self, new: TrackingState) -> None:
        old = self._tracking_state
        if old == new:
            return
        if old == TrackingState.TRACKING and new in (TrackingState.LIMITED, TrackingState.RELOCALIZING):
            self._interruptions += 1
        self._tracking_state = new
        logger.info("Tracking state %s → %s", old.value, new.value)

    async def _run_probe(self) -> bool:
        """Call the probe; plain callables run in a worker thread so the timeout applies."""
        if inspect.iscoroutinefunction(self._probe) or inspect.iscoroutinefunction(
            getattr(self._probe, "__call__", None)
        ):
            result = await self._probe(self.platform)
        else:
            result = await asyncio.to_thread(self._probe, self.platform)
            if inspect.isawaitable(result):
                result = await result
        return bool(result)

    async def start_detection(self, config: DetectionConfig | None = None) -> None:
        """Probe the platform and begin tracking.

        Does nothing while a session is active or a start is already pending.
        Never raises for probe problems: an unsupported platform, a probe
        exception or a probe timeout leaves ``is_supported=False``, an
        ``error`` message and ``notAvailable``.  If :meth:`stop_detection`
        is called while the probe is pending, the probe's result is dropped.
        """
        if self._is_active or self._pending:
            logger.debug("start_detection ignored: session already active or starting")
            return
        if config is not None:
            self.config = config
            self._store.config = config
            self._store.revalidate()

        self._generation += 1
        generation = self._generation
        self._pending = True
        self._error = None
        self._set_tracking_state(TrackingState.INITIALIZING)
        self.recompute_quality_metrics()
        logger.info(f"📡 Probing plane-detection support on '{self.platform}'")

        failure: CapabilityProbeFailure | None = None
        try:
            supported = await asyncio.wait_for(self._run_probe(), timeout=self.config.probe_timeout)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._pending = False
                self._settle_not_available()
            raise
        except asyncio.TimeoutError:
            failure = CapabilityProbeFailure(
                f"capability probe timed out after {self.config.probe_timeout:g}s"
            )
        except Exception as exc:
            logger.exception("Capability probe raised")
            failure = CapabilityProbeFailure(f"capability probe failed: {exc}")
        else:
            if not supported:
                failure = CapabilityProbeFailure(
                    f"AR plane detection is not supported on '{self.platform}'"
                )

        if generation != self._generation:
            logger.info("Discarding capability probe result: detection stopped while starting")
            return
        self._pending = False

        if failure is not None:
            logger.warning(f"❌ Detection failed to start: {failure}")
            self._is_supported = False
            self._error = str(failure)
            self._settle_not_available()
            return

        self._is_supported = True
        self._is_active = True
        self._started_at = self._clock()
        self._set_tracking_state(TrackingState.TRACKING)
        self.recompute_quality_metrics()
        logger.info("✅ Plane detection running")

    def _settle_not_available(self) -> None:
        self._is_active = False
        self._started_at = None
        self._set_tracking_state(TrackingState.NOT_AVAILABLE)
        self.recompute_quality_metrics()

    def stop_detection(self) -> None:
        """Stop tracking.  Stored planes are kept; use :meth:`reset_planes` to clear them."""
        self._generation += 1
        self._pending = False
        self._settle_not_available()
        logger.info("🛑 Plane detection stopped (%d planes kept)", len(self._store))

    def update_tracking_state(self, new_state: TrackingState) -> bool:
        """Apply a tracking event from the sensor subsystem.

        Returns False (and changes nothing) for events outside an active
        session and for transitions the state machine does not allow.
        ``notAvailable`` during a session means the platform lost the
        capability: the session stops and records an error.
        """
        current = self._tracking_state
        if new_state == current:
            return True
        if not self._is_active:
            logger.warning("Ignoring tracking event %s: session not active", new_state.value)
            return False
        if new_state not in _TRACKING_TRANSITIONS.get(current, set()):
            logger.warning("Ignoring illegal tracking transition %s → %s", current.value, new_state.value)
            return False

        if new_state == TrackingState.NOT_AVAILABLE:
            self._generation += 1
            self._is_supported = False
            self._error = "tracking capability lost"
            logger.error("Tracking capability lost; stopping session")
            self._settle_not_available()
            return True

        self._set_tracking_state(new_state)
        self.recompute_quality_metrics()
        return True

    # ── plane mutation ───────────────────────────────────────────────

    def add_plane(self, plane: RoofPlane) -> str:
        plane_id = self._store.add(plane)
        self.recompute_quality_metrics()
        return plane_id

    def remove_plane(self, plane_id: str) -> bool:
        removed = self._store.remove(plane_id)
        self.recompute_quality_metrics()
        return removed

    def merge_planes(self, plane_ids: Iterable[str]) -> str:
        merged_id = self._store.merge(plane_ids)
        self.recompute_quality_metrics()
        return merged_id

    def reset_planes(self) -> None:
        self._store.reset()
        self.recompute_quality_metrics()
        logger.info("Plane store cleared")

    def recompute_quality_metrics(self) -> QualityMetrics:
        validated, unvalidated = self._store.validation_counts()
        duration = 0.0
        if self._is_active and self._started_at is not None:
            duration = self._clock() - self._started_at
        self._metrics = compute_quality_metrics(
            self._tracking_state,
            validated_vertices=self._store.validated_vertex_count(),
            target_vertex_count=self.config.target_vertex_count,
            validated_planes=validated,
            unvalidated_planes=unvalidated,
            duration=duration,
            tracking_interruptions=self._interruptions,
            observed_points=self._observed_points,
        )
        return self._metrics

    # ── sensor stream ────────────────────────────────────────────────

    def ingest(
        self, observation: Union[SurfaceObservation, PointObservation, TrackingObservation],
    ) -> bool:
        """Process one sensor observation to completion.

        Surfaces are admitted only if they pass the range/orientation filters
        and the validator; unlike :meth:`add_plane`, nothing invalid gets in
        this way.  Returns whether the observation changed the session.
        """
        if isinstance(observation, TrackingObservation):
            return self.update_tracking_state(observation.state)

        if not self._is_active:
            logger.debug("Dropping %s observation: session not active", observation.kind)
            return False

        if isinstance(observation, PointObservation):
            self._observed_points += 1
            self.recompute_quality_metrics()
            return True

        plane = plane_from_observation(observation)
        rejected = screen_surface(observation, plane, self.config)
        if rejected is None:
            reason = validate_plane(plane, self.config)
            rejected = reason.value if reason is not None else None
        if rejected is not None:
            logger.info("Surface %s rejected: %s", observation.id or "<new>", rejected)
            return False
        self.add_plane(plane)
        return True

    async def consume(self, queue: "asyncio.Queue") -> int:
        """Ingest observations from *queue* in order until a ``None`` sentinel.

        Returns the number of observations that changed the session.
        """
        applied = 0
        while True:
            observation = await queue.get()
            try:
                if observation is None:
                    break
                if self.ingest(observation):
                    applied += 1
            finally:
                queue.task_done()
        return applied

    # ── screen interaction ───────────────────────────────────────────

    def convert_screen_to_world(
        self,
        screen_x: float,
        screen_y: float,
        screen_width: float | None = None,
        screen_height: float | None = None,
    ) -> ARPoint:
        width = self.screen_size[0] if screen_width is None else screen_width
        height = self.screen_size[1] if screen_height is None else screen_height
        return self.mapper.screen_to_world(screen_x, screen_y, width, height)

    def perform_hit_test(
        self,
        screen_x: float,
        screen_y: float,
        planes: Iterable[RoofPlane] | None = None,
        *,
        screen_size: tuple[float, float] | None = None,
    ) -> list[ARPoint]:
        """World points under a tap; defaults to testing the stored planes."""
        targets = self._store.planes() if planes is None else planes
        width, height = screen_size or self.screen_size
        return perform_hit_test(screen_x, screen_y, width, height, targets, self.mapper)

    def hit_test(
        self,
        screen_x: float,
        screen_y: float,
        *,
        screen_size: tuple[float, float] | None = None,
    ) -> list[PlaneHit]:
        """Stored planes under a tap, with their ids, nearest first."""
        width, height = screen_size or self.screen_size
        return hit_test_planes(screen_x, screen_y, width, height, self._store.planes(), self.mapper)
