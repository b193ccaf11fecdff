"""CLI entry-point for replaying recorded sensor sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from packages.core.types import DetectionConfig, Sensitivity
from packages.engine.export import export_planes_ply
from packages.engine.observations import observation_list_adapter
from packages.engine.session import RoofSession


@click.group()
def main():
    """AR roof plane detection engine."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s | %(name)s | %(message)s",
    )


async def _replay(session: RoofSession, observations: list) -> None:
    await session.start_detection()
    for observation in observations:
        session.ingest(observation)


@main.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.option("-o", "--output", "output_file", default=None, help="Write session state JSON here.")
@click.option("--ply", "ply_file", default=None, help="Also export the planes as a PLY mesh.")
@click.option("--platform", default="ios", show_default=True, help="Platform name given to the capability probe.")
@click.option("--min-area", default=1.0, show_default=True, help="Minimum plane area (m²).")
@click.option("--min-confidence", default=0.5, show_default=True, help="Minimum plane confidence.")
@click.option(
    "--sensitivity",
    type=click.Choice([s.value for s in Sensitivity]),
    default=Sensitivity.HIGH.value,
    show_default=True,
)
@click.option("--strict/--permissive", default=False, show_default=True, help="Reject invalid planes outright.")
@click.option("--merge/--no-merge", default=False, show_default=True, help="Apply suggested merges after replay.")
def replay(
    input_file: str,
    output_file: str | None,
    ply_file: str | None,
    platform: str,
    min_area: float,
    min_confidence: float,
    sensitivity: str,
    strict: bool,
    merge: bool,
):
    """Replay the observations in INPUT_FILE through a detection session.

    INPUT_FILE is JSON: either a list of observations or an object with an
    ``observations`` list.  Each observation has a ``kind`` of ``surface``,
    ``point`` or ``tracking``.
    """
    data = json.loads(Path(input_file).read_text())
    if isinstance(data, dict):
        data = data.get("observations", [])
    observations = observation_list_adapter.validate_python(data)

    config = DetectionConfig(
        min_plane_area=min_area,
        min_confidence=min_confidence,
        sensitivity=Sensitivity(sensitivity),
        strict_validation=strict,
    )
    session = RoofSession(config, platform=platform)
    asyncio.run(_replay(session, observations))

    if merge:
        for group in session.merge_candidates():
            session.merge_planes(group)

    state = session.state
    if state.error:
        click.echo(f"error: {state.error}", err=True)
    if ply_file:
        export_planes_ply(state.planes, ply_file)

    json_str = state.model_dump_json(indent=2)
    if output_file:
        Path(output_file).write_text(json_str)
    click.echo(json_str)


if __name__ == "__main__":
    main()
