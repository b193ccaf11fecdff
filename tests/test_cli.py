"""Tests for the replay CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner
from plyfile import PlyData

from packages.engine.cli import main


def _square(plane_id, x0, side=2.0, confidence=0.9):
    return {
        "kind": "surface",
        "id": plane_id,
        "confidence": confidence,
        "boundaries": [
            {"x": x0, "y": 0, "z": 0},
            {"x": x0 + side, "y": 0, "z": 0},
            {"x": x0 + side, "y": 0, "z": side},
            {"x": x0, "y": 0, "z": side},
        ],
    }


@pytest.fixture()
def recording(tmp_path):
    observations = [
        {"kind": "point", "point": {"x": 0.5, "y": 0, "z": 0.5}},
        _square("A", 0.0),
        _square("B", 2.2),
        _square("weak", 10.0, confidence=0.1),
        {"kind": "tracking", "state": "limited"},
    ]
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"observations": observations}))
    return path


class TestReplay:
    def test_replay_prints_state(self, recording):
        result = CliRunner().invoke(main, ["replay", str(recording)])
        assert result.exit_code == 0, result.output
        state = json.loads(result.stdout)
        assert [p["id"] for p in state["planes"]] == ["A", "B"]
        assert state["tracking_state"] == "limited"
        assert state["quality_metrics"]["observed_points"] == 1

    def test_merge_and_outputs(self, recording, tmp_path):
        out = tmp_path / "state.json"
        ply = tmp_path / "roof.ply"
        result = CliRunner().invoke(
            main, ["replay", str(recording), "--merge", "-o", str(out), "--ply", str(ply)]
        )
        assert result.exit_code == 0, result.output

        state = json.loads(out.read_text())
        assert len(state["planes"]) == 1
        assert state["planes"][0]["id"].startswith("merged_")
        assert state["planes"][0]["area"] == pytest.approx(8.0)
        assert PlyData.read(str(ply))["vertex"].count == 4

    def test_min_area_filter(self, recording):
        result = CliRunner().invoke(main, ["replay", str(recording), "--min-area", "10"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["planes"] == []

    def test_unsupported_platform(self, recording):
        result = CliRunner().invoke(main, ["replay", str(recording), "--platform", "web"])
        assert result.exit_code == 0
        assert "not supported" in result.stderr
        assert json.loads(result.stdout)["is_supported"] is False

    def test_bare_list_input(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text(json.dumps([_square("A", 0.0)]))
        result = CliRunner().invoke(main, ["replay", str(path)])
        assert result.exit_code == 0, result.output
        assert len(json.loads(result.stdout)["planes"]) == 1
