from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import numpy as np
import pytest

from flightcov import __version__
from flightcov.cli import main
from flightcov.overlap.mercator import tile_bounds
from tests.utils import (
    EAST_NEIGHBOUR,
    EQUATOR_TILE,
    TILE_SIZE,
    inset_ring,
    spanning_ring,
    with_src_env,
    write_terrain_png,
)


def _write_tiles(root: Path, *keys) -> None:
    for key in keys:
        write_terrain_png(
            root / str(key.z) / str(key.x) / f"{key.y}.png",
            np.full((TILE_SIZE, TILE_SIZE), 25.0),
        )


def _write_config(tmp_path: Path, **overrides) -> Path:
    bounds = tile_bounds(EQUATOR_TILE)
    payload = {
        "zoom": 15,
        "camera": "SONY_RX1R2",
        "tiles_dir": "tiles",
        "polygons": [
            {"id": "field", "ring": [list(point) for point in inset_ring()]},
            {"id": "span", "ring": [list(point) for point in spanning_ring(EQUATOR_TILE, EAST_NEIGHBOUR)]},
        ],
        "poses": [
            {
                "x": bounds.max_x,
                "y": (bounds.min_y + bounds.max_y) / 2.0,
                "z": 425.0,
                "id": "seam",
            },
            {
                "x": (bounds.min_x + bounds.max_x) / 2.0,
                "y": (bounds.min_y + bounds.max_y) / 2.0,
                "z": 325.0,
                "phi_deg": 5.0,
            },
        ],
    }
    payload.update(overrides)
    path = tmp_path / "run.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_cli_help() -> None:
    result = subprocess.run(
        [sys.executable, "-m", "flightcov", "--help"],
        check=False,
        capture_output=True,
        text=True,
        env=with_src_env(),
    )
    assert result.returncode == 0
    assert "overlap and GSD" in result.stdout


def test_cli_version(capsys) -> None:
    assert main(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


def test_cli_cameras_json(capsys) -> None:
    assert main(["--quiet", "cameras", "--format", "json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    names = [item["name"] for item in payload]
    assert "SONY_RX1R2" in names
    assert names == sorted(names)


def test_cli_cameras_text(capsys) -> None:
    assert main(["cameras"]) == 0
    assert "Camera: MAP61_17MM" in capsys.readouterr().out


def test_cli_gsd(capsys) -> None:
    assert main(["gsd", "--camera", "rx1r2", "--altitude", "100", "--format", "json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["camera"] == "SONY_RX1R2"
    assert payload["gsd_m"] == pytest.approx(0.013943, abs=1e-6)
    assert payload["line_spacing_m"] > payload["forward_spacing_m"]

    assert main(["gsd", "--camera", "rx1r2", "--altitude", "100"]) == 0
    assert "GSD: 1.39 cm/px" in capsys.readouterr().out


def test_cli_gsd_rejects_bad_input() -> None:
    assert main(["gsd", "--camera", "unknown", "--altitude", "100"]) == 1
    assert main(["gsd", "--camera", "rx1r2", "--altitude", "100", "--front", "100"]) == 1


def test_cli_analyze_writes_report(tmp_path: Path) -> None:
    _write_tiles(tmp_path / "tiles", EQUATOR_TILE, EAST_NEIGHBOUR)
    config_path = _write_config(tmp_path)
    output = tmp_path / "out" / "report.json"

    exit_code = main(["analyze", str(config_path), "--output", str(output), "--jobs", "2"])
    assert exit_code == 0

    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["inputs"]["pose_count"] == 2
    polygons = {item["polygon_id"]: item for item in report["polygons"]}
    assert polygons["span"]["image_count"] == 2
    assert polygons["span"]["tile_count"] == 2
    assert polygons["field"]["image_count"] == 2
    assert polygons["field"]["gsd"]["count"] > 0
    assert all(tile["status"] == "ok" for tile in report["tiles"])
    assert report["cache"]["misses"] == 2


def test_cli_analyze_stdout_and_missing_tiles(tmp_path: Path, capsys) -> None:
    _write_tiles(tmp_path / "tiles", EQUATOR_TILE)
    config_path = _write_config(tmp_path)

    assert main(["--quiet", "analyze", str(config_path)]) == 0
    report = json.loads(capsys.readouterr().out)
    statuses = {tile["tile"]: tile["status"] for tile in report["tiles"]}
    assert statuses[str(EAST_NEIGHBOUR)] == "unavailable"


def test_cli_analyze_tiles_dir_override(tmp_path: Path, capsys) -> None:
    _write_tiles(tmp_path / "elsewhere", EQUATOR_TILE, EAST_NEIGHBOUR)
    config_path = _write_config(tmp_path)
    args = ["--quiet", "analyze", str(config_path), "--tiles-dir", str(tmp_path / "elsewhere")]
    assert main(args) == 0
    report = json.loads(capsys.readouterr().out)
    assert {tile["status"] for tile in report["tiles"]} == {"ok"}


def test_cli_analyze_invalid_config(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, zoom="fifteen")
    assert main(["analyze", str(config_path)]) == 1
    assert main(["analyze", str(tmp_path / "missing.json")]) == 1


def test_cli_analyze_requires_tiles_dir(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    del payload["tiles_dir"]
    config_path.write_text(json.dumps(payload), encoding="utf-8")
    assert main(["analyze", str(config_path)]) == 1


def test_cli_analyze_reports_tile_errors(tmp_path: Path) -> None:
    tiles = tmp_path / "tiles"
    _write_tiles(tiles, EAST_NEIGHBOUR)
    broken = tiles / "15" / str(EQUATOR_TILE.x) / f"{EQUATOR_TILE.y}.png"
    broken.parent.mkdir(parents=True, exist_ok=True)
    broken.write_bytes(b"not a png")
    config_path = _write_config(tmp_path)
    output = tmp_path / "report.json"

    assert main(["analyze", str(config_path), "--output", str(output)]) == 1
    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["errors"]
    assert str(EQUATOR_TILE) in report["errors"][0]
