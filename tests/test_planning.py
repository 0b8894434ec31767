from __future__ import annotations

import math

import numpy as np
import pytest

from flightcov import planning
from flightcov.overlap.mercator import lnglat_to_meters
from flightcov.overlap.polygons import PolygonWithId
from flightcov.presets import get_camera_preset


def _sony():
    preset = get_camera_preset("SONY_RX1R2")
    assert preset is not None
    return preset.camera


def test_nominal_gsd_and_spacing() -> None:
    camera = _sony()
    assert planning.nominal_gsd(camera, 100.0) == pytest.approx(0.013943, abs=1e-6)
    footprint_h = 5304 * 0.013943
    footprint_w = 7952 * 0.013943
    assert planning.forward_spacing(camera, 100.0, 80.0) == pytest.approx(footprint_h * 0.2, rel=1e-4)
    assert planning.line_spacing(camera, 100.0, 70.0) == pytest.approx(footprint_w * 0.3, rel=1e-4)


def test_overlap_bounds_checked() -> None:
    camera = _sony()
    with pytest.raises(ValueError, match="Overlap"):
        planning.forward_spacing(camera, 100.0, 100.0)
    with pytest.raises(ValueError, match="Overlap"):
        planning.FlightParameters(altitude_m=100.0, side_overlap_pct=-1.0)
    with pytest.raises(ValueError, match="altitude"):
        planning.FlightParameters(altitude_m=0.0)


def test_pose_grid_covers_polygon_with_alternating_lines() -> None:
    ring = [(0.0, 0.0), (0.01, 0.0), (0.01, 0.008), (0.0, 0.008)]
    field = PolygonWithId.from_ring(ring, "field")
    flight = planning.FlightParameters(altitude_m=120.0, ground_elevation_m=30.0)
    poses = planning.plan_pose_grid(field, _sony(), flight)

    assert poses
    assert all(pose.z == pytest.approx(150.0) for pose in poses)
    assert all(pose.polygon_id == "field" for pose in poses)
    assert len({pose.id for pose in poses}) == len(poses)

    min_x, min_y = lnglat_to_meters(0.0, 0.0)
    max_x, max_y = lnglat_to_meters(0.01, 0.008)
    xs = np.array([pose.x for pose in poses])
    ys = np.array([pose.y for pose in poses])
    assert xs.min() >= min_x - 1e-6 and xs.max() <= max_x + 1e-6
    assert ys.min() >= min_y - 1e-6 and ys.max() <= max_y + 1e-6

    lines = sorted({pose.id.split(":")[1] for pose in poses})
    assert len(lines) >= 2
    first = [pose for pose in poses if pose.id.split(":")[1] == lines[0]]
    second = [pose for pose in poses if pose.id.split(":")[1] == lines[1]]
    assert first[0].kappa_deg == pytest.approx(0.0)
    assert second[0].kappa_deg == pytest.approx(-180.0)
    assert first[1].y > first[0].y
    assert second[1].y < second[0].y

    gap = abs(first[0].x - second[0].x)
    assert gap == pytest.approx(planning.line_spacing(_sony(), 120.0, 70.0), rel=1e-3)
    step = math.hypot(first[1].x - first[0].x, first[1].y - first[0].y)
    assert step <= planning.forward_spacing(_sony(), 120.0, 80.0) * (1 + 1e-3)


def test_pose_grid_direction_rotates_lines() -> None:
    ring = [(0.0, 0.0), (0.01, 0.0), (0.01, 0.01), (0.0, 0.01)]
    field = PolygonWithId.from_ring(ring, "field")
    flight = planning.FlightParameters(altitude_m=120.0, direction_deg=90.0)
    poses = planning.plan_pose_grid(field, _sony(), flight)
    first_line = [pose for pose in poses if pose.id.startswith("field:000:")]
    assert len(first_line) >= 2
    assert first_line[0].y == pytest.approx(first_line[1].y)
    assert first_line[1].x > first_line[0].x
    assert first_line[0].kappa_deg == pytest.approx(-90.0)


def test_pose_grid_skips_degenerate_polygon() -> None:
    line = PolygonWithId.from_ring([(0.0, 0.0), (0.01, 0.0)], "line")
    flight = planning.FlightParameters(altitude_m=100.0)
    assert planning.plan_pose_grid(line, _sony(), flight) == []
