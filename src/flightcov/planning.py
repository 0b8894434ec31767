"""Nominal flight planning: GSD, photo spacing, and lawnmower pose grids."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from flightcov.overlap.camera import CameraModel, Pose
from flightcov.overlap.mercator import meters_to_lnglat, ring_to_meters
from flightcov.overlap.polygons import PolygonWithId


def _overlap_fraction(percent: float) -> float:
    if percent < 0 or percent >= 100:
        raise ValueError("Overlap percentage must be in [0, 100).")
    return percent / 100.0


def nominal_gsd(camera: CameraModel, altitude_m: float) -> float:
    """Return the flat-ground nadir GSD using the larger pixel pitch."""
    pitch = max(camera.pixel_pitch_x_m, camera.pixel_pitch_y_m)
    return pitch * altitude_m / camera.focal_length_m


def forward_spacing(camera: CameraModel, altitude_m: float, front_overlap_pct: float) -> float:
    """Return the along-track distance between exposures in ground metres."""
    footprint = camera.height_px * (camera.pixel_pitch_y_m * altitude_m / camera.focal_length_m)
    return footprint * (1.0 - _overlap_fraction(front_overlap_pct))


def line_spacing(camera: CameraModel, altitude_m: float, side_overlap_pct: float) -> float:
    """Return the distance between adjacent flight lines in ground metres."""
    footprint = camera.width_px * (camera.pixel_pitch_x_m * altitude_m / camera.focal_length_m)
    return footprint * (1.0 - _overlap_fraction(side_overlap_pct))


@dataclass(frozen=True)
class FlightParameters:
    """Altitude and overlap settings for a lawnmower survey."""

    altitude_m: float
    front_overlap_pct: float = 80.0
    side_overlap_pct: float = 70.0
    direction_deg: float = 0.0
    ground_elevation_m: float = 0.0

    def __post_init__(self) -> None:
        if self.altitude_m <= 0:
            raise ValueError("altitude_m must be > 0")
        _overlap_fraction(self.front_overlap_pct)
        _overlap_fraction(self.side_overlap_pct)


def _line_extent(ring: np.ndarray, along: np.ndarray, across: np.ndarray, offset: float) -> tuple[float, float] | None:
    """Return the along-track interval where the line `across == offset` meets the ring."""
    a0 = ring @ across
    t0 = ring @ along
    a1 = np.roll(a0, -1)
    t1 = np.roll(t0, -1)
    crossing = ((a0 <= offset) & (a1 > offset)) | ((a1 <= offset) & (a0 > offset))
    if not crossing.any():
        return None
    ca0, ct0, ca1, ct1 = a0[crossing], t0[crossing], a1[crossing], t1[crossing]
    hits = ct0 + (offset - ca0) * (ct1 - ct0) / (ca1 - ca0)
    return float(hits.min()), float(hits.max())


def plan_pose_grid(
    polygon: PolygonWithId,
    camera: CameraModel,
    flight: FlightParameters,
) -> list[Pose]:
    """Return nadir poses along parallel flight lines clipped to a polygon.

    Lines run along `direction_deg` (clockwise from north) and alternate
    heading. Spacing is computed in ground metres and scaled into
    Web-Mercator metres at the polygon centre.
    """
    if polygon.is_degenerate:
        return []
    ring = ring_to_meters(polygon.open_ring())
    center = ring.mean(axis=0)
    _, center_lat = meters_to_lnglat(float(center[0]), float(center[1]))
    scale = 1.0 / math.cos(math.radians(center_lat))
    step = forward_spacing(camera, flight.altitude_m, flight.front_overlap_pct) * scale
    gap = line_spacing(camera, flight.altitude_m, flight.side_overlap_pct) * scale

    bearing = math.radians(flight.direction_deg)
    along = np.array([math.sin(bearing), math.cos(bearing)])
    across = np.array([math.cos(bearing), -math.sin(bearing)])
    offsets = ring @ across
    low, high = float(offsets.min()), float(offsets.max())
    line_count = max(1, int(math.ceil((high - low) / gap)))
    start = 0.5 * (low + high) - 0.5 * (line_count - 1) * gap

    z = flight.ground_elevation_m + flight.altitude_m
    poses: list[Pose] = []
    for line in range(line_count):
        offset = start + line * gap
        extent = _line_extent(ring, along, across, offset)
        if extent is None:
            continue
        begin, end = extent
        shots = max(1, int(math.ceil((end - begin) / step)) + 1)
        stations = np.linspace(begin, end, shots) if shots > 1 else np.array([0.5 * (begin + end)])
        heading = flight.direction_deg if line % 2 == 0 else flight.direction_deg + 180.0
        if line % 2:
            stations = stations[::-1]
        for shot, station in enumerate(stations):
            x, y = offset * across + station * along
            poses.append(
                Pose(
                    x=float(x),
                    y=float(y),
                    z=z,
                    kappa_deg=-heading,
                    polygon_id=polygon.id,
                    id=f"{polygon.id}:{line:03d}:{shot:04d}",
                )
            )
    return poses
