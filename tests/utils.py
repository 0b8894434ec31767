from __future__ import annotations

import os
from pathlib import Path

import numpy as np
import rasterio

from flightcov.overlap.camera import Pose
from flightcov.overlap.mercator import TileBounds, meters_to_lnglat, tile_bounds
from flightcov.overlap.models import TerrainTile, TileKey
from flightcov.overlap.polygons import PolygonWithId
from flightcov.overlap.terrain import encode_terrain_rgb, terrain_tile_from_elevations

# Zoom-15 tile just north-east of (0, 0); Mercator scale is ~1 there.
EQUATOR_TILE = TileKey(15, 16384, 16383)
EAST_NEIGHBOUR = TileKey(15, 16385, 16383)
TILE_SIZE = 64


def flat_tile(
    key: TileKey = EQUATOR_TILE,
    elevation: float = 0.0,
    size: int = TILE_SIZE,
) -> TerrainTile:
    return terrain_tile_from_elevations(key, np.full((size, size), elevation))


def sloped_tile(
    key: TileKey = EQUATOR_TILE,
    *,
    rise_per_col: float = 1.0,
    size: int = TILE_SIZE,
) -> TerrainTile:
    cols = np.arange(size, dtype=np.float64)
    return terrain_tile_from_elevations(key, np.tile(cols * rise_per_col, (size, 1)))


def bounds_for(key: TileKey = EQUATOR_TILE, size: int = TILE_SIZE) -> TileBounds:
    return tile_bounds(key, size, size)


def inset_ring(
    key: TileKey = EQUATOR_TILE,
    inset: float = 0.1,
) -> list[tuple[float, float]]:
    """Return a closed lon/lat square inset by a fraction of the tile width."""
    bounds = tile_bounds(key)
    dx = (bounds.max_x - bounds.min_x) * inset
    dy = (bounds.max_y - bounds.min_y) * inset
    xs = np.array([bounds.min_x + dx, bounds.max_x - dx, bounds.max_x - dx, bounds.min_x + dx])
    ys = np.array([bounds.max_y - dy, bounds.max_y - dy, bounds.min_y + dy, bounds.min_y + dy])
    lons, lats = meters_to_lnglat(xs, ys)
    ring = [(float(lon), float(lat)) for lon, lat in zip(lons, lats)]
    return ring + [ring[0]]


def spanning_ring(west: TileKey, east: TileKey, inset: float = 0.1) -> list[tuple[float, float]]:
    """Return a lon/lat rectangle that crosses the seam between two tiles."""
    left = tile_bounds(west)
    right = tile_bounds(east)
    dy = (left.max_y - left.min_y) * inset
    min_x = left.min_x + (left.max_x - left.min_x) * 0.5
    max_x = right.min_x + (right.max_x - right.min_x) * 0.5
    xs = np.array([min_x, max_x, max_x, min_x])
    ys = np.array([left.max_y - dy, left.max_y - dy, left.min_y + dy, left.min_y + dy])
    lons, lats = meters_to_lnglat(xs, ys)
    return [(float(lon), float(lat)) for lon, lat in zip(lons, lats)]


def polygon(polygon_id: str = "field", key: TileKey = EQUATOR_TILE, inset: float = 0.1) -> PolygonWithId:
    return PolygonWithId.from_ring(inset_ring(key, inset), polygon_id)


def pose_above_pixel(
    bounds: TileBounds,
    col: int,
    row: int,
    height: float,
    **angles: float,
) -> Pose:
    x, y = bounds.pixel_to_world(col, row)
    return Pose(x=float(x), y=float(y), z=height, **angles)


def write_terrain_png(path: Path, elevations: np.ndarray, *, alpha: bool = False) -> None:
    rgb = encode_terrain_rgb(elevations)
    height, width = rgb.shape[:2]
    bands = [rgb[..., index] for index in range(3)]
    if alpha:
        bands.append(np.full((height, width), 255, dtype=np.uint8))
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="PNG",
        height=height,
        width=width,
        count=len(bands),
        dtype="uint8",
    ) as dataset:
        for index, band in enumerate(bands, start=1):
            dataset.write(band, index)


class MemoryTileProvider:
    """Serve pre-built tiles and record every request."""

    def __init__(self, tiles: dict[TileKey, TerrainTile] | None = None) -> None:
        self.tiles = dict(tiles or {})
        self.requests: list[TileKey] = []

    def __call__(self, key: TileKey) -> TerrainTile | None:
        self.requests.append(key)
        return self.tiles.get(key)


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if src_path.exists():
        existing = env.get("PYTHONPATH", "")
        entries = [entry for entry in existing.split(os.pathsep) if entry]
        src_str = str(src_path)
        if src_str not in entries:
            entries.insert(0, src_str)
        env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
