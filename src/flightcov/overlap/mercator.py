"""Web-Mercator tile geometry and pixel/world transforms."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

import numpy as np

from flightcov.overlap.crs import GEOGRAPHIC_CRS, MERCATOR_CRS, transformer
from flightcov.overlap.models import TileKey

EARTH_RADIUS_M = 6378137.0
WORLD_SIZE_M = 2.0 * math.pi * EARTH_RADIUS_M
MAX_LATITUDE = 85.05112878
DEFAULT_TILE_SIZE = 512

LngLat = Tuple[float, float]


def _as_output(values: np.ndarray, scalar: bool) -> float | np.ndarray:
    if scalar:
        return float(values.reshape(-1)[0])
    return values


def lnglat_to_meters(lon, lat):
    """Project lon/lat degrees to EPSG:3857 metres, clamping polar latitudes."""
    scalar = np.ndim(lon) == 0 and np.ndim(lat) == 0
    lon_arr = np.asarray(lon, dtype=np.float64)
    lat_arr = np.clip(np.asarray(lat, dtype=np.float64), -MAX_LATITUDE, MAX_LATITUDE)
    xs, ys = transformer(GEOGRAPHIC_CRS, MERCATOR_CRS).transform(lon_arr, lat_arr)
    return (
        _as_output(np.asarray(xs, dtype=np.float64), scalar),
        _as_output(np.asarray(ys, dtype=np.float64), scalar),
    )


def meters_to_lnglat(x, y):
    """Unproject EPSG:3857 metres back to lon/lat degrees."""
    scalar = np.ndim(x) == 0 and np.ndim(y) == 0
    lons, lats = transformer(MERCATOR_CRS, GEOGRAPHIC_CRS).transform(
        np.asarray(x, dtype=np.float64),
        np.asarray(y, dtype=np.float64),
    )
    return (
        _as_output(np.asarray(lons, dtype=np.float64), scalar),
        _as_output(np.asarray(lats, dtype=np.float64), scalar),
    )


@dataclass(frozen=True)
class TileBounds:
    """Tile extent in EPSG:3857 metres plus its decoded pixel grid."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float
    width: int
    height: int

    @property
    def pixel_size_x(self) -> float:
        return (self.max_x - self.min_x) / self.width

    @property
    def pixel_size_y(self) -> float:
        return (self.max_y - self.min_y) / self.height

    @property
    def pixel_size(self) -> float:
        """Return the horizontal pixel size in projected metres."""
        return self.pixel_size_x

    def pixel_to_world(self, col, row):
        """Return projected metres of the centre of pixel (col, row)."""
        x = self.min_x + (np.asarray(col, dtype=np.float64) + 0.5) * self.pixel_size_x
        y = self.max_y - (np.asarray(row, dtype=np.float64) + 0.5) * self.pixel_size_y
        scalar = np.ndim(col) == 0 and np.ndim(row) == 0
        return _as_output(np.asarray(x), scalar), _as_output(np.asarray(y), scalar)

    def world_to_pixel(self, x, y):
        """Return continuous (col, row) for projected metres; centres are integral."""
        col = (np.asarray(x, dtype=np.float64) - self.min_x) / self.pixel_size_x - 0.5
        row = (self.max_y - np.asarray(y, dtype=np.float64)) / self.pixel_size_y - 0.5
        scalar = np.ndim(x) == 0 and np.ndim(y) == 0
        return _as_output(np.asarray(col), scalar), _as_output(np.asarray(row), scalar)

    def distance_to_point(self, x: float, y: float) -> float:
        """Return the planar distance from a point to the tile rectangle."""
        dx = max(self.min_x - x, 0.0, x - self.max_x)
        dy = max(self.min_y - y, 0.0, y - self.max_y)
        return math.hypot(dx, dy)

    def center_lnglat(self) -> LngLat:
        lon, lat = meters_to_lnglat(
            0.5 * (self.min_x + self.max_x),
            0.5 * (self.min_y + self.max_y),
        )
        return float(lon), float(lat)

    def ground_pixel_area_m2(self) -> float:
        """Return the true ground area of one pixel at the tile centre."""
        _, lat = self.center_lnglat()
        scale = math.cos(math.radians(lat))
        return self.pixel_size_x * self.pixel_size_y * scale * scale


def tile_bounds(
    key: TileKey,
    width: int = DEFAULT_TILE_SIZE,
    height: int | None = None,
) -> TileBounds:
    """Return projected bounds for a tile decoded at width x height pixels."""
    if width <= 0 or (height is not None and height <= 0):
        raise ValueError("Tile pixel dimensions must be positive.")
    tiles = 1 << key.z
    tile_m = WORLD_SIZE_M / tiles
    min_x = -WORLD_SIZE_M / 2 + key.x * tile_m
    max_y = WORLD_SIZE_M / 2 - key.y * tile_m
    return TileBounds(
        min_x=min_x,
        min_y=max_y - tile_m,
        max_x=min_x + tile_m,
        max_y=max_y,
        width=width,
        height=height if height is not None else width,
    )


def lnglat_to_tile(lon: float, lat: float, z: int) -> tuple[int, int]:
    """Return the (x, y) index of the tile containing a lon/lat at zoom z."""
    n = 1 << z
    lat_c = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    lat_rad = math.radians(lat_c)
    x = math.floor((lon + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    return max(0, min(n - 1, x)), max(0, min(n - 1, y))


def tiles_covering_ring(ring: Sequence[LngLat], z: int, pad: int = 0) -> list[TileKey]:
    """Return tiles whose extent intersects the bounding box of a ring."""
    if not ring:
        return []
    lons = [point[0] for point in ring]
    lats = [point[1] for point in ring]
    min_x, min_y = lnglat_to_tile(min(lons), max(lats), z)
    max_x, max_y = lnglat_to_tile(max(lons), min(lats), z)
    n = 1 << z
    tiles: list[TileKey] = []
    for x in range(max(0, min_x - pad), min(n - 1, max_x + pad) + 1):
        for y in range(max(0, min_y - pad), min(n - 1, max_y + pad) + 1):
            tiles.append(TileKey(z, x, y))
    return tiles


def tile_corners_lnglat(key: TileKey) -> list[LngLat]:
    """Return tile corners ordered top-left, top-right, bottom-right, bottom-left."""
    bounds = tile_bounds(key)
    xs = np.array([bounds.min_x, bounds.max_x, bounds.max_x, bounds.min_x])
    ys = np.array([bounds.max_y, bounds.max_y, bounds.min_y, bounds.min_y])
    lons, lats = meters_to_lnglat(xs, ys)
    return [(float(lon), float(lat)) for lon, lat in zip(lons, lats)]


def ring_to_meters(ring: Iterable[LngLat]) -> np.ndarray:
    """Project a lon/lat ring into an (n, 2) array of EPSG:3857 metres."""
    points = np.asarray(list(ring), dtype=np.float64).reshape(-1, 2)
    if points.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    xs, ys = lnglat_to_meters(points[:, 0], points[:, 1])
    return np.column_stack([xs, ys])
