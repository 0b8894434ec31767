"""Terrain-RGB decoding, encoding, and local tile access."""

from __future__ import annotations

import logging
import warnings
from pathlib import Path

import numpy as np
import rasterio
from rasterio.errors import NotGeoreferencedWarning

from flightcov.overlap.models import TerrainTile, TileKey

LOGGER = logging.getLogger("flightcov.terrain")

ELEVATION_OFFSET_M = -10000.0
ELEVATION_SCALE_M = 0.1
MAX_ENCODED = 256**3 - 1


def _as_pixels(buffer: np.ndarray | bytes, width: int, height: int) -> np.ndarray:
    """Return a (height, width, channels) uint8 view of a raw tile buffer."""
    if width <= 0 or height <= 0:
        raise ValueError("Tile dimensions must be positive.")
    data = np.asarray(
        np.frombuffer(buffer, dtype=np.uint8) if isinstance(buffer, (bytes, bytearray)) else buffer,
        dtype=np.uint8,
    )
    if data.ndim == 3:
        if data.shape[0] != height or data.shape[1] != width or data.shape[2] not in (3, 4):
            raise ValueError(
                f"Terrain buffer shape {data.shape} does not match {height}x{width}x(3|4)."
            )
        return data
    flat = data.reshape(-1)
    pixels = width * height
    for channels in (4, 3):
        if flat.size == pixels * channels:
            return flat.reshape(height, width, channels)
    raise ValueError(
        f"Terrain buffer length {flat.size} does not match {width}x{height} RGB or RGBA."
    )


def decode_terrain_rgb(buffer: np.ndarray | bytes, width: int, height: int) -> np.ndarray:
    """Decode Terrain-RGB pixels into a float32 (height, width) elevation grid."""
    pixels = _as_pixels(buffer, width, height).astype(np.float64)
    encoded = pixels[..., 0] * 65536.0 + pixels[..., 1] * 256.0 + pixels[..., 2]
    return (ELEVATION_OFFSET_M + encoded * ELEVATION_SCALE_M).astype(np.float32)


def encode_terrain_rgb(elevations: np.ndarray) -> np.ndarray:
    """Encode elevations in metres into Terrain-RGB uint8 (h, w, 3) pixels."""
    values = np.asarray(elevations, dtype=np.float64)
    encoded = np.rint((values - ELEVATION_OFFSET_M) / ELEVATION_SCALE_M)
    encoded = np.clip(encoded, 0, MAX_ENCODED).astype(np.int64)
    rgb = np.empty(values.shape + (3,), dtype=np.uint8)
    rgb[..., 0] = (encoded >> 16) & 0xFF
    rgb[..., 1] = (encoded >> 8) & 0xFF
    rgb[..., 2] = encoded & 0xFF
    return rgb


def terrain_tile_from_elevations(key: TileKey, elevations: np.ndarray) -> TerrainTile:
    """Build a tile whose buffer encodes the given elevation grid."""
    height, width = np.asarray(elevations).shape
    return TerrainTile(key=key, width=width, height=height, data=encode_terrain_rgb(elevations))


def read_terrain_tile(path: Path, key: TileKey) -> TerrainTile:
    """Read a Terrain-RGB raster (PNG or any >= 3 band raster) into a tile."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NotGeoreferencedWarning)
        with rasterio.open(path) as dataset:
            if dataset.count < 3:
                raise ValueError(f"Terrain tile needs at least 3 bands: {path}")
            bands = dataset.read(indexes=[1, 2, 3])
    data = np.ascontiguousarray(np.moveaxis(bands, 0, -1).astype(np.uint8))
    return TerrainTile(key=key, width=data.shape[1], height=data.shape[0], data=data)


class DirectoryTileProvider:
    """Serve Terrain-RGB tiles from a local `{z}/{x}/{y}.png` tree."""

    def __init__(self, root: Path, template: str = "{z}/{x}/{y}.png") -> None:
        self.root = Path(root)
        self.template = template

    def path_for(self, key: TileKey) -> Path:
        return self.root / self.template.format(z=key.z, x=key.x, y=key.y)

    def __call__(self, key: TileKey) -> TerrainTile | None:
        path = self.path_for(key)
        if not path.exists():
            LOGGER.debug("Terrain tile not found: %s", path, extra={"tile": str(key)})
            return None
        return read_terrain_tile(path, key)
