"""Scanline rasterization of polygon rings onto tile pixel grids."""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Sequence

import numpy as np

from flightcov.overlap.mercator import TileBounds, ring_to_meters
from flightcov.overlap.polygons import PolygonWithId


def _fill_ring(mask: np.ndarray, ring: np.ndarray) -> None:
    """OR the even-odd interior of one ring into `mask`."""
    height, width = mask.shape
    x0 = ring[:, 0]
    y0 = ring[:, 1]
    x1 = np.roll(x0, -1)
    y1 = np.roll(y0, -1)
    row_lo = max(0, int(math.ceil(float(y0.min()))))
    row_hi = min(height - 1, int(math.floor(float(y0.max()))))
    for row in range(row_lo, row_hi + 1):
        # Half-open edge rule so shared vertices count once.
        active = ((y0 <= row) & (y1 > row)) | ((y1 <= row) & (y0 > row))
        if not active.any():
            continue
        ax0, ay0, ax1, ay1 = x0[active], y0[active], x1[active], y1[active]
        xs = np.sort(ax0 + (row - ay0) * (ax1 - ax0) / (ay1 - ay0))
        for start, end in zip(xs[0::2], xs[1::2]):
            col_lo = max(0, int(math.ceil(start)))
            col_hi = min(width - 1, int(math.floor(end)))
            if col_lo <= col_hi:
                mask[row, col_lo : col_hi + 1] = 1


def rasterize_rings(
    rings_px: Iterable[np.ndarray | Sequence[Sequence[float]]],
    width: int,
    height: int,
) -> np.ndarray:
    """Rasterize rings given in pixel coordinates into a uint8 union mask.

    Pixel (col, row) is inside a ring when its centre, which sits at ring
    coordinates (col, row), lies between a pair of sorted scanline
    crossings. Rings with fewer than three vertices contribute nothing.
    """
    mask = np.zeros((height, width), dtype=np.uint8)
    for ring in rings_px:
        points = np.asarray(ring, dtype=np.float64).reshape(-1, 2)
        if len(points) > 1 and np.array_equal(points[0], points[-1]):
            points = points[:-1]
        if len(points) < 3 or not np.all(np.isfinite(points)):
            continue
        _fill_ring(mask, points)
    return mask


def erode_mask(mask: np.ndarray, pixels: int) -> np.ndarray:
    """Erode a mask by a square neighbourhood of `pixels` radius.

    Tile borders are replicated so an area that continues into the
    neighbouring tile is not clipped at the seam.
    """
    result = np.asarray(mask, dtype=np.uint8).copy()
    for _ in range(max(0, int(pixels))):
        padded = np.pad(result, 1, mode="edge")
        eroded = padded[1:-1, 1:-1].copy()
        for dy in (0, 1, 2):
            for dx in (0, 1, 2):
                eroded &= padded[dy : dy + result.shape[0], dx : dx + result.shape[1]]
        result = eroded
        if not result.any():
            break
    return result


def inner_clip_pixels(bounds: TileBounds, inner_clip_m: float) -> int:
    """Return how many pixels of erosion approximate an inner clip in metres."""
    if inner_clip_m <= 0:
        return 0
    ground_pixel = math.sqrt(bounds.ground_pixel_area_m2())
    return int(math.ceil(inner_clip_m / ground_pixel))


def polygon_mask(polygon: PolygonWithId, bounds: TileBounds) -> np.ndarray:
    """Rasterize one polygon onto the pixel grid of a tile."""
    mask = np.zeros((bounds.height, bounds.width), dtype=np.uint8)
    if polygon.is_degenerate:
        return mask
    meters = ring_to_meters(polygon.open_ring())
    cols, rows = bounds.world_to_pixel(meters[:, 0], meters[:, 1])
    return rasterize_rings([np.column_stack([cols, rows])], bounds.width, bounds.height)


def polygon_masks_for_tile(
    polygons: Iterable[PolygonWithId],
    bounds: TileBounds,
    inner_clip_m: float = 0.0,
) -> dict[str, np.ndarray]:
    """Return fresh per-polygon masks for a tile, keyed by polygon id in order."""
    clip_px = inner_clip_pixels(bounds, inner_clip_m)
    masks: dict[str, np.ndarray] = {}
    for polygon in polygons:
        mask = polygon_mask(polygon, bounds)
        if clip_px:
            mask = erode_mask(mask, clip_px)
        if polygon.id in masks:
            masks[polygon.id] |= mask
        else:
            masks[polygon.id] = mask
    return masks


def union_mask(masks: Mapping[str, np.ndarray], width: int, height: int) -> np.ndarray:
    """Return the OR of all polygon masks as a uint8 grid."""
    union = np.zeros((height, width), dtype=np.uint8)
    for mask in masks.values():
        union |= mask
    return union
