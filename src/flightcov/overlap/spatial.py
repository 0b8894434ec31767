"""Conservative two-stage pose culling for a single tile."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from flightcov.overlap.camera import PreparedPose, footprint_radius
from flightcov.overlap.mercator import TileBounds

LOGGER = logging.getLogger("flightcov.spatial")


@dataclass(frozen=True)
class PoseIndex:
    """Tile-level culled poses bucketed into an N x N grid of pixel cells.

    `survivors` lists global pose indices in ascending order. `cell_masks`
    maps each survivor to a boolean vector over grid cells its footprint
    bounding box touches; `cell_ids` holds the cell of every pixel,
    row-major. In fail-safe mode every pose covers every cell and the
    per-pixel radius test is disabled.
    """

    bounds: TileBounds
    resolution: int
    survivors: Tuple[int, ...]
    radii: dict[int, float]
    positions: dict[int, tuple[float, float]]
    cell_masks: dict[int, np.ndarray]
    cell_ids: np.ndarray
    fallback: bool = False

    @property
    def cell_count(self) -> int:
        return self.resolution * self.resolution

    def bucket(self, cell: int) -> Tuple[int, ...]:
        """Return the survivors registered in one grid cell."""
        return tuple(index for index in self.survivors if self.cell_masks[index][cell])

    def _within_radius(self, index: int, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        radius = self.radii[index]
        if self.fallback or math.isinf(radius):
            return np.ones(xs.shape, dtype=bool)
        px, py = self.positions[index]
        return (xs - px) ** 2 + (ys - py) ** 2 <= radius * radius

    def candidates(self, row: int, col: int) -> list[int]:
        """Return the global pose indices to test for one pixel, ascending."""
        cell = int(self.cell_ids[row * self.bounds.width + col])
        x, y = self.bounds.pixel_to_world(col, row)
        xs = np.array([x])
        ys = np.array([y])
        return [
            index
            for index in self.bucket(cell)
            if bool(self._within_radius(index, xs, ys)[0])
        ]

    def pixels_for_pose(self, index: int, flat_indices: np.ndarray) -> np.ndarray:
        """Return a boolean selector over `flat_indices` for pixels pose `index` may see."""
        flat = np.asarray(flat_indices, dtype=np.int64)
        selected = self.cell_masks[index][self.cell_ids[flat]]
        if not selected.any():
            return selected
        cols = flat % self.bounds.width
        rows = flat // self.bounds.width
        xs, ys = self.bounds.pixel_to_world(cols, rows)
        return selected & self._within_radius(index, np.asarray(xs), np.asarray(ys))


def pixel_cell_ids(width: int, height: int, resolution: int) -> np.ndarray:
    """Return the grid cell of every pixel as a flat row-major int array."""
    col_cells = (np.arange(width, dtype=np.int64) * resolution) // width
    row_cells = (np.arange(height, dtype=np.int64) * resolution) // height
    return (row_cells[:, None] * resolution + col_cells[None, :]).reshape(-1)


def _footprint_cells(
    bounds: TileBounds,
    resolution: int,
    x: float,
    y: float,
    radius: float,
) -> np.ndarray:
    """Return a boolean cell vector for the footprint bounding box of a pose."""
    cells = np.zeros(resolution * resolution, dtype=bool)
    if math.isinf(radius):
        cells[:] = True
        return cells
    last_col = bounds.width - 1
    last_row = bounds.height - 1
    col_lo = int(math.floor((x - radius - bounds.min_x) / bounds.pixel_size_x))
    col_hi = int(math.floor((x + radius - bounds.min_x) / bounds.pixel_size_x))
    row_lo = int(math.floor((bounds.max_y - (y + radius)) / bounds.pixel_size_y))
    row_hi = int(math.floor((bounds.max_y - (y - radius)) / bounds.pixel_size_y))
    if col_hi < 0 or row_hi < 0 or col_lo > last_col or row_lo > last_row:
        return cells
    col_lo, col_hi = max(0, col_lo), min(last_col, col_hi)
    row_lo, row_hi = max(0, row_lo), min(last_row, row_hi)
    cell_col_lo = col_lo * resolution // bounds.width
    cell_col_hi = col_hi * resolution // bounds.width
    cell_row_lo = row_lo * resolution // bounds.height
    cell_row_hi = row_hi * resolution // bounds.height
    grid = cells.reshape(resolution, resolution)
    grid[cell_row_lo : cell_row_hi + 1, cell_col_lo : cell_col_hi + 1] = True
    return cells


def build_pose_index(
    poses: Sequence[PreparedPose],
    bounds: TileBounds,
    ground_z: float,
    *,
    active_pixels: int,
    resolution: int = 8,
    margin: float = 1.25,
    tile_label: str | None = None,
) -> PoseIndex:
    """Cull poses against a tile and bucket the survivors by footprint."""
    radii: dict[int, float] = {}
    positions: dict[int, tuple[float, float]] = {}
    survivors: list[int] = []
    for prepared in poses:
        pose = prepared.pose
        radius = footprint_radius(
            pose, prepared.camera, ground_z, margin, rotation=prepared.rotation
        )
        radii[prepared.index] = radius
        positions[prepared.index] = (pose.x, pose.y)
        if bounds.distance_to_point(pose.x, pose.y) <= radius:
            survivors.append(prepared.index)

    fallback = active_pixels > 0 and not survivors and bool(poses)
    cell_count = resolution * resolution
    cell_masks: dict[int, np.ndarray] = {}
    if fallback:
        LOGGER.info(
            "Footprint culling rejected all %d poses for %d active pixels; "
            "evaluating every pose.",
            len(poses),
            active_pixels,
            extra={"tile": tile_label} if tile_label else None,
        )
        survivors = [prepared.index for prepared in poses]
        for index in survivors:
            cell_masks[index] = np.ones(cell_count, dtype=bool)
    else:
        for index in survivors:
            x, y = positions[index]
            cell_masks[index] = _footprint_cells(bounds, resolution, x, y, radii[index])

    return PoseIndex(
        bounds=bounds,
        resolution=resolution,
        survivors=tuple(sorted(survivors)),
        radii=radii,
        positions=positions,
        cell_masks=cell_masks,
        cell_ids=pixel_cell_ids(bounds.width, bounds.height, resolution),
        fallback=fallback,
    )
