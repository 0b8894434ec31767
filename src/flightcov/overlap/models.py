"""Data models shared by the coverage engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

from flightcov.overlap.camera import CameraAssignment, Pose
from flightcov.overlap.polygons import PolygonWithId
from flightcov.overlap.stats import GSDStats, HistogramOptions

GSD_MODELS = ("incidence", "jacobian")
GRID_RESOLUTION_MIN = 2
GRID_RESOLUTION_MAX = 32


@dataclass(frozen=True, order=True)
class TileKey:
    """Slippy-map tile coordinate."""

    z: int
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


@dataclass(frozen=True)
class TerrainTile:
    """Raw Terrain-RGB tile buffer plus its pixel dimensions."""

    key: TileKey
    width: int
    height: int
    data: np.ndarray

    def copy(self) -> "TerrainTile":
        """Return a tile with an independent copy of the raw buffer."""
        return TerrainTile(self.key, self.width, self.height, np.array(self.data, copy=True))


@dataclass(frozen=True)
class ComputeOptions:
    """Tunable knobs for a single tile computation."""

    early_exit_overlap_cap: int | None = None
    grid_resolution: int = 8
    inner_clip_m: float = 0.0
    footprint_margin: float = 1.25
    min_cos_incidence: float = 1e-3
    gsd_model: str = "incidence"

    def __post_init__(self) -> None:
        if self.early_exit_overlap_cap is not None and self.early_exit_overlap_cap < 1:
            raise ValueError("early_exit_overlap_cap must be >= 1 when set")
        if self.inner_clip_m < 0:
            raise ValueError("inner_clip_m must be >= 0")
        if self.footprint_margin < 1:
            raise ValueError("footprint_margin must be >= 1")
        if self.gsd_model not in GSD_MODELS:
            raise ValueError(f"Unknown GSD model: {self.gsd_model}")

    @property
    def effective_grid_resolution(self) -> int:
        """Return the grid resolution clamped to the supported range."""
        return max(GRID_RESOLUTION_MIN, min(GRID_RESOLUTION_MAX, int(self.grid_resolution)))

    def as_dict(self) -> dict[str, object]:
        return {
            "early_exit_overlap_cap": self.early_exit_overlap_cap,
            "grid_resolution": self.grid_resolution,
            "inner_clip_m": self.inner_clip_m,
            "footprint_margin": self.footprint_margin,
            "min_cos_incidence": self.min_cos_incidence,
            "gsd_model": self.gsd_model,
        }


@dataclass(frozen=True)
class TileRequest:
    """Everything needed to evaluate one tile."""

    tile: TerrainTile
    polygons: Tuple[PolygonWithId, ...]
    poses: Tuple[Pose, ...]
    cameras: CameraAssignment
    options: ComputeOptions = field(default_factory=ComputeOptions)
    histogram: HistogramOptions = field(default_factory=HistogramOptions)


@dataclass(frozen=True)
class PolygonTileStats:
    """Coverage of one polygon inside one tile."""

    polygon_id: str
    tile: TileKey
    active_pixels: int
    gsd_stats: GSDStats
    hit_pose_ids: np.ndarray


@dataclass(frozen=True)
class TileResult:
    """Dense per-pixel coverage output for one tile."""

    tile: TileKey
    width: int
    height: int
    overlap: np.ndarray
    gsd_min: np.ndarray
    max_overlap: int
    min_gsd: float
    gsd_stats: GSDStats
    per_polygon: Tuple[PolygonTileStats, ...] = ()
    active_pixels: int = 0
    candidate_poses: int = 0
    culling_fallback: bool = False
    pixel_size_m: float = 0.0
    compute_seconds: float = 0.0

    @property
    def covered_pixels(self) -> int:
        return int(np.count_nonzero(self.overlap))
