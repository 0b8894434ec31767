"""Run-scoped per-polygon aggregation of tile results."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np

from flightcov.overlap.mercator import tiles_covering_ring
from flightcov.overlap.models import PolygonTileStats, TileKey, TileResult
from flightcov.overlap.polygons import SQUARE_METERS_PER_ACRE, PolygonWithId, polygon_area_m2
from flightcov.overlap.stats import GSDStats, HistogramOptions, merge_gsd_stats


@dataclass(frozen=True)
class PolygonSummary:
    """Merged coverage statistics for one polygon across all tiles."""

    polygon_id: str
    gsd_stats: GSDStats
    image_count: int
    active_pixels: int
    tile_count: int
    area_m2: float

    @property
    def area_acres(self) -> float:
        return self.area_m2 / SQUARE_METERS_PER_ACRE

    def as_dict(self) -> dict[str, Any]:
        return {
            "polygon_id": self.polygon_id,
            "image_count": self.image_count,
            "active_pixels": self.active_pixels,
            "tile_count": self.tile_count,
            "area_m2": self.area_m2,
            "area_acres": self.area_acres,
            "gsd": self.gsd_stats.as_dict(),
        }


class AnalysisRun:
    """Accumulate `PolygonTileStats` per polygon and per tile for one run.

    Results for a tile replace earlier results for the same tile, so
    re-running a tile never double counts. Pose ids are unioned across
    tiles, so a pose seen in several tiles counts once per polygon.
    """

    def __init__(self, histogram: HistogramOptions | None = None) -> None:
        self.histogram = histogram or HistogramOptions()
        self._lock = threading.Lock()
        self._stats: dict[str, dict[TileKey, PolygonTileStats]] = {}
        self._polygons: dict[str, PolygonWithId] = {}
        self._fingerprints: dict[str, str] = {}
        self._coverage: dict[str, frozenset[TileKey]] = {}
        self._parameters: str | None = None

    @property
    def parameters_fingerprint(self) -> str | None:
        return self._parameters

    def polygon_ids(self) -> list[str]:
        with self._lock:
            return list(self._stats)

    def tiles_for(self, polygon_id: str) -> list[TileKey]:
        with self._lock:
            return sorted(self._stats.get(polygon_id, {}))

    def merge_tile_result(self, result: TileResult) -> None:
        """Record every per-polygon entry of a tile result."""
        with self._lock:
            for entry in result.per_polygon:
                coverage = self._coverage.get(entry.polygon_id)
                if coverage is not None and entry.tile not in coverage:
                    continue
                self._stats.setdefault(entry.polygon_id, {})[entry.tile] = entry

    def clear(self) -> None:
        with self._lock:
            self._stats.clear()

    def sync_polygons(self, polygons: Iterable[PolygonWithId], zoom: int) -> list[str]:
        """Reconcile stored results with the current polygon set.

        Polygons whose geometry changed lose all their results, removed
        polygons are dropped, and tile entries outside a polygon's current
        tile coverage are pruned. Returns the ids that were invalidated.
        """
        invalidated: list[str] = []
        with self._lock:
            current: dict[str, PolygonWithId] = {}
            for polygon in polygons:
                current[polygon.id] = polygon
            for polygon_id in list(self._stats):
                if polygon_id not in current:
                    del self._stats[polygon_id]
                    invalidated.append(polygon_id)
            for polygon_id in list(self._polygons):
                if polygon_id not in current:
                    self._polygons.pop(polygon_id, None)
                    self._fingerprints.pop(polygon_id, None)
                    self._coverage.pop(polygon_id, None)
            for polygon_id, polygon in current.items():
                fingerprint = f"{zoom}:{polygon.fingerprint()}"
                if self._fingerprints.get(polygon_id) != fingerprint:
                    if self._stats.pop(polygon_id, None) is not None:
                        invalidated.append(polygon_id)
                    self._fingerprints[polygon_id] = fingerprint
                    self._polygons[polygon_id] = polygon
                    self._coverage[polygon_id] = frozenset(
                        tiles_covering_ring(polygon.open_ring(), zoom)
                    )
                coverage = self._coverage[polygon_id]
                tiles = self._stats.get(polygon_id)
                if tiles:
                    for key in [key for key in tiles if key not in coverage]:
                        del tiles[key]
        return invalidated

    def sync_parameters(self, fingerprint: str) -> bool:
        """Clear all results when poses, cameras, or options changed."""
        with self._lock:
            if self._parameters == fingerprint:
                return False
            self._parameters = fingerprint
            self._stats.clear()
            return True

    def polygon_summary(self, polygon_id: str) -> PolygonSummary:
        """Merge every tile entry of one polygon into a summary."""
        with self._lock:
            entries = list(self._stats.get(polygon_id, {}).values())
            polygon = self._polygons.get(polygon_id)
        stats = merge_gsd_stats((entry.gsd_stats for entry in entries), self.histogram)
        if entries:
            pose_ids = np.unique(np.concatenate([entry.hit_pose_ids for entry in entries]))
        else:
            pose_ids = np.zeros(0, dtype=np.int64)
        return PolygonSummary(
            polygon_id=polygon_id,
            gsd_stats=stats,
            image_count=int(pose_ids.size),
            active_pixels=sum(entry.active_pixels for entry in entries),
            tile_count=len(entries),
            area_m2=polygon_area_m2(polygon.ring) if polygon is not None else 0.0,
        )

    def summaries(self) -> list[PolygonSummary]:
        with self._lock:
            ids = list(self._polygons) or list(self._stats)
            ids += [polygon_id for polygon_id in self._stats if polygon_id not in ids]
        return [self.polygon_summary(polygon_id) for polygon_id in ids]

    def overall_stats(self) -> GSDStats:
        """Merge every polygon summary into run-wide statistics."""
        return merge_gsd_stats(
            (summary.gsd_stats for summary in self.summaries()), self.histogram
        )
