"""Coverage and GSD engine exports."""

from flightcov.overlap.aggregate import AnalysisRun, PolygonSummary
from flightcov.overlap.cache import TileBufferCache
from flightcov.overlap.camera import (
    CameraAssignment,
    CameraModel,
    PerPoseCameras,
    Pose,
    Projection,
    SingleCamera,
    footprint_polygon,
    footprint_radius,
    project_point,
    rotation_matrix,
)
from flightcov.overlap.evaluator import compute_tile, surface_normals
from flightcov.overlap.mercator import (
    TileBounds,
    lnglat_to_meters,
    lnglat_to_tile,
    meters_to_lnglat,
    tile_bounds,
    tiles_covering_ring,
)
from flightcov.overlap.models import (
    ComputeOptions,
    PolygonTileStats,
    TerrainTile,
    TileKey,
    TileRequest,
    TileResult,
)
from flightcov.overlap.pipeline import AnalysisResult, plan_tiles, run_analysis
from flightcov.overlap.polygons import PolygonWithId, load_polygons, polygon_area_acres
from flightcov.overlap.rasterize import polygon_masks_for_tile, rasterize_rings
from flightcov.overlap.stats import GSDStats, HistogramOptions, merge_gsd_stats
from flightcov.overlap.terrain import (
    DirectoryTileProvider,
    decode_terrain_rgb,
    encode_terrain_rgb,
    read_terrain_tile,
)

__all__ = [
    "AnalysisResult",
    "AnalysisRun",
    "CameraAssignment",
    "CameraModel",
    "ComputeOptions",
    "DirectoryTileProvider",
    "GSDStats",
    "HistogramOptions",
    "PerPoseCameras",
    "PolygonSummary",
    "PolygonTileStats",
    "PolygonWithId",
    "Pose",
    "Projection",
    "SingleCamera",
    "TerrainTile",
    "TileBounds",
    "TileBufferCache",
    "TileKey",
    "TileRequest",
    "TileResult",
    "compute_tile",
    "decode_terrain_rgb",
    "encode_terrain_rgb",
    "footprint_polygon",
    "footprint_radius",
    "lnglat_to_meters",
    "lnglat_to_tile",
    "load_polygons",
    "merge_gsd_stats",
    "meters_to_lnglat",
    "plan_tiles",
    "polygon_area_acres",
    "polygon_masks_for_tile",
    "project_point",
    "rasterize_rings",
    "read_terrain_tile",
    "rotation_matrix",
    "run_analysis",
    "surface_normals",
    "tile_bounds",
    "tiles_covering_ring",
]
