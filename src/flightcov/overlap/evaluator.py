"""Per-tile overlap and best-GSD evaluation."""

from __future__ import annotations

import logging
from time import perf_counter

import numpy as np

from flightcov.overlap.camera import incidence_gsd, jacobian_gsd, prepare_poses, project_points
from flightcov.overlap.mercator import TileBounds, tile_bounds
from flightcov.overlap.models import PolygonTileStats, TileRequest, TileResult
from flightcov.overlap.rasterize import polygon_masks_for_tile, union_mask
from flightcov.overlap.spatial import build_pose_index
from flightcov.overlap.stats import GSDStats, gsd_stats_from_samples
from flightcov.overlap.terrain import decode_terrain_rgb

LOGGER = logging.getLogger("flightcov.evaluator")

MAX_OVERLAP = np.iinfo(np.uint16).max
EMPTY_POSE_IDS = np.zeros(0, dtype=np.int64)


def surface_normals(elevations: np.ndarray, pixel_size_x: float, pixel_size_y: float) -> np.ndarray:
    """Return unit surface normals (h, w, 3) in world axes from an elevation grid.

    Central differences inside the grid, one-sided at the edges. Rows run
    north to south, so world dz/dy is the negated row derivative.
    """
    grid = np.asarray(elevations, dtype=np.float64)
    height, width = grid.shape
    dz_dx = np.zeros_like(grid)
    dz_drow = np.zeros_like(grid)
    if width > 1:
        dz_dx = np.gradient(grid, pixel_size_x, axis=1, edge_order=1)
    if height > 1:
        dz_drow = np.gradient(grid, pixel_size_y, axis=0, edge_order=1)
    normals = np.stack([-dz_dx, dz_drow, np.ones_like(grid)], axis=-1)
    normals /= np.linalg.norm(normals, axis=-1, keepdims=True)
    return normals


def _empty_result(
    request: TileRequest,
    bounds: TileBounds,
    masks: dict[str, np.ndarray],
    active_pixels: int,
    started: float,
) -> TileResult:
    tile = request.tile
    per_polygon = tuple(
        PolygonTileStats(
            polygon_id=polygon_id,
            tile=tile.key,
            active_pixels=int(np.count_nonzero(mask)),
            gsd_stats=GSDStats.empty(),
            hit_pose_ids=EMPTY_POSE_IDS.copy(),
        )
        for polygon_id, mask in masks.items()
        if mask.any()
    )
    return TileResult(
        tile=tile.key,
        width=tile.width,
        height=tile.height,
        overlap=np.zeros((tile.height, tile.width), dtype=np.uint16),
        gsd_min=np.full((tile.height, tile.width), np.inf, dtype=np.float32),
        max_overlap=0,
        min_gsd=float("inf"),
        gsd_stats=GSDStats.empty(),
        per_polygon=per_polygon,
        active_pixels=active_pixels,
        pixel_size_m=bounds.pixel_size,
        compute_seconds=perf_counter() - started,
    )


def compute_tile(request: TileRequest) -> TileResult:
    """Evaluate overlap and best GSD for every polygon pixel of one tile."""
    started = perf_counter()
    tile = request.tile
    options = request.options
    label = str(tile.key)
    elevations = decode_terrain_rgb(tile.data, tile.width, tile.height)
    bounds = tile_bounds(tile.key, tile.width, tile.height)
    masks = polygon_masks_for_tile(request.polygons, bounds, options.inner_clip_m)
    union = union_mask(masks, tile.width, tile.height)
    active_flat = np.flatnonzero(union)
    if active_flat.size == 0 or not request.poses:
        return _empty_result(request, bounds, masks, int(active_flat.size), started)

    prepared = prepare_poses(request.poses, request.cameras)
    index = build_pose_index(
        prepared,
        bounds,
        float(np.min(elevations)),
        active_pixels=int(active_flat.size),
        resolution=options.effective_grid_resolution,
        margin=options.footprint_margin,
        tile_label=label,
    )

    rows = active_flat // tile.width
    cols = active_flat % tile.width
    xs, ys = bounds.pixel_to_world(cols, rows)
    points = np.column_stack([xs, ys, elevations.reshape(-1)[active_flat].astype(np.float64)])
    normals = surface_normals(elevations, bounds.pixel_size_x, bounds.pixel_size_y).reshape(-1, 3)[
        active_flat
    ]

    polygon_pixels = {
        polygon_id: mask.reshape(-1)[active_flat].astype(bool)
        for polygon_id, mask in masks.items()
        if mask.any()
    }
    polygon_hits: dict[str, list[int]] = {polygon_id: [] for polygon_id in polygon_pixels}

    counts = np.zeros(active_flat.size, dtype=np.int64)
    best = np.full(active_flat.size, np.inf, dtype=np.float64)
    cap = options.early_exit_overlap_cap
    for pose_index in index.survivors:
        pose = prepared[pose_index]
        selector = index.pixels_for_pose(pose_index, active_flat)
        if cap is not None:
            selector &= counts < cap
        positions = np.flatnonzero(selector)
        if positions.size == 0:
            continue
        targets = points[positions]
        projected = project_points(pose.camera, pose.rt, pose.position, targets)
        ranges = projected.ranges
        accepted = projected.valid & (ranges > 0)
        safe_ranges = np.where(ranges > 0, ranges, 1.0)
        rays = (targets - pose.position) / safe_ranges[:, None]
        cos_incidence = -np.sum(normals[positions] * rays, axis=1)
        accepted &= cos_incidence > options.min_cos_incidence
        if not accepted.any():
            continue
        if options.gsd_model == "jacobian":
            gsd = jacobian_gsd(
                pose.camera, pose.rotation, pose.position, targets, normals[positions]
            )
        else:
            gsd = incidence_gsd(pose.camera, ranges, np.where(accepted, cos_incidence, 1.0))
        accepted &= np.isfinite(gsd) & (gsd > 0)
        hit = positions[accepted]
        if hit.size == 0:
            continue
        counts[hit] += 1
        best[hit] = np.minimum(best[hit], gsd[accepted])
        for polygon_id, pixels in polygon_pixels.items():
            if pixels[hit].any():
                polygon_hits[polygon_id].append(pose_index)

    overlap = np.zeros(tile.height * tile.width, dtype=np.uint16)
    overlap[active_flat] = np.minimum(counts, MAX_OVERLAP).astype(np.uint16)
    gsd_min = np.full(tile.height * tile.width, np.inf, dtype=np.float32)
    gsd_min[active_flat] = best.astype(np.float32)

    covered = counts > 0
    pixel_area = bounds.ground_pixel_area_m2()
    per_polygon = tuple(
        PolygonTileStats(
            polygon_id=polygon_id,
            tile=tile.key,
            active_pixels=int(np.count_nonzero(pixels)),
            gsd_stats=gsd_stats_from_samples(best[pixels & covered], pixel_area, request.histogram),
            hit_pose_ids=np.unique(np.asarray(polygon_hits[polygon_id], dtype=np.int64)),
        )
        for polygon_id, pixels in polygon_pixels.items()
    )
    elapsed = perf_counter() - started
    LOGGER.debug(
        "Evaluated %d pixels against %d candidate poses in %.3fs",
        active_flat.size,
        len(index.survivors),
        elapsed,
        extra={"tile": label},
    )
    return TileResult(
        tile=tile.key,
        width=tile.width,
        height=tile.height,
        overlap=overlap.reshape(tile.height, tile.width),
        gsd_min=gsd_min.reshape(tile.height, tile.width),
        max_overlap=int(counts.max()),
        min_gsd=float(best[covered].min()) if covered.any() else float("inf"),
        gsd_stats=gsd_stats_from_samples(best[covered], pixel_area, request.histogram),
        per_polygon=per_polygon,
        active_pixels=int(active_flat.size),
        candidate_poses=len(index.survivors),
        culling_fallback=index.fallback,
        pixel_size_m=bounds.pixel_size,
        compute_seconds=elapsed,
    )
