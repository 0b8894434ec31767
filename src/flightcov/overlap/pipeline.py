"""Orchestrate tile fetch, per-tile evaluation, and aggregation for a run."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from time import perf_counter
from typing import Callable, Iterable, Mapping, Sequence, Tuple

from flightcov.overlap.aggregate import AnalysisRun, PolygonSummary
from flightcov.overlap.cache import CacheStats, TileBufferCache
from flightcov.overlap.camera import CameraAssignment, PerPoseCameras, Pose, SingleCamera
from flightcov.overlap.evaluator import compute_tile
from flightcov.overlap.mercator import tiles_covering_ring
from flightcov.overlap.models import (
    ComputeOptions,
    TerrainTile,
    TileKey,
    TileRequest,
    TileResult,
)
from flightcov.overlap.polygons import PolygonWithId
from flightcov.overlap.stats import GSDStats, HistogramOptions

LOGGER = logging.getLogger("flightcov.pipeline")

TileProvider = Callable[[TileKey], "TerrainTile | None"]


@dataclass(frozen=True)
class TilePlan:
    """A tile to evaluate plus the polygons whose coverage includes it."""

    key: TileKey
    polygons: Tuple[PolygonWithId, ...]


@dataclass(frozen=True)
class TileWorkResult:
    """Per-tile evaluation output or failure."""

    tile: TileKey
    result: TileResult | None
    error: str | None = None
    unavailable: bool = False
    cancelled: bool = False


@dataclass(frozen=True)
class AnalysisResult:
    """Outputs from a coverage analysis run."""

    summaries: Tuple[PolygonSummary, ...]
    overall: GSDStats
    tile_results: Tuple[TileResult, ...]
    unavailable: Tuple[TileKey, ...] = ()
    errors: Mapping[str, str] = field(default_factory=dict)
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    cache_stats: CacheStats | None = None


def plan_tiles(polygons: Iterable[PolygonWithId], zoom: int) -> list[TilePlan]:
    """Return unique tiles in first-seen order with their relevant polygons."""
    relevant: dict[TileKey, list[PolygonWithId]] = {}
    for polygon in polygons:
        if polygon.is_degenerate:
            continue
        for key in tiles_covering_ring(polygon.open_ring(), zoom):
            relevant.setdefault(key, []).append(polygon)
    return [TilePlan(key, tuple(items)) for key, items in relevant.items()]


def parameters_fingerprint(
    poses: Sequence[Pose],
    cameras: CameraAssignment,
    options: ComputeOptions,
    histogram: HistogramOptions,
) -> str:
    """Return a digest that changes whenever poses, cameras, or options change."""
    if isinstance(cameras, SingleCamera):
        camera_payload: object = {"single": cameras.camera.as_dict()}
    elif isinstance(cameras, PerPoseCameras):
        camera_payload = {
            "cameras": [camera.as_dict() for camera in cameras.cameras],
            "indices": list(cameras.indices),
        }
    else:
        raise ValueError(f"Unsupported camera assignment: {type(cameras).__name__}")
    payload = {
        "poses": [asdict(pose) for pose in poses],
        "cameras": camera_payload,
        "options": options.as_dict(),
        "histogram": asdict(histogram),
    }
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _coerce_tile_jobs(tile_jobs: int, tile_count: int) -> int:
    """Normalize requested worker count for per-tile processing."""
    jobs = int(tile_jobs)
    if jobs < 0:
        raise ValueError("tile_jobs must be >= 0")
    if tile_count <= 0:
        return 1
    if jobs == 0:
        cpu_count = os.cpu_count() or 1
        return max(1, min(cpu_count, tile_count))
    return min(jobs, tile_count)


def _fetch_tile(
    key: TileKey,
    provider: TileProvider,
    cache: TileBufferCache | None,
) -> tuple[TerrainTile | None, str | None]:
    """Return the tile, or None plus an error message when unavailable."""
    try:
        if cache is not None:
            tile = cache.get_or_load(key, provider)
        else:
            tile = provider(key)
    except Exception as exc:
        LOGGER.warning("Terrain tile fetch failed: %s", exc, extra={"tile": str(key)})
        return None, str(exc)
    if tile is None:
        LOGGER.warning("Terrain tile unavailable", extra={"tile": str(key)})
    return tile, None


def _run_tile_jobs(
    plans: list[TilePlan],
    tile_jobs: int,
    worker: Callable[[TilePlan], TileWorkResult],
    *,
    continue_on_error: bool,
    on_result: Callable[[TileWorkResult], None],
) -> None:
    """Run per-tile workers serially or via a thread pool, collecting in order."""

    def guarded(plan: TilePlan) -> TileWorkResult:
        try:
            return worker(plan)
        except Exception as exc:
            if not continue_on_error:
                raise
            LOGGER.error("Tile evaluation failed: %s", exc, extra={"tile": str(plan.key)})
            return TileWorkResult(plan.key, None, str(exc))

    if tile_jobs == 1 or len(plans) <= 1:
        for plan in plans:
            on_result(guarded(plan))
        return
    with ThreadPoolExecutor(max_workers=tile_jobs) as executor:
        futures = [executor.submit(guarded, plan) for plan in plans]
        try:
            for future in futures:
                on_result(future.result())
        except BaseException:
            for future in futures:
                future.cancel()
            raise


def run_analysis(
    provider: TileProvider,
    polygons: Sequence[PolygonWithId],
    poses: Sequence[Pose],
    cameras: CameraAssignment,
    *,
    zoom: int,
    options: ComputeOptions | None = None,
    histogram: HistogramOptions | None = None,
    tile_jobs: int = 1,
    cache: TileBufferCache | None = None,
    run: AnalysisRun | None = None,
    cancel: threading.Event | None = None,
    continue_on_error: bool = True,
) -> AnalysisResult:
    """Evaluate every tile touched by `polygons` and aggregate per polygon."""
    started = perf_counter()
    polygons = tuple(polygons)
    poses = tuple(poses)
    options = options or ComputeOptions()
    histogram = histogram or (run.histogram if run is not None else HistogramOptions())
    if zoom < 0:
        raise ValueError("zoom must be >= 0")
    cameras.resolve(len(poses))

    run = run or AnalysisRun(histogram)
    if run.sync_parameters(parameters_fingerprint(poses, cameras, options, histogram)):
        LOGGER.debug("Run parameters changed; cleared stored tile results")
    invalidated = run.sync_polygons(polygons, zoom)
    if invalidated:
        LOGGER.debug("Invalidated polygons: %s", ", ".join(invalidated))

    plans = plan_tiles(polygons, zoom)
    jobs = _coerce_tile_jobs(tile_jobs, len(plans))
    LOGGER.info("Evaluating %d tiles with %d poses (%d workers)", len(plans), len(poses), jobs)

    def process_tile(plan: TilePlan) -> TileWorkResult:
        if cancel is not None and cancel.is_set():
            return TileWorkResult(plan.key, None, cancelled=True)
        tile, error = _fetch_tile(plan.key, provider, cache)
        if tile is None:
            return TileWorkResult(plan.key, None, error, unavailable=True)
        if cancel is not None and cancel.is_set():
            return TileWorkResult(plan.key, None, cancelled=True)
        request = TileRequest(
            tile=tile,
            polygons=plan.polygons,
            poses=poses,
            cameras=cameras,
            options=options,
            histogram=histogram,
        )
        return TileWorkResult(plan.key, compute_tile(request))

    tile_results: list[TileResult] = []
    unavailable: list[TileKey] = []
    errors: dict[str, str] = {}
    cancelled = False

    def collect(work: TileWorkResult) -> None:
        nonlocal cancelled
        if work.cancelled:
            cancelled = True
            return
        if work.error is not None:
            errors[str(work.tile)] = work.error
        if work.unavailable:
            unavailable.append(work.tile)
            return
        if work.result is None:
            return
        run.merge_tile_result(work.result)
        tile_results.append(work.result)

    _run_tile_jobs(
        plans,
        jobs,
        process_tile,
        continue_on_error=continue_on_error,
        on_result=collect,
    )
    if cancelled:
        LOGGER.info("Analysis cancelled after %d tiles", len(tile_results))

    summaries = tuple(run.polygon_summary(polygon.id) for polygon in _unique_ids(polygons))
    return AnalysisResult(
        summaries=summaries,
        overall=run.overall_stats(),
        tile_results=tuple(tile_results),
        unavailable=tuple(unavailable),
        errors=errors,
        cancelled=cancelled,
        elapsed_seconds=perf_counter() - started,
        cache_stats=cache.stats() if cache is not None else None,
    )


def _unique_ids(polygons: Iterable[PolygonWithId]) -> list[PolygonWithId]:
    seen: set[str] = set()
    unique = []
    for polygon in polygons:
        if polygon.id in seen:
            continue
        seen.add(polygon.id)
        unique.append(polygon)
    return unique
