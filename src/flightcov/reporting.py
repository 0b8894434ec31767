"""Analysis report construction helpers."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from flightcov.contracts import SCHEMA_VERSION
from flightcov.overlap.pipeline import AnalysisResult


def _utc_now() -> str:
    """Return the current UTC timestamp as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


def tile_statuses(result: AnalysisResult) -> list[dict[str, Any]]:
    """Return per-tile status entries ordered by tile key."""
    entries: dict[str, dict[str, Any]] = {}
    for tile in result.tile_results:
        entries[str(tile.tile)] = {
            "tile": str(tile.tile),
            "status": "ok",
            "active_pixels": tile.active_pixels,
            "covered_pixels": tile.covered_pixels,
            "candidate_poses": tile.candidate_poses,
            "max_overlap": tile.max_overlap,
            "min_gsd": _finite_or_none(tile.min_gsd),
            "culling_fallback": tile.culling_fallback,
            "compute_seconds": round(tile.compute_seconds, 6),
        }
    for key in result.unavailable:
        entry: dict[str, Any] = {"tile": str(key), "status": "unavailable"}
        if str(key) in result.errors:
            entry["error"] = result.errors[str(key)]
        entries[str(key)] = entry
    for key, error in result.errors.items():
        if key not in entries:
            entries[key] = {"tile": key, "status": "error", "error": error}
    return [entries[key] for key in sorted(entries)]


def build_report(
    *,
    result: AnalysisResult,
    inputs: Mapping[str, Any],
    warnings: Iterable[str] = (),
) -> dict[str, Any]:
    """Create an analysis report dictionary."""
    errors = [f"{tile}: {message}" for tile, message in sorted(result.errors.items())]
    report: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "created_at": _utc_now(),
        "inputs": dict(inputs),
        "polygons": [summary.as_dict() for summary in result.summaries],
        "overall": result.overall.as_dict(),
        "tiles": tile_statuses(result),
        "cancelled": result.cancelled,
        "elapsed_seconds": round(result.elapsed_seconds, 6),
        "warnings": list(warnings),
        "errors": errors,
    }
    if result.cache_stats is not None:
        report["cache"] = result.cache_stats.as_dict()
    return report


def format_summary(report: Mapping[str, Any]) -> str:
    """Return a short human-readable summary of a report."""
    lines = []
    for polygon in report.get("polygons", []):
        gsd = polygon["gsd"]
        if gsd["count"]:
            gsd_text = (
                f"GSD {gsd['min'] * 100:.2f}-{gsd['max'] * 100:.2f} cm "
                f"(mean {gsd['mean'] * 100:.2f} cm)"
            )
        else:
            gsd_text = "no coverage"
        lines.append(
            f"{polygon['polygon_id']}: {polygon['image_count']} images, "
            f"{polygon['area_acres']:.2f} acres, {gsd_text}"
        )
    unavailable = [tile["tile"] for tile in report.get("tiles", []) if tile["status"] != "ok"]
    if unavailable:
        lines.append(f"Unavailable tiles: {', '.join(unavailable)}")
    return "\n".join(lines)
