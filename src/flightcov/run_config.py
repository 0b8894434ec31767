"""Run config loading and normalization helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from flightcov.contracts import validate_run_config
from flightcov.overlap.camera import (
    CameraAssignment,
    CameraModel,
    PerPoseCameras,
    Pose,
    SingleCamera,
)
from flightcov.overlap.crs import GEOGRAPHIC_CRS, MERCATOR_CRS, crs_equal, transformer
from flightcov.overlap.mercator import lnglat_to_meters
from flightcov.overlap.models import ComputeOptions
from flightcov.overlap.polygons import PolygonWithId, load_polygons, polygons_from_payload
from flightcov.overlap.stats import HistogramOptions
from flightcov.planning import FlightParameters, plan_pose_grid
from flightcov.presets import get_camera_preset

DEFAULT_TILE_TEMPLATE = "{z}/{x}/{y}.png"


@dataclass(frozen=True)
class RunConfig:
    """Normalized analysis run configuration."""

    zoom: int
    polygons: tuple[PolygonWithId, ...]
    poses: tuple[Pose, ...]
    cameras: CameraAssignment
    camera_models: tuple[CameraModel, ...]
    options: ComputeOptions = field(default_factory=ComputeOptions)
    histogram: HistogramOptions = field(default_factory=HistogramOptions)
    tiles_dir: Path | None = None
    tile_template: str = DEFAULT_TILE_TEMPLATE
    tile_jobs: int = 1
    continue_on_error: bool = True
    cache_tiles: int = 256
    warnings: tuple[str, ...] = ()

    def inputs_summary(self) -> dict[str, Any]:
        return {
            "zoom": self.zoom,
            "pose_count": len(self.poses),
            "camera_count": len(self.camera_models),
            "polygon_count": len(self.polygons),
            "tiles_dir": str(self.tiles_dir) if self.tiles_dir else None,
            "options": self.options.as_dict(),
            "histogram": {
                "max_bins": self.histogram.max_bins,
                "min_bin_width_m": self.histogram.min_bin_width_m,
            },
        }


def resolve_camera(value: str | Mapping[str, Any]) -> CameraModel:
    """Resolve a preset name or explicit camera mapping into a `CameraModel`."""
    if isinstance(value, str):
        preset = get_camera_preset(value)
        if preset is None:
            raise ValueError(f"Unknown camera preset: {value}")
        return preset.camera
    return CameraModel.from_dict(value)


def _camera_models(payload: Mapping[str, Any]) -> tuple[CameraModel, ...]:
    raw = payload.get("cameras")
    if raw is None:
        raw = [payload["camera"]]
    return tuple(resolve_camera(item) for item in raw)


def _project_positions(
    entries: Sequence[Mapping[str, Any]],
    crs: str,
) -> list[tuple[float, float]]:
    """Return pose positions in EPSG:3857 metres."""
    xs = [float(entry["x"]) for entry in entries]
    ys = [float(entry["y"]) for entry in entries]
    if not entries or crs_equal(crs, MERCATOR_CRS):
        return list(zip(xs, ys))
    if crs_equal(crs, GEOGRAPHIC_CRS):
        out_x, out_y = lnglat_to_meters(xs, ys)
    else:
        out_x, out_y = transformer(crs, MERCATOR_CRS).transform(xs, ys)
    return [(float(x), float(y)) for x, y in zip(out_x, out_y)]


def _explicit_poses(
    entries: Sequence[Mapping[str, Any]],
    crs: str,
) -> tuple[list[Pose], list[int]]:
    positions = _project_positions(entries, crs)
    poses: list[Pose] = []
    indices: list[int] = []
    for entry, (x, y) in zip(entries, positions):
        poses.append(
            Pose(
                x=x,
                y=y,
                z=float(entry["z"]),
                omega_deg=float(entry.get("omega_deg", 0.0)),
                phi_deg=float(entry.get("phi_deg", 0.0)),
                kappa_deg=float(entry.get("kappa_deg", 0.0)),
                polygon_id=entry.get("polygon_id"),
                id=entry.get("id"),
            )
        )
        indices.append(int(entry.get("camera_index", 0)))
    return poses, indices


def _load_config_polygons(
    payload: Mapping[str, Any],
    base_dir: Path,
) -> tuple[tuple[PolygonWithId, ...], tuple[str, ...]]:
    if "polygons" in payload:
        return polygons_from_payload(payload["polygons"]), ()
    path = Path(payload["polygons_file"])
    if not path.is_absolute():
        path = base_dir / path
    loaded = load_polygons(path, crs=payload.get("polygons_crs"))
    return loaded.polygons, loaded.warnings


def normalize_run_config(payload: Mapping[str, Any], *, base_dir: Path | None = None) -> RunConfig:
    """Validate and normalize a raw run config payload."""
    validate_run_config(payload)
    base_dir = base_dir or Path.cwd()
    cameras = _camera_models(payload)
    polygons, warnings = _load_config_polygons(payload, base_dir)

    poses, indices = _explicit_poses(
        payload.get("poses", []), str(payload.get("poses_crs", MERCATOR_CRS))
    )
    flight_payload = payload.get("flight")
    if isinstance(flight_payload, Mapping):
        flight = FlightParameters(**flight_payload)
        for polygon in polygons:
            planned = plan_pose_grid(polygon, cameras[0], flight)
            poses.extend(planned)
            indices.extend([0] * len(planned))

    assignment: CameraAssignment
    if len(cameras) == 1 and all(index == 0 for index in indices):
        assignment = SingleCamera(cameras[0])
    else:
        assignment = PerPoseCameras(cameras=cameras, indices=tuple(indices))
    assignment.resolve(len(poses))

    tiles_dir = payload.get("tiles_dir")
    tiles_path = Path(tiles_dir) if tiles_dir else None
    if tiles_path is not None and not tiles_path.is_absolute():
        tiles_path = base_dir / tiles_path
    return RunConfig(
        zoom=int(payload["zoom"]),
        polygons=polygons,
        poses=tuple(poses),
        cameras=assignment,
        camera_models=cameras,
        options=ComputeOptions(**dict(payload.get("options", {}))),
        histogram=HistogramOptions(**dict(payload.get("histogram", {}))),
        tiles_dir=tiles_path,
        tile_template=str(payload.get("tile_template", DEFAULT_TILE_TEMPLATE)),
        tile_jobs=int(payload.get("tile_jobs", 1)),
        continue_on_error=bool(payload.get("continue_on_error", True)),
        cache_tiles=int(payload.get("cache_tiles", 256)),
        warnings=tuple(warnings),
    )


def load_run_config(path: Path) -> RunConfig:
    """Load a run config JSON file; relative paths resolve against its folder."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, Mapping):
        raise ValueError("Run config must be a JSON object.")
    return normalize_run_config(payload, base_dir=path.resolve().parent)
