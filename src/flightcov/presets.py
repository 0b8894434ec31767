"""Built-in and user-defined camera presets."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from flightcov.overlap.camera import CameraModel


@dataclass(frozen=True)
class CameraPreset:
    """Named camera with lookup aliases and a short description."""

    name: str
    summary: str
    camera: CameraModel
    aliases: tuple[str, ...] = ()


ENV_CAMERAS_PATH = "FLIGHTCOV_CAMERAS_PATH"
PRESET_FORMAT_VERSION = 1

_SONY_PITCH = 4.88e-6
_P1_PITCH = 4.27246e-6
_LR1_PITCH_X = 35.7e-3 / 9504
_LR1_PITCH_Y = 23.8e-3 / 6336

_PRESETS: dict[str, CameraPreset] = {
    "SONY_RX1R2": CameraPreset(
        name="SONY_RX1R2",
        summary="Sony RX1R II, 35 mm fixed lens, 42 MP full frame.",
        camera=CameraModel(
            focal_length_m=0.035,
            pixel_pitch_x_m=_SONY_PITCH,
            pixel_pitch_y_m=_SONY_PITCH,
            width_px=7952,
            height_px=5304,
            name="SONY_RX1R2",
        ),
        aliases=("RX1RII 42MP", "RX1RII", "RX1R2"),
    ),
    "DJI_ZENMUSE_P1_24MM": CameraPreset(
        name="DJI_ZENMUSE_P1_24MM",
        summary="DJI Zenmuse P1 with the 24 mm lens and calibrated principal point.",
        camera=CameraModel(
            focal_length_m=5626.690009970837 * _P1_PITCH,
            pixel_pitch_x_m=_P1_PITCH,
            pixel_pitch_y_m=_P1_PITCH,
            width_px=8192,
            height_px=5460,
            principal_x_px=4075.470103874583,
            principal_y_px=2747.220102704297,
            name="DJI_ZENMUSE_P1_24MM",
        ),
        aliases=("DJI Zenmuse P1 24mm", "Zenmuse P1 24mm", "P1 24mm", "ZENMUSE_P1_24MM"),
    ),
    "ILX_LR1_INSPECT_85MM": CameraPreset(
        name="ILX_LR1_INSPECT_85MM",
        summary="Sony ILX-LR1 with an 85 mm inspection lens.",
        camera=CameraModel(
            focal_length_m=0.085,
            pixel_pitch_x_m=_LR1_PITCH_X,
            pixel_pitch_y_m=_LR1_PITCH_Y,
            width_px=9504,
            height_px=6336,
            name="ILX_LR1_INSPECT_85MM",
        ),
        aliases=("INSPECT", "ILX-LR1 85mm", "MAPSTARHighRes_v4"),
    ),
    "MAP61_17MM": CameraPreset(
        name="MAP61_17MM",
        summary="MAP61 oblique mapping head, 17 mm lens.",
        camera=CameraModel(
            focal_length_m=0.017,
            pixel_pitch_x_m=_LR1_PITCH_X,
            pixel_pitch_y_m=_LR1_PITCH_Y,
            width_px=9504,
            height_px=6336,
            name="MAP61_17MM",
        ),
        aliases=("MAP61", "MAP61 17mm", "MAPSTAROblique_v4"),
    ),
    "RGB61_24MM": CameraPreset(
        name="RGB61_24MM",
        summary="RGB61 36 x 24 mm sensor, 24 mm lens.",
        camera=CameraModel(
            focal_length_m=0.024,
            pixel_pitch_x_m=36.0e-3 / 9504,
            pixel_pitch_y_m=24.0e-3 / 6336,
            width_px=9504,
            height_px=6336,
            name="RGB61_24MM",
        ),
        aliases=("RGB61", "RGB61 24mm", "RGB61_v4"),
    ),
}


def _normalize_name(name: str) -> str:
    return " ".join(name.strip().upper().replace("-", "_").split())


def _candidate_preset_paths(explicit_path: Path | None) -> list[Path]:
    """Return user camera preset files in priority order."""
    if explicit_path is not None:
        return [explicit_path]
    candidates: list[Path] = []
    env_path = os.environ.get(ENV_CAMERAS_PATH)
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(Path.home() / ".flightcov" / "cameras.json")
    return candidates


def _preset_from_mapping(data: Mapping[str, Any]) -> CameraPreset | None:
    """Build a preset from a mapping, returning None for invalid entries."""
    name = data.get("name")
    raw_camera = data.get("camera")
    if not isinstance(name, str) or not isinstance(raw_camera, Mapping):
        return None
    try:
        camera = CameraModel.from_dict({**raw_camera, "name": name})
    except (TypeError, ValueError):
        return None
    aliases = data.get("aliases")
    summary = data.get("summary")
    return CameraPreset(
        name=name.strip(),
        summary=summary.strip() if isinstance(summary, str) else "",
        camera=camera,
        aliases=tuple(str(item) for item in aliases) if isinstance(aliases, list) else (),
    )


def load_presets_file(path: Path) -> dict[str, CameraPreset]:
    """Load camera presets from an explicit JSON file."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    items = payload.get("cameras") if isinstance(payload, dict) else payload
    parsed: dict[str, CameraPreset] = {}
    if not isinstance(items, list):
        return parsed
    for item in items:
        if not isinstance(item, Mapping):
            continue
        preset = _preset_from_mapping(item)
        if preset:
            parsed[preset.name] = preset
    return parsed


def load_user_presets(path: Path | None = None) -> dict[str, CameraPreset]:
    """Load user camera presets from disk, if available."""
    for candidate in _candidate_preset_paths(path):
        if not candidate.exists():
            continue
        try:
            return load_presets_file(candidate)
        except (OSError, json.JSONDecodeError):
            continue
    return {}


def list_camera_presets(
    *, include_user: bool = True, user_path: Path | None = None
) -> tuple[CameraPreset, ...]:
    """Return all camera presets sorted by name."""
    merged = dict(_PRESETS)
    if include_user:
        merged.update(load_user_presets(user_path))
    return tuple(merged[name] for name in sorted(merged))


def get_camera_preset(
    name: str, *, include_user: bool = True, user_path: Path | None = None
) -> CameraPreset | None:
    """Return a preset by name or alias, case-insensitive."""
    key = _normalize_name(name)
    for preset in list_camera_presets(include_user=include_user, user_path=user_path):
        names = (preset.name, *preset.aliases)
        if any(_normalize_name(candidate) == key for candidate in names):
            return preset
    return None


def preset_as_dict(preset: CameraPreset) -> dict[str, Any]:
    """Return a JSON-serializable representation of a camera preset."""
    return {
        "name": preset.name,
        "summary": preset.summary,
        "aliases": list(preset.aliases),
        "camera": preset.camera.as_dict(),
    }


def format_preset(preset: CameraPreset) -> str:
    """Format a camera preset as a human-readable block."""
    camera = preset.camera
    lines = [f"Camera: {preset.name}"]
    if preset.summary:
        lines.append(f"Summary: {preset.summary}")
    lines.append(f"Focal length: {camera.focal_length_m * 1000:.2f} mm")
    lines.append(
        f"Pixel pitch: {camera.pixel_pitch_x_m * 1e6:.3f} x {camera.pixel_pitch_y_m * 1e6:.3f} um"
    )
    lines.append(f"Sensor: {camera.width_px} x {camera.height_px} px")
    if preset.aliases:
        lines.append(f"Aliases: {', '.join(preset.aliases)}")
    return "\n".join(lines)
