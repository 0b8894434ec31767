"""Command-line interface for flightcov."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import jsonschema

from flightcov import __version__
from flightcov.contracts import validate_analysis_report
from flightcov.logging_utils import LogOptions, configure_logging
from flightcov.overlap.cache import TileBufferCache
from flightcov.overlap.pipeline import run_analysis
from flightcov.overlap.terrain import DirectoryTileProvider
from flightcov.planning import forward_spacing, line_spacing, nominal_gsd
from flightcov.presets import format_preset, get_camera_preset, list_camera_presets, preset_as_dict
from flightcov.reporting import build_report, format_summary
from flightcov.run_config import load_run_config

LOGGER = logging.getLogger("flightcov.cli")


def _add_analyze_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the analyze subcommand."""
    analyze = subparsers.add_parser(
        "analyze",
        help="Compute overlap and GSD statistics for a run config.",
    )
    analyze.add_argument("config", help="Run config JSON file.")
    analyze.add_argument(
        "--tiles-dir",
        help="Directory of Terrain-RGB tiles (overrides the config).",
    )
    analyze.add_argument(
        "--jobs",
        type=int,
        help="Tile workers (0 = auto, overrides the config).",
    )
    analyze.add_argument(
        "--output",
        help="Write the JSON report here instead of stdout.",
    )
    analyze.add_argument(
        "--fail-fast",
        action="store_true",
        help="Stop on the first tile evaluation error.",
    )


def _add_cameras_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the camera preset listing subcommand."""
    cameras = subparsers.add_parser("cameras", help="List built-in and user camera presets.")
    cameras.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format.",
    )


def _add_gsd_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the nominal GSD/spacing calculator."""
    gsd = subparsers.add_parser("gsd", help="Nominal GSD and photo spacing for a camera.")
    gsd.add_argument("--camera", required=True, help="Camera preset name or alias.")
    gsd.add_argument("--altitude", type=float, required=True, help="Altitude above ground (m).")
    gsd.add_argument("--front", type=float, default=80.0, help="Front overlap percent.")
    gsd.add_argument("--side", type=float, default=70.0, help="Side overlap percent.")
    gsd.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format.",
    )


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _run_analyze(args: argparse.Namespace) -> int:
    try:
        config = load_run_config(Path(args.config))
    except (OSError, ValueError, jsonschema.ValidationError) as exc:
        message = exc.message if isinstance(exc, jsonschema.ValidationError) else str(exc)
        LOGGER.error("Invalid run config: %s", message)
        return 1
    for warning in config.warnings:
        LOGGER.warning(warning)

    tiles_dir = Path(args.tiles_dir) if args.tiles_dir else config.tiles_dir
    if tiles_dir is None:
        LOGGER.error("A tiles directory is required (--tiles-dir or tiles_dir in the config).")
        return 1
    tile_jobs = args.jobs if args.jobs is not None else config.tile_jobs
    if tile_jobs < 0:
        LOGGER.error("--jobs must be >= 0")
        return 1

    result = run_analysis(
        DirectoryTileProvider(tiles_dir, config.tile_template),
        config.polygons,
        config.poses,
        config.cameras,
        zoom=config.zoom,
        options=config.options,
        histogram=config.histogram,
        tile_jobs=tile_jobs,
        cache=TileBufferCache(config.cache_tiles),
        continue_on_error=config.continue_on_error and not args.fail_fast,
    )
    report = build_report(result=result, inputs=config.inputs_summary(), warnings=config.warnings)
    validate_analysis_report(report)

    text = json.dumps(report, indent=2)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        LOGGER.info("Report written to %s", output)
    else:
        print(text)
    summary = format_summary(report)
    if summary:
        LOGGER.info("%s", summary)
    if report["errors"]:
        LOGGER.error("Analysis completed with %d tile errors.", len(report["errors"]))
        return 1
    return 0


def _run_cameras(args: argparse.Namespace) -> int:
    presets = list_camera_presets()
    if args.format == "json":
        print(json.dumps([preset_as_dict(preset) for preset in presets], indent=2))
        return 0
    print("\n\n".join(format_preset(preset) for preset in presets))
    return 0


def _run_gsd(args: argparse.Namespace) -> int:
    preset = get_camera_preset(args.camera)
    if preset is None:
        LOGGER.error("Unknown camera preset: %s", args.camera)
        return 1
    try:
        payload = {
            "camera": preset.name,
            "altitude_m": args.altitude,
            "gsd_m": nominal_gsd(preset.camera, args.altitude),
            "forward_spacing_m": forward_spacing(preset.camera, args.altitude, args.front),
            "line_spacing_m": line_spacing(preset.camera, args.altitude, args.side),
        }
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 1
    if args.format == "json":
        print(json.dumps(payload, indent=2))
        return 0
    print(f"Camera: {payload['camera']}")
    print(f"GSD: {payload['gsd_m'] * 100:.2f} cm/px at {args.altitude:g} m")
    print(f"Forward spacing: {payload['forward_spacing_m']:.1f} m ({args.front:g}% front)")
    print(f"Line spacing: {payload['line_spacing_m']:.1f} m ({args.side:g}% side)")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="flightcov",
        description="Aerial survey overlap and GSD analysis",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_analyze_parser(subparsers)
    _add_cameras_parser(subparsers)
    _add_gsd_parser(subparsers)
    _add_version_parser(subparsers)
    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=args.verbose or 0,
            quiet=bool(args.quiet),
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=bool(args.log_json),
        )
    )
    if args.command == "version":
        print(__version__)
        return 0
    if args.command == "cameras":
        return _run_cameras(args)
    if args.command == "gsd":
        return _run_gsd(args)
    if args.command == "analyze":
        return _run_analyze(args)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
