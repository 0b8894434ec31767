"""Polygons of interest: identity, GeoJSON loading, and ring helpers."""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, Tuple

from flightcov.overlap.crs import GEOGRAPHIC_CRS, crs_equal, transformer

LngLat = Tuple[float, float]
MEAN_EARTH_RADIUS_M = 6371008.8
SQUARE_METERS_PER_ACRE = 4046.8564224


@dataclass(frozen=True)
class PolygonWithId:
    """A single-ring polygon of interest in lon/lat degrees."""

    id: str
    ring: Tuple[LngLat, ...]

    @classmethod
    def from_ring(
        cls,
        ring: Iterable[Sequence[float]],
        polygon_id: str | None = None,
        *,
        index: int = 0,
    ) -> "PolygonWithId":
        """Build a polygon, assigning a synthetic id when none is supplied."""
        points = tuple((float(point[0]), float(point[1])) for point in ring)
        return cls(id=polygon_id or synthetic_polygon_id(index), ring=points)

    def open_ring(self) -> Tuple[LngLat, ...]:
        """Return the ring without a duplicated closing vertex."""
        if len(self.ring) > 1 and self.ring[0] == self.ring[-1]:
            return self.ring[:-1]
        return self.ring

    @property
    def is_degenerate(self) -> bool:
        return len(self.open_ring()) < 3

    def fingerprint(self) -> str:
        """Return a stable digest of the ring geometry."""
        hasher = hashlib.sha256()
        for lon, lat in self.open_ring():
            hasher.update(f"{lon:.9f},{lat:.9f};".encode("ascii"))
        return hasher.hexdigest()


@dataclass(frozen=True)
class PolygonSet:
    """Polygons loaded from a file plus CRS resolution notes."""

    polygons: Tuple[PolygonWithId, ...]
    source_crs: str
    warnings: Tuple[str, ...] = field(default_factory=tuple)


def synthetic_polygon_id(index: int) -> str:
    return f"polygon-{index + 1}"


def ring_bounds(ring: Sequence[LngLat]) -> tuple[float, float, float, float]:
    """Return (min_lon, min_lat, max_lon, max_lat) for a ring."""
    if not ring:
        raise ValueError("Polygon ring is empty.")
    lons = [point[0] for point in ring]
    lats = [point[1] for point in ring]
    return (min(lons), min(lats), max(lons), max(lats))


def polygon_area_m2(ring: Sequence[LngLat]) -> float:
    """Return the spherical-excess area of a lon/lat ring in square metres."""
    points = list(ring)
    if len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]
    if len(points) < 3:
        return 0.0
    total = 0.0
    for index, (lon1, lat1) in enumerate(points):
        lon2, lat2 = points[(index + 1) % len(points)]
        total += math.radians(lon2 - lon1) * (
            2.0 + math.sin(math.radians(lat1)) + math.sin(math.radians(lat2))
        )
    return abs(total) * MEAN_EARTH_RADIUS_M * MEAN_EARTH_RADIUS_M / 2.0


def polygon_area_acres(ring: Sequence[LngLat]) -> float:
    return polygon_area_m2(ring) / SQUARE_METERS_PER_ACRE


def _feature_id(feature: Mapping[str, Any]) -> str | None:
    properties = feature.get("properties")
    if isinstance(properties, Mapping):
        for key in ("id", "name", "polygon_id"):
            value = properties.get(key)
            if value not in (None, ""):
                return str(value)
    value = feature.get("id")
    if value not in (None, ""):
        return str(value)
    return None


def _outer_rings(geometry: Mapping[str, Any]) -> list[list[Sequence[float]]]:
    kind = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if kind == "Polygon":
        return [coords[0]] if coords else []
    if kind == "MultiPolygon":
        return [part[0] for part in coords if part]
    return []


def _extract_geojson_rings(data: Mapping[str, Any]) -> list[tuple[str | None, list]]:
    entries: list[tuple[str | None, list]] = []
    if data.get("type") == "FeatureCollection":
        features = data.get("features", [])
    elif data.get("type") == "Feature":
        features = [data]
    else:
        features = [{"type": "Feature", "geometry": data, "properties": {}}]
    for feature in features:
        geometry = feature.get("geometry")
        if not isinstance(geometry, Mapping):
            continue
        base_id = _feature_id(feature)
        rings = _outer_rings(geometry)
        for part, ring in enumerate(rings):
            ring_id = base_id
            if base_id is not None and len(rings) > 1:
                ring_id = f"{base_id}#{part + 1}"
            entries.append((ring_id, ring))
    return entries


def _extract_geojson_crs(data: Mapping[str, Any]) -> str | None:
    crs = data.get("crs")
    if isinstance(crs, Mapping):
        properties = crs.get("properties")
        if isinstance(properties, Mapping):
            name = properties.get("name")
            if isinstance(name, str):
                return name
    if isinstance(crs, str):
        return crs
    return None


def _resolve_crs(embedded: str | None, explicit: str | None) -> tuple[str, tuple[str, ...]]:
    warnings: list[str] = []
    if explicit and embedded and not crs_equal(explicit, embedded):
        warnings.append(
            f"Polygon CRS mismatch: embedded {embedded} differs from requested {explicit}."
        )
        return explicit, tuple(warnings)
    if explicit:
        return explicit, tuple(warnings)
    if embedded:
        return embedded, tuple(warnings)
    return GEOGRAPHIC_CRS, tuple(warnings)


def _reproject_ring(ring: Sequence[Sequence[float]], src_crs: str) -> list[LngLat]:
    if crs_equal(src_crs, GEOGRAPHIC_CRS):
        return [(float(point[0]), float(point[1])) for point in ring]
    tx = transformer(src_crs, GEOGRAPHIC_CRS)
    xs = [float(point[0]) for point in ring]
    ys = [float(point[1]) for point in ring]
    lons, lats = tx.transform(xs, ys)
    return list(zip((float(lon) for lon in lons), (float(lat) for lat in lats)))


def polygons_from_geojson(data: Mapping[str, Any], *, crs: str | None = None) -> PolygonSet:
    """Convert a GeoJSON object into lon/lat polygons with ids."""
    source_crs, warnings = _resolve_crs(_extract_geojson_crs(data), crs)
    polygons: list[PolygonWithId] = []
    for index, (polygon_id, ring) in enumerate(_extract_geojson_rings(data)):
        points = _reproject_ring(ring, source_crs)
        polygons.append(PolygonWithId.from_ring(points, polygon_id, index=index))
    return PolygonSet(polygons=tuple(polygons), source_crs=source_crs, warnings=warnings)


def load_polygons(path: Path, *, crs: str | None = None) -> PolygonSet:
    """Load polygons of interest from a GeoJSON file."""
    if path.suffix.lower() not in {".json", ".geojson"}:
        raise ValueError(f"Unsupported polygon format: {path.suffix}")
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, Mapping):
        raise ValueError("Polygon file must be a GeoJSON object.")
    result = polygons_from_geojson(data, crs=crs)
    if not result.polygons:
        raise ValueError(f"No polygon geometries found in {path}")
    return result


def polygons_from_payload(entries: Iterable[Mapping[str, Any]]) -> tuple[PolygonWithId, ...]:
    """Build polygons from `{"id": ..., "ring": [[lon, lat], ...]}` entries."""
    polygons = []
    for index, entry in enumerate(entries):
        ring = entry.get("ring")
        if not isinstance(ring, (list, tuple)):
            raise ValueError("Polygon entry requires a ring list.")
        polygon_id = entry.get("id")
        polygons.append(
            PolygonWithId.from_ring(ring, str(polygon_id) if polygon_id else None, index=index)
        )
    return tuple(polygons)
