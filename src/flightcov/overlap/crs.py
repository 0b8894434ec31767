"""CRS normalization and per-thread transformer helpers."""

from __future__ import annotations

import threading

from pyproj import CRS, Transformer

GEOGRAPHIC_CRS = "EPSG:4326"
MERCATOR_CRS = "EPSG:3857"

_LOCAL = threading.local()


def normalize_crs(value: str | CRS) -> CRS:
    """Normalize CRS input into a pyproj CRS object."""
    return CRS.from_user_input(value)


def crs_equal(left: str | CRS, right: str | CRS) -> bool:
    """Return True when two CRS inputs describe the same system."""
    return normalize_crs(left) == normalize_crs(right)


def transformer(src: str | CRS, dst: str | CRS) -> Transformer:
    """Return a transformer that respects lon/lat axis order.

    String pairs are cached per thread; tile workers each keep their own
    transformer instances.
    """
    if not isinstance(src, str) or not isinstance(dst, str):
        return Transformer.from_crs(normalize_crs(src), normalize_crs(dst), always_xy=True)
    cache: dict[tuple[str, str], Transformer] | None = getattr(_LOCAL, "transformers", None)
    if cache is None:
        cache = {}
        _LOCAL.transformers = cache
    key = (src, dst)
    cached = cache.get(key)
    if cached is None:
        cached = Transformer.from_crs(normalize_crs(src), normalize_crs(dst), always_xy=True)
        cache[key] = cached
    return cached
