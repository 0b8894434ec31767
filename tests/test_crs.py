from __future__ import annotations

import threading

import pytest

from flightcov.overlap.crs import crs_equal, normalize_crs, transformer


def test_transformer_axis_order() -> None:
    x, y = transformer("EPSG:4326", "EPSG:3857").transform(2.0, 1.0)
    assert 200000 < x < 300000
    assert 100000 < y < 200000


def test_crs_equal_accepts_mixed_inputs() -> None:
    assert crs_equal("EPSG:3857", normalize_crs("epsg:3857"))
    assert not crs_equal("EPSG:4326", "EPSG:3857")


def test_transformers_cached_per_thread() -> None:
    first = transformer("EPSG:4326", "EPSG:3857")
    assert transformer("EPSG:4326", "EPSG:3857") is first

    seen = []
    thread = threading.Thread(target=lambda: seen.append(transformer("EPSG:4326", "EPSG:3857")))
    thread.start()
    thread.join()
    assert seen and seen[0] is not first


def test_transformer_from_crs_objects() -> None:
    forward = transformer(normalize_crs("EPSG:4326"), normalize_crs("EPSG:32631"))
    x, _ = forward.transform(3.0, 0.0)
    assert x == pytest.approx(500000.0, abs=1.0)
