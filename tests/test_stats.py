from __future__ import annotations

import numpy as np
import pytest

from flightcov.overlap.stats import (
    GSDStats,
    HistogramBin,
    HistogramOptions,
    gsd_stats_from_samples,
    merge_gsd_stats,
)


def test_histogram_options_validate() -> None:
    with pytest.raises(ValueError, match="max_bins"):
        HistogramOptions(max_bins=0)
    with pytest.raises(ValueError, match="min_bin_width_m"):
        HistogramOptions(min_bin_width_m=0.0)


def test_stats_from_samples_ignores_invalid_values() -> None:
    values = np.array([0.02, 0.04, np.inf, np.nan, 0.0, 0.06])
    stats = gsd_stats_from_samples(values, 2.0)
    assert stats.count == 3
    assert stats.min == pytest.approx(0.02)
    assert stats.max == pytest.approx(0.06)
    assert stats.mean == pytest.approx(0.04)
    assert stats.total_area_m2 == pytest.approx(6.0)
    assert sum(item.count for item in stats.histogram) == 3


def test_bin_width_floor_limits_bin_count() -> None:
    values = np.linspace(0.010, 0.035, 50)
    stats = gsd_stats_from_samples(values, 1.0, HistogramOptions(max_bins=20, min_bin_width_m=0.01))
    assert len(stats.histogram) == 2
    wide = gsd_stats_from_samples(np.linspace(0.0, 5.0, 500)[1:], 1.0)
    assert len(wide.histogram) == 20


def test_single_value_gets_single_bin() -> None:
    stats = gsd_stats_from_samples(np.full(4, 0.0139), 0.5)
    assert len(stats.histogram) == 1
    assert stats.histogram[0].center == pytest.approx(0.0139)
    assert stats.histogram[0].area_m2 == pytest.approx(2.0)


def test_empty_samples() -> None:
    stats = gsd_stats_from_samples(np.array([]), 1.0)
    assert stats == GSDStats.empty()
    assert merge_gsd_stats([stats]) == GSDStats.empty()


def test_merge_conserves_counts_and_area() -> None:
    rng = np.random.default_rng(7)
    first = gsd_stats_from_samples(rng.uniform(0.01, 0.05, 300), 4.0)
    second = gsd_stats_from_samples(rng.uniform(0.03, 0.20, 120), 3.0)
    merged = merge_gsd_stats([first, second])

    assert merged.count == 420
    assert sum(item.count for item in merged.histogram) == 420
    assert sum(item.area_m2 for item in merged.histogram) == pytest.approx(300 * 4.0 + 120 * 3.0)
    assert merged.total_area_m2 == pytest.approx(1560.0)
    assert merged.min == pytest.approx(min(first.min, second.min))
    assert merged.max == pytest.approx(max(first.max, second.max))
    assert merged.mean == pytest.approx((first.mean * 300 + second.mean * 120) / 420)
    assert len(merged.histogram) <= 20


def test_merge_credits_binless_stats_at_mean() -> None:
    bare = GSDStats(min=0.02, max=0.02, mean=0.02, count=5, total_area_m2=10.0)
    binned = GSDStats(
        min=0.05,
        max=0.05,
        mean=0.05,
        count=1,
        total_area_m2=1.0,
        histogram=(HistogramBin(center=0.05, count=1, area_m2=1.0),),
    )
    merged = merge_gsd_stats([bare, binned])
    assert merged.histogram[0].count == 5
    assert merged.histogram[-1].count == 1


def test_as_dict_layout() -> None:
    payload = gsd_stats_from_samples(np.array([0.02]), 1.0).as_dict()
    assert payload["histogram"] == [{"bin": 0.02, "count": 1, "area_m2": 1.0}]
