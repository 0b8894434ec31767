"""GSD summary statistics and histogram re-binning."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Tuple

import numpy as np


@dataclass(frozen=True)
class HistogramOptions:
    """Binning limits shared by per-tile and merged histograms."""

    max_bins: int = 20
    min_bin_width_m: float = 0.01

    def __post_init__(self) -> None:
        if self.max_bins < 1:
            raise ValueError("max_bins must be >= 1")
        if self.min_bin_width_m <= 0:
            raise ValueError("min_bin_width_m must be > 0")


@dataclass(frozen=True)
class HistogramBin:
    """One histogram bucket keyed by its GSD bin centre (metres/pixel)."""

    center: float
    count: int
    area_m2: float


@dataclass(frozen=True)
class GSDStats:
    """Summary of GSD samples over an area."""

    min: float
    max: float
    mean: float
    count: int
    total_area_m2: float
    histogram: Tuple[HistogramBin, ...] = ()

    @classmethod
    def empty(cls) -> "GSDStats":
        return cls(min=0.0, max=0.0, mean=0.0, count=0, total_area_m2=0.0, histogram=())

    def as_dict(self) -> dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "count": self.count,
            "total_area_m2": self.total_area_m2,
            "histogram": [
                {"bin": item.center, "count": item.count, "area_m2": item.area_m2}
                for item in self.histogram
            ],
        }


def _bin_axis(low: float, high: float, options: HistogramOptions) -> tuple[int, float]:
    """Return the bin count and width for a [low, high] axis."""
    span = high - low
    if span <= 0:
        return 1, 0.0
    bins = int(math.floor(span / options.min_bin_width_m + 1e-9))
    bins = max(1, min(options.max_bins, bins))
    return bins, span / bins


def _bin_indices(values: np.ndarray, low: float, bins: int, width: float) -> np.ndarray:
    if width <= 0:
        return np.zeros(values.shape, dtype=np.int64)
    indices = np.floor((values - low) / width).astype(np.int64)
    return np.clip(indices, 0, bins - 1)


def _bin_centers(low: float, bins: int, width: float) -> np.ndarray:
    return low + (np.arange(bins, dtype=np.float64) + 0.5) * width


def gsd_stats_from_samples(
    values: np.ndarray,
    pixel_area_m2: float,
    options: HistogramOptions | None = None,
) -> GSDStats:
    """Summarize per-pixel GSD samples into a `GSDStats` with a histogram."""
    options = options or HistogramOptions()
    samples = np.asarray(values, dtype=np.float64).ravel()
    samples = samples[np.isfinite(samples) & (samples > 0)]
    if samples.size == 0:
        return GSDStats.empty()
    low = float(samples.min())
    high = float(samples.max())
    bins, width = _bin_axis(low, high, options)
    counts = np.bincount(_bin_indices(samples, low, bins, width), minlength=bins)
    centers = _bin_centers(low, bins, width)
    histogram = tuple(
        HistogramBin(center=float(center), count=int(count), area_m2=float(count) * pixel_area_m2)
        for center, count in zip(centers, counts)
    )
    return GSDStats(
        min=low,
        max=high,
        mean=float(samples.mean()),
        count=int(samples.size),
        total_area_m2=float(samples.size) * pixel_area_m2,
        histogram=histogram,
    )


def merge_gsd_stats(
    stats: Iterable[GSDStats],
    options: HistogramOptions | None = None,
) -> GSDStats:
    """Merge stats from several tiles onto one shared histogram axis.

    Every input bin is re-mapped by its centre onto the global
    [min, max] axis, so sample counts and areas are conserved even when
    the per-tile bin boundaries disagree.
    """
    options = options or HistogramOptions()
    valid = [item for item in stats if item.count > 0]
    if not valid:
        return GSDStats.empty()
    low = min(item.min for item in valid)
    high = max(item.max for item in valid)
    total_count = sum(item.count for item in valid)
    total_area = sum(item.total_area_m2 for item in valid)
    mean = sum(item.mean * item.count for item in valid) / total_count

    bins, width = _bin_axis(low, high, options)
    counts = np.zeros(bins, dtype=np.int64)
    areas = np.zeros(bins, dtype=np.float64)
    for item in valid:
        if not item.histogram:
            # Bin-less stats still carry samples; credit them at their mean.
            index = int(_bin_indices(np.array([item.mean]), low, bins, width)[0])
            counts[index] += item.count
            areas[index] += item.total_area_m2
            continue
        centers = np.array([entry.center for entry in item.histogram], dtype=np.float64)
        indices = _bin_indices(centers, low, bins, width)
        for index, entry in zip(indices, item.histogram):
            counts[index] += entry.count
            areas[index] += entry.area_m2

    histogram = tuple(
        HistogramBin(center=float(center), count=int(count), area_m2=float(area))
        for center, count, area in zip(_bin_centers(low, bins, width), counts, areas)
    )
    return GSDStats(
        min=low,
        max=high,
        mean=mean,
        count=total_count,
        total_area_m2=total_area,
        histogram=histogram,
    )
