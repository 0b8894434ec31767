"""Bounded in-memory cache of raw terrain tile buffers."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from flightcov.overlap.models import TerrainTile, TileKey

DEFAULT_MAX_TILES = 256


@dataclass(frozen=True)
class CacheStats:
    """Hit/miss counters for diagnostics."""

    hits: int
    misses: int
    size: int
    max_tiles: int

    def as_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "max_tiles": self.max_tiles,
        }


class TileBufferCache:
    """FIFO cache of `TerrainTile` buffers keyed by `TileKey`.

    Stored tiles are private copies and readers always receive a fresh
    copy, so callers may mutate what they get back.
    """

    def __init__(self, max_tiles: int = DEFAULT_MAX_TILES) -> None:
        if max_tiles < 1:
            raise ValueError("max_tiles must be >= 1")
        self.max_tiles = max_tiles
        self._tiles: OrderedDict[TileKey, TerrainTile] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._tiles)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._tiles

    def get(self, key: TileKey) -> TerrainTile | None:
        with self._lock:
            tile = self._tiles.get(key)
            if tile is None:
                self._misses += 1
                return None
            self._hits += 1
            return tile.copy()

    def put(self, tile: TerrainTile) -> None:
        with self._lock:
            if tile.key not in self._tiles:
                while len(self._tiles) >= self.max_tiles:
                    self._tiles.popitem(last=False)
            self._tiles[tile.key] = tile.copy()

    def get_or_load(
        self,
        key: TileKey,
        loader: Callable[[TileKey], TerrainTile | None],
    ) -> TerrainTile | None:
        """Return a cached copy or load, store, and return the tile."""
        cached = self.get(key)
        if cached is not None:
            return cached
        tile = loader(key)
        if tile is None:
            return None
        self.put(tile)
        return tile.copy()

    def clear(self) -> None:
        with self._lock:
            self._tiles.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._tiles),
                max_tiles=self.max_tiles,
            )
