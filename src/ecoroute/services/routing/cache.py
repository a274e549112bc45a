"""Two-tier route data cache and the haversine distance memo."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from ...config import Settings, settings as default_settings
from ...models.domain import Location, VehicleType
from ...persistence.filesystem import FileStorage
from .models import RouteData

logger = logging.getLogger(__name__)


def route_cache_key(origin: Location, destination: Location, vehicle_type: VehicleType | str) -> str:
    vehicle = vehicle_type.value if isinstance(vehicle_type, VehicleType) else str(vehicle_type)
    return (
        f"{origin.lat:.4f},{origin.lng:.4f}-"
        f"{destination.lat:.4f},{destination.lng:.4f}-{vehicle}"
    )


def distance_memo_key(origin: Location, destination: Location) -> str:
    return f"{origin.lat:.6f},{origin.lng:.6f}-{destination.lat:.6f},{destination.lng:.6f}"


@dataclass(slots=True)
class CacheEntry:
    key: str
    distance_km: float
    duration_hr: float
    polyline: list[tuple[float, float]]
    timestamp: float

    def to_route_data(self) -> RouteData:
        return RouteData(
            distance_km=self.distance_km,
            duration_hr=self.duration_hr,
            polyline=list(self.polyline),
        )

    def to_document(self) -> dict:
        return {
            "key": self.key,
            "distance_km": self.distance_km,
            "duration_hr": self.duration_hr,
            "polyline": [[lat, lng] for lat, lng in self.polyline],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, document: dict) -> "CacheEntry":
        return cls(
            key=str(document["key"]),
            distance_km=float(document["distance_km"]),
            duration_hr=float(document["duration_hr"]),
            polyline=[(float(lat), float(lng)) for lat, lng in document.get("polyline") or []],
            timestamp=float(document["timestamp"]),
        )


class RouteDataCache:
    """In-memory TTL cache backed by a longer-lived JSON file tier.

    ``get``/``put``/``sweep`` touch the disk tier directly. The engine uses the
    ``aget``/``aput``/``asweep`` variants, which run file I/O in a worker thread
    and keep the in-memory tier on the event loop.
    """

    def __init__(
        self,
        storage: FileStorage | None = None,
        *,
        ttl_seconds: float | None = None,
        persistent_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        settings: Settings | None = None,
    ) -> None:
        config = settings or default_settings
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.cache_ttl_seconds
        self.persistent_ttl_seconds = (
            persistent_ttl_seconds if persistent_ttl_seconds is not None else config.persistent_cache_ttl_seconds
        )
        self.storage = storage
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._memory)

    def _document_path(self, key: str):
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]
        return self.storage.path_for(f"route_{digest}")

    def _memory_entry(self, key: str, now: float) -> CacheEntry | None:
        entry = self._memory.get(key)
        if entry is None:
            return None
        if now - entry.timestamp < self.ttl_seconds:
            return entry
        del self._memory[key]
        return None

    def _resolve(self, key: str, entry: CacheEntry | None, *, from_disk: bool) -> RouteData | None:
        if entry is None:
            self.misses += 1
            return None
        if from_disk:
            logger.debug(f"Persistent cache hit for {key}")
            self._memory[key] = entry
        self.hits += 1
        return entry.to_route_data()

    def get(self, key: str) -> RouteData | None:
        now = self._clock()
        entry = self._memory_entry(key, now)
        if entry is not None:
            return self._resolve(key, entry, from_disk=False)
        return self._resolve(key, self._load_persistent(key, now), from_disk=True)

    async def aget(self, key: str) -> RouteData | None:
        now = self._clock()
        entry = self._memory_entry(key, now)
        if entry is not None:
            return self._resolve(key, entry, from_disk=False)
        if self.storage is None:
            return self._resolve(key, None, from_disk=True)
        loaded = await asyncio.to_thread(self._load_persistent, key, now)
        return self._resolve(key, loaded, from_disk=True)

    def _remember(self, key: str, data: RouteData) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            distance_km=data.distance_km,
            duration_hr=data.duration_hr,
            polyline=list(data.polyline),
            timestamp=self._clock(),
        )
        self._memory[key] = entry
        return entry

    def put(self, key: str, data: RouteData) -> None:
        entry = self._remember(key, data)
        if self.storage is not None:
            self._persist(entry)

    async def aput(self, key: str, data: RouteData) -> None:
        entry = self._remember(key, data)
        if self.storage is not None:
            await asyncio.to_thread(self._persist, entry)

    def _persist(self, entry: CacheEntry) -> None:
        try:
            self.storage.write_json(self._document_path(entry.key), entry.to_document())
        except OSError as exc:
            logger.warning(f"Failed to persist route cache entry {entry.key}: {exc}")

    def _load_persistent(self, key: str, now: float) -> CacheEntry | None:
        if self.storage is None:
            return None
        document = self.storage.read_json(self._document_path(key))
        if not document:
            return None
        try:
            entry = CacheEntry.from_document(document)
        except (KeyError, TypeError, ValueError):
            return None
        if entry.key != key or now - entry.timestamp >= self.persistent_ttl_seconds:
            return None
        return entry

    def _sweep_memory(self, now: float) -> int:
        expired = [key for key, entry in self._memory.items() if now - entry.timestamp >= self.ttl_seconds]
        for key in expired:
            del self._memory[key]
        return len(expired)

    def _sweep_persistent(self, now: float) -> int:
        if self.storage is None:
            return 0
        removed = 0
        for path in self.storage.iter_documents():
            document = self.storage.read_json(path)
            try:
                stale = document is None or now - float(document["timestamp"]) >= self.persistent_ttl_seconds
            except (KeyError, TypeError, ValueError):
                stale = True
            if stale and self.storage.delete(path):
                removed += 1
        return removed

    def sweep(self) -> int:
        """Remove expired entries from both tiers and return how many were dropped."""
        now = self._clock()
        return self._sweep_memory(now) + self._sweep_persistent(now)

    async def asweep(self) -> int:
        now = self._clock()
        removed = self._sweep_memory(now)
        if self.storage is not None:
            removed += await asyncio.to_thread(self._sweep_persistent, now)
        return removed

    def stats(self) -> dict:
        return {
            "memory_entries": len(self._memory),
            "hits": self.hits,
            "misses": self.misses,
            "persistent": self.storage is not None,
        }


class DistanceMemo:
    """Insertion-ordered memo of haversine distances with a size ceiling."""

    def __init__(self, max_entries: int = 1000, keep_entries: int = 800) -> None:
        if keep_entries > max_entries:
            raise ValueError("keep_entries must not exceed max_entries")
        self.max_entries = max_entries
        self.keep_entries = keep_entries
        self._entries: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> float | None:
        return self._entries.get(key)

    def put(self, key: str, distance_km: float) -> None:
        self._entries[key] = distance_km

    def trim(self) -> int:
        """Keep only the most recent entries once the ceiling is exceeded."""
        if len(self._entries) <= self.max_entries:
            return 0
        removed = len(self._entries) - self.keep_entries
        for _ in range(removed):
            self._entries.popitem(last=False)
        return removed
