"""Tool registry: factories by (tool type, name) and a bounded instance cache."""

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable

from ..errors import ToolNotFoundError
from .base import Tool

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30 * 60  # Seconds an idle instance stays cached
DEFAULT_CLEANUP_INTERVAL = 10 * 60
DEFAULT_MAX_CACHE_SIZE = 100

# Rough per-entry costs for the memory estimate in check_health
REGISTRATION_BYTES = 512
CACHED_INSTANCE_BYTES = 2 * 1024
MEMORY_THRESHOLD_BYTES = 512 * 1024 * 1024
MAX_CACHE_RATIO = 5

ToolFactory = Callable[[str, dict[str, Any]], Tool]


@dataclass
class ToolMetadata:
    """Descriptive metadata for a registered tool."""

    version: str = "1.0.0"
    description: str = ""
    category: str = "core"
    tags: list[str] = field(default_factory=list)
    enabled: bool = True
    author: str | None = None


@dataclass
class ToolRegistration:
    tool_type: str
    name: str
    factory: ToolFactory
    metadata: ToolMetadata
    registered_at: float


@dataclass
class CachedTool:
    instance: Tool
    created_at: float
    last_used: float
    in_use: bool = False
    use_count: int = 0


@dataclass
class SearchCriteria:
    """Filters for ``ToolRegistry.search``; unset fields match everything."""

    tool_type: str | None = None
    name: str | None = None  # Substring match
    category: str | None = None
    tags: list[str] = field(default_factory=list)  # All must match
    enabled: bool | None = None


@dataclass
class RegistryHealth:
    healthy: bool
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)


def options_hash(options: dict[str, Any] | None) -> str:
    """Stable hash of tool options for cache keys."""
    if not options:
        return "-"
    encoded = json.dumps(options, sort_keys=True, default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()[:12]


class ToolRegistry:
    """Catalog of tool factories with cached, reusable instances.

    Construct one per process (or per run in tests) and pass it to the
    executor. Cached instances idle longer than ``ttl`` are evicted by
    ``cleanup_expired`` (run periodically once ``start_eviction`` is called);
    the cache never grows beyond ``max_cache_size``.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.cleanup_interval = cleanup_interval
        self.max_cache_size = max_cache_size
        self._clock = clock
        self._registrations: dict[str, ToolRegistration] = {}
        self._cache: OrderedDict[tuple[str, str, str], CachedTool] = OrderedDict()
        self._eviction_task: asyncio.Task | None = None
        self._evicted: list[Tool] = []  # Dropped from the cache, awaiting cleanup
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _key(tool_type: str, name: str) -> str:
        return f"{tool_type}:{name}"

    def register(
        self,
        tool_type: str,
        name: str,
        factory: ToolFactory,
        metadata: ToolMetadata | None = None,
    ) -> None:
        """Register (or replace) a tool factory."""
        key = self._key(tool_type, name)
        if key in self._registrations:
            logger.debug(f"Replacing tool registration {key}")
            self._drop_cached(tool_type, name)
        self._registrations[key] = ToolRegistration(
            tool_type=tool_type,
            name=name,
            factory=factory,
            metadata=metadata or ToolMetadata(),
            registered_at=self._clock(),
        )

    def unregister(self, tool_type: str, name: str = "default") -> bool:
        """Remove a registration and its cached instances."""
        removed = self._registrations.pop(self._key(tool_type, name), None)
        self._drop_cached(tool_type, name)
        return removed is not None

    def _drop_cached(self, tool_type: str, name: str) -> None:
        for cache_key in [k for k in self._cache if k[0] == tool_type and k[1] == name]:
            self._evicted.append(self._cache.pop(cache_key).instance)

    def is_registered(self, tool_type: str, name: str = "default") -> bool:
        return self._key(tool_type, name) in self._registrations

    def is_enabled(self, tool_type: str, name: str = "default") -> bool:
        registration = self._registrations.get(self._key(tool_type, name))
        return registration is not None and registration.metadata.enabled

    def get_registration(self, tool_type: str, name: str = "default") -> ToolRegistration | None:
        return self._registrations.get(self._key(tool_type, name))

    def resolve(
        self,
        tool_type: str,
        name: str = "default",
        options: dict[str, Any] | None = None,
        force_new: bool = False,
        use_cache: bool = True,
    ) -> Tool:
        """
        Return a tool instance, reusing an idle cached one when possible.

        An instance returned from the cache is marked in use until
        ``release``. If the cached instance is busy, or caching is disabled,
        a transient instance is created; the caller owns its cleanup.

        Raises:
            ToolNotFoundError: If nothing is registered, or the tool is disabled
        """
        registration = self._registrations.get(self._key(tool_type, name))
        if registration is None:
            available = ", ".join(sorted(self._registrations)) or "none"
            raise ToolNotFoundError(f"No tool registered for '{tool_type}:{name}'. Available: {available}")
        if not registration.metadata.enabled:
            raise ToolNotFoundError(f"Tool '{tool_type}:{name}' is disabled")

        cache_key = (tool_type, name, options_hash(options))
        now = self._clock()

        if use_cache and not force_new:
            cached = self._cache.get(cache_key)
            if cached is not None and not cached.in_use:
                cached.in_use = True
                cached.last_used = now
                cached.use_count += 1
                self._cache.move_to_end(cache_key)
                self._hits += 1
                return cached.instance

        self._misses += 1
        instance = registration.factory(name, dict(options or {}))

        if use_cache and cache_key not in self._cache:
            self._evict_for_space()
            if len(self._cache) < self.max_cache_size:
                self._cache[cache_key] = CachedTool(
                    instance=instance, created_at=now, last_used=now, in_use=True, use_count=1
                )
        return instance

    def release(self, tool: Tool) -> bool:
        """Mark a cached instance idle. Returns False for transient instances."""
        for cached in self._cache.values():
            if cached.instance is tool:
                cached.in_use = False
                cached.last_used = self._clock()
                return True
        return False

    def _evict_for_space(self) -> None:
        while len(self._cache) >= self.max_cache_size:
            # OrderedDict order is least-recently-used first
            victim = next((k for k, v in self._cache.items() if not v.in_use), None)
            if victim is None:
                return
            logger.debug(f"Evicting tool instance {victim[0]}:{victim[1]} (cache full)")
            self._evicted.append(self._cache.pop(victim).instance)

    def cleanup_expired(self) -> list[Tool]:
        """Evict idle instances past the TTL. Returns the evicted instances."""
        now = self._clock()
        expired = [k for k, v in self._cache.items() if not v.in_use and now - v.last_used > self.ttl]
        evicted = [self._cache.pop(k).instance for k in expired]
        if evicted:
            logger.debug(f"Evicted {len(evicted)} expired tool instance(s)")
        return evicted

    async def cleanup_evicted(self) -> int:
        """Clean up instances dropped from the cache by size eviction or unregister.

        Instances still executing stay pending until a later call. Cleanup
        failures are logged. Returns the number of instances cleaned up.
        """
        pending, self._evicted = self._evicted, []
        cleaned = 0
        for tool in pending:
            if tool.is_executing:
                self._evicted.append(tool)
                continue
            try:
                await tool.cleanup()
                cleaned += 1
            except Exception as e:
                logger.warning(f"Cleanup of evicted {tool!r} failed: {e}")
        return cleaned

    async def _eviction_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self._evicted.extend(self.cleanup_expired())
            await self.cleanup_evicted()

    @property
    def eviction_running(self) -> bool:
        return self._eviction_task is not None and not self._eviction_task.done()

    def start_eviction(self) -> None:
        """Start periodic eviction on the running event loop."""
        if self._eviction_task is None or self._eviction_task.done():
            self._eviction_task = asyncio.get_running_loop().create_task(self._eviction_loop())

    async def stop_eviction(self) -> None:
        if self._eviction_task is not None:
            self._eviction_task.cancel()
            try:
                await self._eviction_task
            except asyncio.CancelledError:
                pass
            self._eviction_task = None

    def search(self, criteria: SearchCriteria | None = None, **filters: Any) -> list[ToolRegistration]:
        """Registrations matching every given criterion."""
        criteria = criteria or SearchCriteria(**filters)
        matches = []
        for registration in self._registrations.values():
            metadata = registration.metadata
            if criteria.tool_type and registration.tool_type != criteria.tool_type:
                continue
            if criteria.name and criteria.name.lower() not in registration.name.lower():
                continue
            if criteria.category and metadata.category != criteria.category:
                continue
            if criteria.tags and not set(criteria.tags) <= set(metadata.tags):
                continue
            if criteria.enabled is not None and metadata.enabled != criteria.enabled:
                continue
            matches.append(registration)
        return sorted(matches, key=lambda r: (r.tool_type, r.name))

    def get_stats(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        by_category: dict[str, int] = {}
        for registration in self._registrations.values():
            by_type[registration.tool_type] = by_type.get(registration.tool_type, 0) + 1
            category = registration.metadata.category
            by_category[category] = by_category.get(category, 0) + 1
        lookups = self._hits + self._misses
        return {
            "total_registrations": len(self._registrations),
            "enabled": sum(1 for r in self._registrations.values() if r.metadata.enabled),
            "by_type": by_type,
            "by_category": by_category,
            "cached_instances": len(self._cache),
            "instances_in_use": sum(1 for c in self._cache.values() if c.in_use),
            "cache_hits": self._hits,
            "cache_misses": self._misses,
            "cache_hit_rate": self._hits / lookups if lookups else 0.0,
        }

    def estimated_memory(self) -> int:
        return len(self._registrations) * REGISTRATION_BYTES + len(self._cache) * CACHED_INSTANCE_BYTES

    def check_health(self) -> RegistryHealth:
        """Flag anomalies: no registrations, memory over threshold, oversized cache."""
        issues = []
        recommendations = []
        registrations = len(self._registrations)

        if registrations == 0:
            issues.append("No tools are registered")
            recommendations.append("Call register_default_tools() before executing recipes")

        memory = self.estimated_memory()
        if memory > MEMORY_THRESHOLD_BYTES:
            issues.append(f"Estimated registry memory {memory // (1024 * 1024)}MB exceeds 512MB")
            recommendations.append("Lower max_cache_size or the instance TTL")

        if registrations and len(self._cache) / registrations > MAX_CACHE_RATIO:
            issues.append(
                f"Cache holds {len(self._cache)} instances for {registrations} registrations "
                f"(ratio above {MAX_CACHE_RATIO})"
            )
            recommendations.append("Reuse tool options so instances share cache entries")

        return RegistryHealth(
            healthy=not issues,
            issues=issues,
            recommendations=recommendations,
            stats=self.get_stats(),
        )

    def cached_instances(self) -> list[Tool]:
        return [cached.instance for cached in self._cache.values()]

    def reset(self) -> None:
        """Drop every registration and cached instance (test isolation)."""
        if self._eviction_task is not None:
            self._eviction_task.cancel()
            self._eviction_task = None
        self._registrations.clear()
        self._cache.clear()
        self._evicted.clear()
        self._hits = 0
        self._misses = 0
