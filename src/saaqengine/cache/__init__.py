"""In-memory filter cache over dimension tables."""

from saaqengine.cache.filter_cache import CacheState, FilterCache
from saaqengine.cache.snapshot import CacheSnapshot, DimensionItem, load_snapshot

__all__ = ["CacheSnapshot", "CacheState", "DimensionItem", "FilterCache", "load_snapshot"]
