"""Query result cache."""

from replica.caching.cache import CacheEngine, CacheIndex, hash_query_parameters

__all__ = ["CacheEngine", "CacheIndex", "hash_query_parameters"]
