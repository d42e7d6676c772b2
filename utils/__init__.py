"""
Shared utilities for ExamStar: logging, versioned cache, validation, admin gate
"""
from .logger import logger, StructuredLogger
from .cache import (
    GLOBAL_HASH_KEY, BoundedStore, CacheEntry, CacheManager, FileStore, MemoryStore,
    VersionedCache, build_store, fetch_with_cache,
)
from .data_hooks import DataWithCache, HookState
from .validators import (
    validate_schema, exam_schema, exam_structure_schema, resource_schema,
    resource_order_schema, resource_type_schema, event_schema, suggestion_schema,
)
from .security import require_admin

__all__ = [
    'logger', 'StructuredLogger',
    'GLOBAL_HASH_KEY', 'BoundedStore', 'CacheEntry', 'CacheManager', 'FileStore', 'MemoryStore',
    'VersionedCache', 'build_store', 'fetch_with_cache',
    'DataWithCache', 'HookState',
    'validate_schema', 'exam_schema', 'exam_structure_schema', 'resource_schema',
    'resource_order_schema', 'resource_type_schema', 'event_schema', 'suggestion_schema',
    'require_admin',
]
