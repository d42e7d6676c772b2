"""
Versioned cache for ExamStar
Key-value substrates, version-tagged entries and the cache-aside fetch helper
"""
import dataclasses
import hashlib
import json
import os
import tempfile
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, List, Optional

from .logger import logger

# Reserved key holding the last globally synchronized version
GLOBAL_HASH_KEY = 'examstar_global_hash'


# ============================================================================
# KEY-VALUE SUBSTRATES
# ============================================================================

class MemoryStore:
    """Process-local string store"""

    def __init__(self):
        self._items = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items.pop(key, None)
            self._items[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> List[str]:
        """Stored keys, least recently written first"""
        with self._lock:
            return list(self._items)

    def __len__(self):
        return len(self._items)


class FileStore:
    """
    Durable string store, one file per key under a directory.
    Each file starts with the JSON-encoded key on its own line, followed by the value.
    """

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode('utf-8')).hexdigest()
        return os.path.join(self.directory, f'{digest}.json')

    def get(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), 'r', encoding='utf-8') as fh:
                header = fh.readline()
                if header.rstrip('\n') != json.dumps(key):
                    return None
                return fh.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                fh.write(json.dumps(key) + '\n')
                fh.write(value)
            with self._lock:
                os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def remove(self, key: str) -> None:
        with self._lock:
            try:
                os.remove(self._path(key))
            except FileNotFoundError:
                pass

    def keys(self) -> List[str]:
        """Keys of the entry files on disk, oldest modification first"""
        found = []
        for name in os.listdir(self.directory):
            if not name.endswith('.json'):
                continue
            path = os.path.join(self.directory, name)
            try:
                mtime = os.path.getmtime(path)
                with open(path, 'r', encoding='utf-8') as fh:
                    key = json.loads(fh.readline())
            except FileNotFoundError:
                continue
            except ValueError:
                logger.warning('cache_file_unreadable', path=path)
                continue
            if isinstance(key, str):
                found.append((mtime, key))
        found.sort(key=lambda item: item[0])
        return [key for _, key in found]


class BoundedStore:
    """LRU cap over another store; reserved keys are never evicted"""

    def __init__(self, inner, max_entries: int, reserved=(GLOBAL_HASH_KEY,)):
        if max_entries < 1:
            raise ValueError('max_entries must be positive')
        self.inner = inner
        self.max_entries = max_entries
        self.reserved = set(reserved)
        self._recent = OrderedDict()
        self._lock = threading.Lock()
        # entries left by an earlier process count towards the cap
        for key in inner.keys():
            for old_key in self._touch(key):
                logger.debug('cache_evicted', key=old_key)
                self.inner.remove(old_key)

    def _touch(self, key):
        if key in self.reserved:
            return []
        self._recent[key] = None
        self._recent.move_to_end(key)
        evicted = []
        while len(self._recent) > self.max_entries:
            old_key, _ = self._recent.popitem(last=False)
            evicted.append(old_key)
        return evicted

    def get(self, key: str) -> Optional[str]:
        value = self.inner.get(key)
        if value is not None:
            with self._lock:
                evicted = self._touch(key)
            for old_key in evicted:
                self.inner.remove(old_key)
        return value

    def set(self, key: str, value: str) -> None:
        self.inner.set(key, value)
        with self._lock:
            evicted = self._touch(key)
        for old_key in evicted:
            logger.debug('cache_evicted', key=old_key)
            self.inner.remove(old_key)

    def remove(self, key: str) -> None:
        with self._lock:
            self._recent.pop(key, None)
        self.inner.remove(key)


# ============================================================================
# VERSION-TAGGED ENTRIES
# ============================================================================

@dataclass
class CacheEntry:
    version: str
    data: Any


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    raise TypeError(f'Object of type {type(value).__name__} is not JSON serializable')


class VersionedCache:
    """Version-tagged JSON entries plus the global version ledger, over any key-value store"""

    def __init__(self, store):
        self.store = store

    def read_entry(self, key: str) -> Optional[CacheEntry]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            return CacheEntry(version=payload['version'], data=payload.get('data'))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning('cache_parse_error', key=key, error=str(e))
            return None

    def write_entry(self, key: str, version: str, data: Any) -> bool:
        try:
            self.store.set(key, json.dumps({'version': version, 'data': data}, default=_json_default))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning('cache_write_failed', key=key, error=str(e))
            return False

    def remove(self, key: str) -> None:
        self.store.remove(key)

    def read_global_version(self) -> Optional[str]:
        return self.store.get(GLOBAL_HASH_KEY)

    def write_global_version(self, version: str) -> bool:
        try:
            self.store.set(GLOBAL_HASH_KEY, version)
            return True
        except OSError as e:
            logger.warning('cache_write_failed', key=GLOBAL_HASH_KEY, error=str(e))
            return False


def build_store(cache_dir=None, max_entries=0):
    """Store from app config: FileStore when a directory is set, otherwise memory"""
    store = FileStore(cache_dir) if cache_dir else MemoryStore()
    if max_entries and max_entries > 0:
        store = BoundedStore(store, max_entries)
    return store


# ============================================================================
# CACHE-ASIDE FETCH
# ============================================================================

def fetch_with_cache(key: str, fetcher: Callable[[], Any], *, version_reader: Callable[[], Optional[str]],
                     cache: VersionedCache, hydrator: Optional[Callable[[Any], Any]] = None):
    """
    Return data for key, reusing the local entry while its version matches the remote one.
    Version read failures bypass the cache; fetcher failures propagate.
    """
    try:
        remote_version = version_reader()
    except Exception as e:
        logger.warning('cache_version_read_failed', key=key, error=str(e))
        return fetcher()

    if not remote_version:
        return fetcher()

    entry = cache.read_entry(key)
    if entry is not None and entry.version == remote_version and entry.data is not None:
        logger.debug('cache_hit', key=key, version=remote_version)
        return hydrator(entry.data) if hydrator else entry.data

    logger.debug('cache_miss', key=key, version=remote_version)
    data = fetcher()
    cache.write_entry(key, remote_version, data)
    return data


class CacheManager:
    """App-facing facade: builds keys and runs cache-aside reads against one VersionedCache"""

    def __init__(self, store, version_reader):
        self.cache = VersionedCache(store)
        self.version_reader = version_reader

    @staticmethod
    def generate_key(*args, **kwargs) -> str:
        parts = [str(a) for a in args if a is not None]
        parts.extend(f'{k}={v}' for k, v in sorted(kwargs.items()) if v is not None)
        return ':'.join(parts)

    def fetch(self, key, fetcher, hydrator=None):
        return fetch_with_cache(key, fetcher, version_reader=self.version_reader,
                                cache=self.cache, hydrator=hydrator)

    def get(self, key):
        entry = self.cache.read_entry(key)
        return entry.data if entry else None

    def delete(self, key) -> bool:
        self.cache.remove(key)
        return True
