"""
Stale-while-revalidate reads for ExamStar
Serves locally cached data at once and revalidates against the remote version in the background
"""
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .cache import VersionedCache
from .logger import logger

_UNSET = object()


@dataclass(frozen=True)
class HookState:
    data: Any
    loading: bool
    error: Optional[BaseException]


def _dependencies_changed(old, new) -> bool:
    if len(old) != len(new):
        return True
    return any(a is not b and a != b for a, b in zip(old, new))


class DataWithCache:
    """
    Reactive read model exposing data / loading / error / refresh for one cache key.

    load() publishes a locally consistent entry synchronously (the entry version equals the
    locally recorded global version), then checks the remote version on the executor and
    swaps in fresh data when it moved. Errors keep already published data.
    last_error holds the failure of the latest finished revalidation until one succeeds,
    so callers can tell when published data is stale.
    After dispose() nothing is published.
    """

    def __init__(self, key: str, fetcher: Callable[[], Any], *, version_reader: Callable[[], Optional[str]],
                 cache: VersionedCache, dependencies=(), hydrator: Optional[Callable[[Any], Any]] = None,
                 enabled: bool = True, executor=None):
        self.key = key
        self.fetcher = fetcher
        self.version_reader = version_reader
        self.cache = cache
        self.hydrator = hydrator
        self.enabled = enabled
        self.dependencies = tuple(dependencies)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='swr')
        self._lock = threading.RLock()
        self._listeners = []
        self._mounted = True
        self._pending = None
        self._pending_inputs = None

        self.data = None
        self.loading = True
        self.error = None
        self.last_error = None
    # -- state publication --

    def state(self) -> HookState:
        with self._lock:
            return HookState(self.data, self.loading, self.error)

    def subscribe(self, listener: Callable[[HookState], None]):
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _publish(self, **changes) -> bool:
        with self._lock:
            if not self._mounted:
                return False
            for name, value in changes.items():
                setattr(self, name, value)
            listeners = list(self._listeners)
            snapshot = HookState(self.data, self.loading, self.error)
        for listener in listeners:
            listener(snapshot)
        return True

    def set_data(self, data) -> None:
        self._publish(data=data)

    # -- evaluation cycle --

    def update(self, key=_UNSET, dependencies=_UNSET, enabled=_UNSET, fetcher=None) -> Optional[Future]:
        """Re-run the cycle when key, enabled or any dependency changed."""
        changed = False
        if key is not _UNSET and key != self.key:
            self.key = key
            changed = True
        if enabled is not _UNSET and enabled != self.enabled:
            self.enabled = enabled
            changed = True
        if dependencies is not _UNSET:
            dependencies = tuple(dependencies)
            if _dependencies_changed(self.dependencies, dependencies):
                self.dependencies = dependencies
                changed = True
        if fetcher is not None:
            self.fetcher = fetcher
        return self.load() if changed else None

    def load(self) -> Optional[Future]:
        """Run one cycle; while a revalidation for the same inputs is queued, reuse its future."""
        if not self.enabled:
            return None
        key = self.key
        self._publish(loading=True, error=None)

        recorded, found, local_data = self._read_local(key)
        if found:
            self._publish(data=local_data, loading=False)

        inputs = (key, self.dependencies)
        with self._lock:
            pending = self._pending
            if pending is not None and not pending.done() and self._pending_inputs == inputs:
                return pending
            pending = self._executor.submit(self._revalidate, key, recorded, found)
            self._pending = pending
            self._pending_inputs = inputs
        return pending
    def _read_local(self, key):
        """(recorded global version, entry found, data); a found entry carries the recorded version"""
        recorded = None
        try:
            recorded = self.cache.read_global_version()
            entry = self.cache.read_entry(key)
            if recorded and entry is not None and entry.version == recorded:
                data = self.hydrator(entry.data) if self.hydrator else entry.data
                return recorded, True, data
        except Exception as e:
            logger.warning('cache_local_read_failed', key=key, error=str(e))
        return recorded, False, None

    def _revalidate(self, key, recorded, found):
        try:
            remote_version = self.version_reader()
            if remote_version and remote_version != recorded:
                fresh = self.fetcher()
                self._publish(data=fresh, loading=False, last_error=None)
                self._persist(key, remote_version, fresh)
            elif not found:
                # marker is current (another key synchronized it) but this key has no entry yet
                fresh = self.fetcher()
                self._publish(data=fresh, loading=False, last_error=None)
                if remote_version:
                    self._persist(key, remote_version, fresh)
            else:
                self._publish(loading=False, last_error=None)
        except Exception as e:
            logger.error('cache_revalidate_failed', key=key, error=str(e))
            self._publish(error=e, loading=False, last_error=e)

    def _persist(self, key, version, data):
        self.cache.write_global_version(version)
        self.cache.write_entry(key, version, data)

    # -- explicit reload --

    def refresh(self) -> Future:
        self._publish(loading=True)
        return self._executor.submit(self._refresh, self.key)

    def _refresh(self, key):
        try:
            fresh = self.fetcher()
            self._publish(data=fresh, loading=False, error=None, last_error=None)
            remote_version = self.version_reader()
            if remote_version:
                self._persist(key, remote_version, fresh)
        except Exception as e:
            logger.error('cache_refresh_failed', key=key, error=str(e))
            self._publish(error=e, loading=False, last_error=e)

    def dispose(self) -> None:
        with self._lock:
            self._mounted = False
            self._listeners.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
