"""
Resolution Cache - memoized (user, page) -> ResolvedPermission

Single-process, thread-safe. Entries are dropped by the mutation that could
change them (see PermissionService); the TTL only bounds staleness if an
invalidation path is ever missed.

Race guard: a reader takes `current_epoch()` before computing a result and
hands it to `put`. Every invalidation advances the epoch and stamps the users,
pages or workspaces it covers (`clear` stamps everything). A put is dropped
when its user, page or workspace was stamped after the reader's epoch, so a
result computed from data older than a relevant invalidation is never stored
while unrelated invalidations leave in-flight reads alone.
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from docaccess.core.config import settings
from docaccess.models import ResolvedPermission


LOGGER = logging.getLogger(__name__)

CacheKey = Tuple[int, int]


@dataclass
class _Entry:
    value: ResolvedPermission
    workspace_id: Optional[int]
    expires_at: float


class ResolutionCache:
    """Resolution results keyed by (user_id, page_id)"""

    def __init__(
        self,
        ttl_seconds: float = None,
        max_entries: int = None,
        subtree_lookup: Callable[[int], Iterable[int]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = settings.RESOLUTION_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_entries = settings.RESOLUTION_CACHE_MAX_ENTRIES if max_entries is None else max_entries
        self.subtree_lookup = subtree_lookup
        self._clock = clock

        self._lock = threading.RLock()
        self._entries: "OrderedDict[CacheKey, _Entry]" = OrderedDict()
        self._by_user: Dict[int, Set[int]] = {}
        self._by_page: Dict[int, Set[int]] = {}
        self._by_workspace: Dict[int, Set[CacheKey]] = {}
        self._epoch = 0
        self._global_stamp = 0
        self._user_stamps: Dict[int, int] = {}
        self._page_stamps: Dict[int, int] = {}
        self._workspace_stamps: Dict[int, int] = {}
        self._hits = 0
        self._misses = 0

    # ==================== READ / WRITE ====================

    def current_epoch(self) -> int:
        with self._lock:
            return self._epoch

    def get(self, user_id: int, page_id: int) -> Optional[ResolvedPermission]:
        """Cached result, or None on a miss"""
        key = (user_id, page_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                self._remove(key)
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def put(
        self,
        user_id: int,
        page_id: int,
        result: ResolvedPermission,
        workspace_id: int = None,
        epoch: int = None
    ) -> bool:
        """Store a result; returns False when it was computed before an invalidation"""
        key = (user_id, page_id)
        with self._lock:
            if epoch is not None and self._stamped_after(epoch, user_id, page_id, workspace_id):
                return False
            if key in self._entries:
                self._remove(key)
            self._entries[key] = _Entry(
                value=result,
                workspace_id=workspace_id,
                expires_at=self._clock() + self.ttl_seconds
            )
            self._by_user.setdefault(user_id, set()).add(page_id)
            self._by_page.setdefault(page_id, set()).add(user_id)
            if workspace_id is not None:
                self._by_workspace.setdefault(workspace_id, set()).add(key)

            while len(self._entries) > self.max_entries:
                oldest_key = next(iter(self._entries))
                self._remove(oldest_key)
            return True

    # ==================== INVALIDATION ====================

    def invalidate_subtree(self, page_id: int) -> int:
        """Drop entries for the page and every page below it"""
        if self.subtree_lookup is None:
            LOGGER.debug("no subtree lookup configured, clearing cache for page=%s", page_id)
            return self.clear()
        page_ids = set(self.subtree_lookup(page_id))
        page_ids.add(page_id)
        return self.invalidate_pages(page_ids)

    def invalidate_pages(self, page_ids: Iterable[int]) -> int:
        with self._lock:
            self._epoch += 1
            removed = 0
            for page_id in page_ids:
                self._page_stamps[page_id] = self._epoch
                for user_id in list(self._by_page.get(page_id, ())):
                    self._remove((user_id, page_id))
                    removed += 1
        LOGGER.debug("invalidated %d cached resolutions for pages", removed)
        return removed

    def invalidate_user(self, user_id: int) -> int:
        with self._lock:
            self._epoch += 1
            self._user_stamps[user_id] = self._epoch
            pages = list(self._by_user.get(user_id, ()))
            for page_id in pages:
                self._remove((user_id, page_id))
        LOGGER.debug("invalidated %d cached resolutions for user=%s", len(pages), user_id)
        return len(pages)

    def invalidate_users(self, user_ids: Iterable[int]) -> int:
        return sum(self.invalidate_user(user_id) for user_id in user_ids)

    def invalidate_workspace(self, workspace_id: int) -> int:
        with self._lock:
            self._epoch += 1
            self._workspace_stamps[workspace_id] = self._epoch
            keys = list(self._by_workspace.get(workspace_id, ()))
            for key in keys:
                self._remove(key)
        LOGGER.debug("invalidated %d cached resolutions for workspace=%s", len(keys), workspace_id)
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            self._epoch += 1
            self._global_stamp = self._epoch
            self._user_stamps.clear()
            self._page_stamps.clear()
            self._workspace_stamps.clear()
            count = len(self._entries)
            self._entries.clear()
            self._by_user.clear()
            self._by_page.clear()
            self._by_workspace.clear()
            return count

    # ==================== INTERNALS ====================

    def _stamped_after(self, epoch: int, user_id: int, page_id: int, workspace_id: Optional[int]) -> bool:
        latest = max(
            self._global_stamp,
            self._user_stamps.get(user_id, 0),
            self._page_stamps.get(page_id, 0),
            self._workspace_stamps.get(workspace_id, 0) if workspace_id is not None else 0,
        )
        return latest > epoch

    def _remove(self, key: CacheKey):
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        user_id, page_id = key
        _discard(self._by_user, user_id, page_id)
        _discard(self._by_page, page_id, user_id)
        if entry.workspace_id is not None:
            _discard(self._by_workspace, entry.workspace_id, key)

    def stats(self) -> dict:
        with self._lock:
            return {
                'size': len(self._entries),
                'hits': self._hits,
                'misses': self._misses,
                'epoch': self._epoch,
                'ttl_seconds': self.ttl_seconds,
                'max_entries': self.max_entries,
            }

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey):
        with self._lock:
            return key in self._entries


def _discard(index: dict, bucket, member):
    members = index.get(bucket)
    if members is None:
        return
    members.discard(member)
    if not members:
        del index[bucket]
