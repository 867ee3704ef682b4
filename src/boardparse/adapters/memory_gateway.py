import threading
from collections import Counter, defaultdict
from contextlib import contextmanager
from typing import Iterable, Iterator

from ..core.errors import StorageUnavailable
from ..core.model import PostId, ResolvedReference, ThreadId
from ..core.ports import BacklinkWriter, StorageGateway


class _MemoryWriter(BacklinkWriter):
    def __init__(self, backlinks: dict[PostId, set[ResolvedReference]]):
        self.backlinks = backlinks

    def upsert_backlinks(
        self,
        target_post_id: PostId,
        add: Iterable[ResolvedReference],
        remove: Iterable[ResolvedReference],
    ) -> int:
        rows = self.backlinks[target_post_id]
        changed = 0
        for ref in remove:
            if ref in rows:
                rows.discard(ref)
                changed += 1
        for ref in add:
            if ref.target != target_post_id:
                raise ValueError(f"Reference to {ref.target} filed under {target_post_id}")
            # One row per (target, source), like the SQL store
            stale = {r for r in rows if r.source == ref.source and r != ref}
            rows.difference_update(stale)
            changed += len(stale)
            if ref not in rows:
                rows.add(ref)
                changed += 1
        return changed


class MemoryGateway(StorageGateway):
    """
    In-process store. Transactions work on a copy that replaces the live
    state only when the block exits cleanly.
    """

    def __init__(self, posts: dict[PostId, ThreadId] | None = None):
        self.posts: dict[PostId, ThreadId] = dict(posts or {})
        self.threads: dict[ThreadId, str] = {}
        self.deleted: set[PostId] = set()
        self._backlinks: dict[PostId, set[ResolvedReference]] = defaultdict(set)
        self._lock = threading.RLock()
        self.lookups: Counter[PostId] = Counter()
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StorageUnavailable("memory store marked unavailable")

    def register_thread(self, thread_id: ThreadId, board: str) -> None:
        with self._lock:
            self.threads[thread_id] = board

    def register_post(self, post_id: PostId, thread_id: ThreadId) -> None:
        with self._lock:
            self.posts[post_id] = thread_id
            self.deleted.discard(post_id)

    def mark_deleted(self, post_id: PostId) -> bool:
        with self._lock:
            live = post_id in self.posts and post_id not in self.deleted
            self.deleted.add(post_id)
            return live

    def post_exists(self, post_id: PostId) -> tuple[bool, ThreadId | None]:
        with self._lock:
            self.lookups[post_id] += 1
            self._check()
            if post_id in self.deleted or post_id not in self.posts:
                return False, None
            return True, self.posts[post_id]

    @contextmanager
    def transaction(self) -> Iterator[BacklinkWriter]:
        with self._lock:
            self._check()
            work = defaultdict(set, {k: set(v) for k, v in self._backlinks.items()})
            yield _MemoryWriter(work)
            self._check()
            self._backlinks = defaultdict(set, {k: v for k, v in work.items() if v})

    def backlinks(self, post_id: PostId) -> list[ResolvedReference]:
        with self._lock:
            self._check()
            return sorted(self._backlinks.get(post_id, ()), key=lambda r: r.source)

    def outgoing(self, post_id: PostId) -> list[ResolvedReference]:
        with self._lock:
            self._check()
            return sorted(
                (r for rows in self._backlinks.values() for r in rows if r.source == post_id),
                key=lambda r: r.target,
            )
