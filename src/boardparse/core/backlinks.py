"""Backlink delta computation and atomic application."""

import logging
from typing import Iterable

from .errors import StorageUnavailable, SyncFailure
from .model import BacklinkDelta, PostId, ResolvedReference, SyncReport
from .ports import StorageGateway

log = logging.getLogger(__name__)


def compute_delta(
    source_post_id: PostId,
    previous: Iterable[ResolvedReference],
    new: Iterable[ResolvedReference],
) -> BacklinkDelta:
    """
    Set difference between two reference sets of one post.

    Order follows the input order so deltas are reproducible.
    """
    prev = list(dict.fromkeys(previous))
    cur = list(dict.fromkeys(new))

    for ref in prev + cur:
        if ref.source != source_post_id:
            raise ValueError(
                f"Reference {ref.source}->{ref.target} does not belong to post {source_post_id}"
            )

    prev_set = set(prev)
    cur_set = set(cur)
    return BacklinkDelta(
        source=source_post_id,
        additions=tuple(r for r in cur if r not in prev_set),
        removals=tuple(r for r in prev if r not in cur_set),
    )


class BacklinkSynchronizer:
    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway

    def sync(
        self,
        source_post_id: PostId,
        previous: Iterable[ResolvedReference],
        new: Iterable[ResolvedReference],
    ) -> SyncReport:
        """
        Apply the delta between previous and new as one transaction.

        Safe to retry with the same arguments: additions are upserts and
        removals of absent rows change nothing.

        Raises:
            SyncFailure: storage rejected the transaction; nothing was applied
        """
        delta = compute_delta(source_post_id, previous, new)
        if delta.is_empty:
            return SyncReport(source_post_id)

        changed = 0
        try:
            with self.gateway.transaction() as tx:
                for target, (adds, removes) in delta.by_target().items():
                    changed += tx.upsert_backlinks(target, adds, removes)
        except StorageUnavailable as e:
            raise SyncFailure(
                f"Backlink sync for post {source_post_id} failed: {e}",
                source_post_id,
            ) from e

        log.debug(
            "Post %s: +%d -%d backlinks (%d rows changed)",
            source_post_id,
            len(delta.additions),
            len(delta.removals),
            changed,
        )
        return SyncReport(
            source=source_post_id,
            additions=delta.additions,
            removals=delta.removals,
            changed=changed,
        )
