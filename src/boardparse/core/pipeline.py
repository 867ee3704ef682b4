import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .assembler import assemble
from .backlinks import BacklinkSynchronizer
from .board import BoardConfig
from .errors import BodyTooLong, StorageUnavailable, SyncFailure
from .lanes import KeyedSerializer
from .lexer import tokenize
from .model import (
    BlockGroup,
    Diagnostic,
    ParseResult,
    PostId,
    ResolvedReference,
    SyncReport,
)
from .ports import BoardConfigSource, StorageGateway
from .resolver import ReferenceResolver

log = logging.getLogger(__name__)


class SyncMode(str, Enum):
    STRICT = "strict"  # a failed backlink sync fails the call
    EVENTUAL = "eventual"  # a failed backlink sync is queued for retry


@dataclass(frozen=True)
class PendingSync:
    source: PostId
    previous: tuple[ResolvedReference, ...]
    new: tuple[ResolvedReference, ...]


def _by_position(d: Diagnostic) -> int:
    return d.span.start if d.span is not None else -1


class PostParser:
    """
    Lex, assemble, resolve and persist post bodies.

    Safe to share between threads. Calls for the same post ID are applied
    to storage in the order they were submitted; calls for different posts
    run independently.
    """

    def __init__(
        self,
        configs: BoardConfigSource,
        gateway: StorageGateway,
        sync_mode: SyncMode = SyncMode.STRICT,
        serializer: KeyedSerializer | None = None,
    ):
        self.configs = configs
        self.gateway = gateway
        self.sync_mode = sync_mode
        self.resolver = ReferenceResolver(gateway)
        self.synchronizer = BacklinkSynchronizer(gateway)
        self.serializer = serializer or KeyedSerializer()
        self._pending: OrderedDict[PostId, PendingSync] = OrderedDict()
        self._pending_lock = threading.Lock()

    def parse(
        self, raw_text: str, board_id: str, config: BoardConfig | None = None
    ) -> tuple[BlockGroup, list[Diagnostic]]:
        """Pure lex + assemble; never touches storage."""
        if config is None:
            config = self.configs.snapshot().for_board(board_id)
        diagnostics: list[Diagnostic] = []
        document = assemble(tokenize(raw_text, config), diagnostics)
        return document, diagnostics

    def parse_and_persist(
        self,
        raw_text: str,
        board_id: str,
        source_post_id: PostId,
        previous_references: Iterable[ResolvedReference] = (),
    ) -> ParseResult:
        """
        Parse a post body, resolve its references and sync backlinks.

        Args:
            raw_text: Post body as submitted
            board_id: Board whose grammar applies
            source_post_id: ID of the post being created or edited
            previous_references: References the post had before this edit
                (empty on creation)

        Returns:
            ParseResult with the resolved tree, references and diagnostics

        Raises:
            BodyTooLong: body exceeds the board's max_body_length
            ResolutionUnavailable: storage could not be queried
            SyncFailure: backlinks could not be committed (strict mode)
        """
        # One snapshot for the whole call, even if config is reloaded meanwhile
        config = self.configs.snapshot().for_board(board_id)
        if len(raw_text) > config.max_body_length:
            raise BodyTooLong(source_post_id, len(raw_text), config.max_body_length)

        previous = tuple(previous_references)
        ticket = self.serializer.reserve(source_post_id)
        try:
            document, diagnostics = self.parse(raw_text, board_id, config)
            with ticket:
                resolution = self.resolver.resolve(document, source_post_id)
                report = self._sync(source_post_id, previous, resolution.references)
        finally:
            ticket.release()

        diagnostics.extend(resolution.diagnostics)
        diagnostics.sort(key=_by_position)
        return ParseResult(
            document=resolution.document,
            references=resolution.references,
            diagnostics=tuple(diagnostics),
            sync_pending=report is None,
        )

    def delete_post(
        self,
        source_post_id: PostId,
        previous_references: Iterable[ResolvedReference] | None = None,
    ) -> SyncReport | None:
        """
        Drop every outgoing reference of a deleted post.

        When previous_references is None they are read from storage.
        Returns None if the final delta was queued (eventual mode).
        """
        with self.serializer.reserve(source_post_id):
            if previous_references is None:
                try:
                    previous = tuple(self.gateway.outgoing(source_post_id))
                except StorageUnavailable as e:
                    raise SyncFailure(
                        f"Could not read references of post {source_post_id}: {e}",
                        source_post_id,
                    ) from e
            else:
                previous = tuple(previous_references)
            return self._sync(source_post_id, previous, ())

    @property
    def pending(self) -> tuple[PendingSync, ...]:
        with self._pending_lock:
            return tuple(self._pending.values())

    def retry_pending(self) -> int:
        """Re-apply queued deltas in queue order; return how many landed."""
        with self._pending_lock:
            sources = list(self._pending)

        flushed = 0
        for source in sources:
            with self.serializer.reserve(source):
                with self._pending_lock:
                    item = self._pending.get(source)
                if item is None:
                    continue
                try:
                    self.synchronizer.sync(source, item.previous, item.new)
                except SyncFailure as e:
                    log.warning("Retry of backlink sync for post %s failed: %s", source, e)
                    continue
                with self._pending_lock:
                    if self._pending.get(source) is item:
                        del self._pending[source]
                flushed += 1
        return flushed

    def _sync(
        self,
        source: PostId,
        previous: tuple[ResolvedReference, ...],
        new: tuple[ResolvedReference, ...],
    ) -> SyncReport | None:
        # Caller holds source's ticket
        with self._pending_lock:
            queued = self._pending.get(source)
        if queued is not None:
            # Storage still reflects the state before the queued delta
            previous = queued.previous

        try:
            report = self.synchronizer.sync(source, previous, new)
        except SyncFailure:
            if self.sync_mode == SyncMode.STRICT:
                raise
            with self._pending_lock:
                self._pending[source] = PendingSync(source, previous, tuple(new))
            log.warning("Backlink sync for post %s queued for retry", source)
            return None

        if queued is not None:
            with self._pending_lock:
                self._pending.pop(source, None)
        return report
