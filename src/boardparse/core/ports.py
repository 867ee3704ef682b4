from typing import ContextManager, Iterable, Protocol

from .board import BoardConfig, BoardSnapshot
from .model import BlockGroup, Diagnostic, PostId, ResolvedReference, ThreadId


class BacklinkWriter(Protocol):
    """
    Write handle valid for the lifetime of one storage transaction.
    """

    def upsert_backlinks(
        self,
        target_post_id: PostId,
        add: Iterable[ResolvedReference],
        remove: Iterable[ResolvedReference],
    ) -> int:
        """Apply removals then additions for one target; return rows changed."""
        pass


class StorageGateway(Protocol):
    """
    Transactional post/thread store keyed by opaque integer IDs.
    The core only needs existence, thread ownership and backlink rows.
    Implementations raise StorageUnavailable when the store cannot be used.
    """

    def post_exists(self, post_id: PostId) -> tuple[bool, ThreadId | None]:
        pass

    def transaction(self) -> ContextManager[BacklinkWriter]:
        """Everything written through the yielded writer lands, or none of it."""
        pass

    def backlinks(self, post_id: PostId) -> list[ResolvedReference]:
        """References whose target is post_id."""
        pass

    def outgoing(self, post_id: PostId) -> list[ResolvedReference]:
        """References whose source is post_id."""
        pass


class BoardConfigSource(Protocol):
    """Hot-reloadable per-board settings."""

    def snapshot(self) -> BoardSnapshot:
        """Settings of every board, fixed for the caller's lifetime."""
        pass

    def get_board_config(self, board_id: str) -> BoardConfig:
        pass


class Renderer(Protocol):
    def render(
        self, document: BlockGroup, diagnostics: Iterable[Diagnostic] = ()
    ) -> str:
        pass
