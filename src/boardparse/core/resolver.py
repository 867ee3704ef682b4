"""Reference resolution against the storage gateway."""

import logging
from dataclasses import dataclass, replace

from .errors import ResolutionUnavailable, StorageUnavailable
from .model import (
    MAX_POST_ID,
    BlockGroup,
    Diagnostic,
    Node,
    PostId,
    Reference,
    ReferenceCandidate,
    ResolvedReference,
    TextRun,
    ThreadId,
    iter_nodes,
)
from .ports import StorageGateway

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    document: BlockGroup
    references: tuple[ResolvedReference, ...]
    diagnostics: tuple[Diagnostic, ...]


def collect_candidates(document: BlockGroup) -> list[ReferenceCandidate]:
    """Every placeholder reference in document order."""
    return [
        ReferenceCandidate(target=node.post_id, raw=node.raw, span=node.span)
        for node in iter_nodes(document)
        if isinstance(node, Reference) and not node.resolved
    ]


def _in_range(post_id: PostId) -> bool:
    return 1 <= post_id <= MAX_POST_ID


class ReferenceResolver:
    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway

    def lookup(self, targets: list[PostId]) -> dict[PostId, ThreadId | None]:
        """
        Query storage once per distinct target.

        Returns:
            Mapping of target -> owning thread, or None when the post is gone

        Raises:
            ResolutionUnavailable: if the gateway cannot be reached
        """
        found: dict[PostId, ThreadId | None] = {}
        for target in targets:
            if target in found:
                continue
            try:
                exists, thread = self.gateway.post_exists(target)
            except StorageUnavailable as e:
                raise ResolutionUnavailable(
                    f"Could not look up post {target}: {e}"
                ) from e
            found[target] = thread if exists else None
        return found

    def resolve(self, document: BlockGroup, source_post_id: PostId) -> Resolution:
        candidates = collect_candidates(document)

        # Distinct, well-formed, not self; first-mention order
        targets = list(
            dict.fromkeys(
                c.target
                for c in candidates
                if _in_range(c.target) and c.target != source_post_id
            )
        )

        threads = self.lookup(targets)

        references: dict[ResolvedReference, None] = {}
        diagnostics: list[Diagnostic] = []
        for c in candidates:
            if not _in_range(c.target):
                diagnostics.append(
                    Diagnostic(
                        "malformed-reference",
                        f"{c.raw} is not a valid post number",
                        c.span,
                    )
                )
            elif c.target == source_post_id:
                continue
            elif threads.get(c.target) is None:
                diagnostics.append(
                    Diagnostic(
                        "unresolved-reference",
                        f"Post {c.target} does not exist",
                        c.span,
                    )
                )
            else:
                ref = ResolvedReference(source_post_id, c.target, threads[c.target])
                references.setdefault(ref, None)

        rewritten = _rewrite(document, source_post_id, threads)
        assert isinstance(rewritten, BlockGroup)

        log.debug(
            "Post %s: %d mention(s), %d distinct target(s), %d resolved",
            source_post_id,
            len(candidates),
            len(targets),
            len(references),
        )
        return Resolution(rewritten, tuple(references), tuple(diagnostics))


def _rewrite(
    node: Node, source_post_id: PostId, threads: dict[PostId, ThreadId | None]
) -> Node:
    # Recursion depth is bounded by the board's max_nesting_depth
    if isinstance(node, Reference) and not node.resolved:
        if node.post_id == source_post_id and _in_range(node.post_id):
            return replace(node, resolved=True)
        thread = threads.get(node.post_id)
        if thread is None:
            return TextRun(node.raw, node.span)
        return replace(node, thread_id=thread, resolved=True)
    if isinstance(node, BlockGroup):
        return replace(
            node,
            children=tuple(_rewrite(child, source_post_id, threads) for child in node.children),
        )
    return node


def resolve(
    document: BlockGroup, source_post_id: PostId, gateway: StorageGateway
) -> Resolution:
    return ReferenceResolver(gateway).resolve(document, source_post_id)
