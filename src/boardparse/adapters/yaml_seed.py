"""Load thread/post fixtures from YAML into a gateway.

Format::

    threads:
      - id: 7
        board: a
        posts: [7, 8, 42]
"""

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from ..core.model import PostId, ThreadId


@dataclass
class SeedThread:
    id: ThreadId
    board: str
    posts: list[PostId] = field(default_factory=list)


class SeedTarget(Protocol):
    def register_thread(self, thread_id: ThreadId, board: str) -> None:
        pass

    def register_post(self, post_id: PostId, thread_id: ThreadId) -> None:
        pass


def _as_id(value: Any, what: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{what} must be a positive integer, got {value!r}")
    return value


def parse_seed(text: str) -> list[SeedThread]:
    data = yaml.safe_load(io.StringIO(text)) or {}
    if not isinstance(data, dict):
        raise ValueError("Seed file must be a mapping with a 'threads' list")

    threads = []
    for entry in data.get("threads", []) or []:
        if not isinstance(entry, dict):
            raise ValueError(f"Thread entry must be a mapping, got {entry!r}")
        thread_id = _as_id(entry.get("id"), "thread id")
        board = entry.get("board")
        if not isinstance(board, str) or not board:
            raise ValueError(f"Thread {thread_id} needs a board name")
        posts = [_as_id(p, "post id") for p in entry.get("posts", []) or []]
        threads.append(SeedThread(id=thread_id, board=board, posts=posts))
    return threads


def load_seed(path: Path) -> list[SeedThread]:
    return parse_seed(path.read_text(encoding="utf-8"))


def apply_seed(threads: list[SeedThread], target: SeedTarget) -> dict[str, int]:
    """Register every thread and post; returns counts."""
    counts = {"threads": 0, "posts": 0}
    for thread in threads:
        target.register_thread(thread.id, thread.board)
        counts["threads"] += 1
        for post_id in thread.posts:
            target.register_post(post_id, thread.id)
            counts["posts"] += 1
    return counts
