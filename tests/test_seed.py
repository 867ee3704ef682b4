"""Tests for YAML seed fixtures."""

import tempfile
from pathlib import Path

import pytest

from boardparse.adapters.memory_gateway import MemoryGateway
from boardparse.adapters.sqlite_gateway import SQLiteGateway
from boardparse.adapters.yaml_seed import apply_seed, load_seed, parse_seed


SEED = """
threads:
  - id: 7
    board: a
    posts: [7, 8, 42]
  - id: 50
    board: b
    posts: [50]
"""


def test_parse_seed():
    threads = parse_seed(SEED)
    assert [(t.id, t.board, t.posts) for t in threads] == [
        (7, "a", [7, 8, 42]),
        (50, "b", [50]),
    ]


def test_empty_seed():
    assert parse_seed("") == []
    assert parse_seed("threads:\n") == []


@pytest.mark.parametrize("text", [
    "- 1\n- 2\n",
    "threads:\n  - 7\n",
    "threads:\n  - id: 0\n    board: a\n",
    "threads:\n  - id: true\n    board: a\n",
    "threads:\n  - id: 7\n",
    "threads:\n  - id: 7\n    board: a\n    posts: [x]\n",
])
def test_invalid_seed(text):
    with pytest.raises(ValueError):
        parse_seed(text)


def test_apply_seed_to_memory():
    gateway = MemoryGateway()
    counts = apply_seed(parse_seed(SEED), gateway)
    assert counts == {"threads": 2, "posts": 4}
    assert gateway.post_exists(42) == (True, 7)
    assert gateway.threads[50] == "b"


def test_load_seed_into_sqlite():
    with tempfile.TemporaryDirectory() as tmpdir:
        seed_path = Path(tmpdir) / "seed.yaml"
        seed_path.write_text(SEED)
        gateway = SQLiteGateway(db_path=Path(tmpdir) / "board.sqlite")

        apply_seed(load_seed(seed_path), gateway)
        assert gateway.post_exists(50) == (True, 50)
        assert gateway.thread_board(7) == "a"
