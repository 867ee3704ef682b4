"""Tests for the full parse-and-persist pipeline."""

import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path

import pytest

from boardparse.adapters.memory_gateway import MemoryGateway
from boardparse.config import ConfigProvider, load_config
from boardparse.core.board import BoardConfig, BoardSnapshot
from boardparse.core.errors import (
    BodyTooLong,
    ResolutionUnavailable,
    StorageUnavailable,
    SyncFailure,
)
from boardparse.core.model import Reference, ResolvedReference, Spoiler, iter_nodes
from boardparse.core.pipeline import PostParser, SyncMode


class FlakyGateway(MemoryGateway):
    """Lookups keep working; commits fail while broken is set."""

    def __init__(self, posts=None):
        super().__init__(posts)
        self.broken = False

    @contextmanager
    def transaction(self):
        if self.broken:
            raise StorageUnavailable("writer is down")
        with super().transaction() as tx:
            yield tx


def make_parser(gateway, mode=SyncMode.STRICT, **boards):
    provider = ConfigProvider(BoardSnapshot(boards=boards))
    return PostParser(provider, gateway, sync_mode=mode)


def test_parse_is_pure():
    gateway = MemoryGateway()
    gateway.available = False
    parser = make_parser(gateway)

    document, diagnostics = parser.parse("hi [spoiler]x[/spoiler] >>9", "b")
    assert diagnostics == []
    assert any(isinstance(n, Spoiler) for n in iter_nodes(document))


def test_parse_and_persist_example():
    gateway = MemoryGateway({42: 7, 100: 7})
    parser = make_parser(gateway)

    result = parser.parse_and_persist("see >>42 and [spoiler]hi[/spoiler]", "b", 100)

    assert result.references == (ResolvedReference(100, 42, 7),)
    assert result.diagnostics == ()
    assert not result.sync_pending
    assert gateway.backlinks(42) == [ResolvedReference(100, 42, 7)]
    (ref,) = [n for n in iter_nodes(result.document) if isinstance(n, Reference)]
    assert ref.thread_id == 7


def test_edit_replaces_backlinks():
    gateway = MemoryGateway({1: 1, 2: 1, 3: 1, 50: 1})
    parser = make_parser(gateway)

    first = parser.parse_and_persist(">>1 >>2", "b", 50)
    second = parser.parse_and_persist(">>2 >>3", "b", 50, first.references)

    assert gateway.backlinks(1) == []
    assert gateway.backlinks(2) == [ResolvedReference(50, 2, 1)]
    assert gateway.backlinks(3) == [ResolvedReference(50, 3, 1)]
    assert list(second.references) == gateway.outgoing(50)


def test_repeat_is_idempotent():
    gateway = MemoryGateway({1: 1})
    parser = make_parser(gateway)
    first = parser.parse_and_persist(">>1", "b", 9)
    again = parser.parse_and_persist(">>1", "b", 9, first.references)
    assert again.references == first.references
    assert gateway.backlinks(1) == [ResolvedReference(9, 1, 1)]


def test_diagnostics_sorted_by_position():
    gateway = MemoryGateway()
    parser = make_parser(gateway)
    result = parser.parse_and_persist(">>5 [quote]x >>0", "b", 9)
    assert [d.code for d in result.diagnostics] == [
        "unresolved-reference",
        "unclosed-delimiter",
        "malformed-reference",
    ]


def test_body_too_long():
    gateway = MemoryGateway({1: 1})
    parser = make_parser(gateway, short=BoardConfig(max_body_length=5))

    with pytest.raises(BodyTooLong) as exc:
        parser.parse_and_persist(">>1 is too long", "short", 9)
    assert exc.value.limit == 5
    assert exc.value.post_id == 9
    assert sum(gateway.lookups.values()) == 0
    assert parser.serializer.pending(9) == 0


def test_board_config_selected_by_id():
    gateway = MemoryGateway()
    parser = make_parser(gateway, plain=BoardConfig(allowed_markup=frozenset()))
    doc, _ = parser.parse("[spoiler]x[/spoiler]", "plain")
    assert not any(isinstance(n, Spoiler) for n in iter_nodes(doc))
    doc, _ = parser.parse("[spoiler]x[/spoiler]", "other")
    assert any(isinstance(n, Spoiler) for n in iter_nodes(doc))


def test_resolution_unavailable_propagates():
    gateway = MemoryGateway({1: 1})
    gateway.available = False
    parser = make_parser(gateway)
    with pytest.raises(ResolutionUnavailable):
        parser.parse_and_persist(">>1", "b", 9)
    assert parser.serializer.pending(9) == 0


def test_strict_mode_raises_and_applies_nothing():
    gateway = FlakyGateway({1: 1, 2: 1})
    parser = make_parser(gateway)
    gateway.broken = True

    with pytest.raises(SyncFailure):
        parser.parse_and_persist(">>1 >>2", "b", 9)
    gateway.broken = False
    assert gateway.outgoing(9) == []
    assert parser.pending == ()


def test_eventual_mode_queues_and_retries():
    gateway = FlakyGateway({1: 1, 2: 1})
    parser = make_parser(gateway, SyncMode.EVENTUAL)
    gateway.broken = True

    result = parser.parse_and_persist(">>1 >>2", "b", 9)
    assert result.sync_pending
    assert result.references == (
        ResolvedReference(9, 1, 1),
        ResolvedReference(9, 2, 1),
    )
    assert len(parser.pending) == 1

    # Still broken: nothing lands, item stays queued
    assert parser.retry_pending() == 0
    assert len(parser.pending) == 1

    gateway.broken = False
    assert parser.retry_pending() == 1
    assert parser.pending == ()
    assert gateway.outgoing(9) == list(result.references)


def test_eventual_mode_coalesces_per_post():
    """A second edit while the first is queued replaces the queued delta."""
    gateway = FlakyGateway({1: 1, 2: 1, 3: 1})
    parser = make_parser(gateway, SyncMode.EVENTUAL)
    parser.parse_and_persist(">>1", "b", 9)
    stored = tuple(gateway.outgoing(9))

    gateway.broken = True
    first = parser.parse_and_persist(">>2", "b", 9, stored)
    parser.parse_and_persist(">>3", "b", 9, first.references)
    (item,) = parser.pending
    assert item.previous == stored
    assert item.new == (ResolvedReference(9, 3, 1),)

    gateway.broken = False
    parser.retry_pending()
    assert gateway.outgoing(9) == [ResolvedReference(9, 3, 1)]
    assert gateway.backlinks(1) == []
    assert gateway.backlinks(2) == []


def test_later_success_clears_queue():
    gateway = FlakyGateway({1: 1, 2: 1})
    parser = make_parser(gateway, SyncMode.EVENTUAL)
    gateway.broken = True
    first = parser.parse_and_persist(">>1", "b", 9)
    gateway.broken = False

    parser.parse_and_persist(">>2", "b", 9, first.references)
    assert parser.pending == ()
    assert gateway.outgoing(9) == [ResolvedReference(9, 2, 1)]


def test_delete_post_reads_outgoing():
    gateway = MemoryGateway({1: 1, 2: 1})
    parser = make_parser(gateway)
    parser.parse_and_persist(">>1 >>2", "b", 9)

    report = parser.delete_post(9)
    assert report is not None
    assert len(report.removals) == 2
    assert gateway.outgoing(9) == []
    assert gateway.backlinks(1) == []


def test_delete_post_with_given_references():
    gateway = MemoryGateway({1: 1})
    parser = make_parser(gateway)
    result = parser.parse_and_persist(">>1", "b", 9)

    report = parser.delete_post(9, result.references)
    assert report.removals == result.references
    assert gateway.backlinks(1) == []


def test_delete_post_storage_down():
    gateway = MemoryGateway()
    gateway.available = False
    parser = make_parser(gateway)
    with pytest.raises(SyncFailure):
        parser.delete_post(9)


def test_concurrent_edits_to_different_posts():
    gateway = MemoryGateway({i: 1 for i in range(1, 21)})
    parser = make_parser(gateway)
    errors = []

    def edit(source):
        try:
            parser.parse_and_persist(f">>{source - 10} >>{source - 9}", "b", source)
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=edit, args=(i,)) for i in range(11, 21)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert errors == []
    for source in range(11, 21):
        assert [r.target for r in gateway.outgoing(source)] == [source - 10, source - 9]


class ReloadingGateway(MemoryGateway):
    """Runs a callback on the first lookup, while a parse is in flight."""

    def __init__(self, posts, on_lookup):
        super().__init__(posts)
        self.on_lookup = on_lookup

    def post_exists(self, post_id):
        if self.on_lookup is not None:
            callback, self.on_lookup = self.on_lookup, None
            callback()
        return super().post_exists(post_id)


def test_reload_mid_call_keeps_started_snapshot():
    """A reload during resolution does not change the in-flight call's grammar."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "boardparse.toml"
        config_path.write_text("[boards.a]\nmax_body_length = 100\n")
        provider = ConfigProvider.from_config(load_config(config_path))

        def reload_stricter():
            config_path.write_text(
                "[boards.a]\nmax_body_length = 3\nallowed_markup = []\n"
            )
            assert provider.reload()

        gateway = ReloadingGateway({1: 1}, reload_stricter)
        parser = PostParser(provider, gateway)

        body = ">>1 [spoiler]x[/spoiler]"
        result = parser.parse_and_persist(body, "a", 9)

        assert provider.get_board_config("a").max_body_length == 3
        assert result.references == (ResolvedReference(9, 1, 1),)
        assert any(isinstance(n, Spoiler) for n in iter_nodes(result.document))

        # The next call sees the reloaded settings
        with pytest.raises(BodyTooLong):
            parser.parse_and_persist(body, "a", 9, result.references)


def test_oversized_reference_number_is_malformed():
    gateway = MemoryGateway()
    parser = make_parser(gateway, big=BoardConfig(max_body_length=10000))
    body = ">>" + "9" * 5000

    result = parser.parse_and_persist(body, "big", 9)
    assert result.references == ()
    assert [d.code for d in result.diagnostics] == ["malformed-reference"]
    assert sum(gateway.lookups.values()) == 0
