"""Tests for moving and removing nodes, and the link rewriting behind them."""

from __future__ import annotations

import pytest

from conftest import LOCK_RETRY, LOCK_TIMEOUT, put_node
from kegdex.errors import BatchError, DestinationExistsError, InvalidError, NotFoundError
from kegdex.keg import Keg
from kegdex.models import NodeStats
from kegdex.node_id import NodeId
from kegdex.repository import MemoryRepository
from kegdex.rewrite import rewrite_content, rewrite_links


class CountingRepository(MemoryRepository):
    """Records which nodes had their content written."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.content_writes: list[NodeId] = []

    def write_content(self, node_id: NodeId, data: bytes) -> None:
        self.content_writes.append(node_id)
        super().write_content(node_id, data)


class FailingRepository(MemoryRepository):
    """Refuses content writes for one node once armed."""

    def __init__(self, fail_on: NodeId, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.armed = False

    def write_content(self, node_id: NodeId, data: bytes) -> None:
        if self.armed and node_id == self.fail_on:
            raise OSError(f"disk full writing node {node_id.path}")
        super().write_content(node_id, data)


def _content(repo, node_id: int) -> str:
    return repo.read_content(NodeId(node_id)).decode("utf-8")


# =============================================================================
# Link rewriting
# =============================================================================


class TestRewriteLinks:
    """Token-level rewriting of ../<id> links."""

    def test_prefix_ids_untouched(self):
        assert rewrite_links("see ../5 and ../52", NodeId(5), NodeId(9)) == "see ../9 and ../52"

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("[x](../5)", "[x](../9)"),
            ("../5", "../9"),
            ("../5\nnext", "../9\nnext"),
            ("end ../5.", "end ../9."),
            ("../5, ../5; ../5: ../5! ../5?", "../9, ../9; ../9: ../9! ../9?"),
            ("'../5' \"../5\"", "'../9' \"../9\""),
            ("[../5] {../5} <../5>", "[../9] {../9} <../9>"),
            ("[x](../5#section)", "[x](../9#section)"),
            ("../5\t../5", "../9\t../9"),
        ],
    )
    def test_boundaries(self, text: str, expected: str):
        assert rewrite_links(text, NodeId(5), NodeId(9)) == expected

    @pytest.mark.parametrize("text", ["../52", "../5a", "../50/", "5", "./5"])
    def test_non_matching(self, text: str):
        assert rewrite_links(text, NodeId(5), NodeId(9)) == text

    def test_rewrite_content_reports_no_change(self):
        assert rewrite_content(b"nothing here", NodeId(5), NodeId(9)) is None
        assert rewrite_content(b"../5", NodeId(5), NodeId(9)) == b"../9"

    def test_rewrite_content_matches_bytes(self):
        assert rewrite_content(b"\xff\xfe no links", NodeId(5), NodeId(9)) is None
        assert rewrite_content(b"\xff ../5 ../52", NodeId(5), NodeId(9)) == b"\xff ../9 ../52"


# =============================================================================
# Move
# =============================================================================


class TestMove:
    """Keg.move relocates a node and rewrites links to it."""

    @pytest.fixture
    def repo(self) -> CountingRepository:
        repo = CountingRepository(lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)
        put_node(repo, 1, "# One\n\nsee ../5 and ../52\n")
        put_node(repo, 2, "# Two\n\nNo links here.\n")
        put_node(repo, 5, "# Five\n")
        put_node(repo, 52, "# Fifty-two\n")
        return repo

    @pytest.fixture
    def moved_keg(self, repo: CountingRepository, clock) -> Keg:
        keg = Keg(repo, clock=clock)
        keg.index()
        repo.content_writes.clear()
        return keg

    def test_rewrites_referencing_nodes(self, moved_keg: Keg, repo: CountingRepository):
        moved_keg.move(5, 9)

        assert not repo.has_node(NodeId(5))
        assert _content(repo, 9) == "# Five\n"
        assert _content(repo, 1) == "# One\n\nsee ../9 and ../52\n"

    def test_unchanged_nodes_not_written(self, moved_keg: Keg, repo: CountingRepository):
        moved_keg.move(5, 9)
        assert repo.content_writes == [NodeId(1)]

    def test_dex_follows_move(self, moved_keg: Keg, repo: CountingRepository):
        moved_keg.move("5", "9")
        dex = moved_keg.dex()

        assert not dex.has_node(NodeId(5))
        assert dex.has_node(NodeId(9))
        assert dex.outgoing(NodeId(1)) == [NodeId(9), NodeId(52)]
        assert dex.incoming(NodeId(9)) == [NodeId(1)]
        assert dex.incoming(NodeId(5)) == []
        assert NodeStats.from_bytes(repo.read_stats(NodeId(1))).links == ["9", "52"]
        assert b"[Five](../9)" in repo.get_index("dex/changes.md")

    @pytest.mark.parametrize(
        "src, dst, error",
        [
            (0, 3, InvalidError),
            (1, 0, InvalidError),
            ("abc", 3, InvalidError),
            (7, 8, NotFoundError),
            (1, 2, DestinationExistsError),
        ],
    )
    def test_errors(self, moved_keg: Keg, repo: CountingRepository, src, dst, error):
        put_node(repo, 0, "# Zero\n")
        with pytest.raises(error):
            moved_keg.move(src, dst)
        assert repo.has_node(NodeId(1))

    def test_partial_failure_reports_failing_nodes(self, clock):
        repo = FailingRepository(NodeId(2), lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)
        for node_id in (1, 2, 3):
            put_node(repo, node_id, f"# Node {node_id}\n\nSee ../5\n")
        put_node(repo, 5, "# Five\n")
        keg = Keg(repo, clock=clock)
        keg.index()
        repo.armed = True

        with pytest.raises(BatchError) as exc:
            keg.move(5, 9)

        assert exc.value.operation == "move"
        assert exc.value.paths == ["2"]
        assert repo.has_node(NodeId(9))
        assert _content(repo, 1) == "# Node 1\n\nSee ../9\n"
        assert _content(repo, 2) == "# Node 2\n\nSee ../5\n"
        assert _content(repo, 3) == "# Node 3\n\nSee ../9\n"
        with repo.node_lock(NodeId(2), timeout=0.05):
            pass

    def test_undecodable_node_without_link_left_alone(self, keg: Keg, mem_repo):
        put_node(mem_repo, 1, "# One\n\nsee ../5\n")
        put_node(mem_repo, 5, "# Five\n")
        mem_repo.write_content(NodeId(7), b"\xff\xfe binary, no links")

        keg.move(5, 9)

        assert _content(mem_repo, 1) == "# One\n\nsee ../9\n"
        assert mem_repo.read_content(NodeId(7)) == b"\xff\xfe binary, no links"

    def test_recorded_links_are_the_rewritten_ones(self, keg: Keg, mem_repo):
        put_node(mem_repo, 1, "# One\n\n[a](../5#top) [b](../5/)\n")
        put_node(mem_repo, 5, "# Five\n")
        keg.index()
        assert keg.dex().outgoing(NodeId(1)) == [NodeId(5)]

        keg.move(5, 9)

        assert _content(mem_repo, 1) == "# One\n\n[a](../9#top) [b](../5/)\n"
        assert keg.dex().outgoing(NodeId(1)) == [NodeId(9)]
        assert NodeStats.from_bytes(mem_repo.read_stats(NodeId(1))).links == ["9"]

    def test_on_disk(self, fs_repo, clock):
        put_node(fs_repo, 1, "# One\n\n[five](../5)\n")
        put_node(fs_repo, 5, "# Five\n")
        keg = Keg(fs_repo, clock=clock)
        keg.index()

        keg.move(5, 9)

        assert not (fs_repo.root / "5").exists()
        assert (fs_repo.root / "9" / "stats.json").is_file()
        assert (fs_repo.root / "1" / "README.md").read_text() == "# One\n\n[five](../9)\n"
        assert (fs_repo.root / "dex" / "backlinks").read_text() == "1\t\n9\t1\n"


# =============================================================================
# Remove
# =============================================================================


class TestRemove:
    """Keg.remove deletes a node and redirects links to the zero node."""

    def test_redirects_links_to_zero(self, keg: Keg, mem_repo):
        keg.init()
        put_node(mem_repo, 1, "# One\n\nSee ../5 and ../55\n")
        put_node(mem_repo, 5, "# Five\n")
        keg.index()

        keg.remove(5)

        assert not mem_repo.has_node(NodeId(5))
        assert _content(mem_repo, 1) == "# One\n\nSee ../0 and ../55\n"
        assert not keg.dex().has_node(NodeId(5))
        assert keg.dex().incoming(NodeId(0)) == [NodeId(1)]
        assert b"../5)" not in mem_repo.get_index("dex/changes.md")

    def test_zero_node_cannot_be_removed(self, keg: Keg):
        keg.init()
        with pytest.raises(InvalidError):
            keg.remove(0)

    def test_missing_node(self, keg: Keg):
        with pytest.raises(NotFoundError):
            keg.remove(4)

    def test_partial_failure(self, clock):
        repo = FailingRepository(NodeId(1), lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)
        put_node(repo, 1, "# One\n\nSee ../5\n")
        put_node(repo, 2, "# Two\n\nSee ../5\n")
        put_node(repo, 5, "# Five\n")
        keg = Keg(repo, clock=clock)
        keg.index()
        repo.armed = True

        with pytest.raises(BatchError) as exc:
            keg.remove(5)

        assert exc.value.operation == "remove"
        assert exc.value.paths == ["1"]
        assert _content(repo, 2) == "# Two\n\nSee ../0\n"
