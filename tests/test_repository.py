"""Tests for the storage backends and per-node locking."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from conftest import LOCK_RETRY, LOCK_TIMEOUT
from kegdex.config import KegConfig
from kegdex.errors import DestinationExistsError, InvalidError, LockTimeoutError, NotFoundError
from kegdex.node_id import NodeId
from kegdex.repository import FileRepository, MemoryRepository, Repository, holds_node_lock


@pytest.fixture(params=["memory", "filesystem"])
def repo(request, tmp_path: Path) -> Repository:
    if request.param == "memory":
        return MemoryRepository(lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)
    root = tmp_path / "keg"
    root.mkdir()
    return FileRepository(root, lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)


def hold_lock_in_thread(repo: Repository, node_id: NodeId):
    """Take a node lock on another thread until the returned event is set."""
    acquired = threading.Event()
    release = threading.Event()

    def run():
        with repo.node_lock(node_id):
            acquired.set()
            release.wait(5)

    thread = threading.Thread(target=run)
    thread.start()
    assert acquired.wait(5)
    return release, thread


# =============================================================================
# Contract
# =============================================================================


class TestRepositoryContract:
    """Behavior shared by every backend."""

    def test_content_round_trip(self, repo: Repository):
        repo.write_content(NodeId(1), b"# One\n")
        assert repo.read_content(NodeId(1)) == b"# One\n"
        assert repo.has_node(NodeId(1))

    def test_missing_node(self, repo: Repository):
        assert not repo.has_node(NodeId(1))
        with pytest.raises(NotFoundError):
            repo.read_content(NodeId(1))

    def test_meta_and_stats_probes(self, repo: Repository):
        repo.write_content(NodeId(1), b"# One\n")
        assert not repo.has_meta(NodeId(1))
        assert not repo.has_stats(NodeId(1))
        with pytest.raises(NotFoundError):
            repo.read_meta(NodeId(1))

        repo.write_meta(NodeId(1), b"tags: []\n")
        repo.write_stats(NodeId(1), b"{}")
        assert repo.has_meta(NodeId(1))
        assert repo.read_stats(NodeId(1)) == b"{}"

    def test_list_and_next(self, repo: Repository):
        assert repo.list_nodes() == []
        assert repo.next_id() == NodeId(0)

        for node_id in (10, 2, 0):
            repo.write_content(NodeId(node_id), b"x")

        assert repo.list_nodes() == [NodeId(0), NodeId(2), NodeId(10)]
        assert repo.next_id() == NodeId(11)

    def test_move(self, repo: Repository):
        repo.write_content(NodeId(1), b"one")
        repo.write_meta(NodeId(1), b"tags: [a]\n")
        repo.move_node(NodeId(1), NodeId(2))

        assert not repo.has_node(NodeId(1))
        assert repo.read_content(NodeId(2)) == b"one"
        assert repo.read_meta(NodeId(2)) == b"tags: [a]\n"

    def test_move_errors(self, repo: Repository):
        repo.write_content(NodeId(1), b"one")
        repo.write_content(NodeId(2), b"two")

        with pytest.raises(NotFoundError):
            repo.move_node(NodeId(5), NodeId(6))
        with pytest.raises(DestinationExistsError):
            repo.move_node(NodeId(1), NodeId(2))

    def test_delete(self, repo: Repository):
        repo.write_content(NodeId(1), b"one")
        repo.delete_node(NodeId(1))
        assert not repo.has_node(NodeId(1))
        with pytest.raises(NotFoundError):
            repo.delete_node(NodeId(1))

    def test_indexes(self, repo: Repository):
        with pytest.raises(NotFoundError):
            repo.get_index("dex/tags")

        repo.write_index("dex/tags", b"a 1\n")
        repo.write_index("dex/changes.md", b"")
        assert repo.list_indexes() == ["dex/changes.md", "dex/tags"]
        assert repo.get_index("dex/tags") == b"a 1\n"

        repo.clear_indexes()
        assert repo.list_indexes() == []

    def test_config(self, repo: Repository):
        with pytest.raises(NotFoundError):
            repo.read_config()

        config = KegConfig(title="Notes", updated=None)
        repo.write_config(config)
        assert repo.read_config() == config


# =============================================================================
# Locking
# =============================================================================


class TestNodeLock:
    """Per-node exclusive sections."""

    def test_reentrant_within_context(self, repo: Repository):
        node_id = NodeId(1)
        ran = []
        with repo.node_lock(node_id):
            assert holds_node_lock(repo.lock_namespace, node_id)
            with repo.node_lock(node_id, timeout=0.05):
                ran.append(True)
        assert ran == [True]
        assert not holds_node_lock(repo.lock_namespace, node_id)

    def test_with_node_lock_returns_value(self, repo: Repository):
        assert repo.with_node_lock(NodeId(1), lambda: 42) == 42

    def test_timeout_when_held_elsewhere(self, repo: Repository):
        release, thread = hold_lock_in_thread(repo, NodeId(1))
        try:
            with pytest.raises(LockTimeoutError, match="node 1"):
                with repo.node_lock(NodeId(1), timeout=0.05):
                    pass
        finally:
            release.set()
            thread.join()

    def test_other_nodes_not_blocked(self, repo: Repository):
        release, thread = hold_lock_in_thread(repo, NodeId(1))
        try:
            with repo.node_lock(NodeId(2), timeout=0.05):
                pass
        finally:
            release.set()
            thread.join()

    def test_released_after_exception(self, repo: Repository):
        with pytest.raises(RuntimeError):
            with repo.node_lock(NodeId(1)):
                raise RuntimeError("fail")

        with repo.node_lock(NodeId(1), timeout=0.05):
            pass

    def test_waits_for_release(self, repo: Repository):
        release, thread = hold_lock_in_thread(repo, NodeId(1))
        threading.Timer(0.1, release.set).start()

        with repo.node_lock(NodeId(1), timeout=2):
            assert release.is_set()
        thread.join()

    def test_sections_never_overlap(self, repo: Repository):
        spans: list[tuple[float, float]] = []

        def work():
            with repo.node_lock(NodeId(1), timeout=5):
                start = time.monotonic()
                time.sleep(0.05)
                spans.append((start, time.monotonic()))

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        spans.sort()
        assert len(spans) == 4
        for (_, end), (next_start, _) in zip(spans, spans[1:]):
            assert end <= next_start


# =============================================================================
# Filesystem specifics
# =============================================================================


class TestFileRepository:
    """Directory layout details of the filesystem backend."""

    def test_layout(self, fs_repo: FileRepository):
        fs_repo.write_content(NodeId(3), b"# Three\n")
        fs_repo.write_meta(NodeId(3), b"tags: []\n")
        fs_repo.write_stats(NodeId(3), b"{}\n")
        fs_repo.write_index("dex/tags", b"")
        fs_repo.write_config(KegConfig(title="Notes"))

        root = fs_repo.root
        assert (root / "3" / "README.md").read_bytes() == b"# Three\n"
        assert (root / "3" / "meta.yaml").is_file()
        assert (root / "3" / "stats.json").is_file()
        assert (root / "dex" / "tags").is_file()
        assert "title: Notes" in (root / "keg").read_text()

    def test_no_temp_files_left(self, fs_repo: FileRepository):
        fs_repo.write_content(NodeId(1), b"x")
        fs_repo.write_content(NodeId(1), b"y")
        assert sorted(p.name for p in (fs_repo.root / "1").iterdir()) == ["README.md"]

    def test_list_ignores_non_node_dirs(self, fs_repo: FileRepository):
        fs_repo.write_content(NodeId(1), b"x")
        fs_repo.write_index("dex/tags", b"")
        (fs_repo.root / "notes").mkdir()
        (fs_repo.root / "007").mkdir()
        with fs_repo.node_lock(NodeId(1)):
            pass

        assert fs_repo.list_nodes() == [NodeId(1)]

    def test_index_names_confined_to_dex(self, fs_repo: FileRepository):
        for name in ("tags", "../escape", "/etc/passwd", "dex/../keg"):
            with pytest.raises(InvalidError):
                fs_repo.write_index(name, b"")

    def test_reads_keg_yaml(self, fs_repo: FileRepository):
        (fs_repo.root / "keg.yaml").write_text("kegv: '2023-01'\ntitle: Legacy\n")
        config = fs_repo.read_config()
        assert config.title == "Legacy"
        assert config.kegv == "2025-07"

    def test_alias_dropped_for_storage(self, fs_repo: FileRepository):
        fs_repo.write_content(NodeId(4, alias="work"), b"x")
        assert (fs_repo.root / "4" / "README.md").is_file()
