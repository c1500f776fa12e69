"""Shared test fixtures for the kegdex test suite.

Design:
- clock: deterministic, manually advanced clock for watermark tests
- mem_repo / keg: in-memory repository and a Keg coordinating it
- tmp_keg: on-disk keg directory with KEGDEX_ROOT pointing at it
- runner: CliRunner for CLI tests
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from click.testing import CliRunner

from kegdex.keg import Keg
from kegdex.models import NodeMeta, NodeStats
from kegdex.node import NodeData
from kegdex.node_id import NodeId
from kegdex.repository import FileRepository, MemoryRepository

# Short lock timings keep lock contention tests fast
LOCK_TIMEOUT = 1.0
LOCK_RETRY = 0.01


# ─────────────────────────────────────────────────────────────────────────────
# Markers
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 60) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mem_repo() -> MemoryRepository:
    return MemoryRepository(lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)


@pytest.fixture
def keg(mem_repo: MemoryRepository, clock: FakeClock) -> Keg:
    """Keg over an in-memory repository with a fake clock."""
    return Keg(mem_repo, clock=clock)


@pytest.fixture
def fs_repo(tmp_path: Path) -> FileRepository:
    root = tmp_path / "keg"
    root.mkdir()
    return FileRepository(root, lock_timeout=LOCK_TIMEOUT, lock_retry=LOCK_RETRY)


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def tmp_keg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Empty keg directory used as KEGDEX_ROOT."""
    root = tmp_path / "keg"
    root.mkdir()
    monkeypatch.setenv("KEGDEX_ROOT", str(root))
    monkeypatch.setenv("KEGDEX_LOCK_TIMEOUT", str(LOCK_TIMEOUT))
    monkeypatch.setenv("KEGDEX_LOCK_RETRY", str(LOCK_RETRY))
    return root


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def make_node(
    node_id: int | NodeId,
    title: str = "",
    tags: Iterable[str] = (),
    links: Iterable[int] = (),
    updated: datetime | None = None,
) -> NodeData:
    """Build a NodeData for index builder tests without any content.

    Usage in tests:
        from conftest import make_node
        node = make_node(3, "Three", tags=["a"], links=[1, 2])
    """
    if not isinstance(node_id, NodeId):
        node_id = NodeId(node_id)
    stats = NodeStats(title=title, updated=updated)
    stats.set_links([NodeId(link) for link in links])
    return NodeData(node_id, None, NodeMeta(tags=list(tags)), stats)


def put_node(repo, node_id: int, content: str) -> NodeId:
    """Write raw content straight to a repository, as an editor would."""
    nid = NodeId(node_id)
    repo.write_content(nid, content.encode("utf-8"))
    return nid


def ts(text: str) -> datetime:
    """Parse an ISO timestamp like 2025-03-01T12:00:00Z."""
    return datetime.fromisoformat(text.replace("Z", "+00:00"))
