"""Filesystem repository.

Layout under the keg root:

    keg                 config (keg.yaml / keg.yml also read)
    dex/<name>          index artifacts
    <id>/README.md      node content
    <id>/meta.yaml      node meta
    <id>/stats.json     node stats
    .locks/<id>.lock    per-node lock files (fcntl)

Blob writes go through a temp file and os.replace, so readers never see a
partially written file.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import IO

from ..config import CONFIG_FILENAMES, KegConfig
from ..errors import DestinationExistsError, InvalidError, NotFoundError
from ..node_id import NodeId
from .base import Repository

log = logging.getLogger(__name__)

CONTENT_FILENAME = "README.md"
META_FILENAME = "meta.yaml"
STATS_FILENAME = "stats.json"
DEX_DIRNAME = "dex"
LOCKS_DIRNAME = ".locks"


def write_file_atomically(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a sibling temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileRepository(Repository):
    """Stores a keg as a directory tree."""

    def __init__(
        self,
        root: str | Path,
        lock_timeout: float | None = None,
        lock_retry: float | None = None,
    ):
        super().__init__(lock_timeout, lock_retry)
        self.root = Path(root)
        self._lock_files: dict[NodeId, IO[bytes]] = {}

    @property
    def lock_namespace(self) -> str:
        return f"fs:{self.root.resolve()}"

    def __repr__(self) -> str:
        return f"FileRepository({str(self.root)!r})"

    # -- paths ----------------------------------------------------------------

    def node_dir(self, node_id: NodeId) -> Path:
        # Nodes stored here belong to this keg; any alias is dropped
        return self.root / NodeId(node_id.id, node_id.code).path

    def _index_path(self, name: str) -> Path:
        rel = Path(name)
        if rel.is_absolute() or ".." in rel.parts or rel.parts[:1] != (DEX_DIRNAME,):
            raise InvalidError(f"invalid index name {name!r}: must live under {DEX_DIRNAME}/")
        return self.root / rel

    def _config_path(self) -> Path | None:
        for filename in CONFIG_FILENAMES:
            candidate = self.root / filename
            if candidate.is_file():
                return candidate
        return None

    def _read(self, path: Path, what: str) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"{what} not found: {path}") from None

    def _write_blob(self, node_id: NodeId, filename: str, data: bytes) -> None:
        write_file_atomically(self.node_dir(node_id) / filename, data)

    # -- node blobs -----------------------------------------------------------

    def read_content(self, node_id: NodeId) -> bytes:
        if not self.has_node(node_id):
            raise NotFoundError(f"node {node_id.path} not found")
        return self._read(self.node_dir(node_id) / CONTENT_FILENAME, f"content of node {node_id.path}")

    def write_content(self, node_id: NodeId, data: bytes) -> None:
        self._write_blob(node_id, CONTENT_FILENAME, data)

    def read_meta(self, node_id: NodeId) -> bytes:
        return self._read(self.node_dir(node_id) / META_FILENAME, f"meta of node {node_id.path}")

    def write_meta(self, node_id: NodeId, data: bytes) -> None:
        self._write_blob(node_id, META_FILENAME, data)

    def read_stats(self, node_id: NodeId) -> bytes:
        return self._read(self.node_dir(node_id) / STATS_FILENAME, f"stats of node {node_id.path}")

    def write_stats(self, node_id: NodeId, data: bytes) -> None:
        self._write_blob(node_id, STATS_FILENAME, data)

    def has_meta(self, node_id: NodeId) -> bool:
        return (self.node_dir(node_id) / META_FILENAME).is_file()

    def has_stats(self, node_id: NodeId) -> bool:
        return (self.node_dir(node_id) / STATS_FILENAME).is_file()

    # -- node set -------------------------------------------------------------

    def has_node(self, node_id: NodeId) -> bool:
        return self.node_dir(node_id).is_dir()

    def list_nodes(self) -> list[NodeId]:
        if not self.root.is_dir():
            return []
        ids = []
        for child in self.root.iterdir():
            if not child.is_dir():
                continue
            try:
                ids.append(NodeId.parse(child.name))
            except InvalidError:
                continue
        return sorted(ids)

    def next_id(self) -> NodeId:
        return NodeId(max((n.id for n in self.list_nodes()), default=-1) + 1)

    def move_node(self, src: NodeId, dst: NodeId) -> None:
        src_dir, dst_dir = self.node_dir(src), self.node_dir(dst)
        if not src_dir.is_dir():
            raise NotFoundError(f"node {src.path} not found")
        if dst_dir.exists():
            raise DestinationExistsError(f"node {dst.path} already exists")
        os.rename(src_dir, dst_dir)
        log.info("Moved node directory %s -> %s", src_dir, dst_dir)

    def delete_node(self, node_id: NodeId) -> None:
        node_dir = self.node_dir(node_id)
        if not node_dir.is_dir():
            raise NotFoundError(f"node {node_id.path} not found")
        shutil.rmtree(node_dir)
        log.info("Deleted node directory %s", node_dir)

    # -- indexes --------------------------------------------------------------

    def get_index(self, name: str) -> bytes:
        return self._read(self._index_path(name), f"index {name}")

    def write_index(self, name: str, data: bytes) -> None:
        write_file_atomically(self._index_path(name), data)

    def list_indexes(self) -> list[str]:
        dex_dir = self.root / DEX_DIRNAME
        if not dex_dir.is_dir():
            return []
        return sorted(f"{DEX_DIRNAME}/{p.name}" for p in dex_dir.iterdir() if p.is_file())

    def clear_indexes(self) -> None:
        dex_dir = self.root / DEX_DIRNAME
        if not dex_dir.is_dir():
            return
        for path in dex_dir.iterdir():
            if path.is_file():
                path.unlink()

    # -- config ---------------------------------------------------------------

    def read_config(self) -> KegConfig:
        path = self._config_path()
        if path is None:
            raise NotFoundError(f"keg config not found in {self.root}")
        return KegConfig.from_yaml(path.read_bytes())

    def write_config(self, config: KegConfig) -> None:
        path = self._config_path() or self.root / CONFIG_FILENAMES[0]
        write_file_atomically(path, config.to_yaml())

    # -- locking --------------------------------------------------------------

    def _lock_path(self, node_id: NodeId) -> Path:
        return self.root / LOCKS_DIRNAME / f"{NodeId(node_id.id, node_id.code).path}.lock"

    def _try_lock(self, node_id: NodeId) -> bool:
        path = self._lock_path(node_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        f = open(path, "ab")
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            f.close()
            return False
        self._lock_files[node_id] = f
        return True

    def _unlock(self, node_id: NodeId) -> None:
        f = self._lock_files.pop(node_id, None)
        if f is None:
            return
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        finally:
            f.close()
