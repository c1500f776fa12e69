"""Storage backends."""

from .base import Repository, holds_node_lock
from .filesystem import FileRepository
from .memory import MemoryRepository

__all__ = ["FileRepository", "MemoryRepository", "Repository", "holds_node_lock"]
