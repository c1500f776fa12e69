"""Error taxonomy for kegdex.

Every error raised by the engine derives from KegError and carries a short
machine-readable ``code`` alongside the human message, so the CLI can render
either form.
"""

from __future__ import annotations

import json
from typing import Any


class KegError(Exception):
    """Base class for all kegdex errors."""

    code = "KEG_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class NotFoundError(KegError):
    """A node, config, index or meta record is absent."""

    code = "NOT_FOUND"


class DestinationExistsError(KegError):
    """Move target is already occupied."""

    code = "DESTINATION_EXISTS"


class InvalidError(KegError):
    """Malformed node id, or an operation on the reserved zero node."""

    code = "INVALID"


class LockTimeoutError(KegError):
    """A node's exclusive section was not acquired before the deadline."""

    code = "LOCK_TIMEOUT"


class ParseError(KegError):
    """Malformed tag query."""

    code = "PARSE_ERROR"

    def __init__(self, message: str, position: int | None = None):
        details = {"position": position} if position is not None else None
        super().__init__(message, details)
        self.position = position


class ConfigurationError(KegError):
    """Raised when configuration or runtime settings are invalid."""

    code = "CONFIGURATION_ERROR"


class BatchError(KegError):
    """Aggregate of per-node failures from a bulk operation.

    Attributes:
        operation: Name of the bulk operation (reindex, move, remove).
        failures: Node path -> exception raised while processing that node.
    """

    code = "BATCH_ERROR"

    def __init__(self, operation: str, failures: dict[str, Exception]):
        self.operation = operation
        self.failures = dict(failures)
        lines = [f"{operation}: {len(self.failures)} node(s) failed"]
        for path, exc in self.failures.items():
            lines.append(f"  {path}: {exc}")
        super().__init__(
            "\n".join(lines),
            {"failures": {path: str(exc) for path, exc in self.failures.items()}},
        )

    @property
    def paths(self) -> list[str]:
        return list(self.failures)
