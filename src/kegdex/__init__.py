"""kegdex: indexing engine for a keg of markdown nodes."""

from .dex import Dex
from .errors import (
    BatchError,
    ConfigurationError,
    DestinationExistsError,
    InvalidError,
    KegError,
    LockTimeoutError,
    NotFoundError,
    ParseError,
)
from .keg import Keg
from .node_id import NodeId

__version__ = "0.1.0"

__all__ = [
    "BatchError",
    "ConfigurationError",
    "DestinationExistsError",
    "Dex",
    "InvalidError",
    "Keg",
    "KegError",
    "LockTimeoutError",
    "NodeId",
    "NotFoundError",
    "ParseError",
    "__version__",
]
