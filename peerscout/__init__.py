"""
peerscout - discover, test and adopt public mesh peers.

Fetches the public peer directory, pings candidates on a bounded
worker pool and writes the fastest ones into the daemon configuration.

Example:
    >>> from peerscout import PeerManager
    >>> async with PeerManager() as manager:
    ...     await manager.discover()
    ...     manager.start_tests()
    ...     manager.wait_for_tests()
    ...     manager.apply(manager.best(10))
"""

__version__ = "1.0.0"

from .config import Config, get_config
from .errors import (
    FetchError,
    FileIOError,
    MergeError,
    MergeHelperFailure,
    MergeTimeout,
    PeerScoutError,
)
from .manager import PeerManager
from .models import PeerCandidate, ProbeResult, ProbeStatus
from .uri import extract_host, parse_peer_uri

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "FetchError",
    "FileIOError",
    "MergeError",
    "MergeHelperFailure",
    "MergeTimeout",
    "PeerScoutError",
    "PeerManager",
    "PeerCandidate",
    "ProbeResult",
    "ProbeStatus",
    "extract_host",
    "parse_peer_uri",
]
