"""
Peer discovery from a public peer directory.
"""

from .source import PeerSource, parse_peers, unique_candidates

__all__ = [
    "PeerSource",
    "parse_peers",
    "unique_candidates",
]
