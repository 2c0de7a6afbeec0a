"""
Merging selected peers into the daemon configuration.
"""

from .merger import ConfigMerger, MergeResult, interpret_helper_exit, sort_peers
from .rewrite import (
    BACKUP_SUFFIX,
    SUCCESS_MARKER,
    apply_peer_list,
    locate_config,
    read_peer_list,
    replace_peers_block,
)

__all__ = [
    "ConfigMerger",
    "MergeResult",
    "interpret_helper_exit",
    "sort_peers",
    "BACKUP_SUFFIX",
    "SUCCESS_MARKER",
    "apply_peer_list",
    "locate_config",
    "read_peer_list",
    "replace_peers_block",
]
