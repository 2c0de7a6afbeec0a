"""
CSV report of the current peer set.
"""

import csv
import logging
from pathlib import Path
from typing import Iterable, List, Union

from .errors import FileIOError
from .models import LATENCY_UNTESTED, PeerCandidate

logger = logging.getLogger(__name__)

CSV_HEADER = ["Host", "Latency (ms)", "Valid"]


def latency_cell(peer: PeerCandidate) -> str:
    if peer.latency_ms == LATENCY_UNTESTED:
        return "Not Tested"
    if peer.latency_ms < LATENCY_UNTESTED:
        return "Failed"
    return str(peer.latency_ms)


def validity_cell(peer: PeerCandidate) -> str:
    # untested peers get no verdict
    if not peer.tested:
        return ""
    return "Valid" if peer.valid else "Invalid"


def peer_rows(peers: Iterable[PeerCandidate]) -> List[List[str]]:
    return [[peer.uri, latency_cell(peer), validity_cell(peer)] for peer in peers]


class CsvExporter:
    """Writes peers, tested or not, to a quoted UTF-8 CSV file."""
    
    def export(self, path: Union[str, Path], peers: Iterable[PeerCandidate]) -> int:
        """Write the report and return the number of peer rows."""
        rows = peer_rows(peers)
        try:
            with open(path, "w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
                writer.writerow(CSV_HEADER)
                writer.writerows(rows)
        except OSError as e:
            logger.error(f"Could not write CSV to {path}: {e}")
            raise FileIOError(f"Could not open file for writing: {path}: {e}", path=str(path)) from e
        
        logger.info(f"Exported {len(rows)} peers to {path}")
        return len(rows)


def export_csv(path: Union[str, Path], peers: Iterable[PeerCandidate]) -> int:
    return CsvExporter().export(path, peers)
