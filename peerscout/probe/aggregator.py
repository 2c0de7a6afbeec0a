"""
Batch completion accounting.

Counts delivered results against submissions and folds each result
back into the stored candidate list.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from ..models import LATENCY_FAILED, PeerCandidate, ProbeResult

logger = logging.getLogger(__name__)


class ResultAggregator:
    """
    Tracks one test batch.
    
    The batch is complete when completed_count == submitted_count,
    which holds even after a cancellation because the scheduler reports
    every submission.
    """
    
    def __init__(self, candidates: Optional[Iterable[PeerCandidate]] = None):
        self._cond = threading.Condition()
        self._candidates: List[PeerCandidate] = []
        self._by_uri: Dict[str, List[PeerCandidate]] = {}
        self._by_host: Dict[str, List[PeerCandidate]] = {}
        self.batch_id: Optional[int] = None
        self.submitted_count = 0
        self.completed_count = 0
        self.valid_count = 0
        self.on_progress: Optional[Callable[[ProbeResult, float], None]] = None
        if candidates is not None:
            self.start_batch(candidates)
    
    @property
    def candidates(self) -> List[PeerCandidate]:
        return self._candidates
    
    @property
    def is_complete(self) -> bool:
        with self._cond:
            return self.completed_count >= self.submitted_count
    
    @property
    def progress(self) -> float:
        with self._cond:
            if self.submitted_count == 0:
                return 1.0
            return min(self.completed_count / self.submitted_count, 1.0)
    
    def start_batch(
        self,
        candidates: Iterable[PeerCandidate],
        batch_id: Optional[int] = None,
        submitted: Optional[int] = None
    ) -> None:
        """
        Begin counting a new batch.
        
        `submitted` defaults to the number of candidates; pass it when
        only part of the list is submitted.
        """
        with self._cond:
            self._candidates = list(candidates)
            self._by_uri = {}
            self._by_host = {}
            for candidate in self._candidates:
                self._by_uri.setdefault(candidate.uri, []).append(candidate)
                host = candidate.host
                if host:
                    self._by_host.setdefault(host, []).append(candidate)
            
            self.batch_id = batch_id
            self.submitted_count = len(self._candidates) if submitted is None else submitted
            self.completed_count = 0
            self.valid_count = 0
            self._cond.notify_all()
    
    def record(self, result: ProbeResult) -> None:
        """Fold one delivered result into the batch."""
        with self._cond:
            if self.batch_id is not None and result.batch_id != self.batch_id:
                logger.debug(
                    f"Ignoring result for {result.uri} from batch {result.batch_id} "
                    f"(current batch {self.batch_id})"
                )
                return
            
            self.completed_count += 1
            if result.valid:
                self.valid_count += 1
            
            targets = self._by_uri.get(result.uri)
            if not targets:
                targets = self._by_host.get(result.candidate.host, [])
            
            for candidate in targets:
                if result.valid:
                    candidate.latency_ms = result.latency_ms
                    candidate.valid = True
                elif result.status.attempted:
                    candidate.latency_ms = LATENCY_FAILED
                    candidate.valid = False
                else:
                    candidate.reset()
            
            progress = (
                min(self.completed_count / self.submitted_count, 1.0)
                if self.submitted_count else 1.0
            )
            logger.debug(
                f"Tested {self.completed_count}/{self.submitted_count}: "
                f"{result.uri} {result.status.value} valid={result.valid}"
            )
            if self.completed_count >= self.submitted_count:
                logger.info(
                    f"Testing complete: {self.valid_count}/{self.submitted_count} peers reachable"
                )
            self._cond.notify_all()
        
        if self.on_progress is not None:
            self.on_progress(result, progress)
    
    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the batch completes. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self.completed_count >= self.submitted_count,
                timeout=timeout
            )
