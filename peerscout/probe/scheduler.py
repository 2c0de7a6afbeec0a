"""
Concurrent test scheduler.

Runs reachability probes on a small thread pool. Every submission
produces exactly one ProbeResult, including submissions that were
cancelled before they ran, so a batch can always be seen to finish.
"""

import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from ..config import MAX_CONCURRENT_PROBES
from ..models import PeerCandidate, ProbeResult, ProbeStatus
from .ping import ProcessRegistry, ReachabilityProbe

logger = logging.getLogger(__name__)

ResultListener = Callable[[ProbeResult], None]

_batch_ids = itertools.count(1)


class CancellationToken:
    """Cancellation flag scoped to one batch."""
    
    def __init__(self, batch_id: Optional[int] = None):
        self.batch_id = batch_id if batch_id is not None else next(_batch_ids)
        self._event = threading.Event()
    
    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
    
    def cancel(self) -> None:
        self._event.set()
    
    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)
    
    def __repr__(self) -> str:
        return f"CancellationToken(batch_id={self.batch_id}, cancelled={self.cancelled})"


class ConcurrentTestScheduler:
    """
    Bounded pool of probe workers with batch cancellation.
    
    Usage:
        scheduler = ConcurrentTestScheduler()
        scheduler.add_listener(aggregator.record)
        
        token = scheduler.reset_cancellation()
        for peer in peers:
            scheduler.submit(peer)
        ...
        scheduler.cancel_all()   # from any thread
        scheduler.shutdown()
    
    Results are delivered to listeners one at a time, in completion
    order, from whichever thread finished the work. Listeners must not
    block for long.
    """
    
    def __init__(
        self,
        probe: Optional[ReachabilityProbe] = None,
        max_workers: int = MAX_CONCURRENT_PROBES
    ):
        self.max_workers = max_workers
        self.registry = ProcessRegistry()
        if probe is None:
            probe = ReachabilityProbe(registry=self.registry)
        elif getattr(probe, "registry", None) is not None:
            self.registry = probe.registry
        self.probe = probe
        
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="peer-probe"
        )
        self._token = CancellationToken()
        self._lock = threading.Lock()
        self._pending: Dict[Future, Tuple[PeerCandidate, CancellationToken]] = {}
        self._delivery_lock = threading.Lock()
        self._listeners: List[ResultListener] = []
        self._closed = False
    
    @property
    def token(self) -> CancellationToken:
        return self._token
    
    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
    
    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)
    
    def remove_listener(self, listener: ResultListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
    
    def reset_cancellation(self) -> CancellationToken:
        """Start a new batch with a fresh, uncancelled token."""
        self._token = CancellationToken()
        logger.debug(f"Cancellation reset, batch {self._token.batch_id}")
        return self._token
    
    def submit(self, candidate: PeerCandidate) -> None:
        """Queue one probe. Never blocks."""
        if self._closed:
            raise RuntimeError("Scheduler has been shut down")
        
        token = self._token
        with self._lock:
            future = self._executor.submit(self.probe.measure, candidate, token)
            self._pending[future] = (candidate, token)
        future.add_done_callback(self._on_done)
    
    def cancel_all(self) -> int:
        """
        Cancel the current batch.
        
        Queued probes are dropped and reported as cancelled before this
        returns; running pings are asked to terminate and report on
        their own. Returns the number of purged submissions.
        """
        self._token.cancel()
        
        with self._lock:
            queued = list(self._pending)
        
        purged = 0
        for future in queued:
            # cancel() runs the done callback in this thread
            if future.cancel():
                purged += 1
        
        terminated = self.registry.terminate_all()
        logger.info(
            f"Cancelled batch {self._token.batch_id}: "
            f"{purged} queued dropped, {terminated} running pings terminated"
        )
        return purged
    
    def shutdown(self, wait: bool = True) -> None:
        """Cancel outstanding work and stop the pool."""
        if self._closed:
            return
        self._closed = True
        self.cancel_all()
        self._executor.shutdown(wait=wait)
    
    def __enter__(self) -> "ConcurrentTestScheduler":
        return self
    
    def __exit__(self, *exc) -> None:
        self.shutdown()
    
    def _on_done(self, future: Future) -> None:
        with self._lock:
            candidate, token = self._pending.pop(future)
        
        if future.cancelled():
            peer = candidate.copy()
            peer.reset()
            result = ProbeResult(peer, ProbeStatus.CANCELLED, batch_id=token.batch_id)
        elif future.exception() is not None:
            logger.error(f"Probe task for {candidate.uri} failed: {future.exception()!r}")
            peer = candidate.copy()
            peer.reset()
            result = ProbeResult(peer, ProbeStatus.ERROR, batch_id=token.batch_id)
        else:
            result = future.result()
        
        self._deliver(result)
    
    def _deliver(self, result: ProbeResult) -> None:
        with self._delivery_lock:
            for listener in list(self._listeners):
                try:
                    listener(result)
                except Exception:
                    logger.exception(f"Result listener failed for {result.uri}")
