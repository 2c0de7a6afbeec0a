"""
Peer manager.

Ties discovery, testing, merging and export together around one
candidate set. A new discovery replaces the set and its results.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .config import Config, get_config
from .discovery import PeerSource, unique_candidates
from .export import CsvExporter
from .merge import ConfigMerger, MergeResult
from .models import PeerCandidate, ProbeResult
from .probe import (
    CancellationToken,
    ConcurrentTestScheduler,
    ReachabilityProbe,
    ResultAggregator,
)

logger = logging.getLogger(__name__)


class PeerManager:
    """
    Discover, test and adopt peers.
    
    Usage:
        async with PeerManager() as manager:
            await manager.discover()
            manager.start_tests()
            manager.wait_for_tests()
            manager.apply(manager.best(10))
    """
    
    def __init__(
        self,
        config: Optional[Config] = None,
        source: Optional[PeerSource] = None,
        scheduler: Optional[ConcurrentTestScheduler] = None,
        merger: Optional[ConfigMerger] = None,
        exporter: Optional[CsvExporter] = None
    ):
        self.config = config or get_config()
        
        self.source = source or PeerSource(
            url=self.config.discovery.url,
            timeout=self.config.discovery.timeout,
            proxy=self.config.discovery.proxy,
        )
        if scheduler is None:
            scheduler = ConcurrentTestScheduler(
                probe=ReachabilityProbe.from_config(self.config.probe),
                max_workers=self.config.probe.max_workers,
            )
        self.scheduler = scheduler
        self.merger = merger or ConfigMerger.from_config(self.config)
        self.exporter = exporter or CsvExporter()
        
        self.aggregator = ResultAggregator()
        self.scheduler.add_listener(self.aggregator.record)
        
        self.candidates: List[PeerCandidate] = []
        self._token: Optional[CancellationToken] = None
    
    @property
    def testing(self) -> bool:
        return self._token is not None and not self.aggregator.is_complete
    
    @property
    def tested_peers(self) -> List[PeerCandidate]:
        return [p for p in self.candidates if p.tested]
    
    @property
    def valid_peers(self) -> List[PeerCandidate]:
        return [p for p in self.candidates if p.valid]
    
    def set_candidates(self, candidates: Sequence[PeerCandidate], unique: bool = False) -> None:
        """Replace the candidate set, dropping earlier results."""
        if self.testing:
            self.cancel_tests()
        self.candidates = unique_candidates(candidates) if unique else list(candidates)
        self._token = None
    
    async def discover(self, unique: bool = False) -> List[PeerCandidate]:
        """Fetch a fresh candidate set. Raises FetchError."""
        candidates = await self.source.fetch()
        self.set_candidates(candidates, unique=unique)
        return self.candidates
    
    def start_tests(
        self,
        candidates: Optional[Sequence[PeerCandidate]] = None,
        on_result: Optional[Callable[[ProbeResult, float], None]] = None
    ) -> CancellationToken:
        """
        Test a batch (default: every candidate).
        
        Results land on the stored candidates as they arrive; use
        wait_for_tests() or the aggregator to follow progress.
        """
        batch = list(self.candidates if candidates is None else candidates)
        
        self._token = self.scheduler.reset_cancellation()
        for peer in batch:
            peer.reset()
        self.aggregator.on_progress = on_result
        self.aggregator.start_batch(batch, batch_id=self._token.batch_id)
        
        logger.info(f"Starting parallel test for {len(batch)} peers")
        for peer in batch:
            self.scheduler.submit(peer)
        return self._token
    
    def cancel_tests(self) -> int:
        logger.debug("Requesting cancellation of all active tests")
        return self.scheduler.cancel_all()
    
    def wait_for_tests(self, timeout: Optional[float] = None) -> bool:
        return self.aggregator.wait(timeout)
    
    def best(self, count: Optional[int] = None) -> List[PeerCandidate]:
        """Valid peers, fastest first."""
        ranked = sorted(self.valid_peers, key=lambda p: p.latency_ms)
        return ranked if count is None else ranked[:count]
    
    def apply(self, selected: Optional[Sequence[PeerCandidate]] = None) -> MergeResult:
        """Merge the selection (default: every candidate) into the config."""
        if not selected:
            logger.debug(f"No selection, using all {len(self.candidates)} peers")
            selected = self.candidates
        return self.merger.apply(selected)
    
    def export_csv(self, path: Union[str, Path]) -> int:
        return self.exporter.export(path, self.candidates)
    
    async def close(self) -> None:
        self.scheduler.shutdown()
        await self.source.close()
    
    async def __aenter__(self) -> "PeerManager":
        return self
    
    async def __aexit__(self, *exc) -> None:
        await self.close()
