"""
Tests for the concurrent test scheduler and batch accounting.
"""

import threading
import time

import pytest

from peerscout.models import LATENCY_FAILED, PeerCandidate, ProbeResult, ProbeStatus
from peerscout.probe import ConcurrentTestScheduler, ReachabilityProbe, ResultAggregator


class FakeProbe:
    """Sleeps instead of pinging, polling the token like the real probe."""
    
    def __init__(self, delay: float = 0.05, latency: int = 10, fail=None):
        self.delay = delay
        self.latency = latency
        self.fail = set(fail or [])
        self.registry = None
        self.running = 0
        self.max_running = 0
        self.started = 0
        self._lock = threading.Lock()
    
    def measure(self, candidate, token=None):
        peer = candidate.copy()
        peer.reset()
        if token.cancelled:
            return ProbeResult(peer, ProbeStatus.SKIPPED, batch_id=token.batch_id)
        
        with self._lock:
            self.started += 1
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            if candidate.uri in self.fail:
                raise RuntimeError("probe blew up")
            deadline = time.monotonic() + self.delay
            while time.monotonic() < deadline:
                if token.cancelled:
                    return ProbeResult(peer, ProbeStatus.CANCELLED, batch_id=token.batch_id)
                time.sleep(0.005)
        finally:
            with self._lock:
                self.running -= 1
        
        peer.latency_ms = self.latency
        peer.valid = True
        return ProbeResult(peer, ProbeStatus.COMPLETED, batch_id=token.batch_id)


def make_peers(count: int):
    return [PeerCandidate(f"tcp://10.0.0.{i}:1234") for i in range(1, count + 1)]


def start(scheduler, aggregator, peers):
    token = scheduler.reset_cancellation()
    aggregator.start_batch(peers, batch_id=token.batch_id)
    for peer in peers:
        scheduler.submit(peer)
    return token


class TestConcurrentTestScheduler:
    """Tests for ConcurrentTestScheduler."""
    
    def test_every_submission_reported(self):
        """Test that each submit yields exactly one result."""
        probe = FakeProbe()
        peers = make_peers(12)
        results = []
        
        with ConcurrentTestScheduler(probe=probe, max_workers=3) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(aggregator.record)
            scheduler.add_listener(results.append)
            start(scheduler, aggregator, peers)
            
            assert aggregator.wait(timeout=5)
        
        assert aggregator.completed_count == aggregator.submitted_count == 12
        assert sorted(r.uri for r in results) == sorted(p.uri for p in peers)
        assert all(p.valid and p.latency_ms == 10 for p in peers)
    
    def test_parallelism_bounded(self):
        """Test that no more than max_workers probes run at once."""
        probe = FakeProbe(delay=0.05)
        
        with ConcurrentTestScheduler(probe=probe, max_workers=3) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(aggregator.record)
            start(scheduler, aggregator, make_peers(15))
            assert aggregator.wait(timeout=5)
        
        assert probe.max_running <= 3
        assert probe.started == 15
    
    def test_submit_does_not_block(self):
        """Test that submit returns while probes are still running."""
        probe = FakeProbe(delay=0.5)
        
        with ConcurrentTestScheduler(probe=probe, max_workers=1) as scheduler:
            started = time.monotonic()
            for peer in make_peers(5):
                scheduler.submit(peer)
            
            assert time.monotonic() - started < 0.3
            assert scheduler.pending_count > 0
            scheduler.cancel_all()
    
    def test_cancel_mid_batch_still_completes(self):
        """Test that completion is reached after cancelling part way through submission."""
        probe = FakeProbe(delay=0.5)
        peers = make_peers(20)
        
        with ConcurrentTestScheduler(probe=probe, max_workers=2) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(aggregator.record)
            token = scheduler.reset_cancellation()
            aggregator.start_batch(peers, batch_id=token.batch_id)
            
            for peer in peers[:10]:
                scheduler.submit(peer)
            time.sleep(0.1)
            scheduler.cancel_all()
            # late submissions under the cancelled token are skipped but counted
            for peer in peers[10:]:
                scheduler.submit(peer)
            
            assert aggregator.wait(timeout=5)
        
        assert aggregator.completed_count == 20
        assert not any(p.valid for p in peers)
        assert not any(p.tested for p in peers)
    
    def test_cancel_purges_queued_work(self):
        """Test that few results arrive after cancel_all returns."""
        probe = FakeProbe(delay=0.5)
        peers = make_peers(20)
        results = []
        lock = threading.Lock()
        
        def listener(result):
            with lock:
                results.append(result)
        
        with ConcurrentTestScheduler(probe=probe, max_workers=2) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(listener)
            scheduler.add_listener(aggregator.record)
            start(scheduler, aggregator, peers)
            time.sleep(0.1)
            
            began = time.monotonic()
            purged = scheduler.cancel_all()
            assert time.monotonic() - began < 0.5
            with lock:
                delivered_at_return = len(results)
            
            assert aggregator.wait(timeout=5)
        
        assert purged >= 20 - 2 - 2
        assert len(results) == 20
        # only work already picked up by the two workers can still report
        assert len(results) - delivered_at_return <= 4
        statuses = {r.status for r in results}
        assert statuses <= {ProbeStatus.CANCELLED, ProbeStatus.SKIPPED}
    
    def test_reset_starts_new_batch(self):
        """Test that a cancelled scheduler works again after reset."""
        probe = FakeProbe()
        
        with ConcurrentTestScheduler(probe=probe, max_workers=2) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(aggregator.record)
            
            first = start(scheduler, aggregator, make_peers(3))
            scheduler.cancel_all()
            assert aggregator.wait(timeout=5)
            
            # no reset: the stale cancellation skips everything
            stale = make_peers(2)
            aggregator.start_batch(stale, batch_id=first.batch_id)
            for peer in stale:
                scheduler.submit(peer)
            assert aggregator.wait(timeout=5)
            assert not any(p.valid for p in stale)
            
            fresh = make_peers(4)
            second = start(scheduler, aggregator, fresh)
            assert aggregator.wait(timeout=5)
        
        assert second.batch_id != first.batch_id
        assert first.cancelled and not second.cancelled
        assert all(p.valid for p in fresh)
    
    def test_probe_exception_reported(self):
        """Test that a crashing probe still produces a result."""
        peers = make_peers(3)
        probe = FakeProbe(fail=[peers[1].uri])
        
        with ConcurrentTestScheduler(probe=probe, max_workers=2) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(aggregator.record)
            start(scheduler, aggregator, peers)
            assert aggregator.wait(timeout=5)
        
        assert peers[0].valid and peers[2].valid
        assert peers[1].latency_ms == LATENCY_FAILED
    
    def test_listener_error_isolated(self):
        """Test that a failing listener does not stop delivery."""
        def broken(result):
            raise ValueError("listener bug")
        
        with ConcurrentTestScheduler(probe=FakeProbe(), max_workers=2) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(broken)
            scheduler.add_listener(aggregator.record)
            start(scheduler, aggregator, make_peers(4))
            assert aggregator.wait(timeout=5)
    
    def test_submit_after_shutdown(self):
        """Test that a shut down scheduler refuses work."""
        scheduler = ConcurrentTestScheduler(probe=FakeProbe())
        scheduler.shutdown()
        
        with pytest.raises(RuntimeError):
            scheduler.submit(PeerCandidate("tcp://10.0.0.1:1"))
    
    def test_cancel_terminates_running_pings(self, fake_ping):
        """Test cancelling real ping processes without waiting on them."""
        peers = make_peers(4)
        probe = ReachabilityProbe(
            ping_command=fake_ping({p.host: "hang" for p in peers}),
            timeout=20,
            terminate_grace=0.5
        )
        
        with ConcurrentTestScheduler(probe=probe, max_workers=2) as scheduler:
            aggregator = ResultAggregator()
            scheduler.add_listener(aggregator.record)
            start(scheduler, aggregator, peers)
            
            deadline = time.monotonic() + 5
            while len(scheduler.registry) < 2 and time.monotonic() < deadline:
                time.sleep(0.02)
            assert len(scheduler.registry) == 2
            
            began = time.monotonic()
            assert scheduler.cancel_all() == 2
            assert time.monotonic() - began < 0.5
            
            assert aggregator.wait(timeout=5)
            assert len(scheduler.registry) == 0
        
        assert aggregator.completed_count == 4
        assert not any(p.tested for p in peers)


class TestResultAggregator:
    """Tests for ResultAggregator."""
    
    def test_progress(self):
        """Test counting and the progress ratio."""
        peers = make_peers(4)
        aggregator = ResultAggregator(peers)
        
        assert aggregator.progress == 0.0
        assert not aggregator.is_complete
        
        done = peers[0].copy()
        done.latency_ms, done.valid = 25, True
        aggregator.record(ProbeResult(done, ProbeStatus.COMPLETED))
        
        assert aggregator.completed_count == 1
        assert aggregator.progress == 0.25
        assert peers[0].latency_ms == 25 and peers[0].valid
    
    def test_failed_and_cancelled(self):
        """Test how unsuccessful results land on candidates."""
        peers = make_peers(2)
        aggregator = ResultAggregator(peers)
        
        aggregator.record(ProbeResult(peers[0].copy(), ProbeStatus.TIMED_OUT))
        aggregator.record(ProbeResult(peers[1].copy(), ProbeStatus.CANCELLED))
        
        assert peers[0].latency_ms == LATENCY_FAILED and peers[0].tested
        assert not peers[1].tested
        assert aggregator.is_complete
    
    def test_matches_duplicates_and_hosts(self):
        """Test that every entry for the same peer is updated."""
        peers = [
            PeerCandidate("tls://10.0.0.1:443"),
            PeerCandidate("tls://10.0.0.1:443"),
            PeerCandidate("tcp://10.0.0.2:80"),
        ]
        aggregator = ResultAggregator(peers)
        
        done = PeerCandidate("tls://10.0.0.1:443", latency_ms=7, valid=True)
        aggregator.record(ProbeResult(done, ProbeStatus.COMPLETED))
        # same host, different URI
        other = PeerCandidate("quic://10.0.0.2:9000", latency_ms=9, valid=True)
        aggregator.record(ProbeResult(other, ProbeStatus.COMPLETED))
        
        assert peers[0].latency_ms == peers[1].latency_ms == 7
        assert peers[2].latency_ms == 9
    
    def test_stale_batch_ignored(self):
        """Test that results from an older batch are not counted."""
        peers = make_peers(1)
        aggregator = ResultAggregator()
        aggregator.start_batch(peers, batch_id=2)
        
        aggregator.record(ProbeResult(peers[0].copy(), ProbeStatus.CANCELLED, batch_id=1))
        
        assert aggregator.completed_count == 0
    
    def test_wait_timeout(self):
        """Test that wait gives up."""
        aggregator = ResultAggregator(make_peers(1))
        
        assert aggregator.wait(timeout=0.05) is False
    
    def test_empty_batch_complete(self):
        """Test that an empty batch is complete at once."""
        aggregator = ResultAggregator([])
        
        assert aggregator.is_complete
        assert aggregator.progress == 1.0
        assert aggregator.wait(timeout=0)
    
    def test_on_progress(self):
        """Test the progress callback."""
        seen = []
        peers = make_peers(2)
        aggregator = ResultAggregator(peers)
        aggregator.on_progress = lambda result, ratio: seen.append(ratio)
        
        for peer in peers:
            aggregator.record(ProbeResult(peer.copy(), ProbeStatus.COMPLETED))
        
        assert seen == [0.5, 1.0]
