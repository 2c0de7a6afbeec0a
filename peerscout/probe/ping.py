"""
Reachability probe.

Runs the system ping against a peer's host and reads the average
round-trip time from its summary line. An unreachable peer is an
ordinary result, not an error.
"""

import logging
import re
import subprocess
import threading
import time
from typing import List, Optional, Sequence

from ..config import PING_COUNT, PING_POLL_INTERVAL, PING_TIMEOUT, TERMINATE_GRACE
from ..models import PeerCandidate, ProbeResult, ProbeStatus
from ..uri import extract_host

logger = logging.getLogger(__name__)

# "rtt min/avg/max/mdev = 1.1/2.2/3.3/0.4 ms" (Linux),
# "round-trip min/avg/max/stddev = ..." (BSD), "min/avg/max = ..." (busybox)
RTT_RE = re.compile(
    r"min/avg/max(?:/(?:mdev|stddev))?\s*=\s*[\d.]+/([\d.]+)/[\d.]+(?:/[\d.]+)?"
)


def parse_latency(output: str) -> Optional[int]:
    """Average round-trip time in whole milliseconds, or None."""
    match = RTT_RE.search(output or "")
    if not match:
        return None
    try:
        return int(round(float(match.group(1))))
    except ValueError:
        return None


class ProcessRegistry:
    """
    Live ping processes, shared by pool threads and the cancelling thread.
    
    The lock only guards the set itself and is never held while
    waiting on a process.
    """
    
    def __init__(self):
        self._lock = threading.Lock()
        self._processes = set()
    
    def add(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.add(process)
    
    def remove(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)
    
    def snapshot(self) -> List[subprocess.Popen]:
        with self._lock:
            return list(self._processes)
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)
    
    def terminate_all(self) -> int:
        """Ask every live process to exit. Does not wait."""
        count = 0
        for process in self.snapshot():
            if process.poll() is not None:
                continue
            try:
                process.terminate()
                count += 1
            except ProcessLookupError:
                pass  # exited between poll() and terminate()
        return count


class ReachabilityProbe:
    """
    Measures latency to one peer with the system ping.
    
    Usage:
        probe = ReachabilityProbe()
        peer = probe.run(PeerCandidate("tls://[2001:db8::1]:443"))
        print(peer.valid, peer.latency_ms)
    
    measure() takes an optional cancellation token (anything with a
    `cancelled` attribute) that is checked before spawning and on every
    poll while ping runs.
    """
    
    def __init__(
        self,
        ping_command: Optional[Sequence[str]] = None,
        ping_count: int = PING_COUNT,
        poll_interval: float = PING_POLL_INTERVAL,
        timeout: float = PING_TIMEOUT,
        terminate_grace: float = TERMINATE_GRACE,
        registry: Optional[ProcessRegistry] = None
    ):
        self.ping_command = list(ping_command or ["ping"])
        self.ping_count = ping_count
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.terminate_grace = terminate_grace
        self.registry = registry or ProcessRegistry()
    
    @classmethod
    def from_config(cls, probe_config, registry: Optional[ProcessRegistry] = None) -> "ReachabilityProbe":
        return cls(
            ping_command=probe_config.ping_command,
            ping_count=probe_config.ping_count,
            poll_interval=probe_config.poll_interval,
            timeout=probe_config.timeout,
            terminate_grace=probe_config.terminate_grace,
            registry=registry,
        )
    
    def build_args(self, host: str) -> List[str]:
        return [*self.ping_command, "-c", str(self.ping_count), host]
    
    def run(self, candidate: PeerCandidate) -> PeerCandidate:
        """Probe a candidate and return an updated copy."""
        return self.measure(candidate).candidate
    
    def measure(self, candidate: PeerCandidate, token=None) -> ProbeResult:
        """Probe a candidate and describe how the attempt ended."""
        peer = candidate.copy()
        peer.reset()
        batch_id = getattr(token, "batch_id", None)
        started = time.monotonic()
        
        def finish(status: ProbeStatus, output: str = "") -> ProbeResult:
            return ProbeResult(
                candidate=peer,
                status=status,
                batch_id=batch_id,
                duration_ms=(time.monotonic() - started) * 1000,
                output=output,
            )
        
        if _is_cancelled(token):
            logger.debug(f"Skipping test for {candidate.uri} (cancelled)")
            return finish(ProbeStatus.SKIPPED)
        
        host = extract_host(candidate.uri)
        if not host:
            logger.debug(f"No host in {candidate.uri!r}, not probing")
            return finish(ProbeStatus.ERROR)
        
        args = self.build_args(host)
        logger.debug(f"Running ping for {candidate.uri}: {args}")
        
        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
            )
        except OSError as e:
            logger.warning(f"Could not start ping for {host}: {e}")
            return finish(ProbeStatus.ERROR)
        
        self.registry.add(process)
        try:
            status, output = self._wait(process, token, candidate.uri)
        finally:
            self.registry.remove(process)
        
        if status is ProbeStatus.COMPLETED and _is_cancelled(token):
            logger.debug(f"Test cancelled after ping completion for {candidate.uri}")
            return finish(ProbeStatus.CANCELLED, output)
        
        if status is ProbeStatus.COMPLETED:
            latency = parse_latency(output)
            if latency is not None:
                peer.latency_ms = latency
                peer.valid = True
                logger.debug(f"Latency for {candidate.uri}: {latency} ms")
            else:
                logger.debug(f"No latency in ping output for {candidate.uri} (exit {process.returncode})")
        
        return finish(status, output)
    
    def _wait(self, process: subprocess.Popen, token, uri: str):
        """Poll the process until it exits, is cancelled or times out."""
        deadline = time.monotonic() + self.timeout
        
        while True:
            if _is_cancelled(token):
                logger.debug(f"Ping cancelled for {uri}")
                self._stop(process)
                return ProbeStatus.CANCELLED, ""
            
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"Ping timeout after {self.timeout:g}s for {uri}")
                self._stop(process)
                return ProbeStatus.TIMED_OUT, ""
            
            try:
                stdout, _ = process.communicate(timeout=min(self.poll_interval, remaining))
            except subprocess.TimeoutExpired:
                continue
            return ProbeStatus.COMPLETED, stdout or ""
    
    def _stop(self, process: subprocess.Popen) -> None:
        """Terminate, then kill if the process ignores it."""
        if process.poll() is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        try:
            process.communicate(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.debug(f"Ping pid {process.pid} ignored terminate, killing")
            process.kill()
            process.communicate()


def _is_cancelled(token) -> bool:
    return token is not None and token.cancelled
