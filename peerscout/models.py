"""
Data model for discovered peers and probe results.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from .uri import extract_host

# Latency sentinels (milliseconds)
LATENCY_UNTESTED = -1
LATENCY_FAILED = -2  # probe ran but produced no measurement


@dataclass(eq=False)
class PeerCandidate:
    """
    A discovered peer eligible for testing and adoption.
    
    Identity is the full URI; two candidates with the same URI are
    the same peer even if their test results differ.
    """
    uri: str
    latency_ms: int = LATENCY_UNTESTED
    valid: bool = False
    
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PeerCandidate):
            return NotImplemented
        return self.uri == other.uri
    
    def __hash__(self) -> int:
        return hash(self.uri)
    
    @property
    def host(self) -> str:
        return extract_host(self.uri)
    
    @property
    def tested(self) -> bool:
        return self.latency_ms != LATENCY_UNTESTED
    
    @property
    def failed(self) -> bool:
        return self.latency_ms < LATENCY_UNTESTED
    
    def reset(self) -> None:
        """Return to the untested state."""
        self.latency_ms = LATENCY_UNTESTED
        self.valid = False
    
    def copy(self) -> "PeerCandidate":
        return replace(self)
    
    def to_dict(self) -> dict:
        return {
            "uri": self.uri,
            "host": self.host,
            "latency_ms": self.latency_ms,
            "valid": self.valid,
            "tested": self.tested,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "PeerCandidate":
        return cls(
            uri=data["uri"],
            latency_ms=data.get("latency_ms", LATENCY_UNTESTED),
            valid=data.get("valid", False),
        )


class ProbeStatus(Enum):
    """How a probe attempt ended."""
    COMPLETED = "completed"   # ping ran to completion (reachable or not)
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"   # batch cancelled while queued or running
    SKIPPED = "skipped"       # batch already cancelled when the task started
    ERROR = "error"           # ping could not be started
    
    @property
    def attempted(self) -> bool:
        """Whether the peer was actually probed."""
        return self in (ProbeStatus.COMPLETED, ProbeStatus.TIMED_OUT, ProbeStatus.ERROR)


@dataclass
class ProbeResult:
    """One result message per submitted candidate."""
    candidate: PeerCandidate
    status: ProbeStatus
    batch_id: Optional[int] = None
    duration_ms: float = 0
    output: str = ""
    timestamp: float = field(default_factory=time.time)
    
    @property
    def uri(self) -> str:
        return self.candidate.uri
    
    @property
    def valid(self) -> bool:
        return self.candidate.valid
    
    @property
    def latency_ms(self) -> int:
        return self.candidate.latency_ms
    
    def to_dict(self) -> dict:
        return {
            "uri": self.uri,
            "status": self.status.value,
            "batch_id": self.batch_id,
            "latency_ms": self.latency_ms,
            "valid": self.valid,
            "duration_ms": round(self.duration_ms, 1),
        }
