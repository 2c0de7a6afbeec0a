"""
Reachability testing: ping probe, concurrent scheduler and batch accounting.
"""

from .ping import ProcessRegistry, ReachabilityProbe, parse_latency
from .scheduler import CancellationToken, ConcurrentTestScheduler
from .aggregator import ResultAggregator

__all__ = [
    "ProcessRegistry",
    "ReachabilityProbe",
    "parse_latency",
    "CancellationToken",
    "ConcurrentTestScheduler",
    "ResultAggregator",
]
