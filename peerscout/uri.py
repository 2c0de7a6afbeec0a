"""
Peer URI grammar.

A single regular expression shared by discovery, probing and the
config helper:

    (tls|tcp|quic)://HOST[:PORT][?query|/path]

where HOST is a bracketed IPv6 literal, a bare IPv4 literal or a DNS name.
"""

import re
from dataclasses import dataclass
from typing import Optional

SCHEMES = ("tls", "tcp", "quic")

PEER_URI_RE = re.compile(
    r"""
    ^(?P<scheme>tls|tcp|quic)://
    (?:
        \[(?P<ipv6>[0-9A-Fa-f:.]+(?:%[\w.\-]+)?)\]   # [2001:db8::1]
        |
        (?P<host>[A-Za-z0-9](?:[A-Za-z0-9.\-]*[A-Za-z0-9])?)  # 1.2.3.4, example.com
    )
    (?::(?P<port>\d{1,5}))?
    (?P<suffix>[/?]\S*)?$
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class PeerAddress:
    """Components of a parsed peer URI."""
    scheme: str
    host: str
    port: Optional[int] = None
    
    @property
    def is_ipv6(self) -> bool:
        return ":" in self.host
    
    def __str__(self) -> str:
        host = f"[{self.host}]" if self.is_ipv6 else self.host
        if self.port is None:
            return f"{self.scheme}://{host}"
        return f"{self.scheme}://{host}:{self.port}"


def parse_peer_uri(uri: str) -> Optional[PeerAddress]:
    """
    Parse a peer URI.
    
    Returns None for anything outside the grammar, including ports
    outside 1-65535.
    """
    if not isinstance(uri, str):
        return None
    
    match = PEER_URI_RE.match(uri.strip())
    if not match:
        return None
    
    port = None
    if match.group("port") is not None:
        port = int(match.group("port"))
        if not 0 < port <= 65535:
            return None
    
    return PeerAddress(
        scheme=match.group("scheme"),
        host=match.group("ipv6") or match.group("host"),
        port=port,
    )


def extract_host(uri: str) -> str:
    """
    Return the bare host of a peer URI, or "" if it does not parse.
    
    IPv6 brackets and the port are stripped:
    
        >>> extract_host("tls://[2001:db8::1]:1234")
        '2001:db8::1'
        >>> extract_host("invalidstring")
        ''
    """
    address = parse_peer_uri(uri)
    return address.host if address else ""


def is_peer_uri(uri: str, require_port: bool = False) -> bool:
    """Check a string against the peer grammar."""
    address = parse_peer_uri(uri)
    if address is None:
        return False
    return address.port is not None or not require_port
