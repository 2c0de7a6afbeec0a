"""
Public peer directory fetcher.

Downloads the peer directory page and extracts peer URIs from its
table cells.
"""

import asyncio
import html
import logging
import re
from typing import Iterable, List, Optional

import aiohttp
from aiohttp_socks import ProxyConnector, ProxyError

from ..config import DEFAULT_PEERS_URL
from ..errors import FetchError
from ..models import PeerCandidate
from ..uri import extract_host

logger = logging.getLogger(__name__)

# Text content of a single table cell
CELL_RE = re.compile(r"<td[^>]*>([^<]+)</td>", re.IGNORECASE)

USER_AGENT = "peerscout/1.0"

# Proxies aiohttp cannot speak itself; these go through a SOCKS connector
SOCKS_SCHEMES = ("socks4", "socks5", "socks5h")


def is_socks_proxy(proxy: Optional[str]) -> bool:
    return bool(proxy) and proxy.split("://", 1)[0].lower() in SOCKS_SCHEMES


def parse_peers(body: str) -> List[PeerCandidate]:
    """
    Extract peer candidates from a directory page.
    
    Cells that are not peer URIs are dropped. Order is first-seen and
    duplicates are kept.
    """
    candidates = []
    for match in CELL_RE.finditer(body):
        uri = html.unescape(match.group(1)).strip()
        if extract_host(uri):
            candidates.append(PeerCandidate(uri=uri))
    return candidates


def unique_candidates(candidates: Iterable[PeerCandidate]) -> List[PeerCandidate]:
    """Drop repeated URIs, keeping the first occurrence."""
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.uri in seen:
            continue
        seen.add(candidate.uri)
        unique.append(candidate)
    return unique


class PeerSource:
    """
    Fetches candidate peers from a remote directory.
    
    Usage:
        source = PeerSource()
        try:
            peers = await source.fetch()
        finally:
            await source.close()
    
    An empty list means the page had no peers; transport problems
    raise FetchError instead.
    """
    
    def __init__(
        self,
        url: str = DEFAULT_PEERS_URL,
        timeout: float = 15.0,
        proxy: Optional[str] = None
    ):
        self.url = url
        self.timeout = timeout
        self.proxy = proxy
        self._session: Optional[aiohttp.ClientSession] = None
    
    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = None
            if is_socks_proxy(self.proxy):
                logger.debug(f"Using SOCKS proxy {self.proxy}")
                connector = ProxyConnector.from_url(self.proxy)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": USER_AGENT}
            )
        return self._session
    
    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
    
    async def __aenter__(self) -> "PeerSource":
        return self
    
    async def __aexit__(self, *exc) -> None:
        await self.close()
    
    async def fetch_text(self) -> str:
        """Download the directory page as text."""
        session = await self._get_session()
        
        try:
            # SOCKS proxies live in the connector
            proxy = None if is_socks_proxy(self.proxy) else self.proxy
            async with session.get(self.url, proxy=proxy) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"Failed to fetch peers: HTTP {resp.status} {resp.reason or ''}".strip(),
                        url=self.url,
                        status=resp.status
                    )
                return await resp.text(errors="replace")
        except ProxyError as e:
            raise FetchError(f"Failed to fetch peers: proxy error: {e}", url=self.url) from e
        except asyncio.TimeoutError:
            raise FetchError(
                f"Failed to fetch peers: timed out after {self.timeout:g}s",
                url=self.url
            )
        except aiohttp.ClientError as e:
            raise FetchError(f"Failed to fetch peers: {e}", url=self.url) from e
    
    async def fetch(self) -> List[PeerCandidate]:
        """Fetch and parse the directory."""
        logger.debug(f"Fetching peers from {self.url}")
        body = await self.fetch_text()
        candidates = parse_peers(body)
        logger.info(f"Discovered {len(candidates)} peers from {self.url}")
        return candidates
