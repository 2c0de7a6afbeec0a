"""
Daemon configuration rewrite.

Replaces the `Peers: [ ... ]` block of the daemon's config file and
leaves every other line as it was. Used by the merge helper, which runs
with elevated privileges.
"""

import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ..config import MAX_PEERS
from ..errors import ConfigRewriteError
from ..uri import is_peer_uri

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bckp"

# Printed by the helper on success; the merger looks for it.
SUCCESS_MARKER = "updated successfully"

PEERS_OPEN_RE = re.compile(r"^(?P<indent>[ \t]*)Peers[ \t]*:[ \t]*\[")

PathLike = Union[str, Path]


def locate_config(paths: Sequence[PathLike]) -> Path:
    """First existing config file among the known locations."""
    for path in paths:
        if Path(path).is_file():
            logger.debug(f"Using config at {path}")
            return Path(path)
    raise ConfigRewriteError(
        f"Yggdrasil config not found at {' or '.join(str(p) for p in paths)}"
    )


def read_peer_list(path: PathLike, max_peers: int = MAX_PEERS) -> List[str]:
    """
    Read a peer list file, one URI per line.
    
    Blank lines and anything that is not scheme://host:port are skipped;
    at most max_peers URIs are returned.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        raise ConfigRewriteError(f"Peer list file not readable: {path}: {e}") from e
    
    peers = []
    for line in lines:
        uri = line.strip()
        if not uri:
            continue
        if not is_peer_uri(uri, require_port=True):
            logger.debug(f"Skipping invalid peer URI format: {uri}")
            continue
        if len(peers) >= max_peers:
            logger.debug(f"Reached max peers limit ({max_peers}), skipping: {uri}")
            break
        peers.append(uri)
        logger.debug(f"Added peer {len(peers)}: {uri}")
    return peers


def render_peers_block(peers: Iterable[str], indent: str = "") -> List[str]:
    return [f"{indent}Peers: ["] + [f"{indent}  {uri}" for uri in peers] + [f"{indent}]"]


def _is_comment_start(line: str, pos: int) -> bool:
    # `#` and `//` only open a comment at line start or after whitespace,
    # so the `//` in `tls://` does not count
    if line[pos] == "#" or line.startswith("//", pos):
        return pos == 0 or line[pos - 1].isspace()
    return False


def _find_block_end(lines: List[str], row: int, col: int) -> Tuple[int, int]:
    """
    Locate the `]` closing the list opened just before lines[row][col].
    
    Brackets inside IPv6 literals, quoted strings and comments are
    skipped. Returns (row, column) of the closing bracket.
    """
    depth = 0
    while row < len(lines):
        line = lines[row]
        quote = None
        while col < len(line):
            ch = line[col]
            if quote:
                if ch == "\\":
                    col += 1
                elif ch == quote:
                    quote = None
            elif ch in "\"'":
                quote = ch
            elif _is_comment_start(line, col):
                break
            elif ch == "[":
                depth += 1
            elif ch == "]":
                if depth == 0:
                    return row, col
                depth -= 1
            col += 1
        row += 1
        col = 0
    raise ConfigRewriteError("Peers section is not closed")


def replace_peers_block(text: str, peers: Sequence[str]) -> str:
    """
    Return `text` with its first Peers block replaced by `peers`.
    
    The block may span lines or sit on one line, and the closing `]` may
    share a line with the last peer. The opening line's indentation is
    kept, as is anything after the closing bracket (usually a comment);
    all other lines are untouched.
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    lines = text.splitlines(keepends=True)
    out = []
    replaced = False
    i = 0
    
    while i < len(lines):
        line = lines[i]
        match = None if replaced else PEERS_OPEN_RE.match(line)
        if match is None:
            out.append(line)
            i += 1
            continue
        
        end, col = _find_block_end(lines, i, match.end())
        trailing = lines[end][col + 1:].rstrip("\r\n")
        
        block = render_peers_block(peers, match.group("indent"))
        if trailing.strip():
            block[-1] += trailing.rstrip()
        out.extend(l + newline for l in block)
        replaced = True
        i = end + 1
    
    if not replaced:
        raise ConfigRewriteError("Peers section missing from configuration")
    return "".join(out)


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def apply_peer_list(
    config_path: PathLike,
    peers: Sequence[str],
    backup_suffix: str = BACKUP_SUFFIX
) -> Optional[Path]:
    """
    Write `peers` into the config file, keeping a backup.
    
    Returns the backup path, or None when the peers are already in place.
    In that case neither the config nor an earlier backup is touched.
    """
    if not peers:
        raise ConfigRewriteError("No valid peers found in input file")
    
    config_path = Path(config_path)
    backup_path = config_path.with_name(config_path.name + backup_suffix)
    
    try:
        with open(config_path, "r", encoding="utf-8", newline="") as f:
            original = f.read()
    except OSError as e:
        raise ConfigRewriteError(f"Cannot read {config_path}: {e}") from e
    
    updated = replace_peers_block(original, peers)
    if not updated.strip():
        raise ConfigRewriteError("Generated configuration is empty")
    
    if updated == original:
        logger.debug("Peers unchanged, configuration file and backup left as is")
        return None
    
    try:
        logger.debug(f"Creating backup of configuration file to {backup_path}")
        shutil.copy2(config_path, backup_path)
        _atomic_write(config_path, updated)
        logger.debug("Configuration file updated successfully")
    except OSError as e:
        raise ConfigRewriteError(f"Cannot write {config_path}: {e}") from e
    
    return backup_path
