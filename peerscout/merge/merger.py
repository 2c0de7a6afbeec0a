"""
Apply selected peers to the daemon configuration.

The peer list is handed to a privileged helper through a temporary
file; the helper rewrites the config's Peers block.
"""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..config import MERGE_TIMEOUT, Config, default_helper_command
from ..errors import FileIOError, MergeError, MergeHelperFailure, MergeTimeout
from ..models import PeerCandidate
from .rewrite import SUCCESS_MARKER

logger = logging.getLogger(__name__)


def sort_peers(peers: Sequence[PeerCandidate]) -> List[PeerCandidate]:
    """Valid peers first, fastest first; invalid peers keep their order."""
    return sorted(peers, key=lambda p: (not p.valid, p.latency_ms if p.valid else 0))


def interpret_helper_exit(returncode: int, stdout: str, stderr: str) -> bool:
    """
    Decide whether the helper succeeded.
    
    Exit status 0 is success. A non-zero status that comes with the
    helper's success line is also success: pkexec can report a failing
    status after the helper has already rewritten the config.
    """
    if returncode == 0:
        return True
    return SUCCESS_MARKER in (stdout or "") or SUCCESS_MARKER in (stderr or "")


@dataclass
class MergeResult:
    """Outcome of a successful merge."""
    peers_written: int
    fallback_used: bool
    returncode: int
    output: str = ""
    
    @property
    def exit_code_ignored(self) -> bool:
        return self.returncode != 0


class ConfigMerger:
    """
    Writes a peer selection into the daemon config via the helper.
    
    Usage:
        merger = ConfigMerger.from_config(get_config())
        result = merger.apply(selected_peers)
    
    Raises MergeTimeout, MergeHelperFailure or FileIOError; the transfer
    file is removed on every path.
    """
    
    def __init__(
        self,
        helper_command: Optional[Sequence[str]] = None,
        escalation_command: Optional[Sequence[str]] = None,
        timeout: float = MERGE_TIMEOUT,
        verbose: bool = False,
        temp_dir: Optional[str] = None,
        config_paths: Optional[Sequence[str]] = None,
        max_peers: Optional[int] = None
    ):
        self.helper_command = list(helper_command) if helper_command else default_helper_command()
        self.escalation_command = ["pkexec"] if escalation_command is None else list(escalation_command)
        self.timeout = timeout
        self.verbose = verbose
        self.temp_dir = temp_dir
        # passed on to the helper; unset leaves the helper's defaults
        self.config_paths = list(config_paths or [])
        self.max_peers = max_peers
    
    @classmethod
    def from_config(cls, config: Config) -> "ConfigMerger":
        return cls(
            helper_command=config.merge.helper_command,
            escalation_command=config.merge.escalation_command,
            timeout=config.merge.timeout,
            verbose=config.debug,
            config_paths=config.merge.config_paths,
            max_peers=config.merge.max_peers,
        )
    
    def build_command(self, peer_file: str) -> List[str]:
        command = [*self.escalation_command, *self.helper_command]
        if self.verbose:
            command.append("--verbose")
        for path in self.config_paths:
            command.extend(["--config", str(path)])
        if self.max_peers is not None:
            command.extend(["--max-peers", str(self.max_peers)])
        command.append(peer_file)
        return command
    
    def write_transfer_file(self, ordered: Sequence[PeerCandidate]) -> Tuple[str, int, bool]:
        """
        Write the peer list for the helper.
        
        Only valid peers are written unless there are none, in which case
        every selected peer is. Returns (path, count, fallback_used).
        """
        uris = [p.uri for p in ordered if p.valid]
        fallback = not uris
        if fallback:
            logger.warning("No valid peers found, using all peers as fallback")
            uris = [p.uri for p in ordered]
        
        path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                prefix="peerscout-peers-",
                suffix=".txt",
                dir=self.temp_dir,
                delete=False,
                encoding="utf-8"
            ) as handle:
                path = handle.name
                handle.write("".join(f"{uri}\n" for uri in uris))
            # the helper runs as another user
            os.chmod(path, 0o644)
        except OSError as e:
            if path is not None:
                self._cleanup(path)
            raise FileIOError(f"Failed to create temporary peers file: {e}", path=path) from e
        
        logger.debug(f"Wrote {len(uris)} peers to {path}")
        return path, len(uris), fallback
    
    def apply(self, selected: Sequence[PeerCandidate]) -> MergeResult:
        """Sort, write and hand the selection to the helper."""
        if not selected:
            raise MergeError("No peers selected")
        
        ordered = sort_peers(selected)
        valid = sum(1 for p in ordered if p.valid)
        logger.info(f"Updating config with {len(ordered)} peers ({valid} valid)")
        
        path, count, fallback = self.write_transfer_file(ordered)
        try:
            return self._run_helper(path, count, fallback)
        finally:
            self._cleanup(path)
    
    def _run_helper(self, path: str, count: int, fallback: bool) -> MergeResult:
        command = self.build_command(path)
        logger.debug(f"Executing update script: {command}")
        
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                stdin=subprocess.DEVNULL,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"Update script timed out after {self.timeout:g}s")
            raise MergeTimeout(self.timeout) from e
        except OSError as e:
            logger.error(f"Could not start update script: {e}")
            raise MergeHelperFailure(f"Could not start update script: {e}") from e
        
        stdout = completed.stdout or ""
        stderr = completed.stderr or ""
        returncode = completed.returncode
        
        if not interpret_helper_exit(returncode, stdout, stderr):
            message = f"Update script failed with exit code {returncode}"
            detail = stderr.strip() or stdout.strip()
            if detail:
                message += f": {detail}"
            logger.error(message)
            raise MergeHelperFailure(message, returncode=returncode)
        
        if returncode != 0:
            logger.warning(
                f"Update script exited with code {returncode} but reported success, "
                f"treating as successful"
            )
        
        output = stdout.strip()
        if output:
            logger.debug(f"Script output: {output}")
        
        return MergeResult(
            peers_written=count,
            fallback_used=fallback,
            returncode=returncode,
            output=output,
        )
    
    def _cleanup(self, path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")
