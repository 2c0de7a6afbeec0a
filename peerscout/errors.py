"""
Errors raised by peerscout.

Probe failures are not errors: an unreachable peer is recorded on the
candidate and never raised.
"""

from typing import Optional


class PeerScoutError(Exception):
    """Base exception for peerscout errors."""
    
    def __init__(self, message: str, code: str = "PEERSCOUT_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class FetchError(PeerScoutError):
    """Raised when the peer directory cannot be fetched."""
    
    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, code="FETCH_ERROR")
        self.url = url
        self.status = status


class FileIOError(PeerScoutError):
    """Raised when a transfer file or report cannot be written."""
    
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, code="FILE_IO_ERROR")
        self.path = path


class MergeError(PeerScoutError):
    """Raised when peers cannot be merged into the daemon configuration."""
    
    def __init__(self, message: str, code: str = "MERGE_ERROR"):
        super().__init__(message, code=code)


class MergeTimeout(MergeError):
    """Raised when the merge helper does not finish in time."""
    
    def __init__(self, timeout: float):
        super().__init__(
            f"Update script timed out after {timeout:g}s",
            code="MERGE_TIMEOUT"
        )
        self.timeout = timeout


class MergeHelperFailure(MergeError):
    """Raised when the merge helper fails without reporting success."""
    
    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message, code="MERGE_HELPER_FAILURE")
        self.returncode = returncode


class ConfigRewriteError(PeerScoutError):
    """Raised by the helper when the daemon config cannot be rewritten."""
    
    def __init__(self, message: str):
        super().__init__(message, code="CONFIG_REWRITE_ERROR")
