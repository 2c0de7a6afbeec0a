"""
Configuration management for peerscout.

Handles:
- Peer directory location and fetch settings
- Probe concurrency and timeouts
- Merge helper invocation
"""

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".peerscout"

DEFAULT_PEERS_URL = "https://publicpeers.neilalexander.dev/"

# Probe defaults
MAX_CONCURRENT_PROBES = 5
PING_COUNT = 3
PING_POLL_INTERVAL = 0.1   # seconds between cancellation checks
PING_TIMEOUT = 5.0         # total ceiling per probe
TERMINATE_GRACE = 0.5      # wait after terminate() before kill()

# Merge defaults
MERGE_TIMEOUT = 30.0
MAX_PEERS = 15
DAEMON_CONFIG_PATHS = [
    "/etc/yggdrasil.conf",
    "/etc/yggdrasil/yggdrasil.conf",
]


def default_helper_command() -> List[str]:
    return [sys.executable, "-m", "peerscout.merge.helper"]


def _filter_known(cls, data: dict) -> dict:
    # Filter to only known fields to handle config evolution
    known_fields = set(cls.__dataclass_fields__)
    return {k: v for k, v in data.items() if k in known_fields}


@dataclass
class DiscoveryConfig:
    """Where and how to fetch the public peer list."""
    url: str = DEFAULT_PEERS_URL
    timeout: float = 15.0
    proxy: Optional[str] = None  # http://, socks4://, socks5:// or socks5h://, with user:pass@ if needed
    
    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "timeout": self.timeout,
            "proxy": self.proxy,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "DiscoveryConfig":
        return cls(**_filter_known(cls, data))


@dataclass
class ProbeConfig:
    """Reachability probe settings."""
    ping_command: List[str] = field(default_factory=lambda: ["ping"])
    ping_count: int = PING_COUNT
    max_workers: int = MAX_CONCURRENT_PROBES
    poll_interval: float = PING_POLL_INTERVAL
    timeout: float = PING_TIMEOUT
    terminate_grace: float = TERMINATE_GRACE
    
    def to_dict(self) -> dict:
        return {
            "ping_command": self.ping_command,
            "ping_count": self.ping_count,
            "max_workers": self.max_workers,
            "poll_interval": self.poll_interval,
            "timeout": self.timeout,
            "terminate_grace": self.terminate_grace,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "ProbeConfig":
        return cls(**_filter_known(cls, data))


@dataclass
class MergeConfig:
    """Settings for applying peers to the daemon configuration."""
    escalation_command: List[str] = field(default_factory=lambda: ["pkexec"])
    helper_command: List[str] = field(default_factory=default_helper_command)
    timeout: float = MERGE_TIMEOUT
    max_peers: int = MAX_PEERS
    config_paths: List[str] = field(default_factory=lambda: list(DAEMON_CONFIG_PATHS))
    
    def to_dict(self) -> dict:
        return {
            "escalation_command": self.escalation_command,
            "helper_command": self.helper_command,
            "timeout": self.timeout,
            "max_peers": self.max_peers,
            "config_paths": self.config_paths,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "MergeConfig":
        return cls(**_filter_known(cls, data))


@dataclass
class Config:
    """
    Main peerscout configuration.
    
    Stored at ~/.peerscout/config.json
    """
    # Paths
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    
    # Components
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    
    # Pass --verbose to the merge helper
    debug: bool = False
    
    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"
    
    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
    
    def to_dict(self) -> dict:
        return {
            "discovery": self.discovery.to_dict(),
            "probe": self.probe.to_dict(),
            "merge": self.merge.to_dict(),
            "debug": self.debug,
        }
    
    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()
        
        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        
        logger.debug(f"Configuration saved to {self.config_path}")
    
    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"
        
        if not config_path.exists():
            return cls(data_dir=data_dir)
        
        with open(config_path, 'r') as f:
            data = json.load(f)
        
        config = cls(data_dir=data_dir, debug=data.get("debug", False))
        
        if "discovery" in data:
            config.discovery = DiscoveryConfig.from_dict(data["discovery"])
        if "probe" in data:
            config.probe = ProbeConfig.from_dict(data["probe"])
        if "merge" in data:
            config.merge = MergeConfig.from_dict(data["merge"])
        
        return config
    
    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
