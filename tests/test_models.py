"""
Tests for the peer data model and configuration.
"""

import json

from peerscout.config import Config, DEFAULT_PEERS_URL, MAX_PEERS, get_config, set_config
from peerscout.models import (
    LATENCY_FAILED,
    LATENCY_UNTESTED,
    PeerCandidate,
    ProbeStatus,
)


class TestPeerCandidate:
    """Tests for PeerCandidate."""
    
    def test_defaults(self):
        """Test a freshly discovered candidate."""
        peer = PeerCandidate("tls://[2001:db8::1]:1234")
        
        assert peer.latency_ms == LATENCY_UNTESTED
        assert peer.valid is False
        assert peer.tested is False
        assert peer.host == "2001:db8::1"
    
    def test_equality_by_uri(self):
        """Test that identity is the URI."""
        a = PeerCandidate("tcp://1.2.3.4:1", latency_ms=10, valid=True)
        b = PeerCandidate("tcp://1.2.3.4:1")
        
        assert a == b
        assert len({a, b}) == 1
        assert a != PeerCandidate("tcp://1.2.3.4:2")
    
    def test_tested_and_failed(self):
        """Test the derived test state."""
        peer = PeerCandidate("tcp://1.2.3.4:1", latency_ms=LATENCY_FAILED)
        assert peer.tested is True
        assert peer.failed is True
        
        peer.reset()
        assert peer.tested is False
        assert peer.failed is False
    
    def test_dict_roundtrip(self):
        """Test serialization."""
        peer = PeerCandidate("quic://example.com:9000", latency_ms=42, valid=True)
        restored = PeerCandidate.from_dict(peer.to_dict())
        
        assert restored.uri == peer.uri
        assert restored.latency_ms == 42
        assert restored.valid is True
    
    def test_attempted_statuses(self):
        """Test which probe outcomes count as a test."""
        assert ProbeStatus.COMPLETED.attempted
        assert ProbeStatus.TIMED_OUT.attempted
        assert not ProbeStatus.CANCELLED.attempted
        assert not ProbeStatus.SKIPPED.attempted


class TestConfig:
    """Tests for configuration."""
    
    def test_defaults(self, tmp_path):
        """Test default configuration."""
        config = Config.load(tmp_path)
        
        assert config.discovery.url == DEFAULT_PEERS_URL
        assert config.probe.max_workers == 5
        assert config.probe.ping_count == 3
        assert config.merge.max_peers == MAX_PEERS
        assert config.merge.escalation_command == ["pkexec"]
        assert not Config.exists(tmp_path)
    
    def test_save_load(self, tmp_path):
        """Test saving and loading configuration."""
        config = Config(data_dir=tmp_path)
        config.discovery.proxy = "http://127.0.0.1:3128"
        config.probe.max_workers = 8
        config.merge.timeout = 10.0
        config.debug = True
        config.save()
        
        loaded = Config.load(tmp_path)
        
        assert Config.exists(tmp_path)
        assert loaded.discovery.proxy == "http://127.0.0.1:3128"
        assert loaded.probe.max_workers == 8
        assert loaded.merge.timeout == 10.0
        assert loaded.debug is True
    
    def test_unknown_keys_ignored(self, tmp_path):
        """Test loading a config written by another version."""
        (tmp_path / "config.json").write_text(json.dumps({
            "probe": {"max_workers": 3, "retired_option": 1},
            "something_else": True,
        }))
        
        config = Config.load(tmp_path)
        
        assert config.probe.max_workers == 3
        assert config.probe.timeout == 5.0
    
    def test_global_config(self, tmp_path):
        """Test the global instance."""
        config = Config(data_dir=tmp_path)
        set_config(config)
        
        assert get_config() is config
