"""
Shared fixtures: a fake ping program run with the current
interpreter.
"""

import sys
import textwrap

import pytest

from peerscout.config import reset_config


FAKE_PING = textwrap.dedent('''
    import signal
    import sys
    import time

    host = sys.argv[-1]
    mode = {modes!r}.get(host, "ok")

    if mode == "ok":
        print(f"PING {{host}} 56(84) bytes of data.")
        print(f"--- {{host}} ping statistics ---")
        print("3 packets transmitted, 3 received, 0% packet loss, time 2003ms")
        print("rtt min/avg/max/mdev = 9.100/12.600/15.200/2.000 ms")
    elif mode == "unreachable":
        print("3 packets transmitted, 0 received, 100% packet loss, time 2040ms")
        sys.exit(1)
    elif mode == "hang":
        time.sleep(30)
    elif mode == "stubborn":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        time.sleep(30)
''')


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fake_ping(tmp_path):
    """Build a ping command whose behaviour depends on the target host."""
    def make(modes=None):
        script = tmp_path / "fake_ping.py"
        script.write_text(FAKE_PING.format(modes=modes or {}))
        return [sys.executable, str(script)]
    return make
