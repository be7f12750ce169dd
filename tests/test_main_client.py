import argparse
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

import main_client
import proxylink.client.connection

def make_args(tmp_path, **overrides):
    fields = dict(uri=None, profile=None, config_dir=str(tmp_path), log_dir=None, print_uri=False, verbose=False)
    fields.update(overrides)
    return argparse.Namespace(**fields)

def test_load_profile_from_uri(tmp_path):
    profile = main_client.load_profile(make_args(tmp_path, uri="trojan://pw@example.com:443#demo"))
    assert profile.name == "demo"

def test_load_profile_from_file(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text('{"name": "file", "server_address": "example.com", "password": "pw"}', encoding="utf-8")
    profile = main_client.load_profile(make_args(tmp_path, profile=str(path)))
    assert profile.server_address == "example.com"

@pytest.mark.asyncio
async def test_invalid_profile_exits_with_error(tmp_path):
    # 비밀번호가 없으면 시작하지 않는다
    code = await main_client.run(make_args(tmp_path, uri="trojan://@example.com:443"))
    assert code == 1

class StoppingConnection:
    """Starts a tunnel and a forwarder, then stops on the next loop iteration."""
    instances = []

    def __init__(self, profile, config_dir):
        self.name = profile.name
        self.is_running = False
        self.tunnel = None
        self.forwarder = None
        self.workers = []
        self.on_state_changed = None
        self.on_start_failed = None
        self.on_latency_available = None
        StoppingConnection.instances.append(self)

    def is_valid(self):
        return True

    def get_uri(self):
        return ""

    def start(self):
        self.tunnel = MagicMock(wait_closed=AsyncMock())
        self.forwarder = MagicMock(wait_closed=AsyncMock())
        self.workers = [self.tunnel, self.forwarder]
        self.is_running = True
        asyncio.get_running_loop().call_soon(self.stop)

    def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        self.tunnel = None
        self.forwarder = None
        self.on_state_changed(False)

    def close(self):
        self.stop()

@pytest.mark.asyncio
async def test_run_waits_for_tunnel_and_forwarder(tmp_path, monkeypatch):
    StoppingConnection.instances.clear()
    monkeypatch.setattr(proxylink.client.connection, "Connection", StoppingConnection)

    code = await asyncio.wait_for(main_client.run(make_args(tmp_path, uri="trojan://pw@example.com:443#demo")), timeout=5.0)

    assert code == 0
    tunnel, forwarder = StoppingConnection.instances[0].workers
    tunnel.wait_closed.assert_awaited_once()
    forwarder.wait_closed.assert_awaited_once()
