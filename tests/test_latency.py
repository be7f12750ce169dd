import asyncio
import socket
import pytest
from unittest.mock import AsyncMock

from proxylink.client.latency import AddressTester, LatencyProber, ProbeState
from proxylink.shared.constants import LATENCY_ERROR, LATENCY_TIMEOUT

class RecordingTester:
    """Stands in for AddressTester and remembers the prober state it was built in."""
    instances = []

    def __init__(self, prober_ref, address, port, timeout):
        self.address = address
        self.port = port
        self.state_at_creation = prober_ref[0].state if prober_ref else None
        RecordingTester.instances.append(self)

    async def lag_test(self):
        return 17

def make_prober(address, results, resolver=None, tester=RecordingTester):
    ref = []
    prober = LatencyProber(
        address, 443, results.append,
        tester_factory=lambda a, p, t: tester(ref, a, p, t),
        resolver=resolver,
        timeout=1.0,
    )
    ref.append(prober)
    return prober

@pytest.fixture(autouse=True)
def reset_testers():
    RecordingTester.instances.clear()

@pytest.mark.asyncio
async def test_literal_ipv4_skips_resolution():
    results = []
    resolver = AsyncMock(return_value="192.0.2.1")
    prober = make_prober("10.0.0.1", results, resolver=resolver)

    await prober.start()

    resolver.assert_not_called()
    assert results == [17]
    assert RecordingTester.instances[0].address == "10.0.0.1"
    assert RecordingTester.instances[0].state_at_creation is ProbeState.MEASURING
    assert prober.state is ProbeState.DELIVERED

@pytest.mark.asyncio
async def test_literal_ipv6_skips_resolution():
    results = []
    resolver = AsyncMock()
    prober = make_prober("::1", results, resolver=resolver)

    await prober.start()

    resolver.assert_not_called()
    assert RecordingTester.instances[0].address == "::1"

@pytest.mark.asyncio
async def test_hostname_is_resolved_then_measured():
    results = []
    states = []

    async def resolver(host):
        states.append(prober.state)
        return "198.51.100.7"

    prober = make_prober("proxy.example.com", results, resolver=resolver)
    await prober.start()

    assert states == [ProbeState.RESOLVING]
    assert RecordingTester.instances[0].address == "198.51.100.7"
    assert results == [17]

@pytest.mark.asyncio
async def test_resolution_failure_delivers_error_without_measuring():
    results = []
    resolver = AsyncMock(side_effect=socket.gaierror("Name or service not known"))
    prober = make_prober("example.invalid", results, resolver=resolver)

    await prober.start()

    assert results == [LATENCY_ERROR]
    assert RecordingTester.instances == []
    assert prober.state is ProbeState.DELIVERED

@pytest.mark.asyncio
async def test_default_resolver_uses_getaddrinfo(monkeypatch):
    loop = asyncio.get_running_loop()
    getaddrinfo = AsyncMock(return_value=[
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("203.0.113.9", 443)),
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("203.0.113.10", 443)),
    ])
    monkeypatch.setattr(loop, "getaddrinfo", getaddrinfo)

    results = []
    prober = make_prober("multi.example.com", results)
    await prober.start()

    # 첫 번째 주소만 측정한다
    assert RecordingTester.instances[0].address == "203.0.113.9"
    assert results == [17]

@pytest.mark.asyncio
async def test_default_resolver_failure(monkeypatch):
    loop = asyncio.get_running_loop()
    monkeypatch.setattr(loop, "getaddrinfo", AsyncMock(side_effect=socket.gaierror(-2, "Name or service not known")))

    results = []
    prober = make_prober("example.invalid", results)
    await prober.start()

    assert results == [LATENCY_ERROR]

@pytest.mark.asyncio
async def test_tester_exception_delivers_error():
    class BrokenTester(RecordingTester):
        async def lag_test(self):
            raise RuntimeError("boom")

    results = []
    prober = make_prober("10.0.0.1", results, tester=BrokenTester)
    await prober.start()

    assert results == [LATENCY_ERROR]

def test_deliver_happens_once():
    results = []
    prober = LatencyProber("10.0.0.1", 443, results.append)
    prober.deliver(5)
    prober.deliver(LATENCY_ERROR)
    assert results == [5]
    assert prober.result == 5

@pytest.mark.asyncio
async def test_address_tester_measures_local_server():
    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        latency = await AddressTester("127.0.0.1", port, timeout=2.0).lag_test()
    finally:
        server.close()
        await server.wait_closed()

    assert latency >= 0

@pytest.mark.asyncio
async def test_address_tester_refused():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()  # nothing listens on this port any more

    latency = await AddressTester("127.0.0.1", port, timeout=5.0).lag_test()
    assert latency == LATENCY_ERROR

@pytest.mark.asyncio
async def test_address_tester_timeout(monkeypatch):
    async def never_connects(*args, **kwargs):
        await asyncio.sleep(10)

    monkeypatch.setattr(asyncio, "open_connection", never_connects)
    latency = await AddressTester("192.0.2.1", 443, timeout=0.05).lag_test()
    assert latency == LATENCY_TIMEOUT
