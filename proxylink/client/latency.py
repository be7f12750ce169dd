import asyncio
import ipaddress
import logging
import socket
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..shared.constants import LATENCY_ERROR, LATENCY_TIMEOUT, DEFAULT_LATENCY_TIMEOUT

class AddressTester:
    """Measures TCP connect round trip to one address. One instance per probe."""
    def __init__(self, address: str, port: int, timeout: float = DEFAULT_LATENCY_TIMEOUT):
        self.address = address
        self.port = port
        self.timeout = timeout
        self.logger = logging.getLogger("AddressTester")

    async def lag_test(self) -> int:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.address, self.port), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self.logger.warning(f"Lag test to {self.address}:{self.port} timed out after {self.timeout}s")
            return LATENCY_TIMEOUT
        except OSError as e:
            self.logger.warning(f"Lag test to {self.address}:{self.port} failed: {e}")
            return LATENCY_ERROR

        latency = int((loop.time() - started) * 1000)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        self.logger.debug(f"Lag test to {self.address}:{self.port}: {latency} ms")
        return latency

class ProbeState(Enum):
    NOT_STARTED = "not_started"
    RESOLVING = "resolving"
    MEASURING = "measuring"
    DELIVERED = "delivered"

Resolver = Callable[[str], Awaitable[str]]

class LatencyProber:
    """
    Resolves the server address (unless it is already a literal IP) and measures latency
    against the first address. The result goes to on_result exactly once, on the event loop.
    There is no cancellation: a superseded probe still delivers.
    """
    def __init__(self, address: str, port: int, on_result: Callable[[int], None],
                 tester_factory: Callable[..., AddressTester] = AddressTester,
                 resolver: Optional[Resolver] = None,
                 timeout: float = DEFAULT_LATENCY_TIMEOUT):
        self.address = address
        self.port = port
        self.on_result = on_result
        self.tester_factory = tester_factory
        self.resolver = resolver
        self.timeout = timeout

        self.state = ProbeState.NOT_STARTED
        self.result: Optional[int] = None
        self.task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger("LatencyProber")

    def start(self) -> asyncio.Task:
        if self.task is None:
            self.task = asyncio.get_running_loop().create_task(self.run())
        return self.task

    async def run(self):
        try:
            address = _literal_address(self.address)
            if address is None:
                self.state = ProbeState.RESOLVING
                try:
                    address = await self.resolve(self.address)
                except OSError as e:
                    self.logger.warning(f"Failed to resolve {self.address}: {e}")
                    self.deliver(LATENCY_ERROR)
                    return

            self.state = ProbeState.MEASURING
            tester = self.tester_factory(address, self.port, self.timeout)
            latency = await tester.lag_test()
            self.deliver(latency)
        except Exception as e:
            self.logger.error(f"Latency probe for {self.address}:{self.port} failed: {e}")
            self.deliver(LATENCY_ERROR)

    async def resolve(self, host: str) -> str:
        if self.resolver is not None:
            return await self.resolver(host)
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, self.port, type=socket.SOCK_STREAM)
        if not infos:
            raise socket.gaierror(f"No address found for {host}")
        # (family, type, proto, canonname, sockaddr) -> sockaddr[0] is the IP
        return infos[0][4][0]

    def deliver(self, latency: int):
        if self.state is ProbeState.DELIVERED:
            return
        self.state = ProbeState.DELIVERED
        self.result = latency
        self.on_result(latency)

def _literal_address(address: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(address.strip("[]")))
    except ValueError:
        return None
