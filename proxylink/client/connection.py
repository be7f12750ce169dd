import asyncio
import logging
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Set

from .config_manager import ConfigManager
from .latency import AddressTester, LatencyProber, Resolver
from .pac import PACWriter
from .port_validator import PortValidator
from .profile import Profile
from .system_proxy import SystemProxyHelper
from .workers import LocalForwardingWorker, TunnelWorker
from ..shared.constants import LATENCY_UNKNOWN, SETTINGS_FILE_NAME, ProxyMode

class Connection:
    """
    Lifecycle of one profile: tunnel worker, optional local forwarder, PAC file and
    OS proxy settings, reported to observers through the on_* callbacks.

    Every lifecycle method is synchronous and must be called from the event loop that
    owns the connection. Worker failures, including a tunnel that dies after startup,
    and latency results come back as loop callbacks, so they never interleave with a
    start() or stop() in progress.
    """
    def __init__(self, profile: Profile, config_dir,
                 tunnel_factory: Callable = TunnelWorker.from_settings,
                 forwarder_factory: Callable = LocalForwardingWorker.from_settings,
                 pac_factory: Callable = PACWriter.from_config,
                 system_proxy_factory: Callable = SystemProxyHelper.from_config,
                 port_validator: Optional[PortValidator] = None,
                 tester_factory: Callable = AddressTester,
                 resolver: Optional[Resolver] = None):
        self._profile = profile
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / SETTINGS_FILE_NAME
        self.running = False

        self.tunnel_factory = tunnel_factory
        self.forwarder_factory = forwarder_factory
        self.pac_factory = pac_factory
        self.system_proxy_factory = system_proxy_factory
        self.port_validator = port_validator or PortValidator(profile.local_address)
        self.tester_factory = tester_factory
        self.resolver = resolver

        # Owned for the duration of one running episode
        self.tunnel = None
        self.forwarder = None
        self._probes: Set[asyncio.Task] = set()

        # Callbacks for observers
        self.on_state_changed: Optional[Callable[[bool], None]] = None
        self.on_start_failed: Optional[Callable[[], None]] = None
        self.on_latency_available: Optional[Callable[[int], None]] = None

        self.logger = logging.getLogger("Connection")

    @classmethod
    def from_uri(cls, uri: str, config_dir, **kwargs) -> "Connection":
        return cls(Profile.from_uri(uri), config_dir, **kwargs)

    # --- accessors ---

    @property
    def profile(self) -> Profile:
        return self._profile.model_copy()

    @property
    def name(self) -> str:
        return self._profile.name

    @property
    def is_running(self) -> bool:
        return self.running

    def get_uri(self) -> str:
        return self._profile.to_uri()

    def is_valid(self) -> bool:
        return self._profile.is_valid()

    # --- lifecycle ---

    def latency_test(self) -> asyncio.Task:
        conf = self._load_config()
        prober = LatencyProber(
            self._profile.server_address,
            self._profile.server_port,
            self._on_latency_available,
            tester_factory=self.tester_factory,
            resolver=self.resolver,
            timeout=conf.config.latency_timeout,
        )
        task = prober.start()
        self._probes.add(task)
        task.add_done_callback(self._probes.discard)
        return task

    def start(self):
        if self.running:
            self.logger.warning(f"[{self.name}] start() ignored: already running")
            return

        # Latency is advisory, start does not wait for it.
        if self._profile.latency == LATENCY_UNKNOWN:
            self.latency_test()

        self._profile.last_time = datetime.now()

        conf = self._load_config()
        tunnel = self.tunnel_factory(conf.config)
        pac = self.pac_factory(conf)

        # Config files the workers consume
        tunnel_config = conf.write_tunnel_config(self._profile)
        forwarder_config = conf.write_forwarder_config(self._profile)
        tunnel.load_config(tunnel_config)

        local_port = self._profile.local_port
        http_port = self._profile.local_http_port
        if self.port_validator.is_in_use(local_port) or self.port_validator.is_in_use(http_port):
            self.logger.error(f"There is something listening on port {local_port} or {http_port}")
            self._emit_state_changed(False)
            return

        # running must be true before the worker can report a failure
        self.tunnel = tunnel
        tunnel.on_start_failed = partial(self._on_tunnel_start_failed, tunnel)
        tunnel.on_exited = partial(self._on_tunnel_exited, tunnel)
        self.running = True
        try:
            tunnel.start()
        except Exception:
            self.running = False
            self.tunnel = None
            raise

        if self._profile.dual_mode:
            self.forwarder = self.forwarder_factory(conf.config, forwarder_config)
            self.forwarder.start()

        pac_mode = conf.is_enable_pac_mode()
        if pac_mode:
            pac.regenerate(self._profile)

        self.logger.info(f"[{self.name}] started")
        self._emit_state_changed(self.running)

        # OS proxy only after observers have seen the new state
        if conf.is_auto_set_system_proxy():
            mode = ProxyMode.PAC if pac_mode else ProxyMode.GLOBAL
            self.system_proxy_factory(conf).apply(self._profile, mode)

    def stop(self):
        if not self.running:
            return
        conf = self._load_config()

        self.running = False
        self.tunnel.stop()
        self.tunnel = None

        if self._profile.dual_mode and self.forwarder is not None:
            self.forwarder.stop()
        self.forwarder = None

        self.logger.info(f"[{self.name}] stopped")
        self._emit_state_changed(self.running)

        if conf.is_auto_set_system_proxy():
            self.system_proxy_factory(conf).apply(self._profile, ProxyMode.OFF)

    def close(self):
        self.stop()

    # --- asynchronous results ---

    def _on_tunnel_start_failed(self, worker):
        if worker is not self.tunnel:
            self.logger.debug("Ignoring start failure from a released tunnel worker")
            return
        self.logger.error(f"[{self.name}] tunnel worker failed to start")
        self._release_after_tunnel_loss(start_failed=True)

    def _on_tunnel_exited(self, worker, returncode: int):
        if worker is not self.tunnel:
            self.logger.debug("Ignoring exit of a released tunnel worker")
            return
        self.logger.error(f"[{self.name}] tunnel worker exited with code {returncode}")
        self._release_after_tunnel_loss(start_failed=False)

    def _release_after_tunnel_loss(self, start_failed: bool):
        conf = self._load_config()

        self.running = False
        self.tunnel = None
        if self.forwarder is not None:
            self.forwarder.stop()
            self.forwarder = None

        self._emit_state_changed(self.running)
        if start_failed and self.on_start_failed:
            self.on_start_failed()

        if conf.is_auto_set_system_proxy():
            self.system_proxy_factory(conf).apply(self._profile, ProxyMode.OFF)

    def _on_latency_available(self, latency: int):
        self._profile.latency = latency
        self.logger.info(f"[{self.name}] latency: {latency}")
        if self.on_latency_available:
            self.on_latency_available(latency)

    def _emit_state_changed(self, running: bool):
        if self.on_state_changed:
            self.on_state_changed(running)

    def _load_config(self) -> ConfigManager:
        conf = ConfigManager(self.config_file)
        conf.load()
        return conf
