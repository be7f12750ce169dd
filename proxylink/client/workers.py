import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

from .config_manager import ClientConfigModel
from ..shared.constants import DEFAULT_START_GRACE

class ProcessWorker:
    """
    Runs an external executable as an asyncio subprocess task.

    If the process cannot be spawned, or exits within start_grace seconds, and stop()
    was not requested, on_start_failed() is called once from the event loop.
    If it exits on its own after that window, on_exited(returncode) is called instead.
    """
    def __init__(self, executable: str, start_grace: float = DEFAULT_START_GRACE, name: Optional[str] = None):
        self.executable = executable
        self.start_grace = start_grace
        self.process: Optional[asyncio.subprocess.Process] = None
        self.task: Optional[asyncio.Task] = None
        self.started = False
        self.logger = logging.getLogger(name or type(self).__name__)

        # Callbacks for the owner
        self.on_start_failed: Optional[Callable[[], None]] = None
        self.on_exited: Optional[Callable[[int], None]] = None

        self._stopping = False
        self._failure_reported = False

    def command(self) -> List[str]:
        return [self.executable]

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def start(self):
        if self.task is not None:
            self.logger.warning("start() called twice, ignoring")
            return
        self._stopping = False
        self.task = asyncio.get_running_loop().create_task(self.run())

    def stop(self):
        if self._stopping:
            return
        self._stopping = True
        if self.is_alive:
            self.logger.info(f"Terminating {self.executable} (pid={self.process.pid})")
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass

    async def wait_closed(self):
        if self.task is not None:
            await self.task

    async def run(self):
        cmd = self.command()
        self.logger.info(f"Starting: {' '.join(cmd)}")
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            self.logger.error(f"Failed to launch {self.executable}: {e}")
            self._report_start_failure()
            return

        # stop() was called while the process was spawning
        if self._stopping:
            self.process.terminate()

        pump = asyncio.create_task(self._pump_output())
        try:
            try:
                returncode = await asyncio.wait_for(asyncio.shield(self.process.wait()), timeout=self.start_grace)
            except asyncio.TimeoutError:
                self.started = True
                self.logger.info(f"{self.executable} is running (pid={self.process.pid})")
                returncode = await self.process.wait()
                if self._stopping:
                    self.logger.info(f"{self.executable} exited with code {returncode}")
                else:
                    self.logger.error(f"{self.executable} exited unexpectedly with code {returncode}")
                    if self.on_exited:
                        self.on_exited(returncode)
                return

            self.logger.error(f"{self.executable} exited during startup with code {returncode}")
            self._report_start_failure()
        finally:
            await pump

    async def _pump_output(self):
        stream = self.process.stdout
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            self.logger.debug(line.decode("utf-8", errors="replace").rstrip())

    def _report_start_failure(self):
        if self._stopping or self._failure_reported:
            return
        self._failure_reported = True
        if self.on_start_failed:
            self.on_start_failed()

class TunnelWorker(ProcessWorker):
    """The encrypted tunnel client process."""
    def __init__(self, executable: str, start_grace: float = DEFAULT_START_GRACE):
        super().__init__(executable, start_grace, name="TunnelWorker")
        self.config_path: Optional[Path] = None
        self.config: dict = {}

    @classmethod
    def from_settings(cls, settings: ClientConfigModel) -> "TunnelWorker":
        return cls(settings.tunnel_executable, settings.worker_start_grace)

    def load_config(self, path):
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                self.config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot load tunnel config {path}: {e}")
        self.config_path = path
        self.logger.info(f"Loaded config {path} ({self.config.get('remote_addr')}:{self.config.get('remote_port')})")

    def command(self) -> List[str]:
        return [self.executable, "--config", str(self.config_path)]

    def start(self):
        if self.config_path is None:
            raise RuntimeError("TunnelWorker.start() called before load_config()")
        super().start()

class LocalForwardingWorker(ProcessWorker):
    """HTTP -> SOCKS5 forwarder for dual mode."""
    def __init__(self, executable: str, config_path, start_grace: float = DEFAULT_START_GRACE):
        super().__init__(executable, start_grace, name="LocalForwardingWorker")
        self.config_path = Path(config_path)

    @classmethod
    def from_settings(cls, settings: ClientConfigModel, config_path) -> "LocalForwardingWorker":
        return cls(settings.forwarder_executable, config_path, settings.worker_start_grace)

    def command(self) -> List[str]:
        return [self.executable, "--no-daemon", str(self.config_path)]
