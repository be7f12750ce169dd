import os
import sys
import json
import logging
from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .profile import Profile
from ..shared.constants import (
    SETTINGS_FILE_NAME,
    TUNNEL_CONFIG_FILE_NAME,
    FORWARDER_CONFIG_FILE_NAME,
    PAC_FILE_NAME,
    DEFAULT_TUNNEL_EXECUTABLE,
    DEFAULT_FORWARDER_EXECUTABLE,
    DEFAULT_LATENCY_TIMEOUT,
    DEFAULT_START_GRACE,
)

APP_DIR_NAME = "proxylink"

def default_config_dir() -> Path:
    """Platform default configuration directory. Only the launcher resolves this."""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_DIR_NAME

class ClientConfigModel(BaseModel):
    auto_set_system_proxy: bool = True
    enable_pac_mode: bool = False
    tunnel_executable: str = DEFAULT_TUNNEL_EXECUTABLE
    forwarder_executable: str = DEFAULT_FORWARDER_EXECUTABLE
    worker_start_grace: float = DEFAULT_START_GRACE
    latency_timeout: float = DEFAULT_LATENCY_TIMEOUT
    tunnel_log_level: int = 1
    pac_file: Optional[str] = None
    pac_template: Optional[str] = None

class ConfigManager:
    """
    User preferences (settings.json) plus the worker config files derived from a profile.
    All files live next to the settings file.
    """
    def __init__(self, path):
        self.path = Path(path)
        self.config_dir = self.path.parent
        self.config = ClientConfigModel()
        self.logger = logging.getLogger("ConfigManager")

    @property
    def tunnel_config_path(self) -> Path:
        return self.config_dir / TUNNEL_CONFIG_FILE_NAME

    @property
    def forwarder_config_path(self) -> Path:
        return self.config_dir / FORWARDER_CONFIG_FILE_NAME

    @property
    def pac_file_path(self) -> Path:
        if self.config.pac_file:
            return Path(self.config.pac_file)
        return self.config_dir / PAC_FILE_NAME

    def load(self):
        if self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8-sig') as f:
                    data = json.load(f)
                    self.config = ClientConfigModel(**data)
            except Exception as e:
                self.logger.error(f"Failed to load settings {self.path}: {e}")
        else:
            self.logger.info(f"Settings file {self.path} not found, creating default.")
            self.save()

    def save(self):
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                f.write(self.config.model_dump_json(indent=2))
        except OSError as e:
            self.logger.error(f"Failed to save settings: {e}")

    def is_enable_pac_mode(self) -> bool:
        return self.config.enable_pac_mode

    def is_auto_set_system_proxy(self) -> bool:
        return self.config.auto_set_system_proxy

    def write_tunnel_config(self, profile: Profile) -> Path:
        """Write the client config the tunnel worker loads."""
        data = {
            "run_type": "client",
            "local_addr": profile.local_address,
            "local_port": profile.local_port,
            "remote_addr": profile.server_address,
            "remote_port": profile.server_port,
            "password": [profile.password],
            "log_level": self.config.tunnel_log_level,
            "ssl": {
                "verify": profile.verify_certificate,
                "verify_hostname": profile.verify_hostname,
                "cert": "",
                "sni": profile.sni,
                "alpn": ["h2", "http/1.1"],
                "reuse_session": profile.reuse_session,
                "session_ticket": profile.session_ticket,
                "curves": "",
            },
            "tcp": {
                "no_delay": True,
                "keep_alive": True,
                "reuse_port": profile.reuse_port,
                "fast_open": profile.tcp_fast_open,
                "fast_open_qlen": 20,
            },
        }
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.tunnel_config_path
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        return path

    def write_forwarder_config(self, profile: Profile) -> Path:
        """Write the HTTP -> SOCKS5 forwarder config used in dual mode."""
        lines = [
            f"listen-address {profile.local_address}:{profile.local_http_port}",
            "toggle 1",
            "enable-remote-toggle 0",
            "enable-remote-http-toggle 0",
            "enable-edit-actions 0",
            f"forward-socks5 / {profile.local_address}:{profile.local_port} .",
        ]
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.forwarder_config_path
        with open(path, 'w', encoding='utf-8') as f:
            f.write("\n".join(lines) + "\n")
        return path
