import sys
import logging
import subprocess
from typing import List, Optional

from .profile import Profile
from ..shared.constants import ProxyMode

GNOME_PROXY_SCHEMA = "org.gnome.system.proxy"
INTERNET_SETTINGS_PATH = r"Software\Microsoft\Windows\CurrentVersion\Internet Settings"
INTERNET_OPTION_SETTINGS_CHANGED = 39
INTERNET_OPTION_REFRESH = 37

class SystemProxyHelper:
    """
    Applies or clears the OS-level proxy configuration.

    Failures are logged and swallowed: the OS proxy is a side effect of the
    connection lifecycle and must not leave the connection state half-updated.
    """
    def __init__(self, pac_url: Optional[str] = None, platform: Optional[str] = None):
        self.pac_url = pac_url
        self.platform = platform or sys.platform
        self.logger = logging.getLogger("SystemProxyHelper")

    @classmethod
    def from_config(cls, conf) -> "SystemProxyHelper":
        return cls(conf.pac_file_path.resolve().as_uri())

    def apply(self, profile: Profile, mode: ProxyMode):
        mode = ProxyMode(mode)
        self.logger.info(f"Setting system proxy mode to {mode.name}")
        try:
            if self.platform == "win32":
                self._apply_windows(profile, mode)
            elif self.platform == "darwin":
                self._apply_macos(profile, mode)
            else:
                self._apply_gnome(profile, mode)
        except (OSError, subprocess.CalledProcessError) as e:
            self.logger.error(f"Failed to set system proxy ({mode.name}): {e}")

    def _run(self, args: List[str]) -> str:
        self.logger.debug(f"exec: {' '.join(args)}")
        result = subprocess.run(args, check=True, capture_output=True, text=True)
        return result.stdout

    # --- Linux (GNOME) ---

    def _gsettings(self, key: str, value: str, schema: str = GNOME_PROXY_SCHEMA):
        self._run(["gsettings", "set", schema, key, value])

    def _apply_gnome(self, profile: Profile, mode: ProxyMode):
        if mode == ProxyMode.OFF:
            self._gsettings("mode", "none")
        elif mode == ProxyMode.PAC:
            self._gsettings("autoconfig-url", self.pac_url or "")
            self._gsettings("mode", "auto")
        else:
            self._gsettings("host", profile.local_address, f"{GNOME_PROXY_SCHEMA}.socks")
            self._gsettings("port", str(profile.local_port), f"{GNOME_PROXY_SCHEMA}.socks")
            if profile.dual_mode:
                for scheme in ("http", "https"):
                    self._gsettings("host", profile.local_address, f"{GNOME_PROXY_SCHEMA}.{scheme}")
                    self._gsettings("port", str(profile.local_http_port), f"{GNOME_PROXY_SCHEMA}.{scheme}")
            self._gsettings("mode", "manual")

    # --- macOS ---

    def _network_services(self) -> List[str]:
        output = self._run(["networksetup", "-listallnetworkservices"])
        services = []
        for line in output.splitlines()[1:]:  # first line is a notice
            line = line.strip()
            # '*' marks a disabled service
            if line and not line.startswith("*"):
                services.append(line)
        return services

    def _apply_macos(self, profile: Profile, mode: ProxyMode):
        host = profile.local_address
        for service in self._network_services():
            if mode == ProxyMode.OFF:
                self._run(["networksetup", "-setautoproxystate", service, "off"])
                self._run(["networksetup", "-setsocksfirewallproxystate", service, "off"])
                self._run(["networksetup", "-setwebproxystate", service, "off"])
                self._run(["networksetup", "-setsecurewebproxystate", service, "off"])
            elif mode == ProxyMode.PAC:
                self._run(["networksetup", "-setautoproxyurl", service, self.pac_url or ""])
                self._run(["networksetup", "-setautoproxystate", service, "on"])
            else:
                self._run(["networksetup", "-setsocksfirewallproxy", service, host, str(profile.local_port)])
                if profile.dual_mode:
                    http_port = str(profile.local_http_port)
                    self._run(["networksetup", "-setwebproxy", service, host, http_port])
                    self._run(["networksetup", "-setsecurewebproxy", service, host, http_port])

    # --- Windows ---

    def _apply_windows(self, profile: Profile, mode: ProxyMode):
        import ctypes
        import winreg

        key = winreg.OpenKey(winreg.HKEY_CURRENT_USER, INTERNET_SETTINGS_PATH, 0, winreg.KEY_WRITE)
        try:
            if mode == ProxyMode.OFF:
                winreg.SetValueEx(key, "ProxyEnable", 0, winreg.REG_DWORD, 0)
                winreg.SetValueEx(key, "AutoConfigURL", 0, winreg.REG_SZ, "")
            elif mode == ProxyMode.PAC:
                winreg.SetValueEx(key, "ProxyEnable", 0, winreg.REG_DWORD, 0)
                winreg.SetValueEx(key, "AutoConfigURL", 0, winreg.REG_SZ, self.pac_url or "")
            else:
                if profile.dual_mode:
                    server = f"{profile.local_address}:{profile.local_http_port}"
                else:
                    server = f"socks={profile.local_address}:{profile.local_port}"
                winreg.SetValueEx(key, "ProxyEnable", 0, winreg.REG_DWORD, 1)
                winreg.SetValueEx(key, "ProxyServer", 0, winreg.REG_SZ, server)
                winreg.SetValueEx(key, "ProxyOverride", 0, winreg.REG_SZ, "localhost;127.*;10.*;192.168.*;<local>")
                winreg.SetValueEx(key, "AutoConfigURL", 0, winreg.REG_SZ, "")
        finally:
            winreg.CloseKey(key)

        # Notify running applications of the change
        internet_set_option = ctypes.windll.Wininet.InternetSetOptionW
        internet_set_option(None, INTERNET_OPTION_SETTINGS_CHANGED, None, 0)
        internet_set_option(None, INTERNET_OPTION_REFRESH, None, 0)
