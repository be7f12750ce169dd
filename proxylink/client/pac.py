import logging
from pathlib import Path
from typing import Optional

from .profile import Profile
from ..shared.constants import PAC_PROXY_PLACEHOLDER

DEFAULT_PAC_TEMPLATE = """\
var proxy = "__PROXY__";
var direct = "DIRECT";

function FindProxyForURL(url, host) {
    if (isPlainHostName(host) ||
        shExpMatch(host, "localhost") ||
        shExpMatch(host, "*.local") ||
        isInNet(dnsResolve(host), "10.0.0.0", "255.0.0.0") ||
        isInNet(dnsResolve(host), "172.16.0.0", "255.240.0.0") ||
        isInNet(dnsResolve(host), "192.168.0.0", "255.255.0.0") ||
        isInNet(dnsResolve(host), "127.0.0.0", "255.0.0.0")) {
        return direct;
    }
    return proxy;
}
"""

def proxy_directive(profile: Profile) -> str:
    socks = f"{profile.local_address}:{profile.local_port}"
    parts = [f"SOCKS5 {socks}", f"SOCKS {socks}"]
    if profile.dual_mode:
        parts.insert(0, f"PROXY {profile.local_address}:{profile.local_http_port}")
    parts.append("DIRECT")
    return "; ".join(parts)

class PACWriter:
    def __init__(self, pac_path, template_path=None):
        self.pac_path = Path(pac_path)
        self.template_path: Optional[Path] = Path(template_path) if template_path else None
        self.logger = logging.getLogger("PACWriter")

    @classmethod
    def from_config(cls, conf) -> "PACWriter":
        return cls(conf.pac_file_path, conf.config.pac_template)

    def load_template(self) -> str:
        if self.template_path is not None:
            try:
                template = self.template_path.read_text(encoding="utf-8")
                if PAC_PROXY_PLACEHOLDER in template:
                    return template
                self.logger.warning(f"PAC template {self.template_path} has no {PAC_PROXY_PLACEHOLDER}, using built-in")
            except OSError as e:
                self.logger.warning(f"Cannot read PAC template {self.template_path}: {e}")
        return DEFAULT_PAC_TEMPLATE

    def regenerate(self, profile: Profile) -> Path:
        content = self.load_template().replace(PAC_PROXY_PLACEHOLDER, proxy_directive(profile))
        self.pac_path.parent.mkdir(parents=True, exist_ok=True)
        self.pac_path.write_text(content, encoding="utf-8")
        self.logger.info(f"PAC file updated: {self.pac_path}")
        return self.pac_path
