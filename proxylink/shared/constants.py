from enum import IntEnum

URI_SCHEME = "trojan"

# Latency sentinels. Real measurements are >= 0 (milliseconds).
LATENCY_TIMEOUT = -1
LATENCY_ERROR = -2
LATENCY_UNKNOWN = -3

DEFAULT_SERVER_PORT = 443
DEFAULT_LOCAL_ADDRESS = "127.0.0.1"
DEFAULT_LOCAL_PORT = 1080
DEFAULT_LOCAL_HTTP_PORT = 1081

# Files kept in the configuration directory
SETTINGS_FILE_NAME = "settings.json"
TUNNEL_CONFIG_FILE_NAME = "config.json"
FORWARDER_CONFIG_FILE_NAME = "privoxy.conf"
PAC_FILE_NAME = "proxy.pac"

DEFAULT_TUNNEL_EXECUTABLE = "trojan"
DEFAULT_FORWARDER_EXECUTABLE = "privoxy"

# seconds
DEFAULT_LATENCY_TIMEOUT = 3.0
DEFAULT_START_GRACE = 1.0

PAC_PROXY_PLACEHOLDER = "__PROXY__"

class ProxyMode(IntEnum):
    OFF = 0
    GLOBAL = 1
    PAC = 2
