from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from pydantic import BaseModel, ConfigDict, Field

from ..shared.constants import (
    URI_SCHEME,
    LATENCY_UNKNOWN,
    DEFAULT_SERVER_PORT,
    DEFAULT_LOCAL_ADDRESS,
    DEFAULT_LOCAL_PORT,
    DEFAULT_LOCAL_HTTP_PORT,
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _parse_flag(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


class Profile(BaseModel):
    """One connection's endpoints, credential, local ports and last measured latency."""

    model_config = ConfigDict(validate_assignment=True)

    name: str = ""
    server_address: str = ""
    server_port: int = Field(default=DEFAULT_SERVER_PORT, ge=0, le=65535)
    password: str = ""

    # TLS / TCP options passed through to the tunnel worker
    sni: str = ""
    verify_certificate: bool = True
    verify_hostname: bool = True
    reuse_session: bool = True
    session_ticket: bool = False
    reuse_port: bool = False
    tcp_fast_open: bool = False

    local_address: str = DEFAULT_LOCAL_ADDRESS
    local_port: int = Field(default=DEFAULT_LOCAL_PORT, ge=0, le=65535)
    local_http_port: int = Field(default=DEFAULT_LOCAL_HTTP_PORT, ge=0, le=65535)
    dual_mode: bool = False

    latency: int = LATENCY_UNKNOWN
    last_time: Optional[datetime] = None

    def is_valid(self) -> bool:
        return bool(self.server_address and self.password and self.local_address)

    # ------------------------------------------------------------------
    # URI form: trojan://<password>@<host>:<port>?<options>#<name>
    # ------------------------------------------------------------------

    def to_uri(self) -> str:
        host = self.server_address
        # IPv6 리터럴은 포트와 구분하기 위해 대괄호로 감싼다.
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"

        query = {
            "sni": self.sni,
            "verify": _flag(self.verify_certificate),
            "verify_hostname": _flag(self.verify_hostname),
            "reuse_session": _flag(self.reuse_session),
            "session_ticket": _flag(self.session_ticket),
            "reuse_port": _flag(self.reuse_port),
            "tfo": _flag(self.tcp_fast_open),
            "local": self.local_address,
            "local_port": str(self.local_port),
            "http_port": str(self.local_http_port),
            "dual": _flag(self.dual_mode),
            "latency": str(self.latency),
        }
        if self.last_time is not None:
            query["last"] = self.last_time.isoformat()

        return (
            f"{URI_SCHEME}://{quote(self.password, safe='')}@{host}:{self.server_port}"
            f"?{urlencode(query)}#{quote(self.name, safe='')}"
        )

    @classmethod
    def from_uri(cls, uri: str) -> "Profile":
        parts = urlsplit(uri.strip())
        if parts.scheme.lower() != URI_SCHEME:
            raise ValueError(f"Unsupported URI scheme: {parts.scheme!r}")

        # netloc is split by hand because urlsplit().hostname lowercases the host
        userinfo, _, hostport = parts.netloc.rpartition("@")
        host, port = _split_host_port(hostport)
        if not host:
            raise ValueError(f"URI has no server address: {uri!r}")

        fields = {
            "name": unquote(parts.fragment),
            "server_address": host,
            "server_port": port,
            "password": unquote(userinfo),
        }
        fields.update(_query_fields(parse_qs(parts.query, keep_blank_values=True)))
        return cls(**fields)


def _split_host_port(hostport: str):
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"Unterminated IPv6 address: {hostport!r}")
        host = hostport[1:end]
        rest = hostport[end + 1:]
        port_text = rest[1:] if rest.startswith(":") else ""
    elif hostport.count(":") == 1:
        host, _, port_text = hostport.partition(":")
    else:
        host, port_text = hostport, ""

    if not port_text:
        return host, DEFAULT_SERVER_PORT
    try:
        return host, int(port_text)
    except ValueError:
        raise ValueError(f"Invalid server port: {port_text!r}")


def _query_fields(query: Dict[str, List[str]]) -> dict:
    def last(key: str) -> Optional[str]:
        values = query.get(key)
        return values[-1] if values else None

    fields = {}

    # "peer" and "allowInsecure" are what most shared trojan links carry
    sni = last("sni")
    if sni is None:
        sni = last("peer")
    if sni is not None:
        fields["sni"] = sni
    if last("allowInsecure") is not None:
        fields["verify_certificate"] = not _parse_flag(last("allowInsecure"))

    flags = {
        "verify": "verify_certificate",
        "verify_hostname": "verify_hostname",
        "reuse_session": "reuse_session",
        "session_ticket": "session_ticket",
        "reuse_port": "reuse_port",
        "tfo": "tcp_fast_open",
        "dual": "dual_mode",
    }
    for key, field in flags.items():
        value = last(key)
        if value is not None:
            fields[field] = _parse_flag(value)

    if last("local"):
        fields["local_address"] = last("local")

    numbers = {"local_port": "local_port", "http_port": "local_http_port", "latency": "latency"}
    for key, field in numbers.items():
        value = last(key)
        if value:
            try:
                fields[field] = int(value)
            except ValueError:
                raise ValueError(f"Invalid value for {key}: {value!r}")

    if last("last"):
        fields["last_time"] = datetime.fromisoformat(last("last"))

    return fields
