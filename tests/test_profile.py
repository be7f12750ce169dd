import pytest
from datetime import datetime

from proxylink.client.profile import Profile
from proxylink.shared.constants import LATENCY_ERROR, LATENCY_UNKNOWN

def full_profile():
    return Profile(
        name="Tokyo #1 / backup",
        server_address="Proxy.Example.com",
        server_port=8443,
        password="p@ss:w/rd?",
        sni="cdn.example.com",
        verify_certificate=False,
        verify_hostname=False,
        reuse_session=False,
        session_ticket=True,
        reuse_port=True,
        tcp_fast_open=True,
        local_address="0.0.0.0",
        local_port=1086,
        local_http_port=8118,
        dual_mode=True,
        latency=LATENCY_ERROR,
        last_time=datetime(2026, 3, 1, 12, 30, 5),
    )

def test_uri_round_trip_keeps_every_field():
    profile = full_profile()
    assert Profile.from_uri(profile.to_uri()) == profile

def test_uri_round_trip_ipv6():
    profile = Profile(server_address="2001:db8::1", password="pw", name="v6")
    uri = profile.to_uri()
    assert "@[2001:db8::1]:443" in uri
    assert Profile.from_uri(uri) == profile

def test_plain_share_link():
    profile = Profile.from_uri("trojan://secret@example.com:443?peer=sni.example.com&allowInsecure=1#My%20Server")

    assert profile.name == "My Server"
    assert profile.server_address == "example.com"
    assert profile.password == "secret"
    assert profile.sni == "sni.example.com"
    assert profile.verify_certificate is False
    # 나머지는 기본값
    assert profile.local_address == "127.0.0.1"
    assert profile.local_port == 1080
    assert profile.latency == LATENCY_UNKNOWN
    assert profile.dual_mode is False

def test_missing_port_defaults_to_443():
    assert Profile.from_uri("trojan://pw@example.com").server_port == 443

def test_wrong_scheme():
    with pytest.raises(ValueError, match="Unsupported URI scheme"):
        Profile.from_uri("ss://pw@example.com:443")

def test_missing_host():
    with pytest.raises(ValueError, match="no server address"):
        Profile.from_uri("trojan://pw@:443")

def test_bad_port():
    with pytest.raises(ValueError):
        Profile.from_uri("trojan://pw@example.com:http")
    with pytest.raises(ValueError):
        Profile.from_uri("trojan://pw@example.com:70000")

def test_bad_numeric_option():
    with pytest.raises(ValueError, match="local_port"):
        Profile.from_uri("trojan://pw@example.com:443?local_port=abc")

def test_is_valid():
    assert Profile(server_address="a", password="b").is_valid()
    assert not Profile(server_address="", password="b").is_valid()
    assert not Profile(server_address="a", password="").is_valid()
    assert not Profile(server_address="a", password="b", local_address="").is_valid()
