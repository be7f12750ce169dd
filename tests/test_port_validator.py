import socket

from proxylink.client.port_validator import PortValidator

def test_listening_port_is_in_use():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    port = sock.getsockname()[1]
    try:
        assert PortValidator().is_in_use(port)
    finally:
        sock.close()

def test_free_port_is_not_in_use():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    assert not PortValidator().is_in_use(port)

def test_port_zero_is_never_in_use():
    assert not PortValidator().is_in_use(0)

def test_port_with_only_time_wait_connections_is_free():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]

    client = socket.create_connection(("127.0.0.1", port))
    server_side, _ = listener.accept()
    # closing the accepted side first leaves it in TIME_WAIT on our port
    server_side.close()
    client.recv(1)
    client.close()
    listener.close()

    assert not PortValidator().is_in_use(port)
