import socket
import logging

class PortValidator:
    def __init__(self, host: str = "127.0.0.1"):
        self.host = host
        self.logger = logging.getLogger("PortValidator")

    def is_in_use(self, port: int) -> bool:
        """Something else is bound to the port if we cannot bind it ourselves."""
        if port <= 0:
            return False
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
                # Windows allows a second bind on the same port otherwise
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
            else:
                # connections left in TIME_WAIT do not count as a listener
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, port))
            return False
        except OSError as e:
            self.logger.debug(f"Port {port} on {self.host} is in use: {e}")
            return True
        finally:
            sock.close()
