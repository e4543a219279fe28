"""
Relay discovery using mDNS/Zeroconf (Bonjour)

The relay server advertises itself on the LAN so clients can find it without
configuration. This only locates the relay; pairing between devices is
decided by the relay from their shared network address.
"""
import os
import socket
import logging
import threading
from typing import Optional, Dict, Tuple
from zeroconf import ServiceBrowser, ServiceInfo, Zeroconf, ServiceStateChange

from flingit import config

logger = logging.getLogger(__name__)


def parse_server_address(value: str, default_port: int = config.PORT) -> Tuple[str, int]:
    """
    Parse 'host', 'host:port' or '[v6]:port'.

    Raises:
        ValueError: empty host or invalid port
    """
    value = value.strip()
    if value.startswith('['):
        host, sep, rest = value[1:].partition(']')
        if not sep:
            raise ValueError(f"Unclosed bracket in {value!r}")
        port = int(rest[1:]) if rest.startswith(':') else default_port
    elif value.count(':') == 1:
        host, port_str = value.split(':')
        port = int(port_str)
    else:
        host, port = value, default_port

    if not host:
        raise ValueError(f"Missing host in {value!r}")
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range: {port}")
    return host, port


def get_local_ip() -> str:
    """Get the primary local IP address"""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # Doesn't actually connect, just determines the local interface
        s.connect(('8.8.8.8', 80))
        return s.getsockname()[0]
    except OSError:
        return '127.0.0.1'
    finally:
        s.close()


class RelayAdvertiser:
    """Registers the relay server as an mDNS service"""

    def __init__(self, port: int = config.PORT):
        self.port = port
        self.zeroconf: Optional[Zeroconf] = None
        self.service_info: Optional[ServiceInfo] = None

    def start(self) -> bool:
        if self.zeroconf:
            return True

        local_ip = get_local_ip()
        hostname = socket.gethostname()
        service_name = f"flingit-{hostname}.{config.SERVICE_TYPE}"

        self.service_info = ServiceInfo(
            config.SERVICE_TYPE,
            service_name,
            addresses=[socket.inet_aton(local_ip)],
            port=self.port,
            properties={'version': '1.0'},
        )

        self.zeroconf = Zeroconf()
        try:
            self.zeroconf.register_service(self.service_info)
        except Exception as e:
            logger.error(f"Failed to register service: {e}")
            self.zeroconf.close()
            self.zeroconf = None
            return False

        logger.info(f"Registered service: {service_name} at {local_ip}:{self.port}")
        return True

    def stop(self):
        if not self.zeroconf:
            return
        if self.service_info:
            self.zeroconf.unregister_service(self.service_info)
        self.zeroconf.close()
        self.zeroconf = None
        logger.info("Relay advertisement stopped")


class RelayLocator:
    """
    Finds relay servers advertised on the LAN.

    The FLINGIT_SERVER environment variable (host or host:port) takes
    precedence over mDNS browsing.
    """

    def __init__(self):
        self.zeroconf: Optional[Zeroconf] = None
        self.browser: Optional[ServiceBrowser] = None
        self.discovered: Dict[str, Tuple[str, int]] = {}  # name -> (ip, port)
        self._lock = threading.Lock()
        self._found_event = threading.Event()

    def _on_service_state_change(self, zeroconf: Zeroconf, service_type: str,
                                 name: str, state_change: ServiceStateChange):
        if state_change == ServiceStateChange.Added:
            info = zeroconf.get_service_info(service_type, name)
            if info and info.addresses:
                ip = socket.inet_ntoa(info.addresses[0])
                with self._lock:
                    self.discovered[name] = (ip, info.port)
                logger.info(f"Discovered relay: {name} at {ip}:{info.port}")
                self._found_event.set()
        elif state_change == ServiceStateChange.Removed:
            with self._lock:
                if self.discovered.pop(name, None):
                    logger.info(f"Lost relay: {name}")

    def start(self):
        if self.zeroconf:
            return
        self.zeroconf = Zeroconf()
        self.browser = ServiceBrowser(
            self.zeroconf,
            config.SERVICE_TYPE,
            handlers=[self._on_service_state_change]
        )
        logger.debug("Relay browsing started")

    def stop(self):
        if self.browser:
            self.browser.cancel()
            self.browser = None
        if self.zeroconf:
            self.zeroconf.close()
            self.zeroconf = None

    def get_manual_server(self) -> Optional[Tuple[str, int]]:
        """Get relay address from the FLINGIT_SERVER environment variable"""
        value = os.environ.get(config.SERVER_ENV_VAR)
        if not value:
            return None
        try:
            address = parse_server_address(value)
        except ValueError as e:
            logger.warning(f"Invalid {config.SERVER_ENV_VAR} value '{value}': {e}")
            return None
        logger.info(f"Using relay from {config.SERVER_ENV_VAR}: {address[0]}:{address[1]}")
        return address

    def find_server(self, timeout: float = 5.0) -> Optional[Tuple[str, int]]:
        """
        Get the first relay found.

        Args:
            timeout: Maximum seconds to browse (0 = only check the override)

        Returns:
            (host, port) or None if no relay found
        """
        manual = self.get_manual_server()
        if manual:
            return manual
        if timeout <= 0:
            return None

        self.start()
        try:
            if self._found_event.wait(timeout=timeout):
                with self._lock:
                    if self.discovered:
                        return next(iter(self.discovered.values()))
        finally:
            self.stop()

        logger.debug(f"No relay found within {timeout}s")
        return None
