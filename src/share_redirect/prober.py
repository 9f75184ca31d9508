"""
Reachability probe used to choose among zone-redundant endpoint addresses.
"""

import socket
from typing import Optional

from .address_validator import is_valid_ipv4
from .exceptions import ValidationError


class ReachabilityProber:
    """Bounded-timeout TCP connect test."""

    DEFAULT_TIMEOUT = 3.0

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout_seconds

    def is_reachable(self, ip: str, port: int, timeout: Optional[float] = None) -> bool:
        """
        Try a TCP connection to `ip:port`.

        Refusal, timeout and unreachable networks all return False.

        Raises:
            ValidationError: If `ip` is not IPv4 or `port` is out of range
        """
        if not is_valid_ipv4(ip):
            raise ValidationError(
                code="invalid_address",
                message=f"Cannot probe invalid IPv4 address {ip!r}",
                details={"ip": ip},
            )
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ValidationError(
                code="invalid_port",
                message=f"Cannot probe invalid port {port!r}",
                details={"port": port},
            )

        try:
            with socket.create_connection(
                (ip, port),
                timeout=timeout if timeout is not None else self._timeout,
            ):
                return True
        except OSError:
            return False
