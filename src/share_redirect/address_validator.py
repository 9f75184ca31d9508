"""
Address validation and hostname normalization module.

Provides IPv4 syntax checks, route-prefix validation through the OS
routing subsystem, private-range classification, and normalization of
storage endpoint hostnames to their canonical ASCII form.
"""

import re
from typing import Optional

import idna

from share_redirect.commands import CommandRunner
from share_redirect.exceptions import ValidationError


IPV4_PATTERN = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")

# Characters that can never appear in a DNS hostname
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~]'
)


def is_valid_ipv4(address: Optional[str]) -> bool:
    """
    Check for a dotted-quad IPv4 address.

    Args:
        address: Candidate string

    Returns:
        True iff four dot-separated decimal octets, each <= 255
    """
    if not isinstance(address, str):
        return False
    match = IPV4_PATTERN.fullmatch(address)
    if match is None:
        return False
    return all(int(octet) <= 255 for octet in match.groups())


def is_valid_ipv4_prefix(
    prefix: str,
    runner: Optional[CommandRunner] = None,
    ip_binary: str = "ip",
) -> bool:
    """
    Check whether the routing subsystem accepts `prefix` as a route target.

    10, 10.10, 10.10.10 and 10.10.10.10 are valid prefixes, while
    1000, 10.256 and "10." are not.

    Args:
        prefix: Candidate prefix
        runner: Command runner used to ask `ip -4 route get`
        ip_binary: Name or path of the `ip` tool

    Returns:
        True if the route lookup succeeds
    """
    if not prefix or FORBIDDEN_CHARS_PATTERN.search(prefix):
        return False
    runner = runner or CommandRunner()
    return runner.run([ip_binary, "-4", "route", "get", prefix]).ok


def is_private_ip(address: str) -> bool:
    """
    Check whether an address is in 10/8, 172.16/12 or 192.168/16.

    Returns:
        False for anything that is not a valid IPv4 address
    """
    if not is_valid_ipv4(address):
        return False

    first, second = (int(octet) for octet in address.split(".")[:2])
    if first == 10:
        return True
    if first == 172 and 16 <= second <= 31:
        return True
    return first == 192 and second == 168


def normalize_hostname(hostname: str) -> str:
    """
    Convert a hostname to canonical form (lowercase, IDNA, no trailing dot).

    Args:
        hostname: Raw hostname as given by the caller

    Returns:
        Canonical hostname

    Raises:
        ValidationError: If the hostname is empty, contains forbidden
                         characters, or cannot be IDNA-encoded
    """
    if not hostname or not hostname.strip():
        raise ValidationError(
            code="empty_hostname",
            message="Hostname is empty",
            details={"hostname": hostname},
        )

    name = hostname.strip().rstrip(".").lower()

    if FORBIDDEN_CHARS_PATTERN.search(name) or ".." in name or not name:
        raise ValidationError(
            code="forbidden_chars",
            message=f"Hostname contains forbidden characters: {hostname!r}",
            details={"hostname": hostname},
        )

    if any(ord(c) > 127 for c in name):
        try:
            name = idna.encode(name, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code="idna_error",
                message=f"IDNA encoding failed: {e}",
                details={"hostname": hostname, "idna_error": str(e)},
            )

    return name
