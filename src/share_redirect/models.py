"""
Data models for the share redirect control plane.

This module defines the records persisted in the address cache and the
mountmap, the derived DNAT rule, and the results returned by resolution
and reconciliation.
"""

from dataclasses import dataclass, field
from typing import Optional

from .enums import DNSStatus, ResolutionSource


@dataclass(frozen=True)
class CacheEntry:
    """A single resolved address remembered for a hostname."""

    hostname: str
    timestamp: int  # Unix seconds at insertion
    address: str

    def to_line(self) -> str:
        return f"{self.hostname}:{self.timestamp}:{self.address}"

    @classmethod
    def from_line(cls, line: str) -> Optional["CacheEntry"]:
        """Parse a `<hostname>:<timestamp>:<address>` line, None if malformed."""
        parts = line.strip().split(":", 2)
        if len(parts) != 3 or not parts[0] or not parts[2]:
            return None
        try:
            timestamp = int(parts[1])
        except ValueError:
            return None
        return cls(hostname=parts[0], timestamp=timestamp, address=parts[2])


@dataclass(frozen=True)
class MountmapEntry:
    """One line of the mountmap: hostname, local proxy IP and endpoint IP."""

    local_host: str
    local_ip: str
    redirect_ip: str

    def to_line(self) -> str:
        return f"{self.local_host} {self.local_ip} {self.redirect_ip}"

    @classmethod
    def from_line(cls, line: str) -> Optional["MountmapEntry"]:
        """Parse a space-separated triple, None if the line is not one."""
        parts = line.split()
        if len(parts) != 3:
            return None
        return cls(local_host=parts[0], local_ip=parts[1], redirect_ip=parts[2])

    def nat_rule(self) -> "NatRule":
        """The DNAT rule that must exist while this entry is present."""
        return NatRule(destination_ip=self.local_ip, redirect_ip=self.redirect_ip)

    def __str__(self) -> str:
        return self.to_line()


@dataclass(frozen=True)
class NatRule:
    """A destination-NAT rule, queried live from the packet filter."""

    destination_ip: str
    redirect_ip: str
    protocol: str = "tcp"

    def __str__(self) -> str:
        return f"{self.destination_ip} -> {self.redirect_ip}"


@dataclass
class DNSError:
    """Error information from a DNS query."""

    code: str
    message: str


@dataclass
class DNSResponse:
    """
    Three-way outcome of a DNS collaborator query.

    `status` is FOUND (records may still be empty), NOT_FOUND for a
    definitive NXDOMAIN, or ERROR for anything transient.
    """

    status: DNSStatus
    records: list[str] = field(default_factory=list)
    canonical_name: Optional[str] = None
    error: Optional[DNSError] = None


@dataclass
class ResolutionResult:
    """Result of resolving a storage endpoint hostname."""

    hostname: str
    address: str
    candidates: list[str]
    source: ResolutionSource
    static_hosts_match: bool = False


@dataclass
class ReconcileFailure:
    """A mountmap entry that could not be reconciled."""

    entry: str
    error: str


@dataclass
class ReconcileReport:
    """Summary of one reconciliation pass over the mountmap."""

    checked: int = 0
    repaired_rules: int = 0
    replaced: list[str] = field(default_factory=list)
    failures: list[ReconcileFailure] = field(default_factory=list)
