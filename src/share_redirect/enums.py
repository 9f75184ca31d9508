"""
Enumeration types for the share redirect control plane.

These enums provide type-safe constants for log levels, DNS query
outcomes, resolution sources and process exit codes.
"""

from enum import Enum, IntEnum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class DNSStatus(Enum):
    """Outcome of a single DNS collaborator query."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class DNSErrorCode(Enum):
    """Error codes for DNS collaborator failures."""

    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    SERVER_FAILURE = "server_failure"
    NO_NAMESERVERS = "no_nameservers"


class ResolutionSource(Enum):
    """Where a resolved address came from."""

    CACHE = "cache"
    AUTHORITATIVE = "authoritative"
    SYSTEM = "system"


class ExitCode(IntEnum):
    """Process exit codes reported to the mount tooling."""

    SUCCESS = 0
    FAILURE = 1
    RESOLUTION_FAILED = 2
    NAME_NOT_FOUND = 3
    VALIDATION_FAILED = 4
    STATIC_HOSTS_OVERRIDE = 5
    LOCK_FAILED = 6
    RULE_MUTATION_FAILED = 7
    CONCURRENCY_CONFLICT = 8
    PARTIAL_MUTATION = 9
    FATAL_INCONSISTENCY = 10
    RESOURCE_UNAVAILABLE = 11
