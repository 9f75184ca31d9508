"""
Share Redirect - control plane for NFS mounts of storage endpoints.

This package resolves a storage endpoint to a single reachable IPv4
address, records each mount's redirect in a shared mountmap and keeps a
destination-NAT rule in lockstep with every mountmap line, so existing
mounts survive a change of the endpoint's address.
"""

__version__ = "0.1.0"
__author__ = "Share Redirect Team"

from share_redirect.exceptions import (
    ShareRedirectError,
    ResolutionError,
    TransientNetworkError,
    NameNotFoundError,
    StaticHostsOverrideError,
    ValidationError,
    ConcurrencyConflictError,
    LockAcquisitionError,
    RuleMutationError,
    PartialMutationError,
    FatalInconsistencyError,
    PersistenceError,
    ResourceUnavailableError,
)
from share_redirect.enums import (
    LogLevel,
    DNSStatus,
    DNSErrorCode,
    ResolutionSource,
    ExitCode,
)
from share_redirect.config import (
    PathsConfig,
    CacheConfig,
    RetryConfig,
    DNSConfig,
    ProbeConfig,
    NATConfig,
    CommandConfig,
    LoggingConfig,
    SystemConfig,
    load_config,
    config_to_dict,
)
from share_redirect.models import (
    CacheEntry,
    MountmapEntry,
    NatRule,
    DNSError,
    DNSResponse,
    ResolutionResult,
    ReconcileFailure,
    ReconcileReport,
)
from share_redirect.address_validator import (
    is_valid_ipv4,
    is_valid_ipv4_prefix,
    is_private_ip,
    normalize_hostname,
)
from share_redirect.audit_logger import (
    AuditLogger,
    LogEntry,
)
from share_redirect.commands import (
    CommandResult,
    CommandRunner,
)
from share_redirect.file_lock import (
    ExclusiveFileLock,
    locked_append,
)
from share_redirect.prober import ReachabilityProber
from share_redirect.address_cache import AddressCache
from share_redirect.retry_manager import (
    RetryManager,
    RetryResult,
)
from share_redirect.dns_client import (
    DNSClient,
    DnsPythonClient,
)
from share_redirect.resolver import (
    Resolver,
    StaticHostsFile,
    load_random_seed,
    order_candidates,
)
from share_redirect.nat_rules import (
    PacketFilter,
    IptablesPacketFilter,
    NatRuleManager,
)
from share_redirect.mountmap_store import (
    FileImmutability,
    MountmapStore,
)
from share_redirect.runtime import (
    ensure_runtime_resources,
    create_random_seed,
)
from share_redirect.controller import MountController
from share_redirect.cli import (
    main as cli_main,
    create_parser,
    exit_code_for,
)

__all__ = [
    # Exceptions
    "ShareRedirectError",
    "ResolutionError",
    "TransientNetworkError",
    "NameNotFoundError",
    "StaticHostsOverrideError",
    "ValidationError",
    "ConcurrencyConflictError",
    "LockAcquisitionError",
    "RuleMutationError",
    "PartialMutationError",
    "FatalInconsistencyError",
    "PersistenceError",
    "ResourceUnavailableError",
    # Enums
    "LogLevel",
    "DNSStatus",
    "DNSErrorCode",
    "ResolutionSource",
    "ExitCode",
    # Configuration
    "PathsConfig",
    "CacheConfig",
    "RetryConfig",
    "DNSConfig",
    "ProbeConfig",
    "NATConfig",
    "CommandConfig",
    "LoggingConfig",
    "SystemConfig",
    "load_config",
    "config_to_dict",
    # Models
    "CacheEntry",
    "MountmapEntry",
    "NatRule",
    "DNSError",
    "DNSResponse",
    "ResolutionResult",
    "ReconcileFailure",
    "ReconcileReport",
    # Address validation
    "is_valid_ipv4",
    "is_valid_ipv4_prefix",
    "is_private_ip",
    "normalize_hostname",
    # Logging
    "AuditLogger",
    "LogEntry",
    # Commands and locking
    "CommandResult",
    "CommandRunner",
    "ExclusiveFileLock",
    "locked_append",
    # Resolution
    "ReachabilityProber",
    "AddressCache",
    "RetryManager",
    "RetryResult",
    "DNSClient",
    "DnsPythonClient",
    "Resolver",
    "StaticHostsFile",
    "load_random_seed",
    "order_candidates",
    # NAT and mountmap
    "PacketFilter",
    "IptablesPacketFilter",
    "NatRuleManager",
    "FileImmutability",
    "MountmapStore",
    "ensure_runtime_resources",
    "create_random_seed",
    # Controller and CLI
    "MountController",
    "cli_main",
    "create_parser",
    "exit_code_for",
]
