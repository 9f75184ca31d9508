"""
Resolver for storage endpoint hostnames.

This module turns a storage endpoint hostname into a validated, reachable
IPv4 address. It integrates:
- The address cache, so a recent answer skips DNS entirely
- An authoritative walk that asks the zone's own name servers, which sees
  address changes before caching recursive resolvers do
- A system-resolver fallback for when the walk cannot answer
- Deterministic, machine-specific ordering of zone-redundant answers
- A reachability tie-break among multiple candidates
- Detection of static hosts-file overrides

The resolver never writes to stdout; callers that print the address own
the primary output channel.
"""

import random
import re
from pathlib import Path
from typing import Callable, Optional

from .address_cache import AddressCache
from .address_validator import is_valid_ipv4, normalize_hostname
from .audit_logger import AuditLogger
from .config import DNSConfig, ProbeConfig
from .dns_client import DNSClient
from .enums import DNSStatus, ResolutionSource
from .exceptions import (
    NameNotFoundError,
    PersistenceError,
    ResolutionError,
    ResourceUnavailableError,
    StaticHostsOverrideError,
    TransientNetworkError,
    ValidationError,
)
from .models import DNSResponse, ResolutionResult
from .prober import ReachabilityProber
from .retry_manager import RetryManager


def load_random_seed(seed_file: Path) -> bytes:
    """
    Read the machine-local shuffle seed.

    Raises:
        ResourceUnavailableError: If the seed file is missing or empty
    """
    try:
        seed = seed_file.read_bytes()
    except OSError as e:
        raise ResourceUnavailableError(
            code="missing_random_seed",
            message=f"Random seed file {seed_file} is not readable: {e}",
            details={"file_path": str(seed_file)},
        )
    if not seed:
        raise ResourceUnavailableError(
            code="empty_random_seed",
            message=f"Random seed file {seed_file} is empty",
            details={"file_path": str(seed_file)},
        )
    return seed


def order_candidates(addresses: list[str], seed: bytes) -> list[str]:
    """
    Put resolved addresses in a stable, machine-specific order.

    Zone-redundant endpoints answer with several addresses in varying
    order. Sorting first makes the input canonical; shuffling with the
    machine's seed then gives the same order on every call on this
    machine while spreading different machines across zones.

    Args:
        addresses: Addresses as returned by DNS
        seed: Machine-local seed bytes

    Returns:
        De-duplicated addresses in seeded order
    """
    ordered = sorted(set(addresses))
    random.Random(seed).shuffle(ordered)
    return ordered


class StaticHostsFile:
    """Reads static hostname mappings from a hosts(5) file."""

    def __init__(self, path: Path = Path("/etc/hosts")) -> None:
        self._path = path

    def maps(self, address: str, hostname: str) -> bool:
        """True if a non-comment line maps `address` to `hostname`."""
        pattern = re.compile(
            r"^\s*" + re.escape(address) + r"\s+[^#]*(?<![\w.-])"
            + re.escape(hostname) + r"(?![\w.-])",
            re.IGNORECASE,
        )
        try:
            with open(self._path, "r", encoding="utf-8", errors="replace") as f:
                return any(pattern.search(line) for line in f)
        except FileNotFoundError:
            return False


class Resolver:
    """
    Two-tier hostname resolver with caching and reachability selection.

    Resolution order:
    1. Address cache hit -> single candidate, no DNS traffic
    2. Authoritative walk, retried on transient failure
    3. System resolver, immediately on NXDOMAIN from step 2 or after
       step 2 exhausted its retries
    """

    COMPONENT = "resolver"

    def __init__(
        self,
        dns_client: DNSClient,
        cache: AddressCache,
        prober: ReachabilityProber,
        retry_manager: RetryManager,
        seed_source: Callable[[], bytes],
        hosts_file: Optional[StaticHostsFile] = None,
        dns_config: Optional[DNSConfig] = None,
        probe_config: Optional[ProbeConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            dns_client: DNS collaborator
            cache: Address cache
            prober: Reachability prober
            retry_manager: Retry policy for transient DNS failures
            seed_source: Returns the machine-local shuffle seed
            hosts_file: Static hosts file to check for overrides
            dns_config: CNAME hop limit and query settings
            probe_config: Port and timeout for the reachability probe
            logger: Optional audit logger
        """
        self._dns = dns_client
        self._cache = cache
        self._prober = prober
        self._retry = retry_manager
        self._seed_source = seed_source
        self._hosts_file = hosts_file or StaticHostsFile()
        self._dns_config = dns_config or DNSConfig()
        self._probe_config = probe_config or ProbeConfig()
        self._logger = logger

    def resolve(self, hostname: str, disallow_static_hosts_override: bool = False) -> str:
        """
        Resolve a storage endpoint hostname to an IPv4 address.

        Raises:
            ResolutionError: DNS could not produce an address
            NameNotFoundError: The name does not exist
            ValidationError: DNS produced a malformed address
            StaticHostsOverrideError: The hosts file pins the name and
                                      overrides are disallowed
        """
        return self.resolve_detailed(hostname, disallow_static_hosts_override).address

    def resolve_detailed(
        self,
        hostname: str,
        disallow_static_hosts_override: bool = False,
    ) -> ResolutionResult:
        """Resolve a hostname and report how the address was chosen."""
        hostname = normalize_hostname(hostname)

        cached = self._cache_lookup(hostname)
        if cached is not None:
            candidates = [cached]
            source = ResolutionSource.CACHE
        else:
            candidates, source = self._lookup_candidates(hostname)

        address = self._select_reachable(candidates)

        if not is_valid_ipv4(address):
            self._log("fatal", f"DNS returned bad IPv4 address {address} for hostname {hostname}!")
            raise ValidationError(
                code="invalid_address",
                message=f"Resolved address {address!r} for {hostname} is not valid IPv4",
                details={"hostname": hostname, "address": address, "source": source.value},
            )

        static_match = self._check_static_hosts(hostname, address, disallow_static_hosts_override)

        if source != ResolutionSource.CACHE:
            try:
                self._cache.put(hostname, address)
            except PersistenceError as e:
                self._log("warn", f"Could not update address cache: {e.message}", console=False)

        return ResolutionResult(
            hostname=hostname,
            address=address,
            candidates=candidates,
            source=source,
            static_hosts_match=static_match,
        )

    def _cache_lookup(self, hostname: str) -> Optional[str]:
        try:
            return self._cache.get(hostname)
        except PersistenceError as e:
            self._log("warn", f"Address cache unavailable, querying DNS: {e.message}", console=False)
            return None

    def _lookup_candidates(self, hostname: str) -> tuple[list[str], ResolutionSource]:
        """Run the authoritative walk with retries, falling back to the system resolver."""
        outcome = self._retry.execute_with_retry(
            lambda: self._authoritative_addresses(hostname),
            on_retry=lambda attempt, error: self._log(
                "debug",
                f"Failed to resolve {hostname} using authoritative server "
                f"(attempt {attempt}): {error}",
            ),
        )

        if outcome.success:
            return self._order(outcome.result), ResolutionSource.AUTHORITATIVE

        error = outcome.last_error
        if not isinstance(error, ResolutionError):
            raise error

        self._log(
            "debug",
            f"Authoritative resolution of {hostname} failed ({error.code}), "
            "falling back to system resolver",
        )
        return self._order(self._system_addresses_with_retry(hostname)), ResolutionSource.SYSTEM

    def _authoritative_addresses(self, hostname: str) -> list[str]:
        """
        Walk from the parent zone's name server to the A records.

        CNAMEs restart the walk at the canonical name.

        Raises:
            NameNotFoundError: NXDOMAIN anywhere along the walk
            TransientNetworkError: Query failure or empty answer
            ResolutionError: CNAME chain longer than the hop limit
        """
        name = hostname
        for _hop in range(self._dns_config.max_cname_hops + 1):
            if "." not in name:
                raise NameNotFoundError(
                    code="no_parent_domain",
                    message=f"{name} has no parent domain to ask",
                    details={"hostname": hostname, "name": name},
                )
            parent_domain = name.split(".", 1)[1]

            ns = self._require(self._dns.query_ns(parent_domain), parent_domain, "NS")
            if not ns.records:
                raise TransientNetworkError(
                    code="no_authoritative_server",
                    message=f"No authoritative name server found for {parent_domain}",
                    details={"hostname": hostname, "domain": parent_domain},
                )
            server = ns.records[0]

            answer = self._require(self._dns.query_a(name, server), name, "A", server)
            if answer.records:
                return answer.records

            canonical = answer.canonical_name
            if canonical is None:
                cname = self._require(self._dns.query_cname(name, server), name, "CNAME", server)
                canonical = cname.canonical_name

            if not canonical:
                raise TransientNetworkError(
                    code="empty_answer",
                    message=f"{server} returned no address for {name}",
                    details={"hostname": hostname, "name": name, "server": server},
                )

            self._log("debug", f"{name} is an alias for {canonical}")
            name = canonical

        raise ResolutionError(
            code="cname_chain_too_long",
            message=f"CNAME chain for {hostname} exceeds {self._dns_config.max_cname_hops} hops",
            details={"hostname": hostname},
        )

    def _system_addresses_with_retry(self, hostname: str) -> list[str]:
        outcome = self._retry.execute_with_retry(
            lambda: self._system_addresses(hostname),
            on_retry=lambda attempt, error: self._log(
                "debug",
                f"Failed to resolve {hostname} (attempt {attempt}): {error}",
            ),
        )
        if outcome.success:
            return outcome.result

        error = outcome.last_error
        if isinstance(error, NameNotFoundError):
            raise error
        if isinstance(error, ResolutionError):
            raise ResolutionError(
                code="resolution_failed",
                message=f"Failed to resolve {hostname}: {error.message}",
                details={"hostname": hostname, "attempts": outcome.attempts, "cause": error.code},
            )
        raise error

    def _system_addresses(self, hostname: str) -> list[str]:
        response = self._require(self._dns.system_resolve(hostname), hostname, "A")
        if not response.records:
            raise TransientNetworkError(
                code="empty_answer",
                message=f"System resolver returned 0 addresses for {hostname}",
                details={"hostname": hostname},
            )
        return response.records

    def _require(
        self,
        response: DNSResponse,
        name: str,
        record_type: str,
        server: Optional[str] = None,
    ) -> DNSResponse:
        """Turn NOT_FOUND / ERROR responses into the matching exceptions."""
        details = {"name": name, "record_type": record_type, "server": server}
        if response.status == DNSStatus.NOT_FOUND:
            raise NameNotFoundError(
                code="nxdomain",
                message=f"{name} does not exist (NXDOMAIN)",
                details=details,
            )
        if response.status == DNSStatus.ERROR:
            error = response.error
            details["error"] = error.message if error else None
            raise TransientNetworkError(
                code=error.code if error else "dns_error",
                message=f"DNS query for {record_type} {name} failed",
                details=details,
            )
        return response

    def _order(self, addresses: list[str]) -> list[str]:
        if len(addresses) <= 1:
            return list(addresses)
        return order_candidates(addresses, self._seed_source())

    def _select_reachable(self, candidates: list[str]) -> str:
        """First reachable candidate, or the first candidate if none answer."""
        if len(candidates) == 1:
            return candidates[0]

        for candidate in candidates:
            if not is_valid_ipv4(candidate):
                continue
            if self._prober.is_reachable(
                candidate,
                self._probe_config.port,
                self._probe_config.timeout_seconds,
            ):
                return candidate
            self._log("debug", f"{candidate}:{self._probe_config.port} is not reachable")

        return candidates[0]

    def _check_static_hosts(
        self,
        hostname: str,
        address: str,
        disallow_static_hosts_override: bool,
    ) -> bool:
        if not self._hosts_file.maps(address, hostname):
            return False

        messages = [
            f"{hostname} resolved to {address} from the static hosts file!",
            "Endpoint address changes are detected through DNS; a static entry hides them",
            f"Please remove the entry for {hostname} from the hosts file",
        ]
        if disallow_static_hosts_override:
            for message in messages:
                self._log("error", message)
            raise StaticHostsOverrideError(
                code="static_hosts_override",
                message=messages[0],
                details={"hostname": hostname, "address": address},
            )

        for message in messages:
            self._log("warn", message, console=False)
        return True

    def _log(self, level: str, message: str, console: bool = True) -> None:
        if self._logger is None:
            return
        if level == "warn":
            self._logger.warn(self.COMPONENT, message, console=console)
        else:
            getattr(self._logger, level)(self.COMPONENT, message)
