"""
Mount Controller for the share redirect control plane.

This module provides the orchestration layer that coordinates all
components. It integrates:
- Resolution of the storage endpoint (outside any lock)
- Recording the mapping in the mountmap together with its DNAT rule
- Reconciliation for the watchdog: re-resolve every mapped endpoint,
  migrate entries whose address changed and re-add missing rules
"""

import time
from typing import Callable, Optional

from .address_cache import AddressCache
from .address_validator import is_valid_ipv4, normalize_hostname
from .audit_logger import AuditLogger
from .commands import CommandRunner
from .config import SystemConfig
from .dns_client import DNSClient, DnsPythonClient
from .exceptions import (
    ConcurrencyConflictError,
    PersistenceError,
    RuleMutationError,
    ShareRedirectError,
    ValidationError,
)
from .models import MountmapEntry, ReconcileFailure, ReconcileReport
from .mountmap_store import FileImmutability, MountmapStore
from .nat_rules import IptablesPacketFilter, NatRuleManager, PacketFilter
from .prober import ReachabilityProber
from .resolver import Resolver, StaticHostsFile, load_random_seed
from .retry_manager import RetryManager


class MountController:
    """
    Entry points used by the mount helper and the watchdog.

    Coordinates the resolver, the address cache and the mountmap store so
    that DNS work happens before the mountmap lock is taken and every
    table change goes through the store's lockstep operations.
    """

    COMPONENT = "controller"

    def __init__(
        self,
        resolver: Resolver,
        store: MountmapStore,
        nat_manager: NatRuleManager,
        cache: AddressCache,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the mount controller.

        Args:
            resolver: Endpoint resolver
            store: Mountmap store
            nat_manager: DNAT rule manager (for drift repair)
            cache: Address cache (invalidated before re-resolution)
            logger: Optional audit logger
        """
        self._resolver = resolver
        self._store = store
        self._nat = nat_manager
        self._cache = cache
        self._logger = logger

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        logger: Optional[AuditLogger] = None,
        dns_client: Optional[DNSClient] = None,
        packet_filter: Optional[PacketFilter] = None,
        runner: Optional[CommandRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "MountController":
        """Wire up all components from configuration."""
        runner = runner or CommandRunner(config.commands.timeout_seconds, logger)
        paths = config.paths

        cache = AddressCache(
            paths.cache_file,
            size_limit=config.cache.size_limit,
            ttl_seconds=config.cache.ttl_seconds,
            logger=logger,
        )
        resolver = Resolver(
            dns_client=dns_client or DnsPythonClient(config.dns.query_timeout_seconds, logger=logger),
            cache=cache,
            prober=ReachabilityProber(config.probe.timeout_seconds),
            retry_manager=RetryManager(config.retry, sleep=sleep),
            seed_source=lambda: load_random_seed(paths.random_seed_file),
            hosts_file=StaticHostsFile(paths.hosts_file),
            dns_config=config.dns,
            probe_config=config.probe,
            logger=logger,
        )
        nat_manager = NatRuleManager(
            packet_filter or IptablesPacketFilter(runner, config.nat),
            logger=logger,
        )
        store = MountmapStore(
            paths.mountmap_file,
            nat_manager,
            immutability=FileImmutability(
                paths.mountmap_file,
                runner=runner,
                enabled=config.commands.immutable_mountmap,
                chattr_binary=config.commands.chattr_binary,
                logger=logger,
            ),
            logger=logger,
        )
        return cls(resolver, store, nat_manager, cache, logger)

    @property
    def resolver(self) -> Resolver:
        return self._resolver

    @property
    def store(self) -> MountmapStore:
        return self._store

    def mount(
        self,
        hostname: str,
        local_ip: str,
        disallow_static_hosts_override: bool = False,
    ) -> MountmapEntry:
        """
        Record a redirect from `local_ip` to the endpoint behind `hostname`.

        An existing entry for the same hostname and local IP that points at
        an old address is replaced.

        Returns:
            The mountmap entry now in effect

        Raises:
            ValidationError: `local_ip` is not a valid IPv4 address
            ConcurrencyConflictError: `local_ip` already redirects another host
            ResolutionError: The endpoint could not be resolved
            RuleMutationError / PartialMutationError: The mountmap update failed
        """
        if not is_valid_ipv4(local_ip):
            raise ValidationError(
                code="invalid_local_ip",
                message=f"Local IP {local_ip!r} is not a valid IPv4 address",
                details={"local_ip": local_ip},
            )

        hostname = normalize_hostname(hostname)
        address = self._resolver.resolve(hostname, disallow_static_hosts_override)
        new_entry = MountmapEntry(local_host=hostname, local_ip=local_ip, redirect_ip=address)

        stale = None
        for entry in self._store.entries():
            if entry.local_ip != local_ip:
                continue
            if entry.local_host != hostname:
                raise ConcurrencyConflictError(
                    code="local_ip_in_use",
                    message=f"Local IP {local_ip} already redirects {entry.local_host}",
                    details={"local_ip": local_ip, "existing_entry": entry.to_line()},
                )
            if entry.redirect_ip != address:
                stale = entry

        if stale is not None:
            self._log_info(f"{hostname} moved from {stale.redirect_ip} to {address}")
            try:
                self._store.replace(stale, new_entry)
                return new_entry
            except ConcurrencyConflictError:
                self._log_debug(f"[{stale}] vanished before it could be replaced")

        self._store.ensure_exists(new_entry)
        return new_entry

    def unmount(self, entry: MountmapEntry, expected_mtime: Optional[int] = None) -> int:
        """Remove an entry and its rule; see MountmapStore.ensure_absent."""
        return self._store.ensure_absent(entry, expected_mtime)

    def reconcile(self) -> ReconcileReport:
        """
        Bring every mountmap entry in line with DNS and the packet filter.

        Each entry's hostname is re-resolved from DNS. A changed address
        replaces the entry (and its rule); an unchanged one has its rule
        verified and re-added if missing. Failures are recorded per entry
        and do not stop the pass.

        Returns:
            ReconcileReport summarizing what was checked and repaired
        """
        report = ReconcileReport()

        for entry in self._store.entries():
            report.checked += 1
            try:
                self._reconcile_entry(entry, report)
            except ShareRedirectError as e:
                if self._logger:
                    self._logger.log_error(
                        self.COMPONENT,
                        f"Failed to reconcile [{entry}]",
                        error=e,
                    )
                report.failures.append(ReconcileFailure(entry=entry.to_line(), error=str(e)))

        self._log_debug(
            f"Reconciled {report.checked} entries: {len(report.replaced)} replaced, "
            f"{report.repaired_rules} rules repaired, {len(report.failures)} failures"
        )
        return report

    def _reconcile_entry(self, entry: MountmapEntry, report: ReconcileReport) -> None:
        try:
            self._cache.invalidate(entry.local_host)
        except PersistenceError as e:
            self._log_debug(f"Could not invalidate cache for {entry.local_host}: {e.message}")

        try:
            address = self._resolver.resolve(entry.local_host)
        except ShareRedirectError:
            # Keep traffic flowing to the last known address
            try:
                self._verify_rule(entry, report)
            except RuleMutationError as rule_error:
                if self._logger:
                    self._logger.log_error(
                        self.COMPONENT,
                        f"Failed to keep DNAT rule for [{entry}]",
                        error=rule_error,
                    )
                report.failures.append(ReconcileFailure(entry=entry.to_line(), error=str(rule_error)))
            raise

        if address == entry.redirect_ip:
            self._verify_rule(entry, report)
            return

        new_entry = MountmapEntry(
            local_host=entry.local_host,
            local_ip=entry.local_ip,
            redirect_ip=address,
        )
        self._log_info(f"IP for {entry.local_host} changed [{entry.redirect_ip} -> {address}]")
        try:
            self._store.replace(entry, new_entry)
        except ConcurrencyConflictError:
            self._log_debug(f"[{entry}] changed concurrently, skipping")
            return
        report.replaced.append(f"{entry} -> {new_entry}")

    def _verify_rule(self, entry: MountmapEntry, report: ReconcileReport) -> None:
        rule = entry.nat_rule()
        if self._nat.verify(rule.destination_ip, rule.redirect_ip):
            report.repaired_rules += 1

    def _log_info(self, message: str) -> None:
        if self._logger:
            self._logger.info(self.COMPONENT, message)

    def _log_debug(self, message: str) -> None:
        if self._logger:
            self._logger.debug(self.COMPONENT, message)
