"""
NAT Rule Manager for the share redirect control plane.

Traffic to a mount's local proxy address is redirected to the storage
endpoint by a destination-NAT rule in the kernel packet filter. This
module provides the packet-filter collaborator (iptables + conntrack by
default) and the idempotent rule operations the mountmap store calls in
lockstep with its own mutations.
"""

from typing import NoReturn, Optional, Protocol, runtime_checkable

from .audit_logger import AuditLogger
from .commands import CommandRunner
from .config import NATConfig
from .exceptions import ResourceUnavailableError, RuleMutationError
from .models import NatRule


@runtime_checkable
class PacketFilter(Protocol):
    """Narrow packet-filter interface used by NatRuleManager."""

    def rule_exists(self, protocol: str, destination: str, redirect: str) -> bool:
        ...

    def add_rule(self, protocol: str, destination: str, redirect: str) -> bool:
        ...

    def delete_rule(self, protocol: str, destination: str, redirect: str) -> bool:
        ...

    def flush_conntrack(self, protocol: str, destination: str, redirect: str) -> bool:
        ...


class IptablesPacketFilter:
    """PacketFilter backed by the iptables and conntrack tools."""

    def __init__(
        self,
        runner: CommandRunner,
        config: Optional[NATConfig] = None,
    ) -> None:
        self._runner = runner
        self._config = config or NATConfig()

    def _rule_args(self, action: str, protocol: str, destination: str, redirect: str) -> list[str]:
        return [
            self._config.iptables_binary,
            "-w", str(self._config.xtables_wait_seconds),
            "-t", self._config.table,
            action, self._config.chain,
            "-p", protocol,
            "-d", destination,
            "-j", "DNAT",
            "--to-destination", redirect,
        ]

    def rule_exists(self, protocol: str, destination: str, redirect: str) -> bool:
        return self._runner.run(self._rule_args("-C", protocol, destination, redirect)).ok

    def add_rule(self, protocol: str, destination: str, redirect: str) -> bool:
        return self._runner.run(self._rule_args("-I", protocol, destination, redirect)).ok

    def delete_rule(self, protocol: str, destination: str, redirect: str) -> bool:
        return self._runner.run(self._rule_args("-D", protocol, destination, redirect)).ok

    def flush_conntrack(self, protocol: str, destination: str, redirect: str) -> bool:
        """Best-effort; a missing conntrack tool counts as nothing flushed."""
        try:
            result = self._runner.run([
                self._config.conntrack_binary,
                "-D", "conntrack",
                "-p", protocol,
                "-d", destination,
                "-r", redirect,
            ])
        except ResourceUnavailableError:
            return False
        return result.ok


class NatRuleManager:
    """
    Idempotent DNAT rule operations.

    All operations are check-then-act against the live packet-filter
    state; there is no separate record of which rules exist.
    """

    COMPONENT = "nat_rules"
    PROTOCOL = "tcp"

    def __init__(
        self,
        packet_filter: PacketFilter,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            packet_filter: Packet-filter collaborator
            logger: Optional audit logger
        """
        self._filter = packet_filter
        self._logger = logger

    def rule_for(self, destination_ip: str, redirect_ip: str) -> NatRule:
        return NatRule(destination_ip=destination_ip, redirect_ip=redirect_ip, protocol=self.PROTOCOL)

    def rule_exists(self, destination_ip: str, redirect_ip: str) -> bool:
        return self._exists(self.rule_for(destination_ip, redirect_ip))

    def ensure_rule(self, destination_ip: str, redirect_ip: str) -> None:
        """
        Make sure traffic to `destination_ip` is redirected to `redirect_ip`.

        Raises:
            RuleMutationError: If the rule is missing and cannot be added
        """
        rule = self.rule_for(destination_ip, redirect_ip)
        if self._exists(rule):
            return
        self._add(rule)

    def ensure_rule_absent(self, destination_ip: str, redirect_ip: str) -> None:
        """
        Make sure no redirect rule exists for this pair.

        After deleting a rule, matching conntrack entries are flushed so
        established flows stop using the old translation. A missing
        conntrack entry (already timed out) is not an error.

        Raises:
            RuleMutationError: If the rule exists and cannot be deleted
        """
        rule = self.rule_for(destination_ip, redirect_ip)
        if not self._exists(rule):
            return

        if not self._filter.delete_rule(rule.protocol, rule.destination_ip, rule.redirect_ip):
            self._fail("delete_failed", f"Failed to delete DNAT rule [{rule}]!", rule)

        if not self._filter.flush_conntrack(rule.protocol, rule.destination_ip, rule.redirect_ip):
            if self._logger:
                self._logger.debug(self.COMPONENT, f"No conntrack entries flushed for [{rule}]")

    def verify(self, destination_ip: str, redirect_ip: str) -> bool:
        """
        Re-add a rule that should exist but has gone missing.

        Only ever adds, so it is safe to call without the mountmap lock.

        Returns:
            True if the rule was missing and has been re-added

        Raises:
            RuleMutationError: If the missing rule cannot be re-added
        """
        rule = self.rule_for(destination_ip, redirect_ip)
        if self._exists(rule):
            return False

        if self._logger:
            self._logger.warn(self.COMPONENT, f"DNAT rule [{rule}] does not exist, adding it.")
        self._add(rule)
        return True

    def _exists(self, rule: NatRule) -> bool:
        return self._filter.rule_exists(rule.protocol, rule.destination_ip, rule.redirect_ip)

    def _add(self, rule: NatRule) -> None:
        if not self._filter.add_rule(rule.protocol, rule.destination_ip, rule.redirect_ip):
            self._fail("add_failed", f"Failed to add DNAT rule [{rule}]!", rule)

    def _fail(self, code: str, message: str, rule: NatRule) -> NoReturn:
        if self._logger:
            self._logger.error(self.COMPONENT, message)
        raise RuleMutationError(
            code=code,
            message=message,
            details={"destination_ip": rule.destination_ip, "redirect_ip": rule.redirect_ip},
        )
