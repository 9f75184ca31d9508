"""
Property-based tests for the Mount Controller module.

Uses Hypothesis for property-based testing of mount, unmount and the
reconciliation pass the watchdog runs.
"""

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from share_redirect.config import CommandConfig, PathsConfig, RetryConfig, SystemConfig
from share_redirect.controller import MountController
from share_redirect.exceptions import ConcurrencyConflictError, ValidationError
from share_redirect.models import MountmapEntry
from share_redirect.nat_rules import NatRuleManager

from fakes import (
    FakeDNSClient,
    FakePacketFilter,
    FakeRunner,
    dns_error,
    found,
    make_resolver,
    make_store,
    not_found,
)


HOST = "account.file.core.example.net"
OTHER_HOST = "other.file.core.example.net"
LOCAL_IP = "10.161.100.100"


def make_controller(directory: Path, dns: FakeDNSClient, content: str = ""):
    packet_filter = FakePacketFilter()
    resolver, cache, _, _ = make_resolver(directory, dns, max_retries=0)
    store = make_store(directory, packet_filter, content=content)
    controller = MountController(resolver, store, NatRuleManager(packet_filter), cache)
    return controller, packet_filter, cache


# Strategies for generating test data

address_strategy = st.builds(
    lambda a, b, c: f"20.{a}.{b}.{c}",
    st.integers(0, 255), st.integers(0, 255), st.integers(1, 254),
)


class TestMountProperty:
    """Property 1: mount resolves, then records the entry with its rule."""

    @given(address=address_strategy)
    @settings(max_examples=50, deadline=None)
    def test_mount_records_entry_and_rule(self, address: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found(address)})
            controller, packet_filter, _ = make_controller(Path(tmpdir), dns)

            entry = controller.mount(HOST.upper(), LOCAL_IP)

            assert entry == MountmapEntry(HOST, LOCAL_IP, address)
            assert controller.store.entries() == [entry]
            assert packet_filter.pairs() == {(LOCAL_IP, address)}

    def test_remount_after_address_change_replaces_entry(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found("20.60.1.1")})
            controller, packet_filter, cache = make_controller(Path(tmpdir), dns)
            controller.mount(HOST, LOCAL_IP)

            cache.invalidate(HOST)
            dns.a[HOST] = found("20.60.2.2")
            controller.mount(HOST, LOCAL_IP)

            assert controller.store.entries() == [MountmapEntry(HOST, LOCAL_IP, "20.60.2.2")]
            assert packet_filter.pairs() == {(LOCAL_IP, "20.60.2.2")}

    def test_local_ip_owned_by_other_host_conflicts(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found("20.60.1.1"), OTHER_HOST: found("20.60.9.9")})
            controller, packet_filter, _ = make_controller(Path(tmpdir), dns)
            controller.mount(OTHER_HOST, LOCAL_IP)

            with pytest.raises(ConcurrencyConflictError):
                controller.mount(HOST, LOCAL_IP)
            assert packet_filter.pairs() == {(LOCAL_IP, "20.60.9.9")}

    @pytest.mark.parametrize("local_ip", ["10.0.0.256", "", "localhost"])
    def test_invalid_local_ip_rejected_before_dns(self, local_ip: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found("20.60.1.1")})
            controller, _, _ = make_controller(Path(tmpdir), dns)

            with pytest.raises(ValidationError):
                controller.mount(HOST, local_ip)
            assert dns.calls == []

    def test_unmount(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found("20.60.1.1")})
            controller, packet_filter, _ = make_controller(Path(tmpdir), dns)
            entry = controller.mount(HOST, LOCAL_IP)

            controller.unmount(entry, controller.store.mtime())

            assert controller.store.entries() == []
            assert packet_filter.rules == set()


class TestReconcileProperty:
    """Property 2: reconciliation migrates changed addresses and repairs rules."""

    def test_missing_rule_repaired(self) -> None:
        entry = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found("20.60.1.1")})
            controller, packet_filter, _ = make_controller(
                Path(tmpdir), dns, content=entry.to_line() + "\n",
            )

            report = controller.reconcile()

            assert report.checked == 1
            assert report.repaired_rules == 1
            assert report.replaced == []
            assert packet_filter.pairs() == {(LOCAL_IP, "20.60.1.1")}

    def test_changed_address_migrated(self) -> None:
        old = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: found("20.60.2.2")})
            controller, packet_filter, cache = make_controller(
                Path(tmpdir), dns, content=old.to_line() + "\n",
            )
            cache.put(HOST, "20.60.1.1")
            packet_filter.rules.add(("tcp", LOCAL_IP, "20.60.1.1"))

            report = controller.reconcile()

            assert len(report.replaced) == 1
            assert report.failures == []
            assert controller.store.entries() == [MountmapEntry(HOST, LOCAL_IP, "20.60.2.2")]
            assert packet_filter.pairs() == {(LOCAL_IP, "20.60.2.2")}
            assert cache.get(HOST) == "20.60.2.2"

    def test_failure_recorded_and_pass_continues(self) -> None:
        broken = MountmapEntry(OTHER_HOST, "10.161.100.101", "20.60.9.9")
        healthy = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(
                a={OTHER_HOST: dns_error(), HOST: found("20.60.1.1")},
                system={OTHER_HOST: dns_error()},
            )
            controller, packet_filter, _ = make_controller(
                Path(tmpdir), dns, content=f"{broken}\n{healthy}\n",
            )

            report = controller.reconcile()

            assert report.checked == 2
            assert [failure.entry for failure in report.failures] == [broken.to_line()]
            assert packet_filter.pairs() == {
                ("10.161.100.101", "20.60.9.9"),
                (LOCAL_IP, "20.60.1.1"),
            }
            assert controller.store.entries() == [broken, healthy]

    def test_name_gone_keeps_existing_entry(self) -> None:
        entry = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: not_found()})
            controller, _, _ = make_controller(Path(tmpdir), dns, content=entry.to_line() + "\n")

            report = controller.reconcile()

            assert len(report.failures) == 1
            assert controller.store.entries() == [entry]

    def test_rule_repair_failure_reported_with_resolution_failure(self) -> None:
        entry = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with tempfile.TemporaryDirectory() as tmpdir:
            dns = FakeDNSClient(a={HOST: not_found()})
            controller, packet_filter, _ = make_controller(Path(tmpdir), dns, content=entry.to_line() + "\n")
            packet_filter.fail_add.add((LOCAL_IP, "20.60.1.1"))

            report = controller.reconcile()

            assert report.checked == 1
            assert report.repaired_rules == 0
            assert [failure.entry for failure in report.failures] == [entry.to_line()] * 2
            assert "DNAT rule" in report.failures[0].error
            assert "DNAT rule" not in report.failures[1].error
            assert controller.store.entries() == [entry]


class TestFromConfigProperty:
    """Property 3: the factory wires every component from configuration."""

    def test_from_config_mounts_with_injected_collaborators(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir)
            paths = PathsConfig.under(base)
            paths.data_dir.mkdir()
            paths.mountmap_file.touch()
            paths.random_seed_file.write_bytes(b"seed")
            paths.hosts_file = base / "hosts"
            config = SystemConfig(
                paths=paths,
                retry=RetryConfig(max_retries=0),
                commands=CommandConfig(immutable_mountmap=False),
            )
            packet_filter = FakePacketFilter()

            controller = MountController.from_config(
                config,
                dns_client=FakeDNSClient(a={HOST: found("20.60.1.1")}),
                packet_filter=packet_filter,
                runner=FakeRunner(),
                sleep=lambda seconds: None,
            )
            entry = controller.mount(HOST, LOCAL_IP)

            assert entry.redirect_ip == "20.60.1.1"
            assert paths.mountmap_file.read_text() == entry.to_line() + "\n"
            assert paths.cache_file.read_text().startswith(f"{HOST}:")
