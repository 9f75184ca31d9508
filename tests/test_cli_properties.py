"""
Property-based tests for the command-line interface.

The controller is replaced with one built from in-memory collaborators so
no DNS query or packet-filter change leaves the test process.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from share_redirect.cli import create_parser, exit_code_for, main
from share_redirect.config import ENV_PREFIX
from share_redirect.controller import MountController
from share_redirect.enums import ExitCode
from share_redirect.exceptions import (
    ConcurrencyConflictError,
    FatalInconsistencyError,
    LockAcquisitionError,
    NameNotFoundError,
    PartialMutationError,
    ResolutionError,
    ResourceUnavailableError,
    RuleMutationError,
    StaticHostsOverrideError,
    ValidationError,
)
from share_redirect.models import MountmapEntry
from share_redirect.nat_rules import NatRuleManager

from fakes import FakeDNSClient, FakePacketFilter, found, make_resolver, make_store, not_found


HOST = "account.file.core.example.net"
LOCAL_IP = "10.161.100.100"


@contextmanager
def cli_environment(dns: FakeDNSClient, content: str = ""):
    """Point the CLI at a temporary install and a fake-backed controller."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "data").mkdir()
        packet_filter = FakePacketFilter()
        resolver, cache, _, _ = make_resolver(base, dns, max_retries=0)
        store = make_store(base, packet_filter, content=content)
        controller = MountController(resolver, store, NatRuleManager(packet_filter), cache)

        variables = {k: v for k, v in os.environ.items() if not k.startswith(ENV_PREFIX)}
        variables[ENV_PREFIX + "BASE_DIR"] = str(base)
        variables[ENV_PREFIX + "MOUNTMAP_FILE"] = str(store.file_path)
        variables[ENV_PREFIX + "IMMUTABLE_MOUNTMAP"] = "0"

        with patch.dict(os.environ, variables, clear=True), \
                patch("share_redirect.cli.build_controller", return_value=controller):
            yield controller, packet_filter


class TestExitCodeProperty:
    """Property 1: each error class maps to its own exit code."""

    @pytest.mark.parametrize("error,code", [
        (FatalInconsistencyError("rollback_failed", "x"), ExitCode.FATAL_INCONSISTENCY),
        (PartialMutationError("append_failed", "x"), ExitCode.PARTIAL_MUTATION),
        (NameNotFoundError("nxdomain", "x"), ExitCode.NAME_NOT_FOUND),
        (StaticHostsOverrideError("static_hosts", "x"), ExitCode.STATIC_HOSTS_OVERRIDE),
        (ResolutionError("resolution_failed", "x"), ExitCode.RESOLUTION_FAILED),
        (ValidationError("invalid_address", "x"), ExitCode.VALIDATION_FAILED),
        (LockAcquisitionError("open_failed", "x"), ExitCode.LOCK_FAILED),
        (RuleMutationError("add_failed", "x"), ExitCode.RULE_MUTATION_FAILED),
        (ConcurrencyConflictError("mtime_mismatch", "x"), ExitCode.CONCURRENCY_CONFLICT),
        (ResourceUnavailableError("missing_binary", "x"), ExitCode.RESOURCE_UNAVAILABLE),
        (RuntimeError("x"), ExitCode.FAILURE),
    ])
    def test_exit_code_mapping(self, error: Exception, code: ExitCode) -> None:
        assert exit_code_for(error) == code

    @given(command=st.sampled_from(["mount", "add", "reconcile", "verify", "list", "touch"]))
    @settings(max_examples=10)
    def test_parser_accepts_commands_and_aliases(self, command: str) -> None:
        argv = [command, HOST, LOCAL_IP] if command in ("mount", "add") else [command]
        args = create_parser().parse_args(argv)
        assert callable(args.func)


class TestResolveCommandProperty:
    """Property 2: resolve prints only the chosen address."""

    def test_resolve_prints_address(self, capsys) -> None:
        with cli_environment(FakeDNSClient(a={HOST: found("20.60.1.1")})):
            code = main(["resolve", HOST])

        assert code == ExitCode.SUCCESS
        assert capsys.readouterr().out == "20.60.1.1\n"

    def test_resolution_failure_exit_code(self, capsys) -> None:
        dns = FakeDNSClient(a={HOST: not_found()}, system={HOST: not_found()})
        with cli_environment(dns):
            code = main(["resolve", HOST])

        captured = capsys.readouterr()
        assert code in (ExitCode.NAME_NOT_FOUND, ExitCode.RESOLUTION_FAILED)
        assert captured.out == ""
        assert captured.err.startswith("Error: ")


class TestMountmapCommandProperty:
    """Property 3: mountmap commands mutate entries and rules together."""

    def test_mount_then_list_json(self, capsys) -> None:
        with cli_environment(FakeDNSClient(a={HOST: found("20.60.1.1")})) as (_, packet_filter):
            assert main(["mount", HOST, LOCAL_IP]) == ExitCode.SUCCESS
            capsys.readouterr()
            assert main(["list", "--json"]) == ExitCode.SUCCESS

        listed = json.loads(capsys.readouterr().out)
        assert listed == [{"local_host": HOST, "local_ip": LOCAL_IP, "redirect_ip": "20.60.1.1"}]
        assert packet_filter.pairs() == {(LOCAL_IP, "20.60.1.1")}

    def test_remove_with_stale_mtime_conflicts(self) -> None:
        entry = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with cli_environment(FakeDNSClient(), content=entry.to_line() + "\n") as (controller, _):
            stale = controller.store.mtime() - 10
            code = main(["remove", HOST, LOCAL_IP, "20.60.1.1", "--if-match", str(stale)])

            assert code == ExitCode.CONCURRENCY_CONFLICT
            assert controller.store.entries() == [entry]

    def test_remove_rejects_invalid_address(self) -> None:
        with cli_environment(FakeDNSClient()):
            assert main(["remove", HOST, LOCAL_IP, "not-an-ip"]) == ExitCode.VALIDATION_FAILED

    def test_replace_rejects_address_with_line_break(self) -> None:
        entry = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        with cli_environment(FakeDNSClient(), content=entry.to_line() + "\n") as (controller, _):
            code = main(["replace", HOST, LOCAL_IP, "20.60.1.1", "20.60.2.2\n10.0.0.9"])

            assert code == ExitCode.VALIDATION_FAILED
            assert controller.store.entries() == [entry]

    def test_reconcile_reports_failures(self, capsys) -> None:
        entry = MountmapEntry(HOST, LOCAL_IP, "20.60.1.1")
        dns = FakeDNSClient(a={HOST: not_found()})
        with cli_environment(dns, content=entry.to_line() + "\n"):
            code = main(["reconcile", "--json"])

        report = json.loads(capsys.readouterr().out)
        assert code == ExitCode.FAILURE
        assert report["checked"] == 1
        assert report["failures"][0]["entry"] == entry.to_line()


class TestInstallCommandProperty:
    """Property 4: init and config work without a controller."""

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "share-redirect" in capsys.readouterr().out

    def test_init_creates_runtime_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir) / "install"
            variables = {k: v for k, v in os.environ.items() if not k.startswith(ENV_PREFIX)}
            variables[ENV_PREFIX + "BASE_DIR"] = str(base)
            variables[ENV_PREFIX + "IMMUTABLE_MOUNTMAP"] = "false"

            with patch.dict(os.environ, variables, clear=True):
                assert main(["init"]) == ExitCode.SUCCESS
                seed = (base / "data" / "randbytes").read_bytes()
                assert main(["init"]) == ExitCode.SUCCESS

            assert (base / "data" / "mountmap").exists()
            assert (base / "data" / "randbytes").read_bytes() == seed

    def test_config_show(self, capsys) -> None:
        variables = {k: v for k, v in os.environ.items() if not k.startswith(ENV_PREFIX)}
        variables[ENV_PREFIX + "CACHE_SIZE_LIMIT"] = "5"
        with patch.dict(os.environ, variables, clear=True):
            assert main(["config", "show"]) == ExitCode.SUCCESS

        shown = json.loads(capsys.readouterr().out)
        assert shown["cache"]["size_limit"] == 5
