"""
Command-line interface for the share redirect control plane.

This module provides the `share-redirect` entry point with commands for:
- resolve: Resolve a storage endpoint (prints only the address)
- mount: Resolve an endpoint and record its redirect
- remove / replace: Mutate mountmap entries together with their DNAT rules
- list / touch: Inspect the mountmap or refresh its lease
- reconcile: Re-resolve every entry and repair drift (watchdog pass)
- init / config: Installation and configuration management

Exit codes follow ExitCode; each error class has its own code so the
calling mount tooling can tell retryable failures from fatal ones.
"""

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .address_validator import is_valid_ipv4, normalize_hostname
from .audit_logger import AuditLogger
from .commands import CommandRunner
from .config import SystemConfig, config_to_dict, load_config
from .controller import MountController
from .enums import ExitCode
from .exceptions import (
    ConcurrencyConflictError,
    FatalInconsistencyError,
    LockAcquisitionError,
    NameNotFoundError,
    PartialMutationError,
    ResolutionError,
    ResourceUnavailableError,
    RuleMutationError,
    ShareRedirectError,
    StaticHostsOverrideError,
    ValidationError,
)
from .models import MountmapEntry
from .mountmap_store import FileImmutability
from .runtime import create_random_seed, ensure_runtime_resources

# Most specific classes first
EXIT_CODES: list[tuple[type, ExitCode]] = [
    (FatalInconsistencyError, ExitCode.FATAL_INCONSISTENCY),
    (PartialMutationError, ExitCode.PARTIAL_MUTATION),
    (NameNotFoundError, ExitCode.NAME_NOT_FOUND),
    (StaticHostsOverrideError, ExitCode.STATIC_HOSTS_OVERRIDE),
    (ResolutionError, ExitCode.RESOLUTION_FAILED),
    (ValidationError, ExitCode.VALIDATION_FAILED),
    (LockAcquisitionError, ExitCode.LOCK_FAILED),
    (RuleMutationError, ExitCode.RULE_MUTATION_FAILED),
    (ConcurrencyConflictError, ExitCode.CONCURRENCY_CONFLICT),
    (ResourceUnavailableError, ExitCode.RESOURCE_UNAVAILABLE),
]


def exit_code_for(error: Exception) -> ExitCode:
    """Map an exception to the process exit code."""
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return ExitCode.FAILURE


def load_cli_config(args: argparse.Namespace) -> SystemConfig:
    """Load configuration and apply command-line overrides."""
    env_file = Path(args.env_file) if getattr(args, "env_file", None) else None
    config = load_config(env_file)
    if getattr(args, "verbose", False):
        config.logging.verbose = True
    return config


def mountmap_immutability(
    config: SystemConfig,
    logger: Optional[AuditLogger] = None,
) -> FileImmutability:
    return FileImmutability(
        config.paths.mountmap_file,
        runner=CommandRunner(config.commands.timeout_seconds, logger),
        enabled=config.commands.immutable_mountmap,
        chattr_binary=config.commands.chattr_binary,
        logger=logger,
    )


def build_controller(config: SystemConfig, logger: AuditLogger) -> MountController:
    """Create the controller used by the mountmap commands."""
    return MountController.from_config(config, logger)


def run_with_controller(
    args: argparse.Namespace,
    action: Callable[[MountController, argparse.Namespace], int],
) -> int:
    """
    Set up runtime resources and a controller, then run `action`.

    Errors from any layer are reported on stderr and turned into the
    matching exit code.
    """
    try:
        config = load_cli_config(args)
        ensure_runtime_resources(config, mountmap_immutability(config))
        logger = AuditLogger(
            log_file=config.paths.log_file,
            output_format=config.logging.output_format,
            verbose=config.logging.verbose,
        )
        controller = build_controller(config, logger)
        return action(controller, args)
    except ShareRedirectError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return int(exit_code_for(e))


def parse_entry(hostname: str, local_ip: str, redirect_ip: str) -> MountmapEntry:
    """Build a mountmap entry from command-line values."""
    for label, value in (("local IP", local_ip), ("redirect IP", redirect_ip)):
        if not is_valid_ipv4(value):
            raise ValidationError(
                code="invalid_address",
                message=f"Invalid {label}: {value!r}",
                details={"address": value},
            )
    return MountmapEntry(
        local_host=normalize_hostname(hostname),
        local_ip=local_ip,
        redirect_ip=redirect_ip,
    )


def _resolve(controller: MountController, args: argparse.Namespace) -> int:
    address = controller.resolver.resolve(args.hostname, args.fail_if_static_hosts)
    print(address)
    return ExitCode.SUCCESS


def _mount(controller: MountController, args: argparse.Namespace) -> int:
    entry = controller.mount(args.hostname, args.local_ip, args.fail_if_static_hosts)
    print(entry.to_line())
    return ExitCode.SUCCESS


def _remove(controller: MountController, args: argparse.Namespace) -> int:
    entry = parse_entry(args.hostname, args.local_ip, args.redirect_ip)
    mtime = controller.unmount(entry, args.if_match)
    print(mtime)
    return ExitCode.SUCCESS


def _replace(controller: MountController, args: argparse.Namespace) -> int:
    old_entry = parse_entry(args.hostname, args.local_ip, args.old_ip)
    new_entry = parse_entry(args.hostname, args.local_ip, args.new_ip)
    controller.store.replace(old_entry, new_entry)
    print(new_entry.to_line())
    return ExitCode.SUCCESS


def _list(controller: MountController, args: argparse.Namespace) -> int:
    entries = controller.store.entries()
    if args.json:
        print(json.dumps([asdict(entry) for entry in entries], indent=2))
    else:
        for entry in entries:
            print(entry.to_line())
    return ExitCode.SUCCESS


def _touch(controller: MountController, args: argparse.Namespace) -> int:
    print(controller.store.touch())
    return ExitCode.SUCCESS


def _reconcile(controller: MountController, args: argparse.Namespace) -> int:
    report = controller.reconcile()

    if args.json:
        print(json.dumps(asdict(report), indent=2))
    else:
        print(f"Checked: {report.checked}")
        print(f"Rules repaired: {report.repaired_rules}")
        for change in report.replaced:
            print(f"Replaced: {change}")
        for failure in report.failures:
            print(f"Failed: {failure.entry} ({failure.error})")

    return ExitCode.FAILURE if report.failures else ExitCode.SUCCESS


def cmd_resolve(args: argparse.Namespace) -> int:
    """Handle 'resolve' command."""
    return run_with_controller(args, _resolve)


def cmd_mount(args: argparse.Namespace) -> int:
    """Handle 'mount' command."""
    return run_with_controller(args, _mount)


def cmd_remove(args: argparse.Namespace) -> int:
    """Handle 'remove' command."""
    return run_with_controller(args, _remove)


def cmd_replace(args: argparse.Namespace) -> int:
    """Handle 'replace' command."""
    return run_with_controller(args, _replace)


def cmd_list(args: argparse.Namespace) -> int:
    """Handle 'list' command."""
    return run_with_controller(args, _list)


def cmd_touch(args: argparse.Namespace) -> int:
    """Handle 'touch' command."""
    return run_with_controller(args, _touch)


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Handle 'reconcile' command."""
    return run_with_controller(args, _reconcile)


def cmd_init(args: argparse.Namespace) -> int:
    """
    Handle 'init' command.

    Creates the data directory, the random seed, the log file and the
    mountmap. Safe to run again; an existing seed is kept unless --force.
    """
    try:
        config = load_cli_config(args)
        paths = config.paths
        try:
            paths.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceUnavailableError(
                code="create_failed",
                message=f"Not able to create '{paths.data_dir}': {e}",
                details={"data_dir": str(paths.data_dir)},
            )

        if create_random_seed(paths.random_seed_file, force=args.force):
            print(f"Random seed written to: {paths.random_seed_file}")
        else:
            print(f"Random seed already present at: {paths.random_seed_file}")

        ensure_runtime_resources(config, mountmap_immutability(config))
        print(f"Mountmap: {paths.mountmap_file}")
        print(f"Log file: {paths.log_file}")
        return ExitCode.SUCCESS
    except ShareRedirectError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return int(exit_code_for(e))


def cmd_config(args: argparse.Namespace) -> int:
    """Handle 'config' command."""
    config = load_cli_config(args)

    if args.action == "show":
        print(json.dumps(config_to_dict(config), indent=2))
        return ExitCode.SUCCESS

    return ExitCode.FAILURE


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--env-file", "-e",
        help="Path to a .env file with SHARE_REDIRECT_* settings",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Echo debug events to stderr",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="share-redirect",
        description="Keep NFS mounts pointed at storage endpoints whose address can change",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'resolve' command
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Resolve a storage endpoint to one IPv4 address",
    )
    resolve_parser.add_argument("hostname", help="Storage endpoint hostname")
    resolve_parser.add_argument(
        "--fail-if-static-hosts",
        action="store_true",
        help="Fail if /etc/hosts maps the hostname to the resolved address",
    )
    _add_common_arguments(resolve_parser)
    resolve_parser.set_defaults(func=cmd_resolve)

    # 'mount' command
    mount_parser = subparsers.add_parser(
        "mount",
        aliases=["add"],
        help="Resolve an endpoint and redirect a local IP to it",
    )
    mount_parser.add_argument("hostname", help="Storage endpoint hostname")
    mount_parser.add_argument("local_ip", help="Local proxy IP used by the mount")
    mount_parser.add_argument(
        "--fail-if-static-hosts",
        action="store_true",
        help="Fail if /etc/hosts maps the hostname to the resolved address",
    )
    _add_common_arguments(mount_parser)
    mount_parser.set_defaults(func=cmd_mount)

    # 'remove' command
    remove_parser = subparsers.add_parser(
        "remove",
        help="Remove a mountmap entry and its DNAT rule",
    )
    remove_parser.add_argument("hostname", help="Storage endpoint hostname")
    remove_parser.add_argument("local_ip", help="Local proxy IP")
    remove_parser.add_argument("redirect_ip", help="Redirect (endpoint) IP")
    remove_parser.add_argument(
        "--if-match",
        type=int,
        metavar="MTIME",
        help="Only remove if the mountmap's modification time equals MTIME",
    )
    _add_common_arguments(remove_parser)
    remove_parser.set_defaults(func=cmd_remove)

    # 'replace' command
    replace_parser = subparsers.add_parser(
        "replace",
        help="Point an existing entry at a new endpoint address",
    )
    replace_parser.add_argument("hostname", help="Storage endpoint hostname")
    replace_parser.add_argument("local_ip", help="Local proxy IP")
    replace_parser.add_argument("old_ip", help="Current redirect IP")
    replace_parser.add_argument("new_ip", help="New redirect IP")
    _add_common_arguments(replace_parser)
    replace_parser.set_defaults(func=cmd_replace)

    # 'list' command
    list_parser = subparsers.add_parser("list", help="Show mountmap entries")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    _add_common_arguments(list_parser)
    list_parser.set_defaults(func=cmd_list)

    # 'touch' command
    touch_parser = subparsers.add_parser(
        "touch",
        help="Refresh the mountmap modification time",
    )
    _add_common_arguments(touch_parser)
    touch_parser.set_defaults(func=cmd_touch)

    # 'reconcile' command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        aliases=["verify"],
        help="Re-resolve every entry and repair drifted addresses and rules",
    )
    reconcile_parser.add_argument("--json", action="store_true", help="Output as JSON")
    _add_common_arguments(reconcile_parser)
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # 'init' command
    init_parser = subparsers.add_parser(
        "init",
        help="Create the data directory, random seed and mountmap",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite an existing random seed",
    )
    _add_common_arguments(init_parser)
    init_parser.set_defaults(func=cmd_init)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show"],
        help="Configuration action",
    )
    _add_common_arguments(config_parser)
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
