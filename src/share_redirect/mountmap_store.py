"""
Mountmap Store module for active mount redirections.

The mountmap is a line-oriented table of `<hostname> <local_ip>
<redirect_ip>` triples shared by the mount helper and the watchdog. Each
line has a matching DNAT rule, and this module keeps the two in lockstep:

- Every mutation runs under one exclusive lock on the mountmap file,
  including the NAT rule calls, so no other process can observe a line
  without its rule or a rule without its line.
- When the second half of a mutation fails, the first half is undone,
  leaving the system either fully old or fully new.
- The file is rewritten in place, never replaced, because other processes
  hold their locks on the existing inode.
- Outside a mutation the file carries the immutable attribute.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, NoReturn, Optional

from .audit_logger import AuditLogger
from .commands import CommandRunner
from .exceptions import (
    ConcurrencyConflictError,
    FatalInconsistencyError,
    PartialMutationError,
    PersistenceError,
    ResourceUnavailableError,
    RuleMutationError,
)
from .file_lock import ExclusiveFileLock
from .models import MountmapEntry
from .nat_rules import NatRuleManager


class FileImmutability:
    """
    Toggles the immutable attribute of a file with chattr.

    chattr is called with -f; filesystems without attribute support make
    it fail, which is logged and otherwise ignored. A missing chattr is
    treated the same way.
    """

    def __init__(
        self,
        path: Path,
        runner: Optional[CommandRunner] = None,
        enabled: bool = True,
        chattr_binary: str = "chattr",
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._path = path
        self._runner = runner or CommandRunner()
        self._enabled = enabled
        self._chattr = chattr_binary
        self._logger = logger

    def set(self, immutable: bool) -> None:
        if not self._enabled:
            return
        flag = "+i" if immutable else "-i"
        try:
            result = self._runner.run([self._chattr, "-f", flag, str(self._path)])
        except (ResourceUnavailableError, OSError) as e:
            if self._logger:
                self._logger.debug(
                    MountmapStore.COMPONENT,
                    f"chattr {flag} {self._path} could not run: {e}",
                )
            return
        if not result.ok and self._logger:
            self._logger.debug(
                MountmapStore.COMPONENT,
                f"chattr {flag} {self._path} failed",
                {"returncode": result.returncode},
            )

    @contextmanager
    def writable(self) -> Iterator[None]:
        """Clear the immutable attribute for the duration of the block."""
        self.set(False)
        try:
            yield
        finally:
            self.set(True)


class MountmapStore:
    """
    Locked, immutable-at-rest mountmap with DNAT lockstep.

    Mutations: `ensure_exists`, `ensure_absent`, `replace` and `touch`.
    Each takes the mountmap lock for its whole read-modify-write.
    """

    COMPONENT = "mountmap"

    def __init__(
        self,
        file_path: Path,
        nat_manager: NatRuleManager,
        immutability: Optional[FileImmutability] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the mountmap store.

        Args:
            file_path: Path to the mountmap (must already exist)
            nat_manager: Manager for the DNAT rules tied to each line
            immutability: Immutable-attribute toggler for the file
            logger: Optional audit logger
        """
        self._file_path = file_path
        self._nat = nat_manager
        self._immutability = immutability or FileImmutability(file_path, enabled=False)
        self._logger = logger
        self._lock = ExclusiveFileLock(file_path)

    @property
    def file_path(self) -> Path:
        return self._file_path

    # Read-only views

    def entries(self) -> list[MountmapEntry]:
        """Parsed mountmap lines; malformed lines are skipped."""
        with self._lock.acquire():
            lines = self._read_lines()

        entries = []
        for line in lines:
            entry = MountmapEntry.from_line(line)
            if entry is None:
                self._log("warn", f"Ignoring malformed mountmap line: {line!r}", console=False)
                continue
            entries.append(entry)
        return entries

    def contains(self, entry: MountmapEntry) -> bool:
        with self._lock.acquire():
            return entry.to_line() in self._read_lines()

    def mtime(self) -> int:
        """Modification time in whole seconds, as `stat -c %Y` prints it."""
        try:
            return int(os.stat(self._file_path).st_mtime)
        except OSError as e:
            raise PersistenceError(
                code="stat_failed",
                message=f"Failed to stat {self._file_path}: {e}",
                details={"file_path": str(self._file_path)},
            )

    # Mutations

    def touch(self) -> int:
        """
        Refresh the mountmap's modification time.

        The mount helper calls this after deciding to use existing entries;
        the watchdog reads the fresh mtime as a lease and leaves the
        entries alone for a while.

        Returns:
            The new modification time
        """
        with self._lock.acquire():
            try:
                with self._immutability.writable():
                    os.utime(self._file_path, None)
            except OSError as e:
                self._log("error", f"Failed to touch {self._file_path}!")
                raise PersistenceError(
                    code="touch_failed",
                    message=f"Failed to touch {self._file_path}: {e}",
                    details={"file_path": str(self._file_path)},
                )
            return self.mtime()

    def ensure_exists(self, entry: MountmapEntry) -> None:
        """
        Add an entry and its DNAT rule, doing nothing if already present.

        Raises:
            RuleMutationError: The rule could not be added; nothing persisted
            PartialMutationError: The line could not be appended; the rule
                                  was removed again
            FatalInconsistencyError: The append failed and the rule could
                                     not be removed
        """
        line = entry.to_line()

        with self._lock.acquire():
            content = self._read_content()

            if line in content.splitlines():
                # Re-assert the rule for an existing line; nothing to roll back
                self._nat.ensure_rule(entry.local_ip, entry.redirect_ip)
                self._log("info", f"[{line}] already exists in {self._file_path}.")
                return

            self._nat.ensure_rule(entry.local_ip, entry.redirect_ip)

            prefix = "\n" if content and not content.endswith("\n") else ""
            try:
                with self._immutability.writable():
                    with open(self._file_path, "a", encoding="utf-8") as f:
                        f.write(prefix + line + "\n")
            except OSError as e:
                self._log("error", f"[{line}] failed to add to {self._file_path}!")
                rolled_back = self._rollback(
                    line,
                    [lambda: self._nat.ensure_rule_absent(entry.local_ip, entry.redirect_ip)],
                )
                self._raise_after_rollback(
                    rolled_back,
                    code="append_failed",
                    message=f"Failed to add [{line}] to {self._file_path}: {e}",
                    details={"entry": line},
                )

            self._log("debug", f"[{line}] added to {self._file_path}")

    def ensure_absent(self, entry: MountmapEntry, expected_mtime: Optional[int] = None) -> int:
        """
        Remove an entry and its DNAT rule, doing nothing if already absent.

        Args:
            entry: Entry to remove
            expected_mtime: Only remove if the mountmap's mtime still equals
                            this value

        Returns:
            The mountmap's modification time after the removal

        Raises:
            ConcurrencyConflictError: The mtime no longer matches; nothing changed
            RuleMutationError: The rule could not be deleted; nothing changed
            PartialMutationError: The table could not be rewritten; the rule
                                  was restored
            FatalInconsistencyError: The table may be truncated; it needs
                                     out-of-band reconciliation
        """
        line = entry.to_line()

        with self._lock.acquire():
            if expected_mtime is not None:
                current = self.mtime()
                if current != expected_mtime:
                    self._log(
                        "error",
                        f"[{line}] Refusing to remove from {self._file_path} "
                        f"as {current} != {expected_mtime}!",
                    )
                    raise ConcurrencyConflictError(
                        code="mtime_mismatch",
                        message=f"{self._file_path} changed since it was read",
                        details={"entry": line, "expected": expected_mtime, "actual": current},
                    )

            try:
                self._nat.ensure_rule_absent(entry.local_ip, entry.redirect_ip)
            except RuleMutationError:
                self._log(
                    "error",
                    f"[{line}] Refusing to remove from {self._file_path} "
                    "as DNAT rule could not be deleted!",
                )
                raise

            def restore_rule() -> None:
                self._nat.ensure_rule(entry.local_ip, entry.redirect_ip)

            try:
                lines = self._read_lines()
            except PersistenceError as e:
                rolled_back = self._rollback(line, [restore_rule])
                self._raise_after_rollback(rolled_back, e.code, e.message, {"entry": line})

            if line in lines:
                self._rewrite([l for l in lines if l != line], line, [restore_rule])

            return self.mtime()

    def replace(self, old_entry: MountmapEntry, new_entry: MountmapEntry) -> None:
        """
        Swap an entry for a new one when an endpoint's address changed.

        Order: delete old rule, add new rule, rewrite the table. A failed
        step undoes the steps before it.

        Raises:
            ConcurrencyConflictError: `old_entry` is not in the table
            RuleMutationError: A rule step failed; the old state is intact
            PartialMutationError: The table could not be rewritten; the old
                                  rules were restored
            FatalInconsistencyError: Rollback failed or the table may be
                                     truncated
        """
        old_line = old_entry.to_line()
        new_line = new_entry.to_line()
        description = f"{old_line} -> {new_line}"

        self._log("debug", f"Updating mountmap entry [{description}]")

        with self._lock.acquire():
            lines = self._read_lines()
            if old_line not in lines:
                raise ConcurrencyConflictError(
                    code="entry_missing",
                    message=f"[{old_line}] is not in {self._file_path}",
                    details={"old_entry": old_line, "new_entry": new_line},
                )
            if old_entry == new_entry:
                return

            try:
                self._nat.ensure_rule_absent(old_entry.local_ip, old_entry.redirect_ip)
            except RuleMutationError:
                self._log(
                    "error",
                    f"[{old_line}] Refusing to update {self._file_path} "
                    "as old DNAT rule could not be deleted!",
                )
                raise

            def restore_old() -> None:
                self._nat.ensure_rule(old_entry.local_ip, old_entry.redirect_ip)

            def remove_new() -> None:
                self._nat.ensure_rule_absent(new_entry.local_ip, new_entry.redirect_ip)

            try:
                self._nat.ensure_rule(new_entry.local_ip, new_entry.redirect_ip)
            except RuleMutationError as e:
                self._log(
                    "error",
                    f"[{new_line}] Refusing to update {self._file_path} "
                    "as new DNAT rule could not be added!",
                )
                if not self._rollback(description, [restore_old]):
                    raise FatalInconsistencyError(
                        code="rollback_failed",
                        message=f"Could not restore DNAT rule for [{old_line}]",
                        details={"old_entry": old_line, "new_entry": new_line, "cause": e.code},
                    )
                raise

            if new_line in lines:
                new_lines = [l for l in lines if l != old_line]
            else:
                new_lines = [new_line if l == old_line else l for l in lines]

            self._rewrite(new_lines, description, [remove_new, restore_old])

    # Internals

    def _read_content(self) -> str:
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise PersistenceError(
                code="read_failed",
                message=f"Failed to read {self._file_path}: {e}",
                details={"file_path": str(self._file_path)},
            )

    def _read_lines(self) -> list[str]:
        return [line for line in self._read_content().splitlines() if line.strip()]

    def _rewrite(
        self,
        lines: list[str],
        description: str,
        rollback_steps: list[Callable[[], None]],
    ) -> None:
        """
        Rewrite the table in place, rolling back NAT changes on failure.

        Opening the file for update truncates nothing; a failure there
        leaves the table intact. A failure while writing may leave it
        truncated, which only out-of-band reconciliation can repair.
        """
        content = "".join(line + "\n" for line in lines)

        with self._immutability.writable():
            try:
                handle = open(self._file_path, "r+", encoding="utf-8")
            except OSError as e:
                self._log("error", f"[{description}] failed to update {self._file_path}!")
                rolled_back = self._rollback(description, rollback_steps)
                self._raise_after_rollback(
                    rolled_back,
                    code="open_failed",
                    message=f"Failed to open {self._file_path} for update: {e}",
                    details={"entry": description},
                )

            with handle:
                try:
                    handle.seek(0)
                    handle.write(content)
                    handle.truncate()
                    handle.flush()
                except OSError as e:
                    self._log(
                        "fatal",
                        f"*** {self._file_path} may be in inconsistent state, "
                        "reconcile it from mount and DNAT rule state ***",
                    )
                    self._rollback(description, rollback_steps)
                    raise FatalInconsistencyError(
                        code="rewrite_failed",
                        message=f"Failed to rewrite {self._file_path}: {e}",
                        details={"entry": description, "file_path": str(self._file_path)},
                    )

    def _rollback(self, description: str, steps: list[Callable[[], None]]) -> bool:
        """Run compensating steps in order; False if any of them failed."""
        ok = True
        for step in steps:
            try:
                step()
            except RuleMutationError as e:
                self._log("fatal", f"[{description}] rollback failed: {e.message}")
                ok = False
        return ok

    def _raise_after_rollback(
        self,
        rolled_back: bool,
        code: str,
        message: str,
        details: dict,
    ) -> NoReturn:
        if rolled_back:
            raise PartialMutationError(code=code, message=message, details=details)
        raise FatalInconsistencyError(
            code=code,
            message=f"{message} (rollback failed)",
            details=details,
        )

    def _log(self, level: str, message: str, console: bool = True) -> None:
        if self._logger is None:
            return
        if level == "warn":
            self._logger.warn(self.COMPONENT, message, console=console)
        else:
            getattr(self._logger, level)(self.COMPONENT, message)
