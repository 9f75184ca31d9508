"""
Audit Logger module for the share redirect control plane.

Every event is appended to a durable log file shared by all processes
(under an exclusive lock) and, depending on severity and the verbosity
flag, echoed to an interactive stream. The interactive stream defaults to
stderr so that stdout stays reserved for command results.
"""

import json
import os
import socket
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from share_redirect.enums import LogLevel
from share_redirect.file_lock import locked_append


@dataclass
class LogEntry:
    """Represents a single log entry with all metadata."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)


class AuditLogger:
    """
    Durable logger with a verbosity-gated interactive channel.

    Supports:
    - Text or JSON lines in the log file
    - Debug entries echoed only when verbose mode is on
    - File-only entries for warnings that must not reach the console
    """

    def __init__(
        self,
        log_file: Optional[Path] = None,
        output_format: str = "text",
        verbose: bool = False,
        output_stream: Optional[TextIO] = None,
    ):
        """
        Initialize the audit logger.

        Args:
            log_file: Durable log file; None disables file output
            output_format: File line format - 'json' or 'text'
            verbose: Echo debug entries to the interactive stream
            output_stream: Interactive stream (defaults to sys.stderr)
        """
        if output_format not in ("json", "text"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._log_file = log_file
        self._output_format = output_format
        self._verbose = verbose
        self._output_stream = output_stream or sys.stderr
        self._hostname = socket.gethostname()
        self._entries: list[LogEntry] = []  # Store entries for testing

    @property
    def verbose(self) -> bool:
        return self._verbose

    @property
    def entries(self) -> list[LogEntry]:
        """Get all logged entries (for testing)."""
        return self._entries.copy()

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
        console: bool = True,
    ) -> LogEntry:
        """
        Log an entry to the durable log and, if allowed, the interactive stream.

        Args:
            level: Log severity level
            component: Component name generating the log
            message: Human-readable log message
            data: Optional additional data to include
            console: False keeps the entry out of the interactive stream

        Returns:
            The created LogEntry object
        """
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=dict(data or {}),
        )
        self._entries.append(entry)

        self._write_file(entry)

        if console and (level != LogLevel.DEBUG or self._verbose):
            self._output_stream.write(self._format_console(entry) + "\n")
            self._output_stream.flush()

        return entry

    def debug(self, component: str, message: str, data: Optional[dict] = None) -> LogEntry:
        return self.log(LogLevel.DEBUG, component, message, data)

    def info(self, component: str, message: str, data: Optional[dict] = None) -> LogEntry:
        return self.log(LogLevel.INFO, component, message, data)

    def warn(
        self,
        component: str,
        message: str,
        data: Optional[dict] = None,
        console: bool = True,
    ) -> LogEntry:
        return self.log(LogLevel.WARN, component, message, data, console=console)

    def error(self, component: str, message: str, data: Optional[dict] = None) -> LogEntry:
        return self.log(LogLevel.ERROR, component, message, data)

    def fatal(self, component: str, message: str, data: Optional[dict] = None) -> LogEntry:
        return self.log(LogLevel.FATAL, component, message, data)

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        additional_data: Optional[dict] = None,
    ) -> LogEntry:
        """
        Log an error with its exception context.

        Args:
            component: Component name generating the log
            message: Human-readable error message
            error: Optional exception object
            additional_data: Optional additional context data

        Returns:
            The created LogEntry object
        """
        data = additional_data.copy() if additional_data else {}

        if error is not None:
            data["error_message"] = str(error)
            data["error_type"] = type(error).__name__
            code = getattr(error, "code", None)
            if code is not None:
                data["error_code"] = code

        return self.log(LogLevel.ERROR, component, message, data)

    def _write_file(self, entry: LogEntry) -> None:
        if self._log_file is None:
            return

        if self._output_format == "json":
            line = self._format_json(entry)
        else:
            line = self._format_text(entry)

        try:
            with locked_append(self._log_file) as handle:
                handle.write(line + "\n")
        except OSError as e:
            self._output_stream.write(f"Failed to write {self._log_file}: {e}\n")

    def _format_json(self, entry: LogEntry) -> str:
        obj = {
            "timestamp": entry.timestamp,
            "host": self._hostname,
            "pid": os.getpid(),
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        return json.dumps(obj, ensure_ascii=False)

    def _format_text(self, entry: LogEntry) -> str:
        # Format: TIMESTAMP HOST PID: LEVEL [COMPONENT] MESSAGE {data}
        parts = [
            entry.timestamp,
            f"{self._hostname} {os.getpid()}:",
            entry.level.value.upper(),
            f"[{entry.component}]",
            entry.message,
        ]
        if entry.data:
            parts.append(json.dumps(entry.data, ensure_ascii=False))
        return " ".join(parts)

    def _format_console(self, entry: LogEntry) -> str:
        if entry.level == LogLevel.FATAL:
            return f"[FATAL] {entry.message}"
        if entry.level in (LogLevel.ERROR, LogLevel.WARN):
            return f"{entry.level.value.upper()}: {entry.message}"
        return entry.message

    def get_text_output(self, entry: LogEntry) -> str:
        """Get file text output for an entry (for testing)."""
        return self._format_text(entry)

    def get_json_output(self, entry: LogEntry) -> str:
        """Get file JSON output for an entry (for testing)."""
        return self._format_json(entry)

    def clear_entries(self) -> None:
        """Clear all stored log entries (for testing)."""
        self._entries.clear()
