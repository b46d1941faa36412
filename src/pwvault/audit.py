#!/usr/bin/env python3
"""Audit log - Append-only record of vault operations.

One line per operation, rotated daily and pruned after a retention period.
Lines carry entry ids and outcome codes only, never secret values.
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from .storage import FILE_MODE, ensure_private_directory

# Results
RESULT_OK = "OK"


class AuditLogger:
    """Append-only operation log with daily rotation and retention."""

    def __init__(self, log_path: Path, retention_days: int = 30, command: str = "pwvault"):
        """Initialize the audit log.

        Args:
            log_path: Path to the log file (e.g., ~/.pwvault/audit.log)
            retention_days: Number of days to keep rotated logs
            command: Program name written into every line

        """
        self.log_path = Path(log_path)
        self.retention_days = retention_days
        self.command = command
        self._rotation_checked = False

        ensure_private_directory(self.log_path.parent)

        if not self.log_path.exists():
            fd = os.open(str(self.log_path), os.O_CREAT | os.O_APPEND | os.O_WRONLY, FILE_MODE)
            os.close(fd)

    @property
    def _rotated_prefix(self) -> str:
        return self.log_path.name + "."

    def log_event(
        self,
        action: str,
        result: str,
        target: str,
        reason: Optional[str] = None,
    ) -> None:
        """Append one operation record.

        Format: ISO8601Z [PID/command] RESULT ACTION target [reason]

        Args:
            action: INIT | OPEN | LIST | SHOW | ADD | EDIT | DELETE | SEARCH | ...
            result: OK, or the error code of the failure
            target: Entry id or vault path
            reason: Optional detail for failures

        """
        self._check_rotation()

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        parts = [timestamp, f"[{os.getpid()}/{self.command}]", result, action, target]
        if reason:
            parts.append(reason.replace("\n", " "))
        line = " ".join(parts) + "\n"

        fd = os.open(str(self.log_path), os.O_CREAT | os.O_APPEND | os.O_WRONLY, FILE_MODE)
        try:
            os.write(fd, line.encode("utf-8"))
        finally:
            os.close(fd)

    def _check_rotation(self) -> None:
        """Rotate once per logger if the log was last written before today (UTC)."""
        if self._rotation_checked:
            return
        self._rotation_checked = True

        try:
            mtime = datetime.fromtimestamp(self.log_path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return

        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        if mtime < today:
            self._rotate(mtime)
            self._cleanup_old_logs()

    def _rotate(self, written: Optional[datetime] = None) -> None:
        """Move the current log aside, named after the day it was written."""
        if not self.log_path.exists():
            return

        day = written or (datetime.now(timezone.utc) - timedelta(days=1))
        rotated_path = self.log_path.with_name(self._rotated_prefix + day.strftime("%Y%m%d"))
        if rotated_path.exists():
            return
        try:
            self.log_path.rename(rotated_path)
        except OSError:
            return

    def _cleanup_old_logs(self) -> None:
        """Remove rotated logs older than the retention period."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)

        for log_file in self._rotated_files():
            try:
                stamp = log_file.name[len(self._rotated_prefix):]
                day = datetime.strptime(stamp, "%Y%m%d").replace(tzinfo=timezone.utc)
                if day < cutoff:
                    log_file.unlink()
            except (ValueError, OSError):
                continue

    def _rotated_files(self) -> List[Path]:
        try:
            return list(self.log_path.parent.glob(self._rotated_prefix + "*"))
        except OSError:
            return []

    def read_recent(self, lines: int = 100) -> List[str]:
        """Last ``lines`` records of the current log (oldest first)."""
        try:
            with open(self.log_path) as f:
                return f.readlines()[-lines:]
        except OSError:
            return []

    def get_log_files(self) -> List[Path]:
        """Current and rotated logs, newest first."""
        logs = self._rotated_files()
        if self.log_path.exists():
            logs.append(self.log_path)
        logs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return logs
