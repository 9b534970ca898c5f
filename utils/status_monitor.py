"""
Status Monitor for Replicast

Keeps a small JSON status file describing the replication runs of this
process: run status, per-destination counters and the most recent reports.

Usage:
    from utils.status_monitor import StatusMonitor

    monitor = StatusMonitor(Path("data/status.json"))
    monitor.set_status("RUNNING")
    monitor.record_report(report)
    monitor.shutdown()
"""

import json
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_RECENT_REPORTS = 20


class StatusMonitor:
    """Track replication health and statistics."""

    def __init__(self, status_file: Optional[Path] = None, max_reports: int = MAX_RECENT_REPORTS):
        """
        Initialize the StatusMonitor.

        Args:
            status_file: Path to the JSON file where status will be written.
                        Defaults to 'status.json' in the current directory.
            max_reports: How many recent reports to keep in the file.
        """
        self.status_file = Path(status_file or "status.json")
        self.lock = Lock()
        self.start_time = datetime.now()

        # Track write failures
        self._consecutive_write_failures = 0
        self._max_consecutive_failures = 10
        self._monitoring_enabled = True

        self._recent = deque(maxlen=max_reports)

        self.status: Dict[str, Any] = {
            "run": {
                "status": "STARTING",
                "start_time": self.start_time.isoformat(),
                "last_update": None,
                "uptime_seconds": 0,
            },
            "events": {
                "total": 0,
                "save": 0,
                "trash": 0,
                "delete": 0,
            },
            "destinations": {},
            "errors": {
                "count": 0,
                "last_error": None,
                "last_error_time": None,
            },
            "recent_reports": [],
        }

        self._write_status()
        logger.info("StatusMonitor initialized, writing to %s", self.status_file)

    def record_report(self, report) -> None:
        """
        Fold one SyncReport into the counters.

        Args:
            report: SyncReport of a save/trash/delete event
        """
        with self.lock:
            events = self.status["events"]
            events["total"] += 1
            events[report.event] = events.get(report.event, 0) + 1

            for outcome in report.outcomes:
                dest = self.status["destinations"].setdefault(
                    outcome.destination_id,
                    {"succeeded": 0, "failed": 0, "skipped": 0, "last_action": None, "last_error": None},
                )
                dest["last_action"] = outcome.action
                if not outcome.ok:
                    dest["failed"] += 1
                    dest["last_error"] = outcome.message
                    self._record_error_locked(f"{outcome.destination_id}: {outcome.message}")
                elif outcome.action == "skip":
                    dest["skipped"] += 1
                else:
                    dest["succeeded"] += 1

            entry = report.as_dict()
            entry["time"] = datetime.now().isoformat()
            self._recent.append(entry)
            self.status["recent_reports"] = list(self._recent)

            self._write_status()

    def record_error(self, error_message: str) -> None:
        """
        Record an error occurrence.

        Args:
            error_message: Description of the error
        """
        with self.lock:
            self._record_error_locked(error_message)
            self._write_status()

        logger.warning("Error recorded: %s", error_message)

    def _record_error_locked(self, error_message: str) -> None:
        self.status["errors"]["count"] += 1
        self.status["errors"]["last_error"] = error_message
        self.status["errors"]["last_error_time"] = datetime.now().isoformat()

    def set_status(self, status: str) -> None:
        """
        Set the run's current status.

        Args:
            status: Status string (STARTING, RUNNING, ERROR, STOPPED)
        """
        with self.lock:
            self.status["run"]["status"] = status
            self._write_status()

    def _write_status(self) -> None:
        """Write status to JSON file with error recovery."""
        if not self._monitoring_enabled:
            return

        try:
            now = datetime.now()
            self.status["run"]["last_update"] = now.isoformat()
            self.status["run"]["uptime_seconds"] = int((now - self.start_time).total_seconds())

            # Write to file atomically
            self.status_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.status_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(self.status, f, indent=2, default=str)
            temp_file.replace(self.status_file)

            self._consecutive_write_failures = 0

        except OSError as e:
            self._consecutive_write_failures += 1
            logger.error(
                "OS error writing status file (failure %d): %s", self._consecutive_write_failures, e
            )
            self._check_disable_monitoring()

        except (TypeError, ValueError) as e:
            self._consecutive_write_failures += 1
            logger.error(
                "Unserializable status (failure %d): %s", self._consecutive_write_failures, e, exc_info=True
            )
            self._check_disable_monitoring()

    def _check_disable_monitoring(self) -> None:
        """Disable monitoring if too many consecutive failures."""
        if self._consecutive_write_failures >= self._max_consecutive_failures:
            self._monitoring_enabled = False
            logger.critical(
                "Monitoring disabled after %d consecutive write failures. "
                "Replication continues but the status file will be stale.",
                self._max_consecutive_failures,
            )

    @property
    def enabled(self) -> bool:
        return self._monitoring_enabled

    def get_status(self) -> Dict[str, Any]:
        """Get current status as dictionary."""
        with self.lock:
            return self.status.copy()

    def shutdown(self) -> None:
        """Mark the run as stopped."""
        with self.lock:
            self.status["run"]["status"] = "STOPPED"
            self._write_status()
        logger.info("StatusMonitor shutdown complete")
