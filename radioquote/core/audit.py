"""
Append-only NDJSON audit side-channel.

Each named log under ``settings.audit_dir`` receives one JSON object per line.
Writes happen on a background thread and are best effort: an OSError is
logged and swallowed so auditing never breaks quote handling.

Files written by the services:
- validation.log: every safety evaluation
- alerts.log: every alert dispatched
- critical_events.log: critical alerts only
- periodic_reports.log: monitor health snapshots
- system_errors.log: errors tracked by the monitor
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

VALIDATION_LOG = 'validation.log'
ALERTS_LOG = 'alerts.log'
CRITICAL_EVENTS_LOG = 'critical_events.log'
PERIODIC_REPORTS_LOG = 'periodic_reports.log'
SYSTEM_ERRORS_LOG = 'system_errors.log'


class AuditLog:
    """
    Writes NDJSON records to files under a single directory.

    Records are written by one background thread so callers on the event loop
    never block on file I/O; a single worker keeps each file in append order.
    After close() records are written inline.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        # Inline writes after close() can race the last queued ones
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='audit')

    def append(self, filename: str, record: Dict[str, Any]) -> None:
        """
        Queue one record for ``filename``.

        A ``timestamp`` (UTC ISO-8601) is added when the record lacks one.
        """
        entry = dict(record)
        entry.setdefault('timestamp', datetime.now(timezone.utc).isoformat())
        line = json.dumps(entry, default=str)

        try:
            self._executor.submit(self._write, filename, line)
        except RuntimeError:
            # Executor already shut down
            self._write(filename, line)

    def flush(self) -> None:
        """Block until every queued record is on disk."""
        try:
            self._executor.submit(lambda: None).result()
        except RuntimeError:
            # Closed: shutdown already drained the queue
            return

    def close(self) -> None:
        """Write the remaining records and stop the worker thread."""
        self._executor.shutdown(wait=True)

    def _write(self, filename: str, line: str) -> None:
        try:
            with self._lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                with open(self.directory / filename, 'a', encoding='utf-8') as f:
                    f.write(line + '\n')
        except OSError as e:
            logger.error(f"Failed to write audit record to {filename}: {e}")
