"""
Out-of-band failure channel of the k8s batch queue.

When `kubectl create` fails, or the pod never comes up, no status line can
be written inside the pod. The create action appends one line per failure
to a local file instead:

    <job-id>,<failure-description>,<exit-code>

The file is append-only. The reader keeps a byte cursor and never rewinds,
so an entry is delivered at most once.
"""

import os
from dataclasses import dataclass
from typing import Container, Optional

from batch_queue.core.telemetry import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FailureLogEntry:
    job_id: int
    failure_info: str
    exit_code: int


def parse_failure_line(line: str) -> Optional[FailureLogEntry]:
    """
    Parse one failure log line.

    The description may itself contain commas: the job id is the first
    field, the exit code the last one, and everything between is the
    description.
    """
    fields = line.strip().split(",")
    if len(fields) < 3:
        return None

    try:
        job_id = int(fields[0])
        exit_code = int(fields[-1])
    except ValueError:
        return None

    return FailureLogEntry(
        job_id=job_id,
        failure_info=",".join(fields[1:-1]).strip(),
        exit_code=exit_code,
    )


class FailureLog:
    """Reader for the failure log written by the create action."""

    def __init__(self, path: str):
        self.path = path
        self._offset = 0

    def ensure_exists(self) -> None:
        """Create an empty log if there is none yet."""
        if not os.path.exists(self.path):
            with open(self.path, "w"):
                pass

    def remove(self) -> None:
        if os.path.exists(self.path):
            os.unlink(self.path)

    def next_failure(self, pending: Container[int]) -> Optional[FailureLogEntry]:
        """
        Return the next entry for a job that is still pending.

        Args:
            pending: Job ids not yet finalized or marked failed

        Returns:
            The first unseen entry naming a pending job, or None
        """
        try:
            with open(self.path, "rb") as f:
                f.seek(self._offset)
                data = f.read()
        except FileNotFoundError:
            return None

        for raw in data.splitlines(keepends=True):
            if not raw.endswith(b"\n"):
                # Writer is mid-line, pick it up on the next read
                break
            self._offset += len(raw)

            line = raw.decode("utf-8", errors="replace")
            entry = parse_failure_line(line)
            if entry is None:
                logger.warning(f"Skipping malformed failure log line: {line!r}")
                continue
            if entry.job_id not in pending:
                logger.debug(f"Ignoring failure entry for job {entry.job_id}")
                continue
            return entry

        return None
