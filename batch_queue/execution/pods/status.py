"""
In-pod status line protocol.

One line is appended to <pod-name>.log inside the pod per transition:

    <unix-timestamp>,pod_created
    <unix-timestamp>,job_done
    <unix-timestamp>,exec_failed,<exit-code>

Only the last line is ever consulted.
"""

from typing import NamedTuple, Optional

from batch_queue.core.constants import PodJobState
from batch_queue.core.telemetry import get_logger

logger = get_logger(__name__)

# exec_failed without a usable code still has to be reported as a failure
UNKNOWN_EXIT_CODE = 1


class StatusLine(NamedTuple):
    timestamp: Optional[int]
    state: str
    exit_code: Optional[int] = None


def parse_status_line(line: Optional[str]) -> Optional[StatusLine]:
    """
    Parse the last line of a pod's status log.

    Returns:
        The parsed line, or None if there is nothing usable in it
    """
    if not line:
        return None

    fields = [field.strip() for field in line.strip().split(",")]
    if len(fields) < 2 or not fields[1]:
        return None

    timestamp = int(fields[0]) if fields[0].isdigit() else None
    state = fields[1]

    exit_code = None
    if state == PodJobState.EXEC_FAILED.value:
        try:
            exit_code = int(fields[2])
        except (IndexError, ValueError):
            logger.warning(f"exec_failed status without exit code: {line!r}")
            exit_code = UNKNOWN_EXIT_CODE

    return StatusLine(timestamp=timestamp, state=state, exit_code=exit_code)
