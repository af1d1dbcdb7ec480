"""
Subprocess control for batch queue backends.

Every side-effecting action (creating a pod, executing inside it, running a
cloud instance script) is a short-lived child process. Handles are polled,
never waited on blindly, so the control loop decides when it blocks.
"""

import os
import signal
import subprocess
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Mapping, Optional, Sequence

from batch_queue.core.telemetry import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProcessOutcome:
    """How a child process ended."""

    pid: int
    returncode: int

    @property
    def exited_normally(self) -> bool:
        # Popen reports death by signal N as -N
        return self.returncode >= 0

    @property
    def exit_code(self) -> int:
        return self.returncode if self.returncode >= 0 else 0

    @property
    def exit_signal(self) -> int:
        return -self.returncode if self.returncode < 0 else 0


class SpawnedProcess:
    """Handle on a running child process."""

    def __init__(self, popen: subprocess.Popen):
        self._popen = popen

    @property
    def pid(self) -> int:
        return self._popen.pid

    def poll(self) -> Optional[ProcessOutcome]:
        returncode = self._popen.poll()
        if returncode is None:
            return None
        return ProcessOutcome(pid=self.pid, returncode=returncode)

    def wait(self, timeout: Optional[float] = None) -> Optional[ProcessOutcome]:
        try:
            returncode = self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        return ProcessOutcome(pid=self.pid, returncode=returncode)

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Signal the child's whole process group, grandchildren included."""
        # The group id is the child's pid, see ProcessTable.spawn
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            logger.debug(f"Process group {self.pid} already gone")


class ProcessTable:
    """
    Children spawned by one queue instance.

    wait_any() gives "reap any child with timeout" semantics over the
    children of this table only, so two queues in one process never steal
    each other's exits.
    """

    poll_interval_seconds = 0.1

    def __init__(self):
        self._running: Dict[int, SpawnedProcess] = {}
        self._returned: Deque[ProcessOutcome] = deque()

    def __len__(self) -> int:
        return len(self._running) + len(self._returned)

    def spawn(
        self, argv: Sequence[str], env: Optional[Mapping[str, str]] = None
    ) -> SpawnedProcess:
        """
        Start a child process without waiting for it.

        The child leads a new process group.

        Args:
            argv: Program and arguments, no shell involved
            env: Extra environment variables layered over ours

        Raises:
            OSError: If the program could not be started
        """
        child_env = None
        if env:
            child_env = dict(os.environ)
            child_env.update(env)

        # Own session, so kill() reaches the helper's children too
        popen = subprocess.Popen(
            list(argv),
            env=child_env,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
        handle = SpawnedProcess(popen)
        self._running[handle.pid] = handle
        logger.debug(f"Spawned pid {handle.pid}: {argv[0]}")
        return handle

    def wait(
        self, handle: SpawnedProcess, timeout: Optional[float] = None
    ) -> Optional[ProcessOutcome]:
        """Wait for one specific child; None if it is still running at timeout."""
        outcome = handle.wait(timeout)
        if outcome is not None:
            self._running.pop(handle.pid, None)
        return outcome

    def kill(self, handle: SpawnedProcess, sig: int = signal.SIGTERM) -> None:
        handle.kill(sig)

    def wait_any(self, timeout: float) -> Optional[ProcessOutcome]:
        """
        Wait for any child of this table to exit.

        Args:
            timeout: Seconds to wait before giving up

        Returns:
            The outcome of the first child found exited, or None at timeout
        """
        if self._returned:
            return self._returned.popleft()

        deadline = time.monotonic() + timeout
        while True:
            for pid, handle in list(self._running.items()):
                outcome = handle.poll()
                if outcome is not None:
                    del self._running[pid]
                    return outcome

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.poll_interval_seconds, remaining))

    def putback(self, outcome: ProcessOutcome) -> None:
        """Return a reaped outcome so the next wait_any() delivers it again."""
        self._returned.append(outcome)
