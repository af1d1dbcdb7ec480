"""
Base batch queue backend interface.

Defines the operations every backend (amazon, k8s) implements for a queue.
"""

import itertools
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, FrozenSet, Iterable, Mapping, Optional

from batch_queue.core.constants import QueueType
from batch_queue.execution.job_info import JobInfo, ResourceRequest
from batch_queue.execution.process import ProcessTable

if TYPE_CHECKING:
    from batch_queue.queue import BatchQueue


class BatchQueueBackend(ABC):
    """Abstract base class for batch queue backends (amazon, k8s)."""

    queue_type: QueueType
    # Backend specific option keys accepted by option_update()
    supported_options: FrozenSet[str] = frozenset()

    def __init__(self, queue: "BatchQueue"):
        self.queue = queue
        self.processes = ProcessTable()
        self._job_ids = itertools.count(1)

    def next_job_id(self) -> int:
        """Allocate a job id, strictly increasing from 1."""
        return next(self._job_ids)

    def create(self) -> None:
        """Set up backend state right after the queue is created."""
        pass

    def free(self) -> None:
        """Release backend resources when the queue is freed."""
        pass

    def port(self) -> int:
        """Port the backend listens on, 0 if none."""
        return 0

    def option_update(self, key: str, value: Optional[str]) -> None:
        """
        Validate an option before the queue stores it.

        Args:
            key: Option name
            value: New value, None when the option is being removed

        Raises:
            ConfigurationError: If a required option gets an unusable value
        """
        pass

    @abstractmethod
    def submit(
        self,
        command: str,
        input_files: Optional[Iterable[str]] = None,
        output_files: Optional[Iterable[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        resources: Optional[ResourceRequest] = None,
    ) -> int:
        """
        Submit a shell command without waiting for it.

        Args:
            command: Shell command to run
            input_files: Files staged in before the command runs
            output_files: Files staged out after it finishes
            env: Environment variables for the job
            resources: Requested cores and memory

        Returns:
            Job id, or INVALID_JOB_ID if the job could not be started
        """
        pass

    @abstractmethod
    def wait(self, stoptime: Optional[float] = None) -> Optional[JobInfo]:
        """
        Wait for one job to reach a terminal state.

        Args:
            stoptime: Absolute deadline (time.time()), None waits indefinitely

        Returns:
            The finalized JobInfo, now owned by the caller, or None on timeout
        """
        pass

    @abstractmethod
    def remove(self, job_id: int) -> bool:
        """
        Cancel a job. A removed job is never returned by wait().

        Args:
            job_id: Id returned by submit

        Returns:
            True if the job was tracked and has been removed
        """
        pass
