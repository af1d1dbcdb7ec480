"""
Batch queue facade.

A BatchQueue owns the job registry and the options of one batch session and
forwards submit/wait/remove to the backend picked at creation.

    queue = BatchQueue.create(QueueType.K8S, {"k8s-image": "ubuntu:22.04"})
    job_id = queue.submit("echo hi")
    info = queue.wait(stoptime=time.time() + 60)
    queue.free()
"""

from typing import Dict, Iterable, Mapping, Optional

from batch_queue.core.constants import COMMON_OPTIONS, QueueType
from batch_queue.core.exceptions import ConfigurationError
from batch_queue.core.telemetry import get_logger
from batch_queue.execution.backends import get_backend
from batch_queue.execution.filesystem import FileSystemInterface, LocalFileSystem
from batch_queue.execution.job_info import JobInfo, ResourceRequest

logger = get_logger(__name__)


class BatchQueue:
    """One batch session on one backend."""

    def __init__(
        self,
        queue_type: QueueType,
        filesystem: Optional[FileSystemInterface] = None,
    ):
        try:
            self.queue_type = QueueType(queue_type)
        except ValueError as e:
            raise ConfigurationError(f"Unknown batch queue type: {queue_type}") from e

        self.options: Dict[str, str] = {}
        self.features: Dict[str, str] = {}
        self.logfile: Optional[str] = None

        # Job registry: job id -> JobInfo, until wait() hands it over
        self.job_table: Dict[int, JobInfo] = {}

        self.fs = filesystem or LocalFileSystem()
        self.backend = get_backend(self.queue_type, self)

    @classmethod
    def create(
        cls,
        queue_type: QueueType,
        options: Optional[Mapping[str, str]] = None,
    ) -> "BatchQueue":
        """
        Create a queue and let its backend set itself up.

        Args:
            queue_type: Backend to use
            options: Initial options, validated like option_update()

        Raises:
            ConfigurationError: If the type or an option is not usable
        """
        queue = cls(queue_type)
        queue.backend.create()
        for key, value in (options or {}).items():
            queue.option_update(key, value)

        logger.info(f"Created {queue.queue_type.value} batch queue")
        return queue

    def free(self) -> None:
        self.backend.free()
        logger.info(f"Freed {self.queue_type.value} batch queue")

    def port(self) -> int:
        return self.backend.port()

    def get_option(self, key: str) -> Optional[str]:
        return self.options.get(key)

    def option_update(self, key: str, value: Optional[str]) -> None:
        """
        Set or, with value None, remove an option.

        Raises:
            ConfigurationError: If the key is unknown to this queue type or
                the backend rejects the value
        """
        if key not in COMMON_OPTIONS and key not in self.backend.supported_options:
            raise ConfigurationError(
                f"Unknown option {key!r} for {self.queue_type.value} batch queue"
            )

        self.backend.option_update(key, value)

        if value is None:
            self.options.pop(key, None)
        else:
            self.options[key] = value

    def submit(
        self,
        command: str,
        input_files: Optional[Iterable[str]] = None,
        output_files: Optional[Iterable[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        resources: Optional[ResourceRequest] = None,
    ) -> int:
        """Submit a command, returns its job id (INVALID_JOB_ID on spawn failure)."""
        return self.backend.submit(command, input_files, output_files, env, resources)

    def wait(self, stoptime: Optional[float] = None) -> Optional[JobInfo]:
        """Wait for the next finished job until stoptime (time.time() based)."""
        return self.backend.wait(stoptime)

    def remove(self, job_id: int) -> bool:
        return self.backend.remove(job_id)
