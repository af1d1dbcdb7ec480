from dataclasses import dataclass, field
from typing import List, Optional

from batch_queue.execution.process import SpawnedProcess


@dataclass
class BackendJobRecord:
    """Per-job state the k8s backend keeps next to the queue's JobInfo."""

    job_id: int
    command: str
    input_files: List[str] = field(default_factory=list)
    output_files: List[str] = field(default_factory=list)

    # Lifecycle
    is_running: bool = False  # exec action spawned
    is_failed: bool = False  # delivered through the failure log
    failure_info: Optional[str] = None
    exit_code: int = 0

    # Helper processes still to be reaped
    create_process: Optional[SpawnedProcess] = None
    exec_process: Optional[SpawnedProcess] = None

    @property
    def helper_processes(self) -> List[SpawnedProcess]:
        return [p for p in (self.create_process, self.exec_process) if p is not None]
