"""
Amazon backend: one EC2 instance per job.

The helper script does all the work (start an instance, stage files, run the
command over ssh, tear the instance down); the job is done when the script
exits, so the backend only has to track child processes.
"""

import os
import time
from typing import Dict, Iterable, Mapping, Optional

from batch_queue.core.config import settings
from batch_queue.core.constants import INVALID_JOB_ID, QueueType
from batch_queue.core.exceptions import ConfigurationError
from batch_queue.core.telemetry import get_logger, trace_span
from batch_queue.execution.backends.base import BatchQueueBackend
from batch_queue.execution.credentials import load_credentials
from batch_queue.execution.job_info import JobInfo, ResourceRequest, utcnow
from batch_queue.execution.process import SpawnedProcess
from batch_queue.execution.templates import write_script

logger = get_logger(__name__)

AMAZON_CREDENTIALS_OPTION = "amazon-credentials-filepath"
AMI_IMAGE_OPTION = "ami-image-id"
AMAZON_SCRIPT_NAME = "_temp_amazon_ec2_script.sh"
AMAZON_SCRIPT_TEMPLATE = "amazon_script.sh.j2"


class AmazonBackend(BatchQueueBackend):
    """Backend running every job on its own EC2 instance."""

    queue_type = QueueType.AMAZON
    supported_options = frozenset({AMAZON_CREDENTIALS_OPTION, AMI_IMAGE_OPTION})

    def __init__(self, queue):
        super().__init__(queue)
        self.script_path = AMAZON_SCRIPT_NAME
        self.wait_timeout_seconds = settings.amazon_wait_timeout_seconds

        self._handles: Dict[int, SpawnedProcess] = {}
        self._job_ids_by_pid: Dict[int, int] = {}

    def free(self) -> None:
        if os.path.exists(self.script_path):
            os.unlink(self.script_path)

    def option_update(self, key: str, value: Optional[str]) -> None:
        if value is None:
            return

        if key == AMI_IMAGE_OPTION and not value.strip():
            raise ConfigurationError(f'"{AMI_IMAGE_OPTION}" cannot be empty')
        if key == AMAZON_CREDENTIALS_OPTION:
            # Fail now rather than on the first submit
            load_credentials(value)

    def _require_option(self, key: str, message: str) -> str:
        value = self.queue.get_option(key)
        if not value:
            raise ConfigurationError(message)
        return value

    def _require_environment(self) -> Dict[str, str]:
        if not settings.ec2_home:
            raise ConfigurationError(
                "EC2_HOME environment variable must be set to EC2 tools directory"
            )
        if not settings.java_home:
            raise ConfigurationError("JAVA_HOME environment variable must be set")
        return {"EC2_HOME": settings.ec2_home, "JAVA_HOME": settings.java_home}

    @trace_span
    def submit(
        self,
        command: str,
        input_files: Optional[Iterable[str]] = None,
        output_files: Optional[Iterable[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        resources: Optional[ResourceRequest] = None,
    ) -> int:
        tool_env = self._require_environment()
        credentials_path = self._require_option(
            AMAZON_CREDENTIALS_OPTION,
            "No amazon credentials passed. Please pass file containing amazon "
            f'credentials using the "{AMAZON_CREDENTIALS_OPTION}" option',
        )
        ami_image_id = self._require_option(
            AMI_IMAGE_OPTION,
            f'No ami image id passed. Please pass it using the "{AMI_IMAGE_OPTION}" option',
        )
        credentials = load_credentials(credentials_path)

        write_script(
            self.script_path,
            AMAZON_SCRIPT_TEMPLATE,
            instance_type=settings.amazon_instance_type,
            ssh_user=settings.amazon_ssh_user,
            poll_seconds=settings.amazon_poll_interval_seconds,
        )

        # Credentials go through the environment, never on the command line
        child_env = dict(env or {})
        child_env.update(tool_env)
        child_env.update(credentials.as_env())

        cmd = [
            "/bin/bash",
            self.script_path,
            command,
            ami_image_id,
            ",".join(input_files or []),
            ",".join(output_files or []),
        ]

        logger.debug("Forking EC2 script process...")
        try:
            handle = self.processes.spawn(cmd, env=child_env)
        except OSError as e:
            logger.error(f"Couldn't start EC2 script: {e}")
            return INVALID_JOB_ID

        job_id = self.next_job_id()
        now = utcnow()
        self.queue.job_table[job_id] = JobInfo(job_id=job_id, submitted=now, started=now)
        self._handles[job_id] = handle
        self._job_ids_by_pid[handle.pid] = job_id

        logger.info(f"Started job {job_id} (pid {handle.pid}): {command}")
        return job_id

    @trace_span
    def wait(self, stoptime: Optional[float] = None) -> Optional[JobInfo]:
        if not len(self.processes):
            logger.debug("No amazon jobs to wait for")
            return None

        while True:
            outcome = self.processes.wait_any(self.wait_timeout_seconds)

            if outcome is not None:
                job_id = self._job_ids_by_pid.pop(outcome.pid, None)
                info = self.queue.job_table.pop(job_id, None)
                if info is not None:
                    del self._handles[job_id]
                    info.finalize(
                        exited_normally=outcome.exited_normally,
                        exit_code=outcome.exit_code,
                        exit_signal=outcome.exit_signal,
                    )
                    logger.info(f"Job {job_id} finished with {outcome.returncode}")
                    return info

                logger.warning(
                    f"Discarding pid {outcome.pid} reaped without a matching job"
                )
                if not len(self.processes):
                    return None

            if stoptime is not None and time.time() >= stoptime:
                return None

    @trace_span
    def remove(self, job_id: int) -> bool:
        handle = self._handles.get(job_id)
        info = self.queue.job_table.get(job_id)
        if handle is None or info is None:
            logger.warning(f"Cannot remove job {job_id}: not tracked by this queue")
            return False

        logger.info(f"Removing job {job_id}, started at {info.started}")
        # The script's trap terminates the instance before exiting
        self.processes.kill(handle)
        outcome = self.processes.wait(handle)

        info.finalize(
            exited_normally=False,
            exit_code=outcome.exit_code,
            exit_signal=outcome.exit_signal,
            failure_info="removed",
        )
        del self._handles[job_id]
        del self._job_ids_by_pid[handle.pid]
        del self.queue.job_table[job_id]
        return True
