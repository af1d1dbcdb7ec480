"""
Kubernetes backend: one pod per job.

Each job goes through

    pod_created -> executing -> job_done | exec_failed | remote_failed

The pod itself only idles. A helper script creates it ("create" action),
and once the pod reports pod_created the backend runs the command inside it
("exec" action). Progress is read back from the last line of the pod's
status log; failures that happen before the pod exists come through a local
failure log instead.
"""

import glob
import os
import signal
import time
import uuid
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from batch_queue.core.config import settings
from batch_queue.core.constants import (
    INVALID_JOB_ID,
    PodJobState,
    PodPhase,
    QueueType,
)
from batch_queue.core.exceptions import ConfigurationError, SpawnError
from batch_queue.core.telemetry import get_logger, trace_span
from batch_queue.execution.backends.base import BatchQueueBackend
from batch_queue.execution.job_info import JobInfo, ResourceRequest, utcnow
from batch_queue.execution.pods.failure_log import FailureLog
from batch_queue.execution.pods.manifest import (
    build_pod_manifest,
    job_id_from_pod_name,
    pod_name,
    status_log_name,
    write_pod_manifest,
)
from batch_queue.execution.pods.records import BackendJobRecord
from batch_queue.execution.pods.status import StatusLine, parse_status_line
from batch_queue.execution.templates import write_script
from batch_queue.providers.control_plane import (
    ControlPlaneInterface,
    get_control_plane,
)

logger = get_logger(__name__)

K8S_IMAGE_OPTION = "k8s-image"
K8S_SCRIPT_TEMPLATE = "k8s_script.sh.j2"


class K8sBackend(BatchQueueBackend):
    """Backend running every job in its own pod."""

    queue_type = QueueType.K8S
    supported_options = frozenset({K8S_IMAGE_OPTION})

    def __init__(self, queue, control_plane: Optional[ControlPlaneInterface] = None):
        super().__init__(queue)
        self._control_plane = control_plane

        # Set on first submit
        self.run_id: Optional[str] = None
        self.image: Optional[str] = None
        self.failure_log: Optional[FailureLog] = None

        self.job_records: Dict[int, BackendJobRecord] = {}

        self.poll_interval_seconds = settings.k8s_poll_interval_seconds
        self.reap_timeout_seconds = settings.k8s_reap_timeout_seconds

    @property
    def control_plane(self) -> ControlPlaneInterface:
        if self._control_plane is None:
            self._control_plane = get_control_plane()
        return self._control_plane

    @control_plane.setter
    def control_plane(self, control_plane: ControlPlaneInterface) -> None:
        self._control_plane = control_plane

    @property
    def script_path(self) -> str:
        return f"{self.run_id}-k8s-script.sh"

    def _ensure_run(self) -> None:
        """Generate the run identifier the first time it is needed."""
        if self.run_id is not None:
            return

        # Pod names and label values cannot contain upper case
        self.run_id = str(uuid.uuid4()).lower()
        self.failure_log = FailureLog(f"{self.run_id}-kubectl-failed.log")
        logger.info(f"Starting k8s run {self.run_id}")

    def _resolve_image(self) -> str:
        if self.image is None:
            image = self.queue.get_option(K8S_IMAGE_OPTION)
            if not image:
                raise ConfigurationError(
                    f'Please specify the container image with the "{K8S_IMAGE_OPTION}" option'
                )
            self.image = image
        return self.image

    def _helper_argv(self, action: str, name: str, record: BackendJobRecord) -> List[str]:
        return [
            "/bin/bash",
            self.script_path,
            action,
            name,
            str(record.job_id),
            ",".join(record.input_files),
            record.command,
            ",".join(record.output_files),
        ]

    def create(self) -> None:
        self.queue.logfile = "k8s.log"
        self.queue.features["batch_log_name"] = "%s.k8slog"
        self.queue.features["batch_log_transactions"] = "%s.tr"

    def free(self) -> None:
        if self.run_id is None:
            return

        if self.job_records:
            logger.warning(
                f"Freeing k8s run {self.run_id} with {len(self.job_records)} jobs still tracked"
            )

        for path in glob.glob(f"{self.run_id}-*.json") + [self.script_path]:
            if os.path.exists(path):
                os.unlink(path)
        self.failure_log.remove()

    def option_update(self, key: str, value: Optional[str]) -> None:
        if key == K8S_IMAGE_OPTION:
            if value is not None and not value.strip():
                raise ConfigurationError(f'"{K8S_IMAGE_OPTION}" cannot be empty')
            self.image = value

    @trace_span
    def submit(
        self,
        command: str,
        input_files: Optional[Iterable[str]] = None,
        output_files: Optional[Iterable[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        resources: Optional[ResourceRequest] = None,
    ) -> int:
        self._ensure_run()
        image = self._resolve_image()
        self.failure_log.ensure_exists()

        job_id = self.next_job_id()
        name = pod_name(self.run_id, job_id)

        manifest = build_pod_manifest(self.run_id, name, image, resources, env)
        write_pod_manifest(f"{name}.json", manifest)
        write_script(
            self.script_path,
            K8S_SCRIPT_TEMPLATE,
            failed_log=self.failure_log.path,
            # Same namespace the control plane lists and deletes in
            namespace=self.control_plane.namespace or "",
            pod_start_attempts=settings.k8s_pod_start_attempts,
        )

        record = BackendJobRecord(
            job_id=job_id,
            command=command,
            input_files=list(input_files or []),
            output_files=list(output_files or []),
        )

        try:
            record.create_process = self.processes.spawn(
                self._helper_argv("create", name, record), env=env
            )
        except OSError as e:
            logger.error(f"Couldn't start create action for job {job_id}: {e}")
            return INVALID_JOB_ID

        now = utcnow()
        self.queue.job_table[job_id] = JobInfo(job_id=job_id, submitted=now, started=now)
        self.job_records[job_id] = record

        logger.info(f"Started job {job_id}: {command}")
        return job_id

    @trace_span
    def wait(self, stoptime: Optional[float] = None) -> Optional[JobInfo]:
        if not self.job_records:
            logger.debug("No k8s jobs to wait for")
            return None

        while True:
            info = self._reconcile()
            if info is not None:
                return info

            if stoptime is not None and time.time() >= stoptime:
                return None

            time.sleep(self.poll_interval_seconds)

    def _reconcile(self) -> Optional[JobInfo]:
        """
        One pass of the state machine over every pod of this run.

        Returns:
            The first job found in a terminal state, already finalized
        """
        running: List[Tuple[str, BackendJobRecord]] = []

        # Pods the control plane itself gave up on
        for pod in self.control_plane.list_pods(self.run_id):
            record = self.job_records.get(job_id_from_pod_name(pod.name))
            if record is None:
                logger.debug(f"Ignoring untracked pod {pod.name}")
                continue

            if pod.phase == PodPhase.RUNNING.value:
                running.append((pod.name, record))
            elif pod.phase == PodPhase.FAILED.value:
                logger.warning(f"Pod {pod.name} of job {record.job_id} failed")
                return self._complete(
                    record,
                    exited_normally=False,
                    exit_code=1,
                    failure_info=f"pod {pod.name} failed",
                )

        # Creation failures reported by the create action
        pending = {job_id for job_id, r in self.job_records.items() if not r.is_failed}
        entry = self.failure_log.next_failure(pending)
        if entry is not None:
            record = self.job_records[entry.job_id]
            record.is_failed = True
            record.failure_info = entry.failure_info
            record.exit_code = entry.exit_code
            logger.warning(f"Job {entry.job_id} failed to start: {entry.failure_info}")
            return self._complete(
                record,
                exited_normally=False,
                exit_code=entry.exit_code,
                failure_info=entry.failure_info,
            )

        # In-pod progress
        for name, record in running:
            status = self._read_status(name)
            state = status.state if status else None

            if state == PodJobState.POD_CREATED.value and record.is_running:
                outcome = record.exec_process.poll()
                if outcome is not None:
                    # The helper may have written its last line just before exiting
                    status = self._read_status(name)
                    state = status.state if status else None
                    if state == PodJobState.POD_CREATED.value:
                        logger.warning(
                            f"Exec action of job {record.job_id} exited with "
                            f"{outcome.returncode} without reporting a status"
                        )
                        return self._complete(
                            record,
                            exited_normally=False,
                            exit_code=outcome.exit_code or 1,
                            failure_info=(
                                f"exec action exited with {outcome.returncode} "
                                "without reporting a status"
                            ),
                        )

            if state == PodJobState.POD_CREATED.value:
                if not record.is_running:
                    self._start_exec(name, record)
            elif state == PodJobState.JOB_DONE.value:
                return self._complete(record, exited_normally=True)
            elif state == PodJobState.EXEC_FAILED.value:
                return self._complete(
                    record, exited_normally=False, exit_code=status.exit_code
                )
            else:
                logger.debug(f"Job {record.job_id} is still running with state {state}")

        return None

    def _read_status(self, name: str) -> Optional[StatusLine]:
        return parse_status_line(
            self.control_plane.read_status_line(name, status_log_name(name))
        )

    def _start_exec(self, name: str, record: BackendJobRecord) -> None:
        try:
            record.exec_process = self.processes.spawn(
                self._helper_argv("exec", name, record)
            )
        except OSError as e:
            raise SpawnError(
                f"Couldn't start exec action for job {record.job_id}: {e}"
            ) from e

        record.is_running = True
        logger.info(
            f"Running job {record.job_id}: {record.command} in pod {name} "
            f"with pid {record.exec_process.pid}"
        )

    def _complete(
        self,
        record: BackendJobRecord,
        exited_normally: bool,
        exit_code: int = 0,
        failure_info: Optional[str] = None,
    ) -> JobInfo:
        """Finalize a job that reached a terminal state and tear its pod down."""
        job_id = record.job_id

        info = self.queue.job_table.pop(job_id)
        del self.job_records[job_id]
        info.finalize(
            exited_normally=exited_normally,
            exit_code=0 if exited_normally else exit_code,
            failure_info=failure_info,
        )

        self.control_plane.delete_pod(pod_name(self.run_id, job_id))
        self._reap(record)

        logger.info(
            f"Job {job_id} finished: exited_normally={info.exited_normally}, "
            f"exit_code={info.exit_code}"
        )
        return info

    def _reap(self, record: BackendJobRecord, terminate: bool = False) -> None:
        """Collect the create and exec helper processes of a job."""
        for handle in record.helper_processes:
            if terminate:
                self.processes.kill(handle)

            if self.processes.wait(handle, self.reap_timeout_seconds) is None:
                logger.warning(
                    f"Helper pid {handle.pid} of job {record.job_id} still running, killing it"
                )
                self.processes.kill(handle, signal.SIGKILL)
                self.processes.wait(handle)

    @trace_span
    def remove(self, job_id: int) -> bool:
        record = self.job_records.get(job_id)
        if record is None or job_id not in self.queue.job_table:
            logger.warning(f"Cannot remove job {job_id}: not tracked by this queue")
            return False

        name = pod_name(self.run_id, job_id)
        logger.info(f"Trying to remove job {job_id} by deleting pod {name}")

        # Helpers first: an in-flight create would recreate the pod after the delete
        self._reap(record, terminate=True)
        self.control_plane.delete_pod(name)

        del self.job_records[job_id]
        del self.queue.job_table[job_id]
        return True
