import subprocess
from typing import List, Optional, Sequence

from batch_queue.core.config import settings
from batch_queue.core.exceptions import SpawnError
from batch_queue.core.telemetry import get_logger
from .interface import ControlPlaneInterface, PodStatus

logger = get_logger(__name__)


class KubectlControlPlane(ControlPlaneInterface):
    """Control plane access through the kubectl binary."""

    def __init__(
        self,
        namespace: Optional[str] = None,
        query_timeout_seconds: Optional[float] = None,
    ):
        self.namespace = namespace or settings.k8s_namespace
        self.query_timeout_seconds = (
            query_timeout_seconds or settings.k8s_query_timeout_seconds
        )

    def _kubectl(self, *args: str) -> List[str]:
        cmd = ["kubectl"]
        if self.namespace:
            cmd.extend(["-n", self.namespace])
        cmd.extend(args)
        return cmd

    def _run(
        self, cmd: Sequence[str], timeout: Optional[float]
    ) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except OSError as e:
            raise SpawnError(f"Couldn't run {' '.join(cmd)}: {e}") from e

    def _query(self, cmd: Sequence[str]) -> Optional[str]:
        """Run a read-only kubectl command, None on timeout or failure."""
        try:
            result = self._run(cmd, self.query_timeout_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"{' '.join(cmd)} timed out after {self.query_timeout_seconds}s"
            )
            return None

        if result.returncode != 0:
            logger.warning(
                f"{' '.join(cmd)} failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}"
            )
            return None

        return result.stdout

    def list_pods(self, run_id: str) -> List[PodStatus]:
        output = self._query(
            self._kubectl(
                "get",
                "pods",
                "-l",
                f"app={run_id}",
                "--no-headers",
                "-o",
                "custom-columns=NAME:.metadata.name,PHASE:.status.phase",
            )
        )
        if not output:
            return []

        pods = []
        for line in output.splitlines():
            fields = line.split()
            if len(fields) != 2:
                logger.debug(f"Skipping pod listing line: {line!r}")
                continue
            pods.append(PodStatus(name=fields[0], phase=fields[1]))
        return pods

    def read_status_line(self, pod_name: str, log_file: str) -> Optional[str]:
        output = self._query(self._kubectl("exec", pod_name, "--", "tail", "-1", log_file))
        if not output or not output.strip():
            return None
        return output.strip().splitlines()[-1]

    def delete_pod(self, pod_name: str) -> bool:
        logger.info(f"Deleting pod {pod_name}")
        result = self._run(self._kubectl("delete", "pods", pod_name), timeout=None)

        if result.returncode != 0:
            logger.warning(
                f"Failed to delete pod {pod_name}: {result.stderr.strip()}"
            )
            return False

        logger.info(f"Deleted pod {pod_name}")
        return True
