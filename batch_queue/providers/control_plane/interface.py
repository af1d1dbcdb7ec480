from abc import ABC, abstractmethod
from typing import List, NamedTuple, Optional


class PodStatus(NamedTuple):
    """A pod as reported by the control plane."""

    name: str
    phase: str  # Pending | Running | Succeeded | Failed | Unknown


class ControlPlaneInterface(ABC):
    """Interface for the queries and deletions the k8s batch queue needs."""

    # Namespace of every pod operation; None means the kubectl context's
    namespace: Optional[str] = None

    @abstractmethod
    def list_pods(self, run_id: str) -> List[PodStatus]:
        """
        List the pods labelled app=<run_id>.

        Args:
            run_id: Run identifier of the queue that created the pods

        Returns:
            Name and phase of each pod; empty if the query failed
        """
        pass

    @abstractmethod
    def read_status_line(self, pod_name: str, log_file: str) -> Optional[str]:
        """
        Read the last line of a file inside a pod.

        Args:
            pod_name: Pod to read from
            log_file: Path of the status log inside the pod

        Returns:
            The last line, or None if it could not be read
        """
        pass

    @abstractmethod
    def delete_pod(self, pod_name: str) -> bool:
        """
        Delete a pod, blocking until the control plane answers.

        Args:
            pod_name: Pod to delete

        Returns:
            True if the pod was deleted, False if the deletion failed
        """
        pass
