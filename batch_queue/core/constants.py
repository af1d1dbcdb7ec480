from enum import Enum


class QueueType(str, Enum):
    """Batch queue backends."""

    AMAZON = "amazon"
    K8S = "k8s"


class ControlPlaneType(str, Enum):
    """Ways of talking to the orchestration control plane."""

    KUBECTL = "kubectl"
    API = "api"


class PodJobState(str, Enum):
    """Lifecycle phases written to the in-pod status log."""

    POD_CREATED = "pod_created"
    JOB_DONE = "job_done"
    EXEC_FAILED = "exec_failed"


class PodPhase(str, Enum):
    """Pod phases reported by the control plane."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


# Returned by submit when the helper process could not be started
INVALID_JOB_ID = -1

# Options understood by every backend
COMMON_OPTIONS = frozenset({"batch-options", "working-dir", "batch-log-name"})
