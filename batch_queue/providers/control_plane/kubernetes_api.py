"""
Control plane access through the Kubernetes Python client.

Same queries as the kubectl provider without shelling out, for controllers
running inside the cluster.
"""

from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from batch_queue.core.config import settings
from batch_queue.core.telemetry import get_logger
from .interface import ControlPlaneInterface, PodStatus

logger = get_logger(__name__)

DEFAULT_NAMESPACE = "default"
SERVICE_ACCOUNT_NAMESPACE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


class KubernetesApiControlPlane(ControlPlaneInterface):
    """Control plane access through the Kubernetes API."""

    def __init__(self, namespace: Optional[str] = None):
        """Initialize K8s client."""
        # Load K8s config (in-cluster or kubeconfig)
        try:
            config.load_incluster_config()
            in_cluster = True
        except config.ConfigException:
            config.load_kube_config()
            in_cluster = False

        self.core_v1 = client.CoreV1Api()
        self.namespace = (
            namespace or settings.k8s_namespace or self._default_namespace(in_cluster)
        )
        self.request_timeout = settings.k8s_query_timeout_seconds

    @staticmethod
    def _default_namespace(in_cluster: bool) -> str:
        """
        Namespace kubectl would use without -n.

        Always explicit, so the helper script's kubectl create lands where
        this client looks.
        """
        if in_cluster:
            try:
                with open(SERVICE_ACCOUNT_NAMESPACE) as f:
                    return f.read().strip() or DEFAULT_NAMESPACE
            except OSError:
                return DEFAULT_NAMESPACE

        _, active_context = config.list_kube_config_contexts()
        context = (active_context or {}).get("context") or {}
        return context.get("namespace") or DEFAULT_NAMESPACE

    def list_pods(self, run_id: str) -> List[PodStatus]:
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=self.namespace,
                label_selector=f"app={run_id}",
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            logger.warning(f"Failed to list pods for run {run_id}: {e}")
            return []

        return [
            PodStatus(name=pod.metadata.name, phase=pod.status.phase)
            for pod in pods.items
        ]

    def read_status_line(self, pod_name: str, log_file: str) -> Optional[str]:
        try:
            output = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                pod_name,
                self.namespace,
                command=["tail", "-1", log_file],
                stderr=False,
                stdin=False,
                stdout=True,
                tty=False,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            logger.warning(f"Failed to read {log_file} in pod {pod_name}: {e}")
            return None

        lines = (output or "").strip().splitlines()
        return lines[-1] if lines else None

    def delete_pod(self, pod_name: str) -> bool:
        logger.info(f"Deleting pod {pod_name} in namespace {self.namespace}")
        try:
            self.core_v1.delete_namespaced_pod(
                name=pod_name, namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                logger.info(f"Pod {pod_name} already deleted or not found")
            else:
                logger.warning(f"Failed to delete pod {pod_name}: {e}")
            return False

        logger.info(f"Deleted pod {pod_name}")
        return True
