"""
Pod naming and manifest generation for the k8s batch queue.

The manifest is rendered from a Jinja2 template with every value passed
through tojson, parsed back with PyYAML and written out as JSON for
`kubectl create -f`.
"""

import json
import shlex
from typing import Any, Dict, Mapping, Optional

import yaml

from batch_queue.core.constants import PodJobState
from batch_queue.execution.job_info import ResourceRequest
from batch_queue.execution.templates import render

POD_TEMPLATE = "pod.yaml.j2"

# Requested when the caller does not say otherwise
DEFAULT_CPU_MILLICORES = 500
DEFAULT_MEMORY_MB = 1024


def pod_name(run_id: str, job_id: int) -> str:
    return f"{run_id}-{job_id}"


def job_id_from_pod_name(name: str) -> Optional[int]:
    """Recover the job id from a pod name, None if it is not one of ours."""
    _, sep, suffix = name.rpartition("-")
    if not sep or not suffix.isdigit():
        return None
    return int(suffix)


def status_log_name(name: str) -> str:
    """In-pod status log of a pod."""
    return f"{name}.log"


def resource_limits(resources: Optional[ResourceRequest] = None) -> Dict[str, str]:
    """
    CPU and memory used as both request and limit.

    Args:
        resources: Requested resources; incomplete requests get the defaults

    Returns:
        Dict with "cpu" ("500m" style) and "memory" ("1024Mi" style)
    """
    if resources is not None and resources.is_complete:
        cpu = resources.cores * 1000
        memory = resources.memory
    else:
        cpu = DEFAULT_CPU_MILLICORES
        memory = DEFAULT_MEMORY_MB

    return {"cpu": f"{cpu}m", "memory": f"{memory}Mi"}


def bootstrap_command(name: str) -> str:
    """Container entrypoint: write the first status line, then idle."""
    log_file = shlex.quote(status_log_name(name))
    return (
        f'echo "$(date +%s),{PodJobState.POD_CREATED.value}" > {log_file} ; '
        "tail -f /dev/null"
    )


def build_pod_manifest(
    run_id: str,
    name: str,
    image: str,
    resources: Optional[ResourceRequest] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Build the pod manifest for one job."""
    limits = resource_limits(resources)

    manifest_yaml = render(
        POD_TEMPLATE,
        run_id=run_id,
        pod_name=name,
        image=image,
        bootstrap=bootstrap_command(name),
        env_vars=[{"name": k, "value": str(v)} for k, v in (env or {}).items()],
        cpu=limits["cpu"],
        memory=limits["memory"],
    )

    return yaml.safe_load(manifest_yaml)


def write_pod_manifest(path: str, manifest: Dict[str, Any]) -> None:
    with open(path, "w") as f:
        json.dump(manifest, f, indent=4)
        f.write("\n")
