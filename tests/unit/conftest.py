import itertools
from typing import Dict, List

import pytest
from unittest.mock import MagicMock

from batch_queue.core.constants import QueueType
from batch_queue.execution.process import ProcessOutcome, ProcessTable, SpawnedProcess
from batch_queue.providers.control_plane import ControlPlaneInterface, PodStatus
from batch_queue.queue import BatchQueue


class FakeControlPlane(ControlPlaneInterface):
    """Control plane whose pods and status logs are scripted by the test."""

    def __init__(self):
        # pod name -> phase, in listing order
        self.phases: Dict[str, str] = {}
        # pod name -> successive last lines of the status log
        self.status_lines: Dict[str, List[str]] = {}
        self.deleted: List[str] = []
        self.list_calls = 0

    def list_pods(self, run_id):
        self.list_calls += 1
        return [
            PodStatus(name=name, phase=phase)
            for name, phase in self.phases.items()
            if name.startswith(run_id)
        ]

    def read_status_line(self, pod_name, log_file):
        lines = self.status_lines.get(pod_name)
        if not lines:
            return None
        # Advance until the last line, which then sticks
        return lines.pop(0) if len(lines) > 1 else lines[0]

    def delete_pod(self, pod_name):
        self.deleted.append(pod_name)
        self.phases.pop(pod_name, None)
        return True


@pytest.fixture
def in_tmp_dir(tmp_path, monkeypatch):
    """Run the test from an empty working directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def control_plane():
    return FakeControlPlane()


@pytest.fixture
def process_table():
    """Process table that never starts real helper scripts."""
    table = MagicMock(spec=ProcessTable)
    pids = itertools.count(1000)

    def spawn(argv, env=None):
        handle = MagicMock(spec=SpawnedProcess)
        handle.pid = next(pids)
        # Still running until a test says otherwise
        handle.poll.return_value = None
        return handle

    table.spawn.side_effect = spawn
    table.wait.side_effect = lambda handle, timeout=None: ProcessOutcome(
        pid=handle.pid, returncode=0
    )
    return table


@pytest.fixture
def k8s_queue(in_tmp_dir, control_plane, process_table):
    """K8s queue wired to the fake control plane and process table."""
    queue = BatchQueue.create(QueueType.K8S, {"k8s-image": "ubuntu:22.04"})
    queue.backend.control_plane = control_plane
    queue.backend.processes = process_table
    queue.backend.poll_interval_seconds = 0
    return queue
