import json
import os
import signal
import time

import pytest

from batch_queue.core.constants import INVALID_JOB_ID, QueueType
from batch_queue.core.exceptions import ConfigurationError, SpawnError
from batch_queue.execution.job_info import ResourceRequest
from batch_queue.execution.process import ProcessOutcome
from batch_queue.queue import BatchQueue


def pod_of(queue, job_id):
    return f"{queue.backend.run_id}-{job_id}"


def past():
    return time.time() - 10


class TestK8sSubmit:
    """Tests for job submission on the k8s backend."""

    def test_job_ids_increase_from_one(self, k8s_queue):
        """Test that job ids are 1, 2, 3 in submission order."""
        ids = [k8s_queue.submit(f"echo {i}") for i in range(3)]

        assert ids == [1, 2, 3]
        assert sorted(k8s_queue.job_table) == [1, 2, 3]

    def test_run_id_is_lowercase_and_stable(self, k8s_queue):
        """Test that one run id is generated per queue and reused."""
        k8s_queue.submit("echo a")
        run_id = k8s_queue.backend.run_id
        k8s_queue.submit("echo b")

        assert run_id == run_id.lower()
        assert k8s_queue.backend.run_id == run_id

    def test_submit_writes_pod_manifest(self, k8s_queue, in_tmp_dir):
        """Test that submit writes <pod>.json with label, image and defaults."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)

        with open(in_tmp_dir / f"{name}.json") as f:
            manifest = json.load(f)

        assert manifest["metadata"]["name"] == name
        assert manifest["metadata"]["labels"]["app"] == k8s_queue.backend.run_id
        assert manifest["spec"]["restartPolicy"] == "Never"

        container = manifest["spec"]["containers"][0]
        assert container["image"] == "ubuntu:22.04"
        assert container["resources"]["requests"] == {"cpu": "500m", "memory": "1024Mi"}
        assert container["resources"]["limits"] == {"cpu": "500m", "memory": "1024Mi"}
        assert "pod_created" in container["args"][0]
        assert f"{name}.log" in container["args"][0]

    def test_submit_with_resources(self, k8s_queue, in_tmp_dir):
        """Test that a complete resource request becomes request and limit."""
        job_id = k8s_queue.submit(
            "echo hi", resources=ResourceRequest(cores=2, memory=2048)
        )

        with open(in_tmp_dir / f"{pod_of(k8s_queue, job_id)}.json") as f:
            container = json.load(f)["spec"]["containers"][0]

        assert container["resources"]["requests"] == {"cpu": "2000m", "memory": "2048Mi"}
        assert container["resources"]["limits"] == {"cpu": "2000m", "memory": "2048Mi"}

    def test_submit_env_goes_into_pod(self, k8s_queue, in_tmp_dir):
        """Test that the job environment is set on the container."""
        job_id = k8s_queue.submit("echo $GREETING", env={"GREETING": "hello"})

        with open(in_tmp_dir / f"{pod_of(k8s_queue, job_id)}.json") as f:
            container = json.load(f)["spec"]["containers"][0]

        assert container["env"] == [{"name": "GREETING", "value": "hello"}]

    def test_submit_spawns_create_action(self, k8s_queue, process_table):
        """Test the argv of the create action."""
        job_id = k8s_queue.submit("wc -l in.txt > out.txt", ["in.txt", "b.txt"], ["out.txt"])

        argv = process_table.spawn.call_args[0][0]
        assert argv == [
            "/bin/bash",
            k8s_queue.backend.script_path,
            "create",
            pod_of(k8s_queue, job_id),
            "1",
            "in.txt,b.txt",
            "wc -l in.txt > out.txt",
            "out.txt",
        ]

    def test_submit_writes_helper_script_and_failure_log(self, k8s_queue, in_tmp_dir):
        """Test that the helper script is executable and the failure log exists."""
        k8s_queue.submit("echo hi")
        backend = k8s_queue.backend

        assert os.access(in_tmp_dir / backend.script_path, os.X_OK)
        assert (in_tmp_dir / backend.failure_log.path).exists()

    def test_submit_records_job(self, k8s_queue):
        """Test that a submitted job is registered but not yet running."""
        job_id = k8s_queue.submit("echo hi")

        info = k8s_queue.job_table[job_id]
        assert info.started == info.submitted
        assert info.finished is None

        record = k8s_queue.backend.job_records[job_id]
        assert record.command == "echo hi"
        assert record.is_running is False
        assert record.create_process is not None

    def test_helper_script_uses_control_plane_namespace(
        self, k8s_queue, control_plane, in_tmp_dir
    ):
        """Test that the helper creates pods where the control plane looks."""
        control_plane.namespace = "team-a"

        k8s_queue.submit("echo hi")

        script = (in_tmp_dir / k8s_queue.backend.script_path).read_text()
        assert "namespace=team-a" in script

    def test_submit_without_image(self, in_tmp_dir):
        """Test that submitting without an image is a configuration error."""
        queue = BatchQueue.create(QueueType.K8S)

        with pytest.raises(ConfigurationError):
            queue.submit("echo hi")

    def test_spawn_failure_returns_invalid_job_id(self, k8s_queue, process_table):
        """Test that a create action that cannot start is not registered."""
        process_table.spawn.side_effect = OSError("no bash")

        assert k8s_queue.submit("echo hi") == INVALID_JOB_ID
        assert k8s_queue.job_table == {}
        assert k8s_queue.backend.job_records == {}


class TestK8sWait:
    """Tests for the k8s reconcile loop."""

    def test_wait_without_jobs(self, k8s_queue):
        """Test that wait returns None at once when nothing is tracked."""
        assert k8s_queue.wait() is None

    def test_job_done_within_two_iterations(self, k8s_queue, control_plane, process_table):
        """Test pod_created then job_done finishing the job normally."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = [
            "1700000000,pod_created",
            "1700000005,job_done",
        ]

        info = k8s_queue.wait()

        assert info.job_id == job_id
        assert info.exited_normally is True
        assert info.exit_code == 0
        assert info.finished is not None
        assert control_plane.list_calls == 2

        # Exec action started once, after pod_created
        assert process_table.spawn.call_count == 2
        assert process_table.spawn.call_args[0][0][2] == "exec"

        # Finalized: pod deleted, registry and records emptied
        assert control_plane.deleted == [name]
        assert k8s_queue.job_table == {}
        assert k8s_queue.backend.job_records == {}

    def test_exec_started_only_once(self, k8s_queue, control_plane, process_table):
        """Test that a pod still at pod_created does not get a second exec."""
        job_id = k8s_queue.submit("sleep 100")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = ["1700000000,pod_created"]

        assert k8s_queue.wait(stoptime=past()) is None
        assert k8s_queue.wait(stoptime=past()) is None

        assert process_table.spawn.call_count == 2
        assert k8s_queue.backend.job_records[job_id].is_running is True

    def test_exec_failed_reports_exit_code(self, k8s_queue, control_plane):
        """Test that exec_failed,<code> is an abnormal exit with that code."""
        job_id = k8s_queue.submit("false")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = ["1700000000,pod_created", "1700000003,exec_failed,3"]

        info = k8s_queue.wait()

        assert info.job_id == job_id
        assert info.exited_normally is False
        assert info.exit_code == 3

    def test_failed_pod(self, k8s_queue, control_plane):
        """Test that a pod in phase Failed finalizes the job with exit 1."""
        job_id = k8s_queue.submit("echo hi")
        control_plane.phases[pod_of(k8s_queue, job_id)] = "Failed"

        info = k8s_queue.wait()

        assert info.job_id == job_id
        assert info.exited_normally is False
        assert info.exit_code == 1
        assert control_plane.deleted == [pod_of(k8s_queue, job_id)]

    def test_failed_pods_checked_before_status(self, k8s_queue, control_plane):
        """Test that a Failed pod wins over a finished pod in the same pass."""
        first = k8s_queue.submit("echo one")
        second = k8s_queue.submit("echo two")
        control_plane.phases[pod_of(k8s_queue, first)] = "Running"
        control_plane.status_lines[pod_of(k8s_queue, first)] = ["1700000000,job_done"]
        control_plane.phases[pod_of(k8s_queue, second)] = "Failed"

        assert k8s_queue.wait().job_id == second
        assert k8s_queue.wait().job_id == first

    def test_failure_log_entry(self, k8s_queue):
        """Test that a creation failure is reported with its description and code."""
        job_id = k8s_queue.submit("echo hi")
        with open(k8s_queue.backend.failure_log.path, "a") as f:
            f.write(f"{job_id},kubectl create failed: quota, exceeded,7\n")

        info = k8s_queue.wait()

        assert info.job_id == job_id
        assert info.exited_normally is False
        assert info.exit_code == 7
        assert info.failure_info == "kubectl create failed: quota, exceeded"

    def test_failure_log_entry_delivered_once(self, k8s_queue, control_plane):
        """Test that a repeated failure entry does not finalize another job."""
        first = k8s_queue.submit("echo one")
        second = k8s_queue.submit("echo two")
        with open(k8s_queue.backend.failure_log.path, "a") as f:
            f.write(f"{first},pod never started,1\n")
            f.write(f"{first},pod never started,1\n")

        assert k8s_queue.wait().job_id == first
        assert k8s_queue.wait(stoptime=past()) is None
        assert list(k8s_queue.job_table) == [second]

    def test_past_deadline_leaves_state_unchanged(self, k8s_queue, control_plane):
        """Test that a timed out wait returns None without touching jobs."""
        job_id = k8s_queue.submit("echo hi")
        control_plane.phases[pod_of(k8s_queue, job_id)] = "Pending"
        before = k8s_queue.job_table[job_id].model_copy()

        assert k8s_queue.wait(stoptime=past()) is None

        assert k8s_queue.job_table[job_id] == before
        assert job_id in k8s_queue.backend.job_records
        assert control_plane.deleted == []

    def test_unreadable_status_keeps_waiting(self, k8s_queue, control_plane):
        """Test that a running pod without a status line is still running."""
        job_id = k8s_queue.submit("echo hi")
        control_plane.phases[pod_of(k8s_queue, job_id)] = "Running"

        assert k8s_queue.wait(stoptime=past()) is None
        assert job_id in k8s_queue.job_table

    def test_untracked_pods_ignored(self, k8s_queue, control_plane):
        """Test that pods of this run with unknown job ids are ignored."""
        k8s_queue.submit("echo hi")
        control_plane.phases[pod_of(k8s_queue, 99)] = "Failed"

        assert k8s_queue.wait(stoptime=past()) is None
        assert control_plane.deleted == []

    def test_each_job_returned_once(self, k8s_queue, control_plane):
        """Test that two finished jobs come back from two separate waits."""
        ids = [k8s_queue.submit("echo hi") for _ in range(2)]
        for job_id in ids:
            control_plane.phases[pod_of(k8s_queue, job_id)] = "Running"
            control_plane.status_lines[pod_of(k8s_queue, job_id)] = ["1700000000,job_done"]

        returned = [k8s_queue.wait().job_id, k8s_queue.wait().job_id]

        assert returned == ids
        assert k8s_queue.wait() is None

    def test_helpers_reaped_on_completion(self, k8s_queue, control_plane, process_table):
        """Test that create and exec helpers are both waited for."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = ["1700000000,pod_created", "1700000001,job_done"]

        k8s_queue.wait()

        assert process_table.wait.call_count == 2
        process_table.kill.assert_not_called()

    def test_stuck_helper_is_killed(self, k8s_queue, control_plane, process_table):
        """Test that a helper still running after the reap timeout gets SIGKILL."""
        job_id = k8s_queue.submit("echo hi")
        control_plane.phases[pod_of(k8s_queue, job_id)] = "Failed"
        process_table.wait.side_effect = [None, ProcessOutcome(pid=1000, returncode=-9)]

        k8s_queue.wait()

        handle = k8s_queue.backend.processes.kill.call_args[0][0]
        assert handle.pid == 1000
        process_table.kill.assert_called_once_with(handle, signal.SIGKILL)

    def test_exec_exit_without_status(self, k8s_queue, control_plane):
        """Test that an exec action dying before it reports fails the job."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = ["1700000000,pod_created"]

        assert k8s_queue.wait(stoptime=past()) is None
        exec_process = k8s_queue.backend.job_records[job_id].exec_process
        exec_process.poll.return_value = ProcessOutcome(pid=exec_process.pid, returncode=1)

        info = k8s_queue.wait(stoptime=past())

        assert info.job_id == job_id
        assert info.exited_normally is False
        assert info.exit_code == 1
        assert "without reporting a status" in info.failure_info
        assert control_plane.deleted == [name]

    def test_exec_killed_without_status(self, k8s_queue, control_plane):
        """Test that an exec action killed by a signal still fails the job."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = ["1700000000,pod_created"]

        k8s_queue.wait(stoptime=past())
        exec_process = k8s_queue.backend.job_records[job_id].exec_process
        exec_process.poll.return_value = ProcessOutcome(pid=exec_process.pid, returncode=-9)

        info = k8s_queue.wait(stoptime=past())

        assert info.exited_normally is False
        assert info.exit_code == 1

    def test_exec_status_written_just_before_exit(self, k8s_queue, control_plane):
        """Test that a final status line read after the exec exits is honoured."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = [
            "1700000000,pod_created",
            "1700000000,pod_created",
            "1700000004,job_done",
        ]

        k8s_queue.wait(stoptime=past())
        exec_process = k8s_queue.backend.job_records[job_id].exec_process
        exec_process.poll.return_value = ProcessOutcome(pid=exec_process.pid, returncode=0)

        info = k8s_queue.wait(stoptime=past())

        assert info.exited_normally is True
        assert info.exit_code == 0

    def test_exec_spawn_failure_is_fatal(self, k8s_queue, control_plane, process_table):
        """Test that an exec action that cannot start raises SpawnError."""
        job_id = k8s_queue.submit("echo hi")
        name = pod_of(k8s_queue, job_id)
        control_plane.phases[name] = "Running"
        control_plane.status_lines[name] = ["1700000000,pod_created"]
        process_table.spawn.side_effect = OSError("no bash")

        with pytest.raises(SpawnError):
            k8s_queue.wait(stoptime=past())


class TestK8sRemove:
    """Tests for removing k8s jobs."""

    def test_remove_deletes_pod_and_forgets_job(self, k8s_queue, control_plane):
        """Test that removing job n leaves job n+1 intact."""
        first = k8s_queue.submit("echo one")
        second = k8s_queue.submit("echo two")
        second_record = k8s_queue.backend.job_records[second]

        assert k8s_queue.remove(first) is True

        assert control_plane.deleted == [pod_of(k8s_queue, first)]
        assert list(k8s_queue.job_table) == [second]
        assert k8s_queue.backend.job_records == {second: second_record}

    def test_remove_terminates_helpers(self, k8s_queue, process_table):
        """Test that the create helper of a removed job is terminated."""
        job_id = k8s_queue.submit("echo hi")
        handle = k8s_queue.backend.job_records[job_id].create_process

        k8s_queue.remove(job_id)

        process_table.kill.assert_called_once_with(handle)
        process_table.wait.assert_called_once()

    def test_remove_stops_helpers_before_deleting_pod(
        self, k8s_queue, control_plane, process_table, monkeypatch
    ):
        """Test that an in-flight create is stopped before its pod is deleted."""
        events = []
        delete_pod = control_plane.delete_pod

        def record_delete(name):
            events.append("delete")
            return delete_pod(name)

        monkeypatch.setattr(control_plane, "delete_pod", record_delete)
        process_table.kill.side_effect = lambda *args: events.append("kill")
        job_id = k8s_queue.submit("echo hi")

        k8s_queue.remove(job_id)

        assert events == ["kill", "delete"]

    def test_remove_unknown_job(self, k8s_queue, control_plane):
        """Test that removing an unknown job id is a no-op."""
        k8s_queue.submit("echo hi")

        assert k8s_queue.remove(42) is False
        assert control_plane.deleted == []
        assert list(k8s_queue.job_table) == [1]

    def test_removed_job_never_returned(self, k8s_queue, control_plane):
        """Test that wait ignores a removed job whose pod is still listed."""
        first = k8s_queue.submit("echo one")
        second = k8s_queue.submit("echo two")
        k8s_queue.remove(first)

        # Stale listing still shows the removed pod as finished
        control_plane.phases[pod_of(k8s_queue, first)] = "Running"
        control_plane.status_lines[pod_of(k8s_queue, first)] = ["1700000000,job_done"]
        control_plane.phases[pod_of(k8s_queue, second)] = "Running"
        control_plane.status_lines[pod_of(k8s_queue, second)] = ["1700000000,job_done"]

        assert k8s_queue.wait().job_id == second
        assert k8s_queue.wait() is None


class TestK8sLifecycle:
    """Tests for create, free and options on the k8s backend."""

    def test_create_sets_logfile_and_features(self, k8s_queue):
        """Test the queue log file and features set at creation."""
        assert k8s_queue.logfile == "k8s.log"
        assert k8s_queue.features["batch_log_name"] == "%s.k8slog"
        assert k8s_queue.features["batch_log_transactions"] == "%s.tr"

    def test_port_is_zero(self, k8s_queue):
        """Test that the k8s backend does not listen on a port."""
        assert k8s_queue.port() == 0

    def test_free_removes_run_files(self, k8s_queue, in_tmp_dir):
        """Test that free removes manifests, helper script and failure log."""
        k8s_queue.submit("echo one")
        k8s_queue.submit("echo two")
        assert len(list(in_tmp_dir.iterdir())) == 4

        k8s_queue.free()

        assert list(in_tmp_dir.iterdir()) == []

    def test_free_before_submit(self, in_tmp_dir):
        """Test that freeing an unused queue does nothing."""
        queue = BatchQueue.create(QueueType.K8S)

        queue.free()

    def test_empty_image_rejected(self, k8s_queue):
        """Test that an empty image is rejected and the old one kept."""
        with pytest.raises(ConfigurationError):
            k8s_queue.option_update("k8s-image", "  ")

        assert k8s_queue.get_option("k8s-image") == "ubuntu:22.04"

    def test_image_update_used_for_next_pod(self, k8s_queue, in_tmp_dir):
        """Test that updating the image affects pods submitted afterwards."""
        k8s_queue.option_update("k8s-image", "alpine:3.19")
        job_id = k8s_queue.submit("echo hi")

        with open(in_tmp_dir / f"{pod_of(k8s_queue, job_id)}.json") as f:
            container = json.load(f)["spec"]["containers"][0]

        assert container["image"] == "alpine:3.19"
