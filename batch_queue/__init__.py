"""
Pluggable batch execution: submit shell commands to EC2 instances or
Kubernetes pods and reap their results through one interface.
"""

from batch_queue.core.constants import INVALID_JOB_ID, QueueType
from batch_queue.execution.job_info import JobInfo, ResourceRequest
from batch_queue.queue import BatchQueue

__all__ = [
    "BatchQueue",
    "QueueType",
    "JobInfo",
    "ResourceRequest",
    "INVALID_JOB_ID",
]
