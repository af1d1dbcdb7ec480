"""
Batch queue backends: one EC2 instance per job, or one pod per job.
"""

from batch_queue.execution.backends.base import BatchQueueBackend
from batch_queue.execution.backends.amazon import AmazonBackend
from batch_queue.execution.backends.k8s import K8sBackend
from batch_queue.execution.backends.factory import get_backend

__all__ = ["BatchQueueBackend", "AmazonBackend", "K8sBackend", "get_backend"]
