from typing import TYPE_CHECKING

from batch_queue.core.constants import QueueType
from batch_queue.execution.backends.amazon import AmazonBackend
from batch_queue.execution.backends.base import BatchQueueBackend
from batch_queue.execution.backends.k8s import K8sBackend

if TYPE_CHECKING:
    from batch_queue.queue import BatchQueue


def get_backend(queue_type: QueueType, queue: "BatchQueue") -> BatchQueueBackend:
    """
    Get the backend for a queue type.

    Args:
        queue_type: Which backend to create
        queue: Queue that owns the backend

    Returns:
        AmazonBackend or K8sBackend bound to the queue
    """
    match QueueType(queue_type):
        case QueueType.AMAZON:
            return AmazonBackend(queue)
        case QueueType.K8S:
            return K8sBackend(queue)
