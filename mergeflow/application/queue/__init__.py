"""Job queues and the queue manager."""

from .job_queue import JobQueue, QueueSettings, priority_key
from .manager import QueueManager, DEFAULT_QUEUES

__all__ = ["JobQueue", "QueueSettings", "QueueManager", "DEFAULT_QUEUES", "priority_key"]
