from .core_sync import Queue
from .worker import Worker
from .base import StopWorker


__all__ = ["Queue", "Worker", "StopWorker"]
