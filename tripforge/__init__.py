"""tripforge: asynchronous itinerary generation and processing."""

from .dispatch import DispatchController, DispatchResult
from .jobqueue import get_job_queue
from .monitor import StuckJobMonitor
from .persistence import Itinerary, ItineraryRequest, ProcessingStatus, get_store
from .pipeline import ProcessingPipeline
from .service import ProcessingService
from .tasks import BackgroundTaskRunner
from .worker import WorkerPool

__version__ = "0.1.0"
__all__ = [
    "BackgroundTaskRunner",
    "DispatchController",
    "DispatchResult",
    "Itinerary",
    "ItineraryRequest",
    "ProcessingPipeline",
    "ProcessingService",
    "ProcessingStatus",
    "StuckJobMonitor",
    "WorkerPool",
    "get_job_queue",
    "get_store",
]
