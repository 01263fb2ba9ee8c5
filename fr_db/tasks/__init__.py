"""Background maintenance tasks for fr_db.

Tasks are generators: they yield whenever they reach a point where the job
runner may hand the thread to other work or stop for the time being. Progress
that must survive a stop is persisted before such a point.
"""

from .base import BackgroundTask, TaskContext
from .stale_images import PathExclusionCache, StaleImagesRemovalTask

__all__ = ["BackgroundTask", "TaskContext", "PathExclusionCache", "StaleImagesRemovalTask"]
