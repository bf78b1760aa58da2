"""
Job queue, pipeline context, and scheduling for the media import pipeline.
"""

from .context import PipelineContext
from .scheduled import ScheduledTasks
from .task_queue import CommandQueue, JobContext, JobHandler

__all__ = ["CommandQueue", "JobContext", "JobHandler", "PipelineContext", "ScheduledTasks"]
