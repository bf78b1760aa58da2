"""
Entity records and typed outcomes for the media import pipeline.
"""

from .entities import (
    DEFAULT_PRIORITIES,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    ContentRecord,
    Episode,
    EpisodeAssociation,
    EpisodeCrossRef,
    Job,
    JobKind,
    PlacementRecord,
    ScheduledTask,
    Series,
    StorageLocation,
    job_signature,
    utc_timestamp,
)
from .errors import ConfigurationError, PipelineError
from .outcomes import FailureKind, OperationResult, Outcome

__all__ = [
    "DEFAULT_PRIORITIES",
    "JOB_FAILED",
    "JOB_PENDING",
    "JOB_RUNNING",
    "PRIORITY_CRITICAL",
    "PRIORITY_HIGH",
    "PRIORITY_LOW",
    "PRIORITY_NORMAL",
    "ConfigurationError",
    "ContentRecord",
    "Episode",
    "EpisodeAssociation",
    "EpisodeCrossRef",
    "FailureKind",
    "Job",
    "JobKind",
    "OperationResult",
    "Outcome",
    "PipelineError",
    "PlacementRecord",
    "ScheduledTask",
    "Series",
    "StorageLocation",
    "job_signature",
    "utc_timestamp",
]
