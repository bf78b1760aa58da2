"""
Domain exceptions raised by the pipeline.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base error for the media import pipeline."""


class ConfigurationError(PipelineError):
    """Raised when configuration values are missing or invalid."""
