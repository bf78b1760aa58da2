"""
Configuration package for the media import pipeline.
"""

from .settings import AppConfig, ensure_directories

__all__ = ["AppConfig", "ensure_directories"]
