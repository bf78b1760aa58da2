"""
Deduplication and reconciliation of catalog records.
"""

from .engine import ReconcileReport, ReconciliationEngine

__all__ = ["ReconcileReport", "ReconciliationEngine"]
