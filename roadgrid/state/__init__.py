"""
State management utilities for the roadgrid routing substrate.

This package provides ingest run tracking so failed runs can be diagnosed
and re-run.
"""

from .state_store import (
    StateStore,
    IngestRun,
    ProcessingStatus,
    get_state_store,
    create_ingest_run,
)

__all__ = [
    "StateStore",
    "IngestRun",
    "ProcessingStatus",
    "get_state_store",
    "create_ingest_run",
]
