"""
Checkpoint storage.
"""

from .progress_store import FileProgressStore, ProgressStore

__all__ = [
    "ProgressStore",
    "FileProgressStore",
]
