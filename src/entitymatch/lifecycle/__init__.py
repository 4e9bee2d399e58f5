"""
Identity lifecycle operations.

Provides operations for:
- Merge: Fold a duplicate identity into a primary one
"""

from entitymatch.lifecycle.merge import FieldConflict, MergeEngine, MergePreview

__all__ = [
    "FieldConflict",
    "MergeEngine",
    "MergePreview",
]
