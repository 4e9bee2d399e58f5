"""
API module for the entity matching engine.

Provides REST API routes for:
- Mention resolution and processing
- Review queue (approve, correct, reject)
- Identity administration
- Merging duplicates
"""

from entitymatch.api.app import create_app

__all__ = ["create_app"]
