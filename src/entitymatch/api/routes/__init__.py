"""
API route modules.
"""

from entitymatch.api.routes.resolution import router as resolution_router
from entitymatch.api.routes.review import router as review_router
from entitymatch.api.routes.identities import router as identities_router
from entitymatch.api.routes.merge import router as merge_router

__all__ = [
    "resolution_router",
    "review_router",
    "identities_router",
    "merge_router",
]
