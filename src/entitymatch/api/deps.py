"""
FastAPI dependencies for the API.

Provides:
- The engine service stored on the application at startup
- The acting reviewer taken from the X-User-ID header
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from entitymatch.service import EntityMatchService

logger = logging.getLogger(__name__)


def get_service(request: Request) -> EntityMatchService:
    """Get the service created during app startup."""
    return request.app.state.service


def get_actor_id(x_user_id: Annotated[Optional[str], Header()] = None) -> str:
    """
    Identify the admin making a review decision.

    Authentication happens upstream; this only requires the caller to
    say who it is acting for.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required",
        )
    return x_user_id.strip()


Service = Annotated[EntityMatchService, Depends(get_service)]
ActorId = Annotated[str, Depends(get_actor_id)]
