"""
entitymatch - Entity resolution and deduplication service

FastAPI application entry point.
"""

import logging

import uvicorn

from entitymatch.api import create_app
from entitymatch.config import settings
from entitymatch.service import EntityMatchService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = create_app(EntityMatchService.from_settings(settings))
logger.info(f"entitymatch started ({settings.environment})")


def run() -> None:
    """Run the API with uvicorn."""
    uvicorn.run(
        "entitymatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
