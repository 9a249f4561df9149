"""
Main entry point for running the reporting API with `python -m app`.
"""
import uvicorn

from app.core.config import settings
from app.core.logging import logger


def main():
    """Run the application with uvicorn."""
    api = settings.api
    logger.info(f"Starting {api.title} on {api.host}:{api.port} ({settings.environment})")
    logger.info(f"Table cache: {settings.cache.backend}, export storage: {settings.storage.backend}")

    uvicorn.run(
        "app.main:app",
        host=api.host,
        port=api.port,
        reload=settings.debug,
        log_level=settings.logging.level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
