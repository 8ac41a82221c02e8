"""listingflow API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.
"""

import logging

from listingflow.api import create_app
from listingflow.core.settings import get_settings

logger = logging.getLogger(__name__)

# uvicorn references this as listingflow.api.main:app
app = create_app(get_settings())


def run() -> None:
    """Run the API server using uvicorn.

    Called by the listingflow-api console script defined in pyproject.toml.
    """
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting listingflow API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "listingflow.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
