"""Server entrypoint for deployment (uvicorn)."""
import logging
import os

import uvicorn

from config import LOG_LEVEL

logger = logging.getLogger(__name__)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    logger.info(f"Starting uvicorn server on port {port}")

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        log_level=LOG_LEVEL.lower(),
        # RequestLoggingMiddleware already logs every request
        access_log=False,
    )
