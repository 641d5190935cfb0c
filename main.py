"""
Compound Risk service
Entry point for the FastAPI application
"""

import logging

import uvicorn

from compound_risk.api import build_services, create_app
from compound_risk.config import get_settings
from compound_risk.utils.logging_config import setup_logging

settings = get_settings()

# Logging must be configured before the services log anything
setup_logging(
    level=settings.log_level,
    json_format=settings.log_format_json,
    log_file=settings.log_file,
    max_bytes=settings.log_max_bytes,
    backup_count=settings.log_backup_count,
)

logger = logging.getLogger(__name__)

app = create_app(build_services(settings))

if __name__ == "__main__":
    logger.info("Starting Compound Risk service")
    logger.info(
        f"Environment: {settings.env}, "
        f"Log level: {settings.log_level}, "
        f"Format: {'JSON' if settings.log_format_json else 'Human-readable'}"
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
