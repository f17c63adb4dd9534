from __future__ import annotations

import sys

import structlog
import uvicorn
from pydantic import ValidationError

from status_dashboard.app import create_app
from status_dashboard.config import load_config
from status_dashboard.logging_setup import configure_logging


logger = structlog.get_logger(__name__)


def main() -> None:
    try:
        config = load_config()
    except (ValueError, ValidationError) as exc:
        configure_logging()
        logger.error("Invalid configuration", error=str(exc))
        sys.exit(2)

    configure_logging(config.log_level)
    app = create_app(config)
    # uvicorn handles SIGINT/SIGTERM: stop accepting, drain in-flight responses, exit 0.
    # A bind failure aborts startup with a non-zero exit.
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
