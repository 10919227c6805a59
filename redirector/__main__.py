"""Process entry point: ``python -m redirector``."""

import sys

import uvicorn

from redirector.config import load_settings
from redirector.dependencies import setup_logger
from redirector.exceptions import ConfigurationError
from redirector.main import create_app


def main() -> int:
    logger = setup_logger("INFO")

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        logger.critical(f"Refusing to start: {exc}")
        return 1

    setup_logger(settings.LOG_LEVEL)
    app = create_app(settings)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.BIND_ADDRESS,
            port=settings.BIND_PORT,
            log_level=settings.LOG_LEVEL.lower(),
        )
    )
    server.run()

    if app.state.fatal_error is not None:
        logger.critical(f"Exiting after aggregator failure: {app.state.fatal_error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
