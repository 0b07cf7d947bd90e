# ABOUTME: Teardrop entry point - starts the webhook server and the switch
# ABOUTME: Validates configuration and runs uvicorn

import logging
import sys

import uvicorn

from .config import ConfigError, get_settings
from .webhook import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Main entry point for Teardrop."""
    logger.info("Starting Teardrop - dead man's switch")

    # Load and validate settings
    try:
        settings = get_settings()
    except ConfigError as e:
        logger.error("Configuration errors:")
        for problem in e.problems:
            logger.error(f"  - {problem}")
        sys.exit(1)

    # Check for configuration errors
    errors = settings.validate_ready()
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)

    logger.info(f"Check-in every {settings.switch.cadence}, response ttl {settings.switch.ttl}")
    logger.info(f"Escalation after {settings.switch.max_undelivered} missed check-ins")
    logger.info(f"Operator: {settings.twilio.to_number}")
    logger.info(f"Status callback path: {settings.twilio.callback_uri}")
    logger.info(f"Response path: {settings.twilio.response_uri}")

    # Create and run the app
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
