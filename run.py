"""
Run script for starting the call orchestration server.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL]
"""

import argparse
import sys

import uvicorn

from callflow.config.logging_config import configure_logging
from callflow.config.settings import get_settings

settings = get_settings()
logger = configure_logging(settings.log_level)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Start the call orchestration server")
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help="Port to run the server on (default: 8000 or PORT env var)",
    )
    parser.add_argument(
        "--host",
        default=settings.host,
        help="Host to bind the server to (default: 0.0.0.0 or HOST env var)",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO or LOG_LEVEL env var)",
    )
    return parser.parse_args()


def main():
    """Main entry point for starting the server."""
    args = parse_args()

    if not settings.telephony_configured:
        logger.error("Exotel credentials are not fully configured")
        print("Error: EXOTEL_ACCOUNT_SID, EXOTEL_API_KEY, EXOTEL_API_TOKEN and EXOTEL_CALLER_ID are required")
        sys.exit(1)

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    logger.info(f"Log level: {args.log_level}")
    logger.info(f"Provider webhooks will call back to {settings.public_base_url}")
    logger.info(f"Voice API key configured: {settings.voice_api_configured}")

    uvicorn.run(
        "callflow.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
