#!/usr/bin/env python3
"""Main entry point for the E-ID automation agent"""

import os
import sys
import argparse
from loguru import logger
from dotenv import load_dotenv

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"


def configure_logging(level: str = "INFO"):
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    logger.add("logs/eid_agent_json_{time}.log", rotation="1 day", retention="7 days", level="DEBUG", serialize=True)


# Configure logger
configure_logging()

# Load environment variables
load_dotenv()

from eid_agent.config.settings import load_settings


def validate_environment(settings) -> bool:
    """Report configuration status. Returns False when the agent cannot run."""
    ok = True
    if not settings.portal_url:
        logger.error("EID_PORTAL_URL is empty")
        ok = False
    else:
        logger.info(f"Portal: {settings.portal_url}")

    if settings.gemini_api_key:
        logger.info(f"Gemini model: {settings.gemini_model}")
    else:
        # Fails open: every message is answered with a retry prompt
        logger.warning("GOOGLE_API_KEY / GEMINI_API_KEY missing; intent oracle disabled")

    logger.info(
        f"Checkpoint timeout {settings.checkpoint_timeout_seconds:.0f}s, "
        f"download settle {settings.download_settle_seconds:.1f}s, "
        f"headless={settings.headless}"
    )
    return ok


def main() -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description='E-ID Automation Agent')
    parser.add_argument('--host', type=str, help='Bind address (default: AGENT_HOST or 0.0.0.0)')
    parser.add_argument('--port', type=int, help='Port (default: AGENT_PORT or 4000)')
    parser.add_argument('--headless', action='store_true', help='Run browser in headless mode (no UI)')
    parser.add_argument('--debug', action='store_true', help='Enable verbose logging')
    parser.add_argument('--config', type=str, help='Path to config.yaml (default: CONFIG_PATH or config/config.yaml)')
    parser.add_argument('--check-env', action='store_true', help='Validate configuration and exit')
    args = parser.parse_args()

    if args.headless:
        os.environ['HEADLESS'] = 'true'
        logger.info("Running in HEADLESS mode (no browser UI)")

    if args.debug:
        configure_logging("DEBUG")
        logger.debug("DEBUG mode enabled (verbose logging active)")

    try:
        settings = load_settings(args.config)
        overrides = {key: value for key, value in (('host', args.host), ('port', args.port)) if value is not None}
        if overrides:
            settings = settings.with_overrides(overrides)

        if not validate_environment(settings):
            logger.error("Environment validation failed")
            return 1
        if args.check_env:
            logger.success("Environment OK")
            return 0

        import uvicorn
        from eid_agent.server.app import create_app

        logger.info(f"Agent server running on ws://{settings.host}:{settings.port}")
        uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="info")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
