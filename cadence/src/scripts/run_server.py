#!/usr/bin/env python3
"""
Start the cadence FastAPI web server.

Usage:
    python -m cadence.src.scripts.run_server                  # Start with defaults
    python -m cadence.src.scripts.run_server --host 0.0.0.0   # Listen on all interfaces
    python -m cadence.src.scripts.run_server --port 8080      # Use custom port
    python -m cadence.src.scripts.run_server --reload         # Auto-reload for development

Environment Variables:
    CADENCE_DB_URL: Database URL
    CADENCE_ENV: Environment (production/development, default: development)
    CADENCE_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
"""

import argparse
import sys

import uvicorn

from cadence.src.utils.logging_config import get_logger, init_logging


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Start the cadence FastAPI web server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --reload
  %(prog)s --host 0.0.0.0 --port 8000
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1). "
             "Use 0.0.0.0 to listen on all interfaces."
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind the server to (default: 8000)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart automatically when code changes. Not for production."
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    init_logging()
    logger = get_logger("api")

    logger.info(
        f"Starting cadence web server on {args.host}:{args.port} "
        f"(auto-reload {'enabled' if args.reload else 'disabled'})"
    )
    logger.info(f"API documentation: http://{args.host}:{args.port}/docs")

    try:
        uvicorn.run(
            "cadence.src.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level="info",
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
