"""Command line interface for running the API server."""
import argparse
import logging

import uvicorn

from config import configure_logging

logger = logging.getLogger(__name__)


def main():
    """Run the API server."""
    parser = argparse.ArgumentParser(description="Campus Market API server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    configure_logging()
    logger.info(f"Starting API on {args.host}:{args.port}")
    uvicorn.run(
        "api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )


if __name__ == "__main__":
    main()
