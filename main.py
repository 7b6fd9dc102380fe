"""
Exam Archive: Main Entry Point
==============================
Starts the Flask-based archive API.

Usage:
    python main.py                    # Default: 0.0.0.0:5000
    python main.py --port 8000        # Custom port
    python main.py --static           # Read-only (no mutations)
    python main.py --debug            # Debug mode
"""

import argparse
import logging

from archive.config import ArchiveConfig
from archive.server import create_app

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Exam Archive Service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=5000, help="Bind port")
    parser.add_argument("--db", default=None, help="SQLite database file")
    parser.add_argument("--uploads", default=None, help="Upload directory")
    parser.add_argument("--static", action="store_true", help="Reject all mutations")
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    args = parser.parse_args()

    config = ArchiveConfig.from_env(
        db_path=args.db,
        upload_dir=args.uploads,
        static_mode=True if args.static else None,
    )

    # create_app() runs the schema migrations and creates the upload folder
    logger.info("Creating Flask app (initializes DB + storage)...")
    app = create_app(config)

    logger.info(f"Database path: {config.db_path}")
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
