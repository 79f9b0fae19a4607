"""Startup script for the Face Redaction Tool."""

import argparse
import logging
import sys
from pathlib import Path

from faceredact.web.app import run_dev_server


def main() -> None:
    """Run Main file."""
    parser = argparse.ArgumentParser(description="Run the face redaction web app")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger = logging.getLogger(__name__)

    logger.info("🕶️ Face Redaction Tool")
    logger.info("=" * 50)
    logger.info("Starting redaction application server...")
    logger.info("✅ Backend API: FastAPI with session endpoints")
    logger.info("✅ Detection: OpenCV YuNet + Haar cascade ensemble")
    logger.info("✅ Processing: local only, nothing leaves this machine")
    logger.info("")
    logger.info("📖 Usage:")
    logger.info("  1. POST an image to /api/sessions")
    logger.info("  2. Review detected regions, toggle or add manual ones")
    logger.info("  3. Fetch the live preview, then commit to export")
    logger.info("")
    logger.info("🌐 Access the app at: http://%s:%d", args.host, args.port)
    logger.info("📚 API docs at: http://%s:%d/docs", args.host, args.port)
    logger.info("")
    logger.info("Press Ctrl+C to stop the server")
    logger.info("=" * 50)

    try:
        run_dev_server(host=args.host, port=args.port, config_path=args.config)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except (OSError, RuntimeError, ImportError) as e:
        msg = f"\n❌ Error: {e}"
        logger.exception(msg)
        sys.exit(1)


if __name__ == "__main__":
    main()
