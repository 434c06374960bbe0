"""Storycraft — dev launcher. Starts the API server."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))
LOG_LEVEL = os.getenv("STORY_LOG_LEVEL", "INFO").upper()


def main():
    parser = argparse.ArgumentParser(description="Storycraft dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Story storage directory (default: ./data)")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server on code changes")
    args = parser.parse_args()

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # create_app reads DATA_DIR, including in reload workers
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting backend on http://localhost:{args.port} ...")
    uvicorn.run(
        "storycraft.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
