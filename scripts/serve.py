# scripts/serve.py
"""
Run the HTTP API with uvicorn.

  python scripts/serve.py
  python scripts/serve.py --host 0.0.0.0 --port 9000
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

# ensures "mediaclean" is importable even when running by path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediaclean import settings
from mediaclean.server import app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the metadata remover API.")
    parser.add_argument("--host", default=settings.HOST)
    parser.add_argument("--port", type=int, default=settings.PORT)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.host == "0.0.0.0":
        print("⚠️ Listening on all interfaces; uploads are accepted from any host.")
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
