"""
Run the mirror webhook server.

Usage:
    python -m mirror_server [--host HOST] [--port PORT]
    mirror-server [--host HOST] [--port PORT]  (after pip install)
"""

import argparse
import sys

import uvicorn


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mirror webhook server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Uvicorn log level (default: info)",
    )
    args = parser.parse_args(argv)

    uvicorn.run("mirror_server.app:app", host=args.host, port=args.port, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
