"""
VINVAULT: Server entry point

Usage:
    python -m vinvault [--host 0.0.0.0] [--port 8000]
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from vinvault import config


def main() -> None:
    parser = argparse.ArgumentParser(description="VinVault report API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(levelname)s | %(message)s",
    )
    uvicorn.run("vinvault.server.api:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
