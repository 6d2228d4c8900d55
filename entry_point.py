#!/usr/bin/env python3
"""
Server entry point for the parish ledger reconciliation API.
"""
import argparse
import os
import sys

# Ensure the project root is in path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import uvicorn

from parish_ledger.config import get_settings
from parish_ledger.main import app


def main(argv=None):
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Parish ledger reconciliation server")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to run the server on")
    args = parser.parse_args(argv)

    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
