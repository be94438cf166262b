#!/usr/bin/env python3
"""
E-Wallet Ledger Entry Point

Starts the FastAPI server with the wallet system built from EWALLET_*
environment settings.
"""

import sys

import uvicorn

from ewallet.api import create_app
from ewallet.config import get_config
from ewallet.logging_config import setup_logging


def run_server(host: str, port: int):
    """Run the FastAPI server"""
    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting E-Wallet Ledger...")
    print(f"Store: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down E-Wallet Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
