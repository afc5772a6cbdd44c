"""
Entry point for running the donor sync service as a module.

Usage:
    python -m services.donor_sync [args]
"""

import sys

from .main import cli_main

if __name__ == "__main__":
    sys.exit(cli_main())
