#!/usr/bin/env python3
"""
Main entry point for the portfolio sync service.

Runs the command line interface from a source checkout without installing
the package.

Usage:
    python main.py login --env-file .env
    python main.py show
    python main.py --config config/config.yaml refresh
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from portfolio_sync.cli import main


if __name__ == '__main__':
    sys.exit(main())
