"""
Entry point for running the package as a module: python -m docfiling
"""

import sys

from docfiling.cli import main

if __name__ == "__main__":
    sys.exit(main())
