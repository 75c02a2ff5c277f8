"""Command-line entry point for DocRAG."""

import sys

from docrag.cli import main

if __name__ == "__main__":
    sys.exit(main())
