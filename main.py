"""CLI entrypoint for the loop export tool."""

import sys

from loop_export.cli import main

if __name__ == "__main__":
    sys.exit(main())
