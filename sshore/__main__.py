"""Entry point for ``python -m sshore``."""

import sys

from sshore.cli import main

if __name__ == "__main__":
    sys.exit(main())
