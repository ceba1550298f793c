"""Entry point for ``python -m rcti_engine``."""

import sys

from rcti_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
