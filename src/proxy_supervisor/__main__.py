"""proxy-supervisor entry point.

Usage: python -m proxy_supervisor run BINARY [ARGS...]
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
