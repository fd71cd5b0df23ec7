"""procpump entry point.

Supports: python -m procpump -- COMMAND [ARGS...]
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
