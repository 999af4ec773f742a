"""Allow ``python -m cipipeline``."""

import sys

from cipipeline.main import main

if __name__ == "__main__":
    sys.exit(main())
