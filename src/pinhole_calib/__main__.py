"""Allow ``python -m pinhole_calib``."""

import sys

from pinhole_calib.cli import main

if __name__ == "__main__":
    sys.exit(main())
