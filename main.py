#!/usr/bin/env python3
"""TrackTime entry point.

Run with:
    python main.py status --user 1
    python -m tracktime status --user 1
"""

import sys

from tracktime.__main__ import main


if __name__ == "__main__":
    sys.exit(main())
